import httpx
from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
    except DatabaseError:
        return False
    return True


def _catalog_ok() -> bool:
    try:
        resp = httpx.get(f"{settings.CATALOG_BASE_URL.rstrip('/')}/health", timeout=settings.HTTP_TIMEOUT_SECS)
    except httpx.HTTPError:
        return False
    return resp.status_code == 200


def health_view(_request):
    components = {"db": {"ok": _db_ok()}}
    # The catalog service is only a dependency when the HTTP adapter is in use
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        components["catalog"] = {"ok": _catalog_ok()}

    ok = all(component["ok"] for component in components.values())
    return JsonResponse({"ok": ok, "components": components}, status=200 if ok else 503)
