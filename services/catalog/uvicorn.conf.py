import os

# Catalog service: books and stock behind /books and /stock
app = "main:app"
host = os.getenv("CATALOG_HOST", "0.0.0.0")
port = int(os.getenv("PORT", "9001"))

# Stock changes serialize on row locks in the database, so a few workers are enough
workers = int(os.getenv("UVICORN_WORKERS", str(min(max(2, (os.cpu_count() or 1)), 4))))
loop = "uvloop"  # requires uvicorn[standard]
http = "h11"
lifespan = "on"
timeout_keep_alive = int(os.getenv("UVICORN_KEEPALIVE", "5"))
proxy_headers = True
forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

log_level = os.getenv("LOG_LEVEL", "info")
access_log = os.getenv("UVICORN_ACCESS_LOG", "false").lower() in ("1", "true", "yes")
log_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "json"},
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": log_level.upper(), "propagate": False},
        "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "catalog": {"handlers": ["console"], "level": log_level.upper(), "propagate": False},
    },
}
