"""Logging filter adding the current request id to every record.

Install ``RequestIdFilter`` on the JSON handler (see ``LOGGING`` in
``config.settings``) so each log line can be correlated with the request
that produced it, including lines emitted by the order services and the
catalog HTTP client.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``record.request_id``; ``"-"`` outside of a request."""

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
