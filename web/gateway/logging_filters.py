"""Logging filter that stamps records with the current request id.

Registered in ``settings.LOGGING`` so the JSON formatter can always reference
``%(request_id)s``: reconciliation logs from the verify view, the webhook view
and the side-effect dispatchers of one request then share a correlation id.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``request_id`` to every record ("-" outside a request)."""

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
