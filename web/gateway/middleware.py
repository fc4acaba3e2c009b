"""Edge middleware: request identifiers and API payload limits.

``RequestIdMiddleware`` gives every request an identifier, reusing the
incoming ``X-Request-Id`` header when present (the sandbox gateway sets it on
webhook deliveries) or generating a UUIDv4 otherwise. The id is stored on the
request, in a ContextVar read by the logging filter and the gateway HTTP
client, and echoed back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects oversized bodies under ``/api/`` before
any view reads them. Webhook bodies are hashed in full, so this bounds the
work an unauthenticated caller can force.
"""

import uuid
import contextvars

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    """Set ``request.request_id`` and the request-id ContextVar.

    Attributes:
        HEADER (str): Incoming header as found in ``request.META``.
        RESPONSE_HEADER (str): Header added to every response.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Echo the request id and reset the ContextVar for the worker thread."""
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
            request._request_id_token = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Return 413 for ``/api/`` requests whose Content-Length exceeds the limit."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        limit = getattr(settings, "API_MAX_BYTES", 1 * 1024 * 1024)
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None
