"""HTTP views for the orders app.

``RetrieveOrderView`` serves ``GET /api/orders/<id>/``, the pure read used by
the confirmation page's first render and by every refresh of the
``OrderStatusNotifier`` (polling ticks and real-time notifications alike).

Who is asking is decided by an injected resolver, ``ORDERS_VIEWER_RESOLVER``:
a dotted path to ``callable(request) -> user id | None``. When it yields a
user id, the lookup is scoped to that user's orders.
"""

from functools import lru_cache
from typing import Callable, Optional

from django.conf import settings
from django.utils.module_loading import import_string
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .repository import OrderRepository
from .schemas import OrderReadDTO


@lru_cache(maxsize=8)
def _load_resolver(path: str) -> Optional[Callable]:
    return import_string(path) if path else None


def resolve_viewer(request) -> Optional[str]:
    resolver = _load_resolver(getattr(settings, "ORDERS_VIEWER_RESOLVER", "") or "")
    if resolver is None:
        return None
    user_id = resolver(request)
    return str(user_id) if user_id else None


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = OrderRepository().get(str(oid), user_id=resolve_viewer(request))
        if order is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        dto = OrderReadDTO.from_domain(order)
        return Response(dto.model_dump(mode="json"), status=status.HTTP_200_OK)
