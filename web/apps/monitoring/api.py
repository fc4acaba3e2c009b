from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse


def health_view(_request):
    """Database reachability plus whether payment secrets are configured.

    Missing secrets do not make the service unhealthy (orders can still be
    read), but they are reported so a deploy without them is noticed.
    """
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    components = {
        "db": {"ok": db_ok},
        "gateway": {"configured": bool(settings.PAYMENTS_GATEWAY_SECRET_KEY)},
        "webhook": {"configured": bool(settings.PAYMENTS_WEBHOOK_SECRET)},
    }
    return JsonResponse({"ok": db_ok, "components": components}, status=200 if db_ok else 503)
