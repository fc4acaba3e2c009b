"""Client-side order status delivery: real-time feed plus adaptive polling.

``OrderStatusNotifier`` keeps one "latest order" cell up to date from
independent, unreliable channels:

- a change-feed subscription for the order (``OrderChangeHub`` in process);
  each notification triggers a re-fetch through the read endpoint;
- a polling thread started unconditionally alongside it, on an adaptive
  schedule (every 2s for 30s, every 5s for the next 5 minutes, then every
  30s), which stops once the order reaches a terminal status;
- when the page was reached through the gateway redirect, one synchronous
  call to the verify endpoint (``HttpPaymentVerifier``), whose warning is
  kept for display.

Every channel goes through ``refresh`` → ``_apply``; there is no ordering
between them and none is needed, because the server side only ever moves
the order forward once. ``stop()`` releases the subscription and the
polling thread.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence, Tuple

import httpx

from .domain import TERMINAL_STATUSES
from .realtime import CHANNEL_ERROR, CLOSED

logger = logging.getLogger("orders")

OrderDict = dict
Fetcher = Callable[[str], Optional[OrderDict]]
Verifier = Callable[[str, Optional[str]], dict]


class ChangeFeedPort(Protocol):
    def subscribe(self, order_id: str, callback: Callable[[dict], None],
                  on_status: Optional[Callable[[str], None]] = None):
        """Subscribe to change events of one order; returns a handle with ``unsubscribe()``."""
        raise NotImplementedError()


class PollSchedule:
    """Polling interval as a function of time since polling started.

    Args:
        phases: ``(duration, interval)`` pairs applied one after another.
        tail: Interval once every phase has elapsed.
    """

    def __init__(self, phases: Sequence[Tuple[float, float]] = ((30.0, 2.0), (300.0, 5.0)),
                 tail: float = 30.0):
        self.phases = tuple(phases)
        self.tail = tail

    def interval(self, elapsed: float) -> float:
        boundary = 0.0
        for duration, every in self.phases:
            boundary += duration
            if elapsed < boundary:
                return every
        return self.tail


class HttpOrderFetcher:
    """Fetch the order projection from ``GET /api/orders/<id>/``.

    Returns None on 404; raises ``httpx`` errors for anything else so the
    notifier can log them.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, headers: Optional[dict] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}

    def __call__(self, order_id: str) -> Optional[OrderDict]:
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.get(f"{self.base_url}/api/orders/{order_id}/", headers=self.headers)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()


class HttpPaymentVerifier:
    """Call ``GET /api/payments/verify/`` once, as the success page does.

    Returns the decoded body for any status the endpoint documents (200,
    409, 502 all carry JSON); raises ``httpx`` errors for transport
    failures.
    """

    def __init__(self, base_url: str, timeout: float = 15.0, headers: Optional[dict] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}

    def __call__(self, reference: str, order_id: Optional[str] = None) -> dict:
        params = {"reference": reference}
        if order_id:
            params["order_id"] = order_id
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.get(f"{self.base_url}/api/payments/verify/", params=params, headers=self.headers)
        try:
            return resp.json()
        except ValueError:
            return {"error": f"HTTP_{resp.status_code}"}


def _parse_ts(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class OrderStatusNotifier:
    """Converge a client's view of one order across feed and polling.

    Args:
        order_id: Order to watch.
        fetch: Callable returning the current order projection (or None).
        on_update: Called with each newly applied projection.
        feed: Optional change feed; failures to subscribe are logged and
            polling carries on.
        schedule: Polling schedule; defaults to 2s/5s/30s.
        initial_order: Projection already rendered by the page, if any.
        verify: Optional verify-on-redirect call, made once by ``start()``
            when ``reference`` is given.
        reference: Gateway reference the page was redirected with.
    """

    def __init__(self, order_id: str, fetch: Fetcher, on_update: Callable[[OrderDict], None],
                 feed: Optional[ChangeFeedPort] = None, schedule: Optional[PollSchedule] = None,
                 initial_order: Optional[OrderDict] = None, clock: Callable[[], float] = time.monotonic,
                 verify: Optional[Verifier] = None, reference: Optional[str] = None):
        self.order_id = str(order_id)
        self.fetch = fetch
        self.on_update = on_update
        self.feed = feed
        self.schedule = schedule or PollSchedule()
        self.clock = clock
        self._lock = threading.RLock()
        self._latest: Optional[OrderDict] = initial_order
        self._poll_stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._subscription = None
        self.polls = 0
        self.subscription_status: Optional[str] = None
        self.verify = verify
        self.reference = reference
        self.verification: Optional[dict] = None

    # ---- state cell ----
    @property
    def latest(self) -> Optional[OrderDict]:
        with self._lock:
            return self._latest

    @property
    def polling(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _is_terminal(self, order: Optional[OrderDict]) -> bool:
        return bool(order) and order.get("status") in TERMINAL_STATUSES

    def _apply(self, order: OrderDict, source: str) -> bool:
        """Single update function shared by every channel.

        Drops projections older than the one already held (by ``updated_at``)
        so a slow response cannot roll the view back.
        """
        with self._lock:
            current = self._latest
            if current is not None:
                new_ts, cur_ts = _parse_ts(order.get("updated_at")), _parse_ts(current.get("updated_at"))
                if new_ts and cur_ts and new_ts < cur_ts:
                    return False
            self._latest = order
        if self._is_terminal(order):
            self._poll_stop.set()
        try:
            self.on_update(order)
        except Exception:
            logger.exception("order update callback failed", extra={"order_id": self.order_id, "source": source})
        return True

    def refresh(self, source: str = "manual") -> Optional[OrderDict]:
        try:
            order = self.fetch(self.order_id)
        except Exception as e:
            logger.warning("order refresh failed", extra={"order_id": self.order_id, "source": source, "error": str(e)})
            return None
        if order is None:
            return None
        self._apply(order, source)
        return order

    # ---- channels ----
    def _on_change(self, payload: dict) -> None:
        self.refresh("realtime")

    def _on_status(self, status: str) -> None:
        self.subscription_status = status
        if status in (CHANNEL_ERROR, CLOSED):
            logger.warning("order subscription degraded", extra={"order_id": self.order_id, "status": status})

    def _poll_loop(self) -> None:
        started = self.clock()
        while not self._poll_stop.is_set():
            if self._poll_stop.wait(self.schedule.interval(self.clock() - started)):
                break
            self.polls += 1
            self.refresh("poll")

    def start(self) -> "OrderStatusNotifier":
        """Start polling, subscribe, then verify the redirect reference; returns self."""
        if self._is_terminal(self.latest):
            return self
        self._poll_stop.clear()
        self._thread = threading.Thread(
            target=self._poll_loop, name=f"order-status-{self.order_id}", daemon=True
        )
        self._thread.start()
        if self.feed is not None:
            try:
                self._subscription = self.feed.subscribe(self.order_id, self._on_change, self._on_status)
            except Exception as e:
                self.subscription_status = CHANNEL_ERROR
                logger.warning("order subscription failed", extra={"order_id": self.order_id, "error": str(e)})
        if self.verify is not None and self.reference:
            self.verify_payment()
        return self

    def verify_payment(self) -> Optional[dict]:
        """Ask the server to verify ``reference`` once, then refresh.

        The verify answer only carries a warning for the page; the order
        itself is always re-read through ``fetch``.
        """
        try:
            self.verification = self.verify(self.reference, self.order_id)
        except Exception as e:
            logger.warning("payment verification call failed",
                           extra={"order_id": self.order_id, "reference": self.reference, "error": str(e)})
            self.verification = None
        self.refresh("verify")
        return self.verification

    @property
    def warning(self) -> Optional[str]:
        return (self.verification or {}).get("warning")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self, timeout: Optional[float] = 1.0) -> None:
        """Unsubscribe and stop polling."""
        self._poll_stop.set()
        sub, self._subscription = self._subscription, None
        if sub is not None:
            try:
                sub.unsubscribe()
            except Exception as e:
                logger.warning("order unsubscribe failed", extra={"order_id": self.order_id, "error": str(e)})
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.stop()
