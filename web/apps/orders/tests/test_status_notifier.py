"""Tests for ``OrderStatusNotifier``: polling, change feed and their merge.

A fast ``PollSchedule`` keeps the polling thread quick; every test stops the
notifier so no thread outlives it.
"""
import threading

import httpx
import pytest

from apps.orders.notifier import HttpOrderFetcher, HttpPaymentVerifier, OrderStatusNotifier, PollSchedule
from apps.orders.realtime import CHANNEL_ERROR, OrderChangeHub

FAST = PollSchedule(phases=((10.0, 0.01),), tail=0.01)
SLOW = PollSchedule(phases=(), tail=60.0)


def _order(status, ts):
    return {"id": "o-1", "status": status, "payment_status": "paid", "updated_at": ts}


class SequenceFetcher:
    """Returns the given projections in turn, repeating the last one."""

    def __init__(self, *orders):
        self.orders = list(orders)
        self.calls = 0
        self.lock = threading.Lock()

    def __call__(self, order_id):
        with self.lock:
            self.calls += 1
            if len(self.orders) > 1:
                return self.orders.pop(0)
            return self.orders[0]


class BrokenFeed:
    def subscribe(self, order_id, callback, on_status=None):
        raise ConnectionError("realtime unavailable")


def test_poll_schedule_phases():
    s = PollSchedule()
    assert s.interval(0) == 2
    assert s.interval(29.9) == 2
    assert s.interval(30) == 5
    assert s.interval(329.9) == 5
    assert s.interval(330) == 30
    assert s.interval(10_000) == 30


def test_polling_stops_once_order_is_delivered():
    fetch = SequenceFetcher(
        _order("processing", "2026-01-01T10:00:00+00:00"),
        _order("shipped", "2026-01-01T11:00:00+00:00"),
        _order("delivered", "2026-01-01T12:00:00+00:00"),
    )
    updates = []
    n = OrderStatusNotifier("o-1", fetch, updates.append, schedule=FAST).start()
    try:
        n.join(2)
        assert not n.polling
        assert n.latest["status"] == "delivered"
        assert [u["status"] for u in updates] == ["processing", "shipped", "delivered"]
        calls = fetch.calls
    finally:
        n.stop()
    assert fetch.calls == calls


def test_subscription_failure_keeps_polling():
    fetch = SequenceFetcher(_order("processing", "2026-01-01T10:00:00+00:00"), _order("delivered", "2026-01-01T12:00:00+00:00"))
    n = OrderStatusNotifier("o-1", fetch, lambda o: None, feed=BrokenFeed(), schedule=FAST).start()
    try:
        n.join(2)
        assert n.subscription_status == CHANNEL_ERROR
        assert n.latest["status"] == "delivered"
    finally:
        n.stop()


def test_change_notification_triggers_refetch():
    h = OrderChangeHub()
    fetch = SequenceFetcher(_order("processing", "2026-01-01T10:00:00+00:00"))
    updates = []
    n = OrderStatusNotifier("o-1", fetch, updates.append, feed=h, schedule=SLOW).start()
    try:
        assert h.subscriber_count("o-1") == 1
        h.publish("o-1")
        assert updates == [_order("processing", "2026-01-01T10:00:00+00:00")]
        assert n.polls == 0
    finally:
        n.stop()


def test_stop_releases_subscription_and_thread():
    h = OrderChangeHub()
    n = OrderStatusNotifier("o-1", SequenceFetcher(_order("processing", None)), lambda o: None,
                            feed=h, schedule=SLOW).start()
    assert n.polling
    n.stop()
    assert h.subscriber_count("o-1") == 0
    assert not n.polling


def test_stale_projection_is_ignored():
    n = OrderStatusNotifier("o-1", SequenceFetcher(_order("pending", None)), lambda o: None,
                            initial_order=_order("processing", "2026-01-01T10:00:00Z"))
    assert n._apply(_order("pending", "2026-01-01T09:00:00Z"), "poll") is False
    assert n.latest["status"] == "processing"


def test_terminal_initial_order_does_not_poll():
    fetch = SequenceFetcher(_order("delivered", None))
    n = OrderStatusNotifier("o-1", fetch, lambda o: None, initial_order=_order("delivered", None), schedule=FAST)
    n.start()
    assert not n.polling
    assert fetch.calls == 0


def test_fetch_errors_do_not_stop_polling():
    calls = {"n": 0}

    def flaky(order_id):
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("503")
        return _order("cancelled", None)

    with OrderStatusNotifier("o-1", flaky, lambda o: None, schedule=FAST) as n:
        n.join(2)
        assert n.latest["status"] == "cancelled"
    assert calls["n"] == 3


@pytest.mark.django_db
def test_notifier_follows_reconciliation_through_the_hub(make_order, django_capture_on_commit_callbacks):
    from apps.orders.domain import OrderStatus
    from apps.orders.realtime import hub
    from apps.orders.repository import OrderRepository
    from apps.orders.schemas import OrderReadDTO

    o = make_order()
    repo = OrderRepository()

    def fetch(order_id):
        return OrderReadDTO.from_domain(repo.get(order_id)).model_dump(mode="json")

    updates = []
    n = OrderStatusNotifier(str(o.id), fetch, updates.append, feed=hub, schedule=SLOW).start()
    try:
        with django_capture_on_commit_callbacks(execute=True):
            repo.mark_paid(str(o.id), "TXN-9", OrderStatus.PROCESSING)
        assert updates[-1]["payment_status"] == "paid"
        assert updates[-1]["payment_reference"] == "TXN-9"
    finally:
        n.stop()


def test_verify_on_redirect_runs_once_and_keeps_warning():
    calls = []

    def verify(reference, order_id):
        calls.append((reference, order_id))
        return {"status": "ongoing", "warning": "not confirmed yet"}

    fetch = SequenceFetcher(_order("pending", None))
    n = OrderStatusNotifier("o-1", fetch, lambda o: None, schedule=SLOW, verify=verify, reference="TXN-9").start()
    try:
        assert calls == [("TXN-9", "o-1")]
        assert n.warning == "not confirmed yet"
        assert n.latest["status"] == "pending"
    finally:
        n.stop()


def test_verify_failure_falls_back_to_polling():
    def verify(reference, order_id):
        raise ConnectionError("502")

    fetch = SequenceFetcher(_order("processing", None), _order("delivered", None))
    n = OrderStatusNotifier("o-1", fetch, lambda o: None, schedule=FAST, verify=verify, reference="TXN-9").start()
    try:
        n.join(2)
        assert n.verification is None and n.warning is None
        assert n.latest["status"] == "delivered"
    finally:
        n.stop()


class DummyResp:
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)


def test_http_fetcher_and_verifier(monkeypatch):
    seen = []

    def fake_get(self, url, params=None, headers=None, **kw):
        seen.append((url, params))
        if "/api/payments/verify/" in url:
            return DummyResp(502, {"error": "UPSTREAM_ERROR", "warning": "later"})
        if url.endswith("/missing/"):
            return DummyResp(404, {"detail": "NOT_FOUND"})
        return DummyResp(200, _order("processing", None))

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    fetch = HttpOrderFetcher("http://shop.test/")
    assert fetch("o-1")["status"] == "processing"
    assert fetch("missing") is None
    body = HttpPaymentVerifier("http://shop.test")("TXN-9", "o-1")
    assert body["warning"] == "later"
    assert seen[-1] == ("http://shop.test/api/payments/verify/", {"reference": "TXN-9", "order_id": "o-1"})
