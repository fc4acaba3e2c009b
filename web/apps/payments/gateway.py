"""HTTP client for the payment gateway, with retries and a circuit breaker.

``HttpGatewayClient`` implements ``GatewayPort`` with ``httpx``:

- ``verify(reference)`` queries ``GET {base}/transaction/verify/{reference}``
  and normalizes the answer into a ``VerificationResult``.
- ``initialize(order, email)`` calls ``POST {base}/transaction/initialize``
  tagging metadata with the order id, number and customer email so both
  the verify path and the webhook can find the order later.

Resilience:

- Every call is bounded by ``PAYMENTS_HTTP_TIMEOUT_SECS``; a timeout is an
  ``UpstreamError`` and is not retried, so a hung gateway cannot hold the
  confirmation page for longer than one timeout.
- Other transport errors and 5xx answers are retried with exponential
  backoff (``PAYMENTS_HTTP_RETRY_*``).
- A circuit breaker stops calling a gateway that keeps failing and probes
  it again after ``PAYMENTS_CIRCUIT_RESET_TIMEOUT`` seconds.
- ``X-Request-ID`` from the inbound request is propagated.
"""

import logging
import threading
import time
from enum import Enum
from typing import Optional

import httpx
from django.conf import settings
from pydantic import ValidationError

from apps.orders.domain import Order
from gateway.middleware import REQUEST_ID_CTX

from .domain import CheckoutSession, GatewayPort, PaymentOutcome, VerificationResult
from .errors import ConfigurationError, UpstreamError
from .schemas import InitializeResponse, VerifyResponse

logger = logging.getLogger("payments")

# Raw gateway transaction statuses mapped onto the three outcomes.
_OUTCOMES = {
    "success": PaymentOutcome.SUCCESS,
    "successful": PaymentOutcome.SUCCESS,
    "succeeded": PaymentOutcome.SUCCESS,
    "failed": PaymentOutcome.FAILURE,
    "failure": PaymentOutcome.FAILURE,
    "abandoned": PaymentOutcome.FAILURE,
    "reversed": PaymentOutcome.FAILURE,
    "cancelled": PaymentOutcome.FAILURE,
}


def normalize_outcome(raw_status: str) -> PaymentOutcome:
    """Map a gateway status string to an outcome; unknown values are pending."""
    return _OUTCOMES.get((raw_status or "").strip().lower(), PaymentOutcome.PENDING)


# ---------------- Circuit Breaker ---------------- #

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Thread-safe breaker: CLOSED → OPEN after ``fail_threshold`` failures,
    OPEN → HALF_OPEN after ``reset_timeout`` seconds, a single HALF_OPEN probe
    closes it on success or re-opens it on failure.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if self._state == CircuitState.OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> CircuitState:
        """Admit a call or raise ``UpstreamError`` when the circuit refuses it."""
        with self._lock:
            st = self.state
            if st == CircuitState.OPEN:
                raise UpstreamError("CIRCUIT_OPEN")
            if st == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise UpstreamError("CIRCUIT_HALF_OPEN_BUSY")
                self._probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._failures >= self.fail_threshold and self._state != CircuitState.OPEN
            ):
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False

    def reset(self):
        self.on_success()


_gateway_cb = CircuitBreaker(
    "payments-gateway",
    getattr(settings, "PAYMENTS_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "PAYMENTS_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(secret_key: str, extra: Optional[dict] = None) -> dict:
    headers = {"Authorization": f"Bearer {secret_key}", "Accept": "application/json"}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy() -> tuple[int, float, float]:
    """Return (max_attempts, backoff_base_seconds, max_sleep_seconds)."""
    return (
        max(1, getattr(settings, "PAYMENTS_HTTP_RETRY_MAX", 3)),
        getattr(settings, "PAYMENTS_HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "PAYMENTS_HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    if exc is not None:
        return not isinstance(exc, httpx.TimeoutException)
    return resp is not None and 500 <= resp.status_code < 600


def _error_message(resp) -> str:
    try:
        body = resp.json()
    except Exception:
        return f"GATEWAY_HTTP_{resp.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"GATEWAY_HTTP_{resp.status_code}"


# ---------------- Gateway Adapter ---------------- #

class HttpGatewayClient(GatewayPort):
    """Gateway client over HTTP. See module docstring for the resilience policy."""

    def __init__(self, base_url: str | None = None, secret_key: str | None = None,
                 timeout: float | None = None, breaker: CircuitBreaker | None = None):
        self.base_url = (base_url or settings.PAYMENTS_GATEWAY_BASE_URL).rstrip("/")
        self.secret_key = secret_key if secret_key is not None else settings.PAYMENTS_GATEWAY_SECRET_KEY
        self.timeout = timeout or settings.PAYMENTS_HTTP_TIMEOUT_SECS
        self.breaker = breaker or _gateway_cb

    def _require_secret(self) -> str:
        if not self.secret_key:
            logger.error("payment gateway secret key is not configured")
            raise ConfigurationError("PAYMENTS_GATEWAY_SECRET_KEY is not set")
        return self.secret_key

    def _call(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        """Perform one logical gateway call and return the decoded JSON body.

        Raises:
            UpstreamError: For timeouts, exhausted retries, an open circuit,
                non-2xx answers and bodies that are not JSON.
        """
        secret = self._require_secret()
        max_attempts, backoff, cap = _retry_policy()
        tries = 0

        state = self.breaker.before_call()
        headers = _request_headers(secret, {"X-Circuit-State": state.value, "X-Retry-Count": "0"})
        url = f"{self.base_url}{path}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        if method == "GET":
                            resp = client.get(url, headers=headers)
                        else:
                            resp = client.post(url, json=json, headers=headers)
                        if 200 <= resp.status_code < 300:
                            self.breaker.on_success()
                            try:
                                return resp.json()
                            except ValueError:
                                raise UpstreamError("INVALID_GATEWAY_RESPONSE", status_code=resp.status_code)
                        if 400 <= resp.status_code < 500:
                            # Business answer (unknown reference, bad request); the gateway is healthy
                            self.breaker.on_success()
                            raise UpstreamError(_error_message(resp), status_code=resp.status_code)
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_attempts or not _should_retry(resp, exc):
                        self.breaker.on_failure()
                        if isinstance(exc, httpx.TimeoutException):
                            logger.warning("payment gateway timed out", extra={"url": url, "tries": tries})
                            raise UpstreamError("GATEWAY_TIMEOUT") from exc
                        if exc is not None:
                            logger.warning("payment gateway unreachable", extra={"url": url, "tries": tries})
                            raise UpstreamError("GATEWAY_UNREACHABLE") from exc
                        logger.warning(
                            "payment gateway error",
                            extra={"url": url, "tries": tries, "status_code": resp.status_code},
                        )
                        raise UpstreamError(_error_message(resp), status_code=resp.status_code)

                    sleep_s = backoff * (2 ** (tries - 1))
                    if sleep_s > 0:
                        time.sleep(min(sleep_s, cap))
        finally:
            self.breaker.on_finish()

    def verify(self, reference: str) -> VerificationResult:
        """Verify ``reference`` with the gateway.

        Raises:
            ConfigurationError: When no secret key is configured.
            UpstreamError: On any gateway failure or an unparseable answer.
        """
        body = self._call("GET", f"/transaction/verify/{reference}")
        try:
            parsed = VerifyResponse.model_validate(body)
        except ValidationError as e:
            logger.warning("invalid verification response", extra={"reference": reference, "errors": e.error_count()})
            raise UpstreamError("INVALID_GATEWAY_RESPONSE") from e
        if not parsed.status:
            raise UpstreamError(parsed.message or "VERIFICATION_FAILED")

        tx = parsed.data
        result = VerificationResult(
            outcome=normalize_outcome(tx.status),
            amount=tx.amount,
            reference=tx.reference,
            metadata=tx.metadata.model_dump(exclude_none=True),
            customer_email=tx.customer.email,
            gateway_status=tx.status,
        )
        logger.info(
            "payment verified",
            extra={"reference": result.reference, "outcome": result.outcome.value, "order_id": result.order_id},
        )
        return result

    def initialize(self, order: Order, email: str) -> CheckoutSession:
        payload = {
            "email": email,
            "amount": order.total_cents,
            "currency": order.currency,
            "callback_url": f"{settings.PAYMENTS_CALLBACK_URL}?order_id={order.id}",
            "metadata": {
                "order_id": order.id,
                "order_number": order.order_number,
                "customer_email": email,
            },
        }
        body = self._call("POST", "/transaction/initialize", json=payload)
        try:
            parsed = InitializeResponse.model_validate(body)
        except ValidationError as e:
            raise UpstreamError("INVALID_GATEWAY_RESPONSE") from e
        if not parsed.status:
            raise UpstreamError(parsed.message or "INITIALIZATION_FAILED")
        logger.info("payment initialized", extra={"order_id": order.id, "reference": parsed.data.reference})
        return CheckoutSession(
            reference=parsed.data.reference,
            authorization_url=parsed.data.authorization_url,
            access_code=parsed.data.access_code,
        )
