"""Sandbox payment gateway built with FastAPI.

A stand-in for the third-party gateway used in local and end-to-end runs.
It speaks the wire contract the storefront consumes:

- ``POST /transaction/initialize``: create a pending transaction tagged with
  the storefront's metadata and return an authorization URL.
- ``GET /transaction/verify/{reference}``: report the transaction outcome
  (Bearer secret required).
- ``POST /transaction/{reference}/complete``: simulate the payer finishing
  the payment; on success, deliver a signed ``payment.succeeded`` webhook.
  ``deliveries`` > 1 redelivers the same event, like a retrying gateway.

Persistence is delegated to ``repo.TransactionsRepo``.
"""

import hashlib
import hmac
import json
import logging
import os
import uuid
from typing import Annotated, Literal, Optional

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger

from repo import FAILED, SUCCESS, TransactionsRepo

SECRET_KEY = os.getenv("SANDBOX_SECRET_KEY", "sk_test_sandbox")
WEBHOOK_SECRET = os.getenv("SANDBOX_WEBHOOK_SECRET", "whsec_sandbox")
WEBHOOK_URL = os.getenv("SANDBOX_WEBHOOK_URL", "http://web:8000/api/payments/webhook/")
SIGNATURE_HEADER = os.getenv("SANDBOX_SIGNATURE_HEADER", "X-Gateway-Signature")
CHECKOUT_BASE_URL = os.getenv("SANDBOX_CHECKOUT_BASE_URL", "http://localhost:9002/checkout")
WEBHOOK_TIMEOUT_SECS = float(os.getenv("SANDBOX_WEBHOOK_TIMEOUT_SECS", "10"))

app = FastAPI(title="Sandbox Payment Gateway")

Currency = constr(pattern=r"^[A-Z]{3}$")

logger = logging.getLogger("sandbox_gateway")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


class InitializeRequest(BaseModel):
    """Request body for ``/transaction/initialize``.

    Attributes:
        email: Payer email.
        amount: Positive amount in minor units.
        currency: Three-letter ISO code.
        callback_url: Where the payer is sent back to; the reference is appended.
        metadata: Opaque storefront metadata, echoed in verify and webhooks.
    """
    email: str = Field(min_length=3, max_length=254)
    amount: int = Field(gt=0)
    currency: Currency = "ZAR"
    callback_url: Optional[str] = None
    metadata: dict = Field(default_factory=dict)


class CompleteRequest(BaseModel):
    outcome: Literal["success", "failed"] = "success"
    deliveries: int = Field(default=1, ge=0, le=10)


def _unauthorized() -> JSONResponse:
    return JSONResponse({"status": False, "message": "Invalid key"}, status_code=401)


def _authorized(authorization: Optional[str]) -> bool:
    expected = f"Bearer {SECRET_KEY}"
    return bool(authorization) and hmac.compare_digest(authorization, expected)


def sign(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()


def deliver_webhook(url: str, body: bytes, headers: dict) -> int:
    """POST one webhook delivery and return the storefront's status code."""
    with httpx.Client(timeout=WEBHOOK_TIMEOUT_SECS) as client:
        resp = client.post(url, content=body, headers=headers)
    return resp.status_code


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/transaction/initialize")
def initialize(req: InitializeRequest, authorization: Annotated[Optional[str], Header()] = None):
    if not _authorized(authorization):
        return _unauthorized()
    tx = TransactionsRepo().create(
        amount_cents=req.amount, currency=req.currency, email=req.email, metadata=req.metadata
    )
    access_code = uuid.uuid4().hex[:12]
    logger.info("transaction initialized", extra={"reference": tx["reference"], "request_id": "-"})
    return {
        "status": True,
        "message": "Authorization URL created",
        "data": {
            "authorization_url": f"{CHECKOUT_BASE_URL}/{access_code}?reference={tx['reference']}",
            "access_code": access_code,
            "reference": tx["reference"],
        },
    }


@app.get("/transaction/verify/{reference}")
def verify(reference: str, authorization: Annotated[Optional[str], Header()] = None):
    if not _authorized(authorization):
        return _unauthorized()
    tx = TransactionsRepo().get(reference)
    if tx is None:
        return JSONResponse({"status": False, "message": "Transaction reference not found"}, status_code=404)
    return {"status": True, "message": "Verification successful", "data": tx}


@app.post("/transaction/{reference}/complete")
def complete(reference: str, req: CompleteRequest):
    """Finish a sandbox payment and, on success, notify the storefront.

    The transaction keeps its first outcome; completing it again only
    redelivers the webhook.
    """
    tx = TransactionsRepo().set_status(reference, SUCCESS if req.outcome == "success" else FAILED)
    if tx is None:
        return JSONResponse({"status": False, "message": "Transaction reference not found"}, status_code=404)

    deliveries = []
    if tx["status"] == SUCCESS and req.deliveries:
        event = {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": "payment.succeeded",
            "payload": {
                "id": tx["reference"],
                "status": "succeeded",
                "amount": tx["amount"],
                "currency": tx["currency"],
                "metadata": tx["metadata"],
            },
        }
        body = json.dumps(event, separators=(",", ":")).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign(body),
            "X-Request-ID": str(uuid.uuid4()),
        }
        for _ in range(req.deliveries):
            try:
                deliveries.append(deliver_webhook(WEBHOOK_URL, body, headers))
            except httpx.RequestError as e:
                logger.warning("webhook delivery failed", extra={"reference": reference, "error": str(e), "request_id": "-"})
                deliveries.append(None)

    return {"status": True, "data": tx, "webhook": {"deliveries": deliveries}}


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
