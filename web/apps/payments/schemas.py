"""Pydantic schemas for everything the payments app receives or returns.

Gateway payloads (verification responses and webhook events) are externally
controlled, so they are validated here before any field is read. Unknown
fields are ignored; missing optional fields fall back to defaults.
"""

import re
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_email(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v2 = v.strip()
    if not v2 or not EMAIL_RE.match(v2):
        return None
    return v2


# ---- Gateway: verification ----
class GatewayMetadata(BaseModel):
    """Metadata the storefront tags onto a payment at initiation."""

    model_config = ConfigDict(extra="allow")

    order_id: Optional[str] = None
    order_number: Optional[str] = None
    customer_email: Optional[str] = None

    @field_validator("order_id", "order_number", mode="before")
    @classmethod
    def stringify(cls, v):
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _clean_email(v)


class GatewayCustomer(BaseModel):
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _clean_email(v)


class GatewayTransaction(BaseModel):
    status: str
    reference: str = Field(min_length=1)
    amount: int = Field(ge=0, default=0)
    currency: Optional[str] = None
    metadata: GatewayMetadata = Field(default_factory=GatewayMetadata)
    customer: GatewayCustomer = Field(default_factory=GatewayCustomer)

    @field_validator("metadata", mode="before")
    @classmethod
    def empty_metadata(cls, v):
        # Gateways send "" or null when no metadata was attached
        return v or {}

    @field_validator("customer", mode="before")
    @classmethod
    def empty_customer(cls, v):
        return v or {}


class VerifyResponse(BaseModel):
    """Envelope of ``GET /transaction/verify/<reference>``."""

    status: bool
    message: str = ""
    data: GatewayTransaction


# ---- Gateway: initialization ----
class InitializeData(BaseModel):
    authorization_url: str
    reference: str = Field(min_length=1)
    access_code: Optional[str] = None


class InitializeResponse(BaseModel):
    status: bool
    message: str = ""
    data: InitializeData


# ---- Gateway: webhook ----
class WebhookPayment(BaseModel):
    id: str = Field(min_length=1)
    status: Optional[str] = None
    amount: int = Field(ge=0, default=0)
    currency: Optional[str] = None
    metadata: GatewayMetadata = Field(default_factory=GatewayMetadata)

    @field_validator("metadata", mode="before")
    @classmethod
    def empty_metadata(cls, v):
        return v or {}


class WebhookEvent(BaseModel):
    """Envelope of a signed event delivered to ``/api/payments/webhook/``.

    Only ``type`` is required. The payload shape depends on the event type,
    so it is kept raw here and validated as ``WebhookPayment`` for payment
    success events only.
    """

    id: Optional[str] = None
    type: str = Field(min_length=1)
    payload: Any = None


# ---- Storefront API ----
class InitializePaymentDTO(BaseModel):
    order_id: UUID
    email: str = Field(min_length=3, max_length=254)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = _clean_email(v)
        if v2 is None:
            raise ValueError("Invalid email")
        return v2


class VerifyPaymentResponse(BaseModel):
    """Body returned to the success page after verify-and-reconcile."""

    status: str
    amount: int
    reference: str
    order_id: Optional[str] = None
    reconciliation: Optional[str] = None
    warning: Optional[str] = None
