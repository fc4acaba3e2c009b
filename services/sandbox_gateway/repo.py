"""SQLAlchemy repository for sandbox gateway transactions.

Stores every checkout the sandbox has initialized together with the metadata
the storefront tagged it with, so ``/transaction/verify`` and webhook
deliveries report the same data the real gateway would. Each transaction
gets a monotonic ``internal_id`` that also forms its public reference
(``TXN-<n>``).

The connection URL comes from ``SANDBOX_DATABASE_URL`` and defaults to a
local SQLite file; ``sqlite://`` gives a shared in-memory database for tests.
"""

import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.getenv("SANDBOX_DATABASE_URL", "sqlite:///./sandbox_gateway.db")


def _make_engine(url: str):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(DATABASE_URL)

PENDING = "ongoing"
SUCCESS = "success"
FAILED = "failed"


class Base(DeclarativeBase):
    pass


class Transaction(Base):
    """A sandbox payment.

    Attributes:
        reference: Public reference returned to the storefront.
        internal_id: Monotonic counter backing the reference.
        amount_cents: Amount in minor units.
        currency: ISO currency code.
        email: Payer email given at initialization.
        status: ``ongoing``, ``success`` or ``failed``.
        metadata_json: Storefront metadata (``order_id`` ...), echoed back.
    """

    __tablename__ = "sandbox_transactions"

    reference = mapped_column(String(64), primary_key=True)
    internal_id = mapped_column(BigInteger, unique=True, nullable=False)
    amount_cents = mapped_column(Integer, nullable=False)
    currency = mapped_column(String(3), nullable=False)
    email = mapped_column(String(254), nullable=False)
    status = mapped_column(String(16), nullable=False, default=PENDING)
    metadata_json = mapped_column(JSON, nullable=False, default=dict)
    created_at = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


@contextmanager
def get_session():
    with Session(engine) as s:
        yield s


def _next_internal_id(session: Session) -> int:
    # Lock the current maximum so concurrent initializations do not collide
    last = (
        session.execute(
            select(Transaction).order_by(Transaction.internal_id.desc()).with_for_update().limit(1)
        )
        .scalars()
        .first()
    )
    return 1 if not last else last.internal_id + 1


def to_wire(tx: Transaction) -> dict:
    """Serialize a transaction the way the verification endpoint reports it."""
    return {
        "status": tx.status,
        "reference": tx.reference,
        "amount": tx.amount_cents,
        "currency": tx.currency,
        "metadata": dict(tx.metadata_json or {}),
        "customer": {"email": tx.email},
    }


class TransactionsRepo:
    def create(self, amount_cents: int, currency: str, email: str, metadata: dict) -> dict:
        with get_session() as s:
            nid = _next_internal_id(s)
            tx = Transaction(
                reference=f"TXN-{nid}",
                internal_id=nid,
                amount_cents=amount_cents,
                currency=currency,
                email=email,
                status=PENDING,
                metadata_json=metadata,
            )
            s.add(tx)
            s.commit()
            return to_wire(tx)

    def get(self, reference: str) -> Optional[dict]:
        with get_session() as s:
            tx = s.get(Transaction, reference)
            return to_wire(tx) if tx else None

    def set_status(self, reference: str, status: str) -> Optional[dict]:
        """Record the final outcome; a finished transaction keeps its first outcome."""
        with get_session() as s:
            tx = s.get(Transaction, reference, with_for_update=True)
            if tx is None:
                return None
            if tx.status == PENDING:
                tx.status = status
                s.commit()
            return to_wire(tx)


Base.metadata.create_all(engine)
