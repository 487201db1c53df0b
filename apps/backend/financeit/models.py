from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .core.database import Base
from .core.errors import UnsupportedIntervalError
from .utils.timestamps import now_local_naive


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class TxnKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class IntervalKind(str, Enum):
    """Closed set of subscription intervals, declared shortest first."""

    MINUTELY = "minutely"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def priority_order(cls) -> list["IntervalKind"]:
        return list(cls)

    @classmethod
    def parse(cls, value: "str | IntervalKind | None") -> "IntervalKind":
        """Case-insensitive lookup ("Daily", "daily", IntervalKind.DAILY)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise UnsupportedIntervalError(value)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        return lowered in {"1", "true", "yes", "y", "on"}
    return False


class Transaction(Base, TimestampMixin):
    """Ledger row; doubles as a subscription template when ``is_recurring``.

    ``timestamp`` and ``next_due`` hold canonical ``dd/MM/yyyy HH:mm`` text and
    ``interval_kind`` holds raw text, so a malformed value written by an older
    client still loads and is reported by the scheduler instead of breaking
    every query on the table.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount: Mapped[float] = mapped_column(Numeric(18, 4), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # income / expense
    category: Mapped[str | None] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[str] = mapped_column(String(16), nullable=False)
    # accounts/cards live outside this service; refs are opaque ids
    account_ref: Mapped[int] = mapped_column(Integer, nullable=False)
    instrument_ref: Mapped[int | None] = mapped_column(Integer)
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    interval_kind: Mapped[str | None] = mapped_column(String(16))
    next_due: Mapped[str | None] = mapped_column(String(16))
    parent_subscription_ref: Mapped[int | None] = mapped_column(
        ForeignKey("transaction.id", ondelete="CASCADE"),
        nullable=True,
    )
    # Interval copied from the generating subscription; descriptive only.
    source_interval_kind: Mapped[str | None] = mapped_column(String(16))

    parent_subscription: Mapped["Transaction | None"] = relationship(
        "Transaction",
        remote_side="Transaction.id",
        back_populates="children",
        foreign_keys=[parent_subscription_ref],
    )
    children: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="parent_subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __init__(self, **kwargs):  # type: ignore[override]
        if "is_recurring" in kwargs:
            kwargs["is_recurring"] = _coerce_bool(kwargs["is_recurring"])
        kind = kwargs.get("kind")
        if isinstance(kind, TxnKind):
            kwargs["kind"] = kind.value
        interval = kwargs.get("interval_kind")
        if isinstance(interval, IntervalKind):
            kwargs["interval_kind"] = interval.value
        super().__init__(**kwargs)

    @property
    def is_subscription_child(self) -> bool:
        return not self.is_recurring and self.parent_subscription_ref is not None

    __table_args__ = (
        CheckConstraint(
            "is_recurring = 1 OR (interval_kind IS NULL AND next_due IS NULL)",
            name="ck_txn_plain_has_no_schedule",
        ),
        CheckConstraint(
            "is_recurring = 0 OR (interval_kind IS NOT NULL AND next_due IS NOT NULL)",
            name="ck_txn_recurring_has_schedule",
        ),
        CheckConstraint(
            "parent_subscription_ref IS NULL OR parent_subscription_ref != id",
            name="ck_txn_parent_not_self",
        ),
        Index("ix_txn_recurring", "is_recurring", "interval_kind"),
        Index("ix_txn_parent_subscription", "parent_subscription_ref"),
        Index("ix_txn_account_ref", "account_ref"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Transaction id={self.id!r} kind={self.kind!r} amount={self.amount!r} "
            f"timestamp={self.timestamp!r} recurring={self.is_recurring!r} "
            f"interval={self.interval_kind!r} next_due={self.next_due!r} "
            f"parent={self.parent_subscription_ref!r}>"
        )
