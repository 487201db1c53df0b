"""Typed views over the flat ``transaction`` row.

The table keeps one shape for every ledger entry; the scheduler and API code
work on one of three variants instead so a child can never look like a
subscription, and a subscription always carries its schedule.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import NewType, Union

from .models import IntervalKind, Transaction

SubscriptionId = NewType("SubscriptionId", int)


@dataclass(frozen=True)
class LedgerFields:
    id: int
    amount: Decimal
    kind: str
    category: str | None
    description: str | None
    timestamp: str
    account_ref: int
    instrument_ref: int | None


@dataclass(frozen=True)
class Subscription:
    ledger: LedgerFields
    interval_kind: IntervalKind
    next_due: str
    # set only when a former child was promoted to a subscription
    origin: SubscriptionId | None = None

    @property
    def id(self) -> SubscriptionId:
        return SubscriptionId(self.ledger.id)

    @property
    def root_id(self) -> SubscriptionId:
        """Parent that children spawned from this subscription must point to."""
        return self.origin if self.origin is not None else self.id


@dataclass(frozen=True)
class ChildTransaction:
    ledger: LedgerFields
    parent: SubscriptionId
    source_interval_kind: str | None = None


@dataclass(frozen=True)
class PlainTransaction:
    ledger: LedgerFields


TransactionVariant = Union[Subscription, ChildTransaction, PlainTransaction]


def _ledger_fields(row: Transaction) -> LedgerFields:
    return LedgerFields(
        id=row.id,
        amount=Decimal(str(row.amount)),
        kind=row.kind,
        category=row.category,
        description=row.description,
        timestamp=row.timestamp,
        account_ref=row.account_ref,
        instrument_ref=row.instrument_ref,
    )


def as_variant(row: Transaction) -> TransactionVariant:
    """Project a stored row onto its variant.

    Raises:
        UnsupportedIntervalError: a subscription row stores an unknown interval.
        ValueError: the row breaks the flat-schema invariants.
    """
    ledger = _ledger_fields(row)
    if row.is_recurring:
        if not row.next_due:
            raise ValueError(f"Subscription {row.id} has no next_due")
        origin = SubscriptionId(row.parent_subscription_ref) if row.parent_subscription_ref else None
        return Subscription(
            ledger=ledger,
            interval_kind=IntervalKind.parse(row.interval_kind),
            next_due=row.next_due,
            origin=origin,
        )
    if row.interval_kind is not None or row.next_due is not None:
        raise ValueError(f"Non-recurring transaction {row.id} carries a schedule")
    if row.parent_subscription_ref is not None:
        return ChildTransaction(
            ledger=ledger,
            parent=SubscriptionId(row.parent_subscription_ref),
            source_interval_kind=row.source_interval_kind,
        )
    return PlainTransaction(ledger=ledger)
