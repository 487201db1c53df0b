from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .core.errors import ParseError, UnsupportedIntervalError
from .models import IntervalKind, TxnKind
from .services.interval_calculator import parse_interval_kind
from .utils.timestamps import normalize_timestamp


def _canonical(v: str | None) -> str | None:
    if v is None:
        return v
    try:
        return normalize_timestamp(v)
    except ParseError as exc:
        raise ValueError("timestamp must use dd/MM/yyyy HH:mm") from exc


def _interval(v: str | None) -> str | None:
    if v is None:
        return v
    try:
        return parse_interval_kind(v).value
    except UnsupportedIntervalError as exc:
        raise ValueError(str(exc)) from exc


class TransactionCreate(BaseModel):
    amount: float
    kind: TxnKind
    category: Optional[str] = None
    description: Optional[str] = None
    timestamp: str
    account_ref: int
    instrument_ref: Optional[int] = None
    is_recurring: bool = False
    interval_kind: Optional[str] = None

    @field_validator("kind", mode="before")
    def kind_lower(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("amount")
    def amount_finite(cls, v: float):
        if not math.isfinite(v):
            raise ValueError("amount must be finite")
        if v <= 0:
            raise ValueError("amount must be positive")
        return v

    @field_validator("timestamp")
    def timestamp_canonical(cls, v: str):
        return _canonical(v)

    @field_validator("interval_kind")
    def interval_supported(cls, v: str | None):
        return _interval(v)

    @model_validator(mode="after")
    def schedule_matches_recurring(self):
        if self.is_recurring and self.interval_kind is None:
            raise ValueError("interval_kind is required when is_recurring is true")
        if not self.is_recurring and self.interval_kind is not None:
            raise ValueError("interval_kind is only allowed when is_recurring is true")
        return self


class TransactionUpdate(BaseModel):
    amount: Optional[float] = None
    kind: Optional[TxnKind] = None
    category: Optional[str] = None
    description: Optional[str] = None
    timestamp: Optional[str] = None
    account_ref: Optional[int] = None
    instrument_ref: Optional[int] = None
    is_recurring: Optional[bool] = None
    interval_kind: Optional[str] = None

    @field_validator("kind", mode="before")
    def kind_lower(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("amount")
    def amount_finite(cls, v: float | None):
        if v is None:
            return v
        if not math.isfinite(v):
            raise ValueError("amount must be finite")
        if v <= 0:
            raise ValueError("amount must be positive")
        return v

    @field_validator("timestamp")
    def timestamp_canonical(cls, v: str | None):
        return _canonical(v)

    @field_validator("interval_kind")
    def interval_supported(cls, v: str | None):
        return _interval(v)


class TransactionOut(BaseModel):
    id: int
    amount: float
    kind: str
    category: Optional[str]
    description: Optional[str]
    timestamp: str
    account_ref: int
    instrument_ref: Optional[int]
    is_recurring: bool
    interval_kind: Optional[str]
    next_due: Optional[str]
    parent_subscription_ref: Optional[int]
    source_interval_kind: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SkippedSubscriptionOut(BaseModel):
    subscription_id: int
    reason: str

    model_config = ConfigDict(from_attributes=True)


class RecurrencePassOut(BaseModel):
    evaluated_at: datetime
    ran: bool
    due_count: int
    processed_ids: list[int] = Field(default_factory=list)
    spawned_ids: list[int] = Field(default_factory=list)
    skipped: list[SkippedSubscriptionOut] = Field(default_factory=list)
    armed_interval: Optional[IntervalKind] = None
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ShortestIntervalOut(BaseModel):
    interval_kind: Optional[IntervalKind] = None


class NextRunOut(BaseModel):
    timestamp: str
    interval_kind: IntervalKind
    next_run: str


class RecurrenceStateOut(BaseModel):
    revision: int
    last_event: Optional[str] = None
    last_event_at: Optional[datetime] = None
    message: Optional[str] = None
    alarm_interval: Optional[IntervalKind] = None
