from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from . import models
from .core.database import get_db
from .core.deps import get_notifier, get_scheduler
from .core.errors import ParseError, UnsupportedIntervalError
from .domain import ChildTransaction, as_variant
from .schemas import (
    NextRunOut,
    RecurrencePassOut,
    RecurrenceStateOut,
    ShortestIntervalOut,
    TransactionCreate,
    TransactionOut,
    TransactionUpdate,
)
from .services.interval_calculator import next_run, parse_interval_kind
from .services.notifications import ChangeNotifier
from .services.recurrence_store import RecurrenceStore
from .services.scheduler import RecurrenceScheduler
from .services.selectors import due_subscriptions, shortest_active_interval
from .services.transaction_service import TransactionService
from .utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

router = APIRouter()

# PATCH 시 null로 비울 수 있는 컬럼
NULLABLE_UPDATE_FIELDS = {"category", "description", "instrument_ref", "interval_kind"}


def _parse_now(value: Optional[str]):
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ParseError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _get_or_404(db: Session, txn_id: int) -> models.Transaction:
    tx = RecurrenceStore(db).get(txn_id)
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return tx


def _catch_up_now(db: Session, scheduler: RecurrenceScheduler, tx: models.Transaction) -> None:
    summary = scheduler.process_all_due(db=db)
    if not summary.ran:
        # 진행 중인 패스가 처리하므로 알람만 갱신
        scheduler.rearm(db)
    db.refresh(tx)


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
):
    try:
        tx = TransactionService(db).create(payload.model_dump())
    except (ParseError, UnsupportedIntervalError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if tx.is_recurring:
        # 새 구독: 밀린 회차를 즉시 처리하고 알람 재설정
        _catch_up_now(db, scheduler, tx)
    return tx


@router.get("/transactions", response_model=list[TransactionOut])
def list_transactions(
    response: Response,
    is_recurring: Optional[bool] = Query(None),
    parent_subscription_ref: Optional[int] = Query(None, ge=1),
    account_ref: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    rows, total = RecurrenceStore(db).list(
        is_recurring=is_recurring,
        parent_subscription_ref=parent_subscription_ref,
        account_ref=account_ref,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    response.headers["X-Total-Count"] = str(total)
    return rows


@router.get("/transactions/{txn_id}", response_model=TransactionOut)
def get_transaction(txn_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, txn_id)


@router.patch("/transactions/{txn_id}", response_model=TransactionOut)
def update_transaction(
    txn_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
):
    changes = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_UPDATE_FIELDS
    }
    before = _get_or_404(db, txn_id)
    schedule_touched = bool(before.is_recurring) or bool(changes.get("is_recurring"))
    try:
        tx = TransactionService(db).update(txn_id, changes)
    except (ParseError, UnsupportedIntervalError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if tx is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if tx.is_recurring:
        _catch_up_now(db, scheduler, tx)
    elif schedule_touched:
        scheduler.rearm(db)
    return tx


@router.delete("/transactions/{txn_id}", status_code=204)
def delete_transaction(
    txn_id: int,
    db: Session = Depends(get_db),
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
):
    tx = _get_or_404(db, txn_id)
    was_subscription = bool(tx.is_recurring)
    if not TransactionService(db).delete(txn_id):
        # the row exists, so a False here is a store failure
        raise HTTPException(status_code=500, detail="Failed to delete transaction")
    if was_subscription:
        scheduler.rearm(db)
    return None


@router.get("/subscriptions/due", response_model=list[TransactionOut])
def list_due_subscriptions(
    now: Optional[str] = Query(None, description="dd/MM/yyyy HH:mm; defaults to local now"),
    db: Session = Depends(get_db),
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
):
    return due_subscriptions(db, _parse_now(now) or scheduler.clock())


@router.get("/subscriptions/{subscription_id}/children", response_model=list[TransactionOut])
def list_subscription_children(subscription_id: int, db: Session = Depends(get_db)):
    tx = _get_or_404(db, subscription_id)
    try:
        variant = as_variant(tx)
    except (UnsupportedIntervalError, ValueError):
        # broken schedule still owns its children
        variant = None
    if isinstance(variant, ChildTransaction):
        raise HTTPException(
            status_code=400,
            detail=f"Transaction {subscription_id} was spawned by subscription {variant.parent}",
        )
    return RecurrenceStore(db).children_of(subscription_id)


@router.get("/recurrence/shortest-interval", response_model=ShortestIntervalOut)
def get_shortest_interval(db: Session = Depends(get_db)):
    return ShortestIntervalOut(interval_kind=shortest_active_interval(db))


@router.get("/recurrence/next-run", response_model=NextRunOut)
def get_next_run(
    timestamp: str = Query(..., description="dd/MM/yyyy HH:mm"),
    interval_kind: str = Query(...),
):
    try:
        kind = parse_interval_kind(interval_kind)
        result = next_run(timestamp, kind)
    except (ParseError, UnsupportedIntervalError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return NextRunOut(timestamp=timestamp, interval_kind=kind, next_run=result)


@router.post("/recurrence/run", response_model=RecurrencePassOut)
def run_recurrence_pass(
    now: Optional[str] = Query(None, description="dd/MM/yyyy HH:mm; defaults to local now"),
    db: Session = Depends(get_db),
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
):
    summary = scheduler.process_all_due(_parse_now(now), db=db)
    return RecurrencePassOut.model_validate(summary, from_attributes=True)


@router.get("/recurrence/state", response_model=RecurrenceStateOut)
def get_recurrence_state(
    notifier: ChangeNotifier = Depends(get_notifier),
    scheduler: RecurrenceScheduler = Depends(get_scheduler),
):
    notifier = scheduler.notifier or notifier
    event = notifier.last_event
    return RecurrenceStateOut(
        revision=notifier.revision,
        last_event=event.name if event else None,
        last_event_at=event.occurred_at if event else None,
        message=event.message if event else None,
        alarm_interval=getattr(scheduler.alarm, "interval_kind", None),
    )
