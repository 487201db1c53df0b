from __future__ import annotations

import threading
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from financeit import models
from financeit.models import IntervalKind
from financeit.services.recurrence_store import RecurrenceStore
from financeit.services.scheduler import RecordingWakeAlarm, RecurrenceScheduler, SchedulerWakeAlarm
from financeit.utils.timestamps import LOCAL_ZONE


NOW = datetime(2024, 1, 5, 9, 30)


def test_pass_processes_due_and_arms_shortest_interval(db_session, make_txn, scheduler, alarm):
    daily = make_txn(is_recurring=True, interval_kind="daily", next_due="02/01/2024 09:00")
    weekly = make_txn(is_recurring=True, interval_kind="weekly", next_due="08/01/2024 09:00")

    summary = scheduler.process_all_due(NOW, db=db_session)

    assert summary.ran is True
    assert summary.due_count == 1
    assert summary.processed_ids == [daily.id]
    assert len(summary.spawned_ids) == 4
    assert summary.changed
    assert summary.armed_interval is IntervalKind.DAILY
    assert alarm.interval_kind is IntervalKind.DAILY
    assert alarm.cadence == timedelta(days=1)
    # 다음 깨어남은 가장 이른 next_due에 맞춘다
    assert alarm.first_fire_at == datetime(2024, 1, 6, 9, 0)
    assert weekly.next_due == "08/01/2024 09:00"


def test_bad_subscriptions_are_skipped_and_the_rest_processed(db_session, make_txn, scheduler):
    bad_date = make_txn(is_recurring=True, interval_kind="daily", next_due="05-01-2024 09:00")
    fortnightly = make_txn(is_recurring=True, interval_kind="fortnightly", next_due="02/01/2024 09:00")
    good = make_txn(is_recurring=True, interval_kind="daily", next_due="04/01/2024 09:00")

    summary = scheduler.process_all_due(NOW, db=db_session)

    assert summary.processed_ids == [good.id]
    assert [s.subscription_id for s in summary.skipped] == [bad_date.id, fortnightly.id]
    assert "fortnightly" in summary.skipped[1].reason
    db_session.expire_all()
    assert db_session.get(models.Transaction, fortnightly.id).next_due == "02/01/2024 09:00"
    assert db_session.get(models.Transaction, good.id).next_due == "06/01/2024 09:00"


def test_store_failure_is_skipped_not_raised(db_session, make_txn, scheduler, monkeypatch):
    sub = make_txn(is_recurring=True, interval_kind="daily", next_due="04/01/2024 09:00")

    def _boom():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(db_session, "commit", _boom)
    summary = scheduler.process_all_due(NOW, db=db_session)
    monkeypatch.undo()

    assert summary.processed_ids == []
    assert [s.subscription_id for s in summary.skipped] == [sub.id]
    assert RecurrenceStore(db_session).children_of(sub.id) == []


def test_no_subscriptions_disarms(db_session, make_txn, scheduler, alarm):
    make_txn(is_recurring=False)

    summary = scheduler.process_all_due(NOW, db=db_session)

    assert summary.armed_interval is None
    assert summary.changed is False
    assert alarm.armed is False
    assert alarm.history[-1] == ("disarm", None)


def test_rearm_tracks_the_tightest_remaining_interval(db_session, make_txn, scheduler, alarm):
    minutely = make_txn(is_recurring=True, interval_kind="minutely", next_due="05/01/2024 09:31")
    make_txn(is_recurring=True, interval_kind="monthly", next_due="01/02/2024 09:00")

    assert scheduler.rearm(db_session, NOW) is IntervalKind.MINUTELY
    assert alarm.cadence == timedelta(minutes=1)

    db_session.delete(minutely)
    db_session.commit()
    assert scheduler.rearm(db_session, NOW) is IntervalKind.MONTHLY
    assert [entry[1] for entry in alarm.history] == [IntervalKind.MINUTELY, IntervalKind.MONTHLY]


def test_pass_with_own_session(db_session, make_txn, scheduler):
    sub = make_txn(is_recurring=True, interval_kind="daily", next_due="05/01/2024 09:00")

    summary = scheduler.process_all_due(NOW)

    assert summary.processed_ids == [sub.id]
    db_session.expire_all()
    assert db_session.get(models.Transaction, sub.id).next_due == "06/01/2024 09:00"


def test_overlapping_wake_is_skipped(db_session, make_txn, scheduler, alarm):
    make_txn(is_recurring=True, interval_kind="daily", next_due="02/01/2024 09:00")

    scheduler._pass_lock.acquire()
    try:
        summary = scheduler.process_all_due(NOW, db=db_session)
    finally:
        scheduler._pass_lock.release()

    assert summary.ran is False
    assert summary.processed_ids == []
    assert alarm.history == []


def test_listener_failure_does_not_break_the_pass(db_session, make_txn, scheduler, notifier):
    make_txn(is_recurring=True, interval_kind="daily", next_due="05/01/2024 09:00")

    def _broken(event):
        raise RuntimeError("ui went away")

    received = []
    notifier.subscribe(_broken)
    notifier.subscribe(received.append)

    summary = scheduler.process_all_due(NOW, db=db_session)

    assert len(summary.spawned_ids) == 1
    assert notifier.revision == 1
    assert len(received) == 1


def test_unsubscribed_listener_is_not_called(notifier):
    calls = []
    unsubscribe = notifier.subscribe(calls.append)
    unsubscribe()

    notifier.publish("recurrence_state_changed", occurred_at=NOW)

    assert calls == []
    assert notifier.last_event.revision == 1


def test_first_wake_follows_the_soonest_next_due(db_session, make_txn, scheduler, alarm):
    make_txn(is_recurring=True, interval_kind="monthly", next_due="01/02/2024 09:00")
    make_txn(is_recurring=True, interval_kind="yearly", next_due="06/01/2024 08:00")

    scheduler.rearm(db_session, NOW)

    assert alarm.interval_kind is IntervalKind.MONTHLY
    assert alarm.cadence == timedelta(days=31)
    assert alarm.first_fire_at == datetime(2024, 1, 6, 8, 0)


def test_unreadable_store_is_reported_not_raised():
    broken = sessionmaker(bind=create_engine("sqlite://"))
    recording = RecordingWakeAlarm()
    scheduler = RecurrenceScheduler(broken, alarm=recording)

    summary = scheduler.process_all_due(NOW)

    assert summary.ran is True
    assert summary.error is not None
    assert "due-set read failed" in summary.error
    assert summary.processed_ids == []
    assert recording.history == []


def _local_now() -> datetime:
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


def test_scheduler_alarm_keeps_the_earlier_pending_wake():
    background = BackgroundScheduler(timezone=LOCAL_ZONE)
    wake = SchedulerWakeAlarm(lambda: None, scheduler=background)
    wake.start()
    try:
        soon = _local_now().replace(microsecond=0) + timedelta(hours=6)
        wake.arm(IntervalKind.DAILY, timedelta(days=1), soon)
        assert wake.armed
        assert wake.next_fire_time() == soon

        # 같은 작업 id로 다시 걸어도 이미 더 이른 깨어남은 미뤄지지 않는다
        wake.arm(IntervalKind.DAILY, timedelta(days=1), soon + timedelta(days=1))
        assert wake.next_fire_time() == soon
        assert len(background.get_jobs()) == 1

        sooner = soon - timedelta(hours=5)
        wake.arm(IntervalKind.MINUTELY, timedelta(minutes=1), sooner)
        assert wake.next_fire_time() == sooner
        assert wake.interval_kind is IntervalKind.MINUTELY

        wake.disarm()
        assert not wake.armed
        assert wake.next_fire_time() is None
        assert wake.interval_kind is None
    finally:
        wake.shutdown()


def test_scheduler_alarm_fires_despite_rearm():
    fired = threading.Event()
    wake = SchedulerWakeAlarm(fired.set, scheduler=BackgroundScheduler(timezone=LOCAL_ZONE))
    wake.start()
    try:
        wake.arm(IntervalKind.DAILY, timedelta(days=1), _local_now() + timedelta(seconds=1))
        wake.arm(IntervalKind.DAILY, timedelta(days=1), _local_now() + timedelta(days=1))
        assert fired.wait(timeout=10)
    finally:
        wake.shutdown()


def test_scheduler_alarm_swallows_callback_errors():
    def _fail():
        raise RuntimeError("pass failed")

    wake = SchedulerWakeAlarm(_fail, scheduler=BackgroundScheduler(timezone=LOCAL_ZONE))
    wake._run()
    assert not wake.armed
