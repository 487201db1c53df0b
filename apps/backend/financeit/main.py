from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.deps import build_scheduler, get_scheduler
from .core.logging import configure_logging
from .routers import router
from .services.scheduler import SchedulerWakeAlarm

logger = logging.getLogger(__name__)


def _scheduled_pass() -> None:
    summary = get_scheduler().process_all_due()
    if summary.changed:
        logger.info("Scheduled pass spawned %s transaction(s)", len(summary.spawned_ids))


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    if not settings.SCHEDULER_ENABLED:
        logger.info("Background scheduler disabled")
        yield
        return

    alarm = SchedulerWakeAlarm(_scheduled_pass)
    alarm.start()
    scheduler = build_scheduler(alarm)
    # 앱 시작 시 밀린 회차를 바로 처리하고 알람을 건다
    summary = scheduler.process_all_due()
    if summary.error:
        logger.error("Startup recurrence pass failed: %s", summary.error)
    try:
        yield
    finally:
        alarm.shutdown()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

# CORS (프론트엔드 연결 준비)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(router, prefix="/api")
