# scheduler.py
import asyncio
from datetime import datetime, time, timedelta
from typing import Optional

from fastapi import FastAPI

from config import AUDIT_DAYS_TO_KEEP, AUDIT_RETENTION_ENABLED, AUDIT_RETENTION_HOUR
from database import SessionLocal
from logger import get_logger
from services.audit import cleanup_logs, recorder

log = get_logger("scheduler")


def next_run_at(now: Optional[datetime] = None, hour: int = AUDIT_RETENTION_HOUR) -> datetime:
    now = now or datetime.now().astimezone()
    target = datetime.combine(now.date(), time(hour, 0), tzinfo=now.tzinfo)
    if now >= target:
        target = target + timedelta(days=1)
    return target


def retention_job(days_to_keep: int = AUDIT_DAYS_TO_KEEP) -> int:
    db = SessionLocal()
    try:
        n = cleanup_logs(db, days_to_keep)
    finally:
        db.close()
    recorder.record_delete("log", None, {"days_to_keep": days_to_keep, "deleted_count": n, "scheduled": True})
    return n


async def _retention_loop():
    while True:
        now = datetime.now().astimezone()
        delay = (next_run_at(now) - now).total_seconds()
        await asyncio.sleep(delay)
        try:
            await asyncio.to_thread(retention_job)
        except Exception:
            log.exception("scheduled audit cleanup failed")


def start_retention(app: FastAPI) -> None:
    if not AUDIT_RETENTION_ENABLED:
        return
    app.state.retention_task = asyncio.create_task(_retention_loop())
    log.info("audit retention scheduled daily at %02d:00 (keep %s days)", AUDIT_RETENTION_HOUR, AUDIT_DAYS_TO_KEEP)


async def stop_retention(app: FastAPI) -> None:
    task = getattr(app.state, "retention_task", None)
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    app.state.retention_task = None
