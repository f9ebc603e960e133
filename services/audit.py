# services/audit.py
"""
Append-only audit trail.

Write path: services call ChangeRecorder.record_* *after* their commit.
The recorder builds an entry and hands it to AuditWriter, which owns a bounded
queue drained by a single worker thread. A full queue waits briefly, then drops
the entry with a warning. Failed writes are logged, never raised.

Read path: query_logs (offset-free keyset pages, or a full scan for "load all"),
cleanup_logs (the only delete), activity_stats.
"""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import and_, delete, func, or_
from sqlalchemy.orm import Session

from config import (
    AUDIT_ENQUEUE_TIMEOUT_S,
    AUDIT_FULL_SCAN_THRESHOLD,
    AUDIT_QUEUE_MAXSIZE,
)
from database import SessionLocal
from exceptions import ValidationError
from logger import get_logger
from models import AuditLog, utcnow
from utils.search import ilike_contains
from utils.snapshot import changed_fields

log = get_logger("audit")

MAX_PAGE_SIZE = 1000


@dataclass(frozen=True)
class Caller:
    id: str
    username: str
    role: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM_CALLER = Caller(id="system", username="system", role="system")


# =========================================
# ================ Writer =================
# =========================================

_STOP = object()


class AuditWriter:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        maxsize: int = AUDIT_QUEUE_MAXSIZE,
        put_timeout: float = AUDIT_ENQUEUE_TIMEOUT_S,
    ):
        self._session_factory = session_factory
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._thread: Optional[threading.Thread] = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="audit-writer", daemon=True)
        self._thread.start()
        log.info("audit writer started (maxsize=%s)", self._queue.maxsize)

    def stop(self, timeout: float = 10.0) -> None:
        """Drain what is queued, then stop the worker."""
        if not self.running:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        log.info("audit writer stopped (dropped=%s)", self.dropped)

    def submit(self, entry: dict) -> None:
        if not self.running:
            # scripts / tests without a worker: write inline, same failure policy
            self._write(entry)
            return
        try:
            self._queue.put(entry, timeout=self._put_timeout)
        except queue.Full:
            self.dropped += 1
            log.warning(
                "audit queue full, dropped %s %s/%s",
                entry.get("action"), entry.get("resource"), entry.get("resource_id"),
            )

    def flush(self) -> None:
        """Block until everything queued so far is written."""
        if self.running:
            self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._write(item)
            finally:
                self._queue.task_done()

    def _write(self, entry: dict) -> None:
        db = None
        try:
            db = self._session_factory()
            db.add(AuditLog(**entry))
            db.commit()
        except Exception:
            if db is not None:
                db.rollback()
            log.exception(
                "audit write failed for %s %s/%s",
                entry.get("action"), entry.get("resource"), entry.get("resource_id"),
            )
        finally:
            if db is not None:
                db.close()


# =========================================
# =============== Recorder ================
# =========================================

class ChangeRecorder:
    """Thin API every mutating operation calls once its change is committed."""

    def __init__(self, writer: AuditWriter):
        self.writer = writer

    def _emit(
        self,
        *,
        action: str,
        resource: str,
        resource_id: Any = None,
        details: Optional[dict] = None,
        caller: Optional[Caller] = None,
        success: bool = True,
        severity: str = "info",
        duration_ms: Optional[int] = None,
    ) -> None:
        caller = caller or SYSTEM_CALLER
        entry = {
            "timestamp": utcnow(),
            "user_id": str(caller.id),
            "username": caller.username,
            "user_role": caller.role,
            "action": action,
            "resource": resource,
            "resource_id": None if resource_id is None else str(resource_id),
            "details": details or {},
            "success": success,
            "severity": severity,
            "ip_address": caller.ip_address,
            "user_agent": caller.user_agent,
            "duration_ms": duration_ms,
        }
        try:
            self.writer.submit(entry)
        except Exception:
            log.exception("audit submit failed for %s %s/%s", action, resource, resource_id)

    def record_create(self, resource: str, resource_id, summary: dict, caller: Optional[Caller] = None):
        self._emit(action="create", resource=resource, resource_id=resource_id, details=summary, caller=caller)

    def record_update(
        self,
        resource: str,
        resource_id,
        old_values: dict,
        new_values: dict,
        caller: Optional[Caller] = None,
        extra: Optional[dict] = None,
    ):
        details = {
            "old": old_values,
            "new": new_values,
            "changed_fields": changed_fields(old_values, new_values),
        }
        if extra:
            details.update(extra)
        self._emit(action="update", resource=resource, resource_id=resource_id, details=details, caller=caller)

    def record_status_change(self, resource: str, resource_id, old_status: str, new_status: str,
                             caller: Optional[Caller] = None):
        details = {
            "old": {"status": old_status},
            "new": {"status": new_status},
            "changed_fields": ["status"],
        }
        self._emit(action="status_change", resource=resource, resource_id=resource_id,
                   details=details, caller=caller)

    def record_delete(self, resource: str, resource_id, snapshot: dict, caller: Optional[Caller] = None):
        self._emit(action="delete", resource=resource, resource_id=resource_id, details=snapshot,
                   caller=caller, severity="warning")

    def record_view(self, resource: str, resource_id=None, caller: Optional[Caller] = None,
                    details: Optional[dict] = None):
        self._emit(action="view", resource=resource, resource_id=resource_id, details=details, caller=caller)

    def record_login(self, caller: Caller, success: bool = True, message: Optional[str] = None):
        details = {"error_message": message} if message else {}
        self._emit(action="login", resource="auth", resource_id=caller.id, details=details, caller=caller,
                   success=success, severity="info" if success else "warning")

    def record_error(self, action: str, resource: str, message: str, caller: Optional[Caller] = None,
                     resource_id=None, details: Optional[dict] = None):
        payload = {"error_message": message}
        if details:
            payload.update(details)
        self._emit(action=action, resource=resource, resource_id=resource_id, details=payload,
                   caller=caller, success=False, severity="error")


audit_writer = AuditWriter()
recorder = ChangeRecorder(audit_writer)


def get_recorder() -> ChangeRecorder:
    return recorder


# =========================================
# ================= Query =================
# =========================================

SORT_FIELDS = {
    "timestamp": AuditLog.timestamp,
    "action": AuditLog.action,
    "resource": AuditLog.resource,
    "username": AuditLog.username,
    "severity": AuditLog.severity,
}


@dataclass
class AuditQuery:
    limit: int = 50
    cursor: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    success: Optional[bool] = None
    severity: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    exclude_action: Optional[str] = None
    sort_by: str = "timestamp"
    sort_order: str = "desc"


def _filtered(db: Session, q: AuditQuery):
    query = db.query(AuditLog)
    if q.user_id:
        query = query.filter(AuditLog.user_id == q.user_id)
    if q.username:
        query = query.filter(ilike_contains(AuditLog.username, q.username))
    if q.action:
        query = query.filter(AuditLog.action == q.action)
    if q.exclude_action:
        query = query.filter(AuditLog.action != q.exclude_action)
    if q.resource:
        query = query.filter(AuditLog.resource == q.resource)
    if q.resource_id:
        query = query.filter(AuditLog.resource_id == q.resource_id)
    if q.success is not None:
        query = query.filter(AuditLog.success.is_(q.success))
    if q.severity:
        query = query.filter(AuditLog.severity == q.severity)
    if q.start_date:
        query = query.filter(AuditLog.timestamp >= q.start_date)
    if q.end_date:
        query = query.filter(AuditLog.timestamp <= q.end_date)
    return query


def _cursor_value(sort_by: str, raw: str):
    if sort_by == "timestamp":
        return datetime.fromisoformat(raw)
    return raw


def encode_cursor(sort_by: str, row: AuditLog) -> str:
    value = getattr(row, sort_by)
    if isinstance(value, datetime):
        value = value.isoformat()
    return f"{value}_{row.id}"


def _apply_cursor(query, q: AuditQuery, col):
    """
    "<value>_<id>": rows strictly after (value, id) in sort order.
    A bare "<value>" (older clients) compares on the sort field only.
    """
    desc = q.sort_order == "desc"
    value_raw, sep, id_raw = q.cursor.rpartition("_")
    try:
        if sep and id_raw.isdigit():
            value = _cursor_value(q.sort_by, value_raw)
            last_id = int(id_raw)
            if desc:
                cond = or_(col < value, and_(col == value, AuditLog.id < last_id))
            else:
                cond = or_(col > value, and_(col == value, AuditLog.id > last_id))
            return query.filter(cond)
        value = _cursor_value(q.sort_by, q.cursor)
    except ValueError:
        raise ValidationError("Invalid cursor", code="INVALID_CURSOR")
    return query.filter(col < value if desc else col > value)


def query_logs(db: Session, q: AuditQuery) -> dict:
    col = SORT_FIELDS.get(q.sort_by)
    if col is None:
        raise ValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
    if q.sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc")
    if q.limit < 1:
        raise ValidationError("limit must be >= 1")

    query = _filtered(db, q)
    if q.sort_order == "desc":
        query = query.order_by(col.desc(), AuditLog.id.desc())
    else:
        query = query.order_by(col.asc(), AuditLog.id.asc())

    # load-all mode: everything, no cap
    if q.limit >= AUDIT_FULL_SCAN_THRESHOLD and not q.cursor:
        rows = query.all()
        return {
            "logs": rows,
            "pagination": {"has_more": False, "next_cursor": None, "total": len(rows), "limit": q.limit},
        }

    limit = min(q.limit, MAX_PAGE_SIZE)
    total = None
    if q.cursor:
        query = _apply_cursor(query, q, col)
    else:
        total = _filtered(db, q).count()

    rows = query.limit(limit + 1).all()
    has_more = len(rows) > limit
    page = rows[:limit]
    next_cursor = encode_cursor(q.sort_by, page[-1]) if has_more and page else None

    return {
        "logs": page,
        "pagination": {"has_more": has_more, "next_cursor": next_cursor, "total": total, "limit": limit},
    }


def logs_for_resource(db: Session, resource: str, resource_id, limit: int = 20) -> list[AuditLog]:
    return (
        db.query(AuditLog)
        .filter(AuditLog.resource == resource, AuditLog.resource_id == str(resource_id))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )


# =========================================
# ========== Retention / stats ============
# =========================================

def cleanup_logs(db: Session, days_to_keep: int, now: Optional[datetime] = None) -> int:
    """Delete entries older than days_to_keep. The only way rows leave audit_logs."""
    if not isinstance(days_to_keep, int) or isinstance(days_to_keep, bool) or not 1 <= days_to_keep <= 365:
        raise ValidationError("days_to_keep must be between 1 and 365")
    cutoff = (now or utcnow()) - timedelta(days=days_to_keep)
    # bulk statement: mapper before_delete guards do not fire for it
    res = db.execute(
        delete(AuditLog).where(AuditLog.timestamp < cutoff).execution_options(synchronize_session=False)
    )
    db.commit()
    deleted = res.rowcount or 0
    log.info("audit cleanup: deleted %s entries older than %s days", deleted, days_to_keep)
    return deleted


def _grouped(db: Session, col, limit: Optional[int] = None) -> list[dict]:
    query = (
        db.query(col, func.count(AuditLog.id).label("n"))
        .group_by(col)
        .order_by(func.count(AuditLog.id).desc(), col)
    )
    if limit:
        query = query.limit(limit)
    return [{"key": k, "count": n} for k, n in query.all()]


def activity_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()

    def count_since(delta: Optional[timedelta] = None, *conds) -> int:
        query = db.query(func.count(AuditLog.id))
        if delta is not None:
            query = query.filter(AuditLog.timestamp >= now - delta)
        for c in conds:
            query = query.filter(c)
        return query.scalar() or 0

    return {
        "total": count_since(),
        "last_24h": count_since(timedelta(hours=24)),
        "last_7d": count_since(timedelta(days=7)),
        "last_30d": count_since(timedelta(days=30)),
        "by_action": _grouped(db, AuditLog.action),
        "by_resource": _grouped(db, AuditLog.resource),
        "top_users": _grouped(db, AuditLog.username, limit=10),
        "errors": count_since(None, AuditLog.success.is_(False)),
        "recent_errors": count_since(timedelta(hours=24), AuditLog.success.is_(False)),
    }


def log_counts(db: Session, recent: int = 10) -> dict:
    """Header numbers for the log viewer: totals per action and resource plus the latest few entries."""
    latest = (
        db.query(AuditLog.action, AuditLog.resource, AuditLog.username, AuditLog.timestamp)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(recent)
        .all()
    )
    return {
        "total_count": db.query(func.count(AuditLog.id)).scalar() or 0,
        "action_counts": _grouped(db, AuditLog.action),
        "resource_counts": _grouped(db, AuditLog.resource),
        "recent_logs": [
            {"action": a, "resource": r, "username": u, "timestamp": ts} for a, r, u, ts in latest
        ],
    }


# =========================================
# ============== Page visits ==============
# =========================================

# (path prefix, resource, second path segment is the id)
PAGE_RESOURCES = (
    ("/orders", "order", True),
    ("/users", "user", False),
    ("/labs", "lab", True),
    ("/logs", "log", False),
)


def page_visit_target(pathname: str) -> tuple[str, Optional[str]]:
    """'/orders/12' -> ('order', '12'); anything unmapped is the dashboard."""
    parts = pathname.split("/")
    for prefix, resource, has_id in PAGE_RESOURCES:
        if pathname.startswith(prefix):
            resource_id = parts[2] if has_id and len(parts) > 2 and parts[2] else None
            return resource, resource_id
    return "dashboard", None


def record_page_visit(recorder: ChangeRecorder, pathname: str, caller: Caller) -> None:
    resource, resource_id = page_visit_target(pathname)
    recorder.record_view(resource, resource_id, caller, {"pathname": pathname})
