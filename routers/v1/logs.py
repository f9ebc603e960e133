# routers/v1/logs.py
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from config import AUDIT_DAYS_TO_KEEP
from database import get_db
from deps.auth import get_current_caller
from deps.authz import require_role, require_superadmin
from schemas import AuditLogPage, CleanupOut, LogCountOut, PageVisitIn
from services import audit as svc
from services.audit import Caller, ChangeRecorder, get_recorder

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("", response_model=AuditLogPage)
def query_logs(
    limit: int = Query(50, ge=1, description=">= 1000 without a cursor returns everything"),
    cursor: Optional[str] = Query(None, description="next_cursor from the previous page"),
    user_id: Optional[str] = None,
    username: Optional[str] = Query(None, description="Substring, case-insensitive"),
    action: Optional[str] = None,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    success: Optional[bool] = None,
    severity: Optional[Literal["info", "warning", "error", "critical"]] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    exclude_action: Optional[str] = None,
    sort_by: str = "timestamp",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    q = svc.AuditQuery(
        limit=limit, cursor=cursor, user_id=user_id, username=username, action=action,
        resource=resource, resource_id=resource_id, success=success, severity=severity,
        start_date=start_date, end_date=end_date, exclude_action=exclude_action,
        sort_by=sort_by, sort_order=sort_order,
    )
    return svc.query_logs(db, q)


@router.get("/stats")
def log_stats(db: Session = Depends(get_db), caller: Caller = Depends(require_superadmin)):
    return svc.activity_stats(db)


@router.get("/count", response_model=LogCountOut)
def log_counts(db: Session = Depends(get_db), caller: Caller = Depends(require_role("user", "superadmin"))):
    return svc.log_counts(db)


@router.post("/page-visit")
def page_visit(
    payload: Optional[PageVisitIn] = None,
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    pathname = payload.pathname if payload else "/dashboard"
    svc.record_page_visit(recorder, pathname, caller)
    return {"success": True, "message": "Page visit logged"}


@router.delete("", response_model=CleanupOut)
def cleanup_logs(
    days_to_keep: int = Query(AUDIT_DAYS_TO_KEEP, description="1..365"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    n = svc.cleanup_logs(db, days_to_keep)
    recorder.record_delete("log", None, {"days_to_keep": days_to_keep, "deleted_count": n}, caller)
    return {"message": f"Deleted {n} log entries older than {days_to_keep} days", "deleted_count": n}
