# routers/v1/orders.py
from datetime import date
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_caller
from deps.authz import require_superadmin
from schemas import AuditLogOut, CounterResetOut, OrderIn, OrderOut, OrderPage, OrderStatusIn
from services import orders as svc
from services.audit import Caller, ChangeRecorder, get_recorder, logs_for_resource
from utils.pagination import MAX_PAGE_SIZE

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=OrderPage)
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    q: Optional[str] = Query(None, description="Search order no / PO / style (ilike)"),
    status: Optional[Literal["pending", "delivered"]] = None,
    order_type: Optional[Literal["Dying", "Printing"]] = None,
    party_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    items, meta = svc.list_orders(
        db, page=page, limit=limit, q=q, status=status, order_type=order_type,
        party_id=party_id, date_from=date_from, date_to=date_to,
    )
    return {"items": items, "pagination": meta}


@router.get("/by-no/{order_no}", response_model=OrderOut)
def get_order_by_no(
    order_no: str,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    order = svc.get_order_by_no(db, order_no)
    recorder.record_view("order", order.id, caller, {"order_no": order.order_no})
    return order


@router.post("/reset-counter", response_model=CounterResetOut)
def reset_order_counter(
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_superadmin),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.reset_order_counter(db, caller=caller, recorder=recorder)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    order = svc.get_order(db, order_id)
    recorder.record_view("order", order.id, caller)
    return order


@router.get("/{order_id}/logs", response_model=List[AuditLogOut])
def get_order_logs(
    order_id: int,
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    # history survives the order itself, so no existence check here
    return logs_for_resource(db, "order", order_id, limit=limit)


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: OrderIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.create_order(db, payload, caller=caller, recorder=recorder)


@router.put("/{order_id}", response_model=OrderOut)
def update_order(
    order_id: int,
    payload: OrderIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.update_order(db, order_id, payload, caller=caller, recorder=recorder)


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: int,
    payload: OrderStatusIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.set_order_status(db, order_id, payload.status, caller=caller, recorder=recorder)


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    snapshot = svc.delete_order(db, order_id, caller=caller, recorder=recorder)
    return {"message": "Order deleted", "id": order_id, "order_no": snapshot["order_no"]}
