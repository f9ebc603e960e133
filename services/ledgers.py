# services/ledgers.py
"""Mill outputs and dispatches: per-order ledgers with no cross-row uniqueness."""
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from exceptions import NotFoundError, ValidationError
from models import Dispatch, MillOutput, Order, Quality
from schemas import DispatchCreate, DispatchFields, MillOutputCreate, MillOutputFields
from services.audit import Caller, ChangeRecorder
from utils.numbers import is_non_negative, is_positive
from utils.pagination import paginate
from utils.snapshot import sa_to_dict


def _dec(v) -> Optional[Decimal]:
    return None if v is None else Decimal(str(v))


def _get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def _check_quality(db: Session, quality_id: Optional[int]) -> None:
    if quality_id is not None and not db.get(Quality, quality_id):
        raise NotFoundError("Quality not found")


def _list(db: Session, Model, date_col, *, page, limit, order_id=None, date_from=None, date_to=None):
    query = db.query(Model).options(joinedload(Model.quality))
    if order_id:
        query = query.filter(Model.order_id == order_id)
    if date_from:
        query = query.filter(date_col >= date_from)
    if date_to:
        query = query.filter(date_col <= date_to)
    query = query.order_by(date_col.desc(), Model.id.desc())
    return paginate(query, page, limit)


# =========================================
# ============== Mill outputs =============
# =========================================

def _check_output(data: MillOutputFields) -> None:
    if not is_positive(data.finished_mtr):
        raise ValidationError("Valid finished meters is required")
    if data.mill_rate is not None and not is_non_negative(data.mill_rate):
        raise ValidationError("Mill rate cannot be negative")


def _apply_output(row: MillOutput, data: MillOutputFields) -> None:
    row.recd_date = data.recd_date
    row.mill_bill_no = data.mill_bill_no.strip()
    row.finished_mtr = _dec(data.finished_mtr)
    row.mill_rate = _dec(data.mill_rate)
    row.quality_id = data.quality_id


def get_mill_output(db: Session, mill_output_id: int) -> MillOutput:
    row = db.get(MillOutput, mill_output_id)
    if not row:
        raise NotFoundError("Mill output not found")
    return row


def create_mill_output(db: Session, data: MillOutputCreate, *, caller: Caller,
                       recorder: ChangeRecorder) -> MillOutput:
    _check_output(data)
    order = _get_order(db, data.order_id)
    _check_quality(db, data.quality_id)

    row = MillOutput(order_id=order.id, order_no=order.order_no)
    _apply_output(row, data)
    db.add(row)
    db.commit()
    db.refresh(row)
    recorder.record_create("mill_output", row.id, sa_to_dict(row), caller)
    return row


def update_mill_output(db: Session, mill_output_id: int, data: MillOutputFields, *, caller: Caller,
                       recorder: ChangeRecorder) -> MillOutput:
    row = get_mill_output(db, mill_output_id)
    _check_output(data)
    _check_quality(db, data.quality_id)

    old = sa_to_dict(row)
    _apply_output(row, data)
    db.commit()
    db.refresh(row)
    recorder.record_update("mill_output", row.id, old, sa_to_dict(row), caller)
    return row


def delete_mill_output(db: Session, mill_output_id: int, *, caller: Caller, recorder: ChangeRecorder) -> None:
    row = get_mill_output(db, mill_output_id)
    snap = sa_to_dict(row)
    db.delete(row)
    db.commit()
    recorder.record_delete("mill_output", mill_output_id, snap, caller)


def list_mill_outputs(db: Session, *, page: int, limit: int, order_id: Optional[int] = None,
                      date_from: Optional[date] = None, date_to: Optional[date] = None):
    return _list(db, MillOutput, MillOutput.recd_date, page=page, limit=limit,
                 order_id=order_id, date_from=date_from, date_to=date_to)


# =========================================
# =============== Dispatches ==============
# =========================================

def _check_dispatch(data: DispatchFields) -> None:
    if not is_positive(data.finish_mtr):
        raise ValidationError("Valid finish meters is required")
    if data.sale_rate is not None and not is_non_negative(data.sale_rate):
        raise ValidationError("Sale rate cannot be negative")


def _apply_dispatch(row: Dispatch, data: DispatchFields) -> None:
    row.dispatch_date = data.dispatch_date
    row.bill_no = data.bill_no.strip()
    row.finish_mtr = _dec(data.finish_mtr)
    row.sale_rate = _dec(data.sale_rate or 0)
    # models._dispatch_total_value recomputes this again on flush
    row.total_value = row.finish_mtr * row.sale_rate
    row.quality_id = data.quality_id


def get_dispatch(db: Session, dispatch_id: int) -> Dispatch:
    row = db.get(Dispatch, dispatch_id)
    if not row:
        raise NotFoundError("Dispatch not found")
    return row


def create_dispatch(db: Session, data: DispatchCreate, *, caller: Caller, recorder: ChangeRecorder) -> Dispatch:
    _check_dispatch(data)
    order = _get_order(db, data.order_id)
    _check_quality(db, data.quality_id)

    row = Dispatch(order_id=order.id, order_no=order.order_no)
    _apply_dispatch(row, data)
    db.add(row)
    db.commit()
    db.refresh(row)
    recorder.record_create("dispatch", row.id, sa_to_dict(row), caller)
    return row


def update_dispatch(db: Session, dispatch_id: int, data: DispatchFields, *, caller: Caller,
                    recorder: ChangeRecorder) -> Dispatch:
    row = get_dispatch(db, dispatch_id)
    _check_dispatch(data)
    _check_quality(db, data.quality_id)

    old = sa_to_dict(row)
    _apply_dispatch(row, data)
    db.commit()
    db.refresh(row)
    recorder.record_update("dispatch", row.id, old, sa_to_dict(row), caller)
    return row


def delete_dispatch(db: Session, dispatch_id: int, *, caller: Caller, recorder: ChangeRecorder) -> None:
    row = get_dispatch(db, dispatch_id)
    snap = sa_to_dict(row)
    db.delete(row)
    db.commit()
    recorder.record_delete("dispatch", dispatch_id, snap, caller)


def list_dispatches(db: Session, *, page: int, limit: int, order_id: Optional[int] = None,
                    date_from: Optional[date] = None, date_to: Optional[date] = None):
    return _list(db, Dispatch, Dispatch.dispatch_date, page=page, limit=limit,
                 order_id=order_id, date_from=date_from, date_to=date_to)
