# services/mill_inputs.py
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from exceptions import ConflictError, NotFoundError, ValidationError
from models import Mill, MillInput, MillInputAdditional, Order, Quality
from schemas import MillInputCreate, MillInputFields, MillInputUpdate
from services.audit import Caller, ChangeRecorder
from utils.numbers import is_positive
from utils.pagination import paginate
from utils.snapshot import sa_to_dict

CHALAN_CONFLICT_MSG = "Chalan number already exists for this order"


def _check_numbers(data: MillInputFields) -> None:
    if not is_positive(data.greigh_mtr):
        raise ValidationError("Valid greigh meters is required")
    if not is_positive(data.pcs):
        raise ValidationError("Valid number of pieces is required")
    for i, extra in enumerate(data.additional_meters):
        if not is_positive(extra.greigh_mtr):
            raise ValidationError(f"Valid greigh meters is required for additional entry {i + 1}")
        if not is_positive(extra.pcs):
            raise ValidationError(f"Valid number of pieces is required for additional entry {i + 1}")


def _check_refs(db: Session, data: MillInputFields) -> None:
    if not db.get(Mill, data.mill_id):
        raise NotFoundError("Mill not found")
    if data.quality_id is not None and not db.get(Quality, data.quality_id):
        raise NotFoundError("Quality not found")
    for i, extra in enumerate(data.additional_meters):
        if extra.quality_id is not None and not db.get(Quality, extra.quality_id):
            raise NotFoundError(f"Quality not found for additional entry {i + 1}")


def _check_chalan(db: Session, order_id: int, chalan_no: str, exclude_id: Optional[int] = None) -> None:
    q = db.query(MillInput.id).filter(MillInput.order_id == order_id, MillInput.chalan_no == chalan_no)
    if exclude_id is not None:
        q = q.filter(MillInput.id != exclude_id)
    if db.query(q.exists()).scalar():
        raise ConflictError(CHALAN_CONFLICT_MSG, code="CHALAN_CONFLICT")


def _apply(row: MillInput, data: MillInputFields) -> None:
    row.mill_id = data.mill_id
    row.mill_date = data.mill_date
    row.chalan_no = data.chalan_no
    row.greigh_mtr = Decimal(str(data.greigh_mtr))
    row.pcs = data.pcs
    row.quality_id = data.quality_id
    row.process_name = data.process_name
    row.notes = data.notes
    row.additional_meters = [
        MillInputAdditional(
            position=i,
            greigh_mtr=Decimal(str(extra.greigh_mtr)),
            pcs=extra.pcs,
            quality_id=extra.quality_id,
            process_name=extra.process_name,
            notes=extra.notes,
        )
        for i, extra in enumerate(data.additional_meters)
    ]


def snapshot(row: MillInput) -> dict:
    data = sa_to_dict(row)
    data["additional_meters"] = [sa_to_dict(a, exclude=("id", "mill_input_id")) for a in row.additional_meters]
    return data


def _is_chalan_violation(exc: IntegrityError) -> bool:
    # postgres names the constraint, sqlite only lists its columns
    msg = str(exc.orig)
    return "uq_mill_inputs_order_chalan" in msg or "mill_inputs.chalan_no" in msg


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_chalan_violation(exc):
            raise ConflictError(CHALAN_CONFLICT_MSG, code="CHALAN_CONFLICT") from exc
        raise


def get_mill_input(db: Session, mill_input_id: int) -> MillInput:
    row = (
        db.query(MillInput)
        .options(
            joinedload(MillInput.mill),
            joinedload(MillInput.quality),
            selectinload(MillInput.additional_meters).joinedload(MillInputAdditional.quality),
        )
        .filter(MillInput.id == mill_input_id)
        .first()
    )
    if not row:
        raise NotFoundError("Mill input not found")
    return row


def create_mill_input(db: Session, data: MillInputCreate, *, caller: Caller,
                      recorder: ChangeRecorder) -> MillInput:
    _check_numbers(data)
    order = db.get(Order, data.order_id)
    if not order:
        raise NotFoundError("Order not found")
    _check_refs(db, data)
    _check_chalan(db, order.id, data.chalan_no)

    # always a new ledger row, even for a repeated order/mill pair
    row = MillInput(order_id=order.id, order_no=order.order_no)
    _apply(row, data)
    db.add(row)
    _commit(db)

    row = get_mill_input(db, row.id)
    recorder.record_create("mill_input", row.id, snapshot(row), caller)
    return row


def update_mill_input(db: Session, mill_input_id: int, data: MillInputUpdate, *, caller: Caller,
                      recorder: ChangeRecorder) -> MillInput:
    row = get_mill_input(db, mill_input_id)
    _check_numbers(data)
    _check_refs(db, data)
    _check_chalan(db, row.order_id, data.chalan_no, exclude_id=row.id)

    old = snapshot(row)
    old_chalan = row.chalan_no
    _apply(row, data)
    _commit(db)

    db.expire_all()
    row = get_mill_input(db, mill_input_id)
    recorder.record_update(
        "mill_input", row.id, old, snapshot(row), caller,
        extra={"old_chalan_no": old_chalan, "new_chalan_no": row.chalan_no, "order_no": row.order_no},
    )
    return row


def delete_mill_input(db: Session, mill_input_id: int, *, caller: Caller, recorder: ChangeRecorder) -> None:
    row = get_mill_input(db, mill_input_id)
    snap = snapshot(row)
    db.delete(row)
    db.commit()
    recorder.record_delete("mill_input", mill_input_id, snap, caller)


def list_mill_inputs(
    db: Session,
    *,
    page: int,
    limit: int,
    order_id: Optional[int] = None,
    mill_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
):
    query = db.query(MillInput).options(
        joinedload(MillInput.mill),
        joinedload(MillInput.quality),
        selectinload(MillInput.additional_meters).joinedload(MillInputAdditional.quality),
    )
    if order_id:
        query = query.filter(MillInput.order_id == order_id)
    if mill_id:
        query = query.filter(MillInput.mill_id == mill_id)
    if date_from:
        query = query.filter(MillInput.mill_date >= date_from)
    if date_to:
        query = query.filter(MillInput.mill_date <= date_to)
    query = query.order_by(MillInput.mill_date.desc(), MillInput.id.desc())
    return paginate(query, page, limit)
