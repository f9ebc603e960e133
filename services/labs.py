# services/labs.py
"""
Lab workflow: one live lab per order item, status sent -> received | cancelled,
soft delete only. Seeding walks an order's items and is safe to re-run: what is
already done is read back from the live lab rows, nothing else.
"""
from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exceptions import ConflictError, NotFoundError, ValidationError
from logger import get_logger
from models import Lab, Order
from schemas import LabCreate, LabSeedIn, LabUpdate
from services.audit import Caller, ChangeRecorder
from utils.pagination import paginate
from utils.search import ilike_contains
from utils.snapshot import sa_to_dict

log = get_logger("labs")

LAB_EXISTS_MSG = "A lab already exists for this order item"

LAB_TRANSITIONS = {"sent": {"received", "cancelled"}, "received": set(), "cancelled": set()}


def _get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def _check_item(order: Order, order_item_id: int) -> None:
    if order_item_id not in {it.id for it in order.items}:
        raise NotFoundError("Order item not found in this order")


def active_lab(db: Session, order_id: int, order_item_id: int) -> Optional[Lab]:
    return (
        db.query(Lab)
        .filter(Lab.order_id == order_id, Lab.order_item_id == order_item_id, Lab.soft_deleted.is_(False))
        .first()
    )


def get_lab(db: Session, lab_id: int, include_deleted: bool = False) -> Lab:
    lab = db.get(Lab, lab_id)
    if not lab or (lab.soft_deleted and not include_deleted):
        raise NotFoundError("Lab not found")
    return lab


def create_lab(db: Session, data: LabCreate, *, caller: Caller, recorder: ChangeRecorder) -> Lab:
    order = _get_order(db, data.order_id)
    _check_item(order, data.order_item_id)
    if active_lab(db, order.id, data.order_item_id):
        raise ConflictError(LAB_EXISTS_MSG, code="LAB_EXISTS")

    lab = Lab(
        order_id=order.id,
        order_item_id=data.order_item_id,
        lab_send_date=data.lab_send_date,
        lab_send_number=data.lab_send_number.strip(),
        lab_send_data=data.lab_send_data.model_dump(mode="json", exclude_none=True),
        remarks=data.remarks,
        status="sent",
    )
    db.add(lab)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # uq_labs_active_order_item: a concurrent create won
        raise ConflictError(LAB_EXISTS_MSG, code="LAB_EXISTS")
    db.refresh(lab)
    recorder.record_create("lab", lab.id, sa_to_dict(lab), caller)
    return lab


def update_lab(db: Session, lab_id: int, data: LabUpdate, *, caller: Caller, recorder: ChangeRecorder) -> Lab:
    lab = get_lab(db, lab_id)
    if data.order_id is not None and data.order_id != lab.order_id:
        raise ValidationError("Order cannot be changed for an existing lab")
    if data.order_item_id is not None and data.order_item_id != lab.order_item_id:
        raise ValidationError("Order item cannot be changed for an existing lab")

    if data.status is not None and data.status != lab.status:
        if data.status not in LAB_TRANSITIONS.get(lab.status, set()):
            raise ValidationError(
                f"Cannot change lab status from {lab.status} to {data.status}", code="INVALID_TRANSITION"
            )

    old = sa_to_dict(lab)
    if data.lab_send_date is not None:
        lab.lab_send_date = data.lab_send_date
    if data.lab_send_number is not None:
        lab.lab_send_number = data.lab_send_number.strip()
    if data.lab_send_data is not None:
        lab.lab_send_data = data.lab_send_data.model_dump(mode="json", exclude_none=True)
    if data.received_date is not None:
        lab.received_date = data.received_date
    if data.remarks is not None:
        lab.remarks = data.remarks
    if data.status is not None:
        lab.status = data.status
        if data.status == "received" and lab.received_date is None:
            lab.received_date = date.today()

    db.commit()
    db.refresh(lab)
    recorder.record_update("lab", lab.id, old, sa_to_dict(lab), caller)
    return lab


def soft_delete_lab(db: Session, lab_id: int, *, caller: Caller, recorder: ChangeRecorder) -> Lab:
    lab = get_lab(db, lab_id)
    snap = sa_to_dict(lab)
    lab.soft_deleted = True
    db.commit()
    recorder.record_delete("lab", lab.id, snap, caller)
    return lab


def soft_delete_labs_for_order(db: Session, order_id: int, *, caller: Caller, recorder: ChangeRecorder) -> int:
    order = _get_order(db, order_id)
    labs = db.query(Lab).filter(Lab.order_id == order.id, Lab.soft_deleted.is_(False)).all()
    for lab in labs:
        lab.soft_deleted = True
    db.commit()
    recorder.record_delete(
        "lab", None,
        {"order_id": order.id, "order_no": order.order_no, "lab_ids": [lab.id for lab in labs],
         "deleted_count": len(labs)},
        caller,
    )
    return len(labs)


def seed_labs_from_order(db: Session, order_id: int, data: LabSeedIn, *, caller: Caller,
                         recorder: ChangeRecorder) -> dict:
    order = _get_order(db, order_id)
    items = list(order.items)
    if not items:
        raise ValidationError("Order has no items")

    created, skipped = 0, 0
    labs: list[Lab] = []
    for i, item in enumerate(items):
        number = f"{data.prefix}{order.order_no}-{data.start_index + i}"
        existing = active_lab(db, order.id, item.id)

        if existing and not data.override_existing:
            skipped += 1
            labs.append(existing)
            continue

        if existing:
            # overwrite in place, same id
            old = sa_to_dict(existing)
            existing.lab_send_date = data.lab_send_date
            existing.lab_send_number = number
            db.commit()
            db.refresh(existing)
            recorder.record_update("lab", existing.id, old, sa_to_dict(existing), caller,
                                   extra={"seeded": True})
            created += 1
            labs.append(existing)
            continue

        lab = Lab(
            order_id=order.id,
            order_item_id=item.id,
            lab_send_date=data.lab_send_date,
            lab_send_number=number,
            lab_send_data={},
            status="sent",
        )
        # one commit per item so a crash leaves a resumable prefix
        db.add(lab)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            log.info("seed %s item %s: lab created concurrently, skipping", order.order_no, item.id)
            skipped += 1
            winner = active_lab(db, order.id, item.id)
            if winner:
                labs.append(winner)
            continue
        db.refresh(lab)
        recorder.record_create("lab", lab.id, {**sa_to_dict(lab), "seeded": True}, caller)
        created += 1
        labs.append(lab)

    return {
        "message": f"Created {created} lab(s), skipped {skipped}",
        "created_count": created,
        "skipped_count": skipped,
        "labs": labs,
        "order": {"id": order.id, "order_no": order.order_no, "items_count": len(items)},
    }


def labs_for_order(db: Session, order_id: int, include_deleted: bool = False) -> list[Lab]:
    _get_order(db, order_id)
    q = db.query(Lab).filter(Lab.order_id == order_id)
    if not include_deleted:
        q = q.filter(Lab.soft_deleted.is_(False))
    return q.order_by(Lab.order_item_id, Lab.id).all()


def list_labs(
    db: Session,
    *,
    page: int,
    limit: int,
    q: Optional[str] = None,
    order_id: Optional[int] = None,
    status: Optional[str] = None,
    include_deleted: bool = False,
):
    query = db.query(Lab)
    if not include_deleted:
        query = query.filter(Lab.soft_deleted.is_(False))
    if order_id:
        query = query.filter(Lab.order_id == order_id)
    if status:
        query = query.filter(Lab.status == status)
    if q and q.strip():
        term = q.strip()
        query = query.filter(or_(ilike_contains(Lab.lab_send_number, term), ilike_contains(Lab.remarks, term)))
    query = query.order_by(Lab.created_at.desc(), Lab.id.desc())
    return paginate(query, page, limit)
