# services/orders.py
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from logger import get_logger
from models import Dispatch, Lab, MillInput, MillOutput, Order, OrderItem, Party, Quality
from schemas import OrderIn
from services.audit import Caller, ChangeRecorder
from utils.numbers import is_positive
from utils.pagination import paginate
from utils.search import ilike_contains
from utils.sequencer import ORDER_PREFIX, next_order_no, reset_seq

log = get_logger("orders")

DUPLICATE_ORDER_MSG = "An order with this PO number and style number already exists for this party"

# pending -> delivered is the only way forward
ORDER_TRANSITIONS = {"pending": {"delivered"}, "delivered": set()}


def get_order(db: Session, order_id: int) -> Order:
    order = (
        db.query(Order)
        .options(joinedload(Order.party), selectinload(Order.items).joinedload(OrderItem.quality))
        .filter(Order.id == order_id)
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_by_no(db: Session, order_no: str) -> Order:
    order = (
        db.query(Order)
        .options(joinedload(Order.party), selectinload(Order.items).joinedload(OrderItem.quality))
        .filter(Order.order_no == order_no.strip().upper())
        .first()
    )
    if not order:
        raise NotFoundError("Order not found")
    return order


def order_summary(order: Order) -> dict:
    return {
        "order_no": order.order_no,
        "order_type": order.order_type,
        "party_id": order.party_id,
        "party_name": order.party.name if order.party else None,
        "po_number": order.po_number,
        "style_no": order.style_no,
        "status": order.status,
        "arrival_date": order.arrival_date.isoformat() if order.arrival_date else None,
        "delivery_date": order.delivery_date.isoformat() if order.delivery_date else None,
        "items_count": len(order.items),
        "items": [
            {"id": it.id, "quality_id": it.quality_id, "quantity": float(it.quantity), "description": it.description}
            for it in order.items
        ],
    }


def _validate(db: Session, data: OrderIn) -> None:
    if not data.items:
        raise ValidationError("At least one item is required")
    for i, item in enumerate(data.items):
        if not is_positive(item.quantity):
            raise ValidationError(f"Quantity must be greater than 0 for item {i + 1}")

    if not db.get(Party, data.party_id):
        raise NotFoundError("Party not found")
    for i, item in enumerate(data.items):
        if item.quality_id is not None and not db.get(Quality, item.quality_id):
            raise NotFoundError(f"Quality not found for item {i + 1}")


def _check_duplicate(db: Session, data: OrderIn, exclude_id: Optional[int] = None) -> None:
    if not (data.po_number and data.style_no):
        return
    q = db.query(Order.id).filter(
        Order.party_id == data.party_id,
        Order.po_number == data.po_number,
        Order.style_no == data.style_no,
    )
    if exclude_id is not None:
        q = q.filter(Order.id != exclude_id)
    if db.query(q.exists()).scalar():
        raise ConflictError(DUPLICATE_ORDER_MSG, code="DUPLICATE_ORDER")


def _apply_fields(order: Order, data: OrderIn) -> None:
    order.order_type = data.order_type
    order.arrival_date = data.arrival_date
    order.delivery_date = data.delivery_date
    order.po_date = data.po_date
    order.po_number = data.po_number
    order.style_no = data.style_no
    order.contact_name = data.contact_name
    order.contact_phone = data.contact_phone
    order.party_id = data.party_id


def create_order(db: Session, data: OrderIn, *, caller: Caller, recorder: ChangeRecorder) -> Order:
    _validate(db, data)
    _check_duplicate(db, data)

    for attempt in range(3):
        order = Order(order_no=next_order_no(db, resync=attempt > 0), status="pending")
        _apply_fields(order, data)
        order.items = [
            OrderItem(
                position=i,
                quality_id=it.quality_id,
                quantity=Decimal(str(it.quantity)),
                description=it.description,
                image_urls=list(it.image_urls),
            )
            for i, it in enumerate(data.items)
        ]
        db.add(order)
        try:
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            _check_duplicate(db, data)  # concurrent twin -> Conflict
            log.warning("order number collision on %s, retrying", order.order_no)
    else:
        raise InternalError("Could not allocate an order number, please retry")

    order = get_order(db, order.id)
    recorder.record_create("order", order.id, order_summary(order), caller)
    return order


def update_order(db: Session, order_id: int, data: OrderIn, *, caller: Caller,
                 recorder: ChangeRecorder) -> Order:
    order = get_order(db, order_id)
    _validate(db, data)
    _check_duplicate(db, data, exclude_id=order.id)

    existing = {it.id: it for it in order.items}
    seen = set()
    for it in data.items:
        if it.id is None:
            continue
        if it.id not in existing:
            raise ValidationError(f"Item {it.id} does not belong to this order")
        if it.id in seen:
            raise ValidationError(f"Item {it.id} appears more than once")
        seen.add(it.id)

    old = order_summary(order)
    _apply_fields(order, data)

    items = []
    for i, it in enumerate(data.items):
        row = existing.get(it.id) if it.id is not None else None
        if row is None:
            row = OrderItem()
        row.position = i
        row.quality_id = it.quality_id
        row.quantity = Decimal(str(it.quantity))
        row.description = it.description
        row.image_urls = list(it.image_urls)
        items.append(row)
    order.items = items  # items left out are delete-orphaned

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_ORDER_MSG, code="DUPLICATE_ORDER")

    db.expire_all()
    order = get_order(db, order_id)
    recorder.record_update("order", order.id, old, order_summary(order), caller)
    return order


def set_order_status(db: Session, order_id: int, status: str, *, caller: Caller,
                     recorder: ChangeRecorder) -> Order:
    order = get_order(db, order_id)
    current = order.status
    if status == current:
        return order
    if status not in ORDER_TRANSITIONS.get(current, set()):
        raise ValidationError(
            f"Cannot change order status from {current} to {status}", code="INVALID_TRANSITION"
        )
    order.status = status
    db.commit()
    recorder.record_status_change("order", order.id, current, status, caller)
    return get_order(db, order_id)


def delete_order(db: Session, order_id: int, *, caller: Caller, recorder: ChangeRecorder) -> dict:
    order = get_order(db, order_id)

    # capture before the row (and its cascaded ledgers) disappear
    snapshot = order_summary(order)
    snapshot["dependents"] = {
        "mill_inputs": db.query(func.count(MillInput.id)).filter(MillInput.order_id == order.id).scalar(),
        "mill_outputs": db.query(func.count(MillOutput.id)).filter(MillOutput.order_id == order.id).scalar(),
        "dispatches": db.query(func.count(Dispatch.id)).filter(Dispatch.order_id == order.id).scalar(),
        "labs": db.query(func.count(Lab.id)).filter(Lab.order_id == order.id).scalar(),
    }

    # labs keep their rows for history, ledgers cascade with the order
    live_labs = db.query(Lab).filter(Lab.order_id == order.id, Lab.soft_deleted.is_(False)).all()
    for lab in live_labs:
        lab.soft_deleted = True
    snapshot["dependents"]["labs_soft_deleted"] = [lab.id for lab in live_labs]

    db.delete(order)
    db.commit()
    recorder.record_delete("order", order_id, snapshot, caller)
    return snapshot


def reset_order_counter(db: Session, *, caller: Caller, recorder: ChangeRecorder) -> dict:
    """Only allowed on an empty order book, so a number is never handed out twice."""
    existing = db.query(func.count(Order.id)).scalar()
    if existing:
        raise ValidationError(
            "Cannot reset counter when orders exist. Delete all orders first.",
            code="ORDERS_EXIST",
            details={"order_count": existing},
        )
    previous = reset_seq(db, "ORD")
    db.commit()
    recorder.record_update("order_counter", "ORD", {"seq": previous}, {"seq": 0}, caller)
    log.info("order counter reset from %s by %s", previous, caller.username)
    return {
        "message": f"Order counter reset successfully. Next order will be {ORDER_PREFIX}01",
        "previous_seq": previous,
    }


def list_orders(
    db: Session,
    *,
    page: int,
    limit: int,
    q: Optional[str] = None,
    status: Optional[str] = None,
    order_type: Optional[str] = None,
    party_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
):
    query = db.query(Order).options(
        joinedload(Order.party), selectinload(Order.items).joinedload(OrderItem.quality)
    )
    if q and q.strip():
        term = q.strip()
        query = query.filter(or_(
            ilike_contains(Order.order_no, term),
            ilike_contains(Order.po_number, term),
            ilike_contains(Order.style_no, term),
        ))
    if status:
        query = query.filter(Order.status == status)
    if order_type:
        query = query.filter(Order.order_type == order_type)
    if party_id:
        query = query.filter(Order.party_id == party_id)
    if date_from:
        query = query.filter(Order.arrival_date >= date_from)
    if date_to:
        query = query.filter(Order.arrival_date <= date_to)
    query = query.order_by(Order.id.desc())
    return paginate(query, page, limit)
