# services/references.py
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from exceptions import ConflictError
from logger import get_logger
from models import Mill, MillInput, Order, OrderItem, Party, Quality

log = get_logger("references")


def name_taken(db: Session, Model, name: str, *, exclude_id: Optional[int] = None,
               case_insensitive: bool = False) -> bool:
    q = db.query(Model.id)
    if case_insensitive:
        q = q.filter(func.lower(Model.name) == name.lower())
    else:
        q = q.filter(Model.name == name)
    if exclude_id is not None:
        q = q.filter(Model.id != exclude_id)
    return db.query(q.exists()).scalar()


# ---------- delete policies ----------
# Party: refuse while orders point at it.
# Mill: take its mill inputs with it.
# Quality: refuse while order items point at it.

def party_before_delete(db: Session, party: Party) -> dict:
    n = db.query(func.count(Order.id)).filter(Order.party_id == party.id).scalar() or 0
    if n:
        raise ConflictError(
            f'Cannot delete party "{party.name}" - it\'s being used in {n} order(s). '
            "Please remove or reassign those orders first.",
            code="PARTY_IN_USE",
            details={"order_count": n},
        )
    return {}


def mill_before_delete(db: Session, mill: Mill) -> dict:
    n = (
        db.query(MillInput)
        .filter(MillInput.mill_id == mill.id)
        .delete(synchronize_session=False)
    )
    if n:
        log.info("mill %s delete: removing %s mill input(s)", mill.id, n)
    return {"deleted_mill_inputs": n}


def quality_before_delete(db: Session, quality: Quality) -> dict:
    n = db.query(func.count(OrderItem.id)).filter(OrderItem.quality_id == quality.id).scalar() or 0
    if n:
        raise ConflictError(
            f'Cannot delete quality "{quality.name}" - it\'s being used in {n} order item(s).',
            code="QUALITY_IN_USE",
            details={"order_item_count": n},
        )
    return {}


def active_mills(db: Session) -> list[Mill]:
    return db.query(Mill).filter(Mill.is_active.is_(True)).order_by(Mill.name).all()
