# utils/sequencer.py
import re

from sqlalchemy import text, select
from sqlalchemy.orm import Session

from models import DocCounter, Order

ORDER_PREFIX = "ORD-"


def _max_existing_order_seq(db: Session) -> int:
    """Highest ORD-<n> already stored; seeds a fresh counter row."""
    pat = re.compile(rf"^{re.escape(ORDER_PREFIX)}(\d+)$")
    max_n = 0
    for (code,) in db.query(Order.order_no).filter(Order.order_no.like(f"{ORDER_PREFIX}%")).all():
        m = pat.match(code or "")
        if m:
            max_n = max(max_n, int(m.group(1)))
    return max_n


def next_seq(db: Session, doc_type: str, year: int = 0) -> int:
    """Atomically bump the counter for doc_type/year and return the new value."""
    dialect = db.bind.dialect.name

    if dialect == "postgresql":
        return db.execute(
            text("""
            INSERT INTO doc_counters (doc_type, year, seq)
            VALUES (:t, :y, 1)
            ON CONFLICT (doc_type, year)
            DO UPDATE SET seq = doc_counters.seq + 1
            RETURNING seq
            """),
            {"t": doc_type, "y": year},
        ).scalar_one()

    # generic path: row lock where supported (sqlite serializes writers anyway)
    q = (
        select(DocCounter)
        .where(DocCounter.doc_type == doc_type, DocCounter.year == year)
        .with_for_update()
    )
    row = db.execute(q).scalar_one_or_none()
    if row is None:
        row = DocCounter(doc_type=doc_type, year=year, seq=1)
        db.add(row)
    else:
        row.seq += 1
    db.flush()
    return row.seq


def next_order_no(db: Session, resync: bool = False) -> str:
    """ORD-01, ORD-02, ... ORD-100. Gaps are fine, reuse is not."""
    seq = next_seq(db, "ORD")
    floor = _max_existing_order_seq(db) if (seq == 1 or resync) else 0
    if seq <= floor:
        # counter lagging behind imported/restored rows: jump past them
        row = db.get(DocCounter, ("ORD", 0))
        if row is not None:
            row.seq = floor + 1
            db.flush()
        seq = floor + 1
    return f"{ORDER_PREFIX}{seq:02d}"


def reset_seq(db: Session, doc_type: str, year: int = 0) -> int:
    """Put the counter back to 0 and return what it was. The caller commits."""
    row = db.get(DocCounter, (doc_type, year))
    if row is None:
        return 0
    previous = row.seq
    row.seq = 0
    db.flush()
    return previous
