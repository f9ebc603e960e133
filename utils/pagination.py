# utils/pagination.py
from typing import Tuple

MAX_PAGE_SIZE = 100


def page_meta(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "current_page": page,
        "total_pages": pages,
        "total_count": total,
        "has_next_page": page < pages,
        "has_prev_page": page > 1,
    }


def paginate(query, page: int, limit: int) -> Tuple[list, dict]:
    """Offset pagination over a SQLAlchemy query -> (items, pagination meta)."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, page_meta(page, limit, total)
