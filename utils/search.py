# utils/search.py
def _like_escape(term: str) -> str:
    esc = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{esc}%"


def ilike_contains(column, term: str):
    """Case-insensitive substring match; % and _ in term match literally."""
    return column.ilike(_like_escape(term), escape="\\")
