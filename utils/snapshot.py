# utils/snapshot.py
from fastapi.encoders import jsonable_encoder
from sqlalchemy.inspection import inspect


def sa_to_dict(obj, exclude=("created_at", "updated_at")):
    """SQLAlchemy object -> JSON-safe dict of its columns (audit snapshots)."""
    if obj is None:
        return None
    mapper = inspect(obj.__class__)
    data = {}
    for col in mapper.columns:
        if col.key in exclude:
            continue
        data[col.key] = getattr(obj, col.key)
    return jsonable_encoder(data)


def sa_update_from_dict(obj, data: dict, allow_fields=None):
    """Copy keys from data onto obj (optionally limited to allow_fields)."""
    if allow_fields is None:
        allow_fields = data.keys()
    for k in allow_fields:
        if k in data:
            setattr(obj, k, data[k])
    return obj


def changed_fields(old: dict, new: dict) -> list[str]:
    keys = sorted(set(old) | set(new))
    return [k for k in keys if old.get(k) != new.get(k)]
