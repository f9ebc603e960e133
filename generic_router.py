from typing import Callable, List, Optional, Sequence

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_caller
from exceptions import ConflictError, NotFoundError
from services.audit import Caller, ChangeRecorder, get_recorder
from services.references import name_taken
from utils.cache import TTLCache, get_read_cache
from utils.pagination import MAX_PAGE_SIZE, paginate
from utils.search import ilike_contains
from utils.snapshot import sa_to_dict, sa_update_from_dict


def make_crud_router(
    Model,
    prefix: str,
    *,
    resource: str,
    in_schema,
    out_schema,
    label: Optional[str] = None,
    list_order_by: Optional[Sequence] = None,
    unique_fields: Optional[List[str]] = None,
    case_insensitive: bool = False,
    search_fields: Optional[List[str]] = None,
    before_delete: Optional[Callable[[Session, object], Optional[dict]]] = None,
    cache_prefix: Optional[str] = None,
):
    """
    CRUD router for a reference entity:
    - GET    /{prefix}            : list (page/limit/q)
    - GET    /{prefix}/{id}       : get one
    - POST   /{prefix}            : create
    - PUT    /{prefix}/{id}       : full replace
    - DELETE /{prefix}/{id}       : delete (before_delete may refuse or cascade)
    Every write is audited under `resource`; `cache_prefix` keys are dropped on writes.
    """
    router = APIRouter(prefix=f"/{prefix}", tags=[prefix])
    label = label or resource

    def _get_or_404(db: Session, item_id: int):
        obj = db.get(Model, item_id)
        if not obj:
            raise NotFoundError(f"{label.capitalize()} not found")
        return obj

    def _check_unique(db: Session, data: dict, exclude_id: Optional[int] = None):
        for f in unique_fields or []:
            value = data.get(f)
            if value is None:
                continue
            if f == "name":
                taken = name_taken(db, Model, value, exclude_id=exclude_id, case_insensitive=case_insensitive)
            else:
                q = db.query(Model.id).filter(getattr(Model, f) == value)
                if exclude_id is not None:
                    q = q.filter(Model.id != exclude_id)
                taken = db.query(q.exists()).scalar()
            if taken:
                raise ConflictError(f"A {label} with this {f} already exists")

    def _commit(db: Session):
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # lost a race with a concurrent writer
            raise ConflictError(f"A {label} with this {', '.join(unique_fields or ['value'])} already exists")

    def _invalidate(cache: TTLCache):
        if cache_prefix:
            cache.invalidate(cache_prefix)

    # List
    @router.get("")
    def list_items(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
        q: Optional[str] = Query(None, description="Search (ilike)"),
        db: Session = Depends(get_db),
        cache: TTLCache = Depends(get_read_cache),
        caller: Caller = Depends(get_current_caller),
    ):
        def load():
            query = db.query(Model)
            if q and q.strip() and search_fields:
                term = q.strip()
                query = query.filter(or_(*[ilike_contains(getattr(Model, f), term) for f in search_fields]))
            if list_order_by is not None:
                query = query.order_by(*list_order_by)
            rows, meta = paginate(query, page, limit)
            return {
                "items": [out_schema.model_validate(r).model_dump(mode="json") for r in rows],
                "pagination": meta,
            }

        if cache_prefix:
            return cache.get_or_set(f"{cache_prefix}list:{page}:{limit}:{q or ''}", load)
        return load()

    # Get one
    @router.get("/{item_id}", response_model=out_schema)
    def get_item(item_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
        return _get_or_404(db, item_id)

    # Create
    @router.post("", response_model=out_schema, status_code=status.HTTP_201_CREATED)
    def create_item(
        payload: in_schema,
        db: Session = Depends(get_db),
        caller: Caller = Depends(get_current_caller),
        recorder: ChangeRecorder = Depends(get_recorder),
        cache: TTLCache = Depends(get_read_cache),
    ):
        data = payload.model_dump()
        _check_unique(db, data)

        obj = Model()
        sa_update_from_dict(obj, data)
        db.add(obj)
        _commit(db)
        db.refresh(obj)
        _invalidate(cache)
        recorder.record_create(resource, obj.id, sa_to_dict(obj), caller)
        return obj

    # Update (full replace)
    @router.put("/{item_id}", response_model=out_schema)
    def update_item(
        item_id: int,
        payload: in_schema,
        db: Session = Depends(get_db),
        caller: Caller = Depends(get_current_caller),
        recorder: ChangeRecorder = Depends(get_recorder),
        cache: TTLCache = Depends(get_read_cache),
    ):
        obj = _get_or_404(db, item_id)
        data = payload.model_dump()
        _check_unique(db, data, exclude_id=obj.id)

        old = sa_to_dict(obj)
        sa_update_from_dict(obj, data)
        _commit(db)
        db.refresh(obj)
        _invalidate(cache)
        recorder.record_update(resource, obj.id, old, sa_to_dict(obj), caller)
        return obj

    # Delete
    @router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_item(
        item_id: int,
        db: Session = Depends(get_db),
        caller: Caller = Depends(get_current_caller),
        recorder: ChangeRecorder = Depends(get_recorder),
        cache: TTLCache = Depends(get_read_cache),
    ):
        obj = _get_or_404(db, item_id)
        snapshot = sa_to_dict(obj)
        if before_delete:
            snapshot.update(before_delete(db, obj) or {})
        db.delete(obj)
        db.commit()
        _invalidate(cache)
        recorder.record_delete(resource, item_id, snapshot, caller)
        return None

    return router
