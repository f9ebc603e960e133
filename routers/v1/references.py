# routers/v1/references.py
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_caller
from generic_router import make_crud_router
from models import Mill, Party, Process, Quality
from schemas import (
    MillIn, MillOut,
    PartyIn, PartyOut,
    ProcessIn, ProcessOut,
    QualityIn, QualityOut,
)
from services import references as svc
from services.audit import Caller
from utils.cache import TTLCache, get_read_cache

party_router = make_crud_router(
    Party, "parties",
    resource="party",
    in_schema=PartyIn,
    out_schema=PartyOut,
    list_order_by=(Party.name,),
    unique_fields=["name"],
    case_insensitive=True,
    search_fields=["name", "contact_name"],
    before_delete=svc.party_before_delete,
)

mill_router = make_crud_router(
    Mill, "mills",
    resource="mill",
    in_schema=MillIn,
    out_schema=MillOut,
    list_order_by=(Mill.name,),
    unique_fields=["name"],
    search_fields=["name", "contact_person"],
    before_delete=svc.mill_before_delete,
    cache_prefix="mills:",
)

quality_router = make_crud_router(
    Quality, "qualities",
    resource="quality",
    in_schema=QualityIn,
    out_schema=QualityOut,
    list_order_by=(Quality.name,),
    unique_fields=["name"],
    search_fields=["name", "description"],
    before_delete=svc.quality_before_delete,
)

process_router = make_crud_router(
    Process, "processes",
    resource="process",
    in_schema=ProcessIn,
    out_schema=ProcessOut,
    list_order_by=(Process.priority.desc(), Process.name),
    unique_fields=["name"],
    case_insensitive=True,
    search_fields=["name", "description"],
    cache_prefix="processes:",
)

# must be included before mill_router so /mills/active is not read as /mills/{id}
mill_lookup_router = APIRouter(prefix="/mills", tags=["mills"])


@mill_lookup_router.get("/active", response_model=List[MillOut])
def list_active_mills(
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_read_cache),
    caller: Caller = Depends(get_current_caller),
):
    return cache.get_or_set(
        "mills:active",
        lambda: [MillOut.model_validate(m).model_dump(mode="json") for m in svc.active_mills(db)],
    )
