# routers/v1/labs.py
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_caller
from schemas import LabCreate, LabOut, LabPage, LabSeedIn, LabSeedOut, LabUpdate
from services import labs as svc
from services.audit import Caller, ChangeRecorder, get_recorder
from utils.pagination import MAX_PAGE_SIZE

router = APIRouter(prefix="/labs", tags=["labs"])


@router.get("", response_model=LabPage)
def list_labs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    q: Optional[str] = Query(None, description="Search lab send number / remarks"),
    order_id: Optional[int] = None,
    status: Optional[Literal["sent", "received", "cancelled"]] = None,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    items, meta = svc.list_labs(db, page=page, limit=limit, q=q, order_id=order_id, status=status,
                                include_deleted=include_deleted)
    return {"items": items, "pagination": meta}


@router.get("/by-order/{order_id}", response_model=List[LabOut])
def list_labs_for_order(
    order_id: int,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    return svc.labs_for_order(db, order_id, include_deleted=include_deleted)


@router.post("/seed-from-order/{order_id}", response_model=LabSeedOut)
def seed_labs_from_order(
    order_id: int,
    payload: LabSeedIn,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.seed_labs_from_order(db, order_id, payload, caller=caller, recorder=recorder)


@router.delete("/by-order/{order_id}")
def delete_labs_for_order(
    order_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    n = svc.soft_delete_labs_for_order(db, order_id, caller=caller, recorder=recorder)
    return {"message": f"Deleted {n} lab(s)", "deleted_count": n}


@router.get("/{lab_id}", response_model=LabOut)
def get_lab(lab_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    return svc.get_lab(db, lab_id)


@router.post("", response_model=LabOut, status_code=status.HTTP_201_CREATED)
def create_lab(
    payload: LabCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.create_lab(db, payload, caller=caller, recorder=recorder)


@router.put("/{lab_id}", response_model=LabOut)
def update_lab(
    lab_id: int,
    payload: LabUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.update_lab(db, lab_id, payload, caller=caller, recorder=recorder)


@router.delete("/{lab_id}")
def delete_lab(
    lab_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    svc.soft_delete_lab(db, lab_id, caller=caller, recorder=recorder)
    return {"message": "Lab deleted", "id": lab_id}
