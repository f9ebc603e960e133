# routers/v1/mill_inputs.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_caller
from schemas import MillInputCreate, MillInputOut, MillInputPage, MillInputUpdate
from services import mill_inputs as svc
from services.audit import Caller, ChangeRecorder, get_recorder
from utils.pagination import MAX_PAGE_SIZE

router = APIRouter(prefix="/mill-inputs", tags=["mill-inputs"])


@router.get("", response_model=MillInputPage)
def list_mill_inputs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    order_id: Optional[int] = None,
    mill_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    items, meta = svc.list_mill_inputs(
        db, page=page, limit=limit, order_id=order_id, mill_id=mill_id, date_from=date_from, date_to=date_to,
    )
    return {"items": items, "pagination": meta}


@router.get("/{mill_input_id}", response_model=MillInputOut)
def get_mill_input(mill_input_id: int, db: Session = Depends(get_db),
                   caller: Caller = Depends(get_current_caller)):
    return svc.get_mill_input(db, mill_input_id)


@router.post("", response_model=MillInputOut, status_code=status.HTTP_201_CREATED)
def create_mill_input(
    payload: MillInputCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.create_mill_input(db, payload, caller=caller, recorder=recorder)


@router.put("/{mill_input_id}", response_model=MillInputOut)
def update_mill_input(
    mill_input_id: int,
    payload: MillInputUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.update_mill_input(db, mill_input_id, payload, caller=caller, recorder=recorder)


@router.delete("/{mill_input_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_mill_input(
    mill_input_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    svc.delete_mill_input(db, mill_input_id, caller=caller, recorder=recorder)
    return None
