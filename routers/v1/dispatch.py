# routers/v1/dispatch.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from deps.auth import get_current_caller
from schemas import DispatchCreate, DispatchOut, DispatchPage, DispatchUpdate
from services import ledgers as svc
from services.audit import Caller, ChangeRecorder, get_recorder
from utils.pagination import MAX_PAGE_SIZE

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@router.get("", response_model=DispatchPage)
def list_dispatches(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    order_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    items, meta = svc.list_dispatches(db, page=page, limit=limit, order_id=order_id,
                                      date_from=date_from, date_to=date_to)
    return {"items": items, "pagination": meta}


@router.get("/{dispatch_id}", response_model=DispatchOut)
def get_dispatch(dispatch_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_current_caller)):
    return svc.get_dispatch(db, dispatch_id)


@router.post("", response_model=DispatchOut, status_code=status.HTTP_201_CREATED)
def create_dispatch(
    payload: DispatchCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.create_dispatch(db, payload, caller=caller, recorder=recorder)


@router.put("/{dispatch_id}", response_model=DispatchOut)
def update_dispatch(
    dispatch_id: int,
    payload: DispatchUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    return svc.update_dispatch(db, dispatch_id, payload, caller=caller, recorder=recorder)


@router.delete("/{dispatch_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dispatch(
    dispatch_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
    recorder: ChangeRecorder = Depends(get_recorder),
):
    svc.delete_dispatch(db, dispatch_id, caller=caller, recorder=recorder)
    return None
