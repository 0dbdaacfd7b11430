from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from partsledger.auth import INVENTORY_MANAGERS, STOCK_MOVERS, Principal, Role, require_role
from partsledger.db import get_db
from partsledger.schemas import (
    CycleCountApproval,
    CycleCountCreate,
    CycleCountLineOut,
    CycleCountLineUpdate,
    CycleCountOut,
)
from partsledger.services.cycle_count_service import (
    approve_cycle_count,
    create_cycle_count,
    get_cycle_count_detail,
    record_count,
    submit_cycle_count,
)

router = APIRouter(prefix='/api/cycle-counts', tags=['cycle-counts'])


def _count_out(db: Session, count_id: int) -> CycleCountOut:
    detail = get_cycle_count_detail(db, count_id=count_id)
    out = CycleCountOut.model_validate(detail['count'])
    out.lines = [CycleCountLineOut.model_validate(line) for line in detail['lines']]
    return out


@router.post('', response_model=CycleCountOut, status_code=status.HTTP_201_CREATED)
def new_cycle_count(
    payload: CycleCountCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    count = create_cycle_count(
        db,
        location_id=payload.location_id,
        part_ids=payload.part_ids,
        category=payload.category,
        created_by=principal.id,
    )
    db.commit()
    return _count_out(db, count.id)


@router.get('/{count_id}', response_model=CycleCountOut)
def cycle_count_detail(
    count_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*STOCK_MOVERS, Role.TECHNICIAN)),
):
    return _count_out(db, count_id)


@router.put('/{count_id}/lines/{line_id}', response_model=CycleCountOut)
def enter_count(
    count_id: int,
    line_id: int,
    payload: CycleCountLineUpdate,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*STOCK_MOVERS, Role.TECHNICIAN)),
):
    record_count(db, count_id=count_id, line_id=line_id, counted_qty=payload.counted_qty, notes=payload.notes)
    db.commit()
    return _count_out(db, count_id)


@router.post('/{count_id}/submit', response_model=CycleCountOut)
def submit_count(
    count_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*STOCK_MOVERS, Role.TECHNICIAN)),
):
    submit_cycle_count(db, count_id=count_id)
    db.commit()
    return _count_out(db, count_id)


@router.post('/{count_id}/approve', response_model=CycleCountApproval)
def approve_count(
    count_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    posted = approve_cycle_count(db, count_id=count_id, approved_by=principal.id)
    db.commit()
    detail = get_cycle_count_detail(db, count_id=count_id)
    return CycleCountApproval(id=count_id, status=detail['count'].status, variances_posted=posted)
