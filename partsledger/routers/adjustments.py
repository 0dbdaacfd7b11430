from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsledger.auth import INVENTORY_MANAGERS, STOCK_MOVERS, WORK_ORDER_ROLES, Principal, require_role
from partsledger.db import get_db
from partsledger.models import AdjustmentStatus
from partsledger.schemas import AdjustmentCreate, AdjustmentOut, AdjustmentUpdate
from partsledger.services.adjustment_service import (
    create_adjustment,
    get_adjustment,
    list_adjustments,
    post_adjustment,
    update_adjustment,
)

router = APIRouter(prefix='/api/adjustments', tags=['adjustments'])


@router.get('', response_model=list[AdjustmentOut])
def adjustments(
    location_id: int = Query(alias='locationId'),
    adjustment_status: AdjustmentStatus | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return list_adjustments(db, location_id=location_id, status=adjustment_status)


@router.get('/{adjustment_id}', response_model=AdjustmentOut)
def adjustment_detail(
    adjustment_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return get_adjustment(db, adjustment_id=adjustment_id)


@router.post('', response_model=AdjustmentOut, status_code=status.HTTP_201_CREATED)
def draft_adjustment(
    payload: AdjustmentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    adjustment = create_adjustment(
        db,
        location_id=payload.location_id,
        part_id=payload.part_id,
        adjustment_type=payload.adjustment_type,
        reason_code=payload.reason_code,
        set_to_qty=payload.set_to_qty,
        delta_qty=payload.delta_qty,
        notes=payload.notes,
        attachment_url=payload.attachment_url,
        created_by=principal.id,
    )
    db.commit()
    return adjustment


@router.put('/{adjustment_id}', response_model=AdjustmentOut)
def edit_adjustment(
    adjustment_id: int,
    payload: AdjustmentUpdate,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    adjustment = update_adjustment(
        db,
        adjustment_id=adjustment_id,
        adjustment_type=payload.adjustment_type,
        reason_code=payload.reason_code,
        set_to_qty=payload.set_to_qty,
        delta_qty=payload.delta_qty,
        notes=payload.notes,
        attachment_url=payload.attachment_url,
    )
    db.commit()
    return adjustment


@router.post('/{adjustment_id}/post', response_model=AdjustmentOut)
def post_draft_adjustment(
    adjustment_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    adjustment = post_adjustment(db, adjustment_id=adjustment_id, performed_by=principal.id)
    db.commit()
    return adjustment
