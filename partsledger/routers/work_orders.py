from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from partsledger.auth import WORK_ORDER_ROLES, Principal, require_role
from partsledger.db import get_db
from partsledger.schemas import IssuePartRequest, PartLineOut, ReservePartRequest, ReturnPartRequest
from partsledger.services.work_order_parts_service import (
    cancel_line_remainder,
    issue_from_work_order_line,
    list_lines,
    reserve_for_work_order_line,
    reserve_from_line,
    return_to_work_order_line,
)

router = APIRouter(prefix='/api/work-orders/{work_order_id}/parts', tags=['work-orders'])


@router.get('', response_model=list[PartLineOut])
def part_lines(
    work_order_id: str,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return list_lines(db, work_order_id=work_order_id)


@router.post('', response_model=PartLineOut, status_code=status.HTTP_201_CREATED)
def reserve_part(
    work_order_id: str,
    payload: ReservePartRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    line = reserve_for_work_order_line(
        db,
        work_order_id=work_order_id,
        part_id=payload.part_id,
        location_id=payload.location_id,
        qty_requested=payload.qty_requested,
        unit_price=payload.unit_price,
        performed_by=principal.id,
    )
    db.commit()
    return line


@router.post('/{line_id}/reserve', response_model=PartLineOut)
def top_up_reservation(
    work_order_id: str,
    line_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    line = reserve_from_line(db, line_id=line_id, work_order_id=work_order_id, performed_by=principal.id)
    db.commit()
    return line


@router.post('/{line_id}/issue', response_model=PartLineOut)
def issue_part(
    work_order_id: str,
    line_id: int,
    payload: IssuePartRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    line = issue_from_work_order_line(
        db,
        line_id=line_id,
        work_order_id=work_order_id,
        qty_to_issue=payload.qty_to_issue,
        performed_by=principal.id,
    )
    db.commit()
    return line


@router.post('/{line_id}/return', response_model=PartLineOut)
def return_part(
    work_order_id: str,
    line_id: int,
    payload: ReturnPartRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    line = return_to_work_order_line(
        db,
        line_id=line_id,
        work_order_id=work_order_id,
        qty_to_return=payload.qty_to_return,
        performed_by=principal.id,
    )
    db.commit()
    return line


@router.post('/{line_id}/cancel', response_model=PartLineOut)
def cancel_part(
    work_order_id: str,
    line_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    line = cancel_line_remainder(db, line_id=line_id, work_order_id=work_order_id, performed_by=principal.id)
    db.commit()
    return line
