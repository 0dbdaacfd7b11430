from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsledger.auth import STOCK_MOVERS, WORK_ORDER_ROLES, Principal, require_role
from partsledger.db import get_db
from partsledger.models import InventoryTransfer, TransferStatus
from partsledger.schemas import TransferCreate, TransferLineOut, TransferOut, TransferReceive
from partsledger.services.transfer_service import (
    TransferLineInput,
    cancel_transfer,
    create_transfer,
    get_transfer,
    get_transfer_lines,
    list_transfers,
    receive_transfer,
    send_transfer,
)

router = APIRouter(prefix='/api/transfers', tags=['transfers'])


def _transfer_out(db: Session, transfer: InventoryTransfer) -> TransferOut:
    out = TransferOut.model_validate(transfer)
    out.lines = [TransferLineOut.model_validate(line) for line in get_transfer_lines(db, transfer_id=transfer.id)]
    return out


@router.get('', response_model=list[TransferOut])
def transfers(
    location_id: int | None = Query(default=None, alias='locationId'),
    transfer_status: TransferStatus | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return [_transfer_out(db, transfer) for transfer in list_transfers(db, location_id=location_id, status=transfer_status)]


@router.post('', response_model=TransferOut, status_code=status.HTTP_201_CREATED)
def new_transfer(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    transfer = create_transfer(
        db,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        lines=[TransferLineInput(part_id=line.part_id, qty=line.qty, notes=line.notes) for line in payload.lines],
        notes=payload.notes,
        created_by=principal.id,
    )
    db.commit()
    return _transfer_out(db, transfer)


@router.get('/{transfer_id}', response_model=TransferOut)
def transfer_detail(
    transfer_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return _transfer_out(db, get_transfer(db, transfer_id=transfer_id))


@router.post('/{transfer_id}/send', response_model=TransferOut)
def ship_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    transfer = send_transfer(db, transfer_id=transfer_id, performed_by=principal.id)
    db.commit()
    return _transfer_out(db, transfer)


@router.post('/{transfer_id}/receive', response_model=TransferOut)
def accept_transfer(
    transfer_id: int,
    payload: TransferReceive | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    received = {line.line_id: line.qty_received for line in payload.lines} if payload else {}
    transfer = receive_transfer(db, transfer_id=transfer_id, received_lines=received, performed_by=principal.id)
    db.commit()
    return _transfer_out(db, transfer)


@router.post('/{transfer_id}/cancel', response_model=TransferOut)
def void_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    transfer = cancel_transfer(db, transfer_id=transfer_id)
    db.commit()
    return _transfer_out(db, transfer)
