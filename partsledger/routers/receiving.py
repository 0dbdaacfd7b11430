from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsledger.auth import INVENTORY_MANAGERS, WORK_ORDER_ROLES, Principal, require_role
from partsledger.db import get_db
from partsledger.models import ReceivingTicket, ReceivingTicketStatus
from partsledger.schemas import ReceivingLineCreate, ReceivingLineOut, ReceivingTicketCreate, ReceivingTicketOut
from partsledger.services.receiving_service import (
    add_receiving_line,
    create_receiving_ticket,
    get_receiving_ticket,
    get_ticket_lines,
    list_receiving_tickets,
    post_receiving_ticket,
    remove_receiving_line,
)

router = APIRouter(prefix='/api/receiving', tags=['receiving'])


def _ticket_out(db: Session, ticket: ReceivingTicket) -> ReceivingTicketOut:
    out = ReceivingTicketOut.model_validate(ticket)
    out.lines = [ReceivingLineOut.model_validate(line) for line in get_ticket_lines(db, ticket_id=ticket.id)]
    return out


@router.get('', response_model=list[ReceivingTicketOut])
def receiving_tickets(
    location_id: int = Query(alias='locationId'),
    ticket_status: ReceivingTicketStatus | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    tickets = list_receiving_tickets(db, location_id=location_id, status=ticket_status)
    return [_ticket_out(db, ticket) for ticket in tickets]


@router.post('', response_model=ReceivingTicketOut, status_code=status.HTTP_201_CREATED)
def new_receiving_ticket(
    payload: ReceivingTicketCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    ticket = create_receiving_ticket(
        db,
        location_id=payload.location_id,
        vendor_name=payload.vendor_name,
        reference_number=payload.reference_number,
        created_by=principal.id,
    )
    db.commit()
    return _ticket_out(db, ticket)


@router.get('/{ticket_id}', response_model=ReceivingTicketOut)
def receiving_ticket_detail(
    ticket_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return _ticket_out(db, get_receiving_ticket(db, ticket_id=ticket_id))


@router.post('/{ticket_id}/lines', response_model=ReceivingTicketOut, status_code=status.HTTP_201_CREATED)
def add_line(
    ticket_id: int,
    payload: ReceivingLineCreate,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    add_receiving_line(
        db,
        ticket_id=ticket_id,
        part_id=payload.part_id,
        qty_received=payload.qty_received,
        unit_cost=payload.unit_cost,
        bin_location_override=payload.bin_location_override,
    )
    db.commit()
    return _ticket_out(db, get_receiving_ticket(db, ticket_id=ticket_id))


@router.delete('/{ticket_id}/lines/{line_id}', response_model=ReceivingTicketOut)
def delete_line(
    ticket_id: int,
    line_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    remove_receiving_line(db, ticket_id=ticket_id, line_id=line_id)
    db.commit()
    return _ticket_out(db, get_receiving_ticket(db, ticket_id=ticket_id))


@router.post('/{ticket_id}/post', response_model=ReceivingTicketOut)
def post_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    ticket = post_receiving_ticket(db, ticket_id=ticket_id, performed_by=principal.id)
    db.commit()
    return _ticket_out(db, ticket)
