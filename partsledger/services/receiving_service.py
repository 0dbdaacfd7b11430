from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, InvalidTransition, NotFound
from partsledger.models import ReceivingTicket, ReceivingTicketLine, ReceivingTicketStatus, ReferenceType, TxType
from partsledger.services.catalog_service import get_active_part, get_open_location
from partsledger.services.ledger_service import LedgerRequest, apply_ledger_operation, update_stock_settings

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _clean(value: str | None) -> str | None:
    return (value or '').strip() or None


def _unique_ticket_number(db: Session) -> str:
    now = _now()
    while True:
        candidate = f'RCV-{now:%Y%m%d}-{secrets.token_hex(3).upper()}'
        taken = db.execute(select(ReceivingTicket.id).where(ReceivingTicket.ticket_number == candidate)).scalar_one_or_none()
        if not taken:
            return candidate


def get_receiving_ticket(db: Session, *, ticket_id: int, lock: bool = False) -> ReceivingTicket:
    query = select(ReceivingTicket).where(ReceivingTicket.id == ticket_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    ticket = db.execute(query).scalar_one_or_none()
    if ticket is None:
        raise NotFound(f'Receiving ticket {ticket_id} not found')
    return ticket


def get_ticket_lines(db: Session, *, ticket_id: int) -> list[ReceivingTicketLine]:
    return (
        db.execute(
            select(ReceivingTicketLine)
            .where(ReceivingTicketLine.ticket_id == ticket_id)
            .order_by(ReceivingTicketLine.id.asc())
        )
        .scalars()
        .all()
    )


def list_receiving_tickets(
    db: Session,
    *,
    location_id: int,
    status: ReceivingTicketStatus | None = None,
    limit: int = 100,
) -> list[ReceivingTicket]:
    query = select(ReceivingTicket).where(ReceivingTicket.location_id == location_id)
    if status is not None:
        query = query.where(ReceivingTicket.status == status)
    query = query.order_by(ReceivingTicket.created_at.desc(), ReceivingTicket.id.desc()).limit(max(1, min(limit, 500)))
    return db.execute(query).scalars().all()


def _require_draft(ticket: ReceivingTicket, action: str) -> None:
    if ticket.status != ReceivingTicketStatus.DRAFT:
        raise InvalidTransition(f'Receiving ticket {ticket.ticket_number} is {ticket.status.value}; cannot {action}')


def create_receiving_ticket(
    db: Session,
    *,
    location_id: int,
    vendor_name: str | None = None,
    reference_number: str | None = None,
    created_by: str | None = None,
) -> ReceivingTicket:
    get_open_location(db, location_id)
    ticket = ReceivingTicket(
        ticket_number=_unique_ticket_number(db),
        location_id=location_id,
        vendor_name=_clean(vendor_name),
        reference_number=_clean(reference_number),
        status=ReceivingTicketStatus.DRAFT,
        created_by=created_by,
        created_at=_now(),
    )
    db.add(ticket)
    db.flush()
    logger.info('receiving ticket %s created at location %s', ticket.ticket_number, location_id)
    return ticket


def add_receiving_line(
    db: Session,
    *,
    ticket_id: int,
    part_id: int,
    qty_received: int,
    unit_cost: Decimal | None = None,
    bin_location_override: str | None = None,
) -> ReceivingTicketLine:
    """Add a draft line; the cost falls back to the part's default cost."""
    ticket = get_receiving_ticket(db, ticket_id=ticket_id)
    _require_draft(ticket, 'add lines')
    if qty_received is None or qty_received <= 0:
        raise InvalidQuantity('qtyReceived must be greater than zero')
    if unit_cost is not None and unit_cost < 0:
        raise InvalidQuantity('Unit cost cannot be negative')
    part = get_active_part(db, part_id)

    line = ReceivingTicketLine(
        ticket_id=ticket.id,
        part_id=part.id,
        qty_received=qty_received,
        unit_cost=unit_cost if unit_cost is not None else part.default_cost,
        bin_location_override=_clean(bin_location_override),
    )
    db.add(line)
    db.flush()
    return line


def remove_receiving_line(db: Session, *, ticket_id: int, line_id: int) -> None:
    ticket = get_receiving_ticket(db, ticket_id=ticket_id)
    _require_draft(ticket, 'remove lines')
    line = db.execute(
        select(ReceivingTicketLine).where(ReceivingTicketLine.id == line_id, ReceivingTicketLine.ticket_id == ticket.id)
    ).scalar_one_or_none()
    if line is None:
        raise NotFound(f'Receiving ticket {ticket.ticket_number} has no line {line_id}')
    db.delete(line)
    db.flush()


def post_receiving_ticket(db: Session, *, ticket_id: int, performed_by: str | None = None) -> ReceivingTicket:
    """Receive every line onto the ticket's location in one step.

    A line that cannot be received (for example a part deactivated since it
    was added) leaves the ticket in DRAFT with no stock changed.
    """
    ticket = get_receiving_ticket(db, ticket_id=ticket_id, lock=True)
    _require_draft(ticket, 'post it again')
    lines = get_ticket_lines(db, ticket_id=ticket.id)
    if not lines:
        raise ValueError('Receiving ticket must have at least one line item')

    with db.begin_nested():
        for line in lines:
            apply_ledger_operation(
                db,
                LedgerRequest(
                    location_id=ticket.location_id,
                    part_id=line.part_id,
                    tx_type=TxType.RECEIVE,
                    qty=line.qty_received,
                    unit_cost=line.unit_cost,
                    reference_type=ReferenceType.RECEIVING_TICKET,
                    reference_id=ticket.ticket_number,
                    performed_by=performed_by,
                    notes=f'Received from {ticket.vendor_name or "unknown vendor"}',
                ),
            )
            if line.bin_location_override:
                update_stock_settings(
                    db,
                    location_id=ticket.location_id,
                    part_id=line.part_id,
                    bin_location=line.bin_location_override,
                )

        ticket.status = ReceivingTicketStatus.POSTED
        ticket.posted_by = performed_by
        ticket.posted_at = _now()
        db.flush()

    logger.info('receiving ticket %s posted (%s lines)', ticket.ticket_number, len(lines))
    return ticket
