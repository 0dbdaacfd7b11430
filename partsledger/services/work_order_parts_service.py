from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, InvalidTransition, NotFound
from partsledger.models import PartLineStatus, ReferenceType, TxType, WorkOrderPartLine
from partsledger.services.catalog_service import get_active_part, get_open_location
from partsledger.services.ledger_service import LedgerRequest, apply_ledger_operation

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PartLineStatus, set[PartLineStatus]] = {
    PartLineStatus.BACKORDERED: {
        PartLineStatus.BACKORDERED,
        PartLineStatus.RESERVED,
        PartLineStatus.ISSUED,
        PartLineStatus.RETURNED,
    },
    PartLineStatus.RESERVED: {
        PartLineStatus.RESERVED,
        PartLineStatus.ISSUED,
        PartLineStatus.RETURNED,
    },
    PartLineStatus.ISSUED: {
        PartLineStatus.ISSUED,
        PartLineStatus.RESERVED,
        PartLineStatus.BACKORDERED,
        PartLineStatus.RETURNED,
    },
    PartLineStatus.RETURNED: set(),
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _ensure_can_move(line: WorkOrderPartLine, target: PartLineStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[line.status]:
        raise InvalidTransition(f'Part line {line.id} cannot move from {line.status.value} to {target.value}')


def _set_status(line: WorkOrderPartLine, target: PartLineStatus) -> None:
    _ensure_can_move(line, target)
    if target != line.status:
        logger.info('work order %s part line %s: %s -> %s', line.work_order_id, line.id, line.status.value, target.value)
    line.status = target
    line.updated_at = _now()


def _reservation_status(line: WorkOrderPartLine) -> PartLineStatus:
    if line.qty_issued > 0 and line.qty_issued == line.qty_reserved == line.qty_requested:
        return PartLineStatus.ISSUED
    if line.qty_reserved < line.qty_requested:
        return PartLineStatus.BACKORDERED
    return PartLineStatus.RESERVED


def outstanding_qty(line: WorkOrderPartLine) -> int:
    """Units this line still holds in the location's reserved quantity."""
    return line.qty_reserved - line.qty_issued


def get_line(db: Session, *, line_id: int, work_order_id: str | None = None, lock: bool = False) -> WorkOrderPartLine:
    query = select(WorkOrderPartLine).where(WorkOrderPartLine.id == line_id)
    if work_order_id is not None:
        query = query.where(WorkOrderPartLine.work_order_id == work_order_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    line = db.execute(query).scalar_one_or_none()
    if line is None:
        raise NotFound(f'Part line {line_id} not found')
    return line


def list_lines(db: Session, *, work_order_id: str) -> list[WorkOrderPartLine]:
    return (
        db.execute(
            select(WorkOrderPartLine)
            .where(WorkOrderPartLine.work_order_id == work_order_id)
            .order_by(WorkOrderPartLine.id.asc())
        )
        .scalars()
        .all()
    )


def _ledger(
    db: Session,
    line: WorkOrderPartLine,
    tx_type: TxType,
    qty: int,
    *,
    performed_by: str | None,
    notes: str,
    **options,
):
    return apply_ledger_operation(
        db,
        LedgerRequest(
            location_id=line.location_id,
            part_id=line.part_id,
            tx_type=tx_type,
            qty=qty,
            reference_type=ReferenceType.WORK_ORDER,
            reference_id=line.work_order_id,
            performed_by=performed_by,
            notes=notes,
            **options,
        ),
    )


def reserve_for_work_order_line(
    db: Session,
    *,
    work_order_id: str,
    part_id: int,
    location_id: int,
    qty_requested: int,
    unit_price: Decimal | None = None,
    performed_by: str | None = None,
) -> WorkOrderPartLine:
    """Create a part line and reserve as much of it as the location can cover.

    Any shortfall leaves the line BACKORDERED; it is only reserved later by
    an explicit :func:`reserve_from_line`.
    """
    clean_work_order_id = (work_order_id or '').strip()
    if not clean_work_order_id:
        raise ValueError('Work order id is required')
    if qty_requested is None or qty_requested <= 0:
        raise InvalidQuantity('qtyRequested must be greater than zero')
    if unit_price is not None and unit_price < 0:
        raise InvalidQuantity('Unit price cannot be negative')

    part = get_active_part(db, part_id)
    get_open_location(db, location_id)

    with db.begin_nested():
        line = WorkOrderPartLine(
            work_order_id=clean_work_order_id,
            part_id=part.id,
            location_id=location_id,
            qty_requested=qty_requested,
            qty_reserved=0,
            qty_issued=0,
            unit_price=unit_price if unit_price is not None else part.default_retail_price,
            status=PartLineStatus.BACKORDERED,
            created_at=_now(),
            updated_at=_now(),
        )
        db.add(line)
        db.flush()

        transaction = _ledger(
            db,
            line,
            TxType.RESERVE,
            qty_requested,
            performed_by=performed_by,
            notes='Reserved for work order',
            allow_partial=True,
        )
        line.qty_reserved = transaction.reserved_change if transaction else 0
        line.status = _reservation_status(line)
        db.flush()

    logger.info(
        'work order %s part line %s created: requested=%s reserved=%s status=%s',
        line.work_order_id,
        line.id,
        line.qty_requested,
        line.qty_reserved,
        line.status.value,
    )
    return line


def reserve_from_line(
    db: Session,
    *,
    line_id: int,
    work_order_id: str | None = None,
    performed_by: str | None = None,
) -> WorkOrderPartLine:
    """Top up a line's reservation with whatever is available now.

    Calling it again when nothing new is available changes nothing.
    """
    with db.begin_nested():
        line = get_line(db, line_id=line_id, work_order_id=work_order_id, lock=True)
        _ensure_can_move(line, PartLineStatus.RESERVED)
        shortfall = line.qty_requested - line.qty_reserved
        if shortfall <= 0:
            return line

        transaction = _ledger(
            db,
            line,
            TxType.RESERVE,
            shortfall,
            performed_by=performed_by,
            notes='Reservation top-up for work order',
            allow_partial=True,
        )
        if transaction is None:
            return line
        line.qty_reserved += transaction.reserved_change
        _set_status(line, _reservation_status(line))
        db.flush()
    return line


def issue_from_work_order_line(
    db: Session,
    *,
    line_id: int,
    qty_to_issue: int,
    work_order_id: str | None = None,
    performed_by: str | None = None,
) -> WorkOrderPartLine:
    if qty_to_issue is None or qty_to_issue <= 0:
        raise InvalidQuantity('qtyToIssue must be greater than zero')

    with db.begin_nested():
        line = get_line(db, line_id=line_id, work_order_id=work_order_id, lock=True)
        _ensure_can_move(line, PartLineStatus.ISSUED)
        remaining = outstanding_qty(line)
        if qty_to_issue > remaining:
            raise InvalidQuantity(f'Cannot issue {qty_to_issue}: only {remaining} reserved and not yet issued on this line')

        _ledger(db, line, TxType.ISSUE, qty_to_issue, performed_by=performed_by, notes='Issued to work order')
        line.qty_issued += qty_to_issue
        _set_status(line, _reservation_status(line))
        db.flush()
    return line


def return_to_work_order_line(
    db: Session,
    *,
    line_id: int,
    qty_to_return: int,
    work_order_id: str | None = None,
    performed_by: str | None = None,
) -> WorkOrderPartLine:
    """Put issued units back on the shelf.

    Returned units leave the line's reservation as well, so the line's
    outstanding reservation is unchanged. The line is RETURNED once nothing
    remains reserved; otherwise it takes the same status a reservation would,
    which is BACKORDERED while ``qty_reserved < qty_requested``.
    """
    if qty_to_return is None or qty_to_return <= 0:
        raise InvalidQuantity('qtyToReturn must be greater than zero')

    with db.begin_nested():
        line = get_line(db, line_id=line_id, work_order_id=work_order_id, lock=True)
        if line.status == PartLineStatus.RETURNED:
            raise InvalidTransition(f'Part line {line.id} is already fully returned')
        if qty_to_return > line.qty_issued:
            raise InvalidQuantity(f'Cannot return {qty_to_return}: only {line.qty_issued} issued on this line')

        _ledger(db, line, TxType.RETURN, qty_to_return, performed_by=performed_by, notes='Returned from work order')
        line.qty_issued -= qty_to_return
        line.qty_reserved -= qty_to_return
        target = PartLineStatus.RETURNED if line.qty_reserved == 0 else _reservation_status(line)
        _set_status(line, target)
        db.flush()
    return line


def cancel_line_remainder(
    db: Session,
    *,
    line_id: int,
    work_order_id: str | None = None,
    performed_by: str | None = None,
) -> WorkOrderPartLine:
    """Release whatever the line still holds and stop asking for the rest."""
    with db.begin_nested():
        line = get_line(db, line_id=line_id, work_order_id=work_order_id, lock=True)
        target = PartLineStatus.ISSUED if line.qty_issued > 0 else PartLineStatus.RETURNED
        _ensure_can_move(line, target)

        remaining = outstanding_qty(line)
        if remaining > 0:
            _ledger(
                db,
                line,
                TxType.RETURN,
                remaining,
                performed_by=performed_by,
                notes='Reservation released for work order',
                release_reservation=True,
            )
        line.qty_reserved = line.qty_issued
        line.qty_requested = line.qty_issued
        _set_status(line, target)
        db.flush()
    return line
