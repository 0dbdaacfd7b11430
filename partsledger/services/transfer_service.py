from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, InvalidTransition, InventoryError, NotFound, TransferLineFailed
from partsledger.models import InventoryTransfer, InventoryTransferLine, ReferenceType, TransferStatus, TxType
from partsledger.services.catalog_service import get_active_part, get_open_location
from partsledger.services.ledger_service import LedgerRequest, apply_ledger_operation, last_known_cost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferLineInput:
    part_id: int
    qty: int
    notes: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _transfer_number(now: datetime) -> str:
    return f'TR-{now:%Y%m%d}-{secrets.token_hex(3).upper()}'


def _unique_transfer_number(db: Session) -> str:
    now = _now()
    while True:
        candidate = _transfer_number(now)
        taken = db.execute(
            select(InventoryTransfer.id).where(InventoryTransfer.transfer_number == candidate)
        ).scalar_one_or_none()
        if not taken:
            return candidate


def get_transfer(db: Session, *, transfer_id: int, lock: bool = False) -> InventoryTransfer:
    query = select(InventoryTransfer).where(InventoryTransfer.id == transfer_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    transfer = db.execute(query).scalar_one_or_none()
    if transfer is None:
        raise NotFound(f'Transfer {transfer_id} not found')
    return transfer


def get_transfer_lines(db: Session, *, transfer_id: int) -> list[InventoryTransferLine]:
    return (
        db.execute(
            select(InventoryTransferLine)
            .where(InventoryTransferLine.transfer_id == transfer_id)
            .order_by(InventoryTransferLine.id.asc())
        )
        .scalars()
        .all()
    )


def list_transfers(
    db: Session,
    *,
    location_id: int | None = None,
    status: TransferStatus | None = None,
    limit: int = 100,
) -> list[InventoryTransfer]:
    query = select(InventoryTransfer)
    if location_id is not None:
        query = query.where(
            or_(InventoryTransfer.from_location_id == location_id, InventoryTransfer.to_location_id == location_id)
        )
    if status is not None:
        query = query.where(InventoryTransfer.status == status)
    query = query.order_by(InventoryTransfer.created_at.desc(), InventoryTransfer.id.desc()).limit(max(1, min(limit, 500)))
    return db.execute(query).scalars().all()


def create_transfer(
    db: Session,
    *,
    from_location_id: int,
    to_location_id: int,
    lines: list[TransferLineInput],
    notes: str | None = None,
    created_by: str | None = None,
) -> InventoryTransfer:
    if from_location_id == to_location_id:
        raise ValueError('Source and destination locations must differ')
    if not lines:
        raise ValueError('A transfer needs at least one line')
    get_open_location(db, from_location_id)
    get_open_location(db, to_location_id)
    for index, line in enumerate(lines, start=1):
        if line.qty is None or line.qty <= 0:
            raise InvalidQuantity(f'Line {index}: quantity must be greater than zero')
        get_active_part(db, line.part_id)

    now = _now()
    transfer = InventoryTransfer(
        transfer_number=_unique_transfer_number(db),
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        status=TransferStatus.DRAFT,
        notes=(notes or '').strip() or None,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(transfer)
    db.flush()

    for line in lines:
        db.add(
            InventoryTransferLine(
                transfer_id=transfer.id,
                part_id=line.part_id,
                qty=line.qty,
                notes=(line.notes or '').strip() or None,
            )
        )
    db.flush()
    logger.info(
        'transfer %s created: %s -> %s with %s lines',
        transfer.transfer_number,
        from_location_id,
        to_location_id,
        len(lines),
    )
    return transfer


def _require_status(transfer: InventoryTransfer, expected: TransferStatus, action: str) -> None:
    if transfer.status != expected:
        raise InvalidTransition(
            f'Transfer {transfer.transfer_number} is {transfer.status.value}; only {expected.value} transfers can be {action}'
        )


def send_transfer(db: Session, *, transfer_id: int, performed_by: str | None = None) -> InventoryTransfer:
    """Ship every line from the source location, or none of them."""
    transfer = get_transfer(db, transfer_id=transfer_id, lock=True)
    _require_status(transfer, TransferStatus.DRAFT, 'sent')
    lines = get_transfer_lines(db, transfer_id=transfer.id)

    with db.begin_nested():
        for line_number, line in enumerate(lines, start=1):
            try:
                part = get_active_part(db, line.part_id)
                unit_cost = last_known_cost(db, location_id=transfer.from_location_id, part=part)
                apply_ledger_operation(
                    db,
                    LedgerRequest(
                        location_id=transfer.from_location_id,
                        part_id=line.part_id,
                        tx_type=TxType.TRANSFER_OUT,
                        qty=line.qty,
                        reference_type=ReferenceType.TRANSFER,
                        reference_id=transfer.transfer_number,
                        performed_by=performed_by,
                        notes=f'Transfer to location {transfer.to_location_id}',
                    ),
                )
            except InventoryError as exc:
                logger.warning(
                    'transfer %s send rejected at line %s (part %s): %s %s',
                    transfer.transfer_number,
                    line_number,
                    line.part_id,
                    exc.code,
                    exc,
                )
                raise TransferLineFailed(
                    f'Line {line_number}: {exc}',
                    cause=exc,
                    line_id=line.id,
                    part_id=line.part_id,
                    line_number=line_number,
                ) from exc
            # Outside the ledger savepoint: a retried attempt expires whatever it flushed.
            line.unit_cost_at_time = unit_cost
            db.flush()

        now = _now()
        transfer.status = TransferStatus.SENT
        transfer.sent_by = performed_by
        transfer.sent_at = now
        transfer.updated_at = now
        db.flush()

    logger.info('transfer %s sent (%s lines)', transfer.transfer_number, len(lines))
    return transfer


def receive_transfer(
    db: Session,
    *,
    transfer_id: int,
    received_lines: dict[int, int] | None = None,
    performed_by: str | None = None,
) -> InventoryTransfer:
    """Post what actually arrived at the destination.

    ``received_lines`` maps line id to the quantity received; omitted lines
    are taken as received in full. A shortfall stays on the line as a
    discrepancy.
    """
    transfer = get_transfer(db, transfer_id=transfer_id, lock=True)
    _require_status(transfer, TransferStatus.SENT, 'received')
    lines = get_transfer_lines(db, transfer_id=transfer.id)
    received_lines = dict(received_lines or {})

    known_ids = {line.id for line in lines}
    unknown_ids = sorted(line_id for line_id in received_lines if line_id not in known_ids)
    if unknown_ids:
        raise NotFound(f'Transfer {transfer.transfer_number} has no line(s) {unknown_ids}')
    for line_id, qty in received_lines.items():
        if qty is None or qty < 0:
            raise InvalidQuantity(f'Received quantity for line {line_id} cannot be negative')

    with db.begin_nested():
        for line in lines:
            qty_received = received_lines.get(line.id, line.qty)
            line.qty_received = qty_received
            if qty_received == 0:
                continue
            apply_ledger_operation(
                db,
                LedgerRequest(
                    location_id=transfer.to_location_id,
                    part_id=line.part_id,
                    tx_type=TxType.TRANSFER_IN,
                    qty=qty_received,
                    unit_cost=line.unit_cost_at_time,
                    reference_type=ReferenceType.TRANSFER,
                    reference_id=transfer.transfer_number,
                    performed_by=performed_by,
                    notes=f'Transfer from location {transfer.from_location_id}',
                ),
            )
            if qty_received != line.qty:
                logger.warning(
                    'transfer %s line %s received %s of %s sent',
                    transfer.transfer_number,
                    line.id,
                    qty_received,
                    line.qty,
                )

        now = _now()
        transfer.status = TransferStatus.RECEIVED
        transfer.received_by = performed_by
        transfer.received_at = now
        transfer.updated_at = now
        db.flush()

    logger.info('transfer %s received', transfer.transfer_number)
    return transfer


def cancel_transfer(db: Session, *, transfer_id: int) -> InventoryTransfer:
    transfer = get_transfer(db, transfer_id=transfer_id, lock=True)
    _require_status(transfer, TransferStatus.DRAFT, 'cancelled')
    transfer.status = TransferStatus.CANCELLED
    transfer.updated_at = _now()
    db.flush()
    logger.info('transfer %s cancelled', transfer.transfer_number)
    return transfer
