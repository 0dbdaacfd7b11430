from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, InvalidTransition, NotFound
from partsledger.models import (
    CycleCount,
    CycleCountLine,
    CycleCountStatus,
    InventoryLevel,
    Part,
    ReferenceType,
    TxType,
)
from partsledger.services.catalog_service import get_active_part, get_open_location
from partsledger.services.ledger_service import LedgerRequest, apply_ledger_operation

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = {CycleCountStatus.DRAFT, CycleCountStatus.COUNTING}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _get_count(db: Session, count_id: int, *, lock: bool = False) -> CycleCount:
    query = select(CycleCount).where(CycleCount.id == count_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    count = db.execute(query).scalar_one_or_none()
    if count is None:
        raise NotFound(f'Cycle count {count_id} not found')
    return count


def _count_lines(db: Session, count_id: int) -> list[CycleCountLine]:
    return (
        db.execute(select(CycleCountLine).where(CycleCountLine.cycle_count_id == count_id).order_by(CycleCountLine.id.asc()))
        .scalars()
        .all()
    )


def _stocked_part_ids(db: Session, *, location_id: int, category: str | None) -> list[int]:
    query = (
        select(Part.id)
        .join(InventoryLevel, InventoryLevel.part_id == Part.id)
        .where(InventoryLevel.location_id == location_id, Part.active.is_(True))
        .order_by(Part.sku.asc())
    )
    if category:
        query = query.where(Part.category == category)
    return [row[0] for row in db.execute(query).all()]


def create_cycle_count(
    db: Session,
    *,
    location_id: int,
    part_ids: list[int] | None = None,
    category: str | None = None,
    created_by: str | None = None,
) -> CycleCount:
    get_open_location(db, location_id)
    if part_ids:
        selected = list(dict.fromkeys(part_ids))
        for part_id in selected:
            get_active_part(db, part_id)
    else:
        selected = _stocked_part_ids(db, location_id=location_id, category=category)
    if not selected:
        raise ValueError('No parts selected for this cycle count')

    on_hand_by_part = {
        part_id: on_hand
        for part_id, on_hand in db.execute(
            select(InventoryLevel.part_id, InventoryLevel.on_hand_qty).where(
                InventoryLevel.location_id == location_id,
                InventoryLevel.part_id.in_(selected),
            )
        ).all()
    }

    count = CycleCount(
        location_id=location_id,
        status=CycleCountStatus.DRAFT,
        created_by=created_by,
        created_at=_now(),
    )
    db.add(count)
    db.flush()
    for part_id in selected:
        db.add(
            CycleCountLine(
                cycle_count_id=count.id,
                part_id=part_id,
                system_on_hand_qty=on_hand_by_part.get(part_id, 0),
            )
        )
    db.flush()
    logger.info('cycle count %s created at location %s with %s lines', count.id, location_id, len(selected))
    return count


def get_cycle_count_detail(db: Session, *, count_id: int) -> dict:
    count = _get_count(db, count_id)
    rows = db.execute(
        select(CycleCountLine, Part)
        .join(Part, Part.id == CycleCountLine.part_id)
        .where(CycleCountLine.cycle_count_id == count.id)
        .order_by(CycleCountLine.id.asc())
    ).all()
    return {
        'count': count,
        'lines': [
            {
                'id': line.id,
                'part_id': part.id,
                'sku': part.sku,
                'name': part.name,
                'system_on_hand_qty': line.system_on_hand_qty,
                'counted_qty': line.counted_qty,
                'variance_qty': None if line.counted_qty is None else line.counted_qty - line.system_on_hand_qty,
                'notes': line.notes,
            }
            for line, part in rows
        ],
    }


def record_count(
    db: Session,
    *,
    count_id: int,
    line_id: int,
    counted_qty: int,
    notes: str | None = None,
) -> CycleCountLine:
    count = _get_count(db, count_id, lock=True)
    if count.status not in EDITABLE_STATUSES:
        raise InvalidTransition(f'Cycle count {count.id} is {count.status.value}; lines can only be edited while counting')
    if counted_qty is None or counted_qty < 0:
        raise InvalidQuantity('countedQty cannot be negative')

    line = db.execute(
        select(CycleCountLine).where(CycleCountLine.id == line_id, CycleCountLine.cycle_count_id == count.id)
    ).scalar_one_or_none()
    if line is None:
        raise NotFound(f'Cycle count line {line_id} not found')

    line.counted_qty = counted_qty
    if notes is not None:
        line.notes = notes.strip() or None
    if count.status == CycleCountStatus.DRAFT:
        count.status = CycleCountStatus.COUNTING
    db.flush()
    return line


def submit_cycle_count(db: Session, *, count_id: int) -> CycleCount:
    count = _get_count(db, count_id, lock=True)
    if count.status not in EDITABLE_STATUSES:
        raise InvalidTransition(f'Cannot submit cycle count in {count.status.value} status')
    uncounted = [line.id for line in _count_lines(db, count.id) if line.counted_qty is None]
    if uncounted:
        raise ValueError(f'{len(uncounted)} line(s) have not been counted')
    count.status = CycleCountStatus.SUBMITTED
    db.flush()
    logger.info('cycle count %s submitted', count.id)
    return count


def approve_cycle_count(db: Session, *, count_id: int, approved_by: str | None = None) -> int:
    """Set on-hand to the counted quantity for every line; returns the number of variances posted."""
    count = _get_count(db, count_id, lock=True)
    if count.status != CycleCountStatus.SUBMITTED:
        raise InvalidTransition(f'Cannot approve cycle count in {count.status.value} status')

    posted = 0
    with db.begin_nested():
        for line in _count_lines(db, count.id):
            transaction = apply_ledger_operation(
                db,
                LedgerRequest(
                    location_id=count.location_id,
                    part_id=line.part_id,
                    tx_type=TxType.CYCLE_COUNT_ADJUST,
                    set_to_qty=line.counted_qty,
                    reference_type=ReferenceType.CYCLE_COUNT,
                    reference_id=str(count.id),
                    performed_by=approved_by,
                    notes=f'Cycle count {count.id}',
                ),
            )
            if transaction is not None:
                posted += 1

        count.status = CycleCountStatus.APPROVED
        count.approved_by = approved_by
        count.approved_at = _now()
        db.flush()

    logger.info('cycle count %s approved, %s variance(s) posted', count.id, posted)
    return posted
