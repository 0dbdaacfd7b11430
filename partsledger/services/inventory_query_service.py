from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from partsledger.models import InventoryLevel, InventoryTransaction, Location, Part, ReferenceType, TxType
from partsledger.services.catalog_service import get_open_location

STOCK_OUT = 'OUT'
STOCK_LOW = 'LOW'
STOCK_NORMAL = 'NORMAL'
ALERT_SEVERITIES = {'ALL', STOCK_OUT, STOCK_LOW}


@dataclass(frozen=True)
class LedgerReplay:
    location_id: int
    part_id: int
    on_hand: int
    reserved: int
    recorded_on_hand: int
    recorded_reserved: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.on_hand == self.recorded_on_hand and self.reserved == self.recorded_reserved


def stock_status(level: InventoryLevel) -> str:
    if level.on_hand_qty <= 0:
        return STOCK_OUT
    if level.available_qty <= (level.min_stock_level or 0):
        return STOCK_LOW
    return STOCK_NORMAL


def get_available_qty(db: Session, *, location_id: int, part_id: int) -> int:
    level = db.execute(
        select(InventoryLevel).where(InventoryLevel.location_id == location_id, InventoryLevel.part_id == part_id)
    ).scalar_one_or_none()
    if level is None:
        return 0
    return level.available_qty


def _level_row(level: InventoryLevel, part: Part) -> dict:
    return {
        'location_id': level.location_id,
        'part_id': part.id,
        'sku': part.sku,
        'name': part.name,
        'category': part.category,
        'uom': part.uom,
        'on_hand_qty': level.on_hand_qty,
        'reserved_qty': level.reserved_qty,
        'available_qty': level.available_qty,
        'min_stock_level': level.min_stock_level,
        'reorder_qty': level.reorder_qty,
        'bin_location': level.bin_location,
        'last_received_at': level.last_received_at,
        'last_issued_at': level.last_issued_at,
        'last_counted_at': level.last_counted_at,
        'stock_status': stock_status(level),
    }


def list_levels(
    db: Session,
    *,
    location_id: int,
    category: str | None = None,
    search: str | None = None,
) -> list[dict]:
    get_open_location(db, location_id)
    query = (
        select(InventoryLevel, Part)
        .join(Part, Part.id == InventoryLevel.part_id)
        .where(InventoryLevel.location_id == location_id, Part.active.is_(True))
        .order_by(Part.sku.asc())
    )
    if category:
        query = query.where(Part.category == category)
    if search and search.strip():
        pattern = f'%{search.strip().lower()}%'
        query = query.where(or_(func.lower(Part.sku).like(pattern), func.lower(Part.name).like(pattern)))
    return [_level_row(level, part) for level, part in db.execute(query).all()]


def get_alerts(db: Session, *, location_id: int, severity: str = 'ALL') -> list[dict]:
    severity = (severity or 'ALL').upper()
    if severity not in ALERT_SEVERITIES:
        raise ValueError('severity must be one of: ALL, OUT, LOW')
    rows = [row for row in list_levels(db, location_id=location_id) if row['stock_status'] != STOCK_NORMAL]
    if severity != 'ALL':
        rows = [row for row in rows if row['stock_status'] == severity]
    # Out-of-stock first, then the tightest margins.
    rows.sort(key=lambda row: (row['stock_status'] != STOCK_OUT, row['available_qty'] - row['min_stock_level'], row['sku']))
    return rows


def get_inventory_status(db: Session, *, location_id: int) -> dict:
    rows = list_levels(db, location_id=location_id)
    return {
        'location_id': location_id,
        'total_items': len(rows),
        'out_of_stock': sum(1 for row in rows if row['stock_status'] == STOCK_OUT),
        'low_stock': sum(1 for row in rows if row['stock_status'] == STOCK_LOW),
        'total_on_hand': sum(row['on_hand_qty'] for row in rows),
        'total_reserved': sum(row['reserved_qty'] for row in rows),
    }


def list_transactions(
    db: Session,
    *,
    location_id: int | None = None,
    part_id: int | None = None,
    tx_type: TxType | None = None,
    reference_type: ReferenceType | None = None,
    reference_id: str | None = None,
    performed_by: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
) -> list[InventoryTransaction]:
    query = select(InventoryTransaction)
    if location_id is not None:
        query = query.where(InventoryTransaction.location_id == location_id)
    if part_id is not None:
        query = query.where(InventoryTransaction.part_id == part_id)
    if tx_type is not None:
        query = query.where(InventoryTransaction.tx_type == tx_type)
    if reference_type is not None:
        query = query.where(InventoryTransaction.reference_type == reference_type)
    if reference_id:
        query = query.where(InventoryTransaction.reference_id == reference_id)
    if performed_by:
        query = query.where(InventoryTransaction.performed_by == performed_by)
    if date_from is not None:
        query = query.where(InventoryTransaction.created_at >= date_from)
    if date_to is not None:
        query = query.where(InventoryTransaction.created_at <= date_to)
    limit = max(1, min(limit, 1000))
    query = query.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc()).limit(limit)
    return db.execute(query).scalars().all()


def replay_ledger(db: Session, *, location_id: int, part_id: int) -> LedgerReplay:
    """Rebuild on-hand and reserved from the transaction log in posting order."""
    on_hand = 0
    reserved = 0
    count = 0
    changes = db.execute(
        select(InventoryTransaction.qty_change, InventoryTransaction.reserved_change)
        .where(InventoryTransaction.location_id == location_id, InventoryTransaction.part_id == part_id)
        .order_by(InventoryTransaction.created_at.asc(), InventoryTransaction.id.asc())
    ).all()
    for qty_change, reserved_change in changes:
        on_hand += qty_change
        reserved += reserved_change or 0
        count += 1

    level = db.execute(
        select(InventoryLevel).where(InventoryLevel.location_id == location_id, InventoryLevel.part_id == part_id)
    ).scalar_one_or_none()
    return LedgerReplay(
        location_id=location_id,
        part_id=part_id,
        on_hand=on_hand,
        reserved=reserved,
        recorded_on_hand=level.on_hand_qty if level else 0,
        recorded_reserved=level.reserved_qty if level else 0,
        transaction_count=count,
    )


def inventory_by_location(db: Session, *, part_id: int, location_id: int | None = None) -> list[dict]:
    query = (
        select(InventoryLevel, Location.name)
        .join(Location, Location.id == InventoryLevel.location_id)
        .where(InventoryLevel.part_id == part_id, Location.deleted_at.is_(None))
        .order_by(Location.name.asc())
    )
    if location_id is not None:
        query = query.where(InventoryLevel.location_id == location_id)
    return [
        {
            'location_id': level.location_id,
            'location_name': location_name,
            'on_hand_qty': level.on_hand_qty,
            'reserved_qty': level.reserved_qty,
            'available_qty': level.available_qty,
            'bin_location': level.bin_location,
        }
        for level, location_name in db.execute(query).all()
    ]
