from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, NotFound
from partsledger.models import Part, PartBarcode
from partsledger.services.catalog_service import get_active_part


def normalize_barcode(value: str | None) -> str:
    return (value or '').strip()


def lookup_barcode(db: Session, *, value: str) -> tuple[PartBarcode, Part]:
    clean_value = normalize_barcode(value)
    if not clean_value:
        raise ValueError('Barcode value is required')
    row = db.execute(
        select(PartBarcode, Part)
        .join(Part, Part.id == PartBarcode.part_id)
        .where(PartBarcode.barcode_value == clean_value, PartBarcode.active.is_(True), Part.active.is_(True))
    ).first()
    if row is None:
        raise NotFound(f'Barcode {clean_value} not found')
    return row[0], row[1]


def assign_barcode(
    db: Session,
    *,
    part_id: int,
    value: str,
    pack_qty: int = 1,
    vendor: str | None = None,
) -> PartBarcode:
    clean_value = normalize_barcode(value)
    if not clean_value:
        raise ValueError('Barcode value is required')
    if pack_qty is None or pack_qty < 1:
        raise InvalidQuantity('packQty must be at least 1')
    part = get_active_part(db, part_id)

    existing = db.execute(select(PartBarcode).where(PartBarcode.barcode_value == clean_value)).scalar_one_or_none()
    if existing:
        if existing.part_id != part.id:
            raise ValueError(f'Barcode {clean_value} is already assigned to another part')
        existing.pack_qty = pack_qty
        existing.vendor = (vendor or '').strip() or existing.vendor
        existing.active = True
        db.flush()
        return existing

    barcode = PartBarcode(
        barcode_value=clean_value,
        part_id=part.id,
        pack_qty=pack_qty,
        vendor=(vendor or '').strip() or None,
        active=True,
    )
    db.add(barcode)
    db.flush()
    return barcode


def list_barcodes(db: Session, *, part_id: int) -> list[PartBarcode]:
    get_active_part(db, part_id)
    return (
        db.execute(
            select(PartBarcode)
            .where(PartBarcode.part_id == part_id, PartBarcode.active.is_(True))
            .order_by(PartBarcode.barcode_value.asc())
        )
        .scalars()
        .all()
    )
