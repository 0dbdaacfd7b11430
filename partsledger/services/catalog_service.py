from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, NotFound
from partsledger.models import Location, LocationType, Part


def get_active_part(db: Session, part_id: int) -> Part:
    part = db.execute(select(Part).where(Part.id == part_id)).scalar_one_or_none()
    if part is None:
        raise NotFound(f'Part {part_id} not found')
    if not part.active:
        raise NotFound(f'Part {part.sku} is inactive')
    return part


def get_open_location(db: Session, location_id: int) -> Location:
    location = db.execute(select(Location).where(Location.id == location_id)).scalar_one_or_none()
    if location is None or location.deleted_at is not None:
        raise NotFound(f'Location {location_id} not found')
    return location


def create_location(db: Session, *, name: str, location_type: LocationType = LocationType.SHOP) -> Location:
    clean_name = name.strip()
    if not clean_name:
        raise ValueError('Location name is required')
    location = Location(name=clean_name, location_type=location_type, active=True)
    db.add(location)
    db.flush()
    return location


def create_part(
    db: Session,
    *,
    sku: str,
    name: str,
    category: str = 'GENERAL',
    uom: str = 'each',
    default_cost: Decimal = Decimal('0.00'),
    default_retail_price: Decimal = Decimal('0.00'),
    taxable: bool = False,
) -> Part:
    clean_sku = sku.strip().upper()
    if not clean_sku:
        raise ValueError('SKU is required')
    if default_cost < 0 or default_retail_price < 0:
        raise InvalidQuantity('Part cost and price cannot be negative')
    existing = db.execute(select(Part.id).where(Part.sku == clean_sku)).scalar_one_or_none()
    if existing:
        raise ValueError(f'SKU {clean_sku} already exists')
    part = Part(
        sku=clean_sku,
        name=name.strip(),
        category=category,
        uom=uom,
        default_cost=default_cost,
        default_retail_price=default_retail_price,
        taxable=taxable,
        active=True,
    )
    db.add(part)
    db.flush()
    return part


def deactivate_part(db: Session, *, part_id: int) -> Part:
    part = db.execute(select(Part).where(Part.id == part_id)).scalar_one_or_none()
    if part is None:
        raise NotFound(f'Part {part_id} not found')
    part.active = False
    db.flush()
    return part
