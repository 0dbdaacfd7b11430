from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from partsledger.db import build_engine
from partsledger.models import Base, InventoryLevel, Location, LocationType, Part
from partsledger.services.catalog_service import create_location, create_part
from partsledger.services.ledger_service import receive


def make_sessionmaker() -> sessionmaker:
    engine = build_engine(
        'sqlite+pysqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def add_location(db: Session, name: str = 'Main Warehouse', location_type: LocationType = LocationType.WAREHOUSE) -> Location:
    return create_location(db, name=name, location_type=location_type)


def add_part(db: Session, sku: str = 'BRK-100', **kwargs) -> Part:
    kwargs.setdefault('name', f'Part {sku}')
    kwargs.setdefault('default_cost', Decimal('10.00'))
    kwargs.setdefault('default_retail_price', Decimal('25.00'))
    return create_part(db, sku=sku, **kwargs)


def stock(db: Session, location: Location, part: Part, qty: int, unit_cost: Decimal | None = Decimal('10.00')) -> None:
    receive(db, location_id=location.id, part_id=part.id, qty=qty, unit_cost=unit_cost, performed_by='tester')


def level_of(db: Session, location: Location, part: Part) -> InventoryLevel | None:
    db.expire_all()
    return db.execute(
        select(InventoryLevel).where(InventoryLevel.location_id == location.id, InventoryLevel.part_id == part.id)
    ).scalar_one_or_none()
