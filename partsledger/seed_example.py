from decimal import Decimal

from sqlalchemy import select

from partsledger.db import SessionLocal, engine
from partsledger.models import Base, Location, LocationType, Part
from partsledger.services.barcode_service import assign_barcode
from partsledger.services.catalog_service import create_location, create_part
from partsledger.services.ledger_service import receive

DEMO_PARTS = [
    ('BRK-PAD-01', 'Brake pad set, front', 'BRAKES', Decimal('42.50'), Decimal('89.00'), '0012345678905'),
    ('OIL-FLT-07', 'Oil filter', 'FILTERS', Decimal('6.25'), Decimal('14.99'), '0098765432109'),
    ('WPR-22', 'Wiper blade 22in', 'ACCESSORIES', Decimal('8.10'), Decimal('19.50'), None),
]


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        warehouse = db.execute(select(Location).where(Location.name == 'Main Warehouse')).scalar_one_or_none()
        if not warehouse:
            warehouse = create_location(db, name='Main Warehouse', location_type=LocationType.WAREHOUSE)
        shop = db.execute(select(Location).where(Location.name == 'Service Bay')).scalar_one_or_none()
        if not shop:
            shop = create_location(db, name='Service Bay', location_type=LocationType.SHOP)

        for sku, name, category, cost, price, barcode in DEMO_PARTS:
            part = db.execute(select(Part).where(Part.sku == sku)).scalar_one_or_none()
            if part:
                continue
            part = create_part(
                db,
                sku=sku,
                name=name,
                category=category,
                default_cost=cost,
                default_retail_price=price,
                taxable=True,
            )
            if barcode:
                assign_barcode(db, part_id=part.id, value=barcode)
            receive(
                db,
                location_id=warehouse.id,
                part_id=part.id,
                qty=25,
                unit_cost=cost,
                reference_id='SEED',
                performed_by='seed',
                notes='Opening stock',
            )
        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
