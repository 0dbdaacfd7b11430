from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from partsledger.auth import INVENTORY_MANAGERS, Principal, require_role
from partsledger.db import get_db
from partsledger.schemas import LocationCreate, LocationOut, PartCreate, PartOut
from partsledger.services.catalog_service import create_location, create_part, deactivate_part

router = APIRouter(prefix='/api', tags=['catalog'])


@router.post('/locations', response_model=LocationOut, status_code=status.HTTP_201_CREATED)
def add_location(
    payload: LocationCreate,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    location = create_location(db, name=payload.name, location_type=payload.location_type)
    db.commit()
    return location


@router.post('/parts', response_model=PartOut, status_code=status.HTTP_201_CREATED)
def add_part(
    payload: PartCreate,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    part = create_part(
        db,
        sku=payload.sku,
        name=payload.name,
        category=payload.category,
        uom=payload.uom,
        default_cost=payload.default_cost,
        default_retail_price=payload.default_retail_price,
        taxable=payload.taxable,
    )
    db.commit()
    return part


@router.post('/parts/{part_id}/deactivate', response_model=PartOut)
def retire_part(
    part_id: int,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    part = deactivate_part(db, part_id=part_id)
    db.commit()
    return part
