from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsledger.auth import INVENTORY_MANAGERS, WORK_ORDER_ROLES, Principal, require_role
from partsledger.db import get_db
from partsledger.schemas import BarcodeAssign, BarcodeLookupOut, BarcodeOut, PartOut, StockAtLocationOut
from partsledger.services.barcode_service import assign_barcode, list_barcodes, lookup_barcode
from partsledger.services.inventory_query_service import inventory_by_location

router = APIRouter(prefix='/api/barcodes', tags=['barcodes'])


@router.get('/lookup/{value}', response_model=BarcodeLookupOut)
def lookup(
    value: str,
    location_id: int | None = Query(default=None, alias='locationId'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    barcode, part = lookup_barcode(db, value=value)
    stock = inventory_by_location(db, part_id=part.id, location_id=location_id)
    return BarcodeLookupOut(
        barcode=BarcodeOut.model_validate(barcode),
        part=PartOut.model_validate(part),
        inventory_by_location=[StockAtLocationOut.model_validate(row) for row in stock],
    )


@router.get('', response_model=list[BarcodeOut])
def barcodes_for_part(
    part_id: int = Query(alias='partId'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return list_barcodes(db, part_id=part_id)


@router.post('', response_model=BarcodeOut, status_code=status.HTTP_201_CREATED)
def assign(
    payload: BarcodeAssign,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    barcode = assign_barcode(
        db,
        part_id=payload.part_id,
        value=payload.barcode,
        pack_qty=payload.pack_qty,
        vendor=payload.vendor,
    )
    db.commit()
    return barcode
