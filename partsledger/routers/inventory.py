from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from partsledger.auth import INVENTORY_MANAGERS, STOCK_MOVERS, WORK_ORDER_ROLES, Principal, Role, require_role
from partsledger.db import get_db
from partsledger.models import ReferenceType, TxType
from partsledger.schemas import (
    AdjustRequest,
    AdjustResult,
    ConsumeRequest,
    InventoryStatusOut,
    LedgerReplayOut,
    LevelOut,
    LevelRowOut,
    ReceiveRequest,
    SaleRequest,
    StockSettingsUpdate,
    TransactionOut,
)
from partsledger.services.inventory_query_service import (
    get_alerts,
    get_inventory_status,
    list_levels,
    list_transactions,
    replay_ledger,
)
from partsledger.services.ledger_service import adjust, issue_stock, receive, record_sale, update_stock_settings

router = APIRouter(prefix='/api/inventory', tags=['inventory'])


@router.get('/levels', response_model=list[LevelRowOut])
def levels(
    location_id: int = Query(alias='locationId'),
    category: str | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return list_levels(db, location_id=location_id, category=category, search=search)


@router.get('/alerts', response_model=list[LevelRowOut])
def alerts(
    location_id: int = Query(alias='locationId'),
    severity: str = 'ALL',
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return get_alerts(db, location_id=location_id, severity=severity)


@router.get('/status', response_model=InventoryStatusOut)
def inventory_status(
    location_id: int = Query(alias='locationId'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*WORK_ORDER_ROLES)),
):
    return get_inventory_status(db, location_id=location_id)


@router.get('/transactions', response_model=list[TransactionOut])
def transactions(
    location_id: int | None = Query(default=None, alias='locationId'),
    part_id: int | None = Query(default=None, alias='partId'),
    tx_type: TxType | None = Query(default=None, alias='txType'),
    reference_type: ReferenceType | None = Query(default=None, alias='referenceType'),
    reference_id: str | None = Query(default=None, alias='referenceId'),
    performed_by: str | None = Query(default=None, alias='performedBy'),
    date_from: datetime | None = Query(default=None, alias='dateFrom'),
    date_to: datetime | None = Query(default=None, alias='dateTo'),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    return list_transactions(
        db,
        location_id=location_id,
        part_id=part_id,
        tx_type=tx_type,
        reference_type=reference_type,
        reference_id=reference_id,
        performed_by=performed_by,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
    )


@router.get('/ledger-replay', response_model=LedgerReplayOut)
def ledger_replay(
    location_id: int = Query(alias='locationId'),
    part_id: int = Query(alias='partId'),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    return replay_ledger(db, location_id=location_id, part_id=part_id)


@router.post('/receive', response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def receive_stock(
    payload: ReceiveRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS)),
):
    transaction = receive(
        db,
        location_id=payload.location_id,
        part_id=payload.part_id,
        qty=payload.qty,
        unit_cost=payload.unit_cost,
        reference_id=payload.reference_id,
        performed_by=principal.id,
        notes=payload.notes,
    )
    db.commit()
    return transaction


@router.post('/adjust', response_model=AdjustResult)
def adjust_stock(
    payload: AdjustRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    transaction = adjust(
        db,
        location_id=payload.location_id,
        part_id=payload.part_id,
        reason_code=payload.reason_code,
        set_to_qty=payload.set_to_qty,
        delta_qty=payload.delta_qty,
        notes=payload.notes,
        performed_by=principal.id,
    )
    db.commit()
    return AdjustResult(
        changed=transaction is not None,
        transaction=TransactionOut.model_validate(transaction) if transaction is not None else None,
    )


@router.post('/sale', response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def sell_stock(
    payload: SaleRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS, Role.SERVICE_ADVISOR)),
):
    transaction = record_sale(
        db,
        location_id=payload.location_id,
        part_id=payload.part_id,
        qty=payload.qty,
        reference_id=payload.reference_id,
        performed_by=principal.id,
        notes=payload.notes,
    )
    db.commit()
    return transaction


@router.post('/consume', response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
def consume_stock(
    payload: ConsumeRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_role(*STOCK_MOVERS, Role.TECHNICIAN)),
):
    transaction = issue_stock(
        db,
        location_id=payload.location_id,
        part_id=payload.part_id,
        qty=payload.qty,
        reference_id=payload.work_order_id,
        performed_by=principal.id,
        notes=payload.notes,
    )
    db.commit()
    return transaction


@router.put('/settings', response_model=LevelOut)
def stock_settings(
    payload: StockSettingsUpdate,
    db: Session = Depends(get_db),
    _principal: Principal = Depends(require_role(*INVENTORY_MANAGERS)),
):
    level = update_stock_settings(
        db,
        location_id=payload.location_id,
        part_id=payload.part_id,
        min_stock_level=payload.min_stock_level,
        reorder_qty=payload.reorder_qty,
        bin_location=payload.bin_location,
    )
    db.commit()
    return level
