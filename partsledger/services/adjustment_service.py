"""Adjustment documents: a stock correction drafted by one person and posted by another.

Posting goes through :func:`ledger_service.adjust`, so a posted document
obeys the same rules as a direct adjustment and can never take on-hand below
what is reserved.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from partsledger.errors import InvalidQuantity, InvalidTransition, NotFound
from partsledger.models import AdjustmentReason, AdjustmentStatus, AdjustmentType, InventoryAdjustment
from partsledger.services.catalog_service import get_active_part, get_open_location
from partsledger.services.ledger_service import adjust

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _validate(
    *,
    adjustment_type: AdjustmentType | str,
    reason_code: AdjustmentReason | str,
    set_to_qty: int | None,
    delta_qty: int | None,
    notes: str | None,
) -> tuple[AdjustmentType, AdjustmentReason, str | None]:
    try:
        kind = AdjustmentType(adjustment_type)
    except ValueError as exc:
        raise ValueError('adjustmentType must be SET_TO_QTY or DELTA') from exc
    try:
        reason = AdjustmentReason(reason_code)
    except ValueError as exc:
        valid = ', '.join(item.value for item in AdjustmentReason)
        raise ValueError(f'reasonCode must be one of: {valid}') from exc

    clean_notes = (notes or '').strip() or None
    if reason == AdjustmentReason.OTHER and not clean_notes:
        raise ValueError('Notes are required when reasonCode is OTHER')
    if kind == AdjustmentType.SET_TO_QTY:
        if set_to_qty is None:
            raise InvalidQuantity('setToQty is required for SET_TO_QTY adjustments')
        if set_to_qty < 0:
            raise InvalidQuantity('setToQty cannot be negative')
    elif not delta_qty:
        raise InvalidQuantity('deltaQty is required for DELTA adjustments and cannot be zero')
    return kind, reason, clean_notes


def get_adjustment(db: Session, *, adjustment_id: int, lock: bool = False) -> InventoryAdjustment:
    query = select(InventoryAdjustment).where(InventoryAdjustment.id == adjustment_id)
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    adjustment = db.execute(query).scalar_one_or_none()
    if adjustment is None:
        raise NotFound(f'Adjustment {adjustment_id} not found')
    return adjustment


def list_adjustments(
    db: Session,
    *,
    location_id: int,
    status: AdjustmentStatus | None = None,
    limit: int = 100,
) -> list[InventoryAdjustment]:
    query = select(InventoryAdjustment).where(InventoryAdjustment.location_id == location_id)
    if status is not None:
        query = query.where(InventoryAdjustment.status == status)
    query = query.order_by(InventoryAdjustment.created_at.desc(), InventoryAdjustment.id.desc()).limit(
        max(1, min(limit, 500))
    )
    return db.execute(query).scalars().all()


def create_adjustment(
    db: Session,
    *,
    location_id: int,
    part_id: int,
    adjustment_type: AdjustmentType | str,
    reason_code: AdjustmentReason | str,
    set_to_qty: int | None = None,
    delta_qty: int | None = None,
    notes: str | None = None,
    attachment_url: str | None = None,
    created_by: str | None = None,
) -> InventoryAdjustment:
    kind, reason, clean_notes = _validate(
        adjustment_type=adjustment_type,
        reason_code=reason_code,
        set_to_qty=set_to_qty,
        delta_qty=delta_qty,
        notes=notes,
    )
    get_open_location(db, location_id)
    get_active_part(db, part_id)

    now = _now()
    adjustment = InventoryAdjustment(
        location_id=location_id,
        part_id=part_id,
        adjustment_type=kind,
        set_to_qty=set_to_qty if kind == AdjustmentType.SET_TO_QTY else None,
        delta_qty=delta_qty if kind == AdjustmentType.DELTA else None,
        reason_code=reason,
        notes=clean_notes,
        attachment_url=(attachment_url or '').strip() or None,
        status=AdjustmentStatus.DRAFT,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(adjustment)
    db.flush()
    logger.info('adjustment %s drafted: location=%s part=%s %s', adjustment.id, location_id, part_id, kind.value)
    return adjustment


def _require_draft(adjustment: InventoryAdjustment, action: str) -> None:
    if adjustment.status != AdjustmentStatus.DRAFT:
        raise InvalidTransition(f'Adjustment {adjustment.id} is {adjustment.status.value}; cannot {action}')


def update_adjustment(
    db: Session,
    *,
    adjustment_id: int,
    adjustment_type: AdjustmentType | str | None = None,
    reason_code: AdjustmentReason | str | None = None,
    set_to_qty: int | None = None,
    delta_qty: int | None = None,
    notes: str | None = None,
    attachment_url: str | None = None,
) -> InventoryAdjustment:
    """Edit a draft; arguments left as ``None`` keep their current value."""
    adjustment = get_adjustment(db, adjustment_id=adjustment_id, lock=True)
    _require_draft(adjustment, 'edit it')

    kind, reason, clean_notes = _validate(
        adjustment_type=adjustment_type or adjustment.adjustment_type,
        reason_code=reason_code or adjustment.reason_code,
        set_to_qty=set_to_qty if set_to_qty is not None else adjustment.set_to_qty,
        delta_qty=delta_qty if delta_qty is not None else adjustment.delta_qty,
        notes=notes if notes is not None else adjustment.notes,
    )
    adjustment.adjustment_type = kind
    adjustment.reason_code = reason
    adjustment.notes = clean_notes
    if kind == AdjustmentType.SET_TO_QTY:
        adjustment.set_to_qty = set_to_qty if set_to_qty is not None else adjustment.set_to_qty
        adjustment.delta_qty = None
    else:
        adjustment.delta_qty = delta_qty if delta_qty is not None else adjustment.delta_qty
        adjustment.set_to_qty = None
    if attachment_url is not None:
        adjustment.attachment_url = attachment_url.strip() or None
    adjustment.updated_at = _now()
    db.flush()
    return adjustment


def post_adjustment(db: Session, *, adjustment_id: int, performed_by: str | None = None) -> InventoryAdjustment:
    adjustment = get_adjustment(db, adjustment_id=adjustment_id, lock=True)
    _require_draft(adjustment, 'post it again')

    with db.begin_nested():
        transaction = adjust(
            db,
            location_id=adjustment.location_id,
            part_id=adjustment.part_id,
            reason_code=adjustment.reason_code,
            set_to_qty=adjustment.set_to_qty,
            delta_qty=adjustment.delta_qty,
            notes=adjustment.notes,
            performed_by=performed_by,
            reference_id=str(adjustment.id),
        )
        now = _now()
        adjustment.qty_change = transaction.qty_change if transaction is not None else 0
        adjustment.status = AdjustmentStatus.POSTED
        adjustment.posted_by = performed_by
        adjustment.posted_at = now
        adjustment.updated_at = now
        db.flush()

    logger.info('adjustment %s posted: qty_change=%s', adjustment.id, adjustment.qty_change)
    return adjustment
