"""Single write path for every inventory quantity change.

Each operation locks the (location, part) level row, validates the
requested change against the current quantities, applies it and appends
one immutable :class:`InventoryTransaction`. Nothing else in the code base
writes ``InventoryLevel`` quantities.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from partsledger.config import settings
from partsledger.errors import Conflict, InsufficientStock, InvalidQuantity
from partsledger.models import (
    AdjustmentReason,
    InventoryLevel,
    InventoryTransaction,
    Part,
    ReferenceType,
    TxType,
)
from partsledger.services.catalog_service import get_active_part, get_open_location

logger = logging.getLogger(__name__)

RECEIVED_TYPES = {TxType.RECEIVE, TxType.TRANSFER_IN}
CONSUMED_TYPES = {TxType.ISSUE, TxType.SALE, TxType.TRANSFER_OUT}
SET_TO_TYPES = {TxType.ADJUST, TxType.CYCLE_COUNT_ADJUST}
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


@dataclass(frozen=True)
class LedgerRequest:
    location_id: int
    part_id: int
    tx_type: TxType
    qty: int = 0
    # ADJUST / CYCLE_COUNT_ADJUST target on-hand instead of a magnitude.
    set_to_qty: int | None = None
    # ADJUST delta direction.
    decrease: bool = False
    # ISSUE consumes a prior reservation unless this is False.
    from_reservation: bool = True
    # RETURN releases a reservation instead of putting stock back on hand.
    release_reservation: bool = False
    # RESERVE takes what is available instead of failing.
    allow_partial: bool = False
    unit_cost: Decimal | None = None
    reference_type: ReferenceType | None = None
    reference_id: str | None = None
    performed_by: str | None = None
    notes: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _require_positive(qty: int) -> None:
    if qty is None or qty <= 0:
        raise InvalidQuantity(f'Quantity must be greater than zero (got {qty})')


def compute_effect(on_hand: int, reserved: int, request: LedgerRequest) -> tuple[int, int]:
    """Return ``(on_hand_delta, reserved_delta)`` for ``request``.

    Raises before anything is written when the result would break
    ``0 <= reserved <= on_hand``. A ``(0, 0)`` result means there is
    nothing to record.
    """
    tx_type = request.tx_type
    available = on_hand - reserved

    if tx_type == TxType.CYCLE_COUNT_ADJUST and request.set_to_qty is None:
        raise InvalidQuantity('Cycle count adjustments require a counted quantity')

    if tx_type in SET_TO_TYPES and request.set_to_qty is not None:
        target = request.set_to_qty
        if target < 0:
            raise InvalidQuantity(f'Target quantity cannot be negative (got {target})')
        if target < reserved:
            raise InsufficientStock(
                f'Cannot set on-hand to {target}: {reserved} units are reserved; release reservations first'
            )
        return target - on_hand, 0

    if tx_type == TxType.RESERVE and request.allow_partial:
        _require_positive(request.qty)
        return 0, max(min(request.qty, available), 0)

    _require_positive(request.qty)
    qty = request.qty

    if tx_type in RECEIVED_TYPES:
        return qty, 0

    if tx_type == TxType.RESERVE:
        if qty > available:
            raise InsufficientStock(f'Cannot reserve {qty}: only {available} available')
        return 0, qty

    if tx_type == TxType.ISSUE and request.from_reservation:
        if qty > reserved:
            raise InsufficientStock(f'Cannot issue {qty} from reservation: only {reserved} reserved')
        return -qty, -qty

    if tx_type in CONSUMED_TYPES:
        if qty > available:
            raise InsufficientStock(f'Cannot remove {qty}: only {available} available ({on_hand} on hand, {reserved} reserved)')
        return -qty, 0

    if tx_type == TxType.RETURN:
        if request.release_reservation:
            if qty > reserved:
                raise InsufficientStock(f'Cannot release {qty}: only {reserved} reserved')
            return 0, -qty
        return qty, 0

    if tx_type == TxType.ADJUST:
        if not request.decrease:
            return qty, 0
        if qty > available:
            raise InsufficientStock(f'Cannot adjust down by {qty}: only {available} available')
        return -qty, 0

    raise InvalidQuantity(f'Unsupported transaction type {tx_type}')


def _lock_level(db: Session, *, location_id: int, part_id: int) -> InventoryLevel:
    level = db.execute(
        select(InventoryLevel)
        .where(InventoryLevel.location_id == location_id, InventoryLevel.part_id == part_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if level is None:
        level = InventoryLevel(location_id=location_id, part_id=part_id, on_hand_qty=0, reserved_qty=0, min_stock_level=0)
        db.add(level)
        db.flush()
    return level


def last_known_cost(db: Session, *, location_id: int, part: Part) -> Decimal | None:
    cost = db.execute(
        select(InventoryTransaction.unit_cost_at_time)
        .where(
            InventoryTransaction.location_id == location_id,
            InventoryTransaction.part_id == part.id,
            InventoryTransaction.tx_type.in_(RECEIVED_TYPES),
            InventoryTransaction.unit_cost_at_time.is_not(None),
        )
        .order_by(InventoryTransaction.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if cost is not None:
        return cost
    return part.default_cost


def _touch_timestamps(level: InventoryLevel, tx_type: TxType) -> None:
    now = _now()
    level.updated_at = now
    if tx_type in RECEIVED_TYPES:
        level.last_received_at = now
    elif tx_type in CONSUMED_TYPES:
        level.last_issued_at = now
    elif tx_type == TxType.CYCLE_COUNT_ADJUST:
        level.last_counted_at = now


def _apply_once(db: Session, request: LedgerRequest) -> InventoryTransaction | None:
    part = get_active_part(db, request.part_id)
    get_open_location(db, request.location_id)
    level = _lock_level(db, location_id=request.location_id, part_id=request.part_id)

    on_hand_delta, reserved_delta = compute_effect(level.on_hand_qty, level.reserved_qty, request)
    if on_hand_delta == 0 and reserved_delta == 0:
        return None

    if request.tx_type == TxType.RECEIVE and request.unit_cost is not None:
        unit_cost = request.unit_cost
    elif request.tx_type == TxType.TRANSFER_IN and request.unit_cost is not None:
        unit_cost = request.unit_cost
    else:
        unit_cost = last_known_cost(db, location_id=request.location_id, part=part)

    level.on_hand_qty += on_hand_delta
    level.reserved_qty += reserved_delta
    _touch_timestamps(level, request.tx_type)

    transaction = InventoryTransaction(
        location_id=request.location_id,
        part_id=request.part_id,
        tx_type=request.tx_type,
        qty_change=on_hand_delta,
        reserved_change=reserved_delta,
        unit_cost_at_time=unit_cost,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
        performed_by=request.performed_by,
        notes=request.notes,
        created_at=_now(),
    )
    db.add(transaction)
    db.flush()

    logger.info(
        'ledger %s location=%s part=%s on_hand%+d reserved%+d -> on_hand=%s reserved=%s ref=%s:%s',
        request.tx_type.value,
        request.location_id,
        request.part_id,
        on_hand_delta,
        reserved_delta,
        level.on_hand_qty,
        level.reserved_qty,
        request.reference_type.value if request.reference_type else None,
        request.reference_id,
    )
    return transaction


def _backoff_seconds(attempt: int) -> float:
    return settings.ledger_retry_backoff_seconds * (2 ** max(attempt - 1, 0))


def apply_ledger_operation(db: Session, request: LedgerRequest) -> InventoryTransaction | None:
    """Apply ``request`` atomically, retrying on lock contention.

    Each attempt runs in its own SAVEPOINT so a rejected or contended
    attempt leaves no trace in the session. Domain errors are raised as-is;
    contention that outlives ``ledger_max_attempts`` becomes :class:`Conflict`.
    Returns ``None`` when the request resolves to no change.
    """
    attempts = max(settings.ledger_max_attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            with db.begin_nested():
                return _apply_once(db, request)
        except RETRYABLE_ERRORS as exc:
            if attempt >= attempts:
                logger.warning(
                    'ledger %s location=%s part=%s gave up after %s attempts: %s',
                    request.tx_type.value,
                    request.location_id,
                    request.part_id,
                    attempt,
                    exc.__class__.__name__,
                )
                raise Conflict(
                    f'Inventory for location {request.location_id}, part {request.part_id} is busy; try again'
                ) from exc
            delay = _backoff_seconds(attempt)
            logger.warning(
                'ledger %s location=%s part=%s contention on attempt %s/%s, retrying in %.3fs',
                request.tx_type.value,
                request.location_id,
                request.part_id,
                attempt,
                attempts,
                delay,
            )
            time.sleep(delay)
    raise Conflict('Ledger operation was not attempted')


def receive(
    db: Session,
    *,
    location_id: int,
    part_id: int,
    qty: int,
    unit_cost: Decimal | None,
    reference_type: ReferenceType | None = ReferenceType.RECEIVING,
    reference_id: str | None = None,
    performed_by: str | None = None,
    notes: str | None = None,
) -> InventoryTransaction:
    if unit_cost is not None and unit_cost < 0:
        raise InvalidQuantity('Unit cost cannot be negative')
    return apply_ledger_operation(
        db,
        LedgerRequest(
            location_id=location_id,
            part_id=part_id,
            tx_type=TxType.RECEIVE,
            qty=qty,
            unit_cost=unit_cost,
            reference_type=reference_type,
            reference_id=reference_id,
            performed_by=performed_by,
            notes=notes,
        ),
    )


def issue_stock(
    db: Session,
    *,
    location_id: int,
    part_id: int,
    qty: int,
    reference_type: ReferenceType | None = ReferenceType.WORK_ORDER,
    reference_id: str | None = None,
    performed_by: str | None = None,
    notes: str | None = None,
) -> InventoryTransaction:
    """Consume unreserved stock directly, without a work-order reservation."""
    return apply_ledger_operation(
        db,
        LedgerRequest(
            location_id=location_id,
            part_id=part_id,
            tx_type=TxType.ISSUE,
            qty=qty,
            from_reservation=False,
            reference_type=reference_type,
            reference_id=reference_id,
            performed_by=performed_by,
            notes=notes,
        ),
    )


def record_sale(
    db: Session,
    *,
    location_id: int,
    part_id: int,
    qty: int,
    reference_id: str | None = None,
    performed_by: str | None = None,
    notes: str | None = None,
) -> InventoryTransaction:
    return apply_ledger_operation(
        db,
        LedgerRequest(
            location_id=location_id,
            part_id=part_id,
            tx_type=TxType.SALE,
            qty=qty,
            reference_type=ReferenceType.SALE,
            reference_id=reference_id,
            performed_by=performed_by,
            notes=notes,
        ),
    )


def adjust(
    db: Session,
    *,
    location_id: int,
    part_id: int,
    reason_code: AdjustmentReason | str,
    set_to_qty: int | None = None,
    delta_qty: int | None = None,
    notes: str | None = None,
    performed_by: str | None = None,
    reference_id: str | None = None,
) -> InventoryTransaction | None:
    """Correct on-hand either to an absolute value or by a signed delta.

    Setting the value it already has writes nothing and returns ``None``.
    """
    try:
        reason = AdjustmentReason(reason_code)
    except ValueError as exc:
        valid = ', '.join(item.value for item in AdjustmentReason)
        raise ValueError(f'reasonCode must be one of: {valid}') from exc
    clean_notes = (notes or '').strip()
    if reason == AdjustmentReason.OTHER and not clean_notes:
        raise ValueError('Notes are required when reasonCode is OTHER')
    if (set_to_qty is None) == (delta_qty is None):
        raise InvalidQuantity('Provide exactly one of setToQty or deltaQty')
    if delta_qty == 0:
        raise InvalidQuantity('deltaQty cannot be zero')

    request = LedgerRequest(
        location_id=location_id,
        part_id=part_id,
        tx_type=TxType.ADJUST,
        qty=abs(delta_qty) if delta_qty is not None else 0,
        set_to_qty=set_to_qty,
        decrease=delta_qty is not None and delta_qty < 0,
        reference_type=ReferenceType.ADJUSTMENT,
        reference_id=reference_id,
        performed_by=performed_by,
        notes=f'{reason.value}: {clean_notes}' if clean_notes else reason.value,
    )
    return apply_ledger_operation(db, request)


def update_stock_settings(
    db: Session,
    *,
    location_id: int,
    part_id: int,
    min_stock_level: int | None = None,
    reorder_qty: int | None = None,
    bin_location: str | None = None,
) -> InventoryLevel:
    get_active_part(db, part_id)
    get_open_location(db, location_id)
    if min_stock_level is not None and min_stock_level < 0:
        raise InvalidQuantity('Minimum stock level cannot be negative')
    if reorder_qty is not None and reorder_qty < 0:
        raise InvalidQuantity('Reorder quantity cannot be negative')

    with db.begin_nested():
        level = _lock_level(db, location_id=location_id, part_id=part_id)
        if min_stock_level is not None:
            level.min_stock_level = min_stock_level
        if reorder_qty is not None:
            level.reorder_qty = reorder_qty
        if bin_location is not None:
            level.bin_location = bin_location.strip() or None
        level.updated_at = _now()
        db.flush()
    return level
