from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')


class Base(DeclarativeBase):
    pass


class LocationType(str, Enum):
    WAREHOUSE = 'WAREHOUSE'
    SHOP = 'SHOP'


class TxType(str, Enum):
    RECEIVE = 'RECEIVE'
    RESERVE = 'RESERVE'
    ISSUE = 'ISSUE'
    RETURN = 'RETURN'
    ADJUST = 'ADJUST'
    TRANSFER_OUT = 'TRANSFER_OUT'
    TRANSFER_IN = 'TRANSFER_IN'
    SALE = 'SALE'
    CYCLE_COUNT_ADJUST = 'CYCLE_COUNT_ADJUST'


class ReferenceType(str, Enum):
    RECEIVING = 'RECEIVING'
    RECEIVING_TICKET = 'RECEIVING_TICKET'
    WORK_ORDER = 'WORK_ORDER'
    TRANSFER = 'TRANSFER'
    ADJUSTMENT = 'ADJUSTMENT'
    CYCLE_COUNT = 'CYCLE_COUNT'
    SALE = 'SALE'


class AdjustmentReason(str, Enum):
    DAMAGED = 'DAMAGED'
    LOST = 'LOST'
    FOUND = 'FOUND'
    DATA_CORRECTION = 'DATA_CORRECTION'
    RETURN_TO_VENDOR = 'RETURN_TO_VENDOR'
    OTHER = 'OTHER'


class PartLineStatus(str, Enum):
    RESERVED = 'RESERVED'
    ISSUED = 'ISSUED'
    BACKORDERED = 'BACKORDERED'
    RETURNED = 'RETURNED'


class TransferStatus(str, Enum):
    DRAFT = 'DRAFT'
    SENT = 'SENT'
    RECEIVED = 'RECEIVED'
    CANCELLED = 'CANCELLED'


class CycleCountStatus(str, Enum):
    DRAFT = 'DRAFT'
    COUNTING = 'COUNTING'
    SUBMITTED = 'SUBMITTED'
    APPROVED = 'APPROVED'


class ReceivingTicketStatus(str, Enum):
    DRAFT = 'DRAFT'
    POSTED = 'POSTED'


class AdjustmentType(str, Enum):
    SET_TO_QTY = 'SET_TO_QTY'
    DELTA = 'DELTA'


class AdjustmentStatus(str, Enum):
    DRAFT = 'DRAFT'
    POSTED = 'POSTED'


class Location(Base):
    __tablename__ = 'locations'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    location_type: Mapped[LocationType] = mapped_column(
        SQLEnum(LocationType, name='location_type'), nullable=False, default=LocationType.SHOP, server_default='SHOP'
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Part(Base):
    __tablename__ = 'parts'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, default='GENERAL', server_default='GENERAL')
    manufacturer: Mapped[str | None] = mapped_column(Text)
    uom: Mapped[str] = mapped_column(String(32), nullable=False, default='each', server_default='each')
    default_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    default_retail_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal('0.00'), server_default='0'
    )
    taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PartBarcode(Base):
    __tablename__ = 'part_barcodes'
    __table_args__ = (
        CheckConstraint('pack_qty >= 1', name='part_barcodes_pack_qty_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    barcode_value: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id', ondelete='CASCADE'), nullable=False, index=True)
    pack_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    vendor: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryLevel(Base):
    __tablename__ = 'inventory_levels'
    __table_args__ = (
        UniqueConstraint('location_id', 'part_id', name='inventory_levels_location_part_uniq'),
        CheckConstraint('on_hand_qty >= 0', name='inventory_levels_on_hand_non_negative_ck'),
        CheckConstraint('reserved_qty >= 0', name='inventory_levels_reserved_non_negative_ck'),
        CheckConstraint('reserved_qty <= on_hand_qty', name='inventory_levels_reserved_within_on_hand_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    on_hand_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reserved_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    min_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    reorder_qty: Mapped[int | None] = mapped_column(Integer)
    bin_location: Mapped[str | None] = mapped_column(Text)
    last_received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_counted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __mapper_args__ = {'version_id_col': version}

    @property
    def available_qty(self) -> int:
        return self.on_hand_qty - self.reserved_qty


class InventoryTransaction(Base):
    __tablename__ = 'inventory_transactions'
    __table_args__ = (
        Index('inventory_transactions_location_part_idx', 'location_id', 'part_id'),
        Index('inventory_transactions_reference_idx', 'reference_type', 'reference_id'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    tx_type: Mapped[TxType] = mapped_column(SQLEnum(TxType, name='inventory_tx_type'), nullable=False, index=True)
    qty_change: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_change: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit_cost_at_time: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    reference_type: Mapped[ReferenceType | None] = mapped_column(SQLEnum(ReferenceType, name='inventory_reference_type'))
    reference_id: Mapped[str | None] = mapped_column(String(64))
    performed_by: Mapped[str | None] = mapped_column(String(64))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )


class WorkOrderPartLine(Base):
    __tablename__ = 'work_order_part_lines'
    __table_args__ = (
        CheckConstraint('qty_reserved >= 0 AND qty_reserved <= qty_requested', name='wo_part_lines_reserved_ck'),
        CheckConstraint('qty_issued >= 0 AND qty_issued <= qty_reserved', name='wo_part_lines_issued_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    work_order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    qty_requested: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    qty_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal('0.00'), server_default='0')
    status: Mapped[PartLineStatus] = mapped_column(SQLEnum(PartLineStatus, name='part_line_status'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryTransfer(Base):
    __tablename__ = 'inventory_transfers'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    from_location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    to_location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    status: Mapped[TransferStatus] = mapped_column(
        SQLEnum(TransferStatus, name='transfer_status'), nullable=False, default=TransferStatus.DRAFT, server_default='DRAFT'
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(64))
    sent_by: Mapped[str | None] = mapped_column(String(64))
    received_by: Mapped[str | None] = mapped_column(String(64))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryTransferLine(Base):
    __tablename__ = 'inventory_transfer_lines'
    __table_args__ = (
        CheckConstraint('qty > 0', name='inventory_transfer_lines_qty_positive_ck'),
        CheckConstraint('qty_received IS NULL OR qty_received >= 0', name='inventory_transfer_lines_received_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('inventory_transfers.id', ondelete='CASCADE'), nullable=False, index=True
    )
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_received: Mapped[int | None] = mapped_column(Integer)
    unit_cost_at_time: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    notes: Mapped[str | None] = mapped_column(Text)


class CycleCount(Base):
    __tablename__ = 'cycle_counts'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False)
    status: Mapped[CycleCountStatus] = mapped_column(
        SQLEnum(CycleCountStatus, name='cycle_count_status'),
        nullable=False,
        default=CycleCountStatus.DRAFT,
        server_default='DRAFT',
    )
    created_by: Mapped[str | None] = mapped_column(String(64))
    approved_by: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CycleCountLine(Base):
    __tablename__ = 'cycle_count_lines'
    __table_args__ = (
        CheckConstraint('counted_qty IS NULL OR counted_qty >= 0', name='cycle_count_lines_counted_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    cycle_count_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('cycle_counts.id', ondelete='CASCADE'), nullable=False, index=True
    )
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    system_on_hand_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_qty: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)


class ReceivingTicket(Base):
    __tablename__ = 'receiving_tickets'

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False, index=True)
    vendor_name: Mapped[str | None] = mapped_column(Text)
    reference_number: Mapped[str | None] = mapped_column(String(128))
    status: Mapped[ReceivingTicketStatus] = mapped_column(
        SQLEnum(ReceivingTicketStatus, name='receiving_ticket_status'),
        nullable=False,
        default=ReceivingTicketStatus.DRAFT,
        server_default='DRAFT',
    )
    created_by: Mapped[str | None] = mapped_column(String(64))
    posted_by: Mapped[str | None] = mapped_column(String(64))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ReceivingTicketLine(Base):
    __tablename__ = 'receiving_ticket_lines'
    __table_args__ = (
        CheckConstraint('qty_received > 0', name='receiving_ticket_lines_qty_positive_ck'),
        CheckConstraint('unit_cost IS NULL OR unit_cost >= 0', name='receiving_ticket_lines_cost_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('receiving_tickets.id', ondelete='CASCADE'), nullable=False, index=True
    )
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    qty_received: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    bin_location_override: Mapped[str | None] = mapped_column(Text)


class InventoryAdjustment(Base):
    __tablename__ = 'inventory_adjustments'
    __table_args__ = (
        CheckConstraint('set_to_qty IS NULL OR set_to_qty >= 0', name='inventory_adjustments_set_to_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    location_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('locations.id'), nullable=False, index=True)
    part_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('parts.id'), nullable=False)
    adjustment_type: Mapped[AdjustmentType] = mapped_column(SQLEnum(AdjustmentType, name='adjustment_type'), nullable=False)
    set_to_qty: Mapped[int | None] = mapped_column(Integer)
    delta_qty: Mapped[int | None] = mapped_column(Integer)
    reason_code: Mapped[AdjustmentReason] = mapped_column(SQLEnum(AdjustmentReason, name='adjustment_reason'), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    attachment_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[AdjustmentStatus] = mapped_column(
        SQLEnum(AdjustmentStatus, name='adjustment_status'),
        nullable=False,
        default=AdjustmentStatus.DRAFT,
        server_default='DRAFT',
    )
    qty_change: Mapped[int | None] = mapped_column(Integer)
    created_by: Mapped[str | None] = mapped_column(String(64))
    posted_by: Mapped[str | None] = mapped_column(String(64))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
