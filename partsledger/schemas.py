from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

from partsledger.models import (
    AdjustmentReason,
    AdjustmentStatus,
    AdjustmentType,
    CycleCountStatus,
    LocationType,
    PartLineStatus,
    ReceivingTicketStatus,
    ReferenceType,
    TransferStatus,
    TxType,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Requests


class LocationCreate(ApiModel):
    name: str
    location_type: LocationType = LocationType.SHOP


class PartCreate(ApiModel):
    sku: str
    name: str
    category: str = 'GENERAL'
    uom: str = 'each'
    default_cost: Decimal = Decimal('0.00')
    default_retail_price: Decimal = Decimal('0.00')
    taxable: bool = False


class ReceiveRequest(ApiModel):
    location_id: int
    part_id: int
    qty: int
    unit_cost: Decimal | None = None
    reference_id: str | None = None
    notes: str | None = None


class AdjustRequest(ApiModel):
    location_id: int
    part_id: int
    reason_code: AdjustmentReason
    set_to_qty: int | None = None
    delta_qty: int | None = None
    notes: str | None = None


class SaleRequest(ApiModel):
    location_id: int
    part_id: int
    qty: int
    reference_id: str | None = None
    notes: str | None = None


class ConsumeRequest(ApiModel):
    location_id: int
    part_id: int
    qty: int
    work_order_id: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    notes: str | None = None


class StockSettingsUpdate(ApiModel):
    location_id: int
    part_id: int
    min_stock_level: int | None = None
    reorder_qty: int | None = None
    bin_location: str | None = None


class ReservePartRequest(ApiModel):
    part_id: int
    location_id: int
    qty_requested: int
    unit_price: Decimal | None = None


class IssuePartRequest(ApiModel):
    qty_to_issue: int


class ReturnPartRequest(ApiModel):
    qty_to_return: int


class TransferLineCreate(ApiModel):
    part_id: int
    qty: int
    notes: str | None = None


class TransferCreate(ApiModel):
    from_location_id: int
    to_location_id: int
    lines: list[TransferLineCreate] = Field(default_factory=list)
    notes: str | None = None


class ReceivedLine(ApiModel):
    line_id: int
    qty_received: int


class TransferReceive(ApiModel):
    lines: list[ReceivedLine] = Field(default_factory=list)


class ReceivingTicketCreate(ApiModel):
    location_id: int
    vendor_name: str | None = None
    reference_number: str | None = None


class ReceivingLineCreate(ApiModel):
    part_id: int
    qty_received: int
    unit_cost: Decimal | None = None
    bin_location_override: str | None = None


class AdjustmentCreate(ApiModel):
    location_id: int
    part_id: int
    adjustment_type: AdjustmentType
    reason_code: AdjustmentReason
    set_to_qty: int | None = None
    delta_qty: int | None = None
    notes: str | None = None
    attachment_url: str | None = None


class AdjustmentUpdate(ApiModel):
    adjustment_type: AdjustmentType | None = None
    reason_code: AdjustmentReason | None = None
    set_to_qty: int | None = None
    delta_qty: int | None = None
    notes: str | None = None
    attachment_url: str | None = None


class CycleCountCreate(ApiModel):
    location_id: int
    part_ids: list[int] | None = None
    category: str | None = None


class CycleCountLineUpdate(ApiModel):
    counted_qty: int
    notes: str | None = None


class BarcodeAssign(ApiModel):
    part_id: int
    barcode: str
    pack_qty: int = 1
    vendor: str | None = None


class ScanPost(ApiModel):
    write_token: str = ''
    barcode: str | None = None


class ScanClose(ApiModel):
    token: str = ''


# Responses


class LocationOut(ApiModel):
    id: int
    name: str
    location_type: LocationType


class PartOut(ApiModel):
    id: int
    sku: str
    name: str
    category: str
    uom: str
    default_cost: Decimal
    default_retail_price: Decimal
    taxable: bool
    active: bool


class TransactionOut(ApiModel):
    id: int
    location_id: int
    part_id: int
    tx_type: TxType
    qty_change: int
    reserved_change: int
    unit_cost_at_time: Decimal | None
    reference_type: ReferenceType | None
    reference_id: str | None
    performed_by: str | None
    notes: str | None
    created_at: datetime


class AdjustResult(ApiModel):
    changed: bool
    transaction: TransactionOut | None = None


class LevelOut(ApiModel):
    location_id: int
    part_id: int
    on_hand_qty: int
    reserved_qty: int
    available_qty: int
    min_stock_level: int
    reorder_qty: int | None
    bin_location: str | None


class LevelRowOut(LevelOut):
    sku: str
    name: str
    category: str
    uom: str
    last_received_at: datetime | None
    last_issued_at: datetime | None
    last_counted_at: datetime | None
    stock_status: str


class InventoryStatusOut(ApiModel):
    location_id: int
    total_items: int
    out_of_stock: int
    low_stock: int
    total_on_hand: int
    total_reserved: int


class LedgerReplayOut(ApiModel):
    location_id: int
    part_id: int
    on_hand: int
    reserved: int
    recorded_on_hand: int
    recorded_reserved: int
    transaction_count: int
    consistent: bool


class PartLineOut(ApiModel):
    id: int
    work_order_id: str
    part_id: int
    location_id: int
    qty_requested: int
    qty_reserved: int
    qty_issued: int
    unit_price: Decimal
    status: PartLineStatus


class TransferLineOut(ApiModel):
    id: int
    part_id: int
    qty: int
    qty_received: int | None
    unit_cost_at_time: Decimal | None
    notes: str | None


class TransferOut(ApiModel):
    id: int
    transfer_number: str
    from_location_id: int
    to_location_id: int
    status: TransferStatus
    notes: str | None
    created_by: str | None
    sent_by: str | None
    received_by: str | None
    sent_at: datetime | None
    received_at: datetime | None
    created_at: datetime
    lines: list[TransferLineOut] = Field(default_factory=list)


class CycleCountLineOut(ApiModel):
    id: int
    part_id: int
    sku: str
    name: str
    system_on_hand_qty: int
    counted_qty: int | None
    variance_qty: int | None
    notes: str | None


class CycleCountOut(ApiModel):
    id: int
    location_id: int
    status: CycleCountStatus
    created_by: str | None
    approved_by: str | None
    approved_at: datetime | None
    created_at: datetime
    lines: list[CycleCountLineOut] = Field(default_factory=list)


class CycleCountApproval(ApiModel):
    id: int
    status: CycleCountStatus
    variances_posted: int


class BarcodeOut(ApiModel):
    id: int
    barcode_value: str
    part_id: int
    pack_qty: int
    vendor: str | None


class StockAtLocationOut(ApiModel):
    location_id: int
    location_name: str
    on_hand_qty: int
    reserved_qty: int
    available_qty: int
    bin_location: str | None


class BarcodeLookupOut(ApiModel):
    barcode: BarcodeOut
    part: PartOut
    inventory_by_location: list[StockAtLocationOut]


class ScanSessionOut(ApiModel):
    session_id: str
    read_token: str
    mobile_url: str
    expires_at: datetime


class ScanAccepted(ApiModel):
    ok: bool = True
    sequence: int


class ReceivingLineOut(ApiModel):
    id: int
    part_id: int
    qty_received: int
    unit_cost: Decimal | None
    bin_location_override: str | None


class ReceivingTicketOut(ApiModel):
    id: int
    ticket_number: str
    location_id: int
    vendor_name: str | None
    reference_number: str | None
    status: ReceivingTicketStatus
    created_by: str | None
    posted_by: str | None
    posted_at: datetime | None
    created_at: datetime
    lines: list[ReceivingLineOut] = Field(default_factory=list)


class AdjustmentOut(ApiModel):
    id: int
    location_id: int
    part_id: int
    adjustment_type: AdjustmentType
    set_to_qty: int | None
    delta_qty: int | None
    reason_code: AdjustmentReason
    notes: str | None
    attachment_url: str | None
    status: AdjustmentStatus
    qty_change: int | None
    created_by: str | None
    posted_by: str | None
    posted_at: datetime | None
    created_at: datetime
