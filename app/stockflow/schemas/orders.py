from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from app.stockflow.schemas.transfers import TransferDetailResponse, TransferResponse


class SourceCandidateResponse(BaseModel):
    warehouse_id: UUID
    warehouse_code: str
    warehouse_name: str
    available: int


class ShortfallResponse(BaseModel):
    sku: str | None
    title: str
    item_id: UUID | None
    required: int
    available: int
    missing: int
    candidates: list[SourceCandidateResponse]


class StockCheckResponse(BaseModel):
    order_id: UUID
    operational_warehouse_id: UUID
    operational_warehouse_code: str
    has_all_stock: bool
    shortfalls: list[ShortfallResponse]


class TransferProposalResponse(BaseModel):
    order_id: UUID
    order_status: str
    proposed: bool
    already_proposed: bool
    transfer: TransferDetailResponse | TransferResponse | None = None
    unallocated: list[ShortfallResponse] = []


class OrderTransferStatusResponse(BaseModel):
    order_id: UUID
    order_status: str
    required_transfer_id: UUID | None
    transfer_status: str | None
    transfer_number: str | None
    is_blocked: bool


class OrderTransferStatusBatchRequest(BaseModel):
    order_ids: list[UUID] = Field(min_length=1, max_length=100)


class OrderTransferStatusSummary(BaseModel):
    total: int
    with_pending_transfer: int
    ready_for_invoice: int


class OrderTransferStatusBatchResponse(BaseModel):
    orders: list[OrderTransferStatusResponse]
    summary: OrderTransferStatusSummary
