from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class TransferLineCreate(BaseModel):
    item_id: UUID
    quantity: int = Field(gt=0)
    notes: str | None = None


class TransferCreateRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "from_warehouse_id": "5f0c1c9e-3c1b-4a57-9b1e-3c0d7a4f2a11",
                "to_warehouse_id": "0b7f8f5e-8f51-4a2e-9f0a-6d3c2b1a0e22",
                "notes": "Replenish fulfillment",
                "items": [{"item_id": "9a1d2c3b-4e5f-4a6b-8c7d-9e0f1a2b3c44", "quantity": 30}],
            }
        }
    }

    from_warehouse_id: UUID
    to_warehouse_id: UUID
    notes: str | None = None
    items: list[TransferLineCreate] = Field(min_length=1)


class TransferUpdateRequest(BaseModel):
    notes: str | None = None
    items: list[TransferLineCreate] | None = Field(default=None, min_length=1)


class TransferItemResponse(BaseModel):
    id: UUID
    item_id: UUID
    sku: str | None = None
    name: str | None = None
    quantity: int
    notes: str | None = None
    from_stock_before: int | None = None
    from_stock_after: int | None = None
    to_stock_before: int | None = None
    to_stock_after: int | None = None
    source_available: int | None = None


class TransferResponse(BaseModel):
    id: UUID
    transfer_number: str
    from_warehouse_id: UUID
    to_warehouse_id: UUID
    status: str
    is_auto_proposed: bool
    notes: str | None = None
    created_by_user_id: UUID | None = None
    created_by_name: str | None = None
    approved_by_user_id: UUID | None = None
    approved_by_name: str | None = None
    approved_at: datetime | None = None
    completed_by_user_id: UUID | None = None
    completed_by_name: str | None = None
    completed_at: datetime | None = None
    canceled_by_user_id: UUID | None = None
    canceled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None


class TransferDetailResponse(TransferResponse):
    items: list[TransferItemResponse]


class TransferListResponse(BaseModel):
    rows: list[TransferResponse]
    page: int
    page_size: int
    total: int


class PreviewItemResponse(BaseModel):
    item_id: UUID
    sku: str
    name: str
    quantity: int
    from_current: int
    from_after: int
    to_current: int
    to_after: int
    min_stock: int
    has_sufficient_stock: bool
    will_be_below_min_stock: bool


class TransferPreviewResponse(BaseModel):
    transfer_id: UUID
    status: str
    can_execute: bool
    items: list[PreviewItemResponse]
    violations: list[dict]


class ExecutionSummaryResponse(BaseModel):
    items_transferred: int
    stock_movements_created: int


class TransferExecuteResponse(BaseModel):
    transfer: TransferDetailResponse
    summary: ExecutionSummaryResponse
    unblocked_order_ids: list[UUID]
