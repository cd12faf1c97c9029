from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class StockMovementResponse(BaseModel):
    id: UUID
    item_id: UUID
    movement_type: str
    quantity: int
    previous_stock: int
    new_stock: int
    warehouse_id: UUID
    transfer_id: UUID | None = None
    reason: str | None = None
    notes: str | None = None
    user_id: UUID | None = None
    user_name: str | None = None
    created_at: datetime


class StockMovementListResponse(BaseModel):
    rows: list[StockMovementResponse]
    page: int
    page_size: int
    total: int


class StockAdjustmentRequest(BaseModel):
    warehouse_id: UUID
    item_id: UUID
    movement_type: Literal["ADJUSTMENT_PLUS", "ADJUSTMENT_MINUS"]
    quantity: int = Field(gt=0)
    reason: str | None = None
    notes: str | None = None


class StockAdjustmentResponse(BaseModel):
    movement: StockMovementResponse
    warehouse_stock: int
    item_total: int
