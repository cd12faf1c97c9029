from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class WarehouseResponse(BaseModel):
    id: UUID
    code: str
    name: str
    is_active: bool
    is_operational: bool


class WarehouseListResponse(BaseModel):
    rows: list[WarehouseResponse]


class WarehouseStockRow(BaseModel):
    item_id: UUID
    sku: str
    name: str
    unit: str
    is_composite: bool
    current_stock: int
    min_stock: int


class WarehouseStockResponse(BaseModel):
    warehouse: WarehouseResponse
    rows: list[WarehouseStockRow]
