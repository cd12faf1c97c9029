from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select

from app.stockflow.db.models import StockMovement, Warehouse, WarehouseStock


@dataclass(frozen=True)
class MovementQueryFilters:
    item_id: str | None = None
    warehouse_id: str | None = None
    transfer_id: str | None = None
    movement_type: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


class WarehouseStockRepository:
    def __init__(self, db):
        self.db = db

    def get_balance(self, warehouse_id, item_id) -> WarehouseStock | None:
        stmt = select(WarehouseStock).where(
            WarehouseStock.warehouse_id == warehouse_id,
            WarehouseStock.item_id == item_id,
        )
        return self.db.execute(stmt).scalars().first()

    def lock_balance(self, warehouse_id, item_id) -> WarehouseStock | None:
        stmt = (
            select(WarehouseStock)
            .where(WarehouseStock.warehouse_id == warehouse_id, WarehouseStock.item_id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().first()

    def create_balance(self, warehouse_id, item_id) -> WarehouseStock:
        row = WarehouseStock(
            warehouse_id=warehouse_id,
            item_id=item_id,
            current_stock=0,
            min_stock=0,
            updated_at=datetime.utcnow(),
        )
        self.db.add(row)
        self.db.flush()
        return row

    def list_for_warehouse(self, warehouse_id) -> list[WarehouseStock]:
        stmt = (
            select(WarehouseStock)
            .where(WarehouseStock.warehouse_id == warehouse_id)
            .order_by(WarehouseStock.item_id)
        )
        return self.db.execute(stmt).scalars().all()

    def list_positive_holders(self, item_id, *, exclude_warehouse_id) -> list[tuple[WarehouseStock, Warehouse]]:
        stmt = (
            select(WarehouseStock, Warehouse)
            .join(Warehouse, Warehouse.id == WarehouseStock.warehouse_id)
            .where(
                WarehouseStock.item_id == item_id,
                WarehouseStock.warehouse_id != exclude_warehouse_id,
                WarehouseStock.current_stock > 0,
                Warehouse.is_active.is_(True),
            )
            .order_by(WarehouseStock.current_stock.desc(), Warehouse.code.asc())
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]


class StockMovementRepository:
    def __init__(self, db):
        self.db = db

    def add(self, movement: StockMovement) -> StockMovement:
        self.db.add(movement)
        return movement

    def list_movements(
        self,
        filters: MovementQueryFilters,
        *,
        page: int,
        page_size: int,
    ) -> tuple[list[StockMovement], int]:
        query = select(StockMovement)
        if filters.item_id:
            query = query.where(StockMovement.item_id == filters.item_id)
        if filters.warehouse_id:
            query = query.where(StockMovement.warehouse_id == filters.warehouse_id)
        if filters.transfer_id:
            query = query.where(StockMovement.transfer_id == filters.transfer_id)
        if filters.movement_type:
            query = query.where(StockMovement.movement_type == filters.movement_type)
        if filters.from_date:
            query = query.where(StockMovement.created_at >= filters.from_date)
        if filters.to_date:
            query = query.where(StockMovement.created_at <= filters.to_date)
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = (
            self.db.execute(
                query.order_by(StockMovement.created_at.desc(), StockMovement.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        return rows, total

    def list_for_transfer(self, transfer_id) -> list[StockMovement]:
        stmt = select(StockMovement).where(StockMovement.transfer_id == transfer_id)
        return self.db.execute(stmt).scalars().all()
