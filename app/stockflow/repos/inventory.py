from datetime import datetime

from sqlalchemy import func, select

from app.stockflow.db.models import InventoryItem, WarehouseStock


class InventoryItemRepository:
    def __init__(self, db):
        self.db = db

    def get(self, item_id) -> InventoryItem | None:
        return self.db.get(InventoryItem, item_id)

    def get_by_sku(self, sku: str) -> InventoryItem | None:
        return self.db.execute(select(InventoryItem).where(InventoryItem.sku == sku)).scalars().first()

    def get_by_product_id(self, product_id: str) -> InventoryItem | None:
        stmt = select(InventoryItem).where(InventoryItem.product_id == product_id).order_by(InventoryItem.sku)
        return self.db.execute(stmt).scalars().first()

    def list_by_ids(self, item_ids) -> dict:
        ids = list(item_ids)
        if not ids:
            return {}
        rows = self.db.execute(select(InventoryItem).where(InventoryItem.id.in_(ids))).scalars().all()
        return {row.id: row for row in rows}

    def lock(self, item_id) -> InventoryItem | None:
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().first()

    def recompute_total(self, item_id) -> int:
        # Writers of any balance of this item serialize on the item row before summing.
        item = self.lock(item_id)
        total = self.db.execute(
            select(func.coalesce(func.sum(WarehouseStock.current_stock), 0)).where(WarehouseStock.item_id == item_id)
        ).scalar_one()
        item.current_stock = int(total)
        item.updated_at = datetime.utcnow()
        self.db.add(item)
        return item.current_stock
