from datetime import datetime

from sqlalchemy import select, update

from app.stockflow.db.models import Warehouse


class WarehouseRepository:
    def __init__(self, db):
        self.db = db

    def get(self, warehouse_id) -> Warehouse | None:
        return self.db.get(Warehouse, warehouse_id)

    def get_by_code(self, code: str) -> Warehouse | None:
        return self.db.execute(select(Warehouse).where(Warehouse.code == code)).scalars().first()

    def list_warehouses(self, *, active_only: bool = False, warehouse_ids: set | None = None) -> list[Warehouse]:
        stmt = select(Warehouse)
        if active_only:
            stmt = stmt.where(Warehouse.is_active.is_(True))
        if warehouse_ids is not None:
            stmt = stmt.where(Warehouse.id.in_(list(warehouse_ids)))
        return self.db.execute(stmt.order_by(Warehouse.code.asc())).scalars().all()

    def list_operational(self) -> list[Warehouse]:
        stmt = select(Warehouse).where(Warehouse.is_operational.is_(True), Warehouse.is_active.is_(True))
        return self.db.execute(stmt.order_by(Warehouse.code.asc())).scalars().all()

    def set_operational(self, warehouse: Warehouse) -> Warehouse:
        now = datetime.utcnow()
        self.db.execute(
            update(Warehouse)
            .where(Warehouse.id != warehouse.id, Warehouse.is_operational.is_(True))
            .values(is_operational=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        warehouse.is_operational = True
        warehouse.updated_at = now
        self.db.add(warehouse)
        return warehouse
