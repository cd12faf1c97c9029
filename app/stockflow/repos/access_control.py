from sqlalchemy import select

from app.stockflow.db.models import UserWarehouseAccess


class WarehouseAccessRepository:
    def __init__(self, db):
        self.db = db

    def list_warehouse_ids_for_user(self, user_id) -> set:
        stmt = select(UserWarehouseAccess.warehouse_id).where(UserWarehouseAccess.user_id == user_id)
        return {row[0] for row in self.db.execute(stmt).all()}

    def grant(self, user_id, warehouse_id) -> UserWarehouseAccess:
        grant = UserWarehouseAccess(user_id=user_id, warehouse_id=warehouse_id)
        self.db.add(grant)
        self.db.commit()
        self.db.refresh(grant)
        return grant
