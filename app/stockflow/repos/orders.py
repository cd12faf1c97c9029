from datetime import datetime

from sqlalchemy import select, update

from app.stockflow.db.models import Order, OrderLineItem, OrderStatus


class OrderRepository:
    def __init__(self, db):
        self.db = db

    def get(self, order_id) -> Order | None:
        return self.db.get(Order, order_id)

    def list_by_ids(self, order_ids) -> list[Order]:
        ids = list(order_ids)
        if not ids:
            return []
        stmt = select(Order).where(Order.id.in_(ids)).order_by(Order.order_number)
        return self.db.execute(stmt).scalars().all()

    def get_line_items(self, order_id) -> list[OrderLineItem]:
        stmt = (
            select(OrderLineItem)
            .where(OrderLineItem.order_id == order_id)
            .order_by(OrderLineItem.position, OrderLineItem.id)
        )
        return self.db.execute(stmt).scalars().all()

    def block_on_transfer(self, order_id, transfer_id) -> int:
        result = self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.required_transfer_id.is_(None))
            .values(
                required_transfer_id=transfer_id,
                status=OrderStatus.WAIT_TRANSFER,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def release_waiting(self, transfer_id, released_status: str) -> list:
        stmt = (
            select(Order.id)
            .where(Order.required_transfer_id == transfer_id, Order.status == OrderStatus.WAIT_TRANSFER)
            .with_for_update()
        )
        order_ids = [row[0] for row in self.db.execute(stmt).all()]
        if not order_ids:
            return []
        self.db.execute(
            update(Order)
            .where(Order.id.in_(order_ids), Order.status == OrderStatus.WAIT_TRANSFER)
            .values(status=released_status, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return order_ids
