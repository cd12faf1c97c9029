from app.stockflow.core.config import settings
from app.stockflow.repos.orders import OrderRepository


class OrderUnblockReactor:
    """Re-queues orders that were waiting on a transfer which just completed.

    Only orders still in ``WAIT_TRANSFER`` are released, so an operator's manual change wins.
    Runs inside the caller's transaction and never commits.
    """

    def __init__(self, db, released_status: str | None = None):
        self.orders = OrderRepository(db)
        self.released_status = released_status or settings.ORDER_RELEASED_STATUS

    def on_transfer_completed(self, transfer_id) -> list:
        return self.orders.release_waiting(transfer_id, self.released_status)
