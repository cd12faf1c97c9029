from __future__ import annotations

from dataclasses import dataclass

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.db.models import Order, OrderStatus, TransferStatus, WarehouseTransfer
from app.stockflow.repos.orders import OrderRepository
from app.stockflow.repos.transfers import TransferRepository
from app.stockflow.services.audit import AuditEventPayload, AuditService
from app.stockflow.services.stock_ledger import actor_from_user
from app.stockflow.services.transfer_proposals import ProposalResult, TransferProposalEngine


@dataclass
class ProposalOutcome:
    order: Order
    existing_transfer: WarehouseTransfer | None = None
    proposal: ProposalResult | None = None


@dataclass
class OrderTransferStatus:
    order: Order
    transfer: WarehouseTransfer | None

    @property
    def is_blocked(self) -> bool:
        if self.order.status != OrderStatus.WAIT_TRANSFER:
            return False
        return self.transfer is None or self.transfer.status != TransferStatus.COMPLETED


class OrderTransferService:
    def __init__(self, db, engine: TransferProposalEngine | None = None):
        self.db = db
        self.orders = OrderRepository(db)
        self.transfers = TransferRepository(db)
        self.engine = engine or TransferProposalEngine(db)

    def check_and_propose(self, order_id, user, *, trace_id: str | None = None) -> ProposalOutcome:
        """Propose a transfer unless the order already references one."""
        order = self._get_order(order_id)
        if order.required_transfer_id is not None:
            return ProposalOutcome(order=order, existing_transfer=self.transfers.get(order.required_transfer_id))

        proposal = self.engine.propose(order.id, actor_from_user(user))
        self.db.refresh(order)
        if proposal is not None and proposal.transfer is not None:
            AuditService(self.db).record_event(
                AuditEventPayload(
                    user_id=str(user.id),
                    trace_id=trace_id,
                    actor=user.username,
                    action="transfer.propose",
                    entity_type="transfer",
                    entity_id=str(proposal.transfer.id),
                    before=None,
                    after={"status": proposal.transfer.status, "order_status": order.status},
                    metadata={
                        "order_id": str(order.id),
                        "transfer_number": proposal.transfer.transfer_number,
                        "unallocated_skus": [shortfall.sku for shortfall in proposal.unallocated],
                    },
                    result="success",
                    actor_role=user.role,
                )
            )
        return ProposalOutcome(order=order, proposal=proposal)

    def transfer_status(self, order_id) -> OrderTransferStatus:
        order = self._get_order(order_id)
        transfer = None
        if order.required_transfer_id is not None:
            transfer = self.transfers.get(order.required_transfer_id)
        return OrderTransferStatus(order=order, transfer=transfer)

    def transfer_statuses(self, order_ids) -> list[OrderTransferStatus]:
        """Statuses for the known orders among ``order_ids``; unknown ids are skipped."""
        orders = self.orders.list_by_ids(set(order_ids))
        transfers = self.transfers.list_by_ids(
            {order.required_transfer_id for order in orders if order.required_transfer_id is not None}
        )
        return [
            OrderTransferStatus(order=order, transfer=transfers.get(order.required_transfer_id))
            for order in orders
        ]

    def _get_order(self, order_id) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise AppError(ErrorCatalog.ORDER_NOT_FOUND, details={"order_id": str(order_id)})
        return order
