from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.stockflow.core.config import settings
from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.logging import log_json
from app.stockflow.core.metrics import metrics
from app.stockflow.db.models import TransferStatus, WarehouseTransfer, WarehouseTransferItem
from app.stockflow.repos.orders import OrderRepository
from app.stockflow.repos.transfers import TransferRepository
from app.stockflow.services.stock_availability import (
    AvailabilityReport,
    Shortfall,
    SourceCandidate,
    StockAvailabilityChecker,
)
from app.stockflow.services.stock_ledger import MovementActor
from app.stockflow.services.transfer_numbers import next_transfer_number

logger = logging.getLogger("stockflow.transfers")


@dataclass(frozen=True)
class ProposedLine:
    shortfall: Shortfall
    source: SourceCandidate
    quantity: int


@dataclass
class ProposalResult:
    report: AvailabilityReport
    transfer: WarehouseTransfer | None = None
    items: list[WarehouseTransferItem] = field(default_factory=list)
    allocated: list[ProposedLine] = field(default_factory=list)
    unallocated: list[Shortfall] = field(default_factory=list)


class TransferProposalEngine:
    """Turns operational-warehouse shortfalls into a DRAFT transfer and blocks the order.

    A transfer has exactly one source warehouse. Shortfalls are grouped by their best-fit
    source (largest available quantity) and only the first group is proposed; the rest are
    returned as unallocated.
    """

    def __init__(self, db, checker: StockAvailabilityChecker | None = None):
        self.db = db
        self.checker = checker or StockAvailabilityChecker(db)
        self.transfers = TransferRepository(db)
        self.orders = OrderRepository(db)

    def propose(self, order_id, actor: MovementActor | None = None) -> ProposalResult | None:
        report = self.checker.check(order_id)
        if report.has_all_stock:
            return None

        groups: dict[object, list[ProposedLine]] = {}
        unallocated: list[Shortfall] = []
        for shortfall in report.shortfalls:
            if not shortfall.candidates:
                unallocated.append(shortfall)
                continue
            best = shortfall.candidates[0]
            quantity = min(shortfall.missing, best.available)
            groups.setdefault(best.warehouse_id, []).append(ProposedLine(shortfall, best, quantity))

        if not groups:
            return ProposalResult(report=report, unallocated=unallocated)

        source_id, lines = next(iter(groups.items()))
        for other_source, other_lines in groups.items():
            if other_source != source_id:
                unallocated.extend(line.shortfall for line in other_lines)

        order_number = self.orders.get(report.order_id).order_number
        transfer, items = self._create_with_retry(
            order_id=report.order_id,
            order_number=order_number,
            source_id=source_id,
            destination_id=report.operational_warehouse.id,
            lines=lines,
            actor=actor,
        )
        metrics.increment_transfer_proposed()
        log_json(
            logger,
            {
                "event": "transfer_proposed",
                "transfer_id": str(transfer.id),
                "transfer_number": transfer.transfer_number,
                "order_id": str(report.order_id),
                "from_warehouse_id": str(source_id),
                "to_warehouse_id": str(report.operational_warehouse.id),
                "items": len(items),
                "unallocated": len(unallocated),
            },
        )
        return ProposalResult(
            report=report,
            transfer=transfer,
            items=items,
            allocated=lines,
            unallocated=unallocated,
        )

    def _create_with_retry(self, *, order_id, order_number, source_id, destination_id, lines, actor):
        attempts = max(1, settings.TRANSFER_NUMBER_MAX_RETRIES)
        last_error: IntegrityError | None = None
        for attempt in range(1, attempts + 1):
            now = datetime.utcnow()
            transfer = WarehouseTransfer(
                transfer_number=next_transfer_number(self.transfers, now),
                from_warehouse_id=source_id,
                to_warehouse_id=destination_id,
                status=TransferStatus.DRAFT,
                is_auto_proposed=True,
                notes=f"Auto-proposed for order {order_number}",
                created_by_user_id=actor.user_id if actor else None,
                created_by_name=actor.user_name if actor else None,
                created_at=now,
            )
            items = [
                WarehouseTransferItem(
                    item_id=line.shortfall.item_id,
                    quantity=line.quantity,
                    notes=f"Order {order_number}: missing {line.shortfall.missing} of {line.shortfall.sku}",
                    created_at=now,
                )
                for line in lines
            ]
            try:
                self.transfers.add_with_items(transfer, items)
                if self.orders.block_on_transfer(order_id, transfer.id) == 0:
                    self.db.rollback()
                    raise AppError(ErrorCatalog.TRANSFER_ALREADY_PROPOSED, details={"order_id": str(order_id)})
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                last_error = exc
                log_json(
                    logger,
                    {
                        "event": "transfer_number_collision",
                        "transfer_number": transfer.transfer_number,
                        "attempt": attempt,
                    },
                )
                continue
            self.db.refresh(transfer)
            for item in items:
                self.db.refresh(item)
            return transfer, items
        raise AppError(
            ErrorCatalog.TRANSACTION_FAILED,
            details={"reason": "transfer_number_allocation", "attempts": attempts},
        ) from last_error
