from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.stockflow.core.config import settings
from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.errors import is_lock_timeout
from app.stockflow.core.logging import log_json
from app.stockflow.core.metrics import metrics
from app.stockflow.db.models import MovementType, TransferStatus, WarehouseTransfer, WarehouseTransferItem
from app.stockflow.repos.inventory import InventoryItemRepository
from app.stockflow.repos.transfers import TransferRepository
from app.stockflow.repos.warehouses import WarehouseRepository
from app.stockflow.services.access_control import AccessControlService
from app.stockflow.services.audit import AuditEventPayload, AuditService
from app.stockflow.services.order_unblock import OrderUnblockReactor
from app.stockflow.services.stock_ledger import StockLedger, actor_from_user

logger = logging.getLogger("stockflow.transfers")


@dataclass(frozen=True)
class Violation:
    reason_code: str
    message: str
    item_id: str | None = None
    sku: str | None = None
    warehouse_id: str | None = None
    required: int | None = None
    available: int | None = None

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class ExecutionSummary:
    items_transferred: int
    stock_movements_created: int


@dataclass
class ExecutionResult:
    transfer: WarehouseTransfer
    items: list[WarehouseTransferItem]
    summary: ExecutionSummary
    unblocked_order_ids: list = field(default_factory=list)


def executable_statuses() -> tuple[str, ...]:
    if settings.TRANSFER_REQUIRE_APPROVAL:
        return (TransferStatus.PENDING,)
    return (TransferStatus.PENDING, TransferStatus.DRAFT)


def violations_error(violations: list[Violation]) -> AppError:
    error = ErrorCatalog.TRANSFER_PRECONDITION_FAILED
    if all(violation.reason_code == "INSUFFICIENT_STOCK" for violation in violations):
        error = ErrorCatalog.INSUFFICIENT_STOCK
    return AppError(error, details={"violations": [violation.to_dict() for violation in violations]})


class TransferExecutionEngine:
    """Moves the stock of a transfer from source to destination in one transaction.

    Every precondition is evaluated up front and reported together. Inside the transaction
    the status compare-and-set is the serialization point: of several concurrent executions
    exactly one updates the row, the others fail with ``TRANSFER_STATE_CONFLICT`` before
    touching any balance.
    """

    def __init__(
        self,
        db,
        access: AccessControlService | None = None,
        reactor: OrderUnblockReactor | None = None,
    ):
        self.db = db
        self.transfers = TransferRepository(db)
        self.warehouses = WarehouseRepository(db)
        self.items = InventoryItemRepository(db)
        self.ledger = StockLedger(db)
        self.access = access or AccessControlService(db)
        self.reactor = reactor or OrderUnblockReactor(db)

    def execute(self, transfer_id, executor, *, trace_id: str | None = None) -> ExecutionResult:
        transfer = self.transfers.get(transfer_id)
        if transfer is None:
            raise AppError(ErrorCatalog.TRANSFER_NOT_FOUND, details={"transfer_id": str(transfer_id)})

        self.access.ensure_warehouse_access(
            executor,
            [transfer.from_warehouse_id, transfer.to_warehouse_id],
            trace_id=trace_id,
            action="transfer.execute",
        )

        expected = executable_statuses()
        if transfer.status not in expected:
            self._record_failure(transfer, ErrorCatalog.TRANSFER_INVALID_STATE.code, trace_id)
            raise AppError(
                ErrorCatalog.TRANSFER_INVALID_STATE,
                details={"status": transfer.status, "expected": list(expected)},
            )

        lines = self.transfers.get_items(transfer.id)
        violations = self.collect_violations(transfer, lines)
        if violations:
            error = violations_error(violations)
            self._record_failure(transfer, error.error.code, trace_id)
            raise error

        previous_status = transfer.status
        try:
            summary, unblocked = self._apply(transfer, lines, executor, expected)
            self.db.commit()
        except AppError as exc:
            self.db.rollback()
            self._record_failure(transfer, exc.error.code, trace_id)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            if is_lock_timeout(exc):
                self._record_failure(transfer, ErrorCatalog.LOCK_TIMEOUT.code, trace_id)
                raise
            self._record_failure(transfer, ErrorCatalog.TRANSACTION_FAILED.code, trace_id)
            logger.exception("Transfer execution rolled back", extra={"transfer_id": str(transfer_id)})
            raise AppError(
                ErrorCatalog.TRANSACTION_FAILED,
                details={"transfer_id": str(transfer_id), "type": exc.__class__.__name__},
            ) from exc

        self.db.refresh(transfer)
        lines = self.transfers.get_items(transfer.id)
        metrics.increment_transfer_executed()
        log_json(
            logger,
            {
                "event": "transfer_executed",
                "transfer_id": str(transfer.id),
                "transfer_number": transfer.transfer_number,
                "from_warehouse_id": str(transfer.from_warehouse_id),
                "to_warehouse_id": str(transfer.to_warehouse_id),
                "items_transferred": summary.items_transferred,
                "stock_movements_created": summary.stock_movements_created,
                "unblocked_orders": len(unblocked),
                "executed_by": executor.username,
                "trace_id": trace_id,
            },
        )
        AuditService(self.db).record_event(
            AuditEventPayload(
                user_id=str(executor.id),
                trace_id=trace_id,
                actor=executor.username,
                action="transfer.execute",
                entity_type="transfer",
                entity_id=str(transfer.id),
                before={"status": previous_status},
                after={"status": transfer.status},
                metadata={
                    "transfer_number": transfer.transfer_number,
                    "items_transferred": summary.items_transferred,
                    "unblocked_order_ids": [str(order_id) for order_id in unblocked],
                },
                result="success",
                actor_role=executor.role,
            )
        )
        return ExecutionResult(transfer=transfer, items=lines, summary=summary, unblocked_order_ids=unblocked)

    def collect_violations(self, transfer: WarehouseTransfer, lines: list[WarehouseTransferItem]) -> list[Violation]:
        violations: list[Violation] = []
        if transfer.from_warehouse_id == transfer.to_warehouse_id:
            violations.append(
                Violation(
                    reason_code="SAME_WAREHOUSE",
                    message="Source and destination warehouses must differ",
                    warehouse_id=str(transfer.from_warehouse_id),
                )
            )
        for label, warehouse_id in (("source", transfer.from_warehouse_id), ("destination", transfer.to_warehouse_id)):
            warehouse = self.warehouses.get(warehouse_id)
            if warehouse is None or not warehouse.is_active:
                violations.append(
                    Violation(
                        reason_code="WAREHOUSE_INACTIVE",
                        message=f"The {label} warehouse is not active",
                        warehouse_id=str(warehouse_id),
                    )
                )
        if not lines:
            violations.append(Violation(reason_code="NO_ITEMS", message="Transfer has no items"))

        requested: dict[object, int] = {}
        for line in lines:
            requested[line.item_id] = requested.get(line.item_id, 0) + line.quantity

        items = self.items.list_by_ids(requested)
        for item_id, quantity in requested.items():
            item = items.get(item_id)
            if item is None:
                violations.append(
                    Violation(reason_code="ITEM_NOT_FOUND", message="Item does not exist", item_id=str(item_id))
                )
                continue
            if item.is_composite:
                violations.append(
                    Violation(
                        reason_code="COMPOSITE_ITEM",
                        message="Composite items cannot be transferred",
                        item_id=str(item.id),
                        sku=item.sku,
                    )
                )
                continue
            available = self.ledger.balance_of(transfer.from_warehouse_id, item.id)
            if available < quantity:
                violations.append(
                    Violation(
                        reason_code="INSUFFICIENT_STOCK",
                        message="Insufficient stock in the source warehouse",
                        item_id=str(item.id),
                        sku=item.sku,
                        required=quantity,
                        available=available,
                    )
                )
        return violations

    def _apply(self, transfer, lines, executor, expected) -> tuple[ExecutionSummary, list]:
        now = datetime.utcnow()
        actor = actor_from_user(executor)
        updated = self.transfers.compare_and_set_status(
            transfer.id,
            expected,
            {
                "status": TransferStatus.COMPLETED,
                "completed_by_user_id": executor.id,
                "completed_by_name": actor.user_name,
                "completed_at": now,
                "updated_at": now,
            },
        )
        if updated == 0:
            raise AppError(ErrorCatalog.TRANSFER_STATE_CONFLICT, details={"transfer_id": str(transfer.id)})

        source = self.warehouses.get(transfer.from_warehouse_id)
        destination = self.warehouses.get(transfer.to_warehouse_id)
        lock_order = sorted((source.id, destination.id), key=str)
        movements = 0
        for line in sorted(lines, key=lambda row: str(row.item_id)):
            if line.from_stock_before is not None:
                raise violations_error(
                    [
                        Violation(
                            reason_code="SNAPSHOT_ALREADY_WRITTEN",
                            message="Execution snapshot already recorded for this line",
                            item_id=str(line.item_id),
                        )
                    ]
                )
            item = self.items.get(line.item_id)
            locked = {
                warehouse_id: self.ledger.lock_balance(
                    warehouse_id, line.item_id, create_if_absent=warehouse_id == destination.id
                )
                for warehouse_id in lock_order
            }
            outgoing = self.ledger.apply_delta(locked[source.id], -line.quantity, sku=item.sku)
            incoming = self.ledger.apply_delta(locked[destination.id], line.quantity, sku=item.sku)
            self.ledger.append(
                outgoing,
                movement_type=MovementType.TRANSFER,
                actor=actor,
                transfer_id=transfer.id,
                reason=f"Transfer to {destination.name}",
                notes=f"Transfer {transfer.transfer_number}",
            )
            self.ledger.append(
                incoming,
                movement_type=MovementType.TRANSFER,
                actor=actor,
                transfer_id=transfer.id,
                reason=f"Transfer from {source.name}",
                notes=f"Transfer {transfer.transfer_number}",
            )
            movements += 2
            line.from_stock_before = outgoing.before
            line.from_stock_after = outgoing.after
            line.to_stock_before = incoming.before
            line.to_stock_after = incoming.after
            self.db.add(line)

        self.ledger.recompute_totals({line.item_id for line in lines})
        unblocked = self.reactor.on_transfer_completed(transfer.id)
        return ExecutionSummary(items_transferred=len(lines), stock_movements_created=movements), unblocked

    def _record_failure(self, transfer: WarehouseTransfer, code: str, trace_id: str | None) -> None:
        metrics.increment_transfer_execution_failure(code)
        log_json(
            logger,
            {
                "event": "transfer_execution_rejected",
                "transfer_id": str(transfer.id),
                "code": code,
                "trace_id": trace_id,
            },
        )
