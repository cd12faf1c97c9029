from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.errors import is_lock_timeout
from app.stockflow.core.logging import log_json
from app.stockflow.db.models import MovementType, StockMovement, WarehouseStock
from app.stockflow.repos.inventory import InventoryItemRepository
from app.stockflow.repos.stock import MovementQueryFilters, StockMovementRepository, WarehouseStockRepository
from app.stockflow.repos.warehouses import WarehouseRepository
from app.stockflow.services.access_control import AccessControlService
from app.stockflow.services.audit import AuditEventPayload, AuditService
from app.stockflow.services.stock_ledger import StockLedger, actor_from_user
from app.stockflow.services.transfer_execution import Violation, violations_error

logger = logging.getLogger("stockflow.stock")

ADJUSTMENT_TYPES = (MovementType.ADJUSTMENT_PLUS, MovementType.ADJUSTMENT_MINUS)


@dataclass
class AdjustmentResult:
    movement: StockMovement
    balance: WarehouseStock
    item_total: int


class StockService:
    def __init__(self, db, access: AccessControlService | None = None):
        self.db = db
        self.ledger = StockLedger(db)
        self.items = InventoryItemRepository(db)
        self.warehouses = WarehouseRepository(db)
        self.balances = WarehouseStockRepository(db)
        self.movements = StockMovementRepository(db)
        self.access = access or AccessControlService(db)

    def adjust(
        self,
        *,
        warehouse_id,
        item_id,
        movement_type: str,
        quantity: int,
        reason: str | None,
        notes: str | None,
        user,
        trace_id: str | None = None,
    ) -> AdjustmentResult:
        warehouse = self.warehouses.get(warehouse_id)
        if warehouse is None:
            raise AppError(ErrorCatalog.WAREHOUSE_NOT_FOUND, details={"warehouse_id": str(warehouse_id)})
        item = self.items.get(item_id)
        if item is None:
            raise AppError(ErrorCatalog.ITEM_NOT_FOUND, details={"item_id": str(item_id)})
        self.access.ensure_warehouse_access(user, [warehouse.id], trace_id=trace_id, action="stock.adjust")
        if item.is_composite:
            raise violations_error(
                [
                    Violation(
                        reason_code="COMPOSITE_ITEM",
                        message="Composite items cannot be adjusted directly",
                        item_id=str(item.id),
                        sku=item.sku,
                    )
                ]
            )

        delta = quantity if movement_type == MovementType.ADJUSTMENT_PLUS else -quantity
        try:
            row = self.ledger.lock_balance(warehouse.id, item.id, create_if_absent=True)
            change = self.ledger.apply_delta(row, delta, sku=item.sku)
            movement = self.ledger.append(
                change,
                movement_type=movement_type,
                actor=actor_from_user(user),
                reason=reason or "Manual adjustment",
                notes=notes,
            )
            totals = self.ledger.recompute_totals({item.id})
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            if is_lock_timeout(exc):
                raise
            raise AppError(ErrorCatalog.TRANSACTION_FAILED, details={"type": exc.__class__.__name__}) from exc

        self.db.refresh(movement)
        self.db.refresh(row)
        log_json(
            logger,
            {
                "event": "stock_adjusted",
                "warehouse_id": str(warehouse.id),
                "item_id": str(item.id),
                "movement_type": movement_type,
                "quantity": delta,
                "new_stock": row.current_stock,
                "trace_id": trace_id,
            },
        )
        AuditService(self.db).record_event(
            AuditEventPayload(
                user_id=str(user.id),
                trace_id=trace_id,
                actor=user.username,
                action="stock.adjust",
                entity_type="warehouse_stock",
                entity_id=str(row.id),
                before={"current_stock": change.before},
                after={"current_stock": change.after},
                metadata={"sku": item.sku, "warehouse_code": warehouse.code, "movement_type": movement_type},
                result="success",
                actor_role=user.role,
            )
        )
        return AdjustmentResult(movement=movement, balance=row, item_total=totals[item.id])

    def list_movements(self, filters: MovementQueryFilters, *, page: int, page_size: int):
        return self.movements.list_movements(filters, page=page, page_size=page_size)

    def list_warehouse_stock(self, warehouse_id, user) -> list[tuple[WarehouseStock, object]]:
        warehouse = self.warehouses.get(warehouse_id)
        if warehouse is None:
            raise AppError(ErrorCatalog.WAREHOUSE_NOT_FOUND, details={"warehouse_id": str(warehouse_id)})
        self.access.ensure_warehouse_access(user, [warehouse.id], action="warehouse.stock")
        rows = self.balances.list_for_warehouse(warehouse.id)
        catalog = self.items.list_by_ids({row.item_id for row in rows})
        return [(row, catalog[row.item_id]) for row in rows]
