from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.db.models import StockMovement, WarehouseStock
from app.stockflow.repos.inventory import InventoryItemRepository
from app.stockflow.repos.stock import StockMovementRepository, WarehouseStockRepository


@dataclass(frozen=True)
class BalanceChange:
    warehouse_id: object
    item_id: object
    before: int
    after: int


@dataclass(frozen=True)
class MovementActor:
    user_id: str | None
    user_name: str | None


class StockLedger:
    """Per-warehouse balances plus the append-only movement log.

    Never commits; the calling operation owns the transaction.
    """

    def __init__(self, db):
        self.db = db
        self.balances = WarehouseStockRepository(db)
        self.movements = StockMovementRepository(db)
        self.items = InventoryItemRepository(db)

    def balance_of(self, warehouse_id, item_id) -> int:
        row = self.balances.get_balance(warehouse_id, item_id)
        return row.current_stock if row is not None else 0

    def lock_balance(self, warehouse_id, item_id, *, create_if_absent: bool = False) -> WarehouseStock | None:
        # The locked re-read refreshes the row, so pending changes must reach the database first.
        self.db.flush()
        row = self.balances.lock_balance(warehouse_id, item_id)
        if row is None and create_if_absent:
            row = self.balances.create_balance(warehouse_id, item_id)
        return row

    def apply_delta(self, row: WarehouseStock | None, delta: int, *, sku: str | None = None) -> BalanceChange:
        before = row.current_stock if row is not None else 0
        after = before + delta
        if row is None or after < 0:
            raise AppError(
                ErrorCatalog.INSUFFICIENT_STOCK,
                details={
                    "violations": [
                        {
                            "item_id": str(row.item_id) if row is not None else None,
                            "sku": sku,
                            "reason_code": "INSUFFICIENT_STOCK",
                            "message": "Balance would become negative",
                            "required": -delta,
                            "available": before,
                        }
                    ]
                },
            )
        row.current_stock = after
        row.updated_at = datetime.utcnow()
        self.db.add(row)
        return BalanceChange(warehouse_id=row.warehouse_id, item_id=row.item_id, before=before, after=after)

    def append(
        self,
        change: BalanceChange,
        *,
        movement_type: str,
        actor: MovementActor,
        transfer_id=None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        movement = StockMovement(
            item_id=change.item_id,
            movement_type=movement_type,
            quantity=change.after - change.before,
            previous_stock=change.before,
            new_stock=change.after,
            warehouse_id=change.warehouse_id,
            transfer_id=transfer_id,
            reason=reason,
            notes=notes,
            user_id=actor.user_id,
            user_name=actor.user_name,
            created_at=datetime.utcnow(),
        )
        return self.movements.add(movement)

    def recompute_totals(self, item_ids) -> dict:
        self.db.flush()
        return {item_id: self.items.recompute_total(item_id) for item_id in sorted(item_ids, key=str)}


def actor_from_user(user) -> MovementActor:
    return MovementActor(user_id=str(user.id), user_name=user.display_name)
