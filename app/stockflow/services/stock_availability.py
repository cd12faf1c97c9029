from __future__ import annotations

from dataclasses import dataclass, field

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.db.models import Warehouse
from app.stockflow.repos.inventory import InventoryItemRepository
from app.stockflow.repos.orders import OrderRepository
from app.stockflow.repos.stock import WarehouseStockRepository
from app.stockflow.services.operational_warehouse import OperationalWarehouseResolver


@dataclass(frozen=True)
class SourceCandidate:
    warehouse_id: object
    warehouse_code: str
    warehouse_name: str
    available: int


@dataclass
class Shortfall:
    sku: str | None
    title: str
    item_id: object | None
    required: int
    available: int
    missing: int
    candidates: list[SourceCandidate] = field(default_factory=list)


@dataclass
class AvailabilityReport:
    order_id: object
    operational_warehouse: Warehouse
    shortfalls: list[Shortfall]

    @property
    def has_all_stock(self) -> bool:
        return not self.shortfalls


class StockAvailabilityChecker:
    """Compares an order's required quantities with the operational warehouse. Read only."""

    def __init__(self, db, resolver: OperationalWarehouseResolver | None = None):
        self.orders = OrderRepository(db)
        self.items = InventoryItemRepository(db)
        self.balances = WarehouseStockRepository(db)
        self.resolver = resolver or OperationalWarehouseResolver(db)

    def check(self, order_id) -> AvailabilityReport:
        order = self.orders.get(order_id)
        if order is None:
            raise AppError(ErrorCatalog.ORDER_NOT_FOUND, details={"order_id": str(order_id)})
        operational = self.resolver.resolve()

        shortfalls: list[Shortfall] = []
        required: dict[object, list] = {}
        for line in self.orders.get_line_items(order.id):
            item = self._resolve_item(line)
            if item is None:
                shortfalls.append(
                    Shortfall(
                        sku=line.sku,
                        title=line.title,
                        item_id=None,
                        required=line.quantity,
                        available=0,
                        missing=line.quantity,
                    )
                )
                continue
            # Lines resolving to the same item draw on one balance.
            entry = required.setdefault(item.id, [item, line.title, 0])
            entry[2] += line.quantity

        for item, title, quantity in required.values():
            balance = self.balances.get_balance(operational.id, item.id)
            available = balance.current_stock if balance is not None else 0
            if available >= quantity:
                continue
            holders = self.balances.list_positive_holders(item.id, exclude_warehouse_id=operational.id)
            shortfalls.append(
                Shortfall(
                    sku=item.sku,
                    title=title,
                    item_id=item.id,
                    required=quantity,
                    available=available,
                    missing=quantity - available,
                    candidates=[
                        SourceCandidate(
                            warehouse_id=warehouse.id,
                            warehouse_code=warehouse.code,
                            warehouse_name=warehouse.name,
                            available=row.current_stock,
                        )
                        for row, warehouse in holders
                    ],
                )
            )

        return AvailabilityReport(order_id=order.id, operational_warehouse=operational, shortfalls=shortfalls)

    def _resolve_item(self, line):
        if line.product_id:
            item = self.items.get_by_product_id(line.product_id)
            if item is not None:
                return item
        if line.sku:
            return self.items.get_by_sku(line.sku)
        return None
