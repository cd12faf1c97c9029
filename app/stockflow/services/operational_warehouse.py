from app.stockflow.core.config import settings
from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.db.models import Warehouse
from app.stockflow.repos.warehouses import WarehouseRepository


class OperationalWarehouseResolver:
    """Resolves the fulfillment warehouse once per operation.

    An explicit ``OPERATIONAL_WAREHOUSE_CODE`` wins; otherwise exactly one active warehouse
    must carry the ``is_operational`` flag.
    """

    def __init__(self, db, warehouse_code: str | None = None):
        self.repo = WarehouseRepository(db)
        self.warehouse_code = settings.OPERATIONAL_WAREHOUSE_CODE if warehouse_code is None else warehouse_code

    def resolve(self) -> Warehouse:
        if self.warehouse_code:
            warehouse = self.repo.get_by_code(self.warehouse_code)
            if warehouse is None or not warehouse.is_active:
                raise AppError(
                    ErrorCatalog.OPERATIONAL_WAREHOUSE_NOT_CONFIGURED,
                    details={"warehouse_code": self.warehouse_code},
                )
            return warehouse

        candidates = self.repo.list_operational()
        if len(candidates) != 1:
            raise AppError(
                ErrorCatalog.OPERATIONAL_WAREHOUSE_NOT_CONFIGURED,
                details={"operational_warehouses": [warehouse.code for warehouse in candidates]},
            )
        return candidates[0]
