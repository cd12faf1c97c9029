import logging

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.logging import log_json
from app.stockflow.db.models import Warehouse
from app.stockflow.repos.warehouses import WarehouseRepository
from app.stockflow.services.access_control import AccessControlService
from app.stockflow.services.audit import AuditEventPayload, AuditService

logger = logging.getLogger("stockflow.warehouses")


class WarehouseService:
    def __init__(self, db, access: AccessControlService | None = None):
        self.db = db
        self.repo = WarehouseRepository(db)
        self.access = access or AccessControlService(db)

    def list_warehouses(self, user, *, active_only: bool = False) -> list[Warehouse]:
        return self.repo.list_warehouses(
            active_only=active_only,
            warehouse_ids=self.access.accessible_warehouse_ids(user),
        )

    def set_operational(self, warehouse_id, user, *, trace_id: str | None = None) -> Warehouse:
        """Flag one warehouse as the fulfillment source, clearing the flag everywhere else."""
        warehouse = self.repo.get(warehouse_id)
        if warehouse is None:
            raise AppError(ErrorCatalog.WAREHOUSE_NOT_FOUND, details={"warehouse_id": str(warehouse_id)})
        if not warehouse.is_active:
            raise AppError(
                ErrorCatalog.TRANSFER_PRECONDITION_FAILED,
                details={
                    "violations": [
                        {
                            "reason_code": "WAREHOUSE_INACTIVE",
                            "message": "An inactive warehouse cannot be operational",
                            "warehouse_id": str(warehouse.id),
                        }
                    ]
                },
            )
        previous = [str(row.id) for row in self.repo.list_operational() if row.id != warehouse.id]
        self.repo.set_operational(warehouse)
        self.db.commit()
        self.db.refresh(warehouse)

        log_json(
            logger,
            {
                "event": "operational_warehouse_changed",
                "warehouse_id": str(warehouse.id),
                "warehouse_code": warehouse.code,
                "previous": previous,
                "trace_id": trace_id,
            },
        )
        AuditService(self.db).record_event(
            AuditEventPayload(
                user_id=str(user.id),
                trace_id=trace_id,
                actor=user.username,
                action="warehouse.set_operational",
                entity_type="warehouse",
                entity_id=str(warehouse.id),
                before={"operational_warehouse_ids": previous},
                after={"operational_warehouse_ids": [str(warehouse.id)]},
                metadata={"code": warehouse.code},
                result="success",
                actor_role=user.role,
            )
        )
        return warehouse
