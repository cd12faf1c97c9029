import logging
from datetime import datetime

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.logging import log_json
from app.stockflow.db.models import TransferStatus, WarehouseTransfer
from app.stockflow.repos.transfers import TransferRepository
from app.stockflow.services.audit import AuditEventPayload, AuditService

logger = logging.getLogger("stockflow.transfers")


class TransferApprovalGate:
    """DRAFT -> PENDING checkpoint. Touches no stock."""

    def __init__(self, db):
        self.db = db
        self.repo = TransferRepository(db)

    def approve(self, transfer_id, approver, *, trace_id: str | None = None) -> WarehouseTransfer:
        transfer = self.repo.get(transfer_id)
        if transfer is None:
            raise AppError(ErrorCatalog.TRANSFER_NOT_FOUND, details={"transfer_id": str(transfer_id)})
        if transfer.status != TransferStatus.DRAFT:
            raise AppError(
                ErrorCatalog.TRANSFER_INVALID_STATE,
                details={"status": transfer.status, "expected": [TransferStatus.DRAFT]},
            )

        now = datetime.utcnow()
        updated = self.repo.compare_and_set_status(
            transfer.id,
            (TransferStatus.DRAFT,),
            {
                "status": TransferStatus.PENDING,
                "approved_by_user_id": approver.id,
                "approved_by_name": approver.display_name,
                "approved_at": now,
                "updated_at": now,
            },
        )
        if updated == 0:
            self.db.rollback()
            raise AppError(ErrorCatalog.TRANSFER_STATE_CONFLICT, details={"transfer_id": str(transfer.id)})
        self.db.commit()
        self.db.refresh(transfer)

        log_json(
            logger,
            {
                "event": "transfer_approved",
                "transfer_id": str(transfer.id),
                "transfer_number": transfer.transfer_number,
                "approved_by": approver.username,
                "trace_id": trace_id,
            },
        )
        AuditService(self.db).record_event(
            AuditEventPayload(
                user_id=str(approver.id),
                trace_id=trace_id,
                actor=approver.username,
                action="transfer.approve",
                entity_type="transfer",
                entity_id=str(transfer.id),
                before={"status": TransferStatus.DRAFT},
                after={"status": transfer.status},
                metadata={"transfer_number": transfer.transfer_number},
                result="success",
                actor_role=approver.role,
            )
        )
        return transfer
