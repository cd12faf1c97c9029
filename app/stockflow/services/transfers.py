from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.stockflow.core.config import settings
from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.logging import log_json
from app.stockflow.db.models import TransferStatus, WarehouseTransfer, WarehouseTransferItem
from app.stockflow.repos.inventory import InventoryItemRepository
from app.stockflow.repos.stock import WarehouseStockRepository
from app.stockflow.repos.transfers import TransferQueryFilters, TransferRepository
from app.stockflow.repos.warehouses import WarehouseRepository
from app.stockflow.services.access_control import AccessControlService
from app.stockflow.services.audit import AuditEventPayload, AuditService
from app.stockflow.services.transfer_execution import TransferExecutionEngine, Violation, violations_error
from app.stockflow.services.transfer_numbers import next_transfer_number

logger = logging.getLogger("stockflow.transfers")


@dataclass(frozen=True)
class TransferLineInput:
    item_id: object
    quantity: int
    notes: str | None = None


@dataclass(frozen=True)
class PreviewLine:
    item_id: object
    sku: str
    name: str
    quantity: int
    from_current: int
    from_after: int
    to_current: int
    to_after: int
    min_stock: int
    has_sufficient_stock: bool
    will_be_below_min_stock: bool


@dataclass
class TransferPreview:
    transfer: WarehouseTransfer
    lines: list[PreviewLine]
    violations: list[Violation]

    @property
    def can_execute(self) -> bool:
        return not self.violations


@dataclass
class TransferDetail:
    transfer: WarehouseTransfer
    items: list[WarehouseTransferItem]
    source_balances: dict


class TransferService:
    """Manual transfer lifecycle: create, edit while DRAFT, preview, cancel, list and detail."""

    def __init__(self, db, access: AccessControlService | None = None):
        self.db = db
        self.repo = TransferRepository(db)
        self.warehouses = WarehouseRepository(db)
        self.items = InventoryItemRepository(db)
        self.balances = WarehouseStockRepository(db)
        self.access = access or AccessControlService(db)

    def create_transfer(
        self,
        *,
        from_warehouse_id,
        to_warehouse_id,
        lines: list[TransferLineInput],
        notes: str | None,
        creator,
        trace_id: str | None = None,
    ) -> TransferDetail:
        self._validate_route(from_warehouse_id, to_warehouse_id)
        self.access.ensure_warehouse_access(
            creator, [from_warehouse_id, to_warehouse_id], trace_id=trace_id, action="transfer.create"
        )
        self._validate_lines(lines)

        attempts = max(1, settings.TRANSFER_NUMBER_MAX_RETRIES)
        last_error: IntegrityError | None = None
        for _ in range(attempts):
            now = datetime.utcnow()
            transfer = WarehouseTransfer(
                transfer_number=next_transfer_number(self.repo, now),
                from_warehouse_id=from_warehouse_id,
                to_warehouse_id=to_warehouse_id,
                status=TransferStatus.DRAFT,
                is_auto_proposed=False,
                notes=notes,
                created_by_user_id=creator.id,
                created_by_name=creator.display_name,
                created_at=now,
            )
            try:
                self.repo.add_with_items(transfer, self._build_items(lines, now))
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                last_error = exc
                continue
            break
        else:
            raise AppError(
                ErrorCatalog.TRANSACTION_FAILED,
                details={"reason": "transfer_number_allocation", "attempts": attempts},
            ) from last_error

        self.db.refresh(transfer)
        log_json(
            logger,
            {
                "event": "transfer_created",
                "transfer_id": str(transfer.id),
                "transfer_number": transfer.transfer_number,
                "items": len(lines),
                "trace_id": trace_id,
            },
        )
        self._audit(creator, "transfer.create", transfer, None, {"status": transfer.status}, trace_id)
        return self.get_detail(transfer.id, creator)

    def update_transfer(
        self,
        transfer_id,
        *,
        lines: list[TransferLineInput] | None,
        notes: str | None,
        editor,
        trace_id: str | None = None,
    ) -> TransferDetail:
        transfer = self._get_or_404(transfer_id)
        self.access.ensure_warehouse_access(
            editor,
            [transfer.from_warehouse_id, transfer.to_warehouse_id],
            trace_id=trace_id,
            action="transfer.update",
        )
        if transfer.status != TransferStatus.DRAFT:
            raise AppError(
                ErrorCatalog.TRANSFER_INVALID_STATE,
                details={"status": transfer.status, "expected": [TransferStatus.DRAFT]},
            )
        if lines is not None:
            self._validate_lines(lines)

        now = datetime.utcnow()
        values = {"updated_at": now}
        if notes is not None:
            values["notes"] = notes
        if self.repo.compare_and_set_status(transfer.id, (TransferStatus.DRAFT,), values) == 0:
            self.db.rollback()
            raise AppError(ErrorCatalog.TRANSFER_STATE_CONFLICT, details={"transfer_id": str(transfer.id)})
        if lines is not None:
            self.repo.replace_items(transfer.id, self._build_items(lines, now))
        self.db.commit()
        self.db.refresh(transfer)

        self._audit(
            editor,
            "transfer.update",
            transfer,
            None,
            {"notes": transfer.notes, "items": len(lines) if lines is not None else None},
            trace_id,
        )
        return self.get_detail(transfer.id, editor)

    def preview(self, transfer_id, viewer) -> TransferPreview:
        transfer = self._get_or_404(transfer_id)
        self._ensure_visible(transfer, viewer)
        if transfer.status not in TransferStatus.CANCELLABLE:
            raise AppError(
                ErrorCatalog.TRANSFER_INVALID_STATE,
                details={"status": transfer.status, "expected": list(TransferStatus.CANCELLABLE)},
            )

        items = self.repo.get_items(transfer.id)
        catalog = self.items.list_by_ids({line.item_id for line in items})
        lines: list[PreviewLine] = []
        for line in items:
            item = catalog[line.item_id]
            source = self.balances.get_balance(transfer.from_warehouse_id, line.item_id)
            destination = self.balances.get_balance(transfer.to_warehouse_id, line.item_id)
            from_current = source.current_stock if source is not None else 0
            to_current = destination.current_stock if destination is not None else 0
            min_stock = source.min_stock if source is not None and source.min_stock else item.min_stock
            from_after = from_current - line.quantity
            lines.append(
                PreviewLine(
                    item_id=item.id,
                    sku=item.sku,
                    name=item.name,
                    quantity=line.quantity,
                    from_current=from_current,
                    from_after=from_after,
                    to_current=to_current,
                    to_after=to_current + line.quantity,
                    min_stock=min_stock,
                    has_sufficient_stock=from_current >= line.quantity,
                    will_be_below_min_stock=from_after < min_stock,
                )
            )
        violations = TransferExecutionEngine(self.db, access=self.access).collect_violations(transfer, items)
        return TransferPreview(transfer=transfer, lines=lines, violations=violations)

    def cancel(self, transfer_id, user, *, trace_id: str | None = None) -> WarehouseTransfer:
        transfer = self._get_or_404(transfer_id)
        self._ensure_visible(transfer, user)
        if transfer.status not in TransferStatus.CANCELLABLE:
            raise AppError(
                ErrorCatalog.TRANSFER_INVALID_STATE,
                details={"status": transfer.status, "expected": list(TransferStatus.CANCELLABLE)},
            )
        previous_status = transfer.status
        now = datetime.utcnow()
        updated = self.repo.compare_and_set_status(
            transfer.id,
            TransferStatus.CANCELLABLE,
            {
                "status": TransferStatus.CANCELLED,
                "canceled_by_user_id": user.id,
                "canceled_at": now,
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
                "event": "transfer_cancelled",
                "transfer_id": str(transfer.id),
                "transfer_number": transfer.transfer_number,
                "trace_id": trace_id,
            },
        )
        self._audit(user, "transfer.cancel", transfer, {"status": previous_status}, {"status": transfer.status}, trace_id)
        return transfer

    def list_transfers(
        self,
        user,
        *,
        status: str | None = None,
        from_warehouse_id=None,
        to_warehouse_id=None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[WarehouseTransfer], int]:
        filters = TransferQueryFilters(
            status=status,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            from_date=from_date,
            to_date=to_date,
            visible_warehouse_ids=self.access.accessible_warehouse_ids(user),
        )
        page_size = min(page_size, settings.TRANSFERS_LIST_MAX_PAGE_SIZE)
        return self.repo.list_transfers(filters, page=page, page_size=page_size)

    def get_detail(self, transfer_id, user) -> TransferDetail:
        transfer = self._get_or_404(transfer_id)
        self._ensure_visible(transfer, user)
        items = self.repo.get_items(transfer.id)
        source_balances = {
            line.item_id: self._balance(transfer.from_warehouse_id, line.item_id) for line in items
        }
        return TransferDetail(transfer=transfer, items=items, source_balances=source_balances)

    def _balance(self, warehouse_id, item_id) -> int:
        row = self.balances.get_balance(warehouse_id, item_id)
        return row.current_stock if row is not None else 0

    def _get_or_404(self, transfer_id) -> WarehouseTransfer:
        transfer = self.repo.get(transfer_id)
        if transfer is None:
            raise AppError(ErrorCatalog.TRANSFER_NOT_FOUND, details={"transfer_id": str(transfer_id)})
        return transfer

    def _ensure_visible(self, transfer: WarehouseTransfer, user) -> None:
        if self.access.has_warehouse_access(user, transfer.from_warehouse_id):
            return
        if self.access.has_warehouse_access(user, transfer.to_warehouse_id):
            return
        raise AppError(
            ErrorCatalog.WAREHOUSE_ACCESS_DENIED,
            details={"warehouse_ids": [str(transfer.from_warehouse_id), str(transfer.to_warehouse_id)]},
        )

    def _validate_route(self, from_warehouse_id, to_warehouse_id) -> None:
        violations: list[Violation] = []
        if from_warehouse_id == to_warehouse_id:
            violations.append(
                Violation(
                    reason_code="SAME_WAREHOUSE",
                    message="Source and destination warehouses must differ",
                    warehouse_id=str(from_warehouse_id),
                )
            )
        for warehouse_id in (from_warehouse_id, to_warehouse_id):
            warehouse = self.warehouses.get(warehouse_id)
            if warehouse is None:
                raise AppError(ErrorCatalog.WAREHOUSE_NOT_FOUND, details={"warehouse_id": str(warehouse_id)})
            if not warehouse.is_active:
                violations.append(
                    Violation(
                        reason_code="WAREHOUSE_INACTIVE",
                        message=f"Warehouse {warehouse.code} is not active",
                        warehouse_id=str(warehouse_id),
                    )
                )
        if violations:
            raise violations_error(violations)

    def _validate_lines(self, lines: list[TransferLineInput]) -> None:
        if not lines:
            raise violations_error([Violation(reason_code="NO_ITEMS", message="Transfer has no items")])
        catalog = self.items.list_by_ids({line.item_id for line in lines})
        violations: list[Violation] = []
        seen: set = set()
        for line in lines:
            item = catalog.get(line.item_id)
            if item is None:
                raise AppError(ErrorCatalog.ITEM_NOT_FOUND, details={"item_id": str(line.item_id)})
            if line.item_id in seen:
                violations.append(
                    Violation(
                        reason_code="DUPLICATE_ITEM",
                        message="Item appears more than once",
                        item_id=str(item.id),
                        sku=item.sku,
                    )
                )
            seen.add(line.item_id)
            if line.quantity <= 0:
                violations.append(
                    Violation(
                        reason_code="INVALID_QUANTITY",
                        message="Quantity must be positive",
                        item_id=str(item.id),
                        sku=item.sku,
                    )
                )
            if item.is_composite:
                violations.append(
                    Violation(
                        reason_code="COMPOSITE_ITEM",
                        message="Composite items cannot be transferred",
                        item_id=str(item.id),
                        sku=item.sku,
                    )
                )
        if violations:
            raise violations_error(violations)

    @staticmethod
    def _build_items(lines: list[TransferLineInput], now: datetime) -> list[WarehouseTransferItem]:
        return [
            WarehouseTransferItem(item_id=line.item_id, quantity=line.quantity, notes=line.notes, created_at=now)
            for line in lines
        ]

    def _audit(self, user, action: str, transfer: WarehouseTransfer, before, after, trace_id) -> None:
        AuditService(self.db).record_event(
            AuditEventPayload(
                user_id=str(user.id),
                trace_id=trace_id,
                actor=user.username,
                action=action,
                entity_type="transfer",
                entity_id=str(transfer.id),
                before=before,
                after=after,
                metadata={"transfer_number": transfer.transfer_number},
                result="success",
                actor_role=user.role,
            )
        )
