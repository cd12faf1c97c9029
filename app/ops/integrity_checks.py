from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select

from app.stockflow.core.config import settings
from app.stockflow.core.metrics import metrics
from app.stockflow.db.models import (
    InventoryItem,
    Order,
    OrderStatus,
    StockMovement,
    TransferStatus,
    Warehouse,
    WarehouseStock,
    WarehouseTransfer,
    WarehouseTransferItem,
)


SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_WARN = "WARN"


@dataclass(frozen=True)
class IntegrityFinding:
    check_id: str
    severity: str
    message: str
    entity: str
    entity_id: str | None
    details: dict


def _record(check_id: str, findings: list[IntegrityFinding]) -> list[IntegrityFinding]:
    if findings:
        metrics.increment_invariant_violation(check_id, len(findings))
    return findings


def check_item_totals(db) -> list[IntegrityFinding]:
    balances = (
        select(WarehouseStock.item_id, func.sum(WarehouseStock.current_stock).label("total"))
        .group_by(WarehouseStock.item_id)
        .subquery()
    )
    rows = db.execute(
        select(InventoryItem.id, InventoryItem.sku, InventoryItem.current_stock, balances.c.total).outerjoin(
            balances, balances.c.item_id == InventoryItem.id
        )
    ).all()
    findings = []
    for row in rows:
        expected = int(row.total or 0)
        if row.current_stock != expected:
            findings.append(
                IntegrityFinding(
                    check_id="item_total_matches_balances",
                    severity=SEVERITY_CRITICAL,
                    message="Item total differs from the sum of its warehouse balances.",
                    entity="inventory_items",
                    entity_id=str(row.id),
                    details={"sku": row.sku, "current_stock": row.current_stock, "sum_of_balances": expected},
                )
            )
    return _record("item_total_matches_balances", findings)


def check_negative_balances(db) -> list[IntegrityFinding]:
    rows = db.execute(
        select(WarehouseStock.id, WarehouseStock.warehouse_id, WarehouseStock.item_id, WarehouseStock.current_stock)
        .where(WarehouseStock.current_stock < 0)
    ).all()
    findings = [
        IntegrityFinding(
            check_id="negative_balance",
            severity=SEVERITY_CRITICAL,
            message="Warehouse balance is negative.",
            entity="warehouse_stock",
            entity_id=str(row.id),
            details={
                "warehouse_id": str(row.warehouse_id),
                "item_id": str(row.item_id),
                "current_stock": row.current_stock,
            },
        )
        for row in rows
    ]
    return _record("negative_balance", findings)


def check_transfer_ledger_balanced(db) -> list[IntegrityFinding]:
    completed = db.execute(
        select(WarehouseTransfer.id, WarehouseTransfer.transfer_number).where(
            WarehouseTransfer.status == TransferStatus.COMPLETED
        )
    ).all()
    findings = []
    for transfer in completed:
        expected_items = db.execute(
            select(func.count())
            .select_from(WarehouseTransferItem)
            .where(WarehouseTransferItem.transfer_id == transfer.id)
        ).scalar_one()
        sums = db.execute(
            select(StockMovement.item_id, func.sum(StockMovement.quantity), func.count())
            .where(StockMovement.transfer_id == transfer.id)
            .group_by(StockMovement.item_id)
        ).all()
        unbalanced = {str(item_id): int(total) for item_id, total, _count in sums if int(total or 0) != 0}
        movement_count = sum(int(count) for _item_id, _total, count in sums)
        if unbalanced or movement_count != expected_items * 2:
            findings.append(
                IntegrityFinding(
                    check_id="transfer_ledger_balanced",
                    severity=SEVERITY_CRITICAL,
                    message="Completed transfer ledger entries do not net to zero per item.",
                    entity="warehouse_transfers",
                    entity_id=str(transfer.id),
                    details={
                        "transfer_number": transfer.transfer_number,
                        "unbalanced_items": unbalanced,
                        "movements": movement_count,
                        "expected_movements": expected_items * 2,
                    },
                )
            )
    return _record("transfer_ledger_balanced", findings)


def check_transfer_snapshots(db) -> list[IntegrityFinding]:
    snapshot_missing = or_(
        WarehouseTransferItem.from_stock_before.is_(None),
        WarehouseTransferItem.from_stock_after.is_(None),
        WarehouseTransferItem.to_stock_before.is_(None),
        WarehouseTransferItem.to_stock_after.is_(None),
    )
    rows = db.execute(
        select(WarehouseTransferItem.id, WarehouseTransfer.id.label("transfer_id"), WarehouseTransfer.status)
        .join(WarehouseTransfer, WarehouseTransfer.id == WarehouseTransferItem.transfer_id)
        .where(
            or_(
                (WarehouseTransfer.status == TransferStatus.COMPLETED) & snapshot_missing,
                (WarehouseTransfer.status != TransferStatus.COMPLETED)
                & WarehouseTransferItem.from_stock_before.is_not(None),
            )
        )
    ).all()
    findings = [
        IntegrityFinding(
            check_id="transfer_item_snapshots",
            severity=SEVERITY_CRITICAL,
            message=(
                "Completed transfer item is missing its execution snapshot."
                if row.status == TransferStatus.COMPLETED
                else "Unexecuted transfer item carries an execution snapshot."
            ),
            entity="warehouse_transfer_items",
            entity_id=str(row.id),
            details={"transfer_id": str(row.transfer_id), "status": row.status},
        )
        for row in rows
    ]
    return _record("transfer_item_snapshots", findings)


def check_transfer_fsm(db) -> list[IntegrityFinding]:
    rows = db.execute(
        select(
            WarehouseTransfer.id,
            WarehouseTransfer.status,
            WarehouseTransfer.approved_at,
            WarehouseTransfer.completed_at,
            WarehouseTransfer.canceled_at,
        )
    ).all()
    findings = []
    for row in rows:
        status = row.status
        invalid = False
        if status not in TransferStatus.ALL:
            invalid = True
        elif status == TransferStatus.COMPLETED:
            invalid = row.completed_at is None or row.canceled_at is not None
        elif status == TransferStatus.CANCELLED:
            invalid = row.canceled_at is None or row.completed_at is not None
        elif status == TransferStatus.PENDING:
            invalid = row.approved_at is None or row.completed_at is not None or row.canceled_at is not None
        elif status == TransferStatus.DRAFT:
            invalid = row.completed_at is not None or row.canceled_at is not None
        if invalid:
            findings.append(
                IntegrityFinding(
                    check_id="transfer_fsm",
                    severity=SEVERITY_CRITICAL,
                    message="Transfer status inconsistent with lifecycle timestamps.",
                    entity="warehouse_transfers",
                    entity_id=str(row.id),
                    details={
                        "status": status,
                        "approved_at": _format_datetime(row.approved_at),
                        "completed_at": _format_datetime(row.completed_at),
                        "canceled_at": _format_datetime(row.canceled_at),
                    },
                )
            )
    return _record("transfer_fsm", findings)


def check_operational_warehouse(db) -> list[IntegrityFinding]:
    if settings.OPERATIONAL_WAREHOUSE_CODE:
        warehouse = (
            db.execute(select(Warehouse).where(Warehouse.code == settings.OPERATIONAL_WAREHOUSE_CODE))
            .scalars()
            .first()
        )
        if warehouse is not None and warehouse.is_active:
            return []
        findings = [
            IntegrityFinding(
                check_id="operational_warehouse",
                severity=SEVERITY_CRITICAL,
                message="Configured operational warehouse is missing or inactive.",
                entity="warehouses",
                entity_id=str(warehouse.id) if warehouse is not None else None,
                details={"warehouse_code": settings.OPERATIONAL_WAREHOUSE_CODE},
            )
        ]
        return _record("operational_warehouse", findings)

    rows = db.execute(
        select(Warehouse.id, Warehouse.code).where(
            Warehouse.is_operational.is_(True), Warehouse.is_active.is_(True)
        ).order_by(Warehouse.code)
    ).all()
    if len(rows) == 1:
        return []
    findings = [
        IntegrityFinding(
            check_id="operational_warehouse",
            severity=SEVERITY_CRITICAL if rows else SEVERITY_WARN,
            message="Exactly one active warehouse must be flagged operational.",
            entity="warehouses",
            entity_id=None,
            details={"operational_warehouses": [row.code for row in rows]},
        )
    ]
    return _record("operational_warehouse", findings)


def check_stranded_orders(db) -> list[IntegrityFinding]:
    rows = db.execute(
        select(
            Order.id,
            Order.order_number,
            Order.required_transfer_id,
            WarehouseTransfer.status.label("transfer_status"),
        )
        .outerjoin(WarehouseTransfer, WarehouseTransfer.id == Order.required_transfer_id)
        .where(Order.status == OrderStatus.WAIT_TRANSFER)
        .where(
            or_(
                Order.required_transfer_id.is_(None),
                WarehouseTransfer.id.is_(None),
                WarehouseTransfer.status.in_(TransferStatus.TERMINAL),
            )
        )
    ).all()
    findings = [
        IntegrityFinding(
            check_id="order_waiting_on_finished_transfer",
            severity=SEVERITY_WARN,
            message="Order waits on a transfer that is missing, cancelled or already completed.",
            entity="orders",
            entity_id=str(row.id),
            details={
                "order_number": row.order_number,
                "required_transfer_id": str(row.required_transfer_id) if row.required_transfer_id else None,
                "transfer_status": row.transfer_status,
            },
        )
        for row in rows
    ]
    return _record("order_waiting_on_finished_transfer", findings)


def _format_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def run_integrity_checks(db) -> list[IntegrityFinding]:
    findings: list[IntegrityFinding] = []
    findings.extend(check_item_totals(db))
    findings.extend(check_negative_balances(db))
    findings.extend(check_transfer_ledger_balanced(db))
    findings.extend(check_transfer_snapshots(db))
    findings.extend(check_transfer_fsm(db))
    findings.extend(check_operational_warehouse(db))
    findings.extend(check_stranded_orders(db))
    return findings
