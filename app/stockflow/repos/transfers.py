from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, or_, select, update

from app.stockflow.db.models import WarehouseTransfer, WarehouseTransferItem


@dataclass(frozen=True)
class TransferQueryFilters:
    status: str | None = None
    from_warehouse_id: str | None = None
    to_warehouse_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    visible_warehouse_ids: set | None = None


class TransferRepository:
    def __init__(self, db):
        self.db = db

    def get(self, transfer_id) -> WarehouseTransfer | None:
        return self.db.get(WarehouseTransfer, transfer_id)

    def list_by_ids(self, transfer_ids) -> dict:
        ids = list(transfer_ids)
        if not ids:
            return {}
        rows = self.db.execute(select(WarehouseTransfer).where(WarehouseTransfer.id.in_(ids))).scalars().all()
        return {row.id: row for row in rows}

    def get_items(self, transfer_id) -> list[WarehouseTransferItem]:
        stmt = (
            select(WarehouseTransferItem)
            .where(WarehouseTransferItem.transfer_id == transfer_id)
            .order_by(WarehouseTransferItem.created_at, WarehouseTransferItem.id)
        )
        return self.db.execute(stmt).scalars().all()

    def list_transfers(
        self,
        filters: TransferQueryFilters,
        *,
        page: int,
        page_size: int,
    ) -> tuple[list[WarehouseTransfer], int]:
        query = select(WarehouseTransfer)
        if filters.status:
            query = query.where(WarehouseTransfer.status == filters.status)
        if filters.from_warehouse_id:
            query = query.where(WarehouseTransfer.from_warehouse_id == filters.from_warehouse_id)
        if filters.to_warehouse_id:
            query = query.where(WarehouseTransfer.to_warehouse_id == filters.to_warehouse_id)
        if filters.from_date:
            query = query.where(WarehouseTransfer.created_at >= filters.from_date)
        if filters.to_date:
            query = query.where(WarehouseTransfer.created_at <= filters.to_date)
        if filters.visible_warehouse_ids is not None:
            visible = list(filters.visible_warehouse_ids)
            query = query.where(
                or_(
                    WarehouseTransfer.from_warehouse_id.in_(visible),
                    WarehouseTransfer.to_warehouse_id.in_(visible),
                )
            )
        total = self.db.execute(select(func.count()).select_from(query.subquery())).scalar_one()
        rows = (
            self.db.execute(
                query.order_by(WarehouseTransfer.created_at.desc(), WarehouseTransfer.transfer_number.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            .scalars()
            .all()
        )
        return rows, total

    def list_numbers_with_prefix(self, prefix: str) -> list[str]:
        stmt = select(WarehouseTransfer.transfer_number).where(WarehouseTransfer.transfer_number.like(f"{prefix}%"))
        return [row[0] for row in self.db.execute(stmt).all()]

    def add_with_items(self, transfer: WarehouseTransfer, items: list[WarehouseTransferItem]) -> WarehouseTransfer:
        self.db.add(transfer)
        self.db.flush()
        for item in items:
            item.transfer_id = transfer.id
            self.db.add(item)
        self.db.flush()
        return transfer

    def replace_items(self, transfer_id, items: list[WarehouseTransferItem]) -> None:
        self.db.execute(
            delete(WarehouseTransferItem)
            .where(WarehouseTransferItem.transfer_id == transfer_id)
            .execution_options(synchronize_session=False)
        )
        for item in items:
            item.transfer_id = transfer_id
            self.db.add(item)
        self.db.flush()

    def compare_and_set_status(self, transfer_id, expected: tuple[str, ...], values: dict) -> int:
        """Move a transfer out of one of the expected statuses.

        Returns the number of rows updated; zero means another writer changed the status first.
        """
        result = self.db.execute(
            update(WarehouseTransfer)
            .where(WarehouseTransfer.id == transfer_id, WarehouseTransfer.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
