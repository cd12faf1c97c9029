import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

import app.stockflow.services.transfer_execution as execution_module
from app.ops.integrity_checks import run_integrity_checks
from app.stockflow.core.error_catalog import AppError
from app.stockflow.db.models import (
    InventoryItem,
    MovementType,
    Order,
    OrderStatus,
    TransferStatus,
    WarehouseTransfer,
    WarehouseTransferItem,
)
from app.stockflow.repos.stock import StockMovementRepository
from app.stockflow.services.stock_ledger import StockLedger, actor_from_user
from app.stockflow.services.transfer_approval import TransferApprovalGate
from app.stockflow.services.transfer_execution import TransferExecutionEngine
from app.stockflow.services.transfer_proposals import TransferProposalEngine
from tests.stock_helpers import (
    balance_of,
    create_item,
    create_order,
    create_transfer,
    create_user,
    create_warehouse,
    fulfillment_setup,
    grant_warehouse,
    set_balance,
)


def _movements(db_session, transfer_id):
    return StockMovementRepository(db_session).list_for_transfer(transfer_id)


def _status(db_session, transfer_id):
    db_session.expire_all()
    return db_session.get(WarehouseTransfer, transfer_id).status


def test_proposed_transfer_executes_end_to_end(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-e2e")
    order = create_order(db_session, number="ORD-200", lines=[{"sku": "SKU-X", "quantity": 30}])
    proposal = TransferProposalEngine(db_session).propose(order.id, actor_from_user(user))
    TransferApprovalGate(db_session).approve(proposal.transfer.id, user)

    result = TransferExecutionEngine(db_session).execute(proposal.transfer.id, user)

    assert result.transfer.status == TransferStatus.COMPLETED
    assert result.transfer.completed_by_user_id == user.id
    assert result.summary.items_transferred == 1
    assert result.summary.stock_movements_created == 2
    assert result.unblocked_order_ids == [order.id]
    assert balance_of(db_session, central, item) == 70
    assert balance_of(db_session, operational, item) == 30
    assert db_session.get(InventoryItem, item.id).current_stock == 100
    assert db_session.get(Order, order.id).status == OrderStatus.PENDING

    movements = sorted(_movements(db_session, proposal.transfer.id), key=lambda row: row.quantity)
    assert [(row.warehouse_id, row.quantity) for row in movements] == [(central.id, -30), (operational.id, 30)]
    assert all(row.movement_type == MovementType.TRANSFER for row in movements)
    assert movements[0].reason == "Transfer to Warehouse OPERATIONAL"
    assert movements[1].reason == "Transfer from Warehouse CENTRAL"
    assert movements[0].notes == f"Transfer {proposal.transfer.transfer_number}"
    assert movements[0].user_name == "User exec-e2e"


def test_insufficient_stock_leaves_balances_untouched(db_session):
    operational, central, item = fulfillment_setup(db_session, central_stock=30)
    user = create_user(db_session, suffix="exec-short")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 50)])

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "INSUFFICIENT_STOCK"
    violation = exc.value.details["violations"][0]
    assert violation["reason_code"] == "INSUFFICIENT_STOCK"
    assert (violation["required"], violation["available"]) == (50, 30)
    assert violation["sku"] == "SKU-X"
    assert balance_of(db_session, central, item) == 30
    assert balance_of(db_session, operational, item) is None
    assert _status(db_session, transfer.id) == TransferStatus.PENDING
    assert _movements(db_session, transfer.id) == []


def test_exact_stock_drains_source_to_zero(db_session):
    operational, central, item = fulfillment_setup(db_session, central_stock=30)
    user = create_user(db_session, suffix="exec-exact")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 30)])

    TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert balance_of(db_session, central, item) == 0
    assert balance_of(db_session, operational, item) == 30


def test_execution_writes_snapshots(db_session):
    operational, central, item = fulfillment_setup(db_session, operational_stock=5)
    user = create_user(db_session, suffix="exec-snapshot")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 30)])

    result = TransferExecutionEngine(db_session).execute(transfer.id, user)

    line = result.items[0]
    assert (line.from_stock_before, line.from_stock_after) == (100, 70)
    assert (line.to_stock_before, line.to_stock_after) == (5, 35)


def test_multi_item_ledger_nets_to_zero_per_item(db_session):
    operational, central, item_x = fulfillment_setup(db_session)
    item_y = create_item(db_session, sku="SKU-Y")
    set_balance(db_session, central, item_y, 8)
    user = create_user(db_session, suffix="exec-multi")
    transfer = create_transfer(
        db_session, source=central, destination=operational, lines=[(item_x, 10), (item_y, 8)]
    )

    result = TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert result.summary.items_transferred == 2
    assert result.summary.stock_movements_created == 4
    totals = {}
    for movement in _movements(db_session, transfer.id):
        totals[movement.item_id] = totals.get(movement.item_id, 0) + movement.quantity
    assert totals == {item_x.id: 0, item_y.id: 0}


def test_item_total_is_recomputed_from_balances(db_session):
    operational, central, item = fulfillment_setup(db_session)
    item.current_stock = 999
    db_session.commit()
    user = create_user(db_session, suffix="exec-drift")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 10)])

    TransferExecutionEngine(db_session).execute(transfer.id, user)

    db_session.expire_all()
    assert db_session.get(InventoryItem, item.id).current_stock == 100


def test_executing_twice_is_invalid_state(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-twice")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 10)])
    engine = TransferExecutionEngine(db_session)
    engine.execute(transfer.id, user)

    with pytest.raises(AppError) as exc:
        engine.execute(transfer.id, user)

    assert exc.value.error.code == "TRANSFER_INVALID_STATE"
    assert balance_of(db_session, central, item) == 90
    assert len(_movements(db_session, transfer.id)) == 2


def test_draft_requires_approval(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-draft")
    transfer = create_transfer(
        db_session, source=central, destination=operational, lines=[(item, 10)], status=TransferStatus.DRAFT
    )

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "TRANSFER_INVALID_STATE"
    assert exc.value.details == {"status": TransferStatus.DRAFT, "expected": [TransferStatus.PENDING]}


def test_draft_executes_when_approval_disabled(db_session, monkeypatch):
    monkeypatch.setattr(execution_module.settings, "TRANSFER_REQUIRE_APPROVAL", False)
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-no-approval")
    transfer = create_transfer(
        db_session, source=central, destination=operational, lines=[(item, 10)], status=TransferStatus.DRAFT
    )

    result = TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert result.transfer.status == TransferStatus.COMPLETED


@pytest.mark.parametrize("status", [TransferStatus.CANCELLED, TransferStatus.COMPLETED])
def test_terminal_transfers_cannot_execute(db_session, status):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix=f"exec-{status.lower()}")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 10)], status=status)

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "TRANSFER_INVALID_STATE"
    assert balance_of(db_session, central, item) == 100


def test_composite_item_is_rejected(db_session):
    operational, central, _item = fulfillment_setup(db_session)
    bundle = create_item(db_session, sku="BUNDLE-1", is_composite=True)
    set_balance(db_session, central, bundle, 10)
    user = create_user(db_session, suffix="exec-composite")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(bundle, 1)])

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "TRANSFER_PRECONDITION_FAILED"
    assert [v["reason_code"] for v in exc.value.details["violations"]] == ["COMPOSITE_ITEM"]


def test_inactive_destination_is_rejected(db_session):
    _operational, central, item = fulfillment_setup(db_session)
    closed = create_warehouse(db_session, code="CLOSED", is_active=False)
    user = create_user(db_session, suffix="exec-inactive")
    transfer = create_transfer(db_session, source=central, destination=closed, lines=[(item, 1)])

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    violations = exc.value.details["violations"]
    assert [v["reason_code"] for v in violations] == ["WAREHOUSE_INACTIVE"]
    assert violations[0]["warehouse_id"] == str(closed.id)


def test_all_violations_are_reported_together(db_session):
    operational, central, item = fulfillment_setup(db_session, central_stock=3)
    bundle = create_item(db_session, sku="BUNDLE-2", is_composite=True)
    user = create_user(db_session, suffix="exec-combined")
    transfer = create_transfer(
        db_session, source=central, destination=operational, lines=[(item, 10), (bundle, 1)]
    )

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "TRANSFER_PRECONDITION_FAILED"
    codes = sorted(v["reason_code"] for v in exc.value.details["violations"])
    assert codes == ["COMPOSITE_ITEM", "INSUFFICIENT_STOCK"]


def test_transfer_without_items_is_rejected(db_session):
    operational, central, _item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-empty")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[])

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert [v["reason_code"] for v in exc.value.details["violations"]] == ["NO_ITEMS"]


def test_executor_needs_access_to_both_warehouses(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-scoped", role="OPERATOR")
    grant_warehouse(db_session, user, central)
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 10)])

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "WAREHOUSE_ACCESS_DENIED"
    assert exc.value.details == {"warehouse_ids": [str(operational.id)]}
    assert _status(db_session, transfer.id) == TransferStatus.PENDING


def test_unknown_transfer(db_session):
    user = create_user(db_session, suffix="exec-404")

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(uuid.uuid4(), user)

    assert exc.value.error.code == "TRANSFER_NOT_FOUND"


def test_existing_snapshot_aborts_execution(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-resnapshot")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 10)])
    line = db_session.execute(
        select(WarehouseTransferItem).where(WarehouseTransferItem.transfer_id == transfer.id)
    ).scalar_one()
    line.from_stock_before = 1
    db_session.commit()

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "TRANSFER_PRECONDITION_FAILED"
    assert [v["reason_code"] for v in exc.value.details["violations"]] == ["SNAPSHOT_ALREADY_WRITTEN"]
    assert _status(db_session, transfer.id) == TransferStatus.PENDING
    assert balance_of(db_session, central, item) == 100


def test_repeated_item_lines_are_checked_against_their_sum(db_session):
    operational, central, item = fulfillment_setup(db_session, central_stock=30)
    user = create_user(db_session, suffix="exec-repeat-short")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 20), (item, 20)])

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert exc.value.error.code == "INSUFFICIENT_STOCK"
    violation = exc.value.details["violations"][0]
    assert (violation["required"], violation["available"]) == (40, 30)
    assert balance_of(db_session, central, item) == 30
    assert balance_of(db_session, operational, item) is None
    assert _movements(db_session, transfer.id) == []


def test_repeated_item_lines_chain_ledger_and_snapshots(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-repeat")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 10), (item, 15)])

    result = TransferExecutionEngine(db_session).execute(transfer.id, user)

    assert result.summary.stock_movements_created == 4
    assert balance_of(db_session, central, item) == 75
    assert balance_of(db_session, operational, item) == 25

    movements = _movements(db_session, transfer.id)
    outgoing = sorted((m for m in movements if m.warehouse_id == central.id), key=lambda m: -m.previous_stock)
    incoming = sorted((m for m in movements if m.warehouse_id == operational.id), key=lambda m: m.previous_stock)
    for chain, start, end in ((outgoing, 100, 75), (incoming, 0, 25)):
        assert chain[0].previous_stock == start
        assert chain[0].new_stock == chain[1].previous_stock
        assert chain[1].new_stock == end
        assert all(m.previous_stock + m.quantity == m.new_stock for m in chain)

    snapshots = sorted((line.from_stock_before, line.from_stock_after) for line in result.items)
    assert snapshots[1][0] == 100
    assert snapshots[1][1] == snapshots[0][0]
    assert snapshots[0][1] == 75
    assert [f.check_id for f in run_integrity_checks(db_session)] == []


def test_storage_failure_rolls_back_everything(db_session, monkeypatch):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="exec-storage")
    order = create_order(db_session, number="ORD-209", lines=[{"sku": "SKU-X", "quantity": 30}])
    proposal = TransferProposalEngine(db_session).propose(order.id, actor_from_user(user))
    TransferApprovalGate(db_session).approve(proposal.transfer.id, user)

    def fail(self, item_ids):
        raise OperationalError("UPDATE inventory_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(StockLedger, "recompute_totals", fail)

    with pytest.raises(AppError) as exc:
        TransferExecutionEngine(db_session).execute(proposal.transfer.id, user)

    assert exc.value.error.code == "TRANSACTION_FAILED"
    assert exc.value.error.status_code == 500
    assert _status(db_session, proposal.transfer.id) == TransferStatus.PENDING
    assert balance_of(db_session, central, item) == 100
    assert balance_of(db_session, operational, item) is None
    assert _movements(db_session, proposal.transfer.id) == []
    assert db_session.get(Order, order.id).status == OrderStatus.WAIT_TRANSFER
