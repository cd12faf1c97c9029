import threading

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.stockflow.core.error_catalog import AppError
from app.stockflow.db.models import (
    InventoryItem,
    MovementType,
    StockMovement,
    TransferStatus,
    User,
    WarehouseTransfer,
)
from app.stockflow.services.stock import StockService
from app.stockflow.services.transfer_execution import TransferExecutionEngine
from tests.stock_helpers import balance_of, create_transfer, create_user, create_warehouse, fulfillment_setup


def _new_session():
    from app.stockflow.db.session import SessionLocal

    return SessionLocal()


def test_stale_reader_loses_the_status_race(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="race-stale")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 30)])

    stale = _new_session()
    try:
        stale_transfer = stale.get(WarehouseTransfer, transfer.id)
        assert stale_transfer.status == TransferStatus.PENDING
        stale_user = stale.get(User, user.id)

        TransferExecutionEngine(db_session).execute(transfer.id, user)

        try:
            TransferExecutionEngine(stale).execute(transfer.id, stale_user)
        except AppError as exc:
            assert exc.error.code == "TRANSFER_STATE_CONFLICT"
        else:
            raise AssertionError("second execution should have failed")
    finally:
        stale.close()

    assert balance_of(db_session, central, item) == 70
    assert balance_of(db_session, operational, item) == 30
    movements = db_session.execute(
        select(StockMovement).where(StockMovement.transfer_id == transfer.id)
    ).scalars().all()
    assert len(movements) == 2


def test_parallel_executions_complete_exactly_once(db_session):
    operational, central, item = fulfillment_setup(db_session)
    user = create_user(db_session, suffix="race-threads")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 30)])
    barrier = threading.Barrier(2)
    outcomes: list = []
    lock = threading.Lock()

    def worker():
        session = _new_session()
        try:
            executor = session.get(User, user.id)
            barrier.wait()
            TransferExecutionEngine(session).execute(transfer.id, executor)
            outcome = "ok"
        except AppError as exc:
            outcome = exc.error.code
        except OperationalError:
            outcome = "LOCKED"
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(outcomes).count("ok") == 1
    loser = [outcome for outcome in outcomes if outcome != "ok"][0]
    assert loser in {"TRANSFER_STATE_CONFLICT", "TRANSFER_INVALID_STATE", "LOCKED"}
    assert balance_of(db_session, central, item) == 70
    assert balance_of(db_session, operational, item) == 30
    movements = db_session.execute(
        select(StockMovement).where(StockMovement.transfer_id == transfer.id)
    ).scalars().all()
    assert len(movements) == 2


def test_item_total_includes_writes_committed_by_other_sessions(db_session):
    operational, central, item = fulfillment_setup(db_session)
    north = create_warehouse(db_session, code="NORTH")
    user = create_user(db_session, suffix="race-total")
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 30)])

    other = _new_session()
    try:
        assert other.get(InventoryItem, item.id).current_stock == 100
        other_user = other.get(User, user.id)

        StockService(db_session).adjust(
            warehouse_id=north.id,
            item_id=item.id,
            movement_type=MovementType.ADJUSTMENT_PLUS,
            quantity=5,
            reason=None,
            notes=None,
            user=user,
        )
        TransferExecutionEngine(other).execute(transfer.id, other_user)
    finally:
        other.close()

    db_session.expire_all()
    assert balance_of(db_session, central, item) == 70
    assert balance_of(db_session, operational, item) == 30
    assert balance_of(db_session, north, item) == 5
    assert db_session.get(InventoryItem, item.id).current_stock == 105
