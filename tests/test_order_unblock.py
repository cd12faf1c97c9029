from app.stockflow.db.models import Order, OrderStatus, TransferStatus
from app.stockflow.services.order_unblock import OrderUnblockReactor
from app.stockflow.services.orders import OrderTransferService
from app.stockflow.services.transfer_approval import TransferApprovalGate
from app.stockflow.services.transfer_execution import TransferExecutionEngine
from app.stockflow.services.transfers import TransferService
from tests.stock_helpers import create_order, create_transfer, create_user, fulfillment_setup


def _waiting_order(db_session, number, transfer, status=OrderStatus.WAIT_TRANSFER):
    order = create_order(db_session, number=number, lines=[{"sku": "SKU-X", "quantity": 1}], status=status)
    order.required_transfer_id = transfer.id
    db_session.commit()
    return order


def test_reactor_releases_only_waiting_orders(db_session):
    operational, central, item = fulfillment_setup(db_session)
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 1)])
    waiting = _waiting_order(db_session, "ORD-300", transfer)
    overridden = _waiting_order(db_session, "ORD-301", transfer, status=OrderStatus.CANCELLED)
    other = create_transfer(db_session, source=central, destination=operational, lines=[(item, 1)])
    unrelated = _waiting_order(db_session, "ORD-302", other)

    released = OrderUnblockReactor(db_session).on_transfer_completed(transfer.id)
    db_session.commit()

    assert released == [waiting.id]
    db_session.expire_all()
    assert db_session.get(Order, waiting.id).status == OrderStatus.PENDING
    assert db_session.get(Order, overridden.id).status == OrderStatus.CANCELLED
    assert db_session.get(Order, unrelated.id).status == OrderStatus.WAIT_TRANSFER


def test_reactor_uses_configured_release_status(db_session):
    operational, central, item = fulfillment_setup(db_session)
    transfer = create_transfer(db_session, source=central, destination=operational, lines=[(item, 1)])
    order = _waiting_order(db_session, "ORD-303", transfer)

    OrderUnblockReactor(db_session, released_status="READY_TO_SHIP").on_transfer_completed(transfer.id)
    db_session.commit()

    db_session.expire_all()
    assert db_session.get(Order, order.id).status == "READY_TO_SHIP"


def test_order_lifecycle_through_transfer(db_session):
    fulfillment_setup(db_session)
    user = create_user(db_session, suffix="lifecycle")
    order = create_order(db_session, number="ORD-304", lines=[{"sku": "SKU-X", "quantity": 30}])
    service = OrderTransferService(db_session)

    outcome = service.check_and_propose(order.id, user)
    transfer = outcome.proposal.transfer
    assert outcome.order.status == OrderStatus.WAIT_TRANSFER
    assert service.transfer_status(order.id).is_blocked is True

    repeat = service.check_and_propose(order.id, user)
    assert repeat.proposal is None
    assert repeat.existing_transfer.id == transfer.id

    TransferApprovalGate(db_session).approve(transfer.id, user)
    TransferExecutionEngine(db_session).execute(transfer.id, user)

    status = service.transfer_status(order.id)
    assert status.transfer.status == TransferStatus.COMPLETED
    assert status.order.status == OrderStatus.PENDING
    assert status.is_blocked is False


def test_cancelling_transfer_keeps_order_waiting(db_session):
    fulfillment_setup(db_session)
    user = create_user(db_session, suffix="cancel-waiting")
    order = create_order(db_session, number="ORD-305", lines=[{"sku": "SKU-X", "quantity": 30}])
    service = OrderTransferService(db_session)
    transfer = service.check_and_propose(order.id, user).proposal.transfer

    TransferService(db_session).cancel(transfer.id, user)

    status = service.transfer_status(order.id)
    assert status.order.status == OrderStatus.WAIT_TRANSFER
    assert status.transfer.status == TransferStatus.CANCELLED
    assert status.is_blocked is True
