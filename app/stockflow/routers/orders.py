from uuid import UUID

from fastapi import APIRouter, Depends, Request

from app.stockflow.core.deps import require_active_user, require_permission
from app.stockflow.db.session import get_db
from app.stockflow.repos.transfers import TransferRepository
from app.stockflow.routers.transfers import transfer_detail_response, transfer_response
from app.stockflow.schemas.errors import ApiErrorResponse
from app.stockflow.schemas.orders import (
    OrderTransferStatusBatchRequest,
    OrderTransferStatusBatchResponse,
    OrderTransferStatusResponse,
    OrderTransferStatusSummary,
    ShortfallResponse,
    SourceCandidateResponse,
    StockCheckResponse,
    TransferProposalResponse,
)
from app.stockflow.services.orders import OrderTransferService, OrderTransferStatus
from app.stockflow.services.stock_availability import Shortfall, StockAvailabilityChecker

router = APIRouter()

_ERROR_RESPONSES = {
    404: {"model": ApiErrorResponse},
    409: {"model": ApiErrorResponse},
    500: {"model": ApiErrorResponse},
}


def _shortfall_response(shortfall: Shortfall) -> ShortfallResponse:
    return ShortfallResponse(
        sku=shortfall.sku,
        title=shortfall.title,
        item_id=shortfall.item_id,
        required=shortfall.required,
        available=shortfall.available,
        missing=shortfall.missing,
        candidates=[
            SourceCandidateResponse(
                warehouse_id=candidate.warehouse_id,
                warehouse_code=candidate.warehouse_code,
                warehouse_name=candidate.warehouse_name,
                available=candidate.available,
            )
            for candidate in shortfall.candidates
        ],
    )


def _status_response(status: OrderTransferStatus) -> OrderTransferStatusResponse:
    return OrderTransferStatusResponse(
        order_id=status.order.id,
        order_status=status.order.status,
        required_transfer_id=status.order.required_transfer_id,
        transfer_status=status.transfer.status if status.transfer else None,
        transfer_number=status.transfer.transfer_number if status.transfer else None,
        is_blocked=status.is_blocked,
    )


@router.get("/stockflow/orders/{order_id}/stock-check", response_model=StockCheckResponse, responses=_ERROR_RESPONSES)
def stock_check(
    order_id: UUID,
    _user=Depends(require_active_user),
    _permission=Depends(require_permission("ORDER_VIEW")),
    db=Depends(get_db),
):
    report = StockAvailabilityChecker(db).check(order_id)
    return StockCheckResponse(
        order_id=report.order_id,
        operational_warehouse_id=report.operational_warehouse.id,
        operational_warehouse_code=report.operational_warehouse.code,
        has_all_stock=report.has_all_stock,
        shortfalls=[_shortfall_response(shortfall) for shortfall in report.shortfalls],
    )


@router.post(
    "/stockflow/orders/{order_id}/transfer-proposal",
    response_model=TransferProposalResponse,
    responses=_ERROR_RESPONSES,
)
def propose_transfer(
    request: Request,
    order_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_CREATE")),
    db=Depends(get_db),
):
    outcome = OrderTransferService(db).check_and_propose(
        order_id,
        current_user,
        trace_id=getattr(request.state, "trace_id", "") or None,
    )
    if outcome.existing_transfer is not None:
        return TransferProposalResponse(
            order_id=outcome.order.id,
            order_status=outcome.order.status,
            proposed=False,
            already_proposed=True,
            transfer=transfer_response(outcome.existing_transfer),
        )

    proposal = outcome.proposal
    if proposal is None or proposal.transfer is None:
        return TransferProposalResponse(
            order_id=outcome.order.id,
            order_status=outcome.order.status,
            proposed=False,
            already_proposed=False,
            unallocated=[_shortfall_response(shortfall) for shortfall in (proposal.unallocated if proposal else [])],
        )

    items = TransferRepository(db).get_items(proposal.transfer.id)
    return TransferProposalResponse(
        order_id=outcome.order.id,
        order_status=outcome.order.status,
        proposed=True,
        already_proposed=False,
        transfer=transfer_detail_response(db, proposal.transfer, items),
        unallocated=[_shortfall_response(shortfall) for shortfall in proposal.unallocated],
    )


@router.get(
    "/stockflow/orders/{order_id}/transfer-status",
    response_model=OrderTransferStatusResponse,
    responses=_ERROR_RESPONSES,
)
def order_transfer_status(
    order_id: UUID,
    _user=Depends(require_active_user),
    _permission=Depends(require_permission("ORDER_VIEW")),
    db=Depends(get_db),
):
    return _status_response(OrderTransferService(db).transfer_status(order_id))


@router.post(
    "/stockflow/orders/transfer-status",
    response_model=OrderTransferStatusBatchResponse,
    responses=_ERROR_RESPONSES,
)
def order_transfer_statuses(
    payload: OrderTransferStatusBatchRequest,
    _user=Depends(require_active_user),
    _permission=Depends(require_permission("ORDER_VIEW")),
    db=Depends(get_db),
):
    statuses = OrderTransferService(db).transfer_statuses(payload.order_ids)
    blocked = sum(1 for status in statuses if status.is_blocked)
    return OrderTransferStatusBatchResponse(
        orders=[_status_response(status) for status in statuses],
        summary=OrderTransferStatusSummary(
            total=len(statuses),
            with_pending_transfer=blocked,
            ready_for_invoice=len(statuses) - blocked,
        ),
    )
