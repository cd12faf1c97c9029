from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.stockflow.core.deps import require_active_user, require_permission
from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.metrics import metrics
from app.stockflow.db.models import TransferStatus, WarehouseTransfer
from app.stockflow.db.session import get_db
from app.stockflow.repos.inventory import InventoryItemRepository
from app.stockflow.schemas.errors import ViolationErrorResponse
from app.stockflow.schemas.transfers import (
    ExecutionSummaryResponse,
    PreviewItemResponse,
    TransferCreateRequest,
    TransferDetailResponse,
    TransferExecuteResponse,
    TransferItemResponse,
    TransferListResponse,
    TransferPreviewResponse,
    TransferResponse,
    TransferUpdateRequest,
)
from app.stockflow.services.idempotency import IdempotencyService, extract_idempotency_key
from app.stockflow.services.transfer_approval import TransferApprovalGate
from app.stockflow.services.transfer_execution import TransferExecutionEngine
from app.stockflow.services.transfers import TransferDetail, TransferLineInput, TransferService

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ViolationErrorResponse},
    403: {"model": ViolationErrorResponse},
    404: {"model": ViolationErrorResponse},
    409: {"model": ViolationErrorResponse},
}


def _trace_id(request: Request) -> str | None:
    return getattr(request.state, "trace_id", "") or None


def _start_idempotency(request: Request, db, current_user, payload: object, *, required: bool):
    idempotency_key = extract_idempotency_key(request.headers, required=required)
    if not idempotency_key:
        return None
    context, replay = IdempotencyService(db).start(
        actor_id=str(current_user.id),
        endpoint=str(request.url.path),
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=IdempotencyService.fingerprint(payload),
    )
    if replay:
        metrics.increment_idempotency_replay()
        return JSONResponse(
            status_code=replay.status_code,
            content=replay.response_body,
            headers={"X-Idempotency-Result": ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )
    request.state.idempotency = context
    return None


def _record_success(request: Request, status_code: int, response) -> None:
    context = getattr(request.state, "idempotency", None)
    if context is not None:
        context.record_success(status_code=status_code, response_body=response.model_dump(mode="json"))


def _transfer_header(transfer: WarehouseTransfer) -> dict:
    return {
        "id": transfer.id,
        "transfer_number": transfer.transfer_number,
        "from_warehouse_id": transfer.from_warehouse_id,
        "to_warehouse_id": transfer.to_warehouse_id,
        "status": transfer.status,
        "is_auto_proposed": transfer.is_auto_proposed,
        "notes": transfer.notes,
        "created_by_user_id": transfer.created_by_user_id,
        "created_by_name": transfer.created_by_name,
        "approved_by_user_id": transfer.approved_by_user_id,
        "approved_by_name": transfer.approved_by_name,
        "approved_at": transfer.approved_at,
        "completed_by_user_id": transfer.completed_by_user_id,
        "completed_by_name": transfer.completed_by_name,
        "completed_at": transfer.completed_at,
        "canceled_by_user_id": transfer.canceled_by_user_id,
        "canceled_at": transfer.canceled_at,
        "created_at": transfer.created_at,
        "updated_at": transfer.updated_at,
    }


def transfer_response(transfer: WarehouseTransfer) -> TransferResponse:
    return TransferResponse(**_transfer_header(transfer))


def transfer_detail_response(db, transfer: WarehouseTransfer, items, source_balances: dict | None = None):
    catalog = InventoryItemRepository(db).list_by_ids({line.item_id for line in items})
    rows = []
    for line in items:
        item = catalog.get(line.item_id)
        rows.append(
            TransferItemResponse(
                id=line.id,
                item_id=line.item_id,
                sku=item.sku if item else None,
                name=item.name if item else None,
                quantity=line.quantity,
                notes=line.notes,
                from_stock_before=line.from_stock_before,
                from_stock_after=line.from_stock_after,
                to_stock_before=line.to_stock_before,
                to_stock_after=line.to_stock_after,
                source_available=(source_balances or {}).get(line.item_id),
            )
        )
    return TransferDetailResponse(**_transfer_header(transfer), items=rows)


def _detail_response(db, detail: TransferDetail) -> TransferDetailResponse:
    return transfer_detail_response(db, detail.transfer, detail.items, detail.source_balances)


@router.get("/stockflow/transfers", response_model=TransferListResponse)
def list_transfers(
    status: str | None = Query(default=None),
    from_warehouse_id: UUID | None = Query(default=None),
    to_warehouse_id: UUID | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_VIEW")),
    db=Depends(get_db),
):
    status_filter = status.upper() if status else None
    if status_filter and status_filter not in TransferStatus.ALL:
        raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"field": "status", "allowed": list(TransferStatus.ALL)})
    rows, total = TransferService(db).list_transfers(
        current_user,
        status=status_filter,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return TransferListResponse(
        rows=[transfer_response(row) for row in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.post(
    "/stockflow/transfers",
    response_model=TransferDetailResponse,
    status_code=201,
    responses=_ERROR_RESPONSES,
)
def create_transfer(
    request: Request,
    payload: TransferCreateRequest,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_CREATE")),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"), required=True)
    if replay is not None:
        return replay

    detail = TransferService(db).create_transfer(
        from_warehouse_id=payload.from_warehouse_id,
        to_warehouse_id=payload.to_warehouse_id,
        lines=[TransferLineInput(item_id=line.item_id, quantity=line.quantity, notes=line.notes) for line in payload.items],
        notes=payload.notes,
        creator=current_user,
        trace_id=_trace_id(request),
    )
    response = _detail_response(db, detail)
    _record_success(request, 201, response)
    return response


@router.get("/stockflow/transfers/{transfer_id}", response_model=TransferDetailResponse, responses=_ERROR_RESPONSES)
def get_transfer_detail(
    transfer_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_VIEW")),
    db=Depends(get_db),
):
    return _detail_response(db, TransferService(db).get_detail(transfer_id, current_user))


@router.patch("/stockflow/transfers/{transfer_id}", response_model=TransferDetailResponse, responses=_ERROR_RESPONSES)
def update_transfer(
    request: Request,
    transfer_id: UUID,
    payload: TransferUpdateRequest,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_CREATE")),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, current_user, payload.model_dump(mode="json"), required=False)
    if replay is not None:
        return replay

    lines = None
    if payload.items is not None:
        lines = [TransferLineInput(item_id=line.item_id, quantity=line.quantity, notes=line.notes) for line in payload.items]
    detail = TransferService(db).update_transfer(
        transfer_id,
        lines=lines,
        notes=payload.notes,
        editor=current_user,
        trace_id=_trace_id(request),
    )
    response = _detail_response(db, detail)
    _record_success(request, 200, response)
    return response


@router.post(
    "/stockflow/transfers/{transfer_id}/preview",
    response_model=TransferPreviewResponse,
    responses=_ERROR_RESPONSES,
)
def preview_transfer(
    transfer_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_VIEW")),
    db=Depends(get_db),
):
    preview = TransferService(db).preview(transfer_id, current_user)
    return TransferPreviewResponse(
        transfer_id=preview.transfer.id,
        status=preview.transfer.status,
        can_execute=preview.can_execute,
        items=[
            PreviewItemResponse(
                item_id=line.item_id,
                sku=line.sku,
                name=line.name,
                quantity=line.quantity,
                from_current=line.from_current,
                from_after=line.from_after,
                to_current=line.to_current,
                to_after=line.to_after,
                min_stock=line.min_stock,
                has_sufficient_stock=line.has_sufficient_stock,
                will_be_below_min_stock=line.will_be_below_min_stock,
            )
            for line in preview.lines
        ],
        violations=[violation.to_dict() for violation in preview.violations],
    )


@router.post(
    "/stockflow/transfers/{transfer_id}/approve",
    response_model=TransferResponse,
    responses=_ERROR_RESPONSES,
)
def approve_transfer(
    request: Request,
    transfer_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_APPROVE")),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, current_user, {"transfer_id": str(transfer_id)}, required=False)
    if replay is not None:
        return replay

    transfer = TransferApprovalGate(db).approve(transfer_id, current_user, trace_id=_trace_id(request))
    response = transfer_response(transfer)
    _record_success(request, 200, response)
    return response


@router.post(
    "/stockflow/transfers/{transfer_id}/execute",
    response_model=TransferExecuteResponse,
    responses=_ERROR_RESPONSES,
)
def execute_transfer(
    request: Request,
    transfer_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_EXECUTE")),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, current_user, {"transfer_id": str(transfer_id)}, required=False)
    if replay is not None:
        return replay

    result = TransferExecutionEngine(db).execute(transfer_id, current_user, trace_id=_trace_id(request))
    response = TransferExecuteResponse(
        transfer=transfer_detail_response(db, result.transfer, result.items),
        summary=ExecutionSummaryResponse(
            items_transferred=result.summary.items_transferred,
            stock_movements_created=result.summary.stock_movements_created,
        ),
        unblocked_order_ids=result.unblocked_order_ids,
    )
    _record_success(request, 200, response)
    return response


@router.post(
    "/stockflow/transfers/{transfer_id}/cancel",
    response_model=TransferResponse,
    responses=_ERROR_RESPONSES,
)
def cancel_transfer(
    request: Request,
    transfer_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("TRANSFER_CANCEL")),
    db=Depends(get_db),
):
    replay = _start_idempotency(request, db, current_user, {"transfer_id": str(transfer_id)}, required=False)
    if replay is not None:
        return replay

    transfer = TransferService(db).cancel(transfer_id, current_user, trace_id=_trace_id(request))
    response = transfer_response(transfer)
    _record_success(request, 200, response)
    return response
