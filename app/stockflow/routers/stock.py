from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.stockflow.core.deps import require_active_user, require_permission
from app.stockflow.db.models import StockMovement
from app.stockflow.db.session import get_db
from app.stockflow.repos.stock import MovementQueryFilters
from app.stockflow.schemas.errors import ViolationErrorResponse
from app.stockflow.schemas.stock import (
    StockAdjustmentRequest,
    StockAdjustmentResponse,
    StockMovementListResponse,
    StockMovementResponse,
)
from app.stockflow.services.stock import StockService

router = APIRouter()


def _movement_response(movement: StockMovement) -> StockMovementResponse:
    return StockMovementResponse(
        id=movement.id,
        item_id=movement.item_id,
        movement_type=movement.movement_type,
        quantity=movement.quantity,
        previous_stock=movement.previous_stock,
        new_stock=movement.new_stock,
        warehouse_id=movement.warehouse_id,
        transfer_id=movement.transfer_id,
        reason=movement.reason,
        notes=movement.notes,
        user_id=movement.user_id,
        user_name=movement.user_name,
        created_at=movement.created_at,
    )


@router.get("/stockflow/stock/movements", response_model=StockMovementListResponse)
def list_movements(
    item_id: UUID | None = Query(default=None),
    warehouse_id: UUID | None = Query(default=None),
    transfer_id: UUID | None = Query(default=None),
    movement_type: str | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    _user=Depends(require_active_user),
    _permission=Depends(require_permission("INVENTORY_VIEW")),
    db=Depends(get_db),
):
    filters = MovementQueryFilters(
        item_id=item_id,
        warehouse_id=warehouse_id,
        transfer_id=transfer_id,
        movement_type=movement_type.upper() if movement_type else None,
        from_date=from_date,
        to_date=to_date,
    )
    rows, total = StockService(db).list_movements(filters, page=page, page_size=page_size)
    return StockMovementListResponse(
        rows=[_movement_response(row) for row in rows],
        page=page,
        page_size=page_size,
        total=total,
    )


@router.post(
    "/stockflow/stock/adjustments",
    response_model=StockAdjustmentResponse,
    status_code=201,
    responses={400: {"model": ViolationErrorResponse}, 404: {"model": ViolationErrorResponse}},
)
def adjust_stock(
    request: Request,
    payload: StockAdjustmentRequest,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("INVENTORY_ADJUST")),
    db=Depends(get_db),
):
    result = StockService(db).adjust(
        warehouse_id=payload.warehouse_id,
        item_id=payload.item_id,
        movement_type=payload.movement_type,
        quantity=payload.quantity,
        reason=payload.reason,
        notes=payload.notes,
        user=current_user,
        trace_id=getattr(request.state, "trace_id", "") or None,
    )
    return StockAdjustmentResponse(
        movement=_movement_response(result.movement),
        warehouse_stock=result.balance.current_stock,
        item_total=result.item_total,
    )
