from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.stockflow.core.deps import require_active_user, require_permission
from app.stockflow.db.models import Warehouse
from app.stockflow.db.session import get_db
from app.stockflow.schemas.errors import ApiErrorResponse
from app.stockflow.schemas.warehouses import (
    WarehouseListResponse,
    WarehouseResponse,
    WarehouseStockResponse,
    WarehouseStockRow,
)
from app.stockflow.services.stock import StockService
from app.stockflow.services.warehouses import WarehouseService

router = APIRouter()


def _warehouse_response(warehouse: Warehouse) -> WarehouseResponse:
    return WarehouseResponse(
        id=warehouse.id,
        code=warehouse.code,
        name=warehouse.name,
        is_active=warehouse.is_active,
        is_operational=warehouse.is_operational,
    )


@router.get("/stockflow/warehouses", response_model=WarehouseListResponse)
def list_warehouses(
    active_only: bool = Query(default=False),
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("WAREHOUSE_VIEW")),
    db=Depends(get_db),
):
    rows = WarehouseService(db).list_warehouses(current_user, active_only=active_only)
    return WarehouseListResponse(rows=[_warehouse_response(row) for row in rows])


@router.get(
    "/stockflow/warehouses/{warehouse_id}/stock",
    response_model=WarehouseStockResponse,
    responses={403: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
)
def warehouse_stock(
    warehouse_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("WAREHOUSE_VIEW")),
    db=Depends(get_db),
):
    service = StockService(db)
    rows = service.list_warehouse_stock(warehouse_id, current_user)
    warehouse = service.warehouses.get(warehouse_id)
    return WarehouseStockResponse(
        warehouse=_warehouse_response(warehouse),
        rows=[
            WarehouseStockRow(
                item_id=item.id,
                sku=item.sku,
                name=item.name,
                unit=item.unit,
                is_composite=item.is_composite,
                current_stock=balance.current_stock,
                min_stock=balance.min_stock,
            )
            for balance, item in rows
        ],
    )


@router.post(
    "/stockflow/warehouses/{warehouse_id}/operational",
    response_model=WarehouseResponse,
    responses={400: {"model": ApiErrorResponse}, 404: {"model": ApiErrorResponse}},
)
def set_operational_warehouse(
    request: Request,
    warehouse_id: UUID,
    current_user=Depends(require_active_user),
    _permission=Depends(require_permission("WAREHOUSE_MANAGE")),
    db=Depends(get_db),
):
    warehouse = WarehouseService(db).set_operational(
        warehouse_id,
        current_user,
        trace_id=getattr(request.state, "trace_id", "") or None,
    )
    return _warehouse_response(warehouse)
