from pydantic import BaseModel


class ApiErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None
    trace_id: str | None = None


class ViolationItem(BaseModel):
    reason_code: str
    message: str
    item_id: str | None = None
    sku: str | None = None
    warehouse_id: str | None = None
    required: int | None = None
    available: int | None = None


class ViolationDetails(BaseModel):
    violations: list[ViolationItem]


class ViolationErrorResponse(ApiErrorResponse):
    details: ViolationDetails | dict | None = None
