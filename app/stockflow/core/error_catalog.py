from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    INVALID_CREDENTIALS = ErrorDefinition(
        "INVALID_CREDENTIALS",
        "Invalid credentials",
        status.HTTP_401_UNAUTHORIZED,
    )
    USER_INACTIVE = ErrorDefinition(
        "USER_INACTIVE",
        "User is inactive or suspended",
        status.HTTP_403_FORBIDDEN,
    )
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    WAREHOUSE_ACCESS_DENIED = ErrorDefinition(
        "WAREHOUSE_ACCESS_DENIED",
        "No access to one or both warehouses",
        status.HTTP_403_FORBIDDEN,
    )
    TRANSFER_NOT_FOUND = ErrorDefinition(
        "TRANSFER_NOT_FOUND",
        "Transfer not found",
        status.HTTP_404_NOT_FOUND,
    )
    ORDER_NOT_FOUND = ErrorDefinition(
        "ORDER_NOT_FOUND",
        "Order not found",
        status.HTTP_404_NOT_FOUND,
    )
    WAREHOUSE_NOT_FOUND = ErrorDefinition(
        "WAREHOUSE_NOT_FOUND",
        "Warehouse not found",
        status.HTTP_404_NOT_FOUND,
    )
    ITEM_NOT_FOUND = ErrorDefinition(
        "ITEM_NOT_FOUND",
        "Inventory item not found",
        status.HTTP_404_NOT_FOUND,
    )
    TRANSFER_INVALID_STATE = ErrorDefinition(
        "TRANSFER_INVALID_STATE",
        "Transfer cannot perform this action from its current status",
        status.HTTP_400_BAD_REQUEST,
    )
    TRANSFER_PRECONDITION_FAILED = ErrorDefinition(
        "TRANSFER_PRECONDITION_FAILED",
        "Transfer preconditions not met",
        status.HTTP_400_BAD_REQUEST,
    )
    INSUFFICIENT_STOCK = ErrorDefinition(
        "INSUFFICIENT_STOCK",
        "Insufficient stock in source warehouse",
        status.HTTP_400_BAD_REQUEST,
    )
    TRANSFER_STATE_CONFLICT = ErrorDefinition(
        "TRANSFER_STATE_CONFLICT",
        "Transfer was changed by a concurrent request",
        status.HTTP_409_CONFLICT,
    )
    TRANSFER_ALREADY_PROPOSED = ErrorDefinition(
        "TRANSFER_ALREADY_PROPOSED",
        "Order already references a transfer",
        status.HTTP_409_CONFLICT,
    )
    OPERATIONAL_WAREHOUSE_NOT_CONFIGURED = ErrorDefinition(
        "OPERATIONAL_WAREHOUSE_NOT_CONFIGURED",
        "No operational warehouse configured",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    TRANSACTION_FAILED = ErrorDefinition(
        "TRANSACTION_FAILED",
        "Storage transaction failed and was rolled back",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    IDEMPOTENCY_KEY_REQUIRED = ErrorDefinition(
        "IDEMPOTENCY_KEY_REQUIRED",
        "Idempotency key required",
        status.HTTP_400_BAD_REQUEST,
    )
    IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD = ErrorDefinition(
        "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD",
        "Idempotency key reused with different payload",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REQUEST_IN_PROGRESS = ErrorDefinition(
        "IDEMPOTENCY_REQUEST_IN_PROGRESS",
        "Idempotency request already in progress",
        status.HTTP_409_CONFLICT,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)
