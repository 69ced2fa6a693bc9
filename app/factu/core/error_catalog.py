from dataclasses import dataclass

from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    BRANCH_SCOPE_REQUIRED = ErrorDefinition(
        "BRANCH_SCOPE_REQUIRED",
        "Branch scope is required",
        status.HTTP_403_FORBIDDEN,
    )
    CROSS_BRANCH_ACCESS_DENIED = ErrorDefinition(
        "CROSS_BRANCH_ACCESS_DENIED",
        "Cross-branch access denied",
        status.HTTP_403_FORBIDDEN,
    )
    INVALID_AMOUNT = ErrorDefinition(
        "INVALID_AMOUNT",
        "Amount must be greater than zero",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INVALID_ITEM = ErrorDefinition(
        "INVALID_ITEM",
        "Invalid sale item",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INVALID_TENDER_INDEX = ErrorDefinition(
        "INVALID_TENDER_INDEX",
        "Tender index out of range",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    EMPTY_SALE = ErrorDefinition(
        "EMPTY_SALE",
        "Sale has no items",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INSUFFICIENT_PAYMENT = ErrorDefinition(
        "INSUFFICIENT_PAYMENT",
        "Tendered amount does not cover the sale total",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INVALID_INVOICE_TENDER_MIX = ErrorDefinition(
        "INVALID_INVOICE_TENDER_MIX",
        "Invoice type is not compatible with the tender mix",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    AWAITER_BUSY = ErrorDefinition(
        "AWAITER_BUSY",
        "An external payment is already awaiting confirmation",
        status.HTTP_409_CONFLICT,
    )
    EXTERNAL_PAYMENT_PENDING = ErrorDefinition(
        "EXTERNAL_PAYMENT_PENDING",
        "Sale has an external payment awaiting confirmation",
        status.HTTP_409_CONFLICT,
    )
    EXTERNAL_PAYMENT_NOT_CONFIRMED = ErrorDefinition(
        "EXTERNAL_PAYMENT_NOT_CONFIRMED",
        "External payment is not confirmed",
        status.HTTP_409_CONFLICT,
    )
    EXTERNAL_PAYMENT_ALREADY_APPLIED = ErrorDefinition(
        "EXTERNAL_PAYMENT_ALREADY_APPLIED",
        "External payment was already applied to a sale",
        status.HTTP_409_CONFLICT,
    )
    PENDING_PAYMENT_NOT_FOUND = ErrorDefinition(
        "PENDING_PAYMENT_NOT_FOUND",
        "Pending payment not found",
        status.HTTP_404_NOT_FOUND,
    )
    SALE_NOT_FOUND = ErrorDefinition(
        "SALE_NOT_FOUND",
        "Sale not found",
        status.HTTP_404_NOT_FOUND,
    )
    PAYMENT_PROVIDER_UNAVAILABLE = ErrorDefinition(
        "PAYMENT_PROVIDER_UNAVAILABLE",
        "Payment provider unavailable",
        status.HTTP_502_BAD_GATEWAY,
    )
    WEBHOOK_SIGNATURE_INVALID = ErrorDefinition(
        "WEBHOOK_SIGNATURE_INVALID",
        "Webhook signature invalid",
        status.HTTP_403_FORBIDDEN,
    )
    WEBHOOK_PAYLOAD_INVALID = ErrorDefinition(
        "WEBHOOK_PAYLOAD_INVALID",
        "Webhook payload invalid",
        status.HTTP_400_BAD_REQUEST,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
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

    @property
    def code(self) -> str:
        return self.error.code
