"""
Result envelope returned by every marketplace operation.

Expected domain failures (missing records, illegal transitions, declined
payments...) come back as `OperationResult(success=False, ...)` with a code
and a message meant to be shown to the user verbatim. Only genuine faults
raise.
"""
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    ALREADY_PROCESSED = "already_processed"
    AUTHORIZATION_DECLINED = "authorization_declined"
    CONNECTIVITY = "connectivity"
    CONFLICT = "conflict"
    AUTHENTICATION = "authentication"
    FORBIDDEN = "forbidden"


class ErrorCode(str, Enum):
    DUPLICATE_EMAIL = "DuplicateEmail"
    INVALID_CREDENTIALS = "InvalidCredentials"
    PENDING_APPROVAL = "PendingApproval"
    ACCOUNT_REJECTED = "AccountRejected"
    USER_NOT_FOUND = "UserNotFound"
    VEHICLE_NOT_FOUND = "VehicleNotFound"
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    TEMPORARY_VEHICLE_NOT_FOUND = "TemporaryVehicleNotFound"
    VEHICLE_NOT_FOR_SALE = "VehicleNotForSale"
    VEHICLE_UNAVAILABLE = "VehicleUnavailable"
    SELF_PURCHASE_NOT_ALLOWED = "SelfPurchaseNotAllowed"
    TRANSACTION_NOT_FOUND = "TransactionNotFound"
    TRANSACTION_ALREADY_PROCESSED = "TransactionAlreadyProcessed"
    TRANSACTION_NOT_CANCELLABLE = "TransactionNotCancellable"
    PAYMENT_DECLINED = "PaymentDeclined"
    INVALID_PLATE_FORMAT = "InvalidPlateFormat"
    PLATE_NOT_FOUND = "PlateNotFound"
    NO_LICENSE_PLATE = "NoLicensePlate"
    EMPTY_MESSAGE = "EmptyMessage"
    CONVERSATION_NOT_FOUND = "ConversationNotFound"
    MESSAGING_UNAVAILABLE = "MessagingUnavailable"
    INVALID_INPUT = "InvalidInput"

    @property
    def kind(self) -> ErrorKind:
        return ERROR_KINDS[self]


ERROR_KINDS = {
    ErrorCode.DUPLICATE_EMAIL: ErrorKind.CONFLICT,
    ErrorCode.INVALID_CREDENTIALS: ErrorKind.AUTHENTICATION,
    ErrorCode.PENDING_APPROVAL: ErrorKind.FORBIDDEN,
    ErrorCode.ACCOUNT_REJECTED: ErrorKind.FORBIDDEN,
    ErrorCode.USER_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.VEHICLE_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.INVALID_STATE_TRANSITION: ErrorKind.INVALID_STATE_TRANSITION,
    ErrorCode.TEMPORARY_VEHICLE_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.VEHICLE_NOT_FOR_SALE: ErrorKind.INVALID_STATE_TRANSITION,
    ErrorCode.VEHICLE_UNAVAILABLE: ErrorKind.INVALID_STATE_TRANSITION,
    ErrorCode.SELF_PURCHASE_NOT_ALLOWED: ErrorKind.VALIDATION,
    ErrorCode.TRANSACTION_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.TRANSACTION_ALREADY_PROCESSED: ErrorKind.ALREADY_PROCESSED,
    ErrorCode.TRANSACTION_NOT_CANCELLABLE: ErrorKind.ALREADY_PROCESSED,
    ErrorCode.PAYMENT_DECLINED: ErrorKind.AUTHORIZATION_DECLINED,
    ErrorCode.INVALID_PLATE_FORMAT: ErrorKind.VALIDATION,
    ErrorCode.PLATE_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.NO_LICENSE_PLATE: ErrorKind.VALIDATION,
    ErrorCode.EMPTY_MESSAGE: ErrorKind.VALIDATION,
    ErrorCode.CONVERSATION_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.MESSAGING_UNAVAILABLE: ErrorKind.CONNECTIVITY,
    ErrorCode.INVALID_INPUT: ErrorKind.VALIDATION,
}


class OperationResult(BaseModel):
    success: bool
    message: str
    code: Optional[ErrorCode] = None
    data: Optional[Any] = None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.code.kind if self.code else None


def ok(message: str, data: Any = None) -> OperationResult:
    return OperationResult(success=True, message=message, data=data)


def fail(code: ErrorCode, message: str, data: Any = None) -> OperationResult:
    return OperationResult(success=False, message=message, code=code, data=data)
