"""
Status enumerations and the transitions allowed between them.

Every status mutation goes through `ensure_transition`, so an illegal move is
refused by the table instead of by ad hoc checks at each call site.
"""
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class UserType(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    BOTH = "both"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VehicleStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    INACTIVE = "inactive"


class SaleStatus(str, Enum):
    DRAFT = "draft"
    PENDING_VALIDATION = "pending_validation"
    VALIDATED = "validated"
    FOR_SALE = "for_sale"
    REJECTED = "rejected"


class TemporaryStatus(str, Enum):
    TEMPORARY = "temporary"
    CONVERTED = "converted"
    EXPIRED = "expired"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Transmission(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class FuelType(str, Enum):
    GASOLINE = "gasoline"
    DIESEL = "diesel"
    ELECTRIC = "electric"
    HYBRID = "hybrid"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PSE = "pse"
    NEQUI = "nequi"


# Approval is idempotent and an admin may change their mind either way.
USER_TRANSITIONS = {
    ValidationStatus.PENDING: {ValidationStatus.APPROVED, ValidationStatus.REJECTED},
    ValidationStatus.APPROVED: {ValidationStatus.APPROVED, ValidationStatus.REJECTED},
    ValidationStatus.REJECTED: {ValidationStatus.APPROVED, ValidationStatus.REJECTED},
}

SALE_TRANSITIONS = {
    SaleStatus.DRAFT: {SaleStatus.PENDING_VALIDATION},
    SaleStatus.PENDING_VALIDATION: {SaleStatus.FOR_SALE, SaleStatus.REJECTED, SaleStatus.DRAFT},
    SaleStatus.FOR_SALE: {SaleStatus.VALIDATED, SaleStatus.DRAFT},
    SaleStatus.REJECTED: {SaleStatus.DRAFT},
    SaleStatus.VALIDATED: set(),
}

TEMPORARY_TRANSITIONS = {
    TemporaryStatus.TEMPORARY: {TemporaryStatus.CONVERTED, TemporaryStatus.EXPIRED},
    TemporaryStatus.CONVERTED: set(),
    TemporaryStatus.EXPIRED: set(),
}

TRANSACTION_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.PROCESSING, TransactionStatus.CANCELLED},
    TransactionStatus.PROCESSING: {TransactionStatus.COMPLETED, TransactionStatus.REJECTED},
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.REJECTED: set(),
    TransactionStatus.CANCELLED: set(),
}

SALE_STATUS_LABELS = {
    SaleStatus.DRAFT: "Borrador",
    SaleStatus.PENDING_VALIDATION: "En Validación",
    SaleStatus.VALIDATED: "Validado",
    SaleStatus.FOR_SALE: "En Venta",
    SaleStatus.REJECTED: "Rechazado",
}


class InvalidTransition(Exception):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"{current} -> {target}")


def _tables():
    return {
        ValidationStatus: USER_TRANSITIONS,
        SaleStatus: SALE_TRANSITIONS,
        TemporaryStatus: TEMPORARY_TRANSITIONS,
        TransactionStatus: TRANSACTION_TRANSITIONS,
    }


def can_transition(current, target) -> bool:
    # target must be an enum member; current may be its plain string value
    state_cls = type(target)
    table = _tables()[state_cls]
    return state_cls(target) in table.get(state_cls(current), set())


def ensure_transition(current, target):
    """Raise InvalidTransition unless `current -> target` is in the table for target's enum."""
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def is_terminal(state_cls, status) -> bool:
    return not _tables()[state_cls].get(state_cls(status))


def sale_status_label(status) -> str:
    try:
        return SALE_STATUS_LABELS[SaleStatus(status)]
    except ValueError:
        return str(status)
