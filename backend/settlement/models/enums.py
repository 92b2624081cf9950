from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class InvoiceStatusEnum(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    # Due date passed or a payment attempt failed; late payment still accepted.
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentStatusEnum(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class EstablishmentCommissionStatusEnum(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


def enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
