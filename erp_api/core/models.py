"""
Data models shared across the ERP service.

Enums mirror the status/type columns of the schema; dataclasses are used for
values computed in Python (journal lines, aging rows, attendance summaries).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


def money(value: Any) -> float:
    """Coerce a nullable numeric column to a float rounded to 2 decimals."""
    return round(float(value or 0), 2)


class OrderStatus(str, Enum):
    """Sales order lifecycle."""

    DRAFT = "draft"
    CONFIRMED = "confirmed"
    READY_FOR_DELIVERY = "ready_for_delivery"
    PARTIAL_DELIVERY_READY = "partial_delivery_ready"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def billable(cls) -> list["OrderStatus"]:
        """Statuses that count as revenue / receivables."""
        return [
            cls.CONFIRMED,
            cls.SHIPPED,
            cls.DELIVERED,
            cls.READY_FOR_DELIVERY,
            cls.PARTIAL_DELIVERY_READY,
        ]

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in _ORDER_TRANSITIONS[self]


_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.DRAFT: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.PARTIAL_DELIVERY_READY,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PARTIAL_DELIVERY_READY: {
        OrderStatus.READY_FOR_DELIVERY,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.READY_FOR_DELIVERY: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    # order cancelled before any money came in
    VOID = "void"

    @classmethod
    def open_statuses(cls) -> list["InvoiceStatus"]:
        return [cls.UNPAID, cls.PARTIALLY_PAID]

    @classmethod
    def from_amounts(cls, paid: float, waived: float, total: float) -> "InvoiceStatus":
        if paid + waived >= total - 0.005:
            return cls.PAID
        if paid > 0 or waived > 0:
            return cls.PARTIALLY_PAID
        return cls.UNPAID


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def open_statuses(cls) -> list["DeliveryStatus"]:
        return [cls.PENDING, cls.SCHEDULED, cls.IN_TRANSIT]

    def can_transition_to(self, target: "DeliveryStatus") -> bool:
        return target in _DELIVERY_TRANSITIONS[self]


_DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.SCHEDULED, DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED},
    DeliveryStatus.SCHEDULED: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED},
    # a failed attempt is rescheduled or given up
    DeliveryStatus.FAILED: {DeliveryStatus.SCHEDULED, DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSED = "processed"
    REJECTED = "rejected"

    def can_transition_to(self, target: "RefundStatus") -> bool:
        return target in _REFUND_TRANSITIONS[self]


_REFUND_TRANSITIONS: dict[RefundStatus, set[RefundStatus]] = {
    RefundStatus.PENDING: {RefundStatus.APPROVED, RefundStatus.REJECTED},
    RefundStatus.APPROVED: {RefundStatus.PROCESSED, RefundStatus.REJECTED},
    RefundStatus.PROCESSED: set(),
    RefundStatus.REJECTED: set(),
}


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    UPI = "upi"
    CARD = "card"
    OTHER = "other"

    @property
    def requires_account(self) -> bool:
        """Methods that must name the bank/UPI account money lands in."""
        return self in (PaymentMethod.BANK_TRANSFER, PaymentMethod.CHEQUE, PaymentMethod.UPI)


class PaymentStatus(str, Enum):
    """Payment progress of a purchase order."""

    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"

    @classmethod
    def from_amounts(cls, paid: float, total: float) -> "PaymentStatus":
        if total > 0 and paid >= total:
            return cls.PAID
        if paid > 0:
            return cls.PARTIALLY_PAID
        return cls.UNPAID


class AccountType(str, Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"

    @property
    def normal_balance(self) -> str:
        """Side on which the account increases."""
        if self in (AccountType.ASSET, AccountType.EXPENSE):
            return "DEBIT"
        return "CREDIT"


class JournalStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"


class SourceDocument(str, Enum):
    """What a journal entry was generated from."""

    INVOICE = "INVOICE"
    PAYMENT = "PAYMENT"
    VENDOR_BILL = "VENDOR_BILL"
    VENDOR_PAYMENT = "VENDOR_PAYMENT"
    PURCHASE_ORDER_PAYMENT = "PURCHASE_ORDER_PAYMENT"
    EXPENSE = "EXPENSE"
    WAIVE_OFF = "WAIVE_OFF"
    REFUND = "REFUND"
    BANK_TRANSACTION = "BANK_TRANSACTION"
    REVERSAL = "REVERSAL"
    MANUAL = "MANUAL"


class PurchaseOrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    RECEIVED = "received"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "PurchaseOrderStatus") -> bool:
        return target in _PO_TRANSITIONS[self]


_PO_TRANSITIONS: dict[PurchaseOrderStatus, set[PurchaseOrderStatus]] = {
    PurchaseOrderStatus.PENDING: {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.APPROVED: {PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED},
    PurchaseOrderStatus.RECEIVED: set(),
    PurchaseOrderStatus.CANCELLED: set(),
}


class BillStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"

    @classmethod
    def open_statuses(cls) -> list["BillStatus"]:
        return [cls.PENDING, cls.PARTIAL, cls.OVERDUE]

    @classmethod
    def from_amounts(cls, paid: float, total: float) -> "BillStatus":
        if total > 0 and paid >= total:
            return cls.PAID
        if paid > 0:
            return cls.PARTIAL
        return cls.PENDING


class BankTransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"

    @property
    def sign(self) -> int:
        return 1 if self is BankTransactionType.DEPOSIT else -1


class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"

    def can_transition_to(self, target: "LeadStatus") -> bool:
        return target in _LEAD_TRANSITIONS[self]


_LEAD_TRANSITIONS: dict[LeadStatus, set[LeadStatus]] = {
    LeadStatus.NEW: {LeadStatus.CONTACTED, LeadStatus.QUALIFIED, LeadStatus.LOST},
    LeadStatus.CONTACTED: {LeadStatus.QUALIFIED, LeadStatus.LOST},
    LeadStatus.QUALIFIED: {LeadStatus.CONVERTED, LeadStatus.LOST},
    LeadStatus.CONVERTED: set(),
    LeadStatus.LOST: {LeadStatus.CONTACTED},
}


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    LATE = "late"
    HALF_DAY = "half_day"
    ABSENT = "absent"


class PunchType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    BREAK = "BREAK"


@dataclass
class JournalLine:
    """One side of a double-entry posting, addressed by account code."""

    account_code: str
    debit: float = 0.0
    credit: float = 0.0
    description: str = ""


@dataclass
class JournalEntry:
    """A journal entry before it is written."""

    entry_date: date
    description: str
    lines: list[JournalLine]
    source_type: SourceDocument = SourceDocument.MANUAL
    source_id: int | None = None
    reference: str | None = None

    @property
    def total_debit(self) -> float:
        return round(sum(line.debit for line in self.lines), 2)

    @property
    def total_credit(self) -> float:
        return round(sum(line.credit for line in self.lines), 2)

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_debit - self.total_credit) < 0.005


@dataclass
class AgingRow:
    """Outstanding amounts of one customer or vendor, split by age."""

    party_id: int | None
    name: str
    contact: str
    current: float = 0.0
    days_1_30: float = 0.0
    days_31_60: float = 0.0
    days_61_90: float = 0.0
    days_90_plus: float = 0.0
    total_due: float = 0.0
    document_total: float = 0.0
    paid_amount: float = 0.0
    oldest_date: date | None = None
    oldest_days: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.party_id,
            "name": self.name,
            "contact": self.contact,
            "current": round(self.current, 2),
            "days_1_30": round(self.days_1_30, 2),
            "days_31_60": round(self.days_31_60, 2),
            "days_61_90": round(self.days_61_90, 2),
            "days_90_plus": round(self.days_90_plus, 2),
            "total_due": round(self.total_due, 2),
            "document_total": round(self.document_total, 2),
            "paid_amount": round(self.paid_amount, 2),
            "oldest_date": self.oldest_date.isoformat() if self.oldest_date else None,
            "oldest_days": self.oldest_days,
        }


@dataclass
class PunchLog:
    """A single device punch as stored in attendance_punch_logs."""

    employee_id: int
    punch_time: datetime
    punch_type: PunchType
    id: int | None = None
    device_id: int | None = None
    verification_method: str | None = None


@dataclass
class AttendanceSummary:
    """One employee's attendance for one day, derived from punches."""

    employee_id: int
    work_date: date
    check_in: datetime
    check_out: datetime | None
    total_hours: float
    status: AttendanceStatus
    device_id: int | None = None
    verification_method: str | None = None
    punch_ids: list[int] = field(default_factory=list)


@dataclass
class DeviceAttendanceLog:
    """Attendance record as reported by an ESSL device."""

    user_sn: str
    device_user_id: str
    record_time: datetime
    direction: int = 0
    verify_mode: int = 1
