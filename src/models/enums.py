"""
Enum definitions for the Off The Record backend
"""

from enum import Enum


class UserRole(str, Enum):
    USER = "user"
    LAWYER = "lawyer"
    ADMIN = "admin"
    SUPPORT = "support"
    BUSINESS_SUPPORT = "business_support"


class ViolationType(str, Enum):
    SPEEDING = "speeding"
    RED_LIGHT = "red_light"
    STOP_SIGN = "stop_sign"
    CELL_PHONE = "cell_phone"
    HOV = "hov"
    RECKLESS_DRIVING = "reckless_driving"
    SUSPENDED_LICENSE = "suspended_license"
    DUI = "dui"
    LANE_CHANGE = "lane_change"
    NO_INSURANCE = "no_insurance"
    RACING = "racing"
    CONSTRUCTION_ZONE = "construction_zone"
    OTHER = "other"


class Specialization(str, Enum):
    SPEEDING = "speeding"
    RECKLESS_DRIVING = "reckless_driving"
    DUI = "dui"
    TRAFFIC_MISDEMEANOR = "traffic_misdemeanor"
    CDL_VIOLATIONS = "cdl_violations"
    RED_LIGHT = "red_light"
    STOP_SIGN = "stop_sign"
    OTHER = "other"


class CaseStatus(str, Enum):
    """
    Case lifecycle states.

    pending -> assigned -> in_progress -> court_scheduled -> {dismissed | reduced | lost} -> closed
    """
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COURT_SCHEDULED = "court_scheduled"
    DISMISSED = "dismissed"
    REDUCED = "reduced"
    LOST = "lost"
    CLOSED = "closed"


class OutcomeType(str, Enum):
    DISMISSED = "dismissed"
    REDUCED = "reduced"
    GUILTY = "guilty"
    PENDING = "pending"


class CasePaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentType(str, Enum):
    CASE_PAYMENT = "case_payment"
    SUBSCRIPTION = "subscription"
    REFUND = "refund"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    VOID = "void"


class MessageType(str, Enum):
    TEXT = "text"
    DOCUMENT = "document"
    SYSTEM = "system"


class EmployeeRole(str, Enum):
    ADMIN = "admin"
    EMPLOYEE = "employee"


class BillingPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SeverityLevel(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    SEVERE = "severe"


class Language(str, Enum):
    EN = "en"
    AR = "ar"
