"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    DAMAGED = "DAMAGED"
    STOLEN = "STOLEN"


# Statuses that hold physical units against inventory
ACTIVE_HOLD_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


class BasketStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONVERTED = "CONVERTED"
    EXPIRED = "EXPIRED"
    ABANDONED = "ABANDONED"


class BasketReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class ShareType(str, Enum):
    PLATFORM_70 = "PLATFORM_70"
    HOTEL_70 = "HOTEL_70"


class PricingType(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"


class IncidentType(str, Enum):
    DAMAGED = "DAMAGED"
    STOLEN = "STOLEN"


class ConflictReason(str, Enum):
    INSUFFICIENT_CAPACITY = "INSUFFICIENT_CAPACITY"
    DROP_HOTEL_NOT_STOCKED = "DROP_HOTEL_NOT_STOCKED"


class AuditEvent(str, Enum):
    RESERVATION_CREATED = "reservation_created"
    STATUS_CHANGED = "status_changed"
    RESERVATION_EXPIRED = "reservation_expired"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    DEPOSIT_CHARGED = "deposit_charged"
    INVENTORY_UPDATE_ERROR = "inventory_update_error"


class ResourceKind(str, Enum):
    """Cache tags invalidated after state mutations"""
    INVENTORY = "inventory"
    RESERVATIONS = "reservations"
    AVAILABILITY = "availability"
    BASKETS = "baskets"
