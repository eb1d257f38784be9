"""Domain Entities - Aggregates"""
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from domain.enums import (
    ACTIVE_HOLD_STATUSES, BasketReservationStatus, BasketStatus, ReservationStatus, ShareType,
)
from domain.exceptions import IllegalTransitionError, ValidationError
from domain.value_objects import LineItem, TimeWindow

# Code alphabet without I, O, 0 and 1
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_PREFIX = "EZB-"
CODE_LENGTH = 6


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_reservation_code() -> str:
    """Generate human-readable reservation code"""
    return CODE_PREFIX + ''.join(random.choices(CODE_ALPHABET, k=CODE_LENGTH))


# ==================== CATALOGUE ====================

class City(BaseModel):
    city_id: str = Field(default_factory=_new_id)
    name: str
    slug: str = Field(pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

    class Config:
        from_attributes = True


class Hotel(BaseModel):
    hotel_id: str = Field(default_factory=_new_id)
    name: str
    address: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    city_id: str

    class Config:
        from_attributes = True


class Product(BaseModel):
    """Rentable product; prices and deposit in minor currency units"""
    product_id: str = Field(default_factory=_new_id)
    name: str
    description: str = ""
    price_per_hour: int = Field(ge=0)
    price_per_day: int = Field(ge=0)
    deposit: int = Field(ge=0)

    class Config:
        from_attributes = True


class InventoryItem(BaseModel):
    """Physical units of one product stocked at one hotel"""
    hotel_id: str
    product_id: str
    quantity: int = Field(ge=0)
    active: bool = True

    class Config:
        from_attributes = True

    @property
    def capacity(self) -> int:
        """Units the ledger may hand out; inactive rows count as zero"""
        return self.quantity if self.active else 0


class DiscountCode(BaseModel):
    discount_code_id: str = Field(default_factory=_new_id)
    code: str
    kind: ShareType
    active: bool = True
    hotel_id: str

    class Config:
        from_attributes = True


class RevenueAgreement(BaseModel):
    hotel_id: str
    default_share: ShareType
    effective_from: datetime

    class Config:
        from_attributes = True


# ==================== RESERVATION ====================

# Allowed lifecycle moves; anything absent is illegal
RESERVATION_TRANSITIONS: Dict[ReservationStatus, frozenset] = {
    ReservationStatus.PENDING: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.CONFIRMED: frozenset({
        ReservationStatus.COMPLETED,
        ReservationStatus.NO_SHOW,
        ReservationStatus.DAMAGED,
        ReservationStatus.STOLEN,
        ReservationStatus.CANCELLED,
    }),
    # Damage or theft may surface after the item is returned
    ReservationStatus.COMPLETED: frozenset({
        ReservationStatus.DAMAGED,
        ReservationStatus.STOLEN,
    }),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
    ReservationStatus.DAMAGED: frozenset(),
    ReservationStatus.STOLEN: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    ReservationStatus.COMPLETED,
    ReservationStatus.CANCELLED,
    ReservationStatus.NO_SHOW,
    ReservationStatus.DAMAGED,
    ReservationStatus.STOLEN,
})


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: str = Field(default_factory=_new_id)
    code: str

    # What, where, when
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    window: TimeWindow
    quantity: int = Field(ge=1, default=1)

    # Money (minor units)
    price_cents: int = Field(ge=0)
    deposit_cents: int = Field(ge=0)
    pricing_type: Optional[str] = None

    # Customer
    user_email: str
    user_phone: Optional[str] = None

    status: ReservationStatus = ReservationStatus.PENDING

    # Links
    discount_code_id: Optional[str] = None
    basket_reservation_id: Optional[str] = None
    payment_intent_id: Optional[str] = None

    # Revenue
    revenue_share_applied: ShareType = ShareType.PLATFORM_70
    revenue_computed_cents: Optional[int] = None
    platform_share_cents: Optional[int] = None
    hotel_share_cents: Optional[int] = None

    # Metadata
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        code: str,
        item: LineItem,
        price_cents: int,
        deposit_cents: int,
        user_email: str,
        created_at: datetime,
        user_phone: Optional[str] = None,
        status: ReservationStatus = ReservationStatus.PENDING,
        **links: Any
    ) -> "Reservation":
        """Create new reservation in PENDING (or CONFIRMED on synchronous payment)"""
        if status not in ACTIVE_HOLD_STATUSES:
            raise ValidationError(f"Reservation cannot be created in {status.value}")
        if item.quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        return Reservation(
            code=code,
            product_id=item.product_id,
            pickup_hotel_id=item.pickup_hotel_id,
            drop_hotel_id=item.drop_hotel_id,
            window=item.window,
            quantity=item.quantity,
            price_cents=price_cents,
            deposit_cents=deposit_cents,
            user_email=user_email,
            user_phone=user_phone,
            status=status,
            created_at=created_at,
            modified_at=created_at,
            **links
        )

    # ==================== STATE TRANSITION METHODS ====================
    def can_transition_to(self, new_status: ReservationStatus) -> bool:
        return new_status in RESERVATION_TRANSITIONS[self.status]

    def transition_to(self, new_status: ReservationStatus, at: Optional[datetime] = None) -> ReservationStatus:
        """Move to new_status, returning the previous status"""
        if not self.can_transition_to(new_status):
            raise IllegalTransitionError(
                f"Cannot move reservation {self.code} from {self.status.value} to {new_status.value}",
                details={"from": self.status.value, "to": new_status.value},
            )

        previous = self.status
        self.status = new_status
        self.modified_at = at or _utcnow()
        if new_status == ReservationStatus.COMPLETED:
            self.completed_at = self.modified_at
        self.version += 1
        return previous

    def cancel(self, at: Optional[datetime] = None) -> Optional[ReservationStatus]:
        """Cancel; already-cancelled reservations are left alone and None is returned"""
        if self.status == ReservationStatus.CANCELLED:
            return None
        return self.transition_to(ReservationStatus.CANCELLED, at)

    def complete(self, at: Optional[datetime] = None) -> ReservationStatus:
        return self.transition_to(ReservationStatus.COMPLETED, at)

    # ==================== QUERY METHODS ====================
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def holds_inventory(self) -> bool:
        return self.status in ACTIVE_HOLD_STATUSES


# ==================== BASKET ====================

class BasketItem(BaseModel):
    """Child entity of ShoppingBasket"""
    item_id: str = Field(default_factory=_new_id)
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    pickup_date: datetime
    drop_date: datetime
    quantity: int = Field(ge=1)
    price_cents: int = Field(ge=0)
    deposit_cents: int = Field(ge=0)
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True

    def to_line_item(self) -> LineItem:
        return LineItem(
            product_id=self.product_id,
            pickup_hotel_id=self.pickup_hotel_id,
            drop_hotel_id=self.drop_hotel_id,
            window=TimeWindow.of(self.pickup_date, self.drop_date),
            quantity=self.quantity,
        )


class ShoppingBasket(BaseModel):
    """Basket Aggregate Root Entity"""
    basket_id: str = Field(default_factory=_new_id)
    status: BasketStatus = BasketStatus.ACTIVE
    user_email: Optional[str] = None
    session_id: Optional[str] = None
    items: List[BasketItem] = []
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True

    def ensure_active(self) -> None:
        if self.status != BasketStatus.ACTIVE:
            raise IllegalTransitionError(
                f"Basket {self.basket_id} is {self.status.value}, not ACTIVE",
                details={"status": self.status.value},
            )

    def add_item(self, item: BasketItem) -> BasketItem:
        self.ensure_active()
        self.items.append(item)
        self.modified_at = _utcnow()
        return item

    def find_item(self, item_id: str) -> Optional[BasketItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def remove_item(self, item_id: str) -> bool:
        self.ensure_active()
        before = len(self.items)
        self.items = [i for i in self.items if i.item_id != item_id]
        self.modified_at = _utcnow()
        return len(self.items) < before

    def line_items(self) -> List[LineItem]:
        return [item.to_line_item() for item in self.items]

    def totals(self) -> Dict[str, int]:
        return {
            "price_cents": sum(i.price_cents * i.quantity for i in self.items),
            "deposit_cents": sum(i.deposit_cents * i.quantity for i in self.items),
        }

    def mark_converted(self) -> None:
        self.ensure_active()
        self.status = BasketStatus.CONVERTED
        self.modified_at = _utcnow()


class BasketReservation(BaseModel):
    """Checkout-time snapshot of a basket awaiting payment"""
    basket_reservation_id: str = Field(default_factory=_new_id)
    basket_id: str
    reservation_code: str
    user_email: str
    user_phone: Optional[str] = None
    city_id: Optional[str] = None
    total_price_cents: int = Field(ge=0)
    total_deposit_cents: int = Field(ge=0)
    payment_intent_id: Optional[str] = None
    status: BasketReservationStatus = BasketReservationStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        from_attributes = True


# ==================== AUDIT ====================

class PaymentAudit(BaseModel):
    """Append-only lifecycle / payment event"""
    audit_id: str = Field(default_factory=_new_id)
    reservation_id: str
    event: str
    data: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        frozen = True
