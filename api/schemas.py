"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from domain.enums import IncidentType, ReservationStatus, ShareType
from domain.value_objects import LineItem, TimeWindow


# ============================================================================
# AVAILABILITY SCHEMAS
# ============================================================================

class WindowRequest(BaseModel):
    """Rental window as sent by clients"""
    start_at: datetime
    end_at: datetime

    def to_window(self) -> TimeWindow:
        return TimeWindow.of(self.start_at, self.end_at)


class CheckAvailabilityRequest(WindowRequest):
    """Check availability request DTO"""
    product_id: str
    hotel_id: str
    quantity: int = Field(ge=1, default=1)


class AlternativeResponse(BaseModel):
    start_at: datetime
    end_at: datetime
    remaining: int
    shift_days: int


class AvailabilityResponse(BaseModel):
    """Availability response DTO"""
    product_id: str
    hotel_id: str
    start_at: datetime
    end_at: datetime
    requested: int
    available: bool
    total_capacity: int
    consumed: int
    remaining: int
    alternatives: List[AlternativeResponse] = []


class HotelAvailabilityResponse(BaseModel):
    hotel_id: str
    hotel_name: str
    total_capacity: int
    consumed: int
    remaining: int


class ProductAvailabilityResponse(BaseModel):
    product_id: str
    name: str
    price_per_hour: int
    price_per_day: int
    deposit: int
    total: int
    available: int
    hotels_count: int


# ============================================================================
# BASKET SCHEMAS
# ============================================================================

class LineItemRequest(WindowRequest):
    """One basket line"""
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    quantity: int = Field(ge=1, default=1)

    def to_line_item(self) -> LineItem:
        return LineItem(
            product_id=self.product_id,
            pickup_hotel_id=self.pickup_hotel_id,
            drop_hotel_id=self.drop_hotel_id,
            window=self.to_window(),
            quantity=self.quantity,
        )


class ValidateItemsRequest(BaseModel):
    items: List[LineItemRequest] = []


class CreateBasketRequest(BaseModel):
    user_email: Optional[str] = None
    session_id: Optional[str] = None


class UpdateBasketItemRequest(BaseModel):
    """Fields left out keep their stored value"""
    pickup_hotel_id: Optional[str] = None
    drop_hotel_id: Optional[str] = None
    pickup_date: Optional[datetime] = None
    drop_date: Optional[datetime] = None
    quantity: Optional[int] = Field(None, ge=1)


class BasketCheckoutRequest(BaseModel):
    user_email: str
    user_phone: Optional[str] = None
    city_id: Optional[str] = None


class BasketItemResponse(BaseModel):
    item_id: str
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    pickup_date: datetime
    drop_date: datetime
    quantity: int
    price_cents: int
    deposit_cents: int


class BasketResponse(BaseModel):
    basket_id: str
    status: str
    user_email: Optional[str] = None
    session_id: Optional[str] = None
    items: List[BasketItemResponse]
    total_price_cents: int
    total_deposit_cents: int


class ConflictResponse(BaseModel):
    index: int
    product_id: str
    hotel_id: str
    start_at: datetime
    end_at: datetime
    requested: int
    remaining: int
    shortfall: int
    reason: str
    alternatives: List[AlternativeResponse] = []


class ValidationResponse(BaseModel):
    valid: bool
    conflicts: List[ConflictResponse] = []


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CheckoutRequest(LineItemRequest):
    """Single-item checkout request DTO"""
    user_email: str
    user_phone: Optional[str] = None
    discount_code: Optional[str] = None


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: str
    code: str
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    start_at: datetime
    end_at: datetime
    quantity: int
    price_cents: int
    deposit_cents: int
    pricing_type: Optional[str] = None
    status: str
    user_email: str
    payment_intent_id: Optional[str] = None
    basket_reservation_id: Optional[str] = None
    revenue_share_applied: str
    platform_share_cents: Optional[int] = None
    hotel_share_cents: Optional[int] = None
    created_at: datetime
    modified_at: datetime
    version: int


class BasketCheckoutResponse(BaseModel):
    basket_reservation_id: str
    reservation_code: str
    status: str
    payment_intent_id: Optional[str] = None
    total_price_cents: int
    total_deposit_cents: int
    reservations: List[ReservationResponse]


class ChangeStatusRequest(BaseModel):
    status: ReservationStatus
    note: Optional[str] = None


class CompleteRequest(BaseModel):
    note: Optional[str] = None


class IncidentRequest(BaseModel):
    kind: IncidentType
    admin_notes: Optional[str] = None


class AuditResponse(BaseModel):
    audit_id: str
    event: str
    data: Dict[str, Any]
    created_at: datetime


class PaymentEventRequest(BaseModel):
    """Normalised payment provider event"""
    type: str
    payment_intent_id: str
    error: Optional[str] = None


# ============================================================================
# ADMIN SCHEMAS
# ============================================================================

class CreateCityRequest(BaseModel):
    name: str
    slug: str


class CreateHotelRequest(BaseModel):
    name: str
    city_id: str
    address: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None


class CreateProductRequest(BaseModel):
    name: str
    description: str = ""
    price_per_hour: int = Field(ge=0)
    price_per_day: int = Field(ge=0)
    deposit: int = Field(ge=0)


class UpsertInventoryRequest(BaseModel):
    hotel_id: str
    product_id: str
    quantity: int = Field(ge=0)
    active: bool = True


class CreateDiscountCodeRequest(BaseModel):
    code: str
    kind: ShareType
    hotel_id: str
    active: bool = True


class CreateAgreementRequest(BaseModel):
    """Revenue share a hotel gets from effective_from onwards"""
    hotel_id: str
    default_share: ShareType
    effective_from: datetime


class ExpirySweepResponse(BaseModel):
    ttl_minutes: int
    cutoff: datetime
    expired_count: int
    expired_reservation_ids: List[str]


class SettlementResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    processed_count: int
    total_revenue_cents: int
    platform_total_cents: int
    hotel_total_cents: int


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    disabled: bool
