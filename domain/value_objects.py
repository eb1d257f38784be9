"""Domain Value Objects"""
import math
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from domain.enums import ConflictReason, ShareType
from domain.exceptions import InvalidWindowError


def overlaps(a, b) -> bool:
    """Half-open interval overlap: [a.start_at, a.end_at) vs [b.start_at, b.end_at).

    Back-to-back windows (a.end_at == b.start_at) do not overlap.
    """
    return a.start_at < b.end_at and a.end_at > b.start_at


class TimeWindow(BaseModel):
    """Value Object for a rental window [start_at, end_at)"""
    start_at: datetime
    end_at: datetime

    @validator('end_at')
    def end_after_start(cls, v, values):
        if 'start_at' in values and v <= values['start_at']:
            raise InvalidWindowError('Window start must be before window end')
        return v

    @classmethod
    def of(cls, start_at: datetime, end_at: datetime) -> "TimeWindow":
        """Build a window, surfacing a bad range as InvalidWindowError"""
        if end_at <= start_at:
            raise InvalidWindowError('Window start must be before window end')
        return cls(start_at=start_at, end_at=end_at)

    def overlaps(self, other) -> bool:
        return overlaps(self, other)

    @property
    def duration(self) -> timedelta:
        return self.end_at - self.start_at

    def shifted(self, days: int) -> "TimeWindow":
        """Same-length window moved by whole days"""
        delta = timedelta(days=days)
        return TimeWindow(start_at=self.start_at + delta, end_at=self.end_at + delta)

    def hours(self) -> int:
        """Billable hours, any started hour counts"""
        return math.ceil(self.duration.total_seconds() / 3600)

    def days(self) -> int:
        """Billable days, any started day counts"""
        return math.ceil(self.hours() / 24)

    class Config:
        frozen = True


class LineItem(BaseModel):
    """One requested (product, hotels, window, quantity) line"""
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    window: TimeWindow
    quantity: int = 1

    class Config:
        frozen = True


class CapacitySnapshot(BaseModel):
    total: int = Field(ge=0)
    consumed: int = Field(ge=0)
    remaining: int = Field(ge=0)

    class Config:
        frozen = True


class AlternativeSlot(BaseModel):
    window: TimeWindow
    remaining: int
    shift_days: int

    class Config:
        frozen = True


class AvailabilityResult(BaseModel):
    product_id: str
    hotel_id: str
    window: TimeWindow
    requested: int
    available: bool
    total_capacity: int
    consumed: int
    remaining: int
    alternatives: List[AlternativeSlot] = []


class HotelAvailability(BaseModel):
    hotel_id: str
    hotel_name: str
    total_capacity: int
    consumed: int
    remaining: int


class ProductAvailabilitySummary(BaseModel):
    """City-wide availability of one product"""
    product_id: str
    name: str
    price_per_hour: int
    price_per_day: int
    deposit: int
    total: int
    available: int
    hotels_count: int


class Conflict(BaseModel):
    """A basket line that cannot be satisfied"""
    index: int
    product_id: str
    hotel_id: str
    window: TimeWindow
    requested: int
    remaining: int
    shortfall: int
    reason: ConflictReason = ConflictReason.INSUFFICIENT_CAPACITY
    alternatives: List[AlternativeSlot] = []


class BasketValidation(BaseModel):
    valid: bool
    conflicts: List[Conflict] = []
    results: List[AvailabilityResult] = []


class Quote(BaseModel):
    """Priced rental for one unit of a product"""
    pricing_type: str
    duration_hours: int
    duration_days: int
    price_cents: int
    deposit_cents: int
    share: ShareType
    discount_code_id: Optional[str] = None

    class Config:
        frozen = True


class RevenueSplit(BaseModel):
    platform_share: int
    hotel_share: int

    class Config:
        frozen = True


class ExpirySweepResult(BaseModel):
    ttl_minutes: int
    cutoff: datetime
    expired_reservation_ids: List[str] = []

    @property
    def expired_count(self) -> int:
        return len(self.expired_reservation_ids)


class Allocation(BaseModel):
    reservation_id: str
    code: str
    share: ShareType
    price_cents: int
    platform_share: int
    hotel_share: int


class SettlementReport(BaseModel):
    period_start: datetime
    period_end: datetime
    allocations: List[Allocation] = []

    @property
    def processed_count(self) -> int:
        return len(self.allocations)

    @property
    def total_revenue_cents(self) -> int:
        return sum(a.price_cents for a in self.allocations)

    @property
    def platform_total_cents(self) -> int:
        return sum(a.platform_share for a in self.allocations)

    @property
    def hotel_total_cents(self) -> int:
        return sum(a.hotel_share for a in self.allocations)
