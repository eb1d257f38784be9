"""Pricing and revenue-share rules"""
from typing import Optional

from domain.enums import PricingType, ShareType
from domain.value_objects import Quote, RevenueSplit, TimeWindow

# Rentals up to this many hours are billed by the hour
HOURLY_PRICING_MAX_HOURS = 24

# Percent taken off the list price by an active discount code
DISCOUNT_PERCENT = 10

# Percent of revenue going to the party named by the share type
MAJORITY_SHARE_PERCENT = 70


def _percent_half_up(amount: int, percent: int) -> int:
    """Integer percentage of amount, rounded half up"""
    return (amount * percent + 50) // 100


def quote_rental(product, window: TimeWindow, discount=None,
                 default_share: ShareType = ShareType.PLATFORM_70) -> Quote:
    """Price one unit of product over window.

    An active discount code takes DISCOUNT_PERCENT off and decides the
    revenue share; otherwise default_share applies.
    """
    hours = window.hours()
    days = window.days()

    if hours <= HOURLY_PRICING_MAX_HOURS:
        pricing_type = PricingType.HOURLY
        price = product.price_per_hour * hours
    else:
        pricing_type = PricingType.DAILY
        price = product.price_per_day * days

    share = default_share
    discount_code_id: Optional[str] = None
    if discount is not None and discount.active:
        discount_code_id = discount.discount_code_id
        share = discount.kind
        price = _percent_half_up(price, 100 - DISCOUNT_PERCENT)

    return Quote(
        pricing_type=pricing_type.value,
        duration_hours=hours,
        duration_days=days,
        price_cents=price,
        deposit_cents=product.deposit,
        share=share,
        discount_code_id=discount_code_id,
    )


def allocate(price_cents: int, share: ShareType) -> RevenueSplit:
    """Split revenue between platform and hotel.

    The majority side gets round(price * 0.7); the other side gets the
    remainder so both always sum to price_cents.
    """
    if price_cents < 0:
        raise ValueError("Price must not be negative")

    majority = _percent_half_up(price_cents, MAJORITY_SHARE_PERCENT)
    minority = price_cents - majority

    if share == ShareType.PLATFORM_70:
        return RevenueSplit(platform_share=majority, hotel_share=minority)
    return RevenueSplit(platform_share=minority, hotel_share=majority)
