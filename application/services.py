"""Application Services - Business use cases"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from domain.entities import (
    City, DiscountCode, Hotel, InventoryItem, PaymentAudit, Product, Reservation,
    RevenueAgreement, generate_reservation_code,
)
from domain.enums import (
    ACTIVE_HOLD_STATUSES, AuditEvent, BasketReservationStatus, ConflictReason, IncidentType,
    ReservationStatus, ResourceKind, ShareType,
)
from domain.exceptions import (
    CapacityConflictError, CodeGenerationError, IllegalTransitionError, NotFoundError,
    PaymentProviderError, ValidationError,
)
from domain.ports import INTENT_SUCCEEDED, CacheInvalidator, Clock, PaymentGateway
from domain.pricing import allocate, quote_rental
from domain.repositories import UnitOfWork
from domain.value_objects import (
    Allocation, AlternativeSlot, AvailabilityResult, CapacitySnapshot, Conflict,
    ExpirySweepResult, HotelAvailability, LineItem, ProductAvailabilitySummary, RevenueSplit,
    SettlementReport, TimeWindow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Day offsets tried when a window is unavailable, in order
ALTERNATIVE_SHIFTS_DAYS = (1, -1)

MAX_CODE_ATTEMPTS = 20


async def call_payment_provider(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a payment call, bounded by timeout; failures become PaymentProviderError"""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except PaymentProviderError:
        logger.error("Payment provider rejected the request", exc_info=True)
        raise
    except asyncio.TimeoutError as e:
        logger.error("Payment provider timed out after %ss", timeout)
        raise PaymentProviderError(f"Payment provider timed out after {timeout}s") from e
    except Exception as e:
        logger.error("Payment provider call failed: %s", e)
        raise PaymentProviderError(f"Payment provider failure: {e}") from e


def require_line_item(item: LineItem) -> None:
    """Reject lines that cannot be checked against the ledger"""
    for field_name in ("product_id", "pickup_hotel_id", "drop_hotel_id"):
        if not getattr(item, field_name):
            raise ValidationError(f"{field_name} is required")
    if item.quantity < 1:
        raise ValidationError("Quantity must be at least 1")


class InventoryLedger:
    """Remaining units per (hotel, product, window).

    Only PENDING and CONFIRMED reservations consume capacity, so units come
    back as soon as a reservation leaves those statuses.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    async def capacity_snapshot(self, hotel_id: str, product_id: str, window: TimeWindow) -> CapacitySnapshot:
        item = await self.uow.inventory.find(hotel_id, product_id)
        total = item.capacity if item else 0
        consumed = await self.uow.reservations.sum_overlapping_quantity(
            hotel_id, product_id, window, ACTIVE_HOLD_STATUSES
        )
        return CapacitySnapshot(total=total, consumed=consumed, remaining=max(0, total - consumed))

    async def available_capacity(self, hotel_id: str, product_id: str, window: TimeWindow) -> int:
        snapshot = await self.capacity_snapshot(hotel_id, product_id, window)
        return snapshot.remaining

    async def is_stocked(self, hotel_id: str, product_id: str) -> bool:
        """Hotel carries an active stock row for the product"""
        item = await self.uow.inventory.find(hotel_id, product_id)
        return item is not None and item.active


class AvailabilityService:
    """Availability questions at hotel, city and product level"""

    def __init__(self, uow: UnitOfWork, ledger: Optional[InventoryLedger] = None):
        self.uow = uow
        self.ledger = ledger or InventoryLedger(uow)

    async def check_single(
        self,
        product_id: str,
        hotel_id: str,
        window: TimeWindow,
        quantity: int = 1,
        with_alternatives: bool = True
    ) -> AvailabilityResult:
        """Can `quantity` units be picked up at hotel_id during window"""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        snapshot = await self.ledger.capacity_snapshot(hotel_id, product_id, window)
        available = snapshot.remaining >= quantity

        alternatives: List[AlternativeSlot] = []
        if not available and with_alternatives:
            alternatives = await self.suggest_alternatives(hotel_id, product_id, window, quantity)

        return AvailabilityResult(
            product_id=product_id,
            hotel_id=hotel_id,
            window=window,
            requested=quantity,
            available=available,
            total_capacity=snapshot.total,
            consumed=snapshot.consumed,
            remaining=snapshot.remaining,
            alternatives=alternatives,
        )

    async def check_across_city(self, city_slug: str, product_id: str, window: TimeWindow) -> List[HotelAvailability]:
        """Every stocking hotel in the city, most remaining units first.

        Hotels with nothing left stay in the list (ranked last) so callers
        can show them.
        """
        city = await self.uow.catalog.find_city_by_slug(city_slug)
        if city is None:
            raise NotFoundError("City", city_slug)

        hotels = await self.uow.catalog.find_hotels_by_city(city.city_id)
        rows = await self.uow.inventory.find_by_hotels([h.hotel_id for h in hotels], product_id)
        stocked = {row.hotel_id for row in rows}

        results = []
        for hotel in hotels:
            if hotel.hotel_id not in stocked:
                continue
            snapshot = await self.ledger.capacity_snapshot(hotel.hotel_id, product_id, window)
            results.append(HotelAvailability(
                hotel_id=hotel.hotel_id,
                hotel_name=hotel.name,
                total_capacity=snapshot.total,
                consumed=snapshot.consumed,
                remaining=snapshot.remaining,
            ))

        return sorted(results, key=lambda r: (-r.remaining, r.hotel_name, r.hotel_id))

    async def city_product_summary(self, city_slug: str, window: TimeWindow) -> List[ProductAvailabilitySummary]:
        """Products stocked anywhere in the city with their free units for window"""
        city = await self.uow.catalog.find_city_by_slug(city_slug)
        if city is None:
            raise NotFoundError("City", city_slug)

        hotels = await self.uow.catalog.find_hotels_by_city(city.city_id)
        rows = [
            row for row in await self.uow.inventory.find_by_hotels([h.hotel_id for h in hotels])
            if row.active and row.quantity > 0
        ]

        summaries = []
        for product in await self.uow.catalog.find_all_products():
            product_rows = [row for row in rows if row.product_id == product.product_id]
            if not product_rows:
                continue

            available = 0
            for row in product_rows:
                available += await self.ledger.available_capacity(row.hotel_id, product.product_id, window)

            summaries.append(ProductAvailabilitySummary(
                product_id=product.product_id,
                name=product.name,
                price_per_hour=product.price_per_hour,
                price_per_day=product.price_per_day,
                deposit=product.deposit,
                total=sum(row.capacity for row in product_rows),
                available=available,
                hotels_count=len({row.hotel_id for row in product_rows}),
            ))
        return summaries

    async def suggest_alternatives(
        self,
        hotel_id: str,
        product_id: str,
        window: TimeWindow,
        capacity_needed: int
    ) -> List[AlternativeSlot]:
        """Same-length windows one day later, then one day earlier, that fit.

        A heuristic: it does not search for the nearest free slot.
        """
        alternatives = []
        for shift in ALTERNATIVE_SHIFTS_DAYS:
            candidate = window.shifted(shift)
            remaining = await self.ledger.available_capacity(hotel_id, product_id, candidate)
            if remaining >= capacity_needed:
                alternatives.append(AlternativeSlot(window=candidate, remaining=remaining, shift_days=shift))
        return alternatives


@dataclass
class BookingRequest:
    product_id: str
    pickup_hotel_id: str
    drop_hotel_id: str
    window: TimeWindow
    user_email: str
    quantity: int = 1
    user_phone: Optional[str] = None
    discount_code: Optional[str] = None


class ReservationService:
    """Service for Reservation lifecycle use cases"""

    def __init__(
        self,
        uow: UnitOfWork,
        payments: PaymentGateway,
        cache: CacheInvalidator,
        clock: Clock,
        pending_ttl_minutes: int = 10,
        deposit_auth_days: int = 7,
        payment_timeout: float = 10.0,
        default_share: ShareType = ShareType.PLATFORM_70
    ):
        if pending_ttl_minutes < 0 or deposit_auth_days < 0:
            raise ValueError("TTL and deposit authorization days must be >= 0")
        self.uow = uow
        self.payments = payments
        self.cache = cache
        self.clock = clock
        self.pending_ttl_minutes = pending_ttl_minutes
        self.deposit_auth_days = deposit_auth_days
        self.payment_timeout = payment_timeout
        self.default_share = default_share
        self.availability = AvailabilityService(uow)

    # ==================== QUERIES ====================
    async def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = await self.uow.reservations.find_by_id(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    async def get_reservation_by_code(self, code: str) -> Reservation:
        reservation = await self.uow.reservations.find_by_code(code)
        if reservation is None:
            raise NotFoundError("Reservation", code)
        return reservation

    async def audit_trail(self, reservation_id: str) -> List[PaymentAudit]:
        await self.get_reservation(reservation_id)
        return await self.uow.audits.find_by_reservation(reservation_id)

    # ==================== BOOKING ====================
    async def book(self, request: BookingRequest) -> Reservation:
        """Single-item checkout: check capacity, hold the deposit, persist the reservation.

        Everything happens in one transaction; a failed payment call leaves
        no trace, and a failure after the authorization releases the hold.
        """
        item = LineItem(
            product_id=request.product_id,
            pickup_hotel_id=request.pickup_hotel_id,
            drop_hotel_id=request.drop_hotel_id,
            window=request.window,
            quantity=request.quantity,
        )
        require_line_item(item)
        if not request.user_email:
            raise ValidationError("user_email is required")

        async with self.uow.transaction():
            product = await self.uow.catalog.find_product(item.product_id)
            if product is None:
                raise NotFoundError("Product", item.product_id)
            for hotel_id in {item.pickup_hotel_id, item.drop_hotel_id}:
                if await self.uow.catalog.find_hotel(hotel_id) is None:
                    raise NotFoundError("Hotel", hotel_id)

            await self._ensure_bookable(item)

            discount = None
            if request.discount_code:
                discount = await self.uow.agreements.find_discount_code(request.discount_code)
                if discount is None or not discount.active:
                    logger.info("Ignoring unknown or inactive discount code %s", request.discount_code)
                    discount = None

            now = self.clock.now()
            share = await self.applicable_share(item.pickup_hotel_id, now)
            quote = quote_rental(product, item.window, discount, share)
            price_cents = quote.price_cents * item.quantity
            deposit_cents = quote.deposit_cents * item.quantity

            code = await self.issue_code()
            intent_id = await call_payment_provider(
                self.payments.authorize(deposit_cents, {
                    "reservation_code": code,
                    "user_email": request.user_email,
                    "deposit_auth_days": self.deposit_auth_days,
                    "hold_expires_at": (now + timedelta(days=self.deposit_auth_days)).isoformat(),
                }),
                self.payment_timeout,
            )
            try:
                intent_status = await call_payment_provider(
                    self.payments.retrieve_status(intent_id), self.payment_timeout
                )
                status = ReservationStatus.CONFIRMED if intent_status == INTENT_SUCCEEDED else ReservationStatus.PENDING

                reservation = Reservation.create(
                    code=code,
                    item=item,
                    price_cents=price_cents,
                    deposit_cents=deposit_cents,
                    user_email=request.user_email,
                    user_phone=request.user_phone,
                    created_at=now,
                    status=status,
                    pricing_type=quote.pricing_type,
                    discount_code_id=quote.discount_code_id,
                    payment_intent_id=intent_id,
                    revenue_share_applied=quote.share,
                )
                await self.uow.reservations.save(reservation)
                await self.uow.audits.append(reservation.reservation_id, AuditEvent.RESERVATION_CREATED.value, {
                    "new_status": status.value,
                    "actor": f"customer:{request.user_email}",
                    "payment_intent_id": intent_id,
                    "amount_authorized": deposit_cents,
                })
            except Exception:
                await self.release_hold(intent_id)
                raise

        self._invalidate(reservation)
        logger.info("Reservation %s created as %s", reservation.code, reservation.status.value)
        return reservation

    async def _ensure_bookable(self, item: LineItem) -> None:
        result = await self.availability.check_single(
            item.product_id, item.pickup_hotel_id, item.window, item.quantity
        )
        if not result.available:
            conflict = Conflict(
                index=0,
                product_id=item.product_id,
                hotel_id=item.pickup_hotel_id,
                window=item.window,
                requested=item.quantity,
                remaining=result.remaining,
                shortfall=item.quantity - result.remaining,
                alternatives=result.alternatives,
            )
            raise CapacityConflictError("Product not available for the selected window", [conflict])

        if not await self.availability.ledger.is_stocked(item.drop_hotel_id, item.product_id):
            conflict = Conflict(
                index=0,
                product_id=item.product_id,
                hotel_id=item.drop_hotel_id,
                window=item.window,
                requested=item.quantity,
                remaining=0,
                shortfall=item.quantity,
                reason=ConflictReason.DROP_HOTEL_NOT_STOCKED,
            )
            raise CapacityConflictError("Drop hotel does not carry this product", [conflict])

    async def applicable_share(self, hotel_id: str, at: datetime) -> ShareType:
        """Revenue share from the hotel's agreement in effect, else the platform default"""
        agreement = await self.uow.agreements.find_agreement(hotel_id, at)
        return agreement.default_share if agreement else self.default_share

    async def issue_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_reservation_code()
            if not await self.uow.reservations.code_exists(code) and \
                    not await self.uow.baskets.reservation_code_exists(code):
                return code
        logger.error("No unused reservation code after %d attempts", MAX_CODE_ATTEMPTS)
        raise CodeGenerationError(
            "Could not issue a unique reservation code", details={"attempts": MAX_CODE_ATTEMPTS}
        )

    async def release_hold(self, intent_id: str) -> None:
        """Cancel a payment authorization whose booking is being rolled back.

        The original failure is what the caller reports, so a failed release
        is logged rather than raised.
        """
        try:
            await call_payment_provider(self.payments.cancel(intent_id), self.payment_timeout)
        except PaymentProviderError:
            logger.error("Payment hold %s could not be released", intent_id)
        else:
            logger.warning("Released payment hold %s after a failed checkout", intent_id)

    # ==================== TRANSITIONS ====================
    async def transition(
        self,
        reservation: Reservation,
        new_status: ReservationStatus,
        actor: str,
        event: AuditEvent = AuditEvent.STATUS_CHANGED,
        **metadata: Any
    ) -> Reservation:
        """Apply one lifecycle move and record it; must run inside a transaction"""
        try:
            previous = reservation.transition_to(new_status, at=self.clock.now())
        except IllegalTransitionError:
            logger.warning(
                "Rejected transition of %s from %s to %s by %s",
                reservation.code, reservation.status.value, new_status.value, actor
            )
            raise

        await self.uow.reservations.update(reservation)
        payload = {"old_status": previous.value, "new_status": new_status.value, "actor": actor}
        payload.update({k: v for k, v in metadata.items() if v is not None})
        await self.uow.audits.append(reservation.reservation_id, event.value, payload)
        self._invalidate(reservation)
        logger.info("Reservation %s: %s -> %s (%s)", reservation.code, previous.value, new_status.value, actor)
        return reservation

    async def change_status(
        self,
        reservation_id: str,
        new_status: ReservationStatus,
        actor: str,
        note: Optional[str] = None
    ) -> Reservation:
        """Admin status change routed to the matching lifecycle operation"""
        if new_status == ReservationStatus.COMPLETED:
            return await self.complete(reservation_id, actor, note)
        if new_status == ReservationStatus.CANCELLED:
            return await self.cancel(reservation_id, actor, note)
        if new_status in (ReservationStatus.DAMAGED, ReservationStatus.STOLEN):
            return await self.report_incident(reservation_id, IncidentType(new_status.value), actor, note)

        async with self.uow.transaction():
            reservation = await self.get_reservation(reservation_id)
            return await self.transition(reservation, new_status, actor, note=note)

    async def cancel(self, reservation_id: str, actor: str, reason: Optional[str] = None) -> Reservation:
        """Cancel; cancelling an already cancelled reservation changes nothing"""
        async with self.uow.transaction():
            reservation = await self.get_reservation(reservation_id)
            if reservation.status == ReservationStatus.CANCELLED:
                return reservation
            return await self.transition(reservation, ReservationStatus.CANCELLED, actor, reason=reason)

    async def complete(self, reservation_id: str, actor: str, note: Optional[str] = None) -> Reservation:
        """Mark the rental returned.

        Capacity frees itself through the status change. When the unit was
        dropped at another hotel the stock rows follow it on a best-effort
        basis; a failure there is audited and does not block completion.
        """
        async with self.uow.transaction():
            reservation = await self.get_reservation(reservation_id)
            await self.transition(reservation, ReservationStatus.COMPLETED, actor, note=note)
            if reservation.drop_hotel_id != reservation.pickup_hotel_id:
                await self._relocate_units(reservation)
            return reservation

    async def _relocate_units(self, reservation: Reservation) -> None:
        source = await self.uow.inventory.find(reservation.pickup_hotel_id, reservation.product_id)
        if source is None or source.quantity < reservation.quantity:
            logger.error("Cannot move %d unit(s) out of hotel %s for %s",
                         reservation.quantity, reservation.pickup_hotel_id, reservation.code)
            await self.uow.audits.append(reservation.reservation_id, AuditEvent.INVENTORY_UPDATE_ERROR.value, {
                "error": "pickup hotel stock lower than returned quantity",
                "hotel_id": reservation.pickup_hotel_id,
            })
            return

        target = await self.uow.inventory.find(reservation.drop_hotel_id, reservation.product_id)
        if target is None:
            target = InventoryItem(hotel_id=reservation.drop_hotel_id, product_id=reservation.product_id, quantity=0)

        source.quantity -= reservation.quantity
        target.quantity += reservation.quantity
        target.active = True
        await self.uow.inventory.save(source)
        await self.uow.inventory.save(target)
        self.cache.invalidate(ResourceKind.INVENTORY, reservation.pickup_hotel_id)
        self.cache.invalidate(ResourceKind.INVENTORY, reservation.drop_hotel_id)

    async def report_incident(
        self,
        reservation_id: str,
        kind: IncidentType,
        actor: str,
        admin_notes: Optional[str] = None
    ) -> Reservation:
        """Mark a rented item damaged or stolen and charge the full deposit.

        The reservation only changes state once the charge has gone through.
        """
        new_status = ReservationStatus(kind.value)
        async with self.uow.transaction():
            reservation = await self.get_reservation(reservation_id)
            if not reservation.can_transition_to(new_status):
                logger.warning("Rejected %s report on %s in %s",
                               kind.value, reservation.code, reservation.status.value)
                raise IllegalTransitionError(
                    f"Cannot report {kind.value} on reservation in {reservation.status.value}",
                    details={"from": reservation.status.value, "to": new_status.value},
                )

            charged = 0
            if reservation.payment_intent_id and reservation.deposit_cents > 0:
                await call_payment_provider(
                    self.payments.capture(reservation.payment_intent_id, reservation.deposit_cents),
                    self.payment_timeout,
                )
                charged = reservation.deposit_cents

            await self.transition(reservation, new_status, actor, admin_notes=admin_notes)
            await self.uow.audits.append(reservation.reservation_id, AuditEvent.DEPOSIT_CHARGED.value, {
                "amount": charged,
                "incident": kind.value,
                "payment_intent_id": reservation.payment_intent_id,
                "actor": actor,
            })
            return reservation

    # ==================== PAYMENT EVENTS ====================
    async def handle_payment_event(
        self,
        intent_id: str,
        succeeded: bool,
        details: Optional[Dict[str, Any]] = None
    ) -> List[Reservation]:
        """Apply a payment success/failure to the PENDING reservations holding intent_id.

        Replayed events are no-ops.
        """
        async with self.uow.transaction():
            reservations = await self.uow.reservations.find_by_payment_intent(intent_id)
            if not reservations:
                raise NotFoundError("Payment intent", intent_id)

            updated = []
            for reservation in reservations:
                if reservation.status != ReservationStatus.PENDING:
                    if succeeded and reservation.status == ReservationStatus.CANCELLED:
                        logger.warning("Payment succeeded for already cancelled reservation %s",
                                       reservation.code)
                        raise IllegalTransitionError(
                            f"Reservation {reservation.code} was cancelled before payment succeeded",
                            details={"from": reservation.status.value, "to": ReservationStatus.CONFIRMED.value},
                        )
                    continue

                if succeeded:
                    await self.transition(reservation, ReservationStatus.CONFIRMED, "payment-webhook",
                                          AuditEvent.PAYMENT_SUCCEEDED, payment_intent_id=intent_id)
                else:
                    await self.transition(reservation, ReservationStatus.CANCELLED, "payment-webhook",
                                          AuditEvent.PAYMENT_FAILED, payment_intent_id=intent_id,
                                          error=(details or {}).get("error"))
                updated.append(reservation)
            return updated

    # ==================== TTL SWEEP ====================
    async def expire_pending(self, ttl_minutes: Optional[int] = None) -> ExpirySweepResult:
        """Cancel every PENDING reservation created before now - ttl"""
        ttl = self.pending_ttl_minutes if ttl_minutes is None else ttl_minutes
        if ttl < 0:
            raise ValidationError("TTL must be >= 0")

        cutoff = self.clock.now() - timedelta(minutes=ttl)
        expired_ids = []
        basket_reservation_ids = set()
        async with self.uow.transaction():
            for reservation in await self.uow.reservations.find_pending_created_before(cutoff):
                await self.transition(
                    reservation, ReservationStatus.CANCELLED, "ttl-sweep",
                    AuditEvent.RESERVATION_EXPIRED,
                    ttl_minutes=ttl, cutoff=cutoff.isoformat(),
                )
                expired_ids.append(reservation.reservation_id)
                if reservation.basket_reservation_id:
                    basket_reservation_ids.add(reservation.basket_reservation_id)

            for basket_reservation_id in sorted(basket_reservation_ids):
                await self._fail_abandoned_basket_reservation(basket_reservation_id)

        if expired_ids:
            logger.info("Expired %d pending reservation(s) older than %d min", len(expired_ids), ttl)
        return ExpirySweepResult(ttl_minutes=ttl, cutoff=cutoff, expired_reservation_ids=expired_ids)

    async def _fail_abandoned_basket_reservation(self, basket_reservation_id: str) -> None:
        """A basket checkout with no PENDING reservation left can no longer be paid"""
        basket_reservation = await self.uow.baskets.find_reservation(basket_reservation_id)
        if basket_reservation is None or basket_reservation.status != BasketReservationStatus.PENDING:
            return
        children = await self.uow.reservations.find_by_basket_reservation(basket_reservation_id)
        if any(r.status == ReservationStatus.PENDING for r in children):
            return
        basket_reservation.status = BasketReservationStatus.FAILED
        await self.uow.baskets.save_reservation(basket_reservation)
        logger.info("Basket reservation %s failed after its reservations expired",
                    basket_reservation.reservation_code)

    def _invalidate(self, reservation: Reservation) -> None:
        self.cache.invalidate(ResourceKind.RESERVATIONS, reservation.reservation_id)
        self.cache.invalidate(ResourceKind.AVAILABILITY, reservation.pickup_hotel_id)
        self.cache.invalidate(ResourceKind.AVAILABILITY, reservation.product_id)


class SettlementService:
    """Revenue split of completed reservations"""

    def __init__(self, uow: UnitOfWork, clock: Clock, cache: Optional[CacheInvalidator] = None):
        self.uow = uow
        self.clock = clock
        self.cache = cache

    @staticmethod
    def allocate(reservation: Reservation) -> RevenueSplit:
        return allocate(reservation.price_cents, reservation.revenue_share_applied)

    def default_period(self):
        """Yesterday 00:00 to today 00:00 in the clock's timezone"""
        now = self.clock.now()
        end = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        return end - timedelta(days=1), end

    async def settle(
        self,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None
    ) -> SettlementReport:
        """Compute and store shares for reservations completed in [start, end).

        Stored figures are overwritten, so re-running a period is safe.
        """
        default_start, default_end = self.default_period()
        start = period_start or default_start
        end = period_end or default_end
        if start >= end:
            raise ValidationError("Settlement period start must be before its end")

        allocations = []
        async with self.uow.transaction():
            for reservation in await self.uow.reservations.find_completed_between(start, end):
                split = self.allocate(reservation)
                reservation.revenue_computed_cents = reservation.price_cents
                reservation.platform_share_cents = split.platform_share
                reservation.hotel_share_cents = split.hotel_share
                await self.uow.reservations.update(reservation)
                if self.cache:
                    self.cache.invalidate(ResourceKind.RESERVATIONS, reservation.reservation_id)
                allocations.append(Allocation(
                    reservation_id=reservation.reservation_id,
                    code=reservation.code,
                    share=reservation.revenue_share_applied,
                    price_cents=reservation.price_cents,
                    platform_share=split.platform_share,
                    hotel_share=split.hotel_share,
                ))

        logger.info("Settled %d reservation(s) for %s - %s", len(allocations), start.isoformat(), end.isoformat())
        return SettlementReport(period_start=start, period_end=end, allocations=allocations)


class CatalogService:
    """Back-office upkeep of cities, hotels, products, stock and discount codes"""

    def __init__(self, uow: UnitOfWork, cache: CacheInvalidator):
        self.uow = uow
        self.cache = cache

    async def create_city(self, name: str, slug: str) -> City:
        async with self.uow.transaction():
            city = City(name=name, slug=slug)
            return await self.uow.catalog.save_city(city)

    async def create_hotel(self, name: str, city_id: str, **contact: Any) -> Hotel:
        async with self.uow.transaction():
            hotel = Hotel(name=name, city_id=city_id, **contact)
            return await self.uow.catalog.save_hotel(hotel)

    async def create_product(self, name: str, price_per_hour: int, price_per_day: int,
                             deposit: int, description: str = "") -> Product:
        async with self.uow.transaction():
            product = Product(name=name, description=description, price_per_hour=price_per_hour,
                              price_per_day=price_per_day, deposit=deposit)
            return await self.uow.catalog.save_product(product)

    async def upsert_inventory(self, hotel_id: str, product_id: str, quantity: int, active: bool = True) -> InventoryItem:
        """Set the stock of a product at a hotel.

        Lowering stock below what live reservations hold is allowed; the
        ledger then reports zero remaining until they finish.
        """
        async with self.uow.transaction():
            if await self.uow.catalog.find_hotel(hotel_id) is None:
                raise NotFoundError("Hotel", hotel_id)
            if await self.uow.catalog.find_product(product_id) is None:
                raise NotFoundError("Product", product_id)
            item = await self.uow.inventory.save(
                InventoryItem(hotel_id=hotel_id, product_id=product_id, quantity=quantity, active=active)
            )

        self.cache.invalidate(ResourceKind.INVENTORY, hotel_id)
        self.cache.invalidate(ResourceKind.AVAILABILITY, product_id)
        logger.info("Inventory of %s at %s set to %d (active=%s)", product_id, hotel_id, quantity, active)
        return item

    async def create_discount_code(self, code: str, kind: ShareType, hotel_id: str, active: bool = True) -> DiscountCode:
        async with self.uow.transaction():
            if await self.uow.catalog.find_hotel(hotel_id) is None:
                raise NotFoundError("Hotel", hotel_id)
            discount = DiscountCode(code=code, kind=kind, hotel_id=hotel_id, active=active)
            return await self.uow.agreements.save_discount_code(discount)

    async def set_agreement(self, hotel_id: str, default_share: ShareType, effective_from: datetime) -> RevenueAgreement:
        async with self.uow.transaction():
            if await self.uow.catalog.find_hotel(hotel_id) is None:
                raise NotFoundError("Hotel", hotel_id)
            agreement = RevenueAgreement(hotel_id=hotel_id, default_share=default_share, effective_from=effective_from)
            return await self.uow.agreements.save_agreement(agreement)
