"""Application Services - Shopping basket use cases"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from application.services import (
    AvailabilityService, ReservationService, call_payment_provider, require_line_item,
)
from domain.entities import BasketItem, BasketReservation, Reservation, ShoppingBasket
from domain.enums import (
    AuditEvent, BasketReservationStatus, ConflictReason, ReservationStatus, ResourceKind,
)
from domain.exceptions import (
    CapacityConflictError, IllegalTransitionError, NotFoundError, ValidationError,
)
from domain.pricing import quote_rental
from domain.value_objects import BasketValidation, Conflict, LineItem, TimeWindow

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    basket_reservation: BasketReservation
    reservations: List[Reservation] = field(default_factory=list)


class BasketService:
    """Service for multi-item baskets and their conversion into reservations"""

    def __init__(
        self,
        reservation_service: ReservationService,
        availability: Optional[AvailabilityService] = None
    ):
        self.reservation_service = reservation_service
        self.uow = reservation_service.uow
        self.payments = reservation_service.payments
        self.cache = reservation_service.cache
        self.clock = reservation_service.clock
        self.availability = availability or reservation_service.availability

    # ==================== VALIDATION ====================
    async def validate_items(self, items: List[LineItem]) -> BasketValidation:
        """Check every line against the ledger and against the lines before it.

        Lines on the same (pickup hotel, product) only compete when their
        windows overlap. A line that conflicts does not consume capacity for
        the lines after it. Nothing is written.
        """
        for item in items:
            require_line_item(item)

        accepted: Dict[Tuple[str, str], List[LineItem]] = {}
        conflicts: List[Conflict] = []
        results = []

        for index, item in enumerate(items):
            key = (item.pickup_hotel_id, item.product_id)
            result = await self.availability.check_single(
                item.product_id, item.pickup_hotel_id, item.window, item.quantity,
                with_alternatives=False,
            )
            pending = sum(
                earlier.quantity for earlier in accepted.get(key, [])
                if earlier.window.overlaps(item.window)
            )
            remaining = max(0, result.remaining - pending)

            if item.quantity > remaining:
                alternatives = await self.availability.suggest_alternatives(
                    item.pickup_hotel_id, item.product_id, item.window, item.quantity
                )
                conflicts.append(Conflict(
                    index=index,
                    product_id=item.product_id,
                    hotel_id=item.pickup_hotel_id,
                    window=item.window,
                    requested=item.quantity,
                    remaining=remaining,
                    shortfall=item.quantity - remaining,
                    alternatives=alternatives,
                ))
            elif not await self.availability.ledger.is_stocked(item.drop_hotel_id, item.product_id):
                conflicts.append(Conflict(
                    index=index,
                    product_id=item.product_id,
                    hotel_id=item.drop_hotel_id,
                    window=item.window,
                    requested=item.quantity,
                    remaining=0,
                    shortfall=item.quantity,
                    reason=ConflictReason.DROP_HOTEL_NOT_STOCKED,
                ))
            else:
                accepted.setdefault(key, []).append(item)

            results.append(result.model_copy(update={
                "remaining": remaining,
                "available": item.quantity <= remaining,
            }))

        return BasketValidation(valid=not conflicts, conflicts=conflicts, results=results)

    async def validate_basket(self, basket_id: str) -> BasketValidation:
        basket = await self.get_basket(basket_id)
        return await self.validate_items(basket.line_items())

    # ==================== BASKET MANAGEMENT ====================
    async def create_basket(self, user_email: Optional[str] = None, session_id: Optional[str] = None) -> ShoppingBasket:
        if not user_email and not session_id:
            raise ValidationError("A basket needs a user email or a session id")

        now = self.clock.now()
        basket = ShoppingBasket(user_email=user_email, session_id=session_id, created_at=now, modified_at=now)
        async with self.uow.transaction():
            await self.uow.baskets.save(basket)
        logger.info("Basket %s created", basket.basket_id)
        return basket

    async def get_basket(self, basket_id: str) -> ShoppingBasket:
        basket = await self.uow.baskets.find_with_items(basket_id)
        if basket is None:
            raise NotFoundError("Basket", basket_id)
        return basket

    async def add_item(self, basket_id: str, item: LineItem) -> BasketItem:
        """Add a line once it fits next to what the basket already holds"""
        require_line_item(item)
        async with self.uow.transaction():
            basket = await self.get_basket(basket_id)
            basket.ensure_active()

            basket_item = await self._priced_item(item)
            await self._ensure_fits(basket.line_items(), item)

            basket.add_item(basket_item)
            await self.uow.baskets.save(basket)

        self.cache.invalidate(ResourceKind.BASKETS, basket_id)
        return basket_item

    async def update_item(
        self,
        basket_id: str,
        item_id: str,
        pickup_hotel_id: Optional[str] = None,
        drop_hotel_id: Optional[str] = None,
        pickup_date: Optional[datetime] = None,
        drop_date: Optional[datetime] = None,
        quantity: Optional[int] = None
    ) -> BasketItem:
        """Change a line; omitted fields keep their stored value"""
        async with self.uow.transaction():
            basket = await self.get_basket(basket_id)
            basket.ensure_active()
            current = basket.find_item(item_id)
            if current is None:
                raise NotFoundError("Basket item", item_id)

            updated = LineItem(
                product_id=current.product_id,
                pickup_hotel_id=pickup_hotel_id or current.pickup_hotel_id,
                drop_hotel_id=drop_hotel_id or current.drop_hotel_id,
                window=TimeWindow.of(pickup_date or current.pickup_date, drop_date or current.drop_date),
                quantity=current.quantity if quantity is None else quantity,
            )
            require_line_item(updated)

            others = [i.to_line_item() for i in basket.items if i.item_id != item_id]
            await self._ensure_fits(others, updated)

            replacement = await self._priced_item(updated, item_id=item_id, created_at=current.created_at)
            basket.items = [replacement if i.item_id == item_id else i for i in basket.items]
            basket.modified_at = self.clock.now()
            await self.uow.baskets.save(basket)

        self.cache.invalidate(ResourceKind.BASKETS, basket_id)
        return replacement

    async def remove_item(self, basket_id: str, item_id: str) -> ShoppingBasket:
        async with self.uow.transaction():
            basket = await self.get_basket(basket_id)
            if not basket.remove_item(item_id):
                raise NotFoundError("Basket item", item_id)
            await self.uow.baskets.save(basket)

        self.cache.invalidate(ResourceKind.BASKETS, basket_id)
        return basket

    async def _priced_item(self, item: LineItem, **fields) -> BasketItem:
        product = await self.uow.catalog.find_product(item.product_id)
        if product is None:
            raise NotFoundError("Product", item.product_id)
        for hotel_id in {item.pickup_hotel_id, item.drop_hotel_id}:
            if await self.uow.catalog.find_hotel(hotel_id) is None:
                raise NotFoundError("Hotel", hotel_id)

        quote = quote_rental(product, item.window)
        return BasketItem(
            product_id=item.product_id,
            pickup_hotel_id=item.pickup_hotel_id,
            drop_hotel_id=item.drop_hotel_id,
            pickup_date=item.window.start_at,
            drop_date=item.window.end_at,
            quantity=item.quantity,
            price_cents=quote.price_cents,
            deposit_cents=quote.deposit_cents,
            **fields
        )

    async def _ensure_fits(self, existing: List[LineItem], item: LineItem) -> None:
        validation = await self.validate_items(existing + [item])
        new_index = len(existing)
        conflicts = [c for c in validation.conflicts if c.index == new_index]
        if conflicts:
            raise CapacityConflictError("Not enough units for this item", conflicts)

    # ==================== CHECKOUT ====================
    async def checkout(
        self,
        basket_id: str,
        user_email: str,
        user_phone: Optional[str] = None,
        city_id: Optional[str] = None
    ) -> CheckoutResult:
        """Turn an ACTIVE basket into PENDING reservations under one payment hold.

        All or nothing: a conflict or a payment failure leaves no rows behind.
        """
        if not user_email:
            raise ValidationError("user_email is required")

        async with self.uow.transaction():
            basket = await self.get_basket(basket_id)
            basket.ensure_active()
            if not basket.items:
                raise ValidationError("Basket is empty")

            validation = await self.validate_items(basket.line_items())
            if not validation.valid:
                logger.info("Checkout of basket %s rejected with %d conflict(s)",
                            basket_id, len(validation.conflicts))
                raise CapacityConflictError("Some basket items are not available", validation.conflicts)

            totals = basket.totals()
            now = self.clock.now()
            code = await self.reservation_service.issue_code()

            basket_reservation = BasketReservation(
                basket_id=basket_id,
                reservation_code=code,
                user_email=user_email,
                user_phone=user_phone,
                city_id=city_id,
                total_price_cents=totals["price_cents"],
                total_deposit_cents=totals["deposit_cents"],
                created_at=now,
            )
            intent_id = await call_payment_provider(
                self.payments.authorize(totals["price_cents"] + totals["deposit_cents"], {
                    "basket_id": basket_id,
                    "basket_reservation_id": basket_reservation.basket_reservation_id,
                    "reservation_code": code,
                    "user_email": user_email,
                    "items_count": len(basket.items),
                }),
                self.reservation_service.payment_timeout,
            )
            try:
                basket_reservation.payment_intent_id = intent_id
                await self.uow.baskets.save_reservation(basket_reservation)

                reservations = []
                for n, item in enumerate(basket.items, start=1):
                    share = await self.reservation_service.applicable_share(item.pickup_hotel_id, now)
                    quote = quote_rental(
                        await self.uow.catalog.find_product(item.product_id),
                        item.to_line_item().window,
                        default_share=share,
                    )
                    reservation = Reservation.create(
                        code=f"{code}-{n}",
                        item=item.to_line_item(),
                        price_cents=item.price_cents * item.quantity,
                        deposit_cents=item.deposit_cents * item.quantity,
                        user_email=user_email,
                        user_phone=user_phone,
                        created_at=now,
                        pricing_type=quote.pricing_type,
                        basket_reservation_id=basket_reservation.basket_reservation_id,
                        payment_intent_id=intent_id,
                        revenue_share_applied=share,
                    )
                    await self.uow.reservations.save(reservation)
                    await self.uow.audits.append(reservation.reservation_id, AuditEvent.RESERVATION_CREATED.value, {
                        "new_status": reservation.status.value,
                        "actor": f"customer:{user_email}",
                        "payment_intent_id": intent_id,
                        "basket_reservation_id": basket_reservation.basket_reservation_id,
                    })
                    reservations.append(reservation)

                basket.mark_converted()
                await self.uow.baskets.save(basket)
            except Exception:
                await self.reservation_service.release_hold(intent_id)
                raise

        self.cache.invalidate(ResourceKind.BASKETS, basket_id)
        for reservation in reservations:
            self.cache.invalidate(ResourceKind.RESERVATIONS, reservation.reservation_id)
            self.cache.invalidate(ResourceKind.AVAILABILITY, reservation.pickup_hotel_id)
        logger.info("Basket %s checked out as %s with %d reservation(s)", basket_id, code, len(reservations))
        return CheckoutResult(basket_reservation=basket_reservation, reservations=reservations)

    async def handle_basket_payment(self, intent_id: str, succeeded: bool) -> BasketReservation:
        """Settle a basket checkout once the payment provider reports back.

        Replayed events are no-ops.
        """
        async with self.uow.transaction():
            basket_reservation = await self.uow.baskets.find_reservation_by_intent(intent_id)
            if basket_reservation is None:
                raise NotFoundError("Payment intent", intent_id)
            if basket_reservation.status != BasketReservationStatus.PENDING:
                return basket_reservation

            children = await self.uow.reservations.find_by_basket_reservation(
                basket_reservation.basket_reservation_id
            )
            for reservation in children:
                if reservation.status != ReservationStatus.PENDING:
                    if succeeded and reservation.status == ReservationStatus.CANCELLED:
                        raise IllegalTransitionError(
                            f"Reservation {reservation.code} was cancelled before payment succeeded",
                            details={"from": reservation.status.value, "to": ReservationStatus.CONFIRMED.value},
                        )
                    continue
                if succeeded:
                    await self.reservation_service.transition(
                        reservation, ReservationStatus.CONFIRMED, "payment-webhook",
                        AuditEvent.PAYMENT_SUCCEEDED, payment_intent_id=intent_id,
                    )
                else:
                    await self.reservation_service.transition(
                        reservation, ReservationStatus.CANCELLED, "payment-webhook",
                        AuditEvent.PAYMENT_FAILED, payment_intent_id=intent_id,
                    )

            basket_reservation.status = (
                BasketReservationStatus.CONFIRMED if succeeded else BasketReservationStatus.FAILED
            )
            await self.uow.baskets.save_reservation(basket_reservation)

        logger.info("Basket reservation %s is now %s",
                    basket_reservation.reservation_code, basket_reservation.status.value)
        return basket_reservation
