"""In-Memory Repository Implementations"""
import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from domain.entities import (
    BasketReservation, City, DiscountCode, Hotel, InventoryItem, PaymentAudit, Product,
    RevenueAgreement, Reservation, ShoppingBasket,
)
from domain.enums import BasketStatus, ReservationStatus
from domain.exceptions import NotFoundError
from domain.repositories import (
    AgreementRepository, AuditRepository, BasketRepository, CatalogRepository,
    InventoryRepository, ReservationRepository, UnitOfWork,
)
from domain.value_objects import TimeWindow, overlaps

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Every table of the booking core, kept in plain dicts"""

    def __init__(self):
        self.cities: Dict[str, City] = {}
        self.hotels: Dict[str, Hotel] = {}
        self.products: Dict[str, Product] = {}
        self.inventory: Dict[Tuple[str, str], InventoryItem] = {}
        self.reservations: Dict[str, Reservation] = {}
        self.baskets: Dict[str, ShoppingBasket] = {}
        self.basket_reservations: Dict[str, BasketReservation] = {}
        self.audits: List[PaymentAudit] = []
        self.discount_codes: Dict[str, DiscountCode] = {}
        self.agreements: List[RevenueAgreement] = []

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self.__dict__)

    def restore(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)


class InMemoryCatalogRepository(CatalogRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def find_product(self, product_id: str) -> Optional[Product]:
        return self._store.products.get(product_id)

    async def find_all_products(self) -> List[Product]:
        return sorted(self._store.products.values(), key=lambda p: p.name)

    async def find_hotel(self, hotel_id: str) -> Optional[Hotel]:
        return self._store.hotels.get(hotel_id)

    async def find_city_by_slug(self, slug: str) -> Optional[City]:
        for city in self._store.cities.values():
            if city.slug == slug:
                return city
        return None

    async def find_hotels_by_city(self, city_id: str) -> List[Hotel]:
        return [h for h in self._store.hotels.values() if h.city_id == city_id]

    async def save_product(self, product: Product) -> Product:
        self._store.products[product.product_id] = product
        return product

    async def save_hotel(self, hotel: Hotel) -> Hotel:
        self._store.hotels[hotel.hotel_id] = hotel
        return hotel

    async def save_city(self, city: City) -> City:
        existing = await self.find_city_by_slug(city.slug)
        if existing and existing.city_id != city.city_id:
            raise ValueError(f"City slug already used: {city.slug}")
        self._store.cities[city.city_id] = city
        return city


class InMemoryInventoryRepository(InventoryRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def find(self, hotel_id: str, product_id: str) -> Optional[InventoryItem]:
        return self._store.inventory.get((hotel_id, product_id))

    async def find_by_hotels(self, hotel_ids: Iterable[str], product_id: Optional[str] = None) -> List[InventoryItem]:
        wanted = set(hotel_ids)
        return [
            item for (hotel_id, pid), item in self._store.inventory.items()
            if hotel_id in wanted and (product_id is None or pid == product_id)
        ]

    async def save(self, item: InventoryItem) -> InventoryItem:
        self._store.inventory[(item.hotel_id, item.product_id)] = item
        return item


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, reservation: Reservation) -> Reservation:
        if reservation.reservation_id not in self._store.reservations and \
                await self.code_exists(reservation.code):
            raise ValueError(f"Reservation code already issued: {reservation.code}")
        self._store.reservations[reservation.reservation_id] = reservation
        return reservation

    async def update(self, reservation: Reservation) -> Reservation:
        if reservation.reservation_id in self._store.reservations:
            self._store.reservations[reservation.reservation_id] = reservation
            return reservation
        raise NotFoundError("Reservation", reservation.reservation_id)

    async def update_status(self, reservation_id: str, new_status: ReservationStatus) -> Reservation:
        reservation = self._store.reservations.get(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        reservation.status = new_status
        return reservation

    async def find_by_id(self, reservation_id: str) -> Optional[Reservation]:
        return self._store.reservations.get(reservation_id)

    async def find_by_code(self, code: str) -> Optional[Reservation]:
        for reservation in self._store.reservations.values():
            if reservation.code == code:
                return reservation
        return None

    async def find_by_payment_intent(self, intent_id: str) -> List[Reservation]:
        return [r for r in self._store.reservations.values() if r.payment_intent_id == intent_id]

    async def find_by_basket_reservation(self, basket_reservation_id: str) -> List[Reservation]:
        return [
            r for r in self._store.reservations.values()
            if r.basket_reservation_id == basket_reservation_id
        ]

    def _overlapping(self, hotel_id: str, product_id: str, window: TimeWindow,
                     statuses: Iterable[ReservationStatus]) -> List[Reservation]:
        wanted = set(statuses)
        return [
            r for r in self._store.reservations.values()
            if r.pickup_hotel_id == hotel_id
            and r.product_id == product_id
            and r.status in wanted
            and overlaps(r.window, window)
        ]

    async def count_overlapping(self, hotel_id: str, product_id: str, window: TimeWindow,
                                statuses: Iterable[ReservationStatus]) -> int:
        return len(self._overlapping(hotel_id, product_id, window, statuses))

    async def sum_overlapping_quantity(self, hotel_id: str, product_id: str, window: TimeWindow,
                                       statuses: Iterable[ReservationStatus]) -> int:
        return sum(r.quantity for r in self._overlapping(hotel_id, product_id, window, statuses))

    async def find_pending_created_before(self, cutoff: datetime) -> List[Reservation]:
        return [
            r for r in self._store.reservations.values()
            if r.status == ReservationStatus.PENDING and r.created_at < cutoff
        ]

    async def find_completed_between(self, start: datetime, end: datetime) -> List[Reservation]:
        return [
            r for r in self._store.reservations.values()
            if r.status == ReservationStatus.COMPLETED
            and r.completed_at is not None
            and start <= r.completed_at < end
        ]

    async def code_exists(self, code: str) -> bool:
        return await self.find_by_code(code) is not None


class InMemoryBasketRepository(BasketRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def save(self, basket: ShoppingBasket) -> ShoppingBasket:
        self._store.baskets[basket.basket_id] = basket
        return basket

    async def find_with_items(self, basket_id: str) -> Optional[ShoppingBasket]:
        return self._store.baskets.get(basket_id)

    async def update_status(self, basket_id: str, status: BasketStatus) -> ShoppingBasket:
        basket = self._store.baskets.get(basket_id)
        if basket is None:
            raise NotFoundError("Basket", basket_id)
        basket.status = status
        return basket

    async def save_reservation(self, basket_reservation: BasketReservation) -> BasketReservation:
        self._store.basket_reservations[basket_reservation.basket_reservation_id] = basket_reservation
        return basket_reservation

    async def find_reservation(self, basket_reservation_id: str) -> Optional[BasketReservation]:
        return self._store.basket_reservations.get(basket_reservation_id)

    async def find_reservation_by_intent(self, intent_id: str) -> Optional[BasketReservation]:
        for basket_reservation in self._store.basket_reservations.values():
            if basket_reservation.payment_intent_id == intent_id:
                return basket_reservation
        return None

    async def reservation_code_exists(self, code: str) -> bool:
        return any(b.reservation_code == code for b in self._store.basket_reservations.values())


class InMemoryAuditRepository(AuditRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def append(self, reservation_id: str, event: str, payload: Dict[str, Any]) -> PaymentAudit:
        entry = PaymentAudit(reservation_id=reservation_id, event=event, data=dict(payload))
        self._store.audits.append(entry)
        return entry

    async def find_by_reservation(self, reservation_id: str) -> List[PaymentAudit]:
        return [a for a in self._store.audits if a.reservation_id == reservation_id]


class InMemoryAgreementRepository(AgreementRepository):

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def find_discount_code(self, code: str) -> Optional[DiscountCode]:
        return self._store.discount_codes.get(code.upper())

    async def save_discount_code(self, discount: DiscountCode) -> DiscountCode:
        self._store.discount_codes[discount.code.upper()] = discount
        return discount

    async def find_agreement(self, hotel_id: str, at: datetime) -> Optional[RevenueAgreement]:
        in_effect = [
            a for a in self._store.agreements
            if a.hotel_id == hotel_id and a.effective_from <= at
        ]
        if not in_effect:
            return None
        return max(in_effect, key=lambda a: a.effective_from)

    async def save_agreement(self, agreement: RevenueAgreement) -> RevenueAgreement:
        self._store.agreements.append(agreement)
        return agreement


class InMemoryUnitOfWork(UnitOfWork):
    """One writer at a time; a failed block restores the pre-transaction state.

    Nested transaction() calls from the task already holding the lock join
    the outer transaction.
    """

    def __init__(self, store: Optional[InMemoryStore] = None):
        self.store = store or InMemoryStore()
        self.catalog = InMemoryCatalogRepository(self.store)
        self.inventory = InMemoryInventoryRepository(self.store)
        self.reservations = InMemoryReservationRepository(self.store)
        self.baskets = InMemoryBasketRepository(self.store)
        self.audits = InMemoryAuditRepository(self.store)
        self.agreements = InMemoryAgreementRepository(self.store)
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None

    @asynccontextmanager
    async def transaction(self):
        task = asyncio.current_task()
        if self._owner is not None and self._owner is task:
            yield self
            return

        async with self._lock:
            self._owner = task
            snapshot = self.store.snapshot()
            try:
                yield self
            except BaseException:
                self.store.restore(snapshot)
                logger.warning("Transaction rolled back")
                raise
            finally:
                self._owner = None
