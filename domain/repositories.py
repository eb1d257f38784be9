"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, Iterable, List, Optional

from domain.entities import (
    BasketReservation, City, DiscountCode, Hotel, InventoryItem, PaymentAudit, Product,
    RevenueAgreement, Reservation, ShoppingBasket,
)
from domain.enums import BasketStatus, ReservationStatus
from domain.value_objects import TimeWindow


class CatalogRepository(ABC):
    """Read access to cities, hotels and products"""

    @abstractmethod
    async def find_product(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def find_all_products(self) -> List[Product]:
        pass

    @abstractmethod
    async def find_hotel(self, hotel_id: str) -> Optional[Hotel]:
        pass

    @abstractmethod
    async def find_city_by_slug(self, slug: str) -> Optional[City]:
        pass

    @abstractmethod
    async def find_hotels_by_city(self, city_id: str) -> List[Hotel]:
        pass

    @abstractmethod
    async def save_product(self, product: Product) -> Product:
        pass

    @abstractmethod
    async def save_hotel(self, hotel: Hotel) -> Hotel:
        pass

    @abstractmethod
    async def save_city(self, city: City) -> City:
        pass


class InventoryRepository(ABC):
    """Repository interface for per-hotel stock"""

    @abstractmethod
    async def find(self, hotel_id: str, product_id: str) -> Optional[InventoryItem]:
        """Find the (hotel, product) stock row"""
        pass

    @abstractmethod
    async def find_by_hotels(self, hotel_ids: Iterable[str], product_id: Optional[str] = None) -> List[InventoryItem]:
        pass

    @abstractmethod
    async def save(self, item: InventoryItem) -> InventoryItem:
        """Insert or replace the (hotel, product) row"""
        pass


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate"""

    @abstractmethod
    async def save(self, reservation: Reservation) -> Reservation:
        pass

    @abstractmethod
    async def update(self, reservation: Reservation) -> Reservation:
        pass

    @abstractmethod
    async def update_status(self, reservation_id: str, new_status: ReservationStatus) -> Reservation:
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: str) -> Optional[Reservation]:
        pass

    @abstractmethod
    async def find_by_code(self, code: str) -> Optional[Reservation]:
        pass

    @abstractmethod
    async def find_by_payment_intent(self, intent_id: str) -> List[Reservation]:
        pass

    @abstractmethod
    async def find_by_basket_reservation(self, basket_reservation_id: str) -> List[Reservation]:
        pass

    @abstractmethod
    async def count_overlapping(self, hotel_id: str, product_id: str, window: TimeWindow,
                                statuses: Iterable[ReservationStatus]) -> int:
        """Number of reservations at the pickup hotel overlapping window"""
        pass

    @abstractmethod
    async def sum_overlapping_quantity(self, hotel_id: str, product_id: str, window: TimeWindow,
                                       statuses: Iterable[ReservationStatus]) -> int:
        """Units held by reservations at the pickup hotel overlapping window"""
        pass

    @abstractmethod
    async def find_pending_created_before(self, cutoff: datetime) -> List[Reservation]:
        pass

    @abstractmethod
    async def find_completed_between(self, start: datetime, end: datetime) -> List[Reservation]:
        pass

    @abstractmethod
    async def code_exists(self, code: str) -> bool:
        pass


class BasketRepository(ABC):
    """Repository interface for baskets and their checkout snapshots"""

    @abstractmethod
    async def save(self, basket: ShoppingBasket) -> ShoppingBasket:
        pass

    @abstractmethod
    async def find_with_items(self, basket_id: str) -> Optional[ShoppingBasket]:
        pass

    @abstractmethod
    async def update_status(self, basket_id: str, status: BasketStatus) -> ShoppingBasket:
        pass

    @abstractmethod
    async def save_reservation(self, basket_reservation: BasketReservation) -> BasketReservation:
        pass

    @abstractmethod
    async def find_reservation(self, basket_reservation_id: str) -> Optional[BasketReservation]:
        pass

    @abstractmethod
    async def find_reservation_by_intent(self, intent_id: str) -> Optional[BasketReservation]:
        pass

    @abstractmethod
    async def reservation_code_exists(self, code: str) -> bool:
        pass


class AuditRepository(ABC):
    """Append-only audit log"""

    @abstractmethod
    async def append(self, reservation_id: str, event: str, payload: Dict[str, Any]) -> PaymentAudit:
        pass

    @abstractmethod
    async def find_by_reservation(self, reservation_id: str) -> List[PaymentAudit]:
        pass


class AgreementRepository(ABC):
    """Discount codes and revenue agreements"""

    @abstractmethod
    async def find_discount_code(self, code: str) -> Optional[DiscountCode]:
        pass

    @abstractmethod
    async def save_discount_code(self, discount: DiscountCode) -> DiscountCode:
        pass

    @abstractmethod
    async def find_agreement(self, hotel_id: str, at: datetime) -> Optional[RevenueAgreement]:
        """Latest agreement for hotel already in effect at the given time"""
        pass

    @abstractmethod
    async def save_agreement(self, agreement: RevenueAgreement) -> RevenueAgreement:
        pass


class UnitOfWork(ABC):
    """Serialised transaction scope over every repository"""

    catalog: CatalogRepository
    inventory: InventoryRepository
    reservations: ReservationRepository
    baskets: BasketRepository
    audits: AuditRepository
    agreements: AgreementRepository

    @abstractmethod
    def transaction(self) -> AsyncContextManager["UnitOfWork"]:
        """All-or-nothing scope; writes roll back when the block raises"""
        pass
