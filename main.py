import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import ValidationError as PydanticValidationError

from api.schemas import (
    # Availability
    CheckAvailabilityRequest, AvailabilityResponse, AlternativeResponse,
    HotelAvailabilityResponse, ProductAvailabilityResponse,
    # Basket
    LineItemRequest, ValidateItemsRequest, CreateBasketRequest, UpdateBasketItemRequest,
    BasketCheckoutRequest, BasketResponse, BasketItemResponse, BasketCheckoutResponse,
    ConflictResponse, ValidationResponse,
    # Reservation
    CheckoutRequest, ReservationResponse, ChangeStatusRequest, CompleteRequest,
    IncidentRequest, AuditResponse, PaymentEventRequest,
    # Admin
    CreateCityRequest, CreateHotelRequest, CreateProductRequest, UpsertInventoryRequest,
    CreateDiscountCodeRequest, CreateAgreementRequest, ExpirySweepResponse, SettlementResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import (
    get_current_active_user, admin_users_db, get_user, require_cron_secret, require_webhook_signature,
)
from infrastructure.security import verify_password, create_access_token
from infrastructure.config import settings
from domain.auth import AdminUser

from application.services import (
    AvailabilityService, BookingRequest, CatalogService, ReservationService, SettlementService,
)
from application.basket_service import BasketService
from infrastructure.cache import InMemoryCacheInvalidator
from infrastructure.clock import SystemClock
from infrastructure.payments import InMemoryPaymentGateway
from infrastructure.repositories.in_memory_repositories import InMemoryUnitOfWork
from domain.enums import AuditEvent, BasketStatus, IncidentType, ReservationStatus, ShareType
from domain.exceptions import (
    CapacityConflictError, CodeGenerationError, DomainError, IllegalTransitionError, NotFoundError,
    PaymentProviderError,
)
from domain.ports import CacheInvalidator, Clock, PaymentGateway
from domain.repositories import UnitOfWork
from domain.value_objects import AlternativeSlot, AvailabilityResult, Conflict, TimeWindow

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Rental Equipment Reservation API",
    description="Inventory availability and reservations for hotel rental equipment",
    version="1.0.0"
)

# Initialize infrastructure
unit_of_work = InMemoryUnitOfWork()
payment_gateway = InMemoryPaymentGateway()
cache_invalidator = InMemoryCacheInvalidator()
system_clock = SystemClock()

# Dependency injection
def get_uow() -> UnitOfWork:
    return unit_of_work

def get_payment_gateway() -> PaymentGateway:
    return payment_gateway

def get_cache() -> CacheInvalidator:
    return cache_invalidator

def get_clock() -> Clock:
    return system_clock

def get_availability_service(uow: UnitOfWork = Depends(get_uow)) -> AvailabilityService:
    return AvailabilityService(uow)

def get_reservation_service(
    uow: UnitOfWork = Depends(get_uow),
    payments: PaymentGateway = Depends(get_payment_gateway),
    cache: CacheInvalidator = Depends(get_cache),
    clock: Clock = Depends(get_clock)
) -> ReservationService:
    return ReservationService(
        uow, payments, cache, clock,
        pending_ttl_minutes=settings.reservation_pending_ttl_min,
        deposit_auth_days=settings.deposit_auth_days,
        payment_timeout=settings.payment_timeout_seconds,
        default_share=settings.default_share,
    )

def get_basket_service(service: ReservationService = Depends(get_reservation_service)) -> BasketService:
    return BasketService(service)

def get_settlement_service(
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
    cache: CacheInvalidator = Depends(get_cache)
) -> SettlementService:
    return SettlementService(uow, clock, cache)

def get_catalog_service(
    uow: UnitOfWork = Depends(get_uow),
    cache: CacheInvalidator = Depends(get_cache)
) -> CatalogService:
    return CatalogService(uow, cache)

# ============================================================================
# ERROR HANDLING
# ============================================================================

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (CapacityConflictError, 409),
    (IllegalTransitionError, 409),
    (PaymentProviderError, 502),
    (CodeGenerationError, 503),
)

@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    status_code = 400
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    details = exc.details
    if isinstance(exc, CapacityConflictError):
        details = [_conflict_to_response(c).model_dump(mode="json") for c in exc.conflicts]
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.code, "details": details},
    )

@app.exception_handler(PydanticValidationError)
async def model_validation_handler(request: Request, exc: PydanticValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid data", "code": "VALIDATION_ERROR",
                 "details": exc.errors(include_url=False, include_context=False)},
    )

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "Reservation status values: PENDING, CONFIRMED, COMPLETED, CANCELLED, NO_SHOW, DAMAGED, STOLEN"
    }

@app.get("/api/enums/basket-status", tags=["Enum Reference"])
async def get_basket_statuses():
    """Get all BasketStatus enum values"""
    return {"values": [item.value for item in BasketStatus]}

@app.get("/api/enums/share-type", tags=["Enum Reference"])
async def get_share_types():
    """Get all ShareType enum values"""
    return {
        "values": [item.value for item in ShareType],
        "description": "PLATFORM_70: platform keeps 70%, HOTEL_70: hotel keeps 70%"
    }

@app.get("/api/enums/incident-type", tags=["Enum Reference"])
async def get_incident_types():
    """Get all IncidentType enum values"""
    return {"values": [item.value for item in IncidentType]}

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(admin_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(
        data={"sub": user.username}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: AdminUser = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# AVAILABILITY ENDPOINTS
# ============================================================================

@app.post("/api/availability/check", response_model=AvailabilityResponse, tags=["Availability"])
async def check_availability(
    request: CheckAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service)
):
    """Check whether a product can be picked up at a hotel during a window"""
    result = await service.check_single(
        request.product_id, request.hotel_id, request.to_window(), request.quantity
    )
    return _availability_to_response(result)

@app.post("/api/availability/alternatives", response_model=List[AlternativeResponse], tags=["Availability"])
async def get_alternatives(
    request: CheckAvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service)
):
    """Same-length windows a day later or earlier that still fit"""
    slots = await service.suggest_alternatives(
        request.hotel_id, request.product_id, request.to_window(), request.quantity
    )
    return [_alternative_to_response(s) for s in slots]

@app.get("/api/cities/{slug}/availability", response_model=List[HotelAvailabilityResponse], tags=["Availability"])
async def get_city_availability(
    slug: str,
    product_id: str,
    start_at: datetime,
    end_at: datetime,
    service: AvailabilityService = Depends(get_availability_service)
):
    """Hotels in a city stocking the product, most free units first"""
    hotels = await service.check_across_city(slug, product_id, TimeWindow.of(start_at, end_at))
    return [HotelAvailabilityResponse(**h.model_dump()) for h in hotels]

@app.get("/api/cities/{slug}/products", response_model=List[ProductAvailabilityResponse], tags=["Availability"])
async def get_city_products(
    slug: str,
    start_at: datetime,
    end_at: datetime,
    service: AvailabilityService = Depends(get_availability_service)
):
    """Products stocked in a city with their free units"""
    summaries = await service.city_product_summary(slug, TimeWindow.of(start_at, end_at))
    return [ProductAvailabilityResponse(**s.model_dump()) for s in summaries]

# ============================================================================
# BASKET ENDPOINTS
# ============================================================================

@app.post("/api/basket/availability", response_model=ValidationResponse, tags=["Basket"])
async def validate_basket_items(
    request: ValidateItemsRequest,
    service: BasketService = Depends(get_basket_service)
):
    """Validate a list of lines without storing a basket"""
    validation = await service.validate_items([item.to_line_item() for item in request.items])
    return _validation_to_response(validation)

@app.post("/api/baskets", response_model=BasketResponse, status_code=201, tags=["Basket"])
async def create_basket(
    request: CreateBasketRequest,
    service: BasketService = Depends(get_basket_service)
):
    basket = await service.create_basket(request.user_email, request.session_id)
    return _basket_to_response(basket)

@app.get("/api/baskets/{basket_id}", response_model=BasketResponse, tags=["Basket"])
async def get_basket(basket_id: str, service: BasketService = Depends(get_basket_service)):
    basket = await service.get_basket(basket_id)
    return _basket_to_response(basket)

@app.post("/api/baskets/{basket_id}/items", response_model=BasketItemResponse, status_code=201, tags=["Basket"])
async def add_basket_item(
    basket_id: str,
    request: LineItemRequest,
    service: BasketService = Depends(get_basket_service)
):
    item = await service.add_item(basket_id, request.to_line_item())
    return BasketItemResponse(**item.model_dump(exclude={"created_at"}))

@app.put("/api/baskets/{basket_id}/items/{item_id}", response_model=BasketItemResponse, tags=["Basket"])
async def update_basket_item(
    basket_id: str,
    item_id: str,
    request: UpdateBasketItemRequest,
    service: BasketService = Depends(get_basket_service)
):
    item = await service.update_item(basket_id, item_id, **request.model_dump(exclude_none=True))
    return BasketItemResponse(**item.model_dump(exclude={"created_at"}))

@app.delete("/api/baskets/{basket_id}/items/{item_id}", response_model=BasketResponse, tags=["Basket"])
async def remove_basket_item(
    basket_id: str,
    item_id: str,
    service: BasketService = Depends(get_basket_service)
):
    basket = await service.remove_item(basket_id, item_id)
    return _basket_to_response(basket)

@app.post("/api/baskets/{basket_id}/validate", response_model=ValidationResponse, tags=["Basket"])
async def validate_basket(basket_id: str, service: BasketService = Depends(get_basket_service)):
    validation = await service.validate_basket(basket_id)
    return _validation_to_response(validation)

@app.post("/api/baskets/{basket_id}/checkout", response_model=BasketCheckoutResponse, status_code=201, tags=["Basket"])
async def checkout_basket(
    basket_id: str,
    request: BasketCheckoutRequest,
    service: BasketService = Depends(get_basket_service)
):
    """Convert the basket into reservations under one payment hold"""
    result = await service.checkout(basket_id, request.user_email, request.user_phone, request.city_id)
    basket_reservation = result.basket_reservation
    return BasketCheckoutResponse(
        basket_reservation_id=basket_reservation.basket_reservation_id,
        reservation_code=basket_reservation.reservation_code,
        status=basket_reservation.status.value,
        payment_intent_id=basket_reservation.payment_intent_id,
        total_price_cents=basket_reservation.total_price_cents,
        total_deposit_cents=basket_reservation.total_deposit_cents,
        reservations=[_reservation_to_response(r) for r in result.reservations],
    )

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/api/checkout", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def checkout(
    request: CheckoutRequest,
    service: ReservationService = Depends(get_reservation_service)
):
    """Book a single item and hold its deposit"""
    reservation = await service.book(BookingRequest(
        product_id=request.product_id,
        pickup_hotel_id=request.pickup_hotel_id,
        drop_hotel_id=request.drop_hotel_id,
        window=request.to_window(),
        quantity=request.quantity,
        user_email=request.user_email,
        user_phone=request.user_phone,
        discount_code=request.discount_code,
    ))
    return _reservation_to_response(reservation)

@app.get("/api/reservations/code/{code}", response_model=ReservationResponse, tags=["Reservations"],
         response_model_exclude={"payment_intent_id"})
async def get_reservation_by_code(
    code: str,
    service: ReservationService = Depends(get_reservation_service)
):
    """Get reservation by its customer-facing code"""
    reservation = await service.get_reservation_by_code(code)
    return _reservation_to_response(reservation)

@app.post("/api/webhooks/payments", tags=["Payments"],
          dependencies=[Depends(require_webhook_signature)])
async def payment_webhook(
    event: PaymentEventRequest,
    uow: UnitOfWork = Depends(get_uow),
    reservation_service: ReservationService = Depends(get_reservation_service),
    basket_service: BasketService = Depends(get_basket_service)
):
    """Apply a signed payment provider event to the reservations it pays for"""
    if event.type not in (AuditEvent.PAYMENT_SUCCEEDED.value, AuditEvent.PAYMENT_FAILED.value):
        logger.info("Ignoring payment event %s", event.type)
        return {"received": True, "handled": False}

    succeeded = event.type == AuditEvent.PAYMENT_SUCCEEDED.value
    if await uow.baskets.find_reservation_by_intent(event.payment_intent_id):
        basket_reservation = await basket_service.handle_basket_payment(event.payment_intent_id, succeeded)
        return {"received": True, "handled": True, "status": basket_reservation.status.value}

    updated = await reservation_service.handle_payment_event(
        event.payment_intent_id, succeeded, {"error": event.error}
    )
    return {"received": True, "handled": True, "updated": [r.code for r in updated]}

# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.get("/api/admin/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Admin"])
async def get_reservation(
    reservation_id: str,
    service: ReservationService = Depends(get_reservation_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    reservation = await service.get_reservation(reservation_id)
    return _reservation_to_response(reservation)

@app.post("/api/admin/reservations/{reservation_id}/status", response_model=ReservationResponse, tags=["Admin"])
async def change_reservation_status(
    reservation_id: str,
    request: ChangeStatusRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    """Move a reservation along its lifecycle"""
    reservation = await service.change_status(reservation_id, request.status, current_user.actor, request.note)
    return _reservation_to_response(reservation)

@app.post("/api/admin/reservations/{reservation_id}/complete", response_model=ReservationResponse, tags=["Admin"])
async def complete_reservation(
    reservation_id: str,
    request: CompleteRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    reservation = await service.complete(reservation_id, current_user.actor, request.note)
    return _reservation_to_response(reservation)

@app.post("/api/admin/reservations/{reservation_id}/incident", response_model=ReservationResponse, tags=["Admin"])
async def report_incident(
    reservation_id: str,
    request: IncidentRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    """Mark a rental damaged or stolen and charge its deposit"""
    reservation = await service.report_incident(
        reservation_id, request.kind, current_user.actor, request.admin_notes
    )
    return _reservation_to_response(reservation)

@app.get("/api/admin/reservations/{reservation_id}/audit", response_model=List[AuditResponse], tags=["Admin"])
async def get_audit_trail(
    reservation_id: str,
    service: ReservationService = Depends(get_reservation_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    entries = await service.audit_trail(reservation_id)
    return [AuditResponse(audit_id=a.audit_id, event=a.event, data=a.data, created_at=a.created_at) for a in entries]

@app.post("/api/admin/cities", status_code=201, tags=["Admin"])
async def create_city(
    request: CreateCityRequest,
    service: CatalogService = Depends(get_catalog_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    city = await service.create_city(request.name, request.slug)
    return city.model_dump()

@app.post("/api/admin/hotels", status_code=201, tags=["Admin"])
async def create_hotel(
    request: CreateHotelRequest,
    service: CatalogService = Depends(get_catalog_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    hotel = await service.create_hotel(**request.model_dump())
    return hotel.model_dump()

@app.post("/api/admin/products", status_code=201, tags=["Admin"])
async def create_product(
    request: CreateProductRequest,
    service: CatalogService = Depends(get_catalog_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    product = await service.create_product(**request.model_dump())
    return product.model_dump()

@app.put("/api/admin/inventory", tags=["Admin"])
async def upsert_inventory(
    request: UpsertInventoryRequest,
    service: CatalogService = Depends(get_catalog_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    """Set how many units of a product a hotel stocks"""
    item = await service.upsert_inventory(request.hotel_id, request.product_id, request.quantity, request.active)
    return item.model_dump()

@app.post("/api/admin/discount-codes", status_code=201, tags=["Admin"])
async def create_discount_code(
    request: CreateDiscountCodeRequest,
    service: CatalogService = Depends(get_catalog_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    discount = await service.create_discount_code(request.code, request.kind, request.hotel_id, request.active)
    return discount.model_dump(mode="json")

@app.post("/api/admin/agreements", status_code=201, tags=["Admin"])
async def create_agreement(
    request: CreateAgreementRequest,
    service: CatalogService = Depends(get_catalog_service),
    current_user: AdminUser = Depends(get_current_active_user)
):
    agreement = await service.set_agreement(request.hotel_id, request.default_share, request.effective_from)
    return agreement.model_dump(mode="json")

# ============================================================================
# CRON ENDPOINTS
# ============================================================================

@app.post("/api/admin/cron/expire-pending", response_model=ExpirySweepResponse, tags=["Cron"],
          dependencies=[Depends(require_cron_secret)])
async def expire_pending_reservations(
    ttl_minutes: Optional[int] = None,
    service: ReservationService = Depends(get_reservation_service)
):
    """Cancel PENDING reservations older than the configured TTL"""
    result = await service.expire_pending(ttl_minutes)
    return ExpirySweepResponse(
        ttl_minutes=result.ttl_minutes,
        cutoff=result.cutoff,
        expired_count=result.expired_count,
        expired_reservation_ids=result.expired_reservation_ids,
    )

@app.post("/api/admin/cron/settle-revenue", response_model=SettlementResponse, tags=["Cron"],
          dependencies=[Depends(require_cron_secret)])
async def settle_revenue(
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    service: SettlementService = Depends(get_settlement_service)
):
    """Split revenue of reservations completed in the period (yesterday by default)"""
    report = await service.settle(period_start, period_end)
    return SettlementResponse(
        period_start=report.period_start,
        period_end=report.period_end,
        processed_count=report.processed_count,
        total_revenue_cents=report.total_revenue_cents,
        platform_total_cents=report.platform_total_cents,
        hotel_total_cents=report.hotel_total_cents,
    )

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _alternative_to_response(slot: AlternativeSlot) -> AlternativeResponse:
    return AlternativeResponse(
        start_at=slot.window.start_at,
        end_at=slot.window.end_at,
        remaining=slot.remaining,
        shift_days=slot.shift_days
    )

def _availability_to_response(result: AvailabilityResult) -> AvailabilityResponse:
    """Convert AvailabilityResult to AvailabilityResponse"""
    return AvailabilityResponse(
        product_id=result.product_id,
        hotel_id=result.hotel_id,
        start_at=result.window.start_at,
        end_at=result.window.end_at,
        requested=result.requested,
        available=result.available,
        total_capacity=result.total_capacity,
        consumed=result.consumed,
        remaining=result.remaining,
        alternatives=[_alternative_to_response(s) for s in result.alternatives]
    )

def _conflict_to_response(conflict: Conflict) -> ConflictResponse:
    return ConflictResponse(
        index=conflict.index,
        product_id=conflict.product_id,
        hotel_id=conflict.hotel_id,
        start_at=conflict.window.start_at,
        end_at=conflict.window.end_at,
        requested=conflict.requested,
        remaining=conflict.remaining,
        shortfall=conflict.shortfall,
        reason=conflict.reason.value,
        alternatives=[_alternative_to_response(s) for s in conflict.alternatives]
    )

def _validation_to_response(validation) -> ValidationResponse:
    return ValidationResponse(
        valid=validation.valid,
        conflicts=[_conflict_to_response(c) for c in validation.conflicts]
    )

def _basket_to_response(basket) -> BasketResponse:
    """Convert ShoppingBasket entity to BasketResponse"""
    totals = basket.totals()
    return BasketResponse(
        basket_id=basket.basket_id,
        status=basket.status.value,
        user_email=basket.user_email,
        session_id=basket.session_id,
        items=[BasketItemResponse(**i.model_dump(exclude={"created_at"})) for i in basket.items],
        total_price_cents=totals["price_cents"],
        total_deposit_cents=totals["deposit_cents"]
    )

def _reservation_to_response(reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        code=reservation.code,
        product_id=reservation.product_id,
        pickup_hotel_id=reservation.pickup_hotel_id,
        drop_hotel_id=reservation.drop_hotel_id,
        start_at=reservation.window.start_at,
        end_at=reservation.window.end_at,
        quantity=reservation.quantity,
        price_cents=reservation.price_cents,
        deposit_cents=reservation.deposit_cents,
        pricing_type=reservation.pricing_type,
        status=reservation.status.value,
        user_email=reservation.user_email,
        payment_intent_id=reservation.payment_intent_id,
        basket_reservation_id=reservation.basket_reservation_id,
        revenue_share_applied=reservation.revenue_share_applied.value,
        platform_share_cents=reservation.platform_share_cents,
        hotel_share_cents=reservation.hotel_share_cents,
        created_at=reservation.created_at,
        modified_at=reservation.modified_at,
        version=reservation.version
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
