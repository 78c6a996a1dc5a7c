from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from common.cache import SimpleTTLCache
from common.config import get_settings
from common.database import Base, SessionLocal, engine
from common.dependencies import allow_roles, get_current_user
from common.logging_middleware import add_audit_middleware
from common.models import BookingStatus, RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    AvailabilityQuery,
    AvailabilityRead,
    BookingCreate,
    BookingFilters,
    BookingPageRead,
    BookingRead,
    CancellationRead,
    ConflictRead,
    ErrorRead,
    MaintenanceBlockRead,
    Pagination,
)
from scheduler.errors import BookingError
from scheduler.events import build_event_publisher
from scheduler.notifications import build_notification_dispatcher
from scheduler.service import BookingPage, BookingScheduler

settings = get_settings()
availability_cache: SimpleTTLCache[AvailabilityRead] = SimpleTTLCache(ttl=settings.availability_cache_ttl)

ERROR_STATUS = {
    "COURT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "BOOKING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "SLOT_UNAVAILABLE": status.HTTP_409_CONFLICT,
    "COURT_UNDER_MAINTENANCE": status.HTTP_409_CONFLICT,
    "OUTSIDE_OPERATING_HOURS": status.HTTP_400_BAD_REQUEST,
    "PRICE_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "BOOKING_IN_PAST": status.HTTP_400_BAD_REQUEST,
    "BOOKING_NOT_PENDING": status.HTTP_400_BAD_REQUEST,
    "BOOKING_ALREADY_CANCELLED": status.HTTP_400_BAD_REQUEST,
    "CANNOT_CANCEL_COMPLETED_BOOKING": status.HTTP_400_BAD_REQUEST,
    "CANCELLATION_WINDOW_CLOSED": status.HTTP_400_BAD_REQUEST,
    "BOOKING_NOT_TERMINAL": status.HTTP_400_BAD_REQUEST,
    "UNAUTHORIZED_CONFIRMATION": status.HTTP_403_FORBIDDEN,
    "UNAUTHORIZED_CANCELLATION": status.HTTP_403_FORBIDDEN,
    "UNAUTHORIZED_DELETION": status.HTTP_403_FORBIDDEN,
}

_scheduler = BookingScheduler(
    SessionLocal,
    publisher=build_event_publisher(settings),
    notifier=build_notification_dispatcher(settings),
    settings=settings,
)


def get_scheduler() -> BookingScheduler:
    return _scheduler


def _availability_key(court_id: int, start: datetime, end: datetime) -> str:
    return f"availability:{court_id}:{start.isoformat()}:{end.isoformat()}"


def _invalidate_availability(court_id: int) -> None:
    availability_cache.pop_prefix(f"availability:{court_id}:")


def booking_error_handler(_: Request, exc: BookingError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    fastapi_app.add_exception_handler(BookingError, booking_error_handler)
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _page_read(page: BookingPage) -> BookingPageRead:
    return BookingPageRead(
        data=[BookingRead.model_validate(booking) for booking in page.items],
        pagination=Pagination(total=page.total, limit=page.limit, offset=page.offset, has_more=page.has_more),
    )


def _filters(
    court_id: Optional[int] = None,
    facility_id: Optional[int] = None,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> BookingFilters:
    return BookingFilters(
        court_id=court_id,
        facility_id=facility_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.post("/bookings/check-availability", response_model=AvailabilityRead)
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    query: AvailabilityQuery,
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> AvailabilityRead:
    cache_key = _availability_key(query.court_id, query.start_time, query.end_time)
    cached = availability_cache.get(cache_key)
    if cached is not None:
        return cached

    result = scheduler.check_availability(query.court_id, query.start_time, query.end_time)
    answer = AvailabilityRead(
        court_id=query.court_id,
        available=result.available,
        conflicts=[ConflictRead.model_validate(booking) for booking in result.conflicts],
        maintenance_blocks=[MaintenanceBlockRead.model_validate(block) for block in result.maintenance_blocks],
    )
    availability_cache.set(cache_key, answer)
    return answer


@app.post(
    "/bookings",
    response_model=BookingRead,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorRead}, 404: {"model": ErrorRead}, 409: {"model": ErrorRead}},
)
@limiter.limit("10/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> BookingRead:
    booking = scheduler.create_booking(
        user_id=current_user.id,
        court_id=booking_in.court_id,
        start=booking_in.start_time,
        end=booking_in.end_time,
        price=booking_in.price,
    )
    _invalidate_availability(booking.court_id)
    return BookingRead.model_validate(booking)


@app.put("/bookings/{booking_id}/confirm", response_model=BookingRead)
@limiter.limit("20/minute")
def confirm_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> BookingRead:
    booking = scheduler.confirm_booking(booking_id, acting_owner_id=current_user.id)
    _invalidate_availability(booking.court_id)
    return BookingRead.model_validate(booking)


@app.put("/bookings/{booking_id}/cancel", response_model=CancellationRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> CancellationRead:
    result = scheduler.cancel_booking(booking_id, acting_user_id=current_user.id, acting_role=current_user.role)
    _invalidate_availability(result.booking.court_id)
    return CancellationRead(booking=BookingRead.model_validate(result.booking), refund_pending=result.refund_failed)


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("20/minute")
def delete_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> None:
    scheduler.delete_booking(booking_id, acting_user_id=current_user.id)


@app.get("/bookings/my-bookings", response_model=BookingPageRead)
@limiter.limit("30/minute")
def my_bookings(
    request: Request,
    filters: BookingFilters = Depends(_filters),
    current_user: User = Depends(get_current_user),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> BookingPageRead:
    return _page_read(scheduler.list_bookings_for_user(current_user.id, filters))


@app.get("/owners/{owner_id}/bookings", response_model=BookingPageRead)
@limiter.limit("30/minute")
def owner_bookings(
    request: Request,
    owner_id: int,
    filters: BookingFilters = Depends(_filters),
    current_user: User = Depends(allow_roles(RoleEnum.OWNER, RoleEnum.ADMIN)),
    scheduler: BookingScheduler = Depends(get_scheduler),
) -> BookingPageRead:
    if current_user.id != owner_id and current_user.role != RoleEnum.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only view your own venue bookings")
    return _page_read(scheduler.list_bookings_for_owner(owner_id, filters))
