import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import accounts
import bookings
import notifications
import service_requests
from config import settings
from database import SessionLocal, engine, get_session, init_db, transaction
from errors import PortalError, ValidationError
from flipt_service import flipt_service
from telemetry import setup_telemetry
from models import (
    BookingListResponse,
    BookingModel,
    BookingRequest,
    BookingResponse,
    BookingUpdateRequest,
    HotelModel,
    LoginRequest,
    LoginResponse,
    NotificationListResponse,
    NotificationModel,
    NotificationUpdate,
    ProfileUpdateRequest,
    RoomModel,
    RoomSearchResponse,
    RoomSearchResult,
    ServiceRequestCreate,
    ServiceRequestListResponse,
    ServiceRequestModel,
    ServiceRequestResponse,
    ServiceRequestUpdate,
    UserProfile,
    UserSummary,
)
from data import calculate_price_with_strategy, get_all_hotels, search_rooms, seed_database
from orm import Booking, Room, User
from pricing import nights_booked

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if settings.seed_demo_data:
        with SessionLocal() as session:
            seed_database(session)
    yield


# Create FastAPI app
app = FastAPI(
    title="Guest Portal API",
    description="Hotel guest portal: bookings, service requests, notifications and loyalty points",
    version=settings.service_version,
    docs_url="/",
    redoc_url=None,
    lifespan=lifespan,
)

# Setup CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup OpenTelemetry
tracer, meter = setup_telemetry(app, engine)

# Create custom metrics
search_counter = meter.create_counter(
    name="room_searches_total",
    description="Total number of room searches",
    unit="1",
)

booking_counter = meter.create_counter(
    name="bookings_total",
    description="Total number of bookings created",
    unit="1",
)

transition_counter = meter.create_counter(
    name="booking_transitions_total",
    description="Total number of booking status changes and modifications",
    unit="1",
)

service_request_counter = meter.create_counter(
    name="service_requests_total",
    description="Total number of service request submissions and cancellations",
    unit="1",
)

loyalty_points_counter = meter.create_counter(
    name="loyalty_points_awarded_total",
    description="Total loyalty points awarded on checkout",
    unit="1",
)

feature_flag_counter = meter.create_counter(
    name="feature_flag_evaluations_total",
    description="Total number of feature flag evaluations",
    unit="1",
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def room_to_dict(room: Room) -> dict:
    return {
        "id": room.id,
        "hotel_id": room.hotel_id,
        "type": room.type,
        "capacity": room.capacity,
        "price_per_night": room.price_per_night,
        "floor": room.floor,
        "amenities": room.amenity_list(),
        "status": room.status,
        "image": room.image,
    }


def booking_to_model(booking: Booking) -> BookingModel:
    return BookingModel(
        id=booking.id,
        user_id=booking.user_id,
        hotel_id=booking.hotel_id,
        room_id=booking.room_id,
        hotel_name=booking.hotel.name,
        room_type=booking.room.type,
        check_in=booking.check_in,
        check_out=booking.check_out,
        guests=booking.guests,
        total_amount=booking.total_amount,
        refund_amount=booking.refund_amount,
        status=booking.status,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def booking_response(message: str, result: bookings.BookingResult) -> BookingResponse:
    return BookingResponse(
        message=message,
        booking=booking_to_model(result.booking),
        refund_amount=result.refund_amount,
        points_awarded=result.points_awarded,
        warnings=result.warnings,
    )


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "flipt_connected": flipt_service.client is not None,
    }


@app.post("/api/auth/login", response_model=LoginResponse)
def login(credentials: LoginRequest, session: Session = Depends(get_session)):
    """Check an email/password pair and return the guest's identity."""
    with tracer.start_as_current_span("login"):
        user = accounts.login(session, credentials.email, credentials.password)
        return LoginResponse(message="Login successful", user=UserSummary.model_validate(user))


@app.get("/api/users/{user_id}", response_model=UserProfile)
def get_user(user_id: str, caller: User = Depends(accounts.get_current_user)):
    with tracer.start_as_current_span("get_user") as span:
        span.set_attribute("user_id", user_id)
        return UserProfile.model_validate(accounts.get_profile(caller, user_id))


@app.patch("/api/users/{user_id}", response_model=UserProfile)
def update_user(
    user_id: str,
    update_request: ProfileUpdateRequest,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    """Update the caller's profile and preferences."""
    with tracer.start_as_current_span("update_user") as span:
        span.set_attribute("user_id", user_id)
        changes = update_request.model_dump(exclude_unset=True)
        user = accounts.update_profile(session, caller, user_id, changes)
        return UserProfile.model_validate(user)


@app.get("/api/hotels", response_model=list[HotelModel])
def list_hotels(session: Session = Depends(get_session)):
    """All hotels with their rooms."""
    with tracer.start_as_current_span("list_hotels"):
        return [
            HotelModel(
                id=hotel.id,
                name=hotel.name,
                location=hotel.location,
                rating=hotel.rating,
                rooms=[RoomModel(**room_to_dict(room)) for room in hotel.rooms],
            )
            for hotel in get_all_hotels(session)
        ]


@app.get("/api/rooms/search", response_model=RoomSearchResponse)
def search_rooms_endpoint(
    location: Optional[str] = Query(None, description="Location to search"),
    check_in: Optional[str] = Query(None, description="Check-in date (ISO format)"),
    check_out: Optional[str] = Query(None, description="Check-out date (ISO format)"),
    guests: int = Query(1, ge=1, le=10, description="Number of guests"),
    room_type: Optional[str] = Query(None, description="Room type, or 'all'"),
    entity_id: str = Query("anonymous", description="User/entity ID for feature flags"),
    session: Session = Depends(get_session),
):
    """
    Search available rooms.
    Feature flags control how prices are displayed.
    """
    with tracer.start_as_current_span("search_rooms") as span:
        span.set_attribute("location", location or "all")
        span.set_attribute("guests", guests)
        span.set_attribute("entity_id", entity_id)

        has_dates = check_in is not None and check_out is not None
        nights = 1
        if has_dates:
            start = bookings.parse_when(check_in, "check_in")
            end = bookings.parse_when(check_out, "check_out")
            if end <= start:
                raise ValidationError("Check-out must be after check-in")
            nights = nights_booked(start, end)

        # Evaluate feature flags
        context = {"guests": str(guests), "has_dates": str(has_dates)}
        price_strategy = flipt_service.get_price_display_strategy(entity_id, context)
        loyalty_enabled = flipt_service.is_loyalty_program_enabled(entity_id, context)

        span.set_attribute("feature.price_strategy", price_strategy)
        span.set_attribute("feature.loyalty_program", loyalty_enabled)
        feature_flag_counter.add(1, {"flag": "price-display-strategy", "value": price_strategy})
        feature_flag_counter.add(1, {"flag": "loyalty-program", "value": str(loyalty_enabled)})

        results = []
        for room in search_rooms(session, location, guests, room_type):
            price_info = calculate_price_with_strategy(float(room.price_per_night), nights, price_strategy)
            result = RoomSearchResult(
                **room_to_dict(room),
                hotel_name=room.hotel.name,
                location=room.hotel.location,
                price=price_info["display_price"],
                price_label=price_info["label"],
                price_breakdown=price_info["breakdown"],
            )
            if loyalty_enabled:
                result.loyalty_member_price = round(price_info["display_price"] * 0.9, 2)
            results.append(result)

        search_counter.add(1, {"location": location or "all", "has_dates": str(has_dates)})
        logger.info(
            f"Search completed: {len(results)} rooms, "
            f"strategy={price_strategy}, loyalty={loyalty_enabled}"
        )

        return RoomSearchResponse(
            rooms=results,
            total_count=len(results),
            price_display_strategy=price_strategy,
            loyalty_program_enabled=loyalty_enabled,
        )


@app.post("/api/bookings", response_model=BookingResponse, status_code=201)
def create_booking(
    booking: BookingRequest,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    """Book a room for the caller."""
    with tracer.start_as_current_span("create_booking") as span:
        span.set_attribute("hotel_id", booking.hotel_id)
        span.set_attribute("room_id", booking.room_id)

        result = bookings.create_booking(
            session,
            caller,
            hotel_id=booking.hotel_id,
            room_id=booking.room_id,
            check_in=booking.check_in,
            check_out=booking.check_out,
            guests=booking.guests,
            total_amount=booking.total_amount,
        )
        booking_counter.add(1, {"hotel_id": booking.hotel_id})
        return booking_response("Booking created successfully", result)


@app.get("/api/bookings", response_model=BookingListResponse)
def list_bookings(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.bookings_page_size, ge=1, le=100),
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    """The caller's bookings, newest first."""
    with tracer.start_as_current_span("list_bookings") as span:
        span.set_attribute("page", page)
        items, total, total_pages = bookings.list_bookings(session, caller, page, limit)
        return BookingListResponse(
            bookings=[booking_to_model(b) for b in items],
            total=total,
            page=page,
            total_pages=total_pages,
        )


@app.get("/api/bookings/{booking_id}", response_model=BookingModel)
def get_booking(
    booking_id: str,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    with tracer.start_as_current_span("get_booking") as span:
        span.set_attribute("booking_id", booking_id)
        return booking_to_model(bookings.get_booking(session, caller, booking_id))


@app.patch("/api/bookings/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    update_request: BookingUpdateRequest,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    """
    Cancel, check in or check out a booking, or change its dates and guests.
    A single request does one or the other.
    """
    with tracer.start_as_current_span("update_booking") as span:
        span.set_attribute("booking_id", booking_id)
        changes = update_request.model_dump(exclude_none=True)
        status = changes.pop("status", None)

        if status and changes:
            raise ValidationError("Status changes cannot be combined with date or guest changes")

        if status:
            span.set_attribute("updated.status", status)
            result = bookings.update_booking_status(session, caller, booking_id, status)
            transition_counter.add(1, {"status": status})
            if result.points_awarded:
                loyalty_points_counter.add(result.points_awarded)
            message = "Booking cancelled successfully" if status == "cancelled" else "Booking updated successfully"
        else:
            result = bookings.modify_booking(session, caller, booking_id, **changes)
            transition_counter.add(1, {"status": "modified"})
            message = "Booking updated successfully"

        return booking_response(message, result)


@app.post("/api/service-requests", response_model=ServiceRequestResponse, status_code=201)
def create_service_request(
    request_body: ServiceRequestCreate,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    with tracer.start_as_current_span("create_service_request") as span:
        span.set_attribute("service_type", request_body.service_type)
        result = service_requests.create_service_request(
            session, caller, request_body.service_type, request_body.description, request_body.priority
        )
        service_request_counter.add(1, {"action": "created", "priority": result.request.priority})
        return ServiceRequestResponse(
            message="Service request created successfully",
            request=ServiceRequestModel.model_validate(result.request),
            warnings=result.warnings,
        )


@app.get("/api/service-requests", response_model=ServiceRequestListResponse)
def list_service_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.service_requests_page_size, ge=1, le=100),
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    with tracer.start_as_current_span("list_service_requests"):
        items, total, total_pages = service_requests.list_service_requests(session, caller, page, limit)
        return ServiceRequestListResponse(
            requests=[ServiceRequestModel.model_validate(r) for r in items],
            total=total,
            page=page,
            total_pages=total_pages,
        )


@app.patch("/api/service-requests/{request_id}", response_model=ServiceRequestResponse)
def update_service_request(
    request_id: str,
    update_request: ServiceRequestUpdate,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    """Cancel a pending service request. Other statuses are set by staff tooling."""
    with tracer.start_as_current_span("update_service_request") as span:
        span.set_attribute("request_id", request_id)
        if update_request.status != "cancelled":
            raise ValidationError("Only cancellation is currently supported")

        result = service_requests.cancel_service_request(session, caller, request_id)
        service_request_counter.add(1, {"action": "cancelled", "priority": result.request.priority})
        return ServiceRequestResponse(
            message="Service request cancelled successfully",
            request=ServiceRequestModel.model_validate(result.request),
            warnings=result.warnings,
        )


@app.get("/api/notifications", response_model=NotificationListResponse)
def list_notifications(
    limit: int = Query(settings.notifications_limit, ge=1, le=100),
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    with tracer.start_as_current_span("list_notifications"):
        items = notifications.list_notifications(session, caller.id, limit)
        return NotificationListResponse(
            notifications=[NotificationModel.model_validate(n) for n in items]
        )


@app.patch("/api/notifications/{notification_id}", response_model=NotificationModel)
def mark_notification_read(
    notification_id: str,
    update_request: NotificationUpdate,
    caller: User = Depends(accounts.get_current_user),
    session: Session = Depends(get_session),
):
    with tracer.start_as_current_span("mark_notification_read") as span:
        span.set_attribute("notification_id", notification_id)
        with transaction(session, "mark notification read"):
            notification = notifications.mark_read(session, caller.id, notification_id, update_request.read)
        return NotificationModel.model_validate(notification)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
