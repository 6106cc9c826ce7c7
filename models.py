from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Login request."""
    email: str
    password: str


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    email: str


class LoginResponse(BaseModel):
    message: str
    user: UserSummary


class UserProfile(BaseModel):
    """Guest profile, including the loyalty balance."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None
    loyalty_points: int
    language: str
    currency: str
    created_at: Optional[datetime] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None
    language: Optional[str] = None
    currency: Optional[str] = None


class RoomModel(BaseModel):
    """Room model."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    hotel_id: str
    type: str
    capacity: int
    price_per_night: float
    floor: Optional[int] = None
    amenities: list[str]
    status: str
    image: Optional[str] = None


class HotelModel(BaseModel):
    """Hotel model."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    location: str
    rating: float = Field(ge=0, le=5)
    rooms: list[RoomModel] = []


class RoomSearchResult(RoomModel):
    hotel_name: str
    location: str
    price: float
    price_label: str
    price_breakdown: Optional[dict] = None
    loyalty_member_price: Optional[float] = None


class RoomSearchResponse(BaseModel):
    """Room search response."""
    rooms: list[RoomSearchResult]
    total_count: int
    price_display_strategy: str
    loyalty_program_enabled: bool


class BookingRequest(BaseModel):
    """Booking request."""
    hotel_id: str
    room_id: str
    check_in: str  # ISO date or datetime string
    check_out: str  # ISO date or datetime string
    guests: int
    total_amount: Decimal = Field(ge=0)


class BookingUpdateRequest(BaseModel):
    """Either a status change or a modification of a confirmed booking."""
    status: Optional[str] = Field(None, description="Target status (cancelled, checked-in, checked-out)")
    check_in: Optional[str] = Field(None, description="New check-in date")
    check_out: Optional[str] = Field(None, description="New check-out date")
    guests: Optional[int] = Field(None, description="New guest count")


class BookingModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    hotel_id: str
    room_id: str
    hotel_name: str
    room_type: str
    check_in: datetime
    check_out: datetime
    guests: int
    total_amount: float
    refund_amount: Optional[float] = None
    status: str
    created_at: datetime
    updated_at: datetime


class BookingResponse(BaseModel):
    """Booking response for create and update."""
    message: str
    booking: BookingModel
    refund_amount: Optional[float] = None
    points_awarded: int = 0
    warnings: list[str] = []


class BookingListResponse(BaseModel):
    bookings: list[BookingModel]
    total: int
    page: int
    total_pages: int


class ServiceRequestCreate(BaseModel):
    service_type: str
    description: str
    priority: Optional[str] = "medium"


class ServiceRequestUpdate(BaseModel):
    status: str


class ServiceRequestModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    guest_id: str
    type: str
    description: str
    priority: str
    status: str
    created_at: datetime


class ServiceRequestResponse(BaseModel):
    message: str
    request: ServiceRequestModel
    warnings: list[str] = []


class ServiceRequestListResponse(BaseModel):
    requests: list[ServiceRequestModel]
    total: int
    page: int
    total_pages: int


class NotificationModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: str
    title: str
    message: str
    read: bool
    created_at: datetime


class NotificationUpdate(BaseModel):
    read: bool = True


class NotificationListResponse(BaseModel):
    notifications: list[NotificationModel]
