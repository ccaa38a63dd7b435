from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, computed_field, model_validator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    NEW = "new"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    PREPARED = "prepared"
    SERVED = "served"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    DINE_IN = "dine_in"
    TAKEAWAY = "takeaway"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    COLLABORATOR = "collaborator"


# ---------- Menu ----------
class CustomizationChoice(BaseModel):
    id: str
    name: str
    price: float = 0


class CustomizationGroup(BaseModel):
    id: str
    name: str
    options: List[CustomizationChoice] = []


# option-group id -> selected option ids
CartItemCustomization = Dict[str, List[str]]


class MenuItem(BaseModel):
    id: str
    name: str
    price: float = Field(..., gt=0)
    category: str
    description: Optional[str] = None
    subcategory: Optional[str] = None
    image: Optional[str] = None
    allergens: List[str] = []
    preparation_time: Optional[int] = None  # minutes
    is_available: bool = True
    is_special: bool = False
    customization_options: List[CustomizationGroup] = []


class Review(BaseModel):
    id: str
    user_id: str
    menu_item_id: Optional[str] = None
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    service_rating: Optional[int] = None
    food_rating: Optional[int] = None
    ambient_rating: Optional[int] = None
    images: List[str] = []
    is_published: bool = True
    created_at: Optional[datetime] = None


class ReviewStats(BaseModel):
    average_rating: float = 0
    total_reviews: int = 0
    rating_distribution: Dict[int, int] = Field(default_factory=lambda: {r: 0 for r in range(1, 6)})


# ---------- Cart ----------
class CartItem(BaseModel):
    id: str
    menu_item_id: str
    quantity: int
    price: float  # resolved at add time, never recomputed
    customizations: CartItemCustomization = {}
    special_instructions: str = ""
    user_id: Optional[str] = None
    group_order_id: Optional[str] = None
    added_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _single_owner(self) -> "CartItem":
        if (self.user_id is None) == (self.group_order_id is None):
            raise ValueError("cart item must belong to exactly one user or group order")
        return self


class Totals(BaseModel):
    subtotal: float
    tax: float
    total: float


class OrderSummary(BaseModel):
    personal_items: List[CartItem] = []
    group_items: List[CartItem] = []
    subtotal: float = 0
    tax: float = 0
    total: float = 0
    total_amount: float = 0  # personal share
    group_total_amount: float = 0
    applied_discounts: List[Dict[str, Any]] = []


# ---------- Users / tables ----------
class User(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str = "customer"
    phone_number: Optional[str] = None
    preferences: Dict[str, Any] = {}
    is_active: bool = True


class TableSeating(BaseModel):
    id: str
    number: int
    capacity: int = Field(..., gt=0)
    status: str = "available"  # available | occupied | reserved | cleaning
    section: Optional[str] = None
    qr_code: Optional[str] = None
    is_active: bool = True


class GroupOrder(BaseModel):
    id: str
    main_order_id: Optional[str] = None
    table_id: str
    join_code: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)
    expires_at: datetime

    def is_open(self, now: Optional[datetime] = None) -> bool:
        now = now or _now()
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return self.is_active and now < expires_at


# ---------- Scheduling / orders ----------
class TimeSlot(BaseModel):
    id: str
    time: str  # HH:MM
    is_available: bool = True


class OrderValidation(BaseModel):
    errors: List[str] = []

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors


class Order(BaseModel):
    id: str
    order_number: str
    user_id: Optional[str] = None
    table_id: Optional[str] = None
    group_order_id: Optional[str] = None
    type: OrderType
    status: OrderStatus = OrderStatus.NEW
    items: List[Dict[str, Any]] = []
    subtotal: float = 0
    tax: float = 0
    total_amount: float = 0
    pickup_time: Optional[str] = None
    special_instructions: Optional[str] = None
    payment_method: Optional[str] = None
    estimated_preparation_time: Optional[int] = None


class OrderConfirmation(BaseModel):
    order_id: str
    order_number: str
    status: OrderStatus
    type: OrderType
    items: List[Dict[str, Any]] = []
    subtotal: float
    tax: float
    total: float
    pickup_time: Optional[str] = None
    estimated_preparation_time: Optional[int] = None


# ---------- Results ----------
class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class PlaceOrderResult(BaseModel):
    order_id: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class ConfirmOrderResult(BaseModel):
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class QRScanResult(BaseModel):
    is_valid: bool
    table: Optional[TableSeating] = None
    error: Optional[str] = None


# ---------- Requests ----------
class AddToCartRequest(BaseModel):
    menu_item_id: str
    quantity: int = 1
    customizations: CartItemCustomization = {}
    special_instructions: Optional[str] = None


class QuantityUpdate(BaseModel):
    quantity: int


class PickupTimeRequest(BaseModel):
    pickup_time: str


class TakeawayOrderRequest(BaseModel):
    pickup_time: str
    payment_method: str = Field(default="cash", description="cash, credit_card, debit_card, mobile_payment")
    special_instructions: Optional[str] = None
    idempotency_key: Optional[str] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class TableRequest(BaseModel):
    qr_code: str
    join_code: Optional[str] = None


class JoinGroupRequest(BaseModel):
    join_code: str


class GroupItemRequest(AddToCartRequest):
    qr_code: str
    join_code: str
    shared: bool = True
