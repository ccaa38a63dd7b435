"""Collaborator contracts consumed by the ordering services.

Every method is a request/response coroutine. Implementations raise
request-specific faults (see ``tableside.errors``) instead of returning
sentinel values, except where a boolean answer is the contract.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from tableside.schemas import (
    CartItem, GroupOrder, MenuItem, Order, OrderConfirmation, OrderStatus, OrderType,
    OrderValidation, Review, ReviewStats, TableSeating, TimeSlot, User,
)


class MenuService(ABC):
    """Menu catalog."""

    @abstractmethod
    async def get_menu_items(self, search: Optional[str] = None,
                             filters: Optional[Dict[str, Any]] = None) -> List[MenuItem]:
        pass

    @abstractmethod
    async def get_menu_categories(self) -> List[str]:
        pass

    @abstractmethod
    async def get_menu_item_details(self, item_id: str) -> MenuItem:
        """Raises ItemNotFoundError for an unknown id."""
        pass

    @abstractmethod
    async def check_item_availability(self, item_id: str) -> bool:
        pass

    @abstractmethod
    async def get_popular_items(self) -> List[MenuItem]:
        pass

    @abstractmethod
    async def search_items(self, term: str) -> List[MenuItem]:
        pass


class ReviewService(ABC):
    @abstractmethod
    async def get_menu_item_reviews(self, menu_item_id: str) -> List[Review]:
        pass

    @abstractmethod
    async def get_review_stats(self, menu_item_id: str) -> ReviewStats:
        pass


class CartService(ABC):
    """Per-user cart store."""

    @abstractmethod
    async def add_to_cart(self, item: CartItem) -> CartItem:
        pass

    @abstractmethod
    async def get_cart_items(self, user_id: str) -> List[CartItem]:
        pass

    @abstractmethod
    async def update_cart_item(self, cart_item_id: str, updates: Dict[str, Any]) -> CartItem:
        pass

    @abstractmethod
    async def remove_cart_item(self, cart_item_id: str) -> bool:
        pass

    @abstractmethod
    async def clear_cart(self, user_id: str) -> bool:
        pass


class OrderService(ABC):
    """Order store."""

    @abstractmethod
    async def create_order(self, user_id: str, table_id: Optional[str], items: List[CartItem],
                           group_order_id: Optional[str] = None,
                           order_type: OrderType = OrderType.DINE_IN,
                           pickup_time: Optional[str] = None,
                           special_instructions: Optional[str] = None,
                           payment_method: Optional[str] = None,
                           idempotency_key: Optional[str] = None) -> Order:
        pass

    @abstractmethod
    async def validate_order(self, order: Dict[str, Any]) -> OrderValidation:
        """Validate a partial order shape, e.g. ``{"type": "takeaway"}``."""
        pass

    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        pass

    @abstractmethod
    async def update_order_status(self, order_id: str, status: OrderStatus) -> bool:
        pass

    @abstractmethod
    async def get_order_confirmation(self, order_id: str) -> OrderConfirmation:
        pass

    @abstractmethod
    async def get_estimated_preparation_time(self, menu_item_ids: List[str]) -> int:
        pass


class ScheduleService(ABC):
    """Takeaway pickup scheduling."""

    @abstractmethod
    async def get_available_pickup_times(self) -> List[TimeSlot]:
        pass

    @abstractmethod
    async def validate_pickup_time(self, time: str) -> bool:
        pass

    @abstractmethod
    async def get_estimated_pickup_time(self, preparation_time: int) -> str:
        pass


class UserService(ABC):
    """Identity of the caller."""

    @abstractmethod
    async def get_current_user(self) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_preferences(self, user_id: str) -> Dict[str, Any]:
        pass


class TableService(ABC):
    @abstractmethod
    async def get_table_by_qr(self, qr_code: str) -> TableSeating:
        pass

    @abstractmethod
    async def validate_table_status(self, table_id: str) -> bool:
        pass


class QRCodeService(ABC):
    @abstractmethod
    async def validate_qr_code(self, code: str) -> bool:
        pass

    @abstractmethod
    async def get_table_from_qr(self, code: str) -> TableSeating:
        pass


class GroupOrderService(ABC):
    """Shared table-scoped carts."""

    @abstractmethod
    async def create_group_order(self, table_id: str, user_id: str) -> GroupOrder:
        pass

    @abstractmethod
    async def join_group_order(self, join_code: str, user_id: str) -> Optional[GroupOrder]:
        """The joined group, or None when the code is unknown, inactive or expired."""
        pass

    @abstractmethod
    async def get_group_order_items(self, group_id: str) -> List[CartItem]:
        pass

    @abstractmethod
    async def add_group_item(self, item: CartItem) -> CartItem:
        pass
