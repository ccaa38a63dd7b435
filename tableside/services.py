from __future__ import annotations
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tableside.calculators import price_of
from tableside.errors import (
    ItemNotFoundError, ItemUnavailableError, NoUserError, OrderNotFoundError,
)
from tableside.interfaces import CartService, MenuService, OrderService, ScheduleService, UserService
from tableside.order_flow import transition
from tableside.schemas import (
    CartItem, CartItemCustomization, ErrorKind, MenuItem, OperationResult, OrderConfirmation,
    OrderStatus, OrderType, OrderValidation, PlaceOrderResult, TimeSlot, User,
)

logger = logging.getLogger(__name__)

PICKUP_TIME_UNAVAILABLE = "Selected pickup time is no longer available"


def error_kind_for(exc: Exception) -> ErrorKind:
    if isinstance(exc, (ItemNotFoundError, OrderNotFoundError)):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, ItemUnavailableError):
        return ErrorKind.UNAVAILABLE
    if isinstance(exc, (NoUserError, ValueError)):
        return ErrorKind.VALIDATION
    return ErrorKind.COLLABORATOR


async def require_user(users: UserService) -> User:
    user = await users.get_current_user()
    if not user:
        raise NoUserError()
    return user


# ============== CART ==================
class CartManagementService:
    def __init__(self, cart_service: CartService, user_service: UserService):
        self.cart_service = cart_service
        self.user_service = user_service

    async def current_cart(self) -> List[CartItem]:
        user = await require_user(self.user_service)
        return await self.cart_service.get_cart_items(user.id)

    async def add_item(self, menu_item: MenuItem, quantity: int, customizations: CartItemCustomization,
                       special_instructions: Optional[str] = None) -> OperationResult:
        try:
            user = await require_user(self.user_service)
            now = datetime.now(timezone.utc)
            item = CartItem(
                id=str(uuid.uuid4()),
                menu_item_id=menu_item.id,
                quantity=quantity,
                price=price_of(menu_item, customizations),
                customizations=customizations,
                special_instructions=special_instructions or "",
                user_id=user.id,
                added_at=now,
                updated_at=now,
            )
            await self.cart_service.add_to_cart(item)
            return OperationResult(success=True)
        except Exception as e:
            logger.warning("add_item failed for menu item %s: %s", menu_item.id, e)
            return OperationResult(success=False, error=str(e) or "Failed to add item", error_kind=error_kind_for(e))

    async def update_quantity(self, item_id: str, quantity: int) -> OperationResult:
        # quantity bounds are the store's business
        try:
            await self.cart_service.update_cart_item(item_id, {"quantity": quantity})
            return OperationResult(success=True)
        except Exception as e:
            logger.warning("update_quantity failed for cart item %s: %s", item_id, e)
            return OperationResult(success=False, error=str(e) or "Failed to update quantity",
                                   error_kind=error_kind_for(e))

    async def remove_item(self, item_id: str) -> OperationResult:
        try:
            removed = await self.cart_service.remove_cart_item(item_id)
            if not removed:
                return OperationResult(success=False, error="Cart item not found", error_kind=ErrorKind.NOT_FOUND)
            return OperationResult(success=True)
        except Exception as e:
            logger.warning("remove_item failed for cart item %s: %s", item_id, e)
            return OperationResult(success=False, error=str(e) or "Failed to remove item",
                                   error_kind=error_kind_for(e))

    async def clear(self) -> OperationResult:
        try:
            user = await require_user(self.user_service)
            await self.cart_service.clear_cart(user.id)
            return OperationResult(success=True)
        except Exception as e:
            logger.warning("clearing cart failed: %s", e)
            return OperationResult(success=False, error=str(e) or "Failed to clear cart",
                                   error_kind=error_kind_for(e))


# ============== MENU ==================
class MenuQueryService:
    def __init__(self, menu_service: MenuService):
        self.menu_service = menu_service

    async def initial_page_data(self) -> Dict[str, Any]:
        categories, popular_items = await asyncio.gather(
            self.menu_service.get_menu_categories(),
            self.menu_service.get_popular_items(),
        )
        return {"categories": categories, "popular_items": popular_items}

    async def filtered_items(self, category: Optional[str] = None,
                             search_term: Optional[str] = None) -> List[MenuItem]:
        return await self.menu_service.get_menu_items(
            search=search_term,
            filters={"category": category} if category else {},
        )

    async def item_with_availability(self, item_id: str) -> Dict[str, Any]:
        item, is_available = await asyncio.gather(
            self.menu_service.get_menu_item_details(item_id),
            self.menu_service.check_item_availability(item_id),
        )
        return {"item": item, "is_available": is_available}


# ============== ORDERS ==================
class OrderProcessingService:
    def __init__(self, order_service: OrderService, schedule_service: ScheduleService,
                 cart_service: CartService, user_service: UserService):
        self.order_service = order_service
        self.schedule_service = schedule_service
        self.cart_service = cart_service
        self.user_service = user_service

    async def validate_takeaway_order(self, items: List[CartItem], pickup_time: str) -> OrderValidation:
        order_validation, time_ok = await asyncio.gather(
            self.order_service.validate_order({"type": OrderType.TAKEAWAY.value}),
            self.schedule_service.validate_pickup_time(pickup_time),
        )
        # an unavailable slot masks whatever the order check reported
        if not time_ok:
            return OrderValidation(errors=[PICKUP_TIME_UNAVAILABLE])
        return order_validation

    async def place_order(self, items: List[CartItem], pickup_time: str, payment_method: str,
                          special_instructions: Optional[str] = None,
                          idempotency_key: Optional[str] = None) -> PlaceOrderResult:
        try:
            user = await require_user(self.user_service)
            validation = await self.validate_takeaway_order(items, pickup_time)
            if not validation.is_valid:
                return PlaceOrderResult(error=validation.errors[0], error_kind=ErrorKind.VALIDATION)

            order = await self.order_service.create_order(
                user_id=user.id,
                table_id=None,
                items=items,
                order_type=OrderType.TAKEAWAY,
                pickup_time=pickup_time,
                special_instructions=special_instructions,
                payment_method=payment_method,
                idempotency_key=idempotency_key,
            )
            logger.info("Takeaway order %s placed for user %s at %s", order.id, user.id, pickup_time)
        except Exception as e:
            logger.warning("place_order failed: %s", e)
            return PlaceOrderResult(error=str(e) or "Failed to place order", error_kind=error_kind_for(e))

        try:
            await self.cart_service.clear_cart(user.id)
        except Exception as e:
            logger.error("Order %s created but cart of user %s was not cleared: %s", order.id, user.id, e)
            return PlaceOrderResult(error=str(e) or "Failed to place order", error_kind=ErrorKind.COLLABORATOR)
        return PlaceOrderResult(order_id=order.id)

    async def get_order_confirmation(self, order_id: str) -> OrderConfirmation:
        return await self.order_service.get_order_confirmation(order_id)

    async def get_time_information(self) -> Dict[str, Any]:
        user = await require_user(self.user_service)
        cart = await self.cart_service.get_cart_items(user.id)
        menu_item_ids = [it.menu_item_id for it in cart]

        slots, prep_time = await asyncio.gather(
            self.schedule_service.get_available_pickup_times(),
            self.order_service.get_estimated_preparation_time(menu_item_ids),
        )
        return {"available_slots": slots, "preparation_time": prep_time}

    async def estimated_pickup_time(self) -> str:
        info = await self.get_time_information()
        return await self.schedule_service.get_estimated_pickup_time(info["preparation_time"])

    async def available_slots(self) -> List[TimeSlot]:
        return (await self.get_time_information())["available_slots"]

    async def update_order_status(self, order_id: str, status: OrderStatus) -> OrderStatus:
        order = await self.order_service.get_order(order_id)
        target = transition(order.status, status)
        await self.order_service.update_order_status(order_id, target)
        logger.info("Order %s: %s -> %s", order_id, order.status.value, target.value)
        return target
