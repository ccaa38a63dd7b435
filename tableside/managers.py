from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tableside.calculators import TAX_RATE, price_of, sum_lines, totals
from tableside.config import settings
from tableside.errors import (
    ItemUnavailableError, NoActiveGroupOrderError, NoTableError, NoUserError, WrongChannelError,
)
from tableside.interfaces import (
    CartService, GroupOrderService, MenuService, OrderService, QRCodeService, ReviewService,
    ScheduleService, TableService, UserService,
)
from tableside.schemas import (
    CartItem, CartItemCustomization, ConfirmOrderResult, ErrorKind, GroupOrder, MenuItem,
    OperationResult, OrderConfirmation, OrderSummary, OrderType, OrderValidation, PlaceOrderResult,
    QRScanResult, TableSeating, TimeSlot, User,
)
from tableside.services import CartManagementService, MenuQueryService, OrderProcessingService

logger = logging.getLogger(__name__)

ITEMS_UNAVAILABLE = "Some items are no longer available"


@dataclass
class DiningSession:
    """Per-diner state. Owned by the caller and passed into every manager call."""

    order_type: OrderType = OrderType.DINE_IN
    user: Optional[User] = None
    table: Optional[TableSeating] = None
    group_order: Optional[GroupOrder] = None
    menu_items: List[MenuItem] = field(default_factory=list)

    def require_user(self) -> User:
        if not self.user:
            raise NoUserError("User not initialized")
        return self.user

    def require_group_order(self) -> GroupOrder:
        if not self.group_order or not self.group_order.is_open():
            raise NoActiveGroupOrderError()
        return self.group_order


# ============== TAKEAWAY ==================
class TakeawayPageManager:
    def __init__(self, menu_service: MenuService, review_service: ReviewService, cart_service: CartService,
                 order_service: OrderService, user_service: UserService, schedule_service: ScheduleService):
        self.menu_query = MenuQueryService(menu_service)
        self.cart_manager = CartManagementService(cart_service, user_service)
        self.order_processor = OrderProcessingService(order_service, schedule_service, cart_service, user_service)
        self.review_service = review_service

    async def initialize_page(self) -> Dict[str, Any]:
        return await self.menu_query.initial_page_data()

    async def filter_by_category(self, category: str) -> List[MenuItem]:
        return await self.menu_query.filtered_items(category=category)

    async def search_with_suggestions(self, search_term: str) -> List[MenuItem]:
        return await self.menu_query.filtered_items(search_term=search_term)

    async def get_item_details(self, menu_item_id: str) -> Dict[str, Any]:
        return await self.menu_query.item_with_availability(menu_item_id)

    async def get_item_reviews(self, item_id: str) -> Dict[str, Any]:
        reviews, stats = await asyncio.gather(
            self.review_service.get_menu_item_reviews(item_id),
            self.review_service.get_review_stats(item_id),
        )
        return {"reviews": reviews, "stats": stats}

    def calculate_item_price(self, base_item: MenuItem, customizations: CartItemCustomization) -> float:
        return price_of(base_item, customizations)

    async def add_to_cart(self, menu_item: MenuItem, quantity: int, customizations: CartItemCustomization,
                          special_instructions: Optional[str] = None) -> OperationResult:
        return await self.cart_manager.add_item(menu_item, quantity, customizations, special_instructions)

    async def update_cart_item_quantity(self, item_id: str, quantity: int) -> OperationResult:
        return await self.cart_manager.update_quantity(item_id, quantity)

    async def remove_cart_item(self, item_id: str) -> OperationResult:
        return await self.cart_manager.remove_item(item_id)

    async def get_cart_summary(self) -> OrderSummary:
        items = await self.cart_manager.current_cart()
        t = totals(items, TAX_RATE)
        return OrderSummary(
            personal_items=items,
            group_items=[],  # takeaway has no shared cart
            subtotal=t.subtotal,
            tax=t.tax,
            total=t.total,
            total_amount=t.total,
            group_total_amount=0,
            applied_discounts=[],
        )

    async def get_available_pickup_times(self) -> List[TimeSlot]:
        return await self.order_processor.available_slots()

    async def get_estimated_preparation_time(self) -> int:
        return (await self.order_processor.get_time_information())["preparation_time"]

    async def get_estimated_pickup_time(self) -> str:
        return await self.order_processor.estimated_pickup_time()

    async def validate_pickup_time(self, time: str) -> OrderValidation:
        return await self.order_processor.validate_takeaway_order([], time)

    async def validate_takeaway_order(self, items: List[CartItem], pickup_time: str) -> OrderValidation:
        return await self.order_processor.validate_takeaway_order(items, pickup_time)

    async def place_takeaway_order(self, items: List[CartItem], pickup_time: str, payment_method: str,
                                   special_instructions: Optional[str] = None,
                                   idempotency_key: Optional[str] = None) -> PlaceOrderResult:
        return await self.order_processor.place_order(
            items, pickup_time, payment_method,
            special_instructions=special_instructions,
            idempotency_key=idempotency_key,
        )

    async def get_order_confirmation(self, order_id: str) -> OrderConfirmation:
        return await self.order_processor.get_order_confirmation(order_id)


# ============== DINE-IN ==================
class MenuPageManager:
    """Dine-in menu page: QR table check-in, group orders and personal checkout."""

    def __init__(self, menu_service: MenuService, review_service: ReviewService, order_service: OrderService,
                 cart_service: CartService, table_service: TableService, qr_code_service: QRCodeService,
                 group_order_service: GroupOrderService, user_service: UserService,
                 schedule_service: ScheduleService, dine_in_tax_rate: Optional[float] = None):
        self.menu_service = menu_service
        self.review_service = review_service
        self.order_service = order_service
        self.cart_service = cart_service
        self.table_service = table_service
        self.qr_code_service = qr_code_service
        self.group_order_service = group_order_service
        self.user_service = user_service
        self.schedule_service = schedule_service
        self.dine_in_tax_rate = settings.DINE_IN_TAX_RATE if dine_in_tax_rate is None else dine_in_tax_rate

    # ---------- session / QR ----------
    async def initialize(self, order_type: OrderType = OrderType.DINE_IN) -> DiningSession:
        user = await self.user_service.get_current_user()
        return DiningSession(order_type=order_type, user=user)

    async def handle_qr_code_scan(self, session: DiningSession, qr_code: str) -> QRScanResult:
        try:
            if not await self.qr_code_service.validate_qr_code(qr_code):
                return QRScanResult(is_valid=False, error="Invalid QR code")

            table = await self.table_service.get_table_by_qr(qr_code)
            if not await self.table_service.validate_table_status(table.id):
                return QRScanResult(is_valid=False, error="Table is not available")
        except Exception as e:
            logger.warning("QR scan %r failed: %s", qr_code, e)
            return QRScanResult(is_valid=False, error="Error processing QR code")

        session.table = table
        return QRScanResult(is_valid=True, table=table)

    async def initialize_group_order(self, session: DiningSession) -> GroupOrder:
        if not session.user or not session.table:
            raise NoTableError()
        group = await self.group_order_service.create_group_order(table_id=session.table.id,
                                                                  user_id=session.user.id)
        session.group_order = group
        logger.info("Group order %s opened at table %s", group.id, session.table.id)
        return group

    async def join_existing_group_order(self, session: DiningSession, join_code: str) -> bool:
        user = session.require_user()
        group = await self.group_order_service.join_group_order(join_code, user.id)
        if not group:
            return False
        session.group_order = group
        return True

    # ---------- menu ----------
    async def load_menu_with_categories(self, session: DiningSession) -> Dict[str, Any]:
        categories, menu_items = await asyncio.gather(
            self.menu_service.get_menu_categories(),
            self.menu_service.get_menu_items(),
        )
        session.menu_items = menu_items
        return {"categories": categories, "menu_items": menu_items}

    async def apply_user_preferences(self, session: DiningSession) -> List[MenuItem]:
        user = session.require_user()
        preferences = await self.user_service.get_user_preferences(user.id)
        return filter_menu_by_preferences(session.menu_items, preferences)

    async def search_menu_items(self, session: DiningSession, search_term: str,
                                filters: Optional[Dict[str, Any]] = None) -> List[MenuItem]:
        items = await self.menu_service.get_menu_items(search=search_term, filters=filters or {})
        session.menu_items = items
        return items

    async def get_item_details(self, menu_item_id: str) -> Dict[str, Any]:
        details, reviews, stats = await asyncio.gather(
            self.menu_service.get_menu_item_details(menu_item_id),
            self.review_service.get_menu_item_reviews(menu_item_id),
            self.review_service.get_review_stats(menu_item_id),
        )
        return {"details": details, "reviews": reviews, "stats": stats}

    def calculate_item_price(self, base_item: MenuItem, customizations: CartItemCustomization) -> float:
        return price_of(base_item, customizations)

    # ---------- cart ----------
    async def add_item_to_cart(self, session: DiningSession, menu_item: MenuItem, quantity: int = 1,
                               customizations: Optional[CartItemCustomization] = None,
                               special_instructions: str = "", shared: bool = False) -> CartItem:
        """Add a line to the diner's cart, or to the table's shared cart when ``shared``."""
        user = session.require_user()
        customizations = customizations or {}
        now = datetime.now(timezone.utc)
        owner: Dict[str, str] = {"user_id": user.id}
        if shared:
            owner = {"group_order_id": session.require_group_order().id}
        item = CartItem(
            id=str(uuid.uuid4()),
            menu_item_id=menu_item.id,
            quantity=quantity,
            price=price_of(menu_item, customizations),
            customizations=customizations,
            special_instructions=special_instructions,
            added_at=now,
            updated_at=now,
            **owner,
        )
        if shared:
            return await self.group_order_service.add_group_item(item)
        return await self.cart_service.add_to_cart(item)

    async def validate_and_add_to_cart(self, session: DiningSession, menu_item_id: str) -> bool:
        if not await self.menu_service.check_item_availability(menu_item_id):
            raise ItemUnavailableError(menu_item_id)
        menu_item = await self.menu_service.get_menu_item_details(menu_item_id)
        await self.add_item_to_cart(session, menu_item, quantity=1)
        return True

    async def update_cart_item_quantity(self, cart_item_id: str, quantity: int) -> CartItem:
        return await self.cart_service.update_cart_item(cart_item_id, {"quantity": quantity})

    # ---------- group orders ----------
    async def get_group_order_items(self, session: DiningSession) -> List[CartItem]:
        group = session.require_group_order()
        return await self.group_order_service.get_group_order_items(group.id)

    async def get_order_summary(self, session: DiningSession) -> OrderSummary:
        user = session.require_user()
        group = session.require_group_order()

        personal_items, group_items = await asyncio.gather(
            self.cart_service.get_cart_items(user.id),
            self.group_order_service.get_group_order_items(group.id),
        )
        personal_total = sum_lines(personal_items)
        group_total = sum_lines(group_items)
        subtotal = personal_total + group_total
        # tax once, on the combined subtotal
        tax = subtotal * self.dine_in_tax_rate
        return OrderSummary(
            personal_items=personal_items,
            group_items=group_items,
            total_amount=personal_total,
            group_total_amount=group_total,
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
        )

    # ---------- validation / checkout ----------
    async def validate_order(self, session: DiningSession, items: List[CartItem],
                             pickup_time: Optional[str] = None) -> OrderValidation:
        validation = await self.order_service.validate_order({"type": session.order_type.value})
        if session.order_type == OrderType.TAKEAWAY and not pickup_time:
            return OrderValidation(errors=["Pickup time is required for takeaway orders"])
        return validation

    async def validate_order_items(self, items: List[CartItem]) -> OrderValidation:
        try:
            checks = await asyncio.gather(
                *(self.menu_service.check_item_availability(it.menu_item_id) for it in items)
            )
        except Exception as e:
            logger.warning("availability check failed: %s", e)
            return OrderValidation(errors=["Error validating order items"])
        if all(checks):
            return OrderValidation()
        return OrderValidation(errors=[ITEMS_UNAVAILABLE])

    async def confirm_personal_order(self, session: DiningSession) -> ConfirmOrderResult:
        if not session.user or not session.table:
            return ConfirmOrderResult(success=False, error="Missing user or table information",
                                      error_kind=ErrorKind.VALIDATION)
        user, table = session.user, session.table
        try:
            cart_items = await self.cart_service.get_cart_items(user.id)
            validation = await self.validate_order_items(cart_items)
            if not validation.is_valid:
                return ConfirmOrderResult(success=False, error=validation.errors[0],
                                          error_kind=ErrorKind.UNAVAILABLE)

            # an empty cart yields an empty order
            order = await self.order_service.create_order(
                user_id=user.id,
                table_id=table.id,
                group_order_id=session.group_order.id if session.group_order else None,
                items=cart_items,
                order_type=OrderType.DINE_IN,
            )
            logger.info("Dine-in order %s confirmed for user %s at table %s", order.id, user.id, table.id)
            await self.cart_service.clear_cart(user.id)
            return ConfirmOrderResult(success=True, order_id=order.id)
        except Exception as e:
            logger.warning("confirm_personal_order failed for user %s: %s", user.id, e)
            return ConfirmOrderResult(success=False, error="Error confirming order",
                                      error_kind=ErrorKind.COLLABORATOR)

    # ---------- takeaway helpers ----------
    async def get_available_pickup_times(self, session: DiningSession) -> List[TimeSlot]:
        if session.order_type != OrderType.TAKEAWAY:
            raise WrongChannelError()
        return await self.schedule_service.get_available_pickup_times()

    async def get_estimated_preparation_time(self, menu_item_ids: List[str]) -> int:
        return await self.order_service.get_estimated_preparation_time(menu_item_ids)

    async def validate_pickup_time(self, time: str) -> bool:
        return await self.schedule_service.validate_pickup_time(time)

    async def get_order_confirmation(self, order_id: str) -> OrderConfirmation:
        return await self.order_service.get_order_confirmation(order_id)


def filter_menu_by_preferences(items: List[MenuItem], preferences: Dict[str, Any]) -> List[MenuItem]:
    """Drop items containing any allergen the diner avoids."""
    avoid = {a.lower() for a in (preferences or {}).get("allergens") or []}
    if not avoid:
        return list(items)
    return [it for it in items if not avoid.intersection(a.lower() for a in it.allergens)]
