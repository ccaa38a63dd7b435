from __future__ import annotations
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import mongomock
import pytest

from tableside.schemas import (
    CartItem, CustomizationChoice, CustomizationGroup, GroupOrder, MenuItem, Order, OrderType,
    OrderValidation, Review, ReviewStats, TableSeating, TimeSlot, User,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def pizza() -> MenuItem:
    return MenuItem(
        id="pizza1",
        name="Pepperoni Pizza",
        description="Classic pepperoni pizza with mozzarella",
        price=18.99,
        category="Pizza",
        subcategory="Classic Pizzas",
        allergens=["dairy", "gluten"],
        preparation_time=20,
        customization_options=[
            CustomizationGroup(id="size", name="Size", options=[
                CustomizationChoice(id="medium", name="Medium", price=0),
                CustomizationChoice(id="large", name="Large", price=4),
            ]),
            CustomizationGroup(id="extra", name="Extra Toppings", options=[
                CustomizationChoice(id="cheese", name="Extra Cheese", price=2),
                CustomizationChoice(id="pepperoni", name="Extra Pepperoni", price=2.5),
            ]),
        ],
    )


@pytest.fixture
def salad() -> MenuItem:
    return MenuItem(id="salad1", name="Garden Salad", price=9.5, category="Salads",
                    allergens=["nuts"], preparation_time=5)


@pytest.fixture
def user() -> User:
    return User(id="user1", name="Ada Diner", email="ada@tableside.io",
                preferences={"allergens": ["nuts"]})


@pytest.fixture
def table() -> TableSeating:
    return TableSeating(id="table1", number=4, capacity=4, qr_code="QR-T4")


@pytest.fixture
def group_order(table) -> GroupOrder:
    return GroupOrder(id="group1", table_id=table.id, join_code="ABC123",
                      expires_at=datetime.now(timezone.utc) + timedelta(hours=1))


@pytest.fixture
def time_slots():
    return [
        TimeSlot(id="slot1", time="18:00", is_available=True),
        TimeSlot(id="slot2", time="18:30", is_available=True),
        TimeSlot(id="slot3", time="19:00", is_available=False),
    ]


def cart_line(item_id: str, menu_item_id: str, price: float, quantity: int = 1, **owner) -> CartItem:
    owner = owner or {"user_id": "user1"}
    return CartItem(id=item_id, menu_item_id=menu_item_id, price=price, quantity=quantity, **owner)


@pytest.fixture
def menu_service(pizza):
    svc = AsyncMock()
    svc.get_menu_items.return_value = [pizza]
    svc.get_menu_categories.return_value = ["Pizza", "Pasta", "Drinks"]
    svc.get_menu_item_details.return_value = pizza
    svc.check_item_availability.return_value = True
    svc.get_popular_items.return_value = [pizza]
    svc.search_items.return_value = [pizza]
    return svc


@pytest.fixture
def review_service():
    svc = AsyncMock()
    svc.get_menu_item_reviews.return_value = [
        Review(id="review1", user_id="user1", menu_item_id="pizza1", rating=5, comment="Best pizza in town!"),
    ]
    svc.get_review_stats.return_value = ReviewStats(average_rating=4.8, total_reviews=156,
                                                    rating_distribution={5: 120, 4: 30, 3: 4, 2: 1, 1: 1})
    return svc


@pytest.fixture
def cart_service():
    svc = AsyncMock()
    svc.get_cart_items.return_value = []
    svc.add_to_cart.side_effect = lambda item: item
    svc.clear_cart.return_value = True
    svc.remove_cart_item.return_value = True
    return svc


@pytest.fixture
def order_service():
    svc = AsyncMock()
    svc.validate_order.return_value = OrderValidation()
    svc.create_order.return_value = Order(id="order1", order_number="20261019-ABC123", type=OrderType.TAKEAWAY)
    svc.get_estimated_preparation_time.return_value = 25
    return svc


@pytest.fixture
def schedule_service(time_slots):
    svc = AsyncMock()
    svc.get_available_pickup_times.return_value = time_slots
    svc.validate_pickup_time.return_value = True
    svc.get_estimated_pickup_time.return_value = "18:30"
    return svc


@pytest.fixture
def user_service(user):
    svc = AsyncMock()
    svc.get_current_user.return_value = user
    svc.get_user_preferences.return_value = user.preferences
    return svc


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    client.drop_database("tableside_test")
    yield client.tableside_test
    client.drop_database("tableside_test")
