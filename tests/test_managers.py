from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from tableside.errors import (
    ItemUnavailableError, NoActiveGroupOrderError, NoTableError, NoUserError, WrongChannelError,
)
from tableside.managers import DiningSession, MenuPageManager, TakeawayPageManager, filter_menu_by_preferences
from tableside.schemas import GroupOrder, Order, OrderType, OrderValidation
from tableside.services import PICKUP_TIME_UNAVAILABLE
from tests.conftest import cart_line, run


@pytest.fixture
def takeaway(menu_service, review_service, cart_service, order_service, user_service, schedule_service):
    return TakeawayPageManager(menu_service, review_service, cart_service, order_service, user_service,
                               schedule_service)


@pytest.fixture
def group_service(group_order):
    svc = AsyncMock()
    svc.create_group_order.return_value = group_order
    svc.join_group_order.return_value = group_order
    svc.get_group_order_items.return_value = []
    svc.add_group_item.side_effect = lambda item: item
    return svc


@pytest.fixture
def tables(table):
    svc = AsyncMock()
    svc.validate_qr_code.return_value = True
    svc.get_table_by_qr.return_value = table
    svc.validate_table_status.return_value = True
    return svc


@pytest.fixture
def dine_in(menu_service, review_service, order_service, cart_service, tables, group_service, user_service,
            schedule_service):
    return MenuPageManager(menu_service, review_service, order_service, cart_service, tables, tables,
                           group_service, user_service, schedule_service, dine_in_tax_rate=0.0)


@pytest.fixture
def seated(user, table, group_order):
    return DiningSession(user=user, table=table, group_order=group_order)


# ============== TAKEAWAY ==================
class TestTakeawayJourney:
    def test_initialize_page(self, takeaway, pizza):
        data = run(takeaway.initialize_page())
        assert data["categories"] == ["Pizza", "Pasta", "Drinks"]
        assert data["popular_items"] == [pizza]

    def test_filter_and_search(self, takeaway, menu_service):
        run(takeaway.filter_by_category("Pizza"))
        run(takeaway.search_with_suggestions("pepp"))
        calls = [c.kwargs for c in menu_service.get_menu_items.await_args_list]
        assert calls == [{"search": None, "filters": {"category": "Pizza"}},
                         {"search": "pepp", "filters": {}}]

    def test_item_details_and_reviews(self, takeaway, pizza):
        details = run(takeaway.get_item_details("pizza1"))
        assert details == {"item": pizza, "is_available": True}
        reviews = run(takeaway.get_item_reviews("pizza1"))
        assert reviews["stats"].average_rating == 4.8
        assert reviews["reviews"][0].comment == "Best pizza in town!"

    def test_add_to_cart_then_summary(self, takeaway, cart_service, pizza):
        result = run(takeaway.add_to_cart(pizza, 1, {"size": ["large"], "extra": ["cheese"]}))
        assert result.success
        added = cart_service.add_to_cart.await_args.args[0]
        assert added.price == pytest.approx(24.99)

        cart_service.get_cart_items.return_value = [added]
        summary = run(takeaway.get_cart_summary())
        assert summary.personal_items == [added]
        assert summary.group_items == []
        assert summary.subtotal == pytest.approx(24.99)
        assert summary.tax == pytest.approx(2.499)
        assert summary.total == pytest.approx(27.489)
        assert summary.group_total_amount == 0

    def test_calculate_item_price(self, takeaway, pizza):
        assert takeaway.calculate_item_price(pizza, {"extra": ["pepperoni"]}) == pytest.approx(21.49)

    def test_pickup_times_and_prep_time(self, takeaway, time_slots):
        assert run(takeaway.get_available_pickup_times()) == time_slots
        assert run(takeaway.get_estimated_preparation_time()) == 25
        assert run(takeaway.get_estimated_pickup_time()) == "18:30"

    def test_validate_pickup_time(self, takeaway, schedule_service):
        schedule_service.validate_pickup_time.return_value = False
        validation = run(takeaway.validate_pickup_time("19:00"))
        assert validation.errors == [PICKUP_TIME_UNAVAILABLE]

    def test_place_order_and_confirmation(self, takeaway, order_service):
        result = run(takeaway.place_takeaway_order([cart_line("c1", "pizza1", 18.99)], "18:00", "cash"))
        assert result.order_id == "order1"
        run(takeaway.get_order_confirmation("order1"))
        order_service.get_order_confirmation.assert_awaited_once_with("order1")


# ============== DINE-IN ==================
class TestDiningSession:
    def test_initialize_resolves_user(self, dine_in, user):
        session = run(dine_in.initialize())
        assert session.user == user
        assert session.table is None and session.group_order is None
        assert session.order_type == OrderType.DINE_IN

    def test_sessions_are_independent(self, dine_in, table):
        a = run(dine_in.initialize())
        b = run(dine_in.initialize())
        run(dine_in.handle_qr_code_scan(a, "QR-T4"))
        assert a.table == table
        assert b.table is None


class TestQRCodeScan:
    def test_valid_scan_seats_the_session(self, dine_in, user, table):
        session = DiningSession(user=user)
        result = run(dine_in.handle_qr_code_scan(session, "QR-T4"))
        assert result.is_valid and result.table == table
        assert session.table == table

    def test_invalid_code(self, dine_in, tables, user):
        tables.validate_qr_code.return_value = False
        session = DiningSession(user=user)
        result = run(dine_in.handle_qr_code_scan(session, "bogus"))
        assert result.error == "Invalid QR code"
        assert session.table is None

    def test_table_not_available(self, dine_in, tables, user):
        tables.validate_table_status.return_value = False
        result = run(dine_in.handle_qr_code_scan(DiningSession(user=user), "QR-T4"))
        assert result.error == "Table is not available"

    def test_collaborator_fault(self, dine_in, tables, user):
        tables.get_table_by_qr.side_effect = RuntimeError("db down")
        result = run(dine_in.handle_qr_code_scan(DiningSession(user=user), "QR-T4"))
        assert not result.is_valid
        assert result.error == "Error processing QR code"


class TestGroupOrders:
    def test_initialize_needs_table(self, dine_in, user):
        with pytest.raises(NoTableError):
            run(dine_in.initialize_group_order(DiningSession(user=user)))

    def test_initialize_group_order(self, dine_in, group_service, user, table, group_order):
        session = DiningSession(user=user, table=table)
        assert run(dine_in.initialize_group_order(session)) == group_order
        assert session.group_order == group_order
        group_service.create_group_order.assert_awaited_once_with(table_id="table1", user_id="user1")

    def test_join(self, dine_in, group_service, user, group_order):
        session = DiningSession(user=user)
        assert run(dine_in.join_existing_group_order(session, "ABC123"))
        assert session.group_order == group_order

    def test_join_unknown_code(self, dine_in, group_service, user):
        group_service.join_group_order.return_value = None
        session = DiningSession(user=user)
        assert not run(dine_in.join_existing_group_order(session, "ZZZ"))
        assert session.group_order is None

    def test_join_requires_user(self, dine_in):
        with pytest.raises(NoUserError):
            run(dine_in.join_existing_group_order(DiningSession(), "ABC123"))

    def test_group_items_need_open_group(self, dine_in, user, table):
        expired = GroupOrder(id="g0", table_id=table.id, join_code="OLD",
                             expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        with pytest.raises(NoActiveGroupOrderError):
            run(dine_in.get_group_order_items(DiningSession(user=user, table=table, group_order=expired)))


class TestOrderSummary:
    def test_requires_user_and_group(self, dine_in, user, table):
        with pytest.raises(NoUserError):
            run(dine_in.get_order_summary(DiningSession()))
        with pytest.raises(NoActiveGroupOrderError):
            run(dine_in.get_order_summary(DiningSession(user=user, table=table)))

    def test_personal_and_group_totals(self, dine_in, cart_service, group_service, seated):
        personal = [cart_line("c1", "pizza1", 24.99)]
        shared = [cart_line("g1", "salad1", 9.5, quantity=2, group_order_id="group1"),
                  cart_line("g2", "pizza1", 18.99, group_order_id="group1")]
        cart_service.get_cart_items.return_value = personal
        group_service.get_group_order_items.return_value = shared

        summary = run(dine_in.get_order_summary(seated))
        assert summary.personal_items == personal
        assert summary.group_items == shared
        assert summary.total_amount == pytest.approx(24.99)
        assert summary.group_total_amount == pytest.approx(37.99)
        assert summary.subtotal == pytest.approx(62.98)
        assert summary.tax == 0
        assert summary.total == pytest.approx(62.98)

    def test_tax_is_applied_once_on_combined_subtotal(self, menu_service, review_service, order_service,
                                                      cart_service, tables, group_service, user_service,
                                                      schedule_service, seated):
        manager = MenuPageManager(menu_service, review_service, order_service, cart_service, tables, tables,
                                  group_service, user_service, schedule_service, dine_in_tax_rate=0.1)
        cart_service.get_cart_items.return_value = [cart_line("c1", "pizza1", 10.0)]
        group_service.get_group_order_items.return_value = [cart_line("g1", "pizza1", 30.0,
                                                                      group_order_id="group1")]
        summary = run(manager.get_order_summary(seated))
        assert summary.tax == pytest.approx(4.0)
        assert summary.total == pytest.approx(44.0)


class TestCartAndMenu:
    def test_personal_line(self, dine_in, cart_service, seated, pizza):
        item = run(dine_in.add_item_to_cart(seated, pizza, 2, {"size": ["large"]}, "well done"))
        assert item.user_id == "user1" and item.group_order_id is None
        assert item.price == pytest.approx(22.99)
        cart_service.add_to_cart.assert_awaited_once()

    def test_shared_line_goes_to_group_cart(self, dine_in, cart_service, group_service, seated, pizza):
        item = run(dine_in.add_item_to_cart(seated, pizza, shared=True))
        assert item.group_order_id == "group1" and item.user_id is None
        group_service.add_group_item.assert_awaited_once()
        cart_service.add_to_cart.assert_not_called()

    def test_validate_and_add(self, dine_in, cart_service, seated):
        assert run(dine_in.validate_and_add_to_cart(seated, "pizza1"))
        assert cart_service.add_to_cart.await_args.args[0].quantity == 1

    def test_validate_and_add_unavailable(self, dine_in, menu_service, cart_service, seated):
        menu_service.check_item_availability.return_value = False
        with pytest.raises(ItemUnavailableError):
            run(dine_in.validate_and_add_to_cart(seated, "pizza1"))
        cart_service.add_to_cart.assert_not_called()

    def test_load_menu_and_apply_preferences(self, dine_in, menu_service, seated, pizza, salad):
        menu_service.get_menu_items.return_value = [pizza, salad]
        data = run(dine_in.load_menu_with_categories(seated))
        assert data["menu_items"] == [pizza, salad]
        # the diner avoids nuts
        assert run(dine_in.apply_user_preferences(seated)) == [pizza]

    def test_search_replaces_loaded_menu(self, dine_in, seated, pizza):
        items = run(dine_in.search_menu_items(seated, "pepperoni", {"category": "Pizza"}))
        assert items == [pizza]
        assert seated.menu_items == [pizza]

    def test_item_details_with_reviews(self, dine_in, pizza):
        data = run(dine_in.get_item_details("pizza1"))
        assert data["details"] == pizza
        assert data["stats"].total_reviews == 156


def test_filter_menu_without_preferences(pizza, salad):
    assert filter_menu_by_preferences([pizza, salad], {}) == [pizza, salad]
    assert filter_menu_by_preferences([pizza, salad], {"allergens": ["Gluten"]}) == [salad]


class TestValidation:
    def test_takeaway_session_needs_pickup_time(self, dine_in, user):
        session = DiningSession(order_type=OrderType.TAKEAWAY, user=user)
        validation = run(dine_in.validate_order(session, []))
        assert validation.errors == ["Pickup time is required for takeaway orders"]
        assert run(dine_in.validate_order(session, [], "18:00")).is_valid

    def test_dine_in_uses_order_check(self, dine_in, order_service, seated):
        order_service.validate_order.return_value = OrderValidation(errors=["Kitchen closed"])
        assert run(dine_in.validate_order(seated, [])).errors == ["Kitchen closed"]
        order_service.validate_order.assert_awaited_once_with({"type": "dine_in"})

    def test_items_unavailable(self, dine_in, menu_service):
        menu_service.check_item_availability.side_effect = [True, False]
        lines = [cart_line("c1", "pizza1", 18.99), cart_line("c2", "salad1", 9.5)]
        validation = run(dine_in.validate_order_items(lines))
        assert validation.errors == ["Some items are no longer available"]

    def test_items_check_fault(self, dine_in, menu_service):
        menu_service.check_item_availability.side_effect = RuntimeError("boom")
        validation = run(dine_in.validate_order_items([cart_line("c1", "pizza1", 18.99)]))
        assert validation.errors == ["Error validating order items"]


class TestConfirmPersonalOrder:
    def test_missing_table(self, dine_in, user, order_service):
        result = run(dine_in.confirm_personal_order(DiningSession(user=user)))
        assert not result.success
        assert result.error == "Missing user or table information"
        order_service.create_order.assert_not_called()

    def test_confirms_with_group_tag(self, dine_in, cart_service, order_service, seated):
        lines = [cart_line("c1", "pizza1", 24.99)]
        cart_service.get_cart_items.return_value = lines
        order_service.create_order.return_value = Order(id="order7", order_number="n7", type=OrderType.DINE_IN)

        result = run(dine_in.confirm_personal_order(seated))
        assert result.success and result.order_id == "order7"
        order_service.create_order.assert_awaited_once_with(
            user_id="user1", table_id="table1", group_order_id="group1", items=lines,
            order_type=OrderType.DINE_IN,
        )
        cart_service.clear_cart.assert_awaited_once_with("user1")

    def test_without_group(self, dine_in, order_service, user, table):
        run(dine_in.confirm_personal_order(DiningSession(user=user, table=table)))
        assert order_service.create_order.await_args.kwargs["group_order_id"] is None

    def test_empty_cart_creates_empty_order(self, dine_in, order_service, seated):
        result = run(dine_in.confirm_personal_order(seated))
        assert result.success
        assert order_service.create_order.await_args.kwargs["items"] == []

    def test_unavailable_item_rejects_whole_order(self, dine_in, cart_service, menu_service, order_service,
                                                  seated):
        cart_service.get_cart_items.return_value = [cart_line("c1", "pizza1", 18.99)]
        menu_service.check_item_availability.return_value = False
        result = run(dine_in.confirm_personal_order(seated))
        assert not result.success
        assert result.error == "Some items are no longer available"
        order_service.create_order.assert_not_called()
        cart_service.clear_cart.assert_not_called()

    def test_store_fault(self, dine_in, order_service, seated):
        order_service.create_order.side_effect = RuntimeError("db down")
        result = run(dine_in.confirm_personal_order(seated))
        assert result.error == "Error confirming order"


class TestTakeawayHelpers:
    def test_pickup_times_only_for_takeaway(self, dine_in, seated, user, time_slots):
        with pytest.raises(WrongChannelError):
            run(dine_in.get_available_pickup_times(seated))
        session = DiningSession(order_type=OrderType.TAKEAWAY, user=user)
        assert run(dine_in.get_available_pickup_times(session)) == time_slots

    def test_passthroughs(self, dine_in, order_service):
        assert run(dine_in.get_estimated_preparation_time(["pizza1"])) == 25
        assert run(dine_in.validate_pickup_time("18:00")) is True
        run(dine_in.get_order_confirmation("order1"))
        order_service.get_order_confirmation.assert_awaited_once_with("order1")
