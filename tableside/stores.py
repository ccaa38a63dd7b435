"""MongoDB-backed collaborators.

Collections:
- menu_item
- review
- cart_item (owned by a user_id or a group_order_id)
- order
- user
- table_seating
- group_order
"""
from __future__ import annotations
import logging
import re
import secrets
import uuid
import zoneinfo
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from tableside.calculators import totals
from tableside.config import settings
from tableside.database import collection, create_document, serialize, to_object_id, utcnow
from tableside.errors import (
    ItemNotFoundError, NoTableError, OrderNotFoundError, TableNotFoundError,
)
from tableside.interfaces import (
    CartService, GroupOrderService, MenuService, OrderService, QRCodeService, ReviewService,
    ScheduleService, TableService, UserService,
)
from tableside.schemas import (
    CartItem, GroupOrder, MenuItem, Order, OrderConfirmation, OrderStatus, OrderType,
    OrderValidation, Review, ReviewStats, TableSeating, TimeSlot, User,
)

logger = logging.getLogger(__name__)

MENU_FILTER_KEYS = {"category", "subcategory", "is_special", "is_available"}
OPEN_ORDER_STATUSES = [OrderStatus.NEW.value, OrderStatus.CONFIRMED.value,
                       OrderStatus.PREPARING.value, OrderStatus.PREPARED.value]


def restaurant_now() -> datetime:
    return datetime.now(tz=zoneinfo.ZoneInfo(settings.RESTAURANT_TZ))


def _to_menu_item(doc: Dict[str, Any]) -> MenuItem:
    return MenuItem(**serialize(doc))


def _to_cart_item(doc: Dict[str, Any]) -> CartItem:
    return CartItem(**serialize(doc))


def _cart_doc(item: CartItem) -> Dict[str, Any]:
    doc = item.model_dump()
    doc["_id"] = doc.pop("id")
    return doc


class _MongoStore:
    def __init__(self, db: Optional[Database] = None):
        self.db = db

    def col(self, name: str):
        return collection(name, self.db)


# ============== MENU ==================
class MongoMenuService(_MongoStore, MenuService):
    def __init__(self, db: Optional[Database] = None, popular_limit: Optional[int] = None):
        super().__init__(db)
        self.popular_limit = popular_limit or settings.POPULAR_ITEMS_LIMIT

    async def get_menu_items(self, search: Optional[str] = None,
                             filters: Optional[Dict[str, Any]] = None) -> List[MenuItem]:
        q: Dict[str, Any] = {k: v for k, v in (filters or {}).items() if k in MENU_FILTER_KEYS and v is not None}
        if search:
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            q["$or"] = [{"name": pattern}, {"description": pattern}]
        return [_to_menu_item(d) for d in self.col("menu_item").find(q).sort("name", ASCENDING)]

    async def get_menu_categories(self) -> List[str]:
        return sorted(c for c in self.col("menu_item").distinct("category") if c)

    async def get_menu_item_details(self, item_id: str) -> MenuItem:
        doc = self.col("menu_item").find_one({"_id": to_object_id(item_id)})
        if not doc:
            raise ItemNotFoundError(item_id)
        return _to_menu_item(doc)

    async def check_item_availability(self, item_id: str) -> bool:
        doc = self.col("menu_item").find_one({"_id": to_object_id(item_id)}, {"is_available": 1})
        return bool(doc) and doc.get("is_available", True)

    async def get_popular_items(self) -> List[MenuItem]:
        # most ordered by quantity; specials until there is order history
        counts: Counter = Counter()
        for order in self.col("order").find({"status": {"$ne": OrderStatus.CANCELLED.value}}, {"items": 1}):
            for line in order.get("items", []):
                counts[line["menu_item_id"]] += line.get("quantity", 1)

        if not counts:
            cursor = self.col("menu_item").find({"is_special": True, "is_available": {"$ne": False}})
            return [_to_menu_item(d) for d in cursor.limit(self.popular_limit)]

        ranked = [item_id for item_id, _ in counts.most_common()]
        docs = {str(d["_id"]): d for d in self.col("menu_item").find(
            {"_id": {"$in": [to_object_id(i) for i in ranked]}, "is_available": {"$ne": False}})}
        return [_to_menu_item(docs[i]) for i in ranked if i in docs][:self.popular_limit]

    async def search_items(self, term: str) -> List[MenuItem]:
        return await self.get_menu_items(search=term)


class MongoReviewService(_MongoStore, ReviewService):
    async def get_menu_item_reviews(self, menu_item_id: str) -> List[Review]:
        cursor = self.col("review").find({"menu_item_id": menu_item_id, "is_published": {"$ne": False}})
        return [Review(**serialize(d)) for d in cursor.sort("created_at", DESCENDING)]

    async def get_review_stats(self, menu_item_id: str) -> ReviewStats:
        reviews = await self.get_menu_item_reviews(menu_item_id)
        stats = ReviewStats()
        for r in reviews:
            stats.rating_distribution[r.rating] += 1
        stats.total_reviews = len(reviews)
        if reviews:
            stats.average_rating = round(sum(r.rating for r in reviews) / len(reviews), 2)
        return stats


# ============== CART ==================
class MongoCartService(_MongoStore, CartService):
    UPDATABLE = {"quantity", "special_instructions", "customizations", "price"}

    async def add_to_cart(self, item: CartItem) -> CartItem:
        if item.quantity <= 0:
            raise ValueError("Quantity must be positive")
        self.col("cart_item").insert_one(_cart_doc(item))
        return item

    async def get_cart_items(self, user_id: str) -> List[CartItem]:
        cursor = self.col("cart_item").find({"user_id": user_id}).sort("added_at", ASCENDING)
        return [_to_cart_item(d) for d in cursor]

    async def update_cart_item(self, cart_item_id: str, updates: Dict[str, Any]) -> CartItem:
        changes = {k: v for k, v in updates.items() if k in self.UPDATABLE}
        if "quantity" in changes and changes["quantity"] <= 0:
            raise ValueError("Quantity must be positive")
        changes["updated_at"] = utcnow()
        doc = self.col("cart_item").find_one_and_update(
            {"_id": cart_item_id}, {"$set": changes}, return_document=ReturnDocument.AFTER)
        if not doc:
            raise ItemNotFoundError(cart_item_id)
        return _to_cart_item(doc)

    async def remove_cart_item(self, cart_item_id: str) -> bool:
        return self.col("cart_item").delete_one({"_id": cart_item_id}).deleted_count > 0

    async def clear_cart(self, user_id: str) -> bool:
        self.col("cart_item").delete_many({"user_id": user_id})
        return True


# ============== ORDERS ==================
class MongoOrderService(_MongoStore, OrderService):
    def __init__(self, db: Optional[Database] = None, takeaway_enabled: Optional[bool] = None,
                 default_prep_minutes: Optional[int] = None, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(db)
        self.clock = clock or restaurant_now
        self.takeaway_enabled = settings.TAKEAWAY_ENABLED if takeaway_enabled is None else takeaway_enabled
        self.default_prep_minutes = default_prep_minutes or settings.DEFAULT_PREP_MINUTES

    def _tax_rate(self, order_type: OrderType) -> float:
        return settings.DINE_IN_TAX_RATE if order_type == OrderType.DINE_IN else settings.TAX_RATE

    async def create_order(self, user_id: str, table_id: Optional[str], items: List[CartItem],
                           group_order_id: Optional[str] = None,
                           order_type: OrderType = OrderType.DINE_IN,
                           pickup_time: Optional[str] = None,
                           special_instructions: Optional[str] = None,
                           payment_method: Optional[str] = None,
                           idempotency_key: Optional[str] = None) -> Order:
        if idempotency_key:
            existing = self.col("order").find_one({"user_id": user_id, "idempotency_key": idempotency_key})
            if existing:
                logger.info("Order replay for idempotency key %s", idempotency_key)
                return Order(**serialize(existing))

        t = totals(items, self._tax_rate(order_type))
        doc: Dict[str, Any] = {
            "order_number": f"{utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}",
            "user_id": user_id,
            "table_id": table_id,
            "group_order_id": group_order_id,
            "type": order_type.value,
            "status": OrderStatus.NEW.value,
            "items": [{
                "cart_item_id": it.id,
                "menu_item_id": it.menu_item_id,
                "quantity": it.quantity,
                "price": it.price,  # price at time of order
                "customizations": it.customizations,
                "special_instructions": it.special_instructions,
                "status": OrderStatus.NEW.value,
            } for it in items],
            "subtotal": round(t.subtotal, 2),
            "tax": round(t.tax, 2),
            "total_amount": round(t.total, 2),
            "pickup_time": pickup_time,
            "special_instructions": special_instructions,
            "payment_method": payment_method,
            "estimated_preparation_time": await self.get_estimated_preparation_time([it.menu_item_id for it in items]),
        }
        if order_type == OrderType.TAKEAWAY:
            # slot capacity is counted per restaurant day
            doc["pickup_date"] = self.clock().date().isoformat()
        if idempotency_key:
            doc["idempotency_key"] = idempotency_key
        order_id = create_document("order", doc, self.db)
        return await self.get_order(order_id)

    async def validate_order(self, order: Dict[str, Any]) -> OrderValidation:
        errors: List[str] = []
        order_type = order.get("type")
        if order_type not in {t.value for t in OrderType}:
            errors.append(f"Unknown order type: {order_type}")
        elif order_type == OrderType.TAKEAWAY.value and not self.takeaway_enabled:
            errors.append("Takeaway ordering is currently unavailable")

        if "items" in order:
            items = order["items"] or []
            if not items:
                errors.append("Order must contain at least one item")
            for it in items:
                qty = it.quantity if isinstance(it, CartItem) else it.get("quantity", 0)
                if qty <= 0:
                    errors.append("Item quantities must be positive")
                    break
        return OrderValidation(errors=errors)

    async def get_order(self, order_id: str) -> Order:
        doc = self.col("order").find_one({"_id": to_object_id(order_id)})
        if not doc:
            raise OrderNotFoundError(order_id)
        return Order(**serialize(doc))

    async def update_order_status(self, order_id: str, status: OrderStatus) -> bool:
        res = self.col("order").update_one(
            {"_id": to_object_id(order_id)},
            {"$set": {"status": OrderStatus(status).value, "updated_at": utcnow()}},
        )
        return res.matched_count > 0

    async def get_order_confirmation(self, order_id: str) -> OrderConfirmation:
        order = await self.get_order(order_id)
        return OrderConfirmation(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            type=order.type,
            items=order.items,
            subtotal=order.subtotal,
            tax=order.tax,
            total=order.total_amount,
            pickup_time=order.pickup_time,
            estimated_preparation_time=order.estimated_preparation_time,
        )

    async def get_estimated_preparation_time(self, menu_item_ids: List[str]) -> int:
        """Longest item, plus two minutes for every further line."""
        if not menu_item_ids:
            return 0
        docs = self.col("menu_item").find(
            {"_id": {"$in": [to_object_id(i) for i in set(menu_item_ids)]}}, {"preparation_time": 1})
        prep = {str(d["_id"]): d.get("preparation_time") or self.default_prep_minutes for d in docs}
        longest = max(prep.get(i, self.default_prep_minutes) for i in menu_item_ids)
        return longest + 2 * (len(menu_item_ids) - 1)


# ============== SCHEDULE ==================
def _minutes(hhmm: str) -> int:
    hh, mm = hhmm.split(":")
    return int(hh) * 60 + int(mm)


def _hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class MongoScheduleService(_MongoStore, ScheduleService):
    """Fixed-interval pickup slots between opening and closing, capped per slot."""

    def __init__(self, db: Optional[Database] = None, clock: Optional[Callable[[], datetime]] = None,
                 open_at: Optional[str] = None, close_at: Optional[str] = None,
                 slot_minutes: Optional[int] = None, capacity: Optional[int] = None,
                 lead_minutes: Optional[int] = None):
        super().__init__(db)
        self.clock = clock or restaurant_now
        self.open_at = open_at or settings.PICKUP_OPEN
        self.close_at = close_at or settings.PICKUP_CLOSE
        self.slot_minutes = slot_minutes or settings.PICKUP_SLOT_MINUTES
        self.capacity = settings.PICKUP_SLOT_CAPACITY if capacity is None else capacity
        self.lead_minutes = settings.PICKUP_LEAD_MINUTES if lead_minutes is None else lead_minutes

    def _slot_times(self) -> List[str]:
        start, end = _minutes(self.open_at), _minutes(self.close_at)
        return [_hhmm(m) for m in range(start, end + 1, self.slot_minutes)]

    def _booked(self, day: str) -> Counter:
        cursor = self.col("order").find(
            {"type": OrderType.TAKEAWAY.value, "pickup_date": day, "status": {"$in": OPEN_ORDER_STATUSES}},
            {"pickup_time": 1},
        )
        return Counter(d.get("pickup_time") for d in cursor)

    async def get_available_pickup_times(self) -> List[TimeSlot]:
        now = self.clock()
        earliest = now.hour * 60 + now.minute + self.lead_minutes
        booked = self._booked(now.date().isoformat())
        return [
            TimeSlot(
                id=f"slot-{t.replace(':', '')}",
                time=t,
                is_available=_minutes(t) >= earliest and booked[t] < self.capacity,
            )
            for t in self._slot_times()
        ]

    async def validate_pickup_time(self, time: str) -> bool:
        slots = await self.get_available_pickup_times()
        return any(s.time == time and s.is_available for s in slots)

    async def get_estimated_pickup_time(self, preparation_time: int) -> str:
        ready = self.clock() + timedelta(minutes=preparation_time)
        ready_minutes = ready.hour * 60 + ready.minute
        for slot in await self.get_available_pickup_times():
            if slot.is_available and _minutes(slot.time) >= ready_minutes:
                return slot.time
        return ready.strftime("%H:%M")


# ============== USERS ==================
class MongoUserService(_MongoStore, UserService):
    """Resolves the caller from the user id the transport layer authenticated."""

    def __init__(self, user_id: Optional[str], db: Optional[Database] = None):
        super().__init__(db)
        self.user_id = user_id

    async def get_current_user(self) -> Optional[User]:
        if not self.user_id:
            return None
        doc = self.col("user").find_one({"_id": to_object_id(self.user_id), "is_active": {"$ne": False}})
        if not doc:
            return None
        return User(**serialize(doc))

    async def get_user_preferences(self, user_id: str) -> Dict[str, Any]:
        doc = self.col("user").find_one({"_id": to_object_id(user_id)}, {"preferences": 1})
        return (doc or {}).get("preferences") or {}


# ============== TABLES ==================
class MongoTableService(_MongoStore, TableService, QRCodeService):
    SEATABLE = {"available", "occupied"}

    async def get_table_by_qr(self, qr_code: str) -> TableSeating:
        doc = self.col("table_seating").find_one({"qr_code": qr_code})
        if not doc:
            raise TableNotFoundError(qr_code)
        return TableSeating(**serialize(doc))

    async def validate_table_status(self, table_id: str) -> bool:
        doc = self.col("table_seating").find_one({"_id": to_object_id(table_id)})
        return bool(doc) and doc.get("is_active", True) and doc.get("status", "available") in self.SEATABLE

    async def validate_qr_code(self, code: str) -> bool:
        if not code:
            return False
        return self.col("table_seating").find_one({"qr_code": code, "is_active": {"$ne": False}}) is not None

    async def get_table_from_qr(self, code: str) -> TableSeating:
        return await self.get_table_by_qr(code)

    def mark_occupied(self, table_id: str) -> None:
        self.col("table_seating").update_one(
            {"_id": to_object_id(table_id)},
            {"$set": {"status": "occupied", "last_status_change": utcnow()}},
        )


class MongoGroupOrderService(_MongoStore, GroupOrderService):
    def __init__(self, db: Optional[Database] = None, tables: Optional[MongoTableService] = None,
                 orders: Optional[MongoOrderService] = None, ttl_minutes: Optional[int] = None):
        super().__init__(db)
        self.tables = tables or MongoTableService(db)
        self.orders = orders or MongoOrderService(db)
        self.ttl_minutes = ttl_minutes or settings.GROUP_ORDER_TTL_MINUTES

    def _open_group_at(self, table_id: str) -> Optional[GroupOrder]:
        for doc in self.col("group_order").find({"table_id": table_id, "is_active": True}):
            group = GroupOrder(**serialize(doc))
            if group.is_open():
                return group
        return None

    async def create_group_order(self, table_id: str, user_id: str) -> GroupOrder:
        if not await self.tables.validate_table_status(table_id):
            raise NoTableError("Table is not available")

        # later scanners at the same table land in the running group
        existing = self._open_group_at(table_id)
        if existing:
            await self.join_group_order(existing.join_code, user_id)
            return existing

        main_order = await self.orders.create_order(user_id=user_id, table_id=table_id, items=[],
                                                    order_type=OrderType.DINE_IN)
        now = utcnow()
        doc = {
            "main_order_id": main_order.id,
            "table_id": table_id,
            "join_code": secrets.token_hex(3).upper(),
            "is_active": True,
            "members": [user_id],
            "expires_at": now + timedelta(minutes=self.ttl_minutes),
        }
        group_id = create_document("group_order", doc, self.db)
        self.tables.mark_occupied(table_id)
        return GroupOrder(**serialize(self.col("group_order").find_one({"_id": to_object_id(group_id)})))

    async def join_group_order(self, join_code: str, user_id: str) -> Optional[GroupOrder]:
        doc = self.col("group_order").find_one({"join_code": join_code.strip().upper()})
        if not doc:
            return None
        group = GroupOrder(**serialize(doc))
        if not group.is_open() or not await self.tables.validate_table_status(group.table_id):
            return None
        self.col("group_order").update_one({"_id": to_object_id(group.id)}, {"$addToSet": {"members": user_id}})
        return group

    async def get_group_order_items(self, group_id: str) -> List[CartItem]:
        cursor = self.col("cart_item").find({"group_order_id": group_id}).sort("added_at", ASCENDING)
        return [_to_cart_item(d) for d in cursor]

    async def add_group_item(self, item: CartItem) -> CartItem:
        if not item.group_order_id:
            raise ValueError("group cart items need a group_order_id")
        if item.quantity <= 0:
            raise ValueError("Quantity must be positive")
        self.col("cart_item").insert_one(_cart_doc(item))
        return item
