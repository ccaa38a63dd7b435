from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

from tableside import __version__
from tableside.database import ensure_indexes, get_db
from tableside.errors import (
    InvalidTransition, ItemNotFoundError, ItemUnavailableError, NoActiveGroupOrderError, NoTableError,
    NoUserError, OrderingError, OrderNotFoundError, TableNotFoundError, WrongChannelError,
)
from tableside.logs import setup_logging
from tableside.managers import DiningSession, MenuPageManager, TakeawayPageManager
from tableside.schemas import (
    AddToCartRequest, ConfirmOrderResult, GroupItemRequest, GroupOrder, JoinGroupRequest, MenuItem,
    OperationResult, OrderConfirmation, OrderSummary, OrderValidation, PickupTimeRequest,
    PlaceOrderResult, QRScanResult, QuantityUpdate, StatusUpdate, TableRequest, TakeawayOrderRequest,
)
from tableside.services import OrderProcessingService
from tableside.stores import (
    MongoCartService, MongoGroupOrderService, MongoMenuService, MongoOrderService, MongoReviewService,
    MongoScheduleService, MongoTableService, MongoUserService,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    yield


app = FastAPI(title="Tableside Ordering API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS_BY_ERROR = [
    (NoUserError, 401),
    ((ItemNotFoundError, OrderNotFoundError, TableNotFoundError), 404),
    ((InvalidTransition, ItemUnavailableError), 409),
    ((NoTableError, NoActiveGroupOrderError, WrongChannelError), 400),
]


@app.exception_handler(OrderingError)
async def ordering_error_handler(request: Request, exc: OrderingError):
    status = next((code for types, code in _STATUS_BY_ERROR if isinstance(exc, types)), 400)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ============== DEPENDENCIES ==================
def get_database() -> Database:
    return get_db()


def get_user_service(x_user_id: Optional[str] = Header(None), db: Database = Depends(get_database)):
    return MongoUserService(x_user_id, db)


def get_order_service(db: Database = Depends(get_database)) -> MongoOrderService:
    return MongoOrderService(db)


def get_schedule_service(db: Database = Depends(get_database)) -> MongoScheduleService:
    return MongoScheduleService(db)


def get_takeaway_manager(db: Database = Depends(get_database), users=Depends(get_user_service),
                         orders=Depends(get_order_service), schedule=Depends(get_schedule_service)):
    return TakeawayPageManager(
        menu_service=MongoMenuService(db),
        review_service=MongoReviewService(db),
        cart_service=MongoCartService(db),
        order_service=orders,
        user_service=users,
        schedule_service=schedule,
    )


def get_menu_page_manager(db: Database = Depends(get_database), users=Depends(get_user_service),
                          orders=Depends(get_order_service), schedule=Depends(get_schedule_service)):
    tables = MongoTableService(db)
    return MenuPageManager(
        menu_service=MongoMenuService(db),
        review_service=MongoReviewService(db),
        order_service=orders,
        cart_service=MongoCartService(db),
        table_service=tables,
        qr_code_service=tables,
        group_order_service=MongoGroupOrderService(db, tables=tables, orders=orders),
        user_service=users,
        schedule_service=schedule,
    )


def get_order_processor(db: Database = Depends(get_database), users=Depends(get_user_service),
                        orders=Depends(get_order_service), schedule=Depends(get_schedule_service)):
    return OrderProcessingService(orders, schedule, MongoCartService(db), users)


async def _dine_in_session(manager: MenuPageManager, qr_code: str, join_code: Optional[str] = None) -> DiningSession:
    session = await manager.initialize()
    if not session.user:
        raise NoUserError()
    scan = await manager.handle_qr_code_scan(session, qr_code)
    if not scan.is_valid:
        raise HTTPException(status_code=400, detail=scan.error)
    if join_code and not await manager.join_existing_group_order(session, join_code):
        raise HTTPException(status_code=404, detail="Group order not found or expired")
    return session


@app.get("/")
def root():
    return {"message": "Tableside ordering API running"}


@app.get("/test")
def test_db(db: Database = Depends(get_database)):
    try:
        return {"backend": "fastapi", "database": "mongodb", "connection_status": "ok",
                "collections": db.list_collection_names()}
    except Exception as e:
        logger.error("database check failed: %s", e)
        return {"backend": "fastapi", "database": "mongodb", "connection_status": f"error: {e}"}


# ============== MENU ==================
@app.get("/menu")
async def get_menu(manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.initialize_page()


@app.get("/menu/items", response_model=List[MenuItem])
async def list_menu_items(category: Optional[str] = None, search: Optional[str] = None,
                          manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.menu_query.filtered_items(category=category, search_term=search)


@app.get("/menu/items/{item_id}")
async def get_menu_item(item_id: str, manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.get_item_details(item_id)


@app.get("/menu/items/{item_id}/reviews")
async def get_menu_item_reviews(item_id: str, manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.get_item_reviews(item_id)


# ============== CART ==================
@app.get("/cart", response_model=OrderSummary)
async def get_cart(manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.get_cart_summary()


@app.post("/cart/items", response_model=OperationResult)
async def add_cart_item(body: AddToCartRequest, manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    details = await manager.get_item_details(body.menu_item_id)
    if not details["is_available"]:
        raise HTTPException(status_code=409, detail="Item is not available")
    return await manager.add_to_cart(details["item"], body.quantity, body.customizations,
                                     body.special_instructions)


@app.patch("/cart/items/{item_id}", response_model=OperationResult)
async def update_cart_item(item_id: str, body: QuantityUpdate,
                           manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.update_cart_item_quantity(item_id, body.quantity)


@app.delete("/cart/items/{item_id}", response_model=OperationResult)
async def remove_cart_item(item_id: str, manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.remove_cart_item(item_id)


# ============== TAKEAWAY ==================
@app.get("/takeaway/pickup-times")
async def pickup_times(processor: OrderProcessingService = Depends(get_order_processor)):
    info = await processor.get_time_information()
    estimate = await processor.schedule_service.get_estimated_pickup_time(info["preparation_time"])
    return {**info, "estimated_pickup_time": estimate}


@app.post("/takeaway/validate", response_model=OrderValidation)
async def validate_pickup(body: PickupTimeRequest, manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.validate_pickup_time(body.pickup_time)


@app.post("/takeaway/orders", response_model=PlaceOrderResult)
async def place_takeaway_order(body: TakeawayOrderRequest,
                               manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    items = await manager.cart_manager.current_cart()
    return await manager.place_takeaway_order(
        items, body.pickup_time, body.payment_method,
        special_instructions=body.special_instructions,
        idempotency_key=body.idempotency_key,
    )


# ============== ORDERS ==================
@app.get("/orders/{order_id}/confirmation", response_model=OrderConfirmation)
async def order_confirmation(order_id: str, manager: TakeawayPageManager = Depends(get_takeaway_manager)):
    return await manager.get_order_confirmation(order_id)


@app.post("/orders/{order_id}/status")
async def update_order_status(order_id: str, body: StatusUpdate,
                              processor: OrderProcessingService = Depends(get_order_processor)):
    status = await processor.update_order_status(order_id, body.status)
    return {"status": status.value}


# ============== DINE-IN ==================
@app.post("/dine-in/scan", response_model=QRScanResult)
async def scan_table(body: TableRequest, manager: MenuPageManager = Depends(get_menu_page_manager)):
    session = await manager.initialize()
    return await manager.handle_qr_code_scan(session, body.qr_code)


@app.post("/dine-in/group", response_model=GroupOrder)
async def open_group(body: TableRequest, manager: MenuPageManager = Depends(get_menu_page_manager)):
    session = await _dine_in_session(manager, body.qr_code)
    return await manager.initialize_group_order(session)


@app.post("/dine-in/group/join")
async def join_group(body: JoinGroupRequest, manager: MenuPageManager = Depends(get_menu_page_manager)):
    session = await manager.initialize()
    joined = await manager.join_existing_group_order(session, body.join_code)
    if not joined:
        raise HTTPException(status_code=404, detail="Group order not found or expired")
    return {"joined": True, "group_order": session.group_order}


@app.post("/dine-in/items")
async def add_dine_in_item(body: GroupItemRequest, manager: MenuPageManager = Depends(get_menu_page_manager)):
    session = await _dine_in_session(manager, body.qr_code, body.join_code)
    if not await manager.menu_service.check_item_availability(body.menu_item_id):
        raise ItemUnavailableError(body.menu_item_id)
    menu_item = await manager.menu_service.get_menu_item_details(body.menu_item_id)
    item = await manager.add_item_to_cart(session, menu_item, body.quantity, body.customizations,
                                          body.special_instructions or "", shared=body.shared)
    return item


@app.get("/dine-in/summary", response_model=OrderSummary)
async def dine_in_summary(qr_code: str, join_code: str, manager: MenuPageManager = Depends(get_menu_page_manager)):
    session = await _dine_in_session(manager, qr_code, join_code)
    return await manager.get_order_summary(session)


@app.post("/dine-in/confirm", response_model=ConfirmOrderResult)
async def confirm_dine_in(body: TableRequest, manager: MenuPageManager = Depends(get_menu_page_manager)):
    session = await _dine_in_session(manager, body.qr_code, body.join_code)
    return await manager.confirm_personal_order(session)
