"""Precondition faults. Expected business outcomes are result objects instead."""


class OrderingError(Exception):
    pass


class NoUserError(OrderingError):
    def __init__(self, message: str = "No user found"):
        super().__init__(message)


class NoTableError(OrderingError):
    def __init__(self, message: str = "User or table not initialized"):
        super().__init__(message)


class NoActiveGroupOrderError(OrderingError):
    def __init__(self, message: str = "No active group order"):
        super().__init__(message)


class ItemNotFoundError(OrderingError):
    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id


class ItemUnavailableError(OrderingError):
    def __init__(self, item_id: str):
        super().__init__("Item is not available")
        self.item_id = item_id


class OrderNotFoundError(OrderingError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class WrongChannelError(OrderingError):
    def __init__(self, message: str = "Operation only available for takeaway orders"):
        super().__init__(message)


class InvalidTransition(OrderingError):
    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid order status transition: {_value(from_status)} -> {_value(to_status)}")


def _value(status) -> str:
    return getattr(status, "value", status)


class TableNotFoundError(OrderingError):
    def __init__(self, qr_code: str):
        super().__init__("Table not found")
        self.qr_code = qr_code
