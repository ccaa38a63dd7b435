from __future__ import annotations
import logging
from typing import Dict, FrozenSet, Union

from tableside.errors import InvalidTransition
from tableside.schemas import OrderStatus

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.NEW: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.PREPARED, OrderStatus.CANCELLED}),
    # takeaway orders are handed over (completed) rather than served
    OrderStatus.PREPARED: frozenset({OrderStatus.SERVED, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.SERVED: frozenset(),  # terminal
    OrderStatus.COMPLETED: frozenset(),  # terminal
    OrderStatus.CANCELLED: frozenset(),  # terminal
}

TERMINAL = frozenset(s for s, nxt in VALID_TRANSITIONS.items() if not nxt)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def transition(current: Union[OrderStatus, str], target: Union[OrderStatus, str]) -> OrderStatus:
    """Return ``target`` if the move is in the table, else raise InvalidTransition."""
    try:
        current_status, target_status = OrderStatus(current), OrderStatus(target)
    except ValueError:
        raise InvalidTransition(current, target) from None
    if not can_transition(current_status, target_status):
        logger.warning("Invalid transition: %s -> %s", current_status.value, target_status.value)
        raise InvalidTransition(current_status, target_status)
    return target_status


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL
