from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional, Union

from storefront.errors import InvalidStatusTransition
from storefront.schemas import Order, OrderStatus

# pending -> confirmed -> shipped -> delivered; cancelled from any non-terminal
TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PROGRESS = {
    OrderStatus.PENDING: 25,
    OrderStatus.CONFIRMED: 50,
    OrderStatus.SHIPPED: 75,
    OrderStatus.DELIVERED: 100,
    OrderStatus.CANCELLED: 0,
}

StatusLike = Union[OrderStatus, str]


def is_terminal(status: StatusLike) -> bool:
    return not TRANSITIONS[OrderStatus(status)]


def can_transition(current: StatusLike, new: StatusLike) -> bool:
    return OrderStatus(new) in TRANSITIONS[OrderStatus(current)]


def check_transition(current: StatusLike, new: StatusLike) -> OrderStatus:
    current, new = OrderStatus(current), OrderStatus(new)
    if new not in TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, new.value)
    return new


def transition(order: Order, new_status: StatusLike, now: Optional[datetime] = None) -> Order:
    """Return a copy of ``order`` moved to ``new_status``.

    Raises InvalidStatusTransition for moves outside the table; ``order``
    itself is never modified.
    """
    new_status = check_transition(order.status, new_status)
    return order.model_copy(update={
        "status": new_status,
        "updated_at": now or datetime.now(timezone.utc),
    })


def progress_percent(status: StatusLike) -> int:
    return PROGRESS[OrderStatus(status)]
