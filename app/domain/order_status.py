"""
Order lifecycle.

    Placed -> Accepted -> Preparing -> Ready for Pickup -> Driver Assigned
           -> Picked Up -> On the Way -> Delivered

Rejected (operator, only from Placed) and Cancelled (customer, from any
non-terminal state) are absorbing.

Every transition is applied as a conditional update: "set status to target
only if the current status is one of ALLOWED_SOURCES[target]". The same table
drives the notifications a status change produces.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from app.domain.schemas import OrderRecord


class OrderStatus(str, Enum):
    PLACED = "Placed"
    ACCEPTED = "Accepted"
    PREPARING = "Preparing"
    READY_FOR_PICKUP = "Ready for Pickup"
    DRIVER_ASSIGNED = "Driver Assigned"
    PICKED_UP = "Picked Up"
    ON_THE_WAY = "On the Way"
    DELIVERED = "Delivered"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.REJECTED, OrderStatus.CANCELLED}
)
ACTIVE_STATUSES: FrozenSet[OrderStatus] = frozenset(set(OrderStatus) - TERMINAL_STATUSES)

# Delivery-side pipeline in display order (used by the stats breakdown)
PIPELINE: List[OrderStatus] = [
    OrderStatus.PLACED,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.DRIVER_ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.ON_THE_WAY,
    OrderStatus.DELIVERED,
]

ALLOWED_SOURCES: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.ACCEPTED: frozenset({OrderStatus.PLACED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.ACCEPTED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.PREPARING}),
    OrderStatus.DRIVER_ASSIGNED: frozenset({OrderStatus.READY_FOR_PICKUP}),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.DRIVER_ASSIGNED}),
    OrderStatus.ON_THE_WAY: frozenset({OrderStatus.PICKED_UP}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY}),
    OrderStatus.REJECTED: frozenset({OrderStatus.PLACED}),
    OrderStatus.CANCELLED: ACTIVE_STATUSES,
}


def parse_status(value) -> Optional[OrderStatus]:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def allowed_sources(target: OrderStatus) -> FrozenSet[OrderStatus]:
    return ALLOWED_SOURCES.get(target, frozenset())


def can_transition(current, target) -> bool:
    current, target = parse_status(current), parse_status(target)
    if current is None or target is None:
        return False
    return current in allowed_sources(target)


# ---------------------------------------------------------
# Notification events
# ---------------------------------------------------------
class Audience(str, Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    ALL_DRIVERS = "all_drivers"
    RECIPIENT = "recipient"  # arbitrary profile (chat messages)
    OPERATOR_NEW_ORDER = "operator_new_order"
    OPERATOR_CANCELLATION = "operator_cancellation"


@dataclass
class NotificationEvent:
    audience: Audience
    title: str = ""
    body: str = ""
    recipient_id: Optional[str] = None
    order_id: Optional[int] = None
    data: Dict[str, str] = field(default_factory=dict)


def push_data(order: OrderRecord) -> Dict[str, str]:
    return {
        "order_id": str(order.public_id or order.id),
        "display_id": order.display_code or "N/A",
        "type": "order",
    }


_CUSTOMER_MESSAGES = {
    OrderStatus.ACCEPTED: ("Order Accepted", "Order #{code} has been accepted!"),
    OrderStatus.PREPARING: ("Order Being Prepared", "Order #{code} is now being prepared!"),
    OrderStatus.DRIVER_ASSIGNED: ("Driver Assigned", "A driver has been assigned to Order #{code}!"),
    OrderStatus.PICKED_UP: ("Order Picked Up", "Order #{code} has been picked up from the restaurant!"),
    OrderStatus.ON_THE_WAY: ("On the Way", "Order #{code} is out for delivery!"),
    OrderStatus.DELIVERED: ("Order Delivered", "Order #{code} has been delivered. Enjoy your meal!"),
    OrderStatus.CANCELLED: ("Order Cancelled", "Order #{code} has been cancelled."),
}


def order_created_events(order: OrderRecord) -> List[NotificationEvent]:
    data = push_data(order)
    return [
        NotificationEvent(
            audience=Audience.CUSTOMER,
            recipient_id=order.user_id,
            order_id=order.id,
            title="Order Placed",
            body=f"Order #{order.display_code or 'N/A'} has been placed and is being reviewed!",
            data=data,
        ),
        NotificationEvent(audience=Audience.OPERATOR_NEW_ORDER, order_id=order.id, data=data),
    ]


def status_change_events(order: OrderRecord, new_status) -> List[NotificationEvent]:
    """Events for an order that just moved into `new_status`.

    Callers are responsible for only calling this when the status really
    changed; unknown statuses produce nothing.
    """
    status = parse_status(new_status)
    if status is None:
        return []

    code = order.display_id
    data = push_data(order)
    events: List[NotificationEvent] = []

    if status == OrderStatus.READY_FOR_PICKUP and not order.driver_id:
        events.append(NotificationEvent(
            audience=Audience.ALL_DRIVERS,
            order_id=order.id,
            title="Order Ready for Pickup",
            body=f"Order #{code} is ready and needs a driver!",
            data=data,
        ))

    if status == OrderStatus.DRIVER_ASSIGNED and order.driver_id:
        events.append(NotificationEvent(
            audience=Audience.DRIVER,
            recipient_id=order.driver_id,
            order_id=order.id,
            title="Order Claimed",
            body=f"You've claimed Order #{code}. Head to the restaurant!",
            data=data,
        ))

    if status == OrderStatus.REJECTED:
        reason = order.admin_notes or "No reason given"
        events.append(NotificationEvent(
            audience=Audience.CUSTOMER,
            recipient_id=order.user_id,
            order_id=order.id,
            title="Order Rejected",
            body=f"Order #{code} was rejected: {reason}",
            data=data,
        ))
    elif status in _CUSTOMER_MESSAGES:
        title, body = _CUSTOMER_MESSAGES[status]
        events.append(NotificationEvent(
            audience=Audience.CUSTOMER,
            recipient_id=order.user_id,
            order_id=order.id,
            title=title,
            body=body.format(code=code),
            data=data,
        ))

    return events


def cancellation_operator_event(order: OrderRecord) -> NotificationEvent:
    return NotificationEvent(audience=Audience.OPERATOR_CANCELLATION, order_id=order.id)
