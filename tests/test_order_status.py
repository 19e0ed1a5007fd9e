import pytest

from app.domain.order_status import (
    Audience,
    OrderStatus,
    can_transition,
    order_created_events,
    parse_status,
    status_change_events,
)
from app.domain.schemas import OrderRecord


def order(**fields):
    data = {"id": 42, "public_id": "5b0c9f1e-0000-4000-8000-000000000042", "display_code": "4821", "user_id": "cust-1"}
    data.update(fields)
    return OrderRecord.model_validate(data)


@pytest.mark.parametrize("current,target", [
    ("Placed", "Accepted"),
    ("Accepted", "Preparing"),
    ("Preparing", "Ready for Pickup"),
    ("Ready for Pickup", "Driver Assigned"),
    ("Driver Assigned", "Picked Up"),
    ("Picked Up", "On the Way"),
    ("Picked Up", "Delivered"),
    ("On the Way", "Delivered"),
    ("Placed", "Rejected"),
    ("Preparing", "Cancelled"),
    ("On the Way", "Cancelled"),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("Placed", "Preparing"),
    ("Accepted", "Rejected"),
    ("Delivered", "Cancelled"),
    ("Cancelled", "Cancelled"),
    ("Rejected", "Accepted"),
    ("Accepted", "Accepted"),
    ("Placed", "Bogus"),
])
def test_refused_transitions(current, target):
    assert not can_transition(current, target)


def test_parse_status_handles_unknown_values():
    assert parse_status("Ready for Pickup") is OrderStatus.READY_FOR_PICKUP
    assert parse_status(OrderStatus.PLACED) is OrderStatus.PLACED
    assert parse_status("ready") is None
    assert parse_status(None) is None


def test_new_order_notifies_customer_and_operator():
    events = order_created_events(order(status="Placed"))

    assert [e.audience for e in events] == [Audience.CUSTOMER, Audience.OPERATOR_NEW_ORDER]
    assert events[0].recipient_id == "cust-1"
    assert events[0].title == "Order Placed"
    assert "#4821" in events[0].body
    assert events[0].data == {"order_id": "5b0c9f1e-0000-4000-8000-000000000042", "display_id": "4821", "type": "order"}


def test_unassigned_ready_order_goes_to_every_driver():
    events = status_change_events(order(status="Ready for Pickup"), "Ready for Pickup")

    assert [e.audience for e in events] == [Audience.ALL_DRIVERS]
    assert events[0].title == "Order Ready for Pickup"


def test_ready_order_with_driver_is_not_broadcast():
    assert status_change_events(order(driver_id="drv-1"), "Ready for Pickup") == []


def test_driver_assignment_notifies_driver_and_customer():
    events = status_change_events(order(driver_id="drv-9"), "Driver Assigned")

    by_audience = {e.audience: e for e in events}
    assert by_audience[Audience.DRIVER].recipient_id == "drv-9"
    assert by_audience[Audience.DRIVER].title == "Order Claimed"
    assert by_audience[Audience.CUSTOMER].title == "Driver Assigned"


def test_rejection_carries_the_reason():
    events = status_change_events(order(admin_notes="Kitchen Busy"), OrderStatus.REJECTED)

    assert len(events) == 1
    assert events[0].title == "Order Rejected"
    assert events[0].body == "Order #4821 was rejected: Kitchen Busy"


def test_display_id_falls_back_to_numeric_id():
    events = status_change_events(order(display_code=None), "Accepted")
    assert events[0].body == "Order #42 has been accepted!"


def test_unknown_status_produces_nothing():
    assert status_change_events(order(), "Teleported") == []
