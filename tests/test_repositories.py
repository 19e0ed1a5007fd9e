from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.domain import models
from app.infrastructure.database import SessionLocal


def test_place_order_assigns_identifiers_and_items(order_repo):
    order = order_repo.place_order(
        {"user_id": "cust-1", "total_amount": "280.50", "status": "Delivered", "driver_id": "sneaky"},
        [{"title": "Tibs", "quantity": 2, "price": "140.25", "unexpected": True}],
    )

    assert order.status == "Placed"
    assert order.driver_id is None
    assert len(order.display_code) == 4 and order.display_code.isdigit()
    assert len(order.public_id) == 36
    assert order.total_amount == Decimal("280.50")

    [item] = order_repo.get_items(order.public_id)
    assert (item.title, item.quantity) == ("Tibs", 2)


def test_items_prefer_menu_titles(order_repo, make_order, add_items):
    session = SessionLocal()
    session.add(models.MenuItem(id=5, title="Special Kitfo", price=Decimal("300")))
    session.commit()
    session.close()
    order = make_order()
    add_items(order.public_id, {"menu_item_id": 5, "title": "old title", "quantity": 1}, {"title": "Side Salad"})

    assert [i.title for i in order_repo.get_items(order.public_id)] == ["Special Kitfo", "Side Salad"]


def test_conditional_update_respects_source_states(order_repo, make_order):
    order = make_order(status="Accepted")

    assert order_repo.conditional_update(order.id, {"status": "Rejected"}, ["Placed"]) is None
    assert order_repo.get_order(order.id).status == "Accepted"

    updated = order_repo.conditional_update(order.id, {"status": "Preparing"}, ["Accepted"])
    assert updated.status == "Preparing"
    assert updated.display_code == order.display_code


def test_conditional_update_on_missing_row(order_repo):
    assert order_repo.conditional_update(12345, {"status": "Accepted"}, ["Placed"]) is None


def test_active_listing_excludes_terminal_orders(order_repo, make_order):
    old = make_order(status="Placed", created_at=datetime.now(timezone.utc) - timedelta(minutes=30))
    new = make_order(status="Preparing")
    make_order(status="Delivered")
    make_order(status="Cancelled")

    assert [o.id for o in order_repo.list_active()] == [old.id, new.id]
    assert order_repo.count_active() == 2


def test_list_since(order_repo, make_order):
    make_order(created_at=datetime.now(timezone.utc) - timedelta(days=10))
    recent = make_order()

    since = datetime.now(timezone.utc) - timedelta(days=7)
    assert [o.id for o in order_repo.list_since(since)] == [recent.id]


def test_backfill_identifiers(order_repo, make_order):
    legacy = make_order(public_id=None, display_code=None)

    assert order_repo.backfill_identifiers() == 1
    refreshed = order_repo.get_order(legacy.id)
    assert refreshed.public_id and refreshed.display_code
    assert order_repo.backfill_identifiers() == 0


def test_profile_tokens_by_role(profile_repo, make_profile):
    make_profile("drv-1", role="driver", fcm_token="t1")
    make_profile("drv-2", role="driver")
    make_profile("cust-1", fcm_token="t2")

    assert profile_repo.tokens_by_role("driver") == ["t1"]
    assert sorted(profile_repo.all_tokens()) == ["t1", "t2"]
    assert profile_repo.get_profile("nobody") is None


def test_settings_are_upserted(admin_repo):
    assert admin_repo.get_setting("delivery_fee") is None
    admin_repo.set_setting("delivery_fee", "35.0")
    admin_repo.set_setting("delivery_fee", "40.0")
    assert admin_repo.get_setting("delivery_fee") == "40.0"


def test_menu_items_and_payment_methods_are_managed(admin_repo):
    item = admin_repo.add_menu_item("Shiro", Decimal("180.00"), "Chickpea stew", "Fasting", None)
    admin_repo.add_payment_method("Telebirr", "0911 000 000")
    admin_repo.add_payment_method("CBE Birr", "1000 2000 3000")

    assert [(i.id, i.title, i.price) for i in admin_repo.list_menu_items()] == [(item.id, "Shiro", Decimal("180.00"))]
    assert admin_repo.delete_payment_method("Telebirr") == 1
    assert admin_repo.delete_payment_method("Telebirr") == 0
    assert [m.name for m in admin_repo.list_payment_methods()] == ["CBE Birr"]
