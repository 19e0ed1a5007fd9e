from decimal import Decimal

import pytest

from app.application.orchestrator import AdminOrchestrator, parse_command, parse_price
from app.domain import models
from app.domain.messages import ACTION_CANCELLED, ADD_ITEM_PROMPTS, OPERATION_CANCELLED, UNKNOWN_COMMAND
from app.domain.schemas import ConversationState
from app.infrastructure.database import SessionLocal
from app.infrastructure.keyboards import BTN_ADD_ITEM, BTN_CANCEL, BTN_PAYMENTS, BTN_QUEUE
from app.infrastructure.state_manager import (
    SCENE_ACCEPT,
    SCENE_ADD_ITEM,
    SCENE_ADD_PAYMENT,
    SCENE_MANAGE_PAYMENTS,
    SCENE_REJECT,
    StateManager,
)

from conftest import ADMIN_ID

ADMIN = int(ADMIN_ID)
STRANGER = 777


def text_update(text, user_id=ADMIN, chat_id=None, chat_type="private"):
    return {
        "update_id": 100,
        "message": {
            "message_id": 1,
            "date": 1767225600,
            "chat": {"id": chat_id or user_id, "type": chat_type},
            "from": {"id": user_id, "is_bot": False, "first_name": "Chef"},
            "text": text,
        },
    }


def callback_update(data, user_id=ADMIN):
    return {
        "update_id": 101,
        "callback_query": {
            "id": "cb-1",
            "from": {"id": user_id, "is_bot": False, "first_name": "Chef"},
            "chat_instance": "ci-1",
            "data": data,
            "message": {
                "message_id": 5,
                "date": 1767225600,
                "chat": {"id": ADMIN, "type": "private"},
                "text": "order card",
            },
        },
    }


@pytest.fixture
def state_store():
    return StateManager()


@pytest.fixture
def bot(notifier, state_machine, order_repo, profile_repo, admin_repo, push, state_store):
    return AdminOrchestrator(
        notifier=notifier,
        state_machine=state_machine,
        order_repo=order_repo,
        profile_repo=profile_repo,
        admin_repo=admin_repo,
        push=push,
        state_store=state_store,
        admin_id=ADMIN_ID,
    )


def test_parse_command():
    assert parse_command("/setfee@AbebeBot 35") == ("setfee", "35")
    assert parse_command("/Queue") == ("queue", "")
    assert parse_command("20") == (None, "")


def test_parse_price():
    assert parse_price("250") == Decimal("250.00")
    assert parse_price(" 99.5 ") == Decimal("99.50")
    assert parse_price("cheap") is None
    assert parse_price("-10") is None
    assert parse_price("NaN") is None


async def test_strangers_are_turned_away(bot, telegram, state_store):
    await bot.process_update(text_update("/start", user_id=STRANGER))

    assert telegram.texts() == [f"⛔ Protected: Admins only.\nYour ID: {STRANGER}"]
    assert state_store.load_state(STRANGER, STRANGER) == ConversationState()


async def test_strangers_in_groups_get_no_reply(bot, telegram):
    await bot.process_update(text_update("/start", user_id=STRANGER, chat_id=-100500, chat_type="group"))
    assert telegram.messages == []


async def test_stranger_callbacks_are_refused(bot, telegram):
    await bot.process_update(callback_update("status_1_Preparing", user_id=STRANGER))
    assert telegram.callbacks == [("cb-1", "⛔ Unauthorized Access")]


async def test_unparseable_update_is_ignored(bot):
    assert await bot.process_update({"update_id": "nope", "message": 5}) is False


async def test_start_shows_welcome_and_queue(bot, telegram, make_order):
    make_order(status="Placed", display_code="1111")

    await bot.process_update(text_update("/start"))

    assert telegram.texts()[0].startswith("🍱 *Abebe Admin Terminal*")
    assert "#1111" in telegram.texts()[1]


async def test_empty_queue(bot, telegram):
    await bot.process_update(text_update(BTN_QUEUE))
    assert telegram.texts() == ["No active orders in queue. 📭"]


async def test_accept_flow(bot, telegram, make_order, make_profile, order_repo, state_store, fcm):
    make_profile("cust-1", fcm_token="tok-cust")
    order = make_order(status="Placed")

    await bot.process_update(callback_update(f"status_{order.id}_Accepted"))
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState(scene=SCENE_ACCEPT, order_id=order.id)
    assert f"Accepting Order #{order.id}" in telegram.texts()[-1]

    await bot.process_update(text_update("soon"))
    assert "valid number of minutes" in telegram.texts()[-1]
    assert state_store.load_state(ADMIN, ADMIN).scene == SCENE_ACCEPT

    await bot.process_update(text_update("20"))
    assert telegram.texts()[-1].startswith(f"✅ *Order #{order.id} Accepted!*")
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()

    stored = order_repo.get_order(order.id)
    assert (stored.status, stored.estimated_time) == ("Accepted", 20)
    assert fcm.titles() == ["Order Accepted"]


@pytest.mark.parametrize("reply", ["20 mins", "20min", "20 minutes please"])
async def test_accept_reads_leading_minutes(bot, make_order, order_repo, reply):
    order = make_order(status="Placed")
    await bot.process_update(callback_update(f"status_{order.id}_Accepted"))

    await bot.process_update(text_update(reply))

    assert order_repo.get_order(order.id).estimated_time == 20


async def test_accepting_an_already_cancelled_order(bot, telegram, make_order, state_store):
    order = make_order(status="Placed")
    await bot.process_update(callback_update(f"status_{order.id}_Accepted"))

    # Customer cancels while the operator is typing
    session = SessionLocal()
    session.get(models.Order, order.id).status = "Cancelled"
    session.commit()
    session.close()

    await bot.process_update(text_update("15"))

    assert telegram.texts()[-1].startswith("❌ *Update Failed:* Order already processed")
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()


async def test_reject_flow(bot, telegram, make_order, order_repo):
    order = make_order(status="Placed")

    await bot.process_update(callback_update(f"reject_{order.id}"))
    await bot.process_update(text_update("Kitchen Busy"))

    stored = order_repo.get_order(order.id)
    assert (stored.status, stored.admin_notes) == ("Rejected", "Kitchen Busy")
    assert telegram.texts()[-1] == f"❌ *Order #{order.id} Rejected.*\nReason: Kitchen Busy\nThe customer has been notified."


async def test_menu_button_leaves_the_form(bot, telegram, make_order, order_repo, state_store):
    order = make_order(status="Placed")
    await bot.process_update(callback_update(f"reject_{order.id}"))
    assert state_store.load_state(ADMIN, ADMIN).scene == SCENE_REJECT

    await bot.process_update(text_update(BTN_QUEUE))

    assert telegram.texts()[-1] == "⚠️ Action cancelled. Returning to menu..."
    assert state_store.load_state(ADMIN, ADMIN).scene is None
    assert order_repo.get_order(order.id).status == "Placed"


@pytest.mark.parametrize("text", [BTN_CANCEL, "/cancel"])
async def test_global_cancel(bot, telegram, make_order, state_store, text):
    order = make_order(status="Placed")
    await bot.process_update(callback_update(f"status_{order.id}_Accepted"))

    await bot.process_update(text_update(text))

    assert telegram.texts()[-1] == OPERATION_CANCELLED
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()


async def test_form_survives_a_restart(notifier, state_machine, order_repo, profile_repo, admin_repo, push, make_order, telegram):
    order = make_order(status="Placed")

    def fresh_bot():
        return AdminOrchestrator(notifier, state_machine, order_repo, profile_repo, admin_repo, push, StateManager(), ADMIN_ID)

    await fresh_bot().process_update(callback_update(f"reject_{order.id}"))
    await fresh_bot().process_update(text_update("Out of injera"))

    assert order_repo.get_order(order.id).admin_notes == "Out of injera"


async def test_prepare_button_moves_order_and_refreshes_card(bot, telegram, make_order, order_repo):
    order = make_order(status="Accepted")

    await bot.process_update(callback_update(f"status_{order.id}_Preparing"))

    assert order_repo.get_order(order.id).status == "Preparing"
    assert telegram.callbacks == [("cb-1", "Now Preparing")]
    assert "*Status:* Preparing" in telegram.texts()[-1]


async def test_stale_prepare_button(bot, telegram, make_order):
    order = make_order(status="Cancelled")

    await bot.process_update(callback_update(f"status_{order.id}_Preparing"))

    assert telegram.callbacks == [("cb-1", "Update failed. Try again.")]


async def test_status_button_for_missing_order(bot, telegram):
    await bot.process_update(callback_update("status_999_Preparing"))
    assert telegram.callbacks == [("cb-1", "Order not found")]


async def test_malformed_callback_is_answered(bot, telegram):
    await bot.process_update(callback_update("status_abc_Preparing"))
    assert telegram.callbacks == [("cb-1", "Error processing request")]


async def test_unknown_text(bot, telegram):
    await bot.process_update(text_update("what's cooking?"))
    assert telegram.texts() == [UNKNOWN_COMMAND]


async def test_setfee(bot, telegram, admin_repo):
    await bot.process_update(text_update("/setfee 35"))
    assert admin_repo.get_setting("delivery_fee") == "35.0"

    await bot.process_update(text_update("/setfee -4"))
    assert telegram.texts()[-1] == "❌ Invalid amount. Please enter a positive number."
    assert admin_repo.get_setting("delivery_fee") == "35.0"


async def test_settings_toggle(bot, admin_repo, telegram):
    await bot.process_update(text_update("/settings"))
    assert admin_repo.get_setting("service_enabled") == "false"
    assert "🛑 CLOSED" in telegram.texts()[-1]

    await bot.process_update(text_update("/settings"))
    assert admin_repo.get_setting("service_enabled") == "true"
    assert "✅ OPEN" in telegram.texts()[-1]


async def test_stats(bot, telegram, make_order):
    make_order(status="Placed")
    make_order(status="Delivered")

    await bot.process_update(text_update("/stats"))

    text = telegram.texts()[-1]
    assert "📅 *Today:* 2 orders" in text
    assert "700.00 ETB" in text
    assert "• Placed: 1" in text


async def test_health(bot, telegram, make_order):
    make_order(status="Preparing")
    await bot.process_update(text_update("/health"))
    assert "📦 *Active Orders:* 1" in telegram.texts()[-1]


async def test_broadcast(bot, telegram, make_profile, fcm):
    make_profile("cust-1", fcm_token="t1")
    make_profile("drv-1", role="driver", fcm_token="t2")

    await bot.process_update(text_update("/broadcast Closed for Timkat tomorrow"))

    [multicast] = fcm.multicasts
    assert sorted(multicast.tokens) == ["t1", "t2"]
    assert multicast.notification.body == "Closed for Timkat tomorrow"
    assert telegram.texts()[-1] == "✅ Broadcast Sent!"


async def test_drivers_and_reviews(bot, telegram, make_profile, admin_repo):
    make_profile("drv-1", role="driver", full_name="Dawit", fcm_token="t")
    admin_repo.add_review("cust-1", 42, 5, "Hot and fast", "Hana")

    await bot.process_update(text_update("/drivers"))
    await bot.process_update(text_update("/reviews"))

    assert "*Dawit*" in telegram.texts()[0]
    assert "💬 _Hot and fast_" in telegram.texts()[1]


# ---------------------------------------------------------
# Menu and payment forms
# ---------------------------------------------------------
async def test_add_item_form(bot, telegram, admin_repo, state_store):
    await bot.process_update(text_update(BTN_ADD_ITEM))
    assert telegram.texts()[-1] == ADD_ITEM_PROMPTS["title"]
    assert state_store.load_state(ADMIN, ADMIN).scene == SCENE_ADD_ITEM

    await bot.process_update(text_update("Shiro"))
    assert telegram.texts()[-1] == ADD_ITEM_PROMPTS["price"]

    await bot.process_update(text_update("cheap"))
    assert telegram.texts()[-1].startswith("⚠️ Please enter a valid number for price")
    assert state_store.load_state(ADMIN, ADMIN).draft == {"title": "Shiro"}

    await bot.process_update(text_update("180"))
    await bot.process_update(text_update("Chickpea stew"))
    await bot.process_update(text_update("Fasting"))
    assert telegram.texts()[-1] == ADD_ITEM_PROMPTS["image_url"]

    await bot.process_update(text_update("a photo of shiro"))
    assert "image link" in telegram.texts()[-1]
    assert admin_repo.list_menu_items() == []

    await bot.process_update(text_update("skip"))

    assert telegram.texts()[-1] == "✨ *Success!* Shiro added to the menu."
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()
    [item] = admin_repo.list_menu_items()
    assert (item.title, item.price, item.description, item.category, item.image_url) == (
        "Shiro", Decimal("180.00"), "Chickpea stew", "Fasting", None,
    )


async def test_add_item_command_with_image_link(bot, admin_repo):
    for text in ("/additem", "Kitfo", "420.50", "Minced beef", "Specials", "https://cdn.abebe.example/kitfo.jpg"):
        await bot.process_update(text_update(text))

    [item] = admin_repo.list_menu_items()
    assert (item.title, item.image_url) == ("Kitfo", "https://cdn.abebe.example/kitfo.jpg")


async def test_add_item_form_can_be_cancelled(bot, telegram, admin_repo, state_store):
    await bot.process_update(text_update("/additem"))
    await bot.process_update(text_update("Shiro"))
    await bot.process_update(text_update("cancel"))

    assert telegram.texts()[-1] == ACTION_CANCELLED
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()
    assert admin_repo.list_menu_items() == []


async def test_add_payment_method(bot, telegram, admin_repo, state_store):
    await bot.process_update(text_update("/payments"))
    assert "_No active methods found._" in telegram.texts()[-1]
    assert state_store.load_state(ADMIN, ADMIN).scene == SCENE_MANAGE_PAYMENTS

    await bot.process_update(callback_update("admin_add_payment"))
    assert telegram.callbacks == [("cb-1", "Opening Add Payment...")]
    assert state_store.load_state(ADMIN, ADMIN).scene == SCENE_ADD_PAYMENT

    await bot.process_update(text_update("Telebirr"))
    assert state_store.load_state(ADMIN, ADMIN).draft == {"name": "Telebirr"}

    await bot.process_update(text_update("0911 000 000 (Abebe Foods)"))

    assert telegram.texts()[-1] == '✅ *Success!* Payment method "Telebirr" has been added and is now active.'
    assert [(m.name, m.details) for m in admin_repo.list_payment_methods()] == [("Telebirr", "0911 000 000 (Abebe Foods)")]
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()


async def test_remove_payment_method(bot, telegram, admin_repo):
    admin_repo.add_payment_method("Telebirr", "0911 000 000")

    await bot.process_update(text_update(BTN_PAYMENTS))
    assert "▫️ *Telebirr:* `0911 000 000`" in telegram.texts()[-1]

    await bot.process_update(text_update("Telebirr"))
    assert telegram.texts()[-1] == "✅ Method *Telebirr* removed."
    assert admin_repo.list_payment_methods() == []

    await bot.process_update(text_update("/payments"))
    await bot.process_update(text_update("Awash Bank"))
    assert telegram.texts()[-1] == '⚠️ Method "Awash Bank" not found.'


async def test_payment_settings_cancel_button(bot, telegram, state_store):
    await bot.process_update(text_update("/payments"))
    await bot.process_update(callback_update("admin_cancel_payment"))

    assert telegram.callbacks == [("cb-1", "Cancelled")]
    assert telegram.texts()[-1] == ACTION_CANCELLED
    assert state_store.load_state(ADMIN, ADMIN) == ConversationState()
