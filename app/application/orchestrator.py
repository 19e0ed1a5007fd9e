import logging
import re
import time
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

import pytz
from aiogram.types import CallbackQuery, Message, Update
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.application.operator_notifier import OperatorNotifier
from app.application.order_state_machine import OrderStateMachine
from app.core.config import settings
from app.domain.messages import (
    ACCEPT_PROMPT,
    ACTION_CANCELLED,
    ADD_ITEM_PROMPTS,
    ADD_PAYMENT_PROMPT,
    ADMIN_WELCOME,
    HELP_TEXT,
    OPERATION_CANCELLED,
    REJECT_PROMPT,
    UNKNOWN_COMMAND,
    crash_list_text,
    drivers_text,
    health_text,
    manage_payments_text,
    menu_text,
    protected_text,
    queue_text,
    reviews_text,
    stats_text,
    to_local,
)
from app.domain.order_status import PIPELINE, OrderStatus
from app.domain.schemas import ConversationState
from app.infrastructure.keyboards import (
    BTN_ADD_ITEM,
    BTN_CANCEL,
    BTN_DRIVERS,
    BTN_MENU,
    BTN_PAYMENTS,
    BTN_QUEUE,
    CANCEL_KEYBOARD,
    ETA_KEYBOARD,
    MAIN_KEYBOARD,
    MAIN_MENU_BUTTONS,
    PAYMENTS_KEYBOARD,
    REJECT_KEYBOARD,
    queue_keyboard,
)
from app.infrastructure.repositories.admin_repository import AdminRepository
from app.infrastructure.state_manager import (
    SCENE_ACCEPT,
    SCENE_ADD_ITEM,
    SCENE_ADD_PAYMENT,
    SCENE_MANAGE_PAYMENTS,
    SCENE_REJECT,
    StateManager,
)
from app.interfaces.IOrderRepository import IOrderRepository
from app.interfaces.IProfileRepository import IProfileRepository
from app.interfaces.IPushService import IPushService

logger = logging.getLogger(__name__)

# Reply sent when a command's database work fails
COMMAND_FAILURES = {
    "queue": "❌ Failed to fetch queue.",
    "menu": "❌ Error listing items.",
    "payments": "❌ Failed to fetch payment methods.",
    "stats": "❌ Failed to fetch production statistics.",
    "drivers": "❌ Failed to fetch driver list.",
    "getlogs": "❌ Failed to fetch telemetry from database.",
    "reviews": "❌ Failed to fetch reviews.",
    "setfee": "❌ Failed to update delivery fee.",
    "settings": "❌ Failed to toggle service.",
    "broadcast": "❌ Broadcast failed.",
}

BUTTON_COMMANDS = {
    BTN_QUEUE: "queue",
    BTN_MENU: "menu",
    BTN_ADD_ITEM: "additem",
    BTN_DRIVERS: "drivers",
    BTN_PAYMENTS: "payments",
}

ADD_ITEM_STEPS = tuple(ADD_ITEM_PROMPTS)


def parse_command(text: str):
    """'/setfee@AbebeBot 35' -> ('setfee', '35'). None for plain text."""
    if not text.startswith("/"):
        return None, ""
    head, _, args = text[1:].partition(" ")
    return head.split("@", 1)[0].lower(), args.strip()


def parse_price(text: str) -> Optional[Decimal]:
    try:
        price = Decimal(text.strip())
        if not price.is_finite() or price < 0:
            return None
        return price.quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


class AdminOrchestrator:
    """
    The operator's Telegram conversation.

    Each update is one turn: the conversation state for (user, chat) is
    loaded, the turn is handled, and the state is written back only if the
    turn changed it. Order transitions go through the OrderStateMachine,
    exactly like webhook-driven ones.
    """

    def __init__(
        self,
        notifier: OperatorNotifier,
        state_machine: OrderStateMachine,
        order_repo: IOrderRepository,
        profile_repo: IProfileRepository,
        admin_repo: AdminRepository,
        push: IPushService,
        state_store: StateManager,
        admin_id: str = settings.TELEGRAM_ADMIN_ID,
    ):
        self.notifier = notifier
        self.telegram = notifier.telegram
        self.state_machine = state_machine
        self.order_repo = order_repo
        self.profile_repo = profile_repo
        self.admin_repo = admin_repo
        self.push = push
        self.state_store = state_store
        self.admin_id = str(admin_id)

        self.commands = {
            "start": self._cmd_start,
            "help": self._cmd_help,
            "queue": self._cmd_queue,
            "orders": self._cmd_queue,
            "menu": self._cmd_menu,
            "items": self._cmd_menu,
            "additem": self._cmd_additem,
            "payments": self._cmd_payments,
            "stats": self._cmd_stats,
            "drivers": self._cmd_drivers,
            "getlogs": self._cmd_getlogs,
            "reviews": self._cmd_reviews,
            "setfee": self._cmd_setfee,
            "settings": self._cmd_settings,
            "health": self._cmd_health,
            "broadcast": self._cmd_broadcast,
        }
        self.scenes = {
            SCENE_ACCEPT: self._accept_scene,
            SCENE_REJECT: self._reject_scene,
            SCENE_ADD_ITEM: self._add_item_scene,
            SCENE_ADD_PAYMENT: self._add_payment_scene,
            SCENE_MANAGE_PAYMENTS: self._manage_payments_scene,
        }

    async def process_update(self, payload: dict) -> bool:
        """Handle one raw Telegram update. Returns False when it was not usable."""
        try:
            update = Update.model_validate(payload, context={"bot": self.telegram.bot})
        except ValidationError as e:
            logger.warning(f"⚠️ [Bot] Unparseable update: {e.errors()[:3]}")
            return False

        if update.callback_query is not None:
            await self._on_callback(update.callback_query)
        elif update.message is not None:
            await self._on_message(update.message)
        return True

    # ---------------------------------------------------------
    # Turn handling
    # ---------------------------------------------------------
    def _is_admin(self, user) -> bool:
        return user is not None and str(user.id) == self.admin_id

    async def _on_message(self, message: Message):
        user = message.from_user
        chat_id = message.chat.id
        if not self._is_admin(user):
            logger.warning(f"[Security] Unauthorized access attempt by {user.id if user else '?'} ({getattr(user, 'username', None) or 'unknown'})")
            if user is not None and message.chat.type == "private":
                await self.notifier.send_text(protected_text(user.id), chat_id=chat_id)
            return

        text = (message.text or "").strip()
        if not text:
            return

        state = await run_in_threadpool(self.state_store.load_state, user.id, chat_id)
        new_state = await self._handle_text(text, state.model_copy(), chat_id)
        await self._save_if_changed(user.id, chat_id, state, new_state)

    async def _on_callback(self, query: CallbackQuery):
        user = query.from_user
        if not self._is_admin(user):
            await self.telegram.answer_callback(query.id, "⛔ Unauthorized Access")
            return

        chat_id = query.message.chat.id if query.message else user.id
        state = await run_in_threadpool(self.state_store.load_state, user.id, chat_id)
        try:
            new_state = await self._handle_callback(query.id, query.data or "", state.model_copy(), chat_id)
        except Exception as e:
            logger.error(f"❌ Callback error ({query.data}): {e}", exc_info=True)
            await self.telegram.answer_callback(query.id, "Error processing request")
            return
        await self._save_if_changed(user.id, chat_id, state, new_state)

    async def _save_if_changed(self, user_id, chat_id, before: ConversationState, after: ConversationState):
        if after != before:
            await run_in_threadpool(self.state_store.save_state, user_id, chat_id, after)

    async def _reply(self, chat_id, text: str, reply_markup=None) -> bool:
        return await self.notifier.send_text(text, reply_markup=reply_markup, chat_id=chat_id)

    async def _handle_text(self, text: str, state: ConversationState, chat_id) -> ConversationState:
        command, args = parse_command(text)

        if text == BTN_CANCEL or command == "cancel":
            await self._reply(chat_id, OPERATION_CANCELLED, MAIN_KEYBOARD)
            return ConversationState()

        scene = self.scenes.get(state.scene)
        if scene is not None:
            return await scene(text, state, chat_id)

        if command is None:
            command = BUTTON_COMMANDS.get(text)
        handler = self.commands.get(command) if command else None
        if handler is None:
            await self._reply(chat_id, UNKNOWN_COMMAND, MAIN_KEYBOARD)
            return state

        try:
            entered = await handler(chat_id, args)
        except SQLAlchemyError as e:
            logger.error(f"❌ /{command} failed: {e}")
            await self._reply(chat_id, COMMAND_FAILURES.get(command, "❌ Database error."))
            return state
        # Commands that open a form hand back its first state
        return entered if entered is not None else state

    async def _handle_callback(self, callback_id: str, data: str, state: ConversationState, chat_id) -> ConversationState:
        if data.startswith("status_"):
            _, order_id, new_status = data.split("_", 2)
            return await self._status_callback(callback_id, int(order_id), new_status, state, chat_id)

        if data.startswith("reject_"):
            order_id = int(data.split("_", 1)[1])
            await self.telegram.answer_callback(callback_id)
            await self._reply(chat_id, REJECT_PROMPT.format(order_id=order_id), REJECT_KEYBOARD)
            return ConversationState(scene=SCENE_REJECT, order_id=order_id)

        if data.startswith("view_order_"):
            await self.telegram.answer_callback(callback_id, "Fetching...")
            await self.notifier.notify_new_order(int(data.split("_", 2)[2]), from_webhook=False, chat_id=chat_id)
            return state

        if data == "admin_queue":
            await self.telegram.answer_callback(callback_id, "Refreshing...")
            await self._cmd_queue(chat_id, "")
            return state

        if data == "admin_add_payment":
            await self.telegram.answer_callback(callback_id, "Opening Add Payment...")
            await self._reply(chat_id, ADD_PAYMENT_PROMPT, CANCEL_KEYBOARD)
            return ConversationState(scene=SCENE_ADD_PAYMENT)

        if data == "admin_cancel_payment":
            await self.telegram.answer_callback(callback_id, "Cancelled")
            await self._reply(chat_id, ACTION_CANCELLED, MAIN_KEYBOARD)
            return ConversationState()

        await self.telegram.answer_callback(callback_id)
        return state

    async def _status_callback(self, callback_id, order_id: int, new_status: str, state, chat_id) -> ConversationState:
        order = await run_in_threadpool(self.order_repo.get_order, order_id)
        if order is None:
            await self.telegram.answer_callback(callback_id, "Order not found")
            return state

        if new_status == OrderStatus.ACCEPTED.value and order.status == OrderStatus.PLACED.value:
            await self.telegram.answer_callback(callback_id)
            await self._reply(chat_id, ACCEPT_PROMPT.format(order_id=order_id), ETA_KEYBOARD)
            return ConversationState(scene=SCENE_ACCEPT, order_id=order_id)

        if new_status == OrderStatus.PREPARING.value:
            outcome = await self.state_machine.start_preparing(order_id)
            label = "Now Preparing"
        elif new_status == OrderStatus.READY_FOR_PICKUP.value:
            outcome = await self.state_machine.mark_ready(order_id)
            label = f"Updated to {new_status}"
        else:
            await self.telegram.answer_callback(callback_id, "Update Failed")
            return state

        if outcome.success:
            await self.telegram.answer_callback(callback_id, label)
            await self.notifier.notify_new_order(order_id, from_webhook=False, chat_id=chat_id)
        else:
            await self.telegram.answer_callback(callback_id, "Update failed. Try again.")
        return state

    # ---------------------------------------------------------
    # Scenes
    # ---------------------------------------------------------
    async def _leave_for_menu(self, text: str, chat_id) -> bool:
        if any(button in text for button in MAIN_MENU_BUTTONS):
            await self._reply(chat_id, "⚠️ Action cancelled. Returning to menu...", MAIN_KEYBOARD)
            return True
        return False

    async def _abandoned(self, text: str, chat_id, cancelled_text: str = ACTION_CANCELLED) -> bool:
        """A main-menu button or a typed "cancel" ends any form."""
        if await self._leave_for_menu(text, chat_id):
            return True
        if text.lower() == "cancel":
            await self._reply(chat_id, cancelled_text, MAIN_KEYBOARD)
            return True
        return False

    async def _accept_scene(self, text: str, state: ConversationState, chat_id) -> ConversationState:
        if await self._abandoned(text, chat_id, "Acceptance cancelled. ❌"):
            return ConversationState()

        # "20", "20 mins" and "20min" all mean twenty minutes
        match = re.match(r"\d+", text)
        eta = int(match.group()) if match else 0
        if eta <= 0:
            await self._reply(chat_id, '⚠️ Please enter a valid number of minutes (e.g., 20), or type "cancel":')
            return state

        outcome = await self.state_machine.accept(state.order_id, eta)
        if outcome.success:
            await self._reply(
                chat_id,
                f"✅ *Order #{state.order_id} Accepted!*\nEstimated time: {eta} mins.\nThe customer has been notified.",
                MAIN_KEYBOARD,
            )
        else:
            await self._reply(
                chat_id,
                f"❌ *Update Failed:* {outcome.message}\nThe order might have been cancelled or accepted by another admin.",
                MAIN_KEYBOARD,
            )
        return ConversationState()

    async def _reject_scene(self, text: str, state: ConversationState, chat_id) -> ConversationState:
        if await self._abandoned(text, chat_id, "Rejection cancelled. ❌"):
            return ConversationState()
        if not state.order_id:
            await self._reply(chat_id, "❌ Error: Order ID lost. Please try again from the queue.", MAIN_KEYBOARD)
            return ConversationState()

        outcome = await self.state_machine.reject(state.order_id, text)
        if outcome.success:
            await self._reply(
                chat_id,
                f"❌ *Order #{state.order_id} Rejected.*\nReason: {text}\nThe customer has been notified.",
                MAIN_KEYBOARD,
            )
        else:
            await self._reply(chat_id, f"❌ *Update Failed:* {outcome.message}\nPlease try again.", MAIN_KEYBOARD)
        return ConversationState()

    async def _add_item_scene(self, text: str, state: ConversationState, chat_id) -> ConversationState:
        """Collects title, price, description, category and an optional image link, one per turn."""
        if await self._abandoned(text, chat_id):
            return ConversationState()

        step = ADD_ITEM_STEPS[len(state.draft)]
        value = text
        if step == "price":
            price = parse_price(text)
            if price is None:
                await self._reply(chat_id, "⚠️ Please enter a valid number for price (or type cancel):")
                return state
            value = str(price)
        elif step == "image_url":
            if text.lower() == "skip":
                value = None
            elif not text.startswith(("http://", "https://")):
                await self._reply(chat_id, '⚠️ Please send an image link (https://...), or type "skip":')
                return state

        draft = {**state.draft, step: value}
        if len(draft) < len(ADD_ITEM_STEPS):
            await self._reply(chat_id, ADD_ITEM_PROMPTS[ADD_ITEM_STEPS[len(draft)]], CANCEL_KEYBOARD)
            return ConversationState(scene=SCENE_ADD_ITEM, draft=draft)

        try:
            item = await run_in_threadpool(
                self.admin_repo.add_menu_item,
                draft["title"], Decimal(draft["price"]), draft["description"], draft["category"], draft["image_url"],
            )
        except SQLAlchemyError as e:
            logger.error(f"❌ Menu item insert failed: {e}")
            await self._reply(chat_id, "❌ Database error: the item was not saved.", MAIN_KEYBOARD)
            return ConversationState()

        logger.info(f"🍽 Menu item #{item.id} '{item.title}' added")
        await self._reply(chat_id, f"✨ *Success!* {item.title} added to the menu.", MAIN_KEYBOARD)
        return ConversationState()

    async def _add_payment_scene(self, text: str, state: ConversationState, chat_id) -> ConversationState:
        if await self._abandoned(text, chat_id):
            return ConversationState()

        if "name" not in state.draft:
            await self._reply(
                chat_id,
                f"📝 *[Step 2/2] Name: {text}*\n\n"
                "Now enter the *Details* (Account number, Account Name, etc.) that the user should see:",
                CANCEL_KEYBOARD,
            )
            return ConversationState(scene=SCENE_ADD_PAYMENT, draft={"name": text})

        name = state.draft["name"]
        try:
            await run_in_threadpool(self.admin_repo.add_payment_method, name, text)
        except SQLAlchemyError as e:
            logger.error(f"❌ Payment method insert failed: {e}")
            await self._reply(chat_id, "❌ Error saving payment method.", MAIN_KEYBOARD)
            return ConversationState()

        await self._reply(chat_id, f'✅ *Success!* Payment method "{name}" has been added and is now active.', MAIN_KEYBOARD)
        return ConversationState()

    async def _manage_payments_scene(self, text: str, state: ConversationState, chat_id) -> ConversationState:
        """Any text here names a payment method to delete."""
        if await self._abandoned(text, chat_id):
            return ConversationState()

        try:
            removed = await run_in_threadpool(self.admin_repo.delete_payment_method, text)
        except SQLAlchemyError as e:
            logger.error(f"❌ Payment method delete failed: {e}")
            await self._reply(chat_id, "❌ Failed to delete method.", MAIN_KEYBOARD)
            return ConversationState()

        if removed:
            await self._reply(chat_id, f"✅ Method *{text}* removed.", MAIN_KEYBOARD)
        else:
            await self._reply(chat_id, f'⚠️ Method "{text}" not found.', MAIN_KEYBOARD)
        return ConversationState()

    # ---------------------------------------------------------
    # Commands
    # ---------------------------------------------------------
    async def _cmd_start(self, chat_id, args):
        await self._reply(chat_id, ADMIN_WELCOME, MAIN_KEYBOARD)
        await self._cmd_queue(chat_id, args)

    async def _cmd_help(self, chat_id, args):
        await self._reply(chat_id, HELP_TEXT)

    async def _cmd_queue(self, chat_id, args):
        orders = await run_in_threadpool(self.order_repo.list_active)
        if not orders:
            await self._reply(chat_id, "No active orders in queue. 📭")
            return
        await self._reply(chat_id, queue_text(orders), queue_keyboard(orders))

    async def _cmd_menu(self, chat_id, args):
        items = await run_in_threadpool(self.admin_repo.list_menu_items)
        if not items:
            await self._reply(chat_id, "No items found. 📭")
            return
        await self._reply(chat_id, "📜 *Menu Items Loading...*")
        # Five per message keeps us clear of Telegram's flood limits
        for start in range(0, len(items), 5):
            await self._reply(chat_id, menu_text(items[start:start + 5], settings.CURRENCY))
        await self._reply(chat_id, "✅ End of Menu.")

    async def _cmd_additem(self, chat_id, args):
        await self._reply(chat_id, ADD_ITEM_PROMPTS["title"], CANCEL_KEYBOARD)
        return ConversationState(scene=SCENE_ADD_ITEM)

    async def _cmd_payments(self, chat_id, args):
        methods = await run_in_threadpool(self.admin_repo.list_payment_methods)
        await self._reply(chat_id, manage_payments_text(methods), PAYMENTS_KEYBOARD)
        return ConversationState(scene=SCENE_MANAGE_PAYMENTS)

    async def _cmd_stats(self, chat_id, args):
        tz = pytz.timezone(settings.TIMEZONE)
        now = datetime.now(tz)
        today = tz.localize(datetime(now.year, now.month, now.day))
        week_start = tz.localize(datetime(now.year, now.month, now.day) - timedelta(days=7))

        orders = await run_in_threadpool(self.order_repo.list_since, week_start.astimezone(pytz.utc))
        daily = [o for o in orders if o.created_at and to_local(o.created_at, settings.TIMEZONE) >= today]

        breakdown = []
        for status in PIPELINE:
            count = sum(1 for o in daily if o.status == status.value)
            if count:
                breakdown.append((status.value, count))

        await self._reply(chat_id, stats_text(
            daily_count=len(daily),
            daily_revenue=sum((o.total_amount for o in daily), Decimal("0")),
            weekly_count=len(orders),
            weekly_revenue=sum((o.total_amount for o in orders), Decimal("0")),
            breakdown=breakdown,
            refreshed=now.strftime("%I:%M:%S %p"),
            currency=settings.CURRENCY,
        ))

    async def _cmd_drivers(self, chat_id, args):
        drivers = await run_in_threadpool(self.profile_repo.list_by_role, "driver")
        if not drivers:
            await self._reply(chat_id, "📭 No drivers found in the system.")
            return
        await self._reply(chat_id, drivers_text(drivers, settings.TIMEZONE))

    async def _cmd_getlogs(self, chat_id, args):
        logs = await run_in_threadpool(self.admin_repo.top_crashes, 15)
        if not logs:
            await self._reply(chat_id, "📭 No crash logs found.")
            return
        await self._reply(chat_id, crash_list_text(logs, settings.TIMEZONE))

    async def _cmd_reviews(self, chat_id, args):
        reviews = await run_in_threadpool(self.admin_repo.latest_reviews, 15)
        if not reviews:
            await self._reply(chat_id, "📭 No reviews found yet.")
            return
        await self._reply(chat_id, reviews_text(reviews, settings.TIMEZONE))

    async def _cmd_setfee(self, chat_id, args):
        if not args:
            await self._reply(chat_id, "⚠️ Usage: `/setfee [amount]`\nExample: `/setfee 35.0`")
            return
        try:
            fee = float(args.split()[0])
        except ValueError:
            fee = -1
        if fee < 0:
            await self._reply(chat_id, "❌ Invalid amount. Please enter a positive number.")
            return

        await run_in_threadpool(self.admin_repo.set_setting, "delivery_fee", str(fee))
        await self._reply(chat_id, f"✅ **Delivery Fee Updated!**\n\nNew Fee: **{fee} {settings.CURRENCY}**")

    async def _cmd_settings(self, chat_id, args):
        current = await run_in_threadpool(self.admin_repo.get_setting, "service_enabled")
        new_state = "true" if current == "false" else "false"
        await run_in_threadpool(self.admin_repo.set_setting, "service_enabled", new_state)
        label = "✅ OPEN" if new_state == "true" else "🛑 CLOSED"
        await self._reply(chat_id, f"🛎 *Service Status Updated*\n\nNew Status: {label}")

    async def _cmd_health(self, chat_id, args):
        try:
            started = time.perf_counter()
            await run_in_threadpool(self.admin_repo.ping)
            latency_ms = int((time.perf_counter() - started) * 1000)
            active = await run_in_threadpool(self.order_repo.count_active)
        except SQLAlchemyError as e:
            logger.error(f"❌ Health check error: {e}")
            await self._reply(chat_id, f"🔴 *System Alert: Database unreachable or slow.*\nError: {e}")
            return
        await self._reply(chat_id, health_text(latency_ms, active))

    async def _cmd_broadcast(self, chat_id, args):
        if not args:
            await self._reply(chat_id, "⚠️ Usage: `/broadcast [message]`")
            return

        tokens = await run_in_threadpool(self.profile_repo.all_tokens)
        await self._reply(chat_id, f"📢 *Broadcast Started*\n\nSending to {len(tokens)} users...\nMessage: _{args}_")
        if not tokens:
            await self._reply(chat_id, "⚠️ No devices found to broadcast to.")
            return

        sent = await self.push.send_multicast(tokens, "📢 System Announcement", args)
        logger.info(f"📢 Broadcast delivered to {sent}/{len(tokens)} devices")
        await self._reply(chat_id, "✅ Broadcast Sent!")
