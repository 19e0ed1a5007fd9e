from typing import Iterable

from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
)

from app.domain.messages import maps_link
from app.domain.order_status import OrderStatus
from app.domain.schemas import OrderRecord

BTN_QUEUE = "📋 Active Queue"
BTN_MENU = "📜 List Menu"
BTN_DRIVERS = "🛵 Delivery Staff"
BTN_PAYMENTS = "💳 Payment Settings"
BTN_ADD_ITEM = "➕ Add Food Item"
BTN_CANCEL = "❌ Cancel"
MAIN_MENU_BUTTONS = (BTN_QUEUE, BTN_MENU, BTN_ADD_ITEM, BTN_DRIVERS, BTN_PAYMENTS)

ETA_CHOICES = [["15", "20", "30"], ["45", "60", "Cancel"]]
REJECT_REASONS = [["Out of Stock", "Kitchen Busy"], ["Closing Soon", "Rider Unavailable"], ["Cancel"]]


def _reply_keyboard(rows, one_time: bool = False) -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text=label) for label in row] for row in rows],
        resize_keyboard=True,
        one_time_keyboard=one_time,
    )


MAIN_KEYBOARD = _reply_keyboard([[BTN_QUEUE, BTN_MENU], [BTN_ADD_ITEM, BTN_DRIVERS], [BTN_PAYMENTS]])
CANCEL_KEYBOARD = _reply_keyboard([[BTN_CANCEL]])
ETA_KEYBOARD = _reply_keyboard(ETA_CHOICES, one_time=True)
REJECT_KEYBOARD = _reply_keyboard(REJECT_REASONS, one_time=True)


def order_actions_keyboard(order: OrderRecord) -> InlineKeyboardMarkup:
    """Buttons offered on an order card depend on where the order is in its lifecycle."""
    rows = []
    if order.status == OrderStatus.PLACED.value:
        rows.append([
            InlineKeyboardButton(text="✅ Accept Order", callback_data=f"status_{order.id}_{OrderStatus.ACCEPTED.value}"),
            InlineKeyboardButton(text="❌ Reject", callback_data=f"reject_{order.id}"),
        ])
    elif order.status == OrderStatus.ACCEPTED.value:
        rows.append([InlineKeyboardButton(
            text="👨‍🍳 Start Preparing", callback_data=f"status_{order.id}_{OrderStatus.PREPARING.value}")])
    elif order.status == OrderStatus.PREPARING.value:
        rows.append([InlineKeyboardButton(
            text="✅ Ready for Pickup", callback_data=f"status_{order.id}_{OrderStatus.READY_FOR_PICKUP.value}")])

    if order.location:
        lat, lng = order.location
        rows.append([InlineKeyboardButton(text="📍 View Delivery Location", url=maps_link(lat, lng))])
    rows.append([InlineKeyboardButton(text="🔄 Refresh Status", callback_data=f"view_order_{order.id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def queue_keyboard(orders: Iterable[OrderRecord]) -> InlineKeyboardMarkup:
    rows = [
        [InlineKeyboardButton(
            text=f"⚙️ Manage #{o.display_code or 'N/A'} (ID: {o.id})", callback_data=f"view_order_{o.id}")]
        for o in orders
    ]
    rows.append([InlineKeyboardButton(text="🔄 Refresh Queue", callback_data="admin_queue")])
    return InlineKeyboardMarkup(inline_keyboard=rows)


PAYMENTS_KEYBOARD = InlineKeyboardMarkup(inline_keyboard=[
    [InlineKeyboardButton(text="➕ Add New Method", callback_data="admin_add_payment")],
    [InlineKeyboardButton(text="❌ Cancel", callback_data="admin_cancel_payment")],
])
