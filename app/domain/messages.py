from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

import pytz

from app.domain.schemas import (
    CrashLogRecord,
    OrderItemRecord,
    OrderRecord,
    ProfileRecord,
    ReviewRecord,
)

ADMIN_WELCOME = (
    "🍱 *Abebe Admin Terminal*\n\n"
    "Welcome, Chef. System is fully operational.\n\n"
    "**Core Commands:**\n"
    "📦 /queue - Manage Active Orders\n"
    "📜 /menu - Food Items\n"
    "⭐ /reviews - Customer Feedback\n"
    "🐞 /getlogs - System Health\n\n"
    "Use the *Menu Buttons* below for quick access."
)

HELP_TEXT = """🛠 *Admin Control Panel*

*Orders:*
Active queue 👉 /queue
Daily & weekly numbers 👉 /stats
Driver list 👉 /drivers

*Operations:*
Delivery fee 👉 /setfee [amount]
Open / close service 👉 /settings
Push to every user 👉 /broadcast [message]

*Menu & Payments:*
List food items 👉 /menu
Add a food item 👉 /additem
Payment methods 👉 /payments

*Monitoring:*
Crash clusters 👉 /getlogs
Database health 👉 /health
Customer feedback 👉 /reviews
"""

UNKNOWN_COMMAND = (
    "🤖 *Unknown Command*\n\n"
    "I didn't quite catch that. Try using /help or select an option from the menu below."
)

OPERATION_CANCELLED = "🛑 Operation Cancelled."
PROOF_FAILED_SUFFIX = "\n\n⚠️ _(Proof photo failed to load)_"
ACCEPT_PROMPT = "👨‍🍳 *Accepting Order #{order_id}*\n\nSelect preparation time (minutes) or type custom:"
REJECT_PROMPT = "❌ *Rejecting Order #{order_id}*\n\nSelect a reason or type custom:"
ACCEPTED_NOTE = "Payment confirmed. Order accepted."
ACTION_CANCELLED = "Action cancelled. ❌"

# One prompt per add-item step, in the order the answers are collected
ADD_ITEM_PROMPTS = {
    "title": "🛠️ [Step 1/5] Adding New Item\nEnter the *Name* of the food:",
    "price": "💰 [Step 2/5] Enter the *Price* (e.g., 250):",
    "description": "📝 [Step 3/5] Enter a short *Description*:",
    "category": "🗂️ [Step 4/5] Enter a *Category* (e.g., Fast Food, Drinks, Dessert):",
    "image_url": "📸 [Step 5/5] Send an *image link* for the food, or type `skip`:",
}
ADD_PAYMENT_PROMPT = (
    "➕ *[Step 1/2] Adding Payment Method*\n\n"
    "Please enter the *Name* of the payment method (e.g., CBE Birr, Telebirr):"
)


def protected_text(user_id) -> str:
    return f"⛔ Protected: Admins only.\nYour ID: {user_id}"


def to_local(dt: Optional[datetime], tz_name: str) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(pytz.timezone(tz_name))


def format_local_time(dt: Optional[datetime], tz_name: str) -> str:
    local = to_local(dt, tz_name)
    if local is None:
        return "Unknown Time"
    return local.strftime("%I:%M %p").lstrip("0")


def maps_link(lat, lng) -> str:
    return f"https://www.google.com/maps/search/?api=1&query={lat},{lng}"


def money(amount) -> str:
    return f"{Decimal(str(amount or 0)):.2f}"


def order_card_text(
    order: OrderRecord,
    profile: Optional[ProfileRecord],
    items: List[OrderItemRecord],
    tz_name: str,
    currency: str,
) -> str:
    if items:
        items_list = "\n".join(f"• {i.quantity}x {i.title or 'Unknown Item'}" for i in items)
    else:
        items_list = "No Items??"

    customer = (profile.full_name if profile else None) or "Guest"
    phone = (profile.phone_number if profile else None) or "No Phone"
    address = (profile.address if profile else None) or "N/A"

    return (
        f"🔔 *Order #{order.display_code or 'N/A'} Update*\n\n"
        f"👤 *Customer:* {customer} ({phone})\n"
        f"🕒 *Time:* {format_local_time(order.created_at, tz_name)}\n"
        f"📍 *Location:* {address}\n"
        f"💰 *Total:* {order.total_amount} {currency}\n\n"
        f"🍽️ *Items:*\n{items_list}\n\n"
        f"📝 *Status:* {order.status}"
    )


def cancellation_text(order: OrderRecord) -> str:
    return f"🚫 *Order #{order.display_code} (ID: {order.id}) Cancelled* by the user."


def queue_text(orders: Iterable[OrderRecord]) -> str:
    lines = ["📋 *Active Order Queue*\n"]
    for o in orders:
        lines.append(f"#{o.display_code or 'N/A'} (ID: {o.id}) - *{o.status}*")
    return "\n".join(lines)


def stats_text(
    daily_count: int,
    daily_revenue,
    weekly_count: int,
    weekly_revenue,
    breakdown: List[tuple],
    refreshed: str,
    currency: str,
) -> str:
    breakdown_text = "".join(f"   • {status}: {count}\n" for status, count in breakdown)
    return (
        "📊 *Production Analytics Dashboard*\n\n"
        f"📅 *Today:* {daily_count} orders\n"
        f"💰 *Today's Revenue:* {money(daily_revenue)} {currency}\n\n"
        f"🗓 *Last 7 Days:* {weekly_count} orders\n"
        f"📈 *Weekly Revenue:* {money(weekly_revenue)} {currency}\n\n"
        f"📋 *Today's Breakdown:*\n{breakdown_text or '   _No active orders_'}\n\n"
        f"🕒 _Refreshed: {refreshed}_"
    )


def drivers_text(drivers: Iterable[ProfileRecord], tz_name: str) -> str:
    msg = "🛵 *Delivery Staff List*\n\n"
    for d in drivers:
        push_status = "✅" if d.fcm_token else "❌"
        seen = to_local(d.updated_at, tz_name)
        last_seen = seen.strftime("%b %d, %I:%M %p") if seen else "Never"

        tracking = ""
        loc = d.last_location_json or {}
        if loc.get("lat") and loc.get("lng"):
            tracking = f"\n📍 [Live Tracking]({maps_link(loc['lat'], loc['lng'])})"

        msg += f"*{d.full_name or 'Unnamed Driver'}*\n"
        msg += f"   📱 Phone: {d.phone_number or 'N/A'}\n"
        msg += f"   🔔 Push: {push_status}\n"
        msg += f"   🕒 Seen: {last_seen}{tracking}\n\n"
    return msg


def crash_alert_text(
    app_type: str,
    kind: Optional[str],
    error_message: str,
    device_model: str,
    os_version: str,
    app_version: str,
    count: int,
    is_new: bool,
    log: str,
) -> str:
    emoji = "🆕" if count == 1 else "🚨"
    frequency = "First occurrence" if is_new else f"{count} occurrences"
    stack_lines = "\n".join((log or "").split("\n")[:5])
    return (
        f"{emoji} *{app_type} APP {kind or 'CRASH'}*\n\n"
        f"*Error:* `{error_message}`\n"
        f"*Device:* {device_model} ({os_version})\n"
        f"*App Version:* {app_version}\n"
        f"*Frequency:* {frequency}\n\n"
        f"*Stack Preview:*\n```\n{stack_lines}\n```\n\n"
        "_Use /getlogs to view all crashes_"
    )


def crash_list_text(logs: Iterable[CrashLogRecord], tz_name: str) -> str:
    message = "🐞 *Crash Telemetry Dashboard*\n\n"
    for index, log in enumerate(logs, start=1):
        icon = "🚗" if log.app_type == "DRIVER" else "📱"
        seen = to_local(log.last_seen, tz_name)
        last_seen = seen.strftime("%Y-%m-%d %H:%M") if seen else "?"
        message += f"{icon} *#{index} {log.app_type or 'CLIENT'} ({log.count}x)*\n"
        message += f"⚠️ `{log.error_message}`\n"
        message += f"📱 {log.device_model} (v{log.app_version})\n"
        message += f"📅 Last: {last_seen}\n\n"
    return message


def reviews_text(reviews: Iterable[ReviewRecord], tz_name: str) -> str:
    message = "⭐ *Customer Feedback (Last 15)*\n\n"
    for rv in reviews:
        stars = "⭐" * (rv.rating or 0) or "None"
        created = to_local(rv.created_at, tz_name)
        date = created.strftime("%b %d, %I:%M %p") if created else ""
        message += f"👤 *{rv.full_name or 'Anonymous'}* - {date}\n"
        message += f"{stars}\n"
        if rv.comment:
            message += f"💬 _{rv.comment}_\n"
        message += "───────────────────\n"
    return message


def review_alert_text(rating: int, order_id, full_name, comment) -> str:
    return f"⭐ *New Review: {rating}/5*\nOrder: #{order_id}\nUser: {full_name}\n\"{comment or ''}\""


def health_text(latency_ms: int, active_orders: int) -> str:
    return (
        "🏥 *System Health Report*\n\n"
        "🟢 *Postgres:* Connected\n"
        f"⏱️ *Latency:* {latency_ms}ms\n"
        f"📦 *Active Orders:* {active_orders}\n"
        "🚀 *Uptime:* Fully Operational\n\n"
        "_Check /getlogs for app-level crashes_"
    )


def menu_text(items, currency: str) -> str:
    message = ""
    for item in items:
        message += f"🔹 *#{item.id} {item.title}* - {money(item.price)} {currency}\n   _{item.category or 'No Category'}_\n\n"
    return message


def manage_payments_text(methods) -> str:
    message = "💳 *Payment Methods*\n\n"
    if not methods:
        message += "_No active methods found._\n"
    for method in methods:
        message += f"▫️ *{method.name}:* `{method.details or ''}`\n"
    return message + "\nType the *Name* of a method to *Delete* it, or use the buttons below:"
