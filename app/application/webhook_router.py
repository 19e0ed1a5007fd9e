import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.application.notification_dispatcher import NotificationDispatcher
from app.domain.order_status import (
    Audience,
    NotificationEvent,
    OrderStatus,
    cancellation_operator_event,
    order_created_events,
    status_change_events,
)
from app.domain.schemas import ChatMessageRecord, OrderRecord, WebhookEvent
from app.infrastructure.dedup_cache import DedupCache

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    status_code: int = 204
    body: Optional[Dict[str, Any]] = None


class WebhookRouter:
    """
    Reacts to database row-change events.

    Every path ends in an acknowledgement: the source redelivers anything it
    does not see acknowledged, and a redelivery would repeat notifications
    that already went out.
    """

    def __init__(self, dispatcher: NotificationDispatcher, created_cache: DedupCache, cancelled_cache: DedupCache):
        self.dispatcher = dispatcher
        self.created_cache = created_cache
        self.cancelled_cache = cancelled_cache

    async def handle(self, payload: Any) -> WebhookResult:
        try:
            event = WebhookEvent.model_validate(payload)
        except ValidationError:
            logger.info("[Webhook] Ignoring payload without table/type")
            return WebhookResult()

        try:
            if event.table == "orders" and event.type == "INSERT":
                return await self._order_created(event)
            if event.table == "orders" and event.type == "UPDATE":
                return await self._order_updated(event)
            if event.table == "chat_messages" and event.type == "INSERT":
                return await self._chat_message(event)
        except Exception as e:
            logger.error(f"❌ [Webhook] {event.table}/{event.type} handling failed: {e}", exc_info=True)
            return WebhookResult()

        return WebhookResult()

    async def _order_created(self, event: WebhookEvent) -> WebhookResult:
        order = self._order(event.record)
        if order is None:
            return WebhookResult()

        if not self.created_cache.check_and_add(order.id):
            logger.info(f"[Webhook] Order {order.id} INSERT replayed, skipping")
            return WebhookResult(200, {"status": "duplicate"})

        logger.info(f"🆕 [Webhook] New order #{order.display_id} (ID: {order.id})")
        await self.dispatcher.dispatch(order_created_events(order))
        return WebhookResult(200, {"status": "notified"})

    async def _order_updated(self, event: WebhookEvent) -> WebhookResult:
        order = self._order(event.record)
        if order is None:
            return WebhookResult()

        old_status = (event.old_record or {}).get("status")
        new_status = order.status
        if not new_status or new_status == old_status:
            return WebhookResult()

        logger.info(f"[Webhook] Order #{order.display_id} status change: {old_status} → {new_status}")
        events = status_change_events(order, new_status)

        if new_status == OrderStatus.CANCELLED.value and old_status != OrderStatus.CANCELLED.value:
            if self.cancelled_cache.check_and_add(order.id):
                events.append(cancellation_operator_event(order))

        await self.dispatcher.publish_transition(order, new_status, events)
        return WebhookResult(200, {"status": new_status})

    async def _chat_message(self, event: WebhookEvent) -> WebhookResult:
        try:
            message = ChatMessageRecord.model_validate(event.record or {})
        except ValidationError as e:
            logger.warning(f"⚠️ [Chat Webhook] Unusable chat record: {e.errors()}")
            return WebhookResult()

        await self.dispatcher.dispatch([
            NotificationEvent(
                audience=Audience.RECIPIENT,
                recipient_id=message.receiver_id,
                title="New Message",
                body=message.message,
                data={"order_id": str(message.order_id), "type": "chat"},
            )
        ])
        return WebhookResult()

    @staticmethod
    def _order(record: Optional[Dict[str, Any]]) -> Optional[OrderRecord]:
        try:
            return OrderRecord.model_validate(record or {})
        except ValidationError as e:
            logger.warning(f"⚠️ [Webhook] Unusable order record: {e.errors()}")
            return None
