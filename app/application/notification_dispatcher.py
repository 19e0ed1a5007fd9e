import logging
from typing import Iterable, List

from app.domain.order_status import Audience, NotificationEvent
from app.domain.schemas import OrderRecord
from app.infrastructure.dedup_cache import DedupCache
from app.interfaces.IPushService import IPushService

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Fans NotificationEvents out to push and to the operator chat.

    Each event is sent inside its own failure boundary: one bad token or a
    Telegram outage never stops the rest of the list, and nothing raises
    back into the transition that produced the events.
    """

    def __init__(self, push: IPushService, operator_notifier, transition_cache: DedupCache):
        self.push = push
        self.operator = operator_notifier
        self.transition_cache = transition_cache

    async def publish_transition(self, order: OrderRecord, status: str, events: List[NotificationEvent]) -> bool:
        """
        Dispatch the events of one status change, at most once per (order, status).

        An operator action and the database UPDATE webhook it causes both land
        here; whichever comes second is dropped.
        """
        if not self.transition_cache.check_and_add(f"{order.id}:{status}"):
            logger.info(f"[Dispatcher] Order {order.id} -> {status} already notified, skipping")
            return False
        await self.dispatch(events)
        return True

    async def dispatch(self, events: Iterable[NotificationEvent]) -> int:
        delivered = 0
        for event in events:
            try:
                if await self._send(event):
                    delivered += 1
            except Exception as e:
                logger.error(f"❌ [Dispatcher] {event.audience.value} notification for order {event.order_id} failed: {e}")
        return delivered

    async def _send(self, event: NotificationEvent) -> bool:
        if event.audience in (Audience.CUSTOMER, Audience.DRIVER, Audience.RECIPIENT):
            if not event.recipient_id:
                return False
            return bool(await self.push.send_to_user(event.recipient_id, event.title, event.body, event.data))

        if event.audience == Audience.ALL_DRIVERS:
            sent = await self.push.send_to_role("driver", event.title, event.body, event.data)
            logger.info(f"📢 [Dispatcher] Broadcast '{event.title}' reached {sent} driver(s)")
            return sent > 0

        if event.audience == Audience.OPERATOR_NEW_ORDER:
            return await self.operator.notify_new_order(event.order_id, from_webhook=True) is not None

        if event.audience == Audience.OPERATOR_CANCELLATION:
            return await self.operator.notify_cancellation(event.order_id)

        logger.warning(f"⚠️ [Dispatcher] No route for audience {event.audience}")
        return False
