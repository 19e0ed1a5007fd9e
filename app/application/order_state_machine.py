import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from app.application.notification_dispatcher import NotificationDispatcher
from app.application.resilient_mutator import ResilientMutator
from app.domain.messages import ACCEPTED_NOTE
from app.domain.order_status import (
    NotificationEvent,
    OrderStatus,
    allowed_sources,
    cancellation_operator_event,
    parse_status,
    status_change_events,
)
from app.domain.schemas import (
    AcceptIntent,
    OperatorIntent,
    OrderRecord,
    PrepareIntent,
    ReadyForPickupIntent,
    RejectIntent,
)

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "Order already processed / state changed"

_intent_adapter = TypeAdapter(OperatorIntent)


@dataclass
class TransitionOutcome:
    success: bool
    order: Optional[OrderRecord] = None
    message: str = ""
    events: List[NotificationEvent] = field(default_factory=list)
    conflict: bool = False


class OrderStateMachine:
    """
    Applies order status transitions.

    Every transition is a conditional update guarded by the allowed source
    states of its target. Only the caller that wins the update publishes
    notifications; a loser gets a conflict outcome and nothing is sent.
    """

    def __init__(self, mutator: ResilientMutator, dispatcher: NotificationDispatcher):
        self.mutator = mutator
        self.dispatcher = dispatcher

    async def apply(self, intent) -> TransitionOutcome:
        """Route an operator intent (model or raw dict) to its transition."""
        if isinstance(intent, dict):
            try:
                intent = _intent_adapter.validate_python(intent)
            except ValidationError as e:
                logger.warning(f"⚠️ [StateMachine] Malformed intent: {e.errors()}")
                return TransitionOutcome(success=False, message="Invalid operator action.")

        if isinstance(intent, AcceptIntent):
            return await self.accept(intent.orderId, intent.etaMinutes)
        if isinstance(intent, RejectIntent):
            return await self.reject(intent.orderId, intent.reason)
        if isinstance(intent, PrepareIntent):
            return await self.start_preparing(intent.orderId)
        if isinstance(intent, ReadyForPickupIntent):
            return await self.mark_ready(intent.orderId)
        return TransitionOutcome(success=False, message="Invalid operator action.")

    async def accept(self, order_id: int, eta_minutes) -> TransitionOutcome:
        try:
            eta = int(str(eta_minutes).strip())
        except (TypeError, ValueError):
            eta = 0
        if eta <= 0:
            return TransitionOutcome(success=False, message="⚠️ Please enter a valid number of minutes.")

        values = {
            "status": OrderStatus.ACCEPTED.value,
            "estimated_time": eta,
            "accepted_at": datetime.now(timezone.utc),
            "admin_notes": ACCEPTED_NOTE,
        }
        return await self.transition(order_id, OrderStatus.ACCEPTED, values)

    async def reject(self, order_id: int, reason: Optional[str]) -> TransitionOutcome:
        reason = (reason or "").strip()
        if not reason:
            return TransitionOutcome(success=False, message="⚠️ A rejection reason is required.")
        values = {"status": OrderStatus.REJECTED.value, "admin_notes": reason}
        return await self.transition(order_id, OrderStatus.REJECTED, values)

    async def start_preparing(self, order_id: int) -> TransitionOutcome:
        return await self.transition(order_id, OrderStatus.PREPARING)

    async def mark_ready(self, order_id: int) -> TransitionOutcome:
        return await self.transition(order_id, OrderStatus.READY_FOR_PICKUP)

    async def cancel(self, order_id: int) -> TransitionOutcome:
        """Customer cancellation; also tells the operator. Already cancelled orders conflict."""
        return await self.transition(
            order_id,
            OrderStatus.CANCELLED,
            extra_events=lambda order: [cancellation_operator_event(order)],
        )

    async def transition(
        self,
        order_id: int,
        target,
        values: Optional[Dict[str, Any]] = None,
        extra_events=None,
    ) -> TransitionOutcome:
        status = parse_status(target)
        if status is None or not allowed_sources(status):
            return TransitionOutcome(success=False, message=f"Unknown status: {target}")

        values = dict(values or {})
        values["status"] = status.value
        sources = sorted(s.value for s in allowed_sources(status))

        result = await self.mutator.update_order(order_id, values, sources)

        if result.conflict:
            logger.info(f"[StateMachine] Order {order_id} -> {status.value} lost the race or is gone")
            return TransitionOutcome(success=False, conflict=True, message=ALREADY_PROCESSED)
        if not result.success:
            return TransitionOutcome(success=False, message=f"Update failed: {result.error}")

        order = result.order
        events = status_change_events(order, status)
        if extra_events:
            events.extend(extra_events(order))

        logger.info(f"✅ [StateMachine] Order {order.id} -> {status.value}")
        await self.dispatcher.publish_transition(order, status.value, events)
        return TransitionOutcome(success=True, order=order, message=f"Order #{order.display_id} is now {status.value}.", events=events)
