import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.domain.schemas import OrderRecord
from app.interfaces.IOrderRepository import IOrderRepository

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Order state changed or not found."


def is_transport_error(error: Exception) -> bool:
    """Connection-level failures, where the write may or may not have landed."""
    if isinstance(error, (OperationalError, InterfaceError)):
        return True
    return isinstance(error, DBAPIError) and bool(error.connection_invalidated)


def _normalize(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.replace(microsecond=0)
    if isinstance(value, (float, Decimal)):
        try:
            return Decimal(str(value)).normalize()
        except InvalidOperation:
            return value
    return value


def values_match(record: OrderRecord, values: Dict[str, Any]) -> bool:
    for key, expected in values.items():
        if _normalize(getattr(record, key, None)) != _normalize(expected):
            return False
    return True


@dataclass
class MutationResult:
    success: bool
    order: Optional[OrderRecord] = None
    error: Optional[str] = None
    conflict: bool = False
    verified: bool = False  # True when success was established by re-reading after a blip


class ResilientMutator:
    """
    Conditional order updates that survive network blips.

    A transport error on the UPDATE does not mean the UPDATE failed. Instead
    of writing again (double-apply) or reporting failure (operator sees a
    lie), the row is re-read and compared field by field; if that is
    inconclusive it waits once and compares again.
    """

    def __init__(
        self,
        order_repo: IOrderRepository,
        backoff_seconds: float = settings.VERIFY_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.order_repo = order_repo
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    async def update_order(
        self,
        order_id: int,
        values: Dict[str, Any],
        allowed_statuses: Optional[Iterable[str]] = None,
    ) -> MutationResult:
        allowed = list(allowed_statuses) if allowed_statuses is not None else None
        try:
            row = await run_in_threadpool(self.order_repo.conditional_update, order_id, values, allowed)
        except SQLAlchemyError as e:
            if not is_transport_error(e):
                # Constraint / data errors are real answers, not blips
                message = str(getattr(e, "orig", None) or e)
                logger.error(f"❌ [Mutator] Order {order_id} update rejected by the database: {message}")
                return MutationResult(success=False, error=message)
            return await self._verify_after_blip(order_id, values, e)

        if row is None:
            logger.info(f"[Mutator] Order {order_id}: source-state predicate false ({allowed}), nothing written")
            return MutationResult(success=False, conflict=True, error=CONFLICT_MESSAGE)
        return MutationResult(success=True, order=row)

    async def _verify_after_blip(self, order_id: int, values: Dict[str, Any], error: Exception) -> MutationResult:
        logger.warning(f"⚠️ [Mutator] Potential network blip on order {order_id}, checking state... ({error})")

        current = await self._read_back(order_id)
        if current is not None and values_match(current, values):
            logger.info(f"✅ [Mutator] Verified: order {order_id} update succeeded despite exception.")
            return MutationResult(success=True, order=current, verified=True)

        await self.sleep(self.backoff_seconds)

        current = await self._read_back(order_id)
        if current is not None and values_match(current, values):
            logger.info(f"✅ [Mutator] Verified on second read: order {order_id} updated.")
            return MutationResult(success=True, order=current, verified=True)

        logger.error(f"❌ [Mutator] Order {order_id} update could not be verified: {error}")
        return MutationResult(success=False, error=str(getattr(error, "orig", None) or error))

    async def _read_back(self, order_id: int) -> Optional[OrderRecord]:
        try:
            return await run_in_threadpool(self.order_repo.get_order, order_id)
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ [Mutator] Verification read failed for order {order_id}: {e}")
            return None
