import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.domain.messages import PROOF_FAILED_SUFFIX, cancellation_text, order_card_text
from app.domain.schemas import OrderItemRecord, ProfileRecord
from app.infrastructure.image_fetcher import ImageFetcher
from app.infrastructure.keyboards import order_actions_keyboard
from app.infrastructure.telegram_service import TelegramService
from app.interfaces.IOrderRepository import IOrderRepository
from app.interfaces.IProfileRepository import IProfileRepository

logger = logging.getLogger(__name__)

# How an order card finally went out
SENT_PHOTO = "photo"
SENT_PHOTO_URL = "photo_url"
SENT_TEXT = "text"
SENT_TEXT_FALLBACK = "text_fallback"


class OperatorNotifier:
    """Messages to the operator's Telegram chat. Nothing here raises to the caller."""

    def __init__(
        self,
        telegram: TelegramService,
        image_fetcher: ImageFetcher,
        order_repo: IOrderRepository,
        profile_repo: IProfileRepository,
        admin_id: str = settings.TELEGRAM_ADMIN_ID,
        send_attempts: int = settings.OPERATOR_SEND_ATTEMPTS,
        retry_seconds: float = settings.OPERATOR_SEND_RETRY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.telegram = telegram
        self.image_fetcher = image_fetcher
        self.order_repo = order_repo
        self.profile_repo = profile_repo
        self.admin_id = admin_id
        self.send_attempts = send_attempts
        self.retry_seconds = retry_seconds
        self.sleep = sleep

    async def send_text(self, text: str, reply_markup=None, chat_id=None) -> bool:
        try:
            return await self.telegram.send_message(chat_id or self.admin_id, text, reply_markup)
        except Exception as e:
            logger.error(f"❌ [Telegram] Failed to send operator message: {e}")
            return False

    async def report_error(self, text: str) -> bool:
        return await self.send_text(f"🔥 {text}")

    async def notify_new_order(self, order_id: int, from_webhook: bool = True, chat_id=None) -> Optional[str]:
        """Send the order card. Returns how it was delivered, or None if it was not."""
        target = chat_id or self.admin_id

        try:
            order = await run_in_threadpool(self.order_repo.get_order, order_id)
        except SQLAlchemyError as e:
            logger.error(f"❌ [Bot] Could not load order #{order_id}: {e}")
            await self.send_text("❌ Error displaying order.", chat_id=target)
            return None

        if order is None:
            logger.warning(f"[Bot] Order #{order_id} not found in database. (webhook: {from_webhook})")
            # Webhook-driven lookups of vanished orders stay silent
            if not from_webhook:
                await self.send_text("❌ Order record not found.", chat_id=target)
            return None

        profile, items = await asyncio.gather(
            self._load_profile(order.user_id),
            self._load_items(order.public_id),
        )
        text = order_card_text(order, profile, items, settings.TIMEZONE, settings.CURRENCY)
        keyboard = order_actions_keyboard(order)

        attempts = self.send_attempts if from_webhook else 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._send_card(target, text, keyboard, order.payment_proof_url, order.id)
            except Exception as e:
                if attempt < attempts:
                    logger.warning(f"⚠️ Notification attempt {attempt} for order #{order.id} failed, retrying in {self.retry_seconds}s...")
                    await self.sleep(self.retry_seconds)
                else:
                    logger.error(f"❌ Final notification error for order #{order.id}: {e}")
        return None

    async def _send_card(self, chat_id, text: str, keyboard, proof_url: Optional[str], order_id: int) -> Optional[str]:
        """Returns the delivery path, or None when the channel reported nothing went out."""
        if not proof_url:
            return SENT_TEXT if await self.telegram.send_message(chat_id, text, keyboard) else None

        logger.info(f"[Telegram] Processing payment proof: URL={proof_url}")
        try:
            buffer = await self.image_fetcher.download_with_retry(proof_url)
            if await self.telegram.send_photo(chat_id, buffer, caption=text, reply_markup=keyboard):
                return SENT_PHOTO
            logger.warning(f"⚠️ [Telegram] Photo for order #{order_id} was not delivered, trying direct URL")
        except Exception as e:
            logger.error(f"❌ [Telegram] Photo send failed (Order #{order_id}), falling back to direct URL: {e}")

        try:
            if await self.telegram.send_photo(chat_id, proof_url, caption=text, reply_markup=keyboard):
                return SENT_PHOTO_URL
            logger.warning(f"⚠️ [Telegram] URL photo for order #{order_id} was not delivered, falling back to text")
        except Exception as e:
            logger.error(f"❌ [Telegram] URL photo failed (Order #{order_id}), falling back to text: {e}")

        if await self.telegram.send_message(chat_id, text + PROOF_FAILED_SUFFIX, keyboard):
            return SENT_TEXT_FALLBACK
        return None

    async def notify_cancellation(self, order_id: int) -> bool:
        try:
            order = await run_in_threadpool(self.order_repo.get_order, order_id)
        except SQLAlchemyError as e:
            logger.error(f"❌ Notify cancellation error for order #{order_id}: {e}")
            return False
        if order is None:
            logger.warning(f"[Bot] Cancellation hook: Order record #{order_id} already gone.")
            return False
        return await self.send_text(cancellation_text(order))

    async def _load_profile(self, user_id) -> Optional[ProfileRecord]:
        if not user_id:
            return None
        try:
            return await run_in_threadpool(self.profile_repo.get_profile, user_id)
        except SQLAlchemyError as e:
            logger.error(f"❌ Relation fetch error (profile {user_id}): {e}")
            return None

    async def _load_items(self, public_id) -> List[OrderItemRecord]:
        return await run_in_threadpool(self.order_repo.get_items, public_id)
