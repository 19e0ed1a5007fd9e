import logging
from typing import Optional, Union

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BufferedInputFile
from aiogram.utils.token import TokenValidationError

from app.core.config import settings

logger = logging.getLogger(__name__)

class TelegramService:
    """
    Thin operator-channel transport over the Telegram Bot API.

    Send methods raise aiogram errors so callers can pick a fallback; with no
    token configured they only log and return False.
    """

    def __init__(self, token: Optional[str] = None):
        self.bot = None
        self.enabled = False

        if token:
            try:
                self.bot = Bot(token=token, default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN))
                self.enabled = True
                logger.info("✅ TelegramService: Bot client initialized")
            except TokenValidationError as e:
                logger.error(f"❌ TelegramService: invalid bot token ({e})")
        else:
            logger.warning("⚠️ TelegramService: TELEGRAM_BOT_TOKEN missing. Operator messages will be logged only.")

    async def send_message(self, chat_id, text: str, reply_markup=None) -> bool:
        if not self.enabled:
            logger.info(f"[Telegram Placeholder] To {chat_id}: {text}")
            return False
        await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)
        return True

    async def send_photo(
        self,
        chat_id,
        photo: Union[bytes, str],
        caption: Optional[str] = None,
        reply_markup=None,
        filename: str = "payment.jpg",
    ) -> bool:
        """`photo` is either raw image bytes or a remote URL Telegram fetches itself."""
        if not self.enabled:
            logger.info(f"[Telegram Placeholder] Photo to {chat_id}: {caption}")
            return False
        if isinstance(photo, (bytes, bytearray)):
            photo = BufferedInputFile(bytes(photo), filename=filename)
        await self.bot.send_photo(chat_id=chat_id, photo=photo, caption=caption, reply_markup=reply_markup)
        return True

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        if not self.enabled:
            return
        try:
            await self.bot.answer_callback_query(callback_query_id=callback_id, text=text)
        except Exception as e:
            # Stale callbacks (older than ~15 min) are refused by Telegram
            logger.warning(f"⚠️ [Telegram] answerCallbackQuery failed: {e}")

    async def close(self) -> None:
        if self.bot is not None:
            await self.bot.session.close()


def build_telegram_service() -> TelegramService:
    return TelegramService(settings.TELEGRAM_BOT_TOKEN)
