import json
import logging

import redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.domain.models import BotSession
from app.domain.schemas import ConversationState
from app.infrastructure.database import SessionLocal

logger = logging.getLogger(__name__)

# Scenes (multi-step operator forms)
SCENE_ACCEPT = "ACCEPT_ORDER"
SCENE_REJECT = "REJECT_ORDER"
SCENE_ADD_ITEM = "ADD_ITEM"
SCENE_ADD_PAYMENT = "ADD_PAYMENT_METHOD"
SCENE_MANAGE_PAYMENTS = "MANAGE_PAYMENTS"

class StateManager:
    """
    Per-conversation state for the operator bot, keyed by "{user_id}:{chat_id}".

    Redis is the primary store; the bot_sessions table is the durable fallback
    so a Redis outage or a process restart never loses a half-finished form.
    """

    def __init__(self, redis_url=None, session_factory=SessionLocal, ttl=settings.SESSION_TTL_SECONDS):
        self.session_factory = session_factory
        self.ttl = ttl
        self.redis = None
        self.redis_available = False

        # 1. Primary Memory (Redis)
        if redis_url:
            try:
                self.redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=1  # Fail fast if Redis is down
                )
                self.redis.ping()
                self.redis_available = True
                logger.info("✅ StateManager: Connected to Redis.")
            except RedisError as e:
                logger.warning(f"⚠️ StateManager: Redis unreachable ({e}). Using bot_sessions table.")
        else:
            logger.info("StateManager: no REDIS_URL, sessions live in the bot_sessions table.")

    @staticmethod
    def session_key(user_id, chat_id) -> str:
        return f"{user_id}:{chat_id}"

    def load(self, key: str) -> dict:
        if self.redis_available:
            try:
                data = self.redis.get(f"bot_session:{key}")
                if data:
                    return json.loads(data)
            except RedisError as e:
                self._handle_redis_error(e)

        # 2. Fallback Memory (database)
        session = self.session_factory()
        try:
            row = session.get(BotSession, key)
            return dict(row.session or {}) if row else {}
        except SQLAlchemyError as e:
            logger.error(f"❌ [Session] Load failed for {key}: {e}")
            return {}
        finally:
            session.close()

    def save(self, key: str, data: dict) -> None:
        if self.redis_available:
            try:
                self.redis.setex(f"bot_session:{key}", self.ttl, json.dumps(data))
            except RedisError as e:
                self._handle_redis_error(e)

        # Always write through, so the table is current when Redis drops out
        session = self.session_factory()
        try:
            session.merge(BotSession(key=key, session=data))
            session.commit()
            logger.debug(f"[Session] Session saved for {key}")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ [Session] Error saving session for {key}: {e}")
        finally:
            session.close()

    def load_state(self, user_id, chat_id) -> ConversationState:
        return ConversationState.model_validate(self.load(self.session_key(user_id, chat_id)))

    def save_state(self, user_id, chat_id, state: ConversationState) -> None:
        self.save(self.session_key(user_id, chat_id), state.model_dump())

    def _handle_redis_error(self, e):
        """Log error and switch flag to False to stop trying Redis for a while."""
        logger.error(f"❌ Redis Error: {e}. Switching to bot_sessions table.")
        self.redis_available = False
