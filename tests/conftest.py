import os

# Settings are read at import time: point everything at throwaway local resources first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TELEGRAM_ADMIN_ID"] = "1001"
os.environ["ENVIRONMENT"] = "test"
for _var in ("TELEGRAM_BOT_TOKEN", "REDIS_URL", "FIREBASE_ADMINSDK_JSON", "FIREBASE_SERVICE_ACCOUNT",
             "SUPABASE_URL", "SUPABASE_ANON_KEY"):
    os.environ.pop(_var, None)

import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.application.notification_dispatcher import NotificationDispatcher
from app.application.operator_notifier import OperatorNotifier
from app.application.order_state_machine import OrderStateMachine
from app.application.resilient_mutator import ResilientMutator
from app.domain import models
from app.domain.schemas import OrderRecord
from app.infrastructure.database import Base, SessionLocal, engine
from app.infrastructure.dedup_cache import DedupCache
from app.infrastructure.image_fetcher import ImageFetcher
from app.infrastructure.notification_service import PushNotificationService
from app.infrastructure.repositories.admin_repository import AdminRepository
from app.infrastructure.repositories.order_repository import PostgresOrderRepository
from app.infrastructure.repositories.profile_repository import PostgresProfileRepository
from app.interfaces.IOrderRepository import IOrderRepository

ADMIN_ID = "1001"
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 64
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# ---------------------------------------------------------
# Fakes for the outside channels
# ---------------------------------------------------------
class FakeTelegram:
    """Records operator-channel traffic. Failures are scripted per call type."""

    def __init__(self):
        self.bot = None
        self.messages = []
        self.photos = []
        self.callbacks = []
        self.fail_messages = 0  # next N send_message calls raise
        self.fail_url_photos = False
        self.fail_byte_photos = False

    async def send_message(self, chat_id, text, reply_markup=None):
        if self.fail_messages > 0:
            self.fail_messages -= 1
            raise RuntimeError("Telegram server says: Bad Gateway")
        self.messages.append({"chat_id": str(chat_id), "text": text, "reply_markup": reply_markup})
        return True

    async def send_photo(self, chat_id, photo, caption=None, reply_markup=None, filename="payment.jpg"):
        if isinstance(photo, (bytes, bytearray)) and self.fail_byte_photos:
            raise RuntimeError("Bad Request: IMAGE_PROCESS_FAILED")
        if isinstance(photo, str) and self.fail_url_photos:
            raise RuntimeError("Bad Request: wrong file identifier/HTTP URL specified")
        self.photos.append({"chat_id": str(chat_id), "photo": photo, "caption": caption, "reply_markup": reply_markup})
        return True

    async def answer_callback(self, callback_id, text=None):
        self.callbacks.append((callback_id, text))

    async def close(self):
        pass

    def texts(self):
        return [m["text"] for m in self.messages]


class ScriptedImageFetcher(ImageFetcher):
    """Each attempt pops the next scripted (status, bytes) pair, or raises it if it is an exception."""

    def __init__(self, responses=None, sleep=None):
        self.sleeps = []

        async def record_sleep(seconds):
            self.sleeps.append(seconds)

        super().__init__(delays=(0, 1, 2, 4), sleep=sleep or record_sleep)
        self.responses = list(responses or [])
        self.urls = []

    async def _fetch(self, url):
        self.urls.append(url)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FcmRecorder:
    """Stands in for firebase messaging.send / send_each_for_multicast."""

    def __init__(self):
        self.messages = []
        self.multicasts = []
        self.fail_tokens = set()

    def send(self, message):
        if message.token in self.fail_tokens:
            raise ValueError(f"Requested entity was not found: {message.token}")
        self.messages.append(message)
        return f"projects/abebe/messages/{len(self.messages)}"

    def send_multicast(self, message):
        self.multicasts.append(message)

        class _Response:
            success_count = len(message.tokens)

        return _Response()

    def titles(self):
        return [m.notification.title for m in self.messages]

    def to(self, token):
        return [m for m in self.messages if m.token == token]


class InMemoryOrderRepository(IOrderRepository):
    """Conditional update with a real lock, for races the SQLite test engine cannot stage."""

    def __init__(self, orders=None):
        self.orders = {o.id: o for o in orders or []}
        self.lock = threading.Lock()
        self.update_calls = 0

    def get_order(self, order_id):
        return self.orders.get(order_id)

    def conditional_update(self, order_id, values, allowed_statuses=None):
        with self.lock:
            self.update_calls += 1
            order = self.orders.get(order_id)
            if order is None:
                return None
            if allowed_statuses is not None and order.status not in list(allowed_statuses):
                return None
            updated = order.model_copy(update=values)
            self.orders[order_id] = updated
            return updated

    def get_items(self, public_id):
        return []

    def list_active(self, limit=50):
        return list(self.orders.values())[:limit]

    def list_since(self, since):
        return list(self.orders.values())

    def count_active(self):
        return len(self.orders)

    def place_order(self, order_data, items_data):
        raise NotImplementedError


# ---------------------------------------------------------
# Database
# ---------------------------------------------------------
@pytest.fixture(autouse=True)
def db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_order():
    def _make(**fields):
        data = {
            "status": "Placed",
            "user_id": "cust-1",
            "public_id": str(uuid.uuid4()),
            "display_code": "4821",
            "total_amount": Decimal("350.00"),
            "created_at": datetime.now(timezone.utc),
        }
        data.update(fields)
        session = SessionLocal()
        try:
            order = models.Order(**data)
            session.add(order)
            session.commit()
            session.refresh(order)
            return OrderRecord.model_validate(order)
        finally:
            session.close()

    return _make


@pytest.fixture
def make_profile():
    def _make(profile_id, role="customer", fcm_token=None, **fields):
        session = SessionLocal()
        try:
            session.add(models.Profile(id=profile_id, role=role, fcm_token=fcm_token, **fields))
            session.commit()
        finally:
            session.close()

    return _make


@pytest.fixture
def add_items():
    def _add(public_id, *items):
        session = SessionLocal()
        try:
            for item in items:
                session.add(models.OrderItem(order_id=public_id, **item))
            session.commit()
        finally:
            session.close()

    return _add


# ---------------------------------------------------------
# Services
# ---------------------------------------------------------
@pytest.fixture
def order_repo():
    return PostgresOrderRepository()


@pytest.fixture
def profile_repo():
    return PostgresProfileRepository()


@pytest.fixture
def admin_repo():
    return AdminRepository()


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def fcm():
    return FcmRecorder()


@pytest.fixture
def push(profile_repo, fcm):
    return PushNotificationService(profile_repo, send=fcm.send, send_multicast=fcm.send_multicast)


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def image_fetcher():
    return ScriptedImageFetcher()


@pytest.fixture
def notifier(telegram, image_fetcher, order_repo, profile_repo, sleeps):
    return OperatorNotifier(telegram, image_fetcher, order_repo, profile_repo, admin_id=ADMIN_ID, sleep=sleeps)


@pytest.fixture
def dispatcher(push, notifier):
    return NotificationDispatcher(push, notifier, DedupCache())


@pytest.fixture
def state_machine(order_repo, dispatcher, sleeps):
    return OrderStateMachine(ResilientMutator(order_repo, sleep=sleeps), dispatcher)
