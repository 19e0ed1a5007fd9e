import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from app.core.config import settings

# 1. Infrastructure & Domain Imports
from app.infrastructure.database import Base, engine
from app.infrastructure.dedup_cache import DedupCache
from app.infrastructure.image_fetcher import ImageFetcher
from app.infrastructure.notification_service import PushNotificationService
from app.infrastructure.repositories.admin_repository import AdminRepository
from app.infrastructure.repositories.order_repository import PostgresOrderRepository
from app.infrastructure.repositories.profile_repository import PostgresProfileRepository
from app.infrastructure.state_manager import StateManager
from app.infrastructure.supabase_client import SupabaseGateway
from app.infrastructure.telegram_service import build_telegram_service
from app.application.notification_dispatcher import NotificationDispatcher
from app.application.operator_notifier import OperatorNotifier
from app.application.orchestrator import AdminOrchestrator
from app.application.order_state_machine import OrderStateMachine
from app.application.resilient_mutator import ResilientMutator
from app.application.telemetry import TelemetryService
from app.application.webhook_router import WebhookRouter
from app.interfaces import api_routes, proxy_routes, supabase_webhook, telegram_webhook

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# DATABASE CONNECTION (With Retry Logic)
# ---------------------------------------------------------
MAX_RETRIES = 10
WAIT_SECONDS = 3

for attempt in range(MAX_RETRIES):
    try:
        logger.info(f"🔄 Attempting DB connection ({attempt + 1}/{MAX_RETRIES})...")
        Base.metadata.create_all(bind=engine)
        logger.info("✅ DB Connected and Tables Created.")
        break
    except OperationalError as e:
        logger.warning(f"⚠️ DB not ready yet ({e}). Waiting {WAIT_SECONDS}s...")
        time.sleep(WAIT_SECONDS)
else:
    logger.error("❌ Could not connect to DB after retries. Requests touching the store will fail.")


# ---------------------------------------------------------
# COMPOSITION ROOT
# ---------------------------------------------------------
def build_services(app: FastAPI, telegram=None, push=None, image_fetcher=None, sleep=asyncio.sleep):
    """Wire every service once and hang them on app.state. Tests pass fakes for the outside channels."""
    order_repo = PostgresOrderRepository()
    profile_repo = PostgresProfileRepository()
    admin_repo = AdminRepository()

    telegram = telegram or build_telegram_service()
    push = push or PushNotificationService(profile_repo, settings.firebase_credentials_json)
    image_fetcher = image_fetcher or ImageFetcher(sleep=sleep)

    operator_notifier = OperatorNotifier(telegram, image_fetcher, order_repo, profile_repo, sleep=sleep)
    dispatcher = NotificationDispatcher(push, operator_notifier, DedupCache())
    state_machine = OrderStateMachine(ResilientMutator(order_repo, sleep=sleep), dispatcher)

    app.state.order_repo = order_repo
    app.state.profile_repo = profile_repo
    app.state.admin_repo = admin_repo
    app.state.telegram = telegram
    app.state.push = push
    app.state.operator_notifier = operator_notifier
    app.state.dispatcher = dispatcher
    app.state.state_machine = state_machine
    # Creation and cancellation replays are tracked separately
    app.state.webhook_router = WebhookRouter(dispatcher, DedupCache(), DedupCache())
    app.state.telemetry = TelemetryService(admin_repo, operator_notifier)
    app.state.supabase = SupabaseGateway(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
    app.state.orchestrator = AdminOrchestrator(
        notifier=operator_notifier,
        state_machine=state_machine,
        order_repo=order_repo,
        profile_repo=profile_repo,
        admin_repo=admin_repo,
        push=push,
        state_store=StateManager(settings.REDIS_URL),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    telegram = getattr(app.state, "telegram", None)
    if telegram is not None:
        await telegram.close()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

try:
    build_services(app)
except Exception as e:
    logger.error(f"❌ Error initializing services: {e}", exc_info=True)


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > settings.MAX_BODY_BYTES:
        return JSONResponse(
            {"error": "Payload Too Large", "message": "Request body exceeds the 4.5MB application limit."},
            status_code=413,
        )
    return await call_next(request)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error(f"🔥 Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    notifier = getattr(request.app.state, "operator_notifier", None)
    if notifier is not None:
        await notifier.report_error(f"*Server Error* on `{request.url.path}`\n{exc}")
    message = str(exc) if settings.is_development else "Something went wrong."
    return JSONResponse({"error": "Internal Server Error", "message": message}, status_code=500)


# Include Routers
app.include_router(telegram_webhook.router)
app.include_router(supabase_webhook.router)
app.include_router(proxy_routes.router)
app.include_router(api_routes.router)
