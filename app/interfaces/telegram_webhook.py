from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/")
@router.post("/api/bot")
@router.post("/api/index")
async def telegram_webhook(request: Request):
    """
    Telegram Bot API webhook.
    Retrieves the orchestrator from app.state (Dependency Injection).
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict) or not (body.get("update_id") or body.get("message")):
        return PlainTextResponse("Abebe Online")

    try:
        await request.app.state.orchestrator.process_update(body)
    except Exception as e:
        # Telegram retries non-2xx answers, which would replay the operator's action
        logger.error(f"❌ Telegram Webhook Error: {e}", exc_info=True)
        await request.app.state.operator_notifier.report_error(f"Bot update failed: {e}")
    return PlainTextResponse("OK")
