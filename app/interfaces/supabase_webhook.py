from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/api/webhook/supabase")
async def supabase_webhook(request: Request):
    """
    Database webhook endpoint (row INSERT/UPDATE events).
    Always acknowledges: a non-2xx answer makes the source redeliver.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.info("[Webhook] Non-JSON body, acknowledging")
        return Response(status_code=204)

    result = await request.app.state.webhook_router.handle(payload)
    if result.body is None:
        return Response(status_code=result.status_code)
    return JSONResponse(result.body, status_code=result.status_code)
