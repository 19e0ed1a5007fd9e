from datetime import datetime, timezone

import aiohttp
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
import logging

from app.core.config import settings
from app.domain.messages import review_alert_text
from app.domain.schemas import CancelOrderIn, CrashLogIn, FinalizePodIn, PlaceOrderIn, RemindIn, ReviewIn

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/api/health")
def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

@router.get("/")
@router.get("/api")
@router.get("/api/index")
def banner(request: Request):
    # Degraded when the composition root failed to build the services
    status = "operational" if hasattr(request.app.state, "webhook_router") else "degraded"
    return {"status": status, "system": "Abebe Food Delivery API Gateway"}

@router.get("/favicon.ico")
def favicon():
    return Response(status_code=204)

# ---------------------------------------------------------
# Orders
# ---------------------------------------------------------
@router.post("/api/orders")
async def place_order(payload: PlaceOrderIn, request: Request):
    try:
        order = await run_in_threadpool(request.app.state.order_repo.place_order, payload.orderData, payload.itemsData)
    except SQLAlchemyError as e:
        logger.error(f"❌ Order placement failed: {e}")
        return JSONResponse({"error": str(getattr(e, "orig", None) or e)}, status_code=500)
    logger.info(f"🆕 Order #{order.display_code} (ID: {order.id}) placed by {order.user_id}")
    return order.model_dump(mode="json")

@router.post("/api/orders/{order_id}/cancel")
async def cancel_order(order_id: int, payload: CancelOrderIn, request: Request):
    order = await run_in_threadpool(request.app.state.order_repo.get_order, order_id)
    if order is None:
        return JSONResponse({"error": "Order not found"}, status_code=404)
    if order.user_id != payload.userId:
        logger.warning(f"⚠️ User {payload.userId} tried to cancel order {order_id} owned by {order.user_id}")
        return JSONResponse({"error": "Not allowed to cancel this order"}, status_code=403)

    outcome = await request.app.state.state_machine.cancel(order_id)
    if outcome.conflict:
        return JSONResponse({"error": outcome.message}, status_code=409)
    if not outcome.success:
        return JSONResponse({"error": outcome.message}, status_code=500)
    return outcome.order.model_dump(mode="json")

# ---------------------------------------------------------
# Feedback & operator pings
# ---------------------------------------------------------
@router.post("/api/reviews")
async def create_review(payload: ReviewIn, request: Request):
    try:
        review = await run_in_threadpool(
            request.app.state.admin_repo.add_review,
            payload.userId, payload.orderId, payload.rating, payload.comment, payload.fullName,
        )
    except SQLAlchemyError as e:
        logger.error(f"❌ Review insert failed: {e}")
        return JSONResponse({"error": str(getattr(e, "orig", None) or e)}, status_code=500)

    await request.app.state.operator_notifier.send_text(
        review_alert_text(payload.rating, payload.orderId, payload.fullName, payload.comment)
    )
    return review.model_dump(mode="json")

@router.post("/api/remind")
async def remind(payload: RemindIn, request: Request):
    display_id = payload.orderId
    try:
        order = await run_in_threadpool(request.app.state.order_repo.get_order, int(payload.orderId))
        if order is not None:
            display_id = order.display_id
    except (ValueError, SQLAlchemyError) as e:
        logger.warning(f"⚠️ Remind lookup failed for {payload.orderId}: {e}")

    sent = await request.app.state.operator_notifier.send_text(f"⚠️ *LATE ORDER #{display_id}*\nStatus: {payload.status}")
    if not sent:
        return {"warning": "Admin notified with delay"}
    return {"success": True}

# ---------------------------------------------------------
# Telemetry
# ---------------------------------------------------------
@router.post("/api/log")
async def crash_log(payload: CrashLogIn, request: Request):
    try:
        result = await request.app.state.telemetry.record(payload)
    except SQLAlchemyError as e:
        logger.error(f"❌ [Telemetry Error] {e}")
        return JSONResponse({"error": str(getattr(e, "orig", None) or e)}, status_code=500)
    return {"success": True, "cluster_id": result.cluster_id, "count": result.count, "is_new": result.is_new}

# ---------------------------------------------------------
# Supabase helpers
# ---------------------------------------------------------
@router.get("/api/realtime-config")
def realtime_config(request: Request):
    if not settings.SUPABASE_URL:
        return JSONResponse({"error": "Realtime not configured"}, status_code=503)
    return request.app.state.supabase.realtime_config()

@router.post("/api/finalize-pod")
async def finalize_pod(payload: FinalizePodIn, request: Request):
    """Delivery proof: runs the atomic RPC as the calling driver, then tells the operator."""
    try:
        status, data = await request.app.state.supabase.rpc(
            "finalize_delivery_atomic",
            {"p_order_id": payload.orderId, "p_pod_url": payload.podUrl},
            request.headers.get("authorization"),
        )
    except aiohttp.ClientError as e:
        logger.error(f"❌ [POD Error] {e}")
        return JSONResponse({"error": str(e)}, status_code=500)
    if status >= 400:
        message = (data or {}).get("message") if isinstance(data, dict) else None
        logger.error(f"❌ [POD Error] {message or status}")
        return JSONResponse({"error": message or f"Upstream error {status}"}, status_code=500)
    if isinstance(data, dict) and data.get("success") is False:
        return JSONResponse({"error": data.get("error") or "Operation failed"}, status_code=400)

    msg = f"🏁 *Order #{payload.orderId} Delivered*\n\n"
    if payload.podUrl:
        msg += f"📸 Proof of Delivery: [View Image]({payload.podUrl})"
    else:
        msg += "✅ Delivery confirmed by driver (No Proof Uploaded)."
    await request.app.state.operator_notifier.send_text(msg)

    if isinstance(data, dict) and data.get("order"):
        return data["order"]
    return {"success": True}
