from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
import aiohttp
import logging

from app.core.config import settings

router = APIRouter()
logger = logging.getLogger(__name__)

ALLOWED_PREFIXES = ("rest/v1/", "auth/v1/", "storage/v1/")
ANONYMOUS_BEARER = "Bearer zero-key-mode"
_DROP_REQUEST_HEADERS = {"host", "content-length"}


def build_upstream_headers(method: str, path: str, incoming) -> dict:
    # Starlette hands header names over lower-cased
    headers = {k: v for k, v in incoming.items() if k not in _DROP_REQUEST_HEADERS}
    headers["apikey"] = settings.SUPABASE_ANON_KEY or ""
    if headers.get("authorization") == ANONYMOUS_BEARER:
        del headers["authorization"]

    if method == "PUT" and path.startswith("storage/v1/object/"):
        headers["x-upsert"] = "true"
    return headers


@router.api_route("/api/proxy/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"])
async def proxy(path: str, request: Request):
    """
    Keyless access to Supabase for the mobile apps.
    Upstream status, headers and body come back untouched; a 401 is not
    retried anonymously so the app knows to refresh its session.
    """
    if not path.startswith(ALLOWED_PREFIXES):
        return JSONResponse({"error": "Blocked"}, status_code=403)

    body = await request.body()
    if len(body) > settings.MAX_BODY_BYTES:
        return JSONResponse(
            {"error": "Payload Too Large", "message": "Request body exceeds the 4.5MB application limit."},
            status_code=413,
        )

    headers = build_upstream_headers(request.method, path, request.headers)
    try:
        upstream = await request.app.state.supabase.forward(
            request.method, path, list(request.query_params.multi_items()), headers, body
        )
    except aiohttp.ClientError as e:
        logger.error(f"❌ [Proxy] {request.method} {path} failed: {e}")
        return JSONResponse({"error": str(e)}, status_code=500)

    return Response(content=upstream.body, status_code=upstream.status, headers=upstream.headers)
