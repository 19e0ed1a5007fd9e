import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

# Hop-by-hop / re-encoded headers that must not be replayed to the client
_DROP_RESPONSE_HEADERS = {"content-encoding", "transfer-encoding", "content-length", "connection"}


@dataclass
class UpstreamResponse:
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)


class SupabaseGateway:
    """Raw HTTP access to the Supabase REST/Auth/Storage APIs with the anon key."""

    def __init__(self, base_url: Optional[str], anon_key: Optional[str], timeout_seconds: float = 30):
        self.base_url = (base_url or "").rstrip("/")
        self.anon_key = anon_key or ""
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        if not self.base_url:
            logger.warning("⚠️ SupabaseGateway: SUPABASE_URL missing. Proxy and RPC calls will fail.")

    async def forward(
        self,
        method: str,
        path: str,
        params: List[Tuple[str, str]],
        headers: Dict[str, str],
        body: Optional[bytes],
    ) -> UpstreamResponse:
        """Pass a request through unchanged and hand the upstream answer back, whatever its status."""
        async with aiohttp.ClientSession(timeout=self.timeout, auto_decompress=True) as session:
            async with session.request(
                method,
                f"{self.base_url}/{path}",
                params=params,
                headers=headers,
                data=body or None,
                allow_redirects=False,
            ) as resp:
                content = await resp.read()
                out_headers = {
                    k: v for k, v in resp.headers.items() if k.lower() not in _DROP_RESPONSE_HEADERS
                }
                return UpstreamResponse(status=resp.status, body=content, headers=out_headers)

    async def rpc(self, name: str, payload: Dict[str, Any], authorization: Optional[str]) -> Tuple[int, Any]:
        """Call a Postgres function as the calling user (auth.uid() stays the caller)."""
        headers = {"apikey": self.anon_key, "Content-Type": "application/json"}
        if authorization:
            headers["Authorization"] = authorization
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(f"{self.base_url}/rest/v1/rpc/{name}", json=payload, headers=headers) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                return resp.status, data

    def realtime_config(self) -> Dict[str, str]:
        return {
            "url": self.base_url.replace("https://", "wss://") + "/realtime/v1/websocket",
            "apikey": self.anon_key,
        }
