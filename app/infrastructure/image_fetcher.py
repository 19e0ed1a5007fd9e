import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, Tuple

import aiohttp

from app.core.config import settings
from app.domain.errors import ImageDownloadError

logger = logging.getLogger(__name__)

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG"


def is_valid_jpeg(buffer: Optional[bytes]) -> bool:
    return bool(buffer) and buffer[:3] == JPEG_MAGIC


def is_valid_png(buffer: Optional[bytes]) -> bool:
    return bool(buffer) and buffer[:4] == PNG_MAGIC


class ImageFetcher:
    """
    Downloads payment proofs straight from their public URL.

    The storage SDK was seen handing back empty buffers for freshly uploaded
    files, so the bytes are fetched over plain HTTP and checked for JPEG/PNG
    magic before anyone tries to send them.
    """

    def __init__(
        self,
        delays: Sequence[float] = tuple(settings.IMAGE_RETRY_DELAYS),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        timeout_seconds: float = 15,
    ):
        self.delays = list(delays)
        self.sleep = sleep
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def _fetch(self, url: str) -> Tuple[int, bytes]:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url) as response:
                logger.info(f"[Storage] Response Content-Type: {response.headers.get('content-type', 'unknown')}")
                return response.status, await response.read()

    async def download_with_retry(self, url: str) -> bytes:
        attempts = len(self.delays)
        last_error = "no attempts made"

        for attempt, delay in enumerate(self.delays, start=1):
            if delay > 0:
                logger.info(f"[Storage] Retry {attempt - 1}/{attempts - 1}: waiting {delay}s before next attempt...")
                await self.sleep(delay)

            try:
                logger.info(f"[Storage] Attempt {attempt}/{attempts}: Fetching {url}")
                status, buffer = await self._fetch(url)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(f"⚠️ [Storage] Attempt {attempt}/{attempts} error: {last_error}")
                continue

            if status >= 400:
                last_error = f"HTTP {status}"
                logger.warning(f"⚠️ [Storage] Attempt {attempt}/{attempts} failed: {last_error}")
                continue

            if not buffer:
                last_error = "Buffer is empty"
                logger.warning(f"⚠️ [Storage] Attempt {attempt}/{attempts}: {last_error}")
                continue

            if not is_valid_jpeg(buffer) and not is_valid_png(buffer):
                last_error = f"not a valid image (first bytes: {buffer[:4].hex()})"
                logger.warning(f"⚠️ [Storage] Attempt {attempt}/{attempts}: {len(buffer)} bytes, {last_error}")
                continue

            kind = "JPEG" if is_valid_jpeg(buffer) else "PNG"
            logger.info(f"✅ [Storage] Downloaded valid image ({len(buffer)} bytes, {kind}) on attempt {attempt}")
            return buffer

        raise ImageDownloadError(f"Failed to download after {attempts} attempts: {last_error}")
