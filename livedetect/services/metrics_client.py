# livedetect/services/metrics_client.py
import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

logger = logging.getLogger(__name__)

class HttpMetricsSink:
    """Fire-and-forget POSTs to a relay server's /metrics/ingest. Failures are logged and forgotten."""

    def __init__(self, base_url: str, timeout_s: float = 2.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_s, transport=transport)
        self._tasks: Set[asyncio.Task] = set()

    def emit(self, event: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._post(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, event: Dict[str, Any]) -> None:
        try:
            resp = await self._client.post("/metrics/ingest", json=event)
            if resp.status_code != 200:
                logger.debug("metrics ingest rejected (%s): %s", resp.status_code, resp.text)
        except httpx.HTTPError as exc:
            logger.debug("metrics ingest failed: %s", exc)

    async def aclose(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._client.aclose()
