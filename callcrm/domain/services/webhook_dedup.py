"""
Webhook Deduplicator
Idempotency for provider retries carrying the same webhook_id
"""
import asyncio
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]


class WebhookDeduplicator:
    """
    Remembers (tenant_id, webhook_id) pairs for a time window.

    The first claimant of a key processes the event; later claimants within
    the window get the first one's result. If the original is still in
    flight they wait for it. If the original fails the key is released so a
    retry can process the event again.

    A window of 0 disables deduplication.
    """

    def __init__(self, window_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: Dict[_Key, Tuple[float, asyncio.Future]] = {}

    @property
    def enabled(self) -> bool:
        return self.window_seconds > 0

    def _purge(self, now: float) -> None:
        expired = [
            key for key, (seen_at, future) in self._entries.items()
            if future.done() and now - seen_at > self.window_seconds
        ]
        for key in expired:
            del self._entries[key]

    async def run(
        self,
        tenant_id: str,
        webhook_id: Optional[str],
        process: Callable[[], Any]
    ) -> Tuple[Any, bool]:
        """
        Run process() once per key within the window.

        Returns:
            (result, duplicate) where duplicate is True when the result
            belongs to an earlier invocation
        """
        if not self.enabled or not webhook_id:
            return await process(), False

        key = (tenant_id, webhook_id)
        now = self._clock()
        self._purge(now)

        entry = self._entries.get(key)
        if entry is not None:
            _, original = entry
            await asyncio.wait({original})
            if not original.cancelled():
                logger.info(f"Duplicate webhook {webhook_id} for tenant {tenant_id} ignored")
                return original.result(), True

            # Original failed and released the key
            logger.info(f"Original webhook {webhook_id} failed, reprocessing retry")
            return await self.run(tenant_id, webhook_id, process)

        future = asyncio.get_running_loop().create_future()
        self._entries[key] = (now, future)
        try:
            result = await process()
        except BaseException:
            self._entries.pop(key, None)
            future.cancel()
            raise

        future.set_result(result)
        return result, False
