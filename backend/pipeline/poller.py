"""Ожидание результата транскрипции поверх одиночного ``poll_once``."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import config
from models import PollResult
from .errors import PollTimeoutError, VendorTranscriptionError

logger = logging.getLogger(__name__)


class SupportsPollOnce(Protocol):
    async def poll_once(self, transcript_id: str, api_key: str) -> PollResult:
        ...


class Poller:
    """Ограниченный по времени цикл опроса.

    Первая проверка после ``initial_delay``, затем каждые ``interval`` секунд.
    Таймаут отсчитывается от начала ``wait`` (включая начальную задержку).
    """

    def __init__(
        self,
        gateway: SupportsPollOnce,
        *,
        initial_delay: float = config.POLL_INITIAL_DELAY,
        interval: float = config.POLL_INTERVAL,
        timeout: float = config.POLL_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.initial_delay = initial_delay
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def wait(
        self,
        transcript_id: str,
        api_key: str,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> Dict[str, Any]:
        started = self._clock()
        await self._sleep(self.initial_delay)

        attempts = 0
        while self._clock() - started < self.timeout:
            result = await self.gateway.poll_once(transcript_id, api_key)
            attempts += 1
            if on_status is not None:
                on_status(result.vendor_status)

            if result.status == "completed":
                logger.info(f"Transcript {transcript_id} completed after {attempts} polls")
                return result.payload or {}
            if result.status == "failed":
                raise VendorTranscriptionError(result.message or "Transcription failed")

            await self._sleep(self.interval)

        logger.warning(f"Transcript {transcript_id} not ready after {self.timeout:.0f}s ({attempts} polls)")
        raise PollTimeoutError()
