"""Наблюдатели за очередью: UI, CLI и SSE подписываются на изменения задач."""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from models import Job

logger = logging.getLogger(__name__)


class JobEvent(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


class JobObserver(Protocol):
    def on_job_event(self, event: JobEvent, job: Job) -> None:
        ...

    def on_vendor_status(self, job_id: str, status: str) -> None:
        ...


class LoggingObserver:
    """Пишет изменения статуса и прогресса в лог (используется CLI)"""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger
        self._last: Dict[str, Any] = {}

    def on_job_event(self, event: JobEvent, job: Job) -> None:
        if event is JobEvent.UPDATED:
            state = (job.status, job.progress)
            if self._last.get(job.id) == state:
                return
            self._last[job.id] = state
        if job.status.value == "error":
            self.log.error(f"{job.filename}: {job.status.value} - {job.error}")
        else:
            self.log.info(f"{job.filename}: {event.value} [{job.status.value}] {job.progress}%")

    def on_vendor_status(self, job_id: str, status: str) -> None:
        self.log.debug(f"Job {job_id}: vendor status {status}")


class QueueObserver:
    """Складывает события в asyncio.Queue для стриминга (SSE)"""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def _put(self, item: Dict[str, Any]) -> None:
        # Уведомления могут прийти из другого потока
        self.loop.call_soon_threadsafe(self.queue.put_nowait, item)

    def on_job_event(self, event: JobEvent, job: Job) -> None:
        self._put({"event": event.value, "job": job.model_dump(mode="json")})

    def on_vendor_status(self, job_id: str, status: str) -> None:
        self._put({"event": "vendor_status", "job_id": job_id, "status": status})

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()
