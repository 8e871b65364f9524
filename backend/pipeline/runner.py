"""Последовательный обработчик очереди.

Одна asyncio-задача разбирает очередь: берёт первую ``queued`` задачу,
дожидается её завершения и только потом берёт следующую.
"""

import asyncio
import logging
from typing import Callable, Optional

from models import Job, TranscriptionOptions
from .errors import MissingCredentialError
from .executor import PipelineExecutor
from .repository import JobRepository

logger = logging.getLogger(__name__)


class QueueRunner:
    def __init__(
        self,
        repository: JobRepository,
        executor: PipelineExecutor,
        credential: Callable[[], Optional[str]],
    ):
        self.repository = repository
        self.executor = executor
        self.credential = credential
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Запустить разбор очереди. Повторный вызов при работающем цикле ничего не делает

        Returns:
            True если цикл был запущен этим вызовом
        """
        if self.is_running:
            return False
        if not self.credential():
            raise MissingCredentialError()
        self._task = asyncio.get_running_loop().create_task(self._drain())
        return True

    async def _drain(self) -> None:
        processed = 0
        while True:
            job = self.repository.next_queued()
            if job is None:
                break
            api_key = self.credential()
            if not api_key:
                logger.warning("API key removed, queue paused")
                break
            await self.executor.run(job, api_key)
            processed += 1
        logger.info(f"Queue drained, {processed} job(s) processed")

    async def join(self) -> None:
        """Дождаться опустошения очереди"""
        while self._task is not None:
            task = self._task
            await task
            if task is self._task:
                break

    def retry(self, job_id: str, options: Optional[TranscriptionOptions] = None) -> Job:
        """Повтор задачи: сброс в queued (в конец очереди) и запуск цикла"""
        job = self.repository.requeue(job_id, options)
        self.start()
        return job
