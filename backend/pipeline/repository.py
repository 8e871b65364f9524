"""In-memory хранилище задач очереди.

Единственный источник правды для UI. Все изменения идут через
``append`` / ``patch`` / ``remove`` / ``requeue``, записи неизменяемы,
поэтому снимки из ``list()`` всегда согласованы.
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable, Iterable, List, Optional

from models import Job, JobStatus, TranscriptionOptions
from .errors import JobStateError
from .observers import JobEvent, JobObserver

logger = logging.getLogger(__name__)


class JobRepository:
    def __init__(self):
        self._jobs: "OrderedDict[str, Job]" = OrderedDict()
        self._lock = threading.Lock()
        self._observers: List[JobObserver] = []

    # ========== ПОДПИСКИ ==========

    def subscribe(self, observer: JobObserver) -> Callable[[], None]:
        """Подписать наблюдателя, возвращает функцию отписки"""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, event: JobEvent, job: Job) -> None:
        for observer in list(self._observers):
            try:
                observer.on_job_event(event, job)
            except Exception as e:
                logger.error(f"Observer {observer!r} failed on {event.value}: {e}")

    def report_vendor_status(self, job_id: str, status: str) -> None:
        """Промежуточный статус от AssemblyAI (queued/processing/...)"""
        for observer in list(self._observers):
            try:
                observer.on_vendor_status(job_id, status)
            except Exception as e:
                logger.error(f"Observer {observer!r} failed on vendor status: {e}")

    # ========== МУТАЦИИ ==========

    def append(self, jobs: Iterable[Job]) -> List[Job]:
        added = list(jobs)
        with self._lock:
            seen = set()
            for job in added:
                if job.id in self._jobs or job.id in seen:
                    raise ValueError(f"Duplicate job id: {job.id}")
                seen.add(job.id)
            for job in added:
                self._jobs[job.id] = job
        for job in added:
            logger.info(f"Job {job.id}: queued {job.filename}")
            self._notify(JobEvent.ADDED, job)
        return added

    def patch(self, job_id: str, **fields) -> Optional[Job]:
        """Обновить поля задачи. Неизвестный id - не ошибка (задачу могли удалить)"""
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            updated = current.model_copy(update=fields)
            self._jobs[job_id] = updated
        self._notify(JobEvent.UPDATED, updated)
        return updated

    def remove(self, job_id: str) -> Optional[Job]:
        with self._lock:
            removed = self._jobs.pop(job_id, None)
        if removed is not None:
            logger.info(f"Job {job_id}: removed from queue")
            self._notify(JobEvent.REMOVED, removed)
        return removed

    def requeue(self, job_id: str, options: Optional[TranscriptionOptions] = None) -> Job:
        """Сброс задачи для повтора: в конец очереди, прогресс 0, ошибка очищена"""
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise KeyError(job_id)
            if not current.status.is_terminal:
                raise JobStateError(f"Job {job_id} is {current.status.value}, only finished jobs can be retried")
            update = {
                "status": JobStatus.QUEUED,
                "progress": 0,
                "error": None,
                "output_path": None,
                "history_id": None,
                "vendor_status": None,
            }
            if options is not None:
                update["options"] = options
            updated = current.model_copy(update=update)
            self._jobs[job_id] = updated
            self._jobs.move_to_end(job_id)
        logger.info(f"Job {job_id}: re-queued")
        self._notify(JobEvent.UPDATED, updated)
        return updated

    def clear_completed(self) -> List[Job]:
        with self._lock:
            done = [job for job in self._jobs.values() if job.status is JobStatus.COMPLETE]
            for job in done:
                del self._jobs[job.id]
        for job in done:
            self._notify(JobEvent.REMOVED, job)
        return done

    # ========== ЧТЕНИЕ ==========

    def list(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def next_queued(self) -> Optional[Job]:
        with self._lock:
            for job in self._jobs.values():
                if job.status is JobStatus.QUEUED:
                    return job
        return None

    def __len__(self) -> int:
        return len(self._jobs)
