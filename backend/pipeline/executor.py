"""Конвейер одной задачи: конвертация -> загрузка -> постановка -> опрос -> документ -> история.

Каждый шаг - явная точка ожидания со своим типом ошибки. Временная папка
конвертации удаляется ровно один раз в ``finally`` на любом исходе.
"""

import asyncio
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol, Type

from models import ExportOptions, HistoryEntry, Job, JobStatus, TranscriptionOptions, TranscriptResult
from services.audio_converter import ConversionResult, cleanup_temp_dir, convert_to_audio
from services.transcript import parse_transcript_response
from services.word_generator import generate_word, save_document
from .errors import (
    ConversionError,
    GenerationError,
    PersistenceError,
    PipelineError,
    SubmissionError,
    UploadError,
    VendorTranscriptionError,
)
from .poller import Poller
from .repository import JobRepository

logger = logging.getLogger(__name__)

# Контрольные точки прогресса
PROGRESS_CONVERTING = 10
PROGRESS_CONVERTED = 25
PROGRESS_UPLOADING = 30
PROGRESS_UPLOADED = 45
PROGRESS_SUBMITTED = 50
PROGRESS_TRANSCRIBED = 65
PROGRESS_GENERATING = 80
PROGRESS_WRITTEN = 85
PROGRESS_COMPLETE = 100


class TranscriptionGateway(Protocol):
    async def upload(self, audio_path: str, api_key: str) -> str:
        ...

    async def submit(self, upload_url: str, api_key: str, options: TranscriptionOptions) -> str:
        ...


class HistoryStore(Protocol):
    def save_entry(self, entry: HistoryEntry) -> str:
        ...


@contextmanager
def _step(error_cls: Type[PipelineError], prefix: str):
    """Неожиданные исключения шага превращаются в ошибку этого шага"""
    try:
        yield
    except PipelineError:
        raise
    except Exception as e:
        raise error_cls(f"{prefix}: {e}") from e


class PipelineExecutor:
    def __init__(
        self,
        repository: JobRepository,
        gateway: TranscriptionGateway,
        poller: Poller,
        *,
        convert: Callable[[str], Awaitable[ConversionResult]] = convert_to_audio,
        cleanup: Callable[[str], Any] = cleanup_temp_dir,
        generate: Callable[[TranscriptResult, ExportOptions], bytes] = generate_word,
        save: Callable[[bytes, str], str] = save_document,
        history: Optional[HistoryStore] = None,
        output_dir: Optional[str] = None,
    ):
        self.repository = repository
        self.gateway = gateway
        self.poller = poller
        self.convert = convert
        self.cleanup = cleanup
        self.generate = generate
        self.save = save
        self.history = history
        self.output_dir = output_dir

    def _advance(self, job_id: str, status: JobStatus, progress: int) -> None:
        self.repository.patch(job_id, status=status, progress=progress)

    def _on_vendor_status(self, job_id: str, status: str) -> None:
        self.repository.patch(job_id, vendor_status=status)
        self.repository.report_vendor_status(job_id, status)

    def output_path_for(self, job: Job) -> str:
        directory = self.output_dir or os.path.dirname(os.path.abspath(job.source_path))
        return os.path.join(directory, f"{Path(job.filename).stem}.docx")

    async def run(self, job: Job, api_key: str) -> Optional[Job]:
        """Прогнать задачу до complete или error. Возвращает финальный снимок"""
        temp_dir: Optional[str] = None
        logger.info(f"Job {job.id}: starting pipeline for {job.filename}")

        try:
            # 1. Конвертация
            self._advance(job.id, JobStatus.CONVERTING, PROGRESS_CONVERTING)
            try:
                with _step(ConversionError, "Conversion failed"):
                    conversion = await self.convert(job.source_path)
            except ConversionError as e:
                temp_dir = e.temp_dir
                raise
            temp_dir = conversion.temp_dir
            self._advance(job.id, JobStatus.CONVERTING, PROGRESS_CONVERTED)

            # 2. Загрузка
            self._advance(job.id, JobStatus.UPLOADING, PROGRESS_UPLOADING)
            with _step(UploadError, "Upload failed"):
                upload_url = await self.gateway.upload(conversion.output_path, api_key)
            self._advance(job.id, JobStatus.UPLOADING, PROGRESS_UPLOADED)

            # 3. Постановка и ожидание транскрипции
            with _step(SubmissionError, "Transcription submission failed"):
                transcript_id = await self.gateway.submit(upload_url, api_key, job.options)
            self._advance(job.id, JobStatus.TRANSCRIBING, PROGRESS_SUBMITTED)
            logger.info(f"Job {job.id}: transcript {transcript_id} submitted")

            with _step(VendorTranscriptionError, "Transcription failed"):
                payload = await self.poller.wait(
                    transcript_id,
                    api_key,
                    on_status=lambda status: self._on_vendor_status(job.id, status),
                )
                transcript = parse_transcript_response(payload, job.options.speaker_names)
            self._advance(job.id, JobStatus.TRANSCRIBING, PROGRESS_TRANSCRIBED)

            # 4. Документ
            self._advance(job.id, JobStatus.GENERATING, PROGRESS_GENERATING)
            with _step(GenerationError, "Failed to generate Word document"):
                data = await asyncio.to_thread(self.generate, transcript, ExportOptions.for_job(job))
                output_path = await asyncio.to_thread(self.save, data, self.output_path_for(job))
            self._advance(job.id, JobStatus.GENERATING, PROGRESS_WRITTEN)

            # 5. История (не критично)
            history_id = await self._persist(job, transcript, output_path)

            self.repository.patch(
                job.id,
                status=JobStatus.COMPLETE,
                progress=PROGRESS_COMPLETE,
                output_path=output_path,
                history_id=history_id,
            )
            logger.info(f"✅ Job {job.id}: complete -> {output_path}")

        except PipelineError as e:
            logger.error(f"Job {job.id} failed: {e}")
            self.repository.patch(job.id, status=JobStatus.ERROR, error=str(e))

        except Exception as e:
            logger.exception(f"Job {job.id} failed unexpectedly: {e}")
            self.repository.patch(job.id, status=JobStatus.ERROR, error=f"Unexpected error: {e}")

        finally:
            if temp_dir:
                self.cleanup(temp_dir)

        return self.repository.get(job.id)

    async def _persist(self, job: Job, transcript: TranscriptResult, output_path: str) -> Optional[str]:
        if self.history is None:
            return None
        entry = HistoryEntry.from_job(job, transcript, output_path)
        try:
            with _step(PersistenceError, "Failed to save history entry"):
                return await asyncio.to_thread(self.history.save_entry, entry)
        except PersistenceError as e:
            logger.warning(f"Job {job.id}: history not saved, transcript kept on disk only: {e}")
            return None
