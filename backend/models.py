# models.py
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Dict, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ACCEPTED_EXTENSIONS = {
    ".mp4", ".mov", ".avi", ".mkv", ".webm",
    ".mp3", ".wav", ".m4a", ".aac", ".ogg", ".flac",
}
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm"}
AUDIO_EXTENSIONS = ACCEPTED_EXTENSIONS - VIDEO_EXTENSIONS

# Роли для идентификации спикеров по типу разговора
CONVERSATION_TYPE_ROLES: Dict[str, List[str]] = {
    "none": [],
    "interview": ["Interviewer", "Interviewee"],
    "meeting": ["Presenter", "Participant"],
    "panel": ["Moderator", "Panelist"],
    "podcast": ["Host", "Guest"],
    "customer-call": ["Agent", "Customer"],
    "support": ["Support", "Customer"],
}

ConversationType = Literal[
    "none", "interview", "meeting", "panel", "podcast", "customer-call", "support"
]


def parse_comma_list(value: str) -> List[str]:
    """'a, b,,c' -> ['a', 'b', 'c']"""
    return [item.strip() for item in value.split(",") if item.strip()]


def is_accepted_file(path: str) -> bool:
    return Path(path).suffix.lower() in ACCEPTED_EXTENSIONS


# ========== ОПЦИИ ТРАНСКРИПЦИИ ==========

class TranscriptionOptions(BaseModel):
    """Снимок настроек, фиксируется в задаче при добавлении в очередь"""
    model_config = ConfigDict(frozen=True)

    speaker_count: Union[Literal["auto"], int] = "auto"
    speaker_names: List[str] = Field(default_factory=list)
    boost_words: List[str] = Field(default_factory=list)
    include_summary: bool = False
    detect_topics: bool = False
    analyze_sentiment: bool = False
    extract_key_phrases: bool = False
    conversation_type: ConversationType = "none"

    @field_validator("speaker_count")
    @classmethod
    def check_speaker_count(cls, value):
        if value != "auto" and not 1 <= value <= 20:
            raise ValueError("speaker_count must be 'auto' or between 1 and 20")
        return value

    @property
    def max_speakers(self) -> Optional[int]:
        return None if self.speaker_count == "auto" else self.speaker_count


# ========== ЗАДАЧИ ОЧЕРЕДИ ==========

class JobStatus(str, Enum):
    QUEUED = "queued"
    CONVERTING = "converting"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR)

    @property
    def is_active(self) -> bool:
        return self is not JobStatus.QUEUED and not self.is_terminal


class Job(BaseModel):
    """Один файл в очереди. Экземпляры неизменяемы: изменения только через JobRepository"""
    model_config = ConfigDict(frozen=True)

    id: str
    filename: str
    source_path: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    error: Optional[str] = None
    output_path: Optional[str] = None
    history_id: Optional[str] = None
    vendor_status: Optional[str] = None
    options: TranscriptionOptions = Field(default_factory=TranscriptionOptions)
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        source_path: str,
        options: Optional[TranscriptionOptions] = None,
        filename: Optional[str] = None,
    ) -> "Job":
        """filename - имя, которое видит пользователь (для загрузок отличается от имени на диске)"""
        return cls(
            id=uuid.uuid4().hex,
            filename=filename or Path(source_path).name,
            source_path=str(source_path),
            options=options or TranscriptionOptions(),
        )


# ========== ПОЛЛИНГ ==========

class PollResult(BaseModel):
    """Результат одной проверки статуса транскрипции"""
    status: Literal["pending", "completed", "failed"]
    vendor_status: str
    payload: Optional[Dict[str, Any]] = None
    message: Optional[str] = None


# ========== ТРАНСКРИПТ ==========

class TranscriptSegment(BaseModel):
    speaker: str
    text: str
    start: int  # мс
    end: int
    sentiment: Optional[Literal["positive", "neutral", "negative"]] = None


class Topic(BaseModel):
    label: str
    relevance: float  # проценты


class TranscriptResult(BaseModel):
    segments: List[TranscriptSegment] = Field(default_factory=list)
    summary: Optional[str] = None
    topics: Optional[List[Topic]] = None
    key_phrases: Optional[List[str]] = None

    @property
    def speakers(self) -> List[str]:
        seen: List[str] = []
        for segment in self.segments:
            if segment.speaker not in seen:
                seen.append(segment.speaker)
        return seen

    @property
    def word_count(self) -> int:
        return sum(len(segment.text.split()) for segment in self.segments)


class ExportOptions(BaseModel):
    filename: str
    transcribed_date: datetime = Field(default_factory=datetime.now)
    include_summary: bool = False
    include_topics: bool = False
    include_sentiment: bool = False
    include_key_phrases: bool = False

    @classmethod
    def for_job(cls, job: Job) -> "ExportOptions":
        return cls(
            filename=job.filename,
            include_summary=job.options.include_summary,
            include_topics=job.options.detect_topics,
            include_sentiment=job.options.analyze_sentiment,
            include_key_phrases=job.options.extract_key_phrases,
        )


# ========== ИСТОРИЯ ==========

class HistoryEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    filename: str
    original_path: str
    output_path: Optional[str] = None
    transcribed_at: datetime = Field(default_factory=datetime.now)
    speaker_count: int = 0
    word_count: int = 0
    transcript: TranscriptResult
    options: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_job(cls, job: Job, transcript: TranscriptResult, output_path: str) -> "HistoryEntry":
        return cls(
            filename=job.filename,
            original_path=job.source_path,
            output_path=output_path,
            speaker_count=len(transcript.speakers),
            word_count=transcript.word_count,
            transcript=transcript,
            options={
                "speaker_names": list(job.options.speaker_names),
                "included_summary": job.options.include_summary,
                "included_topics": job.options.detect_topics,
                "included_sentiment": job.options.analyze_sentiment,
            },
        )


class HistorySummary(BaseModel):
    id: str
    filename: str
    transcribed_at: datetime
    speaker_count: int
    word_count: int
    preview: str


# ========== ЗАПРОСЫ API ==========

class AddJobsRequest(BaseModel):
    paths: List[str]
    options: Optional[TranscriptionOptions] = None


class RetryRequest(BaseModel):
    options: Optional[TranscriptionOptions] = None


class ApiKeyRequest(BaseModel):
    api_key: str
