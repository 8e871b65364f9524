"""Ошибки пайплайна транскрипции.

Первые шесть типов фатальны для текущего прогона задачи: задача переходит
в ``error``, очередь продолжает работу. ``PersistenceError`` только логируется.
"""

from typing import Optional


class PipelineError(Exception):
    """Базовая ошибка пайплайна"""


class ConversionError(PipelineError):
    def __init__(self, message: str, temp_dir: Optional[str] = None):
        super().__init__(message)
        # Частично созданная временная папка, которую нужно удалить
        self.temp_dir = temp_dir


class UploadError(PipelineError):
    pass


class SubmissionError(PipelineError):
    pass


class PollTimeoutError(PipelineError):
    def __init__(self, message: str = "Transcription timed out"):
        super().__init__(message)


class VendorTranscriptionError(PipelineError):
    pass


class GenerationError(PipelineError):
    pass


class PersistenceError(PipelineError):
    pass


class MissingCredentialError(PipelineError):
    def __init__(self, message: str = "AssemblyAI API key is not configured"):
        super().__init__(message)


class JobStateError(PipelineError):
    pass

