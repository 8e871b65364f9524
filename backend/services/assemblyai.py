import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

import config
from models import CONVERSATION_TYPE_ROLES, PollResult, TranscriptionOptions
from pipeline.errors import SubmissionError, UploadError, VendorTranscriptionError

logger = logging.getLogger(__name__)

MAX_BOOST_WORDS = 200


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def build_transcript_request(upload_url: str, options: TranscriptionOptions) -> Dict[str, Any]:
    """Тело запроса POST /transcript из снимка опций"""
    request: Dict[str, Any] = {
        "audio_url": upload_url,
        "speaker_labels": True,
    }
    if options.max_speakers is not None:
        request["speakers_expected"] = options.max_speakers
    if options.boost_words:
        request["word_boost"] = list(options.boost_words)[:MAX_BOOST_WORDS]
    if options.include_summary:
        request["summarization"] = True
        request["summary_model"] = "informative"
        request["summary_type"] = "bullets"
    if options.detect_topics:
        request["iab_categories"] = True
    if options.analyze_sentiment:
        request["sentiment_analysis"] = True
    if options.extract_key_phrases:
        request["auto_highlights"] = True

    roles = CONVERSATION_TYPE_ROLES.get(options.conversation_type, [])
    if roles:
        request["speech_understanding"] = {
            "request": {
                "speaker_identification": {
                    "speaker_type": "role",
                    "known_values": list(roles),
                }
            }
        }
    return request


class AssemblyAIClient:
    """Клиент AssemblyAI: загрузка аудио, постановка задачи, одиночный опрос статуса"""

    def __init__(
        self,
        base_url: str = config.ASSEMBLYAI_API_BASE,
        *,
        timeout: float = config.HTTP_TIMEOUT,
        upload_timeout: float = config.UPLOAD_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.upload_timeout = upload_timeout
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def upload(self, audio_path: str, api_key: str) -> str:
        """Загрузка сырых байтов аудио, возвращает upload_url"""
        logger.info(f"Starting upload: {audio_path}")
        try:
            audio_data = await asyncio.to_thread(_read_bytes, audio_path)
        except OSError as e:
            raise UploadError(f"Upload failed: cannot read {audio_path}: {e}") from e

        logger.info(f"File read, size: {len(audio_data)} bytes; API key present: {bool(api_key)}, length: {len(api_key)}")

        headers = {
            "Authorization": api_key,
            "Content-Type": "application/octet-stream",
        }
        try:
            async with self._client(self.upload_timeout) as client:
                response = await client.post(f"{self.base_url}/upload", headers=headers, content=audio_data)
                response.raise_for_status()
                upload_url = response.json()["upload_url"]
        except httpx.HTTPStatusError as e:
            logger.error(f"Upload HTTP error: {e.response.status_code} - {e.response.text}")
            raise UploadError(f"Upload failed with status {e.response.status_code}: {e.response.text}") from e
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Upload request failed: {e}")
            raise UploadError(f"Upload failed: {e}") from e

        logger.info(f"Upload successful: {upload_url}")
        return upload_url

    async def submit(self, upload_url: str, api_key: str, options: TranscriptionOptions) -> str:
        """Постановка транскрипции, возвращает id транскрипта"""
        payload = build_transcript_request(upload_url, options)
        if "speech_understanding" in payload:
            logger.info(f"Speaker identification enabled: {options.conversation_type}")

        try:
            async with self._client(self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/transcript",
                    headers={"Authorization": api_key},
                    json=payload,
                )
                response.raise_for_status()
                transcript_id = response.json()["id"]
        except httpx.HTTPStatusError as e:
            logger.error(f"Submission HTTP error: {e.response.status_code} - {e.response.text}")
            raise SubmissionError(
                f"Transcription submission failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logger.error(f"Submission request failed: {e}")
            raise SubmissionError(f"Transcription submission failed: {e}") from e

        logger.info(f"Transcription submitted, id: {transcript_id}")
        return transcript_id

    async def poll_once(self, transcript_id: str, api_key: str) -> PollResult:
        """Один запрос статуса GET /transcript/{id}"""
        try:
            async with self._client(self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/transcript/{transcript_id}",
                    headers={"Authorization": api_key},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Poll HTTP error: {e.response.status_code} - {e.response.text}")
            raise VendorTranscriptionError(
                f"Poll request failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Poll request failed: {e}")
            raise VendorTranscriptionError(f"Poll request failed: {e}") from e

        vendor_status = str(data.get("status", "unknown"))
        logger.info(f"Poll result for {transcript_id}: {vendor_status}")

        if vendor_status == "completed":
            return PollResult(status="completed", vendor_status=vendor_status, payload=data)
        if vendor_status == "error":
            message = data.get("error") or "Unknown error"
            logger.error(f"Transcription {transcript_id} failed: {message}")
            return PollResult(status="failed", vendor_status=vendor_status, message=message)
        return PollResult(status="pending", vendor_status=vendor_status)
