import os
import shutil
import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from pydub import AudioSegment

from pipeline.errors import ConversionError

logger = logging.getLogger(__name__)

# mono, 16 kHz, AAC 32 kbps - маленький файл без потери качества распознавания
TARGET_SAMPLE_RATE = 16_000
TARGET_BITRATE = "32k"


@dataclass(frozen=True)
class ConversionResult:
    output_path: str
    temp_dir: str


def _convert_sync(input_path: str) -> ConversionResult:
    source = Path(input_path)
    if not source.exists():
        raise ConversionError(f"Conversion failed: file does not exist: {input_path}")

    temp_dir = tempfile.mkdtemp(prefix="voice2docx_")
    output_path = os.path.join(temp_dir, f"{source.stem}.m4a")
    logger.info(f"Converting {input_path} -> {output_path}")

    try:
        # pydub вызывает ffmpeg; видео-дорожка отбрасывается при декодировании
        audio = AudioSegment.from_file(input_path)
        audio = audio.set_channels(1).set_frame_rate(TARGET_SAMPLE_RATE)
        audio.export(output_path, format="ipod", codec="aac", bitrate=TARGET_BITRATE)
    except Exception as e:
        logger.error(f"FFmpeg conversion failed for {input_path}: {e}")
        raise ConversionError(f"Conversion failed: {e}", temp_dir=temp_dir) from e

    if not os.path.exists(output_path):
        raise ConversionError("Conversion failed: output file was not created", temp_dir=temp_dir)

    logger.info(f"Conversion successful, output size: {os.path.getsize(output_path)} bytes")
    return ConversionResult(output_path=output_path, temp_dir=temp_dir)


async def convert_to_audio(input_path: str) -> ConversionResult:
    """
    Конвертация видео/аудио в сжатый m4a для транскрибации

    Временная папка из результата удаляется вызывающим через cleanup_temp_dir
    """
    return await asyncio.to_thread(_convert_sync, input_path)


def cleanup_temp_dir(temp_dir: str) -> None:
    """Удалить временную папку конвертации"""
    if not temp_dir or not os.path.isdir(temp_dir):
        return
    try:
        shutil.rmtree(temp_dir)
        logger.info(f"Temp dir cleaned up: {temp_dir}")
    except OSError as e:
        logger.warning(f"Failed to remove temp dir {temp_dir}: {e}")
