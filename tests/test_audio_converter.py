import asyncio
import os

import pytest

from pipeline.errors import ConversionError
from services import audio_converter
from services.audio_converter import cleanup_temp_dir, convert_to_audio


class FakeSegment:
    def __init__(self):
        self.channels = None
        self.frame_rate = None
        self.exported = None

    def set_channels(self, channels):
        self.channels = channels
        return self

    def set_frame_rate(self, rate):
        self.frame_rate = rate
        return self

    def export(self, path, **kwargs):
        self.exported = kwargs
        with open(path, "wb") as f:
            f.write(b"m4a")


def test_missing_file_fails_without_temp_dir():
    with pytest.raises(ConversionError) as excinfo:
        asyncio.run(convert_to_audio("/nonexistent/file.mp4"))
    assert excinfo.value.temp_dir is None
    assert "does not exist" in str(excinfo.value)


def test_successful_conversion_targets_mono_16k_aac(tmp_path, monkeypatch):
    source = tmp_path / "talk.mov"
    source.write_bytes(b"video")
    segment = FakeSegment()
    monkeypatch.setattr(audio_converter.AudioSegment, "from_file", lambda path: segment)

    result = asyncio.run(convert_to_audio(str(source)))

    try:
        assert result.output_path == os.path.join(result.temp_dir, "talk.m4a")
        assert os.path.exists(result.output_path)
        assert segment.channels == 1
        assert segment.frame_rate == 16000
        assert segment.exported == {"format": "ipod", "codec": "aac", "bitrate": "32k"}
    finally:
        cleanup_temp_dir(result.temp_dir)
    assert not os.path.exists(result.temp_dir)


def test_decoder_failure_reports_temp_dir_for_cleanup(tmp_path, monkeypatch):
    source = tmp_path / "broken.mp3"
    source.write_bytes(b"garbage")

    def explode(path):
        raise RuntimeError("ffmpeg returned error code: 1")

    monkeypatch.setattr(audio_converter.AudioSegment, "from_file", explode)

    with pytest.raises(ConversionError, match="error code: 1") as excinfo:
        asyncio.run(convert_to_audio(str(source)))

    temp_dir = excinfo.value.temp_dir
    assert temp_dir and os.path.isdir(temp_dir)
    cleanup_temp_dir(temp_dir)
    assert not os.path.exists(temp_dir)


def test_cleanup_ignores_missing_dir(tmp_path):
    cleanup_temp_dir(str(tmp_path / "never-created"))
    cleanup_temp_dir("")
