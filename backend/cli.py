"""CLI для пакетной транскрибации без веб-интерфейса.

Usage:
    python cli.py meeting.mp4
    python cli.py a.mp4 b.mp3 c.wav --speakers 3 --summary --topics
    python cli.py interview.m4a --conversation-type interview --speaker-names "Anna, Boris"
    python cli.py call.wav --boost-words "AssemblyAI, diarization" --output-dir ./docs
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

import config
from config import SettingsStore
from database import HistoryDB
from models import (
    CONVERSATION_TYPE_ROLES,
    Job,
    JobStatus,
    TranscriptionOptions,
    is_accepted_file,
    parse_comma_list,
)
from pipeline.errors import MissingCredentialError
from pipeline.executor import PipelineExecutor
from pipeline.observers import LoggingObserver
from pipeline.poller import Poller
from pipeline.repository import JobRepository
from pipeline.runner import QueueRunner
from services.assemblyai import AssemblyAIClient

log = logging.getLogger("voice2docx")


def _setup_logging(verbose: bool) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        "%Y-%m-%d %H:%M:%S",
    ))
    root_logger.addHandler(handler)
    # httpx логирует каждый запрос на INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _speaker_count(value: str):
    if value == "auto":
        return value
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("expected 'auto' or an integer")
    if not 1 <= count <= 20:
        raise argparse.ArgumentTypeError("speaker count must be between 1 and 20")
    return count


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="voice2docx",
        description="Transcribe audio/video files with AssemblyAI into Word documents.",
    )
    parser.add_argument("files", nargs="+", help="Audio or video files to transcribe")
    parser.add_argument("--speakers", type=_speaker_count, default="auto",
                        help="Expected number of speakers or 'auto' (default: auto)")
    parser.add_argument("--speaker-names", default="",
                        help="Comma-separated names assigned to speakers in order of appearance")
    parser.add_argument("--boost-words", default="", help="Comma-separated vocabulary to boost")
    parser.add_argument("--summary", action="store_true", help="Include a bullet summary")
    parser.add_argument("--topics", action="store_true", help="Detect topics")
    parser.add_argument("--sentiment", action="store_true", help="Analyze sentiment per utterance")
    parser.add_argument("--key-phrases", action="store_true", help="Extract key phrases")
    parser.add_argument("--conversation-type", choices=sorted(CONVERSATION_TYPE_ROLES), default="none",
                        help="Identify speakers by role for this kind of conversation")
    parser.add_argument("--output-dir", default=config.OUTPUT_DIR,
                        help="Where to write .docx files (default: next to each source file)")
    parser.add_argument("--api-key", default=None, help="AssemblyAI API key (overrides settings)")
    parser.add_argument("--no-history", action="store_true", help="Do not save results to history")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace) -> TranscriptionOptions:
    return TranscriptionOptions(
        speaker_count=args.speakers,
        speaker_names=parse_comma_list(args.speaker_names),
        boost_words=parse_comma_list(args.boost_words),
        include_summary=args.summary,
        detect_topics=args.topics,
        analyze_sentiment=args.sentiment,
        extract_key_phrases=args.key_phrases,
        conversation_type=args.conversation_type,
    )


async def run_batch(runner: QueueRunner, repository: JobRepository, jobs: Sequence[Job]) -> int:
    repository.append(jobs)
    runner.start()
    await runner.join()

    failed = 0
    for job in repository.list():
        if job.status is JobStatus.COMPLETE:
            log.info(f"✅ {job.filename} -> {job.output_path}")
        else:
            failed += 1
            log.error(f"❌ {job.filename}: {job.error or job.status.value}")
    return failed


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.verbose)

    files = [path for path in args.files if is_accepted_file(path)]
    for skipped in sorted(set(args.files) - set(files)):
        log.warning(f"Skipping unsupported file: {skipped}")
    if not files:
        log.error("No supported files to transcribe")
        return 2

    settings = SettingsStore()
    api_key = args.api_key or settings.get_api_key()

    repository = JobRepository()
    repository.subscribe(LoggingObserver(log))
    gateway = AssemblyAIClient()
    executor = PipelineExecutor(
        repository,
        gateway,
        Poller(gateway),
        history=None if args.no_history else HistoryDB(),
        output_dir=args.output_dir,
    )
    runner = QueueRunner(repository, executor, credential=lambda: api_key)

    options = build_options(args)
    jobs = [Job.create(path, options) for path in files]

    try:
        failed = asyncio.run(run_batch(runner, repository, jobs))
    except MissingCredentialError as e:
        log.error(f"{e}. Pass --api-key or set ASSEMBLYAI_API_KEY")
        return 2
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
