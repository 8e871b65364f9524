# main.py
import os
import json
import uuid
import asyncio
import logging
from typing import Optional, List, Dict, Any
from datetime import datetime

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

import config
from config import SettingsStore
from database import HistoryDB
from models import (
    AddJobsRequest,
    ApiKeyRequest,
    Job,
    JobStatus,
    RetryRequest,
    TranscriptionOptions,
    is_accepted_file,
)
from pipeline.errors import JobStateError, MissingCredentialError
from pipeline.executor import PipelineExecutor
from pipeline.observers import QueueObserver
from pipeline.poller import Poller
from pipeline.repository import JobRepository
from pipeline.runner import QueueRunner
from services.assemblyai import AssemblyAIClient

# Инициализация приложения
app = FastAPI(title="Voice2Docx API")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Логирование
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ========== СБОРКА ПАЙПЛАЙНА ==========

settings = SettingsStore()
db = HistoryDB()
repository = JobRepository()
gateway = AssemblyAIClient()
executor = PipelineExecutor(
    repository,
    gateway,
    Poller(gateway),
    history=db,
    output_dir=config.OUTPUT_DIR,
)
runner = QueueRunner(repository, executor, credential=settings.get_api_key)

MISSING_KEY_MESSAGE = "AssemblyAI API key is not configured. Set it via PUT /api/settings/api-key"
SSE_KEEPALIVE_SECONDS = 15


# ========== ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ ==========

def _job_json(job: Job) -> Dict[str, Any]:
    return job.model_dump(mode="json")


def _get_job_or_404(job_id: str) -> Job:
    job = repository.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _validate_source(path: str) -> None:
    if not is_accepted_file(path):
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {os.path.basename(path)}")
    if not os.path.isfile(path):
        raise HTTPException(status_code=400, detail=f"File does not exist: {path}")


def _try_start() -> bool:
    """Запустить очередь; без API ключа задачи остаются в queued"""
    try:
        runner.start()
    except MissingCredentialError:
        logger.warning("Queue not started: API key is missing")
        return False
    return True


def _enqueue(
    paths: List[str],
    options: Optional[TranscriptionOptions],
    filename: Optional[str] = None,
) -> Dict[str, Any]:
    snapshot = options or TranscriptionOptions()
    jobs = repository.append(Job.create(path, snapshot, filename=filename) for path in paths)
    started = _try_start()
    response: Dict[str, Any] = {
        "jobs": [_job_json(job) for job in jobs],
        "queue_started": started,
    }
    if not started:
        response["warning"] = MISSING_KEY_MESSAGE
    return response


# ========== API ЭНДПОИНТЫ ==========

@app.get("/")
async def root():
    return {
        "message": "Voice2Docx API",
        "status": "running",
        "engine": "AssemblyAI",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Проверка здоровья системы"""
    jobs = repository.list()
    stats = db.get_statistics()
    return {
        "status": "healthy" if stats else "degraded",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "fastapi": True,
            "database": bool(stats),
            "assemblyai_key": settings.get_api_key() is not None,
        },
        "queue": {
            "running": runner.is_running,
            "total_jobs": len(jobs),
            "queued_jobs": len([j for j in jobs if j.status is JobStatus.QUEUED]),
            "active_jobs": len([j for j in jobs if j.status.is_active]),
            "completed_jobs": len([j for j in jobs if j.status is JobStatus.COMPLETE]),
            "failed_jobs": len([j for j in jobs if j.status is JobStatus.ERROR]),
        },
    }


@app.post("/api/jobs")
async def add_jobs(request: AddJobsRequest):
    """Добавить локальные файлы в очередь"""
    if not request.paths:
        raise HTTPException(status_code=400, detail="No files provided")
    for path in request.paths:
        _validate_source(path)
    return _enqueue(request.paths, request.options)


@app.post("/api/upload")
async def upload_media(audio: UploadFile = File(...), options: Optional[str] = Form(None)):
    """Загрузить аудио/видео и поставить в очередь"""
    if not audio.filename or not is_accepted_file(audio.filename):
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {audio.filename}")

    snapshot = None
    if options:
        try:
            snapshot = TranscriptionOptions.model_validate_json(options)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid options: {e}")

    config.UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
    safe_filename = f"{uuid.uuid4().hex[:8]}_{os.path.basename(audio.filename).replace(' ', '_')}"
    file_path = str(config.UPLOADS_DIR / safe_filename)
    with open(file_path, "wb") as f:
        f.write(await audio.read())
    logger.info(f"Upload saved: {file_path}")

    return _enqueue([file_path], snapshot, filename=os.path.basename(audio.filename))


@app.get("/api/jobs")
async def list_jobs():
    """Список задач в порядке очереди"""
    return [_job_json(job) for job in repository.list()]


@app.get("/api/jobs/events")
async def job_events(request: Request):
    """SSE поток изменений очереди: сначала снимок, затем события"""
    async def stream():
        observer = QueueObserver()
        unsubscribe = repository.subscribe(observer)
        try:
            yield f"data: {json.dumps({'event': 'snapshot', 'jobs': [_job_json(j) for j in repository.list()]})}\n\n"
            while not await request.is_disconnected():
                try:
                    item = await asyncio.wait_for(observer.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps(item)}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(stream(), media_type="text/event-stream")


@app.post("/api/jobs/clear-completed")
async def clear_completed():
    removed = repository.clear_completed()
    return {"removed": [job.id for job in removed]}


@app.get("/api/jobs/{job_id}")
async def get_job(job_id: str):
    return _job_json(_get_job_or_404(job_id))


@app.delete("/api/jobs/{job_id}")
async def delete_job(job_id: str):
    """Убрать задачу из очереди (история и .docx остаются)"""
    if repository.remove(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"message": f"Job {job_id} removed"}


@app.post("/api/jobs/{job_id}/retry")
async def retry_job(job_id: str, request: Optional[RetryRequest] = None):
    """Повторить задачу целиком, опционально с новыми опциями"""
    options = request.options if request else None
    try:
        job = repository.requeue(job_id, options)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    started = _try_start()
    response: Dict[str, Any] = {"job": _job_json(job), "queue_started": started}
    if not started:
        response["warning"] = MISSING_KEY_MESSAGE
    return response


@app.post("/api/queue/start")
async def start_queue():
    try:
        started = runner.start()
    except MissingCredentialError:
        raise HTTPException(status_code=412, detail=MISSING_KEY_MESSAGE)
    return {"started": started, "running": runner.is_running}


# ========== НАСТРОЙКИ ==========

@app.get("/api/settings/api-key")
async def get_api_key_status():
    key = settings.get_api_key()
    return {"configured": key is not None, "length": len(key) if key else 0}


@app.put("/api/settings/api-key")
async def set_api_key(request: ApiKeyRequest):
    if not request.api_key.strip():
        raise HTTPException(status_code=400, detail="API key is empty")
    settings.set_api_key(request.api_key)
    return {"configured": True}


@app.delete("/api/settings/api-key")
async def delete_api_key():
    settings.delete_api_key()
    return {"configured": settings.get_api_key() is not None}


# ========== ИСТОРИЯ ==========

@app.get("/api/history")
async def list_history(limit: int = 100):
    return [entry.model_dump(mode="json") for entry in db.list_entries(limit=limit)]


@app.get("/api/history/{entry_id}")
async def get_history_entry(entry_id: str):
    entry = db.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return entry.model_dump(mode="json")


@app.delete("/api/history/{entry_id}")
async def delete_history_entry(entry_id: str):
    if not db.delete_entry(entry_id):
        raise HTTPException(status_code=404, detail="History entry not found")
    return {"message": f"History entry {entry_id} deleted"}


@app.get("/api/stats")
async def get_statistics():
    """Получить статистику"""
    return {
        "statistics": db.get_statistics(),
        "timestamp": datetime.now().isoformat()
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
