# config.py
import os
import json
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Загрузка переменных окружения из .env
load_dotenv()

logger = logging.getLogger(__name__)

# ========== ПУТИ ==========

DATA_DIR = Path(os.getenv("VOICE2DOCX_DATA_DIR", "data"))
HISTORY_DB_PATH = os.getenv("HISTORY_DB_PATH", str(DATA_DIR / "history.db"))
SETTINGS_FILE = Path(os.getenv("SETTINGS_FILE", str(DATA_DIR / "settings.json")))
UPLOADS_DIR = Path(os.getenv("UPLOADS_DIR", str(DATA_DIR / "uploads")))

# Пусто = сохранять .docx рядом с исходным файлом
OUTPUT_DIR = os.getenv("OUTPUT_DIR") or None

# ========== ASSEMBLYAI ==========

ASSEMBLYAI_API_BASE = os.getenv("ASSEMBLYAI_API_BASE", "https://api.assemblyai.com/v2")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "60"))
UPLOAD_TIMEOUT = float(os.getenv("UPLOAD_TIMEOUT", "300"))

# Поллинг: первая проверка через 5 сек, далее каждые 3 сек, максимум 30 минут
POLL_INITIAL_DELAY = float(os.getenv("POLL_INITIAL_DELAY", "5"))
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "3"))
POLL_TIMEOUT = float(os.getenv("POLL_TIMEOUT", str(30 * 60)))


class SettingsStore:
    """Хранилище настроек приложения (API ключ) в JSON файле"""

    def __init__(self, path: Path = SETTINGS_FILE, env_var: str = "ASSEMBLYAI_API_KEY"):
        self.path = Path(path)
        self.env_var = env_var

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read settings {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def get_api_key(self) -> Optional[str]:
        """Ключ из окружения имеет приоритет над файлом настроек"""
        key = os.getenv(self.env_var) or self._load().get("api_key")
        return key or None

    def set_api_key(self, api_key: str) -> None:
        data = self._load()
        data["api_key"] = api_key.strip()
        self._save(data)
        logger.info(f"API key saved (length: {len(data['api_key'])})")

    def delete_api_key(self) -> None:
        data = self._load()
        if data.pop("api_key", None) is not None:
            self._save(data)
            logger.info("API key deleted")
