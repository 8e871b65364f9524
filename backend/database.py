# database.py
import os
import sqlite3
import json
from datetime import datetime
from typing import Dict, Any, List, Optional
import logging

import config
from models import HistoryEntry, HistorySummary
from pipeline.errors import PersistenceError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


class HistoryDB:
    def __init__(self, db_path: str = config.HISTORY_DB_PATH):
        self.db_path = db_path
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Инициализация базы данных"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        conn = self._connect()
        c = conn.cursor()

        c.execute('''CREATE TABLE IF NOT EXISTS history
                    (id TEXT PRIMARY KEY,
                     filename TEXT,
                     original_path TEXT,
                     output_path TEXT,
                     transcribed_at TIMESTAMP,
                     speaker_count INTEGER,
                     word_count INTEGER,
                     preview TEXT,
                     transcript_json TEXT,
                     options_json TEXT)''')

        conn.commit()
        conn.close()
        logger.info(f"База данных инициализирована: {self.db_path}")

    def save_entry(self, entry: HistoryEntry) -> str:
        """Сохранить запись истории, возвращает её id"""
        preview = entry.transcript.segments[0].text if entry.transcript.segments else ""
        if len(preview) > PREVIEW_LENGTH:
            preview = preview[:PREVIEW_LENGTH] + "..."

        try:
            conn = self._connect()
            try:
                conn.execute('''INSERT OR REPLACE INTO history
                            (id, filename, original_path, output_path, transcribed_at,
                             speaker_count, word_count, preview, transcript_json, options_json)
                            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
                             (entry.id,
                              entry.filename,
                              entry.original_path,
                              entry.output_path,
                              entry.transcribed_at.isoformat(),
                              entry.speaker_count,
                              entry.word_count,
                              preview,
                              entry.transcript.model_dump_json(),
                              json.dumps(entry.options, ensure_ascii=False)))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Ошибка сохранения истории: {e}")
            raise PersistenceError(f"Failed to save history entry: {e}") from e

        logger.info(f"Сохранена запись истории {entry.id} ({entry.filename})")
        return entry.id

    def get_entry(self, entry_id: str) -> Optional[HistoryEntry]:
        """Получить запись по ID"""
        try:
            conn = self._connect()
            row = conn.execute('''SELECT * FROM history WHERE id = ?''', (entry_id,)).fetchone()
            conn.close()
        except sqlite3.Error as e:
            logger.error(f"Ошибка получения записи: {e}")
            return None

        if not row:
            return None

        return HistoryEntry(
            id=row["id"],
            filename=row["filename"],
            original_path=row["original_path"],
            output_path=row["output_path"],
            transcribed_at=datetime.fromisoformat(row["transcribed_at"]),
            speaker_count=row["speaker_count"],
            word_count=row["word_count"],
            transcript=json.loads(row["transcript_json"]),
            options=json.loads(row["options_json"]) if row["options_json"] else {},
        )

    def list_entries(self, limit: int = 100) -> List[HistorySummary]:
        """Список записей (без транскрипта), новые первыми"""
        try:
            conn = self._connect()
            rows = conn.execute('''SELECT id, filename, transcribed_at, speaker_count, word_count, preview
                                   FROM history
                                   ORDER BY transcribed_at DESC
                                   LIMIT ?''', (limit,)).fetchall()
            conn.close()
        except sqlite3.Error as e:
            logger.error(f"Ошибка получения истории: {e}")
            return []

        return [
            HistorySummary(
                id=row["id"],
                filename=row["filename"],
                transcribed_at=datetime.fromisoformat(row["transcribed_at"]),
                speaker_count=row["speaker_count"],
                word_count=row["word_count"],
                preview=row["preview"] or "",
            )
            for row in rows
        ]

    def delete_entry(self, entry_id: str) -> bool:
        """Удалить запись"""
        try:
            conn = self._connect()
            c = conn.cursor()
            c.execute('''DELETE FROM history WHERE id = ?''', (entry_id,))
            deleted = c.rowcount > 0
            conn.commit()
            conn.close()
        except sqlite3.Error as e:
            logger.error(f"Ошибка удаления записи: {e}")
            return False

        if deleted:
            logger.info(f"Удалена запись истории {entry_id}")
        return deleted

    def get_statistics(self) -> Dict[str, Any]:
        """Получить статистику"""
        try:
            conn = self._connect()
            c = conn.cursor()

            stats = {}

            c.execute('''SELECT COUNT(*) FROM history''')
            stats["total_transcripts"] = c.fetchone()[0]

            # Последние 7 дней
            c.execute('''SELECT DATE(transcribed_at), COUNT(*)
                        FROM history
                        WHERE datetime(transcribed_at) > datetime('now', 'localtime', '-7 days')
                        GROUP BY DATE(transcribed_at)''')
            stats["last_7_days"] = dict(c.fetchall())

            c.execute('''SELECT AVG(word_count), SUM(word_count) FROM history''')
            avg_words, total_words = c.fetchone()
            stats["avg_word_count"] = round(avg_words or 0, 2)
            stats["total_words"] = total_words or 0

            conn.close()
            return stats
        except sqlite3.Error as e:
            logger.error(f"Ошибка получения статистики: {e}")
            return {}
