"""Append-only validation log (SQLite) for resolution analytics."""

import logging
import sqlite3
import threading
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .models import ValidationLog

logger = logging.getLogger(__name__)

_COLUMNS = (
    "zip_code", "validation_type", "data_source", "is_valid", "confidence",
    "operator_id", "operator_name", "processing_time_ms", "cache_hit",
    "error_code", "error_message", "validated_at",
)


class ValidationLogStore:
    """Write-only side channel: the resolution path never reads from it."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._lock = threading.Lock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS validation_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                zip_code TEXT NOT NULL,
                validation_type TEXT NOT NULL,
                data_source TEXT NOT NULL,
                is_valid INTEGER NOT NULL,
                confidence INTEGER NOT NULL DEFAULT 0,
                operator_id TEXT,
                operator_name TEXT,
                processing_time_ms INTEGER NOT NULL DEFAULT 0,
                cache_hit INTEGER NOT NULL DEFAULT 0,
                error_code TEXT,
                error_message TEXT,
                validated_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_validation_zip ON validation_logs(zip_code)
        """)
        self._conn.commit()

    def append(self, entry: ValidationLog):
        """Insert one row. Failures are logged and dropped."""
        row = asdict(entry)
        values = tuple(row[c] for c in _COLUMNS)
        try:
            with self._lock:
                self._conn.execute(
                    f"INSERT INTO validation_logs ({', '.join(_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in _COLUMNS)})",
                    values,
                )
                self._conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Validation log write failed for ZIP {entry.zip_code}: {e}")

    def recent(self, limit: int = 50, zip_code: Optional[str] = None) -> List[ValidationLog]:
        sql = f"SELECT {', '.join(_COLUMNS)} FROM validation_logs"
        params: tuple = ()
        if zip_code:
            sql += " WHERE zip_code = ?"
            params = (zip_code,)
        sql += " ORDER BY id DESC LIMIT ?"
        params += (limit,)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        logs = []
        for r in rows:
            d = dict(zip(_COLUMNS, r))
            d["is_valid"] = bool(d["is_valid"])
            d["cache_hit"] = bool(d["cache_hit"])
            logs.append(ValidationLog(**d))
        return logs

    def summary(self) -> dict:
        with self._lock:
            row = self._conn.execute("""
                SELECT COUNT(*), SUM(is_valid), SUM(cache_hit), AVG(processing_time_ms)
                FROM validation_logs
            """).fetchone()
        total = row[0] or 0
        return {
            "total": total,
            "success_rate": round((row[1] or 0) / total, 4) if total else 0.0,
            "cache_hit_rate": round((row[2] or 0) / total, 4) if total else 0.0,
            "average_processing_ms": round(row[3] or 0.0, 2),
        }

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None
