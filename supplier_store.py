"""Persisted supplier records.

A supplier record is the operator-managed row that turns an adapter on or off,
overrides its endpoint/credentials and carries its health state. Adapters
update health through `mark_healthy()` / `mark_unhealthy()`; the store writes
the change back to SQLite.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class SupplierRecord:
    code: str
    driver: str
    name: str = ''
    api_base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    is_active: bool = True
    is_healthy: bool = True
    priority: int = 0
    timeout: Optional[int] = None
    retry_times: Optional[int] = None
    config: Dict[str, Any] = field(default_factory=dict)
    last_health_check: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def is_available(self) -> bool:
        return self.is_active and self.is_healthy

    def get_config(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def mark_healthy(self, when: Optional[datetime] = None):
        self.is_healthy = True
        self.last_health_check = when or datetime.now()

    def mark_unhealthy(self, when: Optional[datetime] = None):
        self.is_healthy = False
        self.last_health_check = when or datetime.now()


_COLUMNS = ('id', 'code', 'driver', 'name', 'api_base_url', 'api_key', 'api_secret', 'is_active',
            'is_healthy', 'priority', 'timeout', 'retry_times', 'config', 'last_health_check')


class SupplierStore:
    """SQLite-backed supplier records."""

    def __init__(self, db_path: str = "suppliers.db"):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_db()

    def _init_db(self):
        with self._lock, self._conn:
            self._conn.execute('''
                CREATE TABLE IF NOT EXISTS suppliers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code TEXT NOT NULL UNIQUE,
                    driver TEXT NOT NULL,
                    name TEXT NOT NULL DEFAULT '',
                    api_base_url TEXT,
                    api_key TEXT,
                    api_secret TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    is_healthy INTEGER NOT NULL DEFAULT 1,
                    priority INTEGER NOT NULL DEFAULT 0,
                    timeout INTEGER,
                    retry_times INTEGER,
                    config TEXT,
                    last_health_check TEXT
                )
            ''')

    @staticmethod
    def _to_record(row) -> SupplierRecord:
        data = dict(zip(_COLUMNS, row))
        checked = data['last_health_check']
        return SupplierRecord(
            id=data['id'],
            code=data['code'],
            driver=data['driver'],
            name=data['name'],
            api_base_url=data['api_base_url'],
            api_key=data['api_key'],
            api_secret=data['api_secret'],
            is_active=bool(data['is_active']),
            is_healthy=bool(data['is_healthy']),
            priority=data['priority'],
            timeout=data['timeout'],
            retry_times=data['retry_times'],
            config=json.loads(data['config']) if data['config'] else {},
            last_health_check=datetime.fromisoformat(checked) if checked else None,
        )

    def save(self, record: SupplierRecord) -> SupplierRecord:
        """Insert or update a record by its code."""
        values = (
            record.code,
            record.driver,
            record.name or record.code.capitalize(),
            record.api_base_url,
            record.api_key,
            record.api_secret,
            int(record.is_active),
            int(record.is_healthy),
            record.priority,
            record.timeout,
            record.retry_times,
            json.dumps(record.config or {}),
            record.last_health_check.isoformat() if record.last_health_check else None,
        )
        with self._lock, self._conn:
            self._conn.execute('''
                INSERT INTO suppliers (code, driver, name, api_base_url, api_key, api_secret,
                                       is_active, is_healthy, priority, timeout, retry_times,
                                       config, last_health_check)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(code) DO UPDATE SET
                    driver = excluded.driver,
                    name = excluded.name,
                    api_base_url = excluded.api_base_url,
                    api_key = excluded.api_key,
                    api_secret = excluded.api_secret,
                    is_active = excluded.is_active,
                    is_healthy = excluded.is_healthy,
                    priority = excluded.priority,
                    timeout = excluded.timeout,
                    retry_times = excluded.retry_times,
                    config = excluded.config,
                    last_health_check = excluded.last_health_check
            ''', values)
            row = self._conn.execute('SELECT id FROM suppliers WHERE code = ?', (record.code,)).fetchone()
        record.id = row[0]
        return record

    def get(self, code: str) -> Optional[SupplierRecord]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM suppliers WHERE code = ?", (code,)
            ).fetchone()
        return self._to_record(row) if row else None

    def all(self) -> List[SupplierRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM suppliers ORDER BY priority DESC, id"
            ).fetchall()
        return [self._to_record(r) for r in rows]

    def available(self) -> List[SupplierRecord]:
        """Active, healthy records, highest priority first."""
        return [r for r in self.all() if r.is_available]

    def delete(self, code: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute('DELETE FROM suppliers WHERE code = ?', (code,))
            return cursor.rowcount > 0

    def count(self) -> int:
        with self._lock:
            return self._conn.execute('SELECT COUNT(*) FROM suppliers').fetchone()[0]

    def close(self):
        self._conn.close()
