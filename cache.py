'''
Caching module for supplier payloads.
Uses SQLite for lightweight disk-based caching, with an in-process
alternative for tests and short-lived scripts.
'''

import sqlite3
import json
import hashlib
import time
from pathlib import Path
from typing import Optional, Any, Callable, Dict, Tuple
import threading


OFFER_PREFIX = 'offer:'
PRICED_OFFER_PREFIX = 'offer:priced:'
TOKEN_PREFIX = 'token:'
SEARCH_PREFIX = 'flight_search_'

OFFER_TTL_SECONDS = 1800


def make_key(prefix: str, params: dict) -> str:
    '''Generate a namespaced cache key from a parameter mapping.'''
    sorted_params = json.dumps(params, sort_keys=True, default=str)
    return prefix + hashlib.sha256(sorted_params.encode()).hexdigest()


class SQLiteCache:
    '''Disk-based key-value cache using SQLite. Values are stored as JSON.'''

    def __init__(self, db_path: str = "flight_cache.db", clock: Callable[[], float] = time.time):
        '''
        Initialize the cache.

        Args:
            db_path: Path to SQLite database file (":memory:" keeps it in-process)
            clock: Returns the current time as epoch seconds
        '''
        self.db_path = str(db_path)
        self._clock = clock
        self._lock = threading.Lock()
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # One connection for the lifetime of the cache so ":memory:" works
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_db()

    def _init_db(self):
        '''Initialize the database schema.'''
        with self._lock, self._conn:
            self._conn.execute('''
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    created_at REAL NOT NULL
                )
            ''')
            self._conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_expires_at
                ON cache(expires_at)
            ''')

    def get(self, key: str) -> Optional[Any]:
        '''
        Get cached value if it exists and is not expired.

        Returns:
            Cached data or None if not found/expired
        '''
        with self._lock, self._conn:
            row = self._conn.execute(
                'SELECT value, expires_at FROM cache WHERE key = ?',
                (key,)
            ).fetchone()

            if row is None:
                return None

            value_json, expires_at = row
            if self._clock() >= expires_at:
                self._conn.execute('DELETE FROM cache WHERE key = ?', (key,))
                return None

            return json.loads(value_json)

    def put(self, key: str, value: Any, ttl_seconds: int):
        '''Store a JSON-serialisable value for ttl_seconds.'''
        value_json = json.dumps(value, default=str)
        created_at = self._clock()

        with self._lock, self._conn:
            self._conn.execute('''
                INSERT OR REPLACE INTO cache (key, value, expires_at, created_at)
                VALUES (?, ?, ?, ?)
            ''', (key, value_json, created_at + ttl_seconds, created_at))

    def forget(self, key: str):
        with self._lock, self._conn:
            self._conn.execute('DELETE FROM cache WHERE key = ?', (key,))

    def clear_expired(self) -> int:
        '''Remove all expired entries from the cache.'''
        with self._lock, self._conn:
            cursor = self._conn.execute(
                'DELETE FROM cache WHERE expires_at <= ?',
                (self._clock(),)
            )
            return cursor.rowcount

    def clear_all(self):
        '''Clear all cached data.'''
        with self._lock, self._conn:
            self._conn.execute('DELETE FROM cache')

    def get_stats(self) -> dict:
        '''Get cache statistics.'''
        with self._lock:
            total = self._conn.execute('SELECT COUNT(*) FROM cache').fetchone()[0]
            expired = self._conn.execute(
                'SELECT COUNT(*) FROM cache WHERE expires_at <= ?',
                (self._clock(),)
            ).fetchone()[0]

        return {
            'total_entries': total,
            'expired_entries': expired,
            'valid_entries': total - expired
        }

    def close(self):
        self._conn.close()


class MemoryCache:
    '''In-process cache with the same interface as SQLiteCache.'''

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[Any, float]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            # Copy through JSON so callers never share state with the cache
            return json.loads(value)

    def put(self, key: str, value: Any, ttl_seconds: int):
        with self._lock:
            self._data[key] = (json.dumps(value, default=str), self._clock() + ttl_seconds)

    def forget(self, key: str):
        with self._lock:
            self._data.pop(key, None)

    def clear_all(self):
        with self._lock:
            self._data.clear()

    def __len__(self):
        return len(self._data)


class OfferCache:
    '''
    Maps an offer id to the supplier's raw payload.

    Entries expire after ttl_seconds (30 minutes by default); an expired or
    unknown id simply reads back as None.
    '''

    def __init__(self, backend, ttl_seconds: int = OFFER_TTL_SECONDS):
        self.backend = backend
        self.ttl_seconds = ttl_seconds

    def put(self, offer_id: str, payload: Any):
        self.backend.put(OFFER_PREFIX + offer_id, payload, self.ttl_seconds)

    def get(self, offer_id: str) -> Optional[Any]:
        return self.backend.get(OFFER_PREFIX + offer_id)

    def forget(self, offer_id: str):
        self.backend.forget(OFFER_PREFIX + offer_id)
        self.backend.forget(PRICED_OFFER_PREFIX + offer_id)

    def put_priced(self, offer_id: str, payload: Any):
        self.backend.put(PRICED_OFFER_PREFIX + offer_id, payload, self.ttl_seconds)

    def get_priced(self, offer_id: str) -> Optional[Any]:
        return self.backend.get(PRICED_OFFER_PREFIX + offer_id)


class TokenCache:
    '''Bearer tokens per supplier, cached for the provider's lifetime minus a margin.'''

    def __init__(self, backend):
        self.backend = backend

    def get(self, name: str) -> Optional[str]:
        return self.backend.get(TOKEN_PREFIX + name)

    def put(self, name: str, token: str, ttl_seconds: int):
        if ttl_seconds <= 0:
            return
        self.backend.put(TOKEN_PREFIX + name, token, ttl_seconds)

    def forget(self, name: str):
        self.backend.forget(TOKEN_PREFIX + name)


_cache_instance = None
_cache_lock = threading.Lock()

def get_cache():
    '''Get or create the global cache instance.'''
    global _cache_instance
    with _cache_lock:
        if _cache_instance is None:
            from config import load_config
            _cache_instance = SQLiteCache(load_config().cache_db_path)
        return _cache_instance
