import copy
import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import redis

from .logging import get_logger, with_context

logger = get_logger(__name__)

QUEUE_KEY = "playit:queue"

# fn(state) -> (new_state or None to skip the write, result handed back to the caller)
Mutator = Callable[[Dict], Tuple[Optional[Dict], object]]


class StoreUnavailable(RuntimeError):
    """The backing store could not be read or written."""


def empty_state() -> Dict:
    return {'tracks': [], 'last_updated': 0}


def _decode_state(raw) -> Dict:
    if not raw:
        return empty_state()
    data = json.loads(raw)
    return {
        'tracks': list(data.get('tracks') or []),
        'last_updated': int(data.get('last_updated') or 0),
    }


def _encode_state(state: Dict) -> str:
    return json.dumps({'tracks': state['tracks'], 'last_updated': state['last_updated']})


class DB:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Use thread-local connections to prevent deadlocks
        self._local = threading.local()
        self._global_lock = threading.Lock()
        with self._global_lock:
            conn = self._connect()
            self._migrate(conn)
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly in transaction()
        conn = sqlite3.connect(str(self.path), timeout=10, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        return conn

    def _get_connection(self):
        """Get thread-local database connection"""
        if not hasattr(self._local, 'conn') or self._local.conn is None:
            self._local.conn = self._connect()
        return self._local.conn

    def _migrate(self, conn):
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kvstore (
                key TEXT PRIMARY KEY,
                value TEXT
            );
            """
        )

    def set_setting(self, key: str, value: str):
        conn = self._get_connection()
        conn.execute(
            "INSERT INTO settings(key,value) VALUES(?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, value),
        )

    def get_setting(self, key: str) -> Optional[str]:
        conn = self._get_connection()
        cur = conn.execute("SELECT value FROM settings WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None

    def set_kv(self, key: str, value: str, conn: Optional[sqlite3.Connection] = None):
        conn = conn or self._get_connection()
        conn.execute(
            "INSERT INTO kvstore(key,value) VALUES(?,?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, value),
        )

    def get_kv(self, key: str, conn: Optional[sqlite3.Connection] = None) -> Optional[str]:
        conn = conn or self._get_connection()
        cur = conn.execute("SELECT value FROM kvstore WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None

    @contextmanager
    def transaction(self):
        """Hold SQLite's write lock for the duration of the block.

        BEGIN IMMEDIATE serializes writers across threads and across
        processes that share the database file.
        """
        conn = self._get_connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")


class MemoryStore:
    """Queue state held in this process only.

    The committed state object is replaced wholesale on every write and never
    mutated afterwards, so readers can copy it without taking the lock.
    """

    def __init__(self):
        self._state = empty_state()
        self._lock = threading.Lock()

    def read(self) -> Dict:
        return copy.deepcopy(self._state)

    def write(self, state: Dict) -> None:
        with self._lock:
            self._state = copy.deepcopy(state)

    def update(self, fn: Mutator):
        with self._lock:
            new_state, result = fn(copy.deepcopy(self._state))
            if new_state is not None:
                self._state = copy.deepcopy(new_state)
            return result

    def ping(self) -> bool:
        return True


class SQLiteStore:
    def __init__(self, db: DB, key: str = QUEUE_KEY):
        self.db = db
        self.key = key

    def read(self) -> Dict:
        try:
            return _decode_state(self.db.get_kv(self.key))
        except sqlite3.Error as e:
            with_context(logger)[0].error(f"queue read failed: {e}")
            raise StoreUnavailable(f"sqlite read failed: {e}") from e

    def write(self, state: Dict) -> None:
        try:
            self.db.set_kv(self.key, _encode_state(state))
        except sqlite3.Error as e:
            with_context(logger)[0].error(f"queue write failed: {e}")
            raise StoreUnavailable(f"sqlite write failed: {e}") from e

    def update(self, fn: Mutator):
        try:
            with self.db.transaction() as conn:
                state = _decode_state(self.db.get_kv(self.key, conn=conn))
                new_state, result = fn(state)
                if new_state is not None:
                    self.db.set_kv(self.key, _encode_state(new_state), conn=conn)
                return result
        except sqlite3.Error as e:
            with_context(logger)[0].error(f"queue update failed: {e}")
            raise StoreUnavailable(f"sqlite update failed: {e}") from e

    def ping(self) -> bool:
        try:
            self.db._get_connection().execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False


class RedisStore:
    """Queue state as one JSON value in Redis, shared by every instance.

    Updates use WATCH/MULTI/EXEC; a concurrent writer aborts the EXEC and the
    mutation is recomputed against the fresh value.
    """

    def __init__(self, client: redis.Redis, key: str = QUEUE_KEY, ttl: Optional[int] = None, max_attempts: int = 10):
        self.client = client
        self.key = key
        self.ttl = ttl
        self.max_attempts = max_attempts

    @classmethod
    def from_url(cls, url: str, key: str = QUEUE_KEY, ttl: Optional[int] = None) -> "RedisStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        return cls(client, key=key, ttl=ttl)

    def read(self) -> Dict:
        try:
            return _decode_state(self.client.get(self.key))
        except redis.RedisError as e:
            with_context(logger)[0].error(f"queue read failed: {e}")
            raise StoreUnavailable(f"redis read failed: {e}") from e

    def write(self, state: Dict) -> None:
        try:
            self.client.set(self.key, _encode_state(state), ex=self.ttl)
        except redis.RedisError as e:
            with_context(logger)[0].error(f"queue write failed: {e}")
            raise StoreUnavailable(f"redis write failed: {e}") from e

    def update(self, fn: Mutator):
        log, _ = with_context(logger)
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.client.pipeline() as pipe:
                    pipe.watch(self.key)
                    state = _decode_state(pipe.get(self.key))
                    new_state, result = fn(state)
                    if new_state is None:
                        pipe.unwatch()
                        return result
                    pipe.multi()
                    pipe.set(self.key, _encode_state(new_state), ex=self.ttl)
                    pipe.execute()
                    return result
            except redis.WatchError:
                log.info(f"queue update conflict on attempt {attempt}, retrying")
                continue
            except redis.RedisError as e:
                log.error(f"queue update failed: {e}")
                raise StoreUnavailable(f"redis update failed: {e}") from e
        raise StoreUnavailable(f"queue update conflicted {self.max_attempts} times")

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


def open_store(cfg: Dict):
    kind = (cfg.get('store') or 'memory').lower()
    if kind == 'memory':
        return MemoryStore()
    if kind == 'sqlite':
        return SQLiteStore(DB(Path(cfg['db_path'])), key=cfg.get('queue_key') or QUEUE_KEY)
    if kind == 'redis':
        return RedisStore.from_url(
            cfg['redis_url'],
            key=cfg.get('queue_key') or QUEUE_KEY,
            ttl=cfg.get('queue_ttl'),
        )
    raise ValueError(f"unknown store backend: {kind}")
