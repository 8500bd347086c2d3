import logging
import sqlite3
import threading
import time
from contextlib import closing
from typing import List, Optional, Protocol

logger = logging.getLogger("quote-service")

class PersistenceError(Exception):
    pass

class QuoteRepository(Protocol):
    def save(self, bid: str, timeout: Optional[float] = None) -> None:
        ...

    def latest(self) -> Optional[str]:
        ...

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS cotacao ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "bid TEXT, "
    "timestamp DATETIME DEFAULT CURRENT_TIMESTAMP)"
)

# SQLite opcodes between deadline checks
_PROGRESS_STEPS = 100

class SQLiteQuoteRepository:
    """
    Stores every served quote in a SQLite table.

    One connection per call, so the repository can be shared by the threads
    FastAPI runs sync endpoints on. ``save`` aborts the statement once its
    timeout passes (progress handler) and reports it as PersistenceError.
    """
    def __init__(self, db_path: str = "./cotacao.db"):
        self.db_path = db_path
        try:
            with closing(sqlite3.connect(db_path)) as conn:
                conn.execute(SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot initialise quote table: {e}") from e
        logger.info("SQLite quote repository ready: %s", db_path)

    def save(self, bid: str, timeout: Optional[float] = None) -> None:
        start = time.monotonic()
        try:
            conn = sqlite3.connect(self.db_path, timeout=timeout if timeout is not None else 5.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open quote database: {e}") from e

        with closing(conn):
            if timeout is not None:
                expires_at = start + timeout
                # non-zero return interrupts the running statement
                conn.set_progress_handler(lambda: int(time.monotonic() > expires_at), _PROGRESS_STEPS)
            try:
                with conn:
                    conn.execute("INSERT INTO cotacao(bid) VALUES(?)", (bid,))
            except sqlite3.Error as e:
                raise PersistenceError(f"saving quote failed: {e}") from e

    def latest(self) -> Optional[str]:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                row = conn.execute("SELECT bid FROM cotacao ORDER BY id DESC LIMIT 1").fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"reading quote failed: {e}") from e
        return row[0] if row else None


class InMemoryQuoteRepository:
    """Keeps saved bids in a list (no durability)."""
    def __init__(self):
        self.rows: List[str] = []
        self._lock = threading.Lock()

    def save(self, bid: str, timeout: Optional[float] = None) -> None:
        with self._lock:
            self.rows.append(bid)

    def latest(self) -> Optional[str]:
        with self._lock:
            return self.rows[-1] if self.rows else None
