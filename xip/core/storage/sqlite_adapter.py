import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from xip.utils.logger import get_logger

logger = get_logger("storage.sqlite")

SCHEMA = """
CREATE TABLE IF NOT EXISTS manifests (
    intent_id TEXT PRIMARY KEY,
    chain_id INTEGER NOT NULL,
    recipients TEXT NOT NULL,
    amounts TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_manifest_created ON manifests(created_at);
"""


def _row_to_manifest(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "intent_id": row["intent_id"],
        "chain_id": row["chain_id"],
        "recipients": json.loads(row["recipients"]),
        "amounts": [int(a) for a in json.loads(row["amounts"])],
        "total_amount": int(row["total_amount"]),
        "created_at": row["created_at"],
    }


class SQLiteAdapter:
    """
    SQLite backend for the recipient privacy store.

    One row per intent id: the payout recipients and amounts a solver
    must use when delivering on the destination chain. Amounts are kept
    as decimal strings since they exceed SQLite's 64-bit integers.

    The store is often built on one thread and served from the event loop
    thread of the relayer, so each thread opens its own connection.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._local = threading.local()
        self._conns: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_conn() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Recipient store at {db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
        return conn

    # =========================================================================
    # Manifest Operations
    # =========================================================================

    def save_manifest(
        self,
        intent_id: str,
        chain_id: int,
        recipients: List[str],
        amounts: List[int],
        total_amount: int,
        created_at: float,
    ):
        """Insert or overwrite the manifest of an intent."""
        conn = self._get_conn()
        with conn:
            # DELETE + INSERT so an overwrite moves to the end of the creation order
            conn.execute("DELETE FROM manifests WHERE intent_id = ?", (intent_id,))
            conn.execute(
                "INSERT INTO manifests (intent_id, chain_id, recipients, amounts, total_amount, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    intent_id,
                    chain_id,
                    json.dumps(recipients),
                    json.dumps([str(a) for a in amounts]),
                    str(total_amount),
                    created_at,
                )
            )

    def get_manifest(self, intent_id: str) -> Optional[Dict[str, Any]]:
        """Get manifest row by intent id."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM manifests WHERE intent_id = ?", (intent_id,))
        row = cursor.fetchone()
        return _row_to_manifest(row) if row is not None else None

    def delete_manifest(self, intent_id: str) -> bool:
        """Delete a manifest. Returns whether a row existed."""
        conn = self._get_conn()
        with conn:
            cursor = conn.execute("DELETE FROM manifests WHERE intent_id = ?", (intent_id,))
        return cursor.rowcount > 0

    def list_manifest_ids(self) -> List[str]:
        """All intent ids, oldest first."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT intent_id FROM manifests ORDER BY created_at ASC, rowid ASC")
        return [row["intent_id"] for row in cursor]

    def count_manifests(self) -> int:
        conn = self._get_conn()
        cursor = conn.execute("SELECT COUNT(*) FROM manifests")
        return cursor.fetchone()[0]

    def close(self):
        """Close the connections of every thread; a later call reconnects."""
        with self._conns_lock:
            conns, self._conns = self._conns, []
            self._local = threading.local()
        for conn in conns:
            conn.close()
        if conns:
            logger.debug(f"Closed {len(conns)} connection(s) to {self.db_path}")

    @property
    def open_connections(self) -> int:
        with self._conns_lock:
            return len(self._conns)
