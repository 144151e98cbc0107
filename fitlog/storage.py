"""
Key/value persistence for tracker state.

Behaves like a browser's per-origin local storage: string keys, string values,
a fixed size quota. Values live in a single SQLite table so the state survives
restarts of the backend.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


class StorageQuotaError(RuntimeError):
  """Raised when a write would push the store past its quota."""


class LocalStorage:
  """String key/value store backed by SQLite with a total size quota."""

  def __init__(self, db_path: Union[str, Path], quota_bytes: int = DEFAULT_QUOTA_BYTES) -> None:
    self.db_path = Path(db_path)
    self.quota_bytes = quota_bytes
    self._initialise()

  def _connect(self) -> sqlite3.Connection:
    """Return a SQLite connection with row access by name."""
    conn = sqlite3.connect(self.db_path)
    conn.row_factory = sqlite3.Row
    return conn

  def _initialise(self) -> None:
    self.db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = self._connect()
    with conn:
      conn.execute(
        """
        CREATE TABLE IF NOT EXISTS local_storage (
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL
        )
        """
      )
    conn.close()

  def get_item(self, key: str) -> Optional[str]:
    conn = self._connect()
    row = conn.execute("SELECT value FROM local_storage WHERE key = ?", (key,)).fetchone()
    conn.close()
    return row["value"] if row is not None else None

  def set_item(self, key: str, value: str) -> None:
    """Store ``value`` under ``key`` unless that would exceed the quota."""
    conn = self._connect()
    try:
      row = conn.execute(
        """
        SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) AS used
        FROM local_storage
        WHERE key != ?
        """,
        (key,),
      ).fetchone()
      required = row["used"] + len(key) + len(value)
      if required > self.quota_bytes:
        raise StorageQuotaError(
          f"Writing '{key}' needs {required} characters; the quota is {self.quota_bytes}."
        )
      with conn:
        conn.execute(
          """
          INSERT INTO local_storage (key, value) VALUES (?, ?)
          ON CONFLICT(key) DO UPDATE SET value = excluded.value
          """,
          (key, value),
        )
    finally:
      conn.close()

  def remove_item(self, key: str) -> None:
    conn = self._connect()
    with conn:
      conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
    conn.close()


__all__ = ["DEFAULT_QUOTA_BYTES", "LocalStorage", "StorageQuotaError"]
