import json
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

Item = dict[str, Any]

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class StorageError(Exception):
    """A backing store could not complete a request."""


class RecordStore(Protocol):
    """Single-key record table. Each call is atomic for its one key only."""

    key_field: str

    def init(self) -> None: ...

    def get(self, key: str) -> Item | None: ...

    def put(self, item: Item) -> None: ...

    def update(self, key: str, attributes: Item) -> Item | None: ...

    def delete(self, key: str) -> Item | None: ...

    def scan(self) -> list[Item]: ...


class SQLiteRecordStore:
    def __init__(self, db_path: str, table_name: str, key_field: str):
        if not _TABLE_NAME.match(table_name):
            raise ValueError(f"invalid table name: {table_name!r}")
        self.db_path = db_path
        self.table_name = table_name
        self.key_field = key_field

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"cannot open record store: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"record store error: {exc}") from exc
        finally:
            conn.close()

    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    pk TEXT PRIMARY KEY,
                    item TEXT NOT NULL
                );
                """
            )

    def get(self, key: str) -> Item | None:
        with self._connect() as conn:
            row = conn.execute(f"SELECT item FROM {self.table_name} WHERE pk = ?", (key,)).fetchone()
        return json.loads(row["item"]) if row else None

    def put(self, item: Item) -> None:
        key = item.get(self.key_field)
        if not key:
            raise StorageError(f"item is missing key attribute {self.key_field!r}")
        with self._connect() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {self.table_name}(pk, item) VALUES(?, ?)",
                (key, json.dumps(item)),
            )

    def update(self, key: str, attributes: Item) -> Item | None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(f"SELECT item FROM {self.table_name} WHERE pk = ?", (key,)).fetchone()
            if row is None:
                return None
            item = json.loads(row["item"])
            item.update(attributes)
            item[self.key_field] = key
            conn.execute(
                f"UPDATE {self.table_name} SET item = ? WHERE pk = ?",
                (json.dumps(item), key),
            )
        return item

    def delete(self, key: str) -> Item | None:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(f"SELECT item FROM {self.table_name} WHERE pk = ?", (key,)).fetchone()
            if row is None:
                return None
            conn.execute(f"DELETE FROM {self.table_name} WHERE pk = ?", (key,))
        return json.loads(row["item"])

    def scan(self) -> list[Item]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT item FROM {self.table_name} ORDER BY rowid").fetchall()
        return [json.loads(row["item"]) for row in rows]
