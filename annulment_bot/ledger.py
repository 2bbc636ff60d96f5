"""Append-only ledger of approved annulments, partitioned by month."""

from __future__ import annotations

import re
import threading
from typing import Any, Dict, List, Mapping

import structlog
from sqlalchemy import Column, Integer, MetaData, Table, Text, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from annulment_bot.db import connection_scope

LEDGER_COLUMNS = (
    "ticket",
    "violation_type",
    "reason",
    "amount",
    "operator",
    "status",
    "approved_by",
    "recorded_at",
)

PARTITION_PREFIX = "annulments_"
_PARTITION_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class PersistenceError(Exception):
    """Raised when a record cannot be appended to the ledger."""


def validate_partition_key(partition_key: str) -> str:
    if not isinstance(partition_key, str) or not _PARTITION_KEY_RE.match(partition_key):
        raise ValueError(f"Invalid partition key '{partition_key}', expected YYYY-MM.")
    return partition_key


def partition_table_name(partition_key: str) -> str:
    return PARTITION_PREFIX + validate_partition_key(partition_key).replace("-", "_")


def _partition_table(partition_key: str) -> Table:
    return Table(
        partition_table_name(partition_key),
        MetaData(),
        Column("id", Integer, primary_key=True, autoincrement=True),
        *(Column(name, Text, nullable=True) for name in LEDGER_COLUMNS),
    )


class Ledger:
    """SQL-backed ledger where each ``YYYY-MM`` partition is its own table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._ready: set[str] = set()

    def partition_exists(self, partition_key: str) -> bool:
        return inspect(self._engine).has_table(partition_table_name(partition_key))

    def ensure_partition(self, partition_key: str) -> Table:
        """Create the partition on first use and add any fixed column it lacks."""

        table = _partition_table(partition_key)
        with self._lock:
            if partition_key in self._ready:
                return table

            log = structlog.get_logger().bind(partition=partition_key)
            if not self.partition_exists(partition_key):
                table.create(self._engine, checkfirst=True)
                log.info("ledger_partition_created", table=table.name)
            else:
                self._add_missing_columns(table, log)
            self._ready.add(partition_key)
        return table

    def _add_missing_columns(self, table: Table, log) -> None:
        present = {column["name"] for column in inspect(self._engine).get_columns(table.name)}
        missing = [name for name in LEDGER_COLUMNS if name not in present]
        if not missing:
            return

        quote = self._engine.dialect.identifier_preparer.quote
        with connection_scope(self._engine) as connection:
            for name in missing:
                connection.execute(text(f"ALTER TABLE {quote(table.name)} ADD COLUMN {quote(name)} TEXT"))
        log.info("ledger_partition_repaired", table=table.name, added=missing)

    def append_record(self, partition_key: str, fields: Mapping[str, Any]) -> None:
        """Append one row to *partition_key*; raises PersistenceError on failure."""

        unknown = sorted(set(fields) - set(LEDGER_COLUMNS))
        if unknown:
            raise ValueError(f"Unknown ledger columns: {', '.join(unknown)}")

        row = {name: _cell(fields.get(name)) for name in LEDGER_COLUMNS}
        try:
            table = self.ensure_partition(partition_key)
            with connection_scope(self._engine) as connection:
                connection.execute(table.insert().values(**row))
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    def read_partition(self, partition_key: str) -> List[Dict[str, Any]] | None:
        """Return every row of *partition_key*, or None when it does not exist."""

        if not self.partition_exists(partition_key):
            return None

        table = self.ensure_partition(partition_key)
        with connection_scope(self._engine) as connection:
            result = connection.execute(table.select().order_by(table.c.id))
            return [dict(row._mapping) for row in result]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
