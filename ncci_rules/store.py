"""
Relational rule store (SQLite).

The validator and the ingester only talk to the RuleRepository protocol, so
tests and alternative backends can substitute their own implementation.
Every session owns one connection and closes it on exit; nothing is kept at
module level.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple

from .config import SQLITE_PATH
from .models import AOCRule, MUERule, PTPEdit

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

# table -> (partition column, insert columns)
TABLES: Dict[str, Tuple[Optional[str], Tuple[str, ...]]] = {
    "ptp_edits": ("provider_type", ("column1", "column2", "modifier_indicator", "effective_date", "provider_type")),
    "mue": ("service_type", ("hcpcs_cpt", "mue_value", "effective_date", "service_type")),
    "aoc": (None, ("addon_code", "primary_code", "effective_date")),
}


class RuleReader(Protocol):
    def lookup_ptp(self, codes: Sequence[str], provider_type: Optional[str]) -> List[PTPEdit]:
        """Edit rows whose column1 and column2 are both among `codes`."""

    def lookup_mue(self, codes: Sequence[str], service_type: Optional[str]) -> List[MUERule]:
        """MUE rows for any of `codes`."""

    def lookup_aoc(self, codes: Sequence[str]) -> List[AOCRule]:
        """AOC rows whose add-on code is among `codes`."""


class RuleRepository(RuleReader, Protocol):
    def session(self) -> ContextManager[RuleReader]:
        """A reader bound to one store connection for its whole scope."""

    def replace_partition(self, table: str, partition: Optional[str], rows: Iterable) -> int:
        """Delete one partition of `table` and insert `rows` in its place."""


def _in_clause(values: Sequence[str]) -> str:
    return ",".join("?" for _ in values)


def _scope(column: str, value: Optional[str]) -> Tuple[str, list]:
    # None means unscoped; rows without a partition match every scope
    if value is None:
        return "", []
    return f" AND ({column} IS NULL OR {column} = ?)", [value]


class SQLiteRuleSession:
    def __init__(self, cx: sqlite3.Connection):
        self.cx = cx

    def lookup_ptp(self, codes: Sequence[str], provider_type: Optional[str]) -> List[PTPEdit]:
        codes = sorted(set(codes))
        if not codes:
            return []
        scope_sql, scope_args = _scope("provider_type", provider_type)
        rows = self.cx.execute(
            f"SELECT column1, column2, modifier_indicator, effective_date, provider_type "
            f"FROM ptp_edits WHERE column1 IN ({_in_clause(codes)}) AND column2 IN ({_in_clause(codes)})"
            f"{scope_sql} ORDER BY id",
            [*codes, *codes, *scope_args],
        ).fetchall()
        return [PTPEdit(*r) for r in rows]

    def lookup_mue(self, codes: Sequence[str], service_type: Optional[str]) -> List[MUERule]:
        codes = sorted(set(codes))
        if not codes:
            return []
        scope_sql, scope_args = _scope("service_type", service_type)
        rows = self.cx.execute(
            f"SELECT hcpcs_cpt, mue_value, effective_date, service_type "
            f"FROM mue WHERE hcpcs_cpt IN ({_in_clause(codes)}){scope_sql} ORDER BY id",
            [*codes, *scope_args],
        ).fetchall()
        return [MUERule(*r) for r in rows]

    def lookup_aoc(self, codes: Sequence[str]) -> List[AOCRule]:
        codes = sorted(set(codes))
        if not codes:
            return []
        rows = self.cx.execute(
            f"SELECT addon_code, primary_code, effective_date "
            f"FROM aoc WHERE addon_code IN ({_in_clause(codes)}) ORDER BY id",
            codes,
        ).fetchall()
        return [AOCRule(*r) for r in rows]


class SQLiteRuleRepository:
    def __init__(self, db_path: Path = SQLITE_PATH, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._locks: Dict[Tuple[str, Optional[str]], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=self.timeout)

    def init_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        ddl = SCHEMA_PATH.read_text()
        cx = self._connect()
        try:
            cx.executescript(ddl)
        finally:
            cx.close()
        logger.info(f"Schema ready at {self.db_path}")

    @contextmanager
    def session(self) -> Iterator[SQLiteRuleSession]:
        cx = self._connect()
        try:
            yield SQLiteRuleSession(cx)
        finally:
            cx.close()

    def lookup_ptp(self, codes: Sequence[str], provider_type: Optional[str]) -> List[PTPEdit]:
        with self.session() as s:
            return s.lookup_ptp(codes, provider_type)

    def lookup_mue(self, codes: Sequence[str], service_type: Optional[str]) -> List[MUERule]:
        with self.session() as s:
            return s.lookup_mue(codes, service_type)

    def lookup_aoc(self, codes: Sequence[str]) -> List[AOCRule]:
        with self.session() as s:
            return s.lookup_aoc(codes)

    def _partition_lock(self, table: str, partition: Optional[str]) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((table, partition), threading.Lock())

    def replace_partition(self, table: str, partition: Optional[str], rows: Iterable) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown rule table: {table}")
        key_col, columns = TABLES[table]
        if key_col is None and partition is not None:
            raise ValueError(f"{table} has a single global partition")

        records = [
            tuple(partition if col == key_col else getattr(row, col) for col in columns)
            for row in rows
        ]
        insert = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({_in_clause(columns)})"
        if key_col is None:
            delete, args = f"DELETE FROM {table}", []
        elif partition is None:
            delete, args = f"DELETE FROM {table} WHERE {key_col} IS NULL", []
        else:
            delete, args = f"DELETE FROM {table} WHERE {key_col} = ?", [partition]

        with self._partition_lock(table, partition):
            cx = self._connect()
            try:
                with cx:
                    removed = cx.execute(delete, args).rowcount
                    cx.executemany(insert, records)
            finally:
                cx.close()
        logger.info(f"{table}[{partition or '*'}]: replaced {removed} rows with {len(records)}")
        return len(records)

    def count(self, table: str, partition: Optional[str] = None) -> int:
        if table not in TABLES:
            raise ValueError(f"Unknown rule table: {table}")
        key_col = TABLES[table][0]
        sql, args = f"SELECT COUNT(*) FROM {table}", []
        if partition is not None and key_col is not None:
            sql, args = sql + f" WHERE {key_col} = ?", [partition]
        with self.session() as s:
            (n,) = s.cx.execute(sql, args).fetchone()
        return n

    def is_built(self) -> bool:
        try:
            return self.count("ptp_edits") > 0
        except sqlite3.Error as e:
            logger.warning(f"Rule store not readable at {self.db_path}: {e}")
            return False
