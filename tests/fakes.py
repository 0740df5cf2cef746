"""
In-memory stand-in for the supabase-py client.

Supports the PostgREST builder calls the services use: table().select /
insert / update / upsert / delete with eq, neq, in_, is_, gte, lte, ilike,
order and limit, plus rpc() with per-function handlers.
"""

import copy
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional


class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict: Optional[str] = None
        self.count_mode: Optional[str] = None
        self.filters: List[Callable[[Dict], bool]] = []
        self.orders: List[tuple] = []
        self.limit_n: Optional[int] = None

    # ─── Operations ──────────────────────────────────────────────────

    def select(self, columns: str = "*", count: Optional[str] = None):
        self.op = "select"
        self.count_mode = count
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def update(self, values: Dict[str, Any]):
        self.op = "update"
        self.payload = values
        return self

    def upsert(self, rows, on_conflict: Optional[str] = None):
        self.op = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # ─── Filters ─────────────────────────────────────────────────────

    def eq(self, column: str, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column: str, value):
        self.filters.append(lambda r: r.get(column) != value)
        return self

    def in_(self, column: str, values):
        allowed = list(values)
        self.filters.append(lambda r: r.get(column) in allowed)
        return self

    def is_(self, column: str, value):
        if value in ("null", None):
            self.filters.append(lambda r: r.get(column) is None)
        else:
            self.filters.append(lambda r: r.get(column) is not None)
        return self

    def gte(self, column: str, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r.get(column)) >= str(value))
        return self

    def lte(self, column: str, value):
        self.filters.append(lambda r: r.get(column) is not None and str(r.get(column)) <= str(value))
        return self

    def ilike(self, column: str, pattern: str):
        regex = re.compile(
            "^" + ".*".join(re.escape(part) for part in pattern.split("%")) + "$",
            re.IGNORECASE,
        )
        self.filters.append(lambda r: r.get(column) is not None and bool(regex.match(str(r.get(column)))))
        return self

    def order(self, column: str, desc: bool = False):
        self.orders.append((column, desc))
        return self

    def limit(self, n: int):
        self.limit_n = n
        return self

    # ─── Execution ───────────────────────────────────────────────────

    def _matching(self) -> List[Dict[str, Any]]:
        return [r for r in self.db.rows(self.table_name) if all(f(r) for f in self.filters)]

    def execute(self) -> FakeResult:
        failure = self.db.failures.get((self.table_name, self.op))
        if failure is not None:
            raise failure

        self.db.calls.append((self.table_name, self.op))

        if self.op == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            return FakeResult([copy.deepcopy(self.db.add(self.table_name, row)) for row in rows])

        if self.op == "upsert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
            stored = []
            for row in rows:
                existing = next(
                    (r for r in self.db.rows(self.table_name) if all(r.get(k) == row.get(k) for k in keys)),
                    None,
                )
                if existing is not None:
                    existing.update(copy.deepcopy(row))
                    stored.append(copy.deepcopy(existing))
                else:
                    stored.append(copy.deepcopy(self.db.add(self.table_name, row)))
            return FakeResult(stored)

        if self.op == "update":
            updated = []
            for row in self._matching():
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
            return FakeResult(updated)

        if self.op == "delete":
            doomed = self._matching()
            self.db.tables[self.table_name] = [
                r for r in self.db.rows(self.table_name) if not any(r is d for d in doomed)
            ]
            return FakeResult(copy.deepcopy(doomed))

        rows = self._matching()
        for column, desc in reversed(self.orders):
            rows.sort(
                key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else 0),
                reverse=desc,
            )
        count = len(rows) if self.count_mode else None
        if self.limit_n is not None:
            rows = rows[:self.limit_n]
        return FakeResult(copy.deepcopy(rows), count=count)


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: Dict[str, Any]):
        self.db = db
        self.name = name
        self.params = params

    def execute(self) -> FakeResult:
        self.db.rpc_calls.append((self.name, self.params))
        handler = self.db.rpc_handlers.get(self.name)
        if handler is None:
            raise RuntimeError(f"Could not find the function public.{self.name}")
        return FakeResult(handler(self.params))


class FakeSupabase:
    """Dict-of-lists database with auto ids and increasing timestamps."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.rpc_handlers: Dict[str, Callable[[Dict[str, Any]], List[Dict[str, Any]]]] = {}
        self.rpc_calls: List[tuple] = []
        self.failures: Dict[tuple, Exception] = {}
        self.calls: List[tuple] = []
        self._clock = datetime.now(timezone.utc) - timedelta(minutes=5)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def _tick(self) -> str:
        self._clock += timedelta(milliseconds=1)
        return self._clock.isoformat()

    def add(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        now = self._tick()
        stored.setdefault("created_at", now)
        stored.setdefault("updated_at", now)
        self.rows(table).append(stored)
        return stored

    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [self.add(table, row) for row in rows]

    def fail(self, table: str, op: str, error: Optional[Exception] = None):
        """Make every <op> on table raise."""
        self.failures[(table, op)] = error or RuntimeError(f"{op} on {table} failed")
