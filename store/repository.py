"""
store/repository.py -- Generic SQLAlchemy Core repository with injected policy.

Pattern: Repository + Data Mapper. A Repository[T] is parameterized by its
backing Table and a mapper (row -> T). Entity-specific rules are not written
as subclass overrides; they are passed in as a create policy, which keeps each
rule a plain function that can be unit tested without a database.

Create policy contract:
    policy(candidate: dict, conflicts: list[T]) -> Optional[int]

    candidate  -- the column values about to be written
    conflicts  -- existing rows sharing the candidate's conflict_columns,
                  oldest first
    returns    -- None to insert a new row, or the id of an existing row to
                  overwrite in place with the candidate values
    raises     -- any AccessControlError to reject the write

Every multi-row write runs inside one transaction (engine.begin()), so a
policy rejection halfway through a batch leaves the table untouched.

Security: all queries use bound parameters. Filter keys are checked against
the table's columns before use.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import Table, func, select
from sqlalchemy.engine import Connection, Engine

from store.schema import now_iso

T = TypeVar("T")

CreatePolicy = Callable[[dict, list], Optional[int]]


class Repository(Generic[T]):
    def __init__(
        self,
        engine: Engine,
        table: Table,
        mapper: Callable[[Any], T],
        policy: Optional[CreatePolicy] = None,
        conflict_columns: Sequence[str] = (),
    ) -> None:
        self.engine = engine
        self.table = table
        self._mapper = mapper
        self._policy = policy
        self._conflict_columns = tuple(conflict_columns)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, **filters: Any) -> list[T]:
        """Return rows matching every filter, in creation order.

        A filter value of None is ignored; a list or tuple matches any of its
        members.
        """
        with self.engine.connect() as conn:
            return self._find(conn, filters)

    def count(self, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.table)
        for clause in self._where(filters):
            stmt = stmt.where(clause)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def exists(self, **filters: Any) -> bool:
        return self.count(**filters) > 0

    def distinct(self, column: str) -> list[Any]:
        col = self._column(column)
        with self.engine.connect() as conn:
            rows = conn.execute(select(col).distinct().order_by(col)).fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, values: dict) -> T:
        with self.engine.begin() as conn:
            return self._create(conn, values)

    def create_many(self, batch: Iterable[dict]) -> list[T]:
        with self.engine.begin() as conn:
            return [self._create(conn, values) for values in batch]

    def update(self, filters: dict, values: dict) -> list[T]:
        """Overwrite values on every row matching filters. Returns the updated rows."""
        with self.engine.begin() as conn:
            ids = [row.id for row in conn.execute(self._select(filters)).fetchall()]
            if not ids:
                return []
            conn.execute(self.table.update().where(self.table.c.id.in_(ids)).values(**values))
            return self._find(conn, {"id": ids})

    def delete(self, **filters: Any) -> list[T]:
        """Delete every row matching filters. Returns the rows as they were."""
        with self.engine.begin() as conn:
            removed = self._find(conn, filters)
            if removed:
                ids = [self._row_id(item) for item in removed]
                conn.execute(self.table.delete().where(self.table.c.id.in_(ids)))
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self, conn: Connection, values: dict) -> T:
        conflicts: list[T] = []
        if self._conflict_columns:
            key = {name: values[name] for name in self._conflict_columns}
            conflicts = self._find(conn, key)
        target_id = self._policy(values, conflicts) if self._policy is not None else None

        if target_id is None:
            result = conn.execute(self.table.insert().values(created_at=now_iso(), **values))
            target_id = result.inserted_primary_key[0]
        else:
            conn.execute(self.table.update().where(self.table.c.id == target_id).values(**values))

        row = conn.execute(self.table.select().where(self.table.c.id == target_id)).fetchone()
        return self._mapper(row)

    def _find(self, conn: Connection, filters: dict) -> list[T]:
        rows = conn.execute(self._select(filters)).fetchall()
        return [self._mapper(r) for r in rows]

    def _select(self, filters: dict):
        stmt = self.table.select()
        for clause in self._where(filters):
            stmt = stmt.where(clause)
        return stmt.order_by(self.table.c.id)

    def _where(self, filters: dict) -> list:
        clauses = []
        for name, value in filters.items():
            if value is None:
                continue
            col = self._column(name)
            if isinstance(value, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(value)))
            else:
                clauses.append(col == value)
        return clauses

    def _column(self, name: str):
        if name not in self.table.c:
            raise ValueError(f"Unknown column for {self.table.name}: {name!r}")
        return self.table.c[name]

    @staticmethod
    def _row_id(item: Any) -> int:
        return item.id
