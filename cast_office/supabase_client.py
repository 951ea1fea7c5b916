"""
Supabase client adapter for the cast office back-office.
Wraps supabase-py's PostgREST builder in a small query API so route handlers
and services never touch the raw client. Tables are accessed by their plain names.
"""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Optional
import supabase as _supabase


PAGE_SIZE = 1000

# Table primary key mapping (everything else uses "id")
_PK_MAP: dict[str, str] = {
    "cron_locks": "job_name",
}

# Tables that have updated_at auto-set on update
_AUTO_UPDATED: frozenset[str] = frozenset({
    "casts",
    "products",
    "compensation_settings",
    "cast_daily_stats",
    "payslips",
    "scheduled_posts",
    "recurring_posts",
    "store_schedule_templates",
    "shift_requests",
    "store_wage_settings",
})


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize(data: dict) -> dict:
    """PostgREST takes JSON, so dates go over the wire as ISO strings."""
    out = {}
    for k, v in data.items():
        if isinstance(v, (datetime, date)):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


def _pk_for(table: str) -> str:
    return _PK_MAP.get(table, "id")


class Row:
    """A fetched record. Assigning an attribute marks the column for the next update()."""
    __slots__ = ("_table", "_pk_col", "_data", "_dirty")

    def __init__(self, table: str, pk_col: str, data: dict) -> None:
        object.__setattr__(self, "_table", table)
        object.__setattr__(self, "_pk_col", pk_col)
        object.__setattr__(self, "_data", dict(data))
        object.__setattr__(self, "_dirty", set())

    def __getattr__(self, name: str) -> Any:
        data = object.__getattribute__(self, "_data")
        if name in data:
            return data[name]
        table = object.__getattribute__(self, "_table")
        raise AttributeError(f"Row '{table}' has no column '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        data = object.__getattribute__(self, "_data")
        dirty = object.__getattribute__(self, "_dirty")
        data[name] = value
        dirty.add(name)

    def get(self, name: str, default: Any = None) -> Any:
        return object.__getattribute__(self, "_data").get(name, default)

    def to_dict(self) -> dict:
        return dict(object.__getattribute__(self, "_data"))

    def __repr__(self) -> str:
        return f"Row({object.__getattribute__(self, '_table')}, {object.__getattribute__(self, '_data')})"


def _or_part(col: str, op: str, val: Any) -> Optional[str]:
    if op == "=":
        return f"{col}.eq.{val}"
    if op == "!=":
        return f"{col}.neq.{val}"
    if op == "LIKE":
        return f"{col}.like.{val}"
    if op == "ILIKE":
        return f"{col}.ilike.{val}"
    if op == "IN":
        vals = ",".join(str(v) for v in val)
        return f"{col}.in.({vals})"
    if op == "IS NULL":
        return f"{col}.is.null"
    if op == "IS NOT NULL":
        return f"{col}.not.is.null"
    return None


def _apply_condition(q, col: str, op: str, val: Any):
    if isinstance(val, (datetime, date)):
        val = val.isoformat()
    if op == "=":
        return q.eq(col, val)
    if op == "!=":
        return q.neq(col, val)
    if op == "IN":
        return q.in_(col, list(val))
    if op == "LIKE":
        return q.like(col, val)
    if op == "ILIKE":
        return q.ilike(col, val)
    if op == ">":
        return q.gt(col, val)
    if op == ">=":
        return q.gte(col, val)
    if op == "<":
        return q.lt(col, val)
    if op == "<=":
        return q.lte(col, val)
    if op == "IS NULL":
        return q.is_(col, "null")
    if op == "IS NOT NULL":
        return q.not_.is_(col, "null")
    raise ValueError(f"Unsupported filter operator: {op}")


class SupabaseQuery:
    """Builder collecting filters and ordering until all()/first()/count()/delete() runs."""

    def __init__(self, db: "SupabaseDB", table: str) -> None:
        self._db = db
        self._table = table
        self._pk_col = _pk_for(table)
        self._columns = "*"
        # tuples are ANDed; a nested list is one OR group
        self._conditions: list = []
        self._order_cols: list[str] = []
        self._limit_val: Optional[int] = None

    def select(self, columns: str) -> "SupabaseQuery":
        """select("*, order_items(*)") for embedded relations."""
        self._columns = columns
        return self

    def filter(self, *conditions: tuple) -> "SupabaseQuery":
        """filter(("store_id", "=", 1), ("status", "IN", ["draft"]), ("deleted_at", "IS NULL", None))"""
        self._conditions.extend(conditions)
        return self

    def filter_or(self, conditions: list[tuple]) -> "SupabaseQuery":
        """filter_or([("cast_id", "=", 1), ("help_cast_id", "=", 1)])"""
        self._conditions.append(list(conditions))
        return self

    def order_by(self, *cols: str) -> "SupabaseQuery":
        """order_by("date ASC", "id DESC")"""
        self._order_cols.extend(cols)
        return self

    def limit(self, n: int) -> "SupabaseQuery":
        self._limit_val = n
        return self

    def _apply(self, q, with_limit: bool = True):
        for cond in self._conditions:
            if isinstance(cond, list):
                or_parts = [part for part in (_or_part(*c) for c in cond) if part]
                if or_parts:
                    q = q.or_(",".join(or_parts))
            else:
                col, op, val = cond
                q = _apply_condition(q, col, op, val)

        for order_str in self._order_cols:
            parts = order_str.strip().split()
            col = parts[0]
            desc = len(parts) > 1 and parts[1].upper() == "DESC"
            q = q.order(col, desc=desc)

        if with_limit and self._limit_val is not None:
            q = q.limit(self._limit_val)

        return q

    def _wrap(self, rows: list[dict]) -> list[Row]:
        return [Row(self._table, self._pk_col, row) for row in rows]

    def all(self) -> list[Row]:
        if self._limit_val is not None:
            q = self._apply(self._db.client.table(self._table).select(self._columns))
            return self._wrap(q.execute().data or [])

        # PostgREST caps responses at 1000 rows; page through with range()
        rows: list[dict] = []
        page = 0
        while True:
            q = self._apply(self._db.client.table(self._table).select(self._columns), with_limit=False)
            q = q.range(page * PAGE_SIZE, (page + 1) * PAGE_SIZE - 1)
            data = q.execute().data or []
            rows.extend(data)
            if len(data) < PAGE_SIZE:
                break
            page += 1
        return self._wrap(rows)

    def first(self) -> Optional[Row]:
        q = self._apply(self._db.client.table(self._table).select(self._columns), with_limit=False)
        result = q.limit(1).execute()
        if not result.data:
            return None
        return Row(self._table, self._pk_col, result.data[0])

    def count(self) -> int:
        q = self._db.client.table(self._table).select("*", count="exact").limit(0)
        q = self._apply(q, with_limit=False)
        result = q.execute()
        return result.count or 0

    def delete(self) -> int:
        q = self._apply(self._db.client.table(self._table).delete(), with_limit=False)
        result = q.execute()
        return len(result.data) if result.data else 0


class SupabaseDB:
    """Service-role access to the cast office tables. Row level security does not apply."""

    def __init__(self, url: str, service_role_key: str) -> None:
        self.client = _supabase.create_client(url, service_role_key)

    def get(self, table: str, pk_col: str, pk_val: Any) -> Optional[Row]:
        result = self.client.table(table).select("*").eq(pk_col, pk_val).limit(1).execute()
        if not result.data:
            return None
        return Row(table, pk_col, result.data[0])

    def query(self, table: str) -> SupabaseQuery:
        return SupabaseQuery(self, table)

    def insert(self, table: str, data: dict) -> Row:
        pk_col = _pk_for(table)
        # identity columns are generated by Postgres
        cleaned = _serialize({k: v for k, v in data.items() if not (k == pk_col and v is None)})
        result = self.client.table(table).insert(cleaned).execute()
        return Row(table, pk_col, result.data[0])

    def insert_many(self, table: str, rows: list[dict]) -> int:
        if not rows:
            return 0
        result = self.client.table(table).insert([_serialize(r) for r in rows]).execute()
        return len(result.data) if result.data else 0

    def upsert(self, table: str, data: dict | list[dict], on_conflict: str) -> list[Row]:
        rows = data if isinstance(data, list) else [data]
        if not rows:
            return []
        payload = [_serialize(r) for r in rows]
        if table in _AUTO_UPDATED:
            for r in payload:
                r.setdefault("updated_at", _utc_now())
        result = self.client.table(table).upsert(payload, on_conflict=on_conflict).execute()
        pk_col = _pk_for(table)
        return [Row(table, pk_col, r) for r in (result.data or [])]

    def insert_if_absent(self, table: str, data: dict, on_conflict: str) -> Optional[Row]:
        """INSERT ... ON CONFLICT DO NOTHING. Returns None when the key already existed."""
        result = (
            self.client.table(table)
            .upsert(_serialize(data), on_conflict=on_conflict, ignore_duplicates=True)
            .execute()
        )
        if not result.data:
            return None
        return Row(table, _pk_for(table), result.data[0])

    def update(self, row: Row) -> None:
        dirty = object.__getattribute__(row, "_dirty")
        if not dirty:
            return
        table = object.__getattribute__(row, "_table")
        pk_col = object.__getattribute__(row, "_pk_col")
        data = object.__getattribute__(row, "_data")
        pk_val = data[pk_col]

        dirty_data: dict = _serialize({k: data[k] for k in dirty})
        if table in _AUTO_UPDATED:
            dirty_data.setdefault("updated_at", _utc_now())

        self.client.table(table).update(dirty_data).eq(pk_col, pk_val).execute()
        object.__setattr__(row, "_dirty", set())

    def update_where(self, table: str, values: dict, conditions: list[tuple]) -> int:
        payload = _serialize(values)
        if table in _AUTO_UPDATED:
            payload.setdefault("updated_at", _utc_now())
        q = self.client.table(table).update(payload)
        for col, op, val in conditions:
            q = _apply_condition(q, col, op, val)
        result = q.execute()
        return len(result.data) if result.data else 0

    def delete_row(self, table: str, pk_col: str, pk_val: Any) -> None:
        self.client.table(table).delete().eq(pk_col, pk_val).execute()

    def delete_where(self, table: str, conditions: list[tuple]) -> int:
        q = self.client.table(table).delete()
        for col, op, val in conditions:
            q = _apply_condition(q, col, op, val)
        result = q.execute()
        return len(result.data) if result.data else 0

    def close(self) -> None:
        # the supabase client owns its connection pool
        pass
