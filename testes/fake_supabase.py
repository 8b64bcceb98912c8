"""
In-memory stand-in for the supabase-py client, covering the PostgREST calls
the stores make: table/select/insert/update/upsert/delete, eq/neq/is_/not_/in_,
gte/lte, order, limit, execute.

Payloads go through a JSON round-trip, like the real HTTP client, so a Decimal
or bytes leaking into a write fails here the same way it would in production.
"""
import json


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class SimulatedOutage(RuntimeError):
    pass


class _Negated:
    def __init__(self, query):
        self._query = query

    def is_(self, column, value):
        return self._query._add(lambda r: not _is_match(r, column, value))

    def eq(self, column, value):
        return self._query._add(lambda r: r.get(column) != value)


def _is_match(row, column, value):
    if value in ("null", None):
        return row.get(column) is None
    if value in ("true", True):
        return row.get(column) is True
    if value in ("false", False):
        return row.get(column) is False
    raise ValueError(f"unsupported is_ value: {value!r}")


def _roundtrip(payload):
    return json.loads(json.dumps(payload))


class FakeQuery:
    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._op = "select"
        self._columns = "*"
        self._payload = None
        self._on_conflict = ""
        self._filters = []
        self._orders = []
        self._limit = None

    # -- operations --------------------------------------------------------

    def select(self, columns="*", count=None):
        self._op = "select"
        self._columns = columns
        return self

    def insert(self, rows):
        self._op = "insert"
        self._payload = _roundtrip(rows)
        return self

    def update(self, values):
        self._op = "update"
        self._payload = _roundtrip(values)
        return self

    def upsert(self, rows, on_conflict=""):
        self._op = "upsert"
        self._payload = _roundtrip(rows)
        self._on_conflict = on_conflict
        return self

    def delete(self):
        self._op = "delete"
        return self

    # -- filters -----------------------------------------------------------

    def _add(self, predicate):
        self._filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda r: r.get(column) == value)

    def neq(self, column, value):
        return self._add(lambda r: r.get(column) != value)

    def is_(self, column, value):
        return self._add(lambda r: _is_match(r, column, value))

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda r: r.get(column) in values)

    def gte(self, column, value):
        return self._add(lambda r: r.get(column) is not None and r.get(column) >= value)

    def lte(self, column, value):
        return self._add(lambda r: r.get(column) is not None and r.get(column) <= value)

    @property
    def not_(self):
        return _Negated(self)

    def order(self, column, desc=False):
        self._orders.append((column, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    # -- execution ---------------------------------------------------------

    def _matching(self, rows):
        return [r for r in rows if all(f(r) for f in self._filters)]

    def _project(self, row):
        if self._columns.strip() == "*":
            return dict(row)
        wanted = [c.strip() for c in self._columns.split(",")]
        return {c: row.get(c) for c in wanted}

    def execute(self):
        self._db.calls.append((self._table, self._op))
        if (self._table, self._op) in self._db.fail_on or self._table in self._db.fail_on:
            raise SimulatedOutage(f"{self._table}.{self._op} unavailable")

        rows = self._db.tables.setdefault(self._table, [])

        if self._op == "select":
            found = self._matching(rows)
            for column, desc in reversed(self._orders):
                found.sort(key=lambda r: (r.get(column) is None, str(r.get(column))), reverse=desc)
            if self._limit is not None:
                found = found[: self._limit]
            return FakeResponse([self._project(r) for r in found], count=len(found))

        if self._op == "insert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            for row in new_rows:
                row.setdefault("id", self._db.next_id(self._table))
                rows.append(row)
            return FakeResponse([dict(r) for r in new_rows])

        if self._op == "update":
            updated = self._matching(rows)
            for row in updated:
                row.update(self._payload)
            return FakeResponse([dict(r) for r in updated])

        if self._op == "delete":
            removed = self._matching(rows)
            self._db.tables[self._table] = [r for r in rows if r not in removed]
            return FakeResponse([dict(r) for r in removed])

        if self._op == "upsert":
            keys = [k.strip() for k in self._on_conflict.split(",") if k.strip()] or ["id"]
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            out = []
            for row in new_rows:
                match = next(
                    (r for r in rows if all(r.get(k) == row.get(k) for k in keys)), None
                )
                if match is not None:
                    match.update(row)
                    out.append(dict(match))
                else:
                    row.setdefault("id", self._db.next_id(self._table))
                    rows.append(row)
                    out.append(dict(row))
            return FakeResponse(out)

        raise ValueError(f"unknown op {self._op}")


class FakeSupabase:
    def __init__(self, tables=None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.calls = []
        self.fail_on = set()
        self._seq = 0

    def table(self, name):
        return FakeQuery(self, name)

    def next_id(self, table):
        self._seq += 1
        return f"{table}_{self._seq}"

    def rows(self, table):
        return self.tables.get(table, [])

    def writes(self):
        return [c for c in self.calls if c[1] in ("insert", "update", "upsert", "delete")]
