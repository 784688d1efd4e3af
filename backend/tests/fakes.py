"""
In-memory stand-in for the supabase-py client.

Covers the slice of the PostgREST builder the services use: select (with
count), eq/neq/gt/in_/or_(ilike), order, limit, maybe_single/single,
insert/update/upsert/delete, rpc, storage buckets and auth.admin.list_users.
"""
import copy
import re
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace


class FakeAPIError(Exception):
    pass


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


def _ilike(value, pattern):
    if value is None:
        return False
    # Patterns are always %term%; inside, \x is a literal x
    if len(pattern) >= 2 and pattern.startswith("%") and pattern.endswith("%"):
        pattern = pattern[1:-1]
    needle = re.sub(r"\\(.)", r"\1", pattern).lower()
    return needle in str(value).lower()


class FakeQuery:
    def __init__(self, db, table, op, payload=None, columns="*", count=None,
                 on_conflict=None, ignore_duplicates=False):
        self.db = db
        self.table = table
        self.op = op
        self.payload = payload
        self.columns = columns
        self.count_mode = count
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        self.filters = []
        self.orders = []
        self.row_limit = None
        self.single_mode = None

    # Filters
    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda r: r.get(column) != value)
        return self

    def gt(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r.get(column) > value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def or_(self, expression):
        self.db.or_expressions.append(expression)
        clauses = []
        for part in expression.split(","):
            column, operator, pattern = part.split(".", 2)
            if operator != "ilike":
                raise NotImplementedError(operator)
            clauses.append((column, pattern))
        self.filters.append(lambda r: any(_ilike(r.get(c), p) for c, p in clauses))
        return self

    # Modifiers
    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.row_limit = n
        return self

    def maybe_single(self):
        self.single_mode = "maybe"
        return self

    def single(self):
        self.single_mode = "single"
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        cols = [c.strip() for c in self.columns.split(",")]
        return {c: copy.deepcopy(row.get(c)) for c in cols}

    def execute(self):
        self.db.calls.append((self.table, self.op))
        if (self.table, self.op) in self.db.failures or (self.table, "*") in self.db.failures:
            raise FakeAPIError(f"{self.op} on {self.table} failed")

        rows = self.db.tables.setdefault(self.table, [])
        handler = getattr(self, f"_exec_{self.op}")
        return handler(rows)

    def _exec_select(self, rows):
        matched = [r for r in rows if self._matches(r)]
        for column, desc in reversed(self.orders):
            present = [r for r in matched if r.get(column) is not None]
            missing = [r for r in matched if r.get(column) is None]
            present.sort(key=lambda r: r.get(column), reverse=desc)
            matched = present + missing
        total = len(matched)
        if self.row_limit is not None:
            matched = matched[: self.row_limit]
        data = [self._project(r) for r in matched]

        if self.single_mode == "maybe":
            if not data:
                return None
            return FakeResponse(data[0])
        if self.single_mode == "single":
            if len(data) != 1:
                raise FakeAPIError("JSON object requested, multiple (or no) rows returned")
            return FakeResponse(data[0])
        return FakeResponse(data, count=total if self.count_mode else None)

    def _exec_insert(self, rows):
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        inserted = []
        for item in payload:
            row = self.db.new_row(item)
            rows.append(row)
            inserted.append(copy.deepcopy(row))
        return FakeResponse(inserted)

    def _exec_update(self, rows):
        updated = []
        for row in rows:
            if self._matches(row):
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
        return FakeResponse(updated)

    def _exec_upsert(self, rows):
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        key = self.on_conflict or "id"
        out = []
        for item in payload:
            existing = next((r for r in rows if key in item and r.get(key) == item[key]), None)
            if existing is None:
                row = self.db.new_row(item)
                rows.append(row)
                out.append(copy.deepcopy(row))
            elif not self.ignore_duplicates:
                existing.update(copy.deepcopy(item))
                out.append(copy.deepcopy(existing))
        return FakeResponse(out)

    def _exec_delete(self, rows):
        deleted = [r for r in rows if self._matches(r)]
        self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
        return FakeResponse([copy.deepcopy(r) for r in deleted])


class FakeTable:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    def select(self, columns="*", count=None):
        return FakeQuery(self.db, self.name, "select", columns=columns, count=count)

    def insert(self, payload):
        return FakeQuery(self.db, self.name, "insert", payload=payload)

    def update(self, payload):
        return FakeQuery(self.db, self.name, "update", payload=payload)

    def upsert(self, payload, on_conflict=None, ignore_duplicates=False):
        return FakeQuery(self.db, self.name, "upsert", payload=payload,
                         on_conflict=on_conflict, ignore_duplicates=ignore_duplicates)

    def delete(self):
        return FakeQuery(self.db, self.name, "delete")


class FakeRPC:
    def __init__(self, db, name, params):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        if ("rpc", self.name) in self.db.failures:
            raise FakeAPIError(f"rpc {self.name} failed")
        self.db.rpc_calls.append((self.name, self.params))
        return FakeResponse(None)


class FakeBucket:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    def upload(self, path, content, file_options=None):
        if ("storage", self.name) in self.db.failures:
            raise FakeAPIError("upload failed")
        self.db.objects[(self.name, path)] = {"content": content, "options": file_options}
        return SimpleNamespace(path=path)

    def remove(self, paths):
        if ("storage_remove", self.name) in self.db.failures:
            raise FakeAPIError("remove failed")
        for path in paths:
            self.db.objects.pop((self.name, path), None)
        return [{"name": p} for p in paths]

    def create_signed_url(self, path, expires_in):
        return {"signedURL": f"https://storage.test/{self.name}/{path}?expires={expires_in}"}


class FakeStorage:
    def __init__(self, db):
        self.db = db

    def from_(self, bucket):
        return FakeBucket(self.db, bucket)


class FakeAuthAdmin:
    def __init__(self, db):
        self.db = db

    def list_users(self, page=1, per_page=50):
        if ("auth", "list_users") in self.db.failures:
            raise FakeAPIError("auth listing failed")
        start = (page - 1) * per_page
        return self.db.auth_users[start:start + per_page]


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.failures = set()
        self.calls = []
        self.rpc_calls = []
        self.or_expressions = []
        self.objects = {}
        self.auth_users = []
        self.storage = FakeStorage(self)
        self.auth = SimpleNamespace(admin=FakeAuthAdmin(self))
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def table(self, name):
        return FakeTable(self, name)

    def rpc(self, name, params=None):
        return FakeRPC(self, name, params or {})

    def fail(self, table, op="*"):
        self.failures.add((table, op))

    def tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def new_row(self, item):
        row = copy.deepcopy(item)
        row.setdefault("id", str(uuid.uuid4()))
        if "created_at" not in row:
            row["created_at"] = self.tick()
        return row

    def seed(self, table, *rows):
        for r in rows:
            self.tables.setdefault(table, []).append(self.new_row(r))

    def rows(self, table):
        return self.tables.get(table, [])

    def add_auth_user(self, user_id, email=None):
        self.auth_users.append(SimpleNamespace(id=user_id, email=email))
