"""Pytest configuration and fixtures."""

import copy
import os
import re
import secrets
import sys
import uuid

import pytest

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

# For unit tests, set mock values ONLY if not running integration tests
if not os.environ.get("RUN_INTEGRATION"):
    os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
    os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
    os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
    # Unit tests never reach a real provider
    os.environ["LLM_PROVIDER"] = "none"
else:
    from pathlib import Path

    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / ".env"

    if not os.environ.get("CONFIRM_INTEGRATION_CREDENTIALS"):
        print("\n" + "=" * 70, file=sys.stderr)
        print("WARNING: Integration tests will use REAL credentials from .env", file=sys.stderr)
        print("   Set CONFIRM_INTEGRATION_CREDENTIALS=yes to proceed.", file=sys.stderr)
        print("=" * 70 + "\n", file=sys.stderr)
        pytest.exit(
            "Integration tests require CONFIRM_INTEGRATION_CREDENTIALS=yes",
            returncode=1,
        )

    load_dotenv(env_path, override=True)

from app.database import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402


# =============================================================================
# In-memory Supabase
# =============================================================================

class _Result:
    def __init__(self, data):
        self.data = data


def _like(pattern: str, value) -> bool:
    if value is None:
        return False
    parts = re.split(r"(?<!\\)%", pattern)
    regex = ".*".join(re.escape(re.sub(r"\\(.)", r"\1", p)) for p in parts)
    return re.fullmatch(regex, str(value), re.IGNORECASE | re.DOTALL) is not None


def _or_clause(row: dict, column: str, op: str, operand: str) -> bool:
    value = row.get(column)
    if op == "ilike":
        return _like(operand, value)
    if op == "is":
        return value is None if operand == "null" else str(value).lower() == operand
    if isinstance(value, bool):
        return str(value).lower() == operand
    return value is not None and str(value) == operand


class FakeQuery:
    """Subset of the postgrest query builder used by the app."""

    def __init__(self, store: dict, table: str):
        self._store = store
        self._table = table
        self._op = "select"
        self._payload = None
        self._on_conflict = None
        self._filters = []
        self._orders = []
        self._limit = None
        self._range = None

    # operations
    def select(self, *columns, **kwargs):
        self._op = "select"
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict: str = "id", **kwargs):
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self._op, self._payload = "update", payload
        return self

    def delete(self):
        self._op = "delete"
        return self

    # filters
    def eq(self, column, value):
        self._filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self._filters.append(lambda r: r.get(column) != value)
        return self

    def is_(self, column, value):
        if value in ("null", None):
            self._filters.append(lambda r: r.get(column) is None)
        else:
            self._filters.append(lambda r: r.get(column) is not None)
        return self

    def in_(self, column, values):
        values = list(values)
        self._filters.append(lambda r: r.get(column) in values)
        return self

    def ilike(self, column, pattern):
        self._filters.append(lambda r: _like(pattern, r.get(column)))
        return self

    def or_(self, expression: str):
        clauses = []
        for clause in expression.split(","):
            column, op, operand = clause.split(".", 2)
            assert op in ("ilike", "eq", "is"), f"unsupported or_ operator {op}"
            clauses.append((column, op, operand))
        self._filters.append(lambda r: any(_or_clause(r, *clause) for clause in clauses))
        return self

    def order(self, column, desc: bool = False, **kwargs):
        self._orders.append((column, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    # execution
    def _rows(self) -> list:
        return self._store.setdefault(self._table, [])

    def _matches(self, row) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self):
        rows = self._rows()

        if self._op == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = []
            for item in payload:
                row = copy.deepcopy(item)
                row.setdefault("id", uuid.uuid4().hex)
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return _Result(inserted)

        if self._op == "upsert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            keys = [k.strip() for k in self._on_conflict.split(",")]
            out = []
            for item in payload:
                existing = next(
                    (r for r in rows if all(r.get(k) == item.get(k) for k in keys)), None
                )
                if existing is not None:
                    existing.update(copy.deepcopy(item))
                    out.append(copy.deepcopy(existing))
                else:
                    row = copy.deepcopy(item)
                    row.setdefault("id", uuid.uuid4().hex)
                    rows.append(row)
                    out.append(copy.deepcopy(row))
            return _Result(out)

        matched = [r for r in rows if self._matches(r)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return _Result(copy.deepcopy(matched))

        if self._op == "delete":
            self._store[self._table] = [r for r in rows if not self._matches(r)]
            return _Result(copy.deepcopy(matched))

        for column, desc in reversed(self._orders):
            present = [r for r in matched if r.get(column) is not None]
            missing = [r for r in matched if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            matched = present + missing
        if self._range:
            matched = matched[self._range[0]:self._range[1] + 1]
        if self._limit is not None:
            matched = matched[: self._limit]
        return _Result(copy.deepcopy(matched))


class FakeSupabase:
    """Stands in for ``supabase.Client``; tables are lists of dicts."""

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self.tables, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.get(name, [])

    def seed(self, name: str, *rows: dict) -> list[dict]:
        out = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", uuid.uuid4().hex)
            self.tables.setdefault(name, []).append(row)
            out.append(row)
        return out


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture(autouse=True)
def disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def client(fake_db):
    """Create a test client backed by the in-memory database."""
    app.dependency_overrides[get_db] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_token(user_id: str) -> str:
    from app.auth import create_access_token
    from app.config import get_settings

    return create_access_token(user_id, get_settings())


@pytest.fixture
def make_user(fake_db):
    """Create a user row and return (user_id, auth headers)."""

    def _make(user_id: str = "usr_test_0001", role: str = "user", org_id: str | None = "org_1", **extra):
        fake_db.seed("user_accounts", {
            "id": user_id,
            "email": extra.pop("email", f"{user_id}@example.com"),
            "name": extra.pop("name", "Test User"),
            "role": role,
            "org_id": org_id,
            **extra,
        })
        return user_id, {"Authorization": f"Bearer {make_token(user_id)}"}

    return _make
