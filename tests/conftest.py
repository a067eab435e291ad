"""
Shared fixtures: an in-memory Supabase table fake, a scripted model, and a
Flask test client that is already past the lock screen.
"""
import os
import sys
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cryptography.fernet import Fernet

from diary import ai, config, security, storage


# ═══════════════════════════════════════════════
# Supabase fake
# ═══════════════════════════════════════════════

class FakeQuery:
    """Just the slice of the postgrest builder the stores use."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.filters = []
        self.orders = []
        self.row_limit = None
        self.payload = None
        self.conflict = "id"

    def select(self, columns="*"):
        self.op = "select"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: r.get(column) is not None and r.get(column) >= value)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.row_limit = n
        return self

    def upsert(self, row, on_conflict="id"):
        self.op = "upsert"
        self.payload = dict(row)
        self.conflict = on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    def execute(self):
        if self.db.fail:
            raise RuntimeError(self.db.fail)
        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "upsert":
            key = self.payload.get(self.conflict)
            for i, r in enumerate(rows):
                if r.get(self.conflict) == key:
                    rows[i] = {**r, **self.payload}
                    return SimpleNamespace(data=[dict(rows[i])])
            rows.append(self.payload)
            return SimpleNamespace(data=[dict(self.payload)])
        matched = [r for r in rows if all(f(r) for f in self.filters)]
        if self.op == "delete":
            self.db.tables[self.table] = [r for r in rows if r not in matched]
            return SimpleNamespace(data=[dict(r) for r in matched])
        for column, desc in reversed(self.orders):
            matched.sort(key=lambda r: r.get(column) or "", reverse=desc)
        if self.row_limit is not None:
            matched = matched[:self.row_limit]
        return SimpleNamespace(data=[dict(r) for r in matched])


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.fail = ""

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def db(monkeypatch):
    fake = FakeSupabase()
    monkeypatch.setattr(storage, "get_supabase", lambda: fake)
    return fake


# ═══════════════════════════════════════════════
# Model fake
# ═══════════════════════════════════════════════

class ScriptedModel:
    """Stands in for ai.complete. Replies are consumed in order; an
    exception in the script is raised instead of returned."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def __call__(self, messages, temperature, max_tokens, model=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if not self.replies:
            raise ai.AIServiceError("no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def model(monkeypatch):
    scripted = ScriptedModel()
    monkeypatch.setattr(ai, "complete", scripted)
    return scripted


# ═══════════════════════════════════════════════
# Environment
# ═══════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_KEY", "")
    monkeypatch.setattr(config, "ENCRYPTION_KEY", "")
    monkeypatch.setattr(config, "SECRET_KEY", "test-secret")
    monkeypatch.setattr(config, "RATE_LIMIT_MAX", 10)
    security.reset_rate_limits()
    yield
    security.reset_rate_limits()


@pytest.fixture
def encryption_key(monkeypatch):
    key = Fernet.generate_key().decode()
    monkeypatch.setattr(config, "ENCRYPTION_KEY", key)
    return key


@pytest.fixture
def app():
    from server import app as flask_app
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app, db):
    """Locked client: no unlock cookie yet."""
    return app.test_client()


@pytest.fixture
def unlocked(client):
    client.set_cookie(security.UNLOCK_COOKIE, security.issue_unlock_token())
    return client


def make_entry(day, score=7, emotions=("开心",), domains=("工作",), summary="和朋友 吃饭", importance=2,
               content="今天和朋友一起吃饭", entry_id=None):
    return {
        "id": entry_id or f"diary_{day}",
        "date": day,
        "content": content,
        "summary": summary,
        "classification": {
            "emotionTags": list(emotions),
            "domains": list(domains),
            "eventTypes": ["日常"],
            "emotionScore": score,
            "importance": importance,
            "summary": summary,
        },
        "conversation": [],
    }
