from __future__ import annotations

import os

# Settings are read at import time.
os.environ["SECRET_KEY"] = "test-secret"
os.environ["SUPABASE_URL"] = "https://demo.supabase.co"
os.environ["SUPABASE_ANON_KEY"] = "anon-key"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "service-key"
os.environ["REALTIME_ENABLED"] = "0"
os.environ["RUN_DB_INIT"] = "0"

import pytest

from obra_hub import db


class FakeDB:
    """Stands in for the db helpers; queries are matched by substring."""

    def __init__(self):
        self.rows = {}
        self.one = {}
        self.returning = {"id": 1}
        self.calls = []
        self.commits = 0

    @staticmethod
    def _match(table, query, default):
        for fragment, value in table.items():
            if fragment in query:
                return value
        return default

    def fetch_all_rows(self, query, params=None):
        self.calls.append(("all", query, params))
        value = self._match(self.rows, query, [])
        if isinstance(value, Exception):
            raise value
        return [dict(row) for row in value]

    def fetch_one(self, query, params=None):
        self.calls.append(("one", query, params))
        value = self._match(self.one, query, None)
        if isinstance(value, Exception):
            raise value
        return dict(value) if value is not None else None

    def execute_sql(self, query, params=None):
        self.calls.append(("exec", query, params))

    def execute_returning(self, query, params=None):
        self.calls.append(("returning", query, params))
        return dict(self.returning) if self.returning else None

    def commit(self):
        self.commits += 1

    def writes(self, fragment=""):
        return [call for call in self.calls if call[0] in {"exec", "returning"} and fragment in call[1]]


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeDB()
    for name in ("fetch_all_rows", "fetch_one", "execute_sql", "execute_returning", "commit"):
        monkeypatch.setattr(db, name, getattr(fake, name))
    return fake


@pytest.fixture
def app():
    from obra_hub.api import app as flask_app

    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client):
    with client.session_transaction() as sess:
        sess["access_token"] = "access-token"
        sess["refresh_token"] = "refresh-token"
        sess["user"] = {"id": "user-1", "email": "ana@obra.mx", "full_name": "Ana López", "role": "admin"}
    return client


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("No JSON")
        return self._body


@pytest.fixture
def fake_response():
    return FakeResponse
