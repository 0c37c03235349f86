import pytest

from obra_hub import config, db


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.result = conn.result

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.conn.executed.append((query, params))

    def fetchone(self):
        return self.result[0] if self.result else None

    def fetchall(self):
        return list(self.result)


class FakeConnection:
    def __init__(self, result=None):
        self.result = result or []
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, **kwargs):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.returned = []

    def getconn(self):
        return self.conn

    def putconn(self, conn):
        self.returned.append(conn)


@pytest.fixture
def pool(monkeypatch):
    fake = FakePool(FakeConnection(result=[{"id": 1, "nombre": "Casa"}]))
    monkeypatch.setattr(db, "DB_POOL", fake)
    return fake


def test_helpers_outside_app_context_commit_and_release(pool):
    row = db.fetch_one("SELECT * FROM proyectos WHERE id = ?", (1,))
    assert row == {"id": 1, "nombre": "Casa"}
    assert pool.conn.executed == [("SELECT * FROM proyectos WHERE id = %s", (1,))]
    assert pool.conn.commits == 1
    assert pool.returned == [pool.conn]


def test_connection_releases_on_error(pool):
    with pytest.raises(RuntimeError):
        with db.connection():
            raise RuntimeError("boom")
    assert pool.conn.commits == 0
    assert pool.conn.rollbacks == 1
    assert pool.returned == [pool.conn]


def test_request_connection_is_reused_and_closed(app, pool):
    with app.app_context():
        assert db.fetch_all_rows("SELECT * FROM proyectos") == [{"id": 1, "nombre": "Casa"}]
        db.execute_sql("DELETE FROM proyectos WHERE id = %s", (1,))
        db.commit()
        assert pool.returned == []
    assert pool.conn.commits == 1
    assert pool.returned == [pool.conn]


def test_init_db_installs_change_triggers(monkeypatch):
    conn = FakeConnection()
    db.init_db(conn)
    statements = [query for query, _ in conn.executed]
    assert any("CREATE TABLE IF NOT EXISTS reuniones_clientes" in query for query in statements)
    assert any("CREATE OR REPLACE FUNCTION notify_table_change()" in query for query in statements)
    triggers = [(query, params) for query, params in conn.executed if query.startswith("CREATE TRIGGER")]
    assert len(triggers) == len(db.TRACKED_TABLES)
    assert all(params == (config.REALTIME_CHANNEL,) for _, params in triggers)
    assert conn.commits == 1


def test_startup_init_is_opt_in(monkeypatch):
    called = []
    monkeypatch.setattr(config, "RUN_DB_INIT", False)
    monkeypatch.setattr(db, "init_db", called.append)
    db.maybe_init_db_on_startup()
    assert called == []


def test_per_query_mode_returns_connection_after_each_query(app, pool):
    with app.test_request_context("/_reactpy/stream/"):
        db.fetch_all_rows("SELECT 1")
        assert pool.returned == []

        db.borrow_per_query()
        assert pool.returned == [pool.conn]

        assert db.fetch_all_rows("SELECT * FROM proyectos") == [{"id": 1, "nombre": "Casa"}]
        db.execute_sql("DELETE FROM proyectos WHERE id = %s", (1,))
        db.commit()
        assert pool.returned == [pool.conn, pool.conn, pool.conn]
        assert pool.conn.commits == 2
    assert len(pool.returned) == 3
