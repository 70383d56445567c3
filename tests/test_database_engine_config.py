def test_get_engine_kwargs_sqlite_has_check_same_thread(monkeypatch):
    # Import lazily so monkeypatch can affect env usage deterministically.
    from minitask.database import database as db

    kwargs = db.get_engine_kwargs("sqlite:///./minitask.db")
    assert kwargs["connect_args"]["check_same_thread"] is False
    # SQLite should not require pool sizing knobs.
    assert "pool_size" not in kwargs
    assert "max_overflow" not in kwargs
    assert kwargs["pool_pre_ping"] is True


def test_get_engine_kwargs_postgres_reads_pool_settings(monkeypatch):
    from minitask.database import database as db

    monkeypatch.setenv("DB_POOL_SIZE", "8")
    monkeypatch.setenv("DB_MAX_OVERFLOW", "2")
    monkeypatch.setenv("DB_POOL_TIMEOUT_SEC", "15")

    kwargs = db.get_engine_kwargs("postgresql+psycopg://u:p@localhost:5432/db")
    assert "connect_args" not in kwargs
    assert kwargs["pool_size"] == 8
    assert kwargs["max_overflow"] == 2
    assert kwargs["pool_timeout"] == 15


def test_sqlite_url_detection():
    from minitask.database import database as db

    assert db._is_sqlite_url("sqlite:///./minitask.db") is True
    assert db._is_sqlite_url("postgresql+psycopg://u:p@localhost/db") is False


def test_foreign_keys_enforced_on_sqlite(db_session):
    """Owner cascades rely on SQLite actually enforcing foreign keys."""
    from sqlalchemy import text

    assert db_session.execute(text("PRAGMA foreign_keys")).scalar() == 1
