from __future__ import annotations

from vaultrag.core.config import Settings
from vaultrag.persistence.db import SQLITE_BUSY_TIMEOUT_S, engine_options


def test_sqlite_engine_waits_on_locks_without_pool_sizing() -> None:
    options = engine_options(Settings(database_url="sqlite+aiosqlite:///./vault.db"))
    assert options["connect_args"] == {"timeout": SQLITE_BUSY_TIMEOUT_S}
    assert "pool_size" not in options


def test_postgres_engine_uses_bounded_pool_and_statement_timeout() -> None:
    options = engine_options(
        Settings(
            database_url="postgresql+asyncpg://vaultrag:vaultrag@db:5432/vaultrag",
            api_db_pool_size=4,
            api_db_max_overflow=2,
            api_db_statement_timeout_ms=2500,
        )
    )
    assert options["pool_size"] == 4
    assert options["max_overflow"] == 2
    assert options["connect_args"] == {"server_settings": {"statement_timeout": "2500"}}


def test_postgres_engine_omits_statement_timeout_when_disabled() -> None:
    options = engine_options(Settings(database_url="postgresql+asyncpg://db/vaultrag"))
    assert "connect_args" not in options
    assert options["pool_pre_ping"] is True
