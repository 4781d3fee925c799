from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app.database import Database


def _initialise_legacy_schema(database_path: str) -> None:
    """Create tables as they looked before status overrides existed."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE users (
                        id INTEGER PRIMARY KEY,
                        username VARCHAR(120) UNIQUE,
                        password_hash VARCHAR(255),
                        created_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    """
                    CREATE TABLE profile_shows (
                        profile_id INTEGER NOT NULL,
                        show_id INTEGER NOT NULL,
                        created_at VARCHAR(40),
                        PRIMARY KEY (profile_id, show_id)
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO profile_shows (profile_id, show_id, created_at) "
                    "VALUES (1, 1, '2023-01-01T00:00:00.000Z')"
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_missing_columns(tmp_path) -> None:
    """Schema migrations should backfill columns added after the first release."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    async def runner() -> None:
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        try:
            await database.create_all()
        finally:
            await database.dispose()

    asyncio.run(runner())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        link_columns = {column["name"] for column in inspector.get_columns("profile_shows")}
        user_columns = {column["name"] for column in inspector.get_columns("users")}
        table_names = set(inspector.get_table_names())
        with inspector_engine.connect() as connection:
            status = connection.execute(
                text("SELECT status FROM profile_shows")
            ).scalar_one()
    finally:
        inspector_engine.dispose()

    assert "status" in link_columns
    assert "last_profile_id" in user_columns
    assert {"shows", "episodes", "profile_episodes", "sessions"} <= table_names
    assert status is None
