"""
Shared pytest configuration for LeagueDesk tests.

Runs against an in-memory SQLite database (aiosqlite) by default. Set
TEST_DATABASE_URL to run against PostgreSQL instead, which also exercises
the JSONB columns and the partial unique indexes as deployed.

SAFETY: when TEST_DATABASE_URL points at PostgreSQL, this module REFUSES to
run against any database whose name does not contain the substring "test",
since every table is truncated before each test.
"""

import os

os.environ.setdefault("ENV", "test")

import asyncio
from types import SimpleNamespace

import pytest_asyncio
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from leaguedesk.database.db import Base
from leaguedesk.database.models import (
    Competition,
    Match,
    Organization,
    Player,
    Team,
    User,
    UserRole,
)

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


def _resolve_test_database_url() -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if a PostgreSQL URL does not point to a database
    whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", SQLITE_URL)
    if url.startswith("sqlite"):
        return url

    # ── Safety gate: database name MUST contain "test" ──────────────────
    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Resolved URL: {url}\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"  Or unset it to use in-memory SQLite.\n"
            f"{'=' * 70}"
        )
    return url


TEST_DATABASE_URL = _resolve_test_database_url()
IS_SQLITE = TEST_DATABASE_URL.startswith("sqlite")


def _enable_sqlite_savepoints(engine) -> None:
    """pysqlite/aiosqlite emit their own BEGIN lazily, which breaks SAVEPOINT;
    take over transaction control so begin_nested() works."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine with all tables."""
    if IS_SQLITE:
        # One shared connection so every session sees the same in-memory database
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _enable_sqlite_savepoints(engine)
    else:
        # NullPool avoids "Future attached to different loop" errors across tests
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Monkey-patch AsyncSessionLocal so code using db.AsyncSessionLocal()
    # (init_defaults) hits the test database
    from leaguedesk.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local

    await asyncio.sleep(0.05)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """
    Create a test database session with automatic cleanup.
    PostgreSQL tables are truncated before each test; SQLite starts empty.
    """
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    if not IS_SQLITE:
        async with test_engine.connect() as truncate_conn:
            async with truncate_conn.begin():
                table_list = ", ".join(f'"{t.name}"' for t in Base.metadata.sorted_tables)
                await truncate_conn.execute(
                    text(f"TRUNCATE TABLE {table_list} RESTART IDENTITY CASCADE")
                )

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ──────────────────────────────────────────────────────────────
# League fixture
# ──────────────────────────────────────────────────────────────
#
# Users:
#   team-admin-1, team-admin-2   administer the home team
#   away-admin                   administers the away team
#   player-admin                 administers the player
#   org-admin                    administers the organization
#   comp-admin-1, comp-admin-2   administer the competition
#   friendly-admin               created the standalone match
#   outsider                     administers nothing
#   root                         global admin


@pytest_asyncio.fixture
async def league(db_session):
    """A small league: one organization, competition, two teams, a player,
    a competition match and a friendly match."""
    for user_id in (
        "team-admin-1",
        "team-admin-2",
        "away-admin",
        "player-admin",
        "org-admin",
        "comp-admin-1",
        "comp-admin-2",
        "friendly-admin",
        "outsider",
    ):
        db_session.add(User(id=user_id, role=UserRole.READER.value))
    db_session.add(User(id="root", role=UserRole.ADMIN.value))

    organization = Organization(name="Northern League", created_by="org-admin", administrators=["org-admin"])
    team = Team(name="Harbour FC", created_by="team-admin-1", administrators=["team-admin-1", "team-admin-2"])
    away_team = Team(name="Ridge United", created_by="away-admin", administrators=["away-admin"])
    player = Player(name="Ana Duarte", created_by="player-admin", administrators=["player-admin"])
    db_session.add_all([organization, team, away_team, player])
    await db_session.flush()

    competition = Competition(
        organization_id=organization.id,
        name="Spring Cup",
        created_by="comp-admin-1",
        administrators=["comp-admin-1", "comp-admin-2"],
    )
    db_session.add(competition)
    await db_session.flush()

    match = Match(
        competition_id=competition.id,
        home_team_id=team.id,
        away_team_id=away_team.id,
        created_by="comp-admin-1",
        administrators=["comp-admin-1"],
    )
    friendly = Match(
        competition_id=None,
        home_team_id=team.id,
        away_team_id=away_team.id,
        created_by="friendly-admin",
        administrators=["friendly-admin"],
    )
    db_session.add_all([match, friendly])
    await db_session.flush()

    return SimpleNamespace(
        organization_id=organization.id,
        competition_id=competition.id,
        team_id=team.id,
        away_team_id=away_team.id,
        player_id=player.id,
        match_id=match.id,
        friendly_id=friendly.id,
    )
