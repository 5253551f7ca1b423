"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of emporium.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from emporium.database.models import Base, Reward, RewardType, User  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Emporium tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so the TestClient's worker thread sees the same
    in-memory database as the test body.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine with a real connection pool.

    Needed where several threads must hold separate connections, e.g. the
    concurrent redemption tests.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'emporium.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=10,
        max_overflow=10,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------
def seed_user(
    engine: Engine,
    user_id: int = 1000,
    *,
    exp: int = 0,
    level: int = 1,
    display_name: str = "Player",
) -> int:
    """Insert a user.  The opening balance goes through the ledger so the
    ledger total always matches ``current_exp``."""
    from emporium.database.models import LedgerReason
    from emporium.services.ledger_service import apply_delta

    with Session(engine) as session:
        session.add(User(id=user_id, display_name=display_name, level=level, current_exp=0))
        session.flush()
        if exp:
            apply_delta(session, user_id, exp, LedgerReason.MANUAL_AWARD, note="seed")
        session.commit()
    return user_id


def seed_reward(engine: Engine, **fields) -> int:
    """Insert a catalog row with sensible defaults for its type."""
    reward_type = RewardType(fields.pop("type", RewardType.AVATAR))
    data = {
        "type": reward_type.value,
        "name": f"{reward_type.value.title()} reward",
        "description": "A reward",
        "price_exp": 100,
        "stock": None,
        "is_active": True,
    }
    if reward_type != RewardType.PHYSICAL:
        data["item_id"] = f"{reward_type.value.lower()}_item"
    if reward_type == RewardType.BOOST:
        data["boost_duration_minutes"] = 60
        data["boost_multiplier"] = 2.0
    data.update(fields)
    with Session(engine) as session:
        reward = Reward(**data)
        session.add(reward)
        session.commit()
        return reward.id


ADDRESS = {
    "full_name": "Somchai Jaidee",
    "phone": "0812345678",
    "address_line1": "99/1 Sukhumvit Rd",
    "address_line2": "Unit 4",
    "sub_district": "Khlong Toei",
    "district": "Khlong Toei",
    "province": "Bangkok",
    "postal_code": "10110",
}


@pytest.fixture
def address() -> dict:
    return dict(ADDRESS)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------
def make_token(sub: int | str = 1000, *, is_admin: bool = False) -> str:
    """Create a player (or admin) JWT.  Usable as a factory in any test."""
    import jwt

    from emporium.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": str(sub), "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token() -> str:
    return make_token(99999, is_admin=True)


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient wired to the in-memory engine.

    ``raise_server_exceptions=False`` so unexpected errors surface as 500s.
    """
    from fastapi.testclient import TestClient

    from emporium.api.deps import get_catalog_cache, get_config, get_engine
    from emporium.api.main import app
    from emporium.config import EmporiumConfig
    from emporium.engine.cache import CatalogCache

    cache = CatalogCache(db_engine, ttl=30, maxsize=64)
    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: EmporiumConfig()
    app.dependency_overrides[get_catalog_cache] = lambda: cache
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
