"""
Shared fixtures: every test gets a fresh in-memory database seeded with the
default sports and rating systems.
"""

import pytest

from rallia.database.database import Database
from rallia.operations import (
    ModerationOperations, PeerEvaluationOperations, ProofOperations,
    RatingOperations, ReferenceOperations
)


@pytest.fixture
async def db():
    database = Database('sqlite+aiosqlite://')
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def rating_ops(db):
    return RatingOperations(db)


@pytest.fixture
def proof_ops(db, rating_ops):
    return ProofOperations(db, rating_ops)


@pytest.fixture
def reference_ops(db, rating_ops):
    return ReferenceOperations(db, rating_ops)


@pytest.fixture
def peer_ops(db):
    return PeerEvaluationOperations(db)


@pytest.fixture
def moderation_ops(db, rating_ops):
    return ModerationOperations(db, rating_ops)


@pytest.fixture
async def tennis(db):
    return await db.get_sport_by_name('tennis')


@pytest.fixture
async def players(db):
    """Four active players keyed by username."""
    created = {}
    for username in ('alice', 'bob', 'carol', 'dave'):
        created[username] = await db.create_player(username)
    return created


@pytest.fixture
def level(db):
    """Look up a rating level id by system code and value."""
    async def _level(code: str, value: float) -> int:
        score = await db.get_rating_score_by_value(code, value)
        assert score is not None, f"{code} {value} not seeded"
        return score.id
    return _level


@pytest.fixture
async def file_db(tmp_path):
    """A database file with a real connection pool, for tests that run operations concurrently."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'rallia.db'}")
    await database.initialize()
    yield database
    await database.close()
