"""
Общие фикстуры тестов подбора собеседника.
"""

from datetime import datetime, timedelta

import pytest

from database import init_database, close_database
from partner_matching.models import MatchStatus, Profile, ProficiencyLevel


NOW = datetime(2026, 10, 18, 12, 0, 0)


class FakeClock:
    """Управляемое время для координатора и sweeper."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_profile():
    """Фабрика профилей (по умолчанию en -> ru, intermediate, активен сейчас)."""
    def _make(
        user_id,
        native='en',
        target='ru',
        level=ProficiencyLevel.INTERMEDIATE,
        interests=(),
        last_active_at=NOW,
        status=MatchStatus.AVAILABLE,
        version=1,
    ):
        return Profile(
            user_id=user_id,
            native_language=native,
            target_language=target,
            proficiency_level=level,
            interests=frozenset(interests),
            last_active_at=last_active_at,
            match_status=status,
            version=version,
        )
    return _make


@pytest.fixture
async def sqlite_db(tmp_path):
    """Файловая SQLite БД на время теста."""
    await init_database(database_url=f"sqlite+aiosqlite:///{tmp_path / 'matching.db'}")
    yield
    await close_database()
