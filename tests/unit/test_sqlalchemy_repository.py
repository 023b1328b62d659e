"""
Unit тесты для SQLAlchemyProfileRepository на SQLite (aiosqlite).

Тестируем:
- Upsert профилей и снимок доступных
- Conditional updates по версии (одиночный и парный с откатом)
- Переходы резерваций с переводом профилей
- Выборки для sweeper и бывших партнёров
- Координатор поверх БД
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from partner_matching.errors import (
    ErrorKind,
    MatchingError,
    RepositoryUnavailableError,
    ReservationNotFoundError,
    StateConflict,
    VersionConflict,
)
from partner_matching.models import MatchStatus, ProficiencyLevel, Reservation, ReservationState
from partner_matching.repository import SQLAlchemyProfileRepository
from partner_matching.repository.sqlalchemy_adapter import repository_call
from partner_matching.reservations import ExpirySweeper, ReservationCoordinator


@pytest.fixture
async def repository(sqlite_db):
    return SQLAlchemyProfileRepository()


@pytest.fixture
async def seeded(repository, make_profile):
    """Три профиля: 1 en->ru, 2 и 3 ru->en."""
    await repository.save_profile(make_profile(1, native='en', target='ru', interests={1, 2}))
    await repository.save_profile(make_profile(2, native='ru', target='en', interests={1, 2}))
    await repository.save_profile(make_profile(3, native='ru', target='en', interests={5}))
    return repository


def pending(requester_id, candidate_id, now, ttl=60):
    return Reservation(
        requester_id=requester_id,
        candidate_id=candidate_id,
        created_at=now,
        expires_at=now + timedelta(seconds=ttl),
    )


@pytest.mark.unit
class TestProfiles:

    async def test_save_and_get(self, repository, make_profile):
        profile = make_profile(
            42, native='de', target='es', level=ProficiencyLevel.ADVANCED, interests={3, 1}
        )

        saved = await repository.save_profile(profile)
        loaded = await repository.get_profile(42)

        assert saved == loaded
        assert loaded.native_language == 'de'
        assert loaded.proficiency_level == ProficiencyLevel.ADVANCED
        assert loaded.interests == frozenset({1, 3})
        assert loaded.match_status == MatchStatus.AVAILABLE
        assert loaded.version == 1

    async def test_missing_profile(self, repository):
        assert await repository.get_profile(404) is None

    async def test_update_bumps_version_and_keeps_status(self, seeded, make_profile):
        await seeded.conditional_update_profile(1, 1, MatchStatus.PAUSED)

        updated = await seeded.save_profile(make_profile(1, native='en', target='fr', interests={9}))

        assert updated.target_language == 'fr'
        assert updated.interests == frozenset({9})
        assert updated.match_status == MatchStatus.PAUSED
        assert updated.version == 3

    async def test_snapshot_contains_available_and_requester(self, seeded):
        await seeded.conditional_update_profile(1, 1, MatchStatus.PAUSED)
        await seeded.conditional_update_profile(3, 1, MatchStatus.PAUSED)

        snapshot = await seeded.load_available_snapshot(requester_id=1)

        assert {p.user_id for p in snapshot} == {1, 2}
        assert {p.user_id for p in await seeded.load_available_snapshot()} == {2}


@pytest.mark.unit
class TestConditionalUpdates:

    async def test_single_update(self, seeded):
        await seeded.conditional_update_profile(2, 1, MatchStatus.PAUSED)

        profile = await seeded.get_profile(2)
        assert profile.match_status == MatchStatus.PAUSED
        assert profile.version == 2

    async def test_stale_version_rejected(self, seeded):
        await seeded.conditional_update_profile(2, 1, MatchStatus.PAUSED)

        with pytest.raises(VersionConflict) as exc_info:
            await seeded.conditional_update_profile(2, 1, MatchStatus.AVAILABLE)

        assert exc_info.value.user_id == 2
        assert (await seeded.get_profile(2)).match_status == MatchStatus.PAUSED

    async def test_pair_update(self, seeded):
        await seeded.conditional_update_profile_pair(1, 1, 2, 1, MatchStatus.RESERVED)

        for user_id in (1, 2):
            profile = await seeded.get_profile(user_id)
            assert profile.match_status == MatchStatus.RESERVED
            assert profile.version == 2

    async def test_pair_conflict_rolls_back_requester(self, seeded):
        await seeded.conditional_update_profile(2, 1, MatchStatus.PAUSED)

        with pytest.raises(VersionConflict) as exc_info:
            await seeded.conditional_update_profile_pair(1, 1, 2, 1, MatchStatus.RESERVED)

        assert exc_info.value.user_id == 2
        requester = await seeded.get_profile(1)
        assert requester.match_status == MatchStatus.AVAILABLE
        assert requester.version == 1

    async def test_pair_requires_available(self, seeded):
        await seeded.conditional_update_profile(2, 1, MatchStatus.PAUSED)

        with pytest.raises(VersionConflict):
            await seeded.conditional_update_profile_pair(1, 1, 2, 2, MatchStatus.RESERVED)

    async def test_pair_requester_conflict_named(self, seeded):
        with pytest.raises(VersionConflict) as exc_info:
            await seeded.conditional_update_profile_pair(1, 7, 2, 1, MatchStatus.RESERVED)

        assert exc_info.value.user_id == 1


@pytest.mark.unit
class TestReservations:

    async def test_create_and_get(self, seeded, now):
        created = await seeded.create_reservation(pending(1, 2, now))

        assert created.id is not None
        assert await seeded.get_reservation(created.id) == created
        assert await seeded.get_reservation(created.id + 100) is None

    async def test_find_active(self, seeded, now):
        created = await seeded.create_reservation(pending(1, 2, now))

        assert (await seeded.find_active_reservation(2)).id == created.id
        assert await seeded.find_active_reservation(3) is None

    async def test_transition_moves_profiles(self, seeded, now):
        await seeded.conditional_update_profile_pair(1, 1, 2, 1, MatchStatus.RESERVED)
        created = await seeded.create_reservation(pending(1, 2, now))

        updated = await seeded.update_reservation_state(
            created.id,
            ReservationState.PENDING,
            ReservationState.CONFIRMED,
            (MatchStatus.RESERVED, MatchStatus.MATCHED),
            now,
        )

        assert updated.state == ReservationState.CONFIRMED
        assert updated.resolved_at == now
        for user_id in (1, 2):
            profile = await seeded.get_profile(user_id)
            assert profile.match_status == MatchStatus.MATCHED
            assert profile.version == 3

    async def test_state_conflict(self, seeded, now):
        created = await seeded.create_reservation(pending(1, 2, now))
        await seeded.update_reservation_state(created.id, ReservationState.PENDING, ReservationState.CANCELLED)

        with pytest.raises(StateConflict) as exc_info:
            await seeded.update_reservation_state(created.id, ReservationState.PENDING, ReservationState.EXPIRED)

        assert exc_info.value.actual_state == ReservationState.CANCELLED

    async def test_missing_reservation(self, seeded):
        with pytest.raises(ReservationNotFoundError):
            await seeded.update_reservation_state(999, ReservationState.PENDING, ReservationState.EXPIRED)

    async def test_list_pending_expired(self, seeded, now):
        late = await seeded.create_reservation(pending(1, 2, now, ttl=30))
        await seeded.create_reservation(pending(3, 2, now, ttl=600))

        overdue = await seeded.list_pending_expired(now + timedelta(seconds=60))

        assert [r.id for r in overdue] == [late.id]

    async def test_list_orphaned_reserved(self, seeded, now):
        await seeded.conditional_update_profile_pair(1, 1, 2, 1, MatchStatus.RESERVED)
        await seeded.conditional_update_profile(3, 1, MatchStatus.RESERVED)
        await seeded.create_reservation(pending(1, 2, now))

        orphans = await seeded.list_orphaned_reserved()

        assert [(p.user_id, p.version) for p in orphans] == [(3, 2)]

    async def test_former_partners(self, seeded, now):
        confirmed = await seeded.create_reservation(pending(1, 2, now))
        await seeded.update_reservation_state(confirmed.id, ReservationState.PENDING, ReservationState.CONFIRMED)
        cancelled = await seeded.create_reservation(pending(3, 1, now))
        await seeded.update_reservation_state(cancelled.id, ReservationState.PENDING, ReservationState.CANCELLED)

        assert await seeded.list_former_partners(1) == {2}
        assert await seeded.list_former_partners(2) == {1}
        assert await seeded.list_former_partners(3) == set()


@pytest.mark.unit
class TestRepositoryErrors:

    async def test_transient_error_retried_then_wrapped(self):
        calls = []

        @repository_call
        async def flaky():
            calls.append(1)
            raise OperationalError("UPDATE language_profiles", {}, Exception("database is locked"))

        with pytest.raises(RepositoryUnavailableError) as exc_info:
            await flaky()

        assert len(calls) == 3
        assert exc_info.value.kind == ErrorKind.REPOSITORY_UNAVAILABLE
        assert exc_info.value.context['operation'] == 'flaky'

    async def test_permanent_error_not_retried(self):
        calls = []

        @repository_call
        async def broken():
            calls.append(1)
            raise IntegrityError("INSERT", {}, Exception("constraint"))

        with pytest.raises(RepositoryUnavailableError):
            await broken()

        assert len(calls) == 1

    async def test_recovers_after_transient_error(self):
        calls = []

        @repository_call
        async def recovering():
            calls.append(1)
            if len(calls) < 2:
                raise OperationalError("SELECT", {}, Exception("database is locked"))
            return 'ok'

        assert await recovering() == 'ok'
        assert len(calls) == 2


@pytest.mark.unit
class TestCoordinatorOverDatabase:

    async def test_reserve_confirm_end(self, seeded, clock):
        coordinator = ReservationCoordinator(seeded, reservation_ttl=60, clock=clock)

        outcome = await coordinator.reserve(1)
        await coordinator.confirm(outcome.reservation_id, 2)
        await coordinator.end(outcome.reservation_id, 1)

        assert outcome.candidate_id == 2
        assert (await seeded.get_reservation(outcome.reservation_id)).state == ReservationState.COMPLETED
        assert (await seeded.get_profile(1)).match_status == MatchStatus.AVAILABLE
        assert await seeded.list_former_partners(1) == {2}

    async def test_expiry(self, seeded, clock):
        coordinator = ReservationCoordinator(seeded, reservation_ttl=60, clock=clock)
        sweeper = ExpirySweeper(coordinator)
        outcome = await coordinator.reserve(1)

        clock.advance(61)

        assert await sweeper.sweep_once() == 1
        assert (await seeded.get_reservation(outcome.reservation_id)).state == ReservationState.EXPIRED
        for user_id in (1, 2):
            assert (await seeded.get_profile(user_id)).match_status == MatchStatus.AVAILABLE

    async def test_concurrent_requests_share_no_candidate(self, repository, make_profile, clock):
        for user_id in (1, 2, 3):
            await repository.save_profile(make_profile(user_id, native='en', target='ru'))
        await repository.save_profile(make_profile(10, native='ru', target='en'))
        coordinator = ReservationCoordinator(repository, clock=clock)

        results = await asyncio.gather(
            *(coordinator.reserve(user_id) for user_id in (1, 2, 3)),
            return_exceptions=True
        )

        outcomes = [r for r in results if not isinstance(r, BaseException)]
        assert len(outcomes) == 1
        assert outcomes[0].candidate_id == 10
        for failure in results:
            if isinstance(failure, BaseException):
                assert isinstance(failure, MatchingError)
                assert failure.kind in (ErrorKind.BUSY, ErrorKind.NO_CANDIDATES)
