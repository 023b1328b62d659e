"""
Unit тесты для ExpirySweeper.
"""

import asyncio
import logging

import pytest

import partner_matching.reservations.sweeper as sweeper_module
from partner_matching.errors import RepositoryUnavailableError
from partner_matching.models import MatchStatus, ReservationState
from partner_matching.repository import InMemoryProfileRepository
from partner_matching.reservations import ExpirySweeper, ReservationCoordinator


class ConfirmRaceRepository(InMemoryProfileRepository):
    """Пара подтверждается между выборкой просроченных и их истечением."""

    async def list_pending_expired(self, now):
        overdue = await super().list_pending_expired(now)
        for reservation in overdue:
            await self.update_reservation_state(
                reservation.id,
                ReservationState.PENDING,
                ReservationState.CONFIRMED,
                (MatchStatus.RESERVED, MatchStatus.MATCHED),
                now,
            )
        return overdue


class FlakyRepository(InMemoryProfileRepository):
    """Первый проход sweeper падает."""

    def __init__(self, profiles):
        super().__init__(profiles)
        self.calls = 0

    async def list_pending_expired(self, now):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("boom")
        return await super().list_pending_expired(now)


class UnavailableRepository(InMemoryProfileRepository):
    """Хранилище недоступно."""

    async def list_pending_expired(self, now):
        raise RepositoryUnavailableError("connection refused", operation='list_pending_expired')


class StuckPairRepository(InMemoryProfileRepository):
    """Хранилище падает после перевода пары в reserved и восстанавливается позже."""

    def __init__(self, profiles):
        super().__init__(profiles)
        self.down = True

    async def create_reservation(self, reservation):
        if self.down:
            raise RepositoryUnavailableError("connection lost")
        return await super().create_reservation(reservation)

    async def conditional_update_profile(self, user_id, expected_version, new_status):
        if self.down:
            raise RepositoryUnavailableError("connection lost")
        return await super().conditional_update_profile(user_id, expected_version, new_status)


@pytest.fixture
def pair(make_profile):
    return [
        make_profile(1, native='en', target='ru'),
        make_profile(2, native='ru', target='en'),
    ]


def build(repository, clock, interval=0.01):
    coordinator = ReservationCoordinator(repository, reservation_ttl=60, clock=clock)
    return coordinator, ExpirySweeper(coordinator, interval=interval)


@pytest.mark.unit
class TestSweepOnce:

    async def test_expires_after_ttl(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        created_at = clock.now
        outcome = await coordinator.reserve(1)

        clock.advance(61)
        expired = await sweeper.sweep_once()

        assert expired == 1
        reservation = await repository.get_reservation(outcome.reservation_id)
        assert reservation.state == ReservationState.EXPIRED
        assert reservation.expires_at == created_at + coordinator.reservation_ttl
        for user_id in (1, 2):
            assert (await repository.get_profile(user_id)).match_status == MatchStatus.AVAILABLE

    async def test_not_expired_before_deadline(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        outcome = await coordinator.reserve(1)

        clock.advance(59)

        assert await sweeper.sweep_once() == 0
        assert (await repository.get_reservation(outcome.reservation_id)).state == ReservationState.PENDING

    async def test_idempotent(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        await coordinator.reserve(1)
        clock.advance(61)

        assert await sweeper.sweep_once() == 1
        assert await sweeper.sweep_once() == 0
        assert (await repository.get_profile(1)).version == 3

    async def test_explicit_now(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        outcome = await coordinator.reserve(1)

        assert await sweeper.sweep_once(outcome.expires_at) == 1

    async def test_confirmed_pair_skipped(self, pair, clock):
        repository = ConfirmRaceRepository(pair)
        coordinator, sweeper = build(repository, clock)
        outcome = await coordinator.reserve(1)
        clock.advance(61)

        assert await sweeper.sweep_once() == 0
        assert (await repository.get_reservation(outcome.reservation_id)).state == ReservationState.CONFIRMED
        assert (await repository.get_profile(2)).match_status == MatchStatus.MATCHED

    async def test_expired_pair_can_match_again(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        await coordinator.reserve(1)
        clock.advance(61)
        await sweeper.sweep_once()

        outcome = await coordinator.reserve(2)

        assert outcome.candidate_id == 1


@pytest.mark.unit
class TestSweeperLoop:

    async def test_background_loop_expires(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        outcome = await coordinator.reserve(1)
        clock.advance(61)

        sweeper.run_in_background()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert (await repository.get_reservation(outcome.reservation_id)).state == ReservationState.EXPIRED

    async def test_loop_survives_errors(self, pair, clock):
        repository = FlakyRepository(pair)
        coordinator, sweeper = build(repository, clock)
        outcome = await coordinator.reserve(1)
        clock.advance(61)

        sweeper.run_in_background()
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert repository.calls >= 2
        assert (await repository.get_reservation(outcome.reservation_id)).state == ReservationState.EXPIRED

    async def test_stop_without_start(self, pair, clock):
        _, sweeper = build(InMemoryProfileRepository(pair), clock)

        await sweeper.stop()

    async def test_repository_outage_logged_critical(self, pair, clock, caplog, monkeypatch):
        events = []
        monkeypatch.setattr(
            sweeper_module, 'capture_exception', lambda error, **kwargs: events.append((error, kwargs))
        )
        _, sweeper = build(UnavailableRepository(pair), clock)

        with caplog.at_level(logging.INFO, logger=sweeper_module.__name__):
            sweeper.run_in_background()
            await asyncio.sleep(0.05)
            await sweeper.stop()

        levels = {record.levelname for record in caplog.records if record.name == sweeper_module.__name__}
        assert 'CRITICAL' in levels
        assert 'ERROR' not in levels
        error, kwargs = events[0]
        assert isinstance(error, RepositoryUnavailableError)
        assert kwargs['tags'] == {'component': 'sweeper'}


@pytest.mark.unit
class TestOrphanedProfiles:
    """Reserved профили, за которыми не осталось резервации."""

    async def test_stuck_pair_released_after_recovery(self, pair, clock):
        repository = StuckPairRepository(pair)
        coordinator, sweeper = build(repository, clock)

        with pytest.raises(RepositoryUnavailableError):
            await coordinator.reserve(1)

        for user_id in (1, 2):
            assert (await repository.get_profile(user_id)).match_status == MatchStatus.RESERVED

        repository.down = False
        clock.advance(3600)
        await sweeper.sweep_once()

        for user_id in (1, 2):
            assert (await repository.get_profile(user_id)).match_status == MatchStatus.AVAILABLE
        assert await repository.find_active_reservation(1) is None

        outcome = await coordinator.reserve(1)
        assert outcome.candidate_id == 2

    async def test_orphan_released_on_second_pass(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        await repository.conditional_update_profile(1, 1, MatchStatus.RESERVED)
        _, sweeper = build(repository, clock)

        assert await sweeper.release_orphans() == 0
        assert (await repository.get_profile(1)).match_status == MatchStatus.RESERVED

        assert await sweeper.release_orphans() == 1
        assert (await repository.get_profile(1)).match_status == MatchStatus.AVAILABLE

    async def test_orphan_changed_between_passes_kept(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        await repository.conditional_update_profile(1, 1, MatchStatus.RESERVED)
        _, sweeper = build(repository, clock)

        await sweeper.release_orphans()
        await repository.save_profile(await repository.get_profile(1))

        assert await sweeper.release_orphans() == 0
        assert (await repository.get_profile(1)).match_status == MatchStatus.RESERVED

    async def test_pending_pair_not_released(self, pair, clock):
        repository = InMemoryProfileRepository(pair)
        coordinator, sweeper = build(repository, clock)
        await coordinator.reserve(1)

        assert await sweeper.release_orphans() == 0
        assert await sweeper.release_orphans() == 0
        for user_id in (1, 2):
            assert (await repository.get_profile(user_id)).match_status == MatchStatus.RESERVED
