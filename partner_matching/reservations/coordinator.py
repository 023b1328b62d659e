"""
Reservation Coordinator - эксклюзивная резервация собеседника.

Все переходы статусов профилей и состояний резерваций идут через
координатор. Корректность при конкурентных запросах обеспечивается
только conditional updates репозитория (optimistic concurrency).
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Collection, Dict, Optional

from partner_matching.errors import (
    AlreadyReservedError,
    BusyError,
    MatchingError,
    NoCandidatesError,
    NotParticipantError,
    ProfileNotFoundError,
    RepositoryUnavailableError,
    ReservationClosedError,
    ReservationNotFoundError,
    StateConflict,
    VersionConflict,
)
from partner_matching.matching import CandidateRanker
from partner_matching.models import (
    MatchOutcome,
    MatchStatus,
    Profile,
    Reservation,
    ReservationState,
    utcnow,
)
from partner_matching.monitoring import capture_exception
from partner_matching.repository import ProfileRepository, ProfileTransition

logger = logging.getLogger(__name__)


class ReservationCoordinator:
    """
    Координатор резерваций.

    Workflow reserve():
    1. Свежий снимок профилей и ранжирование кандидатов
    2. Попытка атомарно перевести requester и кандидата available -> reserved
    3. Успех: создаём pending резервацию с дедлайном now + TTL
    4. Конфликт по кандидату: перечитываем его, повторяем пока он подходит
       (не больше max_attempts_per_candidate), затем следующий кандидат
    5. Конфликт по requester: перечитываем его; AlreadyReserved, если он
       уже не available (правка анкеты только меняет версию)
    """

    def __init__(
        self,
        repository: ProfileRepository,
        ranker: Optional[CandidateRanker] = None,
        reservation_ttl: int = 300,
        max_attempts_per_candidate: int = 2,
        max_candidates: Optional[int] = None,
        exclude_former_partners: bool = True,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Args:
            repository: Хранилище профилей и резерваций
            ranker: Ранжирование кандидатов (по умолчанию с весами по умолчанию)
            reservation_ttl: Время на подтверждение пары (секунды)
            max_attempts_per_candidate: Повторы одного кандидата при конфликте версий
            max_candidates: Сколько кандидатов пробовать (None = все)
            exclude_former_partners: Не предлагать бывших партнёров
            clock: Источник текущего времени (naive UTC)
        """
        if reservation_ttl <= 0:
            raise ValueError("reservation_ttl must be positive")

        self.repository = repository
        self.ranker = ranker or CandidateRanker()
        self.reservation_ttl = timedelta(seconds=reservation_ttl)
        self.max_attempts_per_candidate = max(1, max_attempts_per_candidate)
        self.max_candidates = max_candidates
        self.exclude_former_partners = exclude_former_partners
        self.clock = clock
        # user_id -> версия reserved профиля, который не удалось освободить
        self._stuck: Dict[int, int] = {}

    # ============================================
    # RESERVE
    # ============================================

    async def reserve(self, requester_id: int) -> MatchOutcome:
        """
        Найти и зарезервировать собеседника для requester.

        Raises:
            ProfileNotFoundError: профиля requester нет
            AlreadyReservedError: requester не available или уже в резервации
            NoCandidatesError: подходящих кандидатов нет
            BusyError: все попытки проиграли конкурентным резервациям
            RepositoryUnavailableError: ошибка хранилища
        """
        now = self.clock()
        snapshot = await self.repository.load_available_snapshot(requester_id)
        by_id = {profile.user_id: profile for profile in snapshot}

        requester = by_id.get(requester_id) or await self.repository.get_profile(requester_id)
        if requester is None:
            raise ProfileNotFoundError("profile not found", user_id=requester_id)

        await self._check_requester(requester)

        exclude_ids: Collection[int] = ()
        if self.exclude_former_partners:
            exclude_ids = await self.repository.list_former_partners(requester_id)

        ranked = self.ranker.rank(requester, snapshot, now, exclude_ids)
        if self.max_candidates:
            ranked = ranked[:self.max_candidates]

        if not ranked:
            logger.info(f"🔍 No candidates for {requester_id}", extra={'requester_id': requester_id})
            raise NoCandidatesError("no eligible candidates", user_id=requester_id)

        conflicts = 0

        for ranked_candidate in ranked:
            candidate = by_id[ranked_candidate.user_id]

            for attempt in range(1, self.max_attempts_per_candidate + 1):
                try:
                    await self.repository.conditional_update_profile_pair(
                        requester.user_id,
                        requester.version,
                        candidate.user_id,
                        candidate.version,
                        MatchStatus.RESERVED,
                    )
                except VersionConflict as e:
                    conflicts += 1

                    if e.user_id == requester_id:
                        requester = await self._refresh_requester(requester_id, e)
                        if not self.ranker.evaluator.is_eligible(requester, candidate):
                            break
                        continue

                    logger.debug(
                        f"Conflict on candidate {candidate.user_id} "
                        f"(attempt {attempt}/{self.max_attempts_per_candidate})"
                    )
                    candidate = await self._refresh_candidate(requester, candidate.user_id)
                    if candidate is None:
                        break
                    continue

                reservation = await self._create_reservation(requester, candidate)
                logger.info(
                    f"🤝 Reserved {candidate.user_id} for {requester_id} "
                    f"(reservation {reservation.id}, score {ranked_candidate.score:.2f})",
                    extra={'requester_id': requester_id, 'reservation_id': reservation.id}
                )
                return MatchOutcome(
                    candidate_id=candidate.user_id,
                    reservation_id=reservation.id,
                    expires_at=reservation.expires_at,
                    score=ranked_candidate.score,
                )

        logger.warning(
            f"⚠️ Candidate list exhausted for {requester_id} after {conflicts} conflicts",
            extra={'requester_id': requester_id}
        )
        raise BusyError("all candidates were taken concurrently", user_id=requester_id, conflicts=conflicts)

    async def _check_requester(self, requester: Profile) -> None:
        if requester.match_status != MatchStatus.AVAILABLE:
            raise AlreadyReservedError(
                "requester is not available",
                user_id=requester.user_id,
                status=requester.match_status.value,
            )

        active = await self.repository.find_active_reservation(requester.user_id)
        if active is not None:
            raise AlreadyReservedError(
                "requester already has an active reservation",
                user_id=requester.user_id,
                reservation_id=active.id,
            )

    async def _refresh_requester(self, requester_id: int, conflict: VersionConflict) -> Profile:
        """
        Свежая версия requester после конфликта.

        Правка анкеты меняет только версию, подбор продолжается.
        """
        fresh = await self.repository.get_profile(requester_id)
        if fresh is None:
            raise ProfileNotFoundError("profile not found", user_id=requester_id) from conflict

        if fresh.match_status != MatchStatus.AVAILABLE:
            logger.warning(
                f"⚠️ Requester {requester_id} was changed concurrently, aborting",
                extra={'requester_id': requester_id}
            )
            raise AlreadyReservedError(
                "requester was reserved concurrently",
                user_id=requester_id,
                status=fresh.match_status.value,
            ) from conflict

        return fresh

    async def _refresh_candidate(self, requester: Profile, candidate_id: int) -> Optional[Profile]:
        """Свежая версия кандидата, если он всё ещё подходит."""
        fresh = await self.repository.get_profile(candidate_id)
        if fresh is None or not self.ranker.evaluator.is_eligible(requester, fresh):
            return None
        return fresh

    async def _create_reservation(self, requester: Profile, candidate: Profile) -> Reservation:
        created_at = self.clock()
        pending = Reservation(
            requester_id=requester.user_id,
            candidate_id=candidate.user_id,
            created_at=created_at,
            expires_at=created_at + self.reservation_ttl,
        )

        try:
            return await self.repository.create_reservation(pending)
        except (RepositoryUnavailableError, asyncio.CancelledError):
            # Резервация не сохранена - профили возвращаем в available
            await self._release_pair(requester, candidate)
            raise

    async def _release_pair(self, requester: Profile, candidate: Profile) -> None:
        for profile in (requester, candidate):
            reserved_version = profile.version + 1
            try:
                await self.repository.conditional_update_profile(
                    profile.user_id, reserved_version, MatchStatus.AVAILABLE
                )
            except MatchingError as e:
                # Профиль освободит sweeper
                self._stuck[profile.user_id] = reserved_version
                logger.critical(
                    f"🚨 Failed to release profile {profile.user_id} after failed reservation: {e}",
                    extra={'user_id': profile.user_id}
                )
                capture_exception(
                    e, level="fatal", extra={'user_id': profile.user_id}, tags={'component': 'coordinator'}
                )

    def is_stuck(self, profile: Profile) -> bool:
        """Профиль остался reserved после неудачной компенсации в этом процессе."""
        return self._stuck.get(profile.user_id) == profile.version

    async def release_orphan(self, profile: Profile) -> bool:
        """
        Вернуть в available reserved профиль без активной резервации.

        Returns:
            False если профиль изменился после чтения
        """
        try:
            await self.repository.conditional_update_profile(
                profile.user_id, profile.version, MatchStatus.AVAILABLE
            )
        except VersionConflict as e:
            logger.debug(f"Orphaned profile {profile.user_id} changed, skipped: {e}")
            return False

        self._stuck.pop(profile.user_id, None)
        logger.warning(
            f"🔓 Released profile {profile.user_id} reserved without reservation",
            extra={'user_id': profile.user_id}
        )
        return True

    # ============================================
    # CONFIRM / CANCEL / END / EXPIRE
    # ============================================

    async def _load_reservation(self, reservation_id: int, user_id: Optional[int]) -> Reservation:
        reservation = await self.repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError("reservation not found", reservation_id=reservation_id)
        if user_id is not None and not reservation.involves(user_id):
            raise NotParticipantError(
                "user is not a participant", reservation_id=reservation_id, user_id=user_id
            )
        return reservation

    async def _transition(
        self,
        reservation_id: int,
        expected_state: ReservationState,
        new_state: ReservationState,
        profile_transition: ProfileTransition,
        now: datetime
    ) -> Reservation:
        try:
            updated = await self.repository.update_reservation_state(
                reservation_id, expected_state, new_state, profile_transition, now
            )
        except StateConflict as e:
            actual = getattr(e.actual_state, 'value', e.actual_state)
            raise ReservationClosedError(
                f"reservation is {actual}", reservation_id=reservation_id, state=actual
            ) from e

        logger.info(
            f"📌 Reservation {reservation_id}: {expected_state.value} -> {new_state.value}",
            extra={'reservation_id': reservation_id}
        )
        return updated

    async def confirm(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        """
        Подтверждение пары: pending -> confirmed, профили reserved -> matched.

        Подтверждает только кандидат (user_id=None - системный вызов).
        Подтверждение после дедлайна истекает резервацию и отклоняется.
        """
        reservation = await self._load_reservation(reservation_id, user_id)
        if user_id is not None and user_id != reservation.candidate_id:
            raise NotParticipantError(
                "only the candidate can confirm", reservation_id=reservation_id, user_id=user_id
            )

        now = self.clock()

        if reservation.state == ReservationState.PENDING and reservation.is_expired(now):
            await self.expire(reservation_id, now)
            raise ReservationClosedError(
                "reservation expired", reservation_id=reservation_id, state=ReservationState.EXPIRED.value
            )

        return await self._transition(
            reservation_id,
            ReservationState.PENDING,
            ReservationState.CONFIRMED,
            (MatchStatus.RESERVED, MatchStatus.MATCHED),
            now,
        )

    async def cancel(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        """Отзыв резервации: pending -> cancelled, профили reserved -> available."""
        await self._load_reservation(reservation_id, user_id)
        return await self._transition(
            reservation_id,
            ReservationState.PENDING,
            ReservationState.CANCELLED,
            (MatchStatus.RESERVED, MatchStatus.AVAILABLE),
            self.clock(),
        )

    async def end(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        """Завершение подтверждённой пары: confirmed -> completed, профили matched -> available."""
        await self._load_reservation(reservation_id, user_id)
        return await self._transition(
            reservation_id,
            ReservationState.CONFIRMED,
            ReservationState.COMPLETED,
            (MatchStatus.MATCHED, MatchStatus.AVAILABLE),
            self.clock(),
        )

    async def expire(self, reservation_id: int, now: Optional[datetime] = None) -> bool:
        """
        Истечение pending резервации, профили reserved -> available.

        Returns:
            False если резервация уже не pending (повторный вызов - no-op)
        """
        try:
            await self.repository.update_reservation_state(
                reservation_id,
                ReservationState.PENDING,
                ReservationState.EXPIRED,
                (MatchStatus.RESERVED, MatchStatus.AVAILABLE),
                now or self.clock(),
            )
        except StateConflict as e:
            logger.debug(f"Reservation {reservation_id} not expired: {e}")
            return False

        logger.info(f"⌛ Reservation {reservation_id} expired", extra={'reservation_id': reservation_id})
        return True

    # ============================================
    # PROFILE STATUS
    # ============================================

    async def pause(self, user_id: int) -> Profile:
        """Приостановить подбор: available -> paused."""
        return await self._set_status(user_id, MatchStatus.AVAILABLE, MatchStatus.PAUSED)

    async def resume(self, user_id: int) -> Profile:
        """Возобновить подбор: paused -> available."""
        return await self._set_status(user_id, MatchStatus.PAUSED, MatchStatus.AVAILABLE)

    async def _set_status(self, user_id: int, from_status: MatchStatus, to_status: MatchStatus) -> Profile:
        for _ in range(self.max_attempts_per_candidate):
            profile = await self.repository.get_profile(user_id)
            if profile is None:
                raise ProfileNotFoundError("profile not found", user_id=user_id)
            if profile.match_status == to_status:
                return profile
            if profile.match_status != from_status:
                raise AlreadyReservedError(
                    f"cannot switch {profile.match_status.value} -> {to_status.value}",
                    user_id=user_id,
                    status=profile.match_status.value,
                )

            try:
                await self.repository.conditional_update_profile(user_id, profile.version, to_status)
            except VersionConflict:
                continue

            logger.info(f"👤 Profile {user_id}: {from_status.value} -> {to_status.value}")
            return profile.with_status(to_status)

        raise BusyError("profile keeps changing", user_id=user_id)
