"""
SQLAlchemy adapter репозитория профилей.

Работает поверх unified database.py. Conditional updates выполняются
одним UPDATE ... WHERE version = :expected, пара профилей и переходы
резерваций - в одной транзакции.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import List, Optional, Set

from sqlalchemy import select, update, or_
from sqlalchemy.exc import SQLAlchemyError

from database import LanguageProfile, MatchReservation, DatabaseSession
from partner_matching.errors import (
    RepositoryUnavailableError,
    ReservationNotFoundError,
    StateConflict,
    VersionConflict,
)
from partner_matching.models import (
    MatchStatus,
    Profile,
    ProficiencyLevel,
    Reservation,
    ReservationState,
    as_interest_set,
    utcnow,
)
from partner_matching.repository.base import ProfileRepository, ProfileTransition
from partner_matching.retry import db_retry

logger = logging.getLogger(__name__)

ACTIVE_STATES = (ReservationState.PENDING.value, ReservationState.CONFIRMED.value)
PARTNER_STATES = (ReservationState.CONFIRMED.value, ReservationState.COMPLETED.value)


def repository_call(func):
    """Retry транзиентных ошибок БД, затем RepositoryUnavailableError."""
    retried = db_retry(func)

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await retried(*args, **kwargs)
        except SQLAlchemyError as e:
            raise RepositoryUnavailableError(str(e), operation=func.__name__) from e

    return wrapper


class SQLAlchemyProfileRepository(ProfileRepository):
    """
    Репозиторий на SQLAlchemy (PostgreSQL / SQLite).

    Совместим с любым бэкендом, который возвращает rowcount для UPDATE.
    """

    # ============================================
    # CONVERSION
    # ============================================

    @staticmethod
    def _to_profile(row: LanguageProfile) -> Profile:
        try:
            level = ProficiencyLevel.from_code(row.proficiency_level or '')
        except ValueError:
            logger.warning(f"⚠️ Unknown proficiency level {row.proficiency_level!r} for {row.user_id}")
            level = ProficiencyLevel.BEGINNER

        return Profile(
            user_id=row.user_id,
            username=row.username,
            native_language=row.native_language or '',
            target_language=row.target_language or '',
            proficiency_level=level,
            interests=as_interest_set(row.interests),
            last_active_at=row.last_active_at,
            match_status=MatchStatus(row.match_status),
            version=row.version,
        )

    @staticmethod
    def _to_reservation(row: MatchReservation) -> Reservation:
        return Reservation(
            id=row.id,
            requester_id=row.requester_id,
            candidate_id=row.candidate_id,
            state=ReservationState(row.state),
            created_at=row.created_at,
            expires_at=row.expires_at,
            resolved_at=row.resolved_at,
        )

    # ============================================
    # PROFILES
    # ============================================

    @repository_call
    async def load_available_snapshot(self, requester_id: Optional[int] = None) -> List[Profile]:
        condition = LanguageProfile.match_status == MatchStatus.AVAILABLE.value
        if requester_id is not None:
            condition = or_(condition, LanguageProfile.user_id == requester_id)

        async with DatabaseSession() as session:
            result = await session.execute(select(LanguageProfile).where(condition))
            return [self._to_profile(row) for row in result.scalars().all()]

    @repository_call
    async def get_profile(self, user_id: int) -> Optional[Profile]:
        async with DatabaseSession() as session:
            row = await session.get(LanguageProfile, user_id)
            return self._to_profile(row) if row else None

    @repository_call
    async def save_profile(self, profile: Profile) -> Profile:
        attributes = {
            'username': profile.username,
            'native_language': profile.native_language,
            'target_language': profile.target_language,
            'proficiency_level': profile.proficiency_level.code,
            'interests': sorted(profile.interests),
            'last_active_at': profile.last_active_at,
        }

        async with DatabaseSession() as session:
            # Статус подбора существующего профиля меняется только через conditional updates
            result = await session.execute(
                update(LanguageProfile)
                .where(LanguageProfile.user_id == profile.user_id)
                .values(version=LanguageProfile.version + 1, updated_at=utcnow(), **attributes)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                session.add(LanguageProfile(
                    user_id=profile.user_id,
                    match_status=profile.match_status.value,
                    version=profile.version,
                    **attributes
                ))
                await session.flush()

            row = await session.scalar(
                select(LanguageProfile)
                .where(LanguageProfile.user_id == profile.user_id)
                .execution_options(populate_existing=True)
            )
            return self._to_profile(row)

    @staticmethod
    def _status_update(user_id: int, expected_version: int, new_status: MatchStatus):
        return (
            update(LanguageProfile)
            .where(
                LanguageProfile.user_id == user_id,
                LanguageProfile.version == expected_version,
            )
            .values(
                match_status=new_status.value,
                version=LanguageProfile.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    @repository_call
    async def conditional_update_profile(
        self,
        user_id: int,
        expected_version: int,
        new_status: MatchStatus
    ) -> None:
        async with DatabaseSession() as session:
            result = await session.execute(self._status_update(user_id, expected_version, new_status))
            if result.rowcount != 1:
                raise VersionConflict(user_id, expected_version)

    @repository_call
    async def conditional_update_profile_pair(
        self,
        requester_id: int,
        expected_requester_version: int,
        candidate_id: int,
        expected_candidate_version: int,
        new_status: MatchStatus
    ) -> None:
        async with DatabaseSession() as session:
            for user_id, expected_version in (
                (requester_id, expected_requester_version),
                (candidate_id, expected_candidate_version),
            ):
                statement = self._status_update(user_id, expected_version, new_status).where(
                    LanguageProfile.match_status == MatchStatus.AVAILABLE.value
                )
                result = await session.execute(statement)
                if result.rowcount != 1:
                    # Rollback первой записи выполнит DatabaseSession
                    raise VersionConflict(user_id, expected_version)

    # ============================================
    # RESERVATIONS
    # ============================================

    @repository_call
    async def create_reservation(self, reservation: Reservation) -> Reservation:
        async with DatabaseSession() as session:
            row = MatchReservation(
                requester_id=reservation.requester_id,
                candidate_id=reservation.candidate_id,
                state=reservation.state.value,
                created_at=reservation.created_at,
                expires_at=reservation.expires_at,
                resolved_at=reservation.resolved_at,
            )
            session.add(row)
            await session.flush()
            return self._to_reservation(row)

    @repository_call
    async def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        async with DatabaseSession() as session:
            row = await session.get(MatchReservation, reservation_id)
            return self._to_reservation(row) if row else None

    @repository_call
    async def find_active_reservation(self, user_id: int) -> Optional[Reservation]:
        async with DatabaseSession() as session:
            row = await session.scalar(
                select(MatchReservation)
                .where(
                    or_(MatchReservation.requester_id == user_id, MatchReservation.candidate_id == user_id),
                    MatchReservation.state.in_(ACTIVE_STATES),
                )
                .order_by(MatchReservation.created_at.desc())
                .limit(1)
            )
            return self._to_reservation(row) if row else None

    @repository_call
    async def update_reservation_state(
        self,
        reservation_id: int,
        expected_state: ReservationState,
        new_state: ReservationState,
        profile_transition: Optional[ProfileTransition] = None,
        now: Optional[datetime] = None
    ) -> Reservation:
        async with DatabaseSession() as session:
            result = await session.execute(
                update(MatchReservation)
                .where(
                    MatchReservation.id == reservation_id,
                    MatchReservation.state == expected_state.value,
                )
                .values(state=new_state.value, resolved_at=now or utcnow())
                .execution_options(synchronize_session=False)
            )

            row = await session.get(MatchReservation, reservation_id)
            if row is None:
                raise ReservationNotFoundError(reservation_id=reservation_id)
            if result.rowcount != 1:
                raise StateConflict(reservation_id, expected_state, ReservationState(row.state))

            if profile_transition:
                from_status, to_status = profile_transition
                for user_id in (row.requester_id, row.candidate_id):
                    moved = await session.execute(
                        update(LanguageProfile)
                        .where(
                            LanguageProfile.user_id == user_id,
                            LanguageProfile.match_status == from_status.value,
                        )
                        .values(
                            match_status=to_status.value,
                            version=LanguageProfile.version + 1,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if moved.rowcount != 1:
                        logger.warning(
                            f"⚠️ Profile {user_id} is not {from_status.value} "
                            f"during reservation {reservation_id} -> {new_state.value}"
                        )

            return self._to_reservation(row)

    @repository_call
    async def list_pending_expired(self, now: datetime) -> List[Reservation]:
        async with DatabaseSession() as session:
            result = await session.execute(
                select(MatchReservation)
                .where(
                    MatchReservation.state == ReservationState.PENDING.value,
                    MatchReservation.expires_at <= now,
                )
                .order_by(MatchReservation.expires_at)
            )
            return [self._to_reservation(row) for row in result.scalars().all()]

    @repository_call
    async def list_former_partners(self, user_id: int) -> Set[int]:
        async with DatabaseSession() as session:
            result = await session.execute(
                select(MatchReservation.requester_id, MatchReservation.candidate_id)
                .where(
                    or_(MatchReservation.requester_id == user_id, MatchReservation.candidate_id == user_id),
                    MatchReservation.state.in_(PARTNER_STATES),
                )
            )
            return {
                candidate_id if requester_id == user_id else requester_id
                for requester_id, candidate_id in result.all()
            }

    @repository_call
    async def list_orphaned_reserved(self) -> List[Profile]:
        active = (
            select(MatchReservation.id)
            .where(
                or_(
                    MatchReservation.requester_id == LanguageProfile.user_id,
                    MatchReservation.candidate_id == LanguageProfile.user_id,
                ),
                MatchReservation.state.in_(ACTIVE_STATES),
            )
            .exists()
        )
        async with DatabaseSession() as session:
            result = await session.execute(
                select(LanguageProfile)
                .where(LanguageProfile.match_status == MatchStatus.RESERVED.value, ~active)
            )
            return [self._to_profile(row) for row in result.scalars().all()]
