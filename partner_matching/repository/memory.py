"""
In-process репозиторий для тестов и локального запуска без БД.

Каждая операция выполняется без await между проверкой и записью,
поэтому в рамках одного event loop она атомарна.
"""

import itertools
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Set

from partner_matching.errors import ReservationNotFoundError, StateConflict, VersionConflict
from partner_matching.models import (
    MatchStatus,
    Profile,
    Reservation,
    ReservationState,
    utcnow,
)
from partner_matching.repository.base import ProfileRepository, ProfileTransition

logger = logging.getLogger(__name__)


class InMemoryProfileRepository(ProfileRepository):
    """Репозиторий в памяти процесса."""

    def __init__(self, profiles: Optional[List[Profile]] = None):
        self._profiles: Dict[int, Profile] = {p.user_id: p for p in profiles or []}
        self._reservations: Dict[int, Reservation] = {}
        self._ids = itertools.count(1)

    # ============================================
    # PROFILES
    # ============================================

    async def load_available_snapshot(self, requester_id: Optional[int] = None) -> List[Profile]:
        return [
            p for p in self._profiles.values()
            if p.match_status == MatchStatus.AVAILABLE or p.user_id == requester_id
        ]

    async def get_profile(self, user_id: int) -> Optional[Profile]:
        return self._profiles.get(user_id)

    async def save_profile(self, profile: Profile) -> Profile:
        existing = self._profiles.get(profile.user_id)
        if existing:
            profile = replace(
                profile,
                match_status=existing.match_status,
                version=existing.version + 1,
            )
        self._profiles[profile.user_id] = profile
        return profile

    def _check_version(self, user_id: int, expected_version: int) -> Profile:
        current = self._profiles.get(user_id)
        if current is None or current.version != expected_version:
            raise VersionConflict(user_id, expected_version)
        return current

    async def conditional_update_profile(
        self,
        user_id: int,
        expected_version: int,
        new_status: MatchStatus
    ) -> None:
        current = self._check_version(user_id, expected_version)
        self._profiles[user_id] = current.with_status(new_status)

    async def conditional_update_profile_pair(
        self,
        requester_id: int,
        expected_requester_version: int,
        candidate_id: int,
        expected_candidate_version: int,
        new_status: MatchStatus
    ) -> None:
        requester = self._check_version(requester_id, expected_requester_version)
        candidate = self._check_version(candidate_id, expected_candidate_version)

        for profile in (requester, candidate):
            if profile.match_status != MatchStatus.AVAILABLE:
                raise VersionConflict(profile.user_id, profile.version, "profile is not available")

        self._profiles[requester_id] = requester.with_status(new_status)
        self._profiles[candidate_id] = candidate.with_status(new_status)

    # ============================================
    # RESERVATIONS
    # ============================================

    async def create_reservation(self, reservation: Reservation) -> Reservation:
        stored = replace(reservation, id=next(self._ids))
        self._reservations[stored.id] = stored
        return stored

    async def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        return self._reservations.get(reservation_id)

    async def find_active_reservation(self, user_id: int) -> Optional[Reservation]:
        for reservation in self._reservations.values():
            if reservation.state.is_active and reservation.involves(user_id):
                return reservation
        return None

    async def update_reservation_state(
        self,
        reservation_id: int,
        expected_state: ReservationState,
        new_state: ReservationState,
        profile_transition: Optional[ProfileTransition] = None,
        now: Optional[datetime] = None
    ) -> Reservation:
        current = self._reservations.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id=reservation_id)
        if current.state != expected_state:
            raise StateConflict(reservation_id, expected_state, current.state)

        updated = replace(current, state=new_state, resolved_at=now or utcnow())
        self._reservations[reservation_id] = updated

        if profile_transition:
            from_status, to_status = profile_transition
            for user_id in (current.requester_id, current.candidate_id):
                profile = self._profiles.get(user_id)
                if profile is None or profile.match_status != from_status:
                    logger.warning(
                        f"⚠️ Profile {user_id} is not {from_status.value} "
                        f"during reservation {reservation_id} -> {new_state.value}"
                    )
                    continue
                self._profiles[user_id] = profile.with_status(to_status)

        return updated

    async def list_pending_expired(self, now: datetime) -> List[Reservation]:
        return sorted(
            (
                r for r in self._reservations.values()
                if r.state == ReservationState.PENDING and r.is_expired(now)
            ),
            key=lambda r: r.expires_at,
        )

    async def list_former_partners(self, user_id: int) -> Set[int]:
        return {
            r.partner_of(user_id)
            for r in self._reservations.values()
            if r.involves(user_id)
            and r.state in (ReservationState.CONFIRMED, ReservationState.COMPLETED)
        }

    async def list_orphaned_reserved(self) -> List[Profile]:
        held = {
            user_id
            for r in self._reservations.values() if r.state.is_active
            for user_id in r.participants
        }
        return [
            p for p in self._profiles.values()
            if p.match_status == MatchStatus.RESERVED and p.user_id not in held
        ]
