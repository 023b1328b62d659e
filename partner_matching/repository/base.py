"""
Абстрактный репозиторий профилей и резерваций.

Единственный примитив синхронизации - conditional update по версии
записи (compare-and-swap). Глобальных блокировок нет.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Set, Tuple

from partner_matching.models import MatchStatus, Profile, Reservation, ReservationState

ProfileTransition = Tuple[MatchStatus, MatchStatus]


class ProfileRepository(ABC):
    """Хранилище профилей и резерваций для движка подбора."""

    # ============================================
    # PROFILES
    # ============================================

    @abstractmethod
    async def load_available_snapshot(self, requester_id: Optional[int] = None) -> List[Profile]:
        """Согласованное чтение всех available профилей (и профиля requester)."""

    @abstractmethod
    async def get_profile(self, user_id: int) -> Optional[Profile]:
        """Текущий профиль или None."""

    @abstractmethod
    async def save_profile(self, profile: Profile) -> Profile:
        """
        Создание или обновление атрибутов профиля.

        Статус подбора существующего профиля не меняется, версия +1.
        """

    @abstractmethod
    async def conditional_update_profile(
        self,
        user_id: int,
        expected_version: int,
        new_status: MatchStatus
    ) -> None:
        """
        Смена статуса одного профиля, если версия совпадает.

        Raises:
            VersionConflict: версия записи уже другая (или записи нет)
        """

    @abstractmethod
    async def conditional_update_profile_pair(
        self,
        requester_id: int,
        expected_requester_version: int,
        candidate_id: int,
        expected_candidate_version: int,
        new_status: MatchStatus
    ) -> None:
        """
        Атомарная смена статуса двух available профилей.

        Либо обе записи переходят в new_status (версии +1), либо ни одна.

        Raises:
            VersionConflict: user_id указывает на проигравшую запись
                (requester проверяется первым)
        """

    # ============================================
    # RESERVATIONS
    # ============================================

    @abstractmethod
    async def create_reservation(self, reservation: Reservation) -> Reservation:
        """Сохранение резервации; возвращает копию с присвоенным id."""

    @abstractmethod
    async def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        """Резервация по id или None."""

    @abstractmethod
    async def find_active_reservation(self, user_id: int) -> Optional[Reservation]:
        """Pending/confirmed резервация, в которой участвует пользователь."""

    @abstractmethod
    async def update_reservation_state(
        self,
        reservation_id: int,
        expected_state: ReservationState,
        new_state: ReservationState,
        profile_transition: Optional[ProfileTransition] = None,
        now: Optional[datetime] = None
    ) -> Reservation:
        """
        Переход резервации expected_state -> new_state.

        При profile_transition=(from, to) оба участника в том же
        атомарном шаге переводятся from -> to (версии +1).

        Raises:
            StateConflict: состояние резервации уже не expected_state
            ReservationNotFoundError: резервации нет
        """

    @abstractmethod
    async def list_pending_expired(self, now: datetime) -> List[Reservation]:
        """Pending резервации с expires_at <= now."""

    @abstractmethod
    async def list_former_partners(self, user_id: int) -> Set[int]:
        """Пользователи, с которыми уже была подтверждённая пара."""

    @abstractmethod
    async def list_orphaned_reserved(self) -> List[Profile]:
        """Reserved профили без pending/confirmed резервации."""
