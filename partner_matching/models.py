"""
Модели данных Partner Matching Engine.

Профили, резервации и значения скоринга, которыми обмениваются
ранжирование, координатор резерваций и репозиторий.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import FrozenSet, Iterable, Optional


def utcnow() -> datetime:
    """Текущее время UTC без tzinfo (в таком виде время хранится в БД)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MatchStatus(str, Enum):
    """Статус профиля в подборе собеседников."""
    AVAILABLE = "available"    # Доступен для подбора
    RESERVED = "reserved"      # Удерживается ожидающей резервацией
    MATCHED = "matched"        # Пара подтверждена
    PAUSED = "paused"          # Пользователь приостановил подбор


class ReservationState(str, Enum):
    """Состояние резервации."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    COMPLETED = "completed"    # Подтверждённая пара завершила общение

    @property
    def is_active(self) -> bool:
        return self in (ReservationState.PENDING, ReservationState.CONFIRMED)


class ProficiencyLevel(IntEnum):
    """Уровень владения изучаемым языком (порядковая шкала)."""
    BEGINNER = 0
    INTERMEDIATE = 1
    ADVANCED = 2

    @property
    def code(self) -> str:
        return self.name.lower()

    @classmethod
    def from_code(cls, code: str) -> "ProficiencyLevel":
        """
        Парсинг кода уровня из БД / бота.

        Raises:
            ValueError: неизвестный код уровня
        """
        try:
            return cls[code.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown proficiency level: {code!r}") from None

    @classmethod
    def max_distance(cls) -> int:
        return max(cls) - min(cls)


@dataclass(frozen=True)
class Profile:
    """Снимок профиля пользователя на момент чтения из репозитория."""
    user_id: int
    native_language: str
    target_language: str
    proficiency_level: ProficiencyLevel
    interests: FrozenSet[int] = field(default_factory=frozenset)
    last_active_at: datetime = field(default_factory=utcnow)
    match_status: MatchStatus = MatchStatus.AVAILABLE
    version: int = 1
    username: Optional[str] = None

    def with_status(self, status: MatchStatus) -> "Profile":
        """Копия профиля после успешного conditional update."""
        return replace(self, match_status=status, version=self.version + 1)


@dataclass(frozen=True)
class Reservation:
    """Ожидающая (или завершённая) пара requester → candidate."""
    requester_id: int
    candidate_id: int
    created_at: datetime
    expires_at: datetime
    state: ReservationState = ReservationState.PENDING
    id: Optional[int] = None
    resolved_at: Optional[datetime] = None

    @property
    def participants(self) -> FrozenSet[int]:
        return frozenset((self.requester_id, self.candidate_id))

    def involves(self, user_id: int) -> bool:
        return user_id in self.participants

    def partner_of(self, user_id: int) -> int:
        return self.candidate_id if user_id == self.requester_id else self.requester_id

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class CompatibilityScore:
    """Разбивка совместимости (не сохраняется)."""
    eligible: bool
    language_fit: float = 0.0
    interest_overlap: float = 0.0
    proficiency_fit: float = 0.0
    recency_bonus: float = 0.0
    score: float = 0.0


@dataclass(frozen=True)
class RankedCandidate:
    user_id: int
    score: float


@dataclass(frozen=True)
class MatchOutcome:
    """Результат успешного request_match."""
    candidate_id: int
    reservation_id: int
    expires_at: datetime
    score: float = 0.0


def as_interest_set(interests: Optional[Iterable[int]]) -> FrozenSet[int]:
    """Нормализация интересов из JSON-колонки / ввода бота."""
    if not interests:
        return frozenset()
    return frozenset(int(i) for i in interests)
