"""
Типизированные ошибки Partner Matching Engine.

Каждая ошибка несёт ErrorKind, по которому бот выбирает текст для
пользователя. VersionConflict и StateConflict - внутренние: движок
повторяет операцию или переводит их в пользовательские ошибки.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Коды ошибок подбора собеседника."""

    # Исправимые пользователем
    ALREADY_RESERVED = "already_reserved"
    NO_CANDIDATES = "no_candidates"
    PROFILE_NOT_FOUND = "profile_not_found"
    RESERVATION_NOT_FOUND = "reservation_not_found"
    RESERVATION_CLOSED = "reservation_closed"
    NOT_PARTICIPANT = "not_participant"

    # Временные
    BUSY = "busy"
    REPOSITORY_UNAVAILABLE = "repository_unavailable"

    # Внутренние (наружу не отдаются)
    VERSION_CONFLICT = "version_conflict"
    STATE_CONFLICT = "state_conflict"


class MatchingError(Exception):
    """Базовая ошибка движка подбора."""

    kind: ErrorKind = ErrorKind.REPOSITORY_UNAVAILABLE
    retryable: bool = False

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.kind.value
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.kind.value}] {self.message} ({details})"
        return f"[{self.kind.value}] {self.message}"


class AlreadyReservedError(MatchingError):
    kind = ErrorKind.ALREADY_RESERVED


class NoCandidatesError(MatchingError):
    kind = ErrorKind.NO_CANDIDATES


class BusyError(MatchingError):
    kind = ErrorKind.BUSY
    retryable = True


class ProfileNotFoundError(MatchingError):
    kind = ErrorKind.PROFILE_NOT_FOUND


class ReservationNotFoundError(MatchingError):
    kind = ErrorKind.RESERVATION_NOT_FOUND


class ReservationClosedError(MatchingError):
    """Резервация уже не в том состоянии (подтверждена, отменена, истекла)."""
    kind = ErrorKind.RESERVATION_CLOSED


class NotParticipantError(MatchingError):
    kind = ErrorKind.NOT_PARTICIPANT


class RepositoryUnavailableError(MatchingError):
    """Инфраструктурная ошибка хранилища."""
    kind = ErrorKind.REPOSITORY_UNAVAILABLE
    retryable = True


class VersionConflict(MatchingError):
    """Conditional update отклонён: версия записи изменилась."""

    kind = ErrorKind.VERSION_CONFLICT
    retryable = True

    def __init__(self, user_id: int, expected_version: Optional[int] = None, message: str = ""):
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(
            message or "profile version changed",
            user_id=user_id,
            expected_version=expected_version,
        )


class StateConflict(MatchingError):
    """Переход резервации отклонён: состояние уже другое."""

    kind = ErrorKind.STATE_CONFLICT

    def __init__(self, reservation_id: int, expected_state: Any = None, actual_state: Any = None):
        self.reservation_id = reservation_id
        self.expected_state = expected_state
        self.actual_state = actual_state
        super().__init__(
            "reservation state changed",
            reservation_id=reservation_id,
            expected=getattr(expected_state, "value", expected_state),
            actual=getattr(actual_state, "value", actual_state),
        )


__all__ = [
    'ErrorKind',
    'MatchingError',
    'AlreadyReservedError',
    'NoCandidatesError',
    'BusyError',
    'ProfileNotFoundError',
    'ReservationNotFoundError',
    'ReservationClosedError',
    'NotParticipantError',
    'RepositoryUnavailableError',
    'VersionConflict',
    'StateConflict',
]
