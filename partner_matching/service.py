"""
Partner Matching Service - главный модуль координации.

Объединяет Repository, Candidate Ranker, Reservation Coordinator и
Expiry Sweeper в единый сервис подбора языковых партнёров для бота.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from partner_matching.config import MatchingConfig, get_matching_config
from partner_matching.errors import MatchingError, RepositoryUnavailableError
from partner_matching.matching import CandidateRanker, CompatibilityEvaluator
from partner_matching.models import MatchOutcome, Profile, Reservation, utcnow
from partner_matching.monitoring import capture_exception
from partner_matching.repository import ProfileRepository, SQLAlchemyProfileRepository
from partner_matching.reservations import ExpirySweeper, ReservationCoordinator

logger = logging.getLogger(__name__)


class PartnerMatchingService:
    """
    Главный сервис подбора собеседника.

    Workflow request_match:
    1. Ranker ранжирует свежий снимок доступных профилей
    2. Coordinator резервирует первого свободного кандидата
    3. Пара подтверждает (confirm_match) или отзывает (cancel_match)
    4. Sweeper истекает неподтверждённые резервации
    """

    def __init__(
        self,
        repository: Optional[ProfileRepository] = None,
        config: Optional[MatchingConfig] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Args:
            repository: Хранилище (по умолчанию SQLAlchemy поверх database.py)
            config: Параметры подбора (по умолчанию config/matching.yaml)
            clock: Источник текущего времени (naive UTC)
        """
        self.config = config or get_matching_config()
        self.repository = repository or SQLAlchemyProfileRepository()

        evaluator = CompatibilityEvaluator(
            weights=self.config.weights,
            recency_half_life_hours=self.config.recency_half_life_hours,
        )
        self.coordinator = ReservationCoordinator(
            self.repository,
            ranker=CandidateRanker(evaluator),
            reservation_ttl=self.config.reservation_ttl_seconds,
            max_attempts_per_candidate=self.config.max_attempts_per_candidate,
            max_candidates=self.config.max_candidates,
            exclude_former_partners=self.config.exclude_former_partners,
            clock=clock,
        )
        self.sweeper = ExpirySweeper(self.coordinator, interval=self.config.sweep_interval_seconds)

        # Статистика
        self.stats = {
            'started_at': None,
            'requests': 0,
            'reservations': 0,
            'confirmed': 0,
            'cancelled': 0,
            'completed': 0,
            'errors': 0,
        }

    # ============================================
    # LIFECYCLE
    # ============================================

    def start(self):
        """Запуск фонового sweeper."""
        self.stats['started_at'] = datetime.now()
        self.sweeper.run_in_background()
        logger.info("🚀 Partner Matching Service запущен")

    async def stop(self):
        """Остановка сервиса."""
        await self.sweeper.stop()
        self._print_stats()

    def _print_stats(self):
        """Вывод статистики работы сервиса."""
        logger.info("📊 Статистика Partner Matching Service")

        if self.stats['started_at']:
            uptime = datetime.now() - self.stats['started_at']
            logger.info(f"⏱️  Время работы: {uptime}")

        logger.info(f"🔍 Запросов подбора: {self.stats['requests']}")
        logger.info(f"🤝 Резерваций: {self.stats['reservations']}")
        logger.info(f"✅ Подтверждено: {self.stats['confirmed']}")
        logger.info(f"❌ Ошибок: {self.stats['errors']}")

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)

    # ============================================
    # ERROR REPORTING
    # ============================================

    async def _call(self, operation: str, awaitable: Awaitable, **context: Any):
        try:
            return await awaitable
        except RepositoryUnavailableError as e:
            self.stats['errors'] += 1
            logger.critical(f"🚨 Хранилище недоступно ({operation}): {e}", extra=context)
            capture_exception(e, level="fatal", extra=context, tags={'operation': operation})
            raise
        except MatchingError as e:
            logger.info(f"ℹ️ {operation}: {e}")
            raise

    # ============================================
    # PUBLIC API
    # ============================================

    async def request_match(self, user_id: int) -> MatchOutcome:
        """Найти и зарезервировать собеседника."""
        self.stats['requests'] += 1
        outcome = await self._call('request_match', self.coordinator.reserve(user_id), user_id=user_id)
        self.stats['reservations'] += 1
        return outcome

    async def confirm_match(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        reservation = await self._call(
            'confirm_match',
            self.coordinator.confirm(reservation_id, user_id),
            reservation_id=reservation_id,
        )
        self.stats['confirmed'] += 1
        return reservation

    async def cancel_match(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        reservation = await self._call(
            'cancel_match',
            self.coordinator.cancel(reservation_id, user_id),
            reservation_id=reservation_id,
        )
        self.stats['cancelled'] += 1
        return reservation

    async def end_match(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        """Завершить подтверждённую пару, оба снова доступны для подбора."""
        reservation = await self._call(
            'end_match',
            self.coordinator.end(reservation_id, user_id),
            reservation_id=reservation_id,
        )
        self.stats['completed'] += 1
        return reservation

    async def pause_matching(self, user_id: int) -> Profile:
        return await self._call('pause_matching', self.coordinator.pause(user_id), user_id=user_id)

    async def resume_matching(self, user_id: int) -> Profile:
        return await self._call('resume_matching', self.coordinator.resume(user_id), user_id=user_id)

    async def get_active_reservation(self, user_id: int) -> Optional[Reservation]:
        return await self._call(
            'get_active_reservation',
            self.repository.find_active_reservation(user_id),
            user_id=user_id,
        )

    async def save_profile(self, profile: Profile) -> Profile:
        """Создать или обновить анкету (статус подбора не меняется)."""
        return await self._call('save_profile', self.repository.save_profile(profile), user_id=profile.user_id)

    async def get_profile(self, user_id: int) -> Optional[Profile]:
        return await self._call('get_profile', self.repository.get_profile(user_id), user_id=user_id)
