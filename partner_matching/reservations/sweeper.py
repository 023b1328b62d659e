"""
Expiry Sweeper - фоновое истечение просроченных резерваций.

Периодически находит pending резервации с expires_at <= now и
переводит их в expired, возвращая профили в available. Заодно
освобождает reserved профили, за которыми не осталось резервации
(сбой между переводом пары в reserved и созданием резервации).
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from partner_matching.errors import RepositoryUnavailableError
from partner_matching.monitoring import capture_exception
from partner_matching.reservations.coordinator import ReservationCoordinator

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Планировщик истечения резерваций.

    Гонка с confirm/cancel разрешается conditional update состояния:
    проигравшая сторона получает StateConflict, резервация пропускается.

    Reserved профиль без резервации освобождается сразу, если координатор
    не смог его освободить сам, иначе только если он в той же версии
    пережил целый интервал (резервация могла ещё создаваться).
    """

    # Интервал проверки (в секундах)
    DEFAULT_INTERVAL = 30

    def __init__(self, coordinator: ReservationCoordinator, interval: float = DEFAULT_INTERVAL):
        self.coordinator = coordinator
        self.repository = coordinator.repository
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None
        # user_id -> версия, в которой профиль был reserved без резервации
        self._orphans_seen: Dict[int, int] = {}

    async def sweep_once(self, now: Optional[datetime] = None) -> int:
        """
        Один проход по просроченным резервациям.

        Returns:
            Количество истёкших резерваций
        """
        now = now or self.coordinator.clock()
        overdue = await self.repository.list_pending_expired(now)

        expired = 0
        for reservation in overdue:
            if await self.coordinator.expire(reservation.id, now):
                expired += 1

        if expired:
            logger.info(f"⌛ Sweeper: истекло резерваций: {expired}")

        await self.release_orphans()
        return expired

    async def release_orphans(self) -> int:
        """
        Освобождение reserved профилей без активной резервации.

        Returns:
            Количество освобождённых профилей
        """
        orphans = await self.repository.list_orphaned_reserved()
        seen, self._orphans_seen = self._orphans_seen, {}

        released = 0
        for profile in orphans:
            if self.coordinator.is_stuck(profile) or seen.get(profile.user_id) == profile.version:
                if await self.coordinator.release_orphan(profile):
                    released += 1
            else:
                self._orphans_seen[profile.user_id] = profile.version

        if released:
            logger.warning(f"🔓 Sweeper: освобождено профилей без резервации: {released}")
        return released

    async def start(self):
        """Запуск цикла (блокирует до stop())."""
        if self._running:
            return

        self._running = True
        logger.info(f"🧹 Expiry Sweeper запущен (интервал {self.interval}s)")

        while self._running:
            try:
                await self.sweep_once()
            except RepositoryUnavailableError as e:
                logger.critical(f"🚨 Хранилище недоступно (sweeper): {e}", exc_info=True)
                capture_exception(e, level="fatal", tags={'component': 'sweeper'})
            except Exception as e:
                logger.error(f"❌ Ошибка в sweeper: {e}", exc_info=True)

            await asyncio.sleep(self.interval)

    def run_in_background(self) -> asyncio.Task:
        """Запуск цикла как asyncio.Task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.start())
        return self._task

    async def stop(self):
        """Остановка планировщика."""
        self._running = False

        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        logger.info("🛑 Expiry Sweeper остановлен")
