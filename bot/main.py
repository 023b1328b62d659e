"""
Главный файл Telegram бота языкового обмена.
"""

import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand
from sqlalchemy.exc import OperationalError

from bot.config import BotConfig
from bot.handlers import start, matching
from bot.logger import auto_setup_logging
from database import init_database, close_database
from partner_matching import PartnerMatchingService
from partner_matching.monitoring import init_sentry, capture_exception, flush_events
from partner_matching.retry import retry_async

logger = logging.getLogger(__name__)


async def main():
    """Главная функция запуска бота."""
    auto_setup_logging()

    # Инициализация Sentry для мониторинга ошибок
    sentry_enabled = init_sentry(environment=BotConfig.ENVIRONMENT, traces_sample_rate=0.1)
    if sentry_enabled:
        logger.info("✅ Sentry мониторинг активирован")
    else:
        logger.info("ℹ️  Sentry мониторинг отключен (SENTRY_DSN не указан)")

    # Проверяем конфигурацию
    try:
        BotConfig.validate()
        logger.info("✅ Конфигурация валидна")
    except ValueError as e:
        logger.error(f"❌ Ошибка конфигурации: {e}")
        capture_exception(e, level="fatal", tags={"component": "config"})
        return

    # Инициализируем базу данных (БД может подниматься дольше бота)
    logger.info("🗄️  Инициализация базы данных...")
    await retry_async(
        lambda: init_database(database_url=BotConfig.DATABASE_URL or None),
        max_attempts=5,
        initial_delay=2.0,
        exceptions=(OperationalError, ConnectionError, OSError)
    )

    matching_service = PartnerMatchingService()

    # Инициализируем бота и диспетчер; сервис доступен хендлерам как аргумент matching_service
    bot = Bot(token=BotConfig.BOT_TOKEN)
    dp = Dispatcher(storage=MemoryStorage(), matching_service=matching_service)

    # Регистрируем роутеры
    dp.include_router(start.router)
    dp.include_router(matching.router)

    logger.info("🤖 Бот запускается...")
    matching_service.start()

    try:
        # Удаляем старые webhook (если были)
        await bot.delete_webhook(drop_pending_updates=True)

        commands = [
            BotCommand(command="start", description="🏠 Главное меню"),
            BotCommand(command="profile", description="📝 Анкета"),
            BotCommand(command="find_partner", description="🤝 Найти собеседника"),
            BotCommand(command="status", description="ℹ️ Статус пары"),
            BotCommand(command="pause", description="⏸️ Пауза подбора"),
            BotCommand(command="resume", description="▶️ Возобновить подбор"),
        ]
        await bot.set_my_commands(commands)
        logger.info("✅ Команды бота установлены")

        logger.info("✅ Бот успешно запущен!")
        await dp.start_polling(bot)

    except Exception as e:
        logger.error(f"❌ Ошибка при запуске бота: {e}", exc_info=True)
        capture_exception(e, level="fatal", tags={"component": "main"})
    finally:
        logger.info("🛑 Остановка Partner Matching Service...")
        await matching_service.stop()
        await bot.session.close()
        await close_database()

        # Отправляем все накопленные события в Sentry перед завершением
        flush_events(timeout=2)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("🛑 Бот остановлен пользователем")
