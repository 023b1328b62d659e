"""
Конфигурация Telegram бота.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Загружаем переменные окружения из .env (только для локального запуска)
# В Railway переменные окружения уже установлены в системе
env_path = Path(__file__).parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)


class BotConfig:
    """Конфигурация бота."""

    # Telegram Bot Token
    BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')

    # Администратор бота (команда /stats)
    # Формат: единственный Telegram User ID
    # Пример: ADMIN_USER_ID=123456789
    ADMIN_USER_ID_STR = os.getenv('ADMIN_USER_ID', '')
    ADMIN_USER_ID = int(ADMIN_USER_ID_STR) if ADMIN_USER_ID_STR.strip().isdigit() else None

    # База данных (SQLite fallback, если не задано)
    DATABASE_URL = os.getenv('DATABASE_URL', '')

    # Окружение для Sentry
    ENVIRONMENT = os.getenv('ENVIRONMENT', 'production')

    @classmethod
    def validate(cls):
        """Проверяет, что все необходимые настройки заданы."""
        errors = []

        if not cls.BOT_TOKEN:
            errors.append("TELEGRAM_BOT_TOKEN не задан")

        if cls.ADMIN_USER_ID_STR.strip() and cls.ADMIN_USER_ID is None:
            errors.append("ADMIN_USER_ID должен быть числом")

        if errors:
            raise ValueError("Ошибки конфигурации:\n" + "\n".join(f"  - {e}" for e in errors))

        return True
