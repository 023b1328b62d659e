"""
Structured Logging для Production.

JSON-логи для парсинга в ELK / CloudWatch, human-формат для локальной разработки.
Поля из extra (user_id, requester_id, reservation_id) попадают в "extra".
"""

import logging
import json
import sys
import os
from datetime import datetime, timezone
from typing import Optional
from pathlib import Path

# Стандартные атрибуты LogRecord - не попадают в "extra"
_RECORD_ATTRIBUTES = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter для структурированных логов.

    Output format:
    {
        "timestamp": "2026-10-18T12:34:56.789Z",
        "level": "INFO",
        "logger": "partner_matching.reservations.coordinator",
        "message": "🤝 Reserved 42 for 7 (reservation 3, score 0.81)",
        "extra": {"requester_id": 7, "reservation_id": 3}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        """Форматирование лога в JSON."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "timestamp": timestamp.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName
        }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter для локальной разработки.

    Output format:
    2026-10-18 12:34:56 INFO     bot.main: Бот запущен
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s %(levelname)-8s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    log_file: Optional[Path] = None
) -> None:
    """
    Настройка logging для всего приложения.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_json: Использовать JSON формат (True для production)
        log_file: Путь к файлу логов (опционально)
    """
    formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Уменьшаем verbosity сторонних библиотек
    logging.getLogger("aiogram").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def auto_setup_logging():
    """
    Настройка логирования из переменных окружения.

    Environment variables:
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
        LOG_FORMAT: json или human (default: json)
        LOG_FILE: Путь к файлу логов (опционально)
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_format = os.getenv("LOG_FORMAT", "json")
    log_file_path = os.getenv("LOG_FILE")

    setup_logging(
        level=log_level,
        use_json=log_format.lower() == "json",
        log_file=Path(log_file_path) if log_file_path else None
    )


__all__ = [
    'setup_logging',
    'StructuredFormatter',
    'HumanReadableFormatter',
    'auto_setup_logging'
]
