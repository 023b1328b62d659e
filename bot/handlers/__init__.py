"""
Модуль обработчиков команд и сообщений бота.
"""

from . import start, matching

__all__ = [
    'start',
    'matching',
]
