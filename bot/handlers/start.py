"""
Обработчики команды /start и справки.
"""

import logging
from aiogram import Router
from aiogram.filters import CommandStart, Command
from aiogram.types import Message

logger = logging.getLogger(__name__)
router = Router()

WELCOME_TEXT = (
    "👋 <b>Языковой обмен</b>\n\n"
    "Подберём собеседника, который говорит на изучаемом вами языке "
    "и учит ваш родной.\n\n"
    "1. Заполните анкету: /profile\n"
    "2. Найдите собеседника: /find_partner\n"
    "3. Подтвердите пару кнопкой в течение нескольких минут\n\n"
    "Статус пары: /status\n"
    "Пауза и возобновление подбора: /pause, /resume"
)


@router.message(CommandStart())
async def cmd_start(message: Message):
    """Приветствие и краткая инструкция."""
    logger.info(f"Пользователь {message.from_user.id} вызвал /start")
    await message.answer(WELCOME_TEXT, parse_mode="HTML")


@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(WELCOME_TEXT, parse_mode="HTML")
