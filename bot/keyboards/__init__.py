"""
Клавиатуры для Telegram бота.
"""

from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton
from aiogram.utils.keyboard import InlineKeyboardBuilder

# Префиксы callback_data для резерваций
CONFIRM_PREFIX = "match_confirm_"
CANCEL_PREFIX = "match_cancel_"
END_PREFIX = "match_end_"


def get_reservation_keyboard(reservation_id: int, can_confirm: bool = True) -> InlineKeyboardMarkup:
    """
    Подтверждение или отказ от предложенного собеседника.

    Requester получает только отказ (can_confirm=False): подтверждает кандидат.
    """
    builder = InlineKeyboardBuilder()

    buttons = []
    if can_confirm:
        buttons.append(InlineKeyboardButton(text="✅ Подтвердить", callback_data=f"{CONFIRM_PREFIX}{reservation_id}"))
    buttons.append(InlineKeyboardButton(text="❌ Отказаться", callback_data=f"{CANCEL_PREFIX}{reservation_id}"))
    builder.row(*buttons)

    return builder.as_markup()


def get_match_keyboard(reservation_id: int) -> InlineKeyboardMarkup:
    """Клавиатура подтверждённой пары."""
    builder = InlineKeyboardBuilder()

    builder.row(
        InlineKeyboardButton(text="🏁 Завершить общение", callback_data=f"{END_PREFIX}{reservation_id}")
    )

    return builder.as_markup()


def parse_reservation_id(callback_data: str, prefix: str) -> int:
    """
    Извлечение id резервации из callback_data.

    Raises:
        ValueError: callback_data не начинается с prefix или id не число
    """
    if not callback_data.startswith(prefix):
        raise ValueError(f"Unexpected callback data: {callback_data!r}")
    return int(callback_data[len(prefix):])


__all__ = [
    'CONFIRM_PREFIX',
    'CANCEL_PREFIX',
    'END_PREFIX',
    'get_reservation_keyboard',
    'get_match_keyboard',
    'parse_reservation_id',
]
