"""
Обработчики подбора языкового партнёра.

Команды: /profile, /find_partner, /status, /pause, /resume, /stats.
Кнопки: подтверждение, отказ и завершение пары.
"""

import logging
from typing import Optional, Sequence

from aiogram import Router, F
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, CallbackQuery

from bot.config import BotConfig
from bot.keyboards import (
    CANCEL_PREFIX,
    CONFIRM_PREFIX,
    END_PREFIX,
    get_match_keyboard,
    get_reservation_keyboard,
    parse_reservation_id,
)
from partner_matching import ErrorKind, MatchingError, PartnerMatchingService
from partner_matching.models import Profile, ProficiencyLevel, ReservationState, as_interest_set, utcnow

logger = logging.getLogger(__name__)
router = Router()


# ============================================
# ТЕКСТЫ
# ============================================

GENERIC_ERROR_MESSAGE = "⚠️ Сервис временно недоступен. Попробуйте через минуту."

ERROR_MESSAGES = {
    ErrorKind.ALREADY_RESERVED: "⏳ У вас уже есть активная пара. Завершите её или дождитесь окончания резервации.",
    ErrorKind.NO_CANDIDATES: "🔍 Сейчас нет подходящих собеседников. Попробуйте позже.",
    ErrorKind.BUSY: "🔄 Все подходящие собеседники только что заняты. Попробуйте ещё раз.",
    ErrorKind.PROFILE_NOT_FOUND: "📝 Сначала заполните анкету: /profile <родной> <изучаемый> <уровень> [интересы]",
    ErrorKind.RESERVATION_NOT_FOUND: "🤷 Предложение не найдено.",
    ErrorKind.RESERVATION_CLOSED: "⌛ Это предложение уже неактуально.",
    ErrorKind.NOT_PARTICIPANT: "🚫 Это действие вам недоступно.",
    ErrorKind.REPOSITORY_UNAVAILABLE: GENERIC_ERROR_MESSAGE,
}

PROFILE_USAGE = (
    "📝 <b>Анкета</b>\n\n"
    "Формат: /profile &lt;родной&gt; &lt;изучаемый&gt; &lt;уровень&gt; [интересы]\n"
    "Уровень: beginner, intermediate, advanced\n"
    "Интересы: номера через запятую\n\n"
    "Пример: /profile ru en intermediate 1,4,7"
)


def format_error(kind: ErrorKind) -> str:
    """Понятный пользователю текст для ошибки подбора."""
    return ERROR_MESSAGES.get(kind, GENERIC_ERROR_MESSAGE)


def format_stats(stats: dict) -> str:
    return (
        "📊 Статистика подбора\n\n"
        f"🔍 Запросов: {stats['requests']}\n"
        f"🤝 Резерваций: {stats['reservations']}\n"
        f"✅ Подтверждено: {stats['confirmed']}\n"
        f"❌ Отменено: {stats['cancelled']}\n"
        f"🏁 Завершено: {stats['completed']}\n"
        f"⚠️ Сбоев хранилища: {stats['errors']}"
    )


def parse_profile_args(user_id: int, username: Optional[str], args: Optional[str]) -> Profile:
    """
    Разбор аргументов /profile.

    Raises:
        ValueError: неверный формат, уровень или интересы
    """
    parts: Sequence[str] = (args or '').split()
    if len(parts) < 3:
        raise ValueError("expected: native target level [interests]")

    native, target, level = parts[0], parts[1], parts[2]
    interests = [item for item in ','.join(parts[3:]).split(',') if item.strip()]

    return Profile(
        user_id=user_id,
        username=username,
        native_language=native.lower(),
        target_language=target.lower(),
        proficiency_level=ProficiencyLevel.from_code(level),
        interests=as_interest_set(interests),
        last_active_at=utcnow(),
    )


async def _notify(message_bot, user_id: int, text: str, **kwargs):
    """Сообщение второму участнику пары (он мог заблокировать бота)."""
    try:
        await message_bot.send_message(user_id, text, **kwargs)
    except TelegramAPIError as e:
        logger.warning(f"⚠️ Не удалось уведомить {user_id}: {e}")


# ============================================
# КОМАНДЫ
# ============================================

@router.message(Command("profile"))
async def cmd_profile(message: Message, command: CommandObject, matching_service: PartnerMatchingService):
    """Создание или обновление анкеты."""
    try:
        profile = parse_profile_args(message.from_user.id, message.from_user.username, command.args)
    except ValueError:
        await message.answer(PROFILE_USAGE, parse_mode="HTML")
        return

    try:
        saved = await matching_service.save_profile(profile)
    except MatchingError as e:
        await message.answer(format_error(e.kind))
        return

    await message.answer(
        f"✅ Анкета сохранена: {saved.native_language} → {saved.target_language}, "
        f"уровень {saved.proficiency_level.code}.\n\nИскать собеседника: /find_partner"
    )


@router.message(Command("find_partner"))
async def cmd_find_partner(message: Message, matching_service: PartnerMatchingService):
    """Подбор и резервация собеседника."""
    user_id = message.from_user.id
    logger.info(f"Пользователь {user_id} ищет собеседника")

    try:
        outcome = await matching_service.request_match(user_id)
    except MatchingError as e:
        await message.answer(format_error(e.kind))
        return

    deadline = outcome.expires_at.strftime('%H:%M UTC')
    await message.answer(
        f"🤝 Нашли собеседника! Ждём его подтверждения до {deadline}.",
        reply_markup=get_reservation_keyboard(outcome.reservation_id, can_confirm=False)
    )
    await _notify(
        message.bot,
        outcome.candidate_id,
        f"🤝 С вами хочет практиковаться новый собеседник. Подтвердите до {deadline}.",
        reply_markup=get_reservation_keyboard(outcome.reservation_id)
    )


@router.message(Command("status"))
async def cmd_status(message: Message, matching_service: PartnerMatchingService):
    try:
        reservation = await matching_service.get_active_reservation(message.from_user.id)
    except MatchingError as e:
        await message.answer(format_error(e.kind))
        return

    if reservation is None:
        await message.answer("ℹ️ Активной пары нет. Искать собеседника: /find_partner")
    elif reservation.state == ReservationState.PENDING:
        await message.answer(
            "⏳ Ожидаем подтверждения пары.",
            reply_markup=get_reservation_keyboard(
                reservation.id, can_confirm=reservation.candidate_id == message.from_user.id
            )
        )
    else:
        await message.answer("💬 Пара подтверждена.", reply_markup=get_match_keyboard(reservation.id))


@router.message(Command("pause"))
async def cmd_pause(message: Message, matching_service: PartnerMatchingService):
    try:
        await matching_service.pause_matching(message.from_user.id)
    except MatchingError as e:
        await message.answer(format_error(e.kind))
        return

    await message.answer("⏸️ Подбор приостановлен. Возобновить: /resume")


@router.message(Command("resume"))
async def cmd_resume(message: Message, matching_service: PartnerMatchingService):
    try:
        await matching_service.resume_matching(message.from_user.id)
    except MatchingError as e:
        await message.answer(format_error(e.kind))
        return

    await message.answer("▶️ Подбор возобновлён. Искать собеседника: /find_partner")


@router.message(Command("stats"))
async def cmd_stats(message: Message, matching_service: PartnerMatchingService):
    """Статистика сервиса (только администратор)."""
    if BotConfig.ADMIN_USER_ID is None or message.from_user.id != BotConfig.ADMIN_USER_ID:
        return

    await message.answer(format_stats(matching_service.get_stats()))


# ============================================
# КНОПКИ РЕЗЕРВАЦИИ
# ============================================

@router.callback_query(F.data.startswith(CONFIRM_PREFIX))
async def callback_confirm(callback: CallbackQuery, matching_service: PartnerMatchingService):
    reservation_id = parse_reservation_id(callback.data, CONFIRM_PREFIX)
    user_id = callback.from_user.id

    try:
        reservation = await matching_service.confirm_match(reservation_id, user_id)
    except MatchingError as e:
        await callback.answer(format_error(e.kind), show_alert=True)
        return

    await callback.answer("✅ Пара подтверждена")
    await callback.message.edit_text(
        "💬 Пара подтверждена! Напишите собеседнику и начинайте практику.",
        reply_markup=get_match_keyboard(reservation_id)
    )
    await _notify(
        callback.bot,
        reservation.partner_of(user_id),
        "💬 Пара подтверждена! Собеседник скоро напишет.",
        reply_markup=get_match_keyboard(reservation_id)
    )


@router.callback_query(F.data.startswith(CANCEL_PREFIX))
async def callback_cancel(callback: CallbackQuery, matching_service: PartnerMatchingService):
    reservation_id = parse_reservation_id(callback.data, CANCEL_PREFIX)
    user_id = callback.from_user.id

    try:
        reservation = await matching_service.cancel_match(reservation_id, user_id)
    except MatchingError as e:
        await callback.answer(format_error(e.kind), show_alert=True)
        return

    await callback.answer()
    await callback.message.edit_text("❌ Предложение отклонено. Искать снова: /find_partner")
    await _notify(callback.bot, reservation.partner_of(user_id), "❌ Собеседник отказался. Искать снова: /find_partner")


@router.callback_query(F.data.startswith(END_PREFIX))
async def callback_end(callback: CallbackQuery, matching_service: PartnerMatchingService):
    reservation_id = parse_reservation_id(callback.data, END_PREFIX)
    user_id = callback.from_user.id

    try:
        reservation = await matching_service.end_match(reservation_id, user_id)
    except MatchingError as e:
        await callback.answer(format_error(e.kind), show_alert=True)
        return

    await callback.answer()
    await callback.message.edit_text("🏁 Общение завершено. Новый собеседник: /find_partner")
    await _notify(callback.bot, reservation.partner_of(user_id), "🏁 Собеседник завершил общение. Новый собеседник: /find_partner")
