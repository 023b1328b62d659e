"""
Модуль мониторинга и error tracking с использованием Sentry.

Инфраструктурные ошибки движка подбора (RepositoryUnavailable)
логируются как critical и отправляются в Sentry через capture_exception.
Логи попадают в Sentry только как breadcrumbs.
"""

import os
import logging
from typing import Optional, Dict, Any

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

_sentry_initialized = False

# Пользовательские ошибки подбора - не инциденты
_IGNORED_ERROR_TYPES = {
    'AlreadyReservedError',
    'NoCandidatesError',
    'BusyError',
    'ReservationClosedError',
    'ReservationNotFoundError',
    'NotParticipantError',
    'ProfileNotFoundError',
}


def init_sentry(
    dsn: Optional[str] = None,
    environment: str = "production",
    traces_sample_rate: float = 0.1
) -> bool:
    """
    Инициализация Sentry для мониторинга ошибок.

    Args:
        dsn: Sentry DSN (если None, берется из переменной окружения SENTRY_DSN)
        environment: Окружение (production/staging/development)
        traces_sample_rate: Доля трассировки запросов (0.0-1.0)

    Returns:
        True если успешно инициализирован, False иначе
    """
    global _sentry_initialized

    if _sentry_initialized:
        logger.warning("Sentry уже инициализирован")
        return True

    sentry_dsn = dsn or os.getenv('SENTRY_DSN')

    if not sentry_dsn:
        logger.info("Sentry DSN не указан - мониторинг отключен")
        return False

    logging_integration = LoggingIntegration(
        level=logging.INFO,  # breadcrumbs
        event_level=None     # события только через capture_exception
    )

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[logging_integration],
        attach_stacktrace=True,
        send_default_pii=False,
        max_breadcrumbs=50,
        before_send=_before_send_filter,
    )

    _sentry_initialized = True
    logger.info(f"✅ Sentry инициализирован (environment={environment})")
    return True


def _before_send_filter(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Фильтр событий перед отправкой в Sentry.

    Returns:
        Событие или None (чтобы не отправлять)
    """
    if 'exc_info' in hint:
        exc_type, exc_value, _ = hint['exc_info']

        if isinstance(exc_value, KeyboardInterrupt):
            return None

        if exc_type is not None and exc_type.__name__ in _IGNORED_ERROR_TYPES:
            return None

    # Токены и пароли из breadcrumbs
    breadcrumbs = event.get('breadcrumbs') or {}
    if isinstance(breadcrumbs, dict):
        breadcrumbs = breadcrumbs.get('values', [])
    for breadcrumb in breadcrumbs:
        data = breadcrumb.get('data') or {}
        for key in list(data.keys()):
            if any(sensitive in key.lower() for sensitive in ['token', 'password', 'secret', 'key']):
                data[key] = '[FILTERED]'

    return event


def capture_exception(
    error: BaseException,
    level: str = "error",
    extra: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None
) -> Optional[str]:
    """
    Отправка исключения в Sentry с дополнительным контекстом.

    Args:
        error: Исключение
        level: Уровень важности (fatal/error/warning)
        extra: Дополнительные данные
        tags: Теги для фильтрации

    Returns:
        Event ID от Sentry или None
    """
    if not _sentry_initialized:
        return None

    with sentry_sdk.new_scope() as scope:
        scope.level = level
        if extra:
            scope.set_context("extra_data", extra)
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        event_id = sentry_sdk.capture_exception(error)

    logger.info(f"📤 Отправлено в Sentry: {event_id}")
    return event_id


def flush_events(timeout: float = 2.0) -> None:
    """Дождаться отправки событий перед остановкой."""
    if _sentry_initialized:
        sentry_sdk.flush(timeout=timeout)
