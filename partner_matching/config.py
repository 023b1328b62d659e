"""
Matching Configuration Loader.

Параметры движка подбора читаются из config/matching.yaml.
Если файла нет или ключ не задан, используются значения по умолчанию.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'matching.yaml'


class MatchingConfig:
    """Matching configuration manager."""

    DEFAULT_RESERVATION_TTL = 300      # 5 минут на подтверждение
    DEFAULT_SWEEP_INTERVAL = 30
    DEFAULT_ATTEMPTS_PER_CANDIDATE = 2

    DEFAULT_WEIGHTS = {
        'language_fit': 0.0,
        'interest_overlap': 0.5,
        'proficiency_fit': 0.3,
        'recency_bonus': 0.2,
    }
    DEFAULT_RECENCY_HALF_LIFE_HOURS = 24.0

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize matching config loader.

        Args:
            config_path: Path to matching.yaml, defaults to config/matching.yaml
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            self._config = {}
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"⚠️ Failed to load matching config {self.config_path}: {e}")
            self._config = {}

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def _section(self, name: str) -> Dict[str, Any]:
        return self._config.get(name) or {}

    # ============================================
    # MATCHING
    # ============================================

    @property
    def reservation_ttl_seconds(self) -> int:
        return int(self._section('matching').get('reservation_ttl_seconds', self.DEFAULT_RESERVATION_TTL))

    @property
    def sweep_interval_seconds(self) -> float:
        return float(self._section('matching').get('sweep_interval_seconds', self.DEFAULT_SWEEP_INTERVAL))

    @property
    def max_attempts_per_candidate(self) -> int:
        value = self._section('matching').get('max_attempts_per_candidate', self.DEFAULT_ATTEMPTS_PER_CANDIDATE)
        return max(1, int(value))

    @property
    def max_candidates(self) -> Optional[int]:
        """Сколько кандидатов пробовать за один запрос (None = весь список)."""
        value = self._section('matching').get('max_candidates')
        return int(value) if value else None

    @property
    def exclude_former_partners(self) -> bool:
        return bool(self._section('matching').get('exclude_former_partners', True))

    # ============================================
    # SCORING
    # ============================================

    @property
    def weights(self) -> Dict[str, float]:
        weights = dict(self.DEFAULT_WEIGHTS)
        weights.update({k: float(v) for k, v in (self._section('scoring').get('weights') or {}).items()})
        return weights

    @property
    def recency_half_life_hours(self) -> float:
        return float(self._section('scoring').get('recency_half_life_hours', self.DEFAULT_RECENCY_HALF_LIFE_HOURS))

    # ============================================
    # REPOSITORY
    # ============================================

    def get_retry_setting(self, name: str, default: Any) -> Any:
        """Retry settings для транзиентных ошибок БД.

        Args:
            name: attempts, initial_delay или backoff_factor
        """
        return self._section('repository').get(f'retry_{name}', default)

    def get_all_config(self) -> Dict[str, Any]:
        """Get full configuration dictionary."""
        return dict(self._config)


# Global instance
matching_config = MatchingConfig()


def get_matching_config() -> MatchingConfig:
    return matching_config
