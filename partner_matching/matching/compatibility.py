"""
Compatibility Evaluator для подбора языкового партнёра.

Жёсткий фильтр по взаимодополняющим языкам и статусу профиля,
затем взвешенный скоринг (0-1) по интересам, уровню и активности.
"""

import logging
import math
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple

from partner_matching.models import CompatibilityScore, MatchStatus, Profile, ProficiencyLevel

logger = logging.getLogger(__name__)


class CompatibilityEvaluator:
    """
    Оценка совместимости пары профилей.

    Особенности:
    - Языки не участвуют в скоринге: без взаимного обмена языками
      кандидат просто не подходит
    - Jaccard по интересам
    - Близость уровней владения языком
    - Бонус за недавнюю активность (экспоненциальное затухание)

    Чистая функция: результат зависит только от аргументов и `now`.
    """

    DEFAULT_WEIGHTS = {
        'language_fit': 0.0,
        'interest_overlap': 0.5,
        'proficiency_fit': 0.3,
        'recency_bonus': 0.2,
    }

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        recency_half_life_hours: float = 24.0
    ):
        """
        Args:
            weights: Веса компонент (нормализуются к сумме 1.0)
            recency_half_life_hours: Через сколько часов неактивности бонус падает вдвое
        """
        merged = dict(self.DEFAULT_WEIGHTS)
        merged.update(weights or {})

        total = sum(merged.values())
        if total <= 0:
            raise ValueError("Compatibility weights must sum to a positive value")
        if not math.isclose(total, 1.0):
            logger.warning(f"Weights sum to {total}, normalizing to 1.0")
            merged = {name: value / total for name, value in merged.items()}

        if recency_half_life_hours <= 0:
            raise ValueError("recency_half_life_hours must be positive")

        self.weights = merged
        self.recency_half_life_hours = recency_half_life_hours

    # ============================================
    # ELIGIBILITY
    # ============================================

    @staticmethod
    def _same_language(a: Optional[str], b: Optional[str]) -> bool:
        if not a or not b:
            return False
        return a.strip().lower() == b.strip().lower()

    def is_eligible(self, requester: Profile, candidate: Profile) -> bool:
        """Жёсткий фильтр: доступность, не сам себе, взаимный обмен языками."""
        if candidate.match_status != MatchStatus.AVAILABLE:
            return False
        if candidate.user_id == requester.user_id:
            return False
        return (
            self._same_language(requester.native_language, candidate.target_language)
            and self._same_language(candidate.native_language, requester.target_language)
        )

    # ============================================
    # SCORING COMPONENTS
    # ============================================

    @staticmethod
    def interest_overlap(a: FrozenSet[int], b: FrozenSet[int]) -> float:
        """Jaccard similarity; 0 если оба множества пустые."""
        union = a | b
        if not union:
            return 0.0
        return len(a & b) / len(union)

    @staticmethod
    def proficiency_fit(a: ProficiencyLevel, b: ProficiencyLevel) -> float:
        """1.0 для одинаковых уровней, 0.0 для beginner/advanced."""
        return 1.0 - abs(int(a) - int(b)) / ProficiencyLevel.max_distance()

    def recency_bonus(self, last_active_at: datetime, now: datetime) -> float:
        """Монотонно убывает с давностью активности, не больше 1."""
        age_hours = (now - last_active_at).total_seconds() / 3600
        if age_hours <= 0:
            return 1.0
        return 0.5 ** (age_hours / self.recency_half_life_hours)

    # ============================================
    # PUBLIC API
    # ============================================

    def breakdown(self, requester: Profile, candidate: Profile, now: datetime) -> CompatibilityScore:
        """Полная разбивка совместимости кандидата для requester."""
        if not self.is_eligible(requester, candidate):
            return CompatibilityScore(eligible=False)

        language_fit = 1.0
        interests = self.interest_overlap(requester.interests, candidate.interests)
        proficiency = self.proficiency_fit(requester.proficiency_level, candidate.proficiency_level)
        recency = self.recency_bonus(candidate.last_active_at, now)

        score = (
            self.weights['language_fit'] * language_fit
            + self.weights['interest_overlap'] * interests
            + self.weights['proficiency_fit'] * proficiency
            + self.weights['recency_bonus'] * recency
        )

        return CompatibilityScore(
            eligible=True,
            language_fit=language_fit,
            interest_overlap=interests,
            proficiency_fit=proficiency,
            recency_bonus=recency,
            score=score,
        )

    def evaluate(self, requester: Profile, candidate: Profile, now: datetime) -> Tuple[float, bool]:
        """
        Оценка кандидата.

        Returns:
            (score, eligible); score не имеет смысла при eligible=False
        """
        result = self.breakdown(requester, candidate, now)
        return result.score, result.eligible
