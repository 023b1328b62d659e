"""
Candidate Ranker - упорядочивание пула кандидатов для requester.

Ранжирование выполняется один раз на запрос против одного снимка профилей.
"""

import logging
from datetime import datetime
from typing import Collection, Iterable, List, Optional

from partner_matching.matching.compatibility import CompatibilityEvaluator
from partner_matching.models import Profile, RankedCandidate

logger = logging.getLogger(__name__)


class CandidateRanker:
    """
    Детерминированное ранжирование кандидатов.

    Сортировка по score (от большего к меньшему), при равенстве -
    по возрастанию user_id. Пустой результат - не ошибка.
    """

    def __init__(self, evaluator: Optional[CompatibilityEvaluator] = None):
        self.evaluator = evaluator or CompatibilityEvaluator()

    def rank(
        self,
        requester: Profile,
        snapshot: Iterable[Profile],
        now: datetime,
        exclude_ids: Collection[int] = ()
    ) -> List[RankedCandidate]:
        """
        Ранжирование снимка профилей для requester.

        Args:
            requester: Профиль пользователя, ищущего собеседника
            snapshot: Профили из load_available_snapshot
            now: Момент ранжирования (для recency bonus)
            exclude_ids: Кого не предлагать (бывшие партнёры)

        Returns:
            Список RankedCandidate в порядке попыток резервации
        """
        ranked = []

        for candidate in snapshot:
            if candidate.user_id in exclude_ids:
                continue

            score, eligible = self.evaluator.evaluate(requester, candidate, now)
            if eligible:
                ranked.append(RankedCandidate(user_id=candidate.user_id, score=score))

        ranked.sort(key=lambda c: (-c.score, c.user_id))

        if ranked:
            logger.debug(
                f"Ranked {len(ranked)} candidates for {requester.user_id}: "
                f"{[(c.user_id, round(c.score, 3)) for c in ranked[:5]]}"
            )
        else:
            logger.debug(f"No eligible candidates for {requester.user_id}")

        return ranked
