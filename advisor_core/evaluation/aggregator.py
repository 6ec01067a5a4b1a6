"""把各维度的评分结果聚合成一个加权总分与等级。"""

import math
from typing import Dict, List, Mapping, Optional

from advisor_core.domain.evaluation import CriterionResult, CriterionSet, Evaluation
from advisor_core.domain.exceptions import QuotaExceededError, RateLimitError
from advisor_core.infrastructure.logging.logger import logger

# 需要透出给用户的失败原因
_NOTICES = {
    "RATE_LIMIT": RateLimitError.user_message,
    "QUOTA_EXCEEDED": QuotaExceededError.user_message,
}


def research_ceiling(vision_score: float) -> float:
    """研究阶段得分不能超过愿景得分 + 2（且不超过 10）。"""

    return min(10.0, vision_score + 2)


class ScoreAggregator:
    """按 CriterionSet 的权重聚合。

    默认失败维度以兜底分按全权重参与计算；renormalize_failed=True 时
    排除失败维度并在存活维度上重新归一化（全部失败时退回兜底分加权和）。
    """

    def __init__(self, criterion_set: CriterionSet, renormalize_failed: bool = False):
        self._set = criterion_set
        self._renormalize = renormalize_failed

    @property
    def criterion_set(self) -> CriterionSet:
        return self._set

    def aggregate(
        self,
        subject_id: str,
        results: Mapping[str, CriterionResult],
        ceiling: Optional[float] = None,
    ) -> Evaluation:
        unknown = [k for k in results if k not in {c.key for c in self._set}]
        if unknown:
            logger.warning(
                "Ignored results for unknown criteria",
                extra={"extra": {"subject_id": subject_id, "criterion_set": self._set.name, "keys": unknown}},
            )

        merged: Dict[str, CriterionResult] = {}
        for c in self._set:
            result = results.get(c.key)
            if result is None:
                result = CriterionResult(
                    criterion_key=c.key,
                    score=c.default_score,
                    rationale="",
                    evaluator_id=c.evaluator_id,
                    failed=True,
                    error_code="MISSING",
                )
            merged[c.key] = result

        overall = self._weighted(merged)
        if ceiling is not None:
            overall = min(overall, ceiling)

        notices: List[str] = []
        for result in merged.values():
            notice = _NOTICES.get(result.error_code or "")
            if result.failed and notice and notice not in notices:
                notices.append(notice)

        return Evaluation(
            subject_id=subject_id,
            criteria=merged,
            overall_score=overall,
            tier=self._set.tiers.resolve(overall),
            notices=tuple(notices),
        )

    def _weighted(self, merged: Mapping[str, CriterionResult]) -> float:
        if self._renormalize:
            survivors = [c for c in self._set if not merged[c.key].failed]
            total = math.fsum(c.weight for c in survivors)
            if survivors and total > 0:
                return math.fsum(merged[c.key].score * c.weight for c in survivors) / total
        return math.fsum(merged[c.key].score * c.weight for c in self._set)
