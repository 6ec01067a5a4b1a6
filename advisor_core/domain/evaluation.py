"""评分相关的领域模型。

- Subject: 被评分的对象（卡片内容、研究洞察等）。
- Criterion: 单个评分维度，绑定一个独立评审者和固定权重。
- CriterionSet: 一组权重之和为 1.0 的评分维度，附带等级阈值表。
- CriterionResult: 单个维度的评分结果（成功或兜底）。
- TierTable: 分数 -> 等级 的阈值表。
- Evaluation: 聚合后的最终评价。
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import ValidationError


WEIGHT_TOLERANCE = 1e-6


@dataclass
class Subject:
    id: str
    content: Union[str, Mapping[str, Any]]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Criterion:
    key: str
    weight: float
    evaluator_id: str
    description: str = ""
    min_score: float = 1.0
    max_score: float = 10.0
    fallback_score: Optional[float] = None

    @property
    def default_score(self) -> float:
        """中性兜底分：显式配置优先，否则取分数区间中点。"""

        if self.fallback_score is not None:
            return self.fallback_score
        return (self.min_score + self.max_score) / 2

    def clamp(self, score: float) -> float:
        return min(self.max_score, max(self.min_score, score))


@dataclass
class CriterionResult:
    criterion_key: str
    score: float
    rationale: str
    evaluator_id: str
    failed: bool = False
    error_code: Optional[str] = None


@dataclass(frozen=True)
class TierTable:
    """按阈值降序匹配：score >= threshold 的最高等级胜出。"""

    thresholds: Tuple[Tuple[str, float], ...]

    def __post_init__(self) -> None:
        if not self.thresholds:
            raise ValidationError(code="EMPTY_TIER_TABLE", message="tier table needs at least one tier")
        ordered = tuple(sorted(self.thresholds, key=lambda item: item[1], reverse=True))
        object.__setattr__(self, "thresholds", ordered)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float]) -> "TierTable":
        return cls(tuple(mapping.items()))

    @property
    def lowest(self) -> str:
        return self.thresholds[-1][0]

    def resolve(self, score: float) -> str:
        for name, threshold in self.thresholds:
            if score >= threshold:
                return name
        return self.lowest


@dataclass(frozen=True)
class CriterionSet:
    name: str
    criteria: Tuple[Criterion, ...]
    tiers: TierTable

    def __post_init__(self) -> None:
        keys = [c.key for c in self.criteria]
        if not keys:
            raise ValidationError(code="EMPTY_CRITERIA", message=f"{self.name}: no criteria")
        if len(set(keys)) != len(keys):
            raise ValidationError(code="DUPLICATE_CRITERION", message=f"{self.name}: duplicate keys {keys}")
        total = math.fsum(c.weight for c in self.criteria)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValidationError(
                code="INVALID_WEIGHTS",
                message=f"{self.name}: weights sum to {total}, expected 1.0",
            )

    def __iter__(self):
        return iter(self.criteria)

    def __len__(self) -> int:
        return len(self.criteria)

    def get(self, key: str) -> Criterion:
        for criterion in self.criteria:
            if criterion.key == key:
                return criterion
        raise KeyError(key)


@dataclass(frozen=True)
class Evaluation:
    subject_id: str
    criteria: Dict[str, CriterionResult]
    overall_score: float
    tier: str
    notices: Tuple[str, ...] = ()

    @property
    def failed_keys(self) -> List[str]:
        return [key for key, result in self.criteria.items() if result.failed]

    @property
    def display_score(self) -> float:
        """界面展示用，保留一位小数。"""

        return round(self.overall_score, 1)


def equal_weights(keys: Sequence[str]) -> List[float]:
    """为 n 个维度生成和恰为 1.0 的均分权重（最后一项吸收舍入误差）。"""

    n = len(keys)
    if n == 0:
        return []
    base = 1.0 / n
    weights = [base] * (n - 1)
    weights.append(1.0 - math.fsum(weights))
    return weights
