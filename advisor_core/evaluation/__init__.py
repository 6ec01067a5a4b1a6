"""评分：并发分发、加权聚合与预定义维度集合。"""

from advisor_core.evaluation.aggregator import ScoreAggregator, research_ceiling
from advisor_core.evaluation.criteria import BUILD_CRITERIA, CARD_CRITERIA, RESEARCH_CRITERIA
from advisor_core.evaluation.dispatcher import EvaluationDispatcher, parse_score_payload

__all__ = [
    "BUILD_CRITERIA",
    "CARD_CRITERIA",
    "RESEARCH_CRITERIA",
    "EvaluationDispatcher",
    "ScoreAggregator",
    "parse_score_payload",
    "research_ceiling",
]
