"""预定义的评分维度集合与等级阈值表。"""

from typing import Dict, Sequence, Tuple

from advisor_core.domain.evaluation import Criterion, CriterionSet, TierTable, equal_weights


CARD_TIERS = TierTable.from_mapping({"legendary": 9, "epic": 7, "rare": 5, "uncommon": 3, "common": 0})
RESEARCH_TIERS = TierTable.from_mapping(
    {"legendary": 9.4, "epic": 8.0, "rare": 7.0, "uncommon": 6.0, "common": 0}
)
BUILD_TIERS = TierTable.from_mapping({"legendary": 90, "epic": 75, "rare": 50, "uncommon": 30, "common": 0})


def _card_criteria() -> CriterionSet:
    questions: Sequence[Tuple[str, str, str]] = (
        ("depth", "techpriest", "How deeply is the idea worked out?"),
        ("relevance", "prisma", "Does it address a real, current user need?"),
        ("credibility", "toxic", "Are the claims believable and backed by evidence?"),
        ("actionability", "prisma", "Can the team act on it right away?"),
        ("impact", "evergreen", "How much does it move the business forward?"),
        ("clarity", "virgilia", "Is it expressed clearly and memorably?"),
        ("market_fit", "phoenix", "Does it fit the target market?"),
    )
    weights = equal_weights([key for key, _, _ in questions])
    return CriterionSet(
        name="card",
        criteria=tuple(
            Criterion(key=key, weight=w, evaluator_id=evaluator, description=desc)
            for (key, evaluator, desc), w in zip(questions, weights)
        ),
        tiers=CARD_TIERS,
    )


CARD_CRITERIA = _card_criteria()

RESEARCH_CRITERIA = CriterionSet(
    name="research",
    criteria=(
        Criterion("depth", 0.25, "phoenix", "Depth of market analysis and concrete data."),
        Criterion("uniqueness", 0.25, "toxic", "Uniqueness of the insights and competitive edge."),
        Criterion("actionability", 0.30, "prisma", "Practical applicability for product development."),
        Criterion("source_quality", 0.20, "evergreen", "Reliability and freshness of the sources."),
    ),
    tiers=RESEARCH_TIERS,
)


def _build_set(slot: int, name: str, items: Sequence[Tuple[str, float, str, str]]) -> CriterionSet:
    return CriterionSet(
        name=f"build-{slot}-{name}",
        criteria=tuple(
            Criterion(
                key=key,
                weight=weight,
                evaluator_id=evaluator,
                description=question,
                min_score=0.0,
                max_score=100.0,
                fallback_score=50.0,
            )
            for key, weight, evaluator, question in items
        ),
        tiers=BUILD_TIERS,
    )


BUILD_CRITERIA: Dict[int, CriterionSet] = {
    11: _build_set(11, "features", (
        ("pain_solving", 0.25, "prisma", "Do all features solve pains from Research?"),
        ("feasibility", 0.25, "techpriest", "Is everything buildable?"),
        ("no_bloat", 0.25, "toxic", "No unnecessary features?"),
        ("monetization", 0.15, "evergreen", "Is monetization justified?"),
        ("engagement", 0.10, "phoenix", "Does engagement create habit?"),
    )),
    12: _build_set(12, "user-path", (
        ("steps_concrete", 0.20, "prisma", "Are all 5 steps concrete?"),
        ("time_to_value", 0.25, "prisma", "Time to value < 3 minutes?"),
        ("magic_moment", 0.25, "virgilia", "Does the magic moment create a wow?"),
        ("return_habit", 0.20, "phoenix", "Does the return step create habit?"),
        ("simplicity", 0.10, "zen", "Not too complex?"),
    )),
    13: _build_set(13, "screens", (
        ("path_linked", 0.25, "prisma", "Each screen linked to the path?"),
        ("onboarding_count", 0.20, "prisma", "Onboarding <= 3 screens?"),
        ("total_count", 0.25, "techpriest", "Total screens <= 10?"),
        ("ux_audience", 0.20, "virgilia", "UX notes consider the audience?"),
        ("no_bloat", 0.10, "toxic", "Nothing unnecessary?"),
    )),
    14: _build_set(14, "style", (
        ("data_justified", 0.30, "prisma", "Each choice justified by data?"),
        ("references_known", 0.25, "virgilia", "References known to the audience?"),
        ("value_screams", 0.25, "phoenix", "Style screams value?"),
        ("competitor_diff", 0.20, "toxic", "Different from competitors?"),
    )),
    15: _build_set(15, "summary", (
        ("all_filled", 0.25, "prisma", "Everything filled?"),
        ("coherent", 0.30, "evergreen", "All coherent?"),
        ("tech_optimal", 0.25, "techpriest", "Tech stack optimal?"),
        ("ready", 0.20, "toxic", "Ready to generate?"),
    )),
}
