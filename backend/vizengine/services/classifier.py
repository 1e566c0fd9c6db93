"""
Semantic column classification: baseline heuristic plus learned rules.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from vizengine.core.schemas import ColumnClassification, Dataset, LearnedRule, Scalar
from vizengine.services.detection import detect_column_type
from vizengine.services.values import dominant_shape, name_matches_pattern

logger = logging.getLogger(__name__)

COLUMN_NAME_PATTERN = "column_name_pattern"
VALUE_PATTERN = "value_pattern"
CHART_PREFERENCE = "chart_preference"

SHAPE_PREFIX = "shape:"

# Fraction of the remaining headroom an agreeing rule adds, scaled by its score
AGREEMENT_BOOST = 0.5

# A shape-only rule never outranks a clean baseline (all-numeric columns score 0.9)
VALUE_PATTERN_MAX_SCORE = 0.85


def shape_pattern(shape: str) -> str:
    return f"{SHAPE_PREFIX}{shape}"


def rule_score(rule: LearnedRule) -> float:
    """Score a rule carries in classification; value-shape rules are capped."""
    if rule.rule_type == VALUE_PATTERN:
        return min(rule.confidence_score, VALUE_PATTERN_MAX_SCORE)
    return rule.confidence_score


def rule_matches(rule: LearnedRule, column_name: str, shape: Optional[str]) -> bool:
    """Does a type rule apply to this column name / dominant value shape?"""
    if not rule.is_active or rule.target_type is None:
        return False
    if rule.rule_type == COLUMN_NAME_PATTERN:
        return name_matches_pattern(column_name, rule.pattern)
    if rule.rule_type == VALUE_PATTERN:
        return shape is not None and rule.pattern == shape_pattern(shape)
    return False


def matching_rules(rules: Iterable[LearnedRule], column_name: str,
                   values: Sequence[Scalar]) -> List[LearnedRule]:
    """Matching type rules, highest confidence first (ties by pattern, then id)."""
    shape = dominant_shape(values)
    matches = [r for r in rules if rule_matches(r, column_name, shape)]
    return sorted(matches, key=lambda r: (-rule_score(r), r.pattern, r.id or ""))


def classify(dataset: Dataset, column_name: str,
             learned_rules: Iterable[LearnedRule] = ()) -> ColumnClassification:
    """
    Classify a column's semantic type.

    The baseline detector proposes a type and confidence. The highest
    ranked matching rule that applies then either boosts the confidence
    (it agrees) or replaces the type (it disagrees and its score beats
    the baseline confidence). Pure: the same dataset and rules always give
    the same classification.
    """
    values = dataset.column_values(column_name)
    base_type, base_confidence = detect_column_type(column_name, values)

    for rule in matching_rules(learned_rules, column_name, values):
        score = rule_score(rule)
        if rule.target_type == base_type:
            boosted = base_confidence + (1 - base_confidence) * score * AGREEMENT_BOOST
            return ColumnClassification(
                column_name=column_name,
                type=base_type,
                confidence=round(min(boosted, 1.0), 4),
                source="learned_rule",
                rule_id=rule.id,
            )
        if score > base_confidence:
            logger.debug(
                f"Rule {rule.rule_type}:{rule.pattern} overrides {base_type.value} "
                f"with {rule.target_type.value} for column '{column_name}'"
            )
            return ColumnClassification(
                column_name=column_name,
                type=rule.target_type,
                confidence=score,
                source="learned_rule",
                rule_id=rule.id,
            )

    return ColumnClassification(
        column_name=column_name,
        type=base_type,
        confidence=base_confidence,
    )


def classify_dataset(dataset: Dataset,
                     learned_rules: Iterable[LearnedRule] = ()) -> List[ColumnClassification]:
    rules = list(learned_rules)
    return [classify(dataset, column, rules) for column in dataset.columns]
