"""
Baseline semantic type detection from a column's name and values.

Shared by the profiler (when no type is supplied) and the classifier
(as the starting point before learned rules are applied).
"""
import logging
import warnings
from typing import List, Tuple

from vizengine.core.errors import DegenerateInputWarning
from vizengine.core.schemas import Scalar, SemanticType
from vizengine.services.values import (
    is_date_like, is_strict_date, name_tokens, non_missing, to_number, unique_strings,
)

logger = logging.getLogger(__name__)

# Name tokens that make a column lenient towards date values
DATE_NAME_TOKENS = frozenset({
    'date', 'time', 'timestamp', 'datetime', 'dob', 'birth', 'birthday', 'born',
    'created', 'updated', 'modified', 'deleted', 'expires', 'expired', 'expiry',
    'due', 'deadline', 'published', 'released', 'launched', 'opened', 'closed',
    'registered', 'joined', 'signed', 'effective', 'valid', 'until', 'period',
})

# Parse-ratio thresholds
NAME_DATE_RATIO = 0.3
NUMERIC_RATIO = 0.8
STRICT_DATE_RATIO = 0.7

# Categorical cardinality limits
MAX_CATEGORIES = 50
MAX_DISTINCT_RATIO = 0.5

DEGENERATE_CONFIDENCE = 0.3
SINGLE_VALUE_CONFIDENCE = 0.4

# Parsing ratios are estimated on at most this many non-null values
SAMPLE_SIZE = 1000


def is_date_column_name(column_name: str) -> bool:
    """Check whether a column name suggests it holds dates ('dob', 'created_at', 'startDate')."""
    return any(token in DATE_NAME_TOKENS for token in name_tokens(column_name))


def _ratio(values: List[Scalar], predicate) -> float:
    if not values:
        return 0.0
    return sum(1 for v in values if predicate(v)) / len(values)


def detect_column_type(column_name: str, values: List[Scalar]) -> Tuple[SemanticType, float]:
    """
    Assign a baseline semantic type and confidence.

    Checks run in priority order:
    1. date-suggestive name with at least 30% date-like values -> date
    2. at least 80% numeric values -> numeric
    3. more than 70% strictly shaped dates -> date
    4. 2..50 distinct values covering less than half the rows -> categorical
    5. text

    Confidence grows with how clean the winning signal is. All-null and
    single-value columns get a low confidence and a DegenerateInputWarning.
    """
    present = non_missing(values)
    if not present:
        warnings.warn(
            f"Column '{column_name}' has no non-null values",
            DegenerateInputWarning,
            stacklevel=2,
        )
        return SemanticType.TEXT, DEGENERATE_CONFIDENCE

    sample = present[:SAMPLE_SIZE]
    unique_count = len(unique_strings(present))
    distinct_ratio = unique_count / len(present)

    column_type, confidence = _baseline(column_name, sample, unique_count, distinct_ratio)

    if unique_count == 1:
        warnings.warn(
            f"Column '{column_name}' holds a single distinct value",
            DegenerateInputWarning,
            stacklevel=2,
        )
        confidence = min(confidence, SINGLE_VALUE_CONFIDENCE)

    return column_type, round(min(max(confidence, 0.0), 1.0), 4)


def _baseline(column_name: str, sample: List[Scalar], unique_count: int,
              distinct_ratio: float) -> Tuple[SemanticType, float]:
    if is_date_column_name(column_name):
        date_ratio = _ratio(sample, is_date_like)
        if date_ratio >= NAME_DATE_RATIO:
            return SemanticType.DATE, 0.6 + 0.3 * date_ratio

    numeric_ratio = _ratio(sample, lambda v: to_number(v) is not None)
    if numeric_ratio >= NUMERIC_RATIO:
        confidence = 0.5 + 0.4 * numeric_ratio
        # Two-valued numbers are often flags or codes
        if unique_count <= 2:
            confidence -= 0.15
        return SemanticType.NUMERIC, confidence

    strict_ratio = _ratio(sample, is_strict_date)
    if strict_ratio > STRICT_DATE_RATIO:
        return SemanticType.DATE, 0.5 + 0.4 * strict_ratio

    if 1 < unique_count <= MAX_CATEGORIES and distinct_ratio < MAX_DISTINCT_RATIO:
        return SemanticType.CATEGORICAL, min(0.9, max(0.6, 0.9 - distinct_ratio * 0.6))

    return SemanticType.TEXT, 0.5 + 0.3 * distinct_ratio
