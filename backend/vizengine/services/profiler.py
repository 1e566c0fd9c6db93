import logging
from collections import Counter

import numpy as np
import pandas as pd
from typing import List, Optional

from vizengine.core.performance import track_performance
from vizengine.core.schemas import AnomalyTag, ColumnProfile, Dataset, SemanticType
from vizengine.services.detection import detect_column_type
from vizengine.services.values import (
    matches_date_pattern, non_missing, to_date, to_number, unique_strings, value_shape,
)

logger = logging.getLogger(__name__)

# Anomaly thresholds
HIGH_NULL_PERCENTAGE = 50.0
HIGH_CARDINALITY_CAP = 100
HIGH_CARDINALITY_ROW_FRACTION = 0.8
LOW_VARIANCE_MAX_UNIQUE = 5
LOW_VARIANCE_MIN_ROWS = 20
MIXED_TYPES_MAX_SHAPES = 2
INVALID_DATE_FRACTION = 0.1

EXAMPLE_COUNT = 5


def _numeric_stats(present) -> dict:
    numbers = [n for n in (to_number(v) for v in present) if n is not None]
    if not numbers:
        return {}
    series = pd.Series(numbers, dtype=float)
    low, high = float(series.min()), float(series.max())
    # Summation error must not push the mean outside the observed range
    mean = min(max(float(series.mean()), low), high)
    return {
        'mean': mean,
        'median': float(series.median()),
        'std_dev': float(np.std(series.to_numpy())),
        'min': low,
        'max': high,
    }


def _distinct_counts(present) -> Counter:
    """Occurrences per distinct cell, keyed by (type, value) so 1, 1.0 and True stay apart."""
    return Counter((type(v), v) for v in present)


def _date_stats(distinct: Counter) -> dict:
    parsed = []
    invalid = 0
    for (_, value), occurrences in distinct.items():
        stamp = to_date(value)
        if stamp is not None:
            parsed.append(stamp)
        elif not (isinstance(value, str) and matches_date_pattern(value)):
            # Rejected by both the parser and the literal date shapes
            invalid += occurrences
    stats = {'invalid_date_count': invalid}
    if parsed:
        stats['min'] = min(parsed).strftime('%Y-%m-%d')
        stats['max'] = max(parsed).strftime('%Y-%m-%d')
    return stats


def _detect_anomalies(column_type: SemanticType, present, distinct: Counter,
                      null_percentage: float, unique_count: int, row_count: int, invalid_dates: int) -> List[AnomalyTag]:
    anomalies = []
    if null_percentage > HIGH_NULL_PERCENTAGE:
        anomalies.append(AnomalyTag.HIGH_NULLS)

    if column_type == SemanticType.CATEGORICAL:
        if unique_count > min(HIGH_CARDINALITY_CAP, HIGH_CARDINALITY_ROW_FRACTION * row_count):
            anomalies.append(AnomalyTag.HIGH_CARDINALITY)

    if column_type == SemanticType.NUMERIC:
        if unique_count < LOW_VARIANCE_MAX_UNIQUE and row_count > LOW_VARIANCE_MIN_ROWS:
            anomalies.append(AnomalyTag.LOW_VARIANCE)
    elif len({value_shape(value) for _, value in distinct}) > MIXED_TYPES_MAX_SHAPES:
        anomalies.append(AnomalyTag.MIXED_TYPES)

    if column_type == SemanticType.DATE and present:
        if invalid_dates / len(present) > INVALID_DATE_FRACTION:
            anomalies.append(AnomalyTag.INVALID_DATE_FORMATS)

    return anomalies


def profile(dataset: Dataset, column_name: str,
            column_type: Optional[SemanticType] = None) -> ColumnProfile:
    """
    Compute descriptive statistics and anomaly flags for one column.

    The semantic type drives which statistics are computed; when it is not
    supplied the baseline detector picks one from the column's name and
    values. Degenerate input (no rows, no non-null values) never raises:
    the profile carries zero counts and no min/max/mean.
    """
    values = dataset.column_values(column_name)
    total = len(values)
    present = non_missing(values)
    null_count = total - len(present)

    if column_type is None:
        column_type, _ = detect_column_type(column_name, values)

    unique_count = len(unique_strings(present))
    distinct = _distinct_counts(present)
    stats: dict = {}

    if present:
        if column_type == SemanticType.NUMERIC:
            stats = _numeric_stats(present)
        elif column_type == SemanticType.DATE:
            stats = _date_stats(distinct)
        else:
            as_text = [str(v) for v in present]
            stats = {'min': min(as_text), 'max': max(as_text)}
    else:
        logger.debug(f"Column '{column_name}' has no non-null values, returning empty profile")

    null_percentage = (null_count / total * 100) if total else 0.0
    invalid_dates = stats.pop('invalid_date_count', 0)

    return ColumnProfile(
        name=column_name,
        column_type=column_type,
        count=total,
        non_null_count=len(present),
        null_count=null_count,
        null_percentage=null_percentage,
        unique_count=unique_count,
        cardinality_ratio=(unique_count / len(present)) if present else 0.0,
        invalid_date_count=invalid_dates,
        examples=present[:EXAMPLE_COUNT],
        anomalies=_detect_anomalies(column_type, present, distinct, null_percentage,
                                    unique_count, total, invalid_dates),
        **stats,
    )


@track_performance("profile_dataset")
def profile_dataset(dataset: Dataset) -> List[ColumnProfile]:
    """Profile every column of a dataset in column order."""
    return [profile(dataset, column) for column in dataset.columns]
