"""
Unit tests for the profiler service.
"""
import time

import pytest

from vizengine.core.errors import DegenerateInputWarning
from vizengine.core.performance import PerformanceMonitor
from vizengine.core.schemas import AnomalyTag, ColumnProfile, Dataset, SemanticType
from vizengine.services.profiler import profile, profile_dataset


def _dataset(column, values):
    return Dataset(rows=[{column: v} for v in values])


@pytest.mark.unit
def test_profile_numeric_column():
    """A skewed numeric column gets mean, median and no null anomaly."""
    result = profile(_dataset("value", [1, 2, 3, 4, 100]), "value")

    assert isinstance(result, ColumnProfile)
    assert result.column_type == SemanticType.NUMERIC
    assert result.mean == pytest.approx(22.0)
    assert result.median == 3.0
    assert result.min == 1.0
    assert result.max == 100.0
    assert result.std_dev == pytest.approx(39.01, rel=0.01)
    assert AnomalyTag.HIGH_NULLS not in result.anomalies
    assert result.anomalies == []


@pytest.mark.unit
def test_profile_counts_are_consistent():
    result = profile(_dataset("score", [10, None, "", 10, 30]), "score")

    assert result.count == 5
    assert result.non_null_count + result.null_count == result.count
    assert result.null_percentage == pytest.approx(40.0)
    assert result.unique_count == 2
    assert result.cardinality_ratio == pytest.approx(2 / 3)
    assert result.min <= result.mean <= result.max


@pytest.mark.unit
def test_profile_high_nulls():
    result = profile(_dataset("sparse", [1, None, None, None]), "sparse", SemanticType.NUMERIC)
    assert AnomalyTag.HIGH_NULLS in result.anomalies


@pytest.mark.unit
def test_profile_high_cardinality_for_categorical_ids():
    """1000 unique ids typed as categorical are flagged."""
    result = profile(_dataset("id", list(range(1, 1001))), "id", SemanticType.CATEGORICAL)

    assert result.unique_count == 1000
    assert AnomalyTag.HIGH_CARDINALITY in result.anomalies


@pytest.mark.unit
def test_profile_low_variance():
    result = profile(_dataset("flag", [0, 1] * 15), "flag", SemanticType.NUMERIC)
    assert AnomalyTag.LOW_VARIANCE in result.anomalies


@pytest.mark.unit
def test_profile_mixed_types():
    result = profile(_dataset("misc", [1, "2024-01-01", "hello", 2.5]), "misc", SemanticType.TEXT)
    assert AnomalyTag.MIXED_TYPES in result.anomalies


@pytest.mark.unit
def test_profile_date_column():
    values = ["2024-01-01", "2024-03-01", "garbage", "2024-02-01"]
    result = profile(_dataset("created", values), "created", SemanticType.DATE)

    assert result.min == "2024-01-01"
    assert result.max == "2024-03-01"
    assert result.invalid_date_count == 1
    assert AnomalyTag.INVALID_DATE_FORMATS in result.anomalies


@pytest.mark.unit
def test_profile_text_column_uses_lexical_min_max():
    result = profile(_dataset("name", ["bob", "alice", "carol"]), "name", SemanticType.TEXT)
    assert result.min == "alice"
    assert result.max == "carol"
    assert result.mean is None


@pytest.mark.unit
def test_profile_all_null_column_does_not_raise():
    with pytest.warns(DegenerateInputWarning):
        result = profile(_dataset("empty", [None, None, ""]), "empty")

    assert result.non_null_count == 0
    assert result.null_percentage == 100.0
    assert result.mean is None
    assert result.min is None
    assert result.anomalies == [AnomalyTag.HIGH_NULLS]


@pytest.mark.unit
def test_profile_empty_dataset():
    result = profile(Dataset(rows=[]), "anything", SemanticType.TEXT)

    assert result.count == 0
    assert result.null_percentage == 0.0
    assert result.anomalies == []


@pytest.mark.unit
def test_profile_examples_are_first_non_null_values():
    result = profile(_dataset("n", [None, 5, 6, 7, 8, 9, 10]), "n")
    assert result.examples == [5, 6, 7, 8, 9]


@pytest.mark.unit
def test_profile_dataset_covers_every_column(sales_dataset):
    profiles = profile_dataset(sales_dataset)

    assert [p.name for p in profiles] == ["region", "sales", "date"]
    types = {p.name: p.column_type for p in profiles}
    assert types == {
        "region": SemanticType.CATEGORICAL,
        "sales": SemanticType.NUMERIC,
        "date": SemanticType.DATE,
    }
    assert PerformanceMonitor.get_stats("profile_dataset")["count"] == 1


@pytest.mark.unit
def test_profile_large_code_column_is_fast():
    dataset = _dataset("sku", [f"SKU-{i % 5000}-A{i % 7}" for i in range(100000)])

    start = time.perf_counter()
    result = profile(dataset, "sku")
    elapsed = time.perf_counter() - start

    assert result.column_type == SemanticType.TEXT
    assert result.count == 100000
    assert elapsed < 1.5


@pytest.mark.unit
def test_invalid_dates_counted_per_row_for_repeated_values():
    values = ["2024-01-15"] * 6 + ["ref 12x"] * 3 + ["2024-02-01"]
    result = profile(_dataset("shipped", values), "shipped", SemanticType.DATE)

    assert result.invalid_date_count == 3
    assert result.min == "2024-01-15"
    assert result.max == "2024-02-01"
    assert AnomalyTag.INVALID_DATE_FORMATS in result.anomalies
