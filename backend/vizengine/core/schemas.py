from datetime import datetime, timezone
from functools import cached_property
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

# Tagged scalar union accepted for every cell
Scalar = Union[str, int, float, bool, None]
Row = Dict[str, Scalar]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SemanticType(str, Enum):
    NUMERIC = "numeric"
    DATE = "date"
    CATEGORICAL = "categorical"
    TEXT = "text"


class AnomalyTag(str, Enum):
    HIGH_NULLS = "high_nulls"
    HIGH_CARDINALITY = "high_cardinality"
    LOW_VARIANCE = "low_variance"
    MIXED_TYPES = "mixed_types"
    INVALID_DATE_FORMATS = "invalid_date_formats"


class Dataset(BaseModel):
    """Immutable snapshot of rows for one analysis pass."""
    model_config = ConfigDict(frozen=True)

    rows: List[Row] = Field(default_factory=list)

    @cached_property
    def columns(self) -> List[str]:
        # First-seen order across all rows
        seen: Dict[str, None] = {}
        for row in self.rows:
            for key in row:
                seen.setdefault(key, None)
        return list(seen)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def column_values(self, column_name: str) -> List[Scalar]:
        return [row.get(column_name) for row in self.rows]

    @classmethod
    def from_records(cls, records: List[Dict[str, Any]]) -> "Dataset":
        return cls(rows=records)


class ColumnProfile(BaseModel):
    name: str
    column_type: SemanticType
    count: int  # total rows
    non_null_count: int
    null_count: int
    null_percentage: float
    unique_count: int
    cardinality_ratio: float
    mean: Optional[float] = None
    median: Optional[float] = None
    std_dev: Optional[float] = None
    min: Optional[Union[float, str]] = None  # float for numeric, YYYY-MM-DD for date
    max: Optional[Union[float, str]] = None
    invalid_date_count: int = 0
    examples: List[Scalar] = Field(default_factory=list)
    anomalies: List[AnomalyTag] = Field(default_factory=list)


class ColumnClassification(BaseModel):
    model_config = ConfigDict(frozen=True)

    column_name: str
    type: SemanticType
    confidence: float = Field(ge=0.0, le=1.0)
    source: str = "heuristic"  # 'heuristic', 'learned_rule' or 'manual'
    rule_id: Optional[str] = None

    @computed_field
    @property
    def confidence_band(self) -> str:
        if self.confidence >= 0.8:
            return "high"
        if self.confidence >= 0.6:
            return "medium"
        return "low"

    @computed_field
    @property
    def needs_review(self) -> bool:
        return self.confidence < 0.6


class HierarchyRelation(BaseModel):
    parent_column: str
    child_column: str
    type: str  # 'categorical-tree', 'leveled', 'path' or 'reference'
    confidence: float = Field(ge=0.0, le=1.0)
    parent_values: List[str] = Field(default_factory=list)
    child_values: List[str] = Field(default_factory=list)
    description: str = ""

    @field_validator('child_column')
    @classmethod
    def distinct_columns(cls, v: str, info) -> str:
        if v == info.data.get('parent_column'):
            raise ValueError("parent_column and child_column must differ")
        return v


class HierarchyNode(BaseModel):
    name: str
    count: int
    level: int = 0
    children: List["HierarchyNode"] = Field(default_factory=list)
    truncated: bool = False


class SeriesBinding(BaseModel):
    id: str = "1"
    column: str
    color: str = "#3b82f6"
    type: str = "bar"  # 'bar', 'line' or 'area'
    aggregation_method: str


class ChartSuggestion(BaseModel):
    chart_type: str
    x_column: str = ""
    y_column: str = ""
    z_column: str = ""
    value_column: str = ""
    aggregation_method: str
    series_config: List[SeriesBinding] = Field(default_factory=list)
    title: str
    reasoning: str
    confidence: float = Field(ge=0.0, le=1.0)


class FeedbackRecord(BaseModel):
    column_name: str = Field(min_length=1)
    original_type: SemanticType
    corrected_type: SemanticType
    sample_values: List[Scalar] = Field(default_factory=list)
    dataset_context: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class ChartFeedbackRecord(BaseModel):
    suggested_chart_type: str
    corrected_chart_type: str
    data_shape: str  # e.g. 'categorical+numeric', see inference.data_shape_signature
    query: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class FeedbackPattern(BaseModel):
    rule_type: str  # 'column_name_pattern', 'value_pattern' or 'chart_preference'
    pattern: str
    original_type: Optional[str] = None
    target_type: Optional[SemanticType] = None
    target_chart_type: Optional[str] = None
    occurrences: int
    agreement: float
    confidence: float


class LearnedRule(BaseModel):
    id: Optional[str] = None
    rule_type: str
    pattern: str
    target_type: Optional[SemanticType] = None
    target_chart_type: Optional[str] = None
    confidence_score: float = Field(ge=0.0, le=1.0)
    success_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    usage_count: int = 0
    support: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LearningJobResult(BaseModel):
    status: str  # 'completed', 'skipped', 'cancelled' or 'failed'
    patterns_found: int = 0
    rules_updated: int = 0
    active_rules: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


# API request bodies

class ColumnRequest(BaseModel):
    rows: List[Row]
    column: str


class OverrideRequest(BaseModel):
    column: str
    type: SemanticType
    rows: Optional[List[Row]] = None


class HierarchyRequest(BaseModel):
    rows: List[Row]
    columns: Optional[List[str]] = None


class TreeRequest(BaseModel):
    rows: List[Row]
    parent: str
    child: Optional[str] = None
    max_depth: Optional[int] = Field(default=None, ge=1)
    max_breadth: Optional[int] = Field(default=None, ge=1)


class SuggestRequest(BaseModel):
    rows: List[Row]
    columns: Optional[List[str]] = None
    query: Optional[str] = None
