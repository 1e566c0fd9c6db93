"""
Chart inference service.

Two-stage recommendation over classified columns:

1. Chart type: free-text intent keywords win when the query has any,
   otherwise an ordered table of data-shape rules scores candidates and
   learned chart preferences may replace the winner.
2. Bindings: x/y/z/value columns and an aggregation method picked from
   the query, the chart's axis requirements and column semantics.

Every suggestion is checked against ALLOWED_CHART_TYPES.
"""
import re
import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from vizengine.core.errors import UnsupportedChartType, ValidationError
from vizengine.core.schemas import (
    ChartSuggestion, ColumnClassification, Dataset, LearnedRule, SemanticType, SeriesBinding,
)
from vizengine.services.chart_catalog import (
    ALLOWED_CHART_TYPES, DEFAULT_CHART_TYPE, MULTI_SERIES_TYPES, SERIES_COLOR, SERIES_MARK_TYPES,
    THREE_D_TYPES, THREE_D_VARIANTS, default_aggregation, get_chart_type_info,
)
from vizengine.services.classifier import CHART_PREFERENCE
from vizengine.services.values import name_tokens, non_missing, to_number, unique_strings

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.6


class QueryIntent(NamedTuple):
    keywords: Tuple[str, ...]
    chart_type: str
    confidence: float


# Evaluated in order, first match wins
QUERY_INTENTS: List[QueryIntent] = [
    QueryIntent(('line chart', 'line graph'), 'line', 0.9),
    QueryIntent(('bar chart', 'bar graph', 'column chart'), 'bar', 0.9),
    QueryIntent(('pie chart', 'donut chart'), 'pie', 0.9),
    QueryIntent(('scatter plot', 'scatterplot', 'scatter'), 'scatter', 0.9),
    QueryIntent(('histogram',), 'histogram', 0.9),
    QueryIntent(('area chart',), 'area', 0.9),
    QueryIntent(('kpi',), 'kpi', 0.9),
    QueryIntent(('trend', 'trends', 'over time', 'timeline'), 'line', 0.9),
    QueryIntent(('compare', 'comparison', 'versus', 'vs'), 'bar', 0.85),
    QueryIntent(('distribution', 'spread'), 'histogram', 0.8),
    QueryIntent(('relationship', 'correlation', 'correlate'), 'scatter', 0.85),
    QueryIntent(('proportion', 'percentage', 'share'), 'pie', 0.8),
    QueryIntent(('pattern', 'patterns', 'heatmap', 'heat map'), 'heatmap', 0.75),
    QueryIntent(('hierarchy', 'treemap', 'tree map'), 'treemap', 0.8),
    QueryIntent(('network', 'graph', 'connections'), 'network', 0.85),
    QueryIntent(('entity', 'entities', 'relationships', 'knowledge'), 'entity-relationship', 0.8),
]

THREE_D_KEYWORDS = ('3d', 'three dimensional', 'three-dimensional', 'dimensional')
SURFACE_KEYWORDS = ('surface', 'mesh', 'terrain')
THREE_D_QUERY_CONFIDENCE = 0.9
THREE_D_SHAPE_CONFIDENCE = 0.8

# Evaluated in order, first match wins
AGGREGATION_KEYWORDS: List[Tuple[Tuple[str, ...], str]] = [
    (('average', 'mean', 'avg'), 'average'),
    (('count', 'how many', 'number of'), 'count'),
    (('max', 'maximum', 'highest'), 'max'),
    (('min', 'minimum', 'lowest'), 'min'),
    (('sum', 'total'), 'sum'),
]

TEMPORAL_NAME_TOKENS = frozenset({
    'date', 'time', 'timestamp', 'datetime', 'year', 'month', 'week', 'quarter', 'day',
    'hour', 'minute', 'period', 'schedule', 'start', 'end', 'created', 'updated',
    'occurred', 'recorded', 'logged', 'published', 'when',
})
SEQUENCE_NAME_TOKENS = frozenset({'year', 'month', 'week', 'quarter', 'index', 'seq', 'sequence', 'number', 'step'})
IDENTIFIER_TOKENS = frozenset({'id', 'uuid', 'identifier'})
ENTITY_NAME_TOKENS = frozenset({'id', 'name', 'entity', 'node', 'source', 'target'})
WEIGHT_NAME_TOKENS = frozenset({'weight', 'strength', 'score', 'count', 'frequency'})

# Preferred bar/pie category range
GOOD_CATEGORY_RANGE = (2, 20)


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(rf'(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])')


def query_mentions(query: Optional[str], keywords: Iterable[str]) -> bool:
    """Case-insensitive whole-word match of any keyword in the query."""
    if not query:
        return False
    text = query.lower()
    return any(_keyword_pattern(k.lower()).search(text) for k in keywords)


class DataShape:
    """Column groups and counts the shape rules look at."""

    def __init__(self, dataset: Dataset, columns: Sequence[ColumnClassification]):
        self.dataset = dataset
        self.columns = list(columns)
        self.numeric = [c.column_name for c in self.columns if c.type == SemanticType.NUMERIC]
        self.categorical = [c.column_name for c in self.columns if c.type == SemanticType.CATEGORICAL]
        self.dates = [c.column_name for c in self.columns if c.type == SemanticType.DATE]
        self._distinct: Dict[str, int] = {}

    def distinct_count(self, column: str) -> int:
        if column not in self._distinct:
            self._distinct[column] = len(unique_strings(non_missing(self.dataset.column_values(column))))
        return self._distinct[column]

    @property
    def category_count(self) -> int:
        """Distinct values of the first categorical column."""
        return self.distinct_count(self.categorical[0]) if self.categorical else 0

    @property
    def signature(self) -> str:
        return data_shape_signature(self.columns)


def data_shape_signature(columns: Sequence[ColumnClassification]) -> str:
    """Canonical key for the mix of semantic types, e.g. 'categorical+numeric'."""
    present = {c.type for c in columns}
    order = (SemanticType.DATE, SemanticType.CATEGORICAL, SemanticType.NUMERIC, SemanticType.TEXT)
    return "+".join(t.value for t in order if t in present) or "empty"


class ShapeRule(NamedTuple):
    predicate: Callable[[DataShape], bool]
    chart_type: str
    confidence: float
    reason: Callable[[DataShape], str]


# Highest confidence wins; among equals, the earlier rule
SHAPE_RULES: List[ShapeRule] = [
    ShapeRule(lambda s: bool(s.dates and s.numeric), 'line', 0.85,
              lambda s: 'Time series data detected - line/area charts show trends effectively'),
    ShapeRule(lambda s: bool(s.dates and s.numeric), 'area', 0.8,
              lambda s: 'Time series data detected - area charts show cumulative trends'),
    ShapeRule(lambda s: bool(s.categorical and s.numeric) and s.category_count <= 6, 'pie', 0.85,
              lambda s: f'{s.category_count} categories - pie chart shows proportions clearly'),
    ShapeRule(lambda s: bool(s.categorical and s.numeric) and s.category_count <= 20, 'bar', 0.85,
              lambda s: f'{s.category_count} categories - bar chart enables easy comparison'),
    ShapeRule(lambda s: bool(s.categorical and s.numeric) and s.category_count > 20, 'treemap', 0.8,
              lambda s: 'Many categories - treemap provides hierarchical view'),
    ShapeRule(lambda s: len(s.numeric) >= 2, 'scatter', 0.8,
              lambda s: 'Multiple numeric columns - scatter plot reveals correlations and outliers'),
    ShapeRule(lambda s: len(s.numeric) >= 3, 'scatter3d', 0.75,
              lambda s: '3+ numeric columns - 3D charts show multi-dimensional relationships'),
    ShapeRule(lambda s: len(s.numeric) >= 3, 'surface3d', 0.7,
              lambda s: '3+ numeric columns - surface shows a value across two dimensions'),
    ShapeRule(lambda s: bool(s.numeric) and s.distinct_count(s.numeric[0]) >= 10, 'histogram', 0.75,
              lambda s: f'{s.numeric[0]} has {s.distinct_count(s.numeric[0])} unique values - histogram shows distribution'),
    ShapeRule(lambda s: len(s.categorical) >= 2 and bool(s.numeric), 'heatmap', 0.75,
              lambda s: 'Multiple categorical dimensions - heatmap shows patterns across categories'),
]


def validate_data(dataset: Dataset, columns: Sequence) -> List[str]:
    """List every deficiency that prevents a suggestion."""
    issues = []
    if not dataset.rows:
        issues.append('No data available for analysis')
    if not columns:
        issues.append('No columns defined')
    if dataset.row_count < 2:
        issues.append('Insufficient data points (minimum 2 required)')
    return issues


def rank_chart_types(shape: DataShape) -> List[Tuple[str, float, str]]:
    """All matching shape rules as (chart_type, confidence, reason), best first."""
    matches = [
        (rule.chart_type, rule.confidence, rule.reason(shape))
        for rule in SHAPE_RULES if rule.predicate(shape)
    ]
    return sorted(matches, key=lambda m: -m[1])


def detect_query_intent(query: Optional[str]) -> Optional[QueryIntent]:
    for intent in QUERY_INTENTS:
        if query_mentions(query, intent.keywords):
            return intent
    return None


def _preferred_chart(rules: Iterable[LearnedRule], signature: str) -> Optional[LearnedRule]:
    matches = [
        r for r in rules
        if r.is_active and r.rule_type == CHART_PREFERENCE
        and r.pattern == signature and r.target_chart_type
    ]
    if not matches:
        return None
    return sorted(matches, key=lambda r: (-r.confidence_score, r.target_chart_type))[0]


def _shape_choice(shape: DataShape, rules: Iterable[LearnedRule]) -> Tuple[str, float, str]:
    ranked = rank_chart_types(shape)
    if ranked:
        chart_type, confidence, reason = ranked[0]
        reasoning = f"Recommended {chart_type} chart based on data analysis: {reason}"
    else:
        chart_type, confidence = DEFAULT_CHART_TYPE, FALLBACK_CONFIDENCE
        reasoning = "Default bar chart selected - suitable for most data types"

    preference = _preferred_chart(rules, shape.signature)
    if preference is not None and preference.confidence_score > confidence:
        logger.debug(f"Learned preference for {shape.signature} selects {preference.target_chart_type}")
        return (
            preference.target_chart_type,
            preference.confidence_score,
            f"Recommended {preference.target_chart_type} chart based on your earlier corrections "
            f"for {shape.signature} data",
        )
    return chart_type, confidence, reasoning


def choose_chart_type(shape: DataShape, query: Optional[str],
                      rules: Iterable[LearnedRule] = ()) -> Tuple[str, float, str]:
    """
    Pick (chart_type, confidence, reasoning).

    A query intent wins outright when one matches. The 3D keyword family
    maps the detected base type to its 3D variant.
    """
    rules = list(rules)
    intent = detect_query_intent(query)

    if query_mentions(query, THREE_D_KEYWORDS):
        if query_mentions(query, SURFACE_KEYWORDS):
            chart_type, confidence = 'surface3d', THREE_D_QUERY_CONFIDENCE
        elif intent is not None and intent.chart_type in THREE_D_VARIANTS:
            chart_type, confidence = THREE_D_VARIANTS[intent.chart_type], THREE_D_QUERY_CONFIDENCE
        else:
            base, _, _ = _shape_choice(shape, rules)
            if base in THREE_D_TYPES:
                chart_type = base
            elif base in THREE_D_VARIANTS:
                chart_type = THREE_D_VARIANTS[base]
            else:
                chart_type = 'scatter3d' if len(shape.numeric) >= 3 else 'bar3d'
            confidence = THREE_D_SHAPE_CONFIDENCE
        return chart_type, confidence, f'Based on your query "{query}", detected intent for {chart_type} visualization'

    if intent is not None:
        return (
            intent.chart_type,
            intent.confidence,
            f'Based on your query "{query}", detected intent for {intent.chart_type} visualization',
        )

    return _shape_choice(shape, rules)


def _ensure_allowed(chart_type: str) -> str:
    if chart_type not in ALLOWED_CHART_TYPES:
        raise UnsupportedChartType(chart_type)
    return chart_type


def is_temporal_name(column_name: str) -> bool:
    return any(token in TEMPORAL_NAME_TOKENS for token in name_tokens(column_name))


def is_identifier_name(column_name: str) -> bool:
    tokens = name_tokens(column_name)
    return any(token in IDENTIFIER_TOKENS for token in tokens)


def _is_monotonic(dataset: Dataset, column: str) -> bool:
    numbers = [to_number(v) for v in non_missing(dataset.column_values(column))]
    numbers = [n for n in numbers if n is not None]
    return len(numbers) >= 2 and all(a <= b for a, b in zip(numbers, numbers[1:]))


def select_columns(chart_type: str, shape: DataShape, query: Optional[str] = None) -> Dict[str, str]:
    """
    Pick x/y/z/value bindings for a chart type.

    Columns literally named in the query come first (categorical, date or
    temporal-named ones go to x, numeric ones to y). The chart's axis
    requirements fill the rest. Trend charts look for an x-axis among
    true dates, then temporal-sounding names, then sequential numbers,
    and only then categories. Unset bindings are empty strings.
    """
    dataset = shape.dataset
    columns = shape.columns
    numeric, categorical, dates = shape.numeric, shape.categorical, shape.dates
    temporal = [c.column_name for c in columns
                if c.type == SemanticType.DATE or is_temporal_name(c.column_name)]
    measures = [c for c in numeric if not is_identifier_name(c)] + [c for c in numeric if is_identifier_name(c)]
    entities = [c.column_name for c in columns
                if c.type == SemanticType.CATEGORICAL
                or any(t in ENTITY_NAME_TOKENS for t in name_tokens(c.column_name))]

    needs_trend = chart_type in ('line', 'area') or query_mentions(query, ('trend', 'over time', 'timeline'))
    info = get_chart_type_info(chart_type)

    x = y = z = value = ""

    if query:
        for column in columns:
            if not query_mentions(query, (column.column_name,)):
                continue
            if (column.type in (SemanticType.CATEGORICAL, SemanticType.DATE)
                    or is_temporal_name(column.column_name)) and not x:
                x = column.column_name
            elif column.type == SemanticType.NUMERIC and not y:
                y = column.column_name

    def good_category() -> str:
        low, high = GOOD_CATEGORY_RANGE
        for column in categorical:
            if low <= shape.distinct_count(column) <= high:
                return column
        return categorical[0] if categorical else ""

    def trend_axis() -> str:
        if dates:
            return dates[0]
        if temporal:
            return temporal[0]
        sequential = [c for c in numeric
                      if any(t in SEQUENCE_NAME_TOKENS for t in name_tokens(c)) or _is_monotonic(dataset, c)]
        if sequential:
            return sequential[0]
        return good_category()

    def first(candidates: Iterable[str], exclude: Iterable[str] = ()) -> str:
        excluded = set(exclude)
        return next((c for c in candidates if c not in excluded), "")

    x_axis = info.x_axis if info else 'categorical'
    y_axis = info.y_axis if info else 'numeric'

    if not x and x_axis:
        if needs_trend and x_axis in ('date', 'categorical'):
            x = trend_axis()
        elif x_axis == 'date':
            x = dates[0] if dates else (temporal[0] if temporal else "")
        elif x_axis == 'categorical':
            x = good_category()
        elif x_axis == 'numeric':
            x = first(measures, (y,))
        elif x_axis == 'entity':
            x = first(entities, (y,))

    if not y and y_axis:
        if y_axis == 'numeric':
            y = first(measures, (x,)) if chart_type in ('scatter', 'scatter3d', 'surface3d') else first(measures)
            y = y or first(numeric)
        elif y_axis == 'categorical':
            y = first(categorical, (x,))
        elif y_axis == 'entity':
            y = first(entities, (x,))

    # Fallbacks when requirements could not be met
    if not x and x_axis:
        if needs_trend:
            x = trend_axis() or first(c.column_name for c in columns)
        else:
            x = (dates[0] if dates else "") or first(categorical) or first(c.column_name for c in columns)
    if not y and y_axis:
        y = first(measures, (x,))

    if chart_type in THREE_D_TYPES:
        z = first(measures, (x, y))

    if info and info.value == 'numeric':
        if chart_type in ('pie', 'treemap', 'treemap3d'):
            value = y
        elif chart_type in ('network', 'network3d', 'entity-relationship'):
            weighted = [c for c in numeric if any(t in WEIGHT_NAME_TOKENS for t in name_tokens(c))]
            value = first(weighted, (x, y)) or first(measures, (x, y))
        else:
            value = first(measures, (x, y))
    value = value or y

    return {'x_column': x, 'y_column': y, 'z_column': z, 'value_column': value}


def choose_aggregation(chart_type: str, query: Optional[str] = None) -> str:
    for keywords, method in AGGREGATION_KEYWORDS:
        if query_mentions(query, keywords):
            return method
    return default_aggregation(chart_type)


def suggest(dataset: Dataset, columns: Sequence[ColumnClassification],
            query: Optional[str] = None, rules: Iterable[LearnedRule] = ()) -> ChartSuggestion:
    """
    Recommend a chart for classified columns of a dataset.

    Args:
        dataset: Rows the chart will be drawn from
        columns: Classified columns to consider, in preference order
        query: Optional free-text intent ("show sales trend over time")
        rules: Learned rules; active chart_preference rules are consulted

    Returns:
        ChartSuggestion with bindings, aggregation, reasoning and confidence

    Raises:
        ValidationError: The dataset is empty, has no columns or fewer than 2 rows
    """
    issues = validate_data(dataset, columns)
    if issues:
        raise ValidationError(issues)

    shape = DataShape(dataset, columns)
    chart_type, confidence, reasoning = choose_chart_type(shape, query, rules)

    try:
        _ensure_allowed(chart_type)
    except UnsupportedChartType as e:
        logger.warning(f"{e}; falling back to {DEFAULT_CHART_TYPE}")
        chart_type = DEFAULT_CHART_TYPE
        confidence = min(confidence, FALLBACK_CONFIDENCE)
        reasoning = "Fallback to bar chart due to compatibility"

    bindings = select_columns(chart_type, shape, query)
    aggregation = choose_aggregation(chart_type, query)
    x, y = bindings['x_column'], bindings['y_column']

    series = []
    if chart_type in MULTI_SERIES_TYPES and y:
        series.append(SeriesBinding(
            id="1",
            column=y,
            color=SERIES_COLOR,
            type=chart_type if chart_type in SERIES_MARK_TYPES else 'bar',
            aggregation_method=aggregation,
        ))

    label = chart_type[:1].upper() + chart_type[1:]
    axes = " vs ".join(c for c in (x, y) if c)
    if query and axes:
        title = f"{label} Chart: {axes}"
    else:
        title = f"Recommended {label} Chart"

    selected = f"Selected {x or 'no column'}"
    if y:
        selected += f" for x-axis and {y} for y-axis"
    reasoning = f"{reasoning}. {selected} with {aggregation} aggregation."

    return ChartSuggestion(
        chart_type=chart_type,
        aggregation_method=aggregation,
        series_config=series,
        title=title,
        reasoning=reasoning,
        confidence=round(min(max(confidence, 0.0), 1.0), 4),
        **bindings,
    )
