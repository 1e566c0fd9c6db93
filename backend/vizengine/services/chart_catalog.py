"""
Catalog of supported chart types and their axis requirements.
"""
from typing import Dict, NamedTuple, Optional

# Axis kinds: 'categorical', 'numeric', 'date', 'entity' (node-like columns)


class ChartTypeInfo(NamedTuple):
    id: str
    name: str
    description: str
    x_axis: Optional[str]
    y_axis: Optional[str]
    z_axis: Optional[str] = None
    value: Optional[str] = None
    min_data_points: int = 2


CHART_TYPE_INFO: Dict[str, ChartTypeInfo] = {
    info.id: info for info in (
        ChartTypeInfo('bar', 'Bar Chart',
                      'Compare quantities across different categories using rectangular bars.',
                      'categorical', 'numeric'),
        ChartTypeInfo('line', 'Line Chart',
                      'Show trends and changes over time or continuous data.',
                      'date', 'numeric', min_data_points=3),
        ChartTypeInfo('area', 'Area Chart',
                      'Show cumulative totals and trends over time.',
                      'date', 'numeric', min_data_points=3),
        ChartTypeInfo('pie', 'Pie Chart',
                      'Show parts of a whole as percentages or proportions.',
                      'categorical', 'numeric', value='numeric'),
        ChartTypeInfo('scatter', 'Scatter Plot',
                      'Reveal correlations and outliers between two numeric variables.',
                      'numeric', 'numeric', min_data_points=5),
        ChartTypeInfo('heatmap', 'Heatmap',
                      'Show the intensity of a value across two categorical dimensions.',
                      'categorical', 'categorical', value='numeric', min_data_points=4),
        ChartTypeInfo('treemap', 'Treemap',
                      'Show hierarchical part-to-whole relationships with nested rectangles.',
                      'categorical', 'numeric', value='numeric'),
        ChartTypeInfo('treemap3d', '3D Treemap',
                      'Treemap with a third numeric dimension as height.',
                      'categorical', 'numeric', z_axis='numeric', value='numeric'),
        ChartTypeInfo('histogram', 'Histogram',
                      'Show the distribution of a single numeric variable.',
                      'numeric', None, min_data_points=10),
        ChartTypeInfo('kpi', 'KPI Card',
                      'Highlight a single headline metric.',
                      None, 'numeric', min_data_points=1),
        ChartTypeInfo('bar3d', '3D Bar Chart',
                      'Compare values across categories with a third numeric dimension.',
                      'categorical', 'numeric', z_axis='numeric'),
        ChartTypeInfo('scatter3d', '3D Scatter Plot',
                      'Show relationships between three numeric variables.',
                      'numeric', 'numeric', z_axis='numeric', min_data_points=5),
        ChartTypeInfo('surface3d', '3D Surface',
                      'Show a numeric surface over two numeric dimensions.',
                      'numeric', 'numeric', z_axis='numeric', min_data_points=9),
        ChartTypeInfo('network', 'Network Graph',
                      'Show connections between entities as nodes and edges.',
                      'entity', 'entity', value='numeric'),
        ChartTypeInfo('network3d', '3D Network Graph',
                      'Network graph laid out in three dimensions.',
                      'entity', 'entity', value='numeric'),
        ChartTypeInfo('entity-relationship', 'Entity Relationship Diagram',
                      'Show how entities relate to each other.',
                      'entity', 'entity', value='numeric'),
    )
}

ALLOWED_CHART_TYPES = frozenset(CHART_TYPE_INFO)

# Chart types that accept a series configuration
MULTI_SERIES_TYPES = frozenset({'line', 'area', 'bar', 'scatter', 'bar3d', 'scatter3d'})
SERIES_MARK_TYPES = frozenset({'bar', 'line', 'area'})

THREE_D_TYPES = frozenset({'bar3d', 'scatter3d', 'surface3d', 'treemap3d', 'network3d'})

# 2D chart type -> its 3D variant
THREE_D_VARIANTS = {
    'bar': 'bar3d',
    'scatter': 'scatter3d',
    'network': 'network3d',
    'treemap': 'treemap3d',
}

DEFAULT_AGGREGATION = {
    'scatter': 'average',
    'scatter3d': 'average',
    'surface3d': 'average',
    'histogram': 'count',
    'network': 'count',
    'network3d': 'count',
    'entity-relationship': 'count',
}
FALLBACK_AGGREGATION = 'sum'

DEFAULT_CHART_TYPE = 'bar'
SERIES_COLOR = '#3b82f6'


def get_chart_type_info(chart_type: str) -> Optional[ChartTypeInfo]:
    return CHART_TYPE_INFO.get(chart_type)


def default_aggregation(chart_type: str) -> str:
    """Count for histograms and graphs, average for point clouds, sum otherwise."""
    return DEFAULT_AGGREGATION.get(chart_type, FALLBACK_AGGREGATION)
