"""
Hierarchy detection between columns and bounded tree building.

A relation parent -> child holds when each child value belongs to one
parent value for a large majority of rows (many-to-one containment).
Path-like text columns ("Electronics > Phones > Android") form a
hierarchy of their own.
An `<base>_id` column whose values reappear in a `<base>` or `<base>_name`
column is a reference to it.
"""
import re
import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from vizengine.core.performance import track_performance
from vizengine.core.schemas import Dataset, HierarchyNode, HierarchyRelation, SemanticType
from vizengine.services.detection import detect_column_type
from vizengine.services.values import is_missing, name_tokens, non_missing, normalize_name, unique_strings

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.9
DEFAULT_MAX_CARDINALITY = 50
DEFAULT_MAX_DEPTH = 3
DEFAULT_MAX_BREADTH = 10

PATH_SEPARATORS = ('/', ' > ', '::', '|')
# Fraction of values that must split on a separator for a column to be a path
MIN_PATH_FRACTION = 0.5
LEVELS_SUFFIX = "_levels"

# Share of distinct id values that must reappear in the referenced column
MIN_REFERENCE_MATCH = 0.3
MAX_REFERENCE_CONFIDENCE = 0.9

# Column name pairs that describe well-known levels (matched on normalized names)
LEVEL_NAMING_PATTERNS = [
    (re.compile(r'(^|_)parent($|_)'), re.compile(r'(^|_)child($|_)')),
    (re.compile(r'(^|_)category($|_)'), re.compile(r'sub_?category')),
    (re.compile(r'(^|_)group($|_)'), re.compile(r'sub_?group')),
    (re.compile(r'(^|_)department($|_)'), re.compile(r'sub_?department|(^|_)team($|_)')),
    (re.compile(r'(^|_)region($|_)'), re.compile(r'(^|_)(area|territory|district)($|_)')),
    (re.compile(r'(^|_)country($|_)'), re.compile(r'(^|_)(state|province|city|region)($|_)')),
    (re.compile(r'(^|_)(state|province)($|_)'), re.compile(r'(^|_)city($|_)')),
    (re.compile(r'(^|_)manager($|_)'), re.compile(r'(^|_)employee($|_)')),
    (re.compile(r'(^|_)level_?1($|_)'), re.compile(r'(^|_)level_?2($|_)')),
]


def is_leveled_pair(parent_column: str, child_column: str) -> bool:
    parent, child = normalize_name(parent_column), normalize_name(child_column)
    return any(p.search(parent) and c.search(child) for p, c in LEVEL_NAMING_PATTERNS)


def detect_path_separator(values: Iterable) -> Tuple[Optional[str], float]:
    """Most common separator among string values and the fraction of values it splits."""
    texts = [v for v in values if isinstance(v, str) and v.strip()]
    if not texts:
        return None, 0.0
    best, best_fraction = None, 0.0
    for separator in PATH_SEPARATORS:
        hits = sum(1 for t in texts if len(split_path(t, separator)) > 1)
        fraction = hits / len(texts)
        if fraction > best_fraction:
            best, best_fraction = separator, fraction
    return best, best_fraction


def split_path(text: str, separator: Optional[str]) -> List[str]:
    if not separator:
        return [text.strip()] if text.strip() else []
    return [part.strip() for part in text.split(separator) if part.strip()]


def _is_candidate(column_type: SemanticType, unique_count: int, max_cardinality: int) -> bool:
    if column_type not in (SemanticType.CATEGORICAL, SemanticType.TEXT):
        return False
    return 2 <= unique_count <= max_cardinality


def single_parent_confidence(dataset: Dataset, parent_column: str, child_column: str) -> Optional[float]:
    """
    Fraction of co-populated rows whose parent is the majority parent of their child value.

    Returns None when no row has both columns populated.
    """
    parents_by_child: Dict[str, Counter] = {}
    rows = 0
    for row in dataset.rows:
        parent, child = row.get(parent_column), row.get(child_column)
        if is_missing(parent) or is_missing(child):
            continue
        rows += 1
        parents_by_child.setdefault(str(child), Counter())[str(parent)] += 1
    if not rows:
        return None
    consistent = sum(counter.most_common(1)[0][1] for counter in parents_by_child.values())
    return consistent / rows


@track_performance("detect_hierarchies")
def detect(dataset: Dataset, columns: Optional[Sequence[str]] = None,
           column_types: Optional[Dict[str, SemanticType]] = None,
           min_confidence: float = DEFAULT_MIN_CONFIDENCE,
           max_cardinality: int = DEFAULT_MAX_CARDINALITY) -> List[HierarchyRelation]:
    """
    Propose parent -> child relations between columns, strongest first.

    Args:
        dataset: Rows to analyze
        columns: Columns to consider (default: all)
        column_types: Known semantic types; missing entries use the baseline detector
        min_confidence: Minimum single-parent confidence for a relation
        max_cardinality: Maximum distinct values for a hierarchy level

    Returns:
        Relations sorted by descending confidence; empty when nothing qualifies
    """
    columns = list(columns) if columns is not None else dataset.columns
    column_types = column_types or {}

    distinct: Dict[str, List[str]] = {}
    types: Dict[str, SemanticType] = {}
    for column in columns:
        values = dataset.column_values(column)
        distinct[column] = unique_strings(non_missing(values))
        types[column] = column_types.get(column) or detect_column_type(column, values)[0]

    candidates = [c for c in columns if _is_candidate(types[c], len(distinct[c]), max_cardinality)]
    relations: List[HierarchyRelation] = []

    for parent in candidates:
        for child in candidates:
            if parent == child or len(distinct[child]) <= len(distinct[parent]):
                continue
            confidence = single_parent_confidence(dataset, parent, child)
            if confidence is None or confidence < min_confidence:
                continue
            relation_type = "leveled" if is_leveled_pair(parent, child) else "categorical-tree"
            relations.append(HierarchyRelation(
                parent_column=parent,
                child_column=child,
                type=relation_type,
                confidence=round(confidence, 4),
                parent_values=distinct[parent],
                child_values=distinct[child],
                description=(
                    f"Each {child} value belongs to a single {parent} "
                    f"in {confidence:.0%} of rows"
                ),
            ))

    paired = {(r.parent_column, r.child_column) for r in relations}
    relations.extend(r for r in _detect_references(columns, distinct)
                     if (r.parent_column, r.child_column) not in paired)
    relations.extend(_detect_paths(dataset, columns, types))

    # Stable sort keeps discovery order among equal confidences
    relations.sort(key=lambda r: -r.confidence)
    logger.debug(f"Detected {len(relations)} hierarchy relations across {len(columns)} columns")
    return relations


def referenced_column(id_column: str, columns: Sequence[str]) -> Optional[str]:
    """The column an id column points at: 'customer_id' -> 'customer' or 'customer_name'."""
    tokens = name_tokens(id_column)
    if len(tokens) < 2 or tokens[-1] != "id":
        return None
    base = "_".join(tokens[:-1])
    targets = {base, f"{base}_name", f"{base.replace('_', '')}name"}
    for column in columns:
        if column != id_column and normalize_name(column) in targets:
            return column
    return None


def _detect_references(columns: Sequence[str], distinct: Dict[str, List[str]]) -> List[HierarchyRelation]:
    relations = []
    for column in columns:
        parent = referenced_column(column, columns)
        if parent is None or not distinct[column]:
            continue
        parent_values = set(distinct[parent])
        matched = sum(1 for v in distinct[column] if v in parent_values)
        fraction = matched / len(distinct[column])
        if fraction <= MIN_REFERENCE_MATCH:
            continue
        relations.append(HierarchyRelation(
            parent_column=parent,
            child_column=column,
            type="reference",
            confidence=round(min(fraction, MAX_REFERENCE_CONFIDENCE), 4),
            parent_values=distinct[parent],
            child_values=distinct[column],
            description=f"ID reference relationship: {parent} referenced by {column}",
        ))
    return relations


def _detect_paths(dataset: Dataset, columns: Sequence[str],
                  types: Dict[str, SemanticType]) -> List[HierarchyRelation]:
    relations = []
    for column in columns:
        if types[column] in (SemanticType.NUMERIC, SemanticType.DATE):
            continue
        values = non_missing(dataset.column_values(column))
        separator, fraction = detect_path_separator(values)
        if separator is None or fraction < MIN_PATH_FRACTION:
            continue
        paths = [split_path(v, separator) for v in values if isinstance(v, str)]
        relations.append(HierarchyRelation(
            parent_column=column,
            child_column=f"{column}{LEVELS_SUFFIX}",
            type="path",
            confidence=round(fraction, 4),
            parent_values=unique_strings(p[0] for p in paths if p),
            child_values=unique_strings(p[1] for p in paths if len(p) > 1),
            description=f"Hierarchical path structure in {column} using separator '{separator}'",
        ))
    return relations


def _build_level(paths: List[List[str]], level: int, max_depth: int,
                 max_breadth: int) -> List[HierarchyNode]:
    counts: Dict[str, int] = {}
    for path in paths:
        counts[path[level]] = counts.get(path[level], 0) + 1
    # sorted() is stable, so equal counts keep first-seen order
    ordered = sorted(counts.items(), key=lambda item: -item[1])

    nodes = []
    for name, count in ordered[:max_breadth]:
        deeper = [p for p in paths if p[level] == name and len(p) > level + 1]
        node = HierarchyNode(name=name, count=count, level=level)
        if deeper:
            if level + 1 < max_depth:
                node.children = _build_level(deeper, level + 1, max_depth, max_breadth)
            else:
                node.truncated = True
        nodes.append(node)

    omitted = ordered[max_breadth:]
    if omitted:
        nodes.append(HierarchyNode(
            name=f"(+{len(omitted)} more)",
            count=sum(count for _, count in omitted),
            level=level,
            truncated=True,
        ))
    return nodes


@track_performance("build_hierarchy_tree")
def build_tree(dataset: Dataset, parent_column: str, child_column: Optional[str] = None,
               max_depth: int = DEFAULT_MAX_DEPTH,
               max_breadth: int = DEFAULT_MAX_BREADTH) -> List[HierarchyNode]:
    """
    Build a bounded tree of value counts.

    With a child column, rows are grouped by parent value then child value.
    Without one (or with the synthetic '<column>_levels' child of a path
    relation) each value of the parent column is split into path levels,
    provided the column qualifies as a path column; otherwise rows are
    grouped by the plain parent value.
    Every level is ordered by descending count, ties in first-seen order.
    Siblings beyond max_breadth collapse into one '(+N more)' marker node
    and nodes whose children fall below max_depth are flagged truncated.
    """
    if max_depth < 1 or max_breadth < 1:
        raise ValueError("max_depth and max_breadth must be at least 1")

    if child_column is None or child_column == f"{parent_column}{LEVELS_SUFFIX}":
        values = non_missing(dataset.column_values(parent_column))
        separator, fraction = detect_path_separator(values)
        if fraction < MIN_PATH_FRACTION:
            separator = None
        paths = [split_path(str(v), separator) for v in values]
    else:
        paths = []
        for row in dataset.rows:
            parent, child = row.get(parent_column), row.get(child_column)
            if is_missing(parent):
                continue
            paths.append([str(parent)] if is_missing(child) else [str(parent), str(child)])

    paths = [p for p in paths if p]
    if not paths:
        return []
    return _build_level(paths, 0, max_depth, max_breadth)
