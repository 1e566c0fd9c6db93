"""
Engine facade: the function surface consumed by the API and other callers.

Profiling, classification, hierarchy detection and recommendation are
pure functions over a Dataset; the facade adds the stateful parts around
them: manual type overrides, the last active classification per column,
feedback recording and the learning job lifecycle.
"""
import logging
import threading
from typing import Dict, List, Optional, Sequence

from vizengine.core.config import Settings, get_settings
from vizengine.core.errors import FeedbackSubmissionError, ValidationError
from vizengine.core.performance import track_performance
from vizengine.core.sanitization import sanitize_for_logging, sanitize_query
from vizengine.core.schemas import (
    ChartFeedbackRecord, ChartSuggestion, ColumnClassification, ColumnProfile, Dataset,
    FeedbackRecord, HierarchyNode, HierarchyRelation, LearnedRule, LearningJobResult, SemanticType,
)
from vizengine.core.storage import RecordStore, get_store
from vizengine.services import classifier, hierarchy, inference, profiler
from vizengine.services.learning import FeedbackLearner, LearningJobScheduler
from vizengine.services.rules import RuleStore

logger = logging.getLogger(__name__)

FEEDBACK_SAMPLE_SIZE = 10


class VisualizationEngine:
    """Profiles, classifies and recommends, and learns from corrections."""

    def __init__(self, settings: Optional[Settings] = None, store: Optional[RecordStore] = None):
        self.settings = settings or get_settings()
        store = store or get_store()
        self.rule_store = RuleStore(store)
        self.learner = FeedbackLearner(
            store,
            self.rule_store,
            min_support=self.settings.min_pattern_support,
            min_rule_confidence=self.settings.min_rule_confidence,
        )
        self.scheduler = LearningJobScheduler(
            self.learner,
            interval_seconds=self.settings.learning_interval_seconds,
            enabled=self.settings.auto_learning_enabled,
        )
        self._lock = threading.Lock()
        self._overrides: Dict[str, SemanticType] = {}
        self._active: Dict[str, ColumnClassification] = {}

    # Lifecycle

    def start(self):
        self.scheduler.start()

    def shutdown(self):
        self.scheduler.stop()

    # Profiling and classification

    @track_performance("profile_column")
    def profile_column(self, dataset: Dataset, column_name: str) -> ColumnProfile:
        """Profile a column using its override or current classification as type."""
        column_type = self.classify_column(dataset, column_name).type
        return profiler.profile(dataset, column_name, column_type)

    @track_performance("classify_column")
    def classify_column(self, dataset: Dataset, column_name: str) -> ColumnClassification:
        """
        Classify a column, honouring a manual override if one is set.

        The result becomes the column's active classification, which later
        overrides compare against to decide whether to record feedback.
        """
        with self._lock:
            override = self._overrides.get(column_name)
        if override is not None:
            return ColumnClassification(column_name=column_name, type=override,
                                        confidence=1.0, source="manual")

        result = classifier.classify(dataset, column_name, self.rule_store.active_rules())
        with self._lock:
            self._active[column_name] = result
        if result.rule_id:
            self.rule_store.mark_used(result.rule_id)
        return result

    def classify_dataset(self, dataset: Dataset) -> List[ColumnClassification]:
        return [self.classify_column(dataset, column) for column in dataset.columns]

    def override_column_type(self, column_name: str, new_type: SemanticType,
                             dataset: Optional[Dataset] = None) -> ColumnClassification:
        """
        Force a column's type until replaced or cleared.

        When the forced type differs from the previously active
        classification a FeedbackRecord is appended; if that classification
        came from a learned rule, the rule is credited or debited.
        """
        new_type = SemanticType(new_type)
        with self._lock:
            previous = self._overrides.get(column_name)
            active = self._active.get(column_name)

        if previous is not None:
            original = ColumnClassification(column_name=column_name, type=previous,
                                            confidence=1.0, source="manual")
        elif active is not None:
            original = active
        elif dataset is not None and column_name in dataset.columns:
            original = classifier.classify(dataset, column_name, self.rule_store.active_rules())
        else:
            original = None

        if original is not None and original.rule_id:
            self.rule_store.record_outcome(original.rule_id, confirmed=original.type == new_type)

        if original is not None and original.type != new_type:
            samples = dataset.column_values(column_name)[:FEEDBACK_SAMPLE_SIZE] if dataset else []
            self.learner.record_correction(FeedbackRecord(
                column_name=column_name,
                original_type=original.type,
                corrected_type=new_type,
                sample_values=samples,
            ))

        with self._lock:
            self._overrides[column_name] = new_type
        logger.info(f"Column '{sanitize_for_logging(column_name)}' overridden to {new_type.value}")
        return ColumnClassification(column_name=column_name, type=new_type,
                                    confidence=1.0, source="manual")

    def clear_override(self, column_name: str) -> bool:
        with self._lock:
            return self._overrides.pop(column_name, None) is not None

    def column_types(self, dataset: Dataset, columns: Optional[Sequence[str]] = None) -> Dict[str, SemanticType]:
        names = list(columns) if columns is not None else dataset.columns
        return {name: self.classify_column(dataset, name).type for name in names}

    # Hierarchies

    def detect_hierarchies(self, dataset: Dataset,
                           columns: Optional[Sequence[str]] = None) -> List[HierarchyRelation]:
        return hierarchy.detect(
            dataset,
            columns,
            column_types=self.column_types(dataset, columns),
            min_confidence=self.settings.hierarchy_min_confidence,
            max_cardinality=self.settings.hierarchy_max_cardinality,
        )

    def build_hierarchy_tree(self, dataset: Dataset, parent: str, child: Optional[str] = None,
                             max_depth: Optional[int] = None,
                             max_breadth: Optional[int] = None) -> List[HierarchyNode]:
        return hierarchy.build_tree(
            dataset,
            parent,
            child,
            max_depth=self.settings.tree_max_depth if max_depth is None else max_depth,
            max_breadth=self.settings.tree_max_breadth if max_breadth is None else max_breadth,
        )

    # Recommendation

    @track_performance("suggest_chart")
    def suggest_chart(self, dataset: Dataset, columns: Optional[Sequence[str]] = None,
                      query: Optional[str] = None) -> ChartSuggestion:
        """
        Recommend a chart for the dataset.

        Raises:
            ValidationError: The dataset is empty, has no columns or fewer than 2 rows
        """
        names = list(columns) if columns is not None else dataset.columns
        # Refused requests must not count as rule usage
        issues = inference.validate_data(dataset, names)
        if issues:
            raise ValidationError(issues)
        classified = [self.classify_column(dataset, name) for name in names]
        return inference.suggest(dataset, classified, sanitize_query(query), self.rule_store.active_rules())

    # Feedback and learning

    def record_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        """
        Explicitly submit a type correction.

        Raises:
            FeedbackSubmissionError: The record was rejected or could not be stored
        """
        stored = self.learner.record_correction(record)
        if stored is None:
            raise FeedbackSubmissionError(
                f"Feedback for column '{sanitize_for_logging(getattr(record, 'column_name', ''))}' was rejected"
            )
        return stored

    def record_chart_feedback(self, record: ChartFeedbackRecord) -> ChartFeedbackRecord:
        stored = self.learner.record_chart_correction(record)
        if stored is None:
            raise FeedbackSubmissionError("Chart feedback was rejected")
        return stored

    @track_performance("learning_job")
    def run_learning_job(self) -> LearningJobResult:
        return self.scheduler.trigger()

    def get_active_rules(self) -> List[LearnedRule]:
        return self.rule_store.active_rules()

    def get_confidence(self, column_name: str, column_type: SemanticType) -> float:
        return self.learner.get_confidence(column_name, SemanticType(column_type))


# Global engine instance
_engine: Optional[VisualizationEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> VisualizationEngine:
    """Get the shared engine (singleton pattern)."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = VisualizationEngine()
    return _engine


def reset_engine():
    """Shut down and drop the shared engine (for testing)."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.shutdown()
        _engine = None
