"""
Feedback learning: correction history, pattern mining, rule regeneration
and the background job that runs them.
"""
import logging
import threading
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from vizengine.core.errors import LearningJobError
from vizengine.core.schemas import (
    ChartFeedbackRecord, FeedbackPattern, FeedbackRecord, LearnedRule, LearningJobResult,
    SemanticType, utcnow,
)
from vizengine.core.storage import CHART_FEEDBACK, FEEDBACK, RecordStore, get_store
from vizengine.core.sanitization import sanitize_for_logging
from vizengine.services.chart_catalog import ALLOWED_CHART_TYPES
from vizengine.services.classifier import (
    CHART_PREFERENCE, COLUMN_NAME_PATTERN, VALUE_PATTERN, shape_pattern,
)
from vizengine.services.rules import RuleStore
from vizengine.services.values import dominant_shape, name_matches_pattern, normalize_name

logger = logging.getLogger(__name__)

DEFAULT_MIN_SUPPORT = 2
DEFAULT_MIN_RULE_CONFIDENCE = 0.6
NEUTRAL_CONFIDENCE = 0.5

# A value-shape pattern must be seen on at least this many distinct column names
MIN_SHAPE_COLUMNS = 2


def pattern_confidence(occurrences: int, agreement: float) -> float:
    """Confidence grows with repetition (0.8 at the minimum, capped at 1.0) scaled by agreement."""
    return round(min(1.0, 0.8 + 0.1 * (occurrences - 1)) * agreement, 4)


class FeedbackLearner:
    """Turns accumulated user corrections into LearnedRules."""

    def __init__(self, store: Optional[RecordStore] = None, rule_store: Optional[RuleStore] = None,
                 min_support: int = DEFAULT_MIN_SUPPORT,
                 min_rule_confidence: float = DEFAULT_MIN_RULE_CONFIDENCE):
        self._store = store or get_store()
        self.rules = rule_store or RuleStore(self._store)
        self.min_support = min_support
        self.min_rule_confidence = min_rule_confidence

    # Recording

    def record_correction(self, record: Union[FeedbackRecord, Dict[str, Any]]) -> Optional[FeedbackRecord]:
        """
        Append a type correction to the history.

        Never raises: invalid records and corrections that do not change
        the type are logged and dropped (None is returned).
        """
        try:
            if not isinstance(record, FeedbackRecord):
                record = FeedbackRecord.model_validate(record)
        except PydanticValidationError as e:
            logger.warning(f"Dropping invalid feedback record: {e.error_count()} validation errors")
            return None

        if record.original_type == record.corrected_type:
            logger.info(
                f"Dropping feedback for '{sanitize_for_logging(record.column_name)}': "
                f"type unchanged ({record.corrected_type.value})"
            )
            return None

        return self._append(FEEDBACK, record)

    def record_chart_correction(self, record: Union[ChartFeedbackRecord, Dict[str, Any]]) -> Optional[ChartFeedbackRecord]:
        """Append a chart type correction. Same contract as record_correction."""
        try:
            if not isinstance(record, ChartFeedbackRecord):
                record = ChartFeedbackRecord.model_validate(record)
        except PydanticValidationError as e:
            logger.warning(f"Dropping invalid chart feedback record: {e.error_count()} validation errors")
            return None

        if record.corrected_chart_type not in ALLOWED_CHART_TYPES:
            logger.info(f"Dropping chart feedback with unsupported type '{sanitize_for_logging(record.corrected_chart_type)}'")
            return None
        if record.suggested_chart_type == record.corrected_chart_type:
            logger.info("Dropping chart feedback: chart type unchanged")
            return None

        return self._append(CHART_FEEDBACK, record)

    def _append(self, collection: str, record):
        try:
            self._store.create(collection, record.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Failed to store {collection} record: {e}", exc_info=True)
            return None
        logger.debug(f"Recorded {collection} entry")
        return record

    def feedback_history(self, user_id: Optional[str] = None) -> List[FeedbackRecord]:
        return [FeedbackRecord.model_validate(r) for r in self._store.list(FEEDBACK, owner_id=user_id)]

    def chart_feedback_history(self, user_id: Optional[str] = None) -> List[ChartFeedbackRecord]:
        return [ChartFeedbackRecord.model_validate(r) for r in self._store.list(CHART_FEEDBACK, owner_id=user_id)]

    # Mining

    def mine_patterns(self) -> List[FeedbackPattern]:
        """
        Group the correction history into candidate patterns.

        Type corrections are grouped by normalized column name and by the
        dominant shape of their sample values, chart corrections by data
        shape signature. Only groups seen at least min_support times count.
        Agreement is the share of all records with the same feature that
        reached the same correction.
        """
        feedback = self.feedback_history()
        patterns: List[FeedbackPattern] = []

        name_totals: Counter = Counter()
        name_groups: Counter = Counter()
        shape_totals: Counter = Counter()
        shape_groups: Counter = Counter()
        shape_columns: Dict[tuple, set] = defaultdict(set)

        for record in feedback:
            name = normalize_name(record.column_name)
            transition = (record.original_type.value, record.corrected_type.value)
            if name:
                name_totals[name] += 1
                name_groups[(name,) + transition] += 1

            shape = dominant_shape(record.sample_values)
            if shape:
                shape_totals[shape] += 1
                shape_groups[(shape,) + transition] += 1
                shape_columns[(shape,) + transition].add(name)

        for (name, original, corrected), occurrences in name_groups.items():
            if occurrences < self.min_support:
                continue
            agreement = occurrences / name_totals[name]
            patterns.append(FeedbackPattern(
                rule_type=COLUMN_NAME_PATTERN,
                pattern=name,
                original_type=original,
                target_type=SemanticType(corrected),
                occurrences=occurrences,
                agreement=round(agreement, 4),
                confidence=pattern_confidence(occurrences, agreement),
            ))

        for key, occurrences in shape_groups.items():
            shape, original, corrected = key
            if occurrences < self.min_support or len(shape_columns[key]) < MIN_SHAPE_COLUMNS:
                continue
            agreement = occurrences / shape_totals[shape]
            patterns.append(FeedbackPattern(
                rule_type=VALUE_PATTERN,
                pattern=shape_pattern(shape),
                original_type=original,
                target_type=SemanticType(corrected),
                occurrences=occurrences,
                agreement=round(agreement, 4),
                confidence=pattern_confidence(occurrences, agreement),
            ))

        chart_totals: Counter = Counter()
        chart_groups: Counter = Counter()
        for record in self.chart_feedback_history():
            chart_totals[record.data_shape] += 1
            chart_groups[(record.data_shape, record.corrected_chart_type)] += 1

        for (data_shape, chart_type), occurrences in chart_groups.items():
            if occurrences < self.min_support:
                continue
            agreement = occurrences / chart_totals[data_shape]
            patterns.append(FeedbackPattern(
                rule_type=CHART_PREFERENCE,
                pattern=data_shape,
                target_chart_type=chart_type,
                occurrences=occurrences,
                agreement=round(agreement, 4),
                confidence=pattern_confidence(occurrences, agreement),
            ))

        patterns.sort(key=lambda p: (-p.confidence, p.rule_type, p.pattern))
        logger.info(f"Mined {len(patterns)} patterns from {len(feedback)} corrections")
        return patterns

    def regenerate_rules(self, patterns: Optional[List[FeedbackPattern]] = None) -> List[LearnedRule]:
        """
        Upsert a LearnedRule for every sufficiently confident pattern.

        usage_count and success_rate start from a back-test: each historical
        record sharing the pattern's feature counts as one consultation and
        the share that agreed is the success rate.
        """
        if patterns is None:
            patterns = self.mine_patterns()

        updated = []
        for pattern in patterns:
            if pattern.confidence < self.min_rule_confidence:
                continue
            consulted = round(pattern.occurrences / pattern.agreement) if pattern.agreement else pattern.occurrences
            rule = LearnedRule(
                rule_type=pattern.rule_type,
                pattern=pattern.pattern,
                target_type=pattern.target_type,
                target_chart_type=pattern.target_chart_type,
                confidence_score=pattern.confidence,
                success_rate=pattern.agreement,
                usage_count=consulted,
                support=pattern.occurrences,
            )
            updated.append(self.rules.upsert(rule))

        logger.info(f"Regenerated {len(updated)} rules from {len(patterns)} patterns")
        return updated

    def get_confidence(self, column_name: str, column_type: SemanticType) -> float:
        """Best active name-rule confidence for this column and type, else neutral 0.5."""
        scores = [
            rule.confidence_score for rule in self.rules.active_rules()
            if rule.rule_type == COLUMN_NAME_PATTERN
            and rule.target_type == column_type
            and name_matches_pattern(column_name, rule.pattern)
        ]
        return max(scores) if scores else NEUTRAL_CONFIDENCE


class LearningJobScheduler:
    """
    Runs mine -> regenerate on a fixed interval or on demand.

    At most one run is in flight: a trigger that finds a run in progress
    returns a 'skipped' result instead of queueing. stop() cancels the
    timer and waits for the background thread; an in-flight run either
    finishes or stops between mining and regeneration as 'cancelled'.
    """

    def __init__(self, learner: FeedbackLearner, interval_seconds: float = 300,
                 enabled: bool = True):
        self.learner = learner
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._cancel_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_result: Optional[LearningJobResult] = None
        self._runs = 0

    def start(self):
        if not self.enabled:
            logger.info("Automatic learning disabled; jobs run on manual trigger only")
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._cancel_event.clear()
        self._thread = threading.Thread(target=self._loop, name="learning-job-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Learning job scheduled every {self.interval_seconds:g}s")

    def stop(self, timeout: Optional[float] = None):
        self._cancel_event.set()
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        # Wait for a manually triggered run still holding the lock
        if self._run_lock.acquire(timeout=-1 if timeout is None else timeout):
            self._run_lock.release()
        logger.info("Learning job scheduler stopped")

    def _loop(self):
        while not self._stop_event.wait(self.interval_seconds):
            self.trigger()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def trigger(self) -> LearningJobResult:
        """Run the job now unless a run is already in progress."""
        if not self._run_lock.acquire(blocking=False):
            logger.info("Learning job already running; trigger ignored")
            return LearningJobResult(status="skipped", finished_at=utcnow())
        try:
            result = self._run()
            self._last_result = result
            self._runs += 1
            return result
        finally:
            self._run_lock.release()

    def _run(self) -> LearningJobResult:
        started_at = utcnow()
        try:
            try:
                patterns = self.learner.mine_patterns()
            except Exception as e:
                raise LearningJobError(f"Pattern mining failed: {e}") from e

            if self._cancel_event.is_set():
                logger.info("Learning job cancelled after mining")
                return LearningJobResult(status="cancelled", patterns_found=len(patterns),
                                         started_at=started_at, finished_at=utcnow())

            try:
                rules = self.learner.regenerate_rules(patterns)
                active = len(self.learner.rules.active_rules())
            except Exception as e:
                raise LearningJobError(f"Rule regeneration failed: {e}") from e
        except LearningJobError as e:
            logger.error(str(e), exc_info=True)
            return LearningJobResult(status="failed", started_at=started_at,
                                     finished_at=utcnow(), error=str(e))

        return LearningJobResult(
            status="completed",
            patterns_found=len(patterns),
            rules_updated=len(rules),
            active_rules=active,
            started_at=started_at,
            finished_at=utcnow(),
        )

    def status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "scheduled": self._thread is not None and self._thread.is_alive(),
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "runs": self._runs,
            "last_result": self._last_result.model_dump(mode="json") if self._last_result else None,
        }
