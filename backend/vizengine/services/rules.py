"""
Learned rule persistence and outcome tracking.

Rules are created and refreshed only by the learning job. Consumers read
them through active_rules() and report back with mark_used() when a rule
influenced a classification and record_outcome() when a later correction
confirmed or contradicted it.
"""
import logging
import threading
from typing import List, Optional, Tuple

from vizengine.core.schemas import LearnedRule, utcnow
from vizengine.core.storage import RULES, RecordStore, get_store

logger = logging.getLogger(__name__)

# Weight of the newest outcome in the success rate moving average
SUCCESS_RATE_ALPHA = 0.1
# Rules falling below this success rate after enough uses are retired
MIN_SUCCESS_RATE = 0.3
MIN_USES_BEFORE_RETIRING = 10


def rule_key(rule: LearnedRule) -> Tuple[str, str, str]:
    target = rule.target_type.value if rule.target_type else (rule.target_chart_type or "")
    return rule.rule_type, rule.pattern, target


class RuleStore:
    """LearnedRule repository backed by a RecordStore collection."""

    def __init__(self, store: Optional[RecordStore] = None):
        self._store = store or get_store()
        # Serializes read-modify-write cycles on rule records
        self._lock = threading.Lock()

    @staticmethod
    def _to_record(rule: LearnedRule) -> dict:
        return rule.model_dump(mode="json", exclude={"id"})

    def list_rules(self) -> List[LearnedRule]:
        return [LearnedRule.model_validate(r) for r in self._store.list(RULES)]

    def active_rules(self) -> List[LearnedRule]:
        return [rule for rule in self.list_rules() if rule.is_active]

    def get(self, rule_id: str) -> Optional[LearnedRule]:
        record = self._store.get(RULES, rule_id)
        return LearnedRule.model_validate(record) if record else None

    def find(self, key: Tuple[str, str, str]) -> Optional[LearnedRule]:
        return next((r for r in self.list_rules() if rule_key(r) == key), None)

    def upsert(self, rule: LearnedRule) -> LearnedRule:
        """
        Insert a rule or refresh the one with the same (type, pattern, target).

        A refresh replaces support and confidence. Live usage and success
        tracking survive it, so usage_count never decreases and a retired
        rule stays retired.
        """
        with self._lock:
            existing = self.find(rule_key(rule))
            if existing is None:
                rule_id = self._store.create(RULES, self._to_record(rule))
                logger.info(f"Created rule {rule.rule_type}:{rule.pattern} -> {rule_key(rule)[2]}")
                return rule.model_copy(update={"id": rule_id})

            refreshed = existing.model_copy(update={
                "confidence_score": rule.confidence_score,
                "support": rule.support,
                "usage_count": max(existing.usage_count, rule.usage_count),
                "updated_at": utcnow(),
            })
            self._store.update(RULES, existing.id, self._to_record(refreshed))
            return refreshed

    def mark_used(self, rule_id: str) -> Optional[LearnedRule]:
        """Count one consultation of a rule."""
        with self._lock:
            rule = self.get(rule_id)
            if rule is None:
                return None
            rule = rule.model_copy(update={"usage_count": rule.usage_count + 1, "updated_at": utcnow()})
            self._store.update(RULES, rule_id, self._to_record(rule))
            return rule

    def record_outcome(self, rule_id: str, confirmed: bool) -> Optional[LearnedRule]:
        """
        Fold a confirmation or contradiction into the rule's success rate.

        Returns the updated rule, or None if it no longer exists.
        """
        with self._lock:
            rule = self.get(rule_id)
            if rule is None:
                logger.debug(f"Outcome for unknown rule {rule_id} ignored")
                return None

            outcome = 1.0 if confirmed else 0.0
            success_rate = (1 - SUCCESS_RATE_ALPHA) * rule.success_rate + SUCCESS_RATE_ALPHA * outcome
            is_active = rule.is_active
            if success_rate < MIN_SUCCESS_RATE and rule.usage_count > MIN_USES_BEFORE_RETIRING:
                is_active = False
                logger.info(
                    f"Deactivated rule {rule.rule_type}:{rule.pattern} "
                    f"(success rate {success_rate:.2f} after {rule.usage_count} uses)"
                )

            rule = rule.model_copy(update={
                "success_rate": round(success_rate, 6),
                "is_active": is_active,
                "updated_at": utcnow(),
            })
            self._store.update(RULES, rule_id, self._to_record(rule))
            return rule

    def delete(self, rule_id: str) -> bool:
        return self._store.delete(RULES, rule_id)
