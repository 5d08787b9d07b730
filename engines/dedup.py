"""Guard against generating the same insight twice."""

from __future__ import annotations

from typing import FrozenSet, Iterable, Optional, Set, Tuple

# Statuses that block regeneration; only pruning frees the key again.
BLOCKING_STATUSES = frozenset({"active", "pending", "resolved", "dismissed"})

DedupKey = Tuple[str, Optional[str], FrozenSet[str]]
GroupMember = Tuple[str, Optional[str], str]


def dedup_key(rule_name: str, student_ids: Iterable[str], assignment_id: Optional[str]) -> DedupKey:
    return (rule_name, assignment_id, frozenset(student_ids))


class DeduplicationGuard:
    """Answers whether an insight with the same rule, scope and assignment already exists."""

    def __init__(self, insight_store):
        self.insight_store = insight_store
        self._seen: Set[DedupKey] = set()
        self._group_members: Set[GroupMember] = set()
        self._loaded = False

    def _load(self) -> None:
        for insight in self.insight_store.get_all():
            if insight.status in BLOCKING_STATUSES:
                self._add(insight.rule_name, insight.student_ids, insight.assignment_id, insight.insight_type)
        self._loaded = True

    def _add(self, rule_name, student_ids, assignment_id, insight_type=None) -> None:
        student_ids = list(student_ids)
        self._seen.add(dedup_key(rule_name, student_ids, assignment_id))
        if insight_type and len(student_ids) > 1:
            for student_id in student_ids:
                self._group_members.add((insight_type, assignment_id, student_id))

    def exists(self, rule_name: str, student_ids: Iterable[str], assignment_id: Optional[str]) -> bool:
        if not self._loaded:
            self._load()
        return dedup_key(rule_name, student_ids, assignment_id) in self._seen

    def covered_by_group(self, insight_type: str, student_id: str, assignment_id: Optional[str]) -> bool:
        """True when a group insight of the same type already includes this student on the assignment."""
        if not self._loaded:
            self._load()
        return (insight_type, assignment_id, student_id) in self._group_members

    def remember(self, rule_name: str, student_ids: Iterable[str], assignment_id: Optional[str],
                 insight_type: Optional[str] = None) -> None:
        """Record a key emitted earlier in the current batch."""
        if not self._loaded:
            self._load()
        self._add(rule_name, student_ids, assignment_id, insight_type)
