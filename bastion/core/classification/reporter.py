from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from bastion.core.classification.levels import ClassificationLevel, all_levels
from bastion.core.classification.models import (
    Backup,
    ClassificationStatus,
    ClassificationSummary,
    ComplianceReport,
    DataTypeStats,
    Schedule,
    ScheduleClassification,
    ScheduleSummary,
)
from bastion.core.errors import ClassificationUnavailableError


def _effective(c: Optional[ScheduleClassification]) -> Tuple[ClassificationLevel, List[str]]:
    # no record counts as public with no tags
    if c is None:
        return ClassificationLevel.PUBLIC, []
    return c.level, list(c.data_types)


@dataclass
class AggregateReporter:
    """
    Read-only organization roll-ups. Reads through the store's collaborator methods only.
    """

    store: Any

    def _schedules(self, org_id: str) -> List[Tuple[Schedule, Optional[ScheduleClassification]]]:
        try:
            return [(s, self.store.get_schedule_classification(s.id)) for s in self.store.list_schedules_by_org(org_id)]
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Schedule classifications are unavailable.", org_id=str(org_id), error=str(e)) from e

    def _backups(self, org_id: str) -> Dict[ClassificationLevel, List[Backup]]:
        try:
            return {lvl: list(self.store.list_backups_by_org_and_level(org_id, lvl, None)) for lvl in all_levels()}
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Backup classifications are unavailable.", org_id=str(org_id), error=str(e)) from e

    def summarize(self, org_id: str) -> ClassificationSummary:
        schedules = self._schedules(org_id)
        backups = self._backups(org_id)
        return self._summary(schedules, backups)

    def _summary(
        self,
        schedules: List[Tuple[Schedule, Optional[ScheduleClassification]]],
        backups: Dict[ClassificationLevel, List[Backup]],
    ) -> ClassificationSummary:
        by_level: Counter = Counter()
        by_tag: Counter = Counter()
        for _s, c in schedules:
            level, tags = _effective(c)
            by_level[level.value] += 1
            by_tag.update(tags)

        backups_by_level: Counter = Counter()
        backups_by_tag: Counter = Counter()
        unavailable = 0
        for level, items in backups.items():
            for b in items:
                backups_by_level[level.value] += 1
                if b.classification is None:
                    continue
                backups_by_tag.update(b.classification.data_types)
                if b.classification.status == ClassificationStatus.UNAVAILABLE:
                    unavailable += 1

        return ClassificationSummary(
            total_schedules=len(schedules),
            total_backups=sum(backups_by_level.values()),
            by_level=dict(by_level),
            backups_by_level=dict(backups_by_level),
            by_data_type=dict(by_tag),
            backups_by_data_type=dict(backups_by_tag),
            restricted_count=by_level.get(ClassificationLevel.RESTRICTED.value, 0),
            confidential_count=by_level.get(ClassificationLevel.CONFIDENTIAL.value, 0),
            internal_count=by_level.get(ClassificationLevel.INTERNAL.value, 0),
            public_count=by_level.get(ClassificationLevel.PUBLIC.value, 0),
            unavailable_backups=unavailable,
        )

    def compliance_report(self, org_id: str) -> ComplianceReport:
        schedules = self._schedules(org_id)
        backups = self._backups(org_id)
        summary = self._summary(schedules, backups)

        by_level: Dict[str, List[ScheduleSummary]] = {lvl.value: [] for lvl in all_levels()}
        unclassified = 0
        for s, c in schedules:
            if c is None:
                unclassified += 1
            level, tags = _effective(c)
            by_level[level.value].append(
                ScheduleSummary(
                    id=s.id,
                    name=s.name,
                    level=level,
                    data_types=tags,
                    paths=list(s.paths),
                    agent_id=s.agent_id,
                    auto_classified=None if c is None else c.auto_classified,
                )
            )

        breakdown: Dict[str, DataTypeStats] = {}
        for tag, n in summary.by_data_type.items():
            breakdown.setdefault(tag, DataTypeStats()).schedule_count = n
        for tag, n in summary.backups_by_data_type.items():
            breakdown.setdefault(tag, DataTypeStats()).backup_count = n

        return ComplianceReport(
            org_id=str(org_id),
            summary=summary,
            schedules_by_level=by_level,
            data_type_breakdown=dict(sorted(breakdown.items())),
            unclassified_count=unclassified,
            unavailable_backups=summary.unavailable_backups,
        )
