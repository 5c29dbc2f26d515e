from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from bastion.core.classification.levels import max_level
from bastion.core.classification.matcher import normalize_path
from bastion.core.classification.models import (
    ClassificationRule,
    ClassificationStatus,
    ResolvedClassification,
    Schedule,
    ScheduleClassification,
)
from bastion.core.classification.resolver import RuleResolver, visible_rules


@dataclass
class ScheduleClassifier:
    resolver: RuleResolver = field(default_factory=RuleResolver)

    def eligible_paths(self, paths: Iterable[str], excludes: Sequence[str] = ()) -> List[str]:
        out: List[str] = []
        seen = set()
        for raw in paths or []:
            p = normalize_path(raw)
            if not p or p in seen:
                continue
            seen.add(p)
            if self.resolver.matcher.any_matches(list(excludes or []), p):
                continue
            out.append(p)
        return out

    def classify_paths(
        self,
        paths: Iterable[str],
        rules: Iterable[ClassificationRule],
        *,
        org_id: Optional[str],
        excludes: Sequence[str] = (),
    ) -> ResolvedClassification:
        """
        Most sensitive path decides the level; tags are the union over all paths.
        """
        eligible = self.eligible_paths(paths, excludes)
        rule_list = visible_rules(org_id, rules) if org_id is not None else list(rules or [])
        if not eligible:
            return ResolvedClassification()

        levels = []
        tags = set()
        matched_ids: List[str] = []
        winner: Optional[str] = None
        any_match = False
        for p in eligible:
            res = self.resolver.resolve(p, rule_list, org_id=org_id)
            if res.status != ClassificationStatus.RESOLVED:
                continue
            any_match = True
            if winner is None or res.level.rank > max_level(*levels).rank:
                winner = res.winning_rule_id
            levels.append(res.level)
            tags.update(res.data_types)
            for rid in res.matched_rule_ids:
                if rid not in matched_ids:
                    matched_ids.append(rid)

        if not any_match:
            return ResolvedClassification(paths=eligible)
        return ResolvedClassification(
            level=max_level(*levels),
            data_types=sorted(tags),
            status=ClassificationStatus.RESOLVED,
            winning_rule_id=winner,
            matched_rule_ids=matched_ids,
            paths=eligible,
        )

    def classify(self, schedule: Schedule, rules: Iterable[ClassificationRule]) -> ScheduleClassification:
        res = self.classify_paths(schedule.paths, rules, org_id=schedule.org_id, excludes=schedule.excludes)
        return ScheduleClassification(
            schedule_id=schedule.id,
            level=res.level,
            data_types=list(res.data_types),
            auto_classified=True,
            status=res.status,
        )


def keep_existing(existing: Optional[ScheduleClassification], *, reset: bool = False) -> bool:
    """True when an operator override must survive automatic recomputation."""
    return existing is not None and not existing.auto_classified and not reset
