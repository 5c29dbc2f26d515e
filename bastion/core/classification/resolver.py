from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from bastion.core.classification.matcher import PatternMatcher, normalize_path
from bastion.core.classification.models import ClassificationRule, ClassificationStatus, ResolvedClassification


DEFAULT_CLASSIFICATION = ResolvedClassification()


def visible_rules(org_id: Optional[str], rules: Iterable[ClassificationRule]) -> List[ClassificationRule]:
    """
    Enabled rules an organization may use: its own plus every built-in.
    Rules owned by another organization never take part, even if a collaborator returned them.
    """
    return [r for r in rules or [] if r.enabled and r.visible_to(org_id)]


def rank_key(rule: ClassificationRule) -> Tuple[int, int, int, str, str]:
    """
    Sort key, ascending = better:
    priority desc, severity desc, custom before built-in, earliest created, then id.
    """
    return (
        -int(rule.priority),
        -rule.level.rank,
        1 if rule.is_builtin else 0,
        str(rule.created_at),
        str(rule.id),
    )


def rank_rules(rules: Iterable[ClassificationRule]) -> List[ClassificationRule]:
    return sorted(rules, key=rank_key)


@dataclass
class RuleResolver:
    """
    Two independent tracks over the matching rules:
    - level comes from the single top-ranked rule
    - data types are the union over every matching rule
    """

    matcher: PatternMatcher = field(default_factory=PatternMatcher)

    def matching_rules(self, path: str, rules: Iterable[ClassificationRule]) -> List[ClassificationRule]:
        return [r for r in rules or [] if self.matcher.rule_matches(r, path)]

    def resolve(self, path: str, rules: Iterable[ClassificationRule], *, org_id: Optional[str] = None) -> ResolvedClassification:
        norm = normalize_path(path)
        if not norm:
            return DEFAULT_CLASSIFICATION
        if org_id is not None:
            candidates = visible_rules(org_id, rules)
        else:
            candidates = [r for r in rules or [] if r.enabled]
            owners = {r.org_id for r in candidates if not r.is_builtin}
            if len(owners) > 1:
                raise ValueError(f"rule set mixes custom rules from {len(owners)} organizations; pass org_id")
        matched = rank_rules(self.matching_rules(norm, candidates))
        if not matched:
            return ResolvedClassification(paths=[norm])

        winner = matched[0]
        tags = set()
        for r in matched:
            tags.update(r.data_types)
        return ResolvedClassification(
            level=winner.level,
            data_types=sorted(tags),
            status=ClassificationStatus.RESOLVED,
            winning_rule_id=winner.id,
            matched_rule_ids=[r.id for r in matched],
            paths=[norm],
        )
