from __future__ import annotations

import itertools

import pytest

from bastion.core.classification.levels import ClassificationLevel, max_level
from bastion.core.classification.models import ClassificationRule, ClassificationStatus
from bastion.core.classification.resolver import RuleResolver, rank_rules, visible_rules


_seq = itertools.count()


def _rule(pattern, level, tags=(), *, org="o1", priority=0, builtin=False, created=None, enabled=True, rid=None):
    n = next(_seq)
    return ClassificationRule(
        id=rid or f"r{n:04d}",
        org_id=None if builtin else org,
        pattern=pattern,
        level=ClassificationLevel(level),
        data_types=list(tags),
        is_builtin=builtin,
        priority=priority,
        enabled=enabled,
        created_at=created or f"2026-01-01T00:00:{n % 60:02d}.000000Z",
    )


def test_levels_are_ranked_not_lexical():
    assert ClassificationLevel.INTERNAL < ClassificationLevel.CONFIDENTIAL
    assert ClassificationLevel.RESTRICTED > ClassificationLevel.CONFIDENTIAL
    assert max_level("internal", "confidential", "public") == ClassificationLevel.CONFIDENTIAL
    assert max_level("bogus", None) == ClassificationLevel.PUBLIC
    assert max_level() == ClassificationLevel.PUBLIC


def test_no_match_is_public_default():
    rules = [_rule("/finance/**", "confidential", ["proprietary"])]
    res = RuleResolver().resolve("/data/readme.txt", rules, org_id="o1")
    assert res.level == ClassificationLevel.PUBLIC
    assert res.data_types == []
    assert res.status == ClassificationStatus.DEFAULT
    assert res.winning_rule_id is None


def test_empty_path_is_default():
    rules = [_rule("**", "restricted")]
    res = RuleResolver().resolve("", rules, org_id="o1")
    assert res.status == ClassificationStatus.DEFAULT
    assert res.level == ClassificationLevel.PUBLIC


def test_priority_beats_severity_and_tags_are_union():
    low = _rule("**/pii/**", "restricted", ["pii"], priority=0)
    high = _rule("/data/**", "internal", ["general"], priority=10)
    res = RuleResolver().resolve("/data/pii/a.csv", [low, high], org_id="o1")
    assert res.level == ClassificationLevel.INTERNAL
    assert res.winning_rule_id == high.id
    # the losing rule still contributes its tags
    assert res.data_types == ["general", "pii"]
    assert res.matched_rule_ids == [high.id, low.id]


def test_severity_breaks_priority_tie():
    a = _rule("/data/**", "internal", ["general"])
    b = _rule("**/hr/**", "confidential", ["pii"])
    res = RuleResolver().resolve("/data/hr/x", [a, b], org_id="o1")
    assert res.level == ClassificationLevel.CONFIDENTIAL
    assert res.winning_rule_id == b.id


def test_custom_beats_builtin_on_tie():
    builtin = _rule("**/docs/**", "internal", ["general"], builtin=True, created="1970-01-01T00:00:00.000000Z")
    custom = _rule("/srv/docs/**", "internal", ["proprietary"])
    res = RuleResolver().resolve("/srv/docs/a.md", [builtin, custom], org_id="o1")
    assert res.winning_rule_id == custom.id
    assert res.data_types == ["general", "proprietary"]


def test_earliest_created_breaks_remaining_tie():
    older = _rule("/a/**", "internal", created="2026-01-01T00:00:00.000001Z", rid="zzz")
    newer = _rule("/a/**", "internal", created="2026-01-01T00:00:00.000002Z", rid="aaa")
    assert rank_rules([newer, older])[0].id == "zzz"
    res = RuleResolver().resolve("/a/b", [newer, older], org_id="o1")
    assert res.winning_rule_id == "zzz"


def test_resolution_does_not_depend_on_input_order():
    rules = [
        _rule("**", "public", ["general"]),
        _rule("**/hr/**", "confidential", ["pii"], priority=5),
        _rule("/data/**", "restricted", ["proprietary"], priority=5),
        _rule("/data/hr/**", "internal", ["x"], builtin=True),
    ]
    expected = RuleResolver().resolve("/data/hr/payroll.csv", rules, org_id="o1")
    for perm in itertools.permutations(rules):
        got = RuleResolver().resolve("/data/hr/payroll.csv", list(perm), org_id="o1")
        assert got.level == expected.level
        assert got.winning_rule_id == expected.winning_rule_id
        assert got.data_types == expected.data_types
    assert expected.level == ClassificationLevel.RESTRICTED
    assert expected.data_types == ["general", "pii", "proprietary", "x"]


def test_disabling_a_rule_removes_level_and_tags():
    top = _rule("**/pii/**", "restricted", ["pii"], priority=5)
    base = _rule("/data/**", "internal", ["general"])
    r = RuleResolver()
    before = r.resolve("/data/pii/a", [top, base], org_id="o1")
    assert before.level == ClassificationLevel.RESTRICTED
    assert "pii" in before.data_types

    top_off = top.model_copy(update={"enabled": False})
    after = r.resolve("/data/pii/a", [top_off, base], org_id="o1")
    assert after.level == ClassificationLevel.INTERNAL
    assert after.data_types == ["general"]
    assert top.id not in after.matched_rule_ids


def test_foreign_org_rules_are_ignored():
    mine = _rule("/data/**", "internal", ["general"], org="o1")
    theirs = _rule("/data/**", "restricted", ["pii"], org="o2", priority=100)
    builtin = _rule("**/data/**", "public", ["general"], builtin=True)
    rules = [mine, theirs, builtin]
    assert theirs not in visible_rules("o1", rules)
    res = RuleResolver().resolve("/data/x", rules, org_id="o1")
    assert res.level == ClassificationLevel.INTERNAL
    assert theirs.id not in res.matched_rule_ids


def test_mixed_org_rules_without_org_id_are_rejected():
    rules = [_rule("/data/**", "internal", org="o1"), _rule("/data/**", "restricted", org="o2")]
    with pytest.raises(ValueError):
        RuleResolver().resolve("/data/x", rules)


def test_builtin_rule_cannot_have_owner():
    with pytest.raises(ValueError):
        ClassificationRule(org_id="o1", pattern="**", level=ClassificationLevel.PUBLIC, is_builtin=True)
    with pytest.raises(ValueError):
        ClassificationRule(org_id=None, pattern="**", level=ClassificationLevel.PUBLIC, is_builtin=False)


def test_created_at_ranks_by_time_not_text():
    a = _rule("/a/**", "internal", created="2026-01-01T00:00:00Z", rid="a")
    b = _rule("/a/**", "internal", created="2026-01-01T00:00:00.500000Z", rid="b")
    assert a.created_at == "2026-01-01T00:00:00.000000Z"
    res = RuleResolver().resolve("/a/x", [b, a], org_id="o1")
    assert res.winning_rule_id == "a"


def test_created_at_offsets_are_normalized_to_utc():
    early = _rule("/a/**", "internal", created="2026-01-01T01:00:00+02:00", rid="early")
    late = _rule("/a/**", "internal", created="2025-12-31T23:30:00", rid="late")
    assert early.created_at == "2025-12-31T23:00:00.000000Z"
    assert rank_rules([late, early])[0].id == "early"
    with pytest.raises(ValueError):
        _rule("/a/**", "internal", created="yesterday")
