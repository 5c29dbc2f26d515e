from __future__ import annotations

import pytest

from bastion.core.classification.levels import ClassificationLevel
from bastion.core.classification.models import (
    ClassificationRule,
    ClassificationStatus,
    CreateRuleRequest,
    Schedule,
    ScheduleClassification,
)
from bastion.core.classification.schedule import ScheduleClassifier, keep_existing
from bastion.core.errors import NotFoundError, ValidationError


def _rules():
    return [
        ClassificationRule(org_id="o1", pattern="/data/pii/**", level=ClassificationLevel.CONFIDENTIAL, data_types=["pii", "gdpr"]),
        ClassificationRule(org_id="o1", pattern="/data/logs/**", level=ClassificationLevel.PUBLIC, data_types=["general"]),
        ClassificationRule(org_id="o1", pattern="/data/logs/tmp/**", level=ClassificationLevel.RESTRICTED, data_types=["secret-ish"]),
    ]


def test_schedule_takes_most_sensitive_path_and_drops_excludes():
    s = Schedule(
        org_id="o1",
        paths=["/data/pii/*", "/data/logs/*", "/data/logs/tmp/scratch"],
        excludes=["/data/logs/tmp/*"],
    )
    c = ScheduleClassifier().classify(s, _rules())
    assert c.level == ClassificationLevel.CONFIDENTIAL
    # the excluded path's restricted rule contributes nothing
    assert c.data_types == ["gdpr", "general", "pii"]
    assert c.auto_classified is True
    assert c.status == ClassificationStatus.RESOLVED


def test_zero_eligible_paths_is_public_default():
    s = Schedule(org_id="o1", paths=["/data/logs/tmp/a"], excludes=["/data/logs/tmp/*"])
    c = ScheduleClassifier().classify(s, _rules())
    assert c.level == ClassificationLevel.PUBLIC
    assert c.data_types == []
    assert c.status == ClassificationStatus.DEFAULT

    empty = ScheduleClassifier().classify(Schedule(org_id="o1", paths=[]), _rules())
    assert empty.level == ClassificationLevel.PUBLIC
    assert empty.data_types == []


def test_unmatched_paths_are_default_but_recorded():
    res = ScheduleClassifier().classify_paths(["/opt/app", "/opt/app/"], _rules(), org_id="o1")
    assert res.status == ClassificationStatus.DEFAULT
    assert res.paths == ["/opt/app"]


def test_keep_existing_only_for_manual_rows():
    manual = ScheduleClassification(schedule_id="s1", level=ClassificationLevel.RESTRICTED, auto_classified=False)
    auto = ScheduleClassification(schedule_id="s1", level=ClassificationLevel.RESTRICTED, auto_classified=True)
    assert keep_existing(manual) is True
    assert keep_existing(manual, reset=True) is False
    assert keep_existing(auto) is False
    assert keep_existing(None) is False


def test_engine_classify_schedule_persists(engine, bus):
    engine.create_rule("o1", {"pattern": "/data/pii/**", "level": "confidential", "data_types": ["PII", " pii "]})
    s = Schedule(org_id="o1", name="nightly", paths=["/data/pii/customers.csv"])
    c = engine.register_schedule(s)
    assert c.level == ClassificationLevel.CONFIDENTIAL
    assert c.data_types == ["pii"]
    assert engine.store.get_schedule(s.id).paths == ["/data/pii/customers.csv"]
    stored = engine.get_schedule_classification(s.id)
    assert stored.level == ClassificationLevel.CONFIDENTIAL
    assert stored.auto_classified is True
    assert "classification.schedule_classified" in bus.types()


def test_manual_override_survives_rule_change(engine, bus):
    s = Schedule(org_id="o1", name="fs", paths=["/srv/share/report.docx"])
    engine.register_schedule(s)
    engine.set_schedule_classification(s.id, "restricted", ["proprietary"])

    # unrelated rule change triggers a recompute of every schedule in the org
    engine.create_rule("o1", CreateRuleRequest(pattern="/srv/**", level=ClassificationLevel.INTERNAL, data_types=["general"]))
    kept = engine.get_schedule_classification(s.id)
    assert kept.level == ClassificationLevel.RESTRICTED
    assert kept.data_types == ["proprietary"]
    assert kept.auto_classified is False
    assert "classification.schedule_override_preserved" in bus.types()

    again = engine.classify_schedule(s)
    assert again.level == ClassificationLevel.RESTRICTED


def test_reset_replaces_manual_override(engine):
    engine.create_rule("o1", {"pattern": "/srv/**", "level": "internal", "data_types": ["general"]})
    s = Schedule(org_id="o1", paths=["/srv/share/report.docx"])
    engine.register_schedule(s)
    engine.set_schedule_classification(s.id, "public", [])

    c = engine.classify_schedule(s, reset=True)
    assert c.level == ClassificationLevel.INTERNAL
    assert c.auto_classified is True
    assert engine.get_schedule_classification(s.id).auto_classified is True


def test_store_refuses_auto_write_over_manual(store):
    manual = ScheduleClassification(schedule_id="s1", level=ClassificationLevel.RESTRICTED, auto_classified=False)
    auto = ScheduleClassification(schedule_id="s1", level=ClassificationLevel.PUBLIC, auto_classified=True)
    assert store.upsert_schedule_classification(manual) is True
    assert store.upsert_schedule_classification(auto) is False
    assert store.get_schedule_classification("s1").level == ClassificationLevel.RESTRICTED
    assert store.upsert_schedule_classification(auto, preserve_manual=False) is True
    assert store.get_schedule_classification("s1").level == ClassificationLevel.PUBLIC


def test_set_schedule_classification_validates_level(engine):
    with pytest.raises(ValidationError):
        engine.set_schedule_classification("s1", "top-secret", [])


def test_get_missing_schedule_classification(engine):
    with pytest.raises(NotFoundError):
        engine.get_schedule_classification("nope")


def test_list_schedule_classifications_filters_by_level(engine):
    engine.create_rule("o1", {"pattern": "**/hr/**", "level": "confidential", "data_types": ["pii"]})
    hr = Schedule(org_id="o1", name="hr", paths=["/srv/hr/payroll"])
    www = Schedule(org_id="o1", name="www", paths=["/var/www"])
    engine.register_schedule(hr)
    engine.register_schedule(www)

    all_rows = engine.list_schedule_classifications("o1")
    assert {r.name for r in all_rows} == {"hr", "www"}
    conf = engine.list_schedule_classifications("o1", level="confidential")
    assert [r.id for r in conf] == [hr.id]
    pub = engine.list_schedule_classifications("o1", level="PUBLIC")
    assert [r.id for r in pub] == [www.id]
    with pytest.raises(ValidationError):
        engine.list_schedule_classifications("o1", level="nope")


def test_level_enum_members_are_accepted_for_schedules(engine):
    from bastion.core.classification.levels import is_valid_level

    assert is_valid_level(ClassificationLevel.RESTRICTED)
    assert ClassificationLevel.parse(ClassificationLevel.INTERNAL) == ClassificationLevel.INTERNAL
    s = Schedule(org_id="o1", paths=["/srv/app"])
    engine.register_schedule(s)
    c = engine.set_schedule_classification(s.id, ClassificationLevel.RESTRICTED, ["pii"])
    assert c.level == ClassificationLevel.RESTRICTED
    rows = engine.list_schedule_classifications("o1", level=ClassificationLevel.RESTRICTED)
    assert [r.id for r in rows] == [s.id]
