from __future__ import annotations

import sqlite3

import pytest

from bastion.core.classification.levels import ClassificationLevel
from bastion.core.classification.models import Backup, Schedule, ScheduleClassification
from bastion.core.errors import ClassificationUnavailableError, ValidationError


def _scheduled(store, org, level, tags=(), name=""):
    s = Schedule(org_id=org, name=name)
    store.upsert_schedule(s)
    store.upsert_schedule_classification(ScheduleClassification(schedule_id=s.id, level=ClassificationLevel(level), data_types=list(tags)))
    return s


def test_summary_counts_schedule_levels(engine, store):
    _scheduled(store, "o1", "public")
    _scheduled(store, "o1", "confidential", ["pii"])
    _scheduled(store, "o1", "confidential", ["pii", "pci"])

    summary = engine.summarize("o1")
    assert summary.by_level == {"public": 1, "confidential": 2}
    assert summary.total_backups == 0
    assert summary.total_schedules == 3
    assert summary.confidential_count == 2
    assert summary.restricted_count == 0
    assert summary.by_data_type == {"pii": 2, "pci": 1}
    assert summary.backups_by_level == {}


def test_empty_org_is_all_zero(engine):
    summary = engine.summarize("nobody")
    assert summary.by_level == {}
    assert summary.total_schedules == 0
    assert summary.total_backups == 0
    assert summary.unavailable_backups == 0


def test_unclassified_schedule_counts_as_public(engine, store):
    store.upsert_schedule(Schedule(org_id="o1", name="raw"))
    summary = engine.summarize("o1")
    assert summary.by_level == {"public": 1}
    assert summary.public_count == 1


def test_other_orgs_are_not_counted(engine, store):
    _scheduled(store, "o1", "restricted")
    _scheduled(store, "o2", "internal")
    assert engine.summarize("o1").by_level == {"restricted": 1}
    assert engine.summarize("o2").by_level == {"internal": 1}


def test_backups_are_counted_by_snapshot_level(engine, store):
    engine.create_rule("o1", {"pattern": "**/hr/**", "level": "confidential", "data_types": ["pii"]})
    s = Schedule(org_id="o1", paths=["/srv/hr"])
    engine.register_schedule(s)
    for bid in ("b1", "b2"):
        store.record_backup(Backup(id=bid, schedule_id=s.id, org_id="o1"))
        engine.snapshot_backup_classification(bid, s)
    # a run with no classification record yet
    store.record_backup(Backup(id="b3", schedule_id=s.id, org_id="o1"))

    summary = engine.summarize("o1")
    assert summary.total_backups == 3
    assert summary.backups_by_level == {"confidential": 2, "public": 1}
    assert summary.backups_by_data_type == {"pii": 2}


def test_list_backups_by_level(engine, store):
    engine.create_rule("o1", {"pattern": "**/hr/**", "level": "confidential"})
    s = Schedule(org_id="o1", paths=["/srv/hr"])
    engine.register_schedule(s)
    for i in range(3):
        store.record_backup(Backup(id=f"b{i}", schedule_id=s.id, org_id="o1", started_at=f"2026-02-0{i + 1}T00:00:00Z"))
        engine.snapshot_backup_classification(f"b{i}", s)

    rows = engine.list_backups_by_level("o1", "confidential")
    assert [b.id for b in rows] == ["b2", "b1", "b0"]
    assert all(b.classification_level == ClassificationLevel.CONFIDENTIAL for b in rows)
    assert len(engine.list_backups_by_level("o1", "confidential", limit=1)) == 1
    assert engine.list_backups_by_level("o1", "restricted") == []
    assert [b.id for b in engine.list_backups_by_level("o1", ClassificationLevel.CONFIDENTIAL)] == ["b2", "b1", "b0"]
    with pytest.raises(ValidationError):
        engine.list_backups_by_level("o1", "secret")


def test_compliance_report(engine, store):
    _scheduled(store, "o1", "restricted", ["phi"], name="clinic")
    store.upsert_schedule(Schedule(org_id="o1", name="unset", paths=["/tmp"]))
    s = _scheduled(store, "o1", "internal", ["general"], name="docs")
    store.record_backup(Backup(id="b1", schedule_id=s.id, org_id="o1"))
    engine.snapshot_backup_classification("b1", s)

    report = engine.compliance_report("o1")
    assert report.org_id == "o1"
    assert set(report.schedules_by_level) == {"public", "internal", "confidential", "restricted"}
    assert [x.name for x in report.schedules_by_level["restricted"]] == ["clinic"]
    assert [x.name for x in report.schedules_by_level["public"]] == ["unset"]
    assert report.schedules_by_level["confidential"] == []
    assert report.unclassified_count == 1
    assert list(report.data_type_breakdown) == ["general", "phi"]
    assert report.data_type_breakdown["general"].schedule_count == 1
    assert report.data_type_breakdown["general"].backup_count == 1
    assert report.data_type_breakdown["phi"].backup_count == 0
    assert report.summary.total_schedules == 3


def test_unavailable_backups_are_reported_separately(engine, store):
    from bastion.core.classification.models import BackupClassification, ClassificationStatus

    store.record_backup(Backup(id="b1", org_id="o1"))
    store.create_backup_classification(
        BackupClassification(backup_id="b1", org_id="o1", status=ClassificationStatus.UNAVAILABLE, error="rules unavailable")
    )
    summary = engine.summarize("o1")
    assert summary.unavailable_backups == 1
    assert summary.backups_by_level == {"public": 1}
    assert engine.compliance_report("o1").unavailable_backups == 1


class _DownStore:
    def list_schedules_by_org(self, *_a, **_k):
        raise sqlite3.OperationalError("unable to open database file")

    def list_backups_by_org_and_level(self, *_a, **_k):
        raise sqlite3.OperationalError("unable to open database file")


def test_store_failures_surface_as_unavailable():
    from bastion.core.classification.engine import ClassificationEngine

    engine = ClassificationEngine(store=_DownStore())
    with pytest.raises(ClassificationUnavailableError):
        engine.summarize("o1")
    with pytest.raises(ClassificationUnavailableError):
        engine.compliance_report("o1")
