from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from bastion.core.classification.builtin import default_rules
from bastion.core.classification.levels import ClassificationLevel, data_type_catalog, is_valid_level, level_catalog
from bastion.core.classification.loader import load_classification_config
from bastion.core.classification.matcher import PatternMatcher, validate_pattern
from bastion.core.classification.models import (
    BackupClassification,
    ClassificationConfigFile,
    ClassificationRule,
    ClassificationStatus,
    ClassificationSummary,
    ComplianceReport,
    CreateRuleRequest,
    ResolvedClassification,
    Schedule,
    ScheduleClassification,
    ScheduleSummary,
    SetScheduleClassificationRequest,
    UpdateRuleRequest,
    Backup,
    _iso_now,
)
from bastion.core.classification.reporter import AggregateReporter
from bastion.core.classification.resolver import RuleResolver, rank_rules, visible_rules
from bastion.core.classification.schedule import ScheduleClassifier, keep_existing
from bastion.core.classification.snapshot import BackupSnapshotter
from bastion.core.classification.store import ClassificationStore
from bastion.core.errors import (
    ClassificationUnavailableError,
    ImmutableRecordError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from bastion.core.events.jsonl import EventLogger
from bastion.core.events.models import BaseEvent, EventSeverity, SourceSubsystem


class ClassificationEngine:
    """
    Entry point for callers (API layer, backup pipeline).

    Resolution is pure over the rules fetched from the store. Writes go through
    the store's atomic upsert (schedules) or insert-only path (backups).
    """

    def __init__(
        self,
        *,
        store: Any,
        cfg: Optional[ClassificationConfigFile] = None,
        failsafe: bool = False,
        fail_message: str = "",
        event_bus: Any = None,
        logger: Any = None,
        matcher: Optional[PatternMatcher] = None,
    ):
        self.store = store
        self.cfg = cfg or ClassificationConfigFile()
        self._failsafe = bool(failsafe)
        self._fail_message = str(fail_message or "")
        self.event_bus = event_bus
        self.logger = logger
        self.matcher = matcher or PatternMatcher(case_sensitive=bool(self.cfg.case_sensitive))
        self.resolver = RuleResolver(matcher=self.matcher)
        self.classifier = ScheduleClassifier(resolver=self.resolver)
        self.snapshotter = BackupSnapshotter(classifier=self.classifier, max_paths_recorded=int(self.cfg.max_paths_recorded), logger=logger)
        self.reporter = AggregateReporter(store=store)

    def status(self) -> Dict[str, Any]:
        return {
            "builtin_rules_enabled": bool(self.cfg.builtin_rules_enabled),
            "case_sensitive": bool(self.cfg.case_sensitive),
            "failsafe": bool(self._failsafe),
            "error": self._fail_message[:300] if self._failsafe else "",
        }

    def seed_builtin_rules(self) -> int:
        if not self.cfg.builtin_rules_enabled:
            return 0
        n = self.store.seed_builtin_rules(default_rules(priority=int(self.cfg.builtin_priority)))
        if n and self.logger:
            self.logger.info(f"Seeded {n} built-in classification rules")
        return n

    # ---- reference data ----
    @staticmethod
    def list_levels() -> List[Dict[str, Any]]:
        return level_catalog()

    @staticmethod
    def list_data_types() -> List[Dict[str, Any]]:
        return data_type_catalog()

    def default_rules(self) -> List[ClassificationRule]:
        return default_rules(priority=int(self.cfg.builtin_priority))

    # ---- resolution ----
    def _rules(self, org_id: str) -> List[ClassificationRule]:
        try:
            rules = list(self.store.list_rules(org_id))
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Classification rules are unavailable.", org_id=str(org_id), error=str(e)) from e
        if not self.cfg.builtin_rules_enabled:
            rules = [r for r in rules if not r.is_builtin]
        return visible_rules(org_id, rules)

    def resolve_path(self, org_id: str, path: str) -> ResolvedClassification:
        """
        (level, data types) for one path. Raises ClassificationUnavailableError if rules cannot be read.
        """
        return self.resolver.resolve(path, self._rules(org_id), org_id=org_id)

    def explain_path(self, org_id: str, path: str) -> List[ClassificationRule]:
        """Matching rules in rank order; the first one sets the level."""
        return rank_rules(self.resolver.matching_rules(path, self._rules(org_id)))

    def classify_schedule(self, schedule: Schedule, *, reset: bool = False, trace_id: str = "classification") -> ScheduleClassification:
        """
        Recompute and store a schedule's classification.
        A manual override is returned untouched unless reset=True.
        """
        computed = self.classifier.classify(schedule, self._rules(schedule.org_id))
        existing = self._get_schedule_classification(schedule.id)
        if keep_existing(existing, reset=reset):
            self._emit(
                trace_id,
                "classification.schedule_override_preserved",
                {"schedule_id": schedule.id, "level": existing.level.value, "computed_level": computed.level.value},
                subsystem=SourceSubsystem.schedules,
            )
            return existing

        written = self._upsert(computed, preserve_manual=not reset)
        if not written:
            # an override landed between our read and write; it wins
            current = self._get_schedule_classification(schedule.id)
            return current if current is not None else computed

        if self.logger:
            self.logger.info(f"Schedule {schedule.id} auto-classified as {computed.level.value}")
        self._emit(
            trace_id,
            "classification.schedule_classified",
            {
                "schedule_id": schedule.id,
                "org_id": schedule.org_id,
                "level": computed.level.value,
                "data_types": list(computed.data_types),
                "reset": bool(reset),
            },
            subsystem=SourceSubsystem.schedules,
        )
        return computed

    def register_schedule(self, schedule: Schedule, *, trace_id: str = "classification") -> ScheduleClassification:
        """Persist a schedule's path list and reclassify it."""
        try:
            self.store.upsert_schedule(schedule)
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Schedule store is unavailable.", schedule_id=schedule.id, error=str(e)) from e
        return self.classify_schedule(schedule, trace_id=trace_id)

    def reclassify_org(self, org_id: str, *, trace_id: str = "classification") -> Dict[str, ScheduleClassification]:
        try:
            schedules = list(self.store.list_schedules_by_org(org_id))
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Schedules are unavailable.", org_id=str(org_id), error=str(e)) from e
        return {s.id: self.classify_schedule(s, trace_id=trace_id) for s in schedules}

    def reclassify_all(self, *, trace_id: str = "classification") -> Dict[str, ScheduleClassification]:
        """Recompute every organization's schedules; used when a built-in rule changes."""
        try:
            org_ids = list(self.store.list_schedule_org_ids())
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Schedules are unavailable.", error=str(e)) from e
        out: Dict[str, ScheduleClassification] = {}
        for org_id in org_ids:
            out.update(self.reclassify_org(org_id, trace_id=trace_id))
        return out

    def set_schedule_classification(
        self,
        schedule_id: str,
        level: Any,
        data_types: Optional[Sequence[str]] = None,
        *,
        trace_id: str = "classification",
    ) -> ScheduleClassification:
        """Operator override; stays in place until a reset recompute."""
        if not is_valid_level(level):
            raise ValidationError("Invalid classification level.", level=str(level))
        req = SetScheduleClassificationRequest(level=ClassificationLevel.parse(level), data_types=list(data_types or []))
        c = ScheduleClassification(
            schedule_id=str(schedule_id),
            level=req.level,
            data_types=req.data_types,
            auto_classified=False,
            status=ClassificationStatus.RESOLVED,
        )
        self._upsert(c, preserve_manual=False)
        if self.logger:
            self.logger.info(f"Schedule {schedule_id} classification set to {c.level.value}")
        self._emit(
            trace_id,
            "classification.schedule_overridden",
            {"schedule_id": str(schedule_id), "level": c.level.value, "data_types": list(c.data_types)},
            subsystem=SourceSubsystem.schedules,
        )
        return c

    def get_schedule_classification(self, schedule_id: str) -> ScheduleClassification:
        c = self._get_schedule_classification(schedule_id)
        if c is None:
            raise NotFoundError("Schedule classification not found.", schedule_id=str(schedule_id))
        return c

    def list_schedule_classifications(self, org_id: str, *, level: Any = None) -> List[ScheduleSummary]:
        want: Optional[ClassificationLevel] = None
        if level is not None:
            if not is_valid_level(level):
                raise ValidationError("Invalid classification level.", level=str(level))
            want = ClassificationLevel.parse(level)
        out: List[ScheduleSummary] = []
        for s in self.store.list_schedules_by_org(org_id):
            c = self._get_schedule_classification(s.id)
            cur = c.level if c is not None else ClassificationLevel.PUBLIC
            if want is not None and cur != want:
                continue
            out.append(
                ScheduleSummary(
                    id=s.id,
                    name=s.name,
                    level=cur,
                    data_types=list(c.data_types) if c is not None else [],
                    paths=list(s.paths),
                    agent_id=s.agent_id,
                    auto_classified=None if c is None else c.auto_classified,
                )
            )
        return out

    # ---- backups ----
    def snapshot_backup_classification(
        self,
        backup_id: str,
        schedule: Schedule,
        effective_paths: Optional[Sequence[str]] = None,
        *,
        timeout_seconds: Optional[float] = None,
        trace_id: str = "classification",
    ) -> BackupClassification:
        """
        Freeze the classification for one backup run. Never raises for classification
        failures; returns an UNAVAILABLE record instead. Retries for the same backup_id
        return the first record.
        """
        try:
            existing = self.store.get_backup_classification(backup_id)
        except Exception as e:  # noqa: BLE001
            existing = None
            if self.logger:
                self.logger.warning(f"Could not check existing classification for backup {backup_id}: {e}")
        if existing is not None:
            return existing

        timeout = float(self.cfg.snapshot_timeout_seconds) if timeout_seconds is None else timeout_seconds
        rec = self.snapshotter.snapshot(
            backup_id=str(backup_id),
            schedule=schedule,
            load_rules=self._rules,
            load_current=self._get_schedule_classification,
            effective_paths=effective_paths,
            timeout_seconds=timeout,
        )
        try:
            stored = self.store.create_backup_classification(rec)
        except ImmutableRecordError:
            raise
        except Exception as e:  # noqa: BLE001
            # the backup proceeds; the failure is reported, not swallowed
            if self.logger:
                self.logger.error(f"Failed to persist classification for backup {backup_id}: {e}")
            self._emit(
                trace_id,
                "classification.snapshot_persist_failed",
                {"backup_id": str(backup_id), "schedule_id": schedule.id, "error": str(e)[:300]},
                severity=EventSeverity.ERROR,
                subsystem=SourceSubsystem.snapshots,
            )
            return rec

        unavailable = stored.status == ClassificationStatus.UNAVAILABLE
        self._emit(
            trace_id,
            "classification.unavailable" if unavailable else "classification.backup_snapshotted",
            {
                "backup_id": stored.backup_id,
                "schedule_id": stored.schedule_id,
                "level": stored.level.value,
                "status": stored.status.value,
                "data_types": list(stored.data_types),
                "paths": len(stored.paths_classified),
            },
            severity=EventSeverity.WARN if unavailable else EventSeverity.INFO,
            subsystem=SourceSubsystem.snapshots,
        )
        return stored

    def get_backup_classification(self, backup_id: str) -> BackupClassification:
        c = self.store.get_backup_classification(backup_id)
        if c is None:
            raise NotFoundError("Backup classification not found.", backup_id=str(backup_id))
        return c

    def list_backups_by_level(self, org_id: str, level: Any, *, limit: Optional[int] = None) -> List[Backup]:
        if not is_valid_level(level):
            raise ValidationError("Invalid classification level.", level=str(level))
        lim = int(self.cfg.backup_list_limit) if limit is None else int(limit)
        return list(self.store.list_backups_by_org_and_level(org_id, ClassificationLevel.parse(level), lim))

    # ---- reporting ----
    def summarize(self, org_id: str) -> ClassificationSummary:
        return self.reporter.summarize(org_id)

    def compliance_report(self, org_id: str) -> ComplianceReport:
        return self.reporter.compliance_report(org_id)

    # ---- rule management ----
    def list_rules(self, org_id: str) -> List[ClassificationRule]:
        """Every rule the org can see, disabled ones included."""
        return [r for r in self.store.list_rules(org_id) if r.visible_to(org_id)]

    def get_rule(self, org_id: str, rule_id: str) -> ClassificationRule:
        rule = self.store.get_rule(rule_id)
        if rule is None or not rule.visible_to(org_id):
            raise NotFoundError("Classification rule not found.", rule_id=str(rule_id))
        return rule

    def create_rule(self, org_id: str, req: Any, *, trace_id: str = "classification") -> ClassificationRule:
        req = self._validate_request(CreateRuleRequest, req)
        self._check_pattern(req.pattern)
        rule = ClassificationRule(
            org_id=str(org_id),
            pattern=req.pattern,
            level=req.level,
            data_types=req.data_types,
            description=req.description,
            is_builtin=False,
            priority=int(self.cfg.default_rule_priority) if req.priority is None else int(req.priority),
            enabled=True,
        )
        self.store.create_rule(rule)
        if self.logger:
            self.logger.info(f"Classification rule {rule.id} created for pattern {rule.pattern}")
        self._emit(trace_id, "classification.rule_created", self._rule_payload(rule), subsystem=SourceSubsystem.rules)
        self._after_rule_change(org_id, trace_id=trace_id)
        return rule

    def update_rule(self, org_id: str, rule_id: str, req: Any, *, trace_id: str = "classification") -> ClassificationRule:
        req = self._validate_request(UpdateRuleRequest, req)
        rule = self._own_rule(org_id, rule_id, action="modify")
        changes = req.model_dump(exclude_none=True)
        if "pattern" in changes:
            self._check_pattern(changes["pattern"])
        updated = rule.model_copy(update={**changes, "updated_at": _iso_now()})
        # re-run validators on the merged rule
        updated = ClassificationRule.model_validate(updated.model_dump())
        self.store.update_rule(updated)
        self._emit(
            trace_id,
            "classification.rule_updated",
            {**self._rule_payload(updated), "fields": sorted(changes.keys())},
            subsystem=SourceSubsystem.rules,
        )
        self._after_rule_change(org_id, trace_id=trace_id)
        return updated

    def delete_rule(self, org_id: str, rule_id: str, *, trace_id: str = "classification") -> None:
        rule = self._own_rule(org_id, rule_id, action="delete")
        self.store.delete_rule(rule.id)
        if self.logger:
            self.logger.info(f"Classification rule {rule.id} deleted")
        self._emit(trace_id, "classification.rule_deleted", self._rule_payload(rule), subsystem=SourceSubsystem.rules)
        self._after_rule_change(org_id, trace_id=trace_id)

    def set_builtin_rule_enabled(self, rule_id: str, enabled: bool, *, trace_id: str = "classification") -> ClassificationRule:
        """Platform-level switch; affects every organization."""
        rule = self.store.get_rule(rule_id)
        if rule is None or not rule.is_builtin:
            raise NotFoundError("Built-in rule not found.", rule_id=str(rule_id))
        updated = rule.model_copy(update={"enabled": bool(enabled), "updated_at": _iso_now()})
        self.store.update_rule(updated)
        self._emit(trace_id, "classification.rule_updated", {**self._rule_payload(updated), "fields": ["enabled"]}, subsystem=SourceSubsystem.rules)
        if self.cfg.reclassify_on_rule_change:
            self.reclassify_all(trace_id=trace_id)
        return updated

    # ---- internals ----
    def _after_rule_change(self, org_id: str, *, trace_id: str) -> None:
        if self.cfg.reclassify_on_rule_change:
            self.reclassify_org(org_id, trace_id=trace_id)

    def _own_rule(self, org_id: str, rule_id: str, *, action: str) -> ClassificationRule:
        rule = self.get_rule(org_id, rule_id)
        if rule.is_builtin:
            raise PermissionDeniedError(f"Cannot {action} built-in rules.", rule_id=str(rule_id))
        return rule

    @staticmethod
    def _validate_request(model, req: Any):  # noqa: ANN001
        if isinstance(req, model):
            return req
        try:
            return model.model_validate(req)
        except Exception as e:  # noqa: BLE001
            raise ValidationError("Invalid classification rule request.", error=str(e)[:300]) from e

    @staticmethod
    def _check_pattern(pattern: str) -> None:
        validate_pattern(pattern)

    @staticmethod
    def _rule_payload(rule: ClassificationRule) -> Dict[str, Any]:
        return {
            "rule_id": rule.id,
            "org_id": rule.org_id,
            "pattern": rule.pattern,
            "level": rule.level.value,
            "priority": int(rule.priority),
            "enabled": bool(rule.enabled),
        }

    def _get_schedule_classification(self, schedule_id: str) -> Optional[ScheduleClassification]:
        try:
            return self.store.get_schedule_classification(schedule_id)
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Schedule classification is unavailable.", schedule_id=str(schedule_id), error=str(e)) from e

    def _upsert(self, c: ScheduleClassification, *, preserve_manual: bool) -> bool:
        try:
            return bool(self.store.upsert_schedule_classification(c, preserve_manual=preserve_manual))
        except Exception as e:  # noqa: BLE001
            raise ClassificationUnavailableError("Schedule classification could not be stored.", schedule_id=c.schedule_id, error=str(e)) from e

    def _emit(
        self,
        trace_id: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        severity: EventSeverity = EventSeverity.INFO,
        subsystem: SourceSubsystem = SourceSubsystem.rules,
    ) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish_nowait(
                BaseEvent(
                    event_type=event_type,
                    trace_id=str(trace_id or "classification"),
                    source_subsystem=subsystem,
                    severity=severity,
                    payload=dict(payload or {}),
                )
            )
        except Exception as e:  # noqa: BLE001
            if self.logger:
                self.logger.warning(f"Classification event {event_type} not published: {e}")


def build_engine(config_manager, *, event_bus: Any = None, logger: Any = None) -> ClassificationEngine:
    """
    Wire store + engine from config/app.json and config/classification.json, seeding built-in rules.
    Events go to the JSONL event log unless a bus is supplied.
    """
    cfg, failsafe, err = load_classification_config(config_manager)
    if failsafe and logger:
        logger.warning(f"classification.json invalid; using defaults: {err}")
    app = config_manager.get()
    if event_bus is None:
        event_bus = EventLogger(config_manager.resolve_path(app.events_path))
    store = ClassificationStore(db_path=config_manager.resolve_path(app.db_path), logger=logger)
    engine = ClassificationEngine(store=store, cfg=cfg, failsafe=failsafe, fail_message=err, event_bus=event_bus, logger=logger)
    engine.seed_builtin_rules()
    return engine
