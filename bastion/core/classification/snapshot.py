from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from bastion.core.classification.levels import max_level
from bastion.core.classification.models import (
    BackupClassification,
    ClassificationRule,
    ClassificationStatus,
    Schedule,
    ScheduleClassification,
)
from bastion.core.classification.schedule import ScheduleClassifier
from bastion.core.errors import BastionError


RulesLoader = Callable[[str], List[ClassificationRule]]
CurrentLoader = Callable[[str], Optional[ScheduleClassification]]


@dataclass
class BackupSnapshotter:
    """
    Freezes a classification onto one backup run.

    Source, in order of preference:
    1. fresh classification of the paths the run actually touched (effective_paths),
       never below a manual override on the schedule
    2. the schedule's stored classification (keeps a manual override)
    3. a live classification of the schedule's configured paths
    Any failure, including a timeout, yields an UNAVAILABLE record instead of an exception.
    """

    classifier: ScheduleClassifier = field(default_factory=ScheduleClassifier)
    max_paths_recorded: int = 1000
    logger: Any = None

    def compute(
        self,
        *,
        backup_id: str,
        schedule: Schedule,
        load_rules: RulesLoader,
        load_current: CurrentLoader,
        effective_paths: Optional[Sequence[str]] = None,
    ) -> BackupClassification:
        if effective_paths is not None:
            res = self.classifier.classify_paths(effective_paths, load_rules(schedule.org_id), org_id=schedule.org_id, excludes=schedule.excludes)
            current = load_current(schedule.id)
            if current is not None and not current.auto_classified:
                # an operator override is a floor: the run can raise it, never lower it
                return self._record(
                    backup_id,
                    schedule,
                    max_level(current.level, res.level),
                    sorted(set(current.data_types) | set(res.data_types)),
                    res.paths,
                    ClassificationStatus.RESOLVED,
                )
            return self._record(backup_id, schedule, res.level, res.data_types, res.paths, res.status)

        paths = self.classifier.eligible_paths(schedule.paths, schedule.excludes)
        current = load_current(schedule.id)
        if current is not None:
            return self._record(backup_id, schedule, current.level, current.data_types, paths, current.status)

        res = self.classifier.classify_paths(schedule.paths, load_rules(schedule.org_id), org_id=schedule.org_id, excludes=schedule.excludes)
        return self._record(backup_id, schedule, res.level, res.data_types, res.paths, res.status)

    def snapshot(
        self,
        *,
        backup_id: str,
        schedule: Schedule,
        load_rules: RulesLoader,
        load_current: CurrentLoader,
        effective_paths: Optional[Sequence[str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> BackupClassification:
        kwargs = dict(
            backup_id=backup_id,
            schedule=schedule,
            load_rules=load_rules,
            load_current=load_current,
            effective_paths=effective_paths,
        )
        try:
            if timeout_seconds is None:
                return self.compute(**kwargs)
            # the worker is abandoned on timeout; it never writes, so it cannot race the fallback record
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="classification-snapshot")
            try:
                return executor.submit(self.compute, **kwargs).result(timeout=float(timeout_seconds))
            finally:
                executor.shutdown(wait=False)
        except FutureTimeout:
            return self.unavailable(backup_id=backup_id, schedule=schedule, error=f"classification timed out after {timeout_seconds}s", effective_paths=effective_paths)
        except BastionError as e:
            return self.unavailable(backup_id=backup_id, schedule=schedule, error=e.user_message, effective_paths=effective_paths)
        except Exception as e:  # noqa: BLE001
            # collaborator failures must not fail the backup
            return self.unavailable(backup_id=backup_id, schedule=schedule, error=f"{type(e).__name__}: {e}", effective_paths=effective_paths)

    def unavailable(
        self,
        *,
        backup_id: str,
        schedule: Schedule,
        error: str,
        effective_paths: Optional[Sequence[str]] = None,
    ) -> BackupClassification:
        if self.logger:
            self.logger.warning(f"Classification unavailable for backup {backup_id}: {error}")
        source = effective_paths if effective_paths is not None else schedule.paths
        paths = self.classifier.eligible_paths(source, schedule.excludes)
        return BackupClassification(
            backup_id=backup_id,
            schedule_id=schedule.id,
            org_id=schedule.org_id,
            paths_classified=paths[: self.max_paths_recorded],
            status=ClassificationStatus.UNAVAILABLE,
            error=str(error or "")[:300],
        )

    def _record(self, backup_id, schedule, level, data_types, paths, status) -> BackupClassification:  # noqa: ANN001
        return BackupClassification(
            backup_id=backup_id,
            schedule_id=schedule.id,
            org_id=schedule.org_id,
            level=level,
            data_types=list(data_types or []),
            paths_classified=list(paths or [])[: self.max_paths_recorded],
            status=status,
        )
