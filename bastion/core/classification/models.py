from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bastion.core.classification.levels import ClassificationLevel, level_text, normalize_data_types


def _iso_now() -> str:
    # microsecond resolution: created_at is a ranking tie-break
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _new_id() -> str:
    return uuid.uuid4().hex


def normalize_timestamp(value: Any) -> str:
    """
    Canonical UTC form (microseconds, Z suffix) so string order equals time order.
    Accepts ISO-8601 strings or datetimes; naive values are taken as UTC.
    """
    if isinstance(value, dt.datetime):
        ts = value
    else:
        s = str(value or "").strip()
        if not s:
            raise ValueError("timestamp required")
        if s.endswith(("Z", "z")):
            s = s[:-1] + "+00:00"
        try:
            ts = dt.datetime.fromisoformat(s)
        except ValueError as e:
            raise ValueError(f"invalid timestamp: {value!r}") from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ClassificationStatus(str, Enum):
    """
    RESOLVED: at least one rule matched (or an operator set the level).
    DEFAULT: nothing matched; public with no tags.
    UNAVAILABLE: classification could not be computed; level is public only as a placeholder.
    """

    RESOLVED = "resolved"
    DEFAULT = "default"
    UNAVAILABLE = "unavailable"


class ClassificationRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=_new_id, min_length=1, max_length=64)
    org_id: Optional[str] = Field(default=None, max_length=64)
    pattern: str = Field(max_length=1024)
    level: ClassificationLevel
    data_types: List[str] = Field(default_factory=list)
    description: str = Field(default="", max_length=300)
    is_builtin: bool = False
    priority: int = Field(default=0, ge=-10_000, le=10_000)
    enabled: bool = True
    created_at: str = Field(default_factory=_iso_now)
    updated_at: str = Field(default_factory=_iso_now)

    @field_validator("data_types", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return normalize_data_types(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _ts(cls, v: Any) -> str:
        return normalize_timestamp(v)

    @model_validator(mode="after")
    def _ownership(self) -> "ClassificationRule":
        if self.is_builtin and self.org_id is not None:
            raise ValueError("built-in rules are not owned by an organization")
        if not self.is_builtin and not self.org_id:
            raise ValueError("custom rules require an owning organization")
        return self

    def visible_to(self, org_id: Optional[str]) -> bool:
        return bool(self.is_builtin) or (org_id is not None and self.org_id == org_id)


class ResolvedClassification(BaseModel):
    """Outcome of resolving one path (or a set of paths) against a rule set."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    level: ClassificationLevel = ClassificationLevel.PUBLIC
    data_types: List[str] = Field(default_factory=list)
    status: ClassificationStatus = ClassificationStatus.DEFAULT
    winning_rule_id: Optional[str] = None
    matched_rule_ids: List[str] = Field(default_factory=list)
    paths: List[str] = Field(default_factory=list)


class Schedule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=_new_id, min_length=1, max_length=64)
    org_id: str = Field(min_length=1, max_length=64)
    name: str = Field(default="", max_length=200)
    agent_id: Optional[str] = Field(default=None, max_length=64)
    paths: List[str] = Field(default_factory=list)
    excludes: List[str] = Field(default_factory=list)
    enabled: bool = True
    created_at: str = Field(default_factory=_iso_now)


class ScheduleClassification(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schedule_id: str = Field(min_length=1, max_length=64)
    level: ClassificationLevel = ClassificationLevel.PUBLIC
    data_types: List[str] = Field(default_factory=list)
    auto_classified: bool = True
    status: ClassificationStatus = ClassificationStatus.DEFAULT
    classified_at: str = Field(default_factory=_iso_now)

    @field_validator("data_types", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return normalize_data_types(v)


class BackupClassification(BaseModel):
    """
    Classification frozen onto one backup run. Audit artifact: never updated.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=_new_id, min_length=1, max_length=64)
    backup_id: str = Field(min_length=1, max_length=64)
    schedule_id: Optional[str] = Field(default=None, max_length=64)
    org_id: Optional[str] = Field(default=None, max_length=64)
    level: ClassificationLevel = ClassificationLevel.PUBLIC
    data_types: List[str] = Field(default_factory=list)
    paths_classified: List[str] = Field(default_factory=list)
    status: ClassificationStatus = ClassificationStatus.DEFAULT
    error: str = Field(default="", max_length=300)
    created_at: str = Field(default_factory=_iso_now)

    @field_validator("data_types", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return normalize_data_types(v)

    def content_key(self) -> tuple:
        """Fields that must match for a retried snapshot to count as the same record."""
        return (
            self.backup_id,
            self.schedule_id,
            self.level.value,
            tuple(self.data_types),
            tuple(self.paths_classified),
            self.status.value,
        )


class Backup(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=_new_id, min_length=1, max_length=64)
    schedule_id: Optional[str] = Field(default=None, max_length=64)
    org_id: str = Field(min_length=1, max_length=64)
    status: str = Field(default="completed", max_length=40)
    started_at: str = Field(default_factory=_iso_now)
    classification: Optional[BackupClassification] = None

    @property
    def classification_level(self) -> ClassificationLevel:
        if self.classification is None:
            return ClassificationLevel.PUBLIC
        return self.classification.level


class ClassificationSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_schedules: int = 0
    total_backups: int = 0
    # schedule counts; only levels that occur are present
    by_level: Dict[str, int] = Field(default_factory=dict)
    backups_by_level: Dict[str, int] = Field(default_factory=dict)
    by_data_type: Dict[str, int] = Field(default_factory=dict)
    backups_by_data_type: Dict[str, int] = Field(default_factory=dict)
    restricted_count: int = 0
    confidential_count: int = 0
    internal_count: int = 0
    public_count: int = 0
    unavailable_backups: int = 0


class ScheduleSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str = ""
    level: ClassificationLevel = ClassificationLevel.PUBLIC
    data_types: List[str] = Field(default_factory=list)
    paths: List[str] = Field(default_factory=list)
    agent_id: Optional[str] = None
    auto_classified: Optional[bool] = None


class DataTypeStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schedule_count: int = 0
    backup_count: int = 0


class ComplianceReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    generated_at: str = Field(default_factory=_iso_now)
    org_id: str
    summary: ClassificationSummary
    schedules_by_level: Dict[str, List[ScheduleSummary]] = Field(default_factory=dict)
    data_type_breakdown: Dict[str, DataTypeStats] = Field(default_factory=dict)
    unclassified_count: int = 0
    unavailable_backups: int = 0


# ---- requests ----
def _level_input(v: Any) -> Any:
    return level_text(v) if isinstance(v, str) else v


class CreateRuleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(min_length=1, max_length=1024)
    level: ClassificationLevel
    data_types: List[str] = Field(default_factory=list)
    description: str = Field(default="", max_length=300)
    priority: Optional[int] = Field(default=None, ge=-10_000, le=10_000)

    @field_validator("level", mode="before")
    @classmethod
    def _level(cls, v: Any) -> Any:
        return _level_input(v)

    @field_validator("data_types", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return normalize_data_types(v)


class UpdateRuleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pattern: Optional[str] = Field(default=None, min_length=1, max_length=1024)
    level: Optional[ClassificationLevel] = None
    data_types: Optional[List[str]] = None
    description: Optional[str] = Field(default=None, max_length=300)
    priority: Optional[int] = Field(default=None, ge=-10_000, le=10_000)
    enabled: Optional[bool] = None

    @field_validator("level", mode="before")
    @classmethod
    def _level(cls, v: Any) -> Any:
        return None if v is None else _level_input(v)

    @field_validator("data_types", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> Optional[List[str]]:
        if v is None:
            return None
        return normalize_data_types(v)


class SetScheduleClassificationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: ClassificationLevel
    data_types: List[str] = Field(default_factory=list)

    @field_validator("data_types", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> List[str]:
        return normalize_data_types(v)


# ---- config ----
class ClassificationConfigFile(BaseModel):
    """
    config/classification.json schema.
    """

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=10)
    builtin_rules_enabled: bool = True
    # recompute every schedule of an org after its rules change (manual overrides are kept)
    reclassify_on_rule_change: bool = True
    builtin_priority: int = Field(default=0, ge=-10_000, le=10_000)
    default_rule_priority: int = Field(default=0, ge=-10_000, le=10_000)
    case_sensitive: bool = True
    snapshot_timeout_seconds: float = Field(default=5.0, gt=0, le=300)
    backup_list_limit: int = Field(default=100, ge=1, le=10_000)
    max_paths_recorded: int = Field(default=1000, ge=1, le=100_000)


def default_classification_config_dict() -> Dict[str, Any]:
    return ClassificationConfigFile().model_dump()
