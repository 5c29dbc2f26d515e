from __future__ import annotations

from bastion.core.classification.engine import ClassificationEngine, build_engine
from bastion.core.classification.levels import ClassificationLevel, DataType, max_level
from bastion.core.classification.matcher import PatternMatcher
from bastion.core.classification.models import (
    Backup,
    BackupClassification,
    ClassificationRule,
    ClassificationStatus,
    ClassificationSummary,
    ComplianceReport,
    CreateRuleRequest,
    ResolvedClassification,
    Schedule,
    ScheduleClassification,
    UpdateRuleRequest,
)
from bastion.core.classification.store import ClassificationStore

__all__ = [
    "Backup",
    "BackupClassification",
    "ClassificationEngine",
    "ClassificationLevel",
    "ClassificationRule",
    "ClassificationStatus",
    "ClassificationStore",
    "ClassificationSummary",
    "ComplianceReport",
    "CreateRuleRequest",
    "DataType",
    "PatternMatcher",
    "ResolvedClassification",
    "Schedule",
    "ScheduleClassification",
    "UpdateRuleRequest",
    "build_engine",
    "max_level",
]
