from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from bastion.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class BastionError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Core types ----
class ConfigError(BastionError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class ValidationError(BastionError):
    def __init__(self, user_message: str = "Invalid request.", **ctx: Any):
        super().__init__("validation_error", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class InvalidPatternError(BastionError):
    def __init__(self, user_message: str = "Invalid classification pattern.", **ctx: Any):
        super().__init__("invalid_pattern", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class NotFoundError(BastionError):
    def __init__(self, user_message: str = "Not found.", **ctx: Any):
        super().__init__("not_found", user_message, severity=Severity.INFO, recoverable=False, context=ctx)


class PermissionDeniedError(BastionError):
    def __init__(self, user_message: str = "Permission denied.", **ctx: Any):
        super().__init__("permission_denied", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class ClassificationUnavailableError(BastionError):
    """Rule/schedule collaborators failed; the backup itself must carry on."""

    def __init__(self, user_message: str = "Classification is unavailable right now.", **ctx: Any):
        super().__init__("classification_unavailable", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class ImmutableRecordError(BastionError):
    """A caller tried to change a backup classification that already exists."""

    def __init__(self, user_message: str = "Backup classifications are immutable.", **ctx: Any):
        super().__init__("immutable_record", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)
