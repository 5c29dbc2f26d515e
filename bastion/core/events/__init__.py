"""
Audit event plumbing for the classification engine.

- `EventLogger`, `redact`: append-only JSONL log with secret redaction
- `BaseEvent`: structured event published on an optional bus
"""

from bastion.core.events.jsonl import EventLogger, redact
from bastion.core.events.models import BaseEvent, EventSeverity, SourceSubsystem

__all__ = [
    "EventLogger",
    "redact",
    "BaseEvent",
    "EventSeverity",
    "SourceSubsystem",
]
