from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class AppFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1, le=10)
    log_dir: str = Field(default="logs", min_length=1, max_length=512)
    db_path: str = Field(default="runtime/classification.sqlite", min_length=1, max_length=512)
    events_path: str = Field(default="logs/classification_events.jsonl", min_length=1, max_length=512)
    backups: Dict[str, Any] = Field(default_factory=lambda: {"max_backups_per_file": 10})
