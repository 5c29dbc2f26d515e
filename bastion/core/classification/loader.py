from __future__ import annotations

from typing import Any, Dict, Tuple

from bastion.core.classification.models import ClassificationConfigFile


def load_classification_config(config_manager) -> Tuple[ClassificationConfigFile, bool, str]:
    """
    Returns (cfg, failsafe, error_message).
    If validation fails, returns defaults and failsafe=True; classification keeps working on defaults.
    """
    if config_manager is None:
        return ClassificationConfigFile(), False, ""
    try:
        raw: Dict[str, Any] = config_manager.read_non_sensitive("classification.json")
        if not isinstance(raw, dict):
            raise ValueError("classification.json must be an object.")
        if not raw:
            return ClassificationConfigFile(), False, ""
        if "schema_version" not in raw:
            raise ValueError("classification.json missing schema_version.")
        try:
            expected = int(ClassificationConfigFile().schema_version)
            schema_version = int(raw.get("schema_version"))
        except (TypeError, ValueError) as e:
            raise ValueError("classification.json schema_version must be an integer.") from e
        if schema_version != expected:
            raise ValueError(f"classification.json schema_version mismatch (expected {expected}).")
        cfg = ClassificationConfigFile.model_validate(raw)
        return cfg, False, ""
    except Exception as e:  # noqa: BLE001
        return ClassificationConfigFile(), True, str(e)
