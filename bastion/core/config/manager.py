from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import ValidationError

from bastion.core.config.io import (
    ReadResult,
    atomic_write_json,
    read_json_file,
    recover_from_corrupt,
    snapshot_last_known_good,
)
from bastion.core.config.models import AppFileConfig
from bastion.core.config.paths import ConfigFsPaths
from bastion.core.errors import ConfigError


CONFIG_FILES = ("app.json", "classification.json")


class ConfigManager:
    def __init__(self, *, fs: Optional[ConfigFsPaths] = None, logger=None, read_only: bool = False):
        self.fs = fs or ConfigFsPaths(".")
        self.logger = logger
        self.read_only = read_only
        self._app: Optional[AppFileConfig] = None

    # ---------- public API ----------
    def load_all(self) -> AppFileConfig:
        os.makedirs(self.fs.config_dir, exist_ok=True)
        os.makedirs(self.fs.backups_dir, exist_ok=True)
        os.makedirs(self.fs.last_known_good_dir, exist_ok=True)

        files = self._load_raw_files()
        max_backups = int((files.get("app.json") or {}).get("backups", {}).get("max_backups_per_file", 10))
        files = self._ensure_defaults(files, max_backups=max_backups)

        try:
            app = AppFileConfig.model_validate(files.get("app.json") or {})
        except ValidationError as e:
            raise ConfigError("app.json is invalid.", error=str(e)) from e
        self._app = app

        if not self.read_only:
            snapshot_last_known_good(self.fs.config_dir, self.fs.last_known_good_dir)
        return app

    def get(self) -> AppFileConfig:
        if self._app is None:
            raise ConfigError("Config not loaded.")
        return self._app

    def read_non_sensitive(self, filename: str) -> Dict[str, Any]:
        """
        Read a single config file from config/ (corrupt files are recovered from last-known-good).
        """
        path = os.path.join(self.fs.config_dir, filename)
        rr = read_json_file(path)
        if rr.ok:
            return rr.data
        if rr.error and rr.error.startswith("corrupt_json"):
            data, _ = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir, max_backups=10)
            return data
        return {}

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> None:
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        if not isinstance(data, dict):
            raise ConfigError("Config data must be an object.")
        max_backups = int((self.get().backups or {}).get("max_backups_per_file", 10))
        atomic_write_json(os.path.join(self.fs.config_dir, filename), data, self.fs.backups_dir, max_backups=max_backups)
        self.load_all()

    def resolve_path(self, path: str) -> str:
        return self.fs.resolve(path)

    # ---------- internals ----------
    def _load_raw_files(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name in CONFIG_FILES:
            path = os.path.join(self.fs.config_dir, name)
            rr: ReadResult = read_json_file(path)
            if rr.ok:
                out[name] = rr.data
                continue
            if rr.error and rr.error.startswith("corrupt_json"):
                data, recovered = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir, max_backups=10)
                if self.logger:
                    self.logger.warning(f"Corrupt config {name} -> recovered={recovered}")
                out[name] = data
                continue
            # missing or unreadable: defaults are written later
            out[name] = {}
        return out

    def _ensure_defaults(self, files: Dict[str, Dict[str, Any]], *, max_backups: int) -> Dict[str, Dict[str, Any]]:
        from bastion.core.classification.models import default_classification_config_dict

        defaults: Dict[str, Dict[str, Any]] = {
            "app.json": AppFileConfig().model_dump(),
            "classification.json": default_classification_config_dict(),
        }
        out = dict(files)
        for name, dflt in defaults.items():
            if not out.get(name):
                out[name] = dflt
                if self.logger:
                    self.logger.warning(f"Missing config {name}; creating defaults.")
                if not self.read_only:
                    atomic_write_json(os.path.join(self.fs.config_dir, name), dflt, self.fs.backups_dir, max_backups=max_backups)
        return out


def get_config(*, root: str = ".", logger=None, read_only: bool = False) -> ConfigManager:
    cm = ConfigManager(fs=ConfigFsPaths(root), logger=logger, read_only=read_only)
    cm.load_all()
    return cm
