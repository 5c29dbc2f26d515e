from __future__ import annotations

import json
import os
import sqlite3
import threading
from typing import Any, Iterable, List, Optional

from bastion.core.classification.levels import ClassificationLevel
from bastion.core.classification.models import (
    Backup,
    BackupClassification,
    ClassificationRule,
    ClassificationStatus,
    Schedule,
    ScheduleClassification,
)
from bastion.core.errors import ImmutableRecordError


def _loads_list(raw: Any) -> List[str]:
    if not raw:
        return []
    try:
        val = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(val, list):
        return []
    return [str(x) for x in val]


_EPOCH = "1970-01-01T00:00:00.000000Z"


def _dumps_list(values: Iterable[str]) -> str:
    return json.dumps(list(values or []), ensure_ascii=False)


class ClassificationStore:
    """
    SQLite persistence for rules, schedules, schedule classifications and backup classifications.

    NOTES:
    - one rule table; built-ins have org_id NULL and is_builtin=1
    - schedule_classifications is keyed by schedule_id (single-statement upsert)
    - backup_classifications is insert-only; a trigger aborts any UPDATE
    """

    def __init__(self, *, db_path: str, logger: Any = None):
        self.db_path = str(db_path)
        self.logger = logger
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._init_db()

    # ---- sqlite helpers ----
    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS classification_rules (
                      id TEXT PRIMARY KEY,
                      org_id TEXT,
                      pattern TEXT NOT NULL,
                      level TEXT NOT NULL,
                      data_types_json TEXT,
                      description TEXT,
                      is_builtin INTEGER NOT NULL DEFAULT 0,
                      priority INTEGER NOT NULL DEFAULT 0,
                      enabled INTEGER NOT NULL DEFAULT 1,
                      created_at TEXT,
                      updated_at TEXT
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_rules_org ON classification_rules(org_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_rules_builtin ON classification_rules(is_builtin)")

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schedules (
                      id TEXT PRIMARY KEY,
                      org_id TEXT NOT NULL,
                      name TEXT,
                      agent_id TEXT,
                      paths_json TEXT,
                      excludes_json TEXT,
                      enabled INTEGER NOT NULL DEFAULT 1,
                      created_at TEXT
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_schedules_org ON schedules(org_id)")

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS schedule_classifications (
                      schedule_id TEXT PRIMARY KEY,
                      level TEXT NOT NULL,
                      data_types_json TEXT,
                      auto_classified INTEGER NOT NULL DEFAULT 1,
                      status TEXT,
                      classified_at TEXT
                    )
                    """
                )

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS backups (
                      id TEXT PRIMARY KEY,
                      schedule_id TEXT,
                      org_id TEXT NOT NULL,
                      status TEXT,
                      started_at TEXT
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_backups_org ON backups(org_id)")

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS backup_classifications (
                      id TEXT NOT NULL,
                      backup_id TEXT PRIMARY KEY,
                      schedule_id TEXT,
                      org_id TEXT,
                      level TEXT NOT NULL,
                      data_types_json TEXT,
                      paths_json TEXT,
                      status TEXT NOT NULL,
                      error TEXT,
                      created_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TRIGGER IF NOT EXISTS trg_backup_classifications_immutable
                    BEFORE UPDATE ON backup_classifications
                    BEGIN
                      SELECT RAISE(ABORT, 'backup classifications are immutable');
                    END
                    """
                )
                conn.commit()
            finally:
                conn.close()

    # ---- row mapping ----
    @staticmethod
    def _rule_from_row(row: sqlite3.Row) -> ClassificationRule:
        return ClassificationRule(
            id=row["id"],
            org_id=row["org_id"],
            pattern=row["pattern"] or "",
            level=ClassificationLevel.parse(row["level"]),
            data_types=_loads_list(row["data_types_json"]),
            description=row["description"] or "",
            is_builtin=bool(row["is_builtin"]),
            priority=int(row["priority"] or 0),
            enabled=bool(row["enabled"]),
            created_at=row["created_at"] or _EPOCH,
            updated_at=row["updated_at"] or _EPOCH,
        )

    @staticmethod
    def _schedule_from_row(row: sqlite3.Row) -> Schedule:
        return Schedule(
            id=row["id"],
            org_id=row["org_id"],
            name=row["name"] or "",
            agent_id=row["agent_id"],
            paths=_loads_list(row["paths_json"]),
            excludes=_loads_list(row["excludes_json"]),
            enabled=bool(row["enabled"]),
            created_at=row["created_at"] or "",
        )

    @staticmethod
    def _schedule_classification_from_row(row: sqlite3.Row) -> ScheduleClassification:
        return ScheduleClassification(
            schedule_id=row["schedule_id"],
            level=ClassificationLevel.parse(row["level"]),
            data_types=_loads_list(row["data_types_json"]),
            auto_classified=bool(row["auto_classified"]),
            status=ClassificationStatus(row["status"] or ClassificationStatus.RESOLVED.value),
            classified_at=row["classified_at"] or "",
        )

    @staticmethod
    def _backup_classification_from_row(row: sqlite3.Row) -> BackupClassification:
        return BackupClassification(
            id=row["id"],
            backup_id=row["backup_id"],
            schedule_id=row["schedule_id"],
            org_id=row["org_id"],
            level=ClassificationLevel.parse(row["level"]),
            data_types=_loads_list(row["data_types_json"]),
            paths_classified=_loads_list(row["paths_json"]),
            status=ClassificationStatus(row["status"]),
            error=row["error"] or "",
            created_at=row["created_at"] or "",
        )

    # ---- rules ----
    def list_rules(self, org_id: Optional[str], *, include_disabled: bool = True) -> List[ClassificationRule]:
        """
        Rules visible to org_id: its own plus all built-ins (disabled ones flagged, caller filters).
        """
        sql = "SELECT * FROM classification_rules WHERE (org_id = ? OR is_builtin = 1)"
        if not include_disabled:
            sql += " AND enabled = 1"
        sql += " ORDER BY priority DESC, created_at ASC, id ASC"
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(sql, (org_id,)).fetchall()
            finally:
                conn.close()
        return [self._rule_from_row(r) for r in rows]

    def get_rule(self, rule_id: str) -> Optional[ClassificationRule]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM classification_rules WHERE id=?", (str(rule_id),)).fetchone()
            finally:
                conn.close()
        return self._rule_from_row(row) if row else None

    def create_rule(self, rule: ClassificationRule) -> ClassificationRule:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO classification_rules(
                      id, org_id, pattern, level, data_types_json, description,
                      is_builtin, priority, enabled, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        rule.id,
                        rule.org_id,
                        rule.pattern,
                        rule.level.value,
                        _dumps_list(rule.data_types),
                        rule.description,
                        1 if rule.is_builtin else 0,
                        int(rule.priority),
                        1 if rule.enabled else 0,
                        rule.created_at,
                        rule.updated_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        return rule

    def update_rule(self, rule: ClassificationRule) -> bool:
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    """
                    UPDATE classification_rules
                    SET pattern=?, level=?, data_types_json=?, description=?, priority=?, enabled=?, updated_at=?
                    WHERE id=?
                    """,
                    (
                        rule.pattern,
                        rule.level.value,
                        _dumps_list(rule.data_types),
                        rule.description,
                        int(rule.priority),
                        1 if rule.enabled else 0,
                        rule.updated_at,
                        rule.id,
                    ),
                )
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute("DELETE FROM classification_rules WHERE id=?", (str(rule_id),))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    def seed_builtin_rules(self, rules: Iterable[ClassificationRule]) -> int:
        """
        Insert built-in rules that are not present yet. Existing rows (including their enabled flag) are kept.
        """
        inserted = 0
        with self._lock:
            conn = self._conn()
            try:
                for rule in rules:
                    if not rule.is_builtin:
                        continue
                    cur = conn.execute(
                        """
                        INSERT INTO classification_rules(
                          id, org_id, pattern, level, data_types_json, description,
                          is_builtin, priority, enabled, created_at, updated_at
                        ) VALUES (?, NULL, ?, ?, ?, ?, 1, ?, ?, ?, ?)
                        ON CONFLICT(id) DO NOTHING
                        """,
                        (
                            rule.id,
                            rule.pattern,
                            rule.level.value,
                            _dumps_list(rule.data_types),
                            rule.description,
                            int(rule.priority),
                            1 if rule.enabled else 0,
                            rule.created_at,
                            rule.updated_at,
                        ),
                    )
                    inserted += max(0, cur.rowcount)
                conn.commit()
            finally:
                conn.close()
        return inserted

    # ---- schedules ----
    def upsert_schedule(self, schedule: Schedule) -> Schedule:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO schedules(id, org_id, name, agent_id, paths_json, excludes_json, enabled, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      name=excluded.name,
                      agent_id=excluded.agent_id,
                      paths_json=excluded.paths_json,
                      excludes_json=excluded.excludes_json,
                      enabled=excluded.enabled
                    """,
                    (
                        schedule.id,
                        schedule.org_id,
                        schedule.name,
                        schedule.agent_id,
                        _dumps_list(schedule.paths),
                        _dumps_list(schedule.excludes),
                        1 if schedule.enabled else 0,
                        schedule.created_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        return schedule

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM schedules WHERE id=?", (str(schedule_id),)).fetchone()
            finally:
                conn.close()
        return self._schedule_from_row(row) if row else None

    def list_schedules_by_org(self, org_id: str) -> List[Schedule]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute("SELECT * FROM schedules WHERE org_id=? ORDER BY created_at ASC, id ASC", (str(org_id),)).fetchall()
            finally:
                conn.close()
        return [self._schedule_from_row(r) for r in rows]

    def list_schedule_org_ids(self) -> List[str]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute("SELECT DISTINCT org_id FROM schedules ORDER BY org_id ASC").fetchall()
            finally:
                conn.close()
        return [str(r["org_id"]) for r in rows]

    # ---- schedule classifications ----
    def get_schedule_classification(self, schedule_id: str) -> Optional[ScheduleClassification]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM schedule_classifications WHERE schedule_id=?", (str(schedule_id),)).fetchone()
            finally:
                conn.close()
        return self._schedule_classification_from_row(row) if row else None

    def upsert_schedule_classification(self, c: ScheduleClassification, *, preserve_manual: bool = True) -> bool:
        """
        Atomic create-or-update keyed by schedule_id.

        With preserve_manual, an automatic write never replaces a manual (auto_classified=0) row;
        the check happens inside the same statement, so a concurrent override cannot be lost.
        Returns True if the row was written.
        """
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    """
                    INSERT INTO schedule_classifications(schedule_id, level, data_types_json, auto_classified, status, classified_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(schedule_id) DO UPDATE SET
                      level=excluded.level,
                      data_types_json=excluded.data_types_json,
                      auto_classified=excluded.auto_classified,
                      status=excluded.status,
                      classified_at=excluded.classified_at
                    WHERE ? = 0
                       OR schedule_classifications.auto_classified = 1
                       OR excluded.auto_classified = 0
                    """,
                    (
                        c.schedule_id,
                        c.level.value,
                        _dumps_list(c.data_types),
                        1 if c.auto_classified else 0,
                        c.status.value,
                        c.classified_at,
                        1 if preserve_manual else 0,
                    ),
                )
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    # ---- backups ----
    def record_backup(self, backup: Backup) -> Backup:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO backups(id, schedule_id, org_id, status, started_at) VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET status=excluded.status
                    """,
                    (backup.id, backup.schedule_id, backup.org_id, backup.status, backup.started_at),
                )
                conn.commit()
            finally:
                conn.close()
        return backup

    def get_backup_classification(self, backup_id: str) -> Optional[BackupClassification]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM backup_classifications WHERE backup_id=?", (str(backup_id),)).fetchone()
            finally:
                conn.close()
        return self._backup_classification_from_row(row) if row else None

    def create_backup_classification(self, c: BackupClassification) -> BackupClassification:
        """
        Insert-only. Retrying with identical content returns the stored record;
        different content for an existing backup_id raises ImmutableRecordError.
        """
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    """
                    INSERT INTO backup_classifications(
                      id, backup_id, schedule_id, org_id, level, data_types_json, paths_json, status, error, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(backup_id) DO NOTHING
                    """,
                    (
                        c.id,
                        c.backup_id,
                        c.schedule_id,
                        c.org_id,
                        c.level.value,
                        _dumps_list(c.data_types),
                        _dumps_list(c.paths_classified),
                        c.status.value,
                        c.error,
                        c.created_at,
                    ),
                )
                conn.commit()
                inserted = cur.rowcount > 0
                row = conn.execute("SELECT * FROM backup_classifications WHERE backup_id=?", (c.backup_id,)).fetchone()
            finally:
                conn.close()
        stored = self._backup_classification_from_row(row)
        if not inserted and stored.content_key() != c.content_key():
            if self.logger:
                self.logger.error(f"Refused to overwrite classification of backup {c.backup_id}")
            raise ImmutableRecordError(
                "Backup classification already exists with different content.",
                backup_id=c.backup_id,
                stored_level=stored.level.value,
                attempted_level=c.level.value,
            )
        return stored

    def list_backups_by_org_and_level(self, org_id: str, level: Any, limit: Optional[int] = None) -> List[Backup]:
        """
        Backups without a classification record count as public.
        """
        lvl = ClassificationLevel.parse(level)
        return self._select_backups("WHERE b.org_id = ? AND COALESCE(bc.level, 'public') = ?", (str(org_id), lvl.value), limit=limit)

    def _select_backups(self, where: str, params: tuple, *, limit: Optional[int]) -> List[Backup]:
        sql = (
            "SELECT b.id AS b_id, b.schedule_id AS b_schedule_id, b.org_id AS b_org_id, b.status AS b_status, "
            "b.started_at AS b_started_at, bc.* "
            "FROM backups b LEFT JOIN backup_classifications bc ON bc.backup_id = b.id "
            f"{where} ORDER BY b.started_at DESC, b.id ASC LIMIT ?"
        )
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(sql, params + (int(limit) if limit is not None else -1,)).fetchall()
            finally:
                conn.close()
        out: List[Backup] = []
        for r in rows:
            out.append(
                Backup(
                    id=r["b_id"],
                    schedule_id=r["b_schedule_id"],
                    org_id=r["b_org_id"],
                    status=r["b_status"] or "",
                    started_at=r["b_started_at"] or "",
                    classification=self._backup_classification_from_row(r) if r["backup_id"] else None,
                )
            )
        return out
