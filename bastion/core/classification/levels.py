from __future__ import annotations

"""
Sensitivity lattice and well-known data-type tags.

Levels are totally ordered by an explicit rank; never compare the string
values ("confidential" < "internal" lexically, which is wrong).
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class ClassificationLevel(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, ClassificationLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, ClassificationLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, ClassificationLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, ClassificationLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any, *, default: Optional["ClassificationLevel"] = None) -> "ClassificationLevel":
        """
        Lenient parse used when reading stored rows: unknown or missing -> default (public).
        """
        if isinstance(value, ClassificationLevel):
            return value
        try:
            return cls(level_text(value))
        except ValueError:
            return default if default is not None else cls.PUBLIC


_RANK = {
    ClassificationLevel.PUBLIC: 1,
    ClassificationLevel.INTERNAL: 2,
    ClassificationLevel.CONFIDENTIAL: 3,
    ClassificationLevel.RESTRICTED: 4,
}

_LABELS = {
    ClassificationLevel.PUBLIC: "Public",
    ClassificationLevel.INTERNAL: "Internal",
    ClassificationLevel.CONFIDENTIAL: "Confidential",
    ClassificationLevel.RESTRICTED: "Restricted",
}

_DESCRIPTIONS = {
    ClassificationLevel.PUBLIC: "Non-sensitive, publicly shareable data",
    ClassificationLevel.INTERNAL: "Internal business data with limited access",
    ClassificationLevel.CONFIDENTIAL: "Sensitive data requiring protection",
    ClassificationLevel.RESTRICTED: "Highly sensitive data with strict access controls",
}


def all_levels() -> List[ClassificationLevel]:
    return sorted(ClassificationLevel, key=lambda lvl: lvl.rank)


def max_level(*levels: Any) -> ClassificationLevel:
    out = ClassificationLevel.PUBLIC
    for lvl in levels:
        cur = ClassificationLevel.parse(lvl)
        if cur.rank > out.rank:
            out = cur
    return out


def level_text(value: Any) -> str:
    # str() of a str-mixin enum member is "ClassificationLevel.X", not its value
    if isinstance(value, Enum):
        value = value.value
    return str(value or "").strip().lower()


def is_valid_level(value: Any) -> bool:
    try:
        ClassificationLevel(level_text(value))
    except ValueError:
        return False
    return True


# Tags are free-form; these are the ones the built-in rules use.
class DataType(str, Enum):
    PII = "pii"
    PHI = "phi"
    PCI = "pci"
    PROPRIETARY = "proprietary"
    GENERAL = "general"


_DATA_TYPE_INFO = {
    DataType.PII: ("PII", "Personally Identifiable Information"),
    DataType.PHI: ("PHI", "Protected Health Information (HIPAA)"),
    DataType.PCI: ("PCI", "Payment Card Industry data (PCI-DSS)"),
    DataType.PROPRIETARY: ("Proprietary", "Proprietary business data"),
    DataType.GENERAL: ("General", "General unclassified data"),
}


def normalize_data_types(values: Optional[Iterable[Any]]) -> List[str]:
    """Strip, lowercase, drop empties and duplicates; sorted for stable storage."""
    out = set()
    for v in values or []:
        s = str(v.value if isinstance(v, Enum) else v or "").strip().lower()
        if s:
            out.add(s[:64])
    return sorted(out)


def level_catalog() -> List[Dict[str, Any]]:
    return [
        {"value": lvl.value, "label": lvl.label, "description": _DESCRIPTIONS[lvl], "priority": lvl.rank}
        for lvl in all_levels()
    ]


def data_type_catalog() -> List[Dict[str, Any]]:
    return [{"value": dt.value, "label": info[0], "description": info[1]} for dt, info in _DATA_TYPE_INFO.items()]
