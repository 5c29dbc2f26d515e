from __future__ import annotations

import posixpath
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import List

from bastion.core.classification.models import ClassificationRule
from bastion.core.errors import InvalidPatternError


GLOBSTAR = "**"


def normalize_path(path: str) -> str:
    s = str(path or "").strip().replace("\\", "/")
    if not s:
        return ""
    return posixpath.normpath(s)


def _split(path: str) -> List[str]:
    return path.split("/")


def _segment_ok(seg: str) -> bool:
    # an opening '[' must be closed within the same segment
    i = 0
    while i < len(seg):
        if seg[i] == "[":
            j = seg.find("]", i + 2 if i + 1 < len(seg) and seg[i + 1] in "!]" else i + 1)
            if j < 0:
                return False
            i = j
        i += 1
    return True


def validate_pattern(pattern: str) -> str:
    """Return the normalized pattern or raise InvalidPatternError."""
    norm = normalize_path(pattern)
    if not norm:
        raise InvalidPatternError("Pattern must not be empty.", pattern=str(pattern or ""))
    for seg in _split(norm):
        if not _segment_ok(seg):
            raise InvalidPatternError("Pattern has an unterminated character class.", pattern=str(pattern))
    return norm


def _match_parts(pattern: List[str], path: List[str]) -> bool:
    while pattern and path:
        head = pattern[0]
        if head == GLOBSTAR:
            if len(pattern) == 1:
                return True
            # zero or more whole segments
            return any(_match_parts(pattern[1:], path[i:]) for i in range(len(path) + 1))
        if not fnmatchcase(path[0], head):
            return False
        pattern = pattern[1:]
        path = path[1:]
    # trailing ** matches nothing as well
    if len(pattern) == 1 and pattern[0] == GLOBSTAR:
        return True
    return not pattern and not path


@dataclass
class PatternMatcher:
    """
    Glob matching over '/'-separated segments:
    '*' stays within a segment, '**' spans any number of segments.
    """

    case_sensitive: bool = True

    def matches(self, pattern: str, path: str) -> bool:
        p = normalize_path(path)
        if not p:
            return False
        try:
            pat = validate_pattern(pattern)
        except InvalidPatternError:
            # malformed rules never match
            return False
        if pat == GLOBSTAR:
            return True
        if not self.case_sensitive:
            pat = pat.lower()
            p = p.lower()
        return _match_parts(_split(pat), _split(p))

    def rule_matches(self, rule: ClassificationRule, path: str) -> bool:
        if not rule.enabled:
            return False
        return self.matches(rule.pattern, path)

    def any_matches(self, patterns: List[str], path: str) -> bool:
        return any(self.matches(pat, path) for pat in patterns or [])
