# src/registry_metrics/domain/services/path_classifier.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Path classification rules.

Summary:
    Pure functions that match a decoded request path against ordered rule
    sets: exclusion rules (request metrics) and grouping rules (package
    download metrics). Rules are compiled once at configuration time into
    tuples so iteration order always equals declaration order; the first
    matching rule wins.

Design:
    * Matching is unanchored (``Pattern.search``); operators anchor with
      ``^``/``$`` explicitly.
    * Exclusion rules are compiled case-insensitive, grouping rules are not.
    * No pattern text is special: ``.*`` declared last is simply a catch-all.
    * Invalid patterns raise :class:`MetricsConfigError` at compile time.

Layer:
    domain/services
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Final
from urllib.parse import unquote

from registry_metrics.domain.exceptions.metrics import MetricsConfigError

__all__ = [
    "DEFAULT_EXCLUDED_PATHS",
    "ExclusionRules",
    "GroupingRules",
    "decode_path",
    "compile_rules",
    "compile_groups",
    "first_exclusion",
    "is_excluded",
    "classify_group",
]

ExclusionRules = tuple[re.Pattern[str], ...]
GroupingRules = tuple[tuple[re.Pattern[str], str], ...]

DEFAULT_EXCLUDED_PATHS: Final[tuple[str, ...]] = (
    r"^/$",  # root path to web ui
    r"^/[-]/ping",  # health endpoint
    r"^/[-]/(static|verdaccio|web)",  # web ui assets
    r"[.]ico$",  # icons (e.g. favicon.ico)
)

_BAD_ESCAPE_RE: Final[re.Pattern[str]] = re.compile(r"%(?![0-9A-Fa-f]{2})")


def decode_path(raw_path: str) -> str:
    """Percent-decode a request path, falling back to the raw path.

    ``/@scoped%2Ftest-package`` decodes to ``/@scoped/test-package``. A
    malformed escape (``%`` not followed by two hex digits, or bytes that are
    not valid UTF-8) leaves the path untouched.

    Args:
        raw_path: Path as received on the wire.

    Returns:
        The decoded path, or ``raw_path`` if it cannot be decoded.
    """
    if "%" not in raw_path:
        return raw_path
    if _BAD_ESCAPE_RE.search(raw_path):
        return raw_path
    try:
        return unquote(raw_path, encoding="utf-8", errors="strict")
    except UnicodeDecodeError:
        return raw_path


def _compile(pattern: str, flags: int) -> re.Pattern[str]:
    try:
        return re.compile(pattern, flags)
    except (re.error, TypeError) as exc:
        raise MetricsConfigError(
            f"Invalid path pattern {pattern!r}: {exc}",
            details={"pattern": pattern},
        ) from exc


def compile_rules(patterns: Iterable[str], *, flags: int = 0) -> ExclusionRules:
    """Compile patterns in declaration order.

    Args:
        patterns: Regular expression sources.
        flags: ``re`` flags applied to every pattern.

    Returns:
        Tuple of compiled patterns.

    Raises:
        MetricsConfigError: If any pattern is not a valid regular expression.
    """
    return tuple(_compile(p, flags) for p in patterns)


def compile_groups(
    groups: Mapping[str, str] | Sequence[tuple[str, str]],
    *,
    flags: int = 0,
) -> GroupingRules:
    """Compile ``pattern -> label`` grouping rules in declaration order.

    Args:
        groups: Mapping (insertion order is declaration order) or sequence of pairs.
        flags: ``re`` flags applied to every pattern.

    Returns:
        Tuple of ``(compiled pattern, label)`` pairs.

    Raises:
        MetricsConfigError: If any pattern is not a valid regular expression.
    """
    pairs = groups.items() if isinstance(groups, Mapping) else groups
    return tuple((_compile(pattern, flags), str(label)) for pattern, label in pairs)


def first_exclusion(decoded_path: str, rules: ExclusionRules) -> re.Pattern[str] | None:
    """Return the first exclusion rule matching ``decoded_path``, if any."""
    for rule in rules:
        if rule.search(decoded_path):
            return rule
    return None


def is_excluded(decoded_path: str, rules: ExclusionRules) -> bool:
    """Return True iff any exclusion rule matches ``decoded_path``."""
    return first_exclusion(decoded_path, rules) is not None


def classify_group(decoded_path: str, groups: GroupingRules) -> str | None:
    """Return the label of the first grouping rule matching ``decoded_path``.

    Args:
        decoded_path: Percent-decoded request path.
        groups: Compiled grouping rules.

    Returns:
        The matching label, or ``None`` when no rule matches.
    """
    for pattern, label in groups:
        if pattern.search(decoded_path):
            return label
    return None
