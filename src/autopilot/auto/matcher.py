"""Pattern matcher — test one rule pattern against a blob of terminal output."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from autopilot.db.models import Pattern
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.matcher")

# (value, case_sensitive) -> compiled regex. Filled at rule save/load time only.
_REGEX_CACHE: dict[tuple[str, bool], re.Pattern] = {}
_warned_uncompiled: set[str] = set()


@dataclass
class PatternMatch:
    """Result of matching one pattern.

    ``text`` is the matched substring and ``groups`` holds ``$0..$n``; both are
    empty for non-matches and for negated patterns.
    """

    matched: bool
    text: str = ""
    groups: list[str] = field(default_factory=list)


def _cache_key(pattern: Pattern) -> tuple[str, bool]:
    return (pattern.value, pattern.case_sensitive)


def compile_pattern(pattern: Pattern) -> re.Pattern:
    """Compile a regex pattern and store it in the cache.

    Args:
        pattern: A pattern with ``mode == 'regex'``.

    Returns:
        The compiled regular expression.

    Raises:
        re.error: If the value is not a valid regular expression.
    """
    key = _cache_key(pattern)
    compiled = _REGEX_CACHE.get(key)
    if compiled is None:
        flags = 0 if pattern.case_sensitive else re.IGNORECASE
        compiled = re.compile(pattern.value, flags)
        _REGEX_CACHE[key] = compiled
    return compiled


def cached_regex(pattern: Pattern) -> re.Pattern | None:
    """Return the pre-compiled regex for ``pattern``, or None if never validated."""
    return _REGEX_CACHE.get(_cache_key(pattern))


def retain_only(patterns: Iterable[Pattern]) -> None:
    """Drop cached regexes that no longer belong to any stored pattern."""
    keep = {_cache_key(p) for p in patterns if p.mode == "regex"}
    for key in list(_REGEX_CACHE):
        if key not in keep:
            del _REGEX_CACHE[key]


def clear_cache() -> None:
    _REGEX_CACHE.clear()
    _warned_uncompiled.clear()


def _literal(pattern: Pattern, anchor: str = "") -> re.Pattern:
    """Literal pattern value as a regex, so offsets always refer to the original text."""
    flags = 0 if pattern.case_sensitive else re.IGNORECASE
    return re.compile(re.escape(pattern.value) + anchor, flags)


def _literal_match(m: re.Match | None) -> PatternMatch:
    if m is None:
        return PatternMatch(False)
    return PatternMatch(True, m.group(0), [m.group(0)])


def _match_contains(pattern: Pattern, text: str) -> PatternMatch:
    return _literal_match(_literal(pattern).search(text))


def _match_exact(pattern: Pattern, text: str) -> PatternMatch:
    return _literal_match(_literal(pattern).fullmatch(text))


def _match_starts_with(pattern: Pattern, text: str) -> PatternMatch:
    return _literal_match(_literal(pattern).match(text))


def _match_ends_with(pattern: Pattern, text: str) -> PatternMatch:
    return _literal_match(_literal(pattern, r"\Z").search(text))


def _match_regex(pattern: Pattern, text: str) -> PatternMatch:
    compiled = cached_regex(pattern)
    if compiled is None:
        if pattern.id not in _warned_uncompiled:
            _warned_uncompiled.add(pattern.id)
            logger.warning(
                f"Regex pattern {pattern.id} was never validated, treating as no match: "
                f"{pattern.value!r}"
            )
        return PatternMatch(False)
    m = compiled.search(text)
    if m is None:
        return PatternMatch(False)
    groups = [m.group(0)] + [g or "" for g in m.groups()]
    return PatternMatch(True, m.group(0), groups)


_MATCHERS = {
    "contains": _match_contains,
    "exact": _match_exact,
    "startsWith": _match_starts_with,
    "endsWith": _match_ends_with,
    "regex": _match_regex,
}


def match_pattern(pattern: Pattern, text: str) -> PatternMatch:
    """Match one pattern against ``text``, applying negation.

    A regex that was never compiled (invalid or unvalidated) is a non-match
    whether or not the pattern is negated.

    Args:
        pattern: The pattern to test.
        text: The whole output blob.

    Returns:
        ``PatternMatch`` with the matched text and ``$0..$n`` groups.
    """
    matcher = _MATCHERS.get(pattern.mode)
    if matcher is None:
        logger.warning(f"Unknown pattern mode {pattern.mode!r} on pattern {pattern.id}")
        return PatternMatch(False)

    if pattern.mode == "regex" and cached_regex(pattern) is None:
        return matcher(pattern, text)

    raw = matcher(pattern, text)
    if pattern.negate:
        return PatternMatch(not raw.matched)
    return raw


def matches(pattern: Pattern, text: str) -> bool:
    """Return True if ``pattern`` matches ``text`` (after negation)."""
    return match_pattern(pattern, text).matched


def find_all(pattern: Pattern, text: str) -> list[tuple[int, str]]:
    """List every occurrence of ``pattern`` in ``text`` as ``(index, text)``.

    Used by the pattern tester; negation is ignored here.

    Raises:
        re.error: If a regex pattern is invalid.
    """
    if pattern.mode == "regex":
        return [(m.start(), m.group(0)) for m in compile_pattern(pattern).finditer(text)]
    if not pattern.value:
        return []
    if pattern.mode == "contains":
        return [(m.start(), m.group(0)) for m in _literal(pattern).finditer(text)]

    literal = _literal(pattern, r"\Z" if pattern.mode == "endsWith" else "")
    if pattern.mode == "exact":
        m = literal.fullmatch(text)
    elif pattern.mode == "startsWith":
        m = literal.match(text)
    else:
        m = literal.search(text)
    return [(m.start(), m.group(0))] if m else []
