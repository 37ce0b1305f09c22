"""Output buffer — ANSI stripping + capture diffing for tmux pane snapshots."""

from __future__ import annotations

import re

_ANSI_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# Lines of the previous capture that must line up before a position is trusted
_ANCHOR_LINES = 3


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes (colors, cursor movement, etc.)."""
    return _ANSI_RE.sub("", text)


def _overlap_end(previous: list[str], current: list[str]) -> int | None:
    """Index in ``current`` just past the longest suffix of ``previous`` it starts with."""
    need = min(_ANCHOR_LINES, len(previous))
    for skip in range(len(previous) - need + 1):
        size = len(previous) - skip
        if current[:size] == previous[skip:]:
            return size
    return None


def diff_lines(previous: list[str], current: list[str]) -> list[str]:
    """Return the lines of ``current`` that come after the content of ``previous``.

    Captures of a scrolling pane overlap: the tail of the previous snapshot is
    the head of the current one. The longest such overlap (at least a few
    anchor lines) marks where the new output starts, so a block that repeats
    right after itself is still reported. A last line that kept being written
    to (an unfinished prompt) is allowed to differ. With no overlap (screen
    cleared, or scrolled past) the whole capture is new.
    """
    if not previous:
        return list(current)
    if current == previous:
        return []
    end = _overlap_end(previous, current)
    if end is None and len(previous) > 1:
        end = _overlap_end(previous[:-1], current)
    if end is None:
        return list(current)
    return current[end:]


class OutputBuffer:
    """Turn successive pane captures into the lines that are new."""

    def __init__(self) -> None:
        self.previous: list[str] = []

    @staticmethod
    def _clean(raw: str) -> list[str]:
        lines = [strip_ansi(line).rstrip() for line in raw.splitlines()]
        while lines and not lines[-1]:
            lines.pop()
        return lines

    def prime(self, raw: str) -> None:
        """Take ``raw`` as the baseline so existing screen content is not reported."""
        self.previous = self._clean(raw)

    def feed(self, raw: str) -> list[str]:
        """Process one capture and return only the lines not seen before.

        Args:
            raw: Full pane capture, possibly containing ANSI sequences.

        Returns:
            New, cleaned lines since the previous capture.
        """
        lines = self._clean(raw)
        new_lines = diff_lines(self.previous, lines)
        self.previous = lines
        return new_lines

    def tail(self, lines: int = 15) -> str:
        """Last ``lines`` lines of the current screen."""
        return "\n".join(self.previous[-lines:])

    def reset(self) -> None:
        self.previous = []
