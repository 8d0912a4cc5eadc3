"""
Half-open interval algebra for a single day.

Intervals are ``[start, end)`` over any totally ordered values (datetimes in
practice, minutes in tests). Every function returns new lists and never
mutates its inputs.
"""

from __future__ import annotations

from typing import Any, Iterable, List, NamedTuple


class Interval(NamedTuple):
    start: Any
    end: Any

    @property
    def is_empty(self) -> bool:
        return not self.start < self.end

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and self.end > other.start

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end


def normalize(intervals: Iterable[Interval]) -> List[Interval]:
    """Drop empty or inverted ranges (end <= start) and sort by start."""
    return sorted(
        (Interval(i.start, i.end) for i in intervals if i.start < i.end),
        key=lambda i: (i.start, i.end),
    )


def merge(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Sort and coalesce overlapping ranges.

    Ranges that touch exactly (a.end == b.start) are joined; a gap of any
    size keeps them apart.
    """
    merged: List[Interval] = []
    for current in normalize(intervals):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
        else:
            merged.append(current)
    return merged


def subtract(base: Iterable[Interval], removed: Iterable[Interval]) -> List[Interval]:
    """
    Remove every portion of ``base`` covered by any range in ``removed``.

    Each base range yields zero, one or two pieces per removal.
    """
    cuts = merge(removed)
    result: List[Interval] = []
    for piece in normalize(base):
        remaining = [piece]
        for cut in cuts:
            next_remaining: List[Interval] = []
            for part in remaining:
                if not part.overlaps(cut):
                    next_remaining.append(part)
                    continue
                if part.start < cut.start:
                    next_remaining.append(Interval(part.start, cut.start))
                if cut.end < part.end:
                    next_remaining.append(Interval(cut.end, part.end))
            remaining = next_remaining
            if not remaining:
                break
        result.extend(remaining)
    return normalize(result)


def contains(intervals: Iterable[Interval], candidate: Interval) -> bool:
    """True when a single range of the merged set fully covers ``candidate``."""
    return any(block.contains(candidate) for block in merge(intervals))


def overlapping(intervals: Iterable[Interval], candidate: Interval) -> List[Interval]:
    return [i for i in normalize(intervals) if i.overlaps(candidate)]
