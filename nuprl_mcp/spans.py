"""Source positions and spans reported by the Nuprl checker."""

import bisect
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class Position:
    """A (line, column) position, both 0-indexed.

    Field order gives lexicographic comparison.
    """
    line: int
    column: int

    def display(self) -> str:
        """1-indexed "line:col" for showing to users."""
        return f"{self.line + 1}:{self.column + 1}"


@dataclass(frozen=True)
class Span:
    """A source range attributed to an object or proof node."""
    source_id: int
    start: Position
    end: Position
    offsets: tuple[int, int] | None = None  # (start, end) char offsets, if reported

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Span end {self.end} is before start {self.start}")

    def to_dict(self) -> dict:
        """Wire form, as the checker emits it."""
        data = {
            "source_id": self.source_id,
            "visual": {
                "start": {"line": self.start.line, "col": self.start.column},
                "end": {"line": self.end.line, "col": self.end.column},
            },
        }
        if self.offsets is not None:
            data["range"] = {"start": self.offsets[0], "end": self.offsets[1]}
        return data


def contains(span: Span, pos: Position) -> bool:
    """True if pos lies within span, both ends inclusive."""
    return span.start <= pos <= span.end


def is_before(pos: Position, anchor: Position) -> bool:
    """Strict lexicographic less-than on (line, column)."""
    return pos < anchor


def span_sort_key(span: Span) -> tuple[Position, Position]:
    """Key for document order: start, then end.

    Python's sort is stable, so equal spans keep their input order.
    """
    return (span.start, span.end)


def compare_spans(a: Span, b: Span) -> int:
    """Three-way compare in document order. Returns -1, 0 or 1."""
    ka, kb = span_sort_key(a), span_sort_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def build_line_starts(content: str) -> list[int]:
    """Build table mapping line numbers to char offsets.

    line_starts[i] = char offset where line i (0-indexed) begins.
    """
    starts = [0]
    for i, c in enumerate(content):
        if c == '\n':
            starts.append(i + 1)  # Next line starts after newline
    return starts


def offset_to_position(offset: int, line_starts: list[int]) -> Position:
    """Convert char offset to a 0-indexed Position."""
    # Largest line_starts[i] <= offset
    line = bisect.bisect_right(line_starts, offset) - 1
    return Position(line, offset - line_starts[line])

