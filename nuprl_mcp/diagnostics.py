"""Render the checker's first diagnostic for users."""

from dataclasses import dataclass

from .library import Diagnostic, Source


@dataclass(frozen=True)
class DiagnosticReport:
    message: str
    location: str | None = None  # "`path` at line L:C – L:C", 1-indexed

    def __str__(self) -> str:
        if self.location:
            return f"Error in {self.location}: {self.message}"
        return f"Error: {self.message}"


def first_diagnostic(sources: dict[int, Source], diagnostics: list[Diagnostic]) -> DiagnosticReport | None:
    """Format the first diagnostic, resolving its span against sources.

    The location is omitted if the diagnostic has no span or its source id
    is unknown.
    """
    if not diagnostics:
        return None
    diag = diagnostics[0]
    span = diag.span
    source = sources.get(span.source_id) if span else None
    if source is None:
        return DiagnosticReport(diag.message)
    location = f"`{source.path}` at line {span.start.display()} – {span.end.display()}"
    return DiagnosticReport(diag.message, location)
