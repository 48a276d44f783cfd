"""Nuprl proof navigation engine and MCP server."""

from .spans import Position, Span, contains, is_before, compare_spans
from .library import Library, ProofNode, parse_check_output, MalformedOutputError
from .proof_index import resolve, find_node, ResolvedNode
from .holes import holes_in, next_hole, previous_hole
from .diagnostics import first_diagnostic, DiagnosticReport
from .nuprl_checker import NuprlChecker, ProcessError
from .proof_session import ProofSession, ProofView

__all__ = [
    "Position", "Span", "contains", "is_before", "compare_spans",
    "Library", "ProofNode", "parse_check_output", "MalformedOutputError",
    "resolve", "find_node", "ResolvedNode",
    "holes_in", "next_hole", "previous_hole",
    "first_diagnostic", "DiagnosticReport",
    "NuprlChecker", "ProcessError",
    "ProofSession", "ProofView",
]
