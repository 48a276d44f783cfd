#!/usr/bin/env python3
"""Nuprl MCP Server - proof navigation tools over the nuprl checker.

Sessions are in-memory only. Each session tracks one file, the library from
its last successful check, and a cursor position.
"""

import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastmcp import FastMCP

from .nuprl_checker import NuprlChecker
from .proof_session import ProofSession, ProofView, RecheckOutcome
from .spans import Position, build_line_starts, offset_to_position


DEFAULT_MAX_OUTPUT = 4096


def _truncate_output(output: str, max_output: int) -> str:
    """Truncate output to max_output bytes, showing tail."""
    if max_output < 1:
        return f"ERROR: max_output must be positive (got {max_output})"
    if len(output) > max_output:
        return f"[TRUNCATED: {len(output)} bytes, showing last {max_output}]\n\n{output[-max_output:]}"
    return output


@dataclass
class SessionEntry:
    """Registry entry for a proof session."""
    session: ProofSession
    started: datetime
    workdir: Path
    last_used: float = 0.0  # time.time() of last activity

    def __post_init__(self):
        if self.last_used == 0.0:
            self.last_used = time.time()


mcp = FastMCP("nuprl", instructions="""Nuprl proof navigation:

1. nuprl_open: Check a file and show the proof state at its start
2. nuprl_state_at: Show the proof node and goal at a line/col (1-indexed)
3. nuprl_next_hole / nuprl_previous_hole: Tour incomplete proof nodes
4. Edit the file, then nuprl_recheck to re-run the checker

nuprl_reduce evaluates an expression in the context of the open file.
""")
_sessions: dict[str, SessionEntry] = {}


_SESSION_IDLE_TIMEOUT = 7200  # 2 hours
_PRUNE_INTERVAL = 300  # Check every 5 minutes at most
_last_prune_time = 0.0


def _prune_idle_sessions():
    """Drop sessions idle longer than _SESSION_IDLE_TIMEOUT.

    Throttled to run at most once per _PRUNE_INTERVAL seconds.
    """
    global _last_prune_time
    now = time.time()
    if now - _last_prune_time < _PRUNE_INTERVAL:
        return
    _last_prune_time = now
    for name in [n for n, e in _sessions.items() if now - e.last_used > _SESSION_IDLE_TIMEOUT]:
        _sessions.pop(name, None)


def _get_session(name: str) -> Optional[ProofSession]:
    """Get session from registry, or None if not found. Triggers idle pruning."""
    _prune_idle_sessions()
    entry = _sessions.get(name)
    if entry:
        entry.last_used = time.time()
    return entry.session if entry else None


def _session_age(name: str) -> str:
    """Get human-readable session age."""
    entry = _sessions.get(name)
    if not entry:
        return "unknown"
    secs = int((datetime.now() - entry.started).total_seconds())
    if secs < 60:
        return f"{secs}s"
    elif secs < 3600:
        return f"{secs // 60}m"
    else:
        return f"{secs / 3600:.1f}h"


# =============================================================================
# Rendering
# =============================================================================

def _format_hypothesis(hy: dict) -> str:
    hidden = " (hidden)" if hy.get("hidden") else ""
    return f"{hy.get('var')} ∈ {hy.get('ty')}{hidden}"


def _format_goal(goal: dict | None, extract, indent: str = "  ") -> list[str]:
    """Render numbered hypotheses, a separator, then `extract ∈ conclusion`."""
    if not goal:
        return [f"{indent}(no goal)"]
    lines = []
    hys = goal.get("hys") or []
    for i, hy in enumerate(hys, 1):
        lines.append(f"{indent}{i}. {_format_hypothesis(hy)}")
    if hys:
        lines.append(indent + "-" * 40)
    ext = extract if extract is not None else "??"
    lines.append(f"{indent}{ext} ∈ {goal.get('concl')}")
    return lines


def _format_view(view: ProofView) -> str:
    lines = [f"File: {view.file}", f"Cursor: line {view.position.display()}"]

    if view.source_id is None:
        lines.append("File is not part of the checked library.")
        return "\n".join(lines)

    lines.append(f"Holes remaining in file: {view.num_holes}")
    lines.append("")

    resolved = view.resolved
    if resolved is None:
        lines.append("No proof context here.")
        return "\n".join(lines)

    node = resolved.node
    lines.append(f"Theorem: {resolved.obj.name} (object {resolved.obj.id})")
    span = resolved.span
    loc = f" at line {span.start.display()} – {span.end.display()}" if span else ""
    lines.append(f"Proof node: {node.node_id}{loc}{' [hole]' if node.is_hole else ''}")
    lines.append("")
    lines.append("=== Goal ===")
    lines.extend(_format_goal(node.goal, node.extract))
    if node.conflict:
        lines.append("")
        lines.append("WARNING: Could not apply inference rule to goal")

    if node.children:
        lines.append("")
        lines.append(f"=== Subgoals ({len(node.children)}) ===")
        for i, child in enumerate(node.children, 1):
            ref = f" [node {child.node_id}]" if child.node_id is not None else ""
            lines.append(f"Subgoal {i}{ref}:")
            lines.extend(_format_goal(child.goal, child.extract, indent="    "))
    return "\n".join(lines)


def _format_recheck(outcome: RecheckOutcome) -> list[str]:
    lines = []
    if outcome.error:
        lines.append(f"ERROR: {outcome.error}")
        lines.append("(previous check result kept)")
    elif not outcome.adopted:
        lines.append("Checker produced no library (previous check result kept)")
    if outcome.diagnostic:
        lines.append(str(outcome.diagnostic))
    return lines


def _no_session(session: str) -> str:
    return f"ERROR: Session '{session}' not found. Use nuprl_open(file=...) first."


# =============================================================================
# Tools
# =============================================================================

async def _open_session(file: str, session: str, workdir: str = None) -> tuple[ProofSession | None, str]:
    """Create or retarget a session for file. Returns (session, error_or_output)."""
    file_path = Path(file).resolve()
    if not file_path.exists():
        return None, f"ERROR: File not found: {file}"
    if not file_path.is_file():
        return None, f"ERROR: Not a file: {file}"
    target_workdir = Path(workdir).resolve() if workdir else file_path.parent
    if not target_workdir.exists():
        return None, f"ERROR: Working directory does not exist: {workdir}"

    entry = _sessions.get(session)
    if entry and entry.workdir == target_workdir:
        # Editor switch within the same library
        s = entry.session
        entry.last_used = time.time()
        outcome = await s.switch_file(file_path)
    else:
        s = ProofSession(file_path, NuprlChecker(), workdir=target_workdir)
        _sessions[session] = SessionEntry(s, datetime.now(), target_workdir)
        outcome = await s.recheck()

    return s, "\n".join(_format_recheck(outcome))


@mcp.tool()
async def nuprl_open(file: str, workdir: str = None, session: str = "default",
                     max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """Check a Nuprl file and show the proof state at its start.

    Args:
        file: Path to the proof file
        workdir: Library root passed to `nuprl check` (default: file's directory)
        session: Session name (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: Check result, diagnostics, and the proof view at line 1
    """
    s, header = await _open_session(file, session, workdir)
    if s is None:
        return header
    status = s.status
    lines = [header] if header else []
    lines.append(f"Theorems: {len(status['theorems'])} ({status['holes']} holes)")
    for thm in status['theorems']:
        marker = f" ({thm['holes']} holes)" if thm['holes'] else ""
        lines.append(f"  {thm['name']} (line {thm['line'] + 1}){marker}")
    lines.append("")
    lines.append(_format_view(s.reposition()))
    return _truncate_output("\n".join(lines), max_output)


@mcp.tool()
async def nuprl_recheck(text: str = None, session: str = "default",
                        max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """Re-run the checker after the file was edited or saved.

    Args:
        text: Document contents to check (default: read the file from disk)
        session: Session name (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: Diagnostics and the refreshed proof view at the current cursor
    """
    s = _get_session(session)
    if not s:
        return _no_session(session)
    t0 = time.perf_counter()
    outcome = await s.recheck(text)
    elapsed = time.perf_counter() - t0

    lines = _format_recheck(outcome)
    if outcome.view:
        if lines:
            lines.append("")
        lines.append(_format_view(outcome.view))
    lines.append("")
    lines.append(f"[Check time: {elapsed*1000:.0f}ms]")
    return _truncate_output("\n".join(lines), max_output)


@mcp.tool()
async def nuprl_state_at(
    line: int = None,
    col: int = 1,
    offset: int = None,
    file: str = None,
    workdir: str = None,
    max_output: int = DEFAULT_MAX_OUTPUT,
    session: str = "default",
) -> str:
    """Show the proof node and goal at a file position.

    Args:
        line: 1-indexed line number
        col: 1-indexed column number (default 1)
        offset: 0-indexed character offset into the file, instead of line/col
        file: Path to proof file (opens or switches the session to it if needed)
        workdir: Library root (used with file)
        max_output: Max bytes of output (default 4096)
        session: Session name (default: "default")

    Returns: Enclosing theorem and proof node, its goal and subgoals, hole count
    """
    if offset is not None:
        if offset < 0:
            return f"ERROR: offset must be non-negative (got {offset})"
    elif line is None:
        return "ERROR: Pass line (and col) or offset"
    elif line < 1 or col < 1:
        return f"ERROR: line and col are 1-indexed (got {line}:{col})"

    s = _get_session(session)
    prefix = []
    if file:
        file_path = Path(file).resolve()
        if not s or s.file.resolve() != file_path:
            s, header = await _open_session(file, session, workdir)
            if s is None:
                return header
            if header:
                prefix = [header, ""]
    if not s:
        return f"ERROR: No session '{session}'. Pass file= to open one."

    if offset is not None:
        try:
            content = s.file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return f"ERROR: Cannot read {s.file}: {e}"
        position = offset_to_position(min(offset, len(content)), build_line_starts(content))
    else:
        position = Position(line - 1, col - 1)

    view = s.reposition(position)
    return _truncate_output("\n".join(prefix + [_format_view(view)]), max_output)


async def _jump(session: str, direction: str, max_output: int) -> str:
    s = _get_session(session)
    if not s:
        return _no_session(session)
    view = s.next_hole() if direction == "next" else s.previous_hole()
    if view is None:
        return "No holes in file."
    return _truncate_output(_format_view(view), max_output)


@mcp.tool()
async def nuprl_next_hole(session: str = "default", max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """Move the cursor to the next hole in the file (wraps to the first).

    Args:
        session: Session name (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: Proof view at the hole
    """
    return await _jump(session, "next", max_output)


@mcp.tool()
async def nuprl_previous_hole(session: str = "default", max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """Move the cursor to the previous hole in the file (wraps to the last).

    Args:
        session: Session name (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: Proof view at the hole
    """
    return await _jump(session, "previous", max_output)


@mcp.tool()
async def nuprl_jump_to_node(obj_id: str, node_id: str, session: str = "default",
                             max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """Move the cursor to a proof node, e.g. a subgoal listed by nuprl_state_at.

    Args:
        obj_id: Object id of the theorem
        node_id: Proof node id
        session: Session name (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: Proof view at the node
    """
    s = _get_session(session)
    if not s:
        return _no_session(session)
    view = s.jump_to_node(str(obj_id), str(node_id))
    if view is None:
        return f"ERROR: No proof node {node_id} with a recorded span in object {obj_id}"
    return _truncate_output(_format_view(view), max_output)


@mcp.tool()
async def nuprl_holes(session: str = "default", max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """List the holes (incomplete proof nodes) of the current file in order.

    Args:
        session: Session name (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: One line per hole with its theorem and position
    """
    s = _get_session(session)
    if not s:
        return _no_session(session)
    holes = s.hole_nodes()
    if not holes:
        return "No holes in file."
    lines = [f"Holes ({len(holes)}):"]
    for obj, node, span in holes:
        lines.append(f"  line {span.start.display()}  {obj.name} (node {node.node_id})")
    return _truncate_output("\n".join(lines), max_output)


@mcp.tool()
async def nuprl_reduce(expr: str, max_steps: int = None, session: str = "default",
                       max_output: int = DEFAULT_MAX_OUTPUT) -> str:
    """Evaluate an expression with `nuprl reduce`.

    Args:
        expr: Expression to reduce
        max_steps: Reduction steps (default: reduce to normal form)
        session: Session whose file and library are used (default: "default")
        max_output: Max bytes of output (default 4096)

    Returns: Original and reduced expression, or the error
    """
    s = _get_session(session)
    if not s:
        return _no_session(session)
    if max_steps is not None and max_steps < 0:
        return f"ERROR: max_steps must be non-negative (got {max_steps})"
    outcome = await s.reduce(expr, max_steps)
    if outcome.error:
        return f"ERROR: {outcome.error}"
    lines = []
    if outcome.original is not None and outcome.reduced is not None:
        lines.append(f"Expression: {outcome.original}")
        lines.append(f"Reduced:    {outcome.reduced}")
    if outcome.diagnostic:
        lines.append(str(outcome.diagnostic))
    return _truncate_output("\n".join(lines) or "No result.", max_output)


@mcp.tool()
async def nuprl_sessions() -> str:
    """List all proof sessions with their file, age, holes and cursor."""
    _prune_idle_sessions()
    if not _sessions:
        return "No active sessions."

    lines = ["SESSION      FILE                                       AGE     IDLE    HOLES  CURSOR"]
    lines.append("-" * 95)

    now = time.time()
    for name, entry in _sessions.items():
        s = entry.session
        idle_secs = int(now - entry.last_used)
        if idle_secs < 60:
            idle_str = f"{idle_secs}s"
        elif idle_secs < 3600:
            idle_str = f"{idle_secs // 60}m"
        else:
            idle_str = f"{idle_secs / 3600:.1f}h"
        file_str = str(s.file)
        if len(file_str) > 40:
            file_str = "..." + file_str[-37:]
        holes = str(len(s.holes())) if s.library else "-"
        lines.append(f"{name:<12} {file_str:<42} {_session_age(name):<7} {idle_str:<7} "
                     f"{holes:<6} {s.position.display()}")

    return "\n".join(lines)


@mcp.tool()
async def nuprl_close(session: str = "default") -> str:
    """Forget a proof session.

    Args:
        session: Session name (default: "default")

    Returns: Confirmation message
    """
    if _sessions.pop(session, None):
        return f"Session '{session}' closed."
    return f"Session '{session}' not found."


def main():
    """CLI entry point for the Nuprl MCP server."""
    import argparse
    import logging

    parser = argparse.ArgumentParser(description="Nuprl MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http", "sse"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument("--port", type=int, default=8000, help="Port for HTTP/SSE (default: 8000)")
    parser.add_argument("--host", default="127.0.0.1", help="Host for HTTP/SSE (default: 127.0.0.1)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
        logging.getLogger("mcp").setLevel(logging.DEBUG)

    if args.transport == "stdio":
        mcp.run(show_banner=False)
    else:
        print(f"Nuprl MCP server starting on {args.host}:{args.port} ({args.transport})", file=sys.stderr)
        mcp.run(transport=args.transport, host=args.host, port=args.port, show_banner=False)


if __name__ == "__main__":
    main()
