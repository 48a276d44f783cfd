"""Proof navigation session: keeps the checked library in sync with a file."""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .diagnostics import DiagnosticReport, first_diagnostic
from .holes import hole_nodes_in, holes_in, next_hole, previous_hole
from .library import Library, LibraryObject, NuprlError, ProofNode
from .nuprl_checker import NuprlChecker
from .proof_index import ResolvedNode, find_node, resolve, source_id_for_path
from .spans import Position, Span

logger = logging.getLogger(__name__)

ViewCallback = Callable[[dict], None]


@dataclass
class ProofView:
    """What the presentation layer shows for the current cursor."""
    file: Path
    position: Position
    source_id: int | None
    resolved: ResolvedNode | None
    num_holes: int | None  # None when the file is not in the library

    @property
    def highlight(self) -> Span | None:
        return self.resolved.span if self.resolved else None

    def to_message(self) -> dict:
        """The `display_current_proof` message."""
        return {
            "command": "display_current_proof",
            "obj": self.resolved.obj.to_dict() if self.resolved else None,
            "proofNode": self.resolved.node.to_dict() if self.resolved else None,
            "numHoles": self.num_holes,
        }


@dataclass
class RecheckOutcome:
    """Result of recheck()."""
    adopted: bool                              # True if a new library became current
    diagnostic: DiagnosticReport | None = None
    error: str | None = None                   # ProcessError / MalformedOutputError text
    view: ProofView | None = None              # Reposition result after adoption
    generation: int = 0


@dataclass
class ReduceOutcome:
    """Result of reduce()."""
    original: str | None = None
    reduced: str | None = None
    diagnostic: DiagnosticReport | None = None
    error: str | None = None


class ProofSession:
    """Owns the current library snapshot, file and cursor for one editor.

    Event handlers:
    - recheck(): document saved / opened / editor switched -> run the checker
    - reposition(): selection changed -> resolve node, count holes, publish
    - next_hole() / previous_hole() / jump_to_node(): move cursor, reposition

    Checker runs are serialized; requests made while one is in flight are
    folded into a single follow-up run on the latest text.
    """

    def __init__(self, file: str | Path, checker: NuprlChecker | None = None,
                 workdir: str | Path | None = None):
        self.file = Path(file)
        self.checker = checker or NuprlChecker()
        self.workdir = Path(workdir) if workdir else self.file.parent

        self.library: Library | None = None
        self.position = Position(0, 0)
        self.diagnostic: DiagnosticReport | None = None
        self.last_view: ProofView | None = None

        self._subscribers: list[ViewCallback] = []

        # Recheck coalescing
        self._lock = asyncio.Lock()
        self._requested_generation = 0
        self._completed_generation = 0
        self._pending_text: str | None = None
        self._last_outcome: RecheckOutcome | None = None

    # =========================================================================
    # Presentation protocol
    # =========================================================================

    def subscribe(self, callback: ViewCallback) -> None:
        """Register a receiver for host -> view messages."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: ViewCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _publish(self, message: dict) -> None:
        for callback in list(self._subscribers):
            callback(message)

    async def handle_view_message(self, message: dict) -> Any:
        """Dispatch a view -> host message. Positions are 0-indexed."""
        command = message.get("command")
        if command == "reduce":
            return await self.reduce(message.get("expr", ""), message.get("maxSteps"))
        if command == "jump_to_proof_node":
            return self.jump_to_node(message.get("objId"), message.get("nodeId"))
        if command == "next_hole":
            return self.next_hole()
        if command == "previous_hole":
            return self.previous_hole()
        logger.warning("ignoring unknown view command %r", command)
        return None

    # =========================================================================
    # Recheck
    # =========================================================================

    async def recheck(self, text: str | None = None) -> RecheckOutcome:
        """Run the checker on the document and adopt its library.

        Args:
            text: Document contents (default: read self.file from disk)

        The previous library stays current if the checker fails or reports
        errors without a result.
        """
        self._requested_generation += 1
        generation = self._requested_generation
        self._pending_text = text

        async with self._lock:
            if self._completed_generation >= generation and self._last_outcome:
                # A run that started after this request already covered it
                return self._last_outcome
            generation = self._requested_generation
            text = self._pending_text
            self._pending_text = None

            outcome = await self._run_check(text, generation)
            self._completed_generation = generation
            self._last_outcome = outcome
            return outcome

    async def _run_check(self, text: str | None, generation: int) -> RecheckOutcome:
        if text is None:
            try:
                text = self.file.read_text(encoding="utf-8")
            except FileNotFoundError:
                return RecheckOutcome(adopted=False, error=f"File not found: {self.file}",
                                      generation=generation)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("cannot read %s: %s", self.file, e)
                return RecheckOutcome(adopted=False, error=f"Cannot read {self.file}: {e}",
                                      generation=generation)

        t0 = time.perf_counter()
        try:
            output = await self.checker.check(text, self.workdir)
        except NuprlError as e:
            logger.warning("check of %s failed: %s", self.file, e)
            return RecheckOutcome(adopted=False, error=str(e), generation=generation)

        if output.library is not None:
            sources = output.library.sources
        elif output.sources:
            sources = output.sources
        else:
            sources = self.library.sources if self.library else {}
        self.diagnostic = first_diagnostic(sources, output.diagnostics)

        if output.library is None:
            logger.info("check of %s produced no library (%d diagnostics)",
                        self.file, len(output.diagnostics))
            return RecheckOutcome(adopted=False, diagnostic=self.diagnostic, generation=generation)

        self.library = output.library
        logger.info("adopted library for %s: %d objects, %d diagnostics (%.0fms)",
                    self.file, len(self.library.objects), len(output.diagnostics),
                    (time.perf_counter() - t0) * 1000)
        view = self.reposition()
        return RecheckOutcome(adopted=True, diagnostic=self.diagnostic, view=view,
                              generation=generation)

    async def switch_file(self, file: str | Path, text: str | None = None) -> RecheckOutcome:
        """Active editor changed: track the new file and recheck it."""
        self.file = Path(file)
        self.position = Position(0, 0)
        return await self.recheck(text)

    # =========================================================================
    # Reposition
    # =========================================================================

    @property
    def source_id(self) -> int | None:
        if self.library is None:
            return None
        return source_id_for_path(self.library, self.file)

    def holes(self) -> list[Span]:
        source_id = self.source_id
        if source_id is None:
            return []
        return holes_in(self.library, source_id)

    def hole_nodes(self) -> list[tuple[LibraryObject, ProofNode, Span]]:
        source_id = self.source_id
        if source_id is None:
            return []
        return hole_nodes_in(self.library, source_id)

    def view(self) -> ProofView:
        """Compute the view for the current state without publishing it."""
        source_id = self.source_id
        resolved = None
        num_holes = None
        if source_id is not None:
            resolved = resolve(self.library, source_id, self.position)
            num_holes = len(holes_in(self.library, source_id))
        return ProofView(self.file, self.position, source_id, resolved, num_holes)

    def reposition(self, position: Position | None = None) -> ProofView:
        """Move the cursor (if given), resolve, and publish the view."""
        if position is not None:
            self.position = position
        view = self.view()
        self.last_view = view
        self._publish(view.to_message())
        highlight = view.highlight
        self._publish({"command": "highlight", "span": highlight.to_dict() if highlight else None})
        return view

    # =========================================================================
    # Jump
    # =========================================================================

    def next_hole(self) -> ProofView | None:
        """Move to the next hole in the file, wrapping around."""
        target = next_hole(self.holes(), self.position)
        if target is None:
            return None
        return self.reposition(target.start)

    def previous_hole(self) -> ProofView | None:
        """Move to the previous hole in the file, wrapping around."""
        target = previous_hole(self.holes(), self.position)
        if target is None:
            return None
        return self.reposition(target.start)

    def jump_to_node(self, obj_id: str, node_id: str) -> ProofView | None:
        """Move to the start of a proof node's span.

        A node recorded in another source of the library switches the
        session to that file.
        """
        if self.library is None or obj_id is None or node_id is None:
            return None
        found = find_node(self.library, obj_id, node_id)
        if found is None or found.node_meta is None:
            return None
        span = found.node_meta.span
        if span.source_id != self.source_id:
            path = self.library.source_path(span.source_id)
            if path is None:
                return None
            self.file = Path(path)
        return self.reposition(span.start)

    # =========================================================================
    # Evaluator
    # =========================================================================

    async def reduce(self, expr: str, max_steps: int | None = None) -> ReduceOutcome:
        """Reduce an expression in the context of the current file."""
        try:
            output = await self.checker.reduce(expr, max_steps, self.workdir, self.file)
        except NuprlError as e:
            logger.warning("reduce failed: %s", e)
            return ReduceOutcome(error=str(e))

        sources = self.library.sources if self.library else {}
        self._publish({
            "command": "display_reduced",
            "original": output.original,
            "reduced": output.reduced,
        })
        return ReduceOutcome(
            original=output.original,
            reduced=output.reduced,
            diagnostic=first_diagnostic(sources, output.diagnostics),
        )

    @property
    def status(self) -> dict:
        """Summary of the session state."""
        theorems = []
        if self.library is not None:
            source_id = self.source_id
            for obj, thm, obj_meta, _thm_meta in self.library.theorems():
                if obj_meta.span.source_id != source_id:
                    continue
                theorems.append({
                    "name": obj.name,
                    "line": obj_meta.span.start.line,
                    "holes": sum(1 for n in thm.proof if n.is_hole),
                })
        return {
            "file": str(self.file),
            "workdir": str(self.workdir),
            "checked": self.library is not None,
            "source_id": self.source_id,
            "position": self.position,
            "theorems": theorems,
            "holes": len(self.holes()),
            "diagnostic": str(self.diagnostic) if self.diagnostic else None,
        }
