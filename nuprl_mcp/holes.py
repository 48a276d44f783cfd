"""Enumerate incomplete proof nodes and navigate between them."""

from .library import Library, LibraryObject, ProofNode
from .spans import Position, Span, is_before, span_sort_key


def hole_nodes_in(library: Library, source_id: int) -> list[tuple[LibraryObject, ProofNode, Span]]:
    """Holes recorded in source_id as (theorem, node, span), in document order."""
    holes = []
    for obj, thm, _obj_meta, thm_meta in library.theorems():
        for node in thm.proof:
            if not node.is_hole or node.node_id is None:
                continue
            node_meta = thm_meta.nodes.get(node.node_id)
            if node_meta and node_meta.span.source_id == source_id:
                holes.append((obj, node, node_meta.span))
    holes.sort(key=lambda h: span_sort_key(h[2]))
    return holes


def holes_in(library: Library, source_id: int) -> list[Span]:
    """Spans of all holes in source_id, sorted by start then end."""
    return [span for _obj, _node, span in hole_nodes_in(library, source_id)]


def next_hole(holes: list[Span], cursor: Position) -> Span | None:
    """First hole starting strictly after cursor, wrapping to the first hole."""
    if not holes:
        return None
    for hole in holes:
        if is_before(cursor, hole.start):
            return hole
    return holes[0]


def previous_hole(holes: list[Span], cursor: Position) -> Span | None:
    """Last hole starting strictly before cursor, wrapping to the last hole."""
    if not holes:
        return None
    for hole in reversed(holes):
        if is_before(hole.start, cursor):
            return hole
    return holes[-1]
