"""Map a cursor position to the proof node it is in."""

from dataclasses import dataclass
from pathlib import Path

from .library import Library, LibraryObject, NodeMeta, ObjectMeta, ProofNode, ThmKind
from .spans import Position, Span, contains, is_before


@dataclass
class ResolvedNode:
    """The proof node enclosing a position, with its theorem."""
    obj: LibraryObject
    obj_meta: ObjectMeta
    node: ProofNode
    node_meta: NodeMeta | None  # None only for a root node with no recorded span

    @property
    def span(self) -> Span | None:
        return self.node_meta.span if self.node_meta else None


def _specificity(span: Span) -> tuple[int, int, int, int]:
    """Smaller is more specific: latest start, then earliest end."""
    return (-span.start.line, -span.start.column, span.end.line, span.end.column)


def resolve(library: Library, source_id: int, position: Position) -> ResolvedNode | None:
    """Find the most specific proof node whose span contains position.

    Theorems are tried in declaration order and the first one with a match
    wins. Within a theorem, a nested child span beats its ancestors. A
    position inside the theorem's own span but before the root node's span
    (e.g. on the statement) resolves to the root node.

    Returns None when nothing contains the position.
    """
    for obj, thm, obj_meta, thm_meta in library.theorems():
        best: tuple[ProofNode, NodeMeta] | None = None
        for node in thm.proof:
            if node.node_id is None:
                continue
            node_meta = thm_meta.nodes.get(node.node_id)
            if node_meta is None:
                continue
            span = node_meta.span
            if span.source_id != source_id or not contains(span, position):
                continue
            if best is None or _specificity(span) < _specificity(best[1].span):
                best = (node, node_meta)

        if best is not None:
            return ResolvedNode(obj, obj_meta, best[0], best[1])

        if obj_meta.span.source_id == source_id and contains(obj_meta.span, position):
            root = thm.node(thm_meta.root_id)
            if root is None:
                continue
            root_meta = thm_meta.nodes.get(thm_meta.root_id)
            if root_meta is None or is_before(position, root_meta.span.start):
                return ResolvedNode(obj, obj_meta, root, root_meta)

    return None


def find_node(library: Library, obj_id: str, node_id: str) -> ResolvedNode | None:
    """Look up a proof node by object id and node id."""
    obj = library.object_by_id(str(obj_id))
    obj_meta = library.meta.get(str(obj_id))
    if obj is None or obj_meta is None or obj_meta.thm is None:
        return None
    if not isinstance(obj.kind, ThmKind):
        return None
    node = obj.kind.node(str(node_id))
    if node is None:
        return None
    return ResolvedNode(obj, obj_meta, node, obj_meta.thm.nodes.get(str(node_id)))


def source_id_for_path(library: Library, path: str | Path) -> int | None:
    """Return the source id whose path is the given file, if any."""
    target = Path(path).resolve()
    for source in library.sources.values():
        if source.path == str(path) or Path(source.path).resolve() == target:
            return source.id
    return None
