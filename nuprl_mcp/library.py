"""Typed view over the JSON library emitted by `nuprl check`.

The checker output has three parts that are cross-referenced by id:

- ``sources``: source id -> file path
- ``lib.objects``: object name -> object (theorems carry a flattened proof)
- ``meta``: object id -> spans for the object and for each proof node

Proof nodes and their metadata are kept as two tables keyed by node id
(an arena plus a side table). Nothing here holds parent back-pointers.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterator

from .spans import Position, Span


class NuprlError(Exception):
    """Base error for checker interaction."""
    pass


class MalformedOutputError(NuprlError):
    """Checker output is not JSON or lacks the expected shape."""
    pass


@dataclass(frozen=True)
class Source:
    """A file known to the library."""
    id: int
    path: str


@dataclass
class ProofNode:
    """A node of a theorem's proof tree.

    ``children`` is None until the checker has produced subgoals. Child
    entries are themselves ProofNodes; a child's ``node_id`` links it to the
    theorem's flattened node list.
    """
    node_id: str | None
    goal: Any = None  # {"hys": [...], "concl": ...}, opaque here
    extract: Any = None
    children: list["ProofNode"] | None = None
    conflict: bool = False

    @property
    def is_hole(self) -> bool:
        return self.children is None and self.extract is None

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "goal": self.goal,
            "extract": self.extract,
            "children": None if self.children is None else [c.to_dict() for c in self.children],
            "conflict": self.conflict,
        }


@dataclass
class ThmKind:
    """Kind payload of a theorem: its proof nodes, in checker order."""
    proof: list[ProofNode]
    _by_id: dict[str, ProofNode] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self._by_id = {n.node_id: n for n in self.proof if n.node_id is not None}

    def node(self, node_id: str) -> ProofNode | None:
        return self._by_id.get(node_id)

    def to_dict(self) -> dict:
        return {"tag": "thm", "proof": [n.to_dict() for n in self.proof]}


@dataclass
class OtherKind:
    """Any non-theorem object kind (definitions etc.), kept verbatim."""
    tag: str
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"tag": self.tag, **self.payload}


ObjectKind = ThmKind | OtherKind


@dataclass
class LibraryObject:
    """A top-level library entry."""
    id: str
    name: str
    kind: ObjectKind

    @property
    def is_theorem(self) -> bool:
        return isinstance(self.kind, ThmKind)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "kind": self.kind.to_dict()}


@dataclass(frozen=True)
class NodeMeta:
    span: Span


@dataclass
class ThmMeta:
    root_id: str
    nodes: dict[str, NodeMeta]


@dataclass
class ObjectMeta:
    """Metadata for an object: its own span, plus node spans for theorems."""
    span: Span
    thm: ThmMeta | None = None


@dataclass(frozen=True)
class Diagnostic:
    message: str
    span: Span | None = None


@dataclass
class Library:
    """One checker snapshot. Never mutated after construction."""
    sources: dict[int, Source]
    objects: dict[str, LibraryObject]  # name -> object, in declaration order
    meta: dict[str, ObjectMeta]        # object id -> metadata
    _by_id: dict[str, LibraryObject] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        self._by_id = {obj.id: obj for obj in self.objects.values()}

    def object_by_id(self, obj_id: str) -> LibraryObject | None:
        return self._by_id.get(obj_id)

    def theorems(self) -> Iterator[tuple[LibraryObject, ThmKind, ObjectMeta, ThmMeta]]:
        """Yield theorems that have theorem metadata, in declaration order.

        Objects whose metadata is missing (half-written output) are skipped.
        """
        for obj in self.objects.values():
            if not isinstance(obj.kind, ThmKind):
                continue
            obj_meta = self.meta.get(obj.id)
            if obj_meta is None or obj_meta.thm is None:
                continue
            yield obj, obj.kind, obj_meta, obj_meta.thm

    def source_path(self, source_id: int) -> str | None:
        source = self.sources.get(source_id)
        return source.path if source else None


@dataclass
class CheckOutput:
    """Decoded output of `nuprl check`."""
    library: Library | None
    diagnostics: list[Diagnostic]
    sources: dict[int, Source] = field(default_factory=dict)


@dataclass
class ReduceOutput:
    """Decoded output of `nuprl reduce`."""
    original: str | None
    reduced: str | None
    diagnostics: list[Diagnostic]


# =============================================================================
# JSON decoding
# =============================================================================

def _position(data: dict) -> Position:
    return Position(int(data["line"]), int(data["col"]))


def parse_span(data: dict) -> Span:
    """Decode a span: {"source_id", "visual": {"start", "end"}, "range"?}."""
    try:
        visual = data["visual"]
        offsets = None
        rng = data.get("range")
        if rng is not None:
            offsets = (int(rng["start"]), int(rng["end"]))
        return Span(
            source_id=int(data["source_id"]),
            start=_position(visual["start"]),
            end=_position(visual["end"]),
            offsets=offsets,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedOutputError(f"Malformed span {data!r}: {e}") from e


def _node_id(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_proof_node(data: dict) -> ProofNode:
    try:
        children = data.get("children")
        return ProofNode(
            node_id=_node_id(data.get("node_id")),
            goal=data.get("goal"),
            extract=data.get("extract"),
            children=None if children is None else [parse_proof_node(c) for c in children],
            conflict=bool(data.get("conflict", False)),
        )
    except (AttributeError, TypeError) as e:
        raise MalformedOutputError(f"Malformed proof node: {e}") from e


def parse_object(name: str, data: dict) -> LibraryObject:
    try:
        kind_data = data["kind"]
        tag = kind_data["tag"]
        if tag == "thm":
            kind = ThmKind([parse_proof_node(n) for n in kind_data.get("proof") or []])
        else:
            kind = OtherKind(tag, {k: v for k, v in kind_data.items() if k != "tag"})
        return LibraryObject(id=str(data["id"]), name=name, kind=kind)
    except (KeyError, TypeError, AttributeError) as e:
        raise MalformedOutputError(f"Malformed object '{name}': {e}") from e


def parse_object_meta(data: dict) -> ObjectMeta:
    try:
        kind = data.get("kind")
        thm = None
        # Non-theorem kinds are plain strings
        if isinstance(kind, dict) and isinstance(kind.get("thm"), dict):
            thm_data = kind["thm"]
            thm = ThmMeta(
                root_id=str(thm_data["root_id"]),
                nodes={
                    str(node_id): NodeMeta(parse_span(node["span"]))
                    for node_id, node in (thm_data.get("nodes") or {}).items()
                },
            )
        return ObjectMeta(span=parse_span(data["span"]), thm=thm)
    except (KeyError, TypeError, AttributeError) as e:
        raise MalformedOutputError(f"Malformed object metadata: {e}") from e


def parse_sources(data: dict | None) -> dict[int, Source]:
    if not data:
        return {}
    try:
        return {int(k): Source(int(k), str(v["path"])) for k, v in data.items()}
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedOutputError(f"Malformed sources: {e}") from e


def parse_library(result: dict, sources: dict[int, Source] | None = None) -> Library:
    """Decode the ``result`` part of `nuprl check` output.

    ``sources`` is used when ``result`` has no sources of its own.
    """
    if not isinstance(result, dict):
        raise MalformedOutputError(f"Expected result object, got {type(result).__name__}")
    try:
        objects_data = result["lib"]["objects"]
        meta_data = result.get("meta") or {}
    except (KeyError, TypeError) as e:
        raise MalformedOutputError(f"Result missing lib.objects: {e}") from e
    if not isinstance(objects_data, dict) or not isinstance(meta_data, dict):
        raise MalformedOutputError("lib.objects and meta must be JSON objects")

    if "sources" in result:
        sources = parse_sources(result["sources"])
    return Library(
        sources=sources or {},
        objects={name: parse_object(name, obj) for name, obj in objects_data.items()},
        meta={str(obj_id): parse_object_meta(m) for obj_id, m in meta_data.items()},
    )


def parse_diagnostics(errors: list | None) -> list[Diagnostic]:
    if errors is None:
        return []
    if not isinstance(errors, list):
        raise MalformedOutputError(f"Expected errors list, got {type(errors).__name__}")
    diagnostics = []
    for err in errors:
        try:
            span = err.get("span")
            diagnostics.append(Diagnostic(
                message=str(err["message"]),
                span=parse_span(span) if span is not None else None,
            ))
        except (KeyError, TypeError, AttributeError) as e:
            raise MalformedOutputError(f"Malformed diagnostic {err!r}") from e
    return diagnostics


def _load_document(output: str, context: str) -> dict:
    """Parse checker stdout as a single JSON object."""
    try:
        doc = json.loads(output)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"{context} output is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise MalformedOutputError(f"{context} output is not a JSON object")
    return doc


def parse_check_output(output: str) -> CheckOutput:
    """Decode stdout of `nuprl check`.

    Expects: {"result"?: {"sources", "lib": {"objects"}, "meta"}, "errors"?: [...]}
    ``sources`` may also appear at the top level.
    Raises: MalformedOutputError if the output is not JSON or has the wrong shape.
    """
    doc = _load_document(output, "check")
    if "result" not in doc and "errors" not in doc:
        raise MalformedOutputError("check output has neither result nor errors")
    sources = parse_sources(doc.get("sources"))
    library = None
    if doc.get("result") is not None:
        library = parse_library(doc["result"], sources)
        sources = library.sources
    return CheckOutput(
        library=library,
        diagnostics=parse_diagnostics(doc.get("errors")),
        sources=sources,
    )


def parse_reduce_output(output: str) -> ReduceOutput:
    """Decode stdout of `nuprl reduce`.

    Expects: {"result"?: {"original", "reduced"}, "errors"?: [...]}
    """
    doc = _load_document(output, "reduce")
    result = doc.get("result") or {}
    if not isinstance(result, dict):
        raise MalformedOutputError("reduce result is not a JSON object")
    return ReduceOutput(
        original=result.get("original"),
        reduced=result.get("reduced"),
        diagnostics=parse_diagnostics(doc.get("errors")),
    )
