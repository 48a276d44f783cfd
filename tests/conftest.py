"""Pytest fixtures for Nuprl proof navigation tests."""

import asyncio
import copy
import json
import sys

import pytest
from pathlib import Path

from nuprl_mcp.library import CheckOutput, ReduceOutput, parse_check_output


FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_NUPRL = [sys.executable, str(FIXTURES_DIR / "fake_nuprl.py")]

DOCUMENT = """\
theorem add_comm :
  ∀x,y:ℕ. x + y = y + x
  by induction x
    case zero
      ??
    end
    case succ
      by rewrite add_succ
        exact ih
      end
    end

def double x := x + x
  -- unfolds to addition

theorem mul_one :
  ∀x:ℕ. x * 1 = x
  ??
  end
"""


def span(source_id, start, end):
    """Build a wire-format span from (line, col) pairs."""
    return {
        "source_id": source_id,
        "visual": {
            "start": {"line": start[0], "col": start[1]},
            "end": {"line": end[0], "col": end[1]},
        },
    }


def goal(concl, *hys):
    return {"hys": [{"var": v, "ty": t, "hidden": False} for v, t in hys], "concl": concl}


def make_check_document(path: str, other_path: str = "/lib/other.nup") -> dict:
    """Checker output for DOCUMENT, plus one theorem in another file.

    Source 0 (path):
      add_comm  object 0:0-10:3
        node 0  2:2-10:3   root, children 1 and 2
        node 1  3:4-5:10   hole
        node 2  6:4-9:12   children 3
        node 3  7:6-8:20   closed leaf
      double    object 12:0-13:20 (definition)
      mul_one   object 15:0-18:3
        node 0  17:2-18:3  root, hole
    Source 1 (other_path):
      other_lemma  object 0:0-3:0, root hole at 1:2-3:0
    ghost: a theorem with no metadata
    """
    add_comm_goal = goal("x + y = y + x", ("x", "ℕ"), ("y", "ℕ"))
    zero_goal = goal("0 + y = y + 0", ("y", "ℕ"))
    succ_goal = goal("S x + y = y + S x", ("x", "ℕ"), ("ih", "x + y = y + x"))
    return {
        "result": {
            "sources": {
                "0": {"path": path},
                "1": {"path": other_path},
            },
            "lib": {
                "objects": {
                    "add_comm": {
                        "id": 0,
                        "kind": {
                            "tag": "thm",
                            "proof": [
                                {
                                    "node_id": 0, "goal": add_comm_goal, "extract": None,
                                    "children": [
                                        {"node_id": 1, "goal": zero_goal, "extract": None,
                                         "children": None, "conflict": False},
                                        {"node_id": 2, "goal": succ_goal, "extract": None,
                                         "children": [], "conflict": False},
                                    ],
                                    "conflict": False,
                                },
                                {"node_id": 1, "goal": zero_goal, "extract": None,
                                 "children": None, "conflict": False},
                                {
                                    "node_id": 2, "goal": succ_goal, "extract": None,
                                    "children": [
                                        {"node_id": 3, "goal": succ_goal, "extract": "ih",
                                         "children": None, "conflict": False},
                                    ],
                                    "conflict": True,
                                },
                                {"node_id": 3, "goal": succ_goal, "extract": "ih",
                                 "children": None, "conflict": False},
                            ],
                        },
                    },
                    "double": {"id": 1, "kind": {"tag": "def", "body": "x + x"}},
                    "mul_one": {
                        "id": 2,
                        "kind": {
                            "tag": "thm",
                            "proof": [
                                {"node_id": 0, "goal": goal("x * 1 = x", ("x", "ℕ")),
                                 "extract": None, "children": None, "conflict": False},
                            ],
                        },
                    },
                    "other_lemma": {
                        "id": 3,
                        "kind": {
                            "tag": "thm",
                            "proof": [
                                {"node_id": 0, "goal": goal("True"), "extract": None,
                                 "children": None, "conflict": False},
                            ],
                        },
                    },
                    "ghost": {
                        "id": 4,
                        "kind": {
                            "tag": "thm",
                            "proof": [
                                {"node_id": 0, "goal": goal("False"), "extract": None,
                                 "children": None, "conflict": False},
                            ],
                        },
                    },
                },
            },
            "meta": {
                "0": {
                    "span": span(0, (0, 0), (10, 3)),
                    "kind": {"thm": {"root_id": 0, "nodes": {
                        "0": {"span": span(0, (2, 2), (10, 3))},
                        "1": {"span": span(0, (3, 4), (5, 10))},
                        "2": {"span": span(0, (6, 4), (9, 12))},
                        "3": {"span": span(0, (7, 6), (8, 20))},
                    }}},
                },
                "1": {"span": span(0, (12, 0), (13, 20)), "kind": "def"},
                "2": {
                    "span": span(0, (15, 0), (18, 3)),
                    "kind": {"thm": {"root_id": 0, "nodes": {
                        "0": {"span": span(0, (17, 2), (18, 3))},
                    }}},
                },
                "3": {
                    "span": span(1, (0, 0), (3, 0)),
                    "kind": {"thm": {"root_id": 0, "nodes": {
                        "0": {"span": span(1, (1, 2), (3, 0))},
                    }}},
                },
            },
        },
        "errors": [],
    }


@pytest.fixture
def proof_file(tmp_path: Path) -> Path:
    """Fixture that provides the sample document on disk."""
    f = tmp_path / "arith.nup"
    f.write_text(DOCUMENT, encoding="utf-8")
    return f


@pytest.fixture
def check_document(proof_file: Path) -> dict:
    """Raw checker JSON for the sample document."""
    return make_check_document(str(proof_file))


@pytest.fixture
def library(check_document):
    return parse_check_output(json.dumps(check_document)).library


@pytest.fixture
def fake_nuprl(tmp_path: Path, monkeypatch):
    """Point the fake checker script at canned output.

    Returns a function that writes the JSON the checker will print and
    returns the path of the call log (one JSON line per invocation).
    """
    output_file = tmp_path / "nuprl_output.json"
    log_file = tmp_path / "nuprl_calls.log"
    monkeypatch.setenv("FAKE_NUPRL_OUTPUT", str(output_file))
    monkeypatch.setenv("FAKE_NUPRL_LOG", str(log_file))
    monkeypatch.delenv("FAKE_NUPRL_MODE", raising=False)

    def set_output(document, mode: str | None = None):
        if document is not None:
            output_file.write_text(json.dumps(document))
        if mode:
            monkeypatch.setenv("FAKE_NUPRL_MODE", mode)
        else:
            monkeypatch.delenv("FAKE_NUPRL_MODE", raising=False)
        return log_file

    return set_output


def read_calls(log_file: Path) -> list[dict]:
    if not log_file.exists():
        return []
    return [json.loads(line) for line in log_file.read_text().splitlines() if line]


class FakeChecker:
    """In-process checker returning queued CheckOutputs (or raising errors).

    The last queued result is reused once the queue is down to one. Set
    ``gate`` to an asyncio.Event to hold check() until it is set.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[str] = []
        self.reduce_calls: list[tuple] = []
        self.gate: asyncio.Event | None = None

    async def check(self, text, workdir) -> CheckOutput:
        self.calls.append(text)
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return copy.copy(result)

    async def reduce(self, expr, max_steps=None, library_dir=None, file=None):
        self.reduce_calls.append((expr, max_steps, library_dir, file))
        return ReduceOutput(original=expr, reduced=f"<{expr}>", diagnostics=[])
