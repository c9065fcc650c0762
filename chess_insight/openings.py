"""Opening book with trie lookup over coordinate move sequences.

The book data ships as chess_insight/data/openings.json and is loaded into
an in-memory trie: one nested dict per move, with ``_eco``/``_name``
markers on named nodes and ``_weights`` holding the suggested replies.

Usage:
    from chess_insight.openings import OpeningBook
    book = OpeningBook()
    match = book.lookup(["e2e4", "c7c5"])
"""

from __future__ import annotations

import json
import logging
import os

from chess_insight.models import BookMove, OpeningMatch

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_DEFAULT_BOOK = os.path.join(_PACKAGE_DIR, "data", "openings.json")

DEFAULT_BOOK_DEPTH = 8

_ECO_VOLUMES = {
    "A": "Flank Openings",
    "B": "Semi-Open Games",
    "C": "Open Games",
    "D": "Closed Games",
    "E": "Indian Defenses",
}

_PRINCIPLES = (
    "Control the center with pawns",
    "Develop knights before bishops",
    "Castle early for king safety",
    "Don't move the same piece twice in the opening",
    "Don't bring your queen out too early",
    "Connect your rooks",
    "Avoid creating weaknesses in your position",
)

_STUDY = {
    "beginner": [
        {"opening": "Italian Game", "reason": "Natural development and clear plans"},
        {"opening": "London System", "reason": "Simple setup that works against many defenses"},
        {"opening": "King's Indian Attack", "reason": "Flexible system with standard patterns"},
    ],
    "intermediate": [
        {"opening": "Ruy Lopez", "reason": "Rich middlegame positions"},
        {"opening": "Queen's Gambit", "reason": "Classical chess understanding"},
        {"opening": "Sicilian Defense", "reason": "Sharp tactical play"},
    ],
    "advanced": [
        {"opening": "Sicilian Defense: Open", "reason": "Complex theoretical battles"},
        {"opening": "Grunfeld Defense", "reason": "Dynamic counterplay"},
        {"opening": "Nimzo-Indian Defense", "reason": "Strategic complexity"},
    ],
}


def book_key(moves) -> str:
    """Canonical key for a move sequence: coordinate moves joined by spaces."""
    return " ".join(moves)


def build_trie(entries: list[dict]) -> dict:
    """Build a nested dict trie from book entries.

    Args:
        entries: Dicts with moves (space-separated UCI), eco, name,
            description and continuations ({uci: weight}).

    Returns:
        Root trie node.
    """
    trie: dict = {}
    for entry in entries:
        node = trie
        for move in entry["moves"].split():
            node = node.setdefault(move, {})
        node["_eco"] = entry["eco"]
        node["_name"] = entry["name"]
        node["_description"] = entry.get("description", "")
        node["_weights"] = dict(entry.get("continuations", {}))
    return trie


def _family(name: str) -> str:
    return name.split(":")[0].strip() if ":" in name else name


class OpeningBook:
    """Deterministic opening lookup limited to ``book_depth`` plies."""

    def __init__(self, book_path: str | None = None,
                 book_depth: int = DEFAULT_BOOK_DEPTH) -> None:
        self._book_path = book_path or _DEFAULT_BOOK
        self.book_depth = book_depth
        self._entries = self._load_entries()
        self._trie = build_trie(self._entries)

    def _load_entries(self) -> list[dict]:
        with open(self._book_path, "r", encoding="utf-8") as f:
            entries = json.load(f)
        logger.debug("Loaded %d opening book entries from %s", len(entries), self._book_path)
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def _walk(self, moves) -> list[dict] | None:
        """Return the trie nodes along ``moves`` (root first), or None if off-book."""
        node = self._trie
        path = [node]
        for move in moves:
            child = node.get(move)
            if not isinstance(child, dict) or move.startswith("_"):
                return None
            node = child
            path.append(node)
        return path

    def _suggestions(self, node: dict) -> tuple[BookMove, ...]:
        weights = node.get("_weights")
        if not weights:
            weights = {key: 1 for key in node if not key.startswith("_")}
        suggestions = []
        for move, weight in weights.items():
            child = node.get(move, {})
            suggestions.append(BookMove(move, int(weight), child.get("_name")))
        suggestions.sort(key=lambda s: (-s.weight, s.move))
        return tuple(suggestions)

    # ── Lookup ──────────────────────────────────────────────────────

    def lookup(self, moves) -> OpeningMatch:
        """Look up the exact move sequence.

        Sequences longer than the book depth, or that leave the book at
        any ply, give an unknown match. Suggestions are only offered while
        the sequence is shorter than the book depth.
        """
        moves = list(moves)
        if len(moves) > self.book_depth:
            return OpeningMatch()
        path = self._walk(moves)
        if path is None:
            return OpeningMatch()

        named_depth = None
        for depth in range(len(path) - 1, -1, -1):
            if "_name" in path[depth]:
                named_depth = depth
                break
        if named_depth is None:
            return OpeningMatch()

        named = path[named_depth]
        suggestions = ()
        if len(moves) < self.book_depth:
            suggestions = self._suggestions(path[-1])
        return OpeningMatch(
            name=named["_name"],
            eco=named["_eco"],
            family=_family(named["_name"]),
            description=named.get("_description", ""),
            moves_matched=named_depth,
            in_book=True,
            suggestions=suggestions,
        )

    def identify(self, moves) -> OpeningMatch:
        """Name the opening of a longer game by its deepest in-book prefix.

        Unlike ``lookup`` this tolerates moves past the end of the book;
        suggestions are never offered.
        """
        moves = list(moves)[: self.book_depth]
        node = self._trie
        best = None
        for i, move in enumerate(moves):
            child = node.get(move)
            if not isinstance(child, dict) or move.startswith("_"):
                break
            node = child
            if "_name" in node:
                best = (node, i + 1)
        if best is None:
            return OpeningMatch()
        named, depth = best
        return OpeningMatch(
            name=named["_name"],
            eco=named["_eco"],
            family=_family(named["_name"]),
            description=named.get("_description", ""),
            moves_matched=depth,
            in_book=depth == len(moves),
        )

    def continuations(self, moves) -> list[BookMove]:
        """Weighted book replies after ``moves``; empty when off-book."""
        moves = list(moves)
        if len(moves) >= self.book_depth:
            return []
        path = self._walk(moves)
        if path is None:
            return []
        return list(self._suggestions(path[-1]))

    def is_in_book(self, moves) -> bool:
        return self.lookup(moves).in_book

    # ── Reference data ──────────────────────────────────────────────

    def search(self, query: str) -> list[dict]:
        """Case-insensitive substring search over opening names."""
        needle = query.lower()
        return [
            {
                "moves": entry["moves"],
                "eco": entry["eco"],
                "name": entry["name"],
                "description": entry.get("description", ""),
            }
            for entry in self._entries
            if needle in entry["name"].lower()
        ]

    @staticmethod
    def eco_classification(eco: str | None) -> str:
        if not eco or eco == "---":
            return "Unclassified"
        return _ECO_VOLUMES.get(eco[0].upper(), "Unknown")

    @staticmethod
    def principles() -> list[str]:
        return list(_PRINCIPLES)

    @staticmethod
    def study_recommendations(level: str = "intermediate") -> list[dict]:
        return [dict(item) for item in _STUDY.get(level, _STUDY["intermediate"])]
