"""UCI line grammar: outbound command formatting and inbound line parsing.

Pure functions only; process handling lives in chess_insight.client.
``SearchAccumulator`` folds the ``info`` lines streamed during one search
into the terminal EngineResult and is shared by every engine tier that
speaks UCI text.
"""

from __future__ import annotations

import chess
import chess.engine

from chess_insight.models import EngineLine, EngineResult, SearchLimits

# info tokens followed by a single integer
_INT_FIELDS = {
    "depth",
    "seldepth",
    "multipv",
    "nodes",
    "nps",
    "time",
    "currmovenumber",
    "hashfull",
    "tbhits",
    "cpuload",
}

_OPTION_KEYWORDS = ("type", "default", "min", "max", "var")


# ---------------------------------------------------------------------------
# Outbound commands
# ---------------------------------------------------------------------------


def format_position(fen: str, moves=()) -> str:
    """Build a ``position`` command.

    The standard starting FEN is sent as ``startpos``.
    """
    if fen == chess.STARTING_FEN or fen == "startpos":
        command = "position startpos"
    else:
        command = f"position fen {fen}"
    moves = list(moves)
    if moves:
        command += " moves " + " ".join(moves)
    return command


def format_go(limits: SearchLimits) -> str:
    return f"go {limits.kind} {limits.value}"


def format_setoption(name: str, value) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"


# ---------------------------------------------------------------------------
# Inbound lines
# ---------------------------------------------------------------------------


def _to_int(token: str) -> int | None:
    try:
        return int(token)
    except ValueError:
        return None


def parse_info(line: str) -> dict:
    """Parse an ``info`` line into a dict.

    Keys mirror the UCI tokens (``depth``, ``nodes``, ``pv`` ...).
    ``score`` becomes a python-chess ``Cp``/``Mate`` relative to the side
    to move; ``lowerbound``/``upperbound`` set ``bound``. Malformed numbers
    are dropped rather than raised, engines emit them on occasion.
    """
    tokens = line.split()
    if tokens and tokens[0] == "info":
        tokens = tokens[1:]

    info: dict = {}
    i = 0
    while i < len(tokens):
        key = tokens[i]
        if key in _INT_FIELDS and i + 1 < len(tokens):
            value = _to_int(tokens[i + 1])
            if value is not None:
                info["time_ms" if key == "time" else key] = value
            i += 2
        elif key == "score" and i + 2 < len(tokens):
            kind, raw = tokens[i + 1], _to_int(tokens[i + 2])
            if raw is not None and kind == "cp":
                info["score"] = chess.engine.Cp(raw)
            elif raw is not None and kind == "mate":
                info["score"] = chess.engine.Mate(raw)
            i += 3
        elif key in ("lowerbound", "upperbound"):
            info["bound"] = key
            i += 1
        elif key == "currmove" and i + 1 < len(tokens):
            info["currmove"] = tokens[i + 1]
            i += 2
        elif key == "pv":
            info["pv"] = tokens[i + 1:]
            break
        elif key == "string":
            info["string"] = " ".join(tokens[i + 1:])
            break
        else:
            i += 1
    return info


def parse_bestmove(line: str) -> tuple[str | None, str | None]:
    """Parse ``bestmove <m1> [ponder <m2>]``; ``(none)`` maps to None."""
    tokens = line.split()
    best = tokens[1] if len(tokens) > 1 else None
    if best in ("(none)", "0000"):
        best = None
    ponder = None
    if len(tokens) > 3 and tokens[2] == "ponder":
        ponder = tokens[3]
    return best, ponder


def parse_option(line: str) -> dict:
    """Parse ``option name <N> type <T> [default <D>] [min <a>] [max <b>] [var <v>]*``."""
    tokens = line.split()
    option: dict = {"name": "", "type": None, "var": []}
    current = None
    words: list[str] = []

    def flush():
        if current is None:
            return
        text = " ".join(words)
        if current == "var":
            option["var"].append(text)
        else:
            option[current] = text

    for token in tokens[1:]:
        if token == "name" and current is None:
            current, words = "name", []
        elif token in _OPTION_KEYWORDS and current is not None:
            flush()
            current, words = token, []
        else:
            words.append(token)
    flush()
    return option


def parse_id(line: str) -> tuple[str, str]:
    """Parse ``id name ...`` / ``id author ...`` into (field, value)."""
    _, _, rest = line.partition(" ")
    field_name, _, value = rest.partition(" ")
    return field_name, value.strip()


# ---------------------------------------------------------------------------
# Search accumulation
# ---------------------------------------------------------------------------


class SearchAccumulator:
    """Collects streamed progress for one search."""

    def __init__(self) -> None:
        self.depth = 0
        self.seldepth = 0
        self.nodes = 0
        self.nps = 0
        self.time_ms = 0
        self._lines: dict[int, EngineLine] = {}

    def feed(self, info: dict) -> None:
        self.depth = max(self.depth, info.get("depth", 0))
        self.seldepth = max(self.seldepth, info.get("seldepth", 0))
        self.nodes = max(self.nodes, info.get("nodes", 0))
        self.nps = info.get("nps", self.nps)
        self.time_ms = max(self.time_ms, info.get("time_ms", 0))

        pv = info.get("pv")
        if not pv or "score" not in info or "bound" in info:
            return
        index = info.get("multipv", 1)
        self._lines[index] = EngineLine(
            multipv=index,
            score=info["score"],
            pv=list(pv),
            depth=info.get("depth", 0),
            seldepth=info.get("seldepth", 0),
            nodes=info.get("nodes", 0),
        )

    def feed_line(self, line: str) -> None:
        self.feed(parse_info(line))

    @property
    def lines(self) -> list[EngineLine]:
        return [self._lines[index] for index in sorted(self._lines)]

    def result(self, best_move: str | None, ponder_move: str | None = None,
               stopped: bool = False) -> EngineResult:
        return EngineResult(
            best_move=best_move,
            ponder_move=ponder_move,
            depth=self.depth,
            seldepth=self.seldepth,
            nodes=self.nodes,
            nps=self.nps,
            time_ms=self.time_ms,
            lines=self.lines,
            stopped=stopped,
        )
