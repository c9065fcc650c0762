"""MCP server for chess-insight.

Exposes position analysis, hints, opening lookup and full-game review
via FastMCP. One AnalysisContext (and so one engine) is created on the
first tool call that needs an engine and reused until shutdown; the
engine tier comes from CHESS_INSIGHT_* environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

import chess
from mcp.server.fastmcp import FastMCP

from chess_insight.config import AnalysisConfig, EngineConfig
from chess_insight.context import AnalysisContext
from chess_insight.errors import EngineError
from chess_insight.game_analyzer import parse_moves
from chess_insight.hints import SKILL_DEPTHS, HintSystem
from chess_insight.models import Position, SearchLimits
from chess_insight.openings import OpeningBook

from response_schemas import (  # noqa: E402
    minify_analysis,
    minify_game,
    minify_hints,
    minify_opening,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("chess-insight")

_context: AnalysisContext | None = None
# Engine start-up shared by every caller that arrives while it runs
_starting: asyncio.Task | None = None

# Opening lookups never touch the engine
_book = OpeningBook(book_depth=AnalysisConfig.from_env().book_depth)


async def _start_context() -> AnalysisContext:
    context = AnalysisContext(EngineConfig.from_env(), AnalysisConfig.from_env())
    await context.initialize()
    return context


async def _get_context() -> AnalysisContext:
    """Return the shared context, starting an engine on first use.

    Concurrent first calls await the same start-up task.
    """
    global _context, _starting
    if _context is not None:
        return _context
    if _starting is None:
        _starting = asyncio.ensure_future(_start_context())
    starting = _starting
    try:
        context = await asyncio.shield(starting)
    finally:
        if starting.done() and _starting is starting:
            _starting = None
    if _context is None:
        _context = context
    return _context


async def shutdown_context() -> None:
    """Quit the shared engine; the next tool call starts a fresh one."""
    global _context
    context, _context = _context, None
    if context is not None:
        await context.shutdown()


def _position(fen: str | None, moves: list[str] | None) -> Position:
    """Build a Position from an optional FEN and UCI or SAN moves."""
    base = fen or chess.STARTING_FEN
    return Position(base, tuple(parse_moves(moves or [], base)))


# ---------------------------------------------------------------------------
# Analysis tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def analyze_position(
    fen: str | None = None,
    moves: list[str] | None = None,
    depth: int = 20,
    multipv: int = 3,
) -> dict:
    """Analyze a chess position.

    Args:
        fen: FEN of the base position (default: standard start).
        moves: Moves played from the base position, UCI or SAN.
        depth: Search depth in plies (default 20).
        multipv: Number of candidate lines (default 3).

    Returns:
        Dict with fen, eval, assessment, phase, tactics and ranked lines.
    """
    try:
        position = _position(fen, moves)
        context = await _get_context()
        analysis = await context.pipeline.analyze(
            position, SearchLimits(depth=depth), multipv=multipv
        )
    except (EngineError, ValueError) as exc:
        return {"error": str(exc)}
    return minify_analysis(analysis)


@mcp.tool()
async def get_hints(
    fen: str | None = None,
    moves: list[str] | None = None,
    skill_level: str = "intermediate",
    teaching: bool = False,
) -> dict:
    """Hints for the side to move.

    Args:
        fen: FEN of the base position (default: standard start).
        moves: Moves played from the base position, UCI or SAN.
        skill_level: beginner, intermediate or advanced (sets search depth).
        teaching: Include the phase's teaching concepts.

    Returns:
        Dict with best move and explanation, alternatives, warnings and opening.
    """
    if skill_level not in SKILL_DEPTHS:
        return {"error": f"Unknown skill level: {skill_level}. "
                         f"Choose from {sorted(SKILL_DEPTHS)}"}
    try:
        position = _position(fen, moves)
        context = await _get_context()
        system = HintSystem(context.pipeline, context.book, skill_level, teaching)
        hints = await system.get_hints(position)
    except (EngineError, ValueError) as exc:
        return {"error": str(exc)}
    return minify_hints(hints)


@mcp.tool()
async def review_move(
    move: str,
    fen: str | None = None,
    moves: list[str] | None = None,
    skill_level: str = "intermediate",
) -> dict:
    """Grade a move played in a position.

    Args:
        move: The move to grade, UCI or SAN.
        fen: FEN of the base position (default: standard start).
        moves: Moves played before ``move``, UCI or SAN.
        skill_level: beginner, intermediate or advanced.

    Returns:
        Dict with quality, feedback, evaluation change and the engine's choice.
    """
    try:
        position = _position(fen, moves)
        played = parse_moves([move], position.fen)[0]
        context = await _get_context()
        system = HintSystem(context.pipeline, context.book, skill_level)
        review = await system.review(position, played)
    except (EngineError, ValueError) as exc:
        return {"error": str(exc)}
    return {
        "move": review.move,
        "quality": review.quality,
        "feedback": review.feedback,
        "change": review.change.change,
        "description": review.change.description,
        "best_move": review.best_move,
    }


@mcp.tool()
async def analyze_game(
    pgn: str | None = None,
    moves: list[str] | None = None,
    depth: int = 15,
) -> dict:
    """Analyze every move of a game and grade both players.

    Args:
        pgn: PGN text of the game; takes precedence over ``moves``.
        moves: Moves from the standard start, UCI or SAN.
        depth: Search depth per position (default 15).

    Returns:
        Dict with annotated move list, accuracy per side and the mistakes.
    """
    game = pgn if pgn else list(moves or [])
    try:
        context = await _get_context()
        result = await context.games.analyze_game(game, depth=depth)
    except (EngineError, ValueError) as exc:
        return {"error": str(exc)}
    return minify_game(result)


# ---------------------------------------------------------------------------
# Opening tools
# ---------------------------------------------------------------------------


@mcp.tool()
def identify_opening(moves: list[str]) -> dict:
    """Look up a move sequence from the start position in the opening book.

    Args:
        moves: Moves from the standard start, UCI or SAN.

    Returns:
        Dict with name, ECO code, family and weighted book continuations.
    """
    try:
        uci_moves = parse_moves(moves)
    except ValueError as exc:
        return {"error": str(exc)}
    return minify_opening(_book.lookup(uci_moves))


@mcp.tool()
def search_openings(query: str) -> dict:
    """Find openings whose name contains ``query`` (case-insensitive).

    Returns:
        Dict with the matching openings and their move sequences.
    """
    if not query.strip():
        return {"error": "Query must not be empty"}
    results = _book.search(query)
    return {"query": query, "count": len(results), "openings": results}


# ---------------------------------------------------------------------------
# Engine tools
# ---------------------------------------------------------------------------


@mcp.tool()
def engine_status() -> dict:
    """Report which engine tier is active and why others were skipped."""
    if _context is None:
        return AnalysisContext().status()
    return _context.status()


@mcp.tool()
async def restart_engine() -> dict:
    """Quit the current engine and select a tier again."""
    await shutdown_context()
    try:
        context = await _get_context()
    except EngineError as exc:
        return {"error": str(exc)}
    return context.status()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    mcp.run()
