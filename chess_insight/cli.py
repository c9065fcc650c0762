"""Command line front end for chess-insight.

Usage:
    chess-insight analyze "<FEN>" --depth 18 --multipv 3
    chess-insight hint --moves e2e4 e7e5 --skill beginner
    chess-insight opening e2e4 e7e5 g1f3
    chess-insight game game.pgn
    chess-insight match --white-tier external --black-tier stub
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

import chess
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from chess_insight.config import TIERS, AnalysisConfig, EngineConfig
from chess_insight.context import AnalysisContext
from chess_insight.errors import EngineError
from chess_insight.game_analyzer import annotations
from chess_insight.match import EngineMatch
from chess_insight.models import Position, SearchLimits
from chess_insight.openings import OpeningBook

_QUALITY_STYLES = {
    "blunder": "bold red",
    "mistake": "red",
    "inaccuracy": "yellow",
    "good": "green",
}


def _engine_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    if getattr(args, "tier", None):
        config = dataclasses.replace(config, tier=args.tier)
    if getattr(args, "engine", None):
        config = dataclasses.replace(config, engine_path=args.engine)
    return config


def _position(args: argparse.Namespace) -> Position:
    return Position(args.fen or chess.STARTING_FEN, tuple(args.moves or ()))


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _cli_analyze(args: argparse.Namespace, console: Console) -> None:
    async with AnalysisContext(_engine_config(args), AnalysisConfig.from_env()) as ctx:
        position = _position(args)
        analysis = await ctx.pipeline.analyze(
            position, SearchLimits(depth=args.depth), multipv=args.multipv
        )
        tier = ctx.active_tier.value

    console.print(f"Position: {analysis.fen}")
    console.print(f"Side to move: {analysis.turn.capitalize()}  "
                  f"Phase: {analysis.phase}  Tier: {tier}")
    console.print(f"[bold]{analysis.evaluation.display}[/bold]  {analysis.assessment.description}")

    table = Table(title=f"Depth {analysis.depth}")
    table.add_column("#", justify="right")
    table.add_column("Move")
    table.add_column("Eval", justify="right")
    table.add_column("Type")
    table.add_column("Line")
    for i, rec in enumerate(analysis.recommendations, 1):
        table.add_row(str(i), rec.move, rec.evaluation.display, rec.type, " ".join(rec.line[:8]))
    console.print(table)
    if analysis.tactics:
        console.print(f"Tactics: {', '.join(analysis.tactics)}")


async def _cli_hint(args: argparse.Namespace, console: Console) -> None:
    context = AnalysisContext(_engine_config(args), AnalysisConfig.from_env(),
                              skill_level=args.skill, teaching_mode=args.teach)
    async with context as ctx:
        hints = await ctx.hints.get_hints(_position(args))

    parts = []
    if hints.opening and hints.opening.known:
        parts.append(f"[bold]Opening:[/bold] {hints.opening.name} ({hints.opening.eco})")
    parts.append(f"[bold]Assessment:[/bold] {hints.assessment.description} "
                 f"({hints.evaluation.display})")
    if hints.best_move:
        parts.append(f"[bold]Best:[/bold] {hints.best_move.san}. {hints.best_move.explanation}")
    for alt in hints.alternatives:
        parts.append(f"  {alt.san}: {alt.comparison}")
    for warning in hints.warnings:
        parts.append(f"[red]{warning.message}[/red]")
    for concept in hints.concepts:
        parts.append(f"[italic]{concept['name']}[/italic]")
    console.print(Panel("\n".join(parts), title="Hints", border_style="green"))


def _cli_opening(args: argparse.Namespace, console: Console) -> None:
    book = OpeningBook(book_depth=AnalysisConfig.from_env().book_depth)
    match = book.lookup(args.moves)
    if not match.known:
        console.print("Position not in opening book")
        return
    console.print(f"[bold]{match.name}[/bold] ({match.eco}, "
                  f"{book.eco_classification(match.eco)})")
    if match.description:
        console.print(match.description)
    if match.suggestions:
        table = Table(title="Book continuations")
        table.add_column("Move")
        table.add_column("Weight", justify="right")
        table.add_column("Leads to")
        for suggestion in match.suggestions:
            table.add_row(suggestion.move, str(suggestion.weight), suggestion.name or "")
        console.print(table)


async def _cli_game(args: argparse.Namespace, console: Console) -> None:
    source = Path(args.pgn)
    text = source.read_text(encoding="utf-8")
    async with AnalysisContext(_engine_config(args), AnalysisConfig.from_env()) as ctx:
        result = await ctx.games.analyze_game(text, depth=args.depth)

    table = Table(title=f"{result.opening.name or 'Unknown opening'}  {result.result}")
    table.add_column("Ply", justify="right")
    table.add_column("Move")
    table.add_column("Quality")
    table.add_column("Delta", justify="right")
    for record, note in zip(result.moves, annotations(result)):
        style = _QUALITY_STYLES.get(record.quality, "")
        table.add_row(str(record.ply + 1), note, f"[{style}]{record.quality}[/{style}]",
                      f"{record.delta:+.2f}")
    console.print(table)
    console.print(f"Accuracy: White {result.accuracy['white']:.1f}%  "
                  f"Black {result.accuracy['black']:.1f}%  "
                  f"Overall {result.overall_accuracy:.1f}%")


async def _cli_match(args: argparse.Namespace, console: Console) -> None:
    base = EngineConfig.from_env()
    match = EngineMatch(
        white=dataclasses.replace(base, tier=args.white_tier),
        black=dataclasses.replace(base, tier=args.black_tier),
        white_limits=SearchLimits(movetime=args.movetime),
        black_limits=SearchLimits(movetime=args.movetime),
        book=None if args.no_book else OpeningBook(),
        seed=args.seed,
        max_plies=args.max_plies,
    )
    result = await match.play()
    board = chess.Board()
    console.print(f"White: {result.tiers['white']}  Black: {result.tiers['black']}")
    console.print(board.variation_san([chess.Move.from_uci(m) for m in result.uci_moves]))
    console.print(f"[bold]{result.result}[/bold] ({result.termination})")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _add_engine_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tier", choices=TIERS, help="Engine tier (default: auto)")
    parser.add_argument("--engine", help="Path to a UCI engine binary")


def _add_position_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("fen", nargs="?", default=None, help="FEN (default: start position)")
    parser.add_argument("--moves", nargs="*", default=[], help="UCI moves played from the FEN")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chess-insight",
        description="Engine-backed chess analysis, hints and opening lookup",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for info logging, -vv for protocol traffic")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a position")
    _add_position_args(analyze_parser)
    _add_engine_args(analyze_parser)
    analyze_parser.add_argument("--depth", type=int, default=AnalysisConfig().default_depth)
    analyze_parser.add_argument("--multipv", type=int, default=3)

    hint_parser = subparsers.add_parser("hint", help="Hints for the side to move")
    _add_position_args(hint_parser)
    _add_engine_args(hint_parser)
    hint_parser.add_argument("--skill", choices=["beginner", "intermediate", "advanced"],
                             default="intermediate")
    hint_parser.add_argument("--teach", action="store_true", help="Include teaching concepts")

    opening_parser = subparsers.add_parser("opening", help="Look up a move sequence in the book")
    opening_parser.add_argument("moves", nargs="*", help="UCI moves from the start position")

    game_parser = subparsers.add_parser("game", help="Analyze every move of a PGN game")
    game_parser.add_argument("pgn", help="Path to a PGN file")
    _add_engine_args(game_parser)
    game_parser.add_argument("--depth", type=int, default=None)

    match_parser = subparsers.add_parser("match", help="Play two engines against each other")
    match_parser.add_argument("--white-tier", choices=TIERS, default="auto")
    match_parser.add_argument("--black-tier", choices=TIERS, default="auto")
    match_parser.add_argument("--movetime", type=int, default=1000, help="Milliseconds per move")
    match_parser.add_argument("--max-plies", type=int, default=200)
    match_parser.add_argument("--seed", type=int, default=None)
    match_parser.add_argument("--no-book", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    console = Console()

    try:
        if args.command == "analyze":
            asyncio.run(_cli_analyze(args, console))
        elif args.command == "hint":
            asyncio.run(_cli_hint(args, console))
        elif args.command == "opening":
            _cli_opening(args, console)
        elif args.command == "game":
            asyncio.run(_cli_game(args, console))
        elif args.command == "match":
            asyncio.run(_cli_match(args, console))
        else:
            parser.print_help()
            return 1
    except (EngineError, ValueError, OSError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
