"""Hints and teaching feedback derived from position analysis.

Everything here except ``HintSystem.get_hints``/``review`` is a pure
function of a PositionAnalysis (and opening match); the hint system only
adds the engine calls and a bounded history for later review.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

import chess

from chess_insight.analysis import AnalysisPipeline, compare
from chess_insight.game_analyzer import classify_delta
from chess_insight.models import (
    Assessment,
    Evaluation,
    EvaluationChange,
    OpeningMatch,
    Position,
    PositionAnalysis,
    Recommendation,
    SearchLimits,
)
from chess_insight.openings import OpeningBook

logger = logging.getLogger(__name__)

SKILL_DEPTHS = {"beginner": 10, "intermediate": 15, "advanced": 20}

_MAX_ALTERNATIVES = 3

_TYPE_EXPLANATIONS = {
    "best": "This is the strongest move",
    "equal": "This move is equally good",
    "good": "This is a solid alternative",
    "alternative": "This is a reasonable alternative",
    "inferior": "This move is playable but not optimal",
}

_CONCEPTS = {
    "opening": ("Opening Principles", [
        "Control the center",
        "Develop pieces before moving them twice",
        "Castle early for king safety",
    ]),
    "middlegame": ("Middlegame Strategy", [
        "Improve piece coordination",
        "Create weaknesses in opponent's position",
        "Control key squares",
    ]),
    "endgame": ("Endgame Technique", [
        "Activate your king",
        "Create passed pawns",
        "Centralize pieces",
    ]),
}

_REVIEW_FEEDBACK = {
    "best": "Excellent! You found the best move.",
    "blunder": "This move loses significant material or advantage.",
    "mistake": "This move weakens your position.",
    "inaccuracy": "A slightly inaccurate move.",
    "good": "A reasonable move.",
}


@dataclass
class MoveHint:
    move: str
    san: str
    explanation: str
    strength: str = ""
    comparison: str = ""


@dataclass
class HintWarning:
    type: str
    message: str


@dataclass
class Hints:
    """Hints for the side to move in one position."""

    fen: str
    best_move: MoveHint | None
    alternatives: list[MoveHint]
    warnings: list[HintWarning]
    assessment: Assessment
    evaluation: Evaluation
    phase: str
    opening: OpeningMatch | None = None
    concepts: list[dict] = field(default_factory=list)


@dataclass
class MoveReview:
    move: str
    quality: str
    feedback: str
    change: EvaluationChange
    best_move: str | None
    missed: str | None


# ---------------------------------------------------------------------------
# Pure derivations
# ---------------------------------------------------------------------------


def describe_move(move: str, fen: str) -> str:
    """Plain-English description of a coordinate move in a position."""
    board = chess.Board(fen)
    try:
        parsed = chess.Move.from_uci(move)
    except ValueError:
        return f"Move {move}"
    piece = board.piece_at(parsed.from_square)
    if piece is None or parsed not in board.legal_moves:
        return f"Move from {move[:2]} to {move[2:4]}"

    if board.is_castling(parsed):
        side = "kingside" if board.is_kingside_castling(parsed) else "queenside"
        description = f"Castle {side}"
    else:
        name = chess.piece_name(piece.piece_type).capitalize()
        src = chess.square_name(parsed.from_square)
        dst = chess.square_name(parsed.to_square)
        description = f"{name} from {src} to {dst}"
        if board.is_capture(parsed):
            if board.is_en_passant(parsed):
                description += ", capturing en passant"
            else:
                captured = board.piece_at(parsed.to_square)
                description += f", capturing the {chess.piece_name(captured.piece_type)}"
        if parsed.promotion:
            description += f" and promote to {chess.piece_name(parsed.promotion)}"
    if board.gives_check(parsed):
        description += " with check"
    return description


def explain_evaluation(evaluation: Evaluation) -> str:
    if evaluation.is_mate:
        moves = abs(evaluation.mate_in)
        if evaluation.mate_in > 0:
            return f"Leads to checkmate in {moves} moves!"
        if evaluation.mate_in < 0:
            return f"Allows checkmate in {moves} moves"
        return "The game is over"

    score = evaluation.pawns
    if abs(score) < 0.3:
        return "Maintains equality"
    if score > 3:
        return "Gives a winning advantage"
    if score > 1:
        return "Achieves a clear advantage"
    if score > 0:
        return "Gives a slight edge"
    if score < -3:
        return "Results in a losing position"
    if score < -1:
        return "Leads to a difficult position"
    return "Slightly weakens the position"


def assess_move_strength(evaluation: Evaluation) -> str:
    if evaluation.is_mate and evaluation.mate_in > 0:
        return "winning"
    score = evaluation.numeric
    if score > 2:
        return "excellent"
    if score > 0.5:
        return "good"
    if score > -0.5:
        return "neutral"
    if score > -2:
        return "dubious"
    return "poor"


def compare_moves(best: Recommendation, other: Recommendation) -> str:
    diff = (best.evaluation.centipawns - other.evaluation.centipawns) / 100.0
    if abs(diff) < 0.1:
        return "Practically equivalent"
    if diff > 2:
        return "Much weaker than the best move"
    if diff > 0.5:
        return "Slightly weaker than the best move"
    return "Nearly as good as the best move"


def generate_warnings(analysis: PositionAnalysis) -> list[HintWarning]:
    warnings = []
    evaluation = analysis.evaluation
    if analysis.assessment.critical:
        warnings.append(HintWarning(
            "critical", "Critical position! Think carefully about your next move."
        ))
    if evaluation.is_mate and evaluation.mate_in < 0:
        warnings.append(HintWarning(
            "mate_threat", f"Mate threat in {abs(evaluation.mate_in)} moves!"
        ))
    if analysis.assessment.losing:
        warnings.append(HintWarning(
            "losing", "You are in a difficult position. Look for defensive resources."
        ))
    if "tactical_opportunity" in analysis.tactics and evaluation.numeric > 0:
        warnings.append(HintWarning("tactical", "Tactical opportunity available!"))
    return warnings


def identify_concepts(analysis: PositionAnalysis) -> list[dict]:
    concepts = []
    if analysis.phase in _CONCEPTS:
        name, points = _CONCEPTS[analysis.phase]
        concepts.append({"name": name, "points": list(points)})
    if "winning_capture" in analysis.tactics:
        concepts.append({
            "name": "Winning Material",
            "description": "Look for captures that win material by force",
        })
    if "forced_sequence" in analysis.tactics:
        concepts.append({
            "name": "Forcing Moves",
            "description": "Checks, captures and threats limit the opponent's replies",
        })
    return concepts


def explain_recommendation(rec: Recommendation, analysis: PositionAnalysis,
                           teaching: bool = False) -> str:
    parts = [describe_move(rec.move, analysis.fen), explain_evaluation(rec.evaluation)]
    if rec.type in _TYPE_EXPLANATIONS:
        parts.append(_TYPE_EXPLANATIONS[rec.type])
    if teaching and analysis.plans:
        parts.append(f"This move helps to {analysis.plans[0].lower()}")
    return ". ".join(parts)


def _san(move: str, fen: str) -> str:
    board = chess.Board(fen)
    try:
        parsed = chess.Move.from_uci(move)
    except ValueError:
        return move
    return board.san(parsed) if parsed in board.legal_moves else move


def build_hints(analysis: PositionAnalysis, opening: OpeningMatch | None = None,
                teaching: bool = False) -> Hints:
    """Turn an analysis (and optional opening match) into hints."""
    best = None
    alternatives = []
    recs = analysis.recommendations
    if recs:
        top = recs[0]
        best = MoveHint(
            move=top.move,
            san=_san(top.move, analysis.fen),
            explanation=explain_recommendation(top, analysis, teaching),
            strength=assess_move_strength(top.evaluation),
        )
        for rec in recs[1:1 + _MAX_ALTERNATIVES]:
            alternatives.append(MoveHint(
                move=rec.move,
                san=_san(rec.move, analysis.fen),
                explanation=explain_recommendation(rec, analysis, teaching),
                strength=assess_move_strength(rec.evaluation),
                comparison=compare_moves(top, rec),
            ))
    return Hints(
        fen=analysis.fen,
        best_move=best,
        alternatives=alternatives,
        warnings=generate_warnings(analysis),
        assessment=analysis.assessment,
        evaluation=analysis.evaluation,
        phase=analysis.phase,
        opening=opening,
        concepts=identify_concepts(analysis) if teaching else [],
    )


def review_move(before: PositionAnalysis, after: PositionAnalysis, move: str) -> MoveReview:
    """Grade a played move from the analyses before and after it."""
    change = compare(before.evaluation, after.evaluation)
    was_best = move == before.best_move
    quality = "best" if was_best else classify_delta(change.change)
    return MoveReview(
        move=move,
        quality=quality,
        feedback=_REVIEW_FEEDBACK[quality],
        change=change,
        best_move=before.best_move,
        missed=None if was_best else before.best_move,
    )


# ---------------------------------------------------------------------------
# Hint system
# ---------------------------------------------------------------------------


class HintSystem:
    """Skill-aware hints on top of an AnalysisPipeline."""

    def __init__(self, pipeline: AnalysisPipeline, book: OpeningBook | None = None,
                 skill_level: str = "intermediate", teaching_mode: bool = False,
                 history_limit: int | None = None) -> None:
        if skill_level not in SKILL_DEPTHS:
            raise ValueError(
                f"Unknown skill level {skill_level!r}; expected one of {sorted(SKILL_DEPTHS)}"
            )
        self.pipeline = pipeline
        self.book = book or OpeningBook(book_depth=pipeline.config.book_depth)
        self.skill_level = skill_level
        self.teaching_mode = teaching_mode
        limit = history_limit or pipeline.config.history_limit
        self._history: deque[Hints] = deque(maxlen=limit)

    @property
    def depth(self) -> int:
        return SKILL_DEPTHS[self.skill_level]

    async def get_hints(self, position: Position | str) -> Hints:
        if isinstance(position, str):
            position = Position.from_fen(position)
        analysis = await self.pipeline.analyze(
            position, SearchLimits(depth=self.depth), multipv=1 + _MAX_ALTERNATIVES
        )
        opening = None
        if position.base_fen == chess.STARTING_FEN:
            opening = self.book.lookup(position.moves)
        hints = build_hints(analysis, opening, self.teaching_mode)
        self._history.append(hints)
        return hints

    async def review(self, position: Position, move: str) -> MoveReview:
        """Analyze the positions around ``move`` and grade it."""
        limits = SearchLimits(depth=self.depth)
        before = await self.pipeline.analyze(position, limits)
        after = await self.pipeline.analyze(position.push(move), limits)
        return review_move(before, after, move)

    def history(self) -> list[Hints]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
