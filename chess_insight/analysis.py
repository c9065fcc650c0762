"""Position analysis on top of any engine tier.

Turns one engine search into a PositionAnalysis: evaluation, ranked
recommendations, qualitative assessment, game phase, tactical flags and
phase plans. Every score is from the perspective of the side to move.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict, deque

import chess

from chess_insight.client import EngineBase
from chess_insight.config import AnalysisConfig
from chess_insight.models import (
    Assessment,
    CancelToken,
    EngineLine,
    EngineResult,
    Evaluation,
    EvaluationChange,
    Position,
    PositionAnalysis,
    Recommendation,
    SearchLimits,
)

logger = logging.getLogger(__name__)

# Recommendation labels by |score difference| to the top line, in pawns
_RECOMMENDATION_BANDS = [
    (0.2, "equal", "Equally good alternative"),
    (0.5, "good", "Good alternative"),
    (1.0, "alternative", "Alternative move"),
]

_PLANS = {
    "opening": ["Complete development", "Control the center", "Ensure king safety"],
    "middlegame": ["Improve piece activity", "Create weaknesses", "Coordinate pieces"],
    "endgame": ["Activate the king", "Create passed pawns", "Centralize pieces"],
}

_TACTICAL_THRESHOLD = 2.0
_FORCED_DEPTH = 10


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def game_phase(fen: str) -> str:
    """Classify the game phase by the number of pieces on the board."""
    pieces = sum(1 for char in fen.split()[0] if char.isalpha())
    if pieces > 28:
        return "opening"
    if pieces > 16:
        return "middlegame"
    return "endgame"


def _side(color: chess.Color) -> str:
    return "white" if color == chess.WHITE else "black"


def assess(evaluation: Evaluation, turn: chess.Color,
           config: AnalysisConfig | None = None) -> Assessment:
    """Qualitative reading of a side-to-move evaluation.

    Args:
        evaluation: Score from the perspective of ``turn``.
        turn: Side to move in the evaluated position.
        config: Thresholds; defaults to AnalysisConfig().

    Returns:
        Assessment naming the advantaged colour.
    """
    config = config or AnalysisConfig()
    mover, other = _side(turn), _side(not turn)

    if evaluation.is_mate:
        mover_wins = evaluation.mate_in > 0 or evaluation.mate_given
        winner = mover if mover_wins else other
        moves = abs(evaluation.mate_in)
        if moves == 0:
            description = f"{winner.capitalize()} has delivered checkmate"
        else:
            description = f"{winner.capitalize()} has mate in {moves}"
        return Assessment(
            advantage=winner,
            magnitude="winning",
            winning=mover_wins,
            losing=not mover_wins,
            critical=True,
            description=description,
        )

    score = evaluation.pawns
    size = abs(score)
    if size <= config.equal_band:
        advantage = "equal"
    else:
        advantage = mover if score > 0 else other

    if size < config.small_limit:
        magnitude = "small"
    elif size < config.clear_limit:
        magnitude = "clear"
    elif size < config.significant_limit:
        magnitude = "significant"
    else:
        magnitude = "winning"

    if advantage == "equal":
        description = "The position is approximately equal"
    elif magnitude == "winning":
        description = f"{advantage.capitalize()} has a winning position"
    else:
        description = f"{advantage.capitalize()} has a {magnitude} advantage"

    return Assessment(
        advantage=advantage,
        magnitude=magnitude,
        winning=score > config.winning_threshold,
        losing=score < -config.winning_threshold,
        critical=size > config.critical_threshold,
        description=description,
    )


def rank_lines(lines: list[EngineLine]) -> list[Recommendation]:
    """Order candidate lines best-first and label them against the top line.

    Mate for the side to move sorts above every finite score and mate
    against it below every finite score.
    """
    scored = [(Evaluation.from_score(line.score), line) for line in lines
              if line.score is not None and line.pv]
    scored.sort(key=lambda item: item[0].sort_key, reverse=True)

    recommendations = []
    for index, (evaluation, line) in enumerate(scored):
        if index == 0:
            top = evaluation
            kind, explanation = "best", "Engine's top choice"
        else:
            diff = abs(top.centipawns - evaluation.centipawns) / 100.0
            kind, explanation = "inferior", "Significantly weaker"
            for limit, label, text in _RECOMMENDATION_BANDS:
                if diff < limit:
                    kind, explanation = label, text
                    break
        recommendations.append(Recommendation(
            move=line.pv[0],
            type=kind,
            evaluation=evaluation,
            line=tuple(line.pv),
            explanation=explanation,
        ))
    return recommendations


def find_tactics(board: chess.Board, evaluation: Evaluation, best_line: list[str],
                 depth: int, lines_returned: int, lines_requested: int) -> list[str]:
    tactics = []
    score = evaluation.numeric
    if abs(score) > _TACTICAL_THRESHOLD:
        tactics.append("tactical_opportunity")
    if len(best_line) > 1:
        if score > _TACTICAL_THRESHOLD and _line_has_capture(board, best_line):
            tactics.append("winning_capture")
        if depth > _FORCED_DEPTH and lines_returned == 1 and lines_requested > 1:
            tactics.append("forced_sequence")
    return tactics


def _line_has_capture(board: chess.Board, line: list[str]) -> bool:
    board = board.copy(stack=False)
    for uci in line:
        try:
            move = chess.Move.from_uci(uci)
        except ValueError:
            return False
        if move not in board.legal_moves:
            return False
        if board.is_capture(move):
            return True
        board.push(move)
    return False


def describe_change(change: float) -> str:
    size = abs(change)
    if size < 0.1:
        return "Position remains equal"
    if size < 0.5:
        return "Slight improvement" if change > 0 else "Slight deterioration"
    if size < 1.5:
        return "Clear improvement" if change > 0 else "Clear deterioration"
    return "Significant improvement" if change > 0 else "Significant deterioration"


def compare(before: Evaluation, after: Evaluation) -> EvaluationChange:
    """Describe how a move changed the evaluation for the player who made it.

    Args:
        before: Evaluation of the position before the move (mover to move).
        after: Evaluation of the position after the move (opponent to move).
    """
    after_for_mover = after.negated()
    change = (after_for_mover.centipawns - before.centipawns) / 100.0
    return EvaluationChange(
        before=before,
        after=after_for_mover,
        change=change,
        improved=change > 0,
        description=describe_change(change),
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class AnalysisPipeline:
    """Run searches on one engine and enrich the results.

    The pipeline never queues: a request while the engine is reserved by
    another analysis, or searching, raises ConcurrentSearchError.
    """

    def __init__(self, engine: EngineBase, config: AnalysisConfig | None = None) -> None:
        self.engine = engine
        self.config = config or AnalysisConfig()
        self._multipv = 1
        self._cache: OrderedDict = OrderedDict()
        self._history: deque[PositionAnalysis] = deque(maxlen=self.config.history_limit)

    @property
    def current(self) -> PositionAnalysis | None:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> list[PositionAnalysis]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def analyze(
        self,
        position: Position | str,
        limits: SearchLimits | None = None,
        multipv: int = 1,
        cancel_token: CancelToken | None = None,
    ) -> PositionAnalysis:
        """Analyze a position.

        Args:
            position: A Position, or a FEN string.
            limits: Search limits; defaults to ``default_depth`` plies.
            multipv: Requested candidate lines, clamped to ``max_multipv``.
            cancel_token: Stops the search early when set.

        Returns:
            PositionAnalysis with at most ``multipv`` recommendations.

        Raises:
            ConcurrentSearchError: The engine is reserved or searching.
            IllegalMoveError: The position's moves are rejected.
        """
        if isinstance(position, str):
            position = Position.from_fen(position)
        limits = limits or SearchLimits(depth=self.config.default_depth)
        k = max(1, min(multipv, self.config.max_multipv))

        key = (position.fen, limits, k)
        cached = self._cache_get(key)
        if cached is not None:
            logger.debug("Analysis cache hit for %s", position.fen)
            self._history.append(cached)
            return cached

        board = position.board()
        if board.is_game_over(claim_draw=False):
            analysis = self._terminal(board)
        else:
            with self.engine.reserved():
                if k != self._multipv:
                    await self.engine.set_option("MultiPV", k)
                    self._multipv = k
                await self.engine.set_position(position.base_fen, position.moves)
                result = await self.engine.search(limits, cancel_token)
            analysis = self.build(board, result, k)
            if not result.stopped:
                self._cache_put(key, analysis)

        self._history.append(analysis)
        return analysis

    def build(self, board: chess.Board, result: EngineResult, requested: int = 1) -> PositionAnalysis:
        """Enrich a raw EngineResult for ``board``."""
        recommendations = rank_lines(result.lines)[:requested]
        if recommendations:
            top = recommendations[0]
            evaluation = top.evaluation
            best_line = list(top.line)
        else:
            evaluation = Evaluation(pawns=0.0)
            best_line = [result.best_move] if result.best_move else []
            if result.best_move:
                recommendations = [Recommendation(
                    move=result.best_move,
                    type="best",
                    evaluation=evaluation,
                    line=tuple(best_line),
                    explanation="Engine's top choice",
                )]
        best_move = result.best_move or (best_line[0] if best_line else None)

        fen = board.fen()
        phase = game_phase(fen)
        return PositionAnalysis(
            fen=fen,
            turn=_side(board.turn),
            depth=result.depth,
            best_move=best_move,
            best_line=best_line,
            evaluation=evaluation,
            assessment=assess(evaluation, board.turn, self.config),
            recommendations=recommendations,
            phase=phase,
            tactics=find_tactics(board, evaluation, best_line, result.depth,
                                 len(result.lines), requested),
            plans=list(_PLANS[phase]),
            result=result,
        )

    def _terminal(self, board: chess.Board) -> PositionAnalysis:
        if board.is_checkmate():
            evaluation = Evaluation.from_mate(0)
        else:
            evaluation = Evaluation(pawns=0.0)
        fen = board.fen()
        phase = game_phase(fen)
        return PositionAnalysis(
            fen=fen,
            turn=_side(board.turn),
            depth=0,
            best_move=None,
            best_line=[],
            evaluation=evaluation,
            assessment=assess(evaluation, board.turn, self.config),
            phase=phase,
            plans=list(_PLANS[phase]),
        )

    def _cache_get(self, key) -> PositionAnalysis | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, analysis = entry
        if time.monotonic() - stored_at > self.config.cache_ttl:
            del self._cache[key]
            return None
        self._cache.move_to_end(key)
        return analysis

    def _cache_put(self, key, analysis: PositionAnalysis) -> None:
        if self.config.cache_size <= 0:
            return
        self._cache[key] = (time.monotonic(), analysis)
        self._cache.move_to_end(key)
        while len(self._cache) > self.config.cache_size:
            self._cache.popitem(last=False)
