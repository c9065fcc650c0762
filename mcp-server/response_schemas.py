"""Response shaping and schemas for MCP tool return values.

Converts analysis dataclasses into compact dicts for the LLM client:
evaluations become a display string plus a numeric score, long principal
variations are truncated, and move lists become a PGN move string
(1.e4 e5 2.Nf3 ...).
"""

from __future__ import annotations

import os

from chess_insight.game_analyzer import annotations
from chess_insight.hints import Hints
from chess_insight.models import (
    Evaluation,
    GameAnalysisResult,
    OpeningMatch,
    PositionAnalysis,
)

# Moves kept per principal variation in responses
_PV_LIMIT = 5

# Book continuations kept in opening responses
_SUGGESTION_LIMIT = 5


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_evaluation(evaluation: Evaluation) -> dict:
    """Compact an Evaluation: display string, numeric score, mate only if set."""
    result = {
        "display": evaluation.display,
        "score": evaluation.numeric,
    }
    if evaluation.mate_in is not None:
        result["mate_in"] = evaluation.mate_in
    return result


def minify_analysis(analysis: PositionAnalysis) -> dict:
    """Minify a PositionAnalysis for MCP response.

    Truncates each recommendation's line to the first moves, drops the
    raw engine result and keeps the assessment as one description.

    Args:
        analysis: Full PositionAnalysis from the pipeline.

    Returns:
        Minified dict.
    """
    lines = []
    for rank, rec in enumerate(analysis.recommendations, 1):
        lines.append({
            "rank": rank,
            "move": rec.move,
            "type": rec.type,
            "eval": minify_evaluation(rec.evaluation),
            "moves": list(rec.line[:_PV_LIMIT]),
        })
    return {
        "fen": analysis.fen,
        "turn": analysis.turn,
        "depth": analysis.depth,
        "best_move": analysis.best_move,
        "eval": minify_evaluation(analysis.evaluation),
        "assessment": analysis.assessment.description,
        "advantage": analysis.assessment.advantage,
        "critical": analysis.assessment.critical,
        "phase": analysis.phase,
        "tactics": list(analysis.tactics),
        "lines": lines,
    }


def minify_hints(hints: Hints) -> dict:
    """Minify a Hints object; alternatives keep only SAN and comparison."""
    best = None
    if hints.best_move is not None:
        best = {
            "move": hints.best_move.move,
            "san": hints.best_move.san,
            "explanation": hints.best_move.explanation,
            "strength": hints.best_move.strength,
        }
    result = {
        "fen": hints.fen,
        "best_move": best,
        "alternatives": [
            {"san": alt.san, "comparison": alt.comparison} for alt in hints.alternatives
        ],
        "warnings": [warning.message for warning in hints.warnings],
        "assessment": hints.assessment.description,
        "eval": minify_evaluation(hints.evaluation),
        "phase": hints.phase,
        "opening": None,
    }
    if hints.opening is not None and hints.opening.known:
        result["opening"] = {"name": hints.opening.name, "eco": hints.opening.eco}
    if hints.concepts:
        result["concepts"] = [concept["name"] for concept in hints.concepts]
    return result


def minify_opening(match: OpeningMatch) -> dict:
    """Minify an OpeningMatch; suggestions become ``{move, weight}`` pairs."""
    return {
        "known": match.known,
        "name": match.name,
        "eco": match.eco,
        "family": match.family,
        "description": match.description,
        "moves_matched": match.moves_matched,
        "suggestions": [
            {"move": s.move, "weight": s.weight}
            for s in match.suggestions[:_SUGGESTION_LIMIT]
        ],
    }


def minify_game(result: GameAnalysisResult) -> dict:
    """Minify a GameAnalysisResult.

    Per-move records collapse into an annotated PGN string; only moves
    that were not good are listed individually.
    """
    notes = annotations(result)
    mistakes = []
    for record in result.moves:
        if record.quality == "good":
            continue
        mistakes.append({
            "ply": record.ply,
            "color": record.color,
            "san": record.san,
            "quality": record.quality,
            "delta": round(record.delta, 2),
            "best_san": record.best_san,
        })
    return {
        "result": result.result,
        "opening": result.opening.name if result.opening else None,
        "move_list": _moves_to_pgn_string(notes),
        "accuracy": dict(result.accuracy),
        "overall_accuracy": result.overall_accuracy,
        "mistakes": mistakes,
        "critical_plies": list(result.critical),
        "performance": dict(result.summary.get("performance", {})),
    }


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str]) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6'

    Args:
        moves: List of SAN move strings.

    Returns:
        PGN-formatted move string.
    """
    if not moves:
        return ""

    parts = []
    for i, move in enumerate(moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

ANALYSIS_SCHEMA = {
    "fen": str,
    "turn": str,
    "depth": int,
    "best_move": (str, type(None)),
    "eval": dict,
    "assessment": str,
    "advantage": str,
    "critical": bool,
    "phase": str,
    "tactics": list,
    "lines": list,
}

HINTS_SCHEMA = {
    "fen": str,
    "best_move": (dict, type(None)),
    "alternatives": list,
    "warnings": list,
    "assessment": str,
    "eval": dict,
    "phase": str,
    "opening": (dict, type(None)),
}

OPENING_SCHEMA = {
    "known": bool,
    "name": (str, type(None)),
    "eco": (str, type(None)),
    "moves_matched": int,
    "suggestions": list,
}

GAME_SCHEMA = {
    "result": str,
    "opening": (str, type(None)),
    "move_list": str,
    "accuracy": dict,
    "overall_accuracy": (int, float),
    "mistakes": list,
    "critical_plies": list,
    "performance": dict,
}

STATUS_SCHEMA = {
    "initialized": bool,
    "tier": (str, type(None)),
    "engine": (str, type(None)),
    "state": (str, type(None)),
    "busy": bool,
    "fallbacks": list,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when CHESS_INSIGHT_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("CHESS_INSIGHT_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        elif not isinstance(value, expected_types):
            errors.append(
                f"Key '{key}': expected {expected_types.__name__}, "
                f"got {type(value).__name__}"
            )

    return errors
