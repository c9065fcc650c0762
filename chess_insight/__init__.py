"""Engine integration and analysis for chess positions and games."""

from chess_insight.analysis import AnalysisPipeline
from chess_insight.client import ClientState, UCIClient
from chess_insight.config import AnalysisConfig, EngineConfig
from chess_insight.context import AnalysisContext
from chess_insight.engine import NativeEngine, StubEngine, select_engine
from chess_insight.errors import (
    ConcurrentSearchError,
    EngineCrashError,
    EngineError,
    EngineStateError,
    IllegalMoveError,
    InvalidPositionError,
    NativeBindingUnavailable,
    ProcessSpawnError,
    ProtocolTimeoutError,
)
from chess_insight.game_analyzer import GameAnalyzer
from chess_insight.hints import HintSystem
from chess_insight.models import (
    CancelToken,
    EngineResult,
    EngineTier,
    Evaluation,
    Position,
    SearchLimits,
)
from chess_insight.openings import OpeningBook

__version__ = "0.1.0"
