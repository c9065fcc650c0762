"""Exception hierarchy for engine integration and analysis."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every engine/analysis failure raised by chess_insight."""


class ProcessSpawnError(EngineError):
    """Engine binary is missing, not executable, or could not be started."""


class NativeBindingUnavailable(ProcessSpawnError):
    """The in-process engine binding is not installed."""


class ProtocolTimeoutError(EngineError):
    """An expected protocol acknowledgment did not arrive in time."""


class EngineCrashError(EngineError):
    """The engine process exited or closed its streams unexpectedly."""


class EngineStateError(EngineError):
    """Operation is not valid in the engine's current state."""


class ConcurrentSearchError(EngineError):
    """A search was requested while another one is still running."""


class IllegalMoveError(EngineError, ValueError):
    """A move was rejected by the legality oracle.

    Attributes:
        move: The offending move string.
        ply: Index of the move in its sequence, when known.
    """

    def __init__(self, move: str, fen: str | None = None, ply: int | None = None) -> None:
        self.move = move
        self.fen = fen
        self.ply = ply
        where = f" at ply {ply}" if ply is not None else ""
        position = f" in position {fen}" if fen else ""
        super().__init__(f"Illegal move {move!r}{where}{position}")


class InvalidPositionError(EngineError, ValueError):
    """A FEN string could not be parsed into a valid position."""
