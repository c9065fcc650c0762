"""UCI protocol client for an engine running in a child process.

Wraps one spawned engine behind an asyncio state machine:

    UNINITIALIZED -> STARTING -> READY <-> SEARCHING
                        any state -> FAILED (crash or timeout)
                        any state -> TERMINATED (quit)

Every wait for an acknowledgment is bounded. A timeout kills the process
and leaves the client FAILED; the stdout reader turns an unexpected exit
into EngineCrashError for whatever was pending.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging

from chess_insight.config import EngineConfig
from chess_insight.errors import (
    ConcurrentSearchError,
    EngineCrashError,
    EngineError,
    EngineStateError,
    ProcessSpawnError,
    ProtocolTimeoutError,
)
from chess_insight.models import (
    CancelToken,
    EngineResult,
    EngineTier,
    LegalityOracle,
    SearchLimits,
    is_legal,
    replay,
)
from chess_insight.uci import (
    SearchAccumulator,
    format_go,
    format_position,
    format_setoption,
    parse_bestmove,
    parse_id,
    parse_option,
)

logger = logging.getLogger(__name__)

# asyncio StreamReader line limit; long multi-PV lines exceed the 64 KiB default
_READ_LIMIT = 1 << 20


class ClientState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    SEARCHING = "searching"
    FAILED = "failed"
    TERMINATED = "terminated"


class EngineBase:
    """State bookkeeping shared by every engine tier.

    Subclasses implement start, set_option, set_position, search, cancel,
    new_game and quit. ``ready`` is the uniform readiness flag.
    """

    tier: EngineTier

    def __init__(self, oracle: LegalityOracle | None = None) -> None:
        self.state = ClientState.UNINITIALIZED
        self._oracle = oracle or is_legal
        self.engine_name: str | None = None
        self.engine_author: str | None = None
        self.options: dict[str, dict] = {}
        self._reserved = False

    @property
    def ready(self) -> bool:
        return self.state in (ClientState.READY, ClientState.SEARCHING)

    @property
    def busy(self) -> bool:
        return self.state is ClientState.SEARCHING or self._reserved

    @contextlib.contextmanager
    def reserved(self):
        """Hold the engine for one option/position/search sequence.

        The claim is taken before the first await, so an overlapping
        caller is rejected instead of interleaving its own position.

        Raises:
            ConcurrentSearchError: Another sequence or search holds the engine.
        """
        if self.busy:
            raise ConcurrentSearchError("Engine is busy with another analysis")
        self._reserved = True
        try:
            yield self
        finally:
            self._reserved = False

    def _require(self, operation: str, *states: ClientState) -> None:
        if self.state not in states:
            raise EngineStateError(
                f"Cannot {operation} while engine is {self.state.value}"
            )

    def _validate_moves(self, fen: str, moves) -> list[str]:
        """Check every move with the legality oracle; raise before any I/O."""
        moves = list(moves)
        replay(fen, moves, self._oracle)
        return moves

    def _claim_search(self) -> None:
        if self.state is ClientState.SEARCHING:
            raise ConcurrentSearchError("A search is already in progress on this engine")
        self._require("search", ClientState.READY)
        self.state = ClientState.SEARCHING

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.quit()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} tier={self.tier.value} state={self.state.value}>"


class UCIClient(EngineBase):
    """Drive an external UCI engine over its stdin/stdout pipes.

    Args:
        command: Executable path, or argv list (path followed by arguments).
        config: Timeouts and grace periods; defaults to EngineConfig().
        oracle: Move-legality oracle used before sending any moves.
    """

    tier = EngineTier.EXTERNAL

    def __init__(
        self,
        command: str | list[str],
        config: EngineConfig | None = None,
        oracle: LegalityOracle | None = None,
    ) -> None:
        super().__init__(oracle)
        self.command = [command] if isinstance(command, str) else list(command)
        self.config = config or EngineConfig()
        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task | None = None
        self._waiters: dict[str, asyncio.Future] = {}
        self._search: asyncio.Future | None = None
        self._accumulator: SearchAccumulator | None = None
        self._stopping = False
        self._closing = False
        self._quit_task: asyncio.Future | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Spawn the engine and complete the uci/isready handshake.

        Raises:
            ProcessSpawnError: The executable could not be started.
            ProtocolTimeoutError: No uciok/readyok within handshake_timeout.
            EngineCrashError: The process exited during the handshake.
        """
        self._require("start", ClientState.UNINITIALIZED)
        self.state = ClientState.STARTING
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=_READ_LIMIT,
            )
        except OSError as exc:
            self.state = ClientState.FAILED
            raise ProcessSpawnError(f"Could not start engine {self.command[0]!r}: {exc}") from exc

        logger.debug("Spawned engine pid=%s: %s", self._process.pid, " ".join(self.command))
        self._reader = asyncio.create_task(self._read_loop())

        timeout = self.config.handshake_timeout
        await self._exchange("uci", "uciok", timeout)
        await self._exchange("isready", "readyok", timeout)
        self.state = ClientState.READY
        logger.info("Engine ready: %s", self.engine_name or self.command[0])

    async def new_game(self) -> None:
        """Send ucinewgame and wait until the engine is ready again."""
        self._require("start a new game", ClientState.READY)
        await self._send("ucinewgame")
        await self._exchange("isready", "readyok", self.config.handshake_timeout)

    async def quit(self) -> None:
        """Shut the engine down; idempotent and valid from any state."""
        if self._quit_task is None:
            self._quit_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._quit_task)

    async def _shutdown(self) -> None:
        self._closing = True
        process = self._process
        if process is not None and process.returncode is None:
            self._write("quit")
            try:
                await asyncio.wait_for(process.wait(), self.config.quit_grace)
            except asyncio.TimeoutError:
                logger.warning(
                    "Engine did not exit within %.1fs of quit; killing it",
                    self.config.quit_grace,
                )
                await self._kill()
        self._reject_pending(EngineStateError("Engine was shut down"))
        await self._stop_reader()
        self.state = ClientState.TERMINATED
        logger.debug("Engine terminated")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def set_option(self, name: str, value) -> None:
        self._require("set an option", ClientState.READY)
        await self._send(format_setoption(name, value))

    async def set_position(self, fen: str, moves=()) -> None:
        """Send a position; every move is checked by the oracle first.

        Raises:
            IllegalMoveError: A move was rejected. Nothing is written.
            InvalidPositionError: The FEN is malformed.
        """
        self._require("set the position", ClientState.READY)
        moves = self._validate_moves(fen, moves)
        await self._send(format_position(fen, moves))

    async def search(
        self, limits: SearchLimits, cancel_token: CancelToken | None = None
    ) -> EngineResult:
        """Run one search and return its terminal result.

        Raises:
            ConcurrentSearchError: Another search is still running.
            ProtocolTimeoutError: No bestmove within the search timeout.
            EngineCrashError: The engine died mid-search.
        """
        self._claim_search()
        future = asyncio.get_running_loop().create_future()
        self._search = future
        self._accumulator = SearchAccumulator()
        self._stopping = False

        try:
            await self._send(format_go(limits))
        except EngineError:
            if future.done() and not future.cancelled():
                future.exception()
            raise

        watcher = None
        if cancel_token is not None:
            watcher = asyncio.create_task(self._watch(cancel_token, future))

        if limits.movetime is not None:
            timeout = limits.movetime / 1000.0 + self.config.search_grace
        else:
            timeout = self.config.search_timeout
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            raise await self._terminate(f"No bestmove within {timeout:.1f}s")
        except asyncio.CancelledError:
            if self._search is future and not self._stopping:
                self._stopping = True
                self._write("stop")
            raise
        finally:
            if watcher is not None:
                watcher.cancel()

    async def cancel(self) -> None:
        """Ask the running search to stop; the search still resolves normally."""
        self._require("cancel", ClientState.SEARCHING)
        if self._stopping:
            return
        self._stopping = True
        await self._send("stop")

    async def _watch(self, token: CancelToken, future: asyncio.Future) -> None:
        await token.wait()
        if self._search is future and self.state is ClientState.SEARCHING:
            await self.cancel()

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def _write(self, line: str) -> bool:
        """Write without draining; used where awaiting is not possible."""
        process = self._process
        if process is None or process.stdin is None or process.stdin.is_closing():
            return False
        logger.debug(">> %s", line)
        try:
            process.stdin.write((line + "\n").encode())
        except (BrokenPipeError, ConnectionResetError):
            return False
        return True

    async def _send(self, line: str) -> None:
        logger.debug(">> %s", line)
        try:
            self._process.stdin.write((line + "\n").encode())
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._crash(f"Engine closed its input while sending {line.split()[0]!r}")
            raise EngineCrashError(f"Engine pipe closed: {exc}") from exc

    async def _exchange(self, command: str, ack: str, timeout: float) -> None:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters[ack] = waiter
        await self._send(command)
        try:
            await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            self._waiters.pop(ack, None)
            raise await self._terminate(f"No {ack} within {timeout:.1f}s of {command!r}")

    async def _read_loop(self) -> None:
        stdout = self._process.stdout
        while True:
            raw = await stdout.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").strip()
            if line:
                logger.debug("<< %s", line)
                self._dispatch(line)
        returncode = await self._process.wait()
        if not self._closing:
            self._crash(f"Engine exited unexpectedly with code {returncode}")

    def _dispatch(self, line: str) -> None:
        keyword = line.split(maxsplit=1)[0]
        if keyword == "info":
            if self._accumulator is not None:
                self._accumulator.feed_line(line)
        elif keyword == "bestmove":
            self._finish_search(*parse_bestmove(line))
        elif keyword in ("uciok", "readyok"):
            waiter = self._waiters.pop(keyword, None)
            if waiter is not None and not waiter.done():
                waiter.set_result(None)
        elif keyword == "id":
            field_name, value = parse_id(line)
            if field_name == "name":
                self.engine_name = value
            elif field_name == "author":
                self.engine_author = value
        elif keyword == "option":
            option = parse_option(line)
            self.options[option["name"]] = option

    def _finish_search(self, best_move: str | None, ponder_move: str | None) -> None:
        future = self._search
        if future is None:
            logger.debug("Ignoring bestmove with no search pending")
            return
        result = self._accumulator.result(best_move, ponder_move, stopped=self._stopping)
        self._search = None
        self._accumulator = None
        self._stopping = False
        self.state = ClientState.READY
        if not future.done():
            future.set_result(result)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _reject_pending(self, error: EngineError) -> None:
        pending = list(self._waiters.values())
        if self._search is not None:
            pending.append(self._search)
        self._waiters.clear()
        self._search = None
        self._accumulator = None
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _crash(self, reason: str) -> None:
        if self.state in (ClientState.FAILED, ClientState.TERMINATED):
            return
        logger.error(reason)
        self.state = ClientState.FAILED
        self._reject_pending(EngineCrashError(reason))

    async def _terminate(self, reason: str) -> ProtocolTimeoutError:
        """Kill the process after a missed acknowledgment; returns the error to raise."""
        logger.error("%s; killing engine", reason)
        self._closing = True
        self.state = ClientState.FAILED
        self._search = None
        self._reject_pending(ProtocolTimeoutError(reason))
        await self._kill()
        await self._stop_reader()
        return ProtocolTimeoutError(reason)

    async def _kill(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("Engine process already gone")
        await process.wait()

    async def _stop_reader(self) -> None:
        reader = self._reader
        if reader is None or reader is asyncio.current_task():
            return
        if not reader.done():
            reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)
