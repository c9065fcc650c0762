"""Explicit owner of the engine, pipeline, book and hint system.

Callers create one AnalysisContext, initialize it, use its components and
shut it down; nothing here is global.

Usage:
    async with AnalysisContext(EngineConfig(tier="stub")) as ctx:
        analysis = await ctx.pipeline.analyze(Position())
"""

from __future__ import annotations

import logging

from chess_insight.analysis import AnalysisPipeline
from chess_insight.config import AnalysisConfig, EngineConfig
from chess_insight.engine import EngineSelection, select_engine
from chess_insight.errors import EngineStateError
from chess_insight.game_analyzer import GameAnalyzer
from chess_insight.hints import HintSystem
from chess_insight.models import EngineTier, LegalityOracle
from chess_insight.openings import OpeningBook

logger = logging.getLogger(__name__)


class AnalysisContext:
    """Lifecycle container for one engine and everything built on it."""

    def __init__(self, engine_config: EngineConfig | None = None,
                 analysis_config: AnalysisConfig | None = None,
                 oracle: LegalityOracle | None = None,
                 skill_level: str = "intermediate",
                 teaching_mode: bool = False) -> None:
        self.engine_config = engine_config or EngineConfig()
        self.analysis_config = analysis_config or AnalysisConfig()
        self._oracle = oracle
        self._skill_level = skill_level
        self._teaching_mode = teaching_mode
        self.book = OpeningBook(book_depth=self.analysis_config.book_depth)
        self.selection: EngineSelection | None = None
        self._pipeline: AnalysisPipeline | None = None
        self._games: GameAnalyzer | None = None
        self._hints: HintSystem | None = None

    @property
    def initialized(self) -> bool:
        return self.selection is not None

    @property
    def active_tier(self) -> EngineTier | None:
        return self.selection.tier if self.selection else None

    def _component(self, value):
        if value is None:
            raise EngineStateError("AnalysisContext is not initialized")
        return value

    @property
    def pipeline(self) -> AnalysisPipeline:
        return self._component(self._pipeline)

    @property
    def games(self) -> GameAnalyzer:
        return self._component(self._games)

    @property
    def hints(self) -> HintSystem:
        return self._component(self._hints)

    async def initialize(self) -> None:
        if self.initialized:
            return
        self.selection = await select_engine(self.engine_config, self._oracle)
        self._pipeline = AnalysisPipeline(self.selection.engine, self.analysis_config)
        self._games = GameAnalyzer(self._pipeline, self.book, self.analysis_config)
        self._hints = HintSystem(self._pipeline, self.book, self._skill_level,
                                 self._teaching_mode)
        logger.info("Analysis context ready on %s tier", self.selection.tier.value)

    async def shutdown(self) -> None:
        if self.selection is None:
            return
        engine = self.selection.engine
        self.selection = None
        self._pipeline = self._games = self._hints = None
        await engine.quit()
        logger.info("Analysis context shut down")

    def status(self) -> dict:
        if self.selection is None:
            return {"initialized": False, "tier": None, "engine": None,
                    "state": None, "busy": False, "fallbacks": []}
        engine = self.selection.engine
        return {
            "initialized": True,
            "tier": self.selection.tier.value,
            "engine": engine.engine_name,
            "state": engine.state.value,
            "busy": engine.busy,
            "fallbacks": [
                {"tier": a.tier.value, "reason": a.reason}
                for a in self.selection.attempts if not a.ok
            ],
        }

    async def __aenter__(self) -> AnalysisContext:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
