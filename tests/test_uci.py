"""Tests for the UCI line grammar in chess_insight.uci."""

from __future__ import annotations

import chess
import chess.engine
import pytest

from chess_insight.models import SearchLimits
from chess_insight.uci import (
    SearchAccumulator,
    format_go,
    format_position,
    format_setoption,
    parse_bestmove,
    parse_id,
    parse_info,
    parse_option,
)


# ---------------------------------------------------------------------------
# Outbound commands
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_startpos_without_moves(self):
        assert format_position(chess.STARTING_FEN) == "position startpos"

    def test_startpos_with_moves(self):
        assert format_position(chess.STARTING_FEN, ["e2e4", "e7e5"]) == (
            "position startpos moves e2e4 e7e5"
        )

    def test_custom_fen(self):
        fen = "8/8/8/8/8/8/4K3/4k3 w - - 0 1"
        assert format_position(fen) == f"position fen {fen}"
        assert format_position(fen, ["e2d2"]) == f"position fen {fen} moves e2d2"

    @pytest.mark.parametrize("limits, expected", [
        (SearchLimits(depth=10), "go depth 10"),
        (SearchLimits(movetime=500), "go movetime 500"),
        (SearchLimits(nodes=20000), "go nodes 20000"),
    ])
    def test_go(self, limits, expected):
        assert format_go(limits) == expected

    def test_setoption(self):
        assert format_setoption("MultiPV", 3) == "setoption name MultiPV value 3"
        assert format_setoption("Skill Level", 5) == "setoption name Skill Level value 5"

    def test_setoption_bool(self):
        assert format_setoption("Ponder", False) == "setoption name Ponder value false"


# ---------------------------------------------------------------------------
# Inbound lines
# ---------------------------------------------------------------------------


class TestParseInfo:
    def test_full_line(self):
        info = parse_info(
            "info depth 12 seldepth 18 multipv 2 score cp -35 nodes 45000 "
            "nps 900000 time 50 pv e7e5 g1f3 b8c6"
        )
        assert info["depth"] == 12
        assert info["seldepth"] == 18
        assert info["multipv"] == 2
        assert info["score"] == chess.engine.Cp(-35)
        assert info["nodes"] == 45000
        assert info["nps"] == 900000
        assert info["time_ms"] == 50
        assert info["pv"] == ["e7e5", "g1f3", "b8c6"]

    def test_mate_scores(self):
        assert parse_info("info depth 5 score mate 3 pv d1h5")["score"] == chess.engine.Mate(3)
        assert parse_info("info depth 5 score mate -2 pv a2a3")["score"] == chess.engine.Mate(-2)

    def test_bound_flag(self):
        info = parse_info("info depth 9 score cp 40 lowerbound nodes 100 pv e2e4")
        assert info["bound"] == "lowerbound"
        assert info["nodes"] == 100

    def test_progress_without_pv(self):
        info = parse_info("info depth 3 currmove e2e4 currmovenumber 1 hashfull 12")
        assert info["currmove"] == "e2e4"
        assert info["currmovenumber"] == 1
        assert info["hashfull"] == 12
        assert "pv" not in info

    def test_string_is_kept_verbatim(self):
        info = parse_info("info string NNUE evaluation using nn.nnue enabled")
        assert info["string"] == "NNUE evaluation using nn.nnue enabled"

    def test_malformed_number_is_dropped(self):
        info = parse_info("info depth x nodes 10")
        assert "depth" not in info
        assert info["nodes"] == 10


class TestParseBestmove:
    def test_with_ponder(self):
        assert parse_bestmove("bestmove e2e4 ponder e7e5") == ("e2e4", "e7e5")

    def test_without_ponder(self):
        assert parse_bestmove("bestmove g1f3") == ("g1f3", None)

    def test_none(self):
        assert parse_bestmove("bestmove (none)") == (None, None)

    def test_promotion(self):
        assert parse_bestmove("bestmove e7e8q")[0] == "e7e8q"


class TestParseHeaders:
    def test_id(self):
        assert parse_id("id name Stockfish 16.1") == ("name", "Stockfish 16.1")
        assert parse_id("id author the Stockfish developers") == (
            "author", "the Stockfish developers"
        )

    def test_spin_option(self):
        option = parse_option("option name Skill Level type spin default 20 min 0 max 20")
        assert option["name"] == "Skill Level"
        assert option["type"] == "spin"
        assert option["default"] == "20"
        assert option["min"] == "0"
        assert option["max"] == "20"

    def test_combo_option(self):
        option = parse_option(
            "option name Analysis Contempt type combo default Both var Off var White var Both"
        )
        assert option["name"] == "Analysis Contempt"
        assert option["var"] == ["Off", "White", "Both"]

    def test_button_option(self):
        option = parse_option("option name Clear Hash type button")
        assert option == {"name": "Clear Hash", "type": "button", "var": []}


# ---------------------------------------------------------------------------
# Search accumulation
# ---------------------------------------------------------------------------


class TestSearchAccumulator:
    def test_keeps_latest_line_per_multipv(self):
        acc = SearchAccumulator()
        acc.feed_line("info depth 1 multipv 1 score cp 10 nodes 20 pv e2e4")
        acc.feed_line("info depth 2 multipv 1 score cp 25 nodes 80 pv d2d4 d7d5")
        acc.feed_line("info depth 2 multipv 2 score cp 5 nodes 90 pv e2e4 e7e5")
        result = acc.result("d2d4", "d7d5")

        assert [line.multipv for line in result.lines] == [1, 2]
        assert result.lines[0].pv == ["d2d4", "d7d5"]
        assert result.lines[0].score == chess.engine.Cp(25)
        assert result.depth == 2
        assert result.nodes == 90
        assert result.best_move == "d2d4"
        assert result.ponder_move == "d7d5"
        assert result.stopped is False

    def test_bound_lines_do_not_replace_exact_scores(self):
        acc = SearchAccumulator()
        acc.feed_line("info depth 5 score cp 30 pv e2e4")
        acc.feed_line("info depth 6 score cp 90 upperbound pv d2d4")
        result = acc.result("e2e4")
        assert result.lines[0].pv == ["e2e4"]
        assert result.depth == 6

    def test_progress_only_lines_create_no_candidates(self):
        acc = SearchAccumulator()
        acc.feed_line("info depth 4 currmove e2e4 currmovenumber 1")
        assert acc.result("e2e4").lines == []

    def test_stopped_flag(self):
        assert SearchAccumulator().result(None, stopped=True).stopped is True
