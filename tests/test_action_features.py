"""Tests for per-action spatial features and their batching into rows."""

import numpy as np

from hive_ai.ai.action_features import (
    POSITION_FEATURE_DIM,
    encode_action,
    neighbourhood_features,
    position_features,
)
from hive_ai.ai.model_adapter import encode_action_rows
from hive_ai.models import NUM_NEIGHBOURS, NUM_PIECE_TYPES, PieceType

from conftest import move, place, pos


class TestPositionFeatures:
    def test_dimension(self) -> None:
        assert POSITION_FEATURE_DIM == 2 * NUM_PIECE_TYPES + 1

    def test_empty_cell_is_zero(self, mid_game_board) -> None:
        np.testing.assert_array_equal(position_features(mid_game_board, pos(5, 5)), 0)

    def test_no_position_is_zero(self, mid_game_board) -> None:
        np.testing.assert_array_equal(position_features(mid_game_board, None), 0)

    def test_own_piece(self, mid_game_board) -> None:
        f = position_features(mid_game_board, pos(1, -1))
        assert f[PieceType.ANT - 1] == 1.0
        assert f[-1] == 1.0
        assert f.sum() == 2.0

    def test_opponent_piece_uses_second_block(self, mid_game_board) -> None:
        f = position_features(mid_game_board, pos(0, 1))
        assert f[NUM_PIECE_TYPES + PieceType.QUEEN - 1] == 1.0
        assert f[PieceType.QUEEN - 1] == 0.0

    def test_stack_reports_top_and_height(self, covered_queen_board) -> None:
        f = position_features(covered_queen_board, pos(0, 0))
        assert f[NUM_PIECE_TYPES + PieceType.BEETLE - 1] == 1.0
        assert f[-1] == 2.0


class TestEncodeAction:
    def test_move_neighbourhood(self, mid_game_board) -> None:
        features = encode_action(mid_game_board, move(PieceType.ANT, (1, -1), (1, 0)))
        assert features.move == 1.0
        assert features.source_center[PieceType.ANT - 1] == 1.0
        np.testing.assert_array_equal(features.target_center, 0)

        # Neighbours of (1,0): (1,-1) own ant, (0,1) opponent queen, (0,0) own queen.
        hood = features.target_neighbourhood
        assert hood.shape == (NUM_NEIGHBOURS, POSITION_FEATURE_DIM)
        assert hood[0][PieceType.ANT - 1] == 1.0
        assert hood[4][NUM_PIECE_TYPES + PieceType.QUEEN - 1] == 1.0
        assert hood[5][PieceType.QUEEN - 1] == 1.0
        np.testing.assert_array_equal(hood[1:4], 0)

    def test_placement_has_empty_source(self, mid_game_board) -> None:
        features = encode_action(mid_game_board, place(PieceType.GRASSHOPPER, (2, -2)))
        assert features.move == 0.0
        np.testing.assert_array_equal(features.source_center, 0)
        np.testing.assert_array_equal(features.source_neighbourhood, 0)

    def test_neighbourhood_of_none(self, mid_game_board) -> None:
        np.testing.assert_array_equal(neighbourhood_features(mid_game_board, None), 0)


class TestActionRows:
    def test_rows_follow_action_order(self, mid_game_board) -> None:
        rows = encode_action_rows(mid_game_board)
        assert len(rows) == 4
        np.testing.assert_array_equal(rows.move[:, 0], [1.0, 1.0, 1.0, 0.0])
        assert rows.source_neighbourhood.shape == (4, NUM_NEIGHBOURS, POSITION_FEATURE_DIM)

    def test_no_actions(self, won_board) -> None:
        rows = encode_action_rows(won_board)
        assert len(rows) == 0
        assert rows.target_center.shape == (0, POSITION_FEATURE_DIM)
