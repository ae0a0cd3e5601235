"""
Tests for the model execution adapter.

Tests cover:
- Fetch selection and per-board slicing of action probabilities
- Output cardinality checks
- Graph definition and schema version validation
- Checkpoint save, backup and restore
- Single-session restrictions and learning
"""

import json
import logging
import os
from typing import Dict, List

import numpy as np
import pytest
import torch

from hive_ai.ai.hive_net import (
    ACTIONS_BOARD_INDICES,
    ACTIONS_PREDICTIONS,
    BOARD_FEATURES,
    BOARD_PREDICTIONS,
    GraphDefinition,
    graph_path,
    save_graph_definition,
)
from hive_ai.ai.execution import SessionPool
from hive_ai.ai.model_adapter import (
    BACKUP_SUFFIX,
    FlatFeatureBatch,
    ModelAdapter,
    empty_action_rows,
    encode_action_rows,
    slice_action_probs,
)
from hive_ai.errors import (
    CheckpointRestoreError,
    ConfigurationError,
    EmptyBatchError,
    InternalConsistencyError,
    LabelMismatchError,
    ModelArtifactError,
    SchemaVersionError,
)
from hive_ai.models import PieceType

from conftest import place


class _FakeSession:
    """Records every run() call and answers with predictable arrays."""

    def __init__(self, index: int = 0, drop_scores: int = 0, drop_probs: int = 0) -> None:
        self.index = index
        self.calls: List[Dict] = []
        self.drop_scores = drop_scores
        self.drop_probs = drop_probs

    def run(self, feeds, fetches):
        self.calls.append({"feeds": feeds, "fetches": list(fetches)})
        num_boards = feeds[BOARD_FEATURES].shape[0]
        num_actions = feeds[ACTIONS_BOARD_INDICES].shape[0]
        results = [np.arange(num_boards - self.drop_scores, dtype=np.float32)]
        if ACTIONS_PREDICTIONS in fetches:
            results.append(np.arange(num_actions - self.drop_probs, dtype=np.float32))
        return results

    def initialize(self) -> None:
        pass

    def state_dict(self):
        return {}

    def restore(self, state_dict) -> None:
        pass

    def close(self) -> None:
        pass


def _write_graph(tmp_path, dim: int = 41, name: str = "model") -> str:
    basename = str(tmp_path / name)
    save_graph_definition(basename, GraphDefinition(board_features_dim=dim, hidden_dim=16, action_hidden_dim=8))
    return basename


def _boards_with_counts(board_factory, counts):
    boards = []
    for count in counts:
        targets = [(ii, 0) for ii in range(count)]
        boards.append(board_factory(actions=[place(PieceType.ANT, t) for t in targets]))
    return boards


@pytest.fixture
def fake_adapter(tmp_path):
    session = _FakeSession()
    adapter = ModelAdapter(_write_graph(tmp_path), pool=SessionPool([session]))
    return adapter, session


class TestSliceActionProbs:
    def test_segments(self) -> None:
        segments = slice_action_probs(np.arange(7), [2, 0, 5])
        assert [list(s) for s in segments] == [[0, 1], [], [2, 3, 4, 5, 6]]

    def test_mismatch(self) -> None:
        with pytest.raises(InternalConsistencyError):
            slice_action_probs(np.arange(6), [2, 0, 5])


class TestFlatFeatureBatch:
    def test_board_indices(self, board_factory) -> None:
        batch = FlatFeatureBatch()
        for board in _boards_with_counts(board_factory, [2, 0, 3]):
            batch.add(np.zeros(41, dtype=np.float32), encode_action_rows(board))
        assert batch.action_counts == [2, 0, 3]
        feeds = batch.feeds()
        np.testing.assert_array_equal(feeds[ACTIONS_BOARD_INDICES], [0, 0, 2, 2, 2])
        assert feeds[BOARD_FEATURES].shape == (3, 41)

    def test_no_actions_still_has_row_tensors(self) -> None:
        batch = FlatFeatureBatch()
        batch.add(np.zeros(41, dtype=np.float32), empty_action_rows())
        feeds = batch.feeds()
        assert feeds[ACTIONS_BOARD_INDICES].shape == (0,)
        assert batch.total_num_actions == 0


class TestRun:
    def test_slices_per_board(self, fake_adapter, board_factory) -> None:
        adapter, session = fake_adapter
        values, probs = adapter.score_boards(_boards_with_counts(board_factory, [2, 0, 5]))
        assert values == [0.0, 1.0, 2.0]
        assert [list(p) for p in probs] == [[0, 1], [], [2, 3, 4, 5, 6]]
        assert session.calls[0]["fetches"] == [BOARD_PREDICTIONS, ACTIONS_PREDICTIONS]

    def test_no_actions_skips_action_fetch(self, fake_adapter, board_factory) -> None:
        adapter, session = fake_adapter
        values, probs = adapter.score_boards(_boards_with_counts(board_factory, [0, 0]))
        assert session.calls[0]["fetches"] == [BOARD_PREDICTIONS]
        assert values == [0.0, 1.0]
        assert [len(p) for p in probs] == [0, 0]

    def test_features_use_model_version(self, tmp_path, board_factory) -> None:
        session = _FakeSession()
        adapter = ModelAdapter(_write_graph(tmp_path, dim=37), pool=SessionPool([session]))
        assert adapter.version == 37
        adapter.score_boards(_boards_with_counts(board_factory, [1]))
        assert session.calls[0]["feeds"][BOARD_FEATURES].shape == (1, 37)

    def test_empty_batch(self, fake_adapter) -> None:
        adapter, _ = fake_adapter
        with pytest.raises(EmptyBatchError):
            adapter.score_boards([])
        with pytest.raises(EmptyBatchError):
            adapter.run(FlatFeatureBatch())

    def test_score_count_mismatch(self, tmp_path, board_factory) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), pool=SessionPool([_FakeSession(drop_scores=1)]))
        with pytest.raises(InternalConsistencyError):
            adapter.score_boards(_boards_with_counts(board_factory, [1, 1]))

    def test_probability_count_mismatch(self, tmp_path, board_factory) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), pool=SessionPool([_FakeSession(drop_probs=1)]))
        with pytest.raises(InternalConsistencyError):
            adapter.score_boards(_boards_with_counts(board_factory, [2, 3]))

    def test_sessions_used_round_robin(self, tmp_path, board_factory) -> None:
        sessions = [_FakeSession(ii) for ii in range(2)]
        adapter = ModelAdapter(_write_graph(tmp_path), pool=SessionPool(sessions))
        boards = _boards_with_counts(board_factory, [1])
        for _ in range(4):
            adapter.score_boards(boards)
        assert [len(s.calls) for s in sessions] == [2, 2]


class TestGraphDefinition:
    def test_missing_graph(self, tmp_path) -> None:
        with pytest.raises(ModelArtifactError):
            ModelAdapter(str(tmp_path / "nothing"), force_cpu=True)

    def test_malformed_graph(self, tmp_path) -> None:
        basename = str(tmp_path / "broken")
        with open(graph_path(basename), "w") as f:
            f.write("{not json")
        with pytest.raises(ModelArtifactError):
            ModelAdapter(basename, force_cpu=True)

    def test_unknown_schema_version(self, tmp_path) -> None:
        with pytest.raises(SchemaVersionError):
            ModelAdapter(_write_graph(tmp_path, dim=38), force_cpu=True)


class TestCheckpoints:
    def test_save_then_restore(self, tmp_path, mid_game_board) -> None:
        basename = _write_graph(tmp_path)
        adapter = ModelAdapter(basename, force_cpu=True)
        values, probs = adapter.score_boards([mid_game_board])
        adapter.save()

        index, data = adapter.checkpoint_files()
        assert os.path.exists(index) and os.path.exists(data)
        with open(index) as f:
            assert json.load(f)["board_features_dim"] == 41

        restored = ModelAdapter(basename, force_cpu=True)
        values2, probs2 = restored.score_boards([mid_game_board])
        assert values2 == pytest.approx(values)
        np.testing.assert_allclose(probs2[0], probs[0], rtol=1e-6)

    def test_save_backs_up_previous(self, tmp_path) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        adapter.save()
        index, data = adapter.checkpoint_files()
        with open(index) as f:
            first_index = f.read()
        adapter.save()
        assert os.path.exists(index + BACKUP_SUFFIX)
        assert os.path.exists(data + BACKUP_SUFFIX)
        with open(index + BACKUP_SUFFIX) as f:
            assert f.read() == first_index

    def test_failed_backup_is_logged(self, tmp_path, monkeypatch, caplog) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        adapter.save()

        def _fail(src, dst):
            raise OSError("read-only")

        monkeypatch.setattr("hive_ai.ai.model_adapter.os.replace", _fail)
        with caplog.at_level(logging.ERROR, logger="hive_ai.ai.model_adapter"):
            adapter.save()
        assert "Failed to backup" in caplog.text
        assert os.path.exists(adapter.checkpoint_files()[1])

    def test_corrupt_checkpoint(self, tmp_path) -> None:
        basename = _write_graph(tmp_path)
        adapter = ModelAdapter(basename, force_cpu=True)
        adapter.save()
        with open(adapter.checkpoint_files()[1], "wb") as f:
            f.write(b"garbage")
        with pytest.raises(CheckpointRestoreError):
            ModelAdapter(basename, force_cpu=True)

    def test_checkpoint_of_other_width(self, tmp_path) -> None:
        basename = _write_graph(tmp_path)
        ModelAdapter(basename, force_cpu=True).save()
        _write_graph(tmp_path, dim=39)
        with pytest.raises(CheckpointRestoreError):
            ModelAdapter(basename, force_cpu=True)

    def test_sessions_share_initial_weights(self, tmp_path) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), session_pool_size=2, force_cpu=True)
        first, second = adapter.pool[0].state_dict(), adapter.pool[1].state_dict()
        for name in first:
            assert torch.equal(first[name], second[name])


class TestLearning:
    def test_multi_session_refuses_learning_and_saving(self, tmp_path, mid_game_board) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), session_pool_size=2, force_cpu=True)
        with pytest.raises(ConfigurationError):
            adapter.save()
        with pytest.raises(ConfigurationError):
            adapter.learn([mid_game_board], [1.0], [[0.25] * 4], 0.01, 1)

    def test_loss_decreases(self, tmp_path, mid_game_board, empty_board, won_board) -> None:
        torch.manual_seed(0)
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        boards = [mid_game_board, empty_board, won_board]
        board_labels = [5.0, -5.0, 10.0]
        action_labels = [[1.0, 0.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0, 0.0], None]
        first = adapter.learn(boards, board_labels, action_labels, 1e-4, 1)
        last = adapter.learn(boards, board_labels, action_labels, 1e-4, 100)
        assert last < first

    def test_missing_action_labels(self, tmp_path, mid_game_board) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        with pytest.raises(LabelMismatchError):
            adapter.learn([mid_game_board], [1.0], [None], 0.01, 1)

    def test_labels_for_board_without_actions(self, tmp_path, won_board) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        with pytest.raises(LabelMismatchError):
            adapter.learn([won_board], [10.0], [[]], 0.01, 1)

    def test_wrong_number_of_action_labels(self, tmp_path, mid_game_board) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        with pytest.raises(LabelMismatchError):
            adapter.learn([mid_game_board], [1.0], [[0.5, 0.5]], 0.01, 1)

    def test_label_count_mismatch(self, tmp_path, mid_game_board) -> None:
        adapter = ModelAdapter(_write_graph(tmp_path), force_cpu=True)
        with pytest.raises(LabelMismatchError):
            adapter.learn([mid_game_board], [1.0, 2.0], [None], 0.01, 1)
