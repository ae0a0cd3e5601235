"""Bridge between boards and the scoring network's execution sessions.

The adapter turns one or more boards into the network feeds (board feature
rows plus one row per legal action, tagged with the index of its board),
runs them through a pooled session, validates that the outputs line up
with the inputs, and slices the flat action-probability stream back into
per-board segments.

Files, for a model ``basename``:
    <basename>.graph.json         graph definition (feature schema version)
    <basename>.checkpoint.index   checkpoint metadata (JSON)
    <basename>.checkpoint.data    weights (torch.save of the state dict)

Saving renames an existing checkpoint pair to ``~``-suffixed backups first.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch

from ..errors import (
    CheckpointRestoreError,
    ConfigurationError,
    EmptyBatchError,
    InternalConsistencyError,
    LabelMismatchError,
    ModelInitError,
    SchemaVersionError,
)
from ..metrics import CHECKPOINT_SAVES, LEARNING_STEPS, MODEL_BATCH_LATENCY, MODEL_BATCH_SIZE, MODEL_BATCHES
from ..models import NUM_NEIGHBOURS
from ..rules.interfaces import BoardView
from .action_features import POSITION_FEATURE_DIM, encode_action
from .execution import SessionPool, create_session_pool
from .features import FEATURE_DTYPE, FeatureEncoder, default_registry
from .hive_net import (
    ACTIONS_BOARD_INDICES,
    ACTIONS_FEATURES,
    ACTIONS_PREDICTIONS,
    ACTIONS_SOURCE_CENTER,
    ACTIONS_SOURCE_NEIGHBOURHOOD,
    ACTIONS_TARGET_CENTER,
    ACTIONS_TARGET_NEIGHBOURHOOD,
    BOARD_FEATURES,
    BOARD_PREDICTIONS,
    GraphDefinition,
    load_graph_definition,
)

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = "~"


@dataclass
class ActionRows:
    """Encoded legal actions of one board, one row per action."""
    move: np.ndarray                  # [n, 1]
    source_center: np.ndarray         # [n, P]
    source_neighbourhood: np.ndarray  # [n, 6, P]
    target_center: np.ndarray         # [n, P]
    target_neighbourhood: np.ndarray  # [n, 6, P]

    def __len__(self) -> int:
        return self.move.shape[0]


def empty_action_rows() -> ActionRows:
    p = POSITION_FEATURE_DIM
    return ActionRows(
        move=np.zeros((0, 1), dtype=FEATURE_DTYPE),
        source_center=np.zeros((0, p), dtype=FEATURE_DTYPE),
        source_neighbourhood=np.zeros((0, NUM_NEIGHBOURS, p), dtype=FEATURE_DTYPE),
        target_center=np.zeros((0, p), dtype=FEATURE_DTYPE),
        target_neighbourhood=np.zeros((0, NUM_NEIGHBOURS, p), dtype=FEATURE_DTYPE),
    )


def encode_action_rows(board: BoardView) -> ActionRows:
    """Rows for every legal action of ``board``, in ``board.actions`` order."""
    actions = board.actions
    if not actions:
        return empty_action_rows()
    encoded = [encode_action(board, action) for action in actions]
    return ActionRows(
        move=np.array([[af.move] for af in encoded], dtype=FEATURE_DTYPE),
        source_center=np.stack([af.source_center for af in encoded]),
        source_neighbourhood=np.stack([af.source_neighbourhood for af in encoded]),
        target_center=np.stack([af.target_center for af in encoded]),
        target_neighbourhood=np.stack([af.target_neighbourhood for af in encoded]),
    )


@dataclass
class FlatFeatureBatch:
    """Features of several boards, flattened for one runtime call.

    Action rows of all boards are concatenated; ``actions_board_indices``
    maps every row back to the board it came from.
    """
    board_features: List[np.ndarray] = field(default_factory=list)
    action_rows: List[ActionRows] = field(default_factory=list)
    actions_board_indices: List[int] = field(default_factory=list)

    def add(self, board_features: np.ndarray, rows: ActionRows) -> int:
        board_idx = len(self.board_features)
        self.board_features.append(board_features)
        self.action_rows.append(rows)
        self.actions_board_indices.extend([board_idx] * len(rows))
        return board_idx

    def __len__(self) -> int:
        return len(self.board_features)

    @property
    def action_counts(self) -> List[int]:
        return [len(rows) for rows in self.action_rows]

    @property
    def total_num_actions(self) -> int:
        return len(self.actions_board_indices)

    def feeds(self) -> Dict[str, np.ndarray]:
        rows = [r for r in self.action_rows if len(r) > 0] or [empty_action_rows()]
        return {
            BOARD_FEATURES: np.stack(self.board_features).astype(FEATURE_DTYPE, copy=False),
            ACTIONS_BOARD_INDICES: np.asarray(self.actions_board_indices, dtype=np.int64),
            ACTIONS_FEATURES: np.concatenate([r.move for r in rows]),
            ACTIONS_SOURCE_CENTER: np.concatenate([r.source_center for r in rows]),
            ACTIONS_SOURCE_NEIGHBOURHOOD: np.concatenate([r.source_neighbourhood for r in rows]),
            ACTIONS_TARGET_CENTER: np.concatenate([r.target_center for r in rows]),
            ACTIONS_TARGET_NEIGHBOURHOOD: np.concatenate([r.target_neighbourhood for r in rows]),
        }


def slice_action_probs(all_probs: np.ndarray, action_counts: Sequence[int]) -> List[np.ndarray]:
    """Split the flat probability stream into one segment per board."""
    total = sum(action_counts)
    if len(all_probs) != total:
        raise InternalConsistencyError(
            f"Total probabilities returned was {len(all_probs)}, wanted {total}",
            expected=total,
            actual=len(all_probs),
        )
    segments = []
    start = 0
    for count in action_counts:
        segments.append(all_probs[start:start + count])
        start += count
    return segments


class ModelAdapter:
    """Owns the session pool and the checkpoint files of one model."""

    def __init__(
        self,
        basename: str,
        session_pool_size: int = 1,
        force_cpu: bool = False,
        encoder: Optional[FeatureEncoder] = None,
        pool: Optional[SessionPool] = None,
    ):
        self.basename = os.path.abspath(basename)
        self.encoder = encoder or FeatureEncoder(default_registry())
        self.graph: GraphDefinition = load_graph_definition(self.basename)

        # Set version to the size of the input.
        self.version = self.graph.board_features_dim
        if self.version not in self.encoder.registry.schema_versions():
            raise SchemaVersionError(
                f"Model at {self.basename} expects {self.version} board features, "
                f"known schema versions are {self.encoder.registry.schema_versions()}",
                requested=self.version,
                known_width=self.encoder.width,
            )
        logger.debug(f"Model version={self.version}")

        self.pool = pool or create_session_pool(self.graph, session_pool_size, force_cpu)
        self._load_weights()

    def __str__(self) -> str:
        return f"Model in '{self.basename}'"

    # -- checkpoint files ----------------------------------------------------

    @property
    def checkpoint_base(self) -> str:
        return f"{self.basename}.checkpoint"

    def checkpoint_files(self) -> Tuple[str, str]:
        return f"{self.checkpoint_base}.index", f"{self.checkpoint_base}.data"

    def _load_weights(self) -> None:
        """Restore from the checkpoint if there is one, else initialize."""
        index, _ = self.checkpoint_files()
        try:
            os.stat(index)
        except FileNotFoundError:
            logger.info(f"Initializing model randomly, since {self.checkpoint_base} not found")
            self.init()
            return
        except OSError as e:
            raise CheckpointRestoreError(
                f"Cannot stat checkpoint file: {e}", model_path=index
            ) from e
        logger.info(f"Loading model from {self.checkpoint_base}")
        self.restore()

    def restore(self) -> None:
        index, data = self.checkpoint_files()
        try:
            with open(index) as f:
                metadata = json.load(f)
            saved_dim = metadata.get("board_features_dim")
            if saved_dim is not None and saved_dim != self.version:
                raise ValueError(
                    f"checkpoint holds a {saved_dim}-feature model, graph expects {self.version}"
                )
            state_dict = torch.load(data, map_location="cpu", weights_only=True)
            for session in self.pool:
                session.restore(state_dict)
        except Exception as e:
            raise CheckpointRestoreError(
                f"Failed to load checkpoint from {self.checkpoint_base}: {e}",
                model_path=self.checkpoint_base,
            ) from e

    def init(self) -> None:
        try:
            state_dict = None
            for session in self.pool:
                if state_dict is None:
                    session.initialize()
                    state_dict = session.state_dict()
                else:
                    # All sessions start from identical weights.
                    session.restore(state_dict)
        except Exception as e:
            raise ModelInitError(f"Failed to initialize model: {e}", model_path=self.basename) from e

    def _require_single_session(self, what: str) -> None:
        if len(self.pool) > 1:
            raise ConfigurationError(
                f"Session pool doesn't support {what}; use session_pool_size=1 in this case.",
                context={"session_pool_size": len(self.pool)},
            )

    def save(self) -> None:
        self._require_single_session("saving")

        # Backup previous checkpoint.
        index, data = self.checkpoint_files()
        backup = "none"
        if os.path.exists(index):
            backup = "ok"
            for path in (index, data):
                try:
                    os.replace(path, path + BACKUP_SUFFIX)
                except OSError as e:
                    backup = "failed"
                    logger.error(f"Failed to backup {path} to {path}{BACKUP_SUFFIX}: {e}")
        CHECKPOINT_SAVES.labels(backup=backup).inc()

        session = self.pool[0]
        state_dict = session.state_dict()
        torch.save(state_dict, data)
        metadata = {
            "graph": self.graph.name,
            "board_features_dim": self.version,
            "parameters": {name: list(t.shape) for name, t in state_dict.items()},
            "saved_at": datetime.now(timezone.utc).isoformat(),
        }
        with open(index, "w") as f:
            json.dump(metadata, f, indent=2)
        logger.info(f"Saved checkpoint to {self.checkpoint_base}")

    # -- scoring -------------------------------------------------------------

    def build_features(self, boards: Sequence[BoardView]) -> FlatFeatureBatch:
        batch = FlatFeatureBatch()
        for board in boards:
            batch.add(self.encoder.encode(board, self.version), encode_action_rows(board))
        return batch

    def run(
        self, batch: FlatFeatureBatch, source: str = "direct"
    ) -> Tuple[List[float], List[np.ndarray]]:
        """Score a prepared batch.

        Returns:
            (values, action_probs): one value per board and, per board, one
            probability per action (empty arrays for boards without actions).

        Raises:
            EmptyBatchError: no boards in the batch.
            InternalConsistencyError: outputs don't match the inputs.
        """
        if len(batch) == 0:
            raise EmptyBatchError("Received empty list of boards to score.")
        start = time.perf_counter()

        feeds = batch.feeds()
        fetches = [BOARD_PREDICTIONS]
        if batch.total_num_actions > 0:
            fetches.append(ACTIONS_PREDICTIONS)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Fed tensors: " + ", ".join(f"{k}{v.shape}" for k, v in feeds.items()))

        session = self.pool.next_session()
        results = session.run(feeds, fetches)

        scores = results[0]
        if len(scores) != len(batch):
            raise InternalConsistencyError(
                f"Expected {len(batch)} scores (=number of boards given), got {len(scores)}",
                expected=len(batch),
                actual=len(scores),
            )
        values = [float(s) for s in scores]

        if batch.total_num_actions > 0:
            action_probs = slice_action_probs(results[1], batch.action_counts)
        else:
            action_probs = [np.zeros(0, dtype=FEATURE_DTYPE) for _ in range(len(batch))]

        MODEL_BATCHES.labels(source=source).inc()
        MODEL_BATCH_SIZE.labels(source=source).observe(len(batch))
        MODEL_BATCH_LATENCY.labels(source=source).observe(time.perf_counter() - start)
        return values, action_probs

    def score_boards(self, boards: Sequence[BoardView]) -> Tuple[List[float], List[np.ndarray]]:
        if not boards:
            raise EmptyBatchError("Received empty list of boards to score.")
        return self.run(self.build_features(boards))

    # -- learning ------------------------------------------------------------

    def learn(
        self,
        boards: Sequence[BoardView],
        board_labels: Sequence[float],
        action_labels: Sequence[Optional[Sequence[float]]],
        learning_rate: float,
        steps: int,
    ) -> float:
        self._require_single_session("learning")
        if not boards:
            raise EmptyBatchError("Received empty list of boards to learn.")
        if len(board_labels) != len(boards) or len(action_labels) != len(boards):
            raise LabelMismatchError(
                f"Got {len(boards)} boards, {len(board_labels)} board labels and "
                f"{len(action_labels)} action label lists"
            )

        batch = self.build_features(boards)
        sparse_labels: List[float] = []
        for ii, (labels, count) in enumerate(zip(action_labels, batch.action_counts)):
            if labels is None:
                if count > 0:
                    raise LabelMismatchError(
                        f"Board {ii} has {count} actions but no action labels"
                    )
                continue
            if count == 0:
                raise LabelMismatchError(
                    f"Board {ii} has no actions; its action labels must be None, not {list(labels)!r}"
                )
            if len(labels) != count:
                raise LabelMismatchError(
                    f"{len(labels)} action labels given to board {ii}, but there are {count} actions"
                )
            sparse_labels.extend(float(v) for v in labels)

        loss = self.pool[0].train(
            batch.feeds(),
            np.asarray(board_labels, dtype=FEATURE_DTYPE),
            np.asarray(sparse_labels, dtype=FEATURE_DTYPE),
            learning_rate,
            steps,
        )
        LEARNING_STEPS.inc(steps)
        return loss

    def close(self) -> None:
        self.pool.close()
