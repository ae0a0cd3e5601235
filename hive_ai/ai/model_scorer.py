"""Learner scorer backed by the scoring network.

``score`` goes through the auto-batch dispatcher so concurrent callers share
model calls; ``score_batch`` calls the model directly. Finished boards never
reach the model: they get the fixed end-of-game score.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import List, Optional, Sequence, Tuple

from ..metrics import SCORING_REQUESTS
from ..rules.interfaces import BoardView
from .auto_batch import AutoBatchDispatcher, ScoringRequest
from .base import ActionProbs, BatchActionProbs, LearnerScorer, end_game_score, record_terminal
from .features import FeatureEncoder
from .linear_scorer import LinearScorer
from .model_adapter import FlatFeatureBatch, ModelAdapter, encode_action_rows

logger = logging.getLogger(__name__)


class ModelScorer(LearnerScorer):
    """Scores boards with the network in ``<basename>.graph.json``.

    Args:
        basename: Model files prefix (graph definition and checkpoint pair).
        session_pool_size: Execution sessions to create; learning and saving
            require exactly one.
        force_cpu: Run on CPU even when CUDA is available.
        auto_batch_size: Target batch size for ``score`` calls.
        linear: Optional linear model whose values replace the network's
            (distillation); action probabilities still come from the network.
    """

    def __init__(
        self,
        basename: str,
        session_pool_size: int = 1,
        force_cpu: bool = False,
        auto_batch_size: int = 1,
        linear: Optional[LinearScorer] = None,
        encoder: Optional[FeatureEncoder] = None,
        adapter: Optional[ModelAdapter] = None,
    ):
        self.adapter = adapter or ModelAdapter(
            basename,
            session_pool_size=session_pool_size,
            force_cpu=force_cpu,
            encoder=encoder,
        )
        self.linear = linear
        self.dispatcher = AutoBatchDispatcher(
            self._execute_auto_batch,
            batch_size=auto_batch_size,
            name=f"hive-auto-batch-{id(self):x}",
        )
        logger.info(f"Started {self} (version={self.schema_version()})")

    def __str__(self) -> str:
        return str(self.adapter)

    def schema_version(self) -> int:
        return self.adapter.version

    def set_batch_size(self, batch_size: int) -> None:
        self.dispatcher.set_batch_size(batch_size)

    def flush(self) -> None:
        self.dispatcher.flush()

    def _execute_auto_batch(self, batch: FlatFeatureBatch):
        return self.adapter.run(batch, source="auto_batch")

    def _rescore(self, board: BoardView, value: float) -> float:
        if self.linear is None:
            return value
        logger.debug("Rescoring with linear model.")
        return self.linear.score(board)[0]

    def submit(self, board: BoardView) -> Future:
        """Queue ``board`` for auto-batched scoring without waiting.

        The returned future resolves to ``(value, action_probs)``. A partial
        batch only runs once it fills up or :meth:`flush` is called.
        """
        is_end, value = end_game_score(board)
        if is_end:
            record_terminal()
            done: Future = Future()
            done.set_result((value, None))
            return done

        SCORING_REQUESTS.labels(path="auto_batch").inc()
        future = self.dispatcher.submit(
            ScoringRequest(
                board_features=self.adapter.encoder.encode(board, self.adapter.version),
                action_rows=encode_action_rows(board),
            )
        )
        if self.linear is None:
            return future

        rescored: Future = Future()

        def _deliver(scored: Future) -> None:
            try:
                model_value, action_probs = scored.result()
                rescored.set_result((self._rescore(board, model_value), action_probs))
            except Exception as e:
                rescored.set_exception(e)

        future.add_done_callback(_deliver)
        return rescored

    def score(self, board: BoardView) -> Tuple[float, ActionProbs]:
        return self.submit(board).result()

    def score_batch(
        self, boards: Sequence[BoardView]
    ) -> Tuple[List[float], BatchActionProbs]:
        if not boards:
            # Let the adapter raise the empty-batch error.
            self.adapter.score_boards(boards)

        values: List[float] = [0.0] * len(boards)
        live: List[int] = []
        for ii, board in enumerate(boards):
            is_end, value = end_game_score(board)
            if is_end:
                values[ii] = value
            else:
                live.append(ii)
        if len(live) < len(boards):
            record_terminal(len(boards) - len(live))
        if not live:
            return values, None

        SCORING_REQUESTS.labels(path="direct").inc(len(live))
        live_values, live_probs = self.adapter.score_boards([boards[ii] for ii in live])
        action_probs_batch: List[ActionProbs] = [None] * len(boards)
        for ii, value, probs in zip(live, live_values, live_probs):
            values[ii] = self._rescore(boards[ii], value)
            action_probs_batch[ii] = probs
        return values, action_probs_batch

    def learn(
        self,
        boards: Sequence[BoardView],
        board_labels: Sequence[float],
        action_labels: Sequence[Optional[Sequence[float]]],
        learning_rate: float,
        steps: int,
    ) -> float:
        return self.adapter.learn(boards, board_labels, action_labels, learning_rate, steps)

    def save(self) -> None:
        self.adapter.save()

    def close(self) -> None:
        self.dispatcher.close()
        self.adapter.close()

    def __enter__(self) -> "ModelScorer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
