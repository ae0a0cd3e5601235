"""
Scorer interfaces for Hive positions.

A scorer returns two things for a board:
  value: how likely the side to move is to win, as a score in [-10, +10].
  action probabilities: one probability per legal action, in the order of
    ``board.actions``. Optional; some scorers do not produce them.

Three capability levels, each extending the previous one:
  Scorer         -> score(board), schema_version()
  BatchScorer    -> score_batch(boards)
  LearnerScorer  -> learn(...), save()
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import EmptyBatchError
from ..metrics import SCORING_REQUESTS
from ..rules.interfaces import BoardView

WIN_SCORE = 10.0
LOSS_SCORE = -10.0
DRAW_SCORE = 0.0

ActionProbs = Optional[np.ndarray]
BatchActionProbs = Optional[List[ActionProbs]]


def end_game_score(board: BoardView) -> Tuple[bool, float]:
    """Whether the game is over, and the fixed score for the side to move if so."""
    if not board.is_finished():
        return False, 0.0
    if board.is_draw():
        return True, DRAW_SCORE
    if board.has_won(board.next_player):
        return True, WIN_SCORE
    return True, LOSS_SCORE


def one_hot_encoding(total: int, selected: int) -> np.ndarray:
    """Vector of ``total`` zeros with a 1 at ``selected`` (empty if total is 0)."""
    vec = np.zeros(total, dtype=np.float32)
    if total > 0:
        vec[selected] = 1.0
    return vec


class Scorer(ABC):
    """Scores a single board."""

    @abstractmethod
    def score(self, board: BoardView) -> Tuple[float, ActionProbs]:
        """
        Score ``board`` from the point of view of the side to move.

        Args:
            board: Board to evaluate

        Returns:
            (value, action_probs): value in [-10, 10]; action_probs has one
            entry per legal action, or is None.
        """
        pass

    @abstractmethod
    def schema_version(self) -> int:
        """Number of board features the scorer was built for."""
        pass


class BatchScorer(Scorer):
    """Scorer with a batch path, presumably more efficient."""

    @abstractmethod
    def score_batch(
        self, boards: Sequence[BoardView]
    ) -> Tuple[List[float], BatchActionProbs]:
        """
        Score several boards, equivalent to calling score() on each.

        Returns:
            (values, action_probs_batch): action_probs_batch is None when no
            board produced probabilities, else a list aligned with boards.
        """
        pass


class LearnerScorer(BatchScorer):
    """Batch scorer that can be trained in place and persisted."""

    @abstractmethod
    def learn(
        self,
        boards: Sequence[BoardView],
        board_labels: Sequence[float],
        action_labels: Sequence[Optional[Sequence[float]]],
        learning_rate: float,
        steps: int,
    ) -> float:
        """
        Run ``steps`` training steps and return the resulting loss.

        ``action_labels[i]`` holds one label per legal action of
        ``boards[i]``, and must be None when the board has no legal action.
        """
        pass

    @abstractmethod
    def save(self) -> None:
        pass


class BatchScorerAdapter(BatchScorer):
    """Trivial BatchScorer around a plain Scorer, with no efficiency gains."""

    def __init__(self, scorer: Scorer):
        self.scorer = scorer

    def score(self, board: BoardView) -> Tuple[float, ActionProbs]:
        return self.scorer.score(board)

    def schema_version(self) -> int:
        return self.scorer.schema_version()

    def score_batch(
        self, boards: Sequence[BoardView]
    ) -> Tuple[List[float], BatchActionProbs]:
        if not boards:
            raise EmptyBatchError("Received empty list of boards to score.")
        values: List[float] = []
        action_probs_batch: BatchActionProbs = None
        for ii, board in enumerate(boards):
            value, action_probs = self.scorer.score(board)
            values.append(value)
            if action_probs is not None:
                if action_probs_batch is None:
                    action_probs_batch = [None] * len(boards)
                action_probs_batch[ii] = action_probs
        return values, action_probs_batch

    def __repr__(self) -> str:
        return f"BatchScorerAdapter({self.scorer!r})"


def as_batch_scorer(scorer: Scorer) -> BatchScorer:
    """Return ``scorer`` itself if it batches natively, else wrap it."""
    if isinstance(scorer, BatchScorer):
        return scorer
    return BatchScorerAdapter(scorer)


def record_terminal(count: int = 1) -> None:
    SCORING_REQUESTS.labels(path="terminal").inc(count)
