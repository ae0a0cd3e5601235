"""Linear model over the board features.

Cheap baseline scorer: ``value = clip(w . features + bias, -10, 10)``. It
produces no action probabilities. The model scorer can also use it to
rescore boards (distillation), see ``ScorerConfig.linear_weights_path``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import SchemaVersionError
from .base import WIN_SCORE, LOSS_SCORE, ActionProbs, Scorer, end_game_score, record_terminal
from .features import FEATURE_DTYPE, FeatureEncoder, default_registry
from ..rules.interfaces import BoardView

logger = logging.getLogger(__name__)


class LinearScorer(Scorer):
    """Scores boards with a weight per feature plus a trailing bias term."""

    def __init__(
        self,
        weights: Sequence[float],
        encoder: Optional[FeatureEncoder] = None,
    ):
        if len(weights) < 2:
            raise ValueError("LinearScorer needs at least one feature weight and a bias")
        self.weights = np.asarray(weights, dtype=FEATURE_DTYPE)
        self.encoder = encoder or FeatureEncoder(default_registry())
        self._version = len(self.weights) - 1
        if self._version not in self.encoder.registry.schema_versions():
            raise SchemaVersionError(
                f"Linear model uses {self._version} features, not a known schema version",
                requested=self._version,
                known_width=self.encoder.width,
            )

    @classmethod
    def from_file(cls, path: Union[str, Path], encoder: Optional[FeatureEncoder] = None) -> "LinearScorer":
        """Load weights saved by :meth:`save_weights` (a JSON list)."""
        with open(path) as f:
            weights = json.load(f)
        logger.info(f"Loaded linear model with {len(weights) - 1} features from {path}")
        return cls(weights, encoder=encoder)

    def save_weights(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            json.dump([float(w) for w in self.weights], f)

    def schema_version(self) -> int:
        return self._version

    def score_features(self, features: np.ndarray) -> float:
        value = float(np.dot(self.weights[:-1], features) + self.weights[-1])
        return min(WIN_SCORE, max(LOSS_SCORE, value))

    def score(self, board: BoardView) -> Tuple[float, ActionProbs]:
        is_end, value = end_game_score(board)
        if is_end:
            record_terminal()
            return value, None
        features = self.encoder.encode(board, self._version)
        return self.score_features(features), None

    def __repr__(self) -> str:
        return f"LinearScorer(version={self._version})"
