"""Scorers for Hive positions.

Architecture:
- features.py: feature registry and versioned board encoder
- action_features.py: per-action spatial features
- base.py: Scorer / BatchScorer / LearnerScorer interfaces
- linear_scorer.py: linear baseline over the board features
- hive_net.py: graph definition and reference network
- execution.py: execution sessions and the session pool
- model_adapter.py: feeds, runtime calls, slicing, checkpoints
- auto_batch.py: auto-batching dispatcher for concurrent callers
- model_scorer.py: the LearnerScorer tying it all together

    from hive_ai.ai import ModelScorer

    with ModelScorer("/models/hive", auto_batch_size=8) as scorer:
        value, action_probs = scorer.score(board)
"""

from .base import BatchScorer, BatchScorerAdapter, LearnerScorer, Scorer, as_batch_scorer
from .features import FeatureEncoder, FeatureRegistry, default_registry
from .linear_scorer import LinearScorer
from .model_scorer import ModelScorer

__all__ = [
    "BatchScorer",
    "BatchScorerAdapter",
    "FeatureEncoder",
    "FeatureRegistry",
    "LearnerScorer",
    "LinearScorer",
    "ModelScorer",
    "Scorer",
    "as_batch_scorer",
    "default_registry",
]
