"""Prometheus metrics for the Hive scoring pipeline.

This module centralises counters and histograms so that scorers, the model
adapter and the auto-batch dispatcher can record lightweight telemetry
without each managing its own metric instances.
"""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Gauge, Histogram


SCORING_REQUESTS: Final[Counter] = Counter(
    "hive_scoring_requests_total",
    (
        "Total number of boards scored, labeled by path: direct, "
        "auto_batch, or terminal (finished boards never reach the model)."
    ),
    labelnames=("path",),
)

MODEL_BATCHES: Final[Counter] = Counter(
    "hive_model_batches_total",
    "Total number of batches executed against the model runtime.",
    labelnames=("source",),
)

MODEL_BATCH_SIZE: Final[Histogram] = Histogram(
    "hive_model_batch_size",
    "Number of boards per batch executed against the model runtime.",
    labelnames=("source",),
    buckets=(1, 2, 4, 8, 16, 32, 64, 128, 256),
)

MODEL_BATCH_LATENCY: Final[Histogram] = Histogram(
    "hive_model_batch_latency_seconds",
    "Wall time of one runtime call, including tensor building and slicing.",
    labelnames=("source",),
    buckets=(
        0.001,
        0.005,
        0.01,
        0.05,
        0.1,
        0.5,
        1.0,
    ),
)

SESSION_POOL_SIZE: Final[Gauge] = Gauge(
    "hive_session_pool_size",
    "Number of execution sessions in the most recently created pool.",
)

AUTO_BATCH_TARGET_SIZE: Final[Gauge] = Gauge(
    "hive_auto_batch_target_size",
    "Target batch size the auto-batch dispatcher currently uses.",
)

LEARNING_STEPS: Final[Counter] = Counter(
    "hive_learning_steps_total",
    "Total optimizer steps run by learner scorers.",
)

CHECKPOINT_SAVES: Final[Counter] = Counter(
    "hive_checkpoint_saves_total",
    "Checkpoint save attempts, labeled by outcome of the backup rename.",
    labelnames=("backup",),
)
