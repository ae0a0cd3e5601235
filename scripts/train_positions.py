#!/usr/bin/env python3
"""Train a scoring model on labeled positions and save the checkpoint.

Each input line is a JSON object::

    {"board": {...BoardSnapshot...}, "label": 10.0, "action_labels": [0, 1, 0]}

``label`` is +10 (win), -10 (loss) or 0 (draw) for the side to move;
``action_labels`` has one entry per legal action, or is null for boards
without legal actions.

Usage:
    python scripts/train_positions.py games.jsonl --basename models/hive

    python scripts/train_positions.py games.jsonl --basename models/hive \\
        --learning-rate 0.001 --steps 20 --batch-size 256 --epochs 3
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from hive_ai.ai.model_scorer import ModelScorer
from hive_ai.config import config_from_env
from hive_ai.errors import fatal_boundary
from hive_ai.rules import BoardSnapshot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


class TrainingRecord(BaseModel):
    board: BoardSnapshot
    label: float
    action_labels: Optional[List[float]] = None


def load_records(path: Path) -> List[TrainingRecord]:
    records = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line:
                records.append(TrainingRecord.model_validate_json(line))
    return records


def main() -> int:
    parser = argparse.ArgumentParser(description="Train a Hive scoring model")
    parser.add_argument("examples", type=Path, help="JSONL file of labeled positions")
    parser.add_argument("--basename", default=None, help="Model files prefix")
    parser.add_argument("--learning-rate", type=float, default=1e-3)
    parser.add_argument("--steps", type=int, default=10, help="Optimizer steps per batch")
    parser.add_argument("--batch-size", type=int, default=128)
    parser.add_argument("--epochs", type=int, default=1)
    parser.add_argument("--cpu", action="store_true")
    args = parser.parse_args()

    config = config_from_env()
    basename = args.basename or config.model_basename

    with fatal_boundary():
        records = load_records(args.examples)
        logger.info(f"Loaded {len(records)} labeled positions from {args.examples}")
        if not records:
            return 0

        with ModelScorer(basename, session_pool_size=1, force_cpu=args.cpu or config.force_cpu) as scorer:
            for epoch in range(args.epochs):
                loss = 0.0
                for start in range(0, len(records), args.batch_size):
                    chunk = records[start:start + args.batch_size]
                    loss = scorer.learn(
                        [r.board for r in chunk],
                        [r.label for r in chunk],
                        [r.action_labels for r in chunk],
                        args.learning_rate,
                        args.steps,
                    )
                logger.info(f"Epoch {epoch + 1}/{args.epochs}: loss={loss:.4f}")
            scorer.save()
    return 0


if __name__ == "__main__":
    sys.exit(main())
