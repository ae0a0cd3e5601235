#!/usr/bin/env python3
"""Score board snapshots read from a JSONL file.

Each input line is a serialized BoardSnapshot. Prints one JSON line per
board with its value and, when the scorer produces them, the probability of
each legal action.

Usage:
    python scripts/score_positions.py boards.jsonl --scorer model,model_file=models/hive

    # Route every board through the auto-batch dispatcher from 8 threads
    python scripts/score_positions.py boards.jsonl \\
        --scorer model,batch_size=8,model_file=models/hive --threads 8

    # Dump the feature vector of every board
    python scripts/score_positions.py boards.jsonl --scorer linear=w.json --print-features
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from hive_ai.ai.base import as_batch_scorer
from hive_ai.ai.features import FeatureEncoder, default_registry
from hive_ai.config import build_scorer, config_from_env, parse_scorer_options
from hive_ai.errors import ConfigurationError, fatal_boundary
from hive_ai.rules import BoardSnapshot

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def load_boards(path: Path) -> List[BoardSnapshot]:
    boards = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line:
                boards.append(BoardSnapshot.model_validate_json(line))
    return boards


def score_and_print(scorer, boards: List[BoardSnapshot], threads: int, print_features: bool) -> None:
    if not boards:
        return
    if threads > 0 and hasattr(scorer, "submit"):
        # Encode and queue from N threads; the tail batch may be partial, so
        # flush once every board is queued.
        with ThreadPoolExecutor(max_workers=threads) as pool:
            futures = list(pool.map(scorer.submit, boards))
        scorer.flush()
        results = [f.result() for f in futures]
        values = [v for v, _ in results]
        action_probs = [p for _, p in results]
    elif threads > 0:
        with ThreadPoolExecutor(max_workers=threads) as pool:
            results = list(pool.map(scorer.score, boards))
        values = [v for v, _ in results]
        action_probs = [p for _, p in results]
    else:
        values, action_probs = as_batch_scorer(scorer).score_batch(boards)
        if action_probs is None:
            action_probs = [None] * len(boards)

    encoder = FeatureEncoder(default_registry())
    version = scorer.schema_version()
    for board, value, probs in zip(boards, values, action_probs):
        record = {"value": value}
        if probs is not None:
            record["action_probs"] = [float(p) for p in probs]
        if print_features:
            record["features"] = encoder.describe(encoder.encode(board, version), version)
        print(json.dumps(record))


def main() -> int:
    parser = argparse.ArgumentParser(description="Score Hive positions")
    parser.add_argument("boards", type=Path, help="JSONL file of board snapshots")
    parser.add_argument("--scorer", default="model", help="Scorer options, e.g. model,cpu,batch_size=8")
    parser.add_argument("--threads", type=int, default=0, help="Score one board per call from N threads")
    parser.add_argument("--print-features", action="store_true")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    with fatal_boundary():
        config = parse_scorer_options(args.scorer, base=config_from_env())
        scorer = build_scorer(config)
        if scorer is None:
            raise ConfigurationError(f"No scorer enabled by {args.scorer!r}")

        boards = load_boards(args.boards)
        logger.info(f"Scoring {len(boards)} boards with {scorer}")
        try:
            score_and_print(scorer, boards, args.threads, args.print_features)
        finally:
            if hasattr(scorer, "close"):
                scorer.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
