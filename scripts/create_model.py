#!/usr/bin/env python3
"""Create a new scoring model: graph definition plus an initial checkpoint.

Usage:
    python scripts/create_model.py --basename models/hive

    # Model for an older feature schema
    python scripts/create_model.py --basename models/hive37 --features 37

    # Don't write a checkpoint, weights get initialized on first load
    python scripts/create_model.py --basename models/hive --no-checkpoint
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from hive_ai.ai.features import default_registry
from hive_ai.ai.hive_net import GraphDefinition, graph_path, save_graph_definition
from hive_ai.ai.model_adapter import ModelAdapter
from hive_ai.errors import ConfigurationError, fatal_boundary

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a Hive scoring model")
    parser.add_argument("--basename", required=True, help="Model files prefix")
    parser.add_argument(
        "--features", type=int, default=None,
        help="Feature schema version (default: latest)",
    )
    parser.add_argument("--hidden-dim", type=int, default=64)
    parser.add_argument("--action-hidden-dim", type=int, default=32)
    parser.add_argument("--force", action="store_true", help="Overwrite an existing graph definition")
    parser.add_argument("--no-checkpoint", action="store_true", help="Only write the graph definition")
    args = parser.parse_args()

    registry = default_registry()
    version = args.features or registry.width

    with fatal_boundary():
        if version not in registry.schema_versions():
            raise ConfigurationError(
                f"--features must be one of {registry.schema_versions()}, got {version}"
            )
        if os.path.exists(graph_path(args.basename)) and not args.force:
            raise ConfigurationError(
                f"{graph_path(args.basename)} already exists, use --force to overwrite"
            )
        parent = os.path.dirname(os.path.abspath(args.basename))
        os.makedirs(parent, exist_ok=True)

        graph = GraphDefinition(
            board_features_dim=version,
            hidden_dim=args.hidden_dim,
            action_hidden_dim=args.action_hidden_dim,
        )
        path = save_graph_definition(args.basename, graph)
        logger.info(f"Wrote graph definition to {path} ({version} board features)")

        if not args.no_checkpoint:
            adapter = ModelAdapter(args.basename, force_cpu=True)
            adapter.save()
            adapter.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
