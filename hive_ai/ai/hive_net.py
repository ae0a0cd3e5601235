"""Graph definition and reference network for the model scorer.

The graph definition (``<basename>.graph.json``) records the network
hyper-parameters and, most importantly, ``board_features_dim``: the feature
schema version the model consumes. Sessions build a :class:`HiveScoringNet`
from it; weights live in the separate checkpoint pair.

Inputs (named like the runtime feeds):
    board_features               [B, V]
    actions_board_indices        [A]        int64, owning board of each row
    actions_features             [A, 1]     1.0 for moves, 0.0 for placements
    actions_source_center        [A, P]
    actions_source_neighbourhood [A, 6, P]
    actions_target_center        [A, P]
    actions_target_neighbourhood [A, 6, P]

Outputs:
    board_predictions            [B]   value in [-10, 10]
    actions_predictions          [A]   probabilities, summing to 1 per board
"""

from __future__ import annotations

import json
import os
from typing import Dict, Optional

import torch
import torch.nn as nn
import torch.nn.functional as F
from pydantic import BaseModel, Field, ValidationError

from ..errors import ModelArtifactError
from ..models import NUM_NEIGHBOURS
from .action_features import POSITION_FEATURE_DIM

GRAPH_SUFFIX = ".graph.json"

BOARD_FEATURES = "board_features"
ACTIONS_BOARD_INDICES = "actions_board_indices"
ACTIONS_FEATURES = "actions_features"
ACTIONS_SOURCE_CENTER = "actions_source_center"
ACTIONS_SOURCE_NEIGHBOURHOOD = "actions_source_neighbourhood"
ACTIONS_TARGET_CENTER = "actions_target_center"
ACTIONS_TARGET_NEIGHBOURHOOD = "actions_target_neighbourhood"

BOARD_PREDICTIONS = "board_predictions"
ACTIONS_PREDICTIONS = "actions_predictions"

INPUT_NAMES = (
    BOARD_FEATURES,
    ACTIONS_BOARD_INDICES,
    ACTIONS_FEATURES,
    ACTIONS_SOURCE_CENTER,
    ACTIONS_SOURCE_NEIGHBOURHOOD,
    ACTIONS_TARGET_CENTER,
    ACTIONS_TARGET_NEIGHBOURHOOD,
)
OUTPUT_NAMES = (BOARD_PREDICTIONS, ACTIONS_PREDICTIONS)

VALUE_SCALE = 10.0


class GraphDefinition(BaseModel):
    """Serialized description of the scoring network."""
    name: str = "hive_scoring_net"
    board_features_dim: int = Field(ge=1)
    position_feature_dim: int = Field(default=POSITION_FEATURE_DIM, ge=1)
    hidden_dim: int = Field(default=64, ge=1)
    action_hidden_dim: int = Field(default=32, ge=1)

    class Config:
        frozen = True


def graph_path(basename: str) -> str:
    return f"{basename}{GRAPH_SUFFIX}"


def save_graph_definition(basename: str, graph: GraphDefinition) -> str:
    path = graph_path(basename)
    with open(path, "w") as f:
        f.write(graph.model_dump_json(indent=2))
    return path


def load_graph_definition(basename: str) -> GraphDefinition:
    """Read ``<basename>.graph.json``.

    Raises:
        ModelArtifactError: file missing, unreadable or malformed.
    """
    path = graph_path(basename)
    try:
        with open(path) as f:
            raw = f.read()
    except OSError as e:
        raise ModelArtifactError(f"Failed to read graph definition: {e}", path=path) from e
    try:
        return GraphDefinition.model_validate_json(raw)
    except (ValidationError, json.JSONDecodeError) as e:
        raise ModelArtifactError(f"Invalid graph definition: {e}", path=path) from e


def segment_softmax(logits: torch.Tensor, segment_ids: torch.Tensor, num_segments: int) -> torch.Tensor:
    """Softmax of ``logits`` computed independently within each segment."""
    maxes = torch.full(
        (num_segments,), float("-inf"), dtype=logits.dtype, device=logits.device
    ).scatter_reduce(0, segment_ids, logits, reduce="amax", include_self=True)
    exp = torch.exp(logits - maxes[segment_ids])
    sums = torch.zeros(num_segments, dtype=logits.dtype, device=logits.device).index_add(
        0, segment_ids, exp
    )
    return exp / sums[segment_ids]


class HiveScoringNet(nn.Module):
    """Small two-headed network: board value and per-action policy.

    Action rows are scored jointly with the embedding of the board they
    belong to, then normalized per board.
    """

    def __init__(self, graph: GraphDefinition):
        super().__init__()
        self.graph = graph
        p = graph.position_feature_dim
        action_in = 1 + 2 * (p + NUM_NEIGHBOURS * p)

        self.board_fc1 = nn.Linear(graph.board_features_dim, graph.hidden_dim)
        self.board_fc2 = nn.Linear(graph.hidden_dim, graph.hidden_dim)
        self.value_fc = nn.Linear(graph.hidden_dim, 1)

        self.action_fc1 = nn.Linear(action_in, graph.action_hidden_dim)
        self.action_fc2 = nn.Linear(graph.hidden_dim + graph.action_hidden_dim, graph.action_hidden_dim)
        self.action_logit = nn.Linear(graph.action_hidden_dim, 1)

    def reset_parameters(self) -> None:
        for module in self.modules():
            if isinstance(module, nn.Linear):
                module.reset_parameters()

    def forward(
        self, inputs: Dict[str, torch.Tensor], with_actions: bool = True
    ) -> Dict[str, torch.Tensor]:
        board = inputs[BOARD_FEATURES]
        h = F.relu(self.board_fc1(board))
        h = F.relu(self.board_fc2(h))
        outputs = {BOARD_PREDICTIONS: torch.tanh(self.value_fc(h)).squeeze(-1) * VALUE_SCALE}
        if not with_actions:
            return outputs

        indices = inputs[ACTIONS_BOARD_INDICES]
        num_actions = indices.shape[0]
        rows = torch.cat(
            [
                inputs[ACTIONS_FEATURES],
                inputs[ACTIONS_SOURCE_CENTER],
                inputs[ACTIONS_SOURCE_NEIGHBOURHOOD].reshape(num_actions, -1),
                inputs[ACTIONS_TARGET_CENTER],
                inputs[ACTIONS_TARGET_NEIGHBOURHOOD].reshape(num_actions, -1),
            ],
            dim=1,
        )
        a = F.relu(self.action_fc1(rows))
        a = F.relu(self.action_fc2(torch.cat([h[indices], a], dim=1)))
        logits = self.action_logit(a).squeeze(-1)
        outputs[ACTIONS_PREDICTIONS] = segment_softmax(logits, indices, board.shape[0])
        return outputs

    def losses(
        self,
        inputs: Dict[str, torch.Tensor],
        board_labels: torch.Tensor,
        action_labels: Optional[torch.Tensor],
    ) -> torch.Tensor:
        """Mean squared value error plus per-board action cross-entropy."""
        with_actions = action_labels is not None and action_labels.shape[0] > 0
        outputs = self.forward(inputs, with_actions=with_actions)
        loss = F.mse_loss(outputs[BOARD_PREDICTIONS], board_labels)
        if with_actions:
            probs = outputs[ACTIONS_PREDICTIONS]
            indices = inputs[ACTIONS_BOARD_INDICES]
            num_boards_with_actions = int(torch.unique(indices).numel())
            cross_entropy = -(action_labels * torch.log(probs.clamp_min(1e-7))).sum()
            loss = loss + cross_entropy / num_boards_with_actions
        return loss
