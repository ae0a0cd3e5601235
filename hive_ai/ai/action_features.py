"""Spatial features of a single legal action.

Every action is described by a move/placement flag plus what surrounds its
source and target cells. A cell is encoded as the top piece type, split by
owner relative to the side to move, and the stack height; its neighbourhood
is the same encoding for each of the six adjacent cells.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..models import NUM_NEIGHBOURS, NUM_PIECE_TYPES, Action, Position
from ..rules.interfaces import BoardView
from .features import FEATURE_DTYPE

# own piece one-hot, opponent piece one-hot, stack height
POSITION_FEATURE_DIM = 2 * NUM_PIECE_TYPES + 1


@dataclass
class ActionFeatures:
    move: float
    source_center: np.ndarray
    source_neighbourhood: np.ndarray
    target_center: np.ndarray
    target_neighbourhood: np.ndarray


def position_features(board: BoardView, position: Optional[Position]) -> np.ndarray:
    """Centre encoding of ``position``; zeros for no position or an empty cell."""
    f = np.zeros(POSITION_FEATURE_DIM, dtype=FEATURE_DTYPE)
    if position is None:
        return f
    top = board.piece_at(position)
    if top is None:
        return f
    player, piece = top
    slot = piece - 1
    if player != board.next_player:
        slot += NUM_PIECE_TYPES
    f[slot] = 1.0
    f[-1] = board.stack_height(position)
    return f


def neighbourhood_features(board: BoardView, position: Optional[Position]) -> np.ndarray:
    sections = np.zeros((NUM_NEIGHBOURS, POSITION_FEATURE_DIM), dtype=FEATURE_DTYPE)
    if position is None:
        return sections
    for ii, neighbour in enumerate(position.neighbours()):
        sections[ii] = position_features(board, neighbour)
    return sections


def encode_action(board: BoardView, action: Action) -> ActionFeatures:
    source = action.source if action.move else None
    return ActionFeatures(
        move=1.0 if action.move else 0.0,
        source_center=position_features(board, source),
        source_neighbourhood=neighbourhood_features(board, source),
        target_center=position_features(board, action.target),
        target_neighbourhood=neighbourhood_features(board, action.target),
    )
