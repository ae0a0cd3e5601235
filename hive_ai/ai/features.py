"""Versioned board feature vectors.

Boards are summarised into a flat ``float32`` vector by an ordered catalog of
features (:class:`FeatureRegistry`). Each feature writes a fixed-size slice
at a precomputed offset.

Feature Layout (41 floats, latest schema):
├── NumOffboard (5): pieces of the side to move not yet placed, per type
├── OppNumOffboard (5): same, for the opponent
├── NumSurroundingQueen (1) / OppNumSurroundingQueen (1)
├── NumCanMove (10) / OppNumCanMove (10): per type, distinct pieces that
│   can move, and those not adjacent to the other side's queen
├── NumThreateningMoves (2) / OppNumThreateningMoves (2, since v39):
│   pieces that can reach around the other queen, and reachable cells
├── MovesToDraw (1): moves left before the game is drawn on move count
├── NumSingle (2): "leaf" pieces, side to move then opponent
└── QueenIsCovered (2, since v41): queen buried under an enemy piece

Versioning:
    A trained model is tied to the width of the vector it was trained on
    (its *schema version*). Features are only ever appended to the catalog,
    each tagged with the total width at which it was introduced. Encoding
    for an older version drops the later features and compacts what is
    left, in registry order. Old checkpoints keep working as features are
    added; the registry order must never change.

Usage:
    encoder = FeatureEncoder(default_registry())
    vec = encoder.encode(board, version=39)   # shape (39,)
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum, IntEnum
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import RegistryError, SchemaVersionError
from ..models import NUM_PIECE_TYPES, PIECES, TOTAL_PIECES_PER_PLAYER, PieceType, Position
from ..rules.interfaces import BoardView

logger = logging.getLogger(__name__)

FEATURE_DTYPE = np.float32

# Writers fill ``out`` (a view into the full-width buffer) for ``side``,
# with ``other`` being the other player.
FeatureWriter = Callable[[BoardView, int, int, np.ndarray], None]


class FeatureId(IntEnum):
    """Feature identities, in registry order."""
    NUM_OFFBOARD = 0
    OPP_NUM_OFFBOARD = 1
    NUM_SURROUNDING_QUEEN = 2
    OPP_NUM_SURROUNDING_QUEEN = 3
    NUM_CAN_MOVE = 4
    OPP_NUM_CAN_MOVE = 5
    NUM_THREATENING_MOVES = 6
    OPP_NUM_THREATENING_MOVES = 7
    MOVES_TO_DRAW = 8
    NUM_SINGLE = 9
    QUEEN_COVERED = 10


class Perspective(Enum):
    """Which player a feature's writer treats as ``side``."""
    SELF = "self"
    OPPONENT = "opponent"


@dataclass(frozen=True)
class FeatureDefinition:
    """One entry of the feature catalog.

    ``version`` is the total vector width at the time the feature was
    introduced; 0 for the original set.
    """
    fid: FeatureId
    name: str
    dim: int
    writer: FeatureWriter
    version: int = 0
    perspective: Perspective = Perspective.SELF

    def sides(self, board: BoardView) -> Tuple[int, int]:
        if self.perspective is Perspective.OPPONENT:
            return board.opponent_player, board.next_player
        return board.next_player, board.opponent_player


class FeatureRegistry:
    """Immutable ordered catalog of features with derived offsets."""

    def __init__(self, definitions: Sequence[FeatureDefinition]):
        definitions = tuple(definitions)
        offsets: List[int] = []
        width = 0
        for ii, definition in enumerate(definitions):
            if int(definition.fid) != ii:
                raise RegistryError(
                    f"Feature {definition.name} registered at index {ii} "
                    f"but carries id {int(definition.fid)}"
                )
            if definition.dim <= 0:
                raise RegistryError(f"Feature {definition.name} has dim {definition.dim}")
            offsets.append(width)
            width += definition.dim

        self._definitions: Tuple[FeatureDefinition, ...] = definitions
        self._offsets: Tuple[int, ...] = tuple(offsets)
        self._index = MappingProxyType({d.fid: ii for ii, d in enumerate(definitions)})
        self.width = width

        # A feature introduced at version v must bring the width to exactly v.
        for definition in definitions:
            if definition.version == 0:
                continue
            if self.included_width(definition.version) != definition.version:
                raise RegistryError(
                    f"Feature {definition.name} claims version {definition.version}, "
                    f"but features up to that version add up to "
                    f"{self.included_width(definition.version)}"
                )

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[Tuple[FeatureDefinition, int]]:
        """Yield ``(definition, offset)`` pairs in registry order."""
        return iter(zip(self._definitions, self._offsets))

    @property
    def definitions(self) -> Tuple[FeatureDefinition, ...]:
        return self._definitions

    def definition(self, fid: FeatureId) -> FeatureDefinition:
        return self._definitions[self._index[fid]]

    def offset(self, fid: FeatureId) -> int:
        return self._offsets[self._index[fid]]

    def included_width(self, version: int) -> int:
        """Width of the vector holding only features introduced by ``version``."""
        return sum(d.dim for d in self._definitions if d.version <= version)

    def schema_versions(self) -> List[int]:
        """Every vector width this registry has ever produced, ascending."""
        candidates = {self.included_width(d.version) for d in self._definitions}
        candidates.add(self.width)
        return sorted(v for v in candidates if self.included_width(v) == v)

    def layout(self, version: int) -> List[Tuple[FeatureDefinition, int]]:
        """``(definition, offset)`` pairs within a vector of ``version`` width."""
        result = []
        offset = 0
        for definition in self._definitions:
            if definition.version <= version:
                result.append((definition, offset))
                offset += definition.dim
        return result


@dataclass
class LabeledExample:
    """Board features plus outcome label, for training.

    Labels are +10 (win), -10 (loss) or 0 (draw) for the side to move.
    """
    features: np.ndarray
    label: float
    actions_features: Optional[List[np.ndarray]] = None
    action_labels: Optional[List[float]] = None


class FeatureEncoder:
    """Computes feature vectors for boards against a fixed registry."""

    def __init__(self, registry: FeatureRegistry):
        self.registry = registry

    @property
    def width(self) -> int:
        return self.registry.width

    def encode(self, board: BoardView, version: Optional[int] = None) -> np.ndarray:
        """Feature vector of ``board`` for a model trained on ``version`` features.

        Raises:
            SchemaVersionError: ``version`` is wider than the registry, or is
                not a width the registry ever produced.
        """
        registry = self.registry
        if version is None:
            version = registry.width
        if version > registry.width:
            raise SchemaVersionError(
                f"Requested {version} features, but only know about {registry.width}",
                requested=version,
                known_width=registry.width,
            )

        full = np.zeros(registry.width, dtype=FEATURE_DTYPE)
        for definition, offset in registry:
            if definition.version <= version:
                side, other = definition.sides(board)
                definition.writer(board, side, other, full[offset:offset + definition.dim])

        if version == registry.width:
            return full

        # Filter only features for the given version.
        parts = [
            full[offset:offset + definition.dim]
            for definition, offset in registry
            if definition.version <= version
        ]
        compact = np.concatenate(parts) if parts else np.zeros(0, dtype=FEATURE_DTYPE)
        if len(compact) != version:
            raise SchemaVersionError(
                f"Version {version} is not a known feature schema "
                f"(features up to it add up to {len(compact)}; known: "
                f"{registry.schema_versions()})",
                requested=version,
                known_width=registry.width,
            )
        return compact

    def make_labeled_example(
        self, board: BoardView, label: float, version: Optional[int] = None
    ) -> LabeledExample:
        return LabeledExample(features=self.encode(board, version), label=float(label))

    def describe(self, features: np.ndarray, version: Optional[int] = None) -> Dict[str, List[float]]:
        """Map feature names to their values within ``features``."""
        if version is None:
            version = len(features)
        return {
            definition.name: [float(v) for v in features[offset:offset + definition.dim]]
            for definition, offset in self.registry.layout(version)
        }

    def log_features(self, features: np.ndarray, version: Optional[int] = None) -> None:
        for name, values in self.describe(features, version).items():
            if len(values) == 1:
                logger.info(f"\t{name}: {values[0]:.2f}")
            else:
                logger.info(f"\t{name}: {values}")


# =============================================================================
# Feature writers
# =============================================================================


def _placed_queen(board: BoardView, player: int) -> Optional[Position]:
    """Position of ``player``'s queen, or None if still off the board."""
    if board.available(player, PieceType.QUEEN) > 0:
        return None
    return board.queen_position(player)


def _num_offboard(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    for piece in PIECES:
        out[piece - 1] = board.available(side, piece)


def _num_surrounding_queen(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    out[0] = board.num_surrounding_queen(side)


def _num_can_move(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    # Pieces already touching the other queen are presumably better left in place.
    queen_neighbours = set()
    queen = _placed_queen(board, other)
    if queen is not None:
        queen_neighbours = set(board.occupied_neighbours(queen))

    counts: Counter = Counter()
    counts_not_queen_neighbours: Counter = Counter()
    visited = set()
    for action in board.actions_for(side):
        if not action.move or action.source in visited:
            continue
        visited.add(action.source)
        counts[action.piece] += 1
        if action.source not in queen_neighbours:
            counts_not_queen_neighbours[action.piece] += 1

    for piece in PIECES:
        out[2 * (piece - 1)] = counts[piece]
        out[2 * (piece - 1) + 1] = counts_not_queen_neighbours[piece]


def _num_threatening_moves(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    out[:] = 0
    queen = _placed_queen(board, other)
    if queen is None:
        return

    around_queen = set(queen.neighbours())
    used_pieces = set()
    used_positions = set()
    can_place_around_queen = False
    for action in board.actions_for(side):
        if action.target not in around_queen:
            continue
        if not action.move:
            # Placement next to the queen: possible when a beetle sits on it.
            can_place_around_queen = True
            continue
        if action.source in around_queen:
            continue
        if action.source not in used_pieces:
            used_pieces.add(action.source)
            out[0] += 1
        if action.target not in used_positions:
            used_positions.add(action.target)
            out[1] += 1

    if can_place_around_queen:
        # Any piece still in hand can then go around the queen.
        out[0] += TOTAL_PIECES_PER_PLAYER - board.num_pieces_on_board(side)


def _moves_to_draw(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    out[0] = board.max_moves - board.move_number + 1


def _num_single(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    out[0] = board.singles(side)
    out[1] = board.singles(other)


def _queen_covered(board: BoardView, side: int, other: int, out: np.ndarray) -> None:
    for ii, player in enumerate((side, other)):
        queen = _placed_queen(board, player)
        top = board.piece_at(queen) if queen is not None else None
        out[ii] = 1.0 if top is not None and top[0] != player else 0.0


ALL_FEATURES: Tuple[FeatureDefinition, ...] = (
    FeatureDefinition(FeatureId.NUM_OFFBOARD, "NumOffboard", NUM_PIECE_TYPES, _num_offboard),
    FeatureDefinition(
        FeatureId.OPP_NUM_OFFBOARD, "OppNumOffboard", NUM_PIECE_TYPES, _num_offboard,
        perspective=Perspective.OPPONENT,
    ),
    FeatureDefinition(
        FeatureId.NUM_SURROUNDING_QUEEN, "NumSurroundingQueen", 1, _num_surrounding_queen
    ),
    FeatureDefinition(
        FeatureId.OPP_NUM_SURROUNDING_QUEEN, "OppNumSurroundingQueen", 1, _num_surrounding_queen,
        perspective=Perspective.OPPONENT,
    ),
    FeatureDefinition(FeatureId.NUM_CAN_MOVE, "NumCanMove", 2 * NUM_PIECE_TYPES, _num_can_move),
    FeatureDefinition(
        FeatureId.OPP_NUM_CAN_MOVE, "OppNumCanMove", 2 * NUM_PIECE_TYPES, _num_can_move,
        perspective=Perspective.OPPONENT,
    ),
    FeatureDefinition(
        FeatureId.NUM_THREATENING_MOVES, "NumThreateningMoves", 2, _num_threatening_moves
    ),
    FeatureDefinition(
        FeatureId.OPP_NUM_THREATENING_MOVES, "OppNumThreateningMoves", 2, _num_threatening_moves,
        version=39, perspective=Perspective.OPPONENT,
    ),
    FeatureDefinition(FeatureId.MOVES_TO_DRAW, "MovesToDraw", 1, _moves_to_draw),
    FeatureDefinition(FeatureId.NUM_SINGLE, "NumSingle", 2, _num_single),
    FeatureDefinition(FeatureId.QUEEN_COVERED, "QueenIsCovered", 2, _queen_covered, version=41),
)

# Pairs whose opponent entry is the self writer with sides swapped.
MIRRORED_FEATURES: Tuple[Tuple[FeatureId, FeatureId], ...] = (
    (FeatureId.NUM_OFFBOARD, FeatureId.OPP_NUM_OFFBOARD),
    (FeatureId.NUM_SURROUNDING_QUEEN, FeatureId.OPP_NUM_SURROUNDING_QUEEN),
    (FeatureId.NUM_CAN_MOVE, FeatureId.OPP_NUM_CAN_MOVE),
    (FeatureId.NUM_THREATENING_MOVES, FeatureId.OPP_NUM_THREATENING_MOVES),
)


@lru_cache(maxsize=1)
def default_registry() -> FeatureRegistry:
    """The process-wide registry, built once on first use."""
    registry = FeatureRegistry(ALL_FEATURES)
    logger.debug(
        f"Feature registry: {len(registry)} features, width={registry.width}, "
        f"versions={registry.schema_versions()}"
    )
    return registry
