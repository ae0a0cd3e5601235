"""
Pydantic models for Hive board geometry and actions.

Positions use axial hex coordinates. The rules engine owns everything else
about the game; these types only carry what the feature encoders read.
"""

from enum import IntEnum
from typing import Optional, List, Tuple

from pydantic import BaseModel


class PieceType(IntEnum):
    """Piece (insect) types. Values start at 1 so slots are ``piece - 1``."""
    ANT = 1
    BEETLE = 2
    GRASSHOPPER = 3
    QUEEN = 4
    SPIDER = 5


PIECES: Tuple[PieceType, ...] = tuple(PieceType)
NUM_PIECE_TYPES = len(PIECES)

# Pieces each player starts the game with, all off the board.
INITIAL_AVAILABILITY = {
    PieceType.ANT: 3,
    PieceType.BEETLE: 2,
    PieceType.GRASSHOPPER: 3,
    PieceType.QUEEN: 1,
    PieceType.SPIDER: 2,
}
TOTAL_PIECES_PER_PLAYER = sum(INITIAL_AVAILABILITY.values())

NUM_PLAYERS = 2
NUM_NEIGHBOURS = 6

# Axial directions, clockwise starting at north.
HEX_DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, -1),
    (1, -1),
    (1, 0),
    (0, 1),
    (-1, 1),
    (-1, 0),
)


class Position(BaseModel):
    """Board cell in axial hex coordinates."""
    x: int
    y: int

    class Config:
        frozen = True

    def neighbours(self) -> List["Position"]:
        """The six adjacent cells, in ``HEX_DIRECTIONS`` order."""
        return [Position(x=self.x + dx, y=self.y + dy) for dx, dy in HEX_DIRECTIONS]

    def to_key(self) -> str:
        """Convert position to string key"""
        return f"{self.x},{self.y}"

    @classmethod
    def from_key(cls, key: str) -> "Position":
        parts = key.split(",")
        if len(parts) != 2:
            raise ValueError(f"Invalid position key: {key!r}")
        return cls(x=int(parts[0]), y=int(parts[1]))


class Action(BaseModel):
    """A legal action: either placing a new piece or moving one on the board.

    ``source`` is only set for moves.
    """
    piece: PieceType
    target: Position
    source: Optional[Position] = None
    move: bool = False

    class Config:
        frozen = True


def other_player(player: int) -> int:
    return 1 - player
