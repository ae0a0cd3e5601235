"""Serializable board snapshot implementing :class:`BoardView`.

A rules engine exports its current position (placed pieces, legal actions
for both players and the game-over flags) into a ``BoardSnapshot``; the
adjacency-derived counters the encoders need are computed here from the
piece layout. Snapshots round-trip through JSON, which is what the scripts
read.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, PrivateAttr

from ..models import (
    INITIAL_AVAILABILITY,
    NUM_PLAYERS,
    Action,
    PieceType,
    Position,
    other_player,
)


class PlacedPiece(BaseModel):
    """A piece on the board. ``level`` > 0 means it sits on top of others."""
    player: int = Field(ge=0, lt=NUM_PLAYERS)
    piece: PieceType
    position: Position
    level: int = Field(default=0, ge=0)

    class Config:
        frozen = True


class BoardSnapshot(BaseModel):
    """Precomputed board state as seen by the scoring pipeline."""
    next_player: int = Field(default=0, ge=0, lt=NUM_PLAYERS)
    move_number: int = Field(default=1, ge=1)
    max_moves: int = Field(default=100, ge=1)
    pieces: List[PlacedPiece] = Field(default_factory=list)
    player_actions: List[List[Action]] = Field(
        default_factory=lambda: [[] for _ in range(NUM_PLAYERS)]
    )
    finished: bool = False
    draw: bool = False
    winners: List[bool] = Field(default_factory=lambda: [False] * NUM_PLAYERS)

    # Stacks keyed by position, bottom piece first.
    _stacks: Dict[Position, List[PlacedPiece]] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context) -> None:
        if len(self.player_actions) != NUM_PLAYERS:
            raise ValueError(
                f"player_actions must hold {NUM_PLAYERS} lists, got {len(self.player_actions)}"
            )
        stacks: Dict[Position, List[PlacedPiece]] = {}
        for placed in self.pieces:
            stacks.setdefault(placed.position, []).append(placed)
        for stack in stacks.values():
            stack.sort(key=lambda p: p.level)
        self._stacks = stacks

    # -- BoardView -----------------------------------------------------------

    @property
    def opponent_player(self) -> int:
        return other_player(self.next_player)

    @property
    def actions(self) -> Sequence[Action]:
        return self.player_actions[self.next_player]

    def num_actions(self) -> int:
        return len(self.actions)

    def actions_for(self, player: int) -> Sequence[Action]:
        return self.player_actions[player]

    def available(self, player: int, piece: PieceType) -> int:
        on_board = sum(
            1 for p in self.pieces if p.player == player and p.piece == piece
        )
        return INITIAL_AVAILABILITY[piece] - on_board

    def num_pieces_on_board(self, player: int) -> int:
        return sum(1 for p in self.pieces if p.player == player)

    def queen_position(self, player: int) -> Optional[Position]:
        for placed in self.pieces:
            if placed.player == player and placed.piece == PieceType.QUEEN:
                return placed.position
        return None

    def num_surrounding_queen(self, player: int) -> int:
        queen = self.queen_position(player)
        if queen is None:
            return 0
        return len(self.occupied_neighbours(queen))

    def occupied_neighbours(self, position: Position) -> Sequence[Position]:
        return [n for n in position.neighbours() if n in self._stacks]

    def piece_at(self, position: Position) -> Optional[Tuple[int, PieceType]]:
        stack = self._stacks.get(position)
        if not stack:
            return None
        top = stack[-1]
        return top.player, top.piece

    def stack_height(self, position: Position) -> int:
        return len(self._stacks.get(position, ()))

    def singles(self, player: int) -> int:
        """Pieces of ``player`` touching exactly one other cell."""
        count = 0
        for position, stack in self._stacks.items():
            if stack[-1].player != player:
                continue
            if len(self.occupied_neighbours(position)) == 1:
                count += 1
        return count

    def is_finished(self) -> bool:
        return self.finished

    def is_draw(self) -> bool:
        return self.finished and self.draw

    def has_won(self, player: int) -> bool:
        return self.winners[player]

    def swap_sides(self) -> "BoardSnapshot":
        return self.model_copy(update={"next_player": self.opponent_player})
