"""Read-only board interface consumed by the feature encoders and scorers.

The rules engine (move generation, win detection, adjacency bookkeeping)
lives outside this package. Anything that implements :class:`BoardView` can
be encoded and scored; :class:`hive_ai.rules.snapshot.BoardSnapshot` is the
in-package implementation built from precomputed values.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

from ..models import Action, PieceType, Position


@runtime_checkable
class BoardView(Protocol):
    """Everything the scoring pipeline reads from a board.

    Players are ``0`` and ``1``. ``actions`` are the legal actions of
    ``next_player``; ``actions_for`` returns the legal actions either player
    would have if it were to move.
    """

    @property
    def next_player(self) -> int: ...

    @property
    def opponent_player(self) -> int: ...

    @property
    def actions(self) -> Sequence[Action]: ...

    @property
    def move_number(self) -> int: ...

    @property
    def max_moves(self) -> int: ...

    def num_actions(self) -> int: ...

    def actions_for(self, player: int) -> Sequence[Action]: ...

    def available(self, player: int, piece: PieceType) -> int: ...

    def num_pieces_on_board(self, player: int) -> int: ...

    def num_surrounding_queen(self, player: int) -> int: ...

    def queen_position(self, player: int) -> Optional[Position]: ...

    def occupied_neighbours(self, position: Position) -> Sequence[Position]: ...

    def piece_at(self, position: Position) -> Optional[Tuple[int, PieceType]]:
        """Owner and type of the top piece at ``position``, or ``None``."""
        ...

    def stack_height(self, position: Position) -> int: ...

    def singles(self, player: int) -> int: ...

    def is_finished(self) -> bool: ...

    def is_draw(self) -> bool: ...

    def has_won(self, player: int) -> bool: ...

    def swap_sides(self) -> "BoardView":
        """Same position with the side to move flipped."""
        ...
