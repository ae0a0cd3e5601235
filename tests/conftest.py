"""
Shared pytest fixtures for hive_ai tests.

Board fixtures are function-scoped snapshots built from a small factory so
each test can tweak pieces, actions and game-over flags independently.
"""

from pathlib import Path
import sys
from typing import Callable, List, Optional, Sequence, Tuple

import pytest


# =============================================================================
# PROMETHEUS REGISTRY FIX
# =============================================================================
# hive_ai/metrics.py registers metrics at import time; if the module is
# imported twice through different paths the default registry rejects the
# duplicates. Make re-registration of identical metrics a no-op.


def _patch_prometheus_registry():
    """Patch Prometheus registry to handle duplicate metric registration gracefully."""
    try:
        from prometheus_client.registry import CollectorRegistry

        _original_register = CollectorRegistry.register

        def _safe_register(self, collector):
            """Register collector, ignoring duplicates."""
            try:
                return _original_register(self, collector)
            except ValueError as e:
                if "Duplicated timeseries" in str(e):
                    pass
                else:
                    raise

        # Only patch once
        if not getattr(CollectorRegistry, '_patched_for_tests', False):
            CollectorRegistry.register = _safe_register
            CollectorRegistry._patched_for_tests = True

    except ImportError:
        pass


_patch_prometheus_registry()

# Make `import hive_ai` work when running pytest without installing the package.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hive_ai.models import Action, PieceType, Position
from hive_ai.rules import BoardSnapshot, PlacedPiece


def pos(x: int, y: int) -> Position:
    return Position(x=x, y=y)


def move(piece: PieceType, source: Tuple[int, int], target: Tuple[int, int]) -> Action:
    return Action(piece=piece, source=pos(*source), target=pos(*target), move=True)


def place(piece: PieceType, target: Tuple[int, int]) -> Action:
    return Action(piece=piece, target=pos(*target))


# =============================================================================
# FACTORY FIXTURES
# =============================================================================


@pytest.fixture
def board_factory() -> Callable[..., BoardSnapshot]:
    """Factory for BoardSnapshot instances.

    ``pieces`` is a list of ``(player, piece, (x, y))`` or
    ``(player, piece, (x, y), level)`` tuples.
    """

    def _create_board(
        pieces: Sequence[tuple] = (),
        actions: Sequence[Action] = (),
        opponent_actions: Sequence[Action] = (),
        next_player: int = 0,
        move_number: int = 1,
        max_moves: int = 100,
        finished: bool = False,
        draw: bool = False,
        winners: Optional[List[bool]] = None,
    ) -> BoardSnapshot:
        placed = []
        for entry in pieces:
            player, piece, (x, y) = entry[:3]
            level = entry[3] if len(entry) > 3 else 0
            placed.append(PlacedPiece(player=player, piece=piece, position=pos(x, y), level=level))
        player_actions = [[], []]
        player_actions[next_player] = list(actions)
        player_actions[1 - next_player] = list(opponent_actions)
        return BoardSnapshot(
            next_player=next_player,
            move_number=move_number,
            max_moves=max_moves,
            pieces=placed,
            player_actions=player_actions,
            finished=finished,
            draw=draw,
            winners=winners or [False, False],
        )

    return _create_board


@pytest.fixture
def empty_board(board_factory) -> BoardSnapshot:
    """Opening position: nothing placed, player 0 can place anything at the origin."""
    return board_factory(
        actions=[place(piece, (0, 0)) for piece in PieceType],
    )


@pytest.fixture
def mid_game_board(board_factory) -> BoardSnapshot:
    """Both queens placed and touching; a few moves for each side.

    Player 0: queen (0,0), ant (1,-1). Player 1: queen (0,1), spider (-1,2).
    """
    return board_factory(
        pieces=[
            (0, PieceType.QUEEN, (0, 0)),
            (0, PieceType.ANT, (1, -1)),
            (1, PieceType.QUEEN, (0, 1)),
            (1, PieceType.SPIDER, (-1, 2)),
        ],
        actions=[
            move(PieceType.ANT, (1, -1), (1, 0)),
            move(PieceType.ANT, (1, -1), (-1, 1)),
            move(PieceType.QUEEN, (0, 0), (-1, 0)),
            place(PieceType.GRASSHOPPER, (2, -2)),
        ],
        opponent_actions=[
            move(PieceType.SPIDER, (-1, 2), (1, 0)),
            place(PieceType.BEETLE, (0, 2)),
        ],
        move_number=7,
    )


@pytest.fixture
def covered_queen_board(board_factory) -> BoardSnapshot:
    """Player 0's queen is buried under a player 1 beetle; player 1's queen is in hand."""
    return board_factory(
        pieces=[
            (0, PieceType.QUEEN, (0, 0)),
            (1, PieceType.BEETLE, (0, 0), 1),
            (0, PieceType.ANT, (1, 0)),
        ],
        actions=[move(PieceType.ANT, (1, 0), (0, 1))],
        opponent_actions=[place(PieceType.QUEEN, (-1, 0))],
        move_number=5,
    )


@pytest.fixture
def won_board(board_factory) -> BoardSnapshot:
    return board_factory(
        pieces=[(0, PieceType.QUEEN, (0, 0))],
        finished=True,
        winners=[True, False],
    )


@pytest.fixture
def lost_board(board_factory) -> BoardSnapshot:
    return board_factory(
        pieces=[(0, PieceType.QUEEN, (0, 0))],
        finished=True,
        winners=[False, True],
    )


@pytest.fixture
def drawn_board(board_factory) -> BoardSnapshot:
    return board_factory(finished=True, draw=True, winners=[True, True])
