"""Board interfaces consumed from the rules engine."""

from .interfaces import BoardView
from .snapshot import BoardSnapshot, PlacedPiece

__all__ = ["BoardSnapshot", "BoardView", "PlacedPiece"]
