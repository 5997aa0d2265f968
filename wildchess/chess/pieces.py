"""Defines the chess pieces"""

from dataclasses import dataclass
from typing import Self

from wildchess.core.shared_types import Color, PieceType


@dataclass(frozen=True)
class Piece:
    """Immutable value: on capture or promotion the piece gets replaced, never changed in place."""

    type: PieceType
    color: Color

    @classmethod
    def from_name(cls, name: str) -> Self:
        """Parse names as used by the manual placement queue, ex. 'white-queen'"""
        color, piece_type = name.split("-")
        return cls(PieceType(piece_type), Color(color))

    def to_name(self) -> str:
        return f"{self.color}-{self.type}"

    def promoted(self) -> Self:
        """This variant always promotes to a queen."""
        return type(self)(PieceType.QUEEN, self.color)

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "color": self.color.value}
