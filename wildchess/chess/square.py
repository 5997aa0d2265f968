"""
A square on the board

(placed in its own module as multiple other modules need to import it)
"""

from __future__ import annotations

from dataclasses import dataclass

# Chess board is always 8x8.
BOARD_SIZE = 8
FILES = "ABCDEFGH"


@dataclass(frozen=True)
class Square:
    """Zero-based coordinates: rank 0..7 bottom-to-top (white's side first), file 0..7 left-to-right."""

    rank: int
    file: int

    @classmethod
    def from_label(cls, label: str) -> Square:
        """Card / square label: 'A1' - 'H8' get converted to (0,0) - (7,7)"""
        if len(label) != 2 or label[0].upper() not in FILES or not label[1].isdigit():
            raise ValueError(f"Cannot interpret {label!r} as a square label.")
        file = FILES.index(label[0].upper())
        rank = int(label[1]) - 1
        return cls(rank, file)

    def to_label(self) -> str:
        return f"{FILES[self.file]}{self.rank + 1}"

    def is_within_bounds(self) -> bool:
        return (0 <= self.rank < BOARD_SIZE) and (0 <= self.file < BOARD_SIZE)

    def offset(self, d_rank: int, d_file: int) -> Square:
        return Square(self.rank + d_rank, self.file + d_file)


ALL_SQUARES: tuple[Square, ...] = tuple(
    Square(rank, file) for rank in range(BOARD_SIZE) for file in range(BOARD_SIZE)
)
