"""Board rules for the hosted games.

Boards are mutable grids addressed by *position* (what a client submits: a
column for the gravity board, a cell index for the grid board) and by *cell*
(the ``(x, y)`` square a position resolves to). ``place``/``undo`` mutate in
place so the AI search can walk the move tree without copying.
"""
import random
import string
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from turnstream.services.words import WORDS

Cell = tuple[int, int]

_DIRECTIONS = ((1, 0), (0, 1), (1, 1), (1, -1))


def parse_position(raw: str | int | None, positions: range) -> int:
    """Parse a submitted position; ValueError if it is not in ``positions``."""
    if raw is None:
        raise ValueError("missing position")
    value = int(str(raw).strip())
    if value not in positions:
        raise ValueError(f"position {value} out of range")
    return value


class Board(ABC):
    W: int
    H: int
    connect: int
    # ply cap for the AI search; None searches to the end of the game
    search_depth: Optional[int] = None
    occupied_message = "Cell occupied."

    def __init__(self) -> None:
        self._cells: List[List[Optional[str]]] = [[None] * self.W for _ in range(self.H)]

    @property
    @abstractmethod
    def positions(self) -> range:
        """Valid position index set."""

    @abstractmethod
    def target(self, position: int) -> Optional[Cell]:
        """Cell a position resolves to, or None when it is already filled."""

    def get(self, x: int, y: int) -> Optional[str]:
        if not (0 <= x < self.W and 0 <= y < self.H):
            raise IndexError("Coordinates out of bounds")
        return self._cells[y][x]

    def __getitem__(self, cell: Cell) -> Optional[str]:
        return self.get(*cell)

    def open_positions(self) -> List[int]:
        return [p for p in self.positions if self.target(p) is not None]

    def place(self, position: int, mark: str) -> Cell:
        cell = self.target(position)
        if cell is None:
            raise ValueError(f"position {position} is full")
        x, y = cell
        self._cells[y][x] = mark
        return cell

    def undo(self, cell: Cell) -> None:
        x, y = cell
        self._cells[y][x] = None

    def is_full(self) -> bool:
        return all(v is not None for row in self._cells for v in row)

    def _run(self, x: int, y: int, dx: int, dy: int, mark: str) -> int:
        n = 0
        x, y = x + dx, y + dy
        while 0 <= x < self.W and 0 <= y < self.H and self._cells[y][x] == mark:
            n += 1
            x, y = x + dx, y + dy
        return n

    def wins_at(self, cell: Cell) -> bool:
        """True if the mark on ``cell`` completes a line through it."""
        x, y = cell
        mark = self._cells[y][x]
        if mark is None:
            return False
        for dx, dy in _DIRECTIONS:
            if 1 + self._run(x, y, dx, dy, mark) + self._run(x, y, -dx, -dy, mark) >= self.connect:
                return True
        return False

    def winner(self) -> Optional[str]:
        for y in range(self.H):
            for x in range(self.W):
                if self._cells[y][x] is not None and self.wins_at((x, y)):
                    return self._cells[y][x]
        return None

    def rows(self) -> List[List[Optional[str]]]:
        return [row[:] for row in self._cells]

    def snapshot(self) -> tuple:
        return tuple(tuple(row) for row in self._cells)

    def copy(self) -> "Board":
        other = type(self)()
        other._cells = self.rows()
        return other

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[Optional[str]]]) -> "Board":
        board = cls()
        values = [list(r) for r in rows]
        if len(values) != board.H or any(len(r) != board.W for r in values):
            raise ValueError(f"{cls.__name__} expects {board.H} rows of {board.W}")
        board._cells = values
        return board


class GridBoard(Board):
    """3x3 tic-tac-toe grid; position ``i`` is cell ``(i % 3, i // 3)``."""
    W = 3
    H = 3
    connect = 3

    @property
    def positions(self) -> range:
        return range(self.W * self.H)

    def target(self, position: int) -> Optional[Cell]:
        x, y = position % self.W, position // self.W
        return (x, y) if self._cells[y][x] is None else None


class GravityBoard(Board):
    """7x6 connect-four board; row 0 is the top, pieces fall to the bottom."""
    W = 7
    H = 6
    connect = 4
    search_depth = 5
    occupied_message = "Column full."

    @property
    def positions(self) -> range:
        return range(self.W)

    def target(self, position: int) -> Optional[Cell]:
        for y in range(self.H - 1, -1, -1):
            if self._cells[y][position] is None:
                return (position, y)
        return None


class WordPuzzle:
    """Secret word plus the letters guessed against it."""

    def __init__(self, word: str, max_wrong: int = 6):
        self.word = word.upper()
        self.max_wrong = max_wrong
        self.correct: set[str] = set()
        self.incorrect: list[str] = []

    @classmethod
    def random(cls, rng: Optional[random.Random] = None, max_wrong: int = 6) -> "WordPuzzle":
        rng = rng or random.Random()
        return cls(rng.choice(WORDS), max_wrong=max_wrong)

    @staticmethod
    def parse_letter(raw: Optional[str]) -> str:
        letter = (raw or "").strip().upper()
        if len(letter) != 1 or letter not in string.ascii_uppercase:
            raise ValueError(f"invalid letter {raw!r}")
        return letter

    def already_guessed(self, letter: str) -> bool:
        return letter in self.correct or letter in self.incorrect

    def guess(self, letter: str) -> bool:
        if letter in self.word:
            self.correct.add(letter)
            return True
        self.incorrect.append(letter)
        return False

    def is_solved(self) -> bool:
        return all(c in self.correct for c in self.word)

    def is_lost(self) -> bool:
        return len(self.incorrect) >= self.max_wrong

    def masked(self) -> str:
        return " ".join(c if c in self.correct else "_" for c in self.word)
