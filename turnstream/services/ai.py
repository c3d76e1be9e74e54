import math
import random
from typing import Optional

from turnstream.services.boards import Board, Cell

RANDOMNESS: dict[str, float] = {
    "easy": 0.5,
    "medium": 0.3,
    "hard": 0.1,
    "impossible": 0.0,
}
DEFAULT_DIFFICULTY = "medium"

WIN_SCORE = 100


def normalize_difficulty(difficulty: Optional[str]) -> str:
    key = (difficulty or DEFAULT_DIFFICULTY).lower()
    return key if key in RANDOMNESS else DEFAULT_DIFFICULTY


def randomness_for(difficulty: Optional[str]) -> float:
    return RANDOMNESS[normalize_difficulty(difficulty)]


def choose_move(
    board: Board,
    ai_mark: str,
    opponent_mark: str,
    randomness: float = RANDOMNESS[DEFAULT_DIFFICULTY],
    rng: Optional[random.Random] = None,
    max_depth: Optional[int] = -1,
) -> Optional[int]:
    """Pick the AI's next position on ``board`` (mutated and restored in place).

    ``max_depth=-1`` uses the board's own cap. Returns None when nothing is open.
    """
    rng = rng or random.Random()
    open_positions = board.open_positions()
    if not open_positions:
        return None
    if rng.random() < randomness:
        return rng.choice(open_positions)
    if max_depth == -1:
        max_depth = board.search_depth
    _, move = minimax(board, 0, True, ai_mark, opponent_mark, max_depth, rng)
    return move


def minimax(
    board: Board,
    depth: int,
    maximizing: bool,
    ai_mark: str,
    opponent_mark: str,
    max_depth: Optional[int],
    rng: random.Random,
    last: Optional[Cell] = None,
) -> tuple[float, Optional[int]]:
    # only the last placed piece can have completed a line
    if last is not None and board.wins_at(last):
        if board[last] == ai_mark:
            return WIN_SCORE - depth, None
        return depth - WIN_SCORE, None
    open_positions = board.open_positions()
    if not open_positions:
        return 0, None
    if max_depth is not None and depth >= max_depth:
        return 0, None

    best_move = rng.choice(open_positions)
    best = -math.inf if maximizing else math.inf
    mark = ai_mark if maximizing else opponent_mark
    for position in open_positions:
        cell = board.place(position, mark)
        try:
            score, _ = minimax(board, depth + 1, not maximizing, ai_mark, opponent_mark, max_depth, rng, cell)
        finally:
            board.undo(cell)
        if (maximizing and score > best) or (not maximizing and score < best):
            best = score
            best_move = position
    return best, best_move
