import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

GameKind = Literal["connect4", "tictactoe", "hangman"]
SessionKind = Literal["multiplayer", "solo"]
Difficulty = Literal["easy", "medium", "hard", "impossible"]
FrameStatus = Literal["waiting", "your_turn", "opponent_turn", "win", "lose", "draw"]

AI_PARTICIPANT = "AI"


class FrameView(BaseModel):
    """Snapshot of one session as seen by one viewer."""
    type: Literal["frame"] = "frame"
    game: GameKind
    session_id: Optional[str] = None
    status: FrameStatus
    mode: Optional[SessionKind] = None
    mark: Optional[str] = None
    board: Optional[List[List[Optional[str]]]] = None
    time_remaining: Optional[int] = None
    message: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    # hangman only
    masked_word: Optional[str] = None
    wrong_letters: List[str] = []
    wrong_guesses: Optional[int] = None
    max_wrong: Optional[int] = None


class Placeholder(BaseModel):
    type: Literal["ack"] = "ack"
    nonce: str = Field(default_factory=lambda: uuid.uuid4().hex)
