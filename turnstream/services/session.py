import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

from turnstream.schemas import AI_PARTICIPANT, GameKind, SessionKind
from turnstream.services.boards import Board, WordPuzzle, parse_position
from turnstream.services.scheduler import TimerHandle
from turnstream.services.streams import Transport

MARKS: dict[str, tuple[str, str]] = {
    "connect4": ("R", "Y"),
    "tictactoe": ("X", "O"),
    "hangman": ("", ""),
}


class InvalidMove(Exception):
    """A move the rules reject; shown to the mover, never ends the session."""


class SessionNotFound(KeyError):
    pass


@dataclass(frozen=True)
class Outcome:
    winner: Optional[str] = None  # None means draw
    by_default: bool = False

    @property
    def is_draw(self) -> bool:
        return self.winner is None


@dataclass
class Seat:
    client_id: str
    stream: Optional[Transport] = None
    frame: Optional[str] = None
    last_active: float = field(default_factory=time.monotonic)
    message: Optional[str] = None


@dataclass
class Session:
    session_id: str
    game: GameKind
    kind: SessionKind
    participants: tuple[str, str]
    board: Optional[Board] = None
    puzzle: Optional[WordPuzzle] = None
    current_turn: str = ""
    last_mover: Optional[str] = None
    moves_made: int = 0
    outcome: Optional[Outcome] = None
    time_remaining: int = 90
    difficulty: Optional[str] = None
    randomness: float = 0.0
    seats: Dict[str, Seat] = field(default_factory=dict)
    timers: Dict[str, TimerHandle] = field(default_factory=dict, repr=False)
    created_at: int = field(default_factory=lambda: int(time.time()))

    def __post_init__(self) -> None:
        if self.participants[0] == self.participants[1]:
            raise ValueError("a session needs two distinct participants")
        if (self.board is None) == (self.puzzle is None):
            raise ValueError("a session holds either a board or a word puzzle")
        if not self.current_turn:
            self.current_turn = self.participants[0]

    @property
    def human(self) -> str:
        return self.participants[0]

    @property
    def is_solo(self) -> bool:
        return self.kind == "solo"

    @property
    def in_progress(self) -> bool:
        return self.outcome is None

    @property
    def ai_to_move(self) -> bool:
        return self.is_solo and self.board is not None and self.in_progress and self.current_turn == AI_PARTICIPANT

    def mark_for(self, participant: str) -> str:
        first, second = MARKS[self.game]
        return first if participant == self.participants[0] else second

    def participant_for_mark(self, mark: str) -> str:
        return self.participants[0] if mark == self.mark_for(self.participants[0]) else self.participants[1]

    def opponent_of(self, participant: str) -> str:
        return self.participants[1] if participant == self.participants[0] else self.participants[0]

    # --- state machine ---
    def apply_move(self, client_id: str, raw_position: str | int | None) -> int | str:
        """Validate and apply a human move. Returns the applied position or letter."""
        if not self.in_progress:
            raise InvalidMove("Game over.")
        if client_id != self.current_turn:
            raise InvalidMove("Not your turn.")
        if self.puzzle is not None:
            return self._guess(client_id, raw_position)

        assert self.board is not None
        try:
            position = parse_position(raw_position, self.board.positions)
        except (TypeError, ValueError):
            raise InvalidMove("Invalid move.")
        if self.board.target(position) is None:
            raise InvalidMove(self.board.occupied_message)
        self._place(client_id, position)
        return position

    def apply_ai_move(self, position: Optional[int]) -> bool:
        """Apply the AI's chosen position; False when it no longer fits the board."""
        if not self.ai_to_move or position is None:
            return False
        assert self.board is not None
        if position not in self.board.positions or self.board.target(position) is None:
            return False
        self._place(AI_PARTICIPANT, position)
        return True

    def _place(self, participant: str, position: int) -> None:
        assert self.board is not None
        self.board.place(position, self.mark_for(participant))
        self.last_mover = participant
        self.moves_made += 1
        self.current_turn = self.opponent_of(participant)
        self.evaluate()

    def _guess(self, client_id: str, raw_letter: str | int | None) -> str:
        assert self.puzzle is not None
        try:
            letter = WordPuzzle.parse_letter(None if raw_letter is None else str(raw_letter))
        except ValueError:
            raise InvalidMove("Invalid guess.")
        if self.puzzle.already_guessed(letter):
            raise InvalidMove("Letter already guessed.")
        self.puzzle.guess(letter)
        self.last_mover = client_id
        self.moves_made += 1
        self.evaluate()
        return letter

    def evaluate(self) -> Optional[Outcome]:
        """Check the terminal condition and conclude when it holds."""
        if self.outcome is not None:
            return self.outcome
        outcome: Optional[Outcome] = None
        if self.puzzle is not None:
            if self.puzzle.is_solved():
                outcome = Outcome(winner=self.human)
            elif self.puzzle.is_lost():
                outcome = Outcome(winner=AI_PARTICIPANT)
        else:
            assert self.board is not None
            mark = self.board.winner()
            if mark is not None:
                outcome = Outcome(winner=self.participant_for_mark(mark))
            elif self.board.is_full():
                outcome = Outcome()
        if outcome is not None:
            self.conclude(outcome)
        return self.outcome

    def conclude(self, outcome: Outcome) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        return True

    def expire_clock(self) -> bool:
        """Resolve an idle session whose clock ran out."""
        if self.outcome is not None:
            return False
        if self.puzzle is not None:
            return self.conclude(Outcome(winner=AI_PARTICIPANT, by_default=True))
        if self.last_mover is not None:
            return self.conclude(Outcome(winner=self.last_mover, by_default=True))
        return self.conclude(Outcome(by_default=True))

    def reset_puzzle(self, puzzle: WordPuzzle, turn_time: int) -> None:
        self.puzzle = puzzle
        self.outcome = None
        self.last_mover = None
        self.moves_made = 0
        self.current_turn = self.human
        self.time_remaining = turn_time

    # --- timers ---
    def set_timer(self, name: str, handle: TimerHandle) -> None:
        self.cancel_timer(name)
        self.timers[name] = handle

    def cancel_timer(self, name: str) -> None:
        handle = self.timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_timers(self) -> None:
        for name in list(self.timers):
            self.cancel_timer(name)


def _new_session_id() -> str:
    return "game_" + uuid.uuid4().hex[:12]


class SessionStore:
    """Owns all sessions of one game; sessions are addressed by id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._by_client: Dict[str, str] = {}

    def create_multiplayer(self, game: GameKind, first: str, second: str, board: Board, turn_time: int) -> Session:
        sess = Session(
            session_id=_new_session_id(),
            game=game,
            kind="multiplayer",
            participants=(first, second),
            board=board,
            time_remaining=turn_time,
        )
        self._add(sess)
        return sess

    def create_solo(
        self,
        game: GameKind,
        client_id: str,
        turn_time: int,
        *,
        board: Optional[Board] = None,
        puzzle: Optional[WordPuzzle] = None,
        difficulty: Optional[str] = None,
        randomness: float = 0.0,
    ) -> Session:
        sess = Session(
            session_id=_new_session_id(),
            game=game,
            kind="solo",
            participants=(client_id, AI_PARTICIPANT),
            board=board,
            puzzle=puzzle,
            time_remaining=turn_time,
            difficulty=difficulty,
            randomness=randomness,
        )
        self._add(sess)
        return sess

    def _add(self, sess: Session) -> None:
        self._sessions[sess.session_id] = sess
        for pid in sess.participants:
            if pid != AI_PARTICIPANT:
                self._by_client[pid] = sess.session_id

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def session_for(self, client_id: str) -> Optional[Session]:
        return self.get(self._by_client.get(client_id))

    def release(self, client_id: str, session_id: str) -> None:
        if self._by_client.get(client_id) == session_id:
            del self._by_client[client_id]

    def remove(self, session_id: str) -> Optional[Session]:
        sess = self._sessions.pop(session_id, None)
        if sess is not None:
            for pid in sess.participants:
                self.release(pid, session_id)
        return sess

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(self.sessions())

    def __len__(self) -> int:
        return len(self._sessions)
