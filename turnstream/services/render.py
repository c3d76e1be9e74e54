"""Default frame renderer: per-viewer JSON snapshots.

Any object with the same three methods can stand in for it (an image
renderer, for instance); the hub only stores and resends what it returns.
"""
from typing import Optional

from turnstream.schemas import FrameStatus, FrameView, GameKind, Placeholder
from turnstream.services.session import Outcome, Session


def outcome_message(session: Session, viewer_id: str) -> Optional[str]:
    outcome = session.outcome
    if outcome is None:
        return None
    if outcome.is_draw:
        return "Time's up! It's a draw!" if outcome.by_default else "It's a draw!"
    if outcome.winner == viewer_id:
        return "You win by default!" if outcome.by_default else "You win!"
    if session.puzzle is not None:
        if outcome.by_default:
            return "Time's up! You lose!"
        return f'You lose! The word was "{session.puzzle.word}"'
    return "You lose!"


def _status(outcome: Optional[Outcome], session: Session, viewer_id: str) -> FrameStatus:
    if outcome is not None:
        if outcome.is_draw:
            return "draw"
        return "win" if outcome.winner == viewer_id else "lose"
    return "your_turn" if session.current_turn == viewer_id else "opponent_turn"


class FrameRenderer:

    def render(self, session: Session, viewer_id: str, message: Optional[str] = None) -> str:
        view = FrameView(
            game=session.game,
            session_id=session.session_id,
            status=_status(session.outcome, session, viewer_id),
            mode=session.kind,
            time_remaining=max(0, session.time_remaining),
            message=message or outcome_message(session, viewer_id),
            difficulty=session.difficulty,  # type: ignore[arg-type]
        )
        if session.board is not None:
            view.board = session.board.rows()
            view.mark = session.mark_for(viewer_id)
        if session.puzzle is not None:
            view.masked_word = session.puzzle.masked()
            view.wrong_letters = list(session.puzzle.incorrect)
            view.wrong_guesses = len(session.puzzle.incorrect)
            view.max_wrong = session.puzzle.max_wrong
        return view.model_dump_json()

    def waiting(self, game: GameKind) -> str:
        return FrameView(game=game, status="waiting", message="Waiting for an opponent...").model_dump_json()

    def placeholder(self) -> str:
        return Placeholder().model_dump_json()
