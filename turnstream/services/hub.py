"""Session, matchmaking and broadcast engine for one game.

Everything here runs on the event loop thread. Timer callbacks carry a
session id, never a session object, and look the session up again when they
fire: it may have concluded or been torn down in the meantime.
"""
import asyncio
import logging
import random
from functools import partial
from typing import Any, Dict, Optional

from turnstream.config import HubConfig, get_config
from turnstream.schemas import AI_PARTICIPANT, GameKind
from turnstream.services.ai import choose_move, normalize_difficulty, randomness_for
from turnstream.services.boards import Board, GravityBoard, GridBoard, WordPuzzle
from turnstream.services.identity import ClientIdentity
from turnstream.services.matchmaking import MatchQueue, WaitingEntry
from turnstream.services.render import FrameRenderer
from turnstream.services.scheduler import LoopScheduler, Scheduler, run_every
from turnstream.services.session import (
    InvalidMove,
    Outcome,
    Seat,
    Session,
    SessionNotFound,
    SessionStore,
)
from turnstream.services.streams import Transport, TransportWriteFailure
from turnstream.utils.audit import audit_close, audit_write

logger = logging.getLogger(__name__)

BOARDS: dict[str, type[Board]] = {
    "connect4": GravityBoard,
    "tictactoe": GridBoard,
}

DISCONNECT_NOTICE = "Opponent disconnected. You win by default."


class GameHub:
    def __init__(
        self,
        game: GameKind,
        config: Optional[HubConfig] = None,
        renderer: Optional[FrameRenderer] = None,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.game = game
        self.config = config or get_config()
        self.renderer = renderer or FrameRenderer()
        self.scheduler = scheduler or LoopScheduler()
        self.rng = rng or random.Random()
        self.store = SessionStore()
        self.queue = MatchQueue()
        self._tasks: list[asyncio.Task] = []

    @property
    def supports_multiplayer(self) -> bool:
        return self.game in BOARDS

    def stats(self) -> Dict[str, int]:
        return {"waiting": len(self.queue), "sessions": len(self.store)}

    # --- lifecycle ---
    async def start(self) -> None:
        if self._tasks:
            return
        cfg = self.config
        self._tasks = [
            asyncio.create_task(run_every(cfg.seconds(1), self.tick_turn_clocks, f"{self.game}:clock")),
            asyncio.create_task(run_every(cfg.broadcast_interval, self.broadcast, f"{self.game}:broadcast")),
            asyncio.create_task(run_every(cfg.seconds(cfg.reap_interval), self.reap, f"{self.game}:reaper")),
        ]
        logger.info("hub %s started", self.game)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.shutdown()
        logger.info("hub %s stopped", self.game)

    def shutdown(self) -> None:
        for entry in self.queue.entries():
            self.remove_waiting(entry.client_id)
        for sess in self.store.sessions():
            self.teardown(sess.session_id)

    # --- control surface ---
    def open_stream(self, identity: ClientIdentity, stream: Transport) -> Optional[Session]:
        """Attach a stream: rejoin the client's session, keep its queue slot, or queue/pair it."""
        client_id = identity.client_id
        sess = self.store.session_for(client_id)
        if sess is not None:
            self._attach(sess, client_id, stream)
            return sess
        if not self.supports_multiplayer:
            return self.open_solo_stream(identity, stream)

        entry = self.queue.get(client_id)
        if entry is not None:
            old = entry.stream
            entry.stream = stream
            entry.last_active = self.scheduler.now()
            self._watch(stream, client_id)
            if old is not None and old is not stream:
                old.close()
            self._push_waiting(entry)
            return None

        entry = WaitingEntry(
            identity=identity,
            stream=stream,
            frame=self.renderer.waiting(self.game),
            last_active=self.scheduler.now(),
        )
        self._watch(stream, client_id)
        return self.pair_player(entry)

    def open_solo_stream(self, identity: ClientIdentity, stream: Transport, difficulty: Optional[str] = None) -> Session:
        """Start a fresh game against the AI, leaving any queue slot or session first."""
        client_id = identity.client_id
        self.remove_waiting(client_id)
        existing = self.store.session_for(client_id)
        if existing is not None:
            if existing.is_solo:
                self.teardown(existing.session_id)
            else:
                self.handle_disconnect(client_id, existing.session_id)

        if self.supports_multiplayer:
            level = normalize_difficulty(difficulty)
            sess = self.store.create_solo(
                self.game,
                client_id,
                self.config.turn_time,
                board=BOARDS[self.game](),
                difficulty=level,
                randomness=randomness_for(level),
            )
        else:
            sess = self.store.create_solo(self.game, client_id, self.config.turn_time, puzzle=self._new_puzzle())
        sess.seats[client_id] = Seat(client_id=client_id, stream=stream, last_active=self.scheduler.now())
        self._watch(stream, client_id)
        logger.info("Single-player game %s started for player %s (difficulty=%s)",
                    sess.session_id, client_id[:12], sess.difficulty)
        self._audit(sess, {"type": "session_start", "kind": sess.kind, "difficulty": sess.difficulty,
                           "participants": list(sess.participants)})
        self._refresh(sess)
        self._push_all(sess)
        return sess

    def submit_move(self, client_id: str, raw_position: Any) -> None:
        """Apply a human move; the result reaches the client through its stream."""
        sess = self.store.session_for(client_id)
        if sess is None:
            raise SessionNotFound(client_id)
        if not sess.in_progress:
            logger.info("Player %s attempted to move after game over in %s", client_id[:12], sess.session_id)
            return
        try:
            applied = sess.apply_move(client_id, raw_position)
        except InvalidMove as e:
            self.report_invalid(sess, client_id, str(e))
            return
        logger.info("Player %s played %s in game %s", client_id[:12], applied, sess.session_id)
        self._audit(sess, {"type": "move", "participant": client_id, "position": applied})
        self._after_move(sess)

    # --- matchmaking ---
    def pair_player(self, entry: WaitingEntry) -> Optional[Session]:
        opponent = self.queue.find_opponent(entry.identity)
        if opponent is None:
            self.queue.enqueue(entry)
            logger.info("Player %s is waiting for an opponent...", entry.client_id[:12])
            self._push_waiting(entry)
            return None

        self.queue.remove(opponent.client_id)
        self.queue.remove(entry.client_id)
        sess = self.store.create_multiplayer(
            self.game, opponent.client_id, entry.client_id, BOARDS[self.game](), self.config.turn_time)
        now = self.scheduler.now()
        for waiting in (opponent, entry):
            sess.seats[waiting.client_id] = Seat(client_id=waiting.client_id, stream=waiting.stream, last_active=now)
        logger.info("Game %s started between %s and %s",
                    sess.session_id, opponent.client_id[:12], entry.client_id[:12])
        self._audit(sess, {"type": "session_start", "kind": sess.kind, "participants": list(sess.participants)})
        self._refresh(sess)
        self._push_all(sess)
        return sess

    def remove_waiting(self, client_id: str) -> None:
        entry = self.queue.remove(client_id)
        if entry is None:
            return
        if entry.stream is not None:
            entry.stream.close()
        logger.info("Player %s removed from waiting list.", client_id[:12])

    # --- state changes ---
    def _after_move(self, sess: Session) -> None:
        if sess.outcome is not None:
            self._on_concluded(sess)
            return
        self._refresh(sess)
        self._push_all(sess)
        if sess.session_id in self.store and sess.ai_to_move:
            self._schedule_ai(sess)

    def _on_concluded(self, sess: Session, notices: Optional[Dict[str, str]] = None) -> None:
        outcome = sess.outcome
        assert outcome is not None
        sess.cancel_timer("ai")
        for client_id, seat in sess.seats.items():
            sess.cancel_timer(f"error:{client_id}")
            seat.message = (notices or {}).get(client_id)
        result = (outcome.winner or "draw")[:12]
        logger.info("Game %s concluded with result: %s%s", sess.session_id, result,
                    " (by default)" if outcome.by_default else "")
        self._audit(sess, {"type": "conclude", "winner": outcome.winner, "by_default": outcome.by_default,
                           "moves": sess.moves_made})
        # the grace timer must exist even when the final push fails
        grace = self.config.seconds(self.config.grace_period)
        if sess.puzzle is not None:
            sess.set_timer("grace", self.scheduler.call_later(grace, self._reset_puzzle, sess.session_id))
        else:
            sess.set_timer("grace", self.scheduler.call_later(grace, self.teardown, sess.session_id))
        self._refresh(sess)
        self._push_all(sess)

    def report_invalid(self, sess: Session, client_id: str, message: str) -> None:
        """Show ``message`` on the offender's frame only, cleared after a short while."""
        seat = sess.seats.get(client_id)
        if seat is None:
            return
        logger.info("Error for %s: %s", client_id[:12], message)
        seat.message = message
        self._refresh(sess, client_id)
        self._push(sess, client_id)
        if sess.session_id not in self.store:
            return
        delay = self.config.seconds(self.config.error_clear)
        sess.set_timer(f"error:{client_id}",
                       self.scheduler.call_later(delay, self._clear_message, sess.session_id, client_id))

    def _clear_message(self, session_id: str, client_id: str) -> None:
        sess = self.store.get(session_id)
        if sess is None:
            return
        sess.timers.pop(f"error:{client_id}", None)
        seat = sess.seats.get(client_id)
        if seat is None or seat.message is None:
            return
        seat.message = None
        self._refresh(sess, client_id)
        self._push(sess, client_id)

    def _reset_puzzle(self, session_id: str) -> None:
        sess = self.store.get(session_id)
        if sess is None or sess.puzzle is None or sess.outcome is None:
            return
        sess.timers.pop("grace", None)
        sess.reset_puzzle(self._new_puzzle(), self.config.turn_time)
        for seat in sess.seats.values():
            seat.message = None
        logger.info("Game %s reset with a new word.", session_id)
        self._audit(sess, {"type": "reset"})
        self._refresh(sess)
        self._push_all(sess)

    def _new_puzzle(self) -> WordPuzzle:
        return WordPuzzle.random(self.rng, max_wrong=self.config.max_wrong_guesses)

    # --- AI ---
    def _schedule_ai(self, sess: Session) -> None:
        delay = self.config.seconds(self.rng.uniform(self.config.ai_delay_min, self.config.ai_delay_max))
        sess.set_timer("ai", self.scheduler.call_later(delay, self._ai_turn, sess.session_id))

    def _ai_turn(self, session_id: str) -> None:
        sess = self.store.get(session_id)
        if sess is None or not sess.ai_to_move:
            return
        sess.timers.pop("ai", None)
        assert sess.board is not None
        board = sess.board.copy()
        depth = self.config.search_depth if board.search_depth is not None else None
        self.scheduler.run_in_background(
            choose_move,
            board,
            sess.mark_for(AI_PARTICIPANT),
            sess.mark_for(sess.human),
            sess.randomness,
            random.Random(self.rng.getrandbits(64)),
            depth,
            callback=partial(self._apply_ai_move, session_id, sess.moves_made),
        )

    def _apply_ai_move(self, session_id: str, moves_made: int, position: Optional[int]) -> None:
        sess = self.store.get(session_id)
        if sess is None or not sess.ai_to_move or sess.moves_made != moves_made:
            return
        if not sess.apply_ai_move(position):
            logger.error("AI attempted an invalid position %s in game %s.", position, session_id)
            return
        logger.info("AI played %s in single-player game %s", position, session_id)
        self._audit(sess, {"type": "move", "participant": AI_PARTICIPANT, "position": position})
        self._after_move(sess)

    # --- timers ---
    def tick_turn_clocks(self) -> None:
        """Count every running game clock down one time unit."""
        for sess in self.store.sessions():
            if sess.session_id not in self.store or not sess.in_progress:
                continue
            try:
                self._tick_clock(sess)
            except Exception:
                logger.exception("turn clock failed for game %s", sess.session_id)

    def _tick_clock(self, sess: Session) -> None:
        sess.time_remaining -= 1
        if sess.time_remaining > 0:
            self._refresh(sess)
            return
        sess.time_remaining = 0
        if sess.expire_clock():
            logger.info("Game %s timer expired.", sess.session_id)
            self._on_concluded(sess)

    def broadcast(self) -> None:
        """Resend every stored frame to its stream."""
        for entry in self.queue.entries():
            try:
                self._push_waiting(entry)
            except Exception:
                logger.exception("broadcast failed for waiting player %s", entry.client_id[:12])
        for sess in self.store.sessions():
            for client_id in list(sess.seats):
                try:
                    self._push(sess, client_id)
                except Exception:
                    logger.exception("broadcast failed for %s in game %s", client_id[:12], sess.session_id)

    def reap(self) -> None:
        """Evict waiting clients and seats whose stream went quiet."""
        now = self.scheduler.now()
        limit = self.config.seconds(self.config.stale_after)
        for entry in self.queue.entries():
            if now - entry.last_active > limit:
                logger.info("Player %s in waiting list inactive. Removing.", entry.client_id[:12])
                try:
                    self.remove_waiting(entry.client_id)
                except Exception:
                    logger.exception("reaper failed for waiting player %s", entry.client_id[:12])
        for sess in self.store.sessions():
            for client_id, seat in list(sess.seats.items()):
                if now - seat.last_active > limit:
                    logger.info("Player %s in game %s inactive. Disconnecting.", client_id[:12], sess.session_id)
                    try:
                        self.handle_disconnect(client_id, sess.session_id)
                    except Exception:
                        logger.exception("reaper failed for %s in game %s", client_id[:12], sess.session_id)

    # --- disconnects ---
    def handle_disconnect(self, client_id: str, session_id: str) -> None:
        """Tear a participant out of a session; repeated calls are no-ops."""
        sess = self.store.get(session_id)
        if sess is None or client_id not in sess.participants:
            return
        if sess.is_solo:
            logger.info("Player %s left single-player game %s. Ending game.", client_id[:12], session_id)
            self.teardown(session_id)
            return

        seat = sess.seats.pop(client_id, None)
        if seat is None:
            return
        self.store.release(client_id, session_id)
        if seat.stream is not None:
            seat.stream.close()
        logger.info("Player %s disconnected from game %s.", client_id[:12], session_id)
        self._audit(sess, {"type": "disconnect", "participant": client_id})
        if not sess.seats:
            self.teardown(session_id)
            return
        survivor = sess.opponent_of(client_id)
        if sess.conclude(Outcome(winner=survivor, by_default=True)):
            self._on_concluded(sess, notices={survivor: DISCONNECT_NOTICE})

    def teardown(self, session_id: str) -> None:
        sess = self.store.remove(session_id)
        if sess is None:
            return
        sess.cancel_timers()
        for seat in sess.seats.values():
            if seat.stream is not None:
                seat.stream.close()
        sess.seats.clear()
        logger.info("Game %s ended.", session_id)
        self._audit(sess, {"type": "teardown"})
        audit_close(session_id)

    def _on_stream_closed(self, client_id: str, stream: Transport) -> None:
        entry = self.queue.get(client_id)
        if entry is not None and entry.stream is stream:
            self.remove_waiting(client_id)
            return
        sess = self.store.session_for(client_id)
        if sess is None:
            return
        seat = sess.seats.get(client_id)
        # a stream replaced by a reconnect closes without ending anything
        if seat is not None and seat.stream is stream:
            self.handle_disconnect(client_id, sess.session_id)

    # --- frames ---
    def _watch(self, stream: Transport, client_id: str) -> None:
        stream.on_close(partial(self._on_stream_closed, client_id, stream))

    def _attach(self, sess: Session, client_id: str, stream: Transport) -> None:
        seat = sess.seats.get(client_id)
        if seat is None:
            seat = sess.seats[client_id] = Seat(client_id=client_id)
        old = seat.stream
        seat.stream = stream
        seat.last_active = self.scheduler.now()
        self._watch(stream, client_id)
        if old is not None and old is not stream:
            old.close()
        logger.info("Stream for %s attached to game %s", client_id[:12], sess.session_id)
        self._refresh(sess, client_id)
        self._push(sess, client_id)

    def _refresh(self, sess: Session, client_id: Optional[str] = None) -> None:
        for cid, seat in sess.seats.items():
            if client_id is None or cid == client_id:
                seat.frame = self.renderer.render(sess, cid, seat.message)

    def _push(self, sess: Session, client_id: str) -> None:
        seat = sess.seats.get(client_id)
        if seat is None or seat.stream is None or seat.frame is None:
            return
        try:
            if seat.stream.write(seat.frame):
                seat.last_active = self.scheduler.now()
        except TransportWriteFailure as e:
            logger.warning("Error writing to stream for player %s in game %s: %s",
                           client_id[:12], sess.session_id, e)
            self.handle_disconnect(client_id, sess.session_id)

    def _push_all(self, sess: Session) -> None:
        for client_id in list(sess.seats):
            self._push(sess, client_id)

    def _push_waiting(self, entry: WaitingEntry) -> None:
        if entry.stream is None or entry.frame is None:
            return
        try:
            if entry.stream.write(entry.frame):
                entry.last_active = self.scheduler.now()
        except TransportWriteFailure as e:
            logger.warning("Error writing to stream for waiting player %s: %s", entry.client_id[:12], e)
            self.remove_waiting(entry.client_id)

    def _audit(self, sess: Session, record: Dict[str, Any]) -> None:
        audit_write(sess.session_id, {"game": self.game, **record}, self.config.audit_dir)
