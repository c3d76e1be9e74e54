import json
import random
from typing import Any, Callable, Optional

import pytest

from turnstream.config import HubConfig
from turnstream.services.hub import GameHub
from turnstream.services.identity import ClientIdentity, resolve
from turnstream.services.streams import TransportWriteFailure


class ManualTimer:
    def __init__(self, when: float, fn: Callable[..., Any], args: tuple):
        self.when = when
        self.fn = fn
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic clock: timers fire only when the test advances time."""

    def __init__(self) -> None:
        self.clock = 0.0
        self.timers: list[ManualTimer] = []

    def now(self) -> float:
        return self.clock

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> ManualTimer:
        timer = ManualTimer(self.clock + max(0.0, delay), fn, args)
        self.timers.append(timer)
        return timer

    def run_in_background(self, fn: Callable[..., Any], *args: Any, callback: Callable[[Any], None]) -> None:
        callback(fn(*args))

    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.clock + seconds
        while True:
            due = [t for t in self.pending() if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            self.clock = max(self.clock, timer.when)
            timer.fn(*timer.args)
        self.clock = target


class FakeStream:
    """Records frames; ``fail`` makes the next writes raise like a dead socket."""

    def __init__(self) -> None:
        self.frames: list[str] = []
        self.closed = False
        self.fail = False
        self.stalled = False
        self._callbacks: list[Callable[[], None]] = []

    def write(self, frame: str) -> bool:
        if self.closed or self.fail:
            raise TransportWriteFailure("broken pipe")
        self.frames.append(frame)
        return not self.stalled

    def close(self) -> None:
        self.closed = True
        self._callbacks.clear()

    def on_close(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def peer_closed(self) -> None:
        callbacks = list(self._callbacks)
        self.close()
        for cb in callbacks:
            cb()

    @property
    def last(self) -> Optional[dict]:
        return json.loads(self.frames[-1]) if self.frames else None


def client(address: str) -> ClientIdentity:
    return resolve(address)


@pytest.fixture
def config() -> HubConfig:
    return HubConfig(ai_delay_min=0.5, ai_delay_max=0.5)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_hub(config, scheduler):
    def _make(game: str, seed: int = 7) -> GameHub:
        return GameHub(game, config=config, scheduler=scheduler, rng=random.Random(seed))
    return _make
