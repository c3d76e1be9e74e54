import asyncio
import logging
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> TimerHandle: ...

    def run_in_background(self, fn: Callable[..., Any], *args: Any, callback: Callable[[Any], None]) -> None: ...


def _guarded(fn: Callable[..., Any], *args: Any) -> None:
    # one failing callback must not take the loop's other timers down
    try:
        fn(*args)
    except Exception:
        logger.exception("scheduled callback %s failed", getattr(fn, "__name__", fn))


class LoopScheduler:
    """Deferred work on the running asyncio loop."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, fn: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), _guarded, fn, *args)

    def run_in_background(self, fn: Callable[..., Any], *args: Any, callback: Callable[[Any], None]) -> None:
        """Run ``fn`` in the default executor; ``callback`` gets its result on the loop."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, fn, *args)

        def _done(f: "asyncio.Future[Any]") -> None:
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                logger.error("background task %s failed", getattr(fn, "__name__", fn), exc_info=exc)
                return
            _guarded(callback, f.result())

        future.add_done_callback(_done)


async def run_every(interval: float, fn: Callable[[], Any], name: str) -> None:
    """Call ``fn`` every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            fn()
        except Exception:
            logger.exception("periodic task %s failed", name)
