"""Engine configuration.

All durations are expressed in *time units*; ``time_unit`` converts them to
seconds so the whole engine can be sped up for tests and demos.
"""
import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel

ENV_PREFIX = "TURNSTREAM_"


class HubConfig(BaseModel):
    time_unit: float = 1.0          # seconds per time unit
    turn_time: int = 90             # game clock, in time units
    broadcast_hz: int = 10          # frame pushes per time unit
    reap_interval: float = 5
    stale_after: float = 15
    grace_period: float = 10
    error_clear: float = 2
    ai_delay_min: float = 0.5
    ai_delay_max: float = 2.0
    search_depth: int = 5           # ply cap for the gravity board
    max_wrong_guesses: int = 6
    stream_buffer: int = 1
    audit_dir: Optional[str] = None
    debug: bool = False

    def seconds(self, units: float) -> float:
        return units * self.time_unit

    @property
    def broadcast_interval(self) -> float:
        return self.seconds(1.0 / self.broadcast_hz)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "HubConfig":
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if name == "debug":
                values[name] = raw.lower() in ("1", "true", "yes")
            else:
                values[name] = raw
        return cls(**values)


@lru_cache
def get_config() -> HubConfig:
    return HubConfig.from_env()
