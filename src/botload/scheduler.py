import math
import re
import time

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float | int) -> float:
    """Convert "500ms", "30s", "1m30s", "1h" or a plain number of seconds to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip().replace(" ", "")
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if not text or pos != len(text):
                raise ValueError(f"invalid duration {value!r}") from None
    if seconds < 0 or math.isnan(seconds):
        raise ValueError(f"duration must be non-negative, got {value!r}")
    return seconds


class Stage(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: float
    target: int = Field(ge=0)

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, value: str | float) -> float:
        return parse_duration(value)


def _round_half_up(value: float) -> int:
    return max(0, math.floor(value + 0.5))


def total_duration(stages: list[Stage]) -> float:
    return sum(stage.duration for stage in stages)


def target_at(stages: list[Stage], elapsed: float, flat_target: int = 0) -> int:
    if not stages:
        return flat_target
    start = 0.0
    previous = 0
    for stage in stages:
        end = start + stage.duration
        if elapsed < end:
            if stage.duration == 0:
                return stage.target
            fraction = (elapsed - start) / stage.duration
            return _round_half_up(previous + (stage.target - previous) * max(fraction, 0.0))
        start = end
        previous = stage.target
    return stages[-1].target


class Schedule:
    def __init__(self, stages: list[Stage], flat_target: int = 0, flat_duration: float = 0.0) -> None:
        self._stages = list(stages)
        self._flat_target = flat_target
        self._flat_duration = flat_duration

    @property
    def duration(self) -> float:
        if self._stages:
            return total_duration(self._stages)
        return self._flat_duration

    @property
    def max_target(self) -> int:
        if self._stages:
            return max(stage.target for stage in self._stages)
        return self._flat_target

    def target(self, elapsed: float) -> int:
        if self.finished(elapsed):
            return 0
        return target_at(self._stages, elapsed, self._flat_target)

    def finished(self, elapsed: float) -> bool:
        return elapsed >= self.duration


class RunClock:
    def __init__(self) -> None:
        self._started: float | None = None

    def start(self) -> None:
        if self._started is not None:
            raise RuntimeError("clock already started")
        self._started = time.monotonic()

    @property
    def started(self) -> bool:
        return self._started is not None

    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return time.monotonic() - self._started
