from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from botload.aggregator import MetricKind
from botload.config import Settings
from botload.executor import IterationFn
from botload.http import HttpSession
from botload.scheduler import Stage, parse_duration
from botload.thresholds import ThresholdSpec

# shared-iterations runs stop here even if the budget is not used up
DEFAULT_MAX_DURATION = 600.0


class RunOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    stages: list[Stage] = Field(default_factory=list)
    vus: int = Field(default=1, ge=0)
    duration: float = 0.0
    iterations: int | None = Field(default=None, ge=1)
    max_duration: float = DEFAULT_MAX_DURATION
    thresholds: list[ThresholdSpec] = Field(default_factory=list)
    think_time: tuple[float, float] = (0.5, 1.0)
    tick_interval: float = Field(default=0.1, gt=0)
    graceful_stop: float = Field(default=90.0, ge=0)
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("duration", "max_duration", "graceful_stop", mode="before")
    @classmethod
    def _parse_duration(cls, value: str | float) -> float:
        return parse_duration(value)

    @model_validator(mode="after")
    def _check_think_time(self) -> "RunOptions":
        low, high = self.think_time
        if low < 0 or high < low:
            raise ValueError(f"think_time must be a non-negative (min, max) pair, got {self.think_time}")
        return self

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RunOptions":
        values: dict[str, Any] = {
            "vus": settings.default_vus,
            "duration": settings.default_duration,
            "think_time": (settings.think_time_min, settings.think_time_max),
            "tick_interval": settings.tick_interval,
            "graceful_stop": settings.graceful_stop,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass(frozen=True)
class SetupContext:
    settings: Settings
    http: HttpSession


SetupHook = Callable[[SetupContext], Awaitable[Any]]
TeardownHook = Callable[[Any, float], Awaitable[None]]


@dataclass
class Scenario:
    name: str
    exec: IterationFn
    options: RunOptions
    setup: SetupHook | None = None
    teardown: TeardownHook | None = None
    metrics: dict[str, MetricKind] = field(default_factory=dict)
    description: str = ""
