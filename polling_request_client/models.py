import math
from enum import Enum
from typing import Annotated, Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

from polling_request_client.errors import ConfigurationError, RequestError

T = TypeVar("T")


class RunState(str, Enum):
    idle = "idle"
    polling = "polling"
    awaiting_result = "awaiting_result"
    succeeded = "succeeded"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.succeeded, RunState.failed, RunState.cancelled)


class RequestSpec(BaseModel):
    """A single HTTP call: where to send it, how, and how long to wait"""

    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    http_method: str = "get"
    timeout_seconds: Optional[float] = 60.0


class EqualDelays(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["equal"] = "equal"
    interval_seconds: Optional[float] = None

    def extra_delays(self, overall_timeout: float) -> List[float]:
        if self.interval_seconds is None:
            raise ConfigurationError("Equal-interval polling requires interval_seconds")
        if self.interval_seconds <= 0:
            raise ConfigurationError(
                f"Polling interval must be positive, got {self.interval_seconds}"
            )

        count = math.floor(overall_timeout / self.interval_seconds) - 1
        # A single extra attempt is never scheduled on its own
        if count <= 1:
            return []
        return [self.interval_seconds * n for n in range(1, count + 1)]


class ExplicitDelays(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["explicit"] = "explicit"
    delays_seconds: Optional[List[float]] = None

    def extra_delays(self, overall_timeout: float) -> List[float]:
        """Turn per-attempt increments into absolute delays from run start"""
        if self.delays_seconds is None:
            raise ConfigurationError("Explicit polling requires delays_seconds")

        delays = []
        cumulative = 0.0
        for increment in self.delays_seconds:
            if increment < 0:
                raise ConfigurationError(f"Polling delay cannot be negative, got {increment}")
            cumulative += increment
            delays.append(cumulative)
        return delays


DelayMode = Annotated[Union[EqualDelays, ExplicitDelays], Field(discriminator="kind")]


class PollingSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: RequestSpec
    overall_timeout_seconds: float = 60.0
    delay_mode: Optional[DelayMode] = None
    fallback_to_result_on_timeout: bool = True

    def delays(self) -> List[float]:
        """Absolute delays (seconds from run start) of every polling attempt.

        The first attempt is always immediate. Missing or malformed delay
        settings raise ConfigurationError here rather than at construction,
        so a bad schedule only fails once somebody actually polls with it.
        """
        if self.delay_mode is None:
            raise ConfigurationError("Polling schedule has no delay mode")
        return [0.0] + self.delay_mode.extra_delays(self.overall_timeout_seconds)

    def polling_request(self) -> RequestSpec:
        """The target request, bounded by the schedule's overall timeout"""
        return self.target.model_copy(
            update={"timeout_seconds": self.overall_timeout_seconds}
        )


class RequestModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    polling_spec: Optional[PollingSchedule] = None
    result_spec: RequestSpec
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = Field(default_factory=dict)


class RequestResult(BaseModel, Generic[T]):
    """Outcome of one run: a decoded value or the error that ended it"""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    value: Optional[T] = None
    error: Optional[RequestError] = None
    attempts: int = 0
    elapsed_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        if self.error is not None:
            raise self.error
        return self.value
