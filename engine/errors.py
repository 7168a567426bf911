"""Error taxonomy for the load test engine."""

from enum import Enum


class LoadTestError(Exception):
    """Base class for all load test errors."""


class ConfigurationError(LoadTestError):
    """Invalid load profile, threshold or run configuration.

    Raised before any virtual user starts and aborts the whole run.
    """


class SetupError(ConfigurationError):
    """The one-time setup phase could not fetch its shared data."""


class StepError(LoadTestError):
    """Failure local to a single scenario step of a single VU."""


class NetworkError(StepError):
    """Connection failure or timeout talking to the target."""


class UnexpectedStatus(StepError):
    """Response with a non-2xx status code."""

    def __init__(self, status: int, url: str = ""):
        super().__init__(f"Unexpected status {status} from {url}")
        self.status = status
        self.url = url


class MalformedResponse(StepError):
    """Response body could not be parsed as JSON."""


class IterationStatus(Enum):
    """Terminal outcome of one scheduled VU iteration."""
    COMPLETED = "completed"
    ABORTED = "aborted"
    INTERRUPTED = "interrupted"
    DROPPED = "dropped"
