"""Data models for monitoring cycle results."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TestName(str, Enum):
    """Probes run by a monitoring cycle, in execution order."""

    __test__ = False  # not a pytest test class

    CONNECTIVITY = "Connectivity"
    LOGIN = "Login"
    AUTHENTICATED_ACCESS = "Authenticated Access"
    SESSION_CLEANUP = "Session Cleanup"


class OverallStatus(str, Enum):
    """Aggregate status of one monitoring cycle."""

    PASS = "PASS"
    FAIL = "FAIL"
    ERROR = "ERROR"  # orchestration itself raised
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class TestOutcome:
    """Result of a single probe.

    Attributes:
        name: Which probe produced this outcome.
        passed: Whether the probe succeeded.
        status_code: HTTP status code of the deciding response, if any.
        response_time_ms: Wall-clock time of the probe's request in milliseconds.
        error: Transport error description, None for logical failures.
        details: Human-readable summary.
        session_token: Cookie header value captured from the login response (Login only).
        tested_url: URL requested (Authenticated Access only).
        final_url: URL after following redirects (Authenticated Access only).
    """

    __test__ = False

    name: TestName
    passed: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None
    details: str | None = None
    session_token: str | None = None
    tested_url: str | None = None
    final_url: str | None = None


@dataclass(frozen=True)
class CycleReport:
    """Result of one full monitoring cycle.

    Attributes:
        timestamp: When the cycle started (UTC).
        site_url: Base URL of the monitored site.
        outcomes: Probe outcomes in execution order.
        overall_status: Aggregate status.
        error: Orchestration error message when overall_status is ERROR.
    """

    timestamp: datetime
    site_url: str
    outcomes: tuple[TestOutcome, ...] = ()
    overall_status: OverallStatus = OverallStatus.UNKNOWN
    error: str | None = None

    @property
    def passed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.passed)

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.passed_count

    @property
    def failures(self) -> list[TestOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.passed]

    @property
    def is_passing(self) -> bool:
        return self.overall_status is OverallStatus.PASS
