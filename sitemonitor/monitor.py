"""Website probes, the monitoring cycle and its cron-driven scheduler loop."""

import logging
import time
import traceback
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.message import Message
from threading import Event, Lock, Thread
from urllib.parse import urlencode

from apscheduler.triggers.cron import CronTrigger

from .alerter import Alerter
from .config import Config
from .models import CycleReport, OverallStatus, TestName, TestOutcome
from .report import format_error_log, format_log_report

logger = logging.getLogger(__name__)


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Redirect handler that refuses to follow redirects.

    Returning None makes urllib surface the 3xx response as an HTTPError,
    so the caller can read its status, Location and Set-Cookie headers.
    """

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


# Follows redirects (connectivity, authenticated access)
_opener = urllib.request.build_opener()

# Leaves redirects untouched (login POST, logout)
_no_redirect_opener = urllib.request.build_opener(_NoRedirectHandler())

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

# Location substrings that indicate a successful login redirect.
LOGIN_SUCCESS_MARKERS = ("dashboard", "home", "profile")

SKIPPED_DETAILS = "Skipped due to login failure"


@dataclass(frozen=True)
class HttpResponse:
    """Status line and headers of a completed HTTP exchange."""

    status: int
    reason: str
    headers: Message
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299


def _open(
    opener: urllib.request.OpenerDirector,
    request: urllib.request.Request,
    timeout: float,
) -> HttpResponse:
    try:
        with opener.open(request, timeout=timeout) as response:
            return HttpResponse(
                status=response.status,
                reason=getattr(response, "reason", None) or "",
                headers=response.headers,
                url=response.geturl(),
            )
    except urllib.error.HTTPError as e:
        e.close()
        return HttpResponse(
            status=e.code,
            reason=str(e.reason) if e.reason else "",
            headers=e.headers if e.headers is not None else Message(),
            url=e.geturl() or request.full_url,
        )


def _send(
    opener: urllib.request.OpenerDirector,
    request: urllib.request.Request,
    timeout: float,
) -> HttpResponse:
    """Send a request and normalize the response.

    urllib only bounds each socket operation, so the exchange runs in a
    worker thread and is abandoned once ``timeout`` seconds have passed in
    total. Non-2xx responses are returned rather than raised. Transport
    errors (timeouts, DNS failures, refused connections) propagate, an
    expired deadline as TimeoutError.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="http-request")
    try:
        future = executor.submit(_open, opener, request, timeout)
        return future.result(timeout=timeout)
    finally:
        # An abandoned request keeps its worker until the socket gives up
        executor.shutdown(wait=False)


def _describe_error(exc: BaseException) -> str:
    """Turn a transport exception into a short message.

    Timeouts surface either directly or wrapped in a URLError depending on
    whether they hit during connect or read; both read "Request timeout".
    """
    reason: object = exc.reason if isinstance(exc, urllib.error.URLError) else exc
    if isinstance(reason, TimeoutError):
        return "Request timeout"
    if isinstance(exc, urllib.error.URLError):
        return str(reason) if reason else "Connection failed"
    return str(exc) or exc.__class__.__name__


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def is_login_successful(status_code: int, location: str | None) -> bool:
    """Decide whether a login POST response indicates success.

    Permissive by intent: any single signal is enough. A 302 counts even
    when it points back at the login page.
    """
    location = location or ""
    indicators = [
        status_code == 302,
        status_code == 200,
        any(marker in location for marker in LOGIN_SUCCESS_MARKERS),
        "login" not in location,
    ]
    return any(indicators)


def extract_session_token(set_cookie_headers: list[str] | None) -> str | None:
    """Join the name=value part of every Set-Cookie header into a Cookie value.

    Args:
        set_cookie_headers: Raw Set-Cookie header values from one response.

    Returns:
        A string usable as a Cookie header, or None if no cookies were set.
    """
    if not set_cookie_headers:
        return None

    pairs = [header.split(";", 1)[0].strip() for header in set_cookie_headers]
    pairs = [pair for pair in pairs if pair]
    return "; ".join(pairs) or None


def check_connectivity(config: Config) -> TestOutcome:
    """GET the site's base URL and report whether it answers with 2xx.

    Args:
        config: Application configuration.

    Returns:
        TestOutcome for the Connectivity probe. Never raises.
    """
    request = urllib.request.Request(
        config.site.url,
        method="GET",
        headers={
            "User-Agent": config.monitor.user_agent,
            "Accept": ACCEPT_HTML,
        },
    )
    start = time.monotonic()

    try:
        response = _send(_opener, request, config.monitor.timeout_seconds)
    except Exception as e:
        return TestOutcome(
            name=TestName.CONNECTIVITY,
            passed=False,
            response_time_ms=_elapsed_ms(start),
            error=_describe_error(e),
            details="Failed to connect to website",
        )

    return TestOutcome(
        name=TestName.CONNECTIVITY,
        passed=response.ok,
        status_code=response.status,
        response_time_ms=_elapsed_ms(start),
        details="Website is accessible" if response.ok else f"HTTP {response.status} - {response.reason}",
    )


def check_login(config: Config) -> TestOutcome:
    """Load the login form, then POST the credentials without following redirects.

    The response time covers both requests.

    Args:
        config: Application configuration.

    Returns:
        TestOutcome for the Login probe, carrying the session token when
        the POST response set cookies. Never raises.
    """
    site = config.site
    timeout = config.monitor.timeout_seconds
    user_agent = config.monitor.user_agent
    start = time.monotonic()

    try:
        page = _send(
            _opener,
            urllib.request.Request(site.login_url, method="GET", headers={"User-Agent": user_agent}),
            timeout,
        )
        if not page.ok:
            return TestOutcome(
                name=TestName.LOGIN,
                passed=False,
                status_code=page.status,
                response_time_ms=_elapsed_ms(start),
                details=f"Login page not accessible: HTTP {page.status}",
            )

        form = urlencode({"email": site.username, "password": site.password}).encode("utf-8")
        response = _send(
            _no_redirect_opener,
            urllib.request.Request(
                site.login_url,
                data=form,
                method="POST",
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "User-Agent": user_agent,
                    "Referer": site.login_url,
                },
            ),
            timeout,
        )
    except Exception as e:
        return TestOutcome(
            name=TestName.LOGIN,
            passed=False,
            response_time_ms=_elapsed_ms(start),
            error=_describe_error(e),
            details="Login test encountered an error",
        )

    is_success = is_login_successful(response.status, response.headers.get("Location"))
    session_token = extract_session_token(response.headers.get_all("Set-Cookie"))

    logger.debug(
        "Login POST returned %d (location=%s, cookies=%s)",
        response.status,
        response.headers.get("Location"),
        "yes" if session_token else "no",
    )

    return TestOutcome(
        name=TestName.LOGIN,
        passed=is_success,
        status_code=response.status,
        response_time_ms=_elapsed_ms(start),
        session_token=session_token,
        details="Login successful" if is_success else "Login failed - check credentials or form structure",
    )


def check_authenticated_access(config: Config, session_token: str | None) -> TestOutcome:
    """Fetch the protected page with the session cookie.

    Passes only on a 2xx whose final URL (after redirects) does not
    contain "login", so a silent redirect to the login page fails.
    """
    if not session_token:
        return TestOutcome(
            name=TestName.AUTHENTICATED_ACCESS,
            passed=False,
            details="No session cookie available from login",
        )

    protected_url = config.site.protected_url
    request = urllib.request.Request(
        protected_url,
        method="GET",
        headers={
            "Cookie": session_token,
            "User-Agent": config.monitor.user_agent,
        },
    )
    start = time.monotonic()

    try:
        response = _send(_opener, request, config.monitor.timeout_seconds)
    except Exception as e:
        return TestOutcome(
            name=TestName.AUTHENTICATED_ACCESS,
            passed=False,
            response_time_ms=_elapsed_ms(start),
            error=_describe_error(e),
            details="Failed to test authenticated access",
            tested_url=protected_url,
        )

    is_authenticated = response.ok and "login" not in response.url

    return TestOutcome(
        name=TestName.AUTHENTICATED_ACCESS,
        passed=is_authenticated,
        status_code=response.status,
        response_time_ms=_elapsed_ms(start),
        details=(
            "Successfully accessed protected page"
            if is_authenticated
            else f"Could not access protected page - redirected to: {response.url}"
        ),
        tested_url=protected_url,
        final_url=response.url,
    )


def check_session_cleanup(config: Config, session_token: str) -> TestOutcome:
    """Best-effort logout. Always passes; details say what actually happened."""
    request = urllib.request.Request(
        config.site.logout_url,
        data=b"",
        method="POST",
        headers={
            "Cookie": session_token,
            "User-Agent": config.monitor.user_agent,
        },
    )
    start = time.monotonic()

    try:
        response = _send(_no_redirect_opener, request, config.monitor.timeout_seconds)
    except Exception as e:
        error = _describe_error(e)
        logger.debug("Logout request failed: %s", error)
        return TestOutcome(
            name=TestName.SESSION_CLEANUP,
            passed=True,
            response_time_ms=_elapsed_ms(start),
            error=error,
            details=f"Logout request failed: {error}",
        )

    if response.status < 400:
        details = f"Logout successful (HTTP {response.status})"
    else:
        details = f"Logout returned HTTP {response.status}"

    return TestOutcome(
        name=TestName.SESSION_CLEANUP,
        passed=True,
        status_code=response.status,
        response_time_ms=_elapsed_ms(start),
        details=details,
    )


def _skipped(name: TestName) -> TestOutcome:
    return TestOutcome(name=name, passed=False, details=SKIPPED_DETAILS)


def compute_overall_status(outcomes: list[TestOutcome] | tuple[TestOutcome, ...]) -> OverallStatus:
    """PASS iff every outcome except Session Cleanup passed."""
    if not outcomes:
        return OverallStatus.UNKNOWN

    relevant = [outcome for outcome in outcomes if outcome.name is not TestName.SESSION_CLEANUP]
    if all(outcome.passed for outcome in relevant):
        return OverallStatus.PASS
    return OverallStatus.FAIL


def run_all_tests(config: Config, timestamp: datetime | None = None) -> CycleReport:
    """Run the probes in order and aggregate them into a report.

    Authenticated Access and Session Cleanup run only when the login
    produced a session token, whether or not the login itself passed.
    Otherwise both are recorded as skipped without any request.
    """
    outcomes: list[TestOutcome] = []

    logger.info("Testing connectivity...")
    outcomes.append(check_connectivity(config))

    logger.info("Testing login...")
    login = check_login(config)
    outcomes.append(login)

    if login.session_token:
        logger.info("Testing authenticated access...")
        outcomes.append(check_authenticated_access(config, login.session_token))

        logger.info("Cleaning up session...")
        outcomes.append(check_session_cleanup(config, login.session_token))
    else:
        outcomes.append(_skipped(TestName.AUTHENTICATED_ACCESS))
        outcomes.append(_skipped(TestName.SESSION_CLEANUP))

    return CycleReport(
        timestamp=timestamp or datetime.now(UTC),
        site_url=config.site.url,
        outcomes=tuple(outcomes),
        overall_status=compute_overall_status(outcomes),
    )


class Monitor:
    """Runs monitoring cycles once or on a cron schedule in a background thread.

    Example:
        monitor = Monitor(config, alerter)
        monitor.start()
        # ... later ...
        monitor.stop()
    """

    def __init__(self, config: Config, alerter: Alerter | None = None) -> None:
        """Initialize the monitor.

        Args:
            config: Application configuration.
            alerter: Notification dispatcher; built from the config if omitted.
        """
        self._config = config
        self._alerter = alerter if alerter is not None else Alerter(config.email, config.chat)
        self._trigger = CronTrigger.from_crontab(config.monitor.schedule, timezone=config.monitor.timezone)
        self._stop_event = Event()
        self._cycle_lock = Lock()
        self._thread: Thread | None = None

    def run_cycle(self) -> CycleReport:
        """Run one full cycle: probes, log report, notifications.

        Returns:
            The finished report (PASS or FAIL).

        Raises:
            Exception: Anything that escapes the probe sequence, after an
                ERROR report has been logged and the system-error
                notification dispatched.
        """
        timestamp = datetime.now(UTC)
        logger.info("Starting monitoring cycle at %s", timestamp.isoformat())

        try:
            report = run_all_tests(self._config, timestamp)
        except Exception as e:
            error_report = CycleReport(
                timestamp=timestamp,
                site_url=self._config.site.url,
                overall_status=OverallStatus.ERROR,
                error=str(e) or e.__class__.__name__,
            )
            logger.error("Monitoring cycle failed: %s", error_report.error)
            for line in format_error_log(error_report, traceback.format_exc()):
                logger.error("%s", line)
            self._alerter.send_error(error_report)
            raise

        for line in format_log_report(report):
            logger.info("%s", line)

        self._alerter.send_report(report)
        logger.info("Monitoring cycle completed. Status: %s", report.overall_status.value)
        return report

    def trigger(self) -> CycleReport | None:
        """Run a cycle unless one is already in progress.

        Cycle errors are logged and notified by run_cycle; here they are
        absorbed so the schedule keeps running.

        Returns:
            The report, or None if the cycle was skipped or raised.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous monitoring cycle still running, skipping this tick")
            return None

        try:
            return self.run_cycle()
        except Exception as e:
            logger.error("Scheduled monitoring cycle failed: %s", e)
            return None
        finally:
            self._cycle_lock.release()

    def next_run_time(self, now: datetime | None = None) -> datetime | None:
        """Next time the cron schedule fires after ``now``."""
        return self._trigger.get_next_fire_time(None, now or datetime.now(UTC))

    def start(self) -> None:
        """Start the scheduler loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Monitor already running")
            return

        self._stop_event.clear()
        self._thread = Thread(target=self._run_loop, daemon=True, name="monitor-loop")
        self._thread.start()
        logger.info("Monitor started with schedule '%s'", self._config.monitor.schedule)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the scheduler loop gracefully.

        A cycle already in flight is allowed to finish within ``timeout``.
        """
        if self._thread is None or not self._thread.is_alive():
            return

        logger.info("Stopping monitor...")
        self._stop_event.set()
        self._thread.join(timeout=timeout)

        if self._thread.is_alive():
            logger.warning("Monitor thread did not stop within timeout")
        else:
            logger.info("Monitor stopped")

    def is_running(self) -> bool:
        """Check if the scheduler loop is currently running."""
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        """Main scheduler loop - runs in background thread."""
        logger.debug("Monitor loop started")

        if self._config.monitor.run_on_start:
            self.trigger()

        last_run: datetime | None = None
        while not self._stop_event.is_set():
            now = datetime.now(UTC)
            after = now
            if last_run is not None and after <= last_run:
                # never fire the same tick twice
                after = last_run + timedelta(seconds=1)
            next_run = self.next_run_time(after)
            if next_run is None:
                logger.warning("Schedule '%s' has no further run times", self._config.monitor.schedule)
                break

            logger.info("Next monitoring cycle at %s", next_run.isoformat())
            delay = max((next_run - now).total_seconds(), 0.0)

            # wait() returns True when stop() was called
            if self._stop_event.wait(timeout=delay):
                break

            last_run = next_run
            self.trigger()

        logger.debug("Monitor loop exited")
