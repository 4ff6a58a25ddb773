"""sitemonitor - Scheduled availability and login monitoring for a website."""

import argparse
import logging
import signal
import sys
from threading import Event
from typing import Optional

__version__ = "1.0.0"

# Global shutdown event for signal handlers
_shutdown_event: Optional[Event] = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load_config_or_exit(config_path: Optional[str]):
    from .config import ConfigError, load_config

    try:
        return load_config(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - start the scheduled monitoring service."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("Website Monitor %s starting up...", __version__)

    # Import here to allow logging setup first
    from .alerter import Alerter
    from .monitor import Monitor

    # 1. Load and validate configuration before anything is scheduled
    config = _load_config_or_exit(args.config)
    logger.info("Schedule: %s (%s)", config.monitor.schedule, config.monitor.timezone)
    logger.info("Monitoring: %s", config.site.url)
    logger.info("Email recipients: %d", len(config.email.recipients))

    # 2. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    # 3. Initialize alerter
    alerter = Alerter(config.email, config.chat)
    if alerter.channels:
        logger.info("Notifications enabled: %s", ", ".join(alerter.channels))
    else:
        logger.info("No notification channels configured, logging only")

    # 4. Start scheduler
    monitor = Monitor(config, alerter)

    try:
        monitor.start()
        logger.info("Website Monitor is running, waiting for shutdown signal...")

        # 5. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        logger.info("Shutting down...")
        monitor.stop()
        logger.info("Shutdown complete")


def _cmd_check(args: argparse.Namespace) -> None:
    """Execute the check command - run a single monitoring cycle.

    Exits 0 whenever the cycle completes, whatever its PASS/FAIL status;
    only an orchestration error exits 1.
    """
    _setup_logging(args.verbose)

    from .alerter import Alerter
    from .monitor import Monitor

    config = _load_config_or_exit(args.config)
    monitor = Monitor(config, Alerter(config.email, config.chat))

    print("Running Website Monitor check")
    print("=" * 32)

    try:
        report = monitor.run_cycle()
    except Exception as e:
        print(f"\nCheck failed: {e}")
        sys.exit(1)

    print("\nTest Results Summary:")
    print("=" * 24)
    print(f"Overall Status: {report.overall_status.value}")
    print(f"Tests Run: {len(report.outcomes)}")
    print(f"Passed: {report.passed_count}")
    print(f"Failed: {report.failed_count}")

    print("\nDetailed Results:")
    for outcome in report.outcomes:
        status = "✓ PASS" if outcome.passed else "✗ FAIL"
        print(f"\n{outcome.name.value}: {status}")
        if outcome.details:
            print(f"  Details: {outcome.details}")
        if outcome.error:
            print(f"  Error: {outcome.error}")
        if outcome.response_time_ms is not None:
            print(f"  Response Time: {outcome.response_time_ms}ms")

    print("\nCheck completed")


def _cmd_test_alert(args: argparse.Namespace) -> None:
    """Execute the test-alert command - verify notification channels."""
    _setup_logging()

    from .alerter import Alerter

    config = _load_config_or_exit(args.config)
    alerter = Alerter(config.email, config.chat)

    if not alerter.channels:
        print("Error: No notification channels configured (email or chat webhook)")
        sys.exit(1)

    print(f"Testing {len(alerter.channels)} channel(s)...\n")

    results = alerter.test_channels()

    success_count = sum(1 for success in results.values() if success)
    total_count = len(results)

    for channel, success in results.items():
        status = "✓ SUCCESS" if success else "✗ FAILED"
        print(f"{status}: {channel}")

    print(f"\nResult: {success_count}/{total_count} channels successful")

    if success_count < total_count:
        sys.exit(1)


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to an optional YAML configuration file (environment variables take precedence)",
    )


def main() -> None:
    """Main entry point for the sitemonitor package."""
    parser = argparse.ArgumentParser(
        description="Website Monitor - scheduled availability and login checks"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"sitemonitor {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Start the scheduled monitoring service (default)",
    )
    _add_config_argument(run_parser)
    run_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    run_parser.set_defaults(func=_cmd_run)

    # Check subcommand
    check_parser = subparsers.add_parser(
        "check",
        help="Run a single monitoring cycle and exit",
    )
    _add_config_argument(check_parser)
    check_parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )
    check_parser.set_defaults(func=_cmd_check)

    # Test-alert subcommand
    test_alert_parser = subparsers.add_parser(
        "test-alert",
        help="Send a test notification to every configured channel",
    )
    _add_config_argument(test_alert_parser)
    test_alert_parser.set_defaults(func=_cmd_test_alert)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = None
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
