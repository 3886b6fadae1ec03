"""Main entry point for the ProjectFlow notification service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional, Tuple

from notifier.application import ApplicationContext, build_application
from notifier.config.environment import EnvironmentConfig
from notifier.config.exceptions import ConfigurationError
from notifier.config.loader import load_config, validate_config_file
from notifier.config.models import AppConfig
from notifier.logging import get_logger
from notifier.logging.config import configure_logging
from notifier.persistence.exceptions import DatabaseConnectionError
from notifier.scheduler.jobs import MANUAL_CHECKS

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > environment > config file > INFO.

    Args:
        config_path: Path to configuration file (None searches the defaults)
        log_level_override: Log level from CLI (takes precedence)

    Returns:
        Tuple of (AppConfig, EnvironmentConfig)

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif env_config.log_level:
        pass
    elif app_config.logging and app_config.logging.level:
        env_config.log_level = app_config.logging.level
    else:
        env_config.log_level = "INFO"

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ProjectFlow notifier - scheduled reminders, compliance alerts and notification delivery"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--run-check",
        metavar="KIND",
        choices=sorted(MANUAL_CHECKS),
        help=f"Run one job body immediately and exit ({', '.join(sorted(MANUAL_CHECKS))})",
    )
    mode.add_argument(
        "--status",
        action="store_true",
        help="Print the job table with next run times as JSON and exit",
    )
    mode.add_argument(
        "--init-settings",
        action="store_true",
        help="Create default report settings for every organization lacking them and exit",
    )
    mode.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    return parser


def run_check(context: ApplicationContext, kind: str) -> int:
    """Run one manual check; non-zero exit status when the job body fails."""
    try:
        result = context.scheduler.run_manual_check(kind)
    except Exception as e:
        print(f"Check '{kind}' failed: {e}", file=sys.stderr)
        return 1

    summary = result.to_dict() if hasattr(result, "to_dict") else result
    print(json.dumps(summary, indent=2, default=str))
    return 0


def run_daemon(context: ApplicationContext, shutdown_event: threading.Event) -> int:
    """Run the scheduler in the foreground until SIGINT/SIGTERM."""
    scheduler_service = context.scheduler

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler_service.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler_service.start()

    logger.info(
        "Scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )
        scheduler_service.shutdown(wait=False)

    return 0


def main(argv=None) -> int:
    """
    Main entry point for the notification service.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    if args.validate_config:
        if args.config is None:
            print("--validate-config requires --config PATH", file=sys.stderr)
            return 2
        return 0 if validate_config_file(args.config) else 1

    context = None
    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=env_config.environment,
        )

        logger.info(
            "ProjectFlow notifier starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "run_check": args.run_check,
            },
        )

        shutdown_event = threading.Event()
        context = build_application(app_config, env_config, shutdown_event=shutdown_event)

        if args.run_check:
            return run_check(context, args.run_check)

        if args.status:
            context.scheduler.initialize()
            print(json.dumps(context.scheduler.get_status(), indent=2, default=str))
            return 0

        if args.init_settings:
            created = context.reminder_engine.initialize_all_report_settings()
            print(f"Initialized report settings for {created} organization(s)")
            return 0

        return run_daemon(context, shutdown_event)

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except DatabaseConnectionError as e:
        print(f"Database Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1
    finally:
        if context is not None:
            context.close()
            logger.info(
                "ProjectFlow notifier stopped",
                extra={
                    "event": "service.stopping",
                    "uptime_seconds": round(time.time() - start_time, 2),
                },
            )


if __name__ == "__main__":
    sys.exit(main())
