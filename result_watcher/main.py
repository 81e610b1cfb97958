#!/usr/bin/env python3
"""
Main entry point for the Result Watcher process.

Wires the store, fetcher, notification dispatcher and scheduler together,
then either runs a single cycle (RUN_ONCE) or polls until interrupted.
"""

import os
import sys
import threading

from result_watcher.fetch import ResultFetcher
from result_watcher.notify import NotificationDispatcher, notification_channels_status
from result_watcher.scheduler import PollScheduler
from result_watcher.store import JsonSubjectStore
from result_watcher.utils import WatcherConfig, get_logger, load_watcher_config, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2


def build_scheduler(config: WatcherConfig) -> PollScheduler:
    """
    Build a scheduler and its collaborators from configuration.

    Args:
        config: Watcher configuration.

    Returns:
        Ready-to-start PollScheduler.

    Raises:
        ValueError: If channel configuration is invalid.
    """
    logger = get_logger("main")

    store = JsonSubjectStore(config.data_path)
    fetcher = ResultFetcher(
        results_url=config.results_url,
        timeout=config.request_timeout_seconds,
        element_timeout=config.element_timeout_seconds,
        headless=config.headless
    )
    dispatcher = NotificationDispatcher.from_env(dry_run=config.dry_run)

    channels = notification_channels_status(dispatcher)
    logger.info(f"Notification channels: {channels}")
    if not any(channels.values()):
        logger.warning("No notification channel configured, releases will only be recorded")

    if not config.dry_run:
        for channel in (dispatcher.messaging, dispatcher.mail):
            if channel is not None and not channel.check_connection():
                logger.warning(f"{channel.name} connection check failed, notifications may fail")

    return PollScheduler(
        store,
        fetcher,
        dispatcher,
        poll_interval_seconds=config.poll_interval_seconds,
        subject_delay_seconds=config.subject_delay_seconds,
        retry_notifications=config.retry_notifications
    )


def run(config: WatcherConfig) -> int:
    """
    Run the watcher with the given configuration.

    Args:
        config: Watcher configuration.

    Returns:
        Exit code.
    """
    logger = get_logger("main")

    try:
        scheduler = build_scheduler(config)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    if config.run_once:
        logger.info("Running a single result check cycle")
        scheduler.trigger_manual()
        return EXIT_SUCCESS

    logger.info(f"Watching {config.results_url} (data: {config.data_path})")
    scheduler.start()
    try:
        threading.Event().wait()
    finally:
        scheduler.stop()

    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the Result Watcher.

    Sets up logging and runs the watcher with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    try:
        config = load_watcher_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_ENV_ERROR

    if config.dry_run:
        logger.info("Running in DRY RUN mode - notifications will be logged, not sent")

    try:
        return run(config)

    except KeyboardInterrupt:
        logger.warning("Watcher interrupted by user")
        return EXIT_SUCCESS

    except Exception as e:
        logger.exception(f"Unexpected error in watcher: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
