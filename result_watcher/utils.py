"""
Utility functions for the Result Watcher pipeline.

This module provides:
- Central logging configuration
- Watcher configuration loading from the environment
- Safe JSON read/write helpers
- Shared helper utilities used across modules
"""

import json
import logging
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urljoin, urlparse


# Default configuration values
DEFAULT_RESULTS_URL = "https://skcet.ac.in/exams/results/"
DEFAULT_POLL_INTERVAL_SECONDS = 300
DEFAULT_SUBJECT_DELAY_SECONDS = 2.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_ELEMENT_TIMEOUT_SECONDS = 10.0
DEFAULT_DATA_PATH = "data/subjects.json"

_TRUTHY = ("true", "1", "yes")


@dataclass
class WatcherConfig:
    """
    Runtime configuration for the watcher process.

    Attributes:
        results_url: URL of the upstream results page.
        poll_interval_seconds: Seconds between scheduled poll cycles.
        subject_delay_seconds: Pause between two subjects within a cycle.
        request_timeout_seconds: Timeout for network and navigation steps.
        element_timeout_seconds: Timeout for waiting on form elements.
        data_path: Path of the JSON file backing the subject store.
        headless: Whether the browser runs headless.
        run_once: Run a single cycle and exit instead of scheduling.
        dry_run: Log notifications instead of sending them.
        retry_notifications: Retry failed release notifications each cycle.
    """
    results_url: str = DEFAULT_RESULTS_URL
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    subject_delay_seconds: float = DEFAULT_SUBJECT_DELAY_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    element_timeout_seconds: float = DEFAULT_ELEMENT_TIMEOUT_SECONDS
    data_path: str = DEFAULT_DATA_PATH
    headless: bool = True
    run_once: bool = False
    dry_run: bool = False
    retry_notifications: bool = True


def load_watcher_config() -> WatcherConfig:
    """
    Build a WatcherConfig from environment variables.

    Unset variables keep their defaults. Numeric variables that cannot be
    parsed are logged and replaced by their default.

    Returns:
        Populated WatcherConfig.

    Raises:
        ValueError: If RESULTS_URL is set but is not an HTTP(S) URL.
    """
    results_url = get_env_var("RESULTS_URL", required=False, default=DEFAULT_RESULTS_URL)
    assert results_url is not None

    if not validate_url(results_url):
        raise ValueError(f"RESULTS_URL is not a valid http(s) URL: {results_url}")

    return WatcherConfig(
        results_url=results_url,
        poll_interval_seconds=_get_float_env("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
        subject_delay_seconds=_get_float_env("SUBJECT_DELAY_SECONDS", DEFAULT_SUBJECT_DELAY_SECONDS),
        request_timeout_seconds=_get_float_env("REQUEST_TIMEOUT_SECONDS", DEFAULT_REQUEST_TIMEOUT_SECONDS),
        element_timeout_seconds=_get_float_env("ELEMENT_TIMEOUT_SECONDS", DEFAULT_ELEMENT_TIMEOUT_SECONDS),
        data_path=get_env_var("DATA_PATH", required=False, default=DEFAULT_DATA_PATH) or DEFAULT_DATA_PATH,
        headless=get_bool_env("HEADLESS", default=True),
        run_once=get_bool_env("RUN_ONCE", default=False),
        dry_run=get_bool_env("DRY_RUN", default=False),
        retry_notifications=get_bool_env("RETRY_NOTIFICATIONS", default=True),
    )


def _get_float_env(name: str, default: float) -> float:
    """Read a non-negative float from the environment, falling back to default."""
    raw = get_env_var(name, required=False)
    if raw is None:
        return default

    try:
        value = float(raw)
    except ValueError:
        get_logger("utils").warning(f"Invalid value for {name}: {raw!r}, using default {default}")
        return default

    if value < 0:
        get_logger("utils").warning(f"Negative value for {name}: {raw!r}, using default {default}")
        return default

    return value


def get_bool_env(name: str, default: bool = False) -> bool:
    """Interpret an environment variable as a boolean flag."""
    raw = get_env_var(name, required=False)
    if raw is None:
        return default
    return raw.lower() in _TRUTHY


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure and return the root logger for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Defaults to INFO.

    Returns:
        Configured logger instance.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger("result_watcher")
    logger.setLevel(log_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Name for the logger, typically the module name.

    Returns:
        Logger instance configured as a child of the main application logger.
    """
    return logging.getLogger(f"result_watcher.{name}")


def safe_read_json(filepath: str, default: Optional[Any] = None) -> Any:
    """
    Safely read JSON data from a file.

    Args:
        filepath: Path to the JSON file.
        default: Value to return if the file doesn't exist or is invalid.

    Returns:
        Parsed JSON data or the default value on failure.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        if not path.exists():
            logger.debug(f"File does not exist: {filepath}, returning default")
            return default

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
            logger.debug(f"Successfully read JSON from {filepath}")
            return data

    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in {filepath}: {e}")
        return default
    except PermissionError as e:
        logger.error(f"Permission denied reading {filepath}: {e}")
        return default
    except OSError as e:
        logger.error(f"Unexpected error reading {filepath}: {e}")
        return default


def safe_write_json(filepath: str, data: Any, indent: int = 2) -> bool:
    """
    Safely write JSON data to a file using atomic write operation.

    Uses a temporary file and atomic rename to prevent data corruption
    if the write operation is interrupted.

    Args:
        filepath: Path to the JSON file.
        data: Data to serialize as JSON.
        indent: JSON indentation level. Defaults to 2.

    Returns:
        True if write was successful, False otherwise.
    """
    logger = get_logger("utils")

    try:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            suffix=".json",
            prefix="subjects_",
            dir=path.parent
        )

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=indent, ensure_ascii=False)

            # Atomic rename (on POSIX) or copy+delete (on Windows)
            shutil.move(temp_path, filepath)
            logger.debug(f"Successfully wrote JSON to {filepath}")
            return True

        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    except PermissionError as e:
        logger.error(f"Permission denied writing {filepath}: {e}")
        return False
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Unexpected error writing {filepath}: {e}")
        return False


def get_env_var(name: str, required: bool = True, default: Optional[str] = None) -> Optional[str]:
    """
    Get an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable.
        required: If True, raises ValueError when variable is not set.
                  Defaults to True.
        default: Default value if variable is not set and not required.

    Returns:
        Value of the environment variable or default.

    Raises:
        ValueError: If required=True and the variable is not set.
    """
    value = os.environ.get(name)

    if value is None or value.strip() == "":
        if required:
            raise ValueError(f"Required environment variable '{name}' is not set")
        return default

    return value.strip()


def validate_url(url: str) -> bool:
    """
    Validate that a URL is well-formed and uses HTTP/HTTPS.

    Args:
        url: URL string to validate.

    Returns:
        True if URL is valid, False otherwise.
    """
    try:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    except ValueError:
        return False


def normalize_url(url: str, base_url: str) -> str:
    """
    Normalize a potentially relative URL to an absolute URL.

    Args:
        url: The URL to normalize (may be relative or absolute).
        base_url: The base URL to use for resolving relative URLs.

    Returns:
        Absolute URL string.
    """
    parsed = urlparse(url)
    if parsed.scheme and parsed.netloc:
        return url

    return urljoin(base_url, url)
