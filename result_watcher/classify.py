"""
Classify module for the Result Watcher pipeline.

Decides whether a fetched results page actually contains a result. The
check is a keyword heuristic tuned against one upstream page, so the
signal sets and thresholds are kept in a config object.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from bs4 import BeautifulSoup

from result_watcher.utils import get_logger


# Module logger
logger = get_logger("classify")

# Words that appear on a page showing a result
POSITIVE_SIGNALS = frozenset([
    "result",
    "cgpa",
    "gpa",
    "marks",
    "grade",
    "passed",
    "failed",
    "percentage",
    "subject",
    "semester",
    "total",
])

# Phrases the upstream shows when no result exists for the query
NEGATIVE_SIGNALS = frozenset([
    "no result found",
    "result not found",
    "invalid roll number",
    "invalid date of birth",
    "please check your details",
])

DEFAULT_MIN_LENGTH = 5000


@dataclass(frozen=True)
class ClassifierConfig:
    """
    Tuning for the availability heuristic.

    Attributes:
        positive_signals: At least one must occur in the page.
        negative_signals: None may occur in the page.
        min_length: Pages longer than this count as structurally
                    corroborated even without a table.
    """
    positive_signals: FrozenSet[str] = field(default=POSITIVE_SIGNALS)
    negative_signals: FrozenSet[str] = field(default=NEGATIVE_SIGNALS)
    min_length: int = DEFAULT_MIN_LENGTH


DEFAULT_CLASSIFIER_CONFIG = ClassifierConfig()


def has_positive_signal(text: str, config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG) -> bool:
    """Check lower-cased text for any positive signal."""
    return any(signal in text for signal in config.positive_signals)


def has_negative_signal(text: str, config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG) -> bool:
    """Check lower-cased text for any negative signal."""
    return any(signal in text for signal in config.negative_signals)


def has_result_table(markup: str) -> bool:
    """
    Check whether the markup contains at least one table element.

    Args:
        markup: Raw HTML.

    Returns:
        True if a <table> element is present.
    """
    try:
        soup = BeautifulSoup(markup, "html.parser")
    except Exception as e:
        logger.debug(f"Could not parse markup for table check: {e}")
        return False
    return soup.find("table") is not None


def is_result_available(
    markup: Optional[str],
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG
) -> bool:
    """
    Decide whether a page shows a released result.

    All three conditions must hold:
    1. A positive signal is present.
    2. No negative signal is present.
    3. The page has a table, or is longer than config.min_length.

    Never raises; anything unexpected classifies as not available.

    Args:
        markup: Raw HTML of the page after the query was submitted.
        config: Signal sets and thresholds.

    Returns:
        True if the result appears to be available.
    """
    if not markup or not isinstance(markup, str):
        return False

    text = markup.lower()

    if not has_positive_signal(text, config):
        logger.debug("No result signal found in page")
        return False

    if has_negative_signal(text, config):
        logger.debug("Page contains a not-found message")
        return False

    if has_result_table(markup) or len(text) > config.min_length:
        return True

    logger.debug(f"Result signal not corroborated (no table, {len(text)} chars)")
    return False
