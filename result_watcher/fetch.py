"""
Fetch module for the Result Watcher pipeline.

This module retrieves the results page for a subject and classifies it.
Two acquisition strategies are tried in a fixed order:

1. rendered-dom: a headless Chromium session driven by Playwright, for
   pages that need client-side script to show the form or the result.
2. static-http: a plain requests session that replays the page's form.

The first strategy that returns markup wins; its markup is then handed to
the availability classifier.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import requests
from bs4 import BeautifulSoup, Tag
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from result_watcher.classify import DEFAULT_CLASSIFIER_CONFIG, ClassifierConfig, is_result_available
from result_watcher.utils import (
    DEFAULT_ELEMENT_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RESULTS_URL,
    get_logger,
    normalize_url,
)


# Module logger
logger = get_logger("fetch")

DEFAULT_MAX_RETRIES = 1
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Selector candidates, highest priority first
ROLL_NUMBER_SELECTORS = [
    'input[name="rollno"]',
    'input[name*="roll" i]',
    'input[id*="roll" i]',
    'input[type="text"]',
]
DOB_SELECTORS = [
    'input[name="dob"]',
    'input[name*="dob" i]',
    'input[name*="date" i]',
    'input[id*="dob" i]',
    'input[type="date"]',
]
SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    "button",
]

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


class AcquisitionError(Exception):
    """Raised when a strategy cannot retrieve the results page."""

    def __init__(self, message: str, strategy: Optional[str] = None):
        super().__init__(message)
        self.strategy = strategy


@dataclass
class FetchOutcome:
    """
    Result of checking one subject against the results page.

    Attributes:
        available: Whether the page shows a released result.
        markup: Page markup when available, None otherwise.
        error: Last acquisition error if every strategy failed.
        strategy: Name of the strategy that acquired the page.
    """
    available: bool
    markup: Optional[str] = None
    error: Optional[str] = None
    strategy: Optional[str] = None


def normalize_dob(dob: str) -> str:
    """
    Convert DD-MM-YYYY or DD/MM/YYYY to YYYY-MM-DD.

    Anything that is not a three-part date with a four-digit year in the
    last position is returned unchanged.

    Args:
        dob: Date of birth as registered.

    Returns:
        Normalized date string.
    """
    if not dob:
        return dob

    for separator in ("-", "/"):
        if separator in dob:
            parts = dob.split(separator)
            if len(parts) == 3 and len(parts[2]) == 4:
                return f"{parts[2]}-{parts[1]}-{parts[0]}"
            return dob

    return dob


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    user_agent: str = DEFAULT_USER_AGENT
) -> requests.Session:
    """
    Create a requests session with browser-like headers.

    Failed connections are retried immediately, without backoff; the poll
    cadence is the only backoff.

    Args:
        max_retries: Maximum number of connection retry attempts.
        user_agent: User-Agent header value.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        connect=max_retries,
        read=0,
        status=0,
        backoff_factor=0,
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    })

    return session


class RenderedDomStrategy:
    """Acquire the results page by driving a headless browser."""

    name = "rendered-dom"

    def __init__(
        self,
        results_url: str = DEFAULT_RESULTS_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        element_timeout: float = DEFAULT_ELEMENT_TIMEOUT_SECONDS,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT
    ):
        self.results_url = results_url
        self.timeout_ms = int(timeout * 1000)
        self.element_timeout_ms = int(element_timeout * 1000)
        self.headless = headless
        self.user_agent = user_agent

    def acquire(self, roll_number: str, normalized_dob: str) -> str:
        """
        Fill and submit the query form, returning the rendered page.

        Raises:
            AcquisitionError: On launch, navigation, timeout or missing form.
        """
        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch(headless=self.headless, args=BROWSER_ARGS)
                try:
                    context = browser.new_context(user_agent=self.user_agent)
                    page = context.new_page()
                    return self._submit_query(page, roll_number, normalized_dob)
                finally:
                    browser.close()
        except AcquisitionError:
            raise
        except PlaywrightError as e:
            raise AcquisitionError(f"Browser error: {e}", strategy=self.name) from e

    def _submit_query(self, page, roll_number: str, normalized_dob: str) -> str:
        page.goto(self.results_url, wait_until="networkidle", timeout=self.timeout_ms)
        page.wait_for_selector(", ".join(ROLL_NUMBER_SELECTORS), timeout=self.element_timeout_ms)

        roll_input = _first_match(page, ROLL_NUMBER_SELECTORS)
        if roll_input is None:
            raise AcquisitionError("Roll number field not found", strategy=self.name)
        roll_input.fill(roll_number)

        dob_input = _first_match(page, DOB_SELECTORS)
        if dob_input is not None:
            dob_input.fill(normalized_dob)
        else:
            logger.debug("No date of birth field found on results page")

        submit = _first_match(page, SUBMIT_SELECTORS)
        try:
            with page.expect_navigation(wait_until="networkidle", timeout=self.element_timeout_ms):
                if submit is not None:
                    submit.click()
                else:
                    roll_input.press("Enter")
        except PlaywrightTimeoutError:
            # Forms that update in place never navigate
            logger.debug("No navigation after submit, waiting for the page to settle")
            page.wait_for_load_state("networkidle", timeout=self.timeout_ms)

        return page.content()


def _first_match(page, selectors: Sequence[str]):
    """Return the element for the first selector that matches, or None."""
    for selector in selectors:
        element = page.query_selector(selector)
        if element is not None:
            return element
    return None


class StaticHttpStrategy:
    """Acquire the results page by replaying its HTML form over HTTP."""

    name = "static-http"

    def __init__(
        self,
        results_url: str = DEFAULT_RESULTS_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        self.results_url = results_url
        self.timeout = timeout
        self.session = session

    def acquire(self, roll_number: str, normalized_dob: str) -> str:
        """
        Fetch the form, submit it with detected field names, return the body.

        Raises:
            AcquisitionError: On HTTP errors, timeouts or connection failures.
        """
        session = self.session or create_session()
        try:
            form_page = self._request(session, "GET", self.results_url)
            soup = BeautifulSoup(form_page.text, "html.parser")
            form = soup.find("form")

            action_url, method = resolve_form_target(form, self.results_url)
            payload = build_form_payload(form or soup, roll_number, normalized_dob)
            logger.debug(f"Submitting {method} {action_url} with fields {sorted(payload)}")

            if method == "GET":
                response = self._request(session, "GET", action_url, params=payload)
            else:
                response = self._request(session, "POST", action_url, data=payload)
            return response.text
        finally:
            if self.session is None:
                session.close()

    def _request(self, session: requests.Session, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise AcquisitionError(f"Request timeout for {url}", strategy=self.name) from e
        except requests.exceptions.ConnectionError as e:
            raise AcquisitionError(f"Connection error: {e}", strategy=self.name) from e
        except requests.exceptions.RequestException as e:
            raise AcquisitionError(f"Request failed: {e}", strategy=self.name) from e

        if not 200 <= response.status_code < 300:
            raise AcquisitionError(f"HTTP {response.status_code} for {url}", strategy=self.name)
        return response


def resolve_form_target(form: Optional[Tag], page_url: str):
    """
    Work out where and how a form submits.

    Args:
        form: The form element, or None if the page has none.
        page_url: URL the form was loaded from.

    Returns:
        Tuple of (absolute action URL, upper-case HTTP method).
    """
    if form is None:
        return page_url, "POST"

    action = (form.get("action") or "").strip()
    method = (form.get("method") or "POST").strip().upper()
    if method not in ("GET", "POST"):
        method = "POST"

    action_url = normalize_url(action, page_url) if action else page_url
    return action_url, method


def build_form_payload(container: Tag, roll_number: str, normalized_dob: str) -> Dict[str, str]:
    """
    Synthesize form fields for a results query.

    Inputs named like "roll" get the roll number, inputs named like "dob" or
    "date" (or typed as date) get the date. Hidden inputs keep their values.

    Args:
        container: Form element (or whole document) holding the inputs.
        roll_number: Roll number to submit.
        normalized_dob: Date of birth as YYYY-MM-DD.

    Returns:
        Mapping of field name to value.
    """
    payload: Dict[str, str] = {}
    text_inputs: List[str] = []
    roll_found = False
    dob_found = False

    for element in container.find_all("input"):
        name = (element.get("name") or "").strip()
        if not name:
            continue
        input_type = (element.get("type") or "text").lower()
        lowered = name.lower()

        if "roll" in lowered:
            payload[name] = roll_number
            roll_found = True
        elif "dob" in lowered or "date" in lowered or input_type == "date":
            payload[name] = normalized_dob
            dob_found = True
        elif input_type == "hidden":
            payload[name] = element.get("value") or ""
        elif input_type == "text":
            text_inputs.append(name)

    if not roll_found:
        field_name = text_inputs[0] if text_inputs else "rollno"
        payload[field_name] = roll_number
    if not dob_found:
        payload["dob"] = normalized_dob

    return payload


class ResultFetcher:
    """
    Check a subject's result using strategy fallback and classification.

    Strategies are tried in order; a failure moves on to the next one.
    """

    def __init__(
        self,
        results_url: str = DEFAULT_RESULTS_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        element_timeout: float = DEFAULT_ELEMENT_TIMEOUT_SECONDS,
        headless: bool = True,
        strategies: Optional[Sequence] = None,
        classifier_config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG
    ):
        if strategies is None:
            strategies = [
                RenderedDomStrategy(results_url, timeout, element_timeout, headless=headless),
                StaticHttpStrategy(results_url, timeout),
            ]
        self.strategies = list(strategies)
        self.classifier_config = classifier_config

    def fetch(self, roll_number: str, dob: str) -> FetchOutcome:
        """
        Check whether the result for a subject is available.

        Args:
            roll_number: Subject roll number.
            dob: Date of birth as registered.

        Returns:
            FetchOutcome; never raises for acquisition failures.
        """
        normalized_dob = normalize_dob(dob)
        last_error: Optional[str] = None

        for strategy in self.strategies:
            try:
                markup = strategy.acquire(roll_number, normalized_dob)
            except AcquisitionError as e:
                last_error = str(e)
                logger.warning(f"[{roll_number}] {strategy.name} failed: {e}")
                continue
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning(f"[{roll_number}] {strategy.name} raised unexpectedly: {last_error}")
                continue

            available = is_result_available(markup, self.classifier_config)
            logger.info(
                f"[{roll_number}] {strategy.name} fetched {len(markup or '')} bytes, "
                f"available={available}"
            )
            return FetchOutcome(
                available=available,
                markup=markup if available else None,
                strategy=strategy.name
            )

        logger.error(f"[{roll_number}] All fetch strategies failed: {last_error}")
        return FetchOutcome(available=False, markup=None, error=last_error)
