"""
Tests for the utils module.

Tests cover:
- Watcher configuration from the environment
- Environment variable helpers
- Safe JSON read/write helpers
- URL helpers
"""

import os
from unittest.mock import patch

import pytest

from result_watcher.utils import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RESULTS_URL,
    get_bool_env,
    get_env_var,
    load_watcher_config,
    normalize_url,
    safe_read_json,
    safe_write_json,
    validate_url,
)


class TestLoadWatcherConfig:
    """Tests for configuration loading."""

    def test_defaults(self):
        """Test that an empty environment gives the documented defaults."""
        with patch.dict(os.environ, {}, clear=True):
            config = load_watcher_config()

        assert config.results_url == DEFAULT_RESULTS_URL
        assert config.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
        assert config.subject_delay_seconds == 2.0
        assert config.request_timeout_seconds == 30.0
        assert config.element_timeout_seconds == 10.0
        assert config.data_path == "data/subjects.json"
        assert config.headless is True
        assert config.run_once is False
        assert config.retry_notifications is True

    def test_overrides(self):
        """Test that environment variables override defaults."""
        env = {
            "RESULTS_URL": "https://exams.example.edu/results/",
            "POLL_INTERVAL_SECONDS": "60",
            "SUBJECT_DELAY_SECONDS": "0.5",
            "HEADLESS": "false",
            "RUN_ONCE": "yes",
            "DATA_PATH": "/tmp/watch.json",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_watcher_config()

        assert config.results_url == "https://exams.example.edu/results/"
        assert config.poll_interval_seconds == 60.0
        assert config.subject_delay_seconds == 0.5
        assert config.headless is False
        assert config.run_once is True
        assert config.data_path == "/tmp/watch.json"

    def test_invalid_number_falls_back(self):
        """Test that unparsable numbers keep their default."""
        with patch.dict(os.environ, {"POLL_INTERVAL_SECONDS": "soon"}, clear=True):
            config = load_watcher_config()

        assert config.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS

    def test_invalid_url_raises(self):
        """Test that a non-HTTP results URL is rejected."""
        with patch.dict(os.environ, {"RESULTS_URL": "ftp://example.com"}, clear=True):
            with pytest.raises(ValueError, match="RESULTS_URL"):
                load_watcher_config()


class TestEnvHelpers:
    """Tests for environment helpers."""

    def test_required_missing(self):
        """Test that a missing required variable raises."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError, match="MISSING_VAR"):
                get_env_var("MISSING_VAR")

    def test_blank_is_missing(self):
        """Test that blank values count as unset."""
        with patch.dict(os.environ, {"BLANK": "   "}, clear=True):
            assert get_env_var("BLANK", required=False, default="x") == "x"

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("YES", True), ("no", False)])
    def test_bool_env(self, raw, expected):
        """Test boolean flag parsing."""
        with patch.dict(os.environ, {"FLAG": raw}, clear=True):
            assert get_bool_env("FLAG") is expected


class TestJsonHelpers:
    """Tests for safe JSON helpers."""

    def test_write_then_read(self, tmp_path):
        """Test that written data reads back, creating parent directories."""
        path = str(tmp_path / "nested" / "data.json")

        assert safe_write_json(path, {"subjects": []}) is True
        assert safe_read_json(path) == {"subjects": []}

    def test_read_missing_returns_default(self, tmp_path):
        """Test the default for a missing file."""
        assert safe_read_json(str(tmp_path / "missing.json"), default={"a": 1}) == {"a": 1}

    def test_read_invalid_returns_default(self, tmp_path):
        """Test the default for invalid JSON."""
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")

        assert safe_read_json(str(path)) is None

    def test_write_unserializable_fails(self, tmp_path):
        """Test that unserializable data reports failure and leaves no temp file."""
        assert safe_write_json(str(tmp_path / "x.json"), {"bad": object()}) is False
        assert list(tmp_path.iterdir()) == []


class TestUrlHelpers:
    """Tests for URL helpers."""

    def test_validate_url(self):
        """Test URL validation."""
        assert validate_url("https://example.com/results") is True
        assert validate_url("ftp://example.com") is False
        assert validate_url("not-a-url") is False

    def test_normalize_relative(self):
        """Test resolving a relative URL."""
        assert normalize_url("check.php", "https://example.com/results/") == "https://example.com/results/check.php"

    def test_normalize_absolute(self):
        """Test that absolute URLs are unchanged."""
        assert normalize_url("https://other.example.com/x", "https://example.com/") == "https://other.example.com/x"
