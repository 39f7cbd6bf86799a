"""Tests for CLI formatting helpers."""

from datetime import datetime, timezone

import pytest

from sessiond.formatting import format_time_ago, shorten

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestFormatTimeAgo:
    """Test relative time formatting."""

    @pytest.mark.parametrize(
        "timestamp,expected",
        [
            ("2026-03-01T11:59:30Z", "Just now"),
            ("2026-03-01T11:59:00Z", "1 minute ago"),
            ("2026-03-01T11:15:00Z", "45 minutes ago"),
            ("2026-03-01T10:00:00+00:00", "2 hours ago"),
            ("2026-02-28T12:00:00Z", "1 day ago"),
            ("2026-02-20T12:00:00Z", "9 days ago"),
        ],
    )
    def test_relative_times(self, timestamp, expected):
        assert format_time_ago(timestamp, now=NOW) == expected

    @pytest.mark.parametrize("timestamp", [None, ""])
    def test_missing_timestamp(self, timestamp):
        assert format_time_ago(timestamp) == "Never"


class TestShorten:
    """Test truncation."""

    def test_short_text_unchanged(self):
        assert shorten("SID~abc", 10) == "SID~abc"

    def test_long_text_truncated(self):
        assert shorten("https://store.example/file/AbC123", 12) == "https://s..."

    def test_tiny_width(self):
        assert shorten("abcdef", 2) == "..."
