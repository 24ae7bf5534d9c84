from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from podforge_studio.infrastructure.text.formatting import (
    format_date,
    format_duration,
    format_relative_time,
    safe_filename,
    truncate_text,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def ago(**delta) -> str:
    return (NOW - timedelta(**delta)).strftime("%Y-%m-%dT%H:%M:%S")


@pytest.mark.parametrize(
    "seconds, expected",
    [(None, "0:00"), (0, "0:00"), (59, "0:59"), (61.7, "1:01"), (3600, "60:00"), (-4, "0:00")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.mark.parametrize(
    "delta, expected",
    [
        ({"seconds": 20}, "Just now"),
        ({"minutes": 5}, "5m ago"),
        ({"hours": 3}, "3h ago"),
        ({"days": 2}, "2d ago"),
    ],
)
def test_format_relative_time(delta, expected):
    assert format_relative_time(ago(**delta), now=NOW) == expected


def test_relative_time_edge_cases():
    assert format_relative_time(ago(days=30), now=NOW) == "Feb 14, 2024"
    assert format_relative_time((NOW + timedelta(seconds=30)).isoformat(), now=NOW) == "Just now"
    assert format_relative_time((NOW + timedelta(days=2)).isoformat(), now=NOW) == "Recently"
    assert format_relative_time("not a date", now=NOW) == "Recently"


def test_naive_timestamps_are_utc():
    assert format_relative_time("2024-03-15T11:00:00", now=NOW) == "1h ago"
    assert format_relative_time("2024-03-15T11:00:00Z", now=NOW) == "1h ago"
    assert format_relative_time("2024-03-15T13:00:00+02:00", now=NOW) == "1h ago"


def test_format_date():
    assert format_date("2024-01-05T10:00:00Z") == "Jan 5, 2024"
    assert format_date("garbage") == "garbage"


def test_truncate_and_safe_filename():
    assert truncate_text("short", 10) == "short"
    assert truncate_text("a" * 12, 10) == "a" * 10 + "..."
    assert safe_filename("My Show #1") == "My_Show__1.mp3"
    assert safe_filename("", extension="wav") == "episode.wav"
