from datetime import date

import pytest

from gsc_answer_agent.errors import InvalidParametersError
from gsc_answer_agent.models import DateRange
from gsc_answer_agent.time_windows import (
    comparison_range,
    parse_ymd,
    previous_range,
    resolve_preset,
)


def test_presets_end_yesterday_with_expected_lengths() -> None:
    today = date(2024, 3, 29)
    for preset, days in (("last7", 7), ("last28", 28), ("last90", 90)):
        window = resolve_preset(preset, today=today)
        assert window.end == date(2024, 3, 28)
        assert window.days == days


def test_previous_range_covers_leap_february() -> None:
    current = DateRange(date(2024, 3, 1), date(2024, 3, 28))
    previous = previous_range(current)

    assert previous.start_date == "2024-02-02"
    assert previous.end_date == "2024-02-29"
    assert previous.days == current.days == 28


def test_previous_range_is_adjacent_for_any_length() -> None:
    for length in (1, 7, 31, 90):
        start = date(2023, 12, 20)
        current = DateRange(start, date.fromordinal(start.toordinal() + length - 1))
        previous = previous_range(current)
        assert previous.days == current.days
        assert (current.start - previous.end).days == 1


def test_comparison_range_prefers_explicit_current() -> None:
    explicit = DateRange(date(2024, 1, 1), date(2024, 1, 7))
    ranges = comparison_range("last90", today=date(2024, 6, 1), current=explicit)

    assert ranges.current == explicit
    assert ranges.previous == DateRange(date(2023, 12, 25), date(2023, 12, 31))


def test_unknown_preset_is_rejected() -> None:
    with pytest.raises(InvalidParametersError) as excinfo:
        resolve_preset("last14", today=date(2024, 1, 10))
    assert excinfo.value.field == "preset"


def test_parse_ymd_is_strict() -> None:
    assert parse_ymd("2024-02-29") == date(2024, 2, 29)
    with pytest.raises(InvalidParametersError):
        parse_ymd("20240229")
    with pytest.raises(InvalidParametersError):
        parse_ymd("2024-02-30")
