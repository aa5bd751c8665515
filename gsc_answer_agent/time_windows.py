from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from gsc_answer_agent.errors import InvalidParametersError
from gsc_answer_agent.models import PRESETS, ComparisonRange, DateRange


PRESET_DAYS = {
    "last7": 7,
    "last28": 28,
    "last90": 90,
}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_ymd(text: str) -> date:
    value = str(text or "").strip()
    try:
        parsed = date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidParametersError(
            f"Invalid date: {value!r}. Use YYYY-MM-DD.", field="date"
        ) from exc
    # fromisoformat accepts compact and week forms on newer interpreters.
    if parsed.isoformat() != value:
        raise InvalidParametersError(
            f"Invalid date: {value!r}. Use YYYY-MM-DD.", field="date"
        )
    return parsed


def resolve_preset(preset: str, today: date | None = None) -> DateRange:
    """Resolve a named preset into an inclusive range ending yesterday (UTC).

    ``today`` pins the clock; without it the current UTC date is used.
    """
    if preset not in PRESET_DAYS:
        raise InvalidParametersError(
            f"Unknown preset: {preset!r}. Expected one of {', '.join(PRESETS)}.",
            field="preset",
        )
    today = today or utc_today()
    end = today - timedelta(days=1)
    start = end - timedelta(days=PRESET_DAYS[preset] - 1)
    return DateRange(start, end)


def previous_range(current: DateRange) -> DateRange:
    # Same length, ending the day before the current range starts.
    end = current.start - timedelta(days=1)
    start = end - timedelta(days=current.days - 1)
    return DateRange(start, end)


def comparison_range(
    preset: str,
    today: date | None = None,
    current: DateRange | None = None,
) -> ComparisonRange:
    current = current or resolve_preset(preset, today)
    return ComparisonRange(current=current, previous=previous_range(current))
