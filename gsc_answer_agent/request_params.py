from __future__ import annotations

import re
from typing import Sequence

from gsc_answer_agent.errors import InvalidParametersError
from gsc_answer_agent.models import PRESETS, DateRange, Intent, IntentRequest


DEFAULT_ROW_LIMIT = 250
MAX_ROW_LIMIT = 1000

MORE_ROWS_RE = re.compile(
    r"\b(row\s*limit|rows|top\s+\d+|show\s+\d+|more\s+results|more\s+rows)\b",
    re.IGNORECASE,
)
NUMBER_RE = re.compile(r"\d+")
URL_RE = re.compile(r"\bhttps?://[^\s<>()\"]+", re.IGNORECASE)


def user_asked_for_more_rows(message: str) -> bool:
    text = message or ""
    if any(int(number) > DEFAULT_ROW_LIMIT for number in NUMBER_RE.findall(text)):
        return True
    return bool(MORE_ROWS_RE.search(text))


def clamp_row_limit(message: str, row_limit: int | None = None) -> int:
    value = DEFAULT_ROW_LIMIT if row_limit is None else row_limit
    cap = MAX_ROW_LIMIT if user_asked_for_more_rows(message) else DEFAULT_ROW_LIMIT
    return max(1, min(value, cap))


def extract_first_url(message: str) -> str:
    match = URL_RE.search(message or "")
    return match.group(0) if match else ""


def prepare_intent_request(
    intent: Intent | str,
    *,
    message: str = "",
    preset: str | None = None,
    row_limit: int | None = None,
    brand_terms: Sequence[str] = (),
    page_url: str = "",
    current_range: DateRange | None = None,
) -> IntentRequest:
    """Validate caller parameters and build the request handed to the dispatcher.

    A page URL (explicit or the first URL found in ``message``) switches the
    intent to ``DRILLDOWN_PAGE_TO_QUERIES``.
    """
    resolved_intent = Intent.parse(intent)

    resolved_preset = (preset or "last28").strip().lower()
    if resolved_preset not in PRESETS:
        raise InvalidParametersError(
            f"Unknown preset: {preset!r}. Expected one of {', '.join(PRESETS)}.",
            field="preset",
        )

    if row_limit is not None:
        if isinstance(row_limit, bool) or not isinstance(row_limit, int):
            raise InvalidParametersError("Row limit must be an integer.", field="row_limit")
        if not 1 <= row_limit <= MAX_ROW_LIMIT:
            raise InvalidParametersError(
                f"Row limit must be between 1 and {MAX_ROW_LIMIT} (got {row_limit}).",
                field="row_limit",
            )

    resolved_page = (page_url or "").strip() or extract_first_url(message)
    if resolved_page:
        resolved_intent = Intent.DRILLDOWN_PAGE_TO_QUERIES
    elif resolved_intent == Intent.DRILLDOWN_PAGE_TO_QUERIES:
        raise InvalidParametersError(
            "DRILLDOWN_PAGE_TO_QUERIES requires a page URL.", field="page_url"
        )

    terms = tuple(term.strip() for term in brand_terms if term and term.strip())
    if resolved_intent == Intent.BRAND_VS_NONBRAND and not terms:
        raise InvalidParametersError(
            "BRAND_VS_NONBRAND requires at least one brand term.", field="brand_terms"
        )

    return IntentRequest(
        intent=resolved_intent,
        preset=resolved_preset,
        row_limit=clamp_row_limit(message, row_limit),
        brand_terms=terms,
        page_url=resolved_page,
        current_range=current_range,
    )
