import pytest

from gsc_answer_agent.errors import InvalidParametersError
from gsc_answer_agent.models import Intent
from gsc_answer_agent.request_params import (
    clamp_row_limit,
    extract_first_url,
    prepare_intent_request,
    user_asked_for_more_rows,
)


def test_more_rows_detection() -> None:
    assert user_asked_for_more_rows("show me the top 500 queries")
    assert user_asked_for_more_rows("increase the row limit please")
    assert user_asked_for_more_rows("give me more results")
    assert not user_asked_for_more_rows("which queries lost clicks in the last 28 days?")
    assert not user_asked_for_more_rows("compare 250 items")


def test_clamp_row_limit() -> None:
    assert clamp_row_limit("", None) == 250
    assert clamp_row_limit("losing queries", 800) == 250
    assert clamp_row_limit("show 800 rows", 800) == 800
    assert clamp_row_limit("show 5000 rows", 5000) == 1000
    assert clamp_row_limit("", 0) == 1


def test_extract_first_url() -> None:
    message = 'Why did (https://example.com/a?b=1) drop vs http://example.com/b?'
    assert extract_first_url(message) == "https://example.com/a?b=1"
    assert extract_first_url("no links here") == ""


def test_url_in_message_forces_drilldown() -> None:
    request = prepare_intent_request(
        "top_losers_queries",
        message="What happened to https://example.com/shoes last month?",
    )
    assert request.intent == Intent.DRILLDOWN_PAGE_TO_QUERIES
    assert request.page_url == "https://example.com/shoes"
    assert request.preset == "last28"
    assert request.row_limit == 250


def test_explicit_page_url_wins_over_message() -> None:
    request = prepare_intent_request(
        Intent.BRAND_VS_NONBRAND,
        message="see https://example.com/other",
        page_url="https://example.com/explicit",
    )
    assert request.intent == Intent.DRILLDOWN_PAGE_TO_QUERIES
    assert request.page_url == "https://example.com/explicit"


@pytest.mark.parametrize(
    ("kwargs", "field"),
    [
        ({"intent": "BRAND_VS_NONBRAND", "brand_terms": [" ", ""]}, "brand_terms"),
        ({"intent": "DRILLDOWN_PAGE_TO_QUERIES"}, "page_url"),
        ({"intent": "TOP_WINNERS_QUERIES", "preset": "last14"}, "preset"),
        ({"intent": "TOP_WINNERS_QUERIES", "row_limit": 0}, "row_limit"),
        ({"intent": "TOP_WINNERS_QUERIES", "row_limit": 1001}, "row_limit"),
        ({"intent": "TOP_WINNERS_QUERIES", "row_limit": 2.5}, "row_limit"),
        ({"intent": "MOST_CLICKED"}, "intent"),
    ],
)
def test_invalid_parameters(kwargs, field) -> None:
    intent = kwargs.pop("intent")
    with pytest.raises(InvalidParametersError) as excinfo:
        prepare_intent_request(intent, **kwargs)
    assert excinfo.value.field == field


def test_brand_terms_are_trimmed() -> None:
    request = prepare_intent_request(
        "BRAND_VS_NONBRAND", brand_terms=[" Acme ", "", "acme store"], preset="LAST7"
    )
    assert request.brand_terms == ("Acme", "acme store")
    assert request.preset == "last7"
