import pytest

from gsc_answer_agent.analysis import (
    detect_cannibalization,
    filter_ctr_opportunities,
    filter_position_up_clicks_down,
    merge_deltas,
    percent_change,
    score_high_impression_low_ctr,
    sort_by_current_clicks,
    sort_losers,
    sort_winners,
    split_brand_rows,
)
from gsc_answer_agent.config import AnalysisThresholds
from gsc_answer_agent.models import DeltaRow, MetricRow


def _row(*keys: str, clicks=0.0, impressions=0.0, ctr=0.0, position=0.0) -> MetricRow:
    return MetricRow(keys=keys, clicks=clicks, impressions=impressions, ctr=ctr, position=position)


def _delta(key: str, **values) -> DeltaRow:
    base = dict(
        key=key,
        dimension="query",
        clicks_current=0.0,
        clicks_previous=0.0,
        delta_clicks=0.0,
        impressions_current=0.0,
        impressions_previous=0.0,
        delta_impressions=0.0,
        ctr_current=0.0,
        ctr_previous=0.0,
        delta_ctr=0.0,
        position_current=0.0,
        position_previous=0.0,
        delta_position=0.0,
    )
    base.update(values)
    return DeltaRow(**base)


def test_merge_computes_click_delta() -> None:
    merged = merge_deltas(
        [_row("shoes", clicks=100, position=3.0)],
        [_row("shoes", clicks=80, position=4.5)],
        "query",
    )
    assert len(merged) == 1
    assert merged[0].delta_clicks == 20
    assert merged[0].delta_position == pytest.approx(1.5)
    assert merged[0].query == "shoes"
    assert merged[0].page is None


def test_merge_is_full_outer_join_without_empty_key() -> None:
    merged = merge_deltas(
        [_row("a", clicks=5, impressions=50), _row("", clicks=9)],
        [_row("b", clicks=7, impressions=70, ctr=0.1, position=2.0)],
        "page",
    )
    by_key = {row.key: row for row in merged}

    assert set(by_key) == {"a", "b"}
    assert by_key["a"].clicks_previous == 0
    assert by_key["a"].impressions_previous == 0
    assert by_key["b"].clicks_current == 0
    assert by_key["b"].ctr_current == 0
    assert by_key["b"].delta_clicks == -7


def test_losers_and_winners_sort_with_key_tie_break() -> None:
    rows = [
        _delta("b", delta_clicks=-5),
        _delta("c", delta_clicks=-20),
        _delta("a", delta_clicks=-5),
        _delta("d", delta_clicks=12),
    ]
    assert [row.key for row in sort_losers(rows)] == ["c", "a", "b", "d"]
    assert [row.key for row in sort_winners(rows)] == ["d", "a", "b", "c"]


def test_high_impression_low_ctr_score_ordering() -> None:
    rows = [
        _delta("/a", dimension="page", impressions_current=1000, ctr_current=0.5),
        _delta("/b", dimension="page", impressions_current=800, ctr_current=0.0),
        _delta("/c", dimension="page", impressions_current=600, ctr_current=0.0),
    ]
    ranked = score_high_impression_low_ctr(rows)

    assert [row.key for row in ranked] == ["/b", "/c", "/a"]
    assert ranked[0].score == pytest.approx(800)
    assert ranked[-1].score == pytest.approx(500)


def test_position_up_clicks_down_filter() -> None:
    rows = [
        _delta("keep-small", delta_clicks=-3, delta_position=2.0),
        _delta("keep-big", delta_clicks=-10, delta_position=0.5),
        _delta("keep-tie", delta_clicks=-10, delta_position=1.5),
        _delta("worse-rank", delta_clicks=-10, delta_position=-1.0),
        _delta("more-clicks", delta_clicks=4, delta_position=1.0),
    ]
    assert [row.key for row in filter_position_up_clicks_down(rows)] == [
        "keep-tie",
        "keep-big",
        "keep-small",
    ]


def test_ctr_opportunities_respect_thresholds() -> None:
    rows = [
        _delta("ok", impressions_current=500, position_current=4.0, ctr_current=0.01),
        _delta("ok-more", impressions_current=900, position_current=8.0, ctr_current=0.02),
        _delta("few-impressions", impressions_current=99, position_current=2.0, ctr_current=0.0),
        _delta("too-deep", impressions_current=500, position_current=10.5, ctr_current=0.0),
        _delta("no-position", impressions_current=500, position_current=0.0, ctr_current=0.0),
        _delta("good-ctr", impressions_current=500, position_current=2.0, ctr_current=0.2),
    ]
    assert [row.key for row in filter_ctr_opportunities(rows)] == ["ok-more", "ok"]

    relaxed = AnalysisThresholds(ctr_opportunity_max_ctr=0.5)
    assert "good-ctr" in [row.key for row in filter_ctr_opportunities(rows, relaxed)]


def test_drilldown_sort_uses_clicks_then_impressions() -> None:
    rows = [
        _delta("b", clicks_current=10, impressions_current=100),
        _delta("a", clicks_current=10, impressions_current=100),
        _delta("c", clicks_current=10, impressions_current=300),
        _delta("d", clicks_current=50),
    ]
    assert [row.key for row in sort_by_current_clicks(rows)] == ["d", "c", "a", "b"]


def test_brand_split_is_case_insensitive() -> None:
    brand, non_brand = split_brand_rows(
        [_row("Acme shoes"), _row("running shoes"), _row("ACMEstore login")],
        ["acme", "  "],
    )
    assert [row.key for row in brand] == ["Acme shoes", "ACMEstore login"]
    assert [row.key for row in non_brand] == ["running shoes"]


def test_cannibalization_filters_and_orders_queries() -> None:
    current = [
        _row("shoes", "/a", clicks=50, impressions=400),
        _row("shoes", "/b", clicks=40, impressions=500),
        _row("shoes", "/c", clicks=10, impressions=100),
        _row("boots", "/a", clicks=95, impressions=300),
        _row("boots", "/d", clicks=5, impressions=50),
        _row("socks", "/x", clicks=30, impressions=100),
        _row("hats", "/h1", clicks=0, impressions=100),
        _row("hats", "/h2", clicks=0, impressions=90),
        _row("laces", "/l1", clicks=20, impressions=100),
        _row("laces", "/l2", clicks=20, impressions=120),
        _row("orphan"),
    ]
    previous = [
        _row("shoes", "/a", clicks=70, impressions=400),
        _row("shoes", "/b", clicks=10, impressions=500),
    ]
    items = detect_cannibalization(current, previous)

    assert [item.query for item in items] == ["shoes", "laces"]
    shoes = items[0]
    assert shoes.current.page_count == 3
    assert shoes.current.total_clicks == 100
    assert shoes.current.concentration == pytest.approx(0.5)
    assert [share.page for share in shoes.top_pages] == ["/a", "/b", "/c"]
    assert shoes.previous.total_clicks == 80
    assert shoes.delta_clicks == 20
    assert [share.page for share in items[1].top_pages] == ["/l2", "/l1"]


def test_percent_change_floors_the_denominator() -> None:
    assert percent_change(5, 0) == 5
    assert percent_change(90, 100) == pytest.approx(-0.1)
    assert percent_change(float("inf"), 10) == 0


def test_ctr_opportunity_bounds_are_inclusive() -> None:
    rows = [
        _delta("edge", impressions_current=100, position_current=10.0, ctr_current=0.03),
        _delta("below-impressions", impressions_current=99.9, position_current=5.0, ctr_current=0.01),
        _delta("past-position", impressions_current=100, position_current=10.01, ctr_current=0.01),
        _delta("above-ctr", impressions_current=100, position_current=5.0, ctr_current=0.0301),
    ]
    assert [row.key for row in filter_ctr_opportunities(rows)] == ["edge"]


def test_cannibalization_concentration_bound_is_exclusive() -> None:
    current = [
        _row("at-limit", "/a", clicks=80, impressions=100),
        _row("at-limit", "/b", clicks=20, impressions=100),
        _row("just-under", "/a", clicks=79, impressions=100),
        _row("just-under", "/b", clicks=21, impressions=100),
    ]
    items = detect_cannibalization(current, [])

    assert [item.query for item in items] == ["just-under"]
    assert items[0].current.page_count == 2
    assert items[0].current.concentration == pytest.approx(0.79)
    assert items[0].previous.page_count == 0
