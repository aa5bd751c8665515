import pytest

from gsc_answer_agent.errors import UpstreamFetchError
from gsc_answer_agent.models import MetricRow, Totals
from gsc_answer_agent.normalize import (
    coerce_rows_payload,
    coerce_totals_payload,
    normalize_row,
    normalize_rows,
    normalize_totals,
)


def test_percentage_ctr_is_rescaled() -> None:
    assert normalize_row({"keys": ["a"], "ctr": 50}).ctr == pytest.approx(0.5)
    assert normalize_row({"keys": ["a"], "ctr": 0.5}).ctr == pytest.approx(0.5)


def test_out_of_range_ctr_is_clamped_and_stable() -> None:
    once = normalize_row({"keys": ["a"], "ctr": 150})
    assert once.ctr == 1.0
    assert normalize_row(once).ctr == 1.0
    assert normalize_row({"keys": ["a"], "ctr": -0.2}).ctr == 0.0


def test_non_string_keys_are_filtered_not_rejected() -> None:
    row = normalize_row({"keys": [1, "shoes", None], "clicks": 3})
    assert row == MetricRow(keys=("shoes",), clicks=3.0)


def test_rows_without_usable_keys_are_dropped() -> None:
    rows, dropped = normalize_rows(
        [
            {"keys": [], "clicks": 10},
            {"keys": [5], "clicks": 10},
            {"clicks": 10},
            {"keys": "shoes"},
            None,
            {"keys": ["ok"], "clicks": 1},
        ]
    )
    assert [row.keys for row in rows] == [("ok",)]
    assert dropped == 5


def test_non_numeric_metrics_default_to_zero() -> None:
    row = normalize_row(
        {
            "keys": ["q"],
            "clicks": "12",
            "impressions": True,
            "ctr": float("nan"),
            "position": None,
        }
    )
    assert (row.clicks, row.impressions, row.ctr, row.position) == (0.0, 0.0, 0.0, 0.0)


def test_normalization_is_idempotent() -> None:
    once = normalize_row({"keys": ["q", "/p"], "clicks": 4, "impressions": 90, "ctr": 7.5, "position": 3.1})
    twice = normalize_row(once)
    assert twice == once


def test_totals_and_response_payloads() -> None:
    assert normalize_totals(None) == Totals()
    totals = coerce_totals_payload({"rows": [{"clicks": 5, "impressions": 50, "ctr": 0.1, "position": 2}]})
    assert totals == Totals(clicks=5.0, impressions=50.0, ctr=0.1, position=2.0)
    assert coerce_rows_payload({"rows": [{"keys": ["a"]}]}) == [{"keys": ["a"]}]
    assert coerce_rows_payload(None) == []


def test_error_payload_raises_with_status() -> None:
    with pytest.raises(UpstreamFetchError) as excinfo:
        coerce_rows_payload({"error": "Not connected to Google Search Console", "status": 401})
    assert excinfo.value.status_code == 401
    assert excinfo.value.is_authorization_error

    with pytest.raises(UpstreamFetchError) as excinfo:
        coerce_totals_payload({"error": {"message": "Backend error", "code": 500}})
    assert excinfo.value.status_code == 500
    assert not excinfo.value.is_authorization_error
