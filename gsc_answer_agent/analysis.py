from __future__ import annotations

import math
from typing import Iterable

from gsc_answer_agent.config import AnalysisThresholds
from gsc_answer_agent.models import (
    CannibalizationItem,
    CannibalizationStats,
    DeltaRow,
    MetricRow,
    PageShare,
)


def safe_div(numerator: float, denominator: float) -> float:
    if not (math.isfinite(numerator) and math.isfinite(denominator)) or denominator == 0:
        return 0.0
    return numerator / denominator


def percent_change(current: float, previous: float) -> float:
    # Denominator floor of 1 keeps tiny bases from producing huge swings.
    return safe_div(current - previous, max(previous, 1.0))


def position_delta(previous: float, current: float) -> float:
    """Positive when the average position moved closer to 1."""
    if not (math.isfinite(previous) and math.isfinite(current)):
        return 0.0
    return previous - current


def _delta_row(
    key: str,
    dimension: str,
    current: MetricRow | None,
    previous: MetricRow | None,
) -> DeltaRow:
    clicks_current = current.clicks if current else 0.0
    clicks_previous = previous.clicks if previous else 0.0
    impressions_current = current.impressions if current else 0.0
    impressions_previous = previous.impressions if previous else 0.0
    ctr_current = current.ctr if current else 0.0
    ctr_previous = previous.ctr if previous else 0.0
    position_current = current.position if current else 0.0
    position_previous = previous.position if previous else 0.0
    return DeltaRow(
        key=key,
        dimension=dimension,
        clicks_current=clicks_current,
        clicks_previous=clicks_previous,
        delta_clicks=clicks_current - clicks_previous,
        impressions_current=impressions_current,
        impressions_previous=impressions_previous,
        delta_impressions=impressions_current - impressions_previous,
        ctr_current=ctr_current,
        ctr_previous=ctr_previous,
        delta_ctr=ctr_current - ctr_previous,
        position_current=position_current,
        position_previous=position_previous,
        delta_position=position_delta(position_previous, position_current),
    )


def merge_deltas(
    current_rows: Iterable[MetricRow],
    previous_rows: Iterable[MetricRow],
    dimension: str,
) -> list[DeltaRow]:
    """Full outer join of two row sets on the first key.

    Keys seen on one side only get zeros for the other side. The empty key is
    skipped. The output order is unspecified; callers sort per intent.
    """
    current_map = {row.key: row for row in current_rows}
    previous_map = {row.key: row for row in previous_rows}
    keys = (set(current_map) | set(previous_map)) - {""}
    return [
        _delta_row(key, dimension, current_map.get(key), previous_map.get(key))
        for key in keys
    ]


def sort_winners(rows: Iterable[DeltaRow]) -> list[DeltaRow]:
    return sorted(rows, key=lambda row: (-row.delta_clicks, row.key))


def sort_losers(rows: Iterable[DeltaRow]) -> list[DeltaRow]:
    return sorted(rows, key=lambda row: (row.delta_clicks, row.key))


def score_high_impression_low_ctr(rows: Iterable[DeltaRow]) -> list[DeltaRow]:
    scored = list(rows)
    for row in scored:
        row.score = row.impressions_current * (1.0 - row.ctr_current)
    return sorted(
        scored,
        key=lambda row: (-row.score, -row.impressions_current, row.ctr_current, row.key),
    )


def filter_position_up_clicks_down(rows: Iterable[DeltaRow]) -> list[DeltaRow]:
    matched = [row for row in rows if row.delta_clicks < 0 and row.delta_position > 0]
    return sorted(matched, key=lambda row: (row.delta_clicks, -row.delta_position, row.key))


def filter_ctr_opportunities(
    rows: Iterable[DeltaRow],
    thresholds: AnalysisThresholds | None = None,
) -> list[DeltaRow]:
    thresholds = thresholds or AnalysisThresholds()
    matched = [
        row
        for row in rows
        if row.impressions_current >= thresholds.ctr_opportunity_min_impressions
        and 0 < row.position_current <= thresholds.ctr_opportunity_max_position
        and row.ctr_current <= thresholds.ctr_opportunity_max_ctr
    ]
    return sorted(
        matched,
        key=lambda row: (
            -row.impressions_current,
            row.ctr_current,
            row.position_current,
            row.key,
        ),
    )


def sort_by_current_clicks(rows: Iterable[DeltaRow]) -> list[DeltaRow]:
    return sorted(
        rows,
        key=lambda row: (-row.clicks_current, -row.impressions_current, row.key),
    )


def is_brand_query(query: str, brand_terms: Iterable[str]) -> bool:
    lowered = query.lower()
    return any(term.lower() in lowered for term in brand_terms if term)


def split_brand_rows(
    rows: Iterable[MetricRow],
    brand_terms: Iterable[str],
) -> tuple[list[MetricRow], list[MetricRow]]:
    terms = [term.strip() for term in brand_terms if term and term.strip()]
    brand: list[MetricRow] = []
    non_brand: list[MetricRow] = []
    for row in rows:
        if is_brand_query(row.key, terms):
            brand.append(row)
        else:
            non_brand.append(row)
    return brand, non_brand


def _group_pages_by_query(rows: Iterable[MetricRow]) -> dict[str, list[PageShare]]:
    grouped: dict[str, list[PageShare]] = {}
    for row in rows:
        if len(row.keys) < 2:
            continue
        query, page = row.keys[0], row.keys[1]
        if not query or not page:
            continue
        grouped.setdefault(query, []).append(
            PageShare(
                page=page,
                clicks=row.clicks,
                impressions=row.impressions,
                ctr=row.ctr,
                position=row.position,
            )
        )
    for pages in grouped.values():
        pages.sort(key=lambda share: (-share.clicks, -share.impressions, share.page))
    return grouped


def _page_stats(pages: list[PageShare]) -> CannibalizationStats:
    total_clicks = sum(share.clicks for share in pages)
    total_impressions = sum(share.impressions for share in pages)
    top_clicks = pages[0].clicks if pages else 0.0
    return CannibalizationStats(
        page_count=len(pages),
        total_clicks=total_clicks,
        total_impressions=total_impressions,
        concentration=(top_clicks / total_clicks) if total_clicks > 0 else 1.0,
    )


def detect_cannibalization(
    current_rows: Iterable[MetricRow],
    previous_rows: Iterable[MetricRow],
    thresholds: AnalysisThresholds | None = None,
) -> list[CannibalizationItem]:
    """Find queries whose clicks are spread across several pages.

    Rows carry (query, page) keys. A query qualifies in the current period when
    it has enough pages, some clicks, and no single page holding the
    concentration threshold share of them.
    """
    thresholds = thresholds or AnalysisThresholds()
    current = _group_pages_by_query(current_rows)
    previous = _group_pages_by_query(previous_rows)

    items: list[CannibalizationItem] = []
    for query, pages in current.items():
        stats = _page_stats(pages)
        if stats.page_count < thresholds.cannibalization_min_pages:
            continue
        if stats.total_clicks <= 0:
            continue
        if stats.concentration >= thresholds.cannibalization_max_concentration:
            continue
        items.append(
            CannibalizationItem(
                query=query,
                current=stats,
                previous=_page_stats(previous.get(query, [])),
                top_pages=pages[: thresholds.cannibalization_top_pages],
            )
        )

    items.sort(
        key=lambda item: (-item.current.total_clicks, item.current.concentration, item.query)
    )
    return items
