from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, Sequence

from gsc_answer_agent.analysis import (
    detect_cannibalization,
    filter_ctr_opportunities,
    filter_position_up_clicks_down,
    merge_deltas,
    score_high_impression_low_ctr,
    sort_by_current_clicks,
    sort_losers,
    sort_winners,
    split_brand_rows,
)
from gsc_answer_agent.config import AnalysisThresholds
from gsc_answer_agent.errors import InvalidParametersError
from gsc_answer_agent.models import (
    BrandSegment,
    BrandSplit,
    ComparisonRange,
    ComparisonTotals,
    DateRange,
    DeltaRow,
    DimensionFilter,
    FilterGroup,
    Intent,
    IntentRequest,
    IntentResult,
    MetricRow,
    PageDrilldown,
    QueryPlan,
    ResultKind,
    Totals,
)
from gsc_answer_agent.normalize import (
    coerce_rows_payload,
    coerce_totals_payload,
    normalize_rows,
)
from gsc_answer_agent.time_windows import comparison_range


logger = logging.getLogger(__name__)

MAX_INTENTS_PER_REQUEST = 3

Fetcher = Callable[[QueryPlan], Awaitable[Any]]


async def gather_or_cancel(*awaitables: Awaitable[Any]) -> list[Any]:
    """Await all of ``awaitables`` concurrently, results in argument order.

    The first failure cancels the remaining work and is re-raised unchanged.
    """
    tasks = [asyncio.ensure_future(item) for item in awaitables]
    if not tasks:
        return []
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        await _cancel_all(tasks)
        raise

    failures = [
        task.exception()
        for task in tasks
        if task in done and not task.cancelled() and task.exception() is not None
    ]
    if failures:
        await _cancel_all(pending)
        raise failures[0]
    return [task.result() for task in tasks]


async def _cancel_all(tasks: Iterable[asyncio.Future]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


class RowSource:
    """Adapts the injected fetch callables into normalized rows and totals."""

    def __init__(self, row_fetcher: Fetcher, totals_fetcher: Fetcher) -> None:
        self._row_fetcher = row_fetcher
        self._totals_fetcher = totals_fetcher

    async def rows(self, plan: QueryPlan) -> list[MetricRow]:
        payload = await self._row_fetcher(plan)
        rows, dropped = normalize_rows(coerce_rows_payload(payload))
        logger.debug(
            "Fetched %d rows for %s %s (dropped %d).",
            len(rows),
            ",".join(plan.dimensions),
            plan.date_range.label(),
            dropped,
        )
        return rows

    async def totals(self, plan: QueryPlan) -> Totals:
        payload = await self._totals_fetcher(plan)
        return coerce_totals_payload(payload)


@dataclass(frozen=True)
class IntentContext:
    site_url: str
    request: IntentRequest
    ranges: ComparisonRange
    row_limit: int
    source: RowSource
    thresholds: AnalysisThresholds

    def plan(
        self,
        date_range: DateRange,
        dimensions: Sequence[str],
        *,
        row_limit: int | None = None,
        filter_groups: Sequence[FilterGroup] = (),
    ) -> QueryPlan:
        return QueryPlan(
            site_url=self.site_url,
            date_range=date_range,
            dimensions=tuple(dimensions),
            row_limit=row_limit if row_limit is not None else self.row_limit,
            start_row=0,
            filter_groups=tuple(filter_groups),
        )

    def totals_plan(
        self, date_range: DateRange, filter_groups: Sequence[FilterGroup] = ()
    ) -> QueryPlan:
        return QueryPlan(
            site_url=self.site_url,
            date_range=date_range,
            row_limit=1,
            start_row=0,
            filter_groups=tuple(filter_groups),
        )

    async def merged(
        self,
        dimensions: Sequence[str],
        *,
        row_limit: int | None = None,
        filter_groups: Sequence[FilterGroup] = (),
    ) -> list[DeltaRow]:
        current_rows, previous_rows = await gather_or_cancel(
            self.source.rows(
                self.plan(self.ranges.current, dimensions, row_limit=row_limit, filter_groups=filter_groups)
            ),
            self.source.rows(
                self.plan(self.ranges.previous, dimensions, row_limit=row_limit, filter_groups=filter_groups)
            ),
        )
        return merge_deltas(current_rows, previous_rows, dimensions[0])


async def _top_winners_queries(ctx: IntentContext) -> list[DeltaRow]:
    return sort_winners(await ctx.merged(["query"]))[: ctx.row_limit]


async def _top_losers_queries(ctx: IntentContext) -> list[DeltaRow]:
    return sort_losers(await ctx.merged(["query"]))[: ctx.row_limit]


async def _top_winners_pages(ctx: IntentContext) -> list[DeltaRow]:
    return sort_winners(await ctx.merged(["page"]))[: ctx.row_limit]


async def _top_losers_pages(ctx: IntentContext) -> list[DeltaRow]:
    return sort_losers(await ctx.merged(["page"]))[: ctx.row_limit]


async def _high_impression_low_ctr_pages(ctx: IntentContext) -> list[DeltaRow]:
    return score_high_impression_low_ctr(await ctx.merged(["page"]))[: ctx.row_limit]


async def _position_up_clicks_down_queries(ctx: IntentContext) -> list[DeltaRow]:
    return filter_position_up_clicks_down(await ctx.merged(["query"]))[: ctx.row_limit]


async def _ctr_opportunities_queries(ctx: IntentContext) -> list[DeltaRow]:
    rows = await ctx.merged(["query"])
    return filter_ctr_opportunities(rows, ctx.thresholds)[: ctx.row_limit]


def brand_filter_groups(brand_terms: Sequence[str]) -> tuple[tuple[FilterGroup, ...], tuple[FilterGroup, ...]]:
    brand = FilterGroup(
        group_type="or",
        filters=tuple(DimensionFilter("query", "contains", term) for term in brand_terms),
    )
    non_brand = FilterGroup(
        group_type="and",
        filters=tuple(DimensionFilter("query", "notContains", term) for term in brand_terms),
    )
    return (brand,), (non_brand,)


async def _brand_vs_nonbrand(ctx: IntentContext) -> BrandSplit:
    terms = ctx.request.brand_terms
    brand_groups, non_brand_groups = brand_filter_groups(terms)
    limit = min(ctx.row_limit, ctx.thresholds.brand_top_queries_cap)
    current, previous = ctx.ranges.current, ctx.ranges.previous

    (
        brand_totals_current,
        brand_totals_previous,
        non_brand_totals_current,
        non_brand_totals_previous,
        brand_rows_current,
        brand_rows_previous,
        non_brand_rows_current,
        non_brand_rows_previous,
    ) = await gather_or_cancel(
        ctx.source.totals(ctx.totals_plan(current, brand_groups)),
        ctx.source.totals(ctx.totals_plan(previous, brand_groups)),
        ctx.source.totals(ctx.totals_plan(current, non_brand_groups)),
        ctx.source.totals(ctx.totals_plan(previous, non_brand_groups)),
        ctx.source.rows(ctx.plan(current, ["query"], row_limit=limit, filter_groups=brand_groups)),
        ctx.source.rows(ctx.plan(previous, ["query"], row_limit=limit, filter_groups=brand_groups)),
        ctx.source.rows(ctx.plan(current, ["query"], row_limit=limit, filter_groups=non_brand_groups)),
        ctx.source.rows(ctx.plan(previous, ["query"], row_limit=limit, filter_groups=non_brand_groups)),
    )

    # Re-classify locally so a source that ignores filter groups still splits correctly.
    brand_current, _ = split_brand_rows(brand_rows_current, terms)
    brand_previous, _ = split_brand_rows(brand_rows_previous, terms)
    _, non_brand_current = split_brand_rows(non_brand_rows_current, terms)
    _, non_brand_previous = split_brand_rows(non_brand_rows_previous, terms)

    return BrandSplit(
        brand_terms=tuple(terms),
        brand=BrandSegment(
            totals=ComparisonTotals(brand_totals_current, brand_totals_previous),
            top_queries=sort_by_current_clicks(
                merge_deltas(brand_current, brand_previous, "query")
            )[:limit],
        ),
        non_brand=BrandSegment(
            totals=ComparisonTotals(non_brand_totals_current, non_brand_totals_previous),
            top_queries=sort_by_current_clicks(
                merge_deltas(non_brand_current, non_brand_previous, "query")
            )[:limit],
        ),
    )


async def _cannibalization_queries(ctx: IntentContext) -> list:
    current_rows, previous_rows = await gather_or_cancel(
        ctx.source.rows(ctx.plan(ctx.ranges.current, ["query", "page"])),
        ctx.source.rows(ctx.plan(ctx.ranges.previous, ["query", "page"])),
    )
    items = detect_cannibalization(current_rows, previous_rows, ctx.thresholds)
    return items[: ctx.row_limit]


async def _drilldown_page_to_queries(ctx: IntentContext) -> PageDrilldown:
    page_url = ctx.request.page_url
    page_filter = FilterGroup(
        group_type="and",
        filters=(DimensionFilter("page", "equals", page_url),),
    )
    rows = await ctx.merged(["query"], filter_groups=[page_filter])
    return PageDrilldown(
        page_url=page_url,
        queries=sort_by_current_clicks(rows)[: ctx.row_limit],
    )


@dataclass(frozen=True)
class IntentHandler:
    label: str
    kind: ResultKind
    handler: Callable[[IntentContext], Awaitable[Any]]
    requires: tuple[str, ...] = ()


INTENT_HANDLERS: dict[Intent, IntentHandler] = {
    Intent.TOP_WINNERS_QUERIES: IntentHandler(
        "top winning queries", ResultKind.QUERY_DELTAS, _top_winners_queries
    ),
    Intent.TOP_LOSERS_QUERIES: IntentHandler(
        "top losing queries", ResultKind.QUERY_DELTAS, _top_losers_queries
    ),
    Intent.TOP_WINNERS_PAGES: IntentHandler(
        "top winning pages", ResultKind.PAGE_DELTAS, _top_winners_pages
    ),
    Intent.TOP_LOSERS_PAGES: IntentHandler(
        "top losing pages", ResultKind.PAGE_DELTAS, _top_losers_pages
    ),
    Intent.HIGH_IMPRESS_LOW_CTR_PAGES: IntentHandler(
        "high-impression, low-CTR pages",
        ResultKind.PAGE_DELTAS,
        _high_impression_low_ctr_pages,
    ),
    Intent.POSITION_UP_CLICKS_DOWN_QUERIES: IntentHandler(
        "queries where position improved but clicks fell",
        ResultKind.QUERY_DELTAS,
        _position_up_clicks_down_queries,
    ),
    Intent.CTR_OPPORTUNITIES_QUERIES: IntentHandler(
        "CTR opportunity queries", ResultKind.QUERY_DELTAS, _ctr_opportunities_queries
    ),
    Intent.BRAND_VS_NONBRAND: IntentHandler(
        "brand vs non-brand performance",
        ResultKind.BRAND_VS_NONBRAND,
        _brand_vs_nonbrand,
        requires=("brand_terms",),
    ),
    Intent.CANNIBALIZATION_QUERIES: IntentHandler(
        "potential cannibalization queries",
        ResultKind.QUERY_PAGE_CANNIBALIZATION,
        _cannibalization_queries,
    ),
    Intent.DRILLDOWN_PAGE_TO_QUERIES: IntentHandler(
        "page-level query drilldown",
        ResultKind.PAGE_DRILLDOWN,
        _drilldown_page_to_queries,
        requires=("page_url",),
    ),
}


def describe_intent(intent: Intent | str | None) -> str:
    try:
        return INTENT_HANDLERS[Intent.parse(intent)].label
    except InvalidParametersError:
        return "Search Console performance"


def validate_request(request: IntentRequest) -> IntentRequest:
    intent = Intent.parse(request.intent)
    handler = INTENT_HANDLERS[intent]
    brand_terms = tuple(term.strip() for term in request.brand_terms if term and term.strip())
    page_url = (request.page_url or "").strip()

    if "brand_terms" in handler.requires and not brand_terms:
        raise InvalidParametersError(
            f"{intent.value} requires at least one brand term.", field="brand_terms"
        )
    if "page_url" in handler.requires and not page_url:
        raise InvalidParametersError(f"{intent.value} requires a page URL.", field="page_url")
    if isinstance(request.row_limit, bool) or not isinstance(request.row_limit, int):
        raise InvalidParametersError("Row limit must be an integer.", field="row_limit")

    return replace(
        request,
        intent=intent,
        brand_terms=brand_terms,
        page_url=page_url,
        row_limit=max(1, request.row_limit),
    )


async def run_intent(
    site_url: str,
    request: IntentRequest,
    source: RowSource,
    *,
    thresholds: AnalysisThresholds | None = None,
    today: date | None = None,
) -> IntentResult:
    request = validate_request(request)
    handler = INTENT_HANDLERS[request.intent]
    ranges = comparison_range(request.preset, today=today, current=request.current_range)
    ctx = IntentContext(
        site_url=site_url,
        request=request,
        ranges=ranges,
        row_limit=request.row_limit,
        source=source,
        thresholds=thresholds or AnalysisThresholds(),
    )
    logger.info(
        "Dispatching %s for %s (%s vs %s, row limit %d).",
        request.intent.value,
        site_url,
        ranges.current.label(),
        ranges.previous.label(),
        ctx.row_limit,
    )

    totals_current, totals_previous, items = await gather_or_cancel(
        source.totals(ctx.totals_plan(ranges.current)),
        source.totals(ctx.totals_plan(ranges.previous)),
        handler.handler(ctx),
    )

    context: dict[str, object] = {}
    if request.brand_terms and request.intent == Intent.BRAND_VS_NONBRAND:
        context["brand_terms"] = list(request.brand_terms)
    if request.page_url and request.intent == Intent.DRILLDOWN_PAGE_TO_QUERIES:
        context["page_url"] = request.page_url

    result = IntentResult(
        intent=request.intent,
        kind=handler.kind,
        preset=request.preset,
        row_limit=ctx.row_limit,
        range=ranges,
        totals=ComparisonTotals(totals_current, totals_previous),
        items=items,
        context=context,
    )
    if result.item_count == 0:
        result.kind = ResultKind.EMPTY
        result.items = []
    logger.debug("%s produced %d items (%s).", request.intent.value, result.item_count, result.kind.value)
    return result


def cap_row_limits(requests: Sequence[IntentRequest]) -> list[IntentRequest]:
    """Share the largest requested row limit across the dispatched intents."""
    if not requests:
        return []
    budget = max(max(1, int(request.row_limit)) for request in requests)
    per_intent = max(1, budget // len(requests))
    return [
        replace(request, row_limit=min(max(1, int(request.row_limit)), per_intent))
        for request in requests
    ]


async def run_intents(
    site_url: str,
    requests: Sequence[IntentRequest],
    source: RowSource,
    *,
    thresholds: AnalysisThresholds | None = None,
    today: date | None = None,
    max_intents: int = MAX_INTENTS_PER_REQUEST,
) -> list[IntentResult]:
    if not requests:
        raise InvalidParametersError("At least one intent is required.", field="intents")
    if len(requests) > max_intents:
        raise InvalidParametersError(
            f"At most {max_intents} intents can be answered per request (got {len(requests)}).",
            field="intents",
        )

    validated = [validate_request(request) for request in requests]
    results = await gather_or_cancel(
        *(
            run_intent(site_url, request, source, thresholds=thresholds, today=today)
            for request in cap_row_limits(validated)
        )
    )
    return list(results)
