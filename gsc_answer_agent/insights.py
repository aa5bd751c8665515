from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

from gsc_answer_agent.analysis import percent_change, position_delta
from gsc_answer_agent.config import AnalysisThresholds
from gsc_answer_agent.intents import describe_intent
from gsc_answer_agent.models import (
    Answer,
    BrandSplit,
    CannibalizationItem,
    Confidence,
    DeltaRow,
    Intent,
    IntentResult,
    PageDrilldown,
    RecommendedAction,
    ResultKind,
    Totals,
)


T = TypeVar("T")

HIGH_IMPACT = "High impact"
MEDIUM_IMPACT = "Medium impact"
LOW_IMPACT = "Low impact"

KEY_FINDINGS_BOUNDS = (4, 8)
LIKELY_CAUSES_BOUNDS = (3, 6)
ACTIONS_BOUNDS = (3, 7)

# Micro-insight triggers on range-wide totals.
POSITION_GAIN_MIN = 0.3
CLICKS_MOVE_PCT = 0.05
IMPRESSIONS_MOVE_PCT = 0.05
CTR_MOVE_ABS = 0.002

FINDING_FILLER = "No additional findings were available from the returned dataset."
CAUSE_FILLER = "Additional diagnostics may be needed to isolate the primary driver."
ACTION_FILLER = RecommendedAction(
    step="Re-check the top movers after changes (same ranges) to confirm the direction improves.",
    priority=LOW_IMPACT,
)
MEASUREMENT_CAVEAT = (
    "Measurement caveat: low-volume queries/pages can swing sharply between periods "
    "due to sampling and natural volatility."
)
HEADLINE_FALLBACK = "The biggest changes appear concentrated in the top movers."

NO_DATA_REASON = "No (or too little) Search Console data was returned for the selected ranges."
CONFIDENCE_REASONS = {
    "High": "The comparison is based on substantial impression volume across both periods.",
    "Medium": (
        "There's enough volume to see directionally useful trends, "
        "but smaller moves may be noisy."
    ),
    "Low": "Low impression volume makes the deltas volatile and harder to interpret confidently.",
}

SENTENCE_END_RE = re.compile(r"[.!?]\s")


def ensure_between(items: Sequence[T], minimum: int, maximum: int, filler: Callable[[], T]) -> list[T]:
    out = list(items)
    while len(out) < minimum:
        out.append(filler())
    return out[:maximum]


def first_sentence(text: str) -> str:
    trimmed = (text or "").strip()
    match = SENTENCE_END_RE.search(trimmed)
    if match is None:
        return trimmed
    return trimmed[: match.start() + 1].strip()


def _round(value: float, digits: int = 2) -> float:
    if not math.isfinite(value):
        return 0.0
    factor = 10**digits
    # Half-up rounding so 0.25 -> 0.3 rather than banker's 0.2.
    return math.floor(value * factor + 0.5) / factor


def _fmt_number(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return str(value)


def _fmt_int(value: float) -> str:
    if not math.isfinite(value):
        return "0"
    return f"{int(_round(value, 0)):,}"


def _fmt_ctr(ctr: float) -> str:
    pct = (ctr if math.isfinite(ctr) else 0.0) * 100
    return f"{_fmt_number(_round(pct, 1))}%"


def _signed_pct(value: float) -> str:
    pct = _round(value * 100, 1)
    sign = "+" if pct > 0 else ""
    return f"{sign}{_fmt_number(pct)}%"


def _ctr_points(current: float, previous: float) -> str:
    return f"{_fmt_number(_round((current - previous) * 100, 1))}pp"


def _signed_clicks(delta: float) -> str:
    sign = "+" if delta >= 0 else ""
    return f"{sign}{_fmt_number(_round(delta, 0))}"


@dataclass(frozen=True)
class TotalsDelta:
    clicks_pct: float
    impressions_pct: float
    ctr_abs: float
    position_improvement: float

    @classmethod
    def between(cls, current: Totals, previous: Totals) -> "TotalsDelta":
        return cls(
            clicks_pct=percent_change(current.clicks, previous.clicks),
            impressions_pct=percent_change(current.impressions, previous.impressions),
            ctr_abs=current.ctr - previous.ctr,
            position_improvement=position_delta(previous.position, current.position),
        )


@dataclass(frozen=True)
class Example:
    query: str = ""
    page_url: str = ""


def _listed_items(result: IntentResult) -> list:
    if isinstance(result.items, PageDrilldown):
        return list(result.items.queries)
    if isinstance(result.items, BrandSplit):
        return []
    return list(result.items)


def pick_example(results: Sequence[IntentResult]) -> Example:
    for result in results:
        page_url = str(result.context.get("page_url") or "")
        if page_url:
            top = _listed_items(result)
            query = top[0].key if top and isinstance(top[0], DeltaRow) else ""
            return Example(query=query, page_url=page_url)
        if isinstance(result.items, BrandSplit):
            split = result.items
            top = split.non_brand.top_queries or split.brand.top_queries
            if top:
                return Example(query=top[0].key)
            continue
        items = _listed_items(result)
        if not items:
            continue
        first = items[0]
        if isinstance(first, CannibalizationItem):
            page = first.top_pages[0].page if first.top_pages else ""
            return Example(query=first.query, page_url=page)
        if isinstance(first, DeltaRow):
            if first.dimension == "page":
                return Example(page_url=first.key)
            return Example(query=first.key)
    return Example()


def derive_micro_insights(
    totals_delta: TotalsDelta | None,
    results: Sequence[IntentResult],
) -> list[str]:
    insights: list[str] = []
    d = totals_delta

    if d is not None:
        if d.position_improvement > POSITION_GAIN_MIN and d.clicks_pct < -CLICKS_MOVE_PCT:
            insights.append(
                "Average position improved, but clicks fell. That often points to lower CTR "
                "or reduced demand."
            )
        if d.impressions_pct > IMPRESSIONS_MOVE_PCT and d.ctr_abs < -CTR_MOVE_ABS:
            insights.append(
                "Impressions rose while CTR fell. Increased visibility with weaker "
                "snippet/intent match can depress clicks."
            )
        if len(insights) < 2 and d.impressions_pct < -IMPRESSIONS_MOVE_PCT and d.position_improvement >= 0:
            insights.append(
                "Visibility dropped (impressions down) even though average position didn't "
                "worsen, so demand/seasonality or coverage changes may be at play."
            )
        if len(insights) < 2 and d.clicks_pct > CLICKS_MOVE_PCT and d.ctr_abs > CTR_MOVE_ABS:
            insights.append(
                "Clicks grew alongside CTR, so improvements are likely coming from snippet "
                "relevance or better alignment with search intent."
            )

    has_cannibalization = any(
        result.kind == ResultKind.QUERY_PAGE_CANNIBALIZATION and result.item_count > 0
        for result in results
    )
    if has_cannibalization and len(insights) < 3:
        insights.append(
            "Potential cannibalization is present: the same query is earning clicks across "
            "multiple pages."
        )

    if any(result.kind == ResultKind.BRAND_VS_NONBRAND for result in results) and len(insights) < 3:
        insights.append(
            "Brand and non-brand performance can move in opposite directions; treat them as "
            "separate funnels when diagnosing changes."
        )

    if d is not None and len(insights) < 2:
        insights.append(
            "Most performance shifts tend to concentrate in a small set of queries/pages; "
            "focus on the top movers first."
        )
        insights.append(
            "Small CTR changes can have outsized click impact when impressions are large, "
            "so prioritize high-impression items."
        )

    return insights[:3]


def choose_confidence(
    *,
    has_data: bool,
    current_impressions: float,
    previous_impressions: float,
    item_count: int,
    thresholds: AnalysisThresholds | None = None,
) -> Confidence:
    thresholds = thresholds or AnalysisThresholds()
    if not has_data or item_count == 0:
        return Confidence("Low", NO_DATA_REASON)
    floor = min(current_impressions, previous_impressions)
    if floor >= thresholds.confidence_high_impressions:
        level = "High"
    elif floor >= thresholds.confidence_medium_impressions:
        level = "Medium"
    else:
        level = "Low"
    return Confidence(level, CONFIDENCE_REASONS[level])


def _top_mover_finding(result: IntentResult) -> str:
    items = _listed_items(result)
    if not items:
        return ""
    first = items[0]
    if isinstance(first, CannibalizationItem):
        return f'Top focus query: "{first.query}" ({_signed_clicks(first.delta_clicks)} clicks vs previous).'
    if not isinstance(first, DeltaRow):
        return ""
    if first.dimension == "page":
        return f"Top focus page: {first.key} ({_signed_clicks(first.delta_clicks)} clicks vs previous)."
    return f'Top focus query: "{first.key}" ({_signed_clicks(first.delta_clicks)} clicks vs previous).'


def _base_findings(
    site_url: str,
    primary: IntentResult | None,
    has_data: bool,
    example: Example,
) -> list[str]:
    findings: list[str] = []
    if primary is None:
        return ["No Search Console comparison data was available to compute period-over-period deltas."]

    current_range = primary.range.current
    previous_range = primary.range.previous
    if not has_data:
        return [
            f"No rows were returned for {site_url} in {current_range.start_date} to "
            f"{current_range.end_date} (and the previous period {previous_range.start_date} to "
            f"{previous_range.end_date}).",
            "This usually means very low search volume, a newly verified property, or a "
            "mismatch between the selected property and the site being searched.",
            "If you expected data, double-check the property type (Domain vs URL-prefix) and "
            "verify it matches your canonical site URLs.",
            "If you asked about a specific page, confirm the exact URL (http/https, trailing "
            "slash) matches what GSC reports.",
        ]

    if isinstance(primary.items, BrandSplit):
        brand = primary.items.brand.totals
        non_brand = primary.items.non_brand.totals
        for label, totals in (("Brand", brand), ("Non-brand", non_brand)):
            findings.append(
                f"{label} clicks {_signed_pct(percent_change(totals.current.clicks, totals.previous.clicks))} "
                f"vs previous ({_fmt_int(totals.previous.clicks)} → {_fmt_int(totals.current.clicks)})."
            )
        for label, totals in (("Brand", brand), ("Non-brand", non_brand)):
            findings.append(
                f"{label} CTR changed by {_ctr_points(totals.current.ctr, totals.previous.ctr)} "
                f"({_fmt_ctr(totals.previous.ctr)} → {_fmt_ctr(totals.current.ctr)})."
            )
    else:
        current = primary.totals.current
        previous = primary.totals.previous
        d = TotalsDelta.between(current, previous)
        direction = "improved" if d.position_improvement >= 0 else "worsened"
        findings.extend(
            [
                f"Clicks {_signed_pct(d.clicks_pct)} vs previous "
                f"({_fmt_int(previous.clicks)} → {_fmt_int(current.clicks)}).",
                f"Impressions {_signed_pct(d.impressions_pct)} vs previous "
                f"({_fmt_int(previous.impressions)} → {_fmt_int(current.impressions)}).",
                f"CTR changed by {_ctr_points(current.ctr, previous.ctr)} "
                f"({_fmt_ctr(previous.ctr)} → {_fmt_ctr(current.ctr)}).",
                f"Average position {direction} by "
                f"{_fmt_number(_round(abs(d.position_improvement), 2))} "
                f"({_fmt_number(_round(previous.position, 2))} → {_fmt_number(_round(current.position, 2))}).",
            ]
        )

    top_mover = _top_mover_finding(primary)
    if top_mover:
        findings.append(top_mover)
    elif example.query:
        findings.append(
            f'A concrete starting point is the query "{example.query}", since small CTR '
            "improvements can compound quickly."
        )
    elif example.page_url:
        findings.append(
            f"A concrete starting point is the page {example.page_url}, since it anchors the "
            "most relevant changes here."
        )
    return findings


def _secondary_findings(results: Sequence[IntentResult], primary: IntentResult | None) -> list[str]:
    findings: list[str] = []
    for result in results:
        if result is primary:
            continue
        if len(findings) >= 2:
            break
        if result.kind == ResultKind.BRAND_VS_NONBRAND:
            findings.append(
                "Brand vs non-brand was also analyzed; if they diverge, prioritize non-brand "
                "fixes first because they usually drive net-new demand."
            )
            continue
        items = _listed_items(result)
        if not items:
            continue
        first = items[0]
        if isinstance(first, CannibalizationItem):
            findings.append(
                f'Potential cannibalization signal: query "{first.query}" is spread across '
                f"{first.current.page_count} pages."
            )
        elif isinstance(first, DeltaRow):
            subject = first.key if first.dimension == "page" else f'"{first.key}"'
            findings.append(
                f"Also notable: {subject} is a top mover "
                f"({_signed_clicks(first.delta_clicks)} clicks vs previous)."
            )
    return findings


def _likely_causes(
    intent: Intent | None,
    has_data: bool,
    has_ranges: bool,
    totals_delta: TotalsDelta | None,
) -> list[str]:
    causes: list[str] = []
    if not has_data and has_ranges:
        causes.extend(
            [
                "The property may be correct but search demand is too low in these windows to "
                "produce rows (especially for smaller sites or narrow page filters).",
                "The selected property might not match the live canonical URLs (Domain vs "
                "URL-prefix mismatch, http/https mismatch, trailing slash differences).",
                "If filters were applied (brand terms or page URL), they may be too strict or "
                "not matching how queries/pages appear in GSC.",
            ]
        )
    if has_data and totals_delta is not None:
        d = totals_delta
        if d.impressions_pct > IMPRESSIONS_MOVE_PCT and d.ctr_abs < -CTR_MOVE_ABS:
            causes.append(
                "Snippet/intent mismatch: more impressions are coming from broader queries where "
                "the listing is less compelling."
            )
        if d.position_improvement > POSITION_GAIN_MIN and d.clicks_pct < -CLICKS_MOVE_PCT:
            causes.append(
                "SERP layout changes (features/ads) or lower brand demand can reduce clicks even "
                "when ranking improves."
            )
        if d.impressions_pct < -IMPRESSIONS_MOVE_PCT:
            causes.append(
                "Demand/seasonality shifts or reduced query coverage (indexing/crawl/canonical "
                "changes) can pull impressions down."
            )
    if intent == Intent.CANNIBALIZATION_QUERIES:
        causes.append(
            "Overlapping pages compete for the same intent, splitting clicks across URLs and "
            "weakening the strongest page signal."
        )
    if intent == Intent.BRAND_VS_NONBRAND:
        causes.append(
            "Brand and non-brand behave differently: non-brand is more sensitive to competitors "
            "and SERP features, while brand depends on awareness and navigational intent."
        )
    causes.append(MEASUREMENT_CAVEAT)
    return ensure_between(causes, *LIKELY_CAUSES_BOUNDS, lambda: CAUSE_FILLER)


def build_recommended_actions(
    *,
    intent: Intent | None,
    example: Example,
    totals_delta: TotalsDelta | None,
    has_data: bool,
    site_url: str,
    thresholds: AnalysisThresholds | None = None,
) -> list[RecommendedAction]:
    thresholds = thresholds or AnalysisThresholds()
    if not has_data:
        return [
            RecommendedAction(
                f"Confirm you selected the correct Search Console property ({site_url}) and that "
                "the date range contains data.",
                MEDIUM_IMPACT,
            ),
            RecommendedAction(
                'Ask a more specific question (e.g., "winning queries" or a specific page URL) '
                "to narrow the analysis.",
                MEDIUM_IMPACT,
            ),
            RecommendedAction(
                "If you expect data but see none, verify the property is verified and that you "
                "have sufficient permissions.",
                LOW_IMPACT,
            ),
        ]

    clicks_pct = totals_delta.clicks_pct if totals_delta else 0.0
    clicks_down = clicks_pct < -thresholds.clicks_swing_pct
    clicks_up = clicks_pct > thresholds.clicks_swing_pct
    query = f'"{example.query}"' if example.query else ""
    page = example.page_url

    if page and query:
        target = f"for {page} (focused on {query})"
    elif page:
        target = f"for {page}"
    elif query:
        target = f"for {query}"
    else:
        target = "for the top affected queries/pages"

    actions = [
        RecommendedAction(
            f"Validate the main landing page and snippet alignment {target}: review title/meta, "
            "intent match, and whether the page answers the query clearly.",
            HIGH_IMPACT if clicks_down else MEDIUM_IMPACT,
        ),
        RecommendedAction(
            "Inspect SERP changes and competitors for the biggest movers (features, intent "
            "shift, new entrants), then update content depth and internal linking to "
            "defend/expand rankings.",
            HIGH_IMPACT if clicks_down else MEDIUM_IMPACT,
        ),
        RecommendedAction(
            "Improve CTR on high-impression items: test more specific titles, add value props, "
            "and align on-brand messaging; prioritize items with large impressions where small "
            "CTR gains matter.",
            MEDIUM_IMPACT,
        ),
        RecommendedAction(
            "Check technical and coverage basics for the affected URLs (indexing, canonical, "
            "redirects, structured data where relevant) to ensure changes aren't caused by "
            "crawl/index issues.",
            MEDIUM_IMPACT if clicks_down else LOW_IMPACT,
        ),
    ]

    if intent == Intent.CANNIBALIZATION_QUERIES:
        subject = f"For the top cannibalized query {query}" if query else "For the top cannibalized query"
        actions.insert(
            0,
            RecommendedAction(
                f"{subject}, consolidate overlapping pages (merge content or differentiate "
                "intent) and apply canonical/redirects where appropriate to reduce dilution.",
                HIGH_IMPACT,
            ),
        )
    if intent == Intent.DRILLDOWN_PAGE_TO_QUERIES and page:
        actions.insert(
            0,
            RecommendedAction(
                f"On {page}, prioritize on-page sections and internal links that directly "
                "address the highest-impression queries (starting with "
                f"{query or 'the top query'}) to capture more clicks.",
                HIGH_IMPACT,
            ),
        )
    if clicks_up:
        actions.insert(
            0,
            RecommendedAction(
                "Double down on what's working: expand content and add internal links around "
                f"the biggest winners to sustain momentum (start with {query or 'the top winner'}).",
                HIGH_IMPACT,
            ),
        )

    return ensure_between(actions, *ACTIONS_BOUNDS, lambda: ACTION_FILLER)


def build_answer(
    user_message: str,
    site_url: str,
    preset: str,
    intent: Intent | str | None,
    results: Sequence[IntentResult],
    *,
    thresholds: AnalysisThresholds | None = None,
) -> Answer:
    """Turn dispatched intent results into a structured answer.

    The first non-empty result drives the totals, findings and confidence;
    the rest only contribute secondary findings. ``user_message`` and ``preset``
    do not influence the heuristics.
    """
    thresholds = thresholds or AnalysisThresholds()
    results = list(results)
    primary = next((result for result in results if not result.is_empty), None)
    if primary is None and results:
        primary = results[0]
    has_data = primary is not None and not primary.is_empty

    if intent is not None:
        primary_intent: Intent | None = Intent.parse(intent)
    else:
        primary_intent = primary.intent if primary is not None else None

    labels: list[str] = []
    for result in results:
        label = describe_intent(result.intent)
        if label not in labels:
            labels.append(label)
    analysis_label = ", ".join(labels) if labels else describe_intent(primary_intent)

    if primary is not None:
        current_range = primary.range.current
        previous_range = primary.range.previous
        summary = (
            f"Analyzed {analysis_label} for {site_url} ({current_range.start_date} to "
            f"{current_range.end_date}) vs the previous period ({previous_range.start_date} to "
            f"{previous_range.end_date})."
        )
    else:
        summary = (
            f"Provided guidance for {describe_intent(primary_intent)} for {site_url} "
            "(no Search Console data was pulled)."
        )

    example = pick_example(results)
    totals_delta = (
        TotalsDelta.between(primary.totals.current, primary.totals.previous)
        if primary is not None
        else None
    )
    micro_insights = derive_micro_insights(totals_delta, results) if has_data else []

    key_findings = ensure_between(
        [
            finding
            for finding in (
                _base_findings(site_url, primary, has_data, example)
                + micro_insights
                + _secondary_findings(results, primary)
            )
            if finding.strip()
        ],
        *KEY_FINDINGS_BOUNDS,
        lambda: FINDING_FILLER,
    )

    likely_causes = _likely_causes(primary_intent, has_data, primary is not None, totals_delta)
    actions = build_recommended_actions(
        intent=primary_intent,
        example=example,
        totals_delta=totals_delta,
        has_data=has_data,
        site_url=site_url,
        thresholds=thresholds,
    )

    confidence = choose_confidence(
        has_data=has_data,
        current_impressions=primary.totals.current.impressions if primary else 0.0,
        previous_impressions=primary.totals.previous.impressions if primary else 0.0,
        item_count=sum(result.item_count for result in results),
        thresholds=thresholds,
    )

    what_stands_out = first_sentence(micro_insights[0]) if micro_insights else HEADLINE_FALLBACK

    return Answer(
        summary=summary,
        key_findings=tuple(key_findings),
        likely_causes=tuple(likely_causes),
        recommended_actions=tuple(actions),
        what_stands_out=what_stands_out,
        confidence=confidence,
        comparisons_used=tuple(
            f"{result.intent.value}:{result.range.current.label()} vs {result.range.previous.label()}"
            for result in results
        ),
        micro_insights=tuple(micro_insights),
    )
