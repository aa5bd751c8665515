from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from gsc_answer_agent.errors import InvalidParametersError


DIMENSIONS = ("query", "page", "country", "device", "date")
FILTER_OPERATORS = (
    "contains",
    "equals",
    "notContains",
    "notEquals",
    "includingRegex",
    "excludingRegex",
)
PRESETS = ("last7", "last28", "last90")
PRIORITIES = ("High impact", "Medium impact", "Low impact")
CONFIDENCE_LEVELS = ("High", "Medium", "Low")


class Intent(str, Enum):
    TOP_WINNERS_QUERIES = "TOP_WINNERS_QUERIES"
    TOP_LOSERS_QUERIES = "TOP_LOSERS_QUERIES"
    TOP_WINNERS_PAGES = "TOP_WINNERS_PAGES"
    TOP_LOSERS_PAGES = "TOP_LOSERS_PAGES"
    HIGH_IMPRESS_LOW_CTR_PAGES = "HIGH_IMPRESS_LOW_CTR_PAGES"
    POSITION_UP_CLICKS_DOWN_QUERIES = "POSITION_UP_CLICKS_DOWN_QUERIES"
    CTR_OPPORTUNITIES_QUERIES = "CTR_OPPORTUNITIES_QUERIES"
    BRAND_VS_NONBRAND = "BRAND_VS_NONBRAND"
    CANNIBALIZATION_QUERIES = "CANNIBALIZATION_QUERIES"
    DRILLDOWN_PAGE_TO_QUERIES = "DRILLDOWN_PAGE_TO_QUERIES"

    @classmethod
    def parse(cls, value: "Intent | str") -> "Intent":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().upper()
        try:
            return cls(text)
        except ValueError as exc:
            raise InvalidParametersError(
                f"Unknown intent: {value!r}.", field="intent"
            ) from exc


class ResultKind(str, Enum):
    QUERY_DELTAS = "query_deltas"
    PAGE_DELTAS = "page_deltas"
    QUERY_LIST = "query_list"
    PAGE_LIST = "page_list"
    QUERY_PAGE_CANNIBALIZATION = "query_page_cannibalization"
    BRAND_VS_NONBRAND = "brand_vs_nonbrand"
    PAGE_DRILLDOWN = "page_drilldown"
    EMPTY = "empty"


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidParametersError(
                f"Range start {self.start.isoformat()} is after end {self.end.isoformat()}.",
                field="range",
            )

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def start_date(self) -> str:
        return self.start.isoformat()

    @property
    def end_date(self) -> str:
        return self.end.isoformat()

    def label(self) -> str:
        return f"{self.start_date}..{self.end_date}"


@dataclass(frozen=True)
class ComparisonRange:
    current: DateRange
    previous: DateRange


@dataclass(frozen=True)
class MetricRow:
    keys: tuple[str, ...]
    clicks: float = 0.0
    impressions: float = 0.0
    ctr: float = 0.0
    position: float = 0.0

    @property
    def key(self) -> str:
        return self.keys[0] if self.keys else ""


@dataclass
class Totals:
    clicks: float = 0.0
    impressions: float = 0.0
    ctr: float = 0.0
    position: float = 0.0

    @classmethod
    def from_rows(cls, rows: list[MetricRow]) -> "Totals":
        if not rows:
            return cls()

        total_clicks = sum(row.clicks for row in rows)
        total_impressions = sum(row.impressions for row in rows)
        weighted_position = (
            sum(row.position * row.impressions for row in rows) / total_impressions
            if total_impressions
            else 0.0
        )
        return cls(
            clicks=total_clicks,
            impressions=total_impressions,
            ctr=(total_clicks / total_impressions if total_impressions else 0.0),
            position=weighted_position,
        )


@dataclass
class ComparisonTotals:
    current: Totals = field(default_factory=Totals)
    previous: Totals = field(default_factory=Totals)


@dataclass
class DeltaRow:
    key: str
    dimension: str
    clicks_current: float
    clicks_previous: float
    delta_clicks: float
    impressions_current: float
    impressions_previous: float
    delta_impressions: float
    ctr_current: float
    ctr_previous: float
    delta_ctr: float
    position_current: float
    position_previous: float
    delta_position: float
    score: float = 0.0

    @property
    def query(self) -> str | None:
        return self.key if self.dimension == "query" else None

    @property
    def page(self) -> str | None:
        return self.key if self.dimension == "page" else None


@dataclass
class PageShare:
    page: str
    clicks: float
    impressions: float
    ctr: float
    position: float


@dataclass
class CannibalizationStats:
    page_count: int = 0
    total_clicks: float = 0.0
    total_impressions: float = 0.0
    concentration: float = 1.0


@dataclass
class CannibalizationItem:
    query: str
    current: CannibalizationStats
    previous: CannibalizationStats
    top_pages: list[PageShare] = field(default_factory=list)

    @property
    def delta_clicks(self) -> float:
        return self.current.total_clicks - self.previous.total_clicks


@dataclass
class BrandSegment:
    totals: ComparisonTotals = field(default_factory=ComparisonTotals)
    top_queries: list[DeltaRow] = field(default_factory=list)


@dataclass
class BrandSplit:
    brand_terms: tuple[str, ...]
    brand: BrandSegment
    non_brand: BrandSegment

    def is_empty(self) -> bool:
        return not self.brand.top_queries and not self.non_brand.top_queries


@dataclass
class PageDrilldown:
    page_url: str
    queries: list[DeltaRow] = field(default_factory=list)


@dataclass(frozen=True)
class DimensionFilter:
    dimension: str
    operator: str
    expression: str

    def __post_init__(self) -> None:
        if self.dimension not in DIMENSIONS:
            raise InvalidParametersError(
                f"Unsupported filter dimension: {self.dimension}", field="dimension"
            )
        if self.operator not in FILTER_OPERATORS:
            raise InvalidParametersError(
                f"Unsupported filter operator: {self.operator}", field="operator"
            )
        if not self.expression.strip():
            raise InvalidParametersError("Filter expression cannot be empty.", field="expression")


@dataclass(frozen=True)
class FilterGroup:
    group_type: str
    filters: tuple[DimensionFilter, ...]


@dataclass(frozen=True)
class QueryPlan:
    """Opaque request descriptor handed to the injected row source."""

    site_url: str
    date_range: DateRange
    dimensions: tuple[str, ...] = ()
    row_limit: int | None = None
    start_row: int | None = None
    filter_groups: tuple[FilterGroup, ...] = ()

    def __post_init__(self) -> None:
        for dimension in self.dimensions:
            if dimension not in DIMENSIONS:
                raise InvalidParametersError(
                    f"Unsupported dimension: {dimension}", field="dimensions"
                )


@dataclass(frozen=True)
class IntentRequest:
    intent: Intent
    preset: str = "last28"
    row_limit: int = 250
    brand_terms: tuple[str, ...] = ()
    page_url: str = ""
    current_range: DateRange | None = None


@dataclass
class IntentResult:
    intent: Intent
    kind: ResultKind
    preset: str
    row_limit: int
    range: ComparisonRange
    totals: ComparisonTotals
    items: list | BrandSplit | PageDrilldown = field(default_factory=list)
    context: dict[str, object] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.kind == ResultKind.EMPTY

    @property
    def item_count(self) -> int:
        if isinstance(self.items, BrandSplit):
            return len(self.items.brand.top_queries) + len(self.items.non_brand.top_queries)
        if isinstance(self.items, PageDrilldown):
            return len(self.items.queries)
        return len(self.items)


@dataclass(frozen=True)
class RecommendedAction:
    step: str
    priority: str

    def __post_init__(self) -> None:
        if self.priority not in PRIORITIES:
            raise InvalidParametersError(
                f"Unknown action priority: {self.priority!r}.", field="priority"
            )


@dataclass(frozen=True)
class Confidence:
    level: str
    reason: str

    def __post_init__(self) -> None:
        if self.level not in CONFIDENCE_LEVELS:
            raise InvalidParametersError(
                f"Unknown confidence level: {self.level!r}.", field="level"
            )


@dataclass(frozen=True)
class Answer:
    summary: str
    key_findings: tuple[str, ...]
    likely_causes: tuple[str, ...]
    recommended_actions: tuple[RecommendedAction, ...]
    what_stands_out: str
    confidence: Confidence
    comparisons_used: tuple[str, ...] = ()
    micro_insights: tuple[str, ...] = ()
