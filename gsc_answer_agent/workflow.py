from __future__ import annotations

import logging
from datetime import date
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from gsc_answer_agent.config import AnalysisThresholds
from gsc_answer_agent.evaluation import evaluate_answer_markdown
from gsc_answer_agent.insights import build_answer
from gsc_answer_agent.intents import RowSource, run_intents
from gsc_answer_agent.models import Answer, DateRange, IntentRequest, IntentResult
from gsc_answer_agent.reporting import render_answer_markdown
from gsc_answer_agent.request_params import prepare_intent_request


logger = logging.getLogger(__name__)


class AnswerState(TypedDict, total=False):
    site_url: str
    message: str
    intents: list[str]
    preset: str
    row_limit: int | None
    brand_terms: list[str]
    page_url: str
    current_range: DateRange | None
    today: date | None
    thresholds: AnalysisThresholds
    source: RowSource

    requests: list[IntentRequest]
    results: list[IntentResult]
    answer: Answer
    markdown: str
    evaluation: dict[str, Any]


def prepare_requests_node(state: AnswerState) -> AnswerState:
    requests: list[IntentRequest] = []
    for intent in state.get("intents") or []:
        request = prepare_intent_request(
            intent,
            message=state.get("message", ""),
            preset=state.get("preset"),
            row_limit=state.get("row_limit"),
            brand_terms=state.get("brand_terms") or (),
            page_url=state.get("page_url", ""),
            current_range=state.get("current_range"),
        )
        # A page URL collapses every intent into the same drilldown.
        if any(existing.intent == request.intent for existing in requests):
            continue
        requests.append(request)
    return {"requests": requests}


async def dispatch_node(state: AnswerState) -> AnswerState:
    results = await run_intents(
        state["site_url"],
        state["requests"],
        state["source"],
        thresholds=state.get("thresholds"),
        today=state.get("today"),
    )
    return {"results": results}


def synthesize_node(state: AnswerState) -> AnswerState:
    requests = state.get("requests") or []
    answer = build_answer(
        state.get("message", ""),
        state["site_url"],
        requests[0].preset if requests else state.get("preset") or "last28",
        requests[0].intent if requests else None,
        state.get("results") or [],
        thresholds=state.get("thresholds"),
    )
    return {"answer": answer}


def render_node(state: AnswerState) -> AnswerState:
    markdown = render_answer_markdown(state["answer"])
    evaluation = evaluate_answer_markdown(markdown)
    if not evaluation["passed"]:
        logger.warning("Rendered answer failed layout checks: %s", "; ".join(evaluation["issues"]))
    return {"markdown": markdown, "evaluation": evaluation}


def build_workflow_app():
    workflow = StateGraph(AnswerState)
    workflow.add_node("prepare_requests", prepare_requests_node)
    workflow.add_node("dispatch", dispatch_node)
    workflow.add_node("synthesize", synthesize_node)
    workflow.add_node("render", render_node)

    workflow.set_entry_point("prepare_requests")
    workflow.add_edge("prepare_requests", "dispatch")
    workflow.add_edge("dispatch", "synthesize")
    workflow.add_edge("synthesize", "render")
    workflow.add_edge("render", END)

    return workflow.compile()


async def run_answer_workflow(
    site_url: str,
    intents: list[str],
    source: RowSource,
    *,
    message: str = "",
    preset: str | None = None,
    row_limit: int | None = None,
    brand_terms: list[str] | None = None,
    page_url: str = "",
    current_range: DateRange | None = None,
    today: date | None = None,
    thresholds: AnalysisThresholds | None = None,
) -> AnswerState:
    app = build_workflow_app()
    final_state = await app.ainvoke(
        {
            "site_url": site_url,
            "message": message,
            "intents": list(intents),
            "preset": preset or "last28",
            "row_limit": row_limit,
            "brand_terms": list(brand_terms or []),
            "page_url": page_url,
            "current_range": current_range,
            "today": today,
            "thresholds": thresholds or AnalysisThresholds(),
            "source": source,
        }
    )
    return final_state
