from __future__ import annotations

import pytest
from docx import Document

from gsc_answer_agent.errors import InvalidParametersError
from gsc_answer_agent.evaluation import evaluate_answer_markdown
from gsc_answer_agent.models import Answer, Confidence, RecommendedAction
from gsc_answer_agent.reporting import render_answer_markdown, write_docx


def _answer(**overrides) -> Answer:
    values = dict(
        summary="Analyzed top losing queries for https://example.com/.",
        key_findings=("Clicks -20% vs previous (1,000 → 800).",) * 5,
        likely_causes=("Cause one.", "Cause two.", "Cause three."),
        recommended_actions=(
            RecommendedAction("Fix titles.", "High impact"),
            RecommendedAction("Check indexing.", "Medium impact"),
            RecommendedAction("Re-check later.", "Low impact"),
        ),
        what_stands_out="Clicks fell. Impressions rose.",
        confidence=Confidence("High", "Plenty of volume. More text."),
    )
    values.update(overrides)
    return Answer(**values)


def test_render_layout_is_exact() -> None:
    text = render_answer_markdown(_answer())
    lines = text.splitlines()

    assert lines[0] == "## Summary"
    assert lines[3] == "## Key findings"
    assert lines[4] == "• Clicks -20% vs previous (1,000 → 800)."
    assert "1. Fix titles. [High impact]" in lines
    assert "3. Re-check later. [Low impact]" in lines
    assert lines[-4] == "What stands out: Clicks fell."
    assert lines[-2] == "## Confidence"
    assert lines[-1] == "High — Plenty of volume."
    assert text.endswith("\n")
    assert evaluate_answer_markdown(text)["passed"]


def test_render_pads_and_truncates_sections() -> None:
    answer = _answer(
        key_findings=("Only one.", "   "),
        likely_causes=tuple(f"Cause {index}." for index in range(10)),
        recommended_actions=(RecommendedAction("Single step.", "Medium impact"),),
    )
    text = render_answer_markdown(answer)
    result = evaluate_answer_markdown(text)

    assert result["passed"], result["issues"]
    assert result["metrics"]["key_findings_count"] == 4
    assert text.count("• —") == 3
    assert result["metrics"]["likely_causes_count"] == 6
    assert result["metrics"]["recommended_actions_count"] == 3
    assert "3. Review and iterate based on the biggest movers. [Low impact]" in text


def test_render_caps_findings_at_eight() -> None:
    text = render_answer_markdown(_answer(key_findings=tuple(f"Finding {index}." for index in range(12))))
    assert "• Finding 7." in text
    assert "• Finding 8." not in text


def test_write_docx_keeps_sections(tmp_path) -> None:
    text = render_answer_markdown(_answer())
    output = tmp_path / "nested" / "answer.docx"
    write_docx(output, "Search Console answer", text)

    doc = Document(output)
    paragraphs = [par.text for par in doc.paragraphs]
    assert "Summary" in paragraphs
    assert "Recommended actions" in paragraphs
    assert "Fix titles. [High impact]" in paragraphs
    assert "What stands out: Clicks fell." in paragraphs
    assert "High — Plenty of volume." in paragraphs


def test_render_keeps_multiline_fields_on_one_line() -> None:
    answer = _answer(
        summary="First line\n## Key findings",
        key_findings=("d\n## Confidence", "Two.", "Three.", "Four."),
        likely_causes=("Cause\n\none.", "Cause two.", "Cause three."),
        recommended_actions=(
            RecommendedAction("Fix\n1. titles.", "High impact"),
            RecommendedAction("Check indexing.", "Medium impact"),
            RecommendedAction("Re-check later.", "Low impact"),
        ),
        what_stands_out="Clicks\n## Summary fell.",
        confidence=Confidence("Medium", "Volume\n## Confidence is fine."),
    )
    text = render_answer_markdown(answer)
    result = evaluate_answer_markdown(text)

    assert result["passed"], result["issues"]
    assert text.count("## Confidence") == 3
    assert "• d ## Confidence" in text.splitlines()
    assert "1. Fix 1. titles. [High impact]" in text.splitlines()
    assert "Medium — Volume ## Confidence is fine." in text.splitlines()


def test_blank_fields_render_fillers() -> None:
    text = render_answer_markdown(_answer(summary="  ", what_stands_out="", confidence=Confidence("Low", " ")))
    result = evaluate_answer_markdown(text)
    assert result["passed"], result["issues"]
    assert text.splitlines()[1] == "—"


def test_unknown_priority_and_level_are_rejected() -> None:
    with pytest.raises(InvalidParametersError) as excinfo:
        RecommendedAction("Ship it.", "Urgent")
    assert excinfo.value.field == "priority"
    with pytest.raises(InvalidParametersError) as excinfo:
        Confidence("Certain", "Trust me.")
    assert excinfo.value.field == "level"
