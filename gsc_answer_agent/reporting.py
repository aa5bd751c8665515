from __future__ import annotations

import re
from pathlib import Path

from docx import Document
from docx.shared import Pt, RGBColor

from gsc_answer_agent.insights import (
    ACTIONS_BOUNDS,
    KEY_FINDINGS_BOUNDS,
    LIKELY_CAUSES_BOUNDS,
    ensure_between,
    first_sentence,
)
from gsc_answer_agent.models import Answer, RecommendedAction


BULLET = "•"
STANDS_OUT_PREFIX = "What stands out:"
SECTION_FILLER = "—"
RENDER_ACTION_FILLER = RecommendedAction(
    step="Review and iterate based on the biggest movers.",
    priority="Low impact",
)

SIGNED_VALUE_RE = re.compile(r"(?<!\w)([+-]\d[\d.,]*(?:%|pp)?)")
PRIORITY_SUFFIX_RE = re.compile(r"\s\[(High impact|Medium impact|Low impact)\]$")

DARK_GREEN = RGBColor(0x1B, 0x5E, 0x20)
DARK_RED = RGBColor(0x8B, 0x00, 0x00)


def _one_line(text: str) -> str:
    # Every rendered field must stay on a single line.
    return " ".join(str(text).split())


def render_answer_markdown(answer: Answer) -> str:
    """Serialize an answer into the fixed markdown layout.

    Section bounds are enforced here as well, so the layout holds for any
    ``Answer`` regardless of how it was built.
    """
    key_findings = ensure_between(
        [_one_line(item) for item in answer.key_findings if _one_line(item)],
        *KEY_FINDINGS_BOUNDS,
        lambda: SECTION_FILLER,
    )
    likely_causes = ensure_between(
        [_one_line(item) for item in answer.likely_causes if _one_line(item)],
        *LIKELY_CAUSES_BOUNDS,
        lambda: SECTION_FILLER,
    )
    actions = ensure_between(
        [action for action in answer.recommended_actions if _one_line(action.step)],
        *ACTIONS_BOUNDS,
        lambda: RENDER_ACTION_FILLER,
    )
    summary = _one_line(answer.summary).lstrip("#").strip() or SECTION_FILLER
    stands_out = first_sentence(_one_line(answer.what_stands_out)) or SECTION_FILLER
    reason = first_sentence(_one_line(answer.confidence.reason)) or SECTION_FILLER

    lines: list[str] = ["## Summary", summary, ""]
    lines.append("## Key findings")
    lines.extend(f"{BULLET} {item}" for item in key_findings)
    lines.append("")
    lines.append("## Likely causes")
    lines.extend(f"{BULLET} {item}" for item in likely_causes)
    lines.append("")
    lines.append("## Recommended actions")
    for index, action in enumerate(actions, start=1):
        lines.append(f"{index}. {_one_line(action.step)} [{action.priority}]")
    lines.append("")
    lines.append(f"{STANDS_OUT_PREFIX} {stands_out}")
    lines.append("")
    lines.append("## Confidence")
    lines.append(f"{answer.confidence.level} — {reason}")
    return "\n".join(lines).strip() + "\n"


def _add_markdown_runs(paragraph, text: str, *, bold: bool = False) -> None:
    last = 0
    for signed in SIGNED_VALUE_RE.finditer(text):
        start, end = signed.span()
        if start > last:
            base = paragraph.add_run(text[last:start])
            base.bold = bold
        token = signed.group(1)
        run = paragraph.add_run(token)
        run.bold = bold
        run.font.color.rgb = DARK_GREEN if token.startswith("+") else DARK_RED
        last = end
    if last < len(text):
        tail = paragraph.add_run(text[last:])
        tail.bold = bold


def _resolve_style_name(doc: Document, style_candidates: list[str], fallback: str = "Normal") -> str:
    for name in style_candidates:
        try:
            _ = doc.styles[name]
            return name
        except KeyError:
            continue
    return fallback


def _apply_paragraph_spacing(paragraph, *, compact: bool = False) -> None:
    pf = paragraph.paragraph_format
    pf.space_before = Pt(0)
    pf.space_after = Pt(3 if compact else 6)
    pf.line_spacing = 1.15


def write_docx(path: Path, title: str, content: str) -> None:
    doc = Document()
    doc.core_properties.title = title
    try:
        normal = doc.styles["Normal"]
        normal.font.name = "Calibri"
        normal.font.size = Pt(10.5)
    except KeyError:
        pass

    doc.add_heading(title, level=0)

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        heading_match = re.match(r"^(#{1,6})\s+(.+)$", line)
        if heading_match:
            level = min(len(heading_match.group(1)), 4)
            paragraph = doc.add_heading("", level=level)
            _add_markdown_runs(paragraph, heading_match.group(2))
            _apply_paragraph_spacing(paragraph, compact=True)
        elif re.match(r"^\d+\.\s+", line):
            style_name = _resolve_style_name(doc, ["List Number"])
            paragraph = doc.add_paragraph("", style=style_name)
            step = re.sub(r"^\d+\.\s+", "", line)
            priority_match = PRIORITY_SUFFIX_RE.search(step)
            if priority_match:
                _add_markdown_runs(paragraph, step[: priority_match.start()] + " ")
                _add_markdown_runs(paragraph, f"[{priority_match.group(1)}]", bold=True)
            else:
                _add_markdown_runs(paragraph, step)
            _apply_paragraph_spacing(paragraph, compact=True)
        elif line.startswith(f"{BULLET} ") or line.startswith("- "):
            style_name = _resolve_style_name(doc, ["List Bullet"])
            paragraph = doc.add_paragraph("", style=style_name)
            _add_markdown_runs(paragraph, line[2:])
            _apply_paragraph_spacing(paragraph, compact=True)
        elif line.startswith(STANDS_OUT_PREFIX):
            paragraph = doc.add_paragraph("")
            _add_markdown_runs(paragraph, STANDS_OUT_PREFIX, bold=True)
            _add_markdown_runs(paragraph, line[len(STANDS_OUT_PREFIX):])
            _apply_paragraph_spacing(paragraph, compact=False)
        else:
            paragraph = doc.add_paragraph("")
            _add_markdown_runs(paragraph, line)
            _apply_paragraph_spacing(paragraph, compact=False)

    path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(path)
