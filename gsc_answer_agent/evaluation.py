from __future__ import annotations

import re
from typing import Any


REQUIRED_HEADINGS = (
    "## Summary",
    "## Key findings",
    "## Likely causes",
    "## Recommended actions",
    "## Confidence",
)

SECTION_BOUNDS = {
    "## Key findings": (4, 8),
    "## Likely causes": (3, 6),
    "## Recommended actions": (3, 7),
}

ACTION_LINE_RE = re.compile(r"^(\d+)\.\s+(.+)\s\[(High impact|Medium impact|Low impact)\]$")
CONFIDENCE_LINE_RE = re.compile(r"^(High|Medium|Low) — \S.*$")
STANDS_OUT_RE = re.compile(r"^What stands out: \S.*$")


def _non_empty_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _section_lines(lines: list[str], heading: str) -> list[str]:
    if heading not in lines:
        return []
    start = lines.index(heading) + 1
    out: list[str] = []
    for line in lines[start:]:
        if line.startswith("## ") or line.startswith("What stands out:"):
            break
        out.append(line)
    return out


def evaluate_answer_markdown(answer_text: str) -> dict[str, Any]:
    """Check a rendered answer against the fixed section layout."""
    text = str(answer_text or "")
    issues: list[str] = []

    if not text.strip():
        return {
            "passed": False,
            "issues": ["Empty answer body."],
            "metrics": {},
        }

    lines = _non_empty_lines(text)
    heading_lines = [line for line in lines if line.startswith("## ")]

    for heading in REQUIRED_HEADINGS:
        count = heading_lines.count(heading)
        if count == 0:
            issues.append(f"Missing required section: {heading}")
        elif count > 1:
            issues.append(f"Section appears {count} times: {heading}")

    present = [heading for heading in heading_lines if heading in REQUIRED_HEADINGS]
    ordered = [heading for heading in REQUIRED_HEADINGS if heading in present]
    if present != ordered:
        issues.append("Sections are out of order.")

    unexpected = [heading for heading in heading_lines if heading not in REQUIRED_HEADINGS]
    if unexpected:
        issues.append("Unexpected sections: " + ", ".join(unexpected))

    summary_lines = _section_lines(lines, "## Summary")
    if "## Summary" in lines and not summary_lines:
        issues.append("Summary section is empty.")

    counts: dict[str, int] = {}
    for heading, (minimum, maximum) in SECTION_BOUNDS.items():
        section = _section_lines(lines, heading)
        if heading == "## Recommended actions":
            valid = [line for line in section if ACTION_LINE_RE.match(line)]
            if len(valid) != len(section):
                issues.append("Recommended actions must look like `N. <step> [<Priority>]`.")
            numbers = [int(ACTION_LINE_RE.match(line).group(1)) for line in valid]
            if numbers != list(range(1, len(numbers) + 1)):
                issues.append("Recommended actions are not numbered sequentially from 1.")
        else:
            valid = [line for line in section if line.startswith("• ")]
            if len(valid) != len(section):
                issues.append(f"{heading} contains lines that are not `•` bullets.")
        counts[heading] = len(valid)
        if heading in lines and not minimum <= len(valid) <= maximum:
            issues.append(
                f"{heading} has {len(valid)} items (expected {minimum}-{maximum})."
            )

    stands_out_index = next(
        (index for index, line in enumerate(lines) if line.startswith("What stands out:")),
        None,
    )
    if stands_out_index is None:
        issues.append("Missing `What stands out:` line.")
    else:
        if not STANDS_OUT_RE.match(lines[stands_out_index]):
            issues.append("`What stands out:` line is empty.")
        next_line = lines[stands_out_index + 1] if stands_out_index + 1 < len(lines) else ""
        if next_line != "## Confidence":
            issues.append("`What stands out:` must come immediately before `## Confidence`.")

    confidence_lines = _section_lines(lines, "## Confidence")
    if "## Confidence" in lines:
        if len(confidence_lines) != 1 or not CONFIDENCE_LINE_RE.match(confidence_lines[0]):
            issues.append("Confidence must be a single `<Level> — <sentence>` line.")

    if not text.endswith("\n"):
        issues.append("Answer must end with a newline.")

    return {
        "passed": not issues,
        "issues": issues,
        "metrics": {
            "key_findings_count": counts.get("## Key findings", 0),
            "likely_causes_count": counts.get("## Likely causes", 0),
            "recommended_actions_count": counts.get("## Recommended actions", 0),
            "heading_count": len(heading_lines),
            "has_stands_out_line": stands_out_index is not None,
        },
    }
