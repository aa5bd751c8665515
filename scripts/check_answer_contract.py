#!/usr/bin/env python3
from __future__ import annotations

import argparse
from pathlib import Path
import sys

from docx import Document
from dotenv import find_dotenv, load_dotenv

from gsc_answer_agent.config import AgentConfig
from gsc_answer_agent.evaluation import evaluate_answer_markdown


def _extract_text(path: Path) -> str:
    if path.suffix.lower() == ".docx":
        doc = Document(path)
        # The DOCX export drops markdown markers; rebuild them from paragraph styles.
        lines: list[str] = []
        number = 0
        for par in doc.paragraphs:
            style = par.style.name if par.style is not None else ""
            if style == "Title":
                continue
            if style.startswith("Heading"):
                number = 0
                lines.append(f"## {par.text}")
            elif style.startswith("List Number"):
                number += 1
                lines.append(f"{number}. {par.text}")
            elif style.startswith("List Bullet"):
                lines.append(f"• {par.text}")
            else:
                lines.append(par.text)
        return "\n".join(lines) + "\n"
    return path.read_text(encoding="utf-8")


def main() -> int:
    load_dotenv(find_dotenv(usecwd=True), override=False)
    parser = argparse.ArgumentParser(description="Check rendered answers against the section layout.")
    parser.add_argument("paths", nargs="*", help="Answer files (.md or .docx).")
    parser.add_argument(
        "--dir",
        default=AgentConfig.from_env().output_dir,
        help="Directory scanned when no paths are given (default: OUTPUT_DIR).",
    )
    args = parser.parse_args()

    files = [Path(value) for value in args.paths]
    if not files:
        answer_dir = Path(args.dir)
        if not answer_dir.exists():
            print(f"Directory not found: {answer_dir}")
            return 1
        files = sorted([*answer_dir.glob("*.md"), *answer_dir.glob("*.docx")])
    if not files:
        print("No answer files found to check.")
        return 1

    failed = False
    for path in files:
        result = evaluate_answer_markdown(_extract_text(path))
        mark = "PASS" if result["passed"] else "FAIL"
        metrics = result.get("metrics", {})
        print(
            f"{mark} | {path.name} | findings={metrics.get('key_findings_count', 0)} "
            f"causes={metrics.get('likely_causes_count', 0)} "
            f"actions={metrics.get('recommended_actions_count', 0)}"
        )
        if not result["passed"]:
            failed = True
            for issue in result.get("issues", []):
                print(f"  - {issue}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
