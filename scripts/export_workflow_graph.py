#!/usr/bin/env python3
from __future__ import annotations

import argparse
import base64
import json
from pathlib import Path
import zlib

import requests
from dotenv import find_dotenv, load_dotenv

from gsc_answer_agent.config import AgentConfig
from gsc_answer_agent.workflow import build_workflow_app


def _encode_mermaid(mermaid: str) -> str:
    payload = json.dumps(
        {"code": mermaid, "mermaid": {"theme": "default"}},
        separators=(",", ":"),
    ).encode("utf-8")
    compressor = zlib.compressobj(level=9, wbits=zlib.MAX_WBITS)
    compressed = compressor.compress(payload) + compressor.flush()
    return base64.urlsafe_b64encode(compressed).decode("ascii").rstrip("=")


def _fetch_mermaid_render(
    mermaid: str,
    *,
    render_type: str,
    timeout_sec: int = 25,
    retries: int = 2,
) -> bytes:
    url = f"https://mermaid.ink/{render_type}/pako:{_encode_mermaid(mermaid)}"
    last_exc: requests.RequestException | None = None
    for _ in range(retries + 1):
        try:
            resp = requests.get(url, timeout=timeout_sec)
            resp.raise_for_status()
            return resp.content
        except requests.RequestException as exc:
            last_exc = exc
    raise RuntimeError(f"Mermaid render failed ({render_type}): {last_exc}")


def _workflow_mermaid() -> str:
    graph = build_workflow_app().get_graph()
    return graph.draw_mermaid().strip() + "\n"


def main() -> None:
    load_dotenv(find_dotenv(usecwd=True), override=False)
    parser = argparse.ArgumentParser(description="Export the answer workflow graph as Mermaid.")
    parser.add_argument(
        "--out-dir",
        default=AgentConfig.from_env().output_dir,
        help="Directory for the exported files (default: OUTPUT_DIR).",
    )
    parser.add_argument(
        "--render",
        action="store_true",
        help="Also render SVG through mermaid.ink (needs network access).",
    )
    args = parser.parse_args()

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    mermaid = _workflow_mermaid()
    mmd_path = out_dir / "answer_workflow.mmd"
    mmd_path.write_text(mermaid, encoding="utf-8")
    print(f"Mermaid: {mmd_path}")

    if args.render:
        svg_path = out_dir / "answer_workflow.svg"
        try:
            svg_path.write_bytes(_fetch_mermaid_render(mermaid, render_type="svg"))
        except RuntimeError as exc:
            print(f"SVG: not generated ({exc})")
        else:
            print(f"SVG: {svg_path}")


if __name__ == "__main__":
    main()
