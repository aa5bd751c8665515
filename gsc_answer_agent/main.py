from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from gsc_answer_agent.clients.gsc_client import GSCClient
from gsc_answer_agent.config import AgentConfig
from gsc_answer_agent.errors import AnswerEngineError, InvalidParametersError, UpstreamFetchError
from gsc_answer_agent.intents import RowSource
from gsc_answer_agent.models import DateRange, Intent
from gsc_answer_agent.reporting import write_docx
from gsc_answer_agent.time_windows import parse_ymd
from gsc_answer_agent.workflow import run_answer_workflow


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Search Console comparative answer agent")
    parser.add_argument(
        "--site-url",
        dest="site_url",
        help="Search Console property (default: GSC_SITE_URL).",
    )
    parser.add_argument(
        "--intent",
        action="append",
        choices=[intent.value for intent in Intent],
        help="Intent to answer; repeat for up to three intents.",
    )
    parser.add_argument("--message", default="", help="Original question text.")
    parser.add_argument(
        "--preset",
        choices=["last7", "last28", "last90"],
        help="Comparison window (default: DEFAULT_PRESET or last28).",
    )
    parser.add_argument("--row-limit", dest="row_limit", type=int, help="Rows per intent (1-1000).")
    parser.add_argument(
        "--brand-term",
        dest="brand_terms",
        action="append",
        help="Brand term for BRAND_VS_NONBRAND; repeatable (default: BRAND_TERMS).",
    )
    parser.add_argument("--page-url", dest="page_url", default="", help="Page URL to drill down.")
    parser.add_argument("--start-date", dest="start_date", help="Explicit current range start (YYYY-MM-DD).")
    parser.add_argument("--end-date", dest="end_date", help="Explicit current range end (YYYY-MM-DD).")
    parser.add_argument(
        "--run-date",
        dest="run_date",
        help="Treat this date as today when resolving presets (YYYY-MM-DD).",
    )
    parser.add_argument(
        "--output",
        help="Write the markdown answer to this file (bare names go to OUTPUT_DIR).",
    )
    parser.add_argument(
        "--docx",
        help="Also export the answer to this DOCX file (bare names go to OUTPUT_DIR).",
    )
    parser.add_argument(
        "--list-sites",
        action="store_true",
        help="List Search Console properties available to the credentials and exit.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def _parse_date_arg(value: str | None, flag: str) -> date | None:
    if not value:
        return None
    try:
        return parse_ymd(value)
    except InvalidParametersError as exc:
        raise SystemExit(f"Invalid {flag}: {exc}") from exc


def _current_range_from_args(args: argparse.Namespace) -> DateRange | None:
    start = _parse_date_arg(args.start_date, "--start-date")
    end = _parse_date_arg(args.end_date, "--end-date")
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise SystemExit("Provide both --start-date and --end-date for an explicit range.")
    try:
        return DateRange(start, end)
    except InvalidParametersError as exc:
        raise SystemExit(str(exc)) from exc


def _output_path(value: str, output_dir: str) -> Path:
    """Place bare file names under OUTPUT_DIR; paths with a directory are kept as given."""
    path = Path(value)
    if path.is_absolute() or path.parent != Path("."):
        return path
    return Path(output_dir) / path


def _build_client(config: AgentConfig, site_url: str) -> GSCClient:
    return GSCClient(
        site_url=site_url,
        credentials_path=config.gsc_credentials_path,
        oauth_client_secret_path=config.gsc_oauth_client_secret_path,
        oauth_refresh_token=config.gsc_oauth_refresh_token,
        oauth_token_uri=config.gsc_oauth_token_uri,
        search_type=config.gsc_search_type,
        http_timeout_sec=config.gsc_http_timeout_sec,
        api_retries=config.gsc_api_retries,
    )


def main() -> None:
    try:
        load_dotenv(find_dotenv(usecwd=True), override=False)
    except OSError:
        pass

    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = AgentConfig.from_env()

    if not config.gsc_enabled:
        raise SystemExit(
            "GSC is not configured. Provide either "
            "GSC_CREDENTIALS_PATH or GSC_OAUTH_CLIENT_SECRET_PATH + GSC_OAUTH_REFRESH_TOKEN."
        )

    site_url = (args.site_url or config.gsc_site_url).strip()
    client = _build_client(config, site_url)

    if args.list_sites:
        try:
            sites = client.list_sites()
        except UpstreamFetchError as exc:
            raise SystemExit(f"Listing properties failed: {exc}") from exc
        for site in sites:
            print(f"{site['site_url']} ({site['permission_level']})")
        return

    if not site_url:
        raise SystemExit("Missing site URL. Pass --site-url or set GSC_SITE_URL.")
    if not args.intent:
        raise SystemExit("Provide at least one --intent.")

    today = _parse_date_arg(args.run_date, "--run-date")
    current_range = _current_range_from_args(args)
    row_limit = args.row_limit if args.row_limit is not None else config.default_row_limit
    if 1 <= row_limit <= 1000:
        row_limit = min(row_limit, config.max_row_limit)
    source = RowSource(client.fetch_rows, client.fetch_totals)

    print(f"Answering {', '.join(args.intent)} for {site_url}")
    try:
        state = asyncio.run(
            run_answer_workflow(
                site_url,
                list(args.intent),
                source,
                message=args.message,
                preset=args.preset or config.default_preset,
                row_limit=row_limit,
                brand_terms=list(args.brand_terms or config.brand_terms),
                page_url=args.page_url,
                current_range=current_range,
                today=today,
                thresholds=config.thresholds,
            )
        )
    except InvalidParametersError as exc:
        raise SystemExit(f"Invalid parameters ({exc.field or 'request'}): {exc}") from exc
    except UpstreamFetchError as exc:
        if exc.is_authorization_error:
            raise SystemExit(f"Search Console authorization failed: {exc}") from exc
        raise SystemExit(f"Search Console request failed: {exc}") from exc
    except AnswerEngineError as exc:
        raise SystemExit(f"Answer failed: {exc}") from exc

    markdown = state["markdown"]
    evaluation = state["evaluation"]

    if args.output:
        output_path = _output_path(args.output, config.output_dir)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(markdown, encoding="utf-8")
        print(f"Answer written: {output_path}")
    else:
        print(markdown, end="")

    if args.docx:
        docx_path = _output_path(args.docx, config.output_dir)
        write_docx(docx_path, f"Search Console answer: {site_url}", markdown)
        print(f"DOCX written: {docx_path}")

    if not evaluation["passed"]:
        print("Layout check issues:")
        for issue in evaluation["issues"]:
            print(f"- {issue}")
        raise SystemExit(2)


if __name__ == "__main__":
    main()
