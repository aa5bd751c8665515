from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import httplib2
from google.auth.credentials import Credentials
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as UserCredentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from gsc_answer_agent.errors import UpstreamFetchError
from gsc_answer_agent.models import QueryPlan


logger = logging.getLogger(__name__)


class GSCClient:
    """Search Console Search Analytics row source for the answer engine."""

    SCOPES = ["https://www.googleapis.com/auth/webmasters.readonly"]

    def __init__(
        self,
        site_url: str = "",
        credentials_path: str = "",
        oauth_client_secret_path: str = "",
        oauth_refresh_token: str = "",
        oauth_token_uri: str = "https://oauth2.googleapis.com/token",
        search_type: str = "web",
        http_timeout_sec: int = 30,
        api_retries: int = 3,
    ) -> None:
        self.site_url = site_url
        self.credentials_path = credentials_path
        self.oauth_client_secret_path = oauth_client_secret_path
        self.oauth_refresh_token = oauth_refresh_token
        self.oauth_token_uri = oauth_token_uri
        self.search_type = search_type
        self.http_timeout_sec = http_timeout_sec
        self.api_retries = api_retries
        self._credentials: Credentials | None = None
        self._service = None

    def _build_service(self):
        if self._service is not None:
            return self._service
        self._service = build(
            "searchconsole",
            "v1",
            credentials=self._get_credentials(),
            cache_discovery=False,
        )
        return self._service

    def _get_credentials(self) -> Credentials:
        if self._credentials is None:
            self._credentials = self._build_credentials()
        return self._credentials

    def _authorized_http(self) -> AuthorizedHttp:
        # httplib2 connections are not thread-safe; each call gets its own.
        return AuthorizedHttp(
            self._get_credentials(),
            http=httplib2.Http(timeout=self.http_timeout_sec),
        )

    def _build_credentials(self) -> Credentials:
        if self.credentials_path:
            payload = self._load_json(self.credentials_path)
            if payload.get("type") == "service_account":
                return service_account.Credentials.from_service_account_file(
                    self.credentials_path,
                    scopes=self.SCOPES,
                )
            return self._oauth_credentials_from_payload(payload)

        if self.oauth_client_secret_path:
            payload = self._load_json(self.oauth_client_secret_path)
            return self._oauth_credentials_from_payload(payload)

        raise UpstreamFetchError(
            "Not connected to Google Search Console. Set GSC_CREDENTIALS_PATH "
            "(service account or oauth JSON) or GSC_OAUTH_CLIENT_SECRET_PATH + "
            "GSC_OAUTH_REFRESH_TOKEN.",
            status_code=401,
        )

    def _oauth_credentials_from_payload(self, payload: dict) -> UserCredentials:
        # OAuth JSON can be either {"installed": {...}} or {"web": {...}}.
        client_section = payload.get("installed") or payload.get("web") or payload
        client_id = client_section.get("client_id")
        client_secret = client_section.get("client_secret")
        token_uri = client_section.get("token_uri") or self.oauth_token_uri

        if not (client_id and client_secret):
            raise UpstreamFetchError(
                "OAuth client JSON is missing client_id/client_secret.",
                status_code=401,
            )
        if not self.oauth_refresh_token:
            raise UpstreamFetchError(
                "Not connected to Google Search Console: missing GSC_OAUTH_REFRESH_TOKEN.",
                status_code=401,
            )

        return UserCredentials(
            token=None,
            refresh_token=self.oauth_refresh_token,
            token_uri=token_uri,
            client_id=client_id,
            client_secret=client_secret,
            scopes=self.SCOPES,
        )

    @staticmethod
    def _load_json(path_value: str) -> dict:
        path = Path(path_value)
        if not path.exists():
            raise UpstreamFetchError(f"GSC credentials file not found: {path_value}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise UpstreamFetchError(f"Invalid JSON in credentials file: {path_value}") from exc

    def plan_to_body(self, plan: QueryPlan) -> dict:
        body: dict = {
            "startDate": plan.date_range.start_date,
            "endDate": plan.date_range.end_date,
            "type": self.search_type,
        }
        if plan.dimensions:
            body["dimensions"] = list(plan.dimensions)
        if plan.row_limit is not None:
            body["rowLimit"] = plan.row_limit
        if plan.start_row is not None:
            body["startRow"] = plan.start_row
        if plan.filter_groups:
            body["dimensionFilterGroups"] = [
                {
                    "groupType": group.group_type,
                    "filters": [
                        {
                            "dimension": item.dimension,
                            "operator": item.operator,
                            "expression": item.expression,
                        }
                        for item in group.filters
                    ],
                }
                for group in plan.filter_groups
            ]
        return body

    def _execute(self, plan: QueryPlan) -> dict:
        site_url = plan.site_url or self.site_url
        if not site_url:
            raise UpstreamFetchError("Missing Search Console site URL.", status_code=400)
        service = self._build_service()
        body = self.plan_to_body(plan)
        try:
            return (
                service.searchanalytics()
                .query(siteUrl=site_url, body=body)
                .execute(http=self._authorized_http(), num_retries=self.api_retries)
            )
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            raise UpstreamFetchError(
                f"GSC API error for dimensions {list(plan.dimensions)}: {exc}",
                status_code=int(status) if status else None,
            ) from exc
        except (TimeoutError, OSError) as exc:
            raise UpstreamFetchError(
                f"GSC API request failed for dimensions {list(plan.dimensions)}: {exc}"
            ) from exc

    async def fetch_rows(self, plan: QueryPlan) -> list[dict]:
        response = await asyncio.to_thread(self._execute, plan)
        rows = list(response.get("rows", []))
        logger.debug("GSC returned %d rows for %s.", len(rows), plan.date_range.label())
        return rows

    async def fetch_totals(self, plan: QueryPlan) -> dict:
        response = await asyncio.to_thread(self._execute, plan)
        row = (response.get("rows") or [{}])[0]
        clicks = float(row.get("clicks", 0.0))
        impressions = float(row.get("impressions", 0.0))
        return {
            "clicks": clicks,
            "impressions": impressions,
            "ctr": float(row.get("ctr", (clicks / impressions if impressions else 0.0))),
            "position": float(row.get("position", 0.0)),
        }

    def list_sites(self) -> list[dict[str, str]]:
        service = self._build_service()
        try:
            response = service.sites().list().execute(
                http=self._authorized_http(), num_retries=self.api_retries
            )
        except HttpError as exc:
            status = getattr(exc.resp, "status", None)
            raise UpstreamFetchError(
                f"GSC API sites error: {exc}",
                status_code=int(status) if status else None,
            ) from exc
        sites = [
            {
                "site_url": str(entry.get("siteUrl", "")),
                "permission_level": str(entry.get("permissionLevel", "")),
            }
            for entry in response.get("siteEntry", [])
        ]
        sites.sort(key=lambda item: item["site_url"])
        return sites
