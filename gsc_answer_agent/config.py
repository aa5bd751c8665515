from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse


def _env(name: str, default: str = "") -> str:
    raw = os.environ.get(name)
    if raw is None:
        return default.strip()
    value = raw.strip()
    placeholder = f"{name}="
    unquoted = value.strip("'\"").strip()
    if unquoted.lower() == placeholder.lower():
        return default.strip()
    return value if value else default.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


def _env_csv(name: str, default: str = "") -> tuple[str, ...]:
    raw = _env(name, default)
    values = [part.strip() for part in raw.split(",") if part.strip()]
    return tuple(values)


def _normalize_site_url(raw: str) -> str:
    value = raw.strip()
    if not value:
        return ""
    # Domain properties are passed through untouched.
    if value.startswith("sc-domain:"):
        return value
    if not value.startswith(("http://", "https://")):
        value = f"https://{value}"

    parsed = urlparse(value)
    host = (parsed.netloc or parsed.path).strip().lower()
    scheme = parsed.scheme or "https"
    path = parsed.path if parsed.netloc else ""
    if not path.endswith("/"):
        path = f"{path}/"
    return f"{scheme}://{host}{path}"


@dataclass(frozen=True)
class AnalysisThresholds:
    ctr_opportunity_min_impressions: float = 100.0
    ctr_opportunity_max_position: float = 10.0
    ctr_opportunity_max_ctr: float = 0.03
    cannibalization_min_pages: int = 2
    cannibalization_max_concentration: float = 0.8
    cannibalization_top_pages: int = 5
    brand_top_queries_cap: int = 250
    confidence_high_impressions: float = 5000.0
    confidence_medium_impressions: float = 500.0
    clicks_swing_pct: float = 0.10

    @classmethod
    def from_env(cls) -> "AnalysisThresholds":
        defaults = cls()
        return cls(
            ctr_opportunity_min_impressions=_env_float(
                "CTR_OPPORTUNITY_MIN_IMPRESSIONS", defaults.ctr_opportunity_min_impressions
            ),
            ctr_opportunity_max_position=_env_float(
                "CTR_OPPORTUNITY_MAX_POSITION", defaults.ctr_opportunity_max_position
            ),
            ctr_opportunity_max_ctr=_env_float(
                "CTR_OPPORTUNITY_MAX_CTR", defaults.ctr_opportunity_max_ctr
            ),
            cannibalization_min_pages=max(
                2, _env_int("CANNIBALIZATION_MIN_PAGES", defaults.cannibalization_min_pages)
            ),
            cannibalization_max_concentration=_env_float(
                "CANNIBALIZATION_MAX_CONCENTRATION", defaults.cannibalization_max_concentration
            ),
            cannibalization_top_pages=max(
                1, _env_int("CANNIBALIZATION_TOP_PAGES", defaults.cannibalization_top_pages)
            ),
            brand_top_queries_cap=max(
                1, _env_int("BRAND_TOP_QUERIES_CAP", defaults.brand_top_queries_cap)
            ),
            confidence_high_impressions=_env_float(
                "CONFIDENCE_HIGH_IMPRESSIONS", defaults.confidence_high_impressions
            ),
            confidence_medium_impressions=_env_float(
                "CONFIDENCE_MEDIUM_IMPRESSIONS", defaults.confidence_medium_impressions
            ),
            clicks_swing_pct=_env_float("CLICKS_SWING_PCT", defaults.clicks_swing_pct),
        )


@dataclass(frozen=True)
class AgentConfig:
    output_dir: str

    gsc_site_url: str
    gsc_credentials_path: str
    gsc_oauth_client_secret_path: str
    gsc_oauth_refresh_token: str
    gsc_oauth_token_uri: str
    gsc_search_type: str
    gsc_http_timeout_sec: int
    gsc_api_retries: int

    default_preset: str
    default_row_limit: int
    max_row_limit: int
    brand_terms: tuple[str, ...]

    thresholds: AnalysisThresholds

    @classmethod
    def from_env(cls) -> "AgentConfig":
        default_preset = _env("DEFAULT_PRESET", "last28").lower()
        if default_preset not in {"last7", "last28", "last90"}:
            default_preset = "last28"

        max_row_limit = min(1000, max(1, _env_int("MAX_ROW_LIMIT", 1000)))
        default_row_limit = min(max_row_limit, max(1, _env_int("DEFAULT_ROW_LIMIT", 250)))

        return cls(
            output_dir=_env("OUTPUT_DIR", "outputs"),
            gsc_site_url=_normalize_site_url(_env("GSC_SITE_URL")),
            gsc_credentials_path=_env("GSC_CREDENTIALS_PATH"),
            gsc_oauth_client_secret_path=_env("GSC_OAUTH_CLIENT_SECRET_PATH"),
            gsc_oauth_refresh_token=_env("GSC_OAUTH_REFRESH_TOKEN"),
            gsc_oauth_token_uri=_env(
                "GSC_OAUTH_TOKEN_URI", "https://oauth2.googleapis.com/token"
            ),
            gsc_search_type=_env("GSC_SEARCH_TYPE", "web").lower(),
            gsc_http_timeout_sec=max(1, _env_int("GSC_HTTP_TIMEOUT_SEC", 30)),
            gsc_api_retries=max(0, _env_int("GSC_API_RETRIES", 3)),
            default_preset=default_preset,
            default_row_limit=default_row_limit,
            max_row_limit=max_row_limit,
            brand_terms=_env_csv("BRAND_TERMS"),
            thresholds=AnalysisThresholds.from_env(),
        )

    @property
    def gsc_enabled(self) -> bool:
        return bool(
            self.gsc_credentials_path
            or (self.gsc_oauth_client_secret_path and self.gsc_oauth_refresh_token)
        )
