from gsc_answer_agent.config import AgentConfig, AnalysisThresholds


def test_defaults(monkeypatch):
    for name in (
        "DEFAULT_PRESET",
        "DEFAULT_ROW_LIMIT",
        "MAX_ROW_LIMIT",
        "BRAND_TERMS",
        "GSC_CREDENTIALS_PATH",
        "GSC_OAUTH_CLIENT_SECRET_PATH",
        "GSC_OAUTH_REFRESH_TOKEN",
        "CTR_OPPORTUNITY_MIN_IMPRESSIONS",
    ):
        monkeypatch.delenv(name, raising=False)
    config = AgentConfig.from_env()

    assert config.default_preset == "last28"
    assert config.default_row_limit == 250
    assert config.max_row_limit == 1000
    assert config.brand_terms == ()
    assert config.gsc_enabled is False
    assert config.thresholds == AnalysisThresholds()


def test_placeholder_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("DEFAULT_PRESET", "DEFAULT_PRESET=")
    monkeypatch.setenv("GSC_SITE_URL", "example.com")
    config = AgentConfig.from_env()
    assert config.default_preset == "last28"
    assert config.gsc_site_url == "https://example.com/"


def test_domain_property_is_kept(monkeypatch):
    monkeypatch.setenv("GSC_SITE_URL", "sc-domain:example.com")
    assert AgentConfig.from_env().gsc_site_url == "sc-domain:example.com"


def test_row_limits_are_clamped(monkeypatch):
    monkeypatch.setenv("MAX_ROW_LIMIT", "5000")
    monkeypatch.setenv("DEFAULT_ROW_LIMIT", "0")
    config = AgentConfig.from_env()
    assert config.max_row_limit == 1000
    assert config.default_row_limit == 1


def test_brand_terms_and_thresholds_from_env(monkeypatch):
    monkeypatch.setenv("BRAND_TERMS", "acme, acme store ,,")
    monkeypatch.setenv("CTR_OPPORTUNITY_MIN_IMPRESSIONS", "250")
    monkeypatch.setenv("CANNIBALIZATION_MAX_CONCENTRATION", "0.7")
    config = AgentConfig.from_env()
    assert config.brand_terms == ("acme", "acme store")
    assert config.thresholds.ctr_opportunity_min_impressions == 250
    assert config.thresholds.cannibalization_max_concentration == 0.7


def test_gsc_enabled_with_oauth_pair(monkeypatch):
    monkeypatch.delenv("GSC_CREDENTIALS_PATH", raising=False)
    monkeypatch.setenv("GSC_OAUTH_CLIENT_SECRET_PATH", "client.json")
    monkeypatch.setenv("GSC_OAUTH_REFRESH_TOKEN", "token")
    assert AgentConfig.from_env().gsc_enabled is True
