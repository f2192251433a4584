import os

import pytest

from app.config import settings
from app.config.settings import GraphConfig, ProvisioningBatchConfig, _get_or_generate

GRAPH_VARS = (
    "GRAPH_TENANT_ID",
    "GRAPH_CLIENT_ID",
    "GRAPH_CLIENT_SECRET",
    "GRAPH_SERVICE_PRINCIPAL_ID",
    "GRAPH_SYNC_JOB_ID",
    "GRAPH_BASE_URL",
)
BATCH_VARS = ("PROVISIONING_MAX_OPERATIONS", "PROVISIONING_FLUSH_SECONDS", "PROVISIONING_RECLAIM_SECONDS")


@pytest.fixture()
def clean_env(monkeypatch):
    """Isolate load_settings() from the developer's environment and /run/secrets."""
    for var in GRAPH_VARS + BATCH_VARS + ("SCIM_SHARED_SECRET", "DISPATCHER_ENABLED", "DATABASE_URL", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)

    def env_only(name, env_var=None):
        return os.environ.get(env_var) if env_var else None

    monkeypatch.setattr(settings, "_load_secret_from_file", env_only)
    return monkeypatch


def _production_env(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "false")
    monkeypatch.setenv("SCIM_SHARED_SECRET", "prod-shared-secret-123")
    monkeypatch.setenv("GRAPH_TENANT_ID", "tenant")
    monkeypatch.setenv("GRAPH_CLIENT_ID", "client")
    monkeypatch.setenv("GRAPH_CLIENT_SECRET", "secret")
    monkeypatch.setenv("GRAPH_SERVICE_PRINCIPAL_ID", "sp")
    monkeypatch.setenv("GRAPH_SYNC_JOB_ID", "job")


# ─────────────────────────────────────────────────────────────────────────────
# Batch configuration bounds
# ─────────────────────────────────────────────────────────────────────────────

def test_batch_defaults():
    cfg = ProvisioningBatchConfig()
    assert cfg.max_operations == 50
    assert cfg.flush_seconds == 5
    assert cfg.reclaim_after_seconds == 50


@pytest.mark.parametrize("max_operations", [0, 51])
def test_batch_rejects_out_of_range_max_operations(max_operations):
    with pytest.raises(ValueError):
        ProvisioningBatchConfig(max_operations=max_operations)


@pytest.mark.parametrize("flush_seconds", [0, 601])
def test_batch_rejects_out_of_range_flush_interval(flush_seconds):
    with pytest.raises(ValueError):
        ProvisioningBatchConfig(flush_seconds=flush_seconds)


def test_batch_rejects_reclaim_shorter_than_flush():
    with pytest.raises(ValueError):
        ProvisioningBatchConfig(flush_seconds=10, reclaim_after_seconds=5)


def test_graph_config_paths():
    cfg = GraphConfig(tenant_id="t", service_principal_id="sp", sync_job_id="job")
    assert cfg.bulk_upload_path == "servicePrincipals/sp/synchronization/jobs/job/bulkUpload"
    assert cfg.token_url == "https://login.microsoftonline.com/t/oauth2/v2.0/token"


# ─────────────────────────────────────────────────────────────────────────────
# Environment helpers
# ─────────────────────────────────────────────────────────────────────────────

def test_get_or_generate_uses_demo_default(monkeypatch):
    monkeypatch.delenv("SAMPLE_VAR", raising=False)
    value = _get_or_generate("SAMPLE_VAR", demo_default="demo", demo_mode=True)
    assert value == "demo"
    assert os.environ["SAMPLE_VAR"] == "demo"


def test_get_or_generate_optional(monkeypatch):
    monkeypatch.delenv("OPTIONAL_VAR", raising=False)
    assert _get_or_generate("OPTIONAL_VAR", required=False) == ""


def test_get_or_generate_missing_required(monkeypatch):
    monkeypatch.delenv("REQUIRED_VAR", raising=False)
    with pytest.raises(RuntimeError):
        _get_or_generate("REQUIRED_VAR", required=True, demo_mode=False)


def test_load_secret_prefers_run_secrets(monkeypatch, tmp_path):
    (tmp_path / "scim_shared_secret").write_text("file-secret-value\n")
    real_path = settings.Path

    def fake_path(target):
        if str(target) == "/run/secrets":
            return tmp_path
        return real_path(target)

    monkeypatch.setattr(settings, "Path", fake_path)
    monkeypatch.setenv("SCIM_SHARED_SECRET", "env-secret-value")

    assert settings._load_secret_from_file("scim_shared_secret", "SCIM_SHARED_SECRET") == "file-secret-value"


# ─────────────────────────────────────────────────────────────────────────────
# load_settings()
# ─────────────────────────────────────────────────────────────────────────────

def test_load_settings_demo_mode_generates_defaults(clean_env):
    clean_env.setenv("DEMO_MODE", "true")

    cfg = settings.load_settings()

    assert cfg.demo_mode is True
    assert len(cfg.scim_shared_secret) >= 12
    assert cfg.graph.tenant_id == "demo-tenant"
    assert cfg.dispatcher_enabled is False
    assert cfg.database_url == "sqlite:///provisioning.sqlite"


def test_load_settings_production_requires_shared_secret(clean_env):
    _production_env(clean_env)
    clean_env.delenv("SCIM_SHARED_SECRET")

    with pytest.raises(RuntimeError):
        settings.load_settings()


def test_load_settings_production_requires_graph_coordinates(clean_env):
    _production_env(clean_env)
    clean_env.delenv("GRAPH_SYNC_JOB_ID")

    with pytest.raises(RuntimeError):
        settings.load_settings()


def test_load_settings_rejects_short_shared_secret(clean_env):
    _production_env(clean_env)
    clean_env.setenv("SCIM_SHARED_SECRET", "short")

    with pytest.raises(ValueError):
        settings.load_settings()


def test_load_settings_production_values(clean_env):
    _production_env(clean_env)
    clean_env.setenv("GRAPH_BASE_URL", "https://graph.example.test/beta")
    clean_env.setenv("PROVISIONING_MAX_OPERATIONS", "20")
    clean_env.setenv("PROVISIONING_FLUSH_SECONDS", "2")
    clean_env.setenv("LOG_LEVEL", "debug")

    cfg = settings.load_settings()

    assert cfg.demo_mode is False
    assert cfg.dispatcher_enabled is True
    assert cfg.graph.base_url == "https://graph.example.test/beta/"
    assert cfg.batch.max_operations == 20
    assert cfg.batch.flush_seconds == 2
    assert cfg.batch.reclaim_after_seconds == 20
    assert cfg.log_level == "DEBUG"


def test_load_settings_rejects_relative_base_url(clean_env):
    _production_env(clean_env)
    clean_env.setenv("GRAPH_BASE_URL", "/v1.0/")

    with pytest.raises(ValueError):
        settings.load_settings()


def test_load_settings_rejects_non_numeric_batch_size(clean_env):
    _production_env(clean_env)
    clean_env.setenv("PROVISIONING_MAX_OPERATIONS", "lots")

    with pytest.raises(ValueError):
        settings.load_settings()


def test_load_settings_dispatcher_can_be_enabled_in_demo(clean_env):
    clean_env.setenv("DEMO_MODE", "true")
    clean_env.setenv("DISPATCHER_ENABLED", "true")

    assert settings.load_settings().dispatcher_enabled is True
