"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            print(f"[settings] ✓ Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


@dataclass
class ProvisioningBatchConfig:
    """Batching and scheduling bounds for the provisioning dispatcher.

    Attributes:
        max_operations: Records sent per bulk request (1-50)
        flush_seconds: Periodic flush interval in seconds (1-600)
        reclaim_after_seconds: Age after which an InProgress record is treated
            as orphaned and returned to the queue (defaults to 10x flush interval)
    """
    max_operations: int = 50
    flush_seconds: float = 5
    reclaim_after_seconds: Optional[float] = None

    MAX_OPERATIONS_LIMIT = 50
    FLUSH_SECONDS_LIMIT = 600

    def __post_init__(self) -> None:
        if not 1 <= self.max_operations <= self.MAX_OPERATIONS_LIMIT:
            raise ValueError(
                f"max_operations must be between 1 and {self.MAX_OPERATIONS_LIMIT} "
                f"(got {self.max_operations})"
            )
        if not 1 <= self.flush_seconds <= self.FLUSH_SECONDS_LIMIT:
            raise ValueError(
                f"flush_seconds must be between 1 and {self.FLUSH_SECONDS_LIMIT} "
                f"(got {self.flush_seconds})"
            )
        if self.reclaim_after_seconds is None:
            self.reclaim_after_seconds = self.flush_seconds * 10
        elif self.reclaim_after_seconds < self.flush_seconds:
            raise ValueError("reclaim_after_seconds must not be shorter than flush_seconds")


@dataclass
class GraphConfig:
    """Microsoft Graph synchronization job coordinates and credentials."""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    service_principal_id: str = ""
    sync_job_id: str = ""
    base_url: str = "https://graph.microsoft.com/v1.0/"
    authority: str = "https://login.microsoftonline.com"
    request_timeout: float = 30
    max_retries: int = 5

    @property
    def bulk_upload_path(self) -> str:
        """Relative path of the bulkUpload endpoint for the configured sync job."""
        return (
            f"servicePrincipals/{self.service_principal_id}"
            f"/synchronization/jobs/{self.sync_job_id}/bulkUpload"
        )

    @property
    def token_url(self) -> str:
        return f"{self.authority.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # SCIM intake
    scim_shared_secret: str

    # Persistence
    database_url: str = "sqlite:///provisioning.sqlite"

    # Outbound
    graph: GraphConfig = field(default_factory=GraphConfig)

    # Dispatcher
    batch: ProvisioningBatchConfig = field(default_factory=ProvisioningBatchConfig)
    dispatcher_enabled: bool = True

    # Logging
    log_level: str = "INFO"


def _env_int(var_name: str, default: int) -> int:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{var_name} must be an integer (got {raw!r})") from None


def _env_float(var_name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{var_name} must be a number (got {raw!r})") from None


def _env_bool(var_name: str, default: bool) -> bool:
    return os.environ.get(var_name, str(default)).strip().lower() == "true"


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default/generate."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        os.environ[var_name] = demo_default
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _validate_base_url(base_url: str) -> str:
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"GRAPH_BASE_URL must be a valid absolute URI (got {base_url!r})")
    # Relative endpoint paths are joined onto the base, so it must end with '/'
    return base_url if base_url.endswith("/") else base_url + "/"


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # SCIM shared secret
    scim_shared_secret = _load_secret_from_file("scim_shared_secret", "SCIM_SHARED_SECRET")
    if not scim_shared_secret:
        if not demo_mode:
            raise RuntimeError("SCIM_SHARED_SECRET not found in /run/secrets or environment")
        scim_shared_secret = secrets.token_urlsafe(24)
        os.environ["SCIM_SHARED_SECRET"] = scim_shared_secret
        print("[demo-mode] Generated temporary SCIM_SHARED_SECRET")
    if len(scim_shared_secret) < 12:
        raise ValueError("SCIM_SHARED_SECRET must be at least 12 characters")

    # Graph client secret
    graph_client_secret = _load_secret_from_file("graph_client_secret", "GRAPH_CLIENT_SECRET")
    if not graph_client_secret:
        graph_client_secret = _get_or_generate(
            "GRAPH_CLIENT_SECRET", demo_default="demo-graph-secret", demo_mode=demo_mode
        )

    graph = GraphConfig(
        tenant_id=_get_or_generate("GRAPH_TENANT_ID", demo_default="demo-tenant", demo_mode=demo_mode),
        client_id=_get_or_generate("GRAPH_CLIENT_ID", demo_default="demo-client", demo_mode=demo_mode),
        client_secret=graph_client_secret,
        service_principal_id=_get_or_generate(
            "GRAPH_SERVICE_PRINCIPAL_ID", demo_default="demo-service-principal", demo_mode=demo_mode
        ),
        sync_job_id=_get_or_generate("GRAPH_SYNC_JOB_ID", demo_default="demo-sync-job", demo_mode=demo_mode),
        base_url=_validate_base_url(os.environ.get("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0/")),
        authority=os.environ.get("GRAPH_AUTHORITY", "https://login.microsoftonline.com"),
        request_timeout=_env_float("GRAPH_REQUEST_TIMEOUT", 30),
        max_retries=_env_int("GRAPH_MAX_RETRIES", 5),
    )
    if graph.max_retries < 0:
        raise ValueError("GRAPH_MAX_RETRIES must not be negative")

    batch = ProvisioningBatchConfig(
        max_operations=_env_int("PROVISIONING_MAX_OPERATIONS", 50),
        flush_seconds=_env_float("PROVISIONING_FLUSH_SECONDS", 5),
        reclaim_after_seconds=_env_float("PROVISIONING_RECLAIM_SECONDS", None),
    )

    database_url = os.environ.get("DATABASE_URL", "sqlite:///provisioning.sqlite")

    # Demo mode has no real sync job behind it, so the dispatcher stays off unless asked for
    dispatcher_enabled = _env_bool("DISPATCHER_ENABLED", not demo_mode)

    log_level = os.environ.get("LOG_LEVEL", "INFO").strip().upper()

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(
        f"[settings] Mode={mode_label}; batch={batch.max_operations}; "
        f"flush={batch.flush_seconds}s; dispatcher={'on' if dispatcher_enabled else 'off'}"
    )

    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        scim_shared_secret=scim_shared_secret,
        database_url=database_url,
        graph=graph,
        batch=batch,
        dispatcher_enabled=dispatcher_enabled,
        log_level=log_level,
    )
