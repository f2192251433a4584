"""Low-level HTTP client for the Graph synchronization bulkUpload API.

Handles client-credentials token acquisition, transient-error retries and
translation of the bulk response into per-operation results.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.config.settings import GraphConfig
from .exceptions import GraphAPIError, GraphAuthError, GraphTransportError
from .models import BulkOperation, BulkResult

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
RETRY_STATUSES = (429, 500, 502, 503, 504)
TOKEN_EXPIRY_LEEWAY = timedelta(seconds=60)

logger = logging.getLogger(__name__)

# (endpoint, status_code, request_body); status 0 means no HTTP response
ResponseHook = Callable[[str, int, dict], None]


def build_session(max_retries: int, backoff_factor: float = 1.0) -> requests.Session:
    """Create a requests session that retries throttled and transient failures.

    Retries use exponential backoff and honor ``Retry-After``. POST is
    retried as well: bulk operations carry the record id, so the target
    treats a replay of the same batch idempotently.
    """
    retry = Retry(
        total=max_retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"POST"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    session = requests.Session()
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


class GraphBulkClient:
    """Bulk transport for the Graph synchronization job.

    Features:
    - Client-credentials token cached until shortly before expiry
    - Automatic retry on 429/5xx (urllib3 Retry)
    - Centralized error handling (GraphError hierarchy)

    Usage:
        client = GraphBulkClient(settings.graph)
        results = client.send([BulkOperation(id="...", method="POST", path="/Users")])
    """

    def __init__(
        self,
        config: GraphConfig,
        session: Optional[requests.Session] = None,
        on_response: Optional[ResponseHook] = None,
    ):
        """Initialize Graph client.

        Args:
            config: Graph tenant, credentials and sync job coordinates
            session: Optional pre-built session (defaults to a retrying session)
            on_response: Optional hook called once per bulk upload attempt
        """
        self.config = config
        self.base_url = config.base_url if config.base_url.endswith("/") else config.base_url + "/"
        self._session = session or build_session(config.max_retries)
        self._on_response = on_response
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{self.config.bulk_upload_path}"

    def _ensure_authenticated(self) -> str:
        """Return a valid access token, fetching a new one if needed."""
        if self._token and self._token_expires_at and datetime.now() < self._token_expires_at - TOKEN_EXPIRY_LEEWAY:
            return self._token
        self._token, expires_in = self._get_client_credentials_token()
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        return self._token

    def _get_client_credentials_token(self) -> tuple[str, int]:
        """Fetch an app-only token using the client credentials flow."""
        url = self.config.token_url
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": GRAPH_SCOPE,
        }
        try:
            resp = requests.post(url, data=data, timeout=self.config.request_timeout)
        except requests.RequestException as exc:
            raise GraphAuthError(f"Token request failed: {exc}") from exc
        if resp.status_code != 200:
            raise GraphAuthError(f"[{resp.status_code}] {url}: {resp.text}")
        body = resp.json()
        token = body.get("access_token")
        if not token:
            raise GraphAuthError(f"{url}: response carried no access_token")
        try:
            expires_in = int(body.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600
        return token, expires_in

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = None

    def send(self, operations: Sequence[BulkOperation]) -> List[BulkResult]:
        """Upload a batch of operations and return the per-operation results.

        Args:
            operations: Bulk operations to submit in one request

        Returns:
            Results reported by Graph (may not cover every operation;
            an empty list on 204 No Content)

        Raises:
            GraphAuthError: If no access token could be obtained
            GraphTransportError: If the request produced no HTTP response
            GraphAPIError: If Graph answered with an error status after retries
        """
        body = {"value": [op.to_dict() for op in operations]}
        url = self.endpoint
        try:
            token = self._ensure_authenticated()
        except GraphAuthError:
            self._notify(url, 0, body)
            raise
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

        logger.info("Dispatching %d provisioning operations to Graph sync job", len(operations))

        try:
            resp = self._session.post(url, json=body, headers=headers, timeout=self.config.request_timeout)
        except requests.RequestException as exc:
            self._notify(url, 0, body)
            raise GraphTransportError(f"{url}: {exc}") from exc

        self._notify(url, resp.status_code, body)

        if resp.status_code == 204:
            return []
        if resp.status_code == 401:
            # Token revoked or rotated early; fetch a fresh one next time
            self.invalidate_token()
        self._handle_error(resp)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise GraphAPIError(resp.status_code, f"Invalid JSON in bulk response: {exc}", url) from exc

        entries = payload.get("value") if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            return []
        return [BulkResult.from_dict(entry) for entry in entries if isinstance(entry, dict)]

    def _notify(self, url: str, status_code: int, body: dict) -> None:
        if self._on_response is None:
            return
        try:
            self._on_response(url, status_code, body)
        except Exception as exc:
            logger.warning("Bulk upload response hook failed: %s", exc)

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            GraphAPIError: If response status indicates error
        """
        if resp.status_code >= 400:
            raise GraphAPIError(resp.status_code, resp.text, resp.url)
