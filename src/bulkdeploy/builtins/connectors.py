from __future__ import annotations

import base64
import logging
import time
from typing import Any, Optional, Tuple

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from bulkdeploy.connectors.base import ConnectorInit
from bulkdeploy.exception import ConnectorError
from bulkdeploy.registry.connectors import register_connector
from bulkdeploy.spec import ImportJobStatus, VersionLookup

log = logging.getLogger("bulkdeploy.builtin.connectors")

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"

# Acquired tokens are renewed this many seconds before they expire.
TOKEN_REFRESH_MARGIN = 60.0


def _cfg(config: dict, *keys: str, default=None):
    for k in keys:
        v = config.get(k)
        if v not in (None, ""):
            return v
    return default


class _Base:
    """Small concrete base for built-in connectors (keeps init consistent)."""

    def __init__(self, init: ConnectorInit):
        self.name = init.name
        self.driver = init.driver
        self.config = init.config or {}
        self.options = init.options or {}

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.close()
        except Exception:
            log.warning("non-critical connector operation failed; continuing", exc_info=True)


@register_connector("dataverse")
class DataverseService(_Base):
    """
    Solution connector for the Dataverse Web API, backed by httpx.

    Connection string keys (case-insensitive):
      - Url / ServiceUri: environment URL, e.g. https://org.crm.dynamics.com
      - Token / AccessToken: pre-acquired bearer token
      - ClientId / AppId + ClientSecret: OAuth2 client credentials
      - ClientId / AppId + Username + Password: OAuth2 password grant
      - TenantId (default "organizations") or Authority (full authority URL)

    OAuth tokens are renewed shortly before `expires_in` runs out and once more
    when the server answers 401. A pre-acquired Token is used as is.

    Options:
      - timeout: request timeout in seconds (default 120)
      - api_version: Web API version (default "9.2")
      - retries: extra attempts on transport errors (default 0)
      - transport: httpx transport override (tests)
    """

    def __init__(self, init: ConnectorInit):
        super().__init__(init)
        self._client: Optional[httpx.Client] = None
        self._token: Optional[str] = None
        self._token_expires_at: Optional[float] = None

    def _timeout(self) -> float:
        return float(self.options.get("timeout") or 120)

    def _retries(self) -> int:
        return int(self.options.get("retries") or 0)

    def _transport(self):
        return self.options.get("transport")

    def url(self) -> str:
        url = _cfg(self.config, "url", "serviceuri", "server")
        if not url:
            raise ConnectorError("Dataverse connection string requires 'Url'")
        return str(url).rstrip("/")

    def base_url(self) -> str:
        return f"{self.url()}/api/data/v{self.options.get('api_version') or '9.2'}/"

    def _token_url(self) -> str:
        authority = _cfg(self.config, "authority")
        if authority:
            return f"{str(authority).rstrip('/')}/oauth2/v2.0/token"
        tenant = _cfg(self.config, "tenantid", "tenant", default="organizations")
        return f"{DEFAULT_AUTHORITY}/{tenant}/oauth2/v2.0/token"

    def _static_token(self) -> Optional[str]:
        token = _cfg(self.config, "token", "accesstoken")
        return str(token) if token else None

    def _token_expired(self) -> bool:
        if self._token is None:
            return True
        if self._token_expires_at is None:
            return False
        return time.monotonic() >= self._token_expires_at - TOKEN_REFRESH_MARGIN

    def access_token(self, *, refresh: bool = False) -> str:
        static = self._static_token()
        if static:
            return static
        if refresh or self._token_expired():
            token, expires_in = self._fetch_token()
            self._token = token
            self._token_expires_at = None if expires_in is None else time.monotonic() + expires_in
        return str(self._token)

    def _fetch_token(self) -> Tuple[str, Optional[float]]:
        client_id = _cfg(self.config, "clientid", "appid")
        if not client_id:
            raise ConnectorError("Dataverse connection string requires 'Token' or 'ClientId'")
        data = {"client_id": client_id, "scope": f"{self.url()}/.default"}
        secret = _cfg(self.config, "clientsecret", "secret")
        username = _cfg(self.config, "username", "user id", "userid")
        if secret:
            data.update(grant_type="client_credentials", client_secret=secret)
        elif username:
            data.update(grant_type="password", username=username, password=_cfg(self.config, "password", default=""))
        else:
            raise ConnectorError("Dataverse connection string requires 'ClientSecret' or 'Username'/'Password'")

        with httpx.Client(timeout=self._timeout(), transport=self._transport()) as c:
            resp = c.post(self._token_url(), data=data)
        if resp.is_error:
            raise ConnectorError(f"Failed to acquire access token ({resp.status_code}): {self._error_text(resp)}")
        body = resp.json() or {}
        token = body.get("access_token")
        if not token:
            raise ConnectorError("Token endpoint response did not contain an access_token")
        expires_in = body.get("expires_in")
        log.debug(f"Acquired access token (expires_in={expires_in}).")
        return str(token), (float(expires_in) if expires_in not in (None, "") else None)

    def headers(self) -> dict:
        return {
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }

    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url(),
                headers=self.headers(),
                timeout=self._timeout(),
                transport=self._transport(),
            )
        return self._client

    def connect(self) -> "DataverseService":
        """Open the session and verify it with WhoAmI."""
        self.request("GET", "WhoAmI")
        return self

    def close(self) -> None:
        try:
            if self._client is not None:
                self._client.close()
        finally:
            self._client = None

    @staticmethod
    def _error_text(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:500]
        if isinstance(body, dict):
            err = body.get("error")
            if isinstance(err, dict):
                return str(err.get("message") or err)
            if "error_description" in body:
                return str(body["error_description"])
        return str(body)[:500]

    def request(self, method: str, path: str, *, params: dict | None = None, json: Any | None = None) -> httpx.Response:
        attempts = max(1, 1 + self._retries())

        def _do_request(refresh: bool = False) -> httpx.Response:
            auth = {"Authorization": f"Bearer {self.access_token(refresh=refresh)}"}
            return self.client().request(method, path, params=params, json=json, headers=auth)

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=1, min=1, max=5),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    resp = _do_request()
                    if resp.status_code == 401 and not self._static_token():
                        log.info("Access token rejected; acquiring a new one.")
                        resp = _do_request(refresh=True)
        except httpx.HTTPError as e:
            raise ConnectorError(f"Dataverse request failed after {attempts} attempt(s): {method} {path}") from e

        if resp.is_error:
            raise ConnectorError(f"{method} {path} failed ({resp.status_code}): {self._error_text(resp)}")
        return resp

    # ---- solution primitives ----

    def get_solution_version(self, solution_name: str) -> VersionLookup:
        escaped = solution_name.replace("'", "''")
        resp = self.request(
            "GET",
            "solutions",
            params={"$select": "version", "$filter": f"uniquename eq '{escaped}'"},
        )
        rows = (resp.json() or {}).get("value") or []
        if not rows:
            return VersionLookup.not_found()
        return VersionLookup(rows[0].get("version"))

    def export_solution(self, solution_name: str, *, managed: bool) -> bytes:
        resp = self.request("POST", "ExportSolution", json={"SolutionName": solution_name, "Managed": bool(managed)})
        data = (resp.json() or {}).get("ExportSolutionFile")
        if not data:
            raise ConnectorError(f"ExportSolution returned no file for '{solution_name}'")
        return base64.b64decode(data)

    def submit_import(self, payload: bytes, *, managed: bool, job_id: str) -> str:
        resp = self.request(
            "POST",
            "ImportSolutionAsync",
            json={
                "CustomizationFile": base64.b64encode(payload).decode("ascii"),
                "ConvertToManaged": bool(managed),
                "OverwriteUnmanagedCustomizations": False,
                "PublishWorkflows": True,
                "SkipProductUpdateDependencies": True,
            },
        )
        # The server assigns the import job; job_id is kept for log correlation.
        key = (resp.json() or {}).get("ImportJobKey")
        if not key:
            raise ConnectorError("ImportSolutionAsync response did not contain an ImportJobKey")
        log.debug(f"Import request {job_id} accepted as import job {key}.")
        return str(key)

    def get_import_job(self, job_id: str) -> ImportJobStatus:
        resp = self.request(
            "GET",
            f"importjobs({job_id})",
            params={"$select": "progress,completedon,data"},
        )
        row = resp.json() or {}
        return ImportJobStatus(
            job_id=job_id,
            progress=int(float(row.get("progress") or 0)),
            completed_on=row.get("completedon"),
            result_log=row.get("data"),
        )

    def publish_all(self) -> None:
        self.request("POST", "PublishAllXml")
