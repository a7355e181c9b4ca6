from __future__ import annotations

import base64
import inspect
import json

import httpx
import pytest

from bulkdeploy.builtins.connectors import DataverseService
from bulkdeploy.connectors import connect, parse_connection_string
from bulkdeploy.connectors.base import SolutionService
from bulkdeploy.exception import ConnectorError
from bulkdeploy.observability import mask_connection_string
from bulkdeploy.registry.connectors import REGISTRY
from bulkdeploy.runtime.settings import Settings

URL = "https://org.crm.example.com"


class _Recorder:
    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": {"message": f"no route {key}"}})
        return handler(request)


def _service(routes, conn: str = f"Url={URL};Token=abc") -> tuple[SolutionService, _Recorder]:
    rec = _Recorder(routes)
    svc = connect(conn, settings=Settings(), options={"transport": httpx.MockTransport(rec)})
    return svc, rec


_API = "/api/data/v9.2"
_WHOAMI = {("GET", f"{_API}/WhoAmI"): lambda r: httpx.Response(200, json={"UserId": "u"})}


def test_parse_connection_string():
    cfg = parse_connection_string("AuthType=OAuth; Url = https://x ;Password=a=b;;")
    assert cfg == {"authtype": "OAuth", "url": "https://x", "password": "a=b"}
    with pytest.raises(ConnectorError):
        parse_connection_string("Url=https://x;garbage")


def test_mask_connection_string():
    masked = mask_connection_string("Url=https://x;Username=me;Password=p@ss;ClientSecret=s;Token=t")
    assert "p@ss" not in masked
    assert "Password=******;" in masked
    assert "ClientSecret=******;" in masked
    assert "Token=******;" in masked
    assert "Username=me;" in masked


def test_dataverse_is_the_default_driver():
    assert "dataverse" in REGISTRY.list()
    assert REGISTRY.get("Dataverse") is DataverseService


@pytest.mark.contract
def test_dataverse_implements_solution_service_contract():
    for method in ("get_solution_version", "export_solution", "submit_import", "get_import_job", "publish_all", "close"):
        assert callable(getattr(DataverseService, method, None)), method
    params = list(inspect.signature(DataverseService.submit_import).parameters)
    assert params == ["self", "payload", "managed", "job_id"]


def test_connect_verifies_session_and_sends_bearer_token():
    svc, rec = _service(dict(_WHOAMI))
    with svc:
        assert isinstance(svc, SolutionService)
    assert rec.requests[0].headers["Authorization"] == "Bearer abc"
    assert rec.requests[0].headers["OData-Version"] == "4.0"


def test_get_solution_version_found_and_not_found():
    def solutions(request: httpx.Request) -> httpx.Response:
        flt = request.url.params["$filter"]
        if "'Core'" in flt:
            return httpx.Response(200, json={"value": [{"version": "1.2.3.4"}]})
        return httpx.Response(200, json={"value": []})

    svc, rec = _service({**_WHOAMI, ("GET", f"{_API}/solutions"): solutions})
    assert svc.get_solution_version("Core").version == "1.2.3.4"
    assert svc.get_solution_version("Missing").found is False
    assert rec.requests[-1].url.params["$select"] == "version"


def test_export_and_import_round_trip_over_the_wire():
    submitted = {}

    def export(request):
        body = json.loads(request.content)
        assert body == {"SolutionName": "Core", "Managed": True}
        return httpx.Response(200, json={"ExportSolutionFile": base64.b64encode(b"PK-zip").decode()})

    def import_async(request):
        submitted.update(json.loads(request.content))
        return httpx.Response(200, json={"AsyncOperationId": "op-1", "ImportJobKey": "job-42"})

    def import_job(request):
        return httpx.Response(200, json={"progress": 100.0, "completedon": "2026-10-19T10:00:00Z", "data": "<log/>"})

    svc, _ = _service(
        {
            **_WHOAMI,
            ("POST", f"{_API}/ExportSolution"): export,
            ("POST", f"{_API}/ImportSolutionAsync"): import_async,
            ("GET", f"{_API}/importjobs(job-42)"): import_job,
        }
    )

    payload = svc.export_solution("Core", managed=True)
    assert payload == b"PK-zip"

    job_id = svc.submit_import(payload, managed=True, job_id="local-1")
    assert job_id == "job-42"
    assert base64.b64decode(submitted["CustomizationFile"]) == b"PK-zip"
    assert submitted["ConvertToManaged"] is True
    assert submitted["OverwriteUnmanagedCustomizations"] is False
    assert submitted["PublishWorkflows"] is True
    assert submitted["SkipProductUpdateDependencies"] is True

    job = svc.get_import_job(job_id)
    assert job.completed and job.progress == 100 and job.result_log == "<log/>"


def test_running_job_has_no_completion_marker():
    svc, _ = _service(
        {**_WHOAMI, ("GET", f"{_API}/importjobs(j)"): lambda r: httpx.Response(200, json={"progress": 37.5, "completedon": None})}
    )
    job = svc.get_import_job("j")
    assert job.completed is False
    assert job.progress == 37


def test_publish_all_and_server_error():
    calls = []

    def publish(request):
        calls.append(request)
        return httpx.Response(500, json={"error": {"code": "0x1", "message": "Publish is already running"}})

    svc, _ = _service({**_WHOAMI, ("POST", f"{_API}/PublishAllXml"): publish})
    with pytest.raises(ConnectorError, match="Publish is already running"):
        svc.publish_all()
    assert len(calls) == 1


def test_client_credentials_token_flow():
    token_requests = []

    def token(request):
        token_requests.append(dict(httpx.QueryParams(request.content.decode())))
        return httpx.Response(200, json={"access_token": "tok-1", "token_type": "Bearer"})

    routes = {**_WHOAMI, ("POST", "/tenant-1/oauth2/v2.0/token"): token}
    svc, rec = _service(routes, conn=f"Url={URL};ClientId=app;ClientSecret=sec;TenantId=tenant-1")

    assert token_requests == [
        {"client_id": "app", "scope": f"{URL}/.default", "grant_type": "client_credentials", "client_secret": "sec"}
    ]
    assert rec.requests[-1].headers["Authorization"] == "Bearer tok-1"
    svc.close()


def test_token_failure_raises_connector_error():
    routes = {("POST", "/organizations/oauth2/v2.0/token"): lambda r: httpx.Response(400, json={"error_description": "bad secret"})}
    with pytest.raises(ConnectorError, match="bad secret"):
        _service(routes, conn=f"Url={URL};ClientId=app;ClientSecret=nope")


def test_missing_url_or_credentials():
    with pytest.raises(ConnectorError):
        connect("Token=abc")
    with pytest.raises(ConnectorError):
        connect(f"Url={URL}")
    with pytest.raises(ConnectorError):
        connect("   ")


def test_transport_errors_become_connector_errors():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ConnectorError, match="after 1 attempt"):
        _service({("GET", f"{_API}/WhoAmI"): boom})


class _TokenIssuer:
    """Token endpoint that hands out tok-1, tok-2, ... with a fixed lifetime."""

    def __init__(self, expires_in=None):
        self.expires_in = expires_in
        self.issued: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.issued.append(f"tok-{len(self.issued) + 1}")
        body = {"access_token": self.issued[-1], "token_type": "Bearer"}
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        return httpx.Response(200, json=body)


def _rejects_first_token(request: httpx.Request) -> httpx.Response:
    if request.headers["Authorization"] == "Bearer tok-1":
        return httpx.Response(401, json={"error": {"message": "token expired"}})
    return httpx.Response(200, json={"progress": 100, "completedon": "2026-10-19T10:00:00Z", "data": "<log/>"})


_OAUTH = f"Url={URL};ClientId=app;ClientSecret=sec;TenantId=t"


def test_expiring_token_is_renewed_before_later_requests():
    issuer = _TokenIssuer(expires_in=1)
    svc, rec = _service(
        {
            **_WHOAMI,
            ("POST", "/t/oauth2/v2.0/token"): issuer,
            ("GET", f"{_API}/importjobs(j)"): _rejects_first_token,
        },
        conn=_OAUTH,
    )

    for _ in range(3):
        assert svc.get_import_job("j").completed

    assert len(issuer.issued) == 4
    assert [r.headers["Authorization"] for r in rec.requests if "importjobs" in r.url.path] == [
        "Bearer tok-2",
        "Bearer tok-3",
        "Bearer tok-4",
    ]


def test_rejected_token_is_renewed_once_and_request_resent():
    issuer = _TokenIssuer(expires_in=3600)
    svc, rec = _service(
        {
            **_WHOAMI,
            ("POST", "/t/oauth2/v2.0/token"): issuer,
            ("GET", f"{_API}/importjobs(j)"): _rejects_first_token,
        },
        conn=_OAUTH,
    )

    assert svc.get_import_job("j").completed
    assert svc.get_import_job("j").completed

    assert issuer.issued == ["tok-1", "tok-2"]
    sent = [r.headers["Authorization"] for r in rec.requests if "importjobs" in r.url.path]
    assert sent == ["Bearer tok-1", "Bearer tok-2", "Bearer tok-2"]


def test_static_token_rejection_is_reported():
    svc, rec = _service(
        {
            **_WHOAMI,
            ("GET", f"{_API}/importjobs(j)"): lambda r: httpx.Response(401, json={"error": {"message": "token expired"}}),
        }
    )
    with pytest.raises(ConnectorError, match="401"):
        svc.get_import_job("j")
    assert sum(1 for r in rec.requests if "importjobs" in r.url.path) == 1
