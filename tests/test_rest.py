import json
import logging

import httpx
import pytest

from registry_cleanup.exceptions import RequestFailed
from registry_cleanup.rest import RestClient, redact_authorization

URL = "https://api.example/resource"


class Recorder:
    def __init__(self, response: httpx.Response | None = None) -> None:
        self.response = response or httpx.Response(200, json={"ok": True})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.mark.asyncio
async def test_get_sets_accept_and_merges_client_headers():
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        client = RestClient(session)
        client.headers["Authorization"] = "Bearer abc"

        data = await client.get(URL, params={"page": "1"})

    request = recorder.requests[0]
    assert data == {"ok": True}
    assert request.headers["Accept"] == "application/json"
    assert request.headers["Authorization"] == "Bearer abc"
    assert "Content-Type" not in request.headers
    assert request.url.params["page"] == "1"


@pytest.mark.asyncio
async def test_post_sends_json_payload():
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        await RestClient(session).post(URL, {"username": "u", "password": "p"})

    request = recorder.requests[0]
    assert request.method == "POST"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {"username": "u", "password": "p"}


@pytest.mark.asyncio
async def test_per_call_headers_override_defaults():
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        await RestClient(session).get(URL, headers={"Accept": "application/x-custom"})

    assert recorder.requests[0].headers["Accept"] == "application/x-custom"


@pytest.mark.asyncio
async def test_head_returns_response_headers():
    recorder = Recorder(httpx.Response(200, headers={"Docker-Content-Digest": "sha256:1"}))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        headers = await RestClient(session).head(URL)

    assert headers["Docker-Content-Digest"] == "sha256:1"
    assert recorder.requests[0].headers.get("Accept") != "application/json"


@pytest.mark.asyncio
async def test_empty_body_decodes_to_none():
    recorder = Recorder(httpx.Response(202))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        assert await RestClient(session).delete(URL) is None


@pytest.mark.asyncio
async def test_non_success_status_raises_with_body():
    recorder = Recorder(httpx.Response(500, content=b'{"errors": ["boom"]}'))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        with pytest.raises(RequestFailed) as err:
            await RestClient(session).get(URL)

    assert err.value.status_code == 500
    assert err.value.reason == "500 Internal Server Error"
    assert err.value.body == b'{"errors": ["boom"]}'


@pytest.mark.asyncio
async def test_transport_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as session:
        with pytest.raises(RequestFailed, match="error executing request") as err:
            await RestClient(session).get(URL)

    assert err.value.status_code is None


@pytest.mark.asyncio
async def test_undecodable_body_raises():
    recorder = Recorder(httpx.Response(200, content=b"<html>"))
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        with pytest.raises(RequestFailed, match="cannot decode"):
            await RestClient(session).get(URL)


@pytest.mark.asyncio
async def test_dump_hides_authorization_value(caplog):
    caplog.set_level(logging.INFO)
    recorder = Recorder()
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as session:
        client = RestClient(session, dump=True)
        client.headers["Authorization"] = "Bearer very-secret-token"
        await client.get(URL)

    assert "request > GET https://api.example/resource" in caplog.text
    assert "Bearer ---HIDDEN---" in caplog.text
    assert "very-secret-token" not in caplog.text


def test_redact_authorization():
    assert redact_authorization("Basic dXNlcjpwYXNz") == "Basic ---HIDDEN---"
    assert redact_authorization("token") == "---HIDDEN---"
