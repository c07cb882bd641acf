"""
Shared test configuration and fixtures for the JWT client tests.

Provides a fake Redis client, mock aiohttp responses, and a scripted fake HTTP
API that stands in for `aiohttp.ClientSession.request` so that the client can be
exercised end to end without a network.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, Mock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from aiohttp import ClientResponse, ClientSession, hdrs
from multidict import CIMultiDict, CIMultiDictProxy

from social.graze.jwtclient.app.config import Settings

API_URL = "https://api.example.com"
LOGIN_URL = f"{API_URL}/login"
REFRESH_URL = f"{API_URL}/token/refresh"
PRIVATE_URL = f"{API_URL}/private"


def create_mock_response(
    status: int = 200,
    headers: Dict[str, str] | None = None,
    content_type: str = "application/json",
    body: Any = None,
) -> ClientResponse:
    """Create a mock aiohttp ClientResponse."""
    mock_response = AsyncMock(spec=ClientResponse)
    mock_response.status = status

    headers_dict = dict(headers or {})
    if hdrs.CONTENT_TYPE not in headers_dict:
        headers_dict[hdrs.CONTENT_TYPE] = content_type
    mock_response.headers = CIMultiDictProxy(CIMultiDict(headers_dict))

    if content_type.startswith("application/json"):
        mock_response.json = AsyncMock(return_value=body if body is not None else {})
        mock_response.text = AsyncMock(return_value=json.dumps(body or {}))
        mock_response.read = AsyncMock(return_value=json.dumps(body or {}).encode())
    elif content_type.startswith("text/"):
        text_body = str(body) if body is not None else "test response"
        mock_response.json = AsyncMock(side_effect=Exception("Not JSON"))
        mock_response.text = AsyncMock(return_value=text_body)
        mock_response.read = AsyncMock(return_value=text_body.encode())
    else:
        binary_body = body if isinstance(body, bytes) else b"binary data"
        mock_response.json = AsyncMock(side_effect=Exception("Not JSON"))
        mock_response.text = AsyncMock(side_effect=Exception("Not text"))
        mock_response.read = AsyncMock(return_value=binary_body)

    mock_response.closed = False
    mock_response.close = Mock()
    mock_response.release = Mock()

    return mock_response


@dataclass
class RecordedCall:
    method: str
    url: str
    headers: Dict[str, Any]
    json: Any = None


RouteHandler = Callable[[Dict[str, Any], Any], ClientResponse]


@dataclass
class FakeApi:
    """
    Scripted replacement for `ClientSession.request`.

    Routes map `(method, url)` to a handler called with the request headers and
    JSON body. Unknown routes answer 404. Every call is recorded in `calls`.
    """

    routes: Dict[Tuple[str, str], RouteHandler] = field(default_factory=dict)
    calls: List[RecordedCall] = field(default_factory=list)

    def route(self, method: str, url: str, handler: RouteHandler) -> None:
        self.routes[(method.lower(), url)] = handler

    def respond(self, method: str, url: str, *responses: ClientResponse) -> None:
        """Serve `responses` in order, repeating the last one."""
        queue = list(responses)

        def handler(headers: Dict[str, Any], body: Any) -> ClientResponse:
            if len(queue) > 1:
                return queue.pop(0)
            return queue[0]

        self.route(method, url, handler)

    def calls_to(self, url: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.url == url]

    async def request(
        self,
        method: str,
        url: Any,
        headers: Optional[Dict[str, Any]] = None,
        trace_request_ctx: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> ClientResponse:
        headers = dict(headers or {})
        body = kwargs.get("json")
        self.calls.append(RecordedCall(method, str(url), headers, body))

        handler = self.routes.get((method.lower(), str(url)))
        if handler is None:
            return create_mock_response(status=404, body={"error": "not found"})
        return handler(headers, body)


class TokenServer:
    """
    Minimal API with a login endpoint, a refresh endpoint and a protected
    resource, mirroring a typical JWT backend.

    `marian`/`nowak` signs in and receives `maintoken`/`refreshtoken`. The
    refresh endpoint exchanges that pair for `new-maintoken`/`new-refreshtoken`.
    The protected resource accepts only the currently valid access token.
    """

    login_url = LOGIN_URL
    refresh_url = REFRESH_URL
    private_url = PRIVATE_URL

    def __init__(self, api: FakeApi) -> None:
        self.api = api
        self.valid_token = "maintoken"
        self.valid_refresh_token = "refreshtoken"
        self.refresh_enabled = True

        api.route("POST", LOGIN_URL, self.login)
        api.route("POST", REFRESH_URL, self.refresh)
        api.route("GET", PRIVATE_URL, self.private)

    def expire(self) -> None:
        self.valid_token = "unknown"

    def login(self, headers: Dict[str, Any], body: Any) -> ClientResponse:
        if body == {"username": "marian", "password": "nowak"}:
            return create_mock_response(
                body={"token": "maintoken", "refresh_token": "refreshtoken"}
            )
        return create_mock_response(status=401, body={"error": "invalid credentials"})

    def refresh(self, headers: Dict[str, Any], body: Any) -> ClientResponse:
        if self.refresh_enabled and body == {
            "token": "maintoken",
            "refresh_token": self.valid_refresh_token,
        }:
            self.valid_token = "new-maintoken"
            self.valid_refresh_token = "new-refreshtoken"
            return create_mock_response(
                body={"token": "new-maintoken", "refresh_token": "new-refreshtoken"}
            )
        return create_mock_response(status=401, body={"error": "refresh rejected"})

    def private(self, headers: Dict[str, Any], body: Any) -> ClientResponse:
        if headers.get("Authorization") == f"Bearer {self.valid_token}":
            return create_mock_response(body={"secret": "value"})
        return create_mock_response(status=401, body={"error": "unauthorized"})


@pytest.fixture
def make_response():
    """Factory for mock aiohttp responses."""
    return create_mock_response


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def token_server(fake_api):
    return TokenServer(fake_api)


@pytest.fixture
def client_session(fake_api):
    """A ClientSession stand-in whose requests are answered by `fake_api`."""
    session = Mock(spec=ClientSession)
    session.request = AsyncMock(side_effect=fake_api.request)
    session.close = AsyncMock()
    return session


@pytest.fixture
def settings(monkeypatch):
    """Settings isolated from any JWT_ variables in the environment."""
    for name in list(os.environ):
        if name.startswith("JWT_"):
            monkeypatch.delenv(name, raising=False)
    return Settings(metrics_backend="none")


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()
