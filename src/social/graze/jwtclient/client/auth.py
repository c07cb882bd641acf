"""
Bearer token authentication for the middleware chain.

`JwtAuthMiddleware` sits in the chain of a `ChainMiddlewareClient` and does three
things:

1. Attaches `Authorization: Bearer <access token>` to every outgoing request
   when an access token is stored.
2. Passes successful responses through untouched.
3. On a 401, exchanges the stored token pair at the refresh endpoint and asks
   the chain to resubmit the original request once with the new token.

A 401 is only refreshed when all of the following hold:

- the request is not already a resubmission (`second_attempt` is unset),
- a refresh token is stored,
- a refresh endpoint is configured and the failing request was not sent to it.

When the refresh itself fails, the configured logout action (if any) is called
with the `RefreshFailure`, the stored tokens are cleared and the
`RefreshFailure` is raised to the caller. Without a logout action the original
401 is returned unchanged.

This module also holds the login action variants. A login action is resolved
into either a `CallableLoginAction` or a `UrlLoginAction` when it is configured,
so malformed actions fail at setup instead of at login time.
"""

import asyncio
from dataclasses import dataclass, replace
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import aiohttp
from aiohttp import hdrs
import sentry_sdk

from social.graze.jwtclient.app.config import (
    DEFAULT_REFRESH_TOKEN_FIELD_NAME,
    DEFAULT_TOKEN_FIELD_NAME,
)
from social.graze.jwtclient.app.metrics import MetricsClient, NoOpMetricsClient
from social.graze.jwtclient.client.chain import (
    ChainRequest,
    ChainResponse,
    NextChainCallbackType,
    NextChainResponseCallbackType,
    RequestMiddlewareBase,
)
from social.graze.jwtclient.client.exceptions import (
    ConfigurationError,
    RefreshFailure,
)
from social.graze.jwtclient.storage.credentials import CredentialStore

logger = logging.getLogger(__name__)

LoginCallable = Callable[[str, str], Awaitable[Any]]
LogoutCallable = Callable[[RefreshFailure], Any]

AUTHORIZATION_HEADER = "Authorization"

# Fixed wire format of the refresh endpoint, both directions.
REFRESH_TOKEN_FIELD = "token"
REFRESH_REFRESH_TOKEN_FIELD = "refresh_token"


@dataclass(frozen=True)
class CallableLoginAction:
    """
    Login performed by caller-supplied code.

    `func(username, password)` is awaited and must produce a body carrying
    `token` and `refreshToken`. The configured token field names do not apply
    to this mode.
    """

    func: LoginCallable


@dataclass(frozen=True)
class UrlLoginAction:
    """Login performed by POSTing `{username_field: ..., password_field: ...}` to `url`."""

    url: str
    username_field: str
    password_field: str


LoginAction = Union[CallableLoginAction, UrlLoginAction]


def parse_login_action(login_action_info: Any) -> LoginAction:
    """
    Resolve a login action description into a `LoginAction`.

    Accepts an existing `LoginAction`, a callable, or a mapping with `url`,
    `usernameField` and `passwordField` (snake_case keys are accepted too).

    Raises:
        ConfigurationError: If the value is of any other type, or a mapping
            is missing one of the required fields.
    """
    if isinstance(login_action_info, (CallableLoginAction, UrlLoginAction)):
        return login_action_info

    if callable(login_action_info):
        return CallableLoginAction(func=login_action_info)

    if isinstance(login_action_info, Mapping):
        url = login_action_info.get("url")
        username_field = login_action_info.get(
            "usernameField", login_action_info.get("username_field")
        )
        password_field = login_action_info.get(
            "passwordField", login_action_info.get("password_field")
        )

        if not url:
            raise ConfigurationError.login_action_field_missing("url")
        if not username_field:
            raise ConfigurationError.login_action_field_missing("usernameField")
        if not password_field:
            raise ConfigurationError.login_action_field_missing("passwordField")

        return UrlLoginAction(
            url=str(url),
            username_field=str(username_field),
            password_field=str(password_field),
        )

    raise ConfigurationError.login_action_invalid()


def validate_logout_action(logout_action: Any) -> LogoutCallable:
    if not callable(logout_action):
        raise ConfigurationError.logout_action_invalid()
    return logout_action


@dataclass(frozen=True)
class AuthConfig:
    token_field_name: str = DEFAULT_TOKEN_FIELD_NAME
    refresh_token_field_name: str = DEFAULT_REFRESH_TOKEN_FIELD_NAME
    refresh_token_retrieval_url: Optional[str] = None
    login_action: Optional[LoginAction] = None
    logout_action: Optional[LogoutCallable] = None


class JwtAuthMiddleware(RequestMiddlewareBase):
    def __init__(
        self,
        credential_store: CredentialStore,
        config: Optional[AuthConfig] = None,
        metrics_client: Optional[MetricsClient] = None,
        metrics_prefix: str = "jwtclient",
    ) -> None:
        super().__init__()
        self._credential_store = credential_store
        self._config = config or AuthConfig()
        self._metrics_client = metrics_client or NoOpMetricsClient()
        self._metrics_prefix = metrics_prefix

    @property
    def config(self) -> AuthConfig:
        return self._config

    @property
    def credential_store(self) -> CredentialStore:
        return self._credential_store

    def reconfigure(self, **changes: Any) -> AuthConfig:
        """Replace configuration fields. Validation is the caller's job."""
        self._config = replace(self._config, **changes)
        return self._config

    async def attach_auth(self, request: ChainRequest) -> ChainRequest:
        """
        Return `request` with the bearer header set.

        Without a stored access token the very same request is returned. With
        one, a copy is returned whose headers are the original headers plus
        `Authorization`, replacing any existing authorization header.
        """
        access_token = await self._credential_store.get_access_token()
        if not access_token:
            return request

        headers = {
            key: value
            for key, value in (request.headers or {}).items()
            if key.lower() != "authorization"
        }
        headers[AUTHORIZATION_HEADER] = f"Bearer {access_token}"

        authorized_request = ChainRequest.from_chain_request(request)
        authorized_request.headers = headers
        return authorized_request

    def on_response_success(
        self, response: NextChainResponseCallbackType
    ) -> NextChainResponseCallbackType:
        return response

    async def on_response_failure(
        self,
        next: NextChainCallbackType,
        request: ChainRequest,
        response: NextChainResponseCallbackType,
    ) -> NextChainResponseCallbackType:
        """
        Try to recover a failed response by refreshing the token pair.

        Returns the original response when the failure is not eligible for a
        refresh, or when the refresh fails and no logout action is configured.
        Returns the response together with a resubmission request when the
        refresh succeeds.

        Raises:
            RefreshFailure: When the refresh fails and a logout action is
                configured; the logout action has run and the tokens are
                cleared by then.
        """
        client_response = response[0]
        chain_response = response[1]

        refresh_url = await self._refresh_url_for(request, chain_response)
        if refresh_url is None:
            return response

        self._increment("auth.refresh.attempt")

        try:
            await self._refresh(next, request, refresh_url)
        except RefreshFailure as failure:
            self._increment("auth.refresh.failure")

            logout_action = self._config.logout_action
            if logout_action is None:
                sentry_sdk.capture_exception(failure)
                logger.info(
                    "Token refresh failed for %s %s, surfacing original response",
                    request.method,
                    request.url,
                )
                return response

            logger.info("Token refresh failed, logging out")
            client_response.release()
            await self._logout(logout_action, failure)
            raise failure

        self._increment("auth.refresh.success")

        retry_request = await self.attach_auth(ChainRequest.from_chain_request(request))
        retry_request.second_attempt = True

        self._increment("auth.retry")
        logger.debug("Resubmitting %s %s with refreshed token", request.method, request.url)

        return client_response, chain_response, retry_request

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        request = await self.attach_auth(request)

        response = await next(request)

        # Another middleware further down already asked for a resubmission.
        if len(response) == 3:
            return response

        if response[1].ok:
            return self.on_response_success(response)

        return await self.on_response_failure(next, request, response)

    async def _refresh_url_for(
        self, request: ChainRequest, chain_response: ChainResponse
    ) -> Optional[str]:
        """Return the refresh endpoint when this failure may be refreshed, otherwise None."""
        if chain_response.status != 401:
            return None

        if request.second_attempt:
            logger.debug("Not refreshing %s %s: already retried", request.method, request.url)
            return None

        refresh_url = self._config.refresh_token_retrieval_url
        if refresh_url is None:
            logger.debug("Not refreshing: no refresh token retrieval url configured")
            return None

        if str(request.url) == str(refresh_url):
            return None

        if not await self._credential_store.get_refresh_token():
            return None

        return refresh_url

    async def _refresh(
        self, next: NextChainCallbackType, request: ChainRequest, refresh_url: str
    ) -> None:
        refresh_request = await self.attach_auth(
            ChainRequest(
                method=hdrs.METH_POST,
                url=refresh_url,
                headers={},
                kwargs={
                    "json": {
                        REFRESH_TOKEN_FIELD: await self._credential_store.get_access_token(),
                        REFRESH_REFRESH_TOKEN_FIELD: await self._credential_store.get_refresh_token(),
                    }
                },
            )
        )

        try:
            refresh_response = await next(refresh_request)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Token refresh request failed: %s", type(e).__name__)
            raise RefreshFailure.from_transport_error(request, e) from e
        except ValueError as e:
            logger.warning("Token refresh response could not be decoded: %s", type(e).__name__)
            raise RefreshFailure.malformed_response(request, e) from e

        refresh_client_response = refresh_response[0]
        refresh_chain_response = refresh_response[1]
        refresh_client_response.release()

        if not refresh_chain_response.ok:
            raise RefreshFailure.from_refresh_response(request, refresh_chain_response)

        token = refresh_chain_response.body_field(REFRESH_TOKEN_FIELD)
        refresh_token = refresh_chain_response.body_field(REFRESH_REFRESH_TOKEN_FIELD)
        if not token or not refresh_token:
            raise RefreshFailure.token_details_missing(request, refresh_chain_response)

        await self._credential_store.set_access_token(token)
        await self._credential_store.set_refresh_token(refresh_token)

    async def _logout(self, logout_action: LogoutCallable, failure: RefreshFailure) -> None:
        try:
            result = logout_action(failure)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Error running logout action")

        await self._credential_store.clear()

    def _increment(self, name: str) -> None:
        self._metrics_client.increment(f"{self._metrics_prefix}.{name}", 1)
