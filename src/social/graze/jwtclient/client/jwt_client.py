"""
JWT Client facade

`JwtClient` is what callers hold: an HTTP client whose requests carry the stored
bearer token and recover from an expired token with one refresh-and-retry, plus
the operations to log in and manage the stored tokens.

`create_client` assembles one from `Settings` (environment) and keyword
overrides:

    async with await create_client(
        refresh_token_retrieval_url="https://api.example.com/token/refresh",
        login_action_info={
            "url": "https://api.example.com/login",
            "usernameField": "username",
            "passwordField": "password",
        },
    ) as client:
        await client.login("marian", "nowak")
        async with client.get("https://api.example.com/private") as (_, response):
            print(response.body)

Non-2xx final responses raise `ResponseError` (`AuthFailure` for a 401) unless
`raise_for_status=False` is passed to the request.
"""

from collections.abc import Mapping
import logging
from typing import Any, List, Optional, Sequence

import aiohttp
from aiohttp import ClientSession

from social.graze.jwtclient.app.config import (
    DEFAULT_REFRESH_TOKEN_FIELD_NAME,
    DEFAULT_TOKEN_FIELD_NAME,
    Settings,
)
from social.graze.jwtclient.app.metrics import MetricsClient, create_metrics_client
from social.graze.jwtclient.client.auth import (
    AuthConfig,
    CallableLoginAction,
    JwtAuthMiddleware,
    UrlLoginAction,
    parse_login_action,
    validate_logout_action,
)
from social.graze.jwtclient.client.chain import (
    ChainMiddlewareClient,
    ChainResponse,
    DebugMiddleware,
    RequestMiddlewareBase,
    StatsdMiddleware,
)
from social.graze.jwtclient.client.exceptions import LoginFailure, MissingLoginAction
from social.graze.jwtclient.storage.credentials import CredentialStore
from social.graze.jwtclient.storage.persistence import (
    MemoryPersistence,
    Persistence,
    RedisPersistence,
)

logger = logging.getLogger(__name__)

# Keys read from the result of a callable login action.
CALLABLE_LOGIN_TOKEN_FIELD = "token"
CALLABLE_LOGIN_REFRESH_TOKEN_FIELD = "refreshToken"


def _login_result_body(result: Any) -> Any:
    if isinstance(result, ChainResponse):
        return result.body
    if hasattr(result, "data"):
        return result.data
    if isinstance(result, Mapping) and isinstance(result.get("data"), Mapping):
        return result["data"]
    return result


class JwtClient(ChainMiddlewareClient):
    """
    A `ChainMiddlewareClient` that signs in and manages the stored token pair.

    The verbs (`get`, `post`, ...) are the chain client's own; `auth_middleware` must be
    part of the middleware chain, and is the only middleware when none is given.
    `owned_resources` are closed together with the client.
    """

    def __init__(
        self,
        auth_middleware: JwtAuthMiddleware,
        metrics_client: Optional[MetricsClient] = None,
        owned_resources: Sequence[Any] = (),
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("middleware", [auth_middleware])
        super().__init__(**kwargs)
        self._auth = auth_middleware
        self._metrics_client = metrics_client
        self._owned_resources = list(owned_resources)

    @property
    def auth(self) -> JwtAuthMiddleware:
        return self._auth

    @property
    def credential_store(self) -> CredentialStore:
        return self._auth.credential_store

    # Login

    async def login(self, username: str, password: str) -> bool:
        """
        Sign in and store the token pair handed out by the login action.

        In url mode the credentials are POSTed as JSON under the configured
        username and password fields, and the tokens are read from the fields
        named by `token_field_name` / `refresh_token_field_name`. In callable
        mode the action is awaited and the tokens are read from `token` and
        `refreshToken` of its result.

        Returns:
            bool: True once both tokens are stored.

        Raises:
            MissingLoginAction: If no login action is configured
            LoginFailure: If a callable action's result lacks token details
            ResponseError: If the login endpoint answers with a non-2xx status
        """
        login_action = self._auth.config.login_action

        if isinstance(login_action, CallableLoginAction):
            result = await login_action.func(username, password)
            body = _login_result_body(result)
            if not isinstance(body, Mapping):
                raise LoginFailure.token_details_missing()

            token = body.get(CALLABLE_LOGIN_TOKEN_FIELD)
            refresh_token = body.get(CALLABLE_LOGIN_REFRESH_TOKEN_FIELD)
            if not token or not refresh_token:
                raise LoginFailure.token_details_missing()

        elif isinstance(login_action, UrlLoginAction):
            payload = {
                login_action.username_field: username,
                login_action.password_field: password,
            }
            async with self.post(
                login_action.url, raise_for_status=True, json=payload
            ) as (_, chain_response):
                token = chain_response.body_field(self._auth.config.token_field_name)
                refresh_token = chain_response.body_field(
                    self._auth.config.refresh_token_field_name
                )

            if not token or not refresh_token:
                raise LoginFailure.token_details_missing()

        else:
            raise MissingLoginAction.not_configured()

        await self.credential_store.set_access_token(token)
        await self.credential_store.set_refresh_token(refresh_token)
        logger.info("Signed in as %s", username)
        return True

    # Tokens

    async def get_token(self) -> Optional[str]:
        return await self.credential_store.get_access_token()

    async def set_token(self, token: str) -> None:
        await self.credential_store.set_access_token(token)

    async def get_refresh_token(self) -> Optional[str]:
        return await self.credential_store.get_refresh_token()

    async def set_refresh_token(self, refresh_token: str) -> None:
        await self.credential_store.set_refresh_token(refresh_token)

    async def clear_tokens(self) -> None:
        await self.credential_store.clear()

    # Configuration

    def set_login_action(self, login_action_info: Any) -> None:
        """
        Configure how `login` signs in.

        Raises:
            ConfigurationError: If the action is neither a callable nor a
                complete url descriptor.
        """
        self._auth.reconfigure(login_action=parse_login_action(login_action_info))

    def set_logout_action(self, logout_action: Any) -> None:
        """
        Configure the callable run when a token refresh fails.

        Raises:
            ConfigurationError: If the action is not callable.
        """
        self._auth.reconfigure(logout_action=validate_logout_action(logout_action))

    def clear_logout_action(self) -> None:
        self._auth.reconfigure(logout_action=None)

    def set_token_field_names(
        self, token_field_name: str, refresh_token_field_name: str
    ) -> None:
        self._auth.reconfigure(
            token_field_name=token_field_name,
            refresh_token_field_name=refresh_token_field_name,
        )

    def set_refresh_retrieval_url(self, url: Optional[str]) -> None:
        self._auth.reconfigure(refresh_token_retrieval_url=url)

    # Lifecycle

    async def close(self) -> None:
        await super().close()
        for resource in self._owned_resources:
            await resource.close()
        self._owned_resources = []

    async def __aenter__(self) -> "JwtClient":
        return self


def _resolve_field_names(
    token_field_name: Optional[str], refresh_token_field_name: Optional[str]
) -> tuple[str, str]:
    if token_field_name and refresh_token_field_name:
        return token_field_name, refresh_token_field_name

    if token_field_name or refresh_token_field_name:
        logger.warning(
            "token_field_name and refresh_token_field_name must be set together, "
            "using defaults %s/%s",
            DEFAULT_TOKEN_FIELD_NAME,
            DEFAULT_REFRESH_TOKEN_FIELD_NAME,
        )

    return DEFAULT_TOKEN_FIELD_NAME, DEFAULT_REFRESH_TOKEN_FIELD_NAME


async def create_client(
    settings: Optional[Settings] = None,
    *,
    token_field_name: Optional[str] = None,
    refresh_token_field_name: Optional[str] = None,
    refresh_token_retrieval_url: Optional[str] = None,
    login_action_info: Any = None,
    logout_action: Any = None,
    use_local_storage: Optional[bool] = None,
    persistence: Optional[Persistence] = None,
    metrics_client: Optional[MetricsClient] = None,
    client_session: Optional[ClientSession] = None,
    middleware: Optional[Sequence[RequestMiddlewareBase]] = None,
    **session_options: Any,
) -> JwtClient:
    """
    Build a `JwtClient`.

    Keyword arguments override the corresponding `settings` fields. Must be
    awaited inside a running event loop, since it may open an aiohttp session,
    a Redis connection and a StatsD socket. Resources opened here are closed by
    `JwtClient.close`; injected ones are left to the caller.

    Args:
        settings: Startup settings, read from the environment when omitted
        token_field_name: Login response field with the access token (url mode)
        refresh_token_field_name: Login response field with the refresh token (url mode)
        refresh_token_retrieval_url: Refresh endpoint
        login_action_info: Callable or {url, usernameField, passwordField}
        logout_action: Callable run with the RefreshFailure when a refresh fails
        use_local_storage: Keep tokens in the persistence backend
        persistence: Persistence backend; Redis when settings.redis_dsn is set, memory otherwise
        metrics_client: Metrics client; built from settings.metrics_backend when omitted
        client_session: aiohttp session to use instead of creating one
        middleware: Extra middleware placed between the metrics and auth middleware
        **session_options: Passed unmodified to aiohttp.ClientSession

    Raises:
        ConfigurationError: If the login or logout action is invalid
    """
    if settings is None:
        settings = Settings()  # type: ignore

    token_field_name, refresh_token_field_name = _resolve_field_names(
        token_field_name or settings.token_field_name,
        refresh_token_field_name or settings.refresh_token_field_name,
    )

    if login_action_info is None and settings.login_url:
        login_action_info = {
            "url": settings.login_url,
            "usernameField": settings.login_username_field,
            "passwordField": settings.login_password_field,
        }

    config = AuthConfig(
        token_field_name=token_field_name,
        refresh_token_field_name=refresh_token_field_name,
        refresh_token_retrieval_url=(
            refresh_token_retrieval_url or settings.refresh_token_retrieval_url
        ),
        login_action=(
            parse_login_action(login_action_info)
            if login_action_info is not None
            else None
        ),
        logout_action=(
            validate_logout_action(logout_action) if logout_action is not None else None
        ),
    )

    owned_resources: List[Any] = []

    try:
        if metrics_client is None:
            metrics_client = await create_metrics_client(
                settings.metrics_backend,
                host=settings.statsd_host,
                port=settings.statsd_port,
                debug=settings.debug,
            )
            owned_resources.append(metrics_client)

        if persistence is None:
            if settings.redis_dsn is not None:
                redis_persistence = RedisPersistence.from_url(
                    str(settings.redis_dsn), key_prefix=settings.redis_key_prefix
                )
                owned_resources.append(redis_persistence)
                persistence = redis_persistence
            else:
                persistence = MemoryPersistence()

        credential_store = CredentialStore(
            persistence=persistence,
            use_local_storage=(
                settings.use_local_storage if use_local_storage is None else use_local_storage
            ),
        )

        auth = JwtAuthMiddleware(
            credential_store,
            config=config,
            metrics_client=metrics_client,
            metrics_prefix=settings.statsd_prefix,
        )

        chain: List[RequestMiddlewareBase] = [
            StatsdMiddleware(metrics_client, prefix=settings.statsd_prefix),
            *(middleware or []),
            auth,
        ]
        if settings.debug:
            chain.append(DebugMiddleware())

        if (
            client_session is None
            and "timeout" not in session_options
            and settings.request_timeout is not None
        ):
            session_options["timeout"] = aiohttp.ClientTimeout(total=settings.request_timeout)

        return JwtClient(
            auth,
            metrics_client=metrics_client,
            owned_resources=owned_resources,
            client_session=client_session,
            logger=logging.getLogger("social.graze.jwtclient.chain"),
            middleware=chain,
            raise_for_status=True,
            attempt_max=settings.attempt_max,
            **session_options,
        )
    except Exception:
        for resource in reversed(owned_resources):
            await resource.close()
        raise
