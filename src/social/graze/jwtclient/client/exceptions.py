"""
Exceptions raised by the JWT client.

Every exception carries a stable error code at the start of its message so that
failures can be grepped for in logs and Sentry regardless of the wording that
follows. Instances are built through the static constructors below rather than
by formatting messages at the raise site.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from social.graze.jwtclient.client.chain import ChainRequest, ChainResponse


class JwtClientException(Exception):
    """Base class for all errors raised by the JWT client."""


class ConfigurationError(JwtClientException):
    """
    Raised synchronously when the client is configured with invalid values.

    Configuration is validated when it is set, never when it is used, so a bad
    login or logout action fails at startup instead of on the first login.
    """

    @staticmethod
    def login_action_invalid() -> "ConfigurationError":
        return ConfigurationError(
            "error-jwt-config-1000 Login action must be a callable or a mapping "
            "with url, usernameField and passwordField"
        )

    @staticmethod
    def login_action_field_missing(field: str) -> "ConfigurationError":
        return ConfigurationError(
            f"error-jwt-config-1001 Login action in url mode requires {field}"
        )

    @staticmethod
    def logout_action_invalid() -> "ConfigurationError":
        return ConfigurationError(
            "error-jwt-config-1002 Logout action must be a callable"
        )


class ResponseError(JwtClientException):
    """
    A request completed with a non-2xx status.

    Attributes:
        request: The request description that produced the response.
        response: The decoded response, or None when no response was received.
    """

    def __init__(
        self,
        message: str,
        request: "ChainRequest",
        response: Optional["ChainResponse"] = None,
    ) -> None:
        super().__init__(message)
        self.request = request
        self.response = response

    @property
    def status(self) -> Optional[int]:
        if self.response is None:
            return None
        return self.response.status

    @staticmethod
    def from_response(
        request: "ChainRequest", response: "ChainResponse"
    ) -> "ResponseError":
        if response.status == 401:
            return AuthFailure(
                f"error-jwt-http-1401 {request.method} {request.url} is not authorized",
                request,
                response,
            )
        return ResponseError(
            f"error-jwt-http-1000 {request.method} {request.url} failed with status {response.status}",
            request,
            response,
        )


class AuthFailure(ResponseError):
    """A 401 response that was not (or could not be) recovered by a token refresh."""


class RefreshFailure(ResponseError):
    """
    The refresh endpoint did not hand out new tokens.

    `request` is the original request whose 401 triggered the refresh. `response`
    is the refresh endpoint's response, or None when the refresh call failed at
    the transport level or its body could not be decoded (the underlying error
    is chained as `__cause__`).
    """

    @staticmethod
    def from_refresh_response(
        request: "ChainRequest", response: "ChainResponse"
    ) -> "RefreshFailure":
        return RefreshFailure(
            f"error-jwt-refresh-1000 Token refresh failed with status {response.status}",
            request,
            response,
        )

    @staticmethod
    def token_details_missing(
        request: "ChainRequest", response: "ChainResponse"
    ) -> "RefreshFailure":
        return RefreshFailure(
            "error-jwt-refresh-1001 Token refresh response did not include token and refresh_token",
            request,
            response,
        )

    @staticmethod
    def from_transport_error(
        request: "ChainRequest", error: BaseException
    ) -> "RefreshFailure":
        failure = RefreshFailure(
            f"error-jwt-refresh-1002 Token refresh request failed: {type(error).__name__}",
            request,
            None,
        )
        failure.__cause__ = error
        return failure

    @staticmethod
    def malformed_response(
        request: "ChainRequest", error: BaseException
    ) -> "RefreshFailure":
        failure = RefreshFailure(
            f"error-jwt-refresh-1003 Token refresh response could not be decoded: {type(error).__name__}",
            request,
            None,
        )
        failure.__cause__ = error
        return failure


class LoginFailure(JwtClientException):
    """The login action answered, but without the expected token details."""

    @staticmethod
    def token_details_missing() -> "LoginFailure":
        return LoginFailure(
            "error-jwt-login-1001 Token or refresh token details not provided"
        )


class MissingLoginAction(JwtClientException):
    """`login` was called before any login action was configured."""

    @staticmethod
    def not_configured() -> "MissingLoginAction":
        return MissingLoginAction(
            "error-jwt-login-1000 Login actions not defined: set them using "
            "set_login_action or sign in manually with set_token and set_refresh_token"
        )
