"""
Middleware chain around an aiohttp ClientSession.

A request is described by a `ChainRequest` and passed through an ordered list of
middleware. Each middleware receives the request and a `next` callback that
invokes the rest of the chain; the last link (`EndOfLineChainMiddleware`) makes
the actual aiohttp call and decodes the response into a `ChainResponse`.

A middleware may return a third element, a replacement `ChainRequest`, to ask for
the request to be submitted again. Resubmission is performed by
`ChainMiddlewareContext`, which runs the whole chain again with the replacement
request, bounded by `attempt_max`. Middleware therefore never needs a reference
to the client that owns it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import time
from types import TracebackType
from typing import (
    Any,
    Awaitable,
    Callable,
    Generator,
    Sequence,
    Tuple,
    Union,
    Protocol,
)
import logging
from aiohttp import ClientResponse, ClientSession, hdrs
from aiohttp.typedefs import StrOrURL
from multidict import CIMultiDictProxy
import sentry_sdk

from social.graze.jwtclient.app.metrics import MetricsClient
from social.graze.jwtclient.client.exceptions import ResponseError

RequestFunc = Callable[..., Awaitable[ClientResponse]]

logger = logging.getLogger(__name__)


class _LoggerStub(Protocol):
    """_Logger defines which methods logger object should have."""

    @abstractmethod
    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    @abstractmethod
    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass


_LoggerType = Union[_LoggerStub, logging.Logger]


@dataclass
class ChainRequest:
    """
    Description of an outgoing request.

    `kwargs` holds everything else aiohttp accepts (`json`, `data`, `params`,
    `timeout`, ...). `second_attempt` is set on a request that is being
    resubmitted after a token refresh and is never sent over the wire.
    """

    method: str
    url: StrOrURL
    headers: dict[str, Any] | None = None
    trace_request_ctx: dict[str, Any] | None = None
    kwargs: dict[str, Any] | None = None
    second_attempt: bool = False

    @staticmethod
    def from_chain_request(request: "ChainRequest") -> "ChainRequest":
        return ChainRequest(
            method=request.method,
            url=request.url,
            headers=dict(request.headers) if request.headers is not None else None,
            trace_request_ctx=request.trace_request_ctx,
            kwargs=dict(request.kwargs) if request.kwargs is not None else None,
            second_attempt=request.second_attempt,
        )


@dataclass
class ChainResponse:
    status: int
    headers: CIMultiDictProxy[str]
    body: str | bytes | dict[str, Any] | list[Any] | None = None

    @staticmethod
    async def from_aiohttp_response(response: ClientResponse) -> "ChainResponse":
        status = response.status
        headers = response.headers

        content_type = response.headers.get(hdrs.CONTENT_TYPE, "")

        if content_type.startswith("application/json"):
            return ChainResponse(
                status=status, headers=headers, body=await response.json()
            )
        elif content_type.startswith("text/"):
            return ChainResponse(
                status=status, headers=headers, body=await response.text()
            )
        else:
            return ChainResponse(
                status=status, headers=headers, body=await response.read()
            )

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def body_field(self, key: str, default: Any = None) -> Any:
        if not isinstance(self.body, dict):
            return default
        return self.body.get(key, default)


NextChainResponseCallbackType = (
    Tuple[ClientResponse, ChainResponse]
    | Tuple[ClientResponse, ChainResponse, ChainRequest]
)

NextChainCallbackType = Callable[
    [ChainRequest], Awaitable[NextChainResponseCallbackType]
]


class RequestMiddlewareBase(ABC):
    @abstractmethod
    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        pass

    def handle_gen(self, next: NextChainCallbackType) -> NextChainCallbackType:
        async def next_invoke(request: ChainRequest) -> NextChainResponseCallbackType:
            return await self.handle(next, request)

        return next_invoke


class StatsdMiddleware(RequestMiddlewareBase):
    """Times and counts every attempt that passes through the chain."""

    def __init__(self, metrics_client: MetricsClient, prefix: str = "jwtclient") -> None:
        super().__init__()
        self._metrics_client = metrics_client
        self._prefix = prefix

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        start_time = time()
        tags = {"method": request.method.lower()}
        try:
            return await next(request)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            raise
        finally:
            self._metrics_client.timer(
                f"{self._prefix}.client.request.time",
                time() - start_time,
                tag_dict=tags,
            )
            self._metrics_client.increment(
                f"{self._prefix}.client.request.count", 1, tag_dict=tags
            )


class DebugMiddleware(RequestMiddlewareBase):
    """
    Logs each attempt at debug level.

    Only header names are logged; header values (bearer tokens in particular)
    never reach the log.
    """

    async def handle(
        self, next: NextChainCallbackType, request: ChainRequest
    ) -> NextChainResponseCallbackType:
        logger.debug(
            "request %s %s headers=%s second_attempt=%s",
            request.method,
            request.url,
            sorted((request.headers or {}).keys()),
            request.second_attempt,
        )
        response = await next(request)
        logger.debug(
            "response %s %s status=%s retry=%s",
            request.method,
            request.url,
            response[1].status,
            len(response) == 3,
        )
        return response


class EndOfLineChainMiddleware:
    def __init__(
        self,
        request_func: RequestFunc,
        logger: _LoggerType,
    ) -> None:
        super().__init__()
        self._request_func = request_func
        self._logger = logger

    async def handle(self, request: ChainRequest) -> NextChainResponseCallbackType:

        self._logger.debug(f"Making request: {request.method} {request.url}")

        response: ClientResponse = await self._request_func(
            request.method.lower(),
            request.url,
            headers=request.headers,
            trace_request_ctx={
                **(request.trace_request_ctx or {}),
            },
            **(request.kwargs or {}),
        )

        try:
            chain_response = await ChainResponse.from_aiohttp_response(response)
        except Exception:
            response.release()
            raise

        return response, chain_response


class ChainMiddlewareContext:
    def __init__(
        self,
        chain_callback: NextChainCallbackType,
        chain_request: ChainRequest,
        logger: _LoggerType,
        raise_for_status: bool = False,
        attempt_max: int = 3,
    ) -> None:
        self._chain_callback = chain_callback
        self._chain_request = chain_request
        self._logger = logger
        self._raise_for_status = raise_for_status

        self._chain_response: ChainResponse | None = None
        self.client_response: ClientResponse | None = None

        self._attempt_max = attempt_max

    async def _do_request(self) -> Tuple[ClientResponse, ChainResponse]:
        current_attempt = 0

        chain_request = self._chain_request

        while True:
            current_attempt += 1

            if current_attempt > self._attempt_max:
                raise RuntimeError("Max attempts reached")

            self._logger.debug(
                f"Attempt {current_attempt} out of {self._attempt_max}"
            )

            response = await self._chain_callback(chain_request)
            client_response = response[0]
            chain_response = response[1]
            new_request = None
            if len(response) == 3:
                new_request = response[2]

            self._chain_response = chain_response
            self.client_response = client_response

            if new_request is None:
                if self._raise_for_status and not chain_response.ok:
                    client_response.release()
                    raise ResponseError.from_response(chain_request, chain_response)
                return client_response, chain_response

            # The superseded response body has already been decoded.
            client_response.release()
            chain_request = new_request

    def __await__(self) -> Generator[Any, None, Tuple[ClientResponse, ChainResponse]]:
        return self.__aenter__().__await__()

    async def __aenter__(self) -> Tuple[ClientResponse, ChainResponse]:
        return await self._do_request()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.client_response is not None and not self.client_response.closed:
            self.client_response.close()


class ChainMiddlewareClient:
    def __init__(
        self,
        client_session: ClientSession | None = None,
        logger: _LoggerType | None = None,
        middleware: Sequence[RequestMiddlewareBase] | None = None,
        raise_for_status: bool = False,
        attempt_max: int = 3,
        *args: Any,
        **kwargs: Any,
    ) -> None:
        if client_session is not None:
            client = client_session
            closed = None
        else:
            client = ClientSession(*args, **kwargs)
            closed = False

        self._middleware = middleware

        self._client = client
        self._closed = closed

        self._logger: _LoggerType = logger or logging.getLogger("aiohttp_chain")
        self._raise_for_status = raise_for_status
        self._attempt_max = attempt_max

    def request(
        self,
        method: str,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=method,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def get(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_GET,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def options(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_OPTIONS,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def head(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_HEAD,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def post(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_POST,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def put(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_PUT,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def patch(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_PATCH,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    def delete(
        self,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        return self._make_request(
            method=hdrs.METH_DELETE,
            url=url,
            raise_for_status=raise_for_status,
            **kwargs,
        )

    async def close(self) -> None:
        # Sessions handed in by the caller stay open.
        if self._closed is None:
            return
        await self._client.close()
        self._closed = True

    def _make_request(
        self,
        method: str,
        url: StrOrURL,
        raise_for_status: bool | None = None,
        **kwargs: Any,
    ) -> ChainMiddlewareContext:
        chain_request = ChainRequest(
            method=method,
            url=url,
            headers=kwargs.pop("headers", None) or {},
            trace_request_ctx=kwargs.pop("trace_request_ctx", None),
            kwargs=kwargs,
        )

        if raise_for_status is None:
            raise_for_status = self._raise_for_status

        end_of_line_middleware = EndOfLineChainMiddleware(
            request_func=self._client.request,
            logger=self._logger,
        )

        chain_callback: NextChainCallbackType = end_of_line_middleware.handle

        full_middleware_chain = reversed(self._middleware or [])

        for mw in full_middleware_chain:
            chain_callback = mw.handle_gen(chain_callback)

        return ChainMiddlewareContext(
            chain_callback=chain_callback,
            chain_request=chain_request,
            logger=self._logger,
            raise_for_status=raise_for_status,
            attempt_max=self._attempt_max,
        )

    async def __aenter__(self) -> "ChainMiddlewareClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __del__(self) -> None:
        if getattr(self, "_closed", None) is None:
            # in case object was not initialized (__init__ raised an exception),
            # or the session belongs to the caller
            return

        if not self._closed:
            self._logger.warning("Aiohttp chain client was not closed")
