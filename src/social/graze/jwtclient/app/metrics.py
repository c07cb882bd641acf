"""
Metrics Abstraction Layer

A small vendor-agnostic metrics interface used by the request chain and the
authentication middleware. Two backends are provided:

- TelegrafCompatibilityClient: delegates to an aio-statsd TelegrafStatsdClient
- NoOpMetricsClient: discards everything, the default when metrics are disabled

Counters emitted by the client (prefix configurable, default "jwtclient"):
- <prefix>.client.request.count / .time: every attempt sent through the chain
- <prefix>.auth.refresh.attempt / .success / .failure: token refresh outcomes
- <prefix>.auth.retry: requests resubmitted after a successful refresh
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Union

from aio_statsd import TelegrafStatsdClient

logger = logging.getLogger(__name__)


class MetricsClient(ABC):
    """
    Abstract metrics client interface.

    Tag handling follows the StatsD-style `tag_dict` convention used by
    TelegrafStatsdClient so that the Telegraf client can be wrapped without
    translation.
    """

    @abstractmethod
    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Increment a counter metric by the specified value.

        Args:
            name: Metric name (e.g., 'jwtclient.auth.refresh.attempt')
            value: Amount to increment by (default: 1)
            tag_dict: Optional tags for metric dimensions
        """
        pass

    @abstractmethod
    def gauge(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Set a gauge metric to the specified value.

        Args:
            name: Metric name
            value: Current value to set
            tag_dict: Optional tags for metric dimensions
        """
        pass

    @abstractmethod
    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record a timing measurement in seconds.

        Args:
            name: Metric name (e.g., 'jwtclient.client.request.time')
            value: Duration in seconds
            tag_dict: Optional tags for metric dimensions
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Flush pending metrics and release any network resources."""
        pass


class TelegrafCompatibilityClient(MetricsClient):
    """Wraps a connected TelegrafStatsdClient behind the MetricsClient interface."""

    def __init__(self, telegraf_client: Any):
        self.client = telegraf_client

    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        self.client.increment(name, value, tag_dict=tag_dict or {})

    def gauge(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        self.client.gauge(name, value, tag_dict=tag_dict or {})

    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        self.client.timer(name, value, tag_dict=tag_dict or {})

    async def close(self) -> None:
        try:
            await self.client.close()
        except Exception as e:
            logger.warning(f"Error closing Telegraf client: {e}")


class NoOpMetricsClient(MetricsClient):
    """Metrics client that records nothing."""

    def increment(
        self,
        name: str,
        value: Union[int, float] = 1,
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        pass

    def gauge(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        pass

    def timer(
        self,
        name: str,
        value: Union[int, float],
        tag_dict: Optional[Dict[str, Any]] = None
    ) -> None:
        pass

    async def close(self) -> None:
        pass


async def create_metrics_client(
    backend: str,
    host: str = "localhost",
    port: int = 8125,
    telegraf_client: Optional[Any] = None,
    debug: bool = False,
) -> MetricsClient:
    """
    Create the metrics client for the requested backend.

    A new TelegrafStatsdClient is connected before it is returned; a
    pre-configured `telegraf_client` is assumed to be connected already.

    Args:
        backend: Backend type ('telegraf' or 'none')
        host: Telegraf/StatsD host
        port: Telegraf/StatsD port
        telegraf_client: Pre-configured TelegrafStatsdClient instance
        debug: Enable debug output in the StatsD client

    Raises:
        ValueError: If the backend type is unknown
    """
    backend = backend.lower()

    if backend == "telegraf":
        if telegraf_client is None:
            telegraf_client = TelegrafStatsdClient(host=host, port=port, debug=debug)
            await telegraf_client.connect()
        return TelegrafCompatibilityClient(telegraf_client)

    elif backend == "none":
        logger.debug("Metrics collection disabled (no-op client)")
        return NoOpMetricsClient()

    raise ValueError(
        f"Invalid metrics backend: {backend}. Supported backends: 'telegraf', 'none'"
    )
