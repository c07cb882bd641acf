"""
Unit Tests for Metrics Abstraction Layer

Test Coverage:
- MetricsClient interface implementations (Telegraf, NoOp)
- Backend selection via factory function
- Error handling on close
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest

from social.graze.jwtclient.app.metrics import (
    MetricsClient,
    NoOpMetricsClient,
    TelegrafCompatibilityClient,
    create_metrics_client,
)


class TestMetricsClientInterface:
    """Test the abstract MetricsClient interface."""

    def test_interface_is_abstract(self):
        """MetricsClient should be abstract and not instantiable."""
        with pytest.raises(TypeError):
            MetricsClient()  # type: ignore


class TestNoOpMetricsClient:
    """Test the NoOpMetricsClient implementation."""

    @pytest.fixture
    def noop_client(self):
        return NoOpMetricsClient()

    def test_noop_operations(self, noop_client):
        """NoOp operations should not raise exceptions."""
        noop_client.increment("test.counter", 1, {"tag": "value"})
        noop_client.increment("test.counter")
        noop_client.gauge("test.gauge", 42.5, {"tag": "value"})
        noop_client.timer("test.timer", 0.001)

    @pytest.mark.asyncio
    async def test_noop_close(self, noop_client):
        await noop_client.close()


class TestTelegrafCompatibilityClient:
    """Test the TelegrafCompatibilityClient wrapper."""

    @pytest.fixture
    def mock_telegraf_client(self):
        """Create a mock TelegrafStatsdClient."""
        mock = Mock()
        mock.increment = Mock()
        mock.gauge = Mock()
        mock.timer = Mock()
        mock.close = AsyncMock()
        return mock

    @pytest.fixture
    def telegraf_client(self, mock_telegraf_client):
        return TelegrafCompatibilityClient(mock_telegraf_client)

    def test_telegraf_increment(self, telegraf_client, mock_telegraf_client):
        """Telegraf increment should delegate to underlying client."""
        telegraf_client.increment("jwtclient.auth.retry", 3, {"method": "post"})

        mock_telegraf_client.increment.assert_called_once_with(
            "jwtclient.auth.retry", 3, tag_dict={"method": "post"}
        )

    def test_telegraf_increment_no_tags(self, telegraf_client, mock_telegraf_client):
        """Telegraf increment should handle None tag_dict gracefully."""
        telegraf_client.increment("jwtclient.auth.retry")

        mock_telegraf_client.increment.assert_called_once_with(
            "jwtclient.auth.retry", 1, tag_dict={}
        )

    def test_telegraf_gauge(self, telegraf_client, mock_telegraf_client):
        telegraf_client.gauge("test.gauge", 42.0, {"status": "ok"})

        mock_telegraf_client.gauge.assert_called_once_with(
            "test.gauge", 42.0, tag_dict={"status": "ok"}
        )

    def test_telegraf_timer(self, telegraf_client, mock_telegraf_client):
        telegraf_client.timer("jwtclient.client.request.time", 1.234, {"method": "get"})

        mock_telegraf_client.timer.assert_called_once_with(
            "jwtclient.client.request.time", 1.234, tag_dict={"method": "get"}
        )

    @pytest.mark.asyncio
    async def test_telegraf_close(self, telegraf_client, mock_telegraf_client):
        await telegraf_client.close()

        mock_telegraf_client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_telegraf_close_error_logged(self, telegraf_client, mock_telegraf_client):
        """Errors while closing are logged, not raised."""
        mock_telegraf_client.close = AsyncMock(side_effect=OSError("socket gone"))

        with patch("social.graze.jwtclient.app.metrics.logger") as mock_logger:
            await telegraf_client.close()

        mock_logger.warning.assert_called_once()


class TestMetricsClientFactory:
    """Test the create_metrics_client factory function."""

    @pytest.mark.asyncio
    async def test_factory_creates_noop_client(self):
        client = await create_metrics_client("none")
        assert isinstance(client, NoOpMetricsClient)

    @pytest.mark.asyncio
    async def test_factory_creates_and_connects_telegraf_client(self):
        mock_instance = Mock()
        mock_instance.connect = AsyncMock()

        with patch(
            "social.graze.jwtclient.app.metrics.TelegrafStatsdClient",
            return_value=mock_instance,
        ) as mock_telegraf_class:
            client = await create_metrics_client(
                "telegraf", host="localhost", port=8125, debug=True
            )

        assert isinstance(client, TelegrafCompatibilityClient)
        assert client.client is mock_instance
        mock_telegraf_class.assert_called_once_with(host="localhost", port=8125, debug=True)
        mock_instance.connect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_factory_uses_preconfigured_telegraf_client(self):
        mock_client = Mock()

        client = await create_metrics_client("telegraf", telegraf_client=mock_client)

        assert isinstance(client, TelegrafCompatibilityClient)
        assert client.client is mock_client

    @pytest.mark.asyncio
    async def test_factory_handles_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid metrics backend: invalid"):
            await create_metrics_client("invalid")

    @pytest.mark.asyncio
    async def test_factory_handles_case_insensitive_backends(self):
        for backend in ("NONE", "None", "none"):
            assert isinstance(await create_metrics_client(backend), NoOpMetricsClient)
