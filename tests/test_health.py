"""Tests for the OpenCode health probe."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from opencode_bridge.health import HEALTH_PATH, HealthStatus, check_health

pytestmark = pytest.mark.unit


def _mock_client(response: MagicMock | None = None, error: Exception | None = None) -> MagicMock:
    """Create a mock httpx.AsyncClient class whose instance returns ``response``."""
    client = MagicMock()
    client.get = AsyncMock(return_value=response, side_effect=error)
    client_cls = MagicMock()
    client_cls.return_value.__aenter__.return_value = client
    return client_cls


def _response(status_code: int = 200, body: object = None) -> MagicMock:
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.is_success = 200 <= status_code < 300
    resp.json.return_value = body
    return resp


class TestCheckHealth:
    async def test_healthy_with_version(self) -> None:
        client_cls = _mock_client(_response(200, {"healthy": True, "version": "0.15.2"}))
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            result = await check_health("http://127.0.0.1:4096/")

        assert result == HealthStatus(healthy=True, version="0.15.2")
        client = client_cls.return_value.__aenter__.return_value
        args, kwargs = client.get.call_args
        assert args[0] == f"http://127.0.0.1:4096{HEALTH_PATH}"
        assert kwargs["timeout"] == 3.0

    async def test_non_string_version_dropped(self) -> None:
        client_cls = _mock_client(_response(200, {"healthy": True, "version": 3}))
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            result = await check_health("http://localhost:4096")

        assert result == HealthStatus(healthy=True, version=None)

    @pytest.mark.parametrize("body", [{}, {"healthy": False}, {"healthy": "yes"}, ["healthy"], None])
    async def test_body_without_healthy_true(self, body: object) -> None:
        client_cls = _mock_client(_response(200, body))
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            result = await check_health("http://localhost:4096")

        assert result.healthy is False

    async def test_non_2xx(self) -> None:
        client_cls = _mock_client(_response(503, {"healthy": True}))
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            result = await check_health("http://localhost:4096")

        assert result == HealthStatus(healthy=False)

    @pytest.mark.parametrize(
        "error",
        [httpx.ConnectError("refused"), httpx.ReadTimeout("slow"), RuntimeError("boom")],
    )
    async def test_exceptions_never_raise(self, error: Exception) -> None:
        client_cls = _mock_client(error=error)
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            result = await check_health("http://localhost:4096")

        assert result == HealthStatus(healthy=False)

    async def test_invalid_json_never_raises(self) -> None:
        resp = _response(200)
        resp.json.side_effect = ValueError("not json")
        client_cls = _mock_client(resp)
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            result = await check_health("http://localhost:4096")

        assert result.healthy is False

    async def test_passes_headers(self) -> None:
        client_cls = _mock_client(_response(200, {"healthy": True}))
        with patch("opencode_bridge.health.httpx.AsyncClient", client_cls):
            await check_health("http://localhost:4096", timeout=1.5, headers={"Authorization": "Basic x"})

        client = client_cls.return_value.__aenter__.return_value
        kwargs = client.get.call_args.kwargs
        assert kwargs["headers"] == {"Authorization": "Basic x"}
        assert kwargs["timeout"] == 1.5
