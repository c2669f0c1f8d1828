"""Tests for HTTP status classification and error types."""

import pytest

from opencode_bridge.errors import (
    OpenCodeError,
    ServerStartupError,
    classify_status,
)

pytestmark = pytest.mark.unit

TRANSIENT = [429, 502, 503, 504]
NON_TRANSIENT = [200, 204, 400, 401, 403, 404, 409, 422, 500, 501, 505]


class TestClassifyStatus:
    @pytest.mark.parametrize("status", TRANSIENT)
    def test_transient_statuses(self, status: int) -> None:
        assert classify_status(status).transient is True

    @pytest.mark.parametrize("status", NON_TRANSIENT)
    def test_non_transient_statuses(self, status: int) -> None:
        assert classify_status(status).transient is False

    def test_not_found(self) -> None:
        result = classify_status(404)
        assert result.not_found is True
        assert result.auth is False
        assert result.transient is False

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth(self, status: int) -> None:
        result = classify_status(status)
        assert result.auth is True
        assert result.not_found is False

    def test_server_error_has_no_flags(self) -> None:
        result = classify_status(500)
        assert (result.transient, result.not_found, result.auth) == (False, False, False)


class TestOpenCodeError:
    def test_carries_request_context(self) -> None:
        err = OpenCodeError("GET /x failed (503): busy", 503, "GET", "/x", "busy")
        assert str(err) == "GET /x failed (503): busy"
        assert err.status == 503
        assert err.method == "GET"
        assert err.path == "/x"
        assert err.body == "busy"

    def test_flags_follow_status(self) -> None:
        assert OpenCodeError("m", 429, "GET", "/").is_transient is True
        assert OpenCodeError("m", 404, "GET", "/").is_not_found is True
        assert OpenCodeError("m", 401, "GET", "/").is_auth is True
        assert OpenCodeError("m", 403, "GET", "/").is_auth is True
        assert OpenCodeError("m", 400, "GET", "/").is_transient is False


class TestServerStartupError:
    def test_defaults(self) -> None:
        err = ServerStartupError("boom")
        assert err.exit_code is None
        assert err.stdout == ""
        assert err.stderr == ""
