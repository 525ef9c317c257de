"""
Tests for Main Application wiring.

Covers the error envelope handler and the startup/shutdown lifespan.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatgate import main
from chatgate.exceptions import ConfigError, CooldownError, UnsupportedModelError


def fake_request(path: str = "/v1/chat") -> MagicMock:
    request = MagicMock()
    request.url.path = path
    return request


class TestErrorHandler:
    async def test_client_error_keeps_message(self):
        response = await main.chatgate_exception_handler(
            fake_request(), UnsupportedModelError("gpt-9")
        )

        assert response.status_code == 400
        assert json.loads(response.body) == {
            "error": "Unsupported model: gpt-9",
            "kind": "unsupported_model",
        }

    async def test_server_error_hides_detail(self):
        response = await main.chatgate_exception_handler(
            fake_request(), ConfigError("MASTER_KEY=deadbeef is wrong")
        )

        assert response.status_code == 500
        body = json.loads(response.body)
        assert body["error"] == main.GENERIC_SERVER_ERROR
        assert "deadbeef" not in response.body.decode()

    async def test_cooldown_carries_retry_after(self):
        response = await main.chatgate_exception_handler(
            fake_request("/v1/auth/otp/send"), CooldownError(12)
        )

        assert response.status_code == 429
        assert response.headers["retry-after"] == "12"
        assert json.loads(response.body) == {
            "error": "cooldown",
            "kind": "cooldown",
            "retryAfterSeconds": 12,
        }


class TestLifespan:
    @pytest.mark.parametrize("auto_migrate", [True, False])
    async def test_startup_and_shutdown(self, auto_migrate):
        with (
            patch.object(main.settings, "auto_migrate", auto_migrate),
            patch.object(main, "run_migrations") as run_migrations,
            patch.object(main, "close_http_client", new=AsyncMock()) as close_http,
            patch.object(main, "close_engines", new=AsyncMock()) as close_engines,
        ):
            async with main.lifespan(main.app):
                assert run_migrations.called is auto_migrate

            close_http.assert_awaited_once()
            close_engines.assert_awaited_once()

    async def test_failed_migration_aborts_startup(self):
        with (
            patch.object(main.settings, "auto_migrate", True),
            patch.object(main, "run_migrations", side_effect=RuntimeError("Migration failed")),
        ):
            with pytest.raises(RuntimeError, match="Migration failed"):
                async with main.lifespan(main.app):
                    pass
