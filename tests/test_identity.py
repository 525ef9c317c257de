"""
Tests for the Supabase identity client and session minting.
"""

import json
from uuid import uuid4

import httpx
import pytest

from chatgate.exceptions import IdentityProviderError, UnauthorizedError
from chatgate.services.identity import SessionMinter, SupabaseIdentityProvider

BASE_URL = "https://project.supabase.test"


def make_provider(handler, captured: list[httpx.Request] | None = None):
    def _handle(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_handle))
    return SupabaseIdentityProvider(BASE_URL + "/", "service-key", http_client=client)


class TestGetUser:
    async def test_valid_token(self):
        user_id = uuid4()
        captured: list[httpx.Request] = []
        provider = make_provider(
            lambda r: httpx.Response(200, json={"id": str(user_id), "email": "a@b.co"}), captured
        )

        user = await provider.get_user("user-jwt")

        assert user.user_id == user_id
        assert user.email == "a@b.co"
        request = captured[0]
        assert str(request.url) == f"{BASE_URL}/auth/v1/user"
        assert request.headers["Authorization"] == "Bearer user-jwt"
        assert request.headers["apikey"] == "service-key"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(401, json={"msg": "invalid JWT"}),
            httpx.Response(200, json={"email": "no-id@b.co"}),
            httpx.Response(200, json={"id": "not-a-uuid"}),
            httpx.Response(200, text="<html>"),
        ],
    )
    async def test_rejected_or_malformed_is_unauthorized(self, response):
        provider = make_provider(lambda r: response)
        with pytest.raises(UnauthorizedError):
            await provider.get_user("user-jwt")

    async def test_transport_failure_is_unauthorized(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(UnauthorizedError):
            await make_provider(handler).get_user("user-jwt")

    async def test_empty_token_makes_no_request(self):
        captured: list[httpx.Request] = []
        provider = make_provider(lambda r: httpx.Response(200), captured)

        with pytest.raises(UnauthorizedError):
            await provider.get_user("")
        assert captured == []


class TestSessionMinter:
    @staticmethod
    def routes(link_body, create_status: int = 200):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/auth/v1/admin/users":
                return httpx.Response(create_status, json={"msg": "User already registered"})
            if request.url.path == "/auth/v1/admin/generate_link":
                return httpx.Response(200, json=link_body)
            return httpx.Response(404)

        return handler

    async def test_prefers_hashed_token(self):
        captured: list[httpx.Request] = []
        provider = make_provider(
            self.routes({"hashed_token": "abc", "action_link": "https://x/?token=zzz"}), captured
        )

        token = await SessionMinter(provider).mint("user@example.com")

        assert token == "abc"
        create, link = captured
        assert json.loads(create.content)["email_confirm"] is True
        assert json.loads(link.content) == {"type": "magiclink", "email": "user@example.com"}
        assert link.headers["Authorization"] == "Bearer service-key"

    async def test_falls_back_to_action_link_token(self):
        body = {"properties": {"action_link": "https://p/auth/v1/verify?token=tok123&type=magiclink"}}
        provider = make_provider(self.routes(body))

        assert await SessionMinter(provider).mint("user@example.com") == "tok123"

    async def test_existing_user_is_not_an_error(self):
        provider = make_provider(self.routes({"hashed_token": "abc"}, create_status=422))
        assert await SessionMinter(provider).mint("user@example.com") == "abc"

    async def test_user_creation_failure(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(IdentityProviderError):
            await SessionMinter(make_provider(handler)).mint("user@example.com")

    async def test_no_token_in_link(self):
        provider = make_provider(self.routes({"action_link": "https://p/verify?type=magiclink"}))

        with pytest.raises(IdentityProviderError, match="Failed to generate access token"):
            await SessionMinter(provider).mint("user@example.com")
