"""Tests for TURN/STUN provisioning on the relay and its client-side lookup."""
from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from peerlink.client import ice as client_ice
from peerlink.core.config import DEFAULT_STUN_SERVERS
from peerlink.main import app
from peerlink.services import rtc


@pytest.fixture
def turn_configured(monkeypatch):
    monkeypatch.setattr(rtc.settings, "turn_key_id", "key-123")
    monkeypatch.setattr(rtc.settings, "turn_api_token", "secret")
    monkeypatch.setattr(rtc.settings, "stun_servers", list(DEFAULT_STUN_SERVERS))


@pytest.mark.asyncio
async def test_missing_turn_credentials_fall_back_to_two_stun_servers(monkeypatch):
    monkeypatch.setattr(rtc.settings, "turn_key_id", "")
    monkeypatch.setattr(rtc.settings, "stun_servers", list(DEFAULT_STUN_SERVERS))

    response = await rtc.get_ice_servers()

    assert [server.urls for server in response.ice_servers] == DEFAULT_STUN_SERVERS[:2]


@pytest.mark.asyncio
async def test_turn_credentials_are_merged_with_stun(turn_configured):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.content
        return httpx.Response(
            201,
            json={
                "ice_servers": {
                    "urls": ["turn:turn.example.com:3478?transport=udp", "turns:turn.example.com:5349"],
                    "username": "user",
                    "credential": "pass",
                }
            },
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await rtc.get_ice_servers(client)

    assert seen["url"].endswith("/key-123/credentials/generate")
    assert seen["auth"] == "Bearer secret"
    assert b'"ttl":86400' in seen["body"].replace(b" ", b"")
    first = response.ice_servers[0]
    assert first.username == "user"
    assert first.credential == "pass"
    assert [server.urls for server in response.ice_servers[1:]] == DEFAULT_STUN_SERVERS


@pytest.mark.asyncio
async def test_turn_list_payload_is_accepted(turn_configured):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ice_servers": [{"urls": "turn:a", "username": "u", "credential": "c"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await rtc.get_ice_servers(client)

    assert response.ice_servers[0].urls == "turn:a"
    assert len(response.ice_servers) == 1 + len(DEFAULT_STUN_SERVERS)


@pytest.mark.asyncio
async def test_turn_provider_failure_falls_back_to_all_stun(turn_configured):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await rtc.get_ice_servers(client)

    assert [server.urls for server in response.ice_servers] == DEFAULT_STUN_SERVERS


@pytest.mark.asyncio
async def test_ice_endpoints_use_camel_case_and_omit_empty_fields(monkeypatch):
    monkeypatch.setattr(rtc.settings, "turn_key_id", "")
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        modern = await client.get("/api/rtc/ice-servers")
        legacy = await client.get("/get-ice-servers")

    assert modern.status_code == 200
    assert modern.json() == legacy.json()
    servers = modern.json()["iceServers"]
    assert servers[0] == {"urls": DEFAULT_STUN_SERVERS[0]}


@pytest.mark.asyncio
async def test_client_fetches_relay_ice_config():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/rtc/ice-servers"
        return httpx.Response(200, json={"iceServers": [{"urls": "turn:x", "username": "u", "credential": "c"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        config = await client_ice.fetch_ice_servers("http://relay.local/", client)

    assert config["iceServers"][0]["urls"] == "turn:x"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [httpx.Response(503), httpx.Response(200, json={"iceServers": []}), httpx.Response(200, text="nope")],
)
async def test_client_falls_back_to_stun_defaults(response):
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: response)) as client:
        config = await client_ice.fetch_ice_servers("http://relay.local", client)

    assert config == client_ice.fallback_ice_config()
    assert len(config["iceServers"]) == 5
