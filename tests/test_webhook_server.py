import importlib
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from bot.services.verification import VerificationService


@pytest.fixture()
def server(monkeypatch):
    monkeypatch.setenv("BOT_TOKEN", "123456:test-token")
    monkeypatch.setenv("SUPABASE_URL", "https://auth.acme.org")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("VERIFICATION_BASE_URL", "https://bot.acme.org")
    monkeypatch.setenv("WEBHOOK_SECRET", "s3cret")
    monkeypatch.setenv("ADMIN_API_TOKEN", "admin-token")
    module = importlib.import_module("webhook_server")
    monkeypatch.setattr(module.config, "webhook_secret", "s3cret")
    monkeypatch.setattr(module.config, "admin_api_token", "admin-token")
    return module


@pytest.fixture()
def running_bot(server, monkeypatch, auth_flow, magic_links):
    magic_links.verify_access_token.return_value = {"id": "auth-1", "email": "alice@acme.org"}
    fake = SimpleNamespace(
        bot=AsyncMock(),
        container=SimpleNamespace(verification=VerificationService(auth_flow, magic_links)),
        is_running=lambda: True,
    )
    monkeypatch.setattr(server, "telegram_bot", fake)
    return fake


@pytest.fixture()
async def client(server):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=server.app), base_url="http://test") as client:
        yield client


async def test_verify_page_links_the_account(client, running_bot, identities):
    response = await client.get("/verify", params={"access_token": "tok", "telegram_id": "1001", "username": "alice"})

    assert response.status_code == 200
    assert "Account Linked" in response.text
    assert (await identities.get_by_telegram_id(1001)).email == "alice@acme.org"
    running_bot.bot.send_message.assert_awaited_once()


async def test_verify_page_without_token(client, running_bot):
    response = await client.get("/verify", params={"telegram_id": "1001"})

    assert response.status_code == 400
    assert "Missing Access Token" in response.text


async def test_verify_before_startup(client, server, monkeypatch):
    monkeypatch.setattr(server, "telegram_bot", None)

    response = await client.get("/verify", params={"access_token": "tok", "telegram_id": "1"})

    assert response.status_code == 503


async def test_link_telegram_json(client, running_bot, auth_flow):
    ok = await client.post("/linkTelegram", json={"access_token": "tok", "telegram_id": 1001})
    assert ok.status_code == 200
    assert ok.json() == {"success": True, "data": {"email": "alice@acme.org", "role": "user"}}

    await auth_flow.complete_link(2002, "bob@acme.org")
    running_bot.container.verification.magic_links.verify_access_token.return_value = {"email": "bob@acme.org"}
    conflict = await client.post("/linkTelegram", json={"access_token": "tok", "telegram_id": 1001})
    assert conflict.status_code == 409
    assert conflict.json()["success"] is False


async def test_webhook_rejects_a_bad_secret(client, running_bot):
    response = await client.post(
        "/webhook",
        json={"update_id": 1},
        headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
    )
    assert response.status_code == 401


async def test_status_requires_admin_token(client, running_bot):
    assert (await client.get("/status")).status_code == 403


async def test_health_is_public(client, running_bot):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["running"] is True
