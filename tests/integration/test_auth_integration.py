"""Integration tests: require_api_key() protecting a FastAPI route.

Verifies over real HTTP (httpx ASGITransport):
  - 401 + WWW-Authenticate when no key is sent; handler never runs
  - 403 for unknown and expired keys
  - Rotated keys: old and new both accepted during overlap
  - Static shared-secret fallback when the store has no match
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from keyrotor.auth.middleware import AuthResult, require_api_key
from keyrotor.config import get_static_api_key
from keyrotor.constants import DAY_MS
from keyrotor.lifecycle.engine import (
    create_signing_key,
    deprecate_signing_key,
    now_ms,
    rotate_signing_key,
)
from keyrotor.lifecycle.keygen import generate_key
from keyrotor.store.keystore import KeyStore


def create_app(store: KeyStore, static_key: str | None = None) -> tuple[FastAPI, list[str]]:
    app = FastAPI()
    calls: list[str] = []
    auth = require_api_key(store, static_key=static_key)

    @app.get("/orders")
    async def orders(result: AuthResult = Depends(auth)) -> dict:
        calls.append(result.source)
        return {
            "source": result.source,
            "keyId": result.key_id,
            "merchantId": result.tenant_id,
            "deprecated": result.is_deprecated,
        }

    return app, calls


@pytest.fixture
async def client_factory():
    clients: list[AsyncClient] = []

    def make(app: FastAPI) -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield make
    for client in clients:
        await client.aclose()


class TestProtectedRoute:
    async def test_missing_key_401(self, key_store: KeyStore, client_factory) -> None:
        app, calls = create_app(key_store)
        response = await client_factory(app).get("/orders")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == 'Bearer realm="api"'
        assert response.json()["detail"]["code"] == "AUTH_MISSING_KEY"
        assert calls == []

    async def test_unknown_key_403(self, key_store: KeyStore, client_factory) -> None:
        app, calls = create_app(key_store)
        response = await client_factory(app).get(
            "/orders", headers={"X-API-Key": generate_key("sk", "live")}
        )
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "AUTH_INVALID_KEY"
        assert calls == []

    async def test_valid_key_via_bearer(self, key_store: KeyStore, client_factory) -> None:
        created = create_signing_key(tenant_id="merchant-1")
        await key_store.store(created.record)
        app, calls = create_app(key_store)

        response = await client_factory(app).get(
            "/orders", headers={"Authorization": f"Bearer {created.plaintext}"}
        )
        assert response.status_code == 200
        assert response.json() == {
            "source": "store",
            "keyId": created.record.key_id,
            "merchantId": "merchant-1",
            "deprecated": False,
        }
        assert calls == ["store"]

    async def test_rotation_overlap(self, key_store: KeyStore, client_factory) -> None:
        original = create_signing_key(tenant_id="merchant-1")
        await key_store.store(original.record)
        rotation = rotate_signing_key(original.record)
        await key_store.update(rotation.old_record)
        await key_store.store(rotation.new_record)
        client = client_factory(create_app(key_store)[0])

        old = await client.get("/orders", headers={"X-API-Key": original.plaintext})
        new = await client.get("/orders", headers={"X-API-Key": rotation.plaintext})
        assert old.status_code == 200 and old.json()["deprecated"] is True
        assert new.status_code == 200 and new.json()["deprecated"] is False

    async def test_expired_key_403(self, key_store: KeyStore, client_factory) -> None:
        # deprecated two days ago with the default one-day overlap
        created = create_signing_key(now=now_ms() - 3 * DAY_MS)
        await key_store.store(deprecate_signing_key(created.record, now=now_ms() - 2 * DAY_MS))
        client = client_factory(create_app(key_store)[0])

        response = await client.get("/orders", headers={"X-API-Key": created.plaintext})
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "AUTH_EXPIRED_KEY"

    async def test_static_fallback(
        self, key_store: KeyStore, client_factory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("KEYROTOR_STATIC_API_KEY", "legacy-secret")
        app, calls = create_app(key_store, static_key=get_static_api_key())
        client = client_factory(app)

        ok = await client.get("/orders", headers={"X-API-Key": "legacy-secret"})
        bad = await client.get("/orders", headers={"X-API-Key": "not-it"})
        assert ok.status_code == 200 and ok.json()["source"] == "static"
        assert bad.status_code == 403
        assert calls == ["static"]
