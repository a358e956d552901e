"""HTTP-level tests for the REST API.

Runs the FastAPI app in-process over httpx's ASGI transport, with the
database session and notifier dependencies pointed at the test fixtures.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from marketplace_deals.api.deps import get_app_settings, get_db_session, get_notifier
from marketplace_deals.config import Settings
from marketplace_deals.main import create_app
from marketplace_deals.services import EscrowSynchronizer


def _headers(actor) -> dict[str, str]:
    return {"X-Actor-Id": str(actor.user_id), "X-Actor-Role": actor.role.value}


@pytest.fixture
def app(session, notifier):
    app = create_app()

    async def _session_override():
        yield session

    app.dependency_overrides[get_db_session] = _session_override
    app.dependency_overrides[get_notifier] = lambda: notifier
    return app


@pytest_asyncio.fixture
async def api(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


async def _post_project(api, client) -> str:
    response = await api.post(
        "/api/v1/projects", json={"title": "Repaint two bedrooms"}, headers=_headers(client)
    )
    assert response.status_code == 201
    return response.json()["id"]


async def _post_quote(api, provider, project_id: str, amount: str, **extra) -> str:
    response = await api.post(
        f"/api/v1/projects/{project_id}/quotes",
        json={"amount": amount, **extra},
        headers=_headers(provider),
    )
    assert response.status_code == 201
    return response.json()["quote"]["id"]


class TestProjects:
    @pytest.mark.asyncio
    async def test_create_and_read(self, api, client) -> None:
        project_id = await _post_project(api, client)

        response = await api.get(f"/api/v1/projects/{project_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "open"
        assert body["client_id"] == str(client.user_id)
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_unknown_project_is_404(self, api) -> None:
        response = await api.get(f"/api/v1/projects/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"] == "PROJECT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_actor_headers_is_422(self, api) -> None:
        response = await api.post("/api/v1/projects", json={"title": "Repaint two bedrooms"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_role_is_403(self, api) -> None:
        response = await api.post(
            "/api/v1/projects",
            json={"title": "Repaint two bedrooms"},
            headers={"X-Actor-Id": str(uuid.uuid4()), "X-Actor-Role": "admin"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_audit_trail(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)
        await _post_quote(api, provider_a, project_id, "1000")

        response = await api.get(f"/api/v1/projects/{project_id}/events")

        assert response.status_code == 200
        events = response.json()
        assert [e["event_type"] for e in events][0] == "PROJECT_CREATED"
        submitted = next(e for e in events if e["event_type"] == "QUOTE_SUBMITTED")
        assert submitted["metadata"]["amount"] == "1000.00"


class TestQuotes:
    @pytest.mark.asyncio
    async def test_quote_needs_a_price(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)
        response = await api.post(
            f"/api/v1/projects/{project_id}/quotes",
            json={"message": "Call me"},
            headers=_headers(provider_a),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_accept_cascades_and_opens_escrow(
        self, api, client, provider_a, provider_b
    ) -> None:
        project_id = await _post_project(api, client)
        quote_a = await _post_quote(api, provider_a, project_id, "100000")
        quote_b = await _post_quote(api, provider_b, project_id, "120000")

        response = await api.post(f"/api/v1/quotes/{quote_b}/accept", headers=_headers(client))

        assert response.status_code == 200
        body = response.json()
        assert body["quote"]["status"] == "accepted"
        assert body["project"]["status"] == "quote_accepted"
        assert [q["id"] for q in body["related_quotes"]] == [quote_a]
        assert body["related_quotes"][0]["status"] == "rejected"
        assert Decimal(body["escrow"]["total_amount"]) == Decimal("120000")
        assert body["warning"] is None

        escrow = await api.get(f"/api/v1/projects/{project_id}/escrow")
        assert Decimal(escrow.json()["total_amount"]) == Decimal("120000")

    @pytest.mark.asyncio
    async def test_second_accept_is_409(self, api, client, provider_a, provider_b) -> None:
        project_id = await _post_project(api, client)
        quote_a = await _post_quote(api, provider_a, project_id, "100000")
        quote_b = await _post_quote(api, provider_b, project_id, "120000")
        await api.post(f"/api/v1/quotes/{quote_b}/accept", headers=_headers(client))

        response = await api.post(f"/api/v1/quotes/{quote_a}/accept", headers=_headers(client))

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_provider_cannot_accept(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)
        quote_id = await _post_quote(api, provider_a, project_id, "100000")

        response = await api.post(f"/api/v1/quotes/{quote_id}/accept", headers=_headers(provider_a))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_escrow_failure_is_a_warning(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)
        quote_id = await _post_quote(api, provider_a, project_id, "100000")

        with patch.object(EscrowSynchronizer, "synchronize", new_callable=AsyncMock) as mock_sync:
            mock_sync.side_effect = RuntimeError("escrow store unavailable")
            response = await api.post(f"/api/v1/quotes/{quote_id}/accept", headers=_headers(client))

        assert response.status_code == 200
        body = response.json()
        assert body["quote"]["status"] == "accepted"
        assert body["escrow"] is None
        assert body["warning"]["error"] == "PARTIAL_SYNCHRONIZATION_FAILURE"
        assert body["warning"]["step"] == "accept_quote"

    @pytest.mark.asyncio
    async def test_duplicate_idempotency_key_is_409(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)

        with (
            patch("marketplace_deals.api.routes.quotes.is_redis_ready", return_value=True),
            patch(
                "marketplace_deals.api.routes.quotes.claim_idempotency", new_callable=AsyncMock
            ) as mock_claim,
        ):
            mock_claim.return_value = False
            response = await api.post(
                f"/api/v1/projects/{project_id}/quotes",
                json={"amount": "100000", "idempotency_key": "quote-1"},
                headers=_headers(provider_a),
            )

        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_OPERATION"


class TestRevisions:
    @pytest.mark.asyncio
    async def test_accepted_revision_reprices_quote_and_escrow(
        self, api, client, provider_a
    ) -> None:
        project_id = await _post_project(api, client)
        quote_id = await _post_quote(api, provider_a, project_id, "160000")

        requested = await api.post(
            f"/api/v1/quotes/{quote_id}/revisions",
            json={"suggested_price": "150000", "additional_fees": "5000"},
            headers=_headers(client),
        )
        assert requested.status_code == 201
        revision_id = requested.json()["revision"]["id"]

        response = await api.post(
            f"/api/v1/revisions/{revision_id}/accept", headers=_headers(provider_a)
        )

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["quote"]["amount"]) == Decimal("155000")
        assert Decimal(body["escrow"]["total_amount"]) == Decimal("155000")
        assert body["revision"]["status"] == "accepted"
        assert body["project"]["status"] == "quote_accepted"

        again = await api.post(f"/api/v1/revisions/{revision_id}/reject", headers=_headers(provider_a))
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_counter_offer(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)
        quote_id = await _post_quote(api, provider_a, project_id, "100000")
        requested = await api.post(
            f"/api/v1/quotes/{quote_id}/revisions",
            json={"suggested_price": "90000"},
            headers=_headers(client),
        )
        revision_id = requested.json()["revision"]["id"]

        response = await api.post(
            f"/api/v1/revisions/{revision_id}/modify",
            json={"amount": "95000", "provider_response": "Meet in the middle"},
            headers=_headers(provider_a),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["quote"]["id"] != quote_id
        assert Decimal(body["quote"]["amount"]) == Decimal("95000")
        assert body["revision"]["modified_quote_id"] == body["quote"]["id"]
        original = next(q for q in body["related_quotes"] if q["id"] == quote_id)
        assert original["status"] == "viewed"

        revisions = await api.get(f"/api/v1/quotes/{quote_id}/revisions")
        assert [r["status"] for r in revisions.json()] == ["modified"]

    @pytest.mark.asyncio
    async def test_disputed_escrow_blocks_repricing(self, api, client, provider_a) -> None:
        project_id = await _post_project(api, client)
        quote_id = await _post_quote(api, provider_a, project_id, "100000")
        await api.post(f"/api/v1/quotes/{quote_id}/accept", headers=_headers(client))
        requested = await api.post(
            f"/api/v1/quotes/{quote_id}/revisions",
            json={"suggested_price": "80000"},
            headers=_headers(client),
        )
        revision_id = requested.json()["revision"]["id"]
        disputed = await api.post(
            f"/api/v1/projects/{project_id}/dispute",
            json={"reason": "No show"},
            headers=_headers(client),
        )
        assert disputed.status_code == 200

        response = await api.post(
            f"/api/v1/revisions/{revision_id}/accept", headers=_headers(provider_a)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ESCROW_INELIGIBLE_FOR_UPDATE"


class TestHealth:
    @pytest.mark.asyncio
    async def test_redis_outage_only_degrades(self, api) -> None:
        with (
            patch(
                "marketplace_deals.api.routes.health._probe_database",
                new_callable=AsyncMock,
                return_value="healthy",
            ),
            patch(
                "marketplace_deals.api.routes.health._probe_redis",
                new_callable=AsyncMock,
                return_value="unhealthy: connection refused",
            ),
        ):
            response = await api.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["notifications"] == "log"

    @pytest.mark.asyncio
    async def test_database_outage_is_503(self, api) -> None:
        with (
            patch(
                "marketplace_deals.api.routes.health._probe_database",
                new_callable=AsyncMock,
                return_value="unhealthy: timeout",
            ),
            patch(
                "marketplace_deals.api.routes.health._probe_redis",
                new_callable=AsyncMock,
                return_value="healthy",
            ),
        ):
            response = await api.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unavailable"


class TestActorHeaders:
    @pytest.mark.asyncio
    async def test_system_role_reaches_support_routes(self, api, client, system) -> None:
        project_id = await _post_project(api, client)

        response = await api.post(
            f"/api/v1/projects/{project_id}/escrow/resync", headers=_headers(system)
        )

        # Accepted as system; refused only because nothing is agreed yet.
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_system_role_can_be_turned_off(self, app, api, client, system) -> None:
        project_id = await _post_project(api, client)
        app.dependency_overrides[get_app_settings] = lambda: Settings(
            allow_system_role_header=False
        )

        response = await api.post(
            f"/api/v1/projects/{project_id}/escrow/resync", headers=_headers(system)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"
