"""Tests for the HTTP surface built by create_app.

Uses a file-backed SQLite database so the TestClient event loop and the
setup code can open their own connections.
"""

import asyncio
import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from restgraph.iam.service import Authorizer
from restgraph.service.app import create_app
from restgraph.service.database import Base
from tests.support.database import seed
from tests.support.models import Model
from tests.support.resources import RESOURCES, build_graph


def make_client(tmp_path, authorizer=None) -> TestClient:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'restgraph.db'}", poolclass=NullPool)
    sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def setup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await seed(
            sessions,
            Model(id=1, name="a", number=150),
            Model(id=2, name="b", number=50),
            Model(id=3, name="c", number=200),
        )

    asyncio.run(setup())

    async def get_session():
        async with sessions() as session:
            yield session

    app = create_app(build_graph(), get_session=get_session, authorizer=authorizer, init_database=False)
    return TestClient(app)


@pytest.fixture
def client(tmp_path):
    with make_client(tmp_path) as client:
        yield client


# ============================================================================
# Health
# ============================================================================


class TestHealth:
    """Verify the health endpoint."""

    def test_health_lists_resources(self, client) -> None:
        """Health reports every registered resource."""
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert len(body["resources"]) == len(RESOURCES)

    def test_access_log_skips_health(self, client, caplog) -> None:
        """Requests are logged, health probes are not."""
        with caplog.at_level(logging.INFO, logger="restgraph.access"):
            client.get("/health")
            client.post("/api/ModelResource/search", json={})
        messages = [r.getMessage() for r in caplog.records if r.name == "restgraph.access"]
        assert messages and all("/health" not in m for m in messages)
        assert any(m.startswith("POST /api/ModelResource/search -> 200") for m in messages)


# ============================================================================
# Search
# ============================================================================


class TestSearchEndpoint:
    """Verify POST /{resource}/search."""

    def test_search(self, client) -> None:
        """A valid body returns rows and pagination metadata."""
        response = client.post("/api/ModelResource/search", json={
            "filters": [{"field": "number", "operator": ">", "value": 100}],
            "sorts": [{"field": "id", "direction": "desc"}],
            "limit": 10,
            "page": 1,
        })
        assert response.status_code == 200
        body = response.json()
        assert [row["id"] for row in body["data"]] == [3, 1]
        assert body["meta"] == {"total": 2, "limit": 10, "page": 1, "offset": 0, "has_next": False}

    def test_request_id_header(self, client, caplog) -> None:
        """X-Request-ID is carried into the operation log line."""
        with caplog.at_level(logging.INFO, logger="restgraph.runtime.operations"):
            response = client.post("/api/ModelResource/search", json={}, headers={"X-Request-ID": "abc"})
        assert response.status_code == 200
        messages = [r.getMessage() for r in caplog.records if r.name == "restgraph.runtime.operations"]
        assert messages == ["[abc] Search on ModelResource returned 3 of 3"]

    def test_validation_error(self, client) -> None:
        """Rule violations map to 422 with every message."""
        response = client.post("/api/ModelResource/search", json={"limit": 7})
        assert response.status_code == 422
        assert response.json()["detail"] == {"errors": ["limit: value 7 is not allowed"]}

    def test_invalid_json(self, client) -> None:
        """Bodies that are not JSON are rejected."""
        response = client.post(
            "/api/ModelResource/search",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 422

    def test_unknown_resource(self, client) -> None:
        """Unknown resources are 404."""
        assert client.post("/api/Nope/search", json={}).status_code == 404


# ============================================================================
# Mutate
# ============================================================================


class TestMutateEndpoint:
    """Verify POST /{resource}/mutate."""

    def test_create_with_children(self, client) -> None:
        """Nested creates return created keys and nested results."""
        response = client.post("/api/ModelResource/mutate", json={
            "mutate": [{
                "name": "A",
                "relations": {"hasManyRelation": {"operations": [{"number": 1}, {"number": 2}]}},
            }]
        })
        assert response.status_code == 200
        body = response.json()
        assert body["created"] == [4]
        assert len(body["results"][0]["relations"]["hasManyRelation"]) == 2

        search = client.post("/api/ModelResource/search", json={
            "filters": [{"field": "id", "value": 4}],
            "includes": [{"relation": "hasManyRelation"}],
        })
        assert [c["number"] for c in search.json()["data"][0]["hasManyRelation"]] == [2, 1]

    def test_read_only_relation(self, client) -> None:
        """Writes to through relations are 422."""
        response = client.post("/api/ModelResource/mutate", json={
            "name": "A",
            "relations": {"hasManyThroughRelation": {"operations": [{"number": 1}]}},
        })
        assert response.status_code == 422
        assert "hasManyThroughRelation" in response.json()["detail"]["error"]

    def test_update_missing_record(self, client) -> None:
        """Unknown keys are 404."""
        response = client.post("/api/ModelResource/mutate", json={"id": 99, "name": "z"})
        assert response.status_code == 404


# ============================================================================
# Delete / restore / force delete
# ============================================================================


class TestRecordEndpoints:
    """Verify the per-record endpoints."""

    def test_delete_then_restore(self, client) -> None:
        """A soft-deleted record disappears from search until restored."""
        response = client.delete("/api/ModelResource/1")
        assert response.status_code == 200
        assert response.json()["operation"] == "delete"

        ids = [row["id"] for row in client.post("/api/ModelResource/search", json={}).json()["data"]]
        assert ids == [2, 3]

        response = client.post("/api/ModelResource/1/restore")
        assert response.status_code == 200
        assert response.json()["attributes"]["name"] == "a"

        ids = [row["id"] for row in client.post("/api/ModelResource/search", json={}).json()["data"]]
        assert ids == [1, 2, 3]

    def test_force_delete(self, client) -> None:
        """Force delete removes the record."""
        assert client.delete("/api/ModelResource/2/force").status_code == 200
        ids = [row["id"] for row in client.post("/api/ModelResource/search", json={}).json()["data"]]
        assert ids == [1, 3]

    def test_malformed_key(self, client) -> None:
        """Keys that cannot be converted are 404."""
        assert client.delete("/api/ModelResource/abc").status_code == 404

    def test_restore_unsupported(self, client) -> None:
        """Restore on a resource without soft deletes is 422."""
        assert client.post("/api/BelongsToResource/1/restore").status_code == 422


class TestAuthorizationEndpoint:
    """Verify denied actions."""

    def test_forbidden(self, tmp_path) -> None:
        """Denied policies map to 403."""
        authorizer = Authorizer({"ModelResource": lambda action, record, principal: action != "delete"})
        with make_client(tmp_path, authorizer) as client:
            response = client.delete("/api/ModelResource/1")
            assert response.status_code == 403
            assert client.post("/api/ModelResource/search", json={}).status_code == 200
