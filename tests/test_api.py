"""
Tests for the HTTP API.
"""
import pytest
from fastapi.testclient import TestClient

from heirloom.main import create_app

API = "/api/v1"


def _release(client, version, application="svc", environment="prod", region="us-east", **extra):
    return client.post(
        f"{API}/release",
        json={
            "application": application,
            "environment": environment,
            "region": region,
            "version": version,
            **extra,
        },
    )


@pytest.fixture
def precise_client(settings):
    """Client whose rollback errors keep their own status codes."""
    app = create_app(settings.model_copy(update={"ROLLBACK_PRECISE_STATUS_CODES": True}))
    with TestClient(app) as client:
        yield client


class TestReleaseEndpoint:

    def test_release(self, client):
        response = _release(client, "v1")

        assert response.status_code == 200
        body = response.json()
        assert body["application"] == "svc"
        assert body["environment"] == "prod"
        assert body["region"] == "us-east"
        assert body["version"] == "v1"
        assert body["status"] == "active"
        assert body["deployed_by"] == "system"
        assert body["deployed_at"].endswith("Z")
        assert body["rollback_target_id"] is None

    def test_release_records_rollback_target(self, client):
        first = _release(client, "v1", deployed_by="alice").json()
        second = _release(client, "v2", deployed_by="alice").json()

        assert second["rollback_target_id"] == first["id"]
        assert second["deployed_by"] == "alice"

    def test_duplicate_version(self, client):
        _release(client, "v1")
        response = _release(client, "v1")

        assert response.status_code == 409
        assert response.json()["detail"] == (
            "Version already exists for this application, environment, and region"
        )

    def test_missing_fields(self, client):
        response = client.post(f"{API}/release", json={"application": "svc", "version": "v1"})

        assert response.status_code == 400
        assert "environment" in response.json()["detail"]
        assert "region" in response.json()["detail"]

    def test_malformed_body(self, client):
        response = client.post(
            f"{API}/release",
            content="not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid request payload"}

    def test_response_carries_request_id(self, client):
        response = _release(client, "v1")

        assert response.headers["X-Request-ID"]
        assert "X-Response-Time" in response.headers


class TestRollbackEndpoint:

    def test_rollback(self, client):
        first = _release(client, "v1").json()
        _release(client, "v2")

        response = client.post(
            f"{API}/rollback",
            json={"application": "svc", "environment": "prod", "region": "us-east", "deployed_by": "bob"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == first["id"]
        assert body["version"] == "v1"
        assert body["status"] == "active"
        assert body["deployed_by"] == "bob"

    def test_rollback_to_version(self, client):
        _release(client, "v1")
        _release(client, "v2")
        _release(client, "v3")

        response = client.post(
            f"{API}/rollback",
            json={"application": "svc", "environment": "prod", "region": "us-east", "version": "v1"},
        )

        assert response.status_code == 200
        assert response.json()["version"] == "v1"

    def test_missing_fields(self, client):
        response = client.post(f"{API}/rollback", json={"application": "svc"})
        assert response.status_code == 400

    def test_failures_are_server_errors_by_default(self, client):
        response = client.post(
            f"{API}/rollback",
            json={"application": "nope", "environment": "prod", "region": "us-east"},
        )

        assert response.status_code == 500
        assert response.json()["detail"] == "Application not found"

    def test_precise_status_codes(self, precise_client):
        response = precise_client.post(
            f"{API}/rollback",
            json={"application": "nope", "environment": "prod", "region": "us-east"},
        )
        assert response.status_code == 404

        _release(precise_client, "v1")
        response = precise_client.post(
            f"{API}/rollback",
            json={"application": "svc", "environment": "prod", "region": "us-east"},
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "no previous deployments found to rollback to"


class TestQueryEndpoints:

    def test_active_deployments(self, client):
        _release(client, "v1", deployed_by="alice")
        _release(client, "v1", region="eu-west")

        response = client.get(f"{API}/deployments", params={"application": "svc"})

        assert response.status_code == 200
        body = response.json()
        assert [d["regionCode"] for d in body] == ["eu-west", "us-east"]
        assert body[1] == {
            "applicationName": "svc",
            "environment": "prod",
            "regionCode": "us-east",
            "regionName": "us-east",
            "version": "v1",
            "deployedAt": body[1]["deployedAt"],
            "deployedBy": "alice",
        }

    def test_active_deployments_unknown_application(self, client):
        response = client.get(f"{API}/deployments", params={"application": "nope"})
        assert response.status_code == 404

    def test_history(self, client):
        _release(client, "v1")
        _release(client, "v2")

        response = client.get(
            f"{API}/history",
            params={"application": "svc", "environment": "prod", "region": "us-east"},
        )

        assert response.status_code == 200
        assert [d["version"] for d in response.json()] == ["v2", "v1"]

    def test_history_missing_parameters(self, client):
        response = client.get(f"{API}/history", params={"application": "svc"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required query parameters"

    def test_history_unknown_region(self, client):
        _release(client, "v1")

        response = client.get(
            f"{API}/history",
            params={"application": "svc", "environment": "prod", "region": "ap-south"},
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Region not found"

    def test_all_deployments(self, client):
        for version in ("v1", "v2", "v3"):
            _release(client, version)
        _release(client, "1.0.0", application="api")

        response = client.get(f"{API}/all-deployments", params={"page": 1, "pageSize": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["pagination"] == {"page": 1, "pageSize": 2, "totalCount": 3, "totalPages": 2}
        assert [(d["applicationName"], d["version"]) for d in body["deployments"]] == [
            ("api", "1.0.0"),
            ("svc", "v3"),
        ]
        assert set(body["deployments"][0]) == {
            "applicationName", "environment", "region", "version", "timestamp", "status", "deployedBy",
        }

    def test_all_deployments_with_limit(self, client):
        for version in ("v1", "v2", "v3"):
            _release(client, version)

        response = client.get(f"{API}/all-deployments", params={"limit": 10, "pageSize": 2, "page": 2})

        body = response.json()
        assert body["pagination"]["totalCount"] == 3
        assert [d["version"] for d in body["deployments"]] == ["v1"]

    def test_all_deployments_defaults(self, client):
        response = client.get(f"{API}/all-deployments", params={"page": 0})

        assert response.status_code == 200
        assert response.json() == {
            "deployments": [],
            "pagination": {"page": 1, "pageSize": 10, "totalCount": 0, "totalPages": 0},
        }


class TestHierarchyEndpoints:

    def test_drill_down(self, client):
        _release(client, "v1")
        _release(client, "v2")
        _release(client, "v1", environment="staging")

        applications = client.get(f"{API}/applications").json()
        assert [a["name"] for a in applications] == ["svc"]
        app_id = applications[0]["id"]

        regions = client.get(f"{API}/applications/{app_id}/regions").json()
        assert [(r["code"], r["name"]) for r in regions] == [("us-east", "us-east")]
        region_id = regions[0]["id"]

        environments = client.get(f"{API}/applications/{app_id}/regions/{region_id}/environments").json()
        assert [e["name"] for e in environments] == ["prod", "staging"]
        env_id = environments[0]["id"]

        versions = client.get(
            f"{API}/applications/{app_id}/environments/{env_id}/regions/{region_id}/versions"
        ).json()
        assert [(v["version"], v["status"]) for v in versions] == [("v2", "active"), ("v1", "inactive")]

    def test_unknown_application(self, client):
        response = client.get(f"{API}/applications/9999/regions")

        assert response.status_code == 404
        assert response.json()["detail"] == "Application not found"

    def test_non_integer_id(self, client):
        response = client.get(f"{API}/applications/abc/regions")
        assert response.status_code == 400


class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "running"

    def test_event_history(self, client):
        _release(client, "v1")

        response = client.get(f"{API}/events/history")

        assert response.status_code == 200
        types = [e["type"] for e in response.json()["events"]]
        assert types[0] == "deployment_released"
        assert "system_info" in types

    def test_unhandled_errors(self, settings):
        app = create_app(settings)

        @app.get("/explode")
        async def explode():
            raise RuntimeError("disk on fire")

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/explode")
            events = client.get(f"{API}/events/history").json()["events"]

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        assert events[0]["type"] == "system_error"
        assert events[0]["data"]["error"] == "disk on fire"
