"""
Backend API Tests for the Waqf Hooks service
Testing: Auth, document writes through hooks, error mapping and tranche routes
"""
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from config import Settings
from conftest import ADMIN, CREATOR, make_revolving_waqf, make_waqf
from document_store import InMemoryDocumentStore
from server import create_app


def auth_headers(principal: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(principal)}"}


@pytest.fixture
def client():
    return TestClient(create_app(store=InMemoryDocumentStore(), settings=Settings()))


def put_waqf(client, waqf, principal=CREATOR, version=None):
    body = {"data": waqf.model_dump(mode="json")}
    if version is not None:
        body["version"] = version
    return client.put(f"/api/docs/waqfs/{waqf.id}", json=body, headers=auth_headers(principal))


class TestHealthAndAuth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_token_rejected(self, client):
        response = client.get("/api/docs/waqfs/waqf_1")
        assert response.status_code in (401, 403)

    def test_garbage_token_rejected(self, client):
        response = client.get("/api/docs/waqfs/waqf_1", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestDocumentRoutes:
    """Writes go through the dispatcher; rejections map to HTTP statuses"""

    def test_create_returns_initialised_waqf(self, client):
        response = put_waqf(client, make_revolving_waqf())
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["version"] == 1
        assert body["owner"] == CREATOR
        assert body["data"]["financial"]["current_balance"] == 500
        assert len(body["data"]["revolving_details"]["contribution_tranches"]) == 1

        fetched = client.get("/api/docs/waqfs/waqf_1", headers=auth_headers(ADMIN))
        assert fetched.status_code == 200
        assert fetched.json()["data"]["name"] == "Education Fund"

    def test_malformed_payload_is_422(self, client):
        response = client.put(
            "/api/docs/waqfs/waqf_1", json={"data": {"name": "Only a name"}}, headers=auth_headers(CREATOR)
        )
        assert response.status_code == 422
        assert response.json()["detail"].startswith("Invalid waqf data structure")

    def test_structural_violation_is_422(self, client):
        response = put_waqf(client, make_waqf(name="X"))
        assert response.status_code == 422
        assert "Waqf validation failed" in response.json()["detail"]

    def test_below_minimum_capital_is_409(self, client):
        response = put_waqf(client, make_waqf(waqf_asset=10))
        assert response.status_code == 409
        assert "Minimum initial capital required" in response.json()["detail"]

    def test_immutable_field_is_403(self, client):
        assert put_waqf(client, make_waqf()).status_code == 200
        response = put_waqf(client, make_waqf(waqf_asset=9999))
        assert response.status_code == 403
        assert response.json()["detail"].startswith("FORBIDDEN")

    def test_stale_version_is_409(self, client):
        created = put_waqf(client, make_waqf())
        assert created.status_code == 200
        data = created.json()["data"]
        data["name"] = "Education Fund Two"

        response = client.put(
            "/api/docs/waqfs/waqf_1", json={"data": data, "version": 5}, headers=auth_headers(CREATOR)
        )
        assert response.status_code == 409

        response = client.put(
            "/api/docs/waqfs/waqf_1", json={"data": data, "version": 1}, headers=auth_headers(CREATOR)
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2

    def test_missing_document_is_404(self, client):
        response = client.get("/api/docs/waqfs/nowhere", headers=auth_headers(ADMIN))
        assert response.status_code == 404

    def test_unknown_collection_is_404(self, client):
        response = client.get("/api/docs/users/u1", headers=auth_headers(ADMIN))
        assert response.status_code == 404

    def test_deleting_active_waqf_is_409(self, client):
        assert put_waqf(client, make_waqf()).status_code == 200
        response = client.delete("/api/docs/waqfs/waqf_1", headers=auth_headers(ADMIN))
        assert response.status_code == 409
        assert response.json()["detail"] == "Cannot delete active waqf - change status first"

    def test_audit_logs_route(self, client):
        assert put_waqf(client, make_waqf()).status_code == 200
        response = client.get("/api/waqfs/waqf_1/audit-logs", headers=auth_headers(ADMIN))
        assert response.status_code == 200
        assert [entry["action"] for entry in response.json()] == ["create"]


class TestTrancheRoutes:

    @pytest.fixture
    def tranche_id(self, client):
        response = put_waqf(client, make_revolving_waqf())
        assert response.status_code == 200
        return response.json()["data"]["revolving_details"]["contribution_tranches"][0]["id"]

    def test_summary(self, client, tranche_id):
        response = client.get("/api/waqfs/waqf_1/tranches/summary", headers=auth_headers(CREATOR))
        assert response.status_code == 200
        body = response.json()
        assert body["locked_balance"] == 500
        assert body["locked_tranches"] == [tranche_id]

    def test_summary_for_missing_waqf_is_404(self, client):
        response = client.get("/api/waqfs/nowhere/tranches/summary", headers=auth_headers(CREATOR))
        assert response.status_code == 404

    def test_rollover_before_maturity_is_409(self, client, tranche_id):
        response = client.post(
            f"/api/waqfs/waqf_1/tranches/{tranche_id}/rollover",
            json={"rollover_months": 6},
            headers=auth_headers(CREATOR),
        )
        assert response.status_code == 409
        assert "has not matured yet" in response.json()["detail"]

    def test_stranger_conversion_is_403(self, client, tranche_id):
        response = client.post(
            f"/api/waqfs/waqf_1/tranches/{tranche_id}/convert",
            json={"target_type": "permanent"},
            headers=auth_headers("stranger"),
        )
        assert response.status_code == 403

    def test_expiration_preference(self, client, tranche_id):
        response = client.put(
            f"/api/waqfs/waqf_1/tranches/{tranche_id}/expiration-preference",
            json={"action": "rollover", "rollover_months": 12},
            headers=auth_headers(CREATOR),
        )
        assert response.status_code == 200, response.text
        assert response.json()["expiration_preference"]["rollover_months"] == 12

    def test_invalid_expiration_preference_is_422(self, client, tranche_id):
        response = client.put(
            f"/api/waqfs/waqf_1/tranches/{tranche_id}/expiration-preference",
            json={"action": "rollover"},
            headers=auth_headers(CREATOR),
        )
        assert response.status_code == 422

    def test_process_matured_with_nothing_due(self, client, tranche_id):
        response = client.post("/api/waqfs/waqf_1/tranches/process-matured", headers=auth_headers(CREATOR))
        assert response.status_code == 200
        assert response.json() == {"waqf_id": "waqf_1", "rolled_over": []}
