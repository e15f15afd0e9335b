"""End-to-end tests for the HTTP API using FastAPI's TestClient."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from certchain.core.security import create_access_token
from certchain.main import create_app
from certchain.models.auth import Principal, Role

from conftest import CLIENT_URL, build_request


@pytest.fixture
def client(settings, store, colleges, ledger):
    app = create_app(settings, certificate_store=store, college_store=colleges, ledger_client=ledger)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(admin, settings):
    return {"Authorization": f"Bearer {create_access_token(admin, settings)}"}


def issue_payload(**overrides):
    return build_request(**overrides).model_dump(mode="json")


def issue(client, auth_headers, **overrides):
    response = client.post("/api/v1/certificates/issue", json=issue_payload(**overrides), headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    """Tests for root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "CertChain Backend"

    def test_health(self, client):
        data = client.get("/api/v1/health").json()
        assert data["status"] == "ok"
        assert data["database"] == "in-memory"
        assert data["blockchain"] == "mock"

    def test_ready_and_live(self, client):
        assert client.get("/api/v1/health/ready").json()["status"] == "ready"
        assert client.get("/api/v1/health/live").json()["status"] == "alive"

    def test_response_headers(self, client):
        response = client.get("/api/v1/health/live")
        assert len(response.headers["X-Request-ID"]) == 8
        assert "X-Process-Time" in response.headers
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestIssueEndpoints:
    """Tests for certificate issuance over HTTP."""

    def test_issue(self, client, auth_headers):
        data = issue(client, auth_headers)

        assert data["success"] is True
        assert data["message"] == "Certificate issued successfully"
        assert data["certificate"]["status"] == "MINTED"
        assert data["student_access"]["verification_link"] == f"{CLIENT_URL}/verify/{data['certificate']['id']}"
        assert data["student_access"]["api_code"].startswith(f"TEST01-{datetime.now(timezone.utc).year}-")

    def test_issue_with_ledger_down(self, client, auth_headers, ledger):
        ledger.fail_anchor = True
        data = issue(client, auth_headers)
        assert data["certificate"]["status"] == "PENDING"
        assert data["warning"]

    def test_missing_token(self, client):
        response = client.post("/api/v1/certificates/issue", json=issue_payload())
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.post(
            "/api/v1/certificates/issue", json=issue_payload(), headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    def test_non_admin_forbidden(self, client, settings, college):
        verifier = Principal(user_id="v1", role=Role.VERIFIER, college_id=college.id)
        headers = {"Authorization": f"Bearer {create_access_token(verifier, settings)}"}
        response = client.post("/api/v1/certificates/issue", json=issue_payload(), headers=headers)
        assert response.status_code == 403

    def test_admin_without_college(self, client, settings):
        orphan = Principal(user_id="a2", role=Role.ADMIN)
        headers = {"Authorization": f"Bearer {create_access_token(orphan, settings)}"}
        response = client.post("/api/v1/certificates/issue", json=issue_payload(), headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Not Associated"

    def test_validation_error(self, client, auth_headers):
        payload = issue_payload()
        payload["academic_data"]["overall_cgpa"] = 11
        response = client.post("/api/v1/certificates/issue", json=payload, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"
        assert response.json()["details"]

    def test_batch_issue(self, client, auth_headers):
        payload = {"certificates": [issue_payload(student_id="B1"), issue_payload(student_id="B2")]}
        response = client.post("/api/v1/certificates/batch/issue", json=payload, headers=auth_headers)

        assert response.status_code == 201
        assert response.json()["succeeded"] == 2

    def test_batch_issue_cap(self, client, auth_headers):
        payload = {"certificates": [issue_payload(student_id=f"B{i}") for i in range(51)]}
        response = client.post("/api/v1/certificates/batch/issue", json=payload, headers=auth_headers)
        assert response.status_code == 422


class TestCertificateReads:
    """Tests for listing and fetching certificates."""

    def test_get_by_id(self, client, auth_headers):
        issued = issue(client, auth_headers)
        response = client.get(f"/api/v1/certificates/{issued['certificate']['id']}")
        assert response.status_code == 200
        assert response.json()["api_code"] == issued["student_access"]["api_code"]

    def test_get_missing(self, client):
        response = client.get(f"/api/v1/certificates/{ObjectId()}")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found", "message": "Certificate not found"}

    def test_get_malformed_id(self, client):
        assert client.get("/api/v1/certificates/not-an-id").status_code == 422

    def test_api_code_counts_verifications(self, client, auth_headers):
        code = issue(client, auth_headers)["student_access"]["api_code"]
        client.get(f"/api/v1/certificates/api-code/{code}")
        response = client.get(f"/api/v1/certificates/api-code/{code.lower()}")

        assert response.status_code == 200
        assert response.json()["verification_count"] == 2

    def test_my_certificates(self, client, auth_headers):
        issue(client, auth_headers)
        response = client.get("/api/v1/certificates/my-certificates", headers=auth_headers)
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_college_pagination_and_filter(self, client, auth_headers, ledger):
        for index in range(3):
            issue(client, auth_headers, student_id=f"P{index}")
        ledger.fail_anchor = True
        issue(client, auth_headers, student_id="pending")

        page = client.get("/api/v1/certificates/college/all?page=2&limit=3", headers=auth_headers).json()
        assert page["pagination"] == {"current": 2, "pages": 2, "total": 4}
        assert len(page["certificates"]) == 1

        pending = client.get("/api/v1/certificates/college/all?status=PENDING", headers=auth_headers).json()
        assert pending["pagination"]["total"] == 1

    def test_college_limit_bound(self, client, auth_headers):
        assert client.get("/api/v1/certificates/college/all?limit=101", headers=auth_headers).status_code == 422


class TestRevokeEndpoint:
    """Tests for certificate revocation over HTTP."""

    def test_revoke_then_conflict(self, client, auth_headers):
        certificate_id = issue(client, auth_headers)["certificate"]["id"]
        url = f"/api/v1/certificates/{certificate_id}/revoke"

        first = client.put(url, json={"reason": "Degree rescinded"}, headers=auth_headers)
        assert first.status_code == 200
        assert first.json()["certificate"]["status"] == "REVOKED"

        second = client.put(url, json={"reason": "again"}, headers=auth_headers)
        assert second.status_code == 409
        assert second.json()["error"] == "Already Revoked"

    def test_revoke_requires_reason(self, client, auth_headers):
        certificate_id = issue(client, auth_headers)["certificate"]["id"]
        response = client.put(f"/api/v1/certificates/{certificate_id}/revoke", json={"reason": "  "}, headers=auth_headers)
        assert response.status_code == 422

    def test_revoke_missing(self, client, auth_headers):
        response = client.put(f"/api/v1/certificates/{ObjectId()}/revoke", json={"reason": "x"}, headers=auth_headers)
        assert response.status_code == 404


class TestVerifyEndpoints:
    """Tests for the public verification endpoints."""

    def test_verify_by_id(self, client, auth_headers):
        certificate_id = issue(client, auth_headers)["certificate"]["id"]
        data = client.get(f"/api/v1/verify/certificate/{certificate_id}").json()

        assert data["is_valid"] is True
        assert data["certificate"]["status"] == "VERIFIED"
        assert data["college"]["name"] == "Test University"
        assert data["verification_count"] == 1

    def test_verify_by_hash(self, client, auth_headers):
        certificate = issue(client, auth_headers)["certificate"]
        response = client.get(f"/api/v1/verify/hash/{certificate['blockchain']['certificate_hash'].upper()}")
        assert response.status_code == 200
        assert response.json()["certificate"]["id"] == certificate["id"]

    def test_verify_unknown_hash(self, client):
        response = client.get(f"/api/v1/verify/hash/{'f' * 64}")
        assert response.status_code == 404
        assert response.json()["message"] == "Certificate not found with this hash"

    def test_verify_qr(self, client, auth_headers):
        issued = issue(client, auth_headers)
        response = client.post("/api/v1/verify/qr-code", json={"qr_data": issued["student_access"]["verification_link"]})
        assert response.status_code == 200
        assert response.json()["certificate"]["id"] == issued["certificate"]["id"]

    def test_verify_qr_garbage(self, client):
        response = client.post("/api/v1/verify/qr-code", json={"qr_data": "hello world"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid Payload"

    def test_batch_verify(self, client, auth_headers):
        certificate_id = issue(client, auth_headers)["certificate"]["id"]
        missing = str(ObjectId())
        data = client.post("/api/v1/verify/batch", json={"certificates": [missing, certificate_id]}).json()

        assert [item["identifier"] for item in data["results"]] == [missing, certificate_id]
        assert data["verified_count"] == 1
        assert data["failed_count"] == 1

    def test_batch_verify_cap(self, client):
        response = client.post("/api/v1/verify/batch", json={"certificates": [str(ObjectId()) for _ in range(21)]})
        assert response.status_code == 422

    def test_statistics(self, client, auth_headers):
        certificate_id = issue(client, auth_headers)["certificate"]["id"]
        client.get(f"/api/v1/verify/certificate/{certificate_id}")
        data = client.get("/api/v1/verify/statistics").json()

        assert data["total_certificates"] == 1
        assert data["total_verifications"] == 1
        assert data["valid_certificates"] == 1

    def test_hash_qr(self, client):
        data = client.get(f"/api/v1/verify/qr/hash/{'a' * 64}").json()
        assert data["verification_url"] == f"{CLIENT_URL}/verify/hash/{'a' * 64}"
        assert data["data_url"].startswith("data:image/png;base64,")


class TestRateLimit:
    """Tests for the rate limiting middleware."""

    def test_limit_exceeded(self, settings, store, colleges, ledger):
        settings.rate_limit_calls = 3
        app = create_app(settings, certificate_store=store, college_store=colleges, ledger_client=ledger)
        with TestClient(app) as client:
            statuses = [client.get("/api/v1/health/live").status_code for _ in range(4)]
            blocked = client.get("/api/v1/health/live")

        assert statuses == [200, 200, 200, 429]
        assert blocked.json()["error"] == "Rate limit exceeded"
