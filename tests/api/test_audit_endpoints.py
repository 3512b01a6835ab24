"""Integration tests for the v1 API endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from compliance_engine.main import app
from compliance_engine.schemas.audit import NO_APPLICABLE_QUESTIONS


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def manufacturer(client: TestClient) -> None:
    response = client.put(
        "/v1/qualification",
        json={"economic_role": "manufacturer", "target_markets": ["eu"]},
    )
    assert response.status_code == 200


@pytest.fixture
def audit_id(client: TestClient, manufacturer: None) -> int:
    response = client.post("/v1/audits", json={"name": "MDR readiness", "referential_ids": ["mdr"]})
    assert response.status_code == 200
    return response.json()["audit_id"]


class TestRootAndHealth:
    def test_root(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Compliance Engine API"

    def test_health(self, client: TestClient):
        response = client.get("/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["degraded"] is False
        assert data["catalog"]["questions"] == 25

    def test_catalog(self, client: TestClient):
        data = client.get("/v1/catalog").json()
        assert [r["id"] for r in data["referentials"]] == ["mdr", "iso_13485", "fda_qmsr"]
        assert data["question_count"] == 25


class TestQualification:
    def test_empty_before_save(self, client: TestClient):
        response = client.get("/v1/qualification")
        assert response.status_code == 200
        assert response.json() is None

    def test_save_and_read(self, client: TestClient, manufacturer: None):
        data = client.get("/v1/qualification").json()
        assert data["economic_role"] == "manufacturer"
        assert data["target_markets"] == ["eu"]

    def test_invalid_role(self, client: TestClient):
        response = client.put("/v1/qualification", json={"economic_role": "wholesaler"})
        assert response.status_code == 422


class TestAuditCreation:
    """Test audit creation and question listing."""

    def test_requires_qualification(self, client: TestClient):
        response = client.post("/v1/audits", json={"name": "x", "referential_ids": ["mdr"]})
        assert response.status_code == 400

    def test_requires_referential(self, client: TestClient, manufacturer: None):
        response = client.post("/v1/audits", json={"name": "x", "referential_ids": []})
        assert response.status_code == 400

    def test_create(self, client: TestClient, manufacturer: None):
        response = client.post("/v1/audits", json={"name": "MDR", "referential_ids": ["mdr"]})
        data = response.json()
        assert data["status"] == "draft"
        assert data["question_count"] == 12

    def test_no_applicable_questions(self, client: TestClient):
        client.put("/v1/qualification", json={"economic_role": "distributor"})
        response = client.post(
            "/v1/audits",
            json={"name": "US", "referential_ids": ["fda_qmsr"], "process_ids": ["vigilance"]},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["question_count"] == 0
        assert data["message"] == NO_APPLICABLE_QUESTIONS

        questions = client.get(f"/v1/audits/{data['audit_id']}/questions").json()
        assert questions["empty"] is True
        assert questions["questions"] == []

    def test_questions(self, client: TestClient, audit_id: int):
        data = client.get(f"/v1/audits/{audit_id}/questions").json()
        keys = [q["key"] for q in data["questions"]]
        assert keys[0] == "mdr.gov.prrc"
        assert len(keys) == 12
        assert data["empty"] is False

    def test_missing_audit(self, client: TestClient):
        assert client.get("/v1/audits/999").status_code == 404
        assert client.get("/v1/audits/999/questions").status_code == 404

    def test_list(self, client: TestClient, audit_id: int):
        data = client.get("/v1/audits", params={"status": "draft"}).json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == audit_id
        assert data["has_next"] is False

    def test_delete(self, client: TestClient, audit_id: int):
        assert client.delete(f"/v1/audits/{audit_id}").status_code == 200
        assert client.delete(f"/v1/audits/{audit_id}").status_code == 404


class TestResponses:
    """Test response saves and audit lifecycle over HTTP."""

    def test_save_starts_audit(self, client: TestClient, audit_id: int):
        response = client.put(
            f"/v1/audits/{audit_id}/responses/mdr.gov.qms",
            json={"response_value": "non_compliant", "comment": "no manual"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "saved"

        audit = client.get(f"/v1/audits/{audit_id}").json()
        assert audit["status"] == "in_progress"
        assert audit["conformity_rate"] == 0

        responses = client.get(f"/v1/audits/{audit_id}/responses").json()
        assert [r["question_key"] for r in responses] == ["mdr.gov.qms"]

    def test_rejects_missing_value(self, client: TestClient, audit_id: int):
        response = client.put(
            f"/v1/audits/{audit_id}/responses/mdr.gov.qms", json={"comment": "text only"}
        )
        assert response.status_code == 400

    def test_rejects_inapplicable_key(self, client: TestClient, audit_id: int):
        response = client.put(
            f"/v1/audits/{audit_id}/responses/mdr.reg.importer_checks",
            json={"response_value": "compliant"},
        )
        assert response.status_code == 400

    def test_stale_write_superseded(self, client: TestClient, audit_id: int):
        url = f"/v1/audits/{audit_id}/responses/mdr.gov.qms"
        client.put(url, json={"response_value": "compliant", "updated_at": "2025-05-02T10:00:00Z"})
        response = client.put(
            url, json={"response_value": "partial", "updated_at": "2025-05-01T10:00:00Z"}
        )
        data = response.json()
        assert data["status"] == "superseded"
        assert data["response"]["response_value"] == "compliant"

    def test_lifecycle_locks_responses(self, client: TestClient, audit_id: int):
        url = f"/v1/audits/{audit_id}/responses/mdr.gov.qms"
        assert client.post(f"/v1/audits/{audit_id}/complete").status_code == 409

        client.put(url, json={"response_value": "compliant"})
        assert client.post(f"/v1/audits/{audit_id}/complete").json()["status"] == "completed"
        assert client.put(url, json={"response_value": "partial"}).status_code == 409

        assert client.post(f"/v1/audits/{audit_id}/close").json()["status"] == "closed"
        assert client.post(f"/v1/audits/{audit_id}/reopen").json()["status"] == "in_progress"
        assert client.put(url, json={"response_value": "partial"}).status_code == 200


class TestScoring:
    def _answer(self, client: TestClient, audit_id: int) -> None:
        for key, value in (
            ("mdr.gov.qms", "non_compliant"),
            ("mdr.gov.prrc", "compliant"),
            ("mdr.vig.fsca", "not_applicable"),
        ):
            client.put(f"/v1/audits/{audit_id}/responses/{key}", json={"response_value": value})

    def test_score(self, client: TestClient, audit_id: int):
        self._answer(client, audit_id)
        data = client.get(f"/v1/audits/{audit_id}/score").json()
        assert data["total"] == 12
        assert data["answered"] == 3
        assert data["conformity_rate"] == 50
        assert data["completion_rate"] == 25

    def test_score_by_dimension(self, client: TestClient, audit_id: int):
        self._answer(client, audit_id)
        data = client.get(f"/v1/audits/{audit_id}/score", params={"dimension": "process"}).json()
        assert data["governance"]["answered"] == 2
        assert data["design"]["answered"] == 0

    def test_top_risks(self, client: TestClient, audit_id: int):
        self._answer(client, audit_id)
        data = client.get(f"/v1/audits/{audit_id}/top-risks", params={"limit": 3}).json()
        assert [r["question_key"] for r in data] == ["mdr.gov.qms"]


class TestActions:
    def test_action_flow(self, client: TestClient, audit_id: int):
        created = client.post(
            f"/v1/audits/{audit_id}/actions",
            json={"question_key": "mdr.gov.qms", "title": "Write the QMS manual", "owner": "qa"},
        )
        assert created.status_code == 200
        action_id = created.json()["id"]

        updated = client.patch(f"/v1/actions/{action_id}", json={"status": "completed"})
        assert updated.status_code == 200
        assert updated.json()["completed_at"] is not None
        assert updated.json()["owner"] == "qa"

        listed = client.get(f"/v1/audits/{audit_id}/actions").json()
        assert [a["id"] for a in listed] == [action_id]

    def test_missing_action(self, client: TestClient):
        assert client.patch("/v1/actions/77", json={"status": "open"}).status_code == 404


class TestAnalytics:
    """Test dashboard aggregation endpoints."""

    @pytest.fixture
    def answered(self, client: TestClient, audit_id: int) -> int:
        for key, value in (
            ("mdr.gov.qms", "non_compliant"),
            ("mdr.pur.supplier_control", "non_compliant"),
            ("mdr.pms.complaints", "partial"),
        ):
            client.put(f"/v1/audits/{audit_id}/responses/{key}", json={"response_value": value})
        return audit_id

    def test_summary(self, client: TestClient, answered: int):
        data = client.post("/v1/analytics/summary", json={}).json()
        assert data["total_audits"] == 1
        assert data["total_findings"] == 3
        assert data["findings_by_type"]["nc_major"] == 1

    def test_summary_with_filter(self, client: TestClient, answered: int):
        data = client.post("/v1/analytics/summary", json={"market": "us"}).json()
        assert data["total_audits"] == 0

    def test_invalid_filter(self, client: TestClient):
        response = client.post("/v1/analytics/summary", json={"market": "mars"})
        assert response.status_code == 422

    def test_funnel(self, client: TestClient, answered: int):
        data = client.post("/v1/analytics/funnel", json={}).json()
        assert [s["count"] for s in data["stages"]] == [1, 3, 2, 0, 0]
        assert data["conversion_rates"]["nc_to_actions"] == 0

    def test_heatmap_and_radar(self, client: TestClient, answered: int):
        heatmap = client.post("/v1/analytics/heatmap", json={}).json()["heatmap"]
        assert heatmap[0]["process_id"] == "governance"
        assert heatmap[0]["critical"] == 1

        radar = client.post("/v1/analytics/radar", json={"process_id": "governance"}).json()
        assert [d["id"] for d in radar["dimensions"]] == ["governance"]
        assert radar["dimensions"][0]["score"] == 0

    def test_timeseries(self, client: TestClient, answered: int):
        data = client.post("/v1/analytics/timeseries", json={"granularity": "day"}).json()
        assert data["granularity"] == "day"
        assert len(data["timeseries"]) == 1
        assert data["timeseries"][0]["audit_count"] == 1

    def test_timeseries_window_too_long(self, client: TestClient, answered: int):
        response = client.post(
            "/v1/analytics/timeseries",
            json={
                "granularity": "day",
                "filter": {
                    "period": {"start": "0001-01-01T00:00:00Z", "end": "2026-01-01T00:00:00Z"}
                },
            },
        )
        assert response.status_code == 400

    def test_site_scores(self, client: TestClient, answered: int):
        data = client.post("/v1/analytics/sites", json={}).json()
        assert list(data["sites"]) == ["unassigned"]
        site = data["sites"]["unassigned"]
        assert site["total"] == 12
        assert site["answered"] == 3
        assert site["conformity_rate"] == 0

    def test_drilldown(self, client: TestClient, answered: int):
        data = client.post(
            "/v1/analytics/drilldown",
            json={
                "type": "findings",
                "pagination": {"page": 1, "page_size": 2},
                "sort": {"field": "bogus", "direction": "asc"},
            },
        ).json()
        assert data["total"] == 3
        assert len(data["items"]) == 2
        assert data["has_next"] is True
        assert data["sort"]["field"] == "date"

    def test_drilldown_default_page_size(self, client: TestClient, answered: int):
        data = client.post("/v1/analytics/drilldown", json={"type": "audits"}).json()
        assert data["page_size"] == 10
        assert data["total"] == 1
