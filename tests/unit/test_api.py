"""
Tests for the HTTP surface.
"""

import json

import pytest
from conftest import investigation_reply, plan_reply, resolved_reply
from fastapi.testclient import TestClient
from remediation_agent.api.v1.endpoints.remediation import get_remediation_service
from remediation_agent.main import app
from remediation_agent.services.session_store import generate_session_id

URL = "/api/v1/remediation/remediate"


@pytest.fixture
def client(remediation_service):
    app.dependency_overrides[get_remediation_service] = lambda: remediation_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def queue_investigation(reasoning_client, plan=None):
    reasoning_client.queue(investigation_reply("PVC data is missing", complete=True, confidence=0.95),
                           plan or plan_reply())


class TestRemediateEndpoint:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "Kubernetes Remediation Agent" in response.json()["message"]

    def test_manual_request_returns_camel_case_plan(self, client, reasoning_client):
        queue_investigation(reasoning_client)

        response = client.post(URL, json={"issue": "pod stuck pending, PVC missing"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "awaiting_user_approval"
        assert body["sessionId"].startswith("rem_")
        assert body["executed"] is False
        assert body["analysis"]["rootCause"] == "PersistentVolumeClaim data is missing"
        assert [c["id"] for c in body["executionChoices"]] == [1, 2]
        assert "results" not in body

    def test_choice_one_then_repeat_is_rejected(self, client, reasoning_client):
        queue_investigation(reasoning_client)
        session_id = client.post(URL, json={"issue": "pod stuck pending"}).json()["sessionId"]
        reasoning_client.queue(investigation_reply("Bound", complete=True, confidence=0.9), resolved_reply())

        executed = client.post(URL, json={"sessionId": session_id, "executeChoice": 1})
        repeated = client.post(URL, json={"sessionId": session_id, "executeChoice": 1})

        assert executed.status_code == 200
        assert executed.json()["validation"]["issueStatus"] == "resolved"
        assert repeated.status_code == 400

    def test_missing_issue_is_unprocessable(self, client):
        response = client.post(URL, json={"mode": "manual"})

        assert response.status_code == 422

    def test_unknown_session_is_not_found(self, client):
        response = client.post(URL, json={"sessionId": generate_session_id()})

        assert response.status_code == 404

    def test_capability_gap(self, client, reasoning_client):
        queue_investigation(reasoning_client, plan=json.dumps(
            {"remediationPossible": False, "capabilityGap": "Requires a new storage backend"}))

        response = client.post(URL, json={"issue": "pvc cannot bind"})

        assert response.status_code == 422
        assert response.json()["detail"] == "Requires a new storage backend"
        assert response.json()["sessionId"].startswith("rem_")

    def test_planning_failure_is_bad_gateway(self, client, reasoning_client):
        queue_investigation(reasoning_client, plan="not json at all")

        response = client.post(URL, json={"issue": "pod crash looping"})

        assert response.status_code == 502
        assert "sessionId" in response.json()
