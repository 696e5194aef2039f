"""
Shared pytest fixtures for the remediation engine.

The reasoning service and kubectl are replaced with scripted fakes so the
investigation loop, planner and executor run without a cluster or API key.
"""

import json
from unittest.mock import MagicMock

import pytest
from remediation_agent.core.exceptions import KubectlCommandError
from remediation_agent.services.cluster_inspector import ClusterInspector
from remediation_agent.services.investigation_service import InvestigationService
from remediation_agent.services.remediation_service import RemediationService
from remediation_agent.services.session_store import FileSessionStore


class ScriptedReasoningClient:
    """Returns queued replies in order; an exception instance in the queue is raised instead."""

    def __init__(self, replies=None):
        self.replies = list(replies or [])
        self.prompts = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def send(self, prompt):
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError("Reasoning client called more times than scripted")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


# ===== Reply builders =====


def investigation_reply(analysis="Looking into it", requests=None, complete=False, confidence=0.5):
    return json.dumps(
        {
            "analysis": analysis,
            "dataRequests": requests or [],
            "investigationComplete": complete,
            "confidence": confidence,
            "reasoning": "scripted",
        }
    )


def data_request(op_type, resource, namespace="default", rationale="check state"):
    return {"type": op_type, "resource": resource, "namespace": namespace, "rationale": rationale}


PVC_COMMAND = "kubectl apply -n default -f pvc-data.yaml"


def plan_reply(
    root_cause="PersistentVolumeClaim data is missing",
    confidence=0.95,
    actions=None,
    risk="low",
    issue_status="active",
):
    if actions is None:
        actions = [
            {
                "description": "Create the missing PVC",
                "command": PVC_COMMAND,
                "risk": "low",
                "rationale": "The pod references a claim that does not exist",
            }
        ]
    return json.dumps(
        {
            "remediationPossible": True,
            "issueStatus": issue_status,
            "rootCause": root_cause,
            "confidence": confidence,
            "factors": ["Pod spec references claim 'data'"],
            "remediation": {"summary": "Recreate storage", "actions": actions, "risk": risk},
            "validationIntent": "Pod web-0 is Running and the PVC is Bound",
        }
    )


def resolved_reply(root_cause="PersistentVolumeClaim data is missing"):
    return plan_reply(root_cause=root_cause, actions=[], issue_status="resolved")


# ===== Fixtures =====


@pytest.fixture
def reasoning_client():
    return ScriptedReasoningClient()


@pytest.fixture
def k8s_service():
    """kubectl stand-in: read-only calls return canned output, mutating calls succeed."""
    service = MagicMock()
    service.kubectl_binary = "kubectl"
    service.kubectl_command.side_effect = lambda args: ["kubectl", *args]
    service.discover_api_resources.return_value = "core/v1: pods, persistentvolumeclaims, events"
    service.run_readonly.return_value = "status: Pending"
    service.run_mutating.return_value = "persistentvolumeclaim/data created"
    return service


@pytest.fixture
def store(tmp_path):
    return FileSessionStore(str(tmp_path / "sessions"))


@pytest.fixture
def investigation_service(reasoning_client, k8s_service, store):
    return InvestigationService(
        reasoning_client=reasoning_client,
        inspector=ClusterInspector(k8s_service, timeout=5),
        store=store,
        k8s_service=k8s_service,
    )


@pytest.fixture
def remediation_service(investigation_service, reasoning_client, store, k8s_service):
    return RemediationService(
        investigation_service=investigation_service,
        reasoning_client=reasoning_client,
        store=store,
        k8s_service=k8s_service,
        execution_timeout=5,
        default_max_risk_level="low",
        default_confidence_threshold=0.8,
    )


@pytest.fixture
def not_found_error():
    return KubectlCommandError(
        'Error from server (NotFound): persistentvolumeclaims "data" not found',
        command="kubectl get pvc/data -n default -o yaml",
        exit_code=1,
    )
