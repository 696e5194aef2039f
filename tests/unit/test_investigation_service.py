"""
Tests for the bounded investigation loop.
"""

import os

import pytest
from conftest import data_request, investigation_reply
from remediation_agent.core.constants import MAX_ITERATIONS, NOT_FOUND_SUGGESTION, WRAP_UP_MESSAGE
from remediation_agent.core.exceptions import (
    AIServiceError,
    SessionStorageError,
    TransientInfrastructureError,
    ValidationError,
)
from remediation_agent.models.session import ClassifiedError


class TestInvestigationLoop:
    """Test loop progression and termination"""

    def test_completes_when_reasoning_reports_done(self, investigation_service, reasoning_client, k8s_service, store):
        reasoning_client.queue(
            investigation_reply("Pod pending", [data_request("describe", "pod/web-0")]),
            investigation_reply("PVC data is missing", complete=True, confidence=0.9),
        )

        session = investigation_service.investigate(issue="pod stuck pending")

        assert session.status == "analysis_complete"
        assert len(session.iterations) == 2
        assert session.final_analysis == "PVC data is missing"
        assert session.iterations[0].gathered_data == {"describe_pod/web-0": "status: Pending"}
        assert store.load(session.session_id).status == "analysis_complete"

    def test_empty_issue_is_rejected(self, investigation_service):
        with pytest.raises(ValidationError):
            investigation_service.investigate(issue="   ")

    def test_caps_at_max_iterations(self, investigation_service, reasoning_client):
        reasoning_client.queue(*[investigation_reply(f"Still looking ({i})") for i in range(MAX_ITERATIONS)])

        session = investigation_service.investigate(issue="intermittent 503s")

        assert len(session.iterations) == MAX_ITERATIONS
        assert session.status == "analysis_complete"
        assert session.final_analysis == f"Still looking ({MAX_ITERATIONS - 1})"
        assert WRAP_UP_MESSAGE in reasoning_client.prompts[-1]
        assert WRAP_UP_MESSAGE not in reasoning_client.prompts[-2]

    def test_session_persisted_after_every_step(self, investigation_service, reasoning_client, store):
        saved_steps = []
        original_save = store.save

        def recording_save(session):
            saved_steps.append(len(session.iterations))
            original_save(session)

        store.save = recording_save
        reasoning_client.queue(
            investigation_reply("step 1"),
            investigation_reply("step 2"),
            investigation_reply("done", complete=True, confidence=0.8),
        )

        investigation_service.investigate(issue="crash loop")

        # creation, one save per step, final status save
        assert saved_steps == [0, 1, 2, 3, 3]

    def test_storage_failure_aborts_investigation(self, investigation_service, reasoning_client, store):
        def failing_save(session):
            raise SessionStorageError("disk full")

        store.save = failing_save

        with pytest.raises(SessionStorageError):
            investigation_service.investigate(issue="crash loop")


class TestMalformedReasoningOutput:
    """Non-JSON and invalid replies"""

    def test_non_json_reply_records_empty_step_and_continues(self, investigation_service, reasoning_client):
        reasoning_client.queue(
            "Sorry, I am not sure what you mean.",
            investigation_reply("PVC missing", complete=True, confidence=0.9),
        )

        session = investigation_service.investigate(issue="pod stuck pending")

        first = session.iterations[0]
        assert first.data_requests == []
        assert first.complete is False
        assert first.inconclusive is True
        assert session.iterations[1].complete is True
        assert session.status == "analysis_complete"

    def test_unsafe_request_is_recorded_and_not_executed(self, investigation_service, reasoning_client, k8s_service):
        reasoning_client.queue(
            investigation_reply("Restart it", [data_request("delete", "pod/web-0")]),
            investigation_reply("done", complete=True, confidence=0.9),
        )

        session = investigation_service.investigate(issue="pod crash")

        first = session.iterations[0]
        assert first.data_requests == []
        assert first.complete is False
        assert first.gathered_data["delete_pod/web-0"].category == "validation"
        k8s_service.run_readonly.assert_not_called()
        assert "delete_pod/web-0" in reasoning_client.prompts[1]

    def test_reasoning_failure_consumes_an_iteration(self, investigation_service, reasoning_client):
        reasoning_client.queue(
            AIServiceError("Reasoning service rate limit exceeded"),
            investigation_reply("done", complete=True, confidence=0.9),
        )

        session = investigation_service.investigate(issue="pod crash")

        assert len(session.iterations) == 2
        failed = session.iterations[0]
        assert failed.inconclusive is True
        assert isinstance(failed.gathered_data["reasoning_service"], ClassifiedError)


class TestErrorFeedback:
    """Classified inspection errors flow into the next prompt"""

    def test_not_found_suggestion_reaches_next_prompt(
        self, investigation_service, reasoning_client, k8s_service, not_found_error
    ):
        k8s_service.run_readonly.side_effect = not_found_error
        reasoning_client.queue(
            investigation_reply("Check the claim", [data_request("get", "pvc/data")]),
            investigation_reply("Claim does not exist", complete=True, confidence=0.9),
        )

        session = investigation_service.investigate(issue="pod stuck pending, PVC missing")

        error = session.iterations[0].gathered_data["get_pvc/data"]
        assert isinstance(error, ClassifiedError)
        assert error.category == "api-availability"
        assert NOT_FOUND_SUGGESTION in reasoning_client.prompts[1]
        assert "list available resources first" in reasoning_client.prompts[1]

    def test_discovery_failure_does_not_stop_investigation(self, investigation_service, reasoning_client, k8s_service):
        k8s_service.discover_api_resources.side_effect = TransientInfrastructureError("kubeconfig not loaded")
        reasoning_client.queue(investigation_reply("done", complete=True, confidence=0.9))

        session = investigation_service.investigate(issue="pod crash")

        assert session.status == "analysis_complete"
        assert "discovery failed" in reasoning_client.prompts[0]


class TestResume:
    """Resuming a stored session"""

    def test_resume_continues_from_next_step(self, investigation_service, reasoning_client, store):
        reasoning_client.queue(investigation_reply("step 1"))
        # Script runs dry after step 1; simulate an interrupted process
        with pytest.raises(AssertionError):
            investigation_service.investigate(issue="crash loop")

        session_id = os.listdir(store.session_dir)[0].rsplit(".json", 1)[0]
        stored = store.load(session_id)
        assert stored.status == "investigating"
        assert len(stored.iterations) == 1

        reasoning_client.queue(investigation_reply("done", complete=True, confidence=0.85))
        resumed = investigation_service.investigate(existing_session=stored)

        assert [i.step for i in resumed.iterations] == [1, 2]
        assert "Investigation step 2 of" in reasoning_client.prompts[-1]
        assert resumed.status == "analysis_complete"

    def test_completed_session_cannot_resume(self, investigation_service, reasoning_client):
        reasoning_client.queue(investigation_reply("done", complete=True, confidence=0.9))
        session = investigation_service.investigate(issue="crash loop")

        with pytest.raises(ValidationError):
            investigation_service.investigate(existing_session=session)
