# remediation_agent/api/v1/endpoints/remediation.py
import logging
import time
from functools import lru_cache

from fastapi import APIRouter, Depends

from remediation_agent.core.config import settings
from remediation_agent.models.remediation import RemediateRequest, RemediateResponse
from remediation_agent.services.remediation_service import RemediationService, build_remediation_service

logger = logging.getLogger(__name__)
router = APIRouter()


@lru_cache()
def get_remediation_service() -> RemediationService:
    """Builds the engine once per process; tests override this dependency."""
    return build_remediation_service(settings)


@router.post(
    "/remediate",
    response_model=RemediateResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    summary="Investigate and Remediate a Kubernetes Issue",
    description="""
Starts an AI-driven investigation of a reported issue, resumes a stored session, executes an
approved remediation plan (`executeChoice`), or validates commands an operator ran themselves
(`executedCommands`). Investigation only ever runs read-only kubectl operations; mutating commands
come from the remediation plan and run only on approval or when the automatic-mode gate passes.
    """,
)
def remediate(
    request: RemediateRequest,
    service: RemediationService = Depends(get_remediation_service),
) -> RemediateResponse:
    # Plain def: the engine blocks on subprocess and HTTP calls, so FastAPI runs it in a worker thread
    start_time_ns = time.perf_counter_ns()
    logger.info(f"Received remediation request (sessionId={request.session_id}, mode={request.mode}).")

    response = service.remediate(request)

    duration_ms = (time.perf_counter_ns() - start_time_ns) / 1_000_000
    logger.info(
        f"Processed session {response.session_id} in {duration_ms:.2f} ms. "
        f"Status={response.status}, Iterations={response.investigation.iterations}, Executed={response.executed}"
    )
    return response
