# remediation_agent/services/investigation_service.py
import logging
from typing import List, Optional

from kubernetes.client.exceptions import ApiException

from remediation_agent.core.constants import MAX_ITERATIONS
from remediation_agent.core.exceptions import RemediationError, TransientInfrastructureError, ValidationError
from remediation_agent.models.remediation import IssueContext
from remediation_agent.models.session import ClassifiedError, Iteration, Session
from remediation_agent.services.cluster_inspector import ClusterInspector
from remediation_agent.services.error_classifier import classify
from remediation_agent.services.kubernetes_service import KubernetesService
from remediation_agent.services.llm_service import ReasoningClient
from remediation_agent.services.prompts import build_investigation_prompt
from remediation_agent.services.response_parser import InconclusiveResponse, parse_investigation_response
from remediation_agent.services.session_store import SessionStore, generate_session_id

logger = logging.getLogger(__name__)


class InvestigationService:
    """
    Bounded investigation loop: reasoning call, read-only data gathering,
    persist, repeat until the reasoning service reports completion or the
    iteration cap is reached.
    """

    def __init__(self, reasoning_client: ReasoningClient, inspector: ClusterInspector,
                 store: SessionStore, k8s_service: Optional[KubernetesService] = None):
        self.reasoning_client = reasoning_client
        self.inspector = inspector
        self.store = store
        self.k8s_service = k8s_service

    def investigate(self, issue: Optional[str] = None, context: Optional[IssueContext] = None,
                    existing_session: Optional[Session] = None, mode: str = "manual",
                    purpose: str = "investigation", parent_session_id: Optional[str] = None,
                    executed_commands: Optional[List[str]] = None, policy: Optional[str] = None) -> Session:
        if existing_session is None:
            if not issue or not issue.strip():
                raise ValidationError("issue must not be empty")
            session = Session(
                session_id=generate_session_id(),
                issue=issue.strip(),
                context=context,
                mode=mode,
                purpose=purpose,
                parent_session_id=parent_session_id,
                executed_commands=executed_commands,
                policy=policy,
            )
            self.store.save(session)
            logger.info(f"Created {purpose} session {session.session_id} (mode={mode}).")
        else:
            session = existing_session
            if session.status != "investigating":
                raise ValidationError(
                    f"Session {session.session_id} is '{session.status}' and cannot continue investigating")
            logger.info(f"Resuming session {session.session_id} after {len(session.iterations)} iterations.")

        # --- Discovery runs once per call and is shared by every step ---
        api_resources = self._discover_api_resources()

        completed = False
        step = len(session.iterations) + 1 # Resumed sessions keep numbering
        while step <= MAX_ITERATIONS:
            logger.info(f"Session {session.session_id}: investigation step {step}/{MAX_ITERATIONS}")
            iteration = self._run_step(session, api_resources, step)
            session.add_iteration(iteration)
            self.store.save(session) # Persist after every step

            if iteration.complete:
                completed = True
                logger.info(f"Session {session.session_id}: investigation complete at step {step} "
                            f"(confidence={iteration.confidence}).")
                break
            step += 1

        if completed:
            session.final_analysis = session.iterations[-1].analysis or session.last_analysis()
        else:
            logger.warning(f"Session {session.session_id}: reached {MAX_ITERATIONS} iterations without completion; "
                           f"using last available analysis.")
            session.final_analysis = session.last_analysis()

        session.transition("analysis_complete")
        self.store.save(session)
        return session

    def _run_step(self, session: Session, api_resources: str, step: int) -> Iteration:
        prompt = build_investigation_prompt(session, api_resources, step)

        try:
            reply = self.reasoning_client.send(prompt)
        except RemediationError as e:
            if e.fatal:
                raise # e.g. misconfiguration, nothing to retry
            logger.warning(f"Session {session.session_id}: reasoning call failed at step {step}: {e.message}")
            return Iteration(
                step=step,
                inconclusive=True,
                gathered_data={"reasoning_service": classify(e.message)},
            )

        outcome = parse_investigation_response(reply)

        if isinstance(outcome, InconclusiveResponse):
            # Rejected requests stay in the history so the next prompt can explain why
            logger.warning(f"Session {session.session_id}: inconclusive step {step}: {outcome.reason}")
            gathered = dict(outcome.rejected)
            gathered["reasoning_response"] = ClassifiedError(
                category="validation",
                enhanced_message=(
                    f"The previous reply could not be used: {outcome.reason}. "
                    f"Respond with only the JSON object in the required format."
                ),
            )
            return Iteration(step=step, analysis=outcome.analysis, gathered_data=gathered, inconclusive=True)

        # --- Gather requested data (read-only) ---
        gathered = {}
        for request in outcome.data_requests:
            gathered[request.key] = self.inspector.inspect(request)

        failed = sum(1 for v in gathered.values() if isinstance(v, ClassifiedError))
        logger.info(f"Session {session.session_id}: step {step} gathered {len(gathered) - failed} result(s), "
                    f"{failed} failure(s).")

        return Iteration(
            step=step,
            analysis=outcome.analysis,
            data_requests=outcome.data_requests,
            gathered_data=gathered,
            complete=outcome.complete,
            confidence=outcome.confidence,
        )

    def _discover_api_resources(self) -> str:
        if self.k8s_service is None:
            return "(API discovery not configured)"
        try:
            return self.k8s_service.discover_api_resources()
        except (ApiException, TransientInfrastructureError) as e:
            classified = classify(e if isinstance(e, ApiException) else e.message)
        except Exception as e:
            logger.error(f"Unexpected error during API discovery: {e}", exc_info=True)
            classified = classify(e)
        logger.warning(f"API resource discovery failed ({classified.category}); continuing without it.")
        return f"(discovery failed - {classified.category})\n{classified.enhanced_message}"
