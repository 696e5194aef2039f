# remediation_agent/services/remediation_service.py
import logging
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from remediation_agent.core.constants import RISK_ORDER
from remediation_agent.core.exceptions import (
    CapabilityGapError,
    KubectlCommandError,
    PlanningError,
    RemediationError,
    ValidationError,
)
from remediation_agent.models.remediation import (
    AnalysisSummary,
    ExecutionChoice,
    ExecutionResult,
    InvestigationSummary,
    RemediateRequest,
    RemediateResponse,
    RemediationAction,
    RemediationPlan,
    RemediationSummary,
    ValidationSummary,
)
from remediation_agent.models.session import Session
from remediation_agent.services.cluster_inspector import ClusterInspector
from remediation_agent.services.investigation_service import InvestigationService
from remediation_agent.services.kubernetes_service import KubernetesService
from remediation_agent.services.llm_service import ReasoningClient
from remediation_agent.services.prompts import build_final_analysis_prompt
from remediation_agent.services.response_parser import CapabilityGap, ResponseParseError, parse_remediation_plan
from remediation_agent.services.session_store import FileSessionStore, SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionDecision:
    should_execute: bool
    reason: str
    fallback_reason: Optional[str] = None


def risk_within(risk: str, max_risk_level: str) -> bool:
    return RISK_ORDER[risk] <= RISK_ORDER[max_risk_level]


def decide_automatic_execution(action: RemediationAction, confidence: float,
                               max_risk_level: str, confidence_threshold: float) -> ExecutionDecision:
    """Gate for automatic mode: inclusive on both thresholds."""
    if not action.command:
        return ExecutionDecision(
            False, "Highest-priority action has no command",
            "The highest-priority action has no executable command. Manual approval required.")
    if confidence < confidence_threshold:
        return ExecutionDecision(
            False, f"Confidence {confidence:.2f} below threshold {confidence_threshold:.2f}",
            f"Analysis confidence ({round(confidence * 100)}%) is below the required threshold "
            f"({round(confidence_threshold * 100)}%). Manual review recommended.")
    if not risk_within(action.risk, max_risk_level):
        return ExecutionDecision(
            False, f"Risk level {action.risk} exceeds maximum {max_risk_level}",
            f"Remediation risk level ({action.risk}) exceeds the maximum allowed level ({max_risk_level}). "
            f"Manual approval required.")
    return ExecutionDecision(
        True, f"Automatic execution approved - confidence {confidence:.2f} >= {confidence_threshold:.2f}, "
              f"risk {action.risk} <= {max_risk_level}")


def _same_root_cause(a: str, b: str) -> bool:
    return " ".join(a.lower().split()) == " ".join(b.lower().split())


class RemediationService:
    """
    Plans a remediation from a finished investigation, applies the manual or
    automatic execution policy, runs planner-authored commands, and validates
    the outcome with a follow-up investigation.
    """

    def __init__(self, investigation_service: InvestigationService, reasoning_client: ReasoningClient,
                 store: SessionStore, k8s_service: KubernetesService, execution_timeout: float = 60.0,
                 default_max_risk_level: str = "low", default_confidence_threshold: float = 0.8):
        self.investigation_service = investigation_service
        self.reasoning_client = reasoning_client
        self.store = store
        self.k8s_service = k8s_service
        self.execution_timeout = execution_timeout
        self.default_max_risk_level = default_max_risk_level
        self.default_confidence_threshold = default_confidence_threshold

    def remediate(self, request: Union[RemediateRequest, Dict[str, Any]]) -> RemediateResponse:
        if not isinstance(request, RemediateRequest):
            try:
                request = RemediateRequest.model_validate(request) # Dict callers (library use)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid input: {e}") from e

        # --- New issue: investigate from scratch ---
        if not request.session_id:
            logger.info(f"New remediation request (mode={request.mode}): {request.issue[:100]}")
            session = self.investigation_service.investigate(
                issue=request.issue, context=request.context, mode=request.mode, policy=request.policy)
            return self._plan_and_decide(session, request)

        # --- Existing session ---
        session = self.store.load(request.session_id)
        if request.executed_commands:
            logger.debug(f"Validation-only request for session {session.session_id}.")
            return self._validate_external_execution(session, request.executed_commands)
        if request.execute_choice == 1:
            logger.debug(f"Execution choice 1 for session {session.session_id}.")
            return self._execute_plan(session)

        logger.debug(f"Resume request for session {session.session_id} (status={session.status}).")
        if session.status == "investigating":
            session = self.investigation_service.investigate(existing_session=session)
            return self._plan_and_decide(session, request)
        if session.status == "analysis_complete" and session.plan is None:
            return self._plan_and_decide(session, request)
        return self._render_stored(session)

    def plan(self, session: Session) -> RemediationPlan:
        """Final-analysis step: turns the investigation into a validated plan stored on the session."""
        prompt = build_final_analysis_prompt(session, session.policy)
        try:
            reply = self.reasoning_client.send(prompt)
        except RemediationError as e:
            logger.error(f"Final analysis call failed for session {session.session_id}: {e.message}")
            raise PlanningError(f"Final analysis generation failed: {e.message}", session.session_id) from e

        try:
            outcome = parse_remediation_plan(reply)
        except ResponseParseError as e:
            logger.error(f"Unusable final analysis for session {session.session_id}: {e}")
            raise PlanningError(f"Failed to parse final analysis: {e}", session.session_id) from e

        if isinstance(outcome, CapabilityGap):
            logger.error(f"Capability gap for session {session.session_id}: {outcome.reason}")
            session.transition("failed")
            self.store.save(session)
            raise CapabilityGapError(outcome.reason, session.session_id)

        session.plan = outcome
        self.store.save(session)
        logger.info(f"Plan for session {session.session_id}: root cause '{outcome.root_cause}' "
                    f"(confidence={outcome.confidence:.2f}, {len(outcome.remediation.actions)} actions, "
                    f"risk={outcome.remediation.risk}).")
        return outcome

    def _plan_and_decide(self, session: Session, request: RemediateRequest) -> RemediateResponse:
        plan = self.plan(session)
        actions = plan.remediation.actions

        if plan.issue_status == "resolved" or not actions:
            logger.info(f"Session {session.session_id}: no remediation needed.")
            return self._render(session, "success")

        if session.mode == "manual":
            logger.info(f"Action Mode: 'manual'. Awaiting user approval for session {session.session_id}.")
            for action in actions:
                logger.info(f"-> Recommendation ({action.risk}): {action.description}")
                if action.command:
                    logger.info(f"   Suggested Command: {action.command}")
            return self._render(session, "awaiting_user_approval", execution_choices=self._choices(plan))

        # Request values win over the configured defaults
        max_risk = request.max_risk_level or self.default_max_risk_level
        threshold = (request.confidence_threshold if request.confidence_threshold is not None
                     else self.default_confidence_threshold)
        decision = decide_automatic_execution(actions[0], plan.confidence, max_risk, threshold)
        logger.warning(f"Action Mode: 'automatic'. Session {session.session_id}: {decision.reason}")

        if not decision.should_execute:
            return self._render(session, "awaiting_user_approval", execution_choices=self._choices(plan),
                                fallback_reason=decision.fallback_reason)

        results = self.execute_actions(session, [actions[0]]) # Only the first action runs automatically
        return self._after_execution(session, results)

    def _execute_plan(self, session: Session) -> RemediateResponse:
        if session.status != "analysis_complete" or session.plan is None:
            raise ValidationError(
                f"Session {session.session_id} has no pending remediation plan (status '{session.status}')")
        results = self.execute_actions(session, session.plan.remediation.actions)
        return self._after_execution(session, results)

    def execute_actions(self, session: Session, actions: List[RemediationAction]) -> List[ExecutionResult]:
        """Runs planner-authored commands in order, stopping at the first failure."""
        runnable = [a for a in actions if a.command]
        if not runnable:
            raise ValidationError(f"Session {session.session_id} has no executable remediation commands")

        results: List[ExecutionResult] = []
        for action in runnable:
            try:
                output = self.k8s_service.run_mutating(action.command, timeout=self.execution_timeout)
            except KubectlCommandError as e:
                logger.error(f"Remediation command failed for session {session.session_id}: {e.message}")
                results.append(ExecutionResult(action=action.description, command=action.command,
                                               success=False, error=e.message))
                break # Stop at first failure
            except subprocess.TimeoutExpired:
                logger.error(f"Remediation command timed out after {self.execution_timeout}s: {action.command}")
                results.append(ExecutionResult(action=action.description, command=action.command, success=False,
                                               error=f"Command timed out after {self.execution_timeout}s"))
                break
            except FileNotFoundError:
                logger.error(f"kubectl binary '{self.k8s_service.kubectl_binary}' not found in PATH.")
                results.append(ExecutionResult(action=action.description, command=action.command, success=False,
                                               error=f"kubectl binary '{self.k8s_service.kubectl_binary}' not found"))
                break
            logger.info(f"Successfully executed: {action.command}")
            results.append(ExecutionResult(action=action.description, command=action.command,
                                           success=True, output=output))

        session.results = (session.results or []) + results # Keep results of earlier runs
        session.transition("executed" if all(r.success for r in results) else "failed")
        self.store.save(session)
        return results

    def _after_execution(self, session: Session, results: List[ExecutionResult]) -> RemediateResponse:
        if session.status == "failed":
            return self._render(session, "failed", executed=True, results=results)
        try:
            validation_session = self._run_validation(session, [r.command for r in results if r.command])
        except (PlanningError, CapabilityGapError) as e:
            # The commands already ran; report them even though validation could not finish
            logger.error(f"Validation for session {session.session_id} did not complete: {e.message}")
            return self._render(session, "awaiting_user_approval", executed=True, results=results,
                                fallback_reason=self._validation_failure_reason(e))
        return self._validation_response(session, validation_session, results, executed=True)

    @staticmethod
    def _validation_failure_reason(error: RemediationError) -> str:
        validation_id = getattr(error, "session_id", None)
        if isinstance(error, CapabilityGapError):
            return (f"Remediation was executed but validation session {validation_id} found no safe way to "
                    f"verify the outcome: {error.message}. Check the cluster manually.")
        return (f"Remediation was executed but validation session {validation_id} could not complete: "
                f"{error.message}. Resume that session to retry validation.")

    def _validate_external_execution(self, session: Session, executed_commands: List[str]) -> RemediateResponse:
        if session.status == "investigating":
            raise ValidationError(f"Session {session.session_id} has not finished its analysis")
        if session.status == "analysis_complete":
            session.transition("executed")
            self.store.save(session)
        # The commands are context for the validation prompt; they are never run here
        try:
            validation_session = self._run_validation(session, executed_commands)
        except (PlanningError, CapabilityGapError) as e:
            logger.error(f"Validation for session {session.session_id} did not complete: {e.message}")
            return self._render(session, "awaiting_user_approval",
                                fallback_reason=self._validation_failure_reason(e))
        return self._validation_response(session, validation_session, None, executed=False)

    def _run_validation(self, parent: Session, executed_commands: List[str]) -> Session:
        issue = parent.issue
        if parent.plan and parent.plan.validation_intent:
            issue = f"{parent.issue}\n\nValidation intent: {parent.plan.validation_intent}"
        logger.info(f"Starting validation investigation for session {parent.session_id}.")
        validation_session = self.investigation_service.investigate(
            issue=issue,
            context=parent.context,
            mode="manual",
            purpose="validation",
            parent_session_id=parent.session_id,
            executed_commands=executed_commands,
            policy=parent.policy,
        )
        self.plan(validation_session)
        return validation_session

    def _validation_response(self, parent: Session, validation_session: Session,
                             results: Optional[List[ExecutionResult]], executed: bool) -> RemediateResponse:
        plan = validation_session.plan
        resolved = plan.issue_status == "resolved" or not plan.remediation.actions
        previous_root_cause = parent.plan.root_cause if parent.plan else ""
        summary = ValidationSummary(
            session_id=validation_session.session_id,
            parent_session_id=parent.session_id,
            issue_status="resolved" if resolved else "active",
            root_cause=plan.root_cause,
            new_issue_detected=not resolved and not _same_root_cause(plan.root_cause, previous_root_cause),
        )

        if resolved:
            logger.info(f"Validation {validation_session.session_id} confirms session {parent.session_id} resolved.")
            return self._render(parent, "success", executed=executed, results=results, validation=summary)

        # Never chain another automatic execution; the follow-up always needs approval
        logger.warning(f"Validation {validation_session.session_id} found an active issue "
                       f"(new root cause: {summary.new_issue_detected}). Manual approval required.")
        return self._render(
            validation_session, "awaiting_user_approval", executed=executed, results=results,
            execution_choices=self._choices(plan), validation=summary,
            fallback_reason="Validation after remediation found an unresolved issue. "
                            "Automatic execution is not repeated; manual approval required.",
        )

    def _render_stored(self, session: Session) -> RemediateResponse:
        if session.status == "failed":
            return self._render(session, "failed", executed=bool(session.results), results=session.results)
        if session.status == "executed":
            return self._render(session, "success", executed=bool(session.results), results=session.results)
        plan = session.plan
        if plan.issue_status == "resolved" or not plan.remediation.actions:
            return self._render(session, "success")
        return self._render(session, "awaiting_user_approval", execution_choices=self._choices(plan))

    @staticmethod
    def _choices(plan: RemediationPlan) -> List[ExecutionChoice]:
        return [
            ExecutionChoice(
                id=1,
                label="Execute via remediation engine",
                description="Run the kubectl commands shown above through the engine, then validate the result",
                risk=plan.remediation.risk,
            ),
            ExecutionChoice(
                id=2,
                label="Execute commands yourself",
                description="Run the commands manually, then call back with executedCommands to validate the result",
                risk=plan.remediation.risk,
            ),
        ]

    @staticmethod
    def _render(session: Session, status: str, executed: bool = False,
                results: Optional[List[ExecutionResult]] = None,
                execution_choices: Optional[List[ExecutionChoice]] = None,
                fallback_reason: Optional[str] = None,
                validation: Optional[ValidationSummary] = None) -> RemediateResponse:
        data_sources: List[str] = []
        for iteration in session.iterations:
            for key, value in iteration.gathered_data.items():
                if isinstance(value, str) and key not in data_sources:
                    data_sources.append(key)

        analysis_path = [
            f"Iteration {i.step}: {i.analysis.splitlines()[0] if i.analysis.strip() else 'Inconclusive step'}"
            for i in session.iterations
        ]

        plan = session.plan
        if plan:
            analysis = AnalysisSummary(root_cause=plan.root_cause, confidence=plan.confidence, factors=plan.factors)
            remediation = plan.remediation
        else:
            analysis = AnalysisSummary(root_cause=session.final_analysis or "")
            remediation = RemediationSummary()

        return RemediateResponse(
            status=status,
            session_id=session.session_id,
            investigation=InvestigationSummary(
                iterations=len(session.iterations), data_gathered=data_sources, analysis_path=analysis_path),
            analysis=analysis,
            remediation=remediation,
            executed=executed,
            results=results,
            execution_choices=execution_choices,
            fallback_reason=fallback_reason,
            validation=validation,
        )


def build_remediation_service(settings) -> RemediationService:
    """Wires the engine from application settings."""
    k8s_service = KubernetesService(
        kubeconfig_path=settings.KUBE_CONFIG_PATH,
        context=settings.KUBE_CONTEXT,
        kubectl_binary=settings.KUBECTL_BINARY,
    )
    reasoning_client = ReasoningClient(
        api_key=settings.GROQ_API_KEY.get_secret_value() if settings.GROQ_API_KEY else None,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
    store = FileSessionStore(settings.SESSION_DIR)
    investigation_service = InvestigationService(
        reasoning_client=reasoning_client,
        inspector=ClusterInspector(k8s_service),
        store=store,
        k8s_service=k8s_service,
    )
    return RemediationService(
        investigation_service=investigation_service,
        reasoning_client=reasoning_client,
        store=store,
        k8s_service=k8s_service,
        execution_timeout=settings.EXECUTION_TIMEOUT_SECONDS,
        default_max_risk_level=settings.DEFAULT_MAX_RISK_LEVEL,
        default_confidence_threshold=settings.DEFAULT_CONFIDENCE_THRESHOLD,
    )
