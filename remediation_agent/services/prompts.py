# remediation_agent/services/prompts.py
import json
from typing import Optional

from remediation_agent.core.constants import MAX_ITERATIONS, PROMPT_DATA_LIMIT, SAFE_OPERATIONS, WRAP_UP_MESSAGE
from remediation_agent.models.session import ClassifiedError, Session


def _truncate(text: str, limit: int = PROMPT_DATA_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} characters]"


def _render_value(value) -> str:
    if isinstance(value, ClassifiedError):
        return f"ERROR ({value.category}): {value.enhanced_message}"
    return _truncate(value)


def render_history(session: Session) -> str:
    if not session.iterations:
        return "None - this is the first step."

    blocks = []
    for iteration in session.iterations:
        requests = json.dumps([r.model_dump(by_alias=True) for r in iteration.data_requests], indent=2)
        gathered = "\n\n".join(
            f"[{key}]\n{_render_value(value)}" for key, value in iteration.gathered_data.items()
        ) or "(no data gathered)"
        blocks.append(
            f"### Step {iteration.step}\n"
            f"Analysis: {iteration.analysis or '(no usable analysis)'}\n"
            f"Data requests: {requests}\n"
            f"Gathered data:\n{gathered}"
        )
    return "\n\n".join(blocks)


def build_investigation_prompt(session: Session, api_resources: str, step: int) -> str:
    context_json = json.dumps(
        session.context.model_dump(by_alias=True, exclude_none=True) if session.context else {}, indent=2)

    framing = f"Issue reported by the operator:\n{session.issue}"
    if session.purpose == "validation":
        commands = "\n".join(f"- {c}" for c in session.executed_commands or []) or "- (none reported)"
        framing = (
            "This is a VALIDATION investigation. Remediation commands were executed for a previously "
            "diagnosed issue. Verify whether the issue is resolved, and report any new or remaining problem.\n\n"
            f"Issue to verify:\n{session.issue}\n\nCommands that were executed:\n{commands}"
        )

    wrap_up = f"\n\nIMPORTANT: {WRAP_UP_MESSAGE}" if step >= MAX_ITERATIONS else ""

    return f"""
You are investigating a Kubernetes issue step by step. Each step you may request read-only
diagnostic data; the results are shown to you in the next step.

{framing}

Initial context:
{context_json}

Cluster API resources:
{api_resources}

Investigation step {step} of {MAX_ITERATIONS}.

Previous steps:
{render_history(session)}

Rules:
- Allowed data request types: {', '.join(SAFE_OPERATIONS)}. Anything else is rejected.
- "resource" is a kind ("pods") or kind/name ("pod/web-0"); put the namespace in "namespace".
- If a previous request failed, read the error guidance before retrying (for example list resources
  before targeting a name that was not found).
- Set investigationComplete to true once the root cause is identified with evidence.

Respond with ONLY this JSON object:
{{
  "analysis": "what the evidence so far shows",
  "dataRequests": [{{"type": "get", "resource": "pods", "namespace": "default", "rationale": "why"}}],
  "investigationComplete": false,
  "confidence": 0.5,
  "reasoning": "why more data is or is not needed"
}}{wrap_up}
""".strip()


def build_final_analysis_prompt(session: Session, policy: Optional[str] = None) -> str:
    policy_note = f"\nOrganizational policy in effect: {policy}\n" if policy else ""
    validation_note = ""
    if session.purpose == "validation":
        validation_note = (
            "\nThis was a validation run after remediation. Use issueStatus \"resolved\" with no actions "
            "if the issue is fixed; otherwise describe the remaining or new root cause and its fix.\n"
        )

    return f"""
The investigation of a Kubernetes issue has finished. Produce the final root-cause analysis and a
remediation plan from the evidence below.

Issue:
{session.issue}
{policy_note}{validation_note}
Investigation ({len(session.iterations)} steps):
{render_history(session)}

Final analysis from the investigation:
{session.final_analysis or '(none)'}

Remediation rules:
- Order actions by priority; the first action is the one that fixes the root cause.
- Every command must be a complete kubectl command an operator can run as-is.
- Rate each action's risk: low (additive, easily reversed), medium (restarts or scaling),
  high (deletes data or affects many workloads).
- If no available Kubernetes operation can fix the issue, set remediationPossible to false and
  explain why in capabilityGap.

Respond with ONLY this JSON object:
{{
  "remediationPossible": true,
  "issueStatus": "active",
  "rootCause": "single-sentence root cause",
  "confidence": 0.9,
  "factors": ["contributing factor"],
  "remediation": {{
    "summary": "what the fix does",
    "actions": [{{"description": "...", "command": "kubectl ...", "risk": "low", "rationale": "..."}}],
    "risk": "low"
  }},
  "validationIntent": "what to check after the fix is applied"
}}
""".strip()
