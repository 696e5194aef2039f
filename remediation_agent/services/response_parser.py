# remediation_agent/services/response_parser.py
"""
Turns free-text replies from the reasoning service into validated outcomes.

Investigation replies become either an ``InvestigationDecision`` (every field
present and in range, every data request whitelisted) or an
``InconclusiveResponse`` describing what was wrong. Final-analysis replies
become a ``RemediationPlan`` or a ``CapabilityGap``.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr
from pydantic import ValidationError as PydanticValidationError

from remediation_agent.models.remediation import RemediationPlan
from remediation_agent.models.session import ClassifiedError, DataRequest, normalize_key
from remediation_agent.services.cluster_inspector import rejection


class ResponseParseError(ValueError):
    pass


@dataclass(frozen=True)
class InvestigationDecision:
    analysis: str
    data_requests: List[DataRequest]
    complete: bool
    confidence: float
    reasoning: str = ""


@dataclass(frozen=True)
class InconclusiveResponse:
    reason: str
    analysis: str = ""
    rejected: Dict[str, ClassifiedError] = field(default_factory=dict)


InvestigationOutcome = Union[InvestigationDecision, InconclusiveResponse]


@dataclass(frozen=True)
class CapabilityGap:
    reason: str


PlanOutcome = Union[RemediationPlan, CapabilityGap]


class _InvestigationReply(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    analysis: StrictStr
    data_requests: List[Dict[str, Any]] = Field(..., alias="dataRequests")
    investigation_complete: StrictBool = Field(..., alias="investigationComplete")
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: StrictStr = ""


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pulls the first JSON object out of a reply, fenced or bare."""
    if not text:
        raise ResponseParseError("Empty response")

    fenced = re.search(r"```(?:json)?\s*(\{.*\})\s*```", text, re.DOTALL)
    if fenced:
        candidate = fenced.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ResponseParseError("No JSON object found in response")
        candidate = text[start:end + 1]

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Malformed JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ResponseParseError("Response JSON is not an object")
    return parsed


def _describe(e: PydanticValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


def parse_investigation_response(text: str) -> InvestigationOutcome:
    try:
        raw = extract_json_object(text)
    except ResponseParseError as e:
        return InconclusiveResponse(reason=str(e))

    try:
        reply = _InvestigationReply.model_validate(raw)
    except PydanticValidationError as e:
        analysis = raw.get("analysis") if isinstance(raw.get("analysis"), str) else ""
        return InconclusiveResponse(reason=f"Invalid response fields: {_describe(e)}", analysis=analysis)

    requests: List[DataRequest] = []
    rejected: Dict[str, ClassifiedError] = {}
    for item in reply.data_requests:
        try:
            requests.append(DataRequest.model_validate(item))
        except PydanticValidationError as e:
            op_type, resource = str(item.get("type", "")), str(item.get("resource", ""))
            rejected[normalize_key(op_type, resource)] = rejection(op_type, resource, _describe(e))

    if rejected:
        return InconclusiveResponse(
            reason=f"{len(rejected)} data request(s) failed validation",
            analysis=reply.analysis,
            rejected=rejected,
        )

    return InvestigationDecision(
        analysis=reply.analysis,
        data_requests=requests,
        complete=reply.investigation_complete,
        confidence=reply.confidence,
        reasoning=reply.reasoning,
    )


def parse_remediation_plan(text: str) -> PlanOutcome:
    """
    Raises:
        ResponseParseError: no JSON, or the plan fails validation.
    """
    raw = extract_json_object(text)

    if raw.get("remediationPossible") is False:
        return CapabilityGap(reason=str(raw.get("capabilityGap") or raw.get("rootCause") or
                                        "No available operation can remediate this issue"))
    try:
        return RemediationPlan.model_validate(raw)
    except PydanticValidationError as e:
        raise ResponseParseError(f"Invalid remediation plan: {_describe(e)}") from e
