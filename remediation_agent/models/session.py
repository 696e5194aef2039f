# remediation_agent/models/session.py
import re
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from remediation_agent.core.exceptions import ValidationError
from remediation_agent.models.remediation import ExecutionResult, IssueContext, RemediationPlan

SafeOperation = Literal["get", "describe", "logs", "events", "top"]
Mode = Literal["manual", "automatic"]
SessionStatus = Literal["investigating", "analysis_complete", "executed", "failed"]
ErrorCategory = Literal[
    "network", "authentication", "authorization", "api-availability",
    "kubeconfig", "version", "unknown", "validation",
]

# kind, kind/name, kind.group/name - never a flag, never whitespace
RESOURCE_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._:/-]{0,252}$"
NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"

_STATUS_RANK = {"investigating": 0, "analysis_complete": 1, "executed": 2, "failed": 2}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_key(op_type: str, resource: str) -> str:
    """Key under which a request's result is stored, e.g. ``describe_pvc/data``."""
    return re.sub(r"\s+", "_", f"{op_type}_{resource}".strip().lower())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DataRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: SafeOperation
    resource: str = Field(..., pattern=RESOURCE_PATTERN)
    namespace: Optional[str] = Field(None, pattern=NAMESPACE_PATTERN)
    rationale: str = Field(..., min_length=1)

    @field_validator("namespace", mode="before")
    @classmethod
    def blank_namespace_is_none(cls, value):
        # cluster-scoped kinds often come back with namespace ""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def key(self) -> str:
        return normalize_key(self.type, self.resource)


class ClassifiedError(CamelModel):
    category: ErrorCategory
    enhanced_message: str
    command: Optional[str] = None


class Iteration(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    step: int = Field(..., ge=1)
    analysis: str = ""
    data_requests: List[DataRequest] = []
    gathered_data: Dict[str, Union[str, ClassifiedError]] = {}
    complete: bool = False
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    inconclusive: bool = False
    timestamp: datetime = Field(default_factory=utcnow)


class Session(CamelModel):
    session_id: str
    issue: str
    context: Optional[IssueContext] = None
    mode: Mode = "manual"
    purpose: Literal["investigation", "validation"] = "investigation"
    parent_session_id: Optional[str] = None
    executed_commands: Optional[List[str]] = None
    policy: Optional[str] = None
    iterations: List[Iteration] = []
    status: SessionStatus = "investigating"
    final_analysis: Optional[str] = None
    plan: Optional[RemediationPlan] = None
    results: Optional[List[ExecutionResult]] = None
    created: datetime = Field(default_factory=utcnow)
    updated: datetime = Field(default_factory=utcnow)

    def transition(self, new_status: str) -> None:
        """Move the session forward; backward or sideways moves are rejected."""
        if new_status == self.status:
            return
        if _STATUS_RANK[new_status] <= _STATUS_RANK[self.status]:
            raise ValidationError(
                f"Session {self.session_id} cannot move from '{self.status}' to '{new_status}'"
            )
        self.status = new_status

    def add_iteration(self, iteration: Iteration) -> None:
        self.iterations = [*self.iterations, iteration]

    def last_analysis(self) -> str:
        for iteration in reversed(self.iterations):
            if iteration.analysis.strip():
                return iteration.analysis
        return ""
