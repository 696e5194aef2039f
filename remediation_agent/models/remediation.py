# remediation_agent/models/remediation.py
from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

RiskLevel = Literal["low", "medium", "high"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IssueContext(_CamelModel):
    """Optional hints supplied alongside the issue description."""
    event: Optional[Any] = None
    logs: Optional[List[str]] = None
    metrics: Optional[Any] = None
    pod_spec: Optional[Any] = None
    related_events: Optional[List[Any]] = None


class RemediationAction(_CamelModel):
    description: str = Field(..., min_length=1)
    command: Optional[str] = None
    risk: RiskLevel
    rationale: str = Field(..., min_length=1)


class RemediationSummary(_CamelModel):
    summary: str = ""
    actions: List[RemediationAction] = []
    risk: RiskLevel = "low"


class RemediationPlan(_CamelModel):
    """Validated output of the final-analysis step."""
    issue_status: Literal["active", "resolved"] = "active"
    root_cause: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: List[str] = []
    remediation: RemediationSummary
    validation_intent: Optional[str] = None


class ExecutionResult(_CamelModel):
    action: str
    command: Optional[str] = None
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExecutionChoice(_CamelModel):
    id: int
    label: str
    description: str
    risk: Optional[RiskLevel] = None


class InvestigationSummary(_CamelModel):
    iterations: int
    data_gathered: List[str] = []
    analysis_path: List[str] = []


class AnalysisSummary(_CamelModel):
    root_cause: str = ""
    confidence: float = 0.0
    factors: List[str] = []


class ValidationSummary(_CamelModel):
    session_id: str
    parent_session_id: str
    issue_status: Literal["active", "resolved"]
    root_cause: str
    new_issue_detected: bool = False


class RemediateRequest(_CamelModel):
    issue: Optional[str] = Field(None, max_length=2000)
    context: Optional[IssueContext] = None
    mode: Literal["manual", "automatic"] = "manual"
    policy: Optional[str] = None
    session_id: Optional[str] = None
    execute_choice: Optional[Literal[1, 2]] = None
    executed_commands: Optional[List[str]] = None
    max_risk_level: Optional[RiskLevel] = None  # configured default when omitted
    confidence_threshold: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator("issue")
    @classmethod
    def strip_issue(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("issue must not be empty")
        return v

    @model_validator(mode="after")
    def check_dispatch_fields(self):
        if not self.session_id:
            if not self.issue:
                raise ValueError("issue is required unless sessionId is provided")
            if self.execute_choice is not None or self.executed_commands is not None:
                raise ValueError("executeChoice and executedCommands require sessionId")
        if self.execute_choice == 2 and not self.executed_commands:
            raise ValueError("executeChoice 2 requires the executedCommands that were run")
        return self


class RemediateResponse(_CamelModel):
    status: Literal["success", "awaiting_user_approval", "failed"]
    session_id: str
    investigation: InvestigationSummary
    analysis: AnalysisSummary
    remediation: RemediationSummary
    executed: bool = False
    results: Optional[List[ExecutionResult]] = None
    execution_choices: Optional[List[ExecutionChoice]] = None
    fallback_reason: Optional[str] = None
    validation: Optional[ValidationSummary] = None

