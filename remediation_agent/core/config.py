# remediation_agent/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, SecretStr, field_validator
from typing import Optional
import logging

from remediation_agent.core.constants import RISK_ORDER

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    APP_NAME: str = "Kubernetes Remediation Agent"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Session persistence - one JSON file per investigation session
    SESSION_DIR: str = Field("./tmp/sessions", description="Directory holding persisted remediation sessions")

    # Kubernetes Config - leave blank to use in-cluster or default kubeconfig
    KUBE_CONFIG_PATH: Optional[str] = None
    KUBE_CONTEXT: Optional[str] = Field(None, description="kubeconfig context passed to every kubectl call")
    KUBECTL_BINARY: str = "kubectl"
    EXECUTION_TIMEOUT_SECONDS: float = Field(60.0, description="Timeout for planner-authored mutating commands")

    # Groq API settings for the reasoning service
    GROQ_API_KEY: Optional[SecretStr] = Field(None, description="API Key for Groq service")
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    LLM_TEMPERATURE: float = 0.1
    LLM_MAX_TOKENS: int = 4096
    LLM_TIMEOUT_SECONDS: float = Field(120.0, description="Per-call timeout for the reasoning service")

    # Execution gate defaults (callers may override per request)
    DEFAULT_CONFIDENCE_THRESHOLD: float = Field(0.8, ge=0.0, le=1.0)
    DEFAULT_MAX_RISK_LEVEL: str = Field("low", description="'low', 'medium' or 'high'")

    model_config = SettingsConfigDict(
        env_file='.env',  # Load environment variables from .env file
        env_file_encoding='utf-8',
        extra='ignore',  # Ignore extra fields from environment
    )

    @field_validator('DEFAULT_MAX_RISK_LEVEL')
    @classmethod
    def validate_risk_level(cls, v):
        if v not in RISK_ORDER:
            raise ValueError("DEFAULT_MAX_RISK_LEVEL must be one of 'low', 'medium', 'high'")
        return v

settings = Settings()

if not settings.GROQ_API_KEY:
    logger.warning("GROQ_API_KEY environment variable not set. Investigations will fail until a reasoning service is configured.")
