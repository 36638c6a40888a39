"""
Application settings management.

Settings are loaded from environment variables with .env file support.
Orchestration tuning (model fallback order, retry schedule, termination
thresholds, escalation targets) comes from config/orchestrator_config.yaml.
All configuration is validated using Pydantic.
"""

from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================

    config_dir: Path = Field(
        default=Path("config"),
        description="Directory containing YAML configuration files",
    )

    # ==========================================================================
    # Remote Reasoning Service
    # ==========================================================================

    reasoning_api_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the remote reasoning service",
    )
    reasoning_api_timeout: float = Field(
        default=60.0, gt=0, description="Per-request timeout in seconds"
    )
    requester_id: Optional[str] = Field(
        default=None, description="Default requester (user) id sent to the service"
    )

    # ==========================================================================
    # Server Configuration
    # ==========================================================================

    host: str = Field(default="127.0.0.1", description="Server host address")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # ==========================================================================
    # Logging
    # ==========================================================================

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Minimum level emitted"
    )
    log_file: Optional[Path] = Field(
        default=None, description="Also append JSON log lines to this file"
    )


# ============================================================================
# Orchestrator Configuration (from YAML)
# ============================================================================


class RetryConfig(BaseModel):
    """Retry schedule for remote calls.

    The delay before attempt ``n + 1`` is ``base_delay_ms * (n + 1)``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: int = Field(default=1000, ge=0)


class TerminationConfig(BaseModel):
    """Thresholds used by the termination policy."""

    minimum_questions_before_ready: int = Field(
        default=2,
        ge=0,
        description="Questions required before a ready signal is honoured",
    )
    max_total_questions: int = Field(
        default=11,
        ge=1,
        description="Absolute ceiling across the interview and all escalations",
    )
    baseline_confidence: int = Field(
        default=85,
        ge=0,
        le=100,
        description="Confidence assumed once interviewing begins",
    )


class EscalationConfig(BaseModel):
    """Ask Me More / Think Harder settings."""

    ask_more_target_confidence: int = Field(default=95, ge=0, le=100)
    continuation_target_confidence: int = Field(default=90, ge=0, le=100)
    max_additional_questions: int = Field(default=5, ge=1)
    think_harder_model: Optional[str] = None


class EndpointConfig(BaseModel):
    """Which endpoint family of the reasoning service to drive."""

    family: Literal["body", "general"] = "body"


class OrchestratorConfig(BaseModel):
    """
    Complete orchestration configuration loaded from orchestrator_config.yaml.
    """

    models: List[str] = Field(
        default_factory=lambda: [
            "deepseek/deepseek-r1-distill-llama-70b:free",
            "deepseek/deepseek-chat",
            "meta-llama/llama-3.2-3b-instruct:free",
        ]
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    termination: TerminationConfig = Field(default_factory=TerminationConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    endpoints: EndpointConfig = Field(default_factory=EndpointConfig)

    @field_validator("models")
    @classmethod
    def require_models(cls, v: List[str]) -> List[str]:
        """Reject an empty fallback list; blank entries are dropped."""
        cleaned = [m.strip() for m in v if m and m.strip()]
        if not cleaned:
            raise ValueError("At least one model identifier is required")
        return cleaned

    @field_validator("escalation")
    @classmethod
    def cap_additional_questions(
        cls, v: EscalationConfig, info: ValidationInfo
    ) -> EscalationConfig:
        """
        Keep the per-escalation budget inside the absolute question ceiling.
        """
        termination = info.data.get("termination")
        if isinstance(termination, TerminationConfig):
            v.max_additional_questions = min(
                v.max_additional_questions, termination.max_total_questions
            )
        return v


def load_orchestrator_config(
    config_path: Optional[Path] = None,
) -> OrchestratorConfig:
    """
    Load orchestrator configuration from YAML file.

    Args:
        config_path: Path to orchestrator_config.yaml. If None, looks in the
            project root and then the current working directory.

    Returns:
        OrchestratorConfig with validated settings (defaults if no file)

    Raises:
        ValueError: If config validation fails
    """
    if config_path is None:
        project_root = Path(__file__).resolve().parent.parent.parent
        candidates = [
            project_root / "config" / "orchestrator_config.yaml",
            Path.cwd() / "config" / "orchestrator_config.yaml",
        ]
        config_path = next((p for p in candidates if p.exists()), None)
        if config_path is None:
            return OrchestratorConfig()

    config_path = Path(config_path).resolve()

    if not config_path.exists():
        return OrchestratorConfig()

    with open(str(config_path)) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        return OrchestratorConfig()

    return OrchestratorConfig(**config_data)


# Global settings instance
settings = Settings()

# Global orchestrator config instance
orchestrator_config = load_orchestrator_config()
