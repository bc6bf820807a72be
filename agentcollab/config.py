"""Configuration management for the collaboration service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one OpenAI-compatible completion provider."""

    name: str
    api_key: str
    endpoint: Optional[str] = None
    api_version: Optional[str] = None
    default_model: str = "gpt-4"
    max_concurrent: int = 50

    @property
    def is_azure(self) -> bool:
        return self.api_version is not None


@dataclass(frozen=True)
class OrchestratorSettings:
    """Admission control and workflow limits."""

    max_collaboration_cycles: int = 3
    processing_timeout: float = 30.0
    cooldown_period: float = 300.0
    message_history_cap: int = 100
    sweep_interval: float = 60.0
    max_retries: int = 3
    team_max_rounds: int = 8
    stream_responses: bool = True

    @classmethod
    def from_env(cls) -> OrchestratorSettings:
        return cls(
            max_collaboration_cycles=int(os.getenv("COLLAB_MAX_CYCLES", "3")),
            processing_timeout=float(os.getenv("COLLAB_PROCESSING_TIMEOUT", "30")),
            cooldown_period=float(os.getenv("COLLAB_COOLDOWN", "300")),
            message_history_cap=int(os.getenv("COLLAB_HISTORY_CAP", "100")),
            sweep_interval=float(os.getenv("COLLAB_SWEEP_INTERVAL", "60")),
            max_retries=int(os.getenv("COLLAB_MAX_RETRIES", "3")),
            team_max_rounds=int(os.getenv("COLLAB_TEAM_MAX_ROUNDS", "8")),
            stream_responses=_env_bool("COLLAB_STREAM", True),
        )


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    environment: str = "development"
    log_level: str = "INFO"
    agents_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        providers: Dict[str, ProviderConfig] = {}

        openai_key = os.getenv("OPENAI_API_KEY")
        if openai_key:
            providers["openai"] = ProviderConfig(
                name="openai",
                api_key=openai_key,
                endpoint=os.getenv("OPENAI_BASE_URL"),
                default_model=os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview"),
                max_concurrent=int(os.getenv("OPENAI_MAX_CONCURRENT", "50")),
            )

        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if azure_key and azure_endpoint:
            providers["azure"] = ProviderConfig(
                name="azure",
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                default_model=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        # Ollama is local and keyless; its OpenAI-compatible endpoint is always registered.
        providers["ollama"] = ProviderConfig(
            name="ollama",
            api_key="ollama",
            endpoint=os.getenv("OLLAMA_HOST", "http://localhost:11434/v1"),
            default_model=os.getenv("OLLAMA_MODEL", "llama3"),
            max_concurrent=int(os.getenv("OLLAMA_MAX_CONCURRENT", "4")),
        )

        return cls(
            providers=providers,
            orchestrator=OrchestratorSettings.from_env(),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            agents_file=os.getenv("COLLAB_AGENTS_FILE"),
        )


# Global config instance
config = Config.from_env()
