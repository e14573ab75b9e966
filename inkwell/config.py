"""Configuration loading and management."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from inkwell.constants import (
    API_KEY_VENDORS,
    CONTEXT_PLACEMENTS,
    DEFAULT_CONTEXT_PLACEMENT,
    DEFAULT_DATA_DIR,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_MODEL,
    DEFAULT_SYSTEM_PROMPT,
    MAIN_TASK_ID,
    SUPPORTED_MODELS,
)
from inkwell.llm import parse_model_string


class ProviderConfig(BaseModel):
    """Connection settings for one LLM provider."""

    id: str
    name: str
    type: Literal["openai", "gemini", "anthropic"]
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    extra_headers: dict[str, str] = Field(default_factory=dict)
    extra_params: dict[str, Any] = Field(default_factory=dict)


def builtin_providers() -> dict[str, ProviderConfig]:
    """Build provider configs for every supported model string.

    API keys are read from the environment variable named in the model table.
    """
    providers = {}
    for model_str, spec in SUPPORTED_MODELS.items():
        descriptor = parse_model_string(model_str)
        providers[model_str] = ProviderConfig(
            id=model_str,
            name=f"{descriptor.vendor} {descriptor.name}",
            type=descriptor.type,
            model=descriptor.name,
            api_key=os.getenv(spec["key_env"]),
            base_url=spec.get("base_url"),
            max_tokens=descriptor.max_output_tokens,
        )
    return providers


@dataclass
class Config:
    """Inkwell configuration.

    Loads from .env and optionally .inkwell/config.json
    """

    # Model settings
    default_model: str = DEFAULT_MODEL
    providers: dict[str, ProviderConfig] = field(default_factory=dict)

    # Request assembly
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    context_placement: str = DEFAULT_CONTEXT_PLACEMENT

    # Agent pipeline
    agent_enabled: bool = False
    agent_tasks: list[dict] = field(default_factory=list)
    main_task_id: str = MAIN_TASK_ID

    # Storage
    data_dir: Path = field(default_factory=lambda: Path(DEFAULT_DATA_DIR))

    @property
    def current_provider_id(self) -> str:
        return self.default_model

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> "Config":
        """Load configuration from environment and project-specific config.

        Args:
            project_root: Project root directory (for .inkwell/config.json)

        Returns:
            Config instance
        """
        # Load .env file
        load_dotenv()

        root = project_root or Path.cwd()
        data_dir = Path(os.getenv("INKWELL_DATA_DIR", str(root / DEFAULT_DATA_DIR)))

        config = cls(
            default_model=os.getenv("INKWELL_DEFAULT_MODEL", DEFAULT_MODEL),
            providers=builtin_providers(),
            system_prompt=os.getenv("INKWELL_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
            history_limit=int(os.getenv("INKWELL_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT)),
            context_placement=os.getenv("INKWELL_CONTEXT_PLACEMENT", DEFAULT_CONTEXT_PLACEMENT),
            agent_enabled=os.getenv("INKWELL_AGENT_ENABLED", "").lower() == "true",
            data_dir=data_dir,
        )

        # Load project-specific config if available
        config_path = data_dir / "config.json"
        if config_path.exists():
            try:
                with open(config_path) as f:
                    config.apply_overrides(json.load(f))
            except (json.JSONDecodeError, IOError, ValidationError):
                pass  # Ignore invalid config

        return config

    def apply_overrides(self, data: dict) -> None:
        """Merge a project config.json payload into this config.

        Args:
            data: Parsed config.json contents
        """
        for entry in data.get("providers", []):
            provider = ProviderConfig.model_validate(entry)
            if provider.api_key is None and provider.id in self.providers:
                provider.api_key = self.providers[provider.id].api_key
            self.providers[provider.id] = provider

        if "default_model" in data:
            self.default_model = data["default_model"]
        if "system_prompt" in data:
            self.system_prompt = data["system_prompt"]
        if "history_limit" in data:
            self.history_limit = int(data["history_limit"])
        if "context_placement" in data:
            self.context_placement = data["context_placement"]

        agent = data.get("agent", {})
        if "enabled" in agent:
            self.agent_enabled = bool(agent["enabled"])
        if "tasks" in agent:
            self.agent_tasks = list(agent["tasks"])
        if "main_task_id" in agent:
            self.main_task_id = agent["main_task_id"]

    def get_provider(self, provider_id: Optional[str] = None) -> Optional[ProviderConfig]:
        """Look up a provider by id, defaulting to the current provider."""
        return self.providers.get(provider_id or self.current_provider_id)

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        provider = self.get_provider()
        if provider is None:
            errors.append(
                f"Unknown model: {self.default_model}. "
                f"Supported: {', '.join(sorted(self.providers))}"
            )
        elif not provider.api_key:
            key_env = SUPPORTED_MODELS.get(provider.id, {}).get("key_env", "an API key")
            errors.append(f"No API key for {provider.id}. Set {key_env}")

        if self.history_limit <= 0:
            errors.append("history_limit must be positive")

        if self.context_placement not in CONTEXT_PLACEMENTS:
            errors.append(
                f"context_placement must be one of: {', '.join(CONTEXT_PLACEMENTS)}"
            )

        return errors

    def has_key(self, vendor: str) -> bool:
        """Whether any provider of a vendor has an API key.

        Providers without a "<vendor>:" id prefix count under their wire type.
        """
        for provider_id, provider in self.providers.items():
            prefix = provider_id.split(":", 1)[0] if ":" in provider_id else provider.type
            if prefix == vendor and provider.api_key:
                return True
        return False

    def to_dict(self) -> dict:
        """Convert config to dictionary (for logging/display)."""
        return {
            "default_model": self.default_model,
            "history_limit": self.history_limit,
            "context_placement": self.context_placement,
            "agent_enabled": self.agent_enabled,
            "agent_tasks": [t.get("id") for t in self.agent_tasks] or "default",
            "data_dir": str(self.data_dir),
            **{f"has_{vendor}_key": self.has_key(vendor) for vendor in API_KEY_VENDORS},
        }
