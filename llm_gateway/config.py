"""Configuration management for the gateway clients."""

import os
from collections.abc import Mapping
from enum import Enum
from typing import Any

import yaml
from dotenv import load_dotenv

from .llm.exceptions import ConfigurationError
from .llm.models import ModelConfiguration


class EinsteinDevModel(Enum):
    """Models served through the Einstein streaming gateway."""
    GPT5 = "GPT5"
    XGEN = "XGEN"


class LLMExpressModel(Enum):
    """Models served through the LLM Express chat-completion gateway."""
    GEMINI_2_5_PRO = "gemini-2.5-pro"
    GEMINI_2_5_FLASH = "gemini-2.5-flash"
    CLAUDE_3_7_SONNET = "claude-3-7-sonnet-20250219"
    CLAUDE_4_SONNET = "claude-sonnet-4-20250514"
    GPT_5 = "gpt-5"
    GPT_5_MINI = "gpt-5-mini"
    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


class Configuration:
    """Builds ``ModelConfiguration`` objects from YAML tables and the environment."""

    def __init__(
        self,
        config_path: str | None = None,
        environ: Mapping[str, str] | None = None,
        *,
        load_env: bool = True,
    ) -> None:
        """Initialize configuration from YAML and environment variables.

        Args:
            config_path: YAML file with the model tables; the packaged
                default is used when omitted.
            environ: Environment to read secrets from (``os.environ`` by default).
            load_env: Whether to load a ``.env`` file first.
        """
        if load_env:
            self.load_env()
        self._environ = environ if environ is not None else os.environ
        self._config = self._load_yaml_config(config_path or DEFAULT_CONFIG_PATH)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ConfigurationError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def einstein_model(self, model: EinsteinDevModel | str) -> ModelConfiguration:
        """Configuration for one Einstein streaming gateway model.

        Raises:
            ConfigurationError: If the model is unknown or its API key is
                not set in the environment.
        """
        name = model.value if isinstance(model, EinsteinDevModel) else model
        section = self._config.get("einstein", {})
        entry = section.get("models", {}).get(name)
        if entry is None:
            raise ConfigurationError(f"Unknown Einstein model '{name}'")

        api_key = self._require_env(entry.get("api_key_env"), name)
        base_url = self._env(entry.get("base_url_env")) or section.get("base_url", "")
        feature_id = (
            self._env(entry.get("feature_id_env"))
            or section.get("feature_id", "EinsteinForDevelopers")
        )

        return ModelConfiguration(
            model=entry["model"],
            base_url=base_url,
            api_key=api_key,
            tenant_id=self._env(entry.get("tenant_id_env")) or "",
            feature_id=feature_id,
            max_tokens=entry.get("max_tokens"),
            model_provider=entry.get("model_provider"),
            parameters=dict(entry.get("parameters") or {}),
            timeout=float(section.get("timeout", 60.0)),
        )

    def llm_express_model(self, model: LLMExpressModel | str) -> ModelConfiguration:
        """Configuration for one LLM Express gateway model."""
        name = model.value if isinstance(model, LLMExpressModel) else model
        section = self._config.get("llm_express", {})
        if name not in section.get("models", []):
            raise ConfigurationError(f"Unknown LLM Express model '{name}'")

        base_url = self._env(section.get("base_url_env"))
        if not base_url:
            raise ConfigurationError(
                f"Environment variable '{section.get('base_url_env')}' must "
                "hold the LLM Express base URL",
                model=name,
            )

        return ModelConfiguration(
            model=name,
            base_url=base_url,
            api_key=self._require_env(section.get("api_key_env"), name),
            timeout=float(section.get("timeout", 60.0)),
        )

    def _env(self, key: str | None) -> str | None:
        if not key:
            return None
        return self._environ.get(key) or None

    def _require_env(self, key: str | None, model: str) -> str:
        value = self._env(key)
        if not value:
            raise ConfigurationError(
                f"API key '{key}' not found in environment variables "
                f"for model '{model}'",
                model=model,
            )
        return value
