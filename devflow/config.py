# DevFlow configuration
# Defaults live here; override via devflow.yaml, then environment variables.

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "devflow.yaml"


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class Config:
    """Runtime configuration for the DevFlow server."""

    # Storage
    db_path: str = "~/.local/share/devflow/devflow.db"

    # API
    api_secret: str = ""
    default_user: str = "local"

    # LLM (OpenAI-compatible chat completions)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    llm_timeout_secs: float = 60.0

    # GitHub import
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    github_timeout_secs: float = 15.0
    github_max_file_bytes: int = 1_000_000

    # Board
    drag_activation_distance: float = 8.0

    # Insights
    insight_ttl_days: int = 7

    # Environment variable → field
    ENV_OVERRIDES = {
        "DEVFLOW_DB": "db_path",
        "DEVFLOW_API_SECRET": "api_secret",
        "DEVFLOW_DEFAULT_USER": "default_user",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_BASE_URL": "openai_base_url",
        "DEVFLOW_MODEL": "openai_model",
        "GITHUB_TOKEN": "github_token",
    }

    def resolve_paths(self):
        """Expand ~ in filesystem paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ=None):
        environ = os.environ if environ is None else environ
        for env_name, attr in self.ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                setattr(self, attr, value)

    def coerce_types(self):
        """Cast YAML/env scalars to the declared field types."""
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type is str:
                if value is None or isinstance(value, (dict, list)):
                    raise ConfigError(f"{f.name} must be a string, got {value!r}")
                value = str(value)
            elif f.type in (int, float):
                if isinstance(value, bool):
                    raise ConfigError(f"{f.name} must be a number, got {value!r}")
                try:
                    value = f.type(value)
                except (TypeError, ValueError):
                    raise ConfigError(f"{f.name} must be a number, got {value!r}")
            setattr(self, f.name, value)

    def validate(self):
        if self.drag_activation_distance < 0:
            raise ConfigError("drag_activation_distance must be >= 0")
        if self.github_max_file_bytes <= 0:
            raise ConfigError("github_max_file_bytes must be positive")
        if self.insight_ttl_days <= 0:
            raise ConfigError("insight_ttl_days must be positive")

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """Load config from YAML file, then environment, falling back to defaults."""
        environ = os.environ if environ is None else environ
        cfg_path = Path(path or environ.get("DEVFLOW_CONFIG") or CONFIG_PATH)
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
            unknown = set(data) - known
            if unknown:
                logger.warning(f"Ignoring unknown config keys in {cfg_path}: {sorted(unknown)}")
            cfg = cls(**{k: v for k, v in data.items() if k in known})
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.coerce_types()
        cfg.resolve_paths()
        cfg.validate()
        return cfg
