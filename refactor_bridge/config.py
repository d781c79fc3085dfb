"""Configuration loader for the refactor bridge."""

import os
from pathlib import Path
from typing import Any, Dict, Optional
import yaml
from dotenv import load_dotenv, find_dotenv

from refactor_bridge.errors import ConfigurationError

# Load environment variables from .env file in project root
dotenv_path = find_dotenv(usecwd=True)
if dotenv_path:
    load_dotenv(dotenv_path)
else:
    # Fallback: try loading from current directory
    load_dotenv()


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Load configuration from YAML file.

        Without a config file every setting comes from the environment or its
        default.

        Args:
            config_path: Path to config.yaml (defaults to ./config.yaml)
        """
        explicit = config_path is not None
        if config_path is None:
            config_path = os.path.join(os.getcwd(), "config.yaml")

        if not os.path.exists(config_path):
            # Try config.example.yaml
            example_path = config_path.replace("config.yaml", "config.example.yaml")
            if os.path.exists(example_path):
                config_path = example_path
            elif explicit:
                raise ConfigurationError(f"Configuration file not found: {config_path}")
            else:
                config_path = None

        self.config_path = config_path
        raw: Dict[str, Any] = {}
        if config_path:
            with open(config_path, "r") as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        # Substitute environment variables
        self._config = self._substitute_env_vars(raw)

    def _substitute_env_vars(self, obj: Any) -> Any:
        """Recursively substitute ${ENV_VAR} patterns with environment variables."""
        if isinstance(obj, dict):
            return {k: self._substitute_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._substitute_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            # Unset variables become None so defaults apply
            if obj.startswith("${") and obj.endswith("}"):
                var_name = obj[2:-1]
                return os.getenv(var_name)
            return obj
        return obj

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key (e.g., "github.api_url")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return default if value is None else value

    def _get_env(self, key: str, env_var: str, default: Any = None) -> Any:
        """Look up ``key``, then ``env_var``, then fall back to ``default``."""
        value = self.get(key)
        if value is None or value == "":
            value = os.getenv(env_var)
        if value is None or value == "":
            return default
        return value

    def _get_number(self, key: str, env_var: str, default: float, cast=float):
        value = self._get_env(key, env_var, default)
        try:
            number = cast(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{key} must be a number, got {value!r}") from e
        if number < 0:
            raise ConfigurationError(f"{key} must not be negative")
        return number

    def get_all(self) -> Dict[str, Any]:
        """Get complete configuration dictionary."""
        return self._config

    # Convenience properties

    @property
    def github_token(self) -> str:
        token = self._get_env("github.token", "GITHUB_TOKEN", "")
        if not token:
            raise ConfigurationError("GITHUB_TOKEN environment variable is required")
        return token

    @property
    def github_api_url(self) -> str:
        return self._get_env("github.api_url", "GITHUB_API_URL", "https://api.github.com")

    @property
    def github_host(self) -> str:
        return self._get_env("github.host", "GITHUB_HOST", "github.com")

    @property
    def branch_prefix(self) -> str:
        return self.get("github.branch_prefix", "refactor/auto-")

    @property
    def retry_attempts(self) -> int:
        attempts = self._get_number("github.retry.max_attempts", "GITHUB_RETRY_ATTEMPTS", 3, int)
        if attempts < 1:
            raise ConfigurationError("github.retry.max_attempts must be at least 1")
        return attempts

    @property
    def retry_delay(self) -> float:
        return self._get_number("github.retry.delay_seconds", "GITHUB_RETRY_DELAY", 5.0)

    @property
    def fork_poll_interval(self) -> float:
        return self._get_number("github.fork.poll_interval_seconds", "FORK_POLL_INTERVAL", 2.0)

    @property
    def fork_poll_attempts(self) -> int:
        attempts = self._get_number("github.fork.poll_attempts", "FORK_POLL_ATTEMPTS", 30, int)
        if attempts < 1:
            raise ConfigurationError("github.fork.poll_attempts must be at least 1")
        return attempts

    @property
    def commit_author_name(self) -> str:
        return self.get("git.author_name", "Refactoring Bot")

    @property
    def commit_author_email(self) -> str:
        return self.get("git.author_email", "refactoring-bot@example.com")

    @property
    def claude_code_path(self) -> str:
        return self._get_env("refactoring.claude_code_path", "CLAUDE_CODE_PATH", "claude")

    @property
    def transform_prompt(self) -> str:
        return self.get("refactoring.prompt", "Run the representable-valid agent")

    @property
    def transform_model(self) -> str:
        return self.get("refactoring.model", "sonnet")

    @property
    def transform_timeout(self) -> float:
        return self._get_number("refactoring.timeout_seconds", "REFACTOR_TIMEOUT", 3600.0)

    @property
    def nia_api_key(self) -> Optional[str]:
        return self._get_env("refactoring.nia_api_key", "NIA_API_KEY")

    @property
    def assets_root(self) -> Path:
        return Path(self._get_env("refactoring.assets_root", "REFACTOR_ASSETS_ROOT", os.getcwd()))

    @property
    def server_host(self) -> str:
        return self._get_env("server.host", "HOST", "0.0.0.0")

    @property
    def server_port(self) -> int:
        return self._get_number("server.port", "PORT", 8080, int)

    @property
    def debug(self) -> bool:
        return bool(self.get("development.debug", False))


# Global config instance
_config: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get or create global configuration instance."""
    global _config
    if _config is None:
        _config = Config(config_path)
    return _config


def reset_config() -> None:
    """Forget the global configuration instance."""
    global _config
    _config = None
