"""Configuration loading for cvmdeploy"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values

from cvmdeploy.constants import (
    CONFIG_FILE_NAME,
    CREDENTIALS_FILE_NAME,
    DEFAULT_CLOUD_API_URL,
    DEFAULT_CLOUD_URL,
    DEFAULT_CONFIG_DIR,
    DEFAULT_RECEIPT_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    ENV_API_KEY,
    ENV_API_URL,
    ENV_CLOUD_URL,
    ENV_CONFIG_DIR,
    ENV_PRIVATE_KEY,
    LOGS_DIR_NAME,
    SUPPORTED_CHAINS,
)
from cvmdeploy.exceptions import ValidationError


@dataclass
class Settings:
    """Resolved runtime settings for one invocation"""

    api_url: str = DEFAULT_CLOUD_API_URL
    cloud_url: str = DEFAULT_CLOUD_URL
    api_key: Optional[str] = None
    private_key: Optional[str] = None
    config_dir: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_DIR).expanduser())
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT
    rpc_urls: Dict[int, str] = field(default_factory=dict)

    @property
    def log_dir(self) -> Path:
        return self.config_dir / LOGS_DIR_NAME

    def rpc_url_for(self, chain_id: Optional[int], override: Optional[str] = None) -> str:
        """
        Pick the RPC endpoint for a chain.

        Explicit override first, then the config file, then the built-in
        default for known chains.

        Raises:
            ValidationError: If no endpoint is known for the chain
        """
        if override:
            return override
        if chain_id is not None and chain_id in self.rpc_urls:
            return self.rpc_urls[chain_id]
        if chain_id in SUPPORTED_CHAINS:
            return SUPPORTED_CHAINS[chain_id]["rpc_url"]
        raise ValidationError(
            f"No RPC URL known for chain {chain_id}",
            context="Pass --rpc-url or add it under rpc_urls in config.yml",
        )

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Copy with non-empty CLI values applied."""
        values = {k: v for k, v in overrides.items() if v not in (None, "")}
        data = dict(self.__dict__)
        data.update(values)
        return Settings(**data)

    def __repr__(self) -> str:
        # Credentials stay out of reprs and logs
        return (
            f"Settings(api_url={self.api_url}, api_key={'set' if self.api_key else 'unset'}, "
            f"private_key={'set' if self.private_key else 'unset'})"
        )


class ConfigLoader:
    """Loads settings from the environment, ~/.cvmdeploy/.env and config.yml"""

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.environ = dict(os.environ if environ is None else environ)
        if config_dir is None:
            config_dir = Path(
                self.environ.get(ENV_CONFIG_DIR, DEFAULT_CONFIG_DIR)
            ).expanduser()
        self.config_dir = Path(config_dir)

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    @property
    def credentials_path(self) -> Path:
        return self.config_dir / CREDENTIALS_FILE_NAME

    def load(self) -> Settings:
        """
        Build Settings.

        Precedence (highest first): process environment, credentials .env
        file, config.yml, built-in defaults. The private key is only read
        from the process environment.
        """
        file_config = self._load_yaml()
        credentials = self._load_credentials()

        def pick(env_name: str, yaml_key: str, default: Any) -> Any:
            if self.environ.get(env_name):
                return self.environ[env_name]
            if credentials.get(env_name):
                return credentials[env_name]
            return file_config.get(yaml_key, default)

        return Settings(
            api_url=str(pick(ENV_API_URL, "api_url", DEFAULT_CLOUD_API_URL)).rstrip("/"),
            cloud_url=str(pick(ENV_CLOUD_URL, "cloud_url", DEFAULT_CLOUD_URL)).rstrip("/"),
            api_key=pick(ENV_API_KEY, "api_key", None),
            private_key=self.environ.get(ENV_PRIVATE_KEY) or None,
            config_dir=self.config_dir,
            request_timeout=float(
                file_config.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)
            ),
            receipt_timeout=float(
                file_config.get("receipt_timeout", DEFAULT_RECEIPT_TIMEOUT)
            ),
            rpc_urls=self._parse_rpc_urls(file_config.get("rpc_urls")),
        )

    def _load_yaml(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ValidationError(
                f"Cannot load {self.config_path}", context=str(e)
            ) from e
        if not isinstance(data, dict):
            raise ValidationError(f"{self.config_path} must contain a mapping")
        return data

    def _load_credentials(self) -> Dict[str, str]:
        if not self.credentials_path.exists():
            return {}
        values = dotenv_values(self.credentials_path)
        return {k: v for k, v in values.items() if v is not None}

    @staticmethod
    def _parse_rpc_urls(raw: Any) -> Dict[int, str]:
        if not raw:
            return {}
        if not isinstance(raw, dict):
            raise ValidationError("rpc_urls in config.yml must map chain ids to URLs")
        try:
            return {int(chain_id): str(url) for chain_id, url in raw.items()}
        except (TypeError, ValueError) as e:
            raise ValidationError("rpc_urls keys must be chain ids", context=str(e)) from e


def load_settings(**overrides: Any) -> Settings:
    """Load settings and apply CLI overrides."""
    return ConfigLoader().load().with_overrides(**overrides)
