"""
Secret Models

Dataclass models for environment variables sent to a CVM.
"""

from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class EnvVar:
    """A single environment variable bound for the encrypted payload."""

    key: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key, "value": self.value}

    def __repr__(self) -> str:
        # Never expose the value
        return f"EnvVar(key={self.key})"


def env_keys(env_vars: List[EnvVar]) -> List[str]:
    """Keys of a parsed env set, in order."""
    return [env.key for env in env_vars]
