"""Core parsing, encryption, resolution and configuration"""

from .env_parser import parse_env, load_env_file
from .secret_cipher import encrypt_env_vars
from .resource_resolver import ResourceResolver
from .config_loader import ConfigLoader, Settings, load_settings

__all__ = [
    "parse_env",
    "load_env_file",
    "encrypt_env_vars",
    "ResourceResolver",
    "ConfigLoader",
    "Settings",
    "load_settings",
]
