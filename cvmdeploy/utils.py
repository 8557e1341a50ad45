"""Utility functions for cvmdeploy"""

import math
import re
from pathlib import Path
from typing import Optional

from cvmdeploy.constants import (
    MAX_DISK_SIZE_GB,
    MEMORY_STEP_MB,
    NAME_MAX_LENGTH,
    NAME_MIN_LENGTH,
    NAME_SUFFIX,
)
from cvmdeploy.exceptions import ValidationError

SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([KkMmGgTt]?[Bb]?)$")

SIZE_UNITS = {
    "": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
}


def parse_size_with_unit(value: str, default_unit: str = "B") -> int:
    """
    Parse a size such as '2G', '500MB' or '1T' into bytes.

    Args:
        value: Size string, unit optional
        default_unit: Unit applied when none is given (B, KB, MB, GB, TB)

    Returns:
        Size in bytes

    Raises:
        ValidationError: If the format or unit is not recognised
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Invalid size: must be a non-empty string")

    match = SIZE_PATTERN.match(value.strip())
    if not match:
        raise ValidationError(
            f"Invalid size format: {value}",
            context="Expected <number>[unit], e.g. 2G, 500MB, 1T",
        )

    number = float(match.group(1))
    unit = (match.group(2) or default_unit).upper().replace("B", "")
    if unit not in SIZE_UNITS:
        raise ValidationError(
            f"Unsupported unit: {unit}",
            context="Supported units: B, K/KB, M/MB, G/GB, T/TB",
        )

    return _round_half_up(number * SIZE_UNITS[unit])


def parse_memory_input(value: str) -> int:
    """Parse memory (default unit MB) into MB; must be a multiple of 1024MB."""
    memory_mb = _round_half_up(parse_size_with_unit(value, "MB") / 1024**2)
    if memory_mb <= 0 or memory_mb % MEMORY_STEP_MB != 0:
        raise ValidationError(
            f"Memory must be a multiple of 1GB (1024MB). Got: {memory_mb}MB"
        )
    return memory_mb


def parse_disk_size_input(value: str) -> int:
    """Parse disk size (default unit GB) into GB; at most 250GB."""
    disk_gb = _round_half_up(parse_size_with_unit(value, "GB") / 1024**3)
    if disk_gb <= 0:
        raise ValidationError(f"Disk size must be at least 1GB. Got: {value}")
    if disk_gb > MAX_DISK_SIZE_GB:
        raise ValidationError(
            f"Maximum disk size is {MAX_DISK_SIZE_GB}GB. Got: {disk_gb}GB"
        )
    return disk_gb


def parse_vcpu_input(value: str) -> int:
    """Parse a vCPU count."""
    try:
        vcpu = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid vCPU count: {value}")
    if vcpu <= 0:
        raise ValidationError(f"vCPU count must be positive. Got: {vcpu}")
    return vcpu


def default_deployment_name(directory: Optional[Path] = None) -> str:
    """
    Derive a CVM name from a directory name.

    Lowercases, replaces anything outside [a-z0-9_-] with '-', pads short
    names with '-cvm' and truncates to 20 characters.
    """
    folder = (directory or Path.cwd()).name.lower()
    name = re.sub(r"[^a-z0-9_-]", "-", folder)
    if len(name) < NAME_MIN_LENGTH:
        name = name + NAME_SUFFIX
    return name[:NAME_MAX_LENGTH]


def strip_hex_prefix(value: str) -> str:
    value = value.strip()
    if value[:2].lower() == "0x":
        return value[2:]
    return value


def ensure_hex_prefix(value: str) -> str:
    return "0x" + strip_hex_prefix(value)


def compact_uuid(value: str) -> str:
    """CVM ids are shown and addressed without dashes."""
    return value.replace("-", "")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
