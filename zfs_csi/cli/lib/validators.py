"""
Input validation functions.
"""

import re

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")

COMPRESSION_VALUES = frozenset(
    ["on", "off", "lz4", "lzjb", "zle", "gzip", "zstd", "zstd-fast"]
    + [f"gzip-{n}" for n in range(1, 10)]
    + [f"zstd-{n}" for n in range(1, 20)]
)

DEDUP_VALUES = frozenset(
    ["on", "off", "verify", "sha256", "sha256,verify", "sha512", "sha512,verify", "skein", "edonr", "blake3"]
)


def validate_name(name: str) -> None:
    """
    Validate a dataset or pool name.

    Args:
        name: Name to validate

    Raises:
        ValueError: If name is invalid
    """
    if not name:
        raise ValueError("Name cannot be empty")

    if len(name) > 255:
        raise ValueError("Name must be between 1 and 255 characters")

    if not NAME_PATTERN.match(name):
        raise ValueError("Name must start with alphanumeric and contain only alphanumeric, dots, underscores, or hyphens")


def validate_size(size: int) -> None:
    """
    Validate a volume size in bytes.

    Raises:
        ValueError: If size is not a positive integer
    """
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise ValueError("Size must be a positive number of bytes")


def validate_compression(value: str) -> None:
    """Empty means the property is left unset."""
    if value and value not in COMPRESSION_VALUES:
        raise ValueError(f"Unsupported compression value: {value}")


def validate_dedup(value: str) -> None:
    if value and value not in DEDUP_VALUES:
        raise ValueError(f"Unsupported dedup value: {value}")


def validate_pool(pool: str) -> None:
    """
    Validate a pool, optionally with parent datasets (e.g., "tank/k8s").

    Raises:
        ValueError: If any component is invalid
    """
    if not pool:
        raise ValueError("Pool cannot be empty")
    for component in pool.split("/"):
        validate_name(component)


SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}


def parse_size(value: str) -> int:
    """
    Parse a size such as "10737418240", "512M" or "10G" (binary units) into bytes.

    Raises:
        ValueError: If the value is not a positive size
    """
    match = re.match(r"^\s*(\d+)\s*([KMGT]?)i?B?\s*$", value, re.IGNORECASE)
    if not match:
        raise ValueError(f"Invalid size: {value}")
    size = int(match.group(1)) * SIZE_UNITS[match.group(2).upper()]
    validate_size(size)
    return size
