"""
BrickLedger - Brick Specification Key Codec

Computes the canonical key for a brick specification (width x depth x density).
The key must agree bit-for-bit with the BuildNFT contract, which hashes
``keccak256(abi.encodePacked(uint8 minDim, uint8 maxDim, uint16 density))``.
"""

import struct
from typing import Any, Tuple

from Crypto.Hash import keccak

from .exceptions import ValidationError

# Cube numbers 1^3 .. 5^3
VALID_DENSITIES = (1, 8, 27, 64, 125)

MIN_DIMENSION = 1
MAX_DIMENSION = 20


def keccak256(data: bytes) -> bytes:
    """Return the Ethereum flavour of Keccak-256 (not NIST SHA3-256)."""
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_valid_dimension(value: Any) -> bool:
    return _is_integer(value) and MIN_DIMENSION <= value <= MAX_DIMENSION


def is_valid_density(value: Any) -> bool:
    return _is_integer(value) and value in VALID_DENSITIES


def validate_brick_params(width: Any, depth: Any, density: Any) -> None:
    """
    Validate brick parameters.

    Raises:
        ValidationError: If a dimension is not an integer in [1, 20] or the
            density is not one of the allowed cube numbers.
    """
    if not is_valid_dimension(width):
        raise ValidationError(
            f"Invalid width: {width!r} (must be an integer {MIN_DIMENSION}-{MAX_DIMENSION})",
            {"field": "width", "value": width},
        )
    if not is_valid_dimension(depth):
        raise ValidationError(
            f"Invalid depth: {depth!r} (must be an integer {MIN_DIMENSION}-{MAX_DIMENSION})",
            {"field": "depth", "value": depth},
        )
    if not is_valid_density(density):
        allowed = ", ".join(str(d) for d in VALID_DENSITIES)
        raise ValidationError(
            f"Invalid density: {density!r} (must be one of {allowed})",
            {"field": "density", "value": density},
        )


def normalize_dimensions(width: int, depth: int) -> Tuple[int, int]:
    """A brick is orientation invariant: 1x3 and 3x1 are the same spec."""
    return min(width, depth), max(width, depth)


def encode_spec(width: int, depth: int, density: int) -> bytes:
    """Pack a normalized spec the way ``abi.encodePacked(uint8, uint8, uint16)`` does."""
    validate_brick_params(width, depth, density)
    min_dim, max_dim = normalize_dimensions(width, depth)
    return struct.pack(">BBH", min_dim, max_dim, density)


def compute_spec_key(width: int, depth: int, density: int) -> str:
    """Compute the 0x-prefixed spec key for a brick."""
    return "0x" + keccak256(encode_spec(width, depth, density)).hex()


def compute_brick_mass(width: int, depth: int, density: int) -> int:
    """Canonical brick mass: width * depth * density."""
    validate_brick_params(width, depth, density)
    return width * depth * density


def normalize_brick_label(width: int, depth: int, density: int) -> str:
    """Human readable spec label, e.g. ``2x3-D8``."""
    min_dim, max_dim = normalize_dimensions(width, depth)
    return f"{min_dim}x{max_dim}-D{density}"
