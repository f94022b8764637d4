"""
Unit tests for the brick specification key codec.
"""

import pytest

from registry.exceptions import ValidationError
from registry.spec_key import (
    VALID_DENSITIES, compute_brick_mass, compute_spec_key, encode_spec,
    keccak256, normalize_brick_label, validate_brick_params,
)


class TestKeccak:
    """Test the hash primitive."""

    def test_empty_input(self):
        """Keccak-256 of the empty string is the well-known Ethereum constant."""
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    def test_transfer_event_signature(self):
        """Hashes event signatures the same way the EVM does."""
        digest = keccak256(b"Transfer(address,address,uint256)").hex()
        assert digest == "ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class TestSpecKey:
    """Test spec key computation."""

    def test_format(self):
        """Keys are 0x-prefixed 32-byte hex strings."""
        key = compute_spec_key(2, 3, 8)
        assert key.startswith("0x")
        assert len(key) == 66
        int(key, 16)

    def test_orientation_invariant(self):
        """Width and depth are interchangeable."""
        assert compute_spec_key(1, 3, 8) == compute_spec_key(3, 1, 8)
        assert compute_spec_key(20, 7, 125) == compute_spec_key(7, 20, 125)

    def test_density_distinguishes(self):
        """Same footprint, different density, different key."""
        assert compute_spec_key(2, 2, 8) != compute_spec_key(2, 2, 27)

    def test_packed_encoding(self):
        """Encoding matches abi.encodePacked(uint8, uint8, uint16)."""
        assert encode_spec(3, 1, 8) == bytes([1, 3, 0, 8])
        assert encode_spec(20, 20, 125) == bytes([20, 20, 0, 125])
        assert compute_spec_key(3, 1, 8) == "0x" + keccak256(bytes([1, 3, 0, 8])).hex()

    @pytest.mark.parametrize("density", VALID_DENSITIES)
    def test_all_cube_densities_accepted(self, density):
        """Every cube density produces a distinct key."""
        assert compute_spec_key(1, 1, density) != compute_spec_key(1, 2, density)

    @pytest.mark.parametrize("width,depth,density", [
        (0, 1, 8),
        (21, 1, 8),
        (1, -3, 8),
        (2.5, 1, 8),
        ("2", 1, 8),
        (True, 1, 8),
        (1, None, 8),
        (1, 1, 2),
        (1, 1, 0),
        (1, 1, 216),
        (1, 1, 8.0),
    ])
    def test_invalid_params(self, width, depth, density):
        """Out of range, non-integer and non-cube inputs are rejected."""
        with pytest.raises(ValidationError):
            compute_spec_key(width, depth, density)

    def test_validation_error_names_field(self):
        """The failing field is reported in details."""
        with pytest.raises(ValidationError) as exc_info:
            validate_brick_params(1, 1, 9)
        assert exc_info.value.details["field"] == "density"


class TestBrickHelpers:
    """Test mass and label helpers."""

    def test_mass(self):
        """Mass is width * depth * density."""
        assert compute_brick_mass(2, 3, 8) == 48
        assert compute_brick_mass(1, 1, 1) == 1

    def test_mass_validates(self):
        """Mass refuses invalid specs."""
        with pytest.raises(ValidationError):
            compute_brick_mass(2, 3, 10)

    def test_label_normalized(self):
        """Labels put the smaller dimension first."""
        assert normalize_brick_label(3, 1, 8) == "1x3-D8"
        assert normalize_brick_label(1, 3, 8) == "1x3-D8"
