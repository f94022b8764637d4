"""
BrickLedger - Registry Schema Models

This module defines the Pydantic models for build records, mint requests and
the reports produced by the reconciliation operations.

Stored records are decoded here, once, at the storage boundary: brick lists
that were persisted as JSON strings and legacy field names written by older
versions of the web app are normalized into one in-memory shape.
"""

import json
import logging
import math
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

DEFAULT_BRICK_COLOR = "#9CA3AF"
DEFAULT_BUILD_NAME = "Untitled Build"
DEFAULT_BASE_SIZE = 16

# Canonical resting position of a single brick at the origin
ORIGIN_POSITION = (0.0, 0.5, 0.0)


class BuildKind(IntEnum):
    """Build kind tags as stored on-chain."""
    BRICK = 0
    BUILD = 1


def _alias(*names: str) -> Dict[str, Any]:
    """Accept every listed name on input and write the first one on output."""
    return {
        "validation_alias": AliasChoices(*names),
        "serialization_alias": names[0],
    }


def normalize_token_id(value: Any) -> Optional[str]:
    """Token ids are stored as strings but may arrive as ints."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return str(value)


class Brick(BaseModel):
    """A unit brick placed in a build."""

    model_config = ConfigDict(extra="ignore")

    color: str = Field(default=DEFAULT_BRICK_COLOR)
    position: Tuple[float, float, float] = Field(default=ORIGIN_POSITION)
    width: int = Field(default=1, ge=1)
    depth: int = Field(default=1, ge=1)
    nft_group_id: Optional[str] = Field(None, **_alias("nftGroupId", "nft_group_id"))


def decode_bricks(raw: Any) -> List[Brick]:
    """
    Decode a stored brick list.

    The field may hold a native list or a JSON encoded string. Anything that
    does not decode to a list becomes an empty list; individual entries that
    fail validation are dropped.
    """
    if raw is None:
        return []

    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse bricks JSON: {e}")
            return []

    if not isinstance(raw, list):
        logger.warning(f"Bricks field is not a list (got {type(raw).__name__}), using empty list")
        return []

    bricks = []
    for index, item in enumerate(raw):
        if isinstance(item, Brick):
            bricks.append(item)
            continue
        try:
            bricks.append(Brick.model_validate(item))
        except PydanticValidationError as e:
            logger.warning(f"Dropping invalid brick at index {index}: {e.error_count()} error(s)")
    return bricks


def unique_color_count(bricks: List[Brick]) -> int:
    return len({brick.color for brick in bricks})


def compute_builder_weight(mass: float, colors: int) -> float:
    """Builder weight: ln(1 + mass) * ln(2 + colors), rounded to 2 decimals."""
    return round(math.log(1 + mass) * math.log(2 + colors), 2)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BuildRecord(BaseModel):
    """Canonical unit of geometry and provenance for a minted token."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    name: str = Field(default=DEFAULT_BUILD_NAME)
    creator: Optional[str] = None
    kind: int = Field(default=BuildKind.BUILD, ge=0)
    bricks: List[Brick] = Field(default_factory=list)

    # kind 0 geometry
    width: Optional[int] = Field(None, **_alias("width", "brickWidth"))
    depth: Optional[int] = Field(None, **_alias("depth", "brickDepth"))
    density: Optional[int] = None
    spec_key: Optional[str] = Field(None, **_alias("specKey", "spec_key"))

    # Derived scores
    mass: Optional[float] = None
    unique_color_count: Optional[int] = Field(None, **_alias("uniqueColorCount", "unique_color_count", "colors"))
    builder_weight: Optional[float] = Field(None, **_alias("builderWeight", "builder_weight", "bw_score"))

    # Chain linkage
    token_id: Optional[str] = Field(None, **_alias("tokenId", "token_id"))
    content_hash: Optional[str] = Field(None, **_alias("contentHash", "content_hash", "buildHash"))
    mint_tx_hash: Optional[str] = Field(None, **_alias("mintTxHash", "mint_tx_hash", "txHash"))
    minted_at: Optional[str] = Field(None, **_alias("mintedAt", "minted_at"))

    base_width: int = Field(default=DEFAULT_BASE_SIZE, **_alias("baseWidth", "base_width"))
    base_depth: int = Field(default=DEFAULT_BASE_SIZE, **_alias("baseDepth", "base_depth"))
    component_token_ids: List[str] = Field(
        default_factory=list, **_alias("componentTokenIds", "component_token_ids", "componentBuildIds")
    )
    timestamp: Optional[int] = None

    @field_validator("bricks", mode="before")
    @classmethod
    def validate_bricks(cls, v):
        """Normalize the stored brick list to a native list."""
        return decode_bricks(v)

    @field_validator("token_id", mode="before")
    @classmethod
    def validate_token_id(cls, v):
        """Tolerate numeric token ids."""
        return normalize_token_id(v)

    @field_validator("component_token_ids", mode="before")
    @classmethod
    def validate_component_token_ids(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            return []
        return [normalize_token_id(item) for item in v if normalize_token_id(item)]

    @field_validator("creator")
    @classmethod
    def validate_creator(cls, v):
        """Addresses are compared case-insensitively."""
        return v.lower() if v else v

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v):
        return v or DEFAULT_BUILD_NAME

    def matches_token(self, token_id: Any) -> bool:
        """Compare the embedded token id tolerantly (``5`` == ``"5"`` == ``"05"``)."""
        mine = normalize_token_id(self.token_id)
        other = normalize_token_id(token_id)
        if mine is None or other is None:
            return False
        if mine == other:
            return True
        try:
            return int(mine) == int(other)
        except ValueError:
            return False

    def is_brick(self) -> bool:
        return self.kind == BuildKind.BRICK

    def to_storage(self) -> Dict[str, Any]:
        """Serialize with the camelCase field names the web app reads."""
        return self.model_dump(by_alias=True, mode="json")


class MintRequest(BaseModel):
    """Payload submitted after a successful on-chain mint."""

    model_config = ConfigDict(extra="ignore")

    token_id: Optional[str] = Field(None, **_alias("tokenId", "token_id"))
    content_hash: Optional[str] = Field(None, **_alias("contentHash", "content_hash", "buildHash"))
    minter: Optional[str] = Field(None, **_alias("minter", "walletAddress", "wallet_address"))
    kind: int = Field(default=BuildKind.BUILD, ge=0)
    name: Optional[str] = Field(None, **_alias("name", "buildName"))
    bricks: List[Brick] = Field(default_factory=list)

    width: Optional[int] = Field(None, strict=True, **_alias("width", "brickWidth"))
    depth: Optional[int] = Field(None, strict=True, **_alias("depth", "brickDepth"))
    density: Optional[int] = Field(None, strict=True)

    tx_hash: Optional[str] = Field(None, **_alias("txHash", "tx_hash", "mintTxHash"))
    mass: Optional[float] = Field(None, ge=0)
    unique_color_count: Optional[int] = Field(None, ge=0, **_alias("uniqueColorCount", "unique_color_count", "colors"))
    builder_weight: Optional[float] = Field(None, **_alias("builderWeight", "builder_weight", "bw_score"))
    base_width: Optional[int] = Field(None, ge=1, **_alias("baseWidth", "base_width"))
    base_depth: Optional[int] = Field(None, ge=1, **_alias("baseDepth", "base_depth"))
    component_token_ids: List[str] = Field(
        default_factory=list, **_alias("componentTokenIds", "component_token_ids", "componentBuildIds")
    )

    @field_validator("token_id", mode="before")
    @classmethod
    def validate_token_id(cls, v):
        return normalize_token_id(v)

    @field_validator("bricks", mode="before")
    @classmethod
    def validate_bricks(cls, v):
        return decode_bricks(v)

    @field_validator("content_hash", "minter", "tx_hash", mode="before")
    @classmethod
    def strip_strings(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("component_token_ids", mode="before")
    @classmethod
    def validate_component_token_ids(cls, v):
        if not v:
            return []
        return [normalize_token_id(item) for item in v if normalize_token_id(item)]


class ReportModel(BaseModel):
    """Base for operation reports, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class RepairCorrection(ReportModel):
    token_id: str
    old_build_id: str
    new_build_id: str


class RepairSkip(ReportModel):
    build_id: str
    token_ids: List[str]
    reason: str


class RepairReport(ReportModel):
    """Result of a duplicate repair pass."""
    fixed: List[RepairCorrection] = Field(default_factory=list)
    skipped: List[RepairSkip] = Field(default_factory=list)
    failures: List[Dict[str, Any]] = Field(default_factory=list)
    duplicate_groups: int = 0


class ReconcileReport(ReportModel):
    """Result of reconciling the minted set against chain ownership."""
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    unverified: List[str] = Field(default_factory=list)
    chain_token_ids: List[str] = Field(default_factory=list)
    highest_token_id: int = 0


class BackfillReport(ReportModel):
    """Result of replaying chain mint events into the cache."""
    scanned: int = 0
    added: int = 0
    burned: int = 0
    already_exists: int = 0
    errors: List[str] = Field(default_factory=list)
    from_block: int = 0
    to_block: int = 0


class PurgeReport(ReportModel):
    """Audit record of an admin purge."""
    success: bool = True
    timestamp: str = Field(default_factory=utc_now_iso)
    operator: str = "unknown"
    keys_deleted: int = 0
    deleted_patterns: Dict[str, int] = Field(default_factory=dict)


class ServiceError(ReportModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class ServiceResult(ReportModel):
    """Typed result returned across the API boundary."""
    ok: bool
    data: Any = None
    error: Optional[ServiceError] = None
