"""
BrickLedger - Mint Registrar

Registers a freshly minted token in the cache: validates the request,
enforces brick specification uniqueness, canonicalizes geometry, derives
scores and persists the record plus its reverse indices.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .build_store import BuildRecordStore
from .exceptions import DuplicateSpecError, MissingFieldError, ValidationError
from .schema import (
    DEFAULT_BASE_SIZE, DEFAULT_BRICK_COLOR, ORIGIN_POSITION,
    Brick, BuildKind, BuildRecord, MintRequest,
    compute_builder_weight, unique_color_count,
)
from .spec_key import compute_brick_mass, compute_spec_key, validate_brick_params
from .write_plan import WritePlan


def parse_mint_request(payload: Union[MintRequest, Dict[str, Any]]) -> MintRequest:
    """Build a MintRequest, translating schema errors into ValidationError."""
    if isinstance(payload, MintRequest):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError("Mint request must be a JSON object")
    try:
        return MintRequest.model_validate(payload)
    except PydanticValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError(f"Invalid mint request: {'; '.join(problems)}", {"errors": problems})


def validate_token_id(token_id: str) -> str:
    """Token ids are positive decimal integers."""
    if not token_id.isdigit() or int(token_id) < 1:
        raise ValidationError(f"Invalid token id: {token_id!r}", {"field": "tokenId"})
    return str(int(token_id))


class MintRegistrar:
    """Validates and persists mints."""

    def __init__(self, store: BuildRecordStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def _check_required(self, request: MintRequest) -> None:
        missing = []
        if not request.token_id:
            missing.append("tokenId")
        if not request.content_hash:
            missing.append("contentHash")
        if not request.minter:
            missing.append("minter")
        if missing:
            raise MissingFieldError(missing)

    def check_brick_spec(self, token_id: str, width: Any, depth: Any, density: Any) -> str:
        """
        Validate a brick spec and make sure no other token minted it.

        Returns:
            The spec key

        Raises:
            ValidationError: If the spec is malformed or density is missing
            DuplicateSpecError: If another token already holds the spec
        """
        if density is None:
            raise ValidationError("Density is required for brick mints", {"field": "density"})
        if width is None or depth is None:
            raise ValidationError("Width and depth are required for brick mints", {"field": "width/depth"})

        validate_brick_params(width, depth, density)
        spec_key = compute_spec_key(width, depth, density)

        existing_token = self.store.get_spec_token_id(spec_key)
        if existing_token is not None and existing_token != token_id:
            self.logger.warning(
                f"Rejecting mint of token {token_id}: spec {width}x{depth}-D{density} "
                f"already minted as token {existing_token}"
            )
            raise DuplicateSpecError(spec_key, existing_token)

        return spec_key

    def canonical_brick_geometry(self, width: int, depth: int, submitted: List[Brick]) -> List[Brick]:
        """Collapse whatever was submitted into one brick at the origin."""
        color = submitted[0].color if submitted else DEFAULT_BRICK_COLOR
        if len(submitted) > 1:
            self.logger.debug(f"Discarding {len(submitted)} provenance bricks for canonical brick geometry")
        return [Brick(color=color, position=ORIGIN_POSITION, width=width, depth=depth)]

    def build_record(self, request: MintRequest, token_id: str, spec_key: Optional[str]) -> BuildRecord:
        """Assemble the BuildRecord for a validated request."""
        now = self.clock()
        timestamp_ms = int(now * 1000)
        build_id = f"{token_id}_{timestamp_ms}_{request.content_hash[:8]}"

        is_brick = request.kind == BuildKind.BRICK
        if is_brick:
            bricks = self.canonical_brick_geometry(request.width, request.depth, request.bricks)
            default_mass = compute_brick_mass(request.width, request.depth, request.density)
        else:
            bricks = list(request.bricks)
            default_mass = len(bricks)

        mass = request.mass if request.mass is not None else default_mass
        colors = request.unique_color_count if request.unique_color_count is not None else unique_color_count(bricks)
        weight = request.builder_weight if request.builder_weight is not None else compute_builder_weight(mass, colors)

        return BuildRecord(
            id=build_id,
            name=request.name,
            creator=request.minter,
            kind=request.kind,
            bricks=bricks,
            width=request.width if is_brick else None,
            depth=request.depth if is_brick else None,
            density=request.density if is_brick else None,
            spec_key=spec_key,
            mass=mass,
            unique_color_count=colors,
            builder_weight=weight,
            token_id=token_id,
            content_hash=request.content_hash,
            mint_tx_hash=request.tx_hash,
            minted_at=datetime.fromtimestamp(now, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            base_width=request.base_width or (request.width if is_brick else DEFAULT_BASE_SIZE),
            base_depth=request.base_depth or (request.depth if is_brick else DEFAULT_BASE_SIZE),
            component_token_ids=request.component_token_ids,
            timestamp=timestamp_ms,
        )

    def stale_spec_key(self, token_id: str, spec_key: Optional[str]) -> Optional[str]:
        """Spec key still held by the token's previous brick record, if it changed."""
        build_id = self.store.get_token_build_id(token_id)
        previous = self.store.get_build(build_id) if build_id else None
        if previous is None or not previous.is_brick() or not previous.spec_key:
            return None
        return previous.spec_key if previous.spec_key != spec_key else None

    def plan_writes(self, record: BuildRecord, stale_spec_key: Optional[str] = None) -> WritePlan:
        """Ordered writes for a mint: record, indices, then the minted set."""
        plan = WritePlan(name=f"mint token {record.token_id}")
        plan.add("build", lambda: self.store.put_build(record))
        plan.add("token", lambda: self.store.set_token_build_id(record.token_id, record.id))
        plan.add("hash", lambda: self.store.set_hash_build_id(record.content_hash, record.id))
        if record.is_brick():
            plan.add("brickSpec", lambda: self.store.set_spec_token_id(record.spec_key, record.token_id))
        if stale_spec_key:
            plan.add("releaseSpec", lambda: self.store.release_spec(stale_spec_key, record.token_id))
        plan.add("mintedTokens", lambda: self.store.add_minted(record.token_id))
        return plan

    def mint(self, payload: Union[MintRequest, Dict[str, Any]]) -> BuildRecord:
        """
        Register a mint.

        Re-issuing the same tokenId/contentHash is safe: the spec check treats
        the same token as an update and every write is an idempotent put.

        Raises:
            MissingFieldError: If tokenId, contentHash or minter is absent
            ValidationError: If the request is malformed
            DuplicateSpecError: If a brick spec is already held by another token
            PartialWriteFailure: If a write fails after earlier writes landed
        """
        request = parse_mint_request(payload)
        self._check_required(request)
        token_id = validate_token_id(request.token_id)

        spec_key = None
        if request.kind == BuildKind.BRICK:
            spec_key = self.check_brick_spec(token_id, request.width, request.depth, request.density)

        stale = self.stale_spec_key(token_id, spec_key)
        if stale:
            self.logger.info(f"Token {token_id} changed spec, releasing {stale}")

        record = self.build_record(request, token_id, spec_key)
        self.plan_writes(record, stale_spec_key=stale).execute()

        self.logger.info(
            f"Build {record.id} minted as token {token_id} "
            f"(kind={record.kind}, bricks={len(record.bricks)}, mass={record.mass})"
        )
        return record
