"""
BrickLedger - Token Resolver

Resolves a token id to its build record through the fastest available path:

1. ``token:{id}`` index
2. legacy ``build:token:{id}`` index
3. a full scan of build records matching the embedded token id

The scan is O(total records) and only runs when both indices miss.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from network.sync import OwnerStatus, probe_owners

from .build_store import BuildRecordStore, StoreKeys, sort_token_ids
from .exceptions import ChainUnavailableError, NotFoundError, TokenNotFoundError
from .schema import BuildKind, BuildRecord, decode_bricks, normalize_token_id
from .spec_key import normalize_brick_label

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
CHAIN_BUILD_NAME = "ETHBLOX #{token_id}"


class TokenResolver:
    """Resolve token ids to build records, tolerating a stale cache."""

    def __init__(self, store: BuildRecordStore, chain=None, max_workers: int = 8, id_chunk_size: int = 100):
        self.store = store
        self.chain = chain
        self.max_workers = max_workers
        self.id_chunk_size = id_chunk_size
        self.logger = logging.getLogger(__name__)

    def _via_index(self, token_id: str, legacy: bool) -> Optional[BuildRecord]:
        if legacy:
            build_id = self.store.get_legacy_token_build_id(token_id)
        else:
            build_id = self.store.get_token_build_id(token_id)
        if not build_id:
            return None

        record = self.store.get_build(build_id)
        if record is None:
            self.logger.warning(f"Token {token_id} points at missing build {build_id}")
        return record

    def _via_scan(self, token_id: str) -> Optional[BuildRecord]:
        self.logger.info(f"Scanning build records for token {token_id}")
        for build_id, record in self.store.iter_builds():
            if record is not None and record.matches_token(token_id):
                self.logger.info(f"Found token {token_id} via scan in build {build_id}")
                return record
        return None

    def find(self, token_id: Any) -> Tuple[Optional[BuildRecord], Optional[str]]:
        """Return ``(record, path)`` where path names the lookup that hit."""
        token_id = normalize_token_id(token_id)
        if token_id is None:
            return None, None

        record = self._via_index(token_id, legacy=False)
        if record is not None:
            return record, "token"

        record = self._via_index(token_id, legacy=True)
        if record is not None:
            return record, "legacy"

        record = self._via_scan(token_id)
        if record is not None:
            return record, "scan"

        return None, None

    def resolve(self, token_id: Any) -> BuildRecord:
        """
        Resolve a token id to its build record.

        Raises:
            NotFoundError: If every lookup path misses
        """
        record, path = self.find(token_id)
        if record is None:
            self.logger.error(f"No build found for token {token_id}")
            raise NotFoundError(f"Build not found for token {token_id}", {"tokenId": str(token_id)})

        # Index hits report the requested token even if the record embeds another
        record = record.model_copy(update={"token_id": normalize_token_id(token_id)})
        self.logger.debug(f"Resolved token {token_id} via {path} to build {record.id}")
        return record

    # Chain backed views

    def chain_placeholder(self, token_id: str, owner: Optional[str] = None) -> BuildRecord:
        """Minimal record derived from chain data when the cache has nothing."""
        kind = None
        if self.chain is not None:
            try:
                kind = self.chain.kind(int(token_id))
            except (ChainUnavailableError, TokenNotFoundError) as e:
                self.logger.debug(f"Could not read kind for token {token_id}: {e}")

        return BuildRecord(
            id=f"chain_{token_id}",
            name=CHAIN_BUILD_NAME.format(token_id=token_id),
            creator=(owner or ZERO_ADDRESS).lower(),
            kind=kind if kind is not None else BuildKind.BUILD,
            bricks=[],
            token_id=token_id,
        )

    def _live_token_ids(self) -> Tuple[List[str], Dict[str, str]]:
        """
        Live token ids and owners from the chain.

        Ids whose ``ownerOf`` call failed in transit are kept so the cache can
        still answer for them.

        Raises:
            ChainUnavailableError: If the highest token id cannot be read
        """
        highest = self.chain.highest_issued_token_id()

        found: Dict[int, str] = {}
        statuses = probe_owners(
            self.chain,
            range(1, highest + 1),
            max_workers=self.max_workers,
            chunk_size=self.id_chunk_size,
            owners=found,
        )
        unverified = [t for t, s in statuses.items() if s is OwnerStatus.UNVERIFIED]
        if unverified:
            self.logger.warning(f"{len(unverified)} token(s) unverified on chain, listing them from cache")

        live = [str(t) for t, s in statuses.items() if s is not OwnerStatus.ABSENT]
        owners = {str(t): owner for t, owner in found.items()}
        return sort_token_ids(live), owners

    def list_minted(self) -> List[BuildRecord]:
        """
        List minted builds, newest token first.

        The chain decides which tokens exist. Tokens the cache cannot resolve
        come back as chain placeholders. A token whose ownership check failed is
        listed only when the cache holds its record. If the highest token id
        cannot be read the cached minted set is used instead.
        """
        owners: Dict[str, str] = {}
        token_ids: List[str]
        if self.chain is not None:
            try:
                token_ids, owners = self._live_token_ids()
            except ChainUnavailableError as e:
                self.logger.warning(f"Chain unavailable, listing from cache: {e}")
                token_ids = sort_token_ids(list(self.store.minted_tokens()))
        else:
            token_ids = sort_token_ids(list(self.store.minted_tokens()))

        def load(token_id: str) -> Optional[BuildRecord]:
            build_id = self.store.get_token_build_id(token_id)
            record = self.store.get_build(build_id) if build_id else None
            if record is not None:
                return record.model_copy(update={"token_id": token_id})
            if token_id in owners:
                return self.chain_placeholder(token_id, owners[token_id])
            return None

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            records = [r for r in executor.map(load, token_ids) if r is not None]

        records.sort(key=lambda r: int(r.token_id) if r.token_id and r.token_id.isdigit() else 0, reverse=True)
        return records

    def minted_brick_specs(self) -> List[str]:
        """Labels (``{min}x{max}-D{density}``) of every cached kind 0 mint."""
        labels = set()
        for token_id in self.store.minted_tokens():
            build_id = self.store.get_token_build_id(token_id)
            if not build_id:
                continue
            record = self.store.get_build(build_id)
            if record is None or not record.is_brick():
                continue
            if record.width and record.depth and record.density:
                labels.add(normalize_brick_label(record.width, record.depth, record.density))
        return sorted(labels)

    def inspect(self, token_id: Any) -> Dict[str, Any]:
        """Diagnostic view of how a token resolves; never raises on corrupt data."""
        token_id = normalize_token_id(token_id)
        report: Dict[str, Any] = {
            "tokenId": token_id,
            "lookupKey": StoreKeys.token(token_id) if token_id else None,
            "indexBuildId": None,
            "legacyBuildId": None,
            "inMintedSet": False,
        }
        if token_id is None:
            report["error"] = "Invalid token id"
            return report

        report["indexBuildId"] = self.store.get_token_build_id(token_id)
        report["legacyBuildId"] = self.store.get_legacy_token_build_id(token_id)
        report["inMintedSet"] = self.store.is_minted(token_id)

        build_id = report["indexBuildId"] or report["legacyBuildId"]
        if not build_id:
            report["error"] = "Token not found"
            return report

        raw = self.store.kv.get(StoreKeys.build(build_id))
        if raw is None:
            report["error"] = "Build data not found"
            report["buildKey"] = StoreKeys.build(build_id)
            return report

        raw_type = type(raw).__name__
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                raw = None

        bricks = decode_bricks(raw.get("bricks") if isinstance(raw, dict) else None)
        heights = sorted({brick.position[1] for brick in bricks})
        report.update({
            "buildId": build_id,
            "buildName": raw.get("name") if isinstance(raw, dict) else None,
            "rawType": raw_type,
            "rawBrickType": type(raw.get("bricks")).__name__ if isinstance(raw, dict) else None,
            "totalBricks": len(bricks),
            "layerHeights": heights,
            "layerCount": len(heights),
            "sampleBricks": [b.model_dump(by_alias=True, mode="json") for b in bricks[:10]],
            "rawBuildKeys": sorted(raw.keys()) if isinstance(raw, dict) else [],
        })
        return report
