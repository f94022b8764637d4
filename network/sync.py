"""
BrickLedger - Chain/Cache Synchronization

The chain owns token existence; the cache only mirrors it. This module brings
the cached ``mintedTokens`` set back in line with the chain:

- Reconciler enumerates every issued token id, probes ``ownerOf`` and makes
  the set equal to the live ids.
- Backfill replays mint events from the deploy block and re-registers tokens
  the cache lost, leaving a placeholder token pointer for each.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from registry.build_store import BuildRecordStore, sort_token_ids
from registry.exceptions import ChainUnavailableError, TokenNotFoundError
from registry.schema import BackfillReport, ReconcileReport

from .chain import ChainReader


class OwnerStatus(Enum):
    """Outcome of probing ``ownerOf`` for one token."""
    LIVE = "live"
    ABSENT = "absent"
    UNVERIFIED = "unverified"


@dataclass
class SyncConfig:
    """Configuration for chain synchronization."""
    max_workers: int = 8
    id_chunk_size: int = 100
    block_chunk_size: int = 10000
    deploy_block: int = 0

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.id_chunk_size < 1 or self.block_chunk_size < 1:
            raise ValueError("chunk sizes must be positive")
        if self.deploy_block < 0:
            raise ValueError("deploy_block cannot be negative")


def probe_owners(
    chain: ChainReader,
    token_ids: Iterable[int],
    max_workers: int = 8,
    chunk_size: int = 100,
    owners: Optional[Dict[int, str]] = None,
) -> Dict[int, OwnerStatus]:
    """
    Call ``ownerOf`` for each token id, a chunk at a time, across a thread pool.

    Reverts mark a token ABSENT. Any other failure marks it UNVERIFIED so
    callers can keep it out of destructive decisions. When ``owners`` is
    given it is filled with the owner of every LIVE token.
    """
    logger = logging.getLogger(__name__)
    ids = list(token_ids)
    results: Dict[int, OwnerStatus] = {}

    def probe(token_id: int) -> OwnerStatus:
        try:
            owner = chain.owner_of(token_id)
            if owners is not None:
                owners[token_id] = owner
            return OwnerStatus.LIVE
        except TokenNotFoundError:
            return OwnerStatus.ABSENT
        except ChainUnavailableError as e:
            logger.warning(f"ownerOf({token_id}) failed: {e}")
            return OwnerStatus.UNVERIFIED
        except Exception as e:
            logger.error(f"Unexpected error probing token {token_id}: {e}")
            return OwnerStatus.UNVERIFIED

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for start in range(0, len(ids), chunk_size):
            chunk = ids[start:start + chunk_size]
            for token_id, status in zip(chunk, executor.map(probe, chunk)):
                results[token_id] = status

    return results


class Reconciler:
    """Make the cached minted-token set equal to chain truth."""

    def __init__(self, store: BuildRecordStore, chain: ChainReader, config: Optional[SyncConfig] = None):
        self.store = store
        self.chain = chain
        self.config = config or SyncConfig()
        self.logger = logging.getLogger(__name__)

    def reconcile(self) -> ReconcileReport:
        """
        Enumerate ``1..highestIssuedTokenId`` and align ``mintedTokens``.

        Raises:
            ChainUnavailableError: If the highest token id cannot be read;
                the cache is left untouched
        """
        highest = self.chain.highest_issued_token_id()
        self.logger.info(f"Reconciling token ids 1..{highest}")

        statuses = probe_owners(
            self.chain,
            range(1, highest + 1),
            max_workers=self.config.max_workers,
            chunk_size=self.config.id_chunk_size,
        )

        chain_ids = {str(t) for t, s in statuses.items() if s is OwnerStatus.LIVE}
        unverified = {str(t) for t, s in statuses.items() if s is OwnerStatus.UNVERIFIED}

        cached = self.store.minted_tokens()
        report = ReconcileReport(
            chain_token_ids=sort_token_ids(list(chain_ids)),
            unverified=sort_token_ids(list(unverified)),
            highest_token_id=highest,
        )

        for token_id in sort_token_ids(list(chain_ids - cached)):
            if self.store.add_minted(token_id):
                report.added.append(token_id)

        for token_id in sort_token_ids(list(cached - chain_ids - unverified)):
            if self.store.remove_minted(token_id):
                report.removed.append(token_id)

        if unverified:
            self.logger.warning(f"{len(unverified)} token(s) could not be verified and were kept")
        self.logger.info(
            f"Reconcile complete: {len(chain_ids)} on chain, "
            f"added {len(report.added)}, removed {len(report.removed)}"
        )
        return report


class Backfill:
    """Rebuild minted-token entries from chain mint history."""

    PLACEHOLDER_PREFIX = "build_backfilled"

    def __init__(
        self,
        store: BuildRecordStore,
        chain: ChainReader,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.chain = chain
        self.config = config or SyncConfig()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def placeholder_build_id(self, token_id: str) -> str:
        return f"{self.PLACEHOLDER_PREFIX}_{int(self.clock() * 1000)}_{token_id}"

    def minted_token_ids(self, from_block: int, to_block: int) -> List[int]:
        """Distinct token ids minted in the block range, in event order."""
        seen = set()
        ordered = []
        for event in self.chain.iter_mint_events(from_block, to_block, self.config.block_chunk_size):
            if event.token_id not in seen:
                seen.add(event.token_id)
                ordered.append(event.token_id)
        return ordered

    def backfill(self) -> BackfillReport:
        """
        Register every live minted token missing from the cache.

        Re-running is safe: tokens already in ``mintedTokens`` are counted as
        ``already_exists`` and existing token pointers are never overwritten.

        Raises:
            ChainUnavailableError: If the block height or the event log cannot
                be read; nothing has been written at that point
        """
        from_block = self.config.deploy_block
        to_block = self.chain.latest_block()
        report = BackfillReport(from_block=from_block, to_block=to_block)

        if to_block < from_block:
            self.logger.warning(f"Latest block {to_block} is before deploy block {from_block}, nothing to scan")
            return report

        token_ids = self.minted_token_ids(from_block, to_block)
        report.scanned = len(token_ids)
        self.logger.info(f"Found {len(token_ids)} minted token(s) in blocks {from_block}-{to_block}")

        missing = []
        for token_id in token_ids:
            if self.store.is_minted(str(token_id)):
                report.already_exists += 1
            else:
                missing.append(token_id)

        statuses = probe_owners(
            self.chain,
            missing,
            max_workers=self.config.max_workers,
            chunk_size=self.config.id_chunk_size,
        )

        for token_id in missing:
            status = statuses[token_id]
            tid = str(token_id)
            if status is OwnerStatus.ABSENT:
                report.burned += 1
                continue
            if status is OwnerStatus.UNVERIFIED:
                report.errors.append(f"Token {tid}: ownerOf failed, will retry on next run")
                continue

            try:
                self.store.add_minted(tid)
                if self.store.get_token_build_id(tid) is None:
                    self.store.set_token_build_id(tid, self.placeholder_build_id(tid))
            except Exception as e:
                self.logger.error(f"Failed to backfill token {tid}: {e}")
                report.errors.append(f"Token {tid}: {e}")
                continue

            report.added += 1
            self.logger.debug(f"Backfilled token {tid}")

        self.logger.info(
            f"Backfill complete: scanned {report.scanned}, added {report.added}, "
            f"burned {report.burned}, already present {report.already_exists}"
        )
        return report
