"""
BrickLedger - Build Service

Single entry point used by the CLI and by any HTTP layer placed in front of
the reconciliation layer. Every operation returns a ServiceResult; errors are
reported with their stable code instead of being raised.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

from network.chain import BuildNFTContract
from network.kv_rest import RestKVStore
from network.rpc import EthRPCClient, RPCConfig
from network.sync import Backfill, Reconciler, SyncConfig

from .audit import AdminAuditLog
from .build_store import BuildRecordStore, StoreKeys
from .exceptions import BrickLedgerError, ChainUnavailableError
from .mint import MintRegistrar
from .purge import AdminPurge
from .repair import DuplicateRepair
from .resolver import TokenResolver
from .schema import ServiceError, ServiceResult
from .storage import JSONFileKVStore, KVStore, MemoryKVStore


class BuildService:
    """Typed-result facade over the registrar, resolver and maintenance jobs."""

    def __init__(
        self,
        kv: KVStore,
        chain=None,
        admin_secret: Optional[str] = None,
        sync_config=None,
        clock: Callable[[], float] = time.time,
    ):
        self.kv = kv
        self.chain = chain
        self.store = BuildRecordStore(kv)
        self.sync_config = sync_config or SyncConfig()
        self.logger = logging.getLogger(__name__)

        self.registrar = MintRegistrar(self.store, clock=clock)
        self.resolver = TokenResolver(
            self.store,
            chain=chain,
            max_workers=self.sync_config.max_workers,
            id_chunk_size=self.sync_config.id_chunk_size,
        )
        self.repairer = DuplicateRepair(self.store)
        self.audit_log = AdminAuditLog(kv, key=StoreKeys.RESET_LOGS)
        self.purger = AdminPurge(kv, admin_secret, audit_log=self.audit_log)
        self.reconciler = Reconciler(self.store, chain, self.sync_config) if chain is not None else None
        self.backfiller = Backfill(self.store, chain, self.sync_config, clock=clock) if chain is not None else None

    @classmethod
    def from_config(cls, config) -> 'BuildService':
        """
        Wire a service from a ConfigurationManager (or anything with a dotted ``get``).

        The admin secret is read from the environment variable named by
        ``admin.reset_token_env``.
        """
        backend = config.get('store.backend', 'memory')
        if backend == 'memory':
            kv = MemoryKVStore()
        elif backend == 'file':
            kv = JSONFileKVStore(os.path.expanduser(config.get('store.path')))
        elif backend == 'rest':
            kv = RestKVStore(
                config.get('store.rest_url'),
                token=config.get('store.rest_token'),
                timeout=config.get('store.timeout', 10),
            )
        else:
            raise ValueError(f"Unknown store backend: {backend}")

        chain = None
        address = config.get('chain.contract_address')
        if address:
            rpc = EthRPCClient(RPCConfig(
                url=config.get('chain.rpc_url'),
                timeout=config.get('chain.timeout', 30),
                max_retries=config.get('chain.max_retries', 3),
            ))
            chain = BuildNFTContract(rpc, address)

        sync_config = SyncConfig(
            max_workers=config.get('sync.max_workers', 8),
            id_chunk_size=config.get('sync.id_chunk_size', 100),
            block_chunk_size=config.get('chain.block_chunk_size', 10000),
            deploy_block=config.get('chain.deploy_block', 0),
        )

        admin_secret = os.environ.get(config.get('admin.reset_token_env', 'ADMIN_RESET_TOKEN'))
        return cls(kv, chain=chain, admin_secret=admin_secret, sync_config=sync_config)

    def _run(self, operation: str, func: Callable[[], Any]) -> ServiceResult:
        try:
            return ServiceResult(ok=True, data=func())
        except BrickLedgerError as e:
            self.logger.warning(f"{operation} failed [{e.code}]: {e.message}")
            return ServiceResult(ok=False, error=ServiceError(**e.to_dict()))
        except Exception as e:
            self.logger.exception(f"{operation} failed unexpectedly")
            return ServiceResult(ok=False, error=ServiceError(code="INTERNAL", message=str(e)))

    def _require_chain(self, job):
        if job is None:
            raise ChainUnavailableError("No chain reader configured")
        return job

    # Operations

    def mint(self, payload: Dict[str, Any]) -> ServiceResult:
        return self._run("mint", lambda: self.registrar.mint(payload).to_storage())

    def resolve_by_token(self, token_id: Any) -> ServiceResult:
        return self._run("resolve", lambda: self.resolver.resolve(token_id).to_storage())

    def list_minted(self) -> ServiceResult:
        return self._run("list_minted", lambda: [r.to_storage() for r in self.resolver.list_minted()])

    def minted_brick_specs(self) -> ServiceResult:
        return self._run("minted_brick_specs", self.resolver.minted_brick_specs)

    def inspect_token(self, token_id: Any) -> ServiceResult:
        return self._run("inspect", lambda: self.resolver.inspect(token_id))

    def reconcile(self) -> ServiceResult:
        return self._run("reconcile", lambda: self._require_chain(self.reconciler).reconcile().to_dict())

    def backfill(self) -> ServiceResult:
        return self._run("backfill", lambda: self._require_chain(self.backfiller).backfill().to_dict())

    def repair_duplicates(self) -> ServiceResult:
        return self._run("repair_duplicates", lambda: self.repairer.repair().to_dict())

    def purge(self, credential: Optional[str], confirmation: Optional[str], operator: Optional[str] = None) -> ServiceResult:
        return self._run("purge", lambda: self.purger.purge(credential, confirmation, operator).to_dict())

    def reset_logs(self, credential: Optional[str], limit: int = 50) -> ServiceResult:
        return self._run("reset_logs", lambda: self.purger.reset_logs(credential, limit))
