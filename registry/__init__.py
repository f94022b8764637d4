"""
BrickLedger - Registry

Build records, their reverse indices and the operations that keep them
consistent with the chain.
"""

from .exceptions import (
    BrickLedgerError,
    ValidationError,
    MissingFieldError,
    DuplicateSpecError,
    NotFoundError,
    TokenNotFoundError,
    ChainUnavailableError,
    UnauthorizedError,
    StorageError,
    PartialWriteFailure
)

from .storage import KVStore, MemoryKVStore, JSONFileKVStore

from .schema import Brick, BuildKind, BuildRecord, MintRequest, ServiceResult

from .spec_key import compute_spec_key, compute_brick_mass, normalize_brick_label

from .build_store import BuildRecordStore, StoreKeys

__version__ = "1.0.0"

__all__ = [
    # Errors
    "BrickLedgerError",
    "ValidationError",
    "MissingFieldError",
    "DuplicateSpecError",
    "NotFoundError",
    "TokenNotFoundError",
    "ChainUnavailableError",
    "UnauthorizedError",
    "StorageError",
    "PartialWriteFailure",

    # Storage
    "KVStore",
    "MemoryKVStore",
    "JSONFileKVStore",
    "BuildRecordStore",
    "StoreKeys",

    # Schema
    "Brick",
    "BuildKind",
    "BuildRecord",
    "MintRequest",
    "ServiceResult",

    # Spec keys
    "compute_spec_key",
    "compute_brick_mass",
    "normalize_brick_label",
]
