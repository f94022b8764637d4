"""
BrickLedger - Admin Purge

Bulk deletion of every cached key the web app owns, for pre-production
resets. The chain is untouched; the cache can be rebuilt afterwards with a
backfill. Irreversible.
"""

import hmac
import logging
from typing import Dict, List, Optional, Tuple

from .audit import AdminAuditLog
from .build_store import StoreKeys
from .exceptions import UnauthorizedError, ValidationError
from .schema import PurgeReport
from .storage import KVStore

CONFIRMATION_PHRASE = "RESET_NFTS"

PURGE_PREFIXES: Tuple[str, ...] = (
    "build:",
    "builds:",
    "hash:",
    "brickSpec:",
    "minted:",
    "token:",
    "user:",
    "gallery:",
    "profile:",
)

PURGE_KEYS: Tuple[str, ...] = (
    StoreKeys.MINTED_TOKENS,
    StoreKeys.PUBLIC_BUILDS,
)

DELETE_BATCH_SIZE = 100


def check_admin_credential(credential: Optional[str], secret: Optional[str]) -> None:
    """
    Fail closed unless the secret is configured and the credential matches.

    Raises:
        UnauthorizedError: If the secret is unset or the credential differs
    """
    if not secret:
        raise UnauthorizedError("Admin token not configured on the server")
    if not credential or not hmac.compare_digest(credential.encode("utf-8"), secret.encode("utf-8")):
        raise UnauthorizedError("Invalid or missing admin token")


class AdminPurge:
    """Pattern based deletion across the cache namespace."""

    def __init__(
        self,
        kv: KVStore,
        admin_secret: Optional[str],
        audit_log: Optional[AdminAuditLog] = None,
        prefixes: Tuple[str, ...] = PURGE_PREFIXES,
        keys: Tuple[str, ...] = PURGE_KEYS,
        batch_size: int = DELETE_BATCH_SIZE,
    ):
        self.kv = kv
        self.admin_secret = admin_secret
        self.audit_log = audit_log or AdminAuditLog(kv, key=StoreKeys.RESET_LOGS)
        self.prefixes = prefixes
        self.keys = keys
        self.batch_size = batch_size
        self.logger = logging.getLogger(__name__)

    def _delete_prefix(self, prefix: str) -> int:
        keys = self.kv.scan(prefix)
        deleted = 0
        for start in range(0, len(keys), self.batch_size):
            batch: List[str] = keys[start:start + self.batch_size]
            deleted += self.kv.delete_many(batch)
        return deleted

    def purge(self, credential: Optional[str], confirmation: Optional[str], operator: Optional[str] = None) -> PurgeReport:
        """
        Delete every key under the purge prefixes plus the aggregate keys.

        A prefix whose deletion fails is recorded as ``-1`` and the purge
        carries on with the rest.

        Raises:
            UnauthorizedError: If the credential is rejected
            ValidationError: If the confirmation phrase is wrong
        """
        try:
            check_admin_credential(credential, self.admin_secret)
        except UnauthorizedError:
            self.logger.warning(f"Unauthorized purge attempt by {operator or 'unknown'}")
            raise

        if confirmation != CONFIRMATION_PHRASE:
            self.logger.warning("Purge rejected: invalid confirmation phrase")
            raise ValidationError(
                f"Invalid confirmation phrase. Expected: {CONFIRMATION_PHRASE}",
                {"field": "confirmation"},
            )

        report = PurgeReport(operator=operator or "unknown")
        self.logger.warning(f"Starting cache purge at {report.timestamp} by {report.operator}")

        deleted_patterns: Dict[str, int] = {}
        for prefix in self.prefixes:
            pattern = f"{prefix}*"
            try:
                count = self._delete_prefix(prefix)
            except Exception as e:
                self.logger.error(f"Error deleting keys for pattern {pattern!r}: {e}")
                deleted_patterns[pattern] = -1
                report.success = False
                continue
            deleted_patterns[pattern] = count
            report.keys_deleted += count
            self.logger.info(f"Deleted {count} keys matching {pattern!r}")

        for key in self.keys:
            try:
                count = self.kv.delete(key)
            except Exception as e:
                self.logger.error(f"Error deleting key {key!r}: {e}")
                deleted_patterns[key] = -1
                report.success = False
                continue
            deleted_patterns[key] = count
            report.keys_deleted += count

        report.deleted_patterns = deleted_patterns
        self.audit_log.record(report.to_dict())

        self.logger.warning(f"Purge complete, {report.keys_deleted} key(s) deleted")
        return report

    def reset_logs(self, credential: Optional[str], limit: int = 50) -> List[Dict]:
        """Return recent purge audit entries, newest first."""
        check_admin_credential(credential, self.admin_secret)
        return self.audit_log.recent(limit)
