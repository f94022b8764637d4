"""
BrickLedger - Duplicate Build Repair

Restores the rule that every token points at its own build record. When a
mint race lets several tokens write the same build id, the lowest numeric
token keeps the original record and every other token gets a forked copy.
Records are never merged or deleted.
"""

import logging
from collections import defaultdict
from typing import Dict, List

from .build_store import BuildRecordStore, sort_token_ids
from .exceptions import PartialWriteFailure
from .schema import BuildRecord, RepairCorrection, RepairReport, RepairSkip
from .write_plan import WritePlan


def forked_build_id(build_id: str, token_id: str) -> str:
    return f"{build_id}-token{token_id}"


def forked_build_name(name: str, token_id: str) -> str:
    return f"{name}-NFT{token_id}" if name else f"Build-NFT{token_id}"


class DuplicateRepair:
    """Detect and split build records shared by several tokens."""

    def __init__(self, store: BuildRecordStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    def find_duplicates(self) -> Dict[str, List[str]]:
        """Map each shared build id to its tokens, sorted ascending by numeric id."""
        groups: Dict[str, List[str]] = defaultdict(list)
        for token_id, build_id in self.store.token_index().items():
            groups[build_id].append(token_id)

        return {
            build_id: sort_token_ids(tokens)
            for build_id, tokens in groups.items()
            if len(tokens) > 1
        }

    def fork_record(self, original: BuildRecord, token_id: str) -> BuildRecord:
        """Clone geometry and scores under a new id and distinguishable name."""
        return original.model_copy(
            deep=True,
            update={
                "id": forked_build_id(original.id, token_id),
                "name": forked_build_name(original.name, token_id),
                "token_id": token_id,
            },
        )

    def repair(self) -> RepairReport:
        """
        Split every duplicate group.

        Groups whose original record is missing are skipped and reported.
        A failed write for one token is reported and the pass continues.
        """
        duplicates = self.find_duplicates()
        report = RepairReport(duplicate_groups=len(duplicates))

        if not duplicates:
            self.logger.info("No duplicate build mappings found")
            return report

        for build_id, tokens in sorted(duplicates.items()):
            keep_token, fix_tokens = tokens[0], tokens[1:]
            self.logger.info(
                f"Build {build_id} shared by tokens {', '.join(tokens)}; keeping token {keep_token}"
            )

            original = self.store.get_build(build_id)
            if original is None:
                self.logger.error(f"Build data not found for {build_id}, skipping tokens {', '.join(tokens)}")
                report.skipped.append(RepairSkip(
                    build_id=build_id, token_ids=tokens, reason="original build record missing"
                ))
                continue

            for token_id in fix_tokens:
                forked = self.fork_record(original, token_id)
                plan = WritePlan(name=f"repair token {token_id}")
                plan.add("build", lambda forked=forked: self.store.put_build(forked))
                plan.add("token", lambda t=token_id, f=forked: self.store.set_token_build_id(t, f.id))

                try:
                    plan.execute()
                except PartialWriteFailure as e:
                    report.failures.append({"tokenId": token_id, **e.to_dict()})
                    continue

                report.fixed.append(RepairCorrection(
                    token_id=token_id, old_build_id=build_id, new_build_id=forked.id
                ))
                self.logger.info(f"Fixed token {token_id}: {build_id} -> {forked.id}")

        self.logger.info(f"Duplicate repair complete. Fixed {len(report.fixed)} mapping(s)")
        return report
