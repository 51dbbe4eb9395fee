"""Retention scanner — flags records that outlived their retention policy.

On-demand and synchronous: an operator or an external scheduler calls
``run_scan``; nothing here decides the cadence.

For each active policy the scanner asks the domain adapter for records
created before ``now - retention_days`` and inserts one pending flag per
record. The insert relies on the partial unique index over
(data_type, record_id) WHERE action_taken = 'pending', so repeated or
concurrent scans never create a second pending flag for the same record.

Each policy runs inside its own SAVEPOINT: a failing domain query rolls
back that policy only, and the scan carries on with the others.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import Insert, insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from caretrack.compliance.audit import audit_logger
from caretrack.compliance.domains import CandidateRecord, DomainRegistry, TableAdapter, domain_registry
from caretrack.compliance.policies import RetentionPolicyStore, policy_store
from caretrack.errors import AuthenticationError
from caretrack.models.enums import FlagAction
from caretrack.models.retention import RetentionFlag, RetentionPolicy
from caretrack.schemas.compliance import Actor, PolicyFailure, ScanResult
from caretrack.schemas.events import AuditAction

logger = logging.getLogger(__name__)

# 4 bind parameters per row keeps each statement well under asyncpg's limit
INSERT_BATCH_SIZE = 1000


def build_flag_insert(data_type: str, candidates: Sequence[CandidateRecord]) -> Insert:
    """INSERT ... ON CONFLICT DO NOTHING against the pending-flag index."""
    rows = [
        {
            "data_type": data_type,
            "record_id": c.id,
            "user_id": c.owner_id,
            "action_taken": FlagAction.PENDING.value,
        }
        for c in candidates
    ]
    return (
        pg_insert(RetentionFlag)
        .values(rows)
        .on_conflict_do_nothing(
            index_elements=["data_type", "record_id"],
            index_where=text("action_taken = 'pending'"),
        )
        .returning(RetentionFlag.id)
    )


class RetentionScanner:
    """Turns active retention policies into pending flags."""

    def __init__(
        self,
        registry: DomainRegistry | None = None,
        policies: RetentionPolicyStore | None = None,
    ) -> None:
        self._registry = registry if registry is not None else domain_registry
        self._policies = policies if policies is not None else policy_store

    async def run_scan(
        self,
        db: AsyncSession,
        actor: Actor | None,
        *,
        data_types: Sequence[str] | None = None,
        now: datetime | None = None,
    ) -> ScanResult:
        """Scan every active policy (optionally only ``data_types``).

        Returns partial counts plus the policies that failed; an unknown
        data_type is skipped. Emits one RUN_RETENTION_CHECK audit entry.
        """
        if actor is None:
            raise AuthenticationError("A caller identity is required to run a retention scan")

        now = now or datetime.now(UTC)
        result = ScanResult()

        for policy in await self._policies.list(db, active_only=True):
            if data_types is not None and policy.data_type not in data_types:
                continue

            adapter = self._registry.for_data_type(policy.data_type)
            if adapter is None:
                logger.warning("No domain adapter for data_type=%s, skipping", policy.data_type)
                result.skipped.append(policy.data_type)
                continue

            try:
                async with db.begin_nested():
                    flagged = await self._scan_policy(db, policy, adapter, now)
            except Exception as exc:
                logger.exception("Retention scan failed for %s", policy.data_type)
                result.failures.append(PolicyFailure(
                    policy_id=policy.id,
                    data_type=policy.data_type,
                    error=str(exc),
                ))
                continue

            result.policies_scanned += 1
            result.flagged_by_type[policy.data_type] = flagged
            result.total_flagged += flagged

        await audit_logger.record(
            actor,
            AuditAction.RUN_RETENTION_CHECK,
            "system",
            metadata=result.model_dump(mode="json", by_alias=True),
            source_module="compliance.scanner",
            db=db,
        )

        logger.info(
            "Retention scan complete: flagged=%d policies=%d skipped=%d failed=%d",
            result.total_flagged,
            result.policies_scanned,
            len(result.skipped),
            len(result.failures),
        )
        return result

    async def _scan_policy(
        self,
        db: AsyncSession,
        policy: RetentionPolicy,
        adapter: TableAdapter,
        now: datetime,
    ) -> int:
        cutoff = now - timedelta(days=policy.retention_days)
        candidates = await adapter.fetch_records_older_than(db, cutoff)
        logger.debug(
            "Found %d records older than %s for %s", len(candidates), cutoff.date(), policy.data_type
        )
        return await self.insert_pending_flags(db, policy.data_type, candidates)

    async def insert_pending_flags(
        self,
        db: AsyncSession,
        data_type: str,
        candidates: Sequence[CandidateRecord],
    ) -> int:
        """Insert pending flags, skipping records that already have one.

        Returns the number of flags actually created.
        """
        created = 0
        for start in range(0, len(candidates), INSERT_BATCH_SIZE):
            batch = candidates[start:start + INSERT_BATCH_SIZE]
            result = await db.execute(build_flag_insert(data_type, batch))
            created += len(result.all())
        return created


# Module-level singleton
retention_scanner = RetentionScanner()
