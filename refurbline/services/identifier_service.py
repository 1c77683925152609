"""
Identifier Service for Atomic Tick Allocation

ALLOCATION:
- One counter row per namespace (QLID, CERTIFICATION)
- Increment is a single UPDATE ... RETURNING statement, never read-then-write
- Missing counter rows are created inside a SAVEPOINT so a concurrent
  creator is tolerated
- Ticks are strictly increasing and never reused, even across restarts

USAGE:
    from refurbline.services.identifier_service import IdentifierService

    async def intake(db: AsyncSession):
        service = IdentifierService(db)
        qlid = await service.next_qlid()
        # Returns: QLID0000000001
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refurbline.core.enum_utils import get_enum_value
from refurbline.models.identifier_counter import IdentifierCounter, IdentifierCounterAudit, CounterNamespace
from refurbline.models.refurb_job import RefurbJob
from refurbline.services import qlid as qlid_codec


logger = logging.getLogger(__name__)


# Namespace metadata
COUNTER_METADATA = {
    CounterNamespace.QLID.value: {"description": "Item identifiers (QLID)"},
    CounterNamespace.CERTIFICATION.value: {"description": "Certification identifiers"},
}


class IdentifierService:
    """
    Service for issuing identifier ticks.

    Features:
    - Atomic single-statement increment
    - Batch allocation of contiguous tick ranges
    - Audit logging for manual initialise/sync operations
    """

    def __init__(self, db: AsyncSession, actor: Optional[str] = None):
        """
        Initialize the service.

        Args:
            db: Async database session
            actor: Optional actor id for audit logging
        """
        self.db = db
        self.actor = actor

    def _validate_namespace(self, namespace: Union[str, CounterNamespace]) -> str:
        name = get_enum_value(namespace).upper()
        if name not in COUNTER_METADATA:
            valid = ", ".join(COUNTER_METADATA.keys())
            raise ValueError(f"Invalid counter namespace '{name}'. Valid namespaces: {valid}")
        return name

    async def _log_audit(
        self,
        namespace: str,
        operation: str,
        old_value: Optional[int] = None,
        new_value: Optional[int] = None,
        source: str = "API"
    ):
        """Log an audit record for manual counter operations."""
        self.db.add(IdentifierCounterAudit(
            namespace=namespace,
            operation=operation,
            old_value=old_value,
            new_value=new_value,
            actor=self.actor,
            source=source,
        ))

    async def _ensure_counter(self, namespace: str) -> None:
        """Create the counter row if it does not exist yet."""
        try:
            async with self.db.begin_nested():
                self.db.add(IdentifierCounter(
                    name=namespace,
                    current_value=0,
                    description=COUNTER_METADATA[namespace]["description"],
                ))
        except IntegrityError:
            # Another session created it between our UPDATE and INSERT
            logger.info("Counter %s created concurrently, reusing it", namespace)

    async def _increment(self, namespace: str, step: int) -> int:
        stmt = (
            update(IdentifierCounter)
            .where(IdentifierCounter.name == namespace)
            .values(
                current_value=IdentifierCounter.current_value + step,
                updated_at=datetime.now(timezone.utc),
            )
            .returning(IdentifierCounter.current_value)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        value = result.scalar_one_or_none()
        if value is None:
            await self._ensure_counter(namespace)
            result = await self.db.execute(stmt)
            value = result.scalar_one()
        return value

    async def next_tick(self, namespace: Union[str, CounterNamespace] = CounterNamespace.QLID) -> int:
        """
        Issue the next tick of a namespace.

        Returns:
            The newly issued tick (first tick of a fresh counter is 1)
        """
        name = self._validate_namespace(namespace)
        tick = await self._increment(name, 1)
        logger.debug("Issued %s tick %d", name, tick)
        return tick

    async def next_ticks(self, count: int, namespace: Union[str, CounterNamespace] = CounterNamespace.QLID) -> List[int]:
        """
        Issue a contiguous block of ticks with one increment.

        Raises:
            ValueError: If count is not positive
        """
        if count < 1:
            raise ValueError(f"count must be positive, got {count}")
        name = self._validate_namespace(namespace)
        last = await self._increment(name, count)
        return list(range(last - count + 1, last + 1))

    async def next_qlid(self) -> str:
        """Issue the next item identifier, e.g. QLID0000000001."""
        tick = await self.next_tick(CounterNamespace.QLID)
        return qlid_codec.tick_to_qlid(tick)

    async def next_qlids(self, count: int) -> List[str]:
        """Issue a block of item identifiers for a batch intake."""
        ticks = await self.next_ticks(count, CounterNamespace.QLID)
        return [qlid_codec.tick_to_qlid(t) for t in ticks]

    async def current_tick(self, namespace: Union[str, CounterNamespace] = CounterNamespace.QLID) -> int:
        """
        Get the last issued tick.

        Returns:
            Last issued tick (0 if the counter does not exist)
        """
        name = self._validate_namespace(namespace)
        result = await self.db.execute(
            select(IdentifierCounter.current_value).where(IdentifierCounter.name == name)
        )
        return result.scalar_one_or_none() or 0

    async def preview_next_qlid(self) -> str:
        """
        Preview what the next QLID would be without incrementing.

        The preview is advisory only; a concurrent caller may take it.
        """
        current = await self.current_tick(CounterNamespace.QLID)
        return qlid_codec.tick_to_qlid(current + 1)

    async def initialize_counter(
        self,
        namespace: Union[str, CounterNamespace],
        starting_value: int = 0,
        source: str = "API"
    ) -> IdentifierCounter:
        """
        Initialize a counter, e.g. when migrating identifiers from another store.

        The counter may only move forward; lowering it would reissue ticks.

        Args:
            namespace: Counter namespace
            starting_value: Last issued tick (next issued will be +1)

        Raises:
            ValueError: If starting_value is below the current value
        """
        name = self._validate_namespace(namespace)
        if starting_value < 0:
            raise ValueError("starting_value must be non-negative")
        return await self._set_counter(name, starting_value, "INITIALIZE", source)

    async def _set_counter(self, name: str, value: int, operation: str, source: str = "API") -> IdentifierCounter:
        result = await self.db.execute(
            select(IdentifierCounter)
            .where(IdentifierCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = result.scalar_one_or_none()
        old_value = counter.current_value if counter else 0

        if value < old_value:
            raise ValueError(
                f"Counter {name} is already at {old_value}; refusing to move it back to {value}"
            )

        if counter:
            counter.current_value = value
        else:
            counter = IdentifierCounter(
                name=name,
                current_value=value,
                description=COUNTER_METADATA[name]["description"],
            )
            self.db.add(counter)

        await self._log_audit(name, operation, old_value, value, source)
        await self.db.flush()
        logger.info("Counter %s %s: %d -> %d", name, operation, old_value, value)
        return counter

    async def verify_and_repair_qlid_counter(self) -> dict:
        """
        Verify the QLID counter is ahead of every issued job tick and repair it if not.

        Returns:
            Dict with verification results
        """
        current = await self.current_tick(CounterNamespace.QLID)

        result = await self.db.execute(select(func.max(RefurbJob.tick)))
        max_issued = result.scalar_one_or_none() or 0

        status = "OK" if current >= max_issued else "MISMATCH"
        repaired = False

        if current < max_issued:
            await self._set_counter(CounterNamespace.QLID.value, max_issued, "MANUAL_SYNC")
            repaired = True
            logger.warning("QLID counter was behind issued ticks (%d < %d), repaired", current, max_issued)

        return {
            "namespace": CounterNamespace.QLID.value,
            "counter_value": current,
            "max_issued_tick": max_issued,
            "status": status,
            "repaired": repaired,
        }

    async def list_counters(self) -> List[IdentifierCounter]:
        result = await self.db.execute(select(IdentifierCounter).order_by(IdentifierCounter.name))
        return list(result.scalars().all())


# Convenience function for quick access
async def get_next_qlid(db: AsyncSession) -> str:
    """
    Quick function to issue the next item identifier.

    Usage:
        qlid = await get_next_qlid(db)
    """
    return await IdentifierService(db).next_qlid()
