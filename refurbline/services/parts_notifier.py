"""Parts consumption hand-off to the inventory collaborator."""

import logging
import uuid
from typing import List, Protocol


logger = logging.getLogger(__name__)


class PartsConsumer(Protocol):
    """Receives the parts actually used when a diagnosis is marked repaired.

    Stock-level bookkeeping belongs to the implementer. Raising aborts the
    repair so the diagnosis and the consumption stay consistent.
    """

    async def consume(
        self,
        qlid: str,
        diagnosis_id: uuid.UUID,
        parts_used: List[dict],
        actor: str,
    ) -> None:
        ...


class LoggingPartsConsumer:
    """Default consumer: records the consumption in the application log."""

    async def consume(
        self,
        qlid: str,
        diagnosis_id: uuid.UUID,
        parts_used: List[dict],
        actor: str,
    ) -> None:
        if not parts_used:
            return
        summary = ", ".join(
            f"{part.get('part_number') or part.get('sku') or '?'} x{part.get('quantity', 1)}"
            for part in parts_used
        )
        logger.info("Parts consumed for %s (diagnosis %s) by %s: %s", qlid, diagnosis_id, actor, summary)
