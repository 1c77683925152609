"""
Identifier Counter Model for Atomic Tick Allocation

ALLOCATION RULES:
━━━━━━━━━━━━━━━━━
• One row per namespace, never reset
• Increment is a single UPDATE ... SET current_value = current_value + 1
  RETURNING current_value, so no read-then-write gap exists
• Ticks are strictly increasing in issuance order and never reused

NAMESPACES:
━━━━━━━━━━━
• QLID:          QLID0000000001, QLIDA0000000000 (item identifiers)
• CERTIFICATION: CRT-20261017-000001 (certificates, independent counter)

USAGE:
━━━━━━
    from refurbline.services.identifier_service import IdentifierService

    async def intake(db):
        service = IdentifierService(db)
        qlid = await service.next_qlid()
        # Returns: QLID0000000001
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from refurbline.database import Base
from refurbline.db_types import UUIDType


class CounterNamespace(str, Enum):
    """Namespaces that draw from an identifier counter."""
    QLID = "QLID"
    CERTIFICATION = "CERTIFICATION"


class IdentifierCounterAudit(Base):
    """
    Audit log for manual counter operations.

    Tracks initialisation and repair of counters. Routine increments are
    not audited; the issued identifiers are stored on their own rows.
    """
    __tablename__ = "identifier_counter_audit"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    namespace: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True
    )
    operation: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="INITIALIZE, MANUAL_SYNC"
    )
    old_value: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True
    )
    new_value: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        nullable=True
    )
    actor: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True
    )
    source: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="API, SCRIPT"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )


class IdentifierCounter(Base):
    """
    Monotonic counter backing one identifier namespace.

    Example:
        name = "QLID"
        current_value = 42
        → Next QLID: QLID0000000043
    """
    __tablename__ = "identifier_counters"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        comment="QLID, CERTIFICATION"
    )

    # Last issued tick (0 = nothing issued yet)
    current_value: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
        comment="Last issued tick"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<IdentifierCounter({self.name}: {self.current_value})>"
