"""
Document Sequence Model for Atomic Number Generation

One counter row per tenant and document type. The counter is continuous
(no yearly reset); the year in a document number is the issue year.

DOCUMENT FORMATS:
━━━━━━━━━━━━━━━━
• RET: RET-2026-0001 (Customer Return)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from return_ledger.database import Base
from return_ledger.db_types import UUIDType


class DocumentType(str, Enum):
    """Document types that use sequence numbering."""
    CUSTOMER_RETURN = "RET"


class DocumentSequence(Base):
    """
    Per-tenant counter for document numbers.

    Example:
        document_type = "RET"
        current_number = 41
        → Next return number in 2026: RET-2026-0042
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "document_type",
            name="uq_document_sequence_tenant_type"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        nullable=False,
        index=True
    )

    document_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="RET"
    )
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)

    # Sequence Counter
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(
        Integer,
        default=4,
        nullable=False,
        comment="Zero padding for sequence (4 = 0001)"
    )

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

    def get_next_number(self, year: int) -> str:
        """
        Generate next document number.

        NOTE: This method increments current_number but does NOT
        commit to database. The caller must handle the transaction.
        """
        self.current_number += 1
        seq = str(self.current_number).zfill(self.padding_length)
        return f"{self.prefix}-{year}-{seq}"

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.document_type}: {self.current_number})>"
