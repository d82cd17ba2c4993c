"""
Document Sequence Service for Atomic Number Generation

USAGE:
    from return_ledger.services.document_sequence_service import DocumentSequenceService

    async def create_return(db: AsyncSession, tenant_id: UUID):
        service = DocumentSequenceService(db, tenant_id)
        return_number = await service.get_next_number("RET")
        # Returns: RET-2026-0001

The counter row is read with SELECT FOR UPDATE, so two concurrent returns for
the same tenant never receive the same number.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from return_ledger.config import settings
from return_ledger.models.document_sequence import DocumentSequence, DocumentType


# Document type metadata
DOCUMENT_METADATA = {
    DocumentType.CUSTOMER_RETURN.value: {
        "prefix": settings.RETURN_NUMBER_PREFIX,
        "padding": settings.RETURN_NUMBER_PADDING,
    },
}


class DocumentSequenceService:
    """Generates per-tenant document numbers under a row lock."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def get_next_number(self, document_type: str, year: Optional[int] = None) -> str:
        """
        Get the next document number, incrementing the counter.

        Must run inside the caller's transaction; the number is only
        consumed if that transaction commits.
        """
        doc_type = document_type.upper()
        if doc_type not in DOCUMENT_METADATA:
            raise ValueError(f"Invalid document type: {doc_type}")

        if year is None:
            year = datetime.now(timezone.utc).year

        sequence = await self._get_or_create_sequence(doc_type)
        number = sequence.get_next_number(year)
        await self.db.flush()
        return number

    async def _get_or_create_sequence(self, document_type: str) -> DocumentSequence:
        """Get existing sequence with row lock, or create new one."""
        result = await self.db.execute(
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == self.tenant_id,
                DocumentSequence.document_type == document_type,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        sequence = result.scalar_one_or_none()

        if sequence:
            return sequence

        metadata = DOCUMENT_METADATA[document_type]
        sequence = DocumentSequence(
            tenant_id=self.tenant_id,
            document_type=document_type,
            prefix=metadata["prefix"],
            current_number=0,
            padding_length=metadata["padding"],
        )
        self.db.add(sequence)
        await self.db.flush()
        return sequence
