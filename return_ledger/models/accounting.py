"""Ledger models for double-entry bookkeeping.

Implements: Accounts (per-tenant chart of accounts with running balances),
Transactions and Transaction Lines.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from return_ledger.database import Base
from return_ledger.db_types import UUIDType, MoneyType

if TYPE_CHECKING:
    from return_ledger.models.return_order import Return


class AccountType(str, Enum):
    """Account type classification."""
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class AccountSubType(str, Enum):
    """Sub-type marking accounts that money can be paid out of."""
    CASH = "CASH"
    BANK = "BANK"


class TransactionEntryType(str, Enum):
    """What caused a transaction to be posted."""
    RETURN_APPROVAL = "RETURN_APPROVAL"
    RETURN_REVERSAL = "RETURN_REVERSAL"
    RETURN_REFUND = "RETURN_REFUND"


# Accounts whose balance grows with debits. Everything else grows with credits.
DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET.value, AccountType.EXPENSE.value, AccountType.EQUITY.value})


class Account(Base):
    """
    Ledger account, unique by code within a tenant.
    Carries a running balance maintained by the ledger engine.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
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

    code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Account code e.g., 1000, 1200, 4100"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="ASSET, LIABILITY, EQUITY, INCOME, EXPENSE"
    )
    account_sub_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="CASH, BANK for payment accounts"
    )

    balance: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Running balance (auto-calculated)"
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

    @property
    def is_debit_account(self) -> bool:
        """Assets, Expenses and Equity grow with debits."""
        return self.type in DEBIT_NORMAL_TYPES

    def balance_change(self, debit: Decimal, credit: Decimal) -> Decimal:
        """Signed effect of one posting on this account's balance."""
        if self.is_debit_account:
            return debit - credit
        return credit - debit

    def __repr__(self) -> str:
        return f"<Account(code='{self.code}', name='{self.name}', balance={self.balance})>"


class Transaction(Base):
    """
    Immutable ledger event.
    Corrections are made by posting a reversing transaction, never by editing.
    """
    __tablename__ = "transactions"

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

    transaction_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True
    )
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    entry_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="RETURN_APPROVAL, RETURN_REVERSAL, RETURN_REFUND"
    )

    # Source links
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    return_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("returns.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    reversal_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("transactions.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Transaction this one reverses"
    )

    total_debit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    lines: Mapped[List["TransactionLine"]] = relationship(
        "TransactionLine",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionLine.line_number"
    )
    return_record: Mapped[Optional["Return"]] = relationship(
        "Return",
        back_populates="transactions"
    )

    def __repr__(self) -> str:
        return f"<Transaction(number='{self.transaction_number}', type='{self.entry_type}')>"


class TransactionLine(Base):
    """One debit or credit posting against an account."""
    __tablename__ = "transaction_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    debit_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    # Relationships
    transaction: Mapped["Transaction"] = relationship("Transaction", back_populates="lines")
    account: Mapped["Account"] = relationship("Account")

    def __repr__(self) -> str:
        return f"<TransactionLine(account_id={self.account_id}, dr={self.debit_amount}, cr={self.credit_amount})>"
