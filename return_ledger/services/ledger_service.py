"""
Ledger Engine

Posts balanced double-entry transactions and keeps account running balances.

POSTING RULES:
━━━━━━━━━━━━━━
• sum(debit) must equal sum(credit) within LEDGER_BALANCE_TOLERANCE,
  checked before anything is written
• ASSET / EXPENSE / EQUITY accounts: balance += debit - credit
• INCOME / LIABILITY accounts:       balance += credit - debit
• Transactions are never edited; a reversal is a new transaction with every
  line's debit and credit swapped
• Account rows are locked FOR UPDATE in ascending id order before their
  balances change, so concurrent postings on the same account serialize
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from return_ledger.config import settings
from return_ledger.core.enum_utils import get_enum_value
from return_ledger.core.exceptions import LedgerImbalanceError, ValidationError
from return_ledger.models.accounting import (
    Account, AccountType, AccountSubType,
    Transaction, TransactionLine, TransactionEntryType,
)
from return_ledger.services.valuation import to_money


logger = logging.getLogger(__name__)


# Well-known account codes used by the return engine
ACCOUNT_CODES = {
    "CASH": "1000",
    "BANK": "1100",
    "ACCOUNTS_RECEIVABLE": "1200",
    "CUSTOMER_ADVANCE": "1210",
    "SALES_RETURNS": "4100",
}


# code -> (name, type, sub type)
DEFAULT_CHART: Dict[str, Tuple[str, AccountType, Optional[AccountSubType]]] = {
    # Assets
    "1000": ("Cash", AccountType.ASSET, AccountSubType.CASH),
    "1100": ("Bank", AccountType.ASSET, AccountSubType.BANK),
    "1200": ("Accounts Receivable", AccountType.ASSET, None),
    "1210": ("Customer Advance Balance", AccountType.ASSET, None),
    "1300": ("Inventory", AccountType.ASSET, None),
    # Liabilities
    "2000": ("Accounts Payable", AccountType.LIABILITY, None),
    # Equity
    "3000": ("Owner Capital", AccountType.EQUITY, None),
    "3200": ("Retained Earnings", AccountType.EQUITY, None),
    # Income
    "4000": ("Sales Revenue", AccountType.INCOME, None),
    "4100": ("Sales Returns", AccountType.INCOME, None),
    "4200": ("Shipping Revenue", AccountType.INCOME, None),
    # Expenses
    "5000": ("Cost of Goods Sold", AccountType.EXPENSE, None),
    "5100": ("Shipping Expense", AccountType.EXPENSE, None),
}


@dataclass(frozen=True)
class PostingLine:
    """Debit/credit against one account, before it is persisted."""
    account_id: UUID
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")


def generate_transaction_number() -> str:
    now = datetime.now(timezone.utc)
    return f"TXN-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


class LedgerService:
    """
    Double-entry ledger for one database session.

    The service flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession, tolerance: Optional[Decimal] = None):
        self.db = db
        self.tolerance = Decimal(str(tolerance if tolerance is not None else settings.LEDGER_BALANCE_TOLERANCE))

    # ==================== Accounts ====================

    async def get_account_by_code(self, tenant_id: UUID, code: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(
                Account.tenant_id == tenant_id,
                Account.code == code,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_account(
        self,
        tenant_id: UUID,
        code: str,
        name: Optional[str] = None,
        account_type: Optional[AccountType] = None,
    ) -> Account:
        """
        Get an account by code, creating it with a zero balance if absent.

        Raises ValueError for codes outside DEFAULT_CHART.
        """
        if code not in DEFAULT_CHART:
            raise ValueError(f"Unknown account code: {code}")

        account = await self.get_account_by_code(tenant_id, code)
        if account:
            return account

        default_name, default_type, sub_type = DEFAULT_CHART[code]
        account = Account(
            tenant_id=tenant_id,
            code=code,
            name=name or default_name,
            type=get_enum_value(account_type or default_type),
            account_sub_type=get_enum_value(sub_type),
            balance=Decimal("0"),
        )
        self.db.add(account)
        await self.db.flush()
        logger.info(f"Created account {code} ({account.name}) for tenant {tenant_id}")
        return account

    async def initialize_chart_of_accounts(self, tenant_id: UUID) -> List[Account]:
        """Create every default account missing for the tenant. Idempotent."""
        accounts = []
        for code in DEFAULT_CHART:
            accounts.append(await self.get_or_create_account(tenant_id, code))
        return accounts

    async def list_accounts(self, tenant_id: UUID, account_type: Optional[str] = None) -> List[Account]:
        query = select(Account).where(Account.tenant_id == tenant_id)
        if account_type:
            query = query.where(Account.type == get_enum_value(account_type))
        result = await self.db.execute(query.order_by(Account.code))
        return list(result.scalars().all())

    async def get_payment_accounts(
        self,
        tenant_id: UUID,
        sub_type: Optional[AccountSubType] = None,
    ) -> List[Account]:
        """Cash and bank accounts money can be paid out of."""
        sub_types = [get_enum_value(sub_type)] if sub_type else [s.value for s in AccountSubType]
        result = await self.db.execute(
            select(Account)
            .where(
                Account.tenant_id == tenant_id,
                Account.type == AccountType.ASSET.value,
                Account.account_sub_type.in_(sub_types),
            )
            .order_by(Account.code)
        )
        return list(result.scalars().all())

    # ==================== Posting ====================

    async def post_transaction(
        self,
        tenant_id: UUID,
        description: str,
        lines: Sequence[PostingLine],
        entry_type: TransactionEntryType,
        order_id: Optional[UUID] = None,
        return_id: Optional[UUID] = None,
        reversal_of_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Post a balanced transaction and apply it to account balances.

        Raises LedgerImbalanceError before any write if the lines do not
        balance within tolerance.
        """
        if not lines:
            raise ValidationError("A transaction needs at least one line")

        normalized = []
        for line in lines:
            debit = to_money(line.debit)
            credit = to_money(line.credit)
            if debit < 0 or credit < 0:
                raise ValidationError(
                    "Debit and credit amounts cannot be negative",
                    {"account_id": str(line.account_id)},
                )
            normalized.append((line.account_id, debit, credit))

        total_debit = sum((d for _, d, _ in normalized), Decimal("0"))
        total_credit = sum((c for _, _, c in normalized), Decimal("0"))
        if abs(total_debit - total_credit) > self.tolerance:
            logger.error(
                f"Unbalanced transaction rejected: '{description}' "
                f"debit={total_debit} credit={total_credit}"
            )
            raise LedgerImbalanceError(
                "Transaction is not balanced",
                {"total_debit": str(total_debit), "total_credit": str(total_credit)},
            )

        accounts = await self._lock_accounts(tenant_id, {account_id for account_id, _, _ in normalized})

        transaction = Transaction(
            tenant_id=tenant_id,
            transaction_number=generate_transaction_number(),
            date=datetime.now(timezone.utc),
            description=description,
            entry_type=get_enum_value(entry_type),
            order_id=order_id,
            return_id=return_id,
            reversal_of_id=reversal_of_id,
            total_debit=total_debit,
            total_credit=total_credit,
        )

        for line_number, (account_id, debit, credit) in enumerate(normalized, start=1):
            account = accounts[account_id]
            account.balance = to_money(account.balance) + account.balance_change(debit, credit)
            transaction.lines.append(
                TransactionLine(
                    line_number=line_number,
                    account_id=account_id,
                    debit_amount=debit,
                    credit_amount=credit,
                )
            )

        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def reverse_transaction(
        self,
        original: Transaction,
        description: Optional[str] = None,
        entry_type: TransactionEntryType = TransactionEntryType.RETURN_REVERSAL,
    ) -> Transaction:
        """Post a transaction that exactly negates ``original``."""
        result = await self.db.execute(
            select(TransactionLine)
            .where(TransactionLine.transaction_id == original.id)
            .order_by(TransactionLine.line_number)
        )
        swapped = [
            PostingLine(
                account_id=line.account_id,
                debit=line.credit_amount,
                credit=line.debit_amount,
            )
            for line in result.scalars().all()
        ]

        return await self.post_transaction(
            tenant_id=original.tenant_id,
            description=description or f"Reversal of {original.transaction_number}: {original.description}",
            lines=swapped,
            entry_type=entry_type,
            order_id=original.order_id,
            return_id=original.return_id,
            reversal_of_id=original.id,
        )

    # ==================== Queries ====================

    async def get_unreversed_transactions(
        self,
        tenant_id: UUID,
        return_id: UUID,
        entry_type: TransactionEntryType,
    ) -> List[Transaction]:
        """Transactions of a return with no reversal posted against them yet."""
        reversal = aliased(Transaction)
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.tenant_id == tenant_id,
                Transaction.return_id == return_id,
                Transaction.entry_type == get_enum_value(entry_type),
                ~exists().where(reversal.reversal_of_id == Transaction.id),
            )
            .order_by(Transaction.created_at)
        )
        return list(result.scalars().all())

    async def list_transactions_for_return(self, tenant_id: UUID, return_id: UUID) -> List[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .options(selectinload(Transaction.lines).selectinload(TransactionLine.account))
            .where(
                Transaction.tenant_id == tenant_id,
                Transaction.return_id == return_id,
            )
            .order_by(Transaction.created_at, Transaction.transaction_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _lock_accounts(self, tenant_id: UUID, account_ids) -> Dict[UUID, Account]:
        result = await self.db.execute(
            select(Account)
            .where(Account.id.in_(account_ids))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        accounts = {account.id: account for account in result.scalars().all()}

        missing = set(account_ids) - set(accounts)
        if missing:
            raise ValidationError(
                "Posting references unknown accounts",
                {"account_ids": sorted(str(a) for a in missing)},
            )
        foreign = [a for a in accounts.values() if a.tenant_id != tenant_id]
        if foreign:
            raise ValidationError("Posting references another tenant's account")
        return accounts
