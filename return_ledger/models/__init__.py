# Models module
from return_ledger.models.customer import Customer
from return_ledger.models.order import Order, OrderItem, OrderReturnStatus
from return_ledger.models.return_order import (
    Return,
    ReturnItem,
    ReturnType,
    ReturnStatus,
    ShippingChargeHandling,
    RefundMethod,
    ACTIVE_RETURN_STATUSES,
)
from return_ledger.models.accounting import (
    Account,
    AccountType,
    AccountSubType,
    Transaction,
    TransactionLine,
    TransactionEntryType,
)
from return_ledger.models.document_sequence import DocumentSequence, DocumentType
from return_ledger.models.inventory import StockMovement, StockMovementType

__all__ = [
    "Customer",
    "Order",
    "OrderItem",
    "OrderReturnStatus",
    # Returns
    "Return",
    "ReturnItem",
    "ReturnType",
    "ReturnStatus",
    "ShippingChargeHandling",
    "RefundMethod",
    "ACTIVE_RETURN_STATUSES",
    # Ledger
    "Account",
    "AccountType",
    "AccountSubType",
    "Transaction",
    "TransactionLine",
    "TransactionEntryType",
    # Support
    "DocumentSequence",
    "DocumentType",
    "StockMovement",
    "StockMovementType",
]
