# Services module
from return_ledger.services.ledger_service import LedgerService
from return_ledger.services.customer_service import CustomerService
from return_ledger.services.document_sequence_service import DocumentSequenceService
from return_ledger.services.inventory_service import InventoryService
from return_ledger.services.return_service import ReturnLifecycleService

__all__ = [
    "LedgerService",
    "CustomerService",
    "DocumentSequenceService",
    "InventoryService",
    "ReturnLifecycleService",
]
