# API v1 endpoints
from return_ledger.api.v1.endpoints import accounting, returns

__all__ = ["accounting", "returns"]
