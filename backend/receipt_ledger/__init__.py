"""Top-level application package for the receipt-to-ledger API.

This package turns a photographed receipt into ledger transactions. It
contains the storage layer for uploaded images, the extraction service
that asks a vision-capable model for structured expenses, the
reconciliation service that matches those expenses to accounts and
payees, and the FastAPI routers exposing all of it.

To run the API locally you can execute:

```bash
uvicorn receipt_ledger.api.main:app --reload
```

from the ``backend`` directory. Configuration is read from environment
variables or a ``.env`` file at the project root.
"""

__all__: list[str] = []
