"""Services package."""

from finance_ledger.services.storage import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageBundle,
    StorageError,
    create_google_sheets_storage,
    create_in_memory_storage,
)

__all__ = [
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageBundle",
    "StorageError",
    "create_google_sheets_storage",
    "create_in_memory_storage",
]
