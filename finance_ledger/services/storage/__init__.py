"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend is the default; Google Sheets is the persistent one.
Both are swappable behind the same interfaces.
"""

from finance_ledger.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    BudgetStorageInterface,
    CategoryStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    NotificationStorageInterface,
    ScheduledTransactionStorageInterface,
    StorageBundle,
    StorageError,
    TransactionStorageInterface,
    UnitOfWork,
)
from finance_ledger.services.storage.memory import (
    InMemoryDatabase,
    create_in_memory_storage,
)
from finance_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    create_google_sheets_storage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "CategoryStorageInterface",
    "NotificationStorageInterface",
    "ScheduledTransactionStorageInterface",
    "StorageBundle",
    "TransactionStorageInterface",
    "UnitOfWork",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryDatabase",
    "create_in_memory_storage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "create_google_sheets_storage",
]
