"""
Transaction Ledger Gateway

The single write path for ledger entries. Every create, update and delete
keeps the owning account balance and the affected budgets consistent:

    persist entry + balance delta        (one atomic scope)
    expense -> BudgetAggregator -> NotificationDeduper   (best-effort)

Budget and notification failures are logged and never fail the write.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from finance_ledger.audit import AuditLogger
from finance_ledger.budgets.aggregator import BudgetAggregator
from finance_ledger.models.audit import AuditEventType
from finance_ledger.models.budget import BudgetAlert
from finance_ledger.models.ledger import (
    Account,
    Transaction,
    TransactionDraft,
    TransactionType,
    TransactionUpdate,
)
from finance_ledger.notifications.deduper import NotificationDeduper
from finance_ledger.services.storage import NotFoundError, StorageBundle


logger = structlog.get_logger(__name__)


class TransactionError(Exception):
    """Ledger input that cannot be applied (e.g. an account of another user)."""
    pass


class TransactionLedgerGateway:
    """
    Usage:
        gateway = TransactionLedgerGateway(storage, aggregator, deduper)
        transaction, alerts = await gateway.create_transaction(user_id, draft)
    """

    def __init__(
        self,
        storage: StorageBundle,
        aggregator: BudgetAggregator,
        deduper: NotificationDeduper,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._aggregator = aggregator
        self._deduper = deduper
        self._audit = audit_logger or AuditLogger()

    async def _owned_account(self, account_id: UUID, user_id: str) -> Account:
        account = await self._storage.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        if account.user_id != user_id:
            raise TransactionError(
                f"Account {account_id} does not belong to user {user_id}"
            )
        return account

    async def _owned_transaction(self, transaction_id: UUID, user_id: str) -> Transaction:
        transaction = await self._storage.transactions.get_transaction(transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    async def _shift_balance(self, account_id: UUID, delta: Decimal) -> None:
        if delta:
            await self._storage.accounts.increment_balance(account_id, delta)

    async def _budget_effect(
        self,
        transaction: Transaction,
        delta: Decimal,
        notify: bool = True,
    ) -> list[BudgetAlert]:
        """Run the budget path for an expense; never raises."""
        if transaction.type != TransactionType.EXPENSE:
            return []
        try:
            alerts = await self._aggregator.apply_transaction_delta(transaction, delta)
        except Exception as e:
            logger.error(
                "budget_update_failed",
                transaction_id=str(transaction.id),
                delta=str(delta),
                error=str(e),
            )
            return []

        if notify and alerts:
            try:
                await self._deduper.create_from_alerts(alerts, transaction.user_id)
            except Exception as e:
                logger.error(
                    "notification_dispatch_failed",
                    transaction_id=str(transaction.id),
                    alert_count=len(alerts),
                    error=str(e),
                )
        return alerts

    async def create_transaction(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Transaction, list[BudgetAlert]]:
        """
        Persist a new ledger entry and apply its balance and budget effects.

        Raises:
            NotFoundError: If the account doesn't exist
            TransactionError: If the account belongs to another user
        """
        await self._owned_account(draft.account_id, user_id)

        fields = draft.model_dump(exclude_none=True)
        transaction = Transaction(user_id=user_id, **fields)

        async with self._storage.unit_of_work.atomic():
            await self._storage.transactions.save_transaction(transaction)
            await self._shift_balance(transaction.account_id, transaction.balance_delta)

        alerts = await self._budget_effect(transaction, transaction.amount)
        await self._audit.log_transaction_changed(
            AuditEventType.TRANSACTION_CREATED,
            transaction,
            correlation_id=correlation_id,
        )
        return transaction, alerts

    async def update_transaction(
        self,
        transaction_id: UUID,
        user_id: str,
        changes: TransactionUpdate,
    ) -> tuple[Transaction, list[BudgetAlert]]:
        """
        Apply a partial update.

        The old balance effect is reversed and the new one applied, which may
        span two accounts. When type, amount, category or date change the
        old expense is taken out of its budgets and the new one added.

        Raises:
            NotFoundError: If the transaction (or a new account) doesn't exist
            TransactionError: If the new account belongs to another user
        """
        old = await self._owned_transaction(transaction_id, user_id)
        patch = changes.model_dump(exclude_unset=True)
        if patch.get("account_id") is not None:
            await self._owned_account(patch["account_id"], user_id)

        updated = Transaction.model_validate(
            {**old.model_dump(), **patch, "updated_at": datetime.utcnow()}
        )

        async with self._storage.unit_of_work.atomic():
            await self._shift_balance(old.account_id, -old.balance_delta)
            await self._shift_balance(updated.account_id, updated.balance_delta)
            await self._storage.transactions.update_transaction(updated)

        alerts: list[BudgetAlert] = []
        if changes.touches_budgets():
            await self._budget_effect(old, -old.amount, notify=False)
            alerts = await self._budget_effect(updated, updated.amount)

        await self._audit.log_transaction_changed(AuditEventType.TRANSACTION_UPDATED, updated)
        return updated, alerts

    async def delete_transaction(
        self,
        transaction_id: UUID,
        user_id: str,
    ) -> tuple[Transaction, list[BudgetAlert]]:
        """
        Remove a ledger entry, reverting its balance and budget effects.

        Alerts still standing after the reversal go through the deduper
        like any other budget change.

        Raises:
            NotFoundError: If the transaction doesn't exist for this user
        """
        transaction = await self._owned_transaction(transaction_id, user_id)

        async with self._storage.unit_of_work.atomic():
            await self._shift_balance(transaction.account_id, -transaction.balance_delta)
            await self._storage.transactions.delete_transaction(transaction.id)

        alerts = await self._budget_effect(transaction, -transaction.amount)
        await self._audit.log_transaction_changed(AuditEventType.TRANSACTION_DELETED, transaction)
        return transaction, alerts
