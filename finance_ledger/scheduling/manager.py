"""
Schedule Management

Create, change and inspect recurring transaction templates. The sweep
itself lives in `processor.py`; this module only covers the user-driven
transitions:

- creation computes the first due date one period after the start date
- recurrence changes recompute the due date from the (new) start date
- a paused schedule returns to active only through `resume_schedule` or
  an explicit status update
- cancelled is terminal
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from finance_ledger.audit import AuditLogger
from finance_ledger.models.schedule import (
    Frequency,
    ScheduleDraft,
    ScheduleStatus,
    ScheduleUpdate,
    ScheduledTransaction,
    UpcomingSchedules,
)
from finance_ledger.scheduling.recurrence import RecurrenceCalculator
from finance_ledger.services.storage import NotFoundError, StorageBundle


class ScheduleError(Exception):
    """Schedule input or transition that cannot be applied."""
    pass


class ScheduleManager:

    def __init__(
        self,
        storage: StorageBundle,
        audit_logger: Optional[AuditLogger] = None,
        upcoming_window_days: int = 3,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._upcoming_window = timedelta(days=upcoming_window_days)

    async def _check_account(self, account_id: UUID, user_id: str) -> None:
        account = await self._storage.accounts.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        if account.user_id != user_id:
            raise ScheduleError(
                f"Account {account_id} does not belong to user {user_id}"
            )

    async def get_schedule(self, schedule_id: UUID, user_id: str) -> ScheduledTransaction:
        """
        Raises:
            NotFoundError: If the schedule doesn't exist for this user
        """
        schedule = await self._storage.schedules.get_schedule(schedule_id)
        if schedule is None or schedule.user_id != user_id:
            raise NotFoundError(f"Scheduled transaction not found: {schedule_id}")
        return schedule

    async def create_schedule(
        self,
        user_id: str,
        draft: ScheduleDraft,
        now: Optional[datetime] = None,
    ) -> ScheduledTransaction:
        """
        Create an active schedule.

        The start date defaults to `now`. The first execution is one period
        after the start date.

        Raises:
            NotFoundError: If the account doesn't exist
            ScheduleError: If the account belongs to another user
            ValueError: If the end date precedes the start date
        """
        await self._check_account(draft.account_id, user_id)

        start_date = draft.start_date or now or datetime.utcnow()
        fields = draft.model_dump(exclude={"start_date"})
        schedule = ScheduledTransaction(
            user_id=user_id,
            start_date=start_date,
            next_execution_date=RecurrenceCalculator.next_date(
                start_date,
                draft.frequency,
                day_of_month=draft.day_of_month,
                day_of_week=draft.day_of_week,
            ),
            **fields,
        )

        await self._storage.schedules.save_schedule(schedule)
        await self._audit.log_schedule_created(schedule)
        return schedule

    async def update_schedule(
        self,
        schedule_id: UUID,
        user_id: str,
        changes: ScheduleUpdate,
    ) -> ScheduledTransaction:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the schedule or a new account doesn't exist
            ScheduleError: If the account is foreign or the schedule is cancelled
            ValueError: If the resulting dates are inconsistent
        """
        current = await self.get_schedule(schedule_id, user_id)
        patch = changes.model_dump(exclude_unset=True)
        if not patch:
            return current

        if current.status == ScheduleStatus.CANCELLED:
            raise ScheduleError("Cancelled schedules cannot be changed")
        if patch.get("account_id") is not None:
            await self._check_account(patch["account_id"], user_id)

        # Validate the merged result before writing anything
        merged = ScheduledTransaction.model_validate({**current.model_dump(), **patch})
        if changes.changes_recurrence():
            patch["next_execution_date"] = RecurrenceCalculator.next_date(
                merged.start_date,
                merged.frequency,
                day_of_month=merged.day_of_month,
                day_of_week=merged.day_of_week,
            )

        updated = await self._storage.schedules.update_schedule(schedule_id, patch)
        await self._audit.log_schedule_updated(updated, list(changes.model_fields_set))
        return updated

    async def resume_schedule(self, schedule_id: UUID, user_id: str) -> ScheduledTransaction:
        """
        Return a paused schedule to active.

        The due date is left as it was, so the skipped occurrence is retried
        on the next sweep.
        """
        schedule = await self.get_schedule(schedule_id, user_id)
        if schedule.status == ScheduleStatus.ACTIVE:
            return schedule
        if schedule.status != ScheduleStatus.PAUSED:
            raise ScheduleError(f"Cannot resume a {schedule.status.value} schedule")
        return await self.update_schedule(
            schedule_id,
            user_id,
            ScheduleUpdate(status=ScheduleStatus.ACTIVE),
        )

    async def cancel_schedule(self, schedule_id: UUID, user_id: str) -> ScheduledTransaction:
        schedule = await self.get_schedule(schedule_id, user_id)
        if schedule.status == ScheduleStatus.CANCELLED:
            return schedule
        if schedule.status == ScheduleStatus.COMPLETED:
            raise ScheduleError("Cannot cancel a completed schedule")
        return await self.update_schedule(
            schedule_id,
            user_id,
            ScheduleUpdate(status=ScheduleStatus.CANCELLED),
        )

    async def delete_schedule(self, schedule_id: UUID, user_id: str) -> None:
        await self.get_schedule(schedule_id, user_id)
        await self._storage.schedules.delete_schedule(schedule_id)

    async def list_schedules(
        self,
        user_id: str,
        status: Optional[ScheduleStatus] = None,
        account_id: Optional[UUID] = None,
        frequency: Optional[Frequency] = None,
    ) -> list[ScheduledTransaction]:
        return await self._storage.schedules.list_schedules(
            user_id,
            status=status,
            account_id=account_id,
            frequency=frequency,
        )

    async def get_upcoming(self, user_id: str, now: datetime) -> UpcomingSchedules:
        """Active schedules due within the window, plus paused ones."""
        horizon = now + self._upcoming_window
        active = await self.list_schedules(user_id, status=ScheduleStatus.ACTIVE)
        paused = await self.list_schedules(user_id, status=ScheduleStatus.PAUSED)
        return UpcomingSchedules(
            upcoming=[s for s in active if now <= s.next_execution_date <= horizon],
            insufficient_funds=paused,
        )
