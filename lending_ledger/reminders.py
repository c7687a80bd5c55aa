"""
Reminder Job Module

Daily email reminders: one message per user per bucket (due in two days, due
today, overdue), plus the asyncio scheduler that runs the job once a day.
"""

import asyncio
from datetime import datetime, timezone, date, time, timedelta
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from .reporting import ReportingEngine, ReminderItem
from .users import UserDirectory
from .notifications import NotificationEngine, NotificationChannel, NotificationStatus
from .logging_config import get_logger, log_action


BUCKET_ORDER = ('two_days', 'today', 'overdue')

SUBJECTS = {
    'two_days': "Reminder: Interest Collections Due in 2 Days",
    'today': "Reminder: Interest Collections Due Today",
    'overdue': "Overdue: Interest Collections"
}

INTROS = {
    'two_days': "The following interest collections are due in 2 days:",
    'today': "The following interest collections are due today:",
    'overdue': "The following interest collections are overdue:"
}


def format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def render_reminder(user_name: str, bucket: str, items: List[ReminderItem]) -> str:
    """Plain-text email body for one reminder bucket"""
    lines = [
        f"- {item.borrower.borrower_name}: {format_amount(item.amount)} "
        f"(Due: {item.collection.due_date.isoformat()})"
        for item in items
    ]
    return (
        f"Hello {user_name},\n\n"
        f"{INTROS[bucket]}\n\n"
        + "\n".join(lines)
        + "\n\nPlease log in to your lending ledger to mark them as collected.\n\n"
        "Best regards,\nLending Ledger"
    )


@dataclass
class ReminderRunResult:
    """Outcome of one reminder run"""
    run_date: date
    users_notified: int = 0
    emails_sent: int = 0
    emails_skipped: int = 0
    failures: List[str] = field(default_factory=list)


class ReminderJob:
    """Groups pending collections by owner and emails each owner"""

    def __init__(self, reporting: ReportingEngine, users: UserDirectory,
                 notifications: NotificationEngine,
                 channel: NotificationChannel = NotificationChannel.EMAIL):
        self.reporting = reporting
        self.users = users
        self.notifications = notifications
        self.channel = channel
        self.logger = get_logger("lending_ledger.reminders")

    async def run(self, today: Optional[date] = None) -> ReminderRunResult:
        today = today or datetime.now(timezone.utc).date()
        result = ReminderRunResult(run_date=today)
        buckets = self.reporting.reminder_buckets(today)

        by_owner: Dict[str, Dict[str, List[ReminderItem]]] = {}
        for bucket in BUCKET_ORDER:
            for item in buckets.get(bucket, []):
                owner = by_owner.setdefault(item.owner_id, {name: [] for name in BUCKET_ORDER})
                owner[bucket].append(item)

        for owner_id, owner_buckets in by_owner.items():
            user = self.users.find_user(owner_id)
            if user is None or not user.is_active or not user.email:
                continue

            # One user's failure must not stop the others
            notified = False
            for bucket in BUCKET_ORDER:
                items = owner_buckets[bucket]
                if not items:
                    continue
                try:
                    notification = await self.notifications.send(
                        channel=self.channel,
                        recipient_id=user.id,
                        recipient_address=user.email,
                        subject=SUBJECTS[bucket],
                        body=render_reminder(user.name, bucket, items),
                        metadata={
                            "reminder_type": bucket,
                            "collection_ids": [item.collection.id for item in items]
                        }
                    )
                except Exception as e:
                    log_action(
                        self.logger, "error", f"Reminder dispatch failed: {e}",
                        user_id=owner_id, action="reminder_failed",
                        extra={"reminder_type": bucket}
                    )
                    result.failures.append(owner_id)
                    continue

                if notification.status == NotificationStatus.SENT:
                    result.emails_sent += 1
                    notified = True
                elif notification.status == NotificationStatus.SKIPPED:
                    result.emails_skipped += 1
                else:
                    result.failures.append(owner_id)

            if notified:
                result.users_notified += 1

        log_action(
            self.logger, "info", "Reminder run completed",
            action="reminder_run",
            extra={
                "run_date": today.isoformat(),
                "users_notified": result.users_notified,
                "emails_sent": result.emails_sent,
                "emails_skipped": result.emails_skipped,
                "failures": len(result.failures)
            }
        )
        return result


def seconds_until(hour: int, now: datetime) -> float:
    """Seconds from now until the next occurrence of hour:00 UTC"""
    target = datetime.combine(now.date(), time(hour=hour), tzinfo=timezone.utc)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class ReminderScheduler:
    """Runs a ReminderJob once a day at a fixed UTC hour"""

    def __init__(self, job: ReminderJob, hour: int = 9):
        if not 0 <= hour <= 23:
            raise ValueError(f"Invalid reminder hour: {hour}")
        self.job = job
        self.hour = hour
        self.logger = get_logger("lending_ledger.reminders")
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the daily loop on the running event loop"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        self.logger.info(f"Reminder job scheduled to run daily at {self.hour:02d}:00 UTC")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(seconds_until(self.hour, datetime.now(timezone.utc)))
            try:
                await self.job.run()
            except Exception:
                self.logger.exception("Reminder run failed")
