"""
Application Context

LedgerSystem wires storage, managers, notifications and the reminder scheduler
from configuration. One instance is built per process (or per test) and handed
to whatever needs it.
"""

from typing import Optional

from .config import LedgerConfig, get_config
from .storage import StorageInterface, create_storage
from .collections import CollectionManager
from .schedule import ScheduleGenerator
from .borrowers import BorrowerManager
from .reporting import ReportingEngine
from .users import UserDirectory
from .notifications import NotificationEngine, NotificationChannel, EmailChannelProvider
from .reminders import ReminderJob, ReminderScheduler
from .migrations import MigrationManager
from .logging_config import setup_logging


class LedgerSystem:
    """Lending ledger with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.logger = setup_logging(self.config.log_level, log_format=self.config.log_format)

        self.storage = storage or create_storage(self.config.storage_backend, self.config.database_path)

        self.collection_manager = CollectionManager(self.storage)
        self.schedule_generator = ScheduleGenerator(self.storage, self.config.schedule_months)
        self.borrower_manager = BorrowerManager(
            self.storage, self.schedule_generator, self.collection_manager
        )
        self.reporting_engine = ReportingEngine(
            self.storage, self.config.upcoming_window_days, self.config.upcoming_limit
        )
        self.user_directory = UserDirectory(self.storage, self.config.online_window_minutes)

        self.notification_engine = NotificationEngine(self.storage)
        self.notification_engine.register_provider(
            NotificationChannel.EMAIL,
            EmailChannelProvider(
                host=self.config.smtp_host,
                port=self.config.smtp_port,
                user=self.config.smtp_user,
                password=self.config.smtp_password,
                from_address=self.config.smtp_from,
                timeout=self.config.smtp_timeout
            )
        )

        self.reminder_job = ReminderJob(
            self.reporting_engine, self.user_directory, self.notification_engine
        )
        self.reminder_scheduler = ReminderScheduler(self.reminder_job, self.config.reminder_hour)
        self.migration_manager = MigrationManager(self.storage)

    def start(self) -> None:
        """Apply pending data migrations and start the reminder loop (needs a running event loop)"""
        if self.config.auto_migrate:
            self.migration_manager.migrate_up()
        if self.config.reminders_enabled:
            self.reminder_scheduler.start()
        self.logger.info("Lending ledger started")

    async def close(self) -> None:
        await self.reminder_scheduler.stop()
        self.storage.close()
        self.logger.info("Lending ledger stopped")
