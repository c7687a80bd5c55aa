"""
Notification Engine Module

Delivers reminder messages through pluggable channel providers and keeps a
delivery history in the notifications table.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Dict, List, Optional, Any
from enum import Enum
from abc import ABC, abstractmethod
import asyncio
import smtplib
import uuid

import requests

from .storage import StorageInterface, StorageRecord
from .logging_config import get_logger, log_action


class NotificationChannel(Enum):
    """Available notification channels"""
    EMAIL = "email"
    WEBHOOK = "webhook"
    LOG = "log"


class NotificationStatus(Enum):
    """Status of notifications"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class Notification(StorageRecord):
    """Individual notification instance"""
    channel: NotificationChannel
    recipient_id: str
    recipient_address: str  # Email address or webhook URL
    subject: str
    body: str
    status: NotificationStatus = NotificationStatus.PENDING
    sent_at: Optional[datetime] = None
    failed_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ChannelProvider(ABC):
    """Abstract base class for notification channel providers"""

    def is_available(self) -> bool:
        """Whether the provider is configured to deliver anything"""
        return True

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Send notification via this channel. Returns True if successful."""
        pass


class LogChannelProvider(ChannelProvider):
    """Writes notifications to the application log instead of delivering them"""

    def __init__(self, logger=None):
        self.logger = logger or get_logger("lending_ledger.notifications.log")

    async def send(self, notification: Notification) -> bool:
        self.logger.info(
            f"{notification.channel.value.upper()} to {notification.recipient_address}: "
            f"{notification.subject} | {notification.body[:100]}"
        )
        return True


class WebhookChannelProvider(ChannelProvider):
    """Webhook channel provider for external integrations"""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    async def send(self, notification: Notification) -> bool:
        """POST the notification as JSON; any 2xx counts as delivered"""
        payload = {
            "notification_id": notification.id,
            "recipient_id": notification.recipient_id,
            "subject": notification.subject,
            "body": notification.body,
            "timestamp": notification.created_at.isoformat(),
            "metadata": notification.metadata
        }

        response = await asyncio.to_thread(
            requests.post,
            notification.recipient_address,
            json=payload,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"}
        )
        return 200 <= response.status_code < 300


class EmailChannelProvider(ChannelProvider):
    """SMTP email provider; unavailable until credentials are configured"""

    def __init__(self, host: str = "smtp.gmail.com", port: int = 587, user: str = "",
                 password: str = "", from_address: Optional[str] = None, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address or user
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.user and self.password)

    async def send(self, notification: Notification) -> bool:
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = notification.recipient_address
        message["Subject"] = notification.subject
        message.set_content(notification.body)

        await asyncio.to_thread(self._deliver, message)
        return True

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(message)


class NotificationEngine:
    """Sends notifications through registered providers and records the outcome"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.notifications_table = "notifications"
        self.logger = get_logger("lending_ledger.notifications")

        self.providers: Dict[NotificationChannel, ChannelProvider] = {
            NotificationChannel.LOG: LogChannelProvider(),
            NotificationChannel.WEBHOOK: WebhookChannelProvider(),
            NotificationChannel.EMAIL: EmailChannelProvider()
        }

    def register_provider(self, channel: NotificationChannel, provider: ChannelProvider):
        """Register a provider for a channel, replacing any existing one"""
        self.providers[channel] = provider

    async def send(
        self,
        channel: NotificationChannel,
        recipient_id: str,
        recipient_address: str,
        subject: str,
        body: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """
        Deliver one notification.

        Provider errors are captured on the returned record as ``failed``
        rather than raised; an unconfigured provider yields ``skipped``.
        Nothing is retried.
        """
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            channel=channel,
            recipient_id=recipient_id,
            recipient_address=recipient_address,
            subject=subject,
            body=body,
            metadata=metadata or {}
        )

        provider = self.providers.get(channel)
        if provider is None:
            notification.status = NotificationStatus.FAILED
            notification.failed_reason = f"No provider registered for channel: {channel.value}"
        elif not provider.is_available():
            notification.status = NotificationStatus.SKIPPED
            notification.failed_reason = "Provider not configured"
        else:
            try:
                if await provider.send(notification):
                    notification.status = NotificationStatus.SENT
                    notification.sent_at = datetime.now(timezone.utc)
                else:
                    notification.status = NotificationStatus.FAILED
                    notification.failed_reason = "Provider send failed"
            except Exception as e:
                notification.status = NotificationStatus.FAILED
                notification.failed_reason = str(e)

        notification.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.notifications_table, notification.id, self.notification_to_dict(notification))

        log_action(
            self.logger,
            "warning" if notification.status == NotificationStatus.FAILED else "info",
            f"Notification {notification.status.value}",
            user_id=recipient_id, action="notification_sent",
            resource=f"notification:{notification.id}",
            extra={
                "channel": channel.value,
                "status": notification.status.value,
                "failed_reason": notification.failed_reason
            }
        )
        return notification

    def get_notifications(
        self,
        recipient_id: str,
        status: Optional[NotificationStatus] = None,
        limit: int = 50
    ) -> List[Notification]:
        """Delivery history for a recipient, newest first"""
        filters = {"recipient_id": recipient_id}
        if status:
            filters["status"] = status.value

        records = self.storage.find(
            self.notifications_table, filters, sort_by="created_at", descending=True, limit=limit
        )
        return [self._notification_from_dict(data) for data in records]

    def get_delivery_stats(self) -> Dict[str, Any]:
        """Counts per status and per channel"""
        by_status = {status.value: 0 for status in NotificationStatus}
        by_channel = {channel.value: 0 for channel in NotificationChannel}
        records = self.storage.load_all(self.notifications_table)
        for data in records:
            by_status[data["status"]] = by_status.get(data["status"], 0) + 1
            by_channel[data["channel"]] = by_channel.get(data["channel"], 0) + 1
        return {"total": len(records), "by_status": by_status, "by_channel": by_channel}

    def notification_to_dict(self, notification: Notification) -> Dict:
        result = notification.to_dict()
        result["channel"] = notification.channel.value
        result["status"] = notification.status.value
        result["sent_at"] = notification.sent_at.isoformat() if notification.sent_at else None
        return result

    def _notification_from_dict(self, data: Dict) -> Notification:
        data["channel"] = NotificationChannel(data["channel"])
        data["status"] = NotificationStatus(data["status"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        if data.get("sent_at"):
            data["sent_at"] = datetime.fromisoformat(data["sent_at"])
        return Notification(**data)
