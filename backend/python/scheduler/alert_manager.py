"""
Alert Manager - Send booking change and sync failure notifications via Slack or email.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, List, Optional

import requests

from scheduler.config import AlertsConfig, SlackConfig, EmailConfig

logger = logging.getLogger(__name__)


@dataclass
class AlertContext:
    """Context for alert messages."""
    kind: str                       # 'cancellation', 'change', 'sync_failure', 'test'
    title: str
    listing_name: Optional[str] = None
    lines: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for template formatting."""
        return {
            'kind': self.kind,
            'title': self.title,
            'listing_name': self.listing_name or 'N/A',
            'error_message': self.error_message or 'N/A',
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }


class AlertChannel(ABC):
    """Base class for alert channels."""

    @abstractmethod
    def send(self, context: AlertContext, message: str) -> bool:
        """
        Send alert message.

        Args:
            context: Alert context
            message: Formatted message

        Returns:
            True on success
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured."""


class SlackAlertChannel(AlertChannel):
    """Slack webhook alert channel."""

    COLORS = {
        'cancellation': 'danger',
        'change': 'warning',
        'sync_failure': 'danger',
    }

    def __init__(self, config: SlackConfig):
        self.config = config
        self.webhook_url = config.webhook_url
        self.channel = config.channel
        self.username = config.username

    def is_configured(self) -> bool:
        """Check if Slack is configured."""
        return bool(self.config.enabled and self.webhook_url)

    def wants(self, kind: str) -> bool:
        return {
            'cancellation': self.config.on_cancellation,
            'change': self.config.on_change,
            'sync_failure': self.config.on_failure,
        }.get(kind, True)

    def send(self, context: AlertContext, message: str) -> bool:
        """Send Slack alert."""
        if not self.is_configured() or not self.wants(context.kind):
            return False

        payload = {
            'username': self.username,
            'text': context.title,
            'attachments': [{
                'color': self.COLORS.get(context.kind, '#808080'),
                'title': context.title,
                'text': message,
                'mrkdwn_in': ['text'],
                'ts': int(context.timestamp.timestamp()),
            }]
        }
        if self.channel:
            payload['channel'] = self.channel

        try:
            response = requests.post(self.webhook_url, json=payload, timeout=30)
        except requests.exceptions.RequestException as e:
            logger.error(f"Slack alert error: {e}")
            return False

        if response.status_code == 200:
            logger.info(f"Slack alert sent: {context.title}")
            return True

        logger.error(f"Slack alert failed: {response.status_code} - {response.text}")
        return False


class EmailAlertChannel(AlertChannel):
    """Email SMTP alert channel."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def is_configured(self) -> bool:
        """Check if email is configured."""
        return bool(
            self.config.enabled and
            self.config.smtp_host and
            self.config.to_addresses
        )

    def send(self, context: AlertContext, message: str) -> bool:
        """Send email alert."""
        if not self.is_configured():
            return False

        msg = MIMEMultipart()
        msg['From'] = self.config.from_address
        msg['To'] = ', '.join(self.config.to_addresses)
        msg['Subject'] = f"[Property Sync] {context.title}"

        body = f"""
{context.title}
{'=' * len(context.title)}

Listing: {context.listing_name or 'N/A'}
Timestamp: {context.timestamp}

{message}
"""
        if context.error_message:
            body += f"""
Error Details
-------------
{context.error_message}
"""
        msg.attach(MIMEText(body, 'plain'))

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                server.starttls()
                if self.config.smtp_user and self.config.smtp_password:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.sendmail(
                    self.config.from_address,
                    self.config.to_addresses,
                    msg.as_string()
                )
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email alert error: {e}")
            return False

        logger.info(f"Email alert sent: {context.title}")
        return True


class AlertManager:
    """
    Manages alert channels and routing.

    Sends notifications on:
    - Booking cancellations found by a sync
    - Booking date changes found by a sync
    - Sync runs that fail
    """

    TEMPLATES = {
        'cancellation_header': '*Canceled Bookings:*\n\n',
        'cancellation_item': '• *Listing:* {listing}\n• *Event:* {title}\n• *Date:* {date}\n\n',
        'cancellation_footer': 'Please review these changes and take appropriate action.',
        'change_item': (
            'Event changed: {listing}, ID: {event_id}\n'
            'OLD:\n{old_start} → {old_end}\n\n'
            'NEW:\n{new_start} → {new_end}\n\n'
            '-------------------\n\n'
        ),
        'sync_failure': "Sync failed for {listing_name}.\nError: {error_message}",
    }

    def __init__(self, config: AlertsConfig = None):
        self.config = config or AlertsConfig()
        self.channels: List[AlertChannel] = []

        if self.config.slack.enabled:
            self.channels.append(SlackAlertChannel(self.config.slack))

        if self.config.email.enabled:
            self.channels.append(EmailAlertChannel(self.config.email))

        logger.info(f"AlertManager initialized with {len(self.channels)} channel(s)")

    def send_cancellation_alert(self, listing_name: str, canceled: List[Dict[str, str]]):
        """Report events a sync deactivated because they left the feed."""
        if not canceled:
            return
        message = self.TEMPLATES['cancellation_header']
        for item in canceled:
            message += self.TEMPLATES['cancellation_item'].format(**item)
        message += self.TEMPLATES['cancellation_footer']

        self._send_to_all(AlertContext(
            kind='cancellation',
            title='🚨 Booking Cancellation Alert',
            listing_name=listing_name,
        ), message)

    def send_change_alert(self, listing_name: str, changed: List[Dict[str, str]]):
        """Report events whose dates or content moved."""
        if not changed:
            return
        message = ''.join(self.TEMPLATES['change_item'].format(**item) for item in changed)

        self._send_to_all(AlertContext(
            kind='change',
            title='📅 Booking Changes Detected',
            listing_name=listing_name,
        ), message)

    def send_sync_failure_alert(self, listing_name: str, error_message: str):
        context = AlertContext(
            kind='sync_failure',
            title='Calendar Sync Failed',
            listing_name=listing_name,
            error_message=error_message,
        )
        self._send_to_all(context, self.TEMPLATES['sync_failure'].format(**context.to_dict()))

    def _send_to_all(self, context: AlertContext, message: str):
        """Send alert to all configured channels; alerting never fails a sync."""
        for channel in self.channels:
            if channel.is_configured():
                try:
                    channel.send(context, message)
                except Exception as e:
                    logger.error(f"Alert channel error: {e}")

    def test_alerts(self) -> Dict[str, bool]:
        """
        Test all alert channels.

        Returns:
            Dictionary of channel_type -> success
        """
        results = {}
        test_context = AlertContext(kind='test', title='Test alert')

        for channel in self.channels:
            channel_type = type(channel).__name__
            try:
                if channel.is_configured():
                    results[channel_type] = channel.send(
                        test_context,
                        "This is a test alert from the property sync backend"
                    )
                else:
                    results[channel_type] = False
            except Exception as e:
                logger.error(f"Test alert error for {channel_type}: {e}")
                results[channel_type] = False

        return results
