"""Notification creation, delivery and retry.

This package provides the complete notification pipeline:
- NotificationDispatcher: Creates notifications, applies preferences, delivers
- RetryQueueProcessor: Drains the durable queue of deferred and failed deliveries
- Content registry: Title and message wording per notification type
- TemplateRenderer: Jinja2-based email template rendering
- SMTPClient: SMTP wrapper with TLS/SSL support and typed failures
"""

from .content import CONTENT_BUILDERS, build_content
from .dispatcher import NotificationDispatcher
from .models import (
    BulkNotificationResult,
    DeliveryResult,
    EmailTimeoutError,
    NotificationError,
    NotificationPage,
    NotificationResult,
    NotificationStats,
    NotificationTemplateError,
    RecipientRejectedError,
    SMTPDeliveryError,
)
from .preferences import category_enabled, in_quiet_hours, quiet_hours_end, resolve_channels
from .queue import QueueRunResult, RetryQueueProcessor
from .smtp_client import SMTPClient, build_sender_address, validate_recipient
from .templates import TemplateRenderer

__all__ = [
    # Main services
    "NotificationDispatcher",
    "RetryQueueProcessor",
    # Models and results
    "NotificationResult",
    "BulkNotificationResult",
    "DeliveryResult",
    "NotificationPage",
    "NotificationStats",
    "QueueRunResult",
    # Exceptions
    "NotificationError",
    "NotificationTemplateError",
    "SMTPDeliveryError",
    "EmailTimeoutError",
    "RecipientRejectedError",
    # Components
    "TemplateRenderer",
    "SMTPClient",
    # Utilities
    "CONTENT_BUILDERS",
    "build_content",
    "build_sender_address",
    "validate_recipient",
    "category_enabled",
    "resolve_channels",
    "in_quiet_hours",
    "quiet_hours_end",
]
