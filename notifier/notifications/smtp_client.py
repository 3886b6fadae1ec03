"""SMTP client wrapper for email delivery.

This module provides a thin wrapper around Python's smtplib with support
for TLS/SSL, authentication, bounded timeouts and proper connection
lifecycle management. Failures are raised as typed errors so callers can
tell a transient relay problem from a recipient that will never accept mail.
"""

import logging
import smtplib
import socket
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from notifier.config.environment import EnvironmentConfig

from .models import EmailTimeoutError, RecipientRejectedError, SMTPDeliveryError

logger = logging.getLogger(__name__)


class SMTPClient:
    """Wrapper around smtplib for sending notification emails.

    Handles connection lifecycle, TLS/SSL negotiation, authentication,
    and recipient validation. Designed to be easily mockable for testing.
    """

    def __init__(
        self,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
        timeout: float = 30,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        """Initialize SMTP client with optional factory injection.

        Args:
            env_config: Environment configuration with SMTP settings
            use_tls: Whether to use TLS (STARTTLS or implicit SSL)
            timeout: Socket timeout in seconds for the whole conversation
            smtp_factory: Factory function for creating SMTP instances (for mocking)
            smtp_ssl_factory: Factory function for creating SMTP_SSL instances (for mocking)
        """
        self.env_config = env_config
        self.use_tls = use_tls
        self.timeout = timeout
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL

    def send(
        self,
        to: str,
        subject: str,
        text_body: str,
        html_body: Optional[str] = None,
    ) -> str:
        """Send one email.

        Args:
            to: Recipient address
            subject: Subject line
            text_body: Plain text body
            html_body: Optional HTML alternative

        Returns:
            Message-ID of the sent message

        Raises:
            RecipientRejectedError: If the address is invalid or refused by the relay
            EmailTimeoutError: If the relay did not answer in time
            SMTPDeliveryError: For any other delivery failure
        """
        recipient = validate_recipient(to)
        sender = build_sender_address(self.env_config)
        message_id = make_msgid(domain=_sender_domain(self.env_config))

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = recipient
        message["Message-ID"] = message_id
        message.set_content(text_body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        self._deliver(message)
        logger.debug(f"Message {message_id} sent to {recipient}")
        return message_id

    def _deliver(self, message: EmailMessage) -> None:
        env = self.env_config
        smtp = None
        try:
            if env.smtp_port == 465:
                # Port 465: Implicit TLS (SMTP_SSL)
                logger.debug(f"Connecting to {env.smtp_host}:{env.smtp_port} with implicit TLS")
                context = ssl.create_default_context()
                smtp = self.smtp_ssl_factory(
                    env.smtp_host, env.smtp_port, timeout=self.timeout, context=context
                )
            else:
                logger.debug(f"Connecting to {env.smtp_host}:{env.smtp_port}")
                smtp = self.smtp_factory(env.smtp_host, env.smtp_port, timeout=self.timeout)

                if self.use_tls:
                    logger.debug("Upgrading connection with STARTTLS")
                    context = ssl.create_default_context()
                    smtp.starttls(context=context)

            if env.smtp_user and env.smtp_pass:
                logger.debug(f"Authenticating as {env.smtp_user}")
                smtp.login(env.smtp_user, env.smtp_pass)

            smtp.send_message(message)

        except smtplib.SMTPRecipientsRefused as e:
            error_msg = f"Recipient refused by SMTP server: {message['To']}"
            logger.warning(error_msg)
            raise RecipientRejectedError(error_msg) from e
        except (socket.timeout, TimeoutError) as e:
            error_msg = f"SMTP server timed out after {self.timeout}s: {e}"
            logger.error(error_msg)
            raise EmailTimeoutError(error_msg) from e
        except smtplib.SMTPException as e:
            error_msg = f"SMTP error during message delivery: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        except OSError as e:
            error_msg = f"Network error during SMTP connection: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        except Exception as e:
            error_msg = f"Unexpected error during SMTP delivery: {e}"
            logger.error(error_msg)
            raise SMTPDeliveryError(error_msg) from e
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")


def validate_recipient(address: str) -> str:
    """Validate and normalize a recipient address.

    Args:
        address: Email address

    Returns:
        Normalized address

    Raises:
        RecipientRejectedError: If the address is not a valid email address
    """
    try:
        return validate_email(address or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise RecipientRejectedError(f"Invalid recipient address '{address}': {e}") from e


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' address for outgoing emails.

    Uses SMTP_FROM when set, then SMTP_USER, otherwise falls back to a
    noreply address at the SMTP host.

    Args:
        env_config: Environment configuration with SMTP settings

    Returns:
        Formatted sender address (e.g., "ProjectFlow <noreply@example.com>")
    """
    sender_email = env_config.smtp_from or env_config.smtp_user or f"noreply@{env_config.smtp_host}"
    return f"{env_config.smtp_sender_name} <{sender_email}>"


def _sender_domain(env_config: EnvironmentConfig) -> str:
    sender = env_config.smtp_from or env_config.smtp_user or ""
    if "@" in sender:
        return sender.rsplit("@", 1)[1]
    return env_config.smtp_host or "localhost"
