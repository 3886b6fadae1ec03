"""Template rendering for notification emails using Jinja2.

Two kinds of templates are rendered here:

- The packaged email layout (subject, HTML and plain-text body) in
  ``notifier.notifications.email_templates``
- Organization-specific wording stored as :class:`NotificationTemplate`
  rows, rendered from strings

Missing variables render as empty strings instead of failing, so a stale
organization template never blocks delivery.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from jinja2 import Environment, PackageLoader, TemplateError, Undefined, select_autoescape

from notifier.domain.models import Notification, NotificationTemplate, User

from .models import NotificationTemplateError

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Renders notification emails and stored wording templates.

    Packaged templates are cached by the Jinja2 environment for reuse across
    deliveries.
    """

    def __init__(
        self,
        template_dir: str = "email_templates",
        subject_template: str = "notification_subject.j2",
        html_template: str = "notification_body.html.j2",
        text_template: str = "notification_body.txt.j2",
        app_name: str = "ProjectFlow",
    ):
        """Initialize template renderer with Jinja2 environments.

        Args:
            template_dir: Directory name within the notifier.notifications package
            subject_template: Filename of subject line template
            html_template: Filename of HTML body template
            text_template: Filename of plain text body template
            app_name: Product name shown in the email layout
        """
        self.subject_template_name = subject_template
        self.html_template_name = html_template
        self.text_template_name = text_template
        self.app_name = app_name

        self.env = Environment(
            loader=PackageLoader("notifier.notifications", template_dir),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
            undefined=Undefined,
        )
        # Stored templates produce plain strings (titles, messages, subjects)
        self.string_env = Environment(autoescape=False, undefined=Undefined)

        logger.debug(f"Initialized TemplateRenderer with templates from {template_dir}")

    def render(self, template: str, variables: Mapping[str, Any]) -> str:
        """Render a template string with the given variables.

        Args:
            template: Jinja2 template source
            variables: Template variables; missing ones render as ""

        Returns:
            Rendered string

        Raises:
            NotificationTemplateError: If the template source is invalid
        """
        try:
            return self.string_env.from_string(template).render(**dict(variables))
        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg)
            raise NotificationTemplateError(error_msg) from e

    def render_email(
        self,
        notification: Notification,
        recipient: Optional[User] = None,
        template: Optional[NotificationTemplate] = None,
    ) -> Dict[str, str]:
        """Render the email for one notification.

        An active organization template overrides the default subject and
        message text; the packaged layout is always used for the body.

        Args:
            notification: Notification being delivered
            recipient: Recipient user (used for the greeting)
            template: Organization template for the notification type

        Returns:
            Dictionary containing:
            - subject: Rendered subject line (single line, no newlines)
            - html_body: Rendered HTML body
            - text_body: Rendered plain text body

        Raises:
            NotificationTemplateError: If template rendering fails
        """
        context = self._build_context(notification, recipient)

        title = notification.title
        message = notification.message
        subject = None
        if template is not None and template.is_active:
            title = self.render(template.title_template, context) or title
            message = self.render(template.message_template, context) or message
            if template.email_subject:
                subject = self.render(template.email_subject, context)
            if template.email_template:
                message = self.render(template.email_template, context) or message

        context.update({"title": title, "message": message})

        try:
            if subject is None:
                subject = self.env.get_template(self.subject_template_name).render(context)
            html_body = self.env.get_template(self.html_template_name).render(context)
            text_body = self.env.get_template(self.text_template_name).render(context)
        except TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            logger.error(error_msg, exc_info=True)
            raise NotificationTemplateError(error_msg) from e

        logger.debug(f"Rendered email for notification {notification.id}")

        return {
            "subject": subject.strip().replace("\n", " "),
            "html_body": html_body,
            "text_body": text_body,
        }

    def _build_context(
        self, notification: Notification, recipient: Optional[User]
    ) -> Dict[str, Any]:
        context: Dict[str, Any] = dict(notification.data)
        context.update(
            {
                "app_name": self.app_name,
                "notification_type": notification.type.value,
                "category": notification.category.value,
                "priority": notification.priority.value,
                "is_urgent": notification.priority.value == "HIGH",
                "entity_type": notification.entity_type,
                "entity_id": notification.entity_id,
                "recipient_name": recipient.name if recipient else "",
                "recipient_email": recipient.email if recipient else "",
            }
        )
        return context
