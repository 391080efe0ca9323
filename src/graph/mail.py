"""
Email Sender

Sends analysis alerts through Microsoft Graph sendMail.
Bodies are written in markdown and converted to HTML.
"""

import logging
import uuid
from typing import List, Optional

import markdown2

from ..core.exceptions import EmailSendError
from ..graph.client import GraphAPIClient


logger = logging.getLogger(__name__)


EMAIL_WRAPPER = """<html>
<body style="font-family: -apple-system, 'Segoe UI', Arial, sans-serif; font-size: 14px; color: #1f2937;">
{content}
<p style="color: #9ca3af; font-size: 12px;">Sent by Client Pulse</p>
</body>
</html>"""


class EmailSender:
    """
    Sends emails via Microsoft Graph API.

    Usage:
        sender = EmailSender(GraphAPIClient(config.graph_api))
        sender.send_markdown(
            from_email="noreply@example.com",
            to_emails=["lead@example.com"],
            subject="New Analysis Ready: Acme",
            body_markdown="**Trajectory:** Declining",
        )
    """

    def __init__(self, client: GraphAPIClient):
        self.client = client

    @staticmethod
    def render_markdown(body_markdown: str) -> str:
        html = markdown2.markdown(body_markdown, extras=["break-on-newline"])
        return EMAIL_WRAPPER.format(content=html)

    def send_markdown(
        self,
        from_email: str,
        to_emails: List[str],
        subject: str,
        body_markdown: str,
        importance: str = "normal",
    ) -> str:
        """Convert a markdown body to HTML and send it."""
        return self.send_email(from_email, to_emails, subject, self.render_markdown(body_markdown), importance=importance)

    def send_email(
        self,
        from_email: str,
        to_emails: List[str],
        subject: str,
        body_html: str,
        cc_emails: Optional[List[str]] = None,
        importance: str = "normal",
    ) -> str:
        """
        Send email via Graph API.

        Args:
            from_email: Sender mailbox
            to_emails: Recipients
            subject: Subject line
            body_html: HTML body
            cc_emails: Optional CC recipients
            importance: low | normal | high

        Returns:
            Tracking id (Graph does not return a message id for sendMail)

        Raises:
            EmailSendError: If sending fails
        """
        message = {
            "subject": subject,
            "importance": importance,
            "body": {"contentType": "HTML", "content": body_html},
            "toRecipients": [{"emailAddress": {"address": email}} for email in to_emails],
        }
        if cc_emails:
            message["ccRecipients"] = [{"emailAddress": {"address": email}} for email in cc_emails]

        try:
            self.client.post(f"/users/{from_email}/sendMail", json={"message": message, "saveToSentItems": True})
        except Exception as e:
            logger.error(f"Failed to send email: {e}", exc_info=True)
            raise EmailSendError(f"Graph API sendMail failed: {e}") from e

        logger.info(f"Email sent from {from_email} to {len(to_emails)} recipient(s)")
        return f"sent-{uuid.uuid4()}"
