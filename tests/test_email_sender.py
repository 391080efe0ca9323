"""
Unit tests for Graph API email delivery.
"""

from unittest.mock import Mock

import pytest

from src.core.exceptions import EmailSendError
from src.graph.mail import EmailSender


@pytest.fixture
def graph_client():
    client = Mock()
    client.post = Mock(return_value={})
    return client


class TestEmailSender:
    def test_markdown_is_rendered_to_html(self, graph_client):
        sender = EmailSender(graph_client)

        sender.send_markdown(
            from_email="pulse@agency.com",
            to_emails=["lead@agency.com"],
            subject="New Analysis Ready: Acme Corp",
            body_markdown="**Trajectory:** Declining",
        )

        endpoint = graph_client.post.call_args[0][0]
        message = graph_client.post.call_args[1]["json"]["message"]
        assert endpoint == "/users/pulse@agency.com/sendMail"
        assert message["body"]["contentType"] == "HTML"
        assert "<strong>Trajectory:</strong>" in message["body"]["content"]
        assert message["toRecipients"] == [{"emailAddress": {"address": "lead@agency.com"}}]

    def test_cc_recipients(self, graph_client):
        EmailSender(graph_client).send_email(
            "pulse@agency.com", ["a@agency.com"], "Subject", "<p>Hi</p>", cc_emails=["b@agency.com"]
        )

        message = graph_client.post.call_args[1]["json"]["message"]
        assert message["ccRecipients"] == [{"emailAddress": {"address": "b@agency.com"}}]

    def test_graph_failure_is_email_error(self, graph_client):
        graph_client.post.side_effect = RuntimeError("403 Forbidden")

        with pytest.raises(EmailSendError):
            EmailSender(graph_client).send_email("pulse@agency.com", ["a@agency.com"], "Subject", "<p>Hi</p>")
