"""
Analysis Notifier

Delivers pod leader alerts over Slack (incoming webhook, Block Kit) and
email (Microsoft Graph). Whether to notify at all is decided by the
caller from the client's NotificationPreferences; this module only
formats and delivers.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..core.config import AppConfig
from ..core.exceptions import EmailSendError, NotificationError, SlackPostError
from ..core.records import NotificationPreferences, TranscriptEntry


logger = logging.getLogger(__name__)


RISK_EMOJI = {
    "Low": "🟢",
    "Medium": "🟡",
    "High": "🟠",
    "Immediate": "🔴",
}


def risk_emoji(churn_risk: Optional[str]) -> str:
    return RISK_EMOJI.get(churn_risk or "", "⚪")


def button_style(churn_risk: Optional[str]) -> str:
    return "danger" if churn_risk in ("High", "Immediate") else "primary"


def build_analysis_slack_message(
    client_name: str, trajectory: str, churn_risk: str, dashboard_url: Optional[str] = None
) -> Dict[str, Any]:
    """Block Kit payload for a finished analysis."""
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "🔔 New Sentiment Analysis Ready", "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Client:*\n{client_name}"},
                {"type": "mrkdwn", "text": f"*Trajectory:*\n{trajectory}"},
                {"type": "mrkdwn", "text": f"*Churn Risk:*\n{risk_emoji(churn_risk)} {churn_risk}"},
            ],
        },
    ]

    if dashboard_url:
        blocks.append({
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View Analysis", "emoji": True},
                    "url": dashboard_url,
                    "style": button_style(churn_risk),
                }
            ],
        })

    return {"text": f"New sentiment analysis ready for {client_name}", "blocks": blocks}


def build_transcript_slack_message(client_name: str, entry: TranscriptEntry, queue_size: int) -> Dict[str, Any]:
    return {
        "text": f"New transcript queued for {client_name}",
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"📝 *New transcript queued for {client_name}*\n"
                        f"{entry.meeting_title} ({entry.meeting_date:%Y-%m-%d})\n"
                        f"Queue: {queue_size}/3 transcripts"
                    ),
                },
            }
        ],
    }


class AnalysisNotifier:
    """
    Slack + email delivery.

    Both channels are attempted independently; if either fails, a
    NotificationError naming every failure is raised after both tries.

    Usage:
        notifier = AnalysisNotifier(config.app, EmailSender(GraphAPIClient(config.graph_api)))
        notifier.notify_analysis(prefs, client_id, "Acme", result, record_id=42)
    """

    def __init__(self, config: AppConfig, email_sender=None, timeout_seconds: int = 10):
        """
        Args:
            config: Channel switches, sender mailbox and dashboard URL
            email_sender: EmailSender (email is skipped when None)
            timeout_seconds: Slack request timeout
        """
        self.config = config
        self.email_sender = email_sender
        self.timeout_seconds = timeout_seconds

    def dashboard_url(self, client_id: str, record_id: Optional[int] = None) -> str:
        url = f"{self.config.dashboard_url.rstrip('/')}/client/{client_id}"
        return f"{url}?analysis={record_id}" if record_id else url

    # ========================================================================
    # CHANNELS
    # ========================================================================

    def send_slack(self, webhook_url: str, message: Dict[str, Any]):
        """
        Raises:
            SlackPostError: On network failure or a non-2xx response
        """
        try:
            response = requests.post(webhook_url, json=message, timeout=self.timeout_seconds)
        except requests.RequestException as e:
            raise SlackPostError(f"Slack webhook request failed: {e}") from e

        if not response.ok:
            raise SlackPostError(f"Slack webhook returned {response.status_code}: {response.text[:200]}")
        logger.info("Slack notification sent")

    def send_email(self, to_email: str, subject: str, body_markdown: str):
        if self.email_sender is None:
            logger.debug("Email sender not configured, skipping email notification")
            return
        self.email_sender.send_markdown(
            from_email=self.config.email_from,
            to_emails=[to_email],
            subject=subject,
            body_markdown=body_markdown,
        )

    def _deliver(self, prefs: NotificationPreferences, slack_message: Dict[str, Any], subject: str, body: str):
        errors = []

        if self.config.slack_enabled and prefs.slack_webhook_url:
            try:
                self.send_slack(prefs.slack_webhook_url, slack_message)
            except SlackPostError as e:
                logger.error(f"Slack notification failed for client {prefs.client_id}: {e}")
                errors.append(str(e))

        if self.config.email_enabled and prefs.pod_leader_email:
            try:
                self.send_email(prefs.pod_leader_email, subject, body)
            except EmailSendError as e:
                logger.error(f"Email notification failed for client {prefs.client_id}: {e}")
                errors.append(str(e))

        if errors:
            raise NotificationError("; ".join(errors))

    # ========================================================================
    # EVENTS
    # ========================================================================

    def notify_analysis(
        self,
        prefs: NotificationPreferences,
        client_id: str,
        client_name: str,
        result: Dict[str, Any],
        record_id: Optional[int] = None,
    ):
        """
        Alert the pod leader that an analysis is ready.

        Raises:
            NotificationError: If any configured channel failed
        """
        bottom_line = result.get("bottomLine") or {}
        trajectory = bottom_line.get("trajectory", "Unknown")
        churn_risk = bottom_line.get("churnRisk", "Unknown")
        url = self.dashboard_url(client_id, record_id)

        body = (
            f"A new sentiment analysis is ready for **{client_name}**.\n\n"
            f"**Trajectory:** {trajectory}\n"
            f"**Churn Risk:** {risk_emoji(churn_risk)} {churn_risk}\n"
        )
        if bottom_line.get("whatsReallyGoingOn"):
            body += f"\n{bottom_line['whatsReallyGoingOn']}\n"
        body += f"\n[View the full analysis]({url})"

        logger.info(f"Notifying pod leader for client {client_id} (risk: {churn_risk})")
        self._deliver(
            prefs,
            build_analysis_slack_message(client_name, trajectory, churn_risk, url),
            f"New Analysis Ready: {client_name}",
            body,
        )

    def notify_new_transcript(
        self,
        prefs: NotificationPreferences,
        client_id: str,
        client_name: str,
        entry: TranscriptEntry,
        queue_size: int,
    ):
        """
        Alert the pod leader that a transcript was queued.

        Raises:
            NotificationError: If any configured channel failed
        """
        body = (
            f"A new meeting transcript was queued for **{client_name}**.\n\n"
            f"**Meeting:** {entry.meeting_title}\n"
            f"**Date:** {entry.meeting_date:%Y-%m-%d}\n"
            f"**Queue:** {queue_size}/3 transcripts\n\n"
            f"[Open client]({self.dashboard_url(client_id)})"
        )
        self._deliver(
            prefs,
            build_transcript_slack_message(client_name, entry, queue_size),
            f"New Transcript Queued: {client_name}",
            body,
        )
