"""
Test data factories for generating realistic Fathom payloads and analysis results.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional
import json
import uuid

from src.core.records import TranscriptEntry


WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret"


class FathomTestFactory:
    """Factory for creating realistic Fathom API and webhook data."""

    @staticmethod
    def create_meeting(
        meeting_id: Optional[str] = None,
        title: str = "Acme Weekly Sync",
        days_ago: int = 7,
        participants: Optional[List[Any]] = None,
        transcript: Any = "default",
    ) -> Dict[str, Any]:
        """
        Create a realistic Fathom meeting object.

        Args:
            meeting_id: Fathom meeting id (random if None)
            title: Meeting title
            days_ago: How many days ago the meeting was recorded
            participants: Participant dicts or email strings, or None for default
            transcript: Transcript (string or segment list); "default" builds
                a short segment transcript, None omits it

        Returns:
            Dictionary matching the Fathom meeting format
        """
        created_at = datetime.now(timezone.utc) - timedelta(days=days_ago)
        meeting_id = meeting_id or f"mtg_{uuid.uuid4().hex[:12]}"

        if participants is None:
            participants = [
                {"email": "jane@acme.com", "name": "Jane Client"},
                {"email": "sam@agency.com", "name": "Sam Lead"},
            ]

        if transcript == "default":
            transcript = [
                {"speaker": {"display_name": "Jane Client"}, "text": f"Thanks for the update on {title}."},
                {"speaker": {"display_name": "Sam Lead"}, "text": "Happy to walk through the numbers."},
                {"speaker": {"display_name": "Jane Client"}, "text": "Sure. Fine."},
            ]

        meeting = {
            "id": meeting_id,
            "title": title,
            "created_at": created_at.isoformat().replace("+00:00", "Z"),
            "scheduled_start_time": created_at.isoformat().replace("+00:00", "Z"),
            "participants": participants,
            "recorded_by": {"email": "sam@agency.com"},
        }
        if transcript is not None:
            meeting["transcript"] = transcript
        return meeting

    @staticmethod
    def create_webhook_payload(meeting: Optional[Dict[str, Any]] = None, event_type: str = "meeting.completed") -> Dict[str, Any]:
        """Wrap a meeting in a webhook envelope."""
        return {
            "event_type": event_type,
            "meeting": meeting if meeting is not None else FathomTestFactory.create_meeting(),
        }

    @staticmethod
    def encode(payload: Dict[str, Any]) -> bytes:
        return json.dumps(payload).encode("utf-8")


class AnalysisTestFactory:
    """Factory for analysis results and transcript entries."""

    @staticmethod
    def create_result(
        trajectory: str = "Stable",
        churn_risk: str = "Medium",
        confidence: int = 6,
        quotes: Optional[List[str]] = None,
        action_items: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Create a structured analysis result as the analyzer returns it.

        Returns:
            Analysis dict with camelCase keys
        """
        quotes = quotes if quotes is not None else [
            "Sure. Fine.",
            "We'll see how Q3 goes.",
            "Let's revisit the budget next month.",
            "I need to check with my boss.",
        ]
        if action_items is None:
            action_items = [
                {"item": "Send revised media plan", "owner": "Sam", "status": "open"},
            ]

        return {
            "bottomLine": {
                "trajectory": trajectory,
                "churnRisk": churn_risk,
                "clientConfidence": confidence,
                "whatsReallyGoingOn": "Client is disengaging and deferring budget decisions.",
                "likelyUnderlyingDriverIfChurn": "Perceived lack of strategic value",
                "summary": "Polite but withdrawn; budget conversations keep slipping.",
            },
            "criticalMoments": [
                {"quote": quote, "transcript": "recent", "deepMeaning": f"Signal: {quote}"}
                for quote in quotes
            ],
            "communicationStyles": [
                {"participant": "Jane Client", "style": "Terse", "evolution": "Shorter answers each meeting"},
            ],
            "meetingActionItems": action_items,
            "actionPlan": [
                {"action": "Schedule a strategy review", "priority": "High", "timing": "This week"},
            ],
            "sarcasmInstances": [],
            "blindSpotsForYourPersonality": [],
        }

    @staticmethod
    def create_entry(
        meeting_id: str,
        days_ago: int,
        transcript: Optional[str] = None,
        title: str = "Weekly Sync",
        added_at: Optional[datetime] = None,
    ) -> TranscriptEntry:
        """Create a queued transcript entry dated `days_ago` days in the past."""
        now = datetime.now(timezone.utc)
        return TranscriptEntry(
            meeting_id=meeting_id,
            transcript=transcript or f"Transcript for {meeting_id}",
            meeting_date=now - timedelta(days=days_ago),
            meeting_title=title,
            added_at=added_at or now,
        )
