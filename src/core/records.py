"""
Record types shared by the repositories, queue, history and orchestrator.

Plain dataclasses with to_dict()/from_dict() so they can be stored in JSON
columns and returned from the API without leaking ORM sessions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


SEQUENCE_OLDEST = "oldest"
SEQUENCE_MIDDLE = "middle"
SEQUENCE_RECENT = "recent"

# Labels by queue length
SEQUENCE_LABELS = {
    1: [SEQUENCE_RECENT],
    2: [SEQUENCE_OLDEST, SEQUENCE_RECENT],
    3: [SEQUENCE_OLDEST, SEQUENCE_MIDDLE, SEQUENCE_RECENT],
}

TRAJECTORIES = ("Strengthening", "Stable", "Declining", "Critical")
CHURN_RISKS = ("Low", "Medium", "High", "Immediate")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (with or without a trailing Z) or a datetime.

    Args:
        value: String, datetime, epoch milliseconds or None

    Returns:
        Timezone-aware UTC datetime, or None if value is empty
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat()


@dataclass
class TranscriptEntry:
    """One meeting transcript held in a client's queue."""

    meeting_id: str
    transcript: str
    meeting_date: datetime
    meeting_title: str = "Untitled Meeting"
    added_at: datetime = field(default_factory=utcnow)
    sequence: str = SEQUENCE_RECENT

    def __post_init__(self):
        self.meeting_date = ensure_utc(self.meeting_date)
        self.added_at = ensure_utc(self.added_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meeting_id": self.meeting_id,
            "transcript": self.transcript,
            "meeting_date": format_datetime(self.meeting_date),
            "meeting_title": self.meeting_title,
            "added_at": format_datetime(self.added_at),
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            meeting_id=str(data["meeting_id"]),
            transcript=data.get("transcript", ""),
            meeting_date=parse_datetime(data["meeting_date"]),
            meeting_title=data.get("meeting_title") or "Untitled Meeting",
            added_at=parse_datetime(data.get("added_at")) or utcnow(),
            sequence=data.get("sequence", SEQUENCE_RECENT),
        )


@dataclass
class TranscriptQueueState:
    """A client's bounded transcript window."""

    client_id: str
    transcripts: List[TranscriptEntry] = field(default_factory=list)
    auto_analysis_enabled: bool = True
    last_processed: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def transcript_for(self, sequence: str) -> str:
        for entry in self.transcripts:
            if entry.sequence == sequence:
                return entry.transcript
        return ""

    def has_unprocessed_transcripts(self) -> bool:
        """True if any transcript arrived after the last processed marker."""
        if self.last_processed is None:
            return bool(self.transcripts)
        last = ensure_utc(self.last_processed)
        return any(entry.added_at > last for entry in self.transcripts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "transcripts": [t.to_dict() for t in self.transcripts],
            "auto_analysis_enabled": self.auto_analysis_enabled,
            "last_processed": format_datetime(self.last_processed),
            "updated_at": format_datetime(self.updated_at),
        }


@dataclass
class ClientProfile:
    """An agency client."""

    id: str
    name: str
    pod: str = ""
    monthly_spend: str = ""
    duration: str = ""
    notes: str = ""
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pod": self.pod,
            "monthly_spend": self.monthly_spend,
            "duration": self.duration,
            "notes": self.notes,
            "owner_id": self.owner_id,
            "created_at": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientProfile":
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            pod=data.get("pod") or "",
            monthly_spend=str(data.get("monthly_spend") or ""),
            duration=data.get("duration") or "",
            notes=data.get("notes") or "",
            owner_id=data.get("owner_id"),
            created_at=parse_datetime(data.get("created_at")),
        )


@dataclass
class Feedback:
    """User corrections for a feedback-driven re-run."""

    inaccuracies: str = ""
    additional_context: str = ""
    focus_areas: str = ""

    def is_empty(self) -> bool:
        return not (self.inaccuracies or self.additional_context or self.focus_areas)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inaccuracies": self.inaccuracies,
            "additional_context": self.additional_context,
            "focus_areas": self.focus_areas,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feedback":
        return cls(
            inaccuracies=data.get("inaccuracies") or "",
            additional_context=data.get("additional_context") or "",
            focus_areas=data.get("focus_areas") or "",
        )


@dataclass
class HistoricalContext:
    """Compressed long-term memory handed to the analyzer."""

    cumulative_summary: str
    total_previous_meetings: int
    trajectory_trend: str
    key_historical_moments: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cumulative_summary": self.cumulative_summary,
            "total_previous_meetings": self.total_previous_meetings,
            "trajectory_trend": self.trajectory_trend,
            "key_historical_moments": list(self.key_historical_moments),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoricalContext":
        return cls(
            cumulative_summary=data.get("cumulative_summary") or "",
            total_previous_meetings=int(data.get("total_previous_meetings") or 0),
            trajectory_trend=data.get("trajectory_trend") or "",
            key_historical_moments=list(data.get("key_historical_moments") or []),
        )


@dataclass
class TranscriptBundle:
    """
    Everything one analysis run is computed from.

    Stored alongside each analysis record so a later feedback re-run or
    transcript append can start from exactly the same input.
    """

    oldest: str = ""
    middle: str = ""
    recent: str = ""
    context: str = ""
    client_profile: Optional[ClientProfile] = None
    additional_transcripts: List[str] = field(default_factory=list)
    feedback: Optional[Feedback] = None
    historical_context: Optional[HistoricalContext] = None
    personality_profile: Optional[str] = None

    def has_transcripts(self) -> bool:
        return bool(self.oldest.strip() and self.middle.strip() and self.recent.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "oldest": self.oldest,
            "middle": self.middle,
            "recent": self.recent,
            "context": self.context,
            "client_profile": self.client_profile.to_dict() if self.client_profile else None,
            "additional_transcripts": list(self.additional_transcripts),
            "feedback": self.feedback.to_dict() if self.feedback else None,
            "historical_context": self.historical_context.to_dict() if self.historical_context else None,
            "personality_profile": self.personality_profile,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TranscriptBundle":
        data = data or {}
        profile = data.get("client_profile")
        feedback = data.get("feedback")
        historical = data.get("historical_context")
        return cls(
            oldest=data.get("oldest") or "",
            middle=data.get("middle") or "",
            recent=data.get("recent") or "",
            context=data.get("context") or "",
            client_profile=ClientProfile.from_dict(profile) if profile else None,
            additional_transcripts=list(data.get("additional_transcripts") or []),
            feedback=Feedback.from_dict(feedback) if feedback else None,
            historical_context=HistoricalContext.from_dict(historical) if historical else None,
            personality_profile=data.get("personality_profile"),
        )


@dataclass
class AnalysisRecord:
    """A persisted analysis run."""

    client_id: str
    owner_id: Optional[str]
    result: Dict[str, Any]
    transcript_data: TranscriptBundle
    trigger: str = "manual"
    date: datetime = field(default_factory=utcnow)
    id: Optional[int] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "owner_id": self.owner_id,
            "date": format_datetime(self.date),
            "trigger": self.trigger,
            "result": self.result,
            "transcript_data": self.transcript_data.to_dict(),
            "updated_at": format_datetime(self.updated_at),
        }


@dataclass
class RelationshipHistory:
    """Bounded long-term memory for one client."""

    client_id: str
    cumulative_summary: str = ""
    key_moments: List[Dict[str, Any]] = field(default_factory=list)
    action_item_history: List[Dict[str, Any]] = field(default_factory=list)
    trajectory_history: List[Dict[str, Any]] = field(default_factory=list)
    participant_profiles: List[Dict[str, Any]] = field(default_factory=list)
    total_meetings_analyzed: int = 0
    first_analysis_date: Optional[datetime] = None
    last_analysis_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "cumulative_summary": self.cumulative_summary,
            "key_moments": self.key_moments,
            "action_item_history": self.action_item_history,
            "trajectory_history": self.trajectory_history,
            "participant_profiles": self.participant_profiles,
            "total_meetings_analyzed": self.total_meetings_analyzed,
            "first_analysis_date": format_datetime(self.first_analysis_date),
            "last_analysis_date": format_datetime(self.last_analysis_date),
            "last_updated": format_datetime(self.last_updated),
        }


@dataclass
class ClientMapping:
    """Rules associating inbound Fathom meetings with a client."""

    client_id: str
    participant_emails: List[str] = field(default_factory=list)
    title_pattern: Optional[str] = None
    meeting_ids: List[str] = field(default_factory=list)
    auto_detect: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "participant_emails": list(self.participant_emails),
            "title_pattern": self.title_pattern,
            "meeting_ids": list(self.meeting_ids),
            "auto_detect": self.auto_detect,
        }


@dataclass
class NotificationPreferences:
    """Per-client alert delivery targets and toggles."""

    client_id: str
    pod_leader_email: Optional[str] = None
    slack_webhook_url: Optional[str] = None
    notify_on_new_transcript: bool = False
    notify_on_auto_analysis: bool = True
    notify_on_manual_analysis: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "pod_leader_email": self.pod_leader_email,
            "slack_webhook_url": self.slack_webhook_url,
            "notify_on_new_transcript": self.notify_on_new_transcript,
            "notify_on_auto_analysis": self.notify_on_auto_analysis,
            "notify_on_manual_analysis": self.notify_on_manual_analysis,
        }


@dataclass
class PodLeaderProfile:
    """The account lead whose personality blind spots feed the analysis."""

    owner_id: str
    name: str = ""
    email: str = ""
    pod: str = ""
    personality_summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "name": self.name,
            "email": self.email,
            "pod": self.pod,
            "personality_summary": self.personality_summary,
        }
