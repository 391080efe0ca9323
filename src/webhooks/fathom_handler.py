"""
Fathom Meeting Handler.

Routes completed Fathom meetings (webhook push or daily sync) to a client,
queues the transcript and dispatches auto-analysis once the client's
window is full.

Client resolution, first match wins:
1. participant email (any mapping listing one of the meeting's emails)
2. title pattern (case-insensitive regex)
3. meeting id allowlist
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.exceptions import FathomAPIError
from ..core.records import ClientMapping, TranscriptEntry, parse_datetime, utcnow
from ..core.repositories import ClientMappingRepository, ClientRepository, NotificationPreferencesRepository
from ..fathom.client import FathomClient, transcript_text
from ..transcripts.queue_manager import TranscriptQueueManager


logger = logging.getLogger(__name__)


MEETING_COMPLETED = "meeting.completed"

STATUS_PROCESSED = "processed"
STATUS_NO_MAPPING = "no_mapping"
STATUS_NO_TRANSCRIPT = "no_transcript"
STATUS_DUPLICATE = "duplicate"
STATUS_STALE = "stale"
STATUS_IGNORED = "ignored"

STATUS_MESSAGES = {
    STATUS_PROCESSED: "Webhook processed successfully",
    STATUS_NO_MAPPING: "No client mapping found - skipping",
    STATUS_NO_TRANSCRIPT: "No transcript available - skipping",
    STATUS_DUPLICATE: "Meeting already queued - skipping",
    STATUS_STALE: "Meeting is older than every queued transcript - skipping",
    STATUS_IGNORED: "Event ignored",
}


@dataclass
class IngestResult:
    """Terminal outcome of one inbound meeting."""

    status: str
    meeting_id: Optional[str] = None
    client_id: Optional[str] = None
    queue_size: int = 0
    analysis_dispatched: bool = False

    @property
    def message(self) -> str:
        return STATUS_MESSAGES.get(self.status, self.status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "meeting_id": self.meeting_id,
            "client_id": self.client_id,
            "queue_size": self.queue_size,
            "analysis_dispatched": self.analysis_dispatched,
        }


def participant_emails(meeting: Dict[str, Any]) -> List[str]:
    """Lowercased participant emails; entries may be strings or {"email": ...} dicts."""
    emails = []
    for participant in meeting.get("participants") or []:
        if isinstance(participant, dict):
            participant = participant.get("email")
        if participant and isinstance(participant, str):
            emails.append(participant.strip().lower())
    return emails


def meeting_title(meeting: Dict[str, Any]) -> str:
    return meeting.get("title") or meeting.get("meeting_title") or "Untitled Meeting"


def resolve_client(meeting: Dict[str, Any], mappings: List[ClientMapping]) -> Optional[str]:
    """
    Find the client a meeting belongs to.

    Args:
        meeting: Fathom meeting dict
        mappings: All client mappings

    Returns:
        Client id, or None if nothing matched
    """
    for email in participant_emails(meeting):
        for mapping in mappings:
            if email in (e.lower() for e in mapping.participant_emails):
                logger.debug(f"Meeting matched client {mapping.client_id} by participant {email}")
                return mapping.client_id

    title = meeting.get("title") or meeting.get("meeting_title") or ""
    if title:
        for mapping in mappings:
            if not mapping.title_pattern:
                continue
            try:
                if re.search(mapping.title_pattern, title, re.IGNORECASE):
                    logger.debug(f"Meeting matched client {mapping.client_id} by title pattern")
                    return mapping.client_id
            except re.error as e:
                logger.warning(f"Invalid title pattern for client {mapping.client_id}: {e}")

    meeting_id = str(meeting.get("id", ""))
    if meeting_id:
        for mapping in mappings:
            if meeting_id in mapping.meeting_ids:
                logger.debug(f"Meeting matched client {mapping.client_id} by meeting id")
                return mapping.client_id

    return None


class FathomMeetingHandler:
    """
    Turns inbound Fathom meetings into queued transcripts.

    Usage:
        handler = FathomMeetingHandler(mappings, queue_manager, orchestrator, fathom_client)
        result = await handler.handle_webhook(payload)
    """

    def __init__(
        self,
        mappings: ClientMappingRepository,
        queue_manager: TranscriptQueueManager,
        orchestrator,
        fathom_client: Optional[FathomClient] = None,
        notifier=None,
        notification_prefs: Optional[NotificationPreferencesRepository] = None,
        clients: Optional[ClientRepository] = None,
    ):
        """
        Args:
            mappings: Client mapping repository
            queue_manager: Transcript queue manager
            orchestrator: AnalysisOrchestrator (dispatch_auto_analysis, spawn)
            fathom_client: Used to fetch transcripts missing from the payload
            notifier: Object with notify_new_transcript(...) (optional)
            notification_prefs: Preferences repository (optional)
            clients: Client repository, for client names in notifications
        """
        self.mappings = mappings
        self.queue_manager = queue_manager
        self.orchestrator = orchestrator
        self.fathom_client = fathom_client
        self.notifier = notifier
        self.notification_prefs = notification_prefs
        self.clients = clients

    async def _in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    async def handle_webhook(self, payload: Dict[str, Any]) -> IngestResult:
        """
        Process a verified webhook payload.

        Raises:
            ValueError: Payload has no meeting object with an id
            RecordStoreUnavailableError: Mappings or queue could not be read/written
        """
        event_type = payload.get("event_type")
        if event_type and event_type != MEETING_COMPLETED:
            logger.info(f"Ignoring Fathom event {event_type}")
            return IngestResult(status=STATUS_IGNORED)

        meeting = payload.get("meeting")
        if not isinstance(meeting, dict) or not meeting.get("id"):
            raise ValueError("Webhook payload has no meeting id")

        logger.info(f"Processing webhook for meeting: {meeting['id']} - {meeting_title(meeting)}")
        return await self.ingest_meeting(meeting, source="webhook")

    async def ingest_meeting(
        self,
        meeting: Dict[str, Any],
        source: str = "webhook",
        mappings: Optional[List[ClientMapping]] = None,
    ) -> IngestResult:
        """
        Resolve, queue and (if ready) dispatch analysis for one meeting.

        Args:
            meeting: Fathom meeting dict
            source: "webhook" or "sync" (logging only)
            mappings: Pre-loaded mappings (the sync loads them once)

        Returns:
            IngestResult with a terminal status
        """
        meeting_id = str(meeting.get("id"))

        if mappings is None:
            mappings = await self._in_executor(self.mappings.list_all)

        client_id = resolve_client(meeting, mappings)
        if client_id is None:
            logger.info(f"No client mapping found for meeting {meeting_id} ({source})")
            return IngestResult(status=STATUS_NO_MAPPING, meeting_id=meeting_id)

        logger.info(f"Matched meeting {meeting_id} to client {client_id}")

        transcript = transcript_text(meeting.get("transcript"))
        if transcript is None and self.fathom_client is not None:
            logger.info(f"Fetching transcript for meeting {meeting_id} separately")
            try:
                transcript = await self._in_executor(self.fathom_client.get_transcript, meeting_id)
            except FathomAPIError as e:
                logger.error(f"Failed to fetch transcript for meeting {meeting_id}: {e}")
                transcript = None

        if transcript is None:
            logger.warning(f"No transcript available for meeting {meeting_id}")
            return IngestResult(status=STATUS_NO_TRANSCRIPT, meeting_id=meeting_id, client_id=client_id)

        entry = TranscriptEntry(
            meeting_id=meeting_id,
            transcript=transcript,
            meeting_date=parse_datetime(meeting.get("created_at") or meeting.get("scheduled_start_time")) or utcnow(),
            meeting_title=meeting_title(meeting),
        )

        appended = await self._in_executor(self.queue_manager.append_transcript, client_id, entry)
        queue_size = len(appended.queue.transcripts)
        if not appended.added:
            return IngestResult(status=STATUS_DUPLICATE, meeting_id=meeting_id, client_id=client_id, queue_size=queue_size)
        if any(e.meeting_id == entry.meeting_id for e in appended.evicted):
            logger.info(f"Meeting {meeting_id} is older than the full window for client {client_id}, skipping")
            return IngestResult(status=STATUS_STALE, meeting_id=meeting_id, client_id=client_id, queue_size=queue_size)

        self._dispatch_transcript_notification(client_id, entry, queue_size)

        dispatched = False
        if self.queue_manager.queue_is_ready(appended.queue):
            if self.orchestrator.analyzer.is_configured():
                logger.info(f"Queue ready for client {client_id} - triggering auto-analysis")
                self.orchestrator.dispatch_auto_analysis(client_id)
                dispatched = True
            else:
                logger.warning(f"Queue ready for client {client_id} but analyzer is not configured")

        return IngestResult(
            status=STATUS_PROCESSED,
            meeting_id=meeting_id,
            client_id=client_id,
            queue_size=queue_size,
            analysis_dispatched=dispatched,
        )

    def _dispatch_transcript_notification(self, client_id: str, entry: TranscriptEntry, queue_size: int):
        if self.notifier is None or self.notification_prefs is None:
            return
        self.orchestrator.spawn(
            self._notify_transcript(client_id, entry, queue_size),
            f"new transcript notification for {client_id}",
        )

    async def _notify_transcript(self, client_id: str, entry: TranscriptEntry, queue_size: int):
        prefs = await self._in_executor(self.notification_prefs.get, client_id)
        if prefs is None or not prefs.notify_on_new_transcript:
            return
        client_name = client_id
        if self.clients is not None:
            client = await self._in_executor(self.clients.get, client_id)
            if client:
                client_name = client.name
        await self._in_executor(self.notifier.notify_new_transcript, prefs, client_id, client_name, entry, queue_size)
