"""
Transcript Queue Manager

Maintains each client's rolling window of the three most recent meeting
transcripts, labeled oldest/middle/recent by meeting date, and decides
when a client is ready for analysis.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..core.records import (
    SEQUENCE_LABELS,
    TranscriptEntry,
    TranscriptQueueState,
    ensure_utc,
    utcnow,
)
from ..core.repositories import TranscriptQueueRepository


logger = logging.getLogger(__name__)


@dataclass
class QueueAppendResult:
    """Outcome of appending one transcript."""

    queue: TranscriptQueueState
    added: bool = True
    evicted: List[TranscriptEntry] = field(default_factory=list)


def relabel(entries: List[TranscriptEntry]) -> List[TranscriptEntry]:
    """
    Assign sequence labels by position.

    Args:
        entries: At most three entries, already sorted ascending by meeting date

    Returns:
        New entries carrying the labels for the current count
    """
    if not entries:
        return []
    labels = SEQUENCE_LABELS[len(entries)]
    return [dataclasses.replace(entry, sequence=label) for entry, label in zip(entries, labels)]


class TranscriptQueueManager:
    """
    Bounded, ordered transcript window per client.

    Invariants after every append:
    - entries sorted ascending by meeting date
    - never more than MAX_TRANSCRIPTS entries (oldest evicted first)
    - labels match position for the current count

    Usage:
        manager = TranscriptQueueManager(TranscriptQueueRepository(db))
        manager.append_transcript(client_id, entry)
        if manager.is_ready(client_id):
            ...
        manager.mark_processed(client_id)
    """

    MAX_TRANSCRIPTS = 3

    def __init__(self, queues: TranscriptQueueRepository, dedupe_meeting_ids: bool = True):
        """
        Initialize queue manager.

        Args:
            queues: Queue repository
            dedupe_meeting_ids: Ignore a transcript whose meeting id is already queued
        """
        self.queues = queues
        self.dedupe_meeting_ids = dedupe_meeting_ids

    def get_window(self, client_id: str) -> Optional[TranscriptQueueState]:
        """Current queue for a client, or None if no transcript has arrived yet."""
        return self.queues.get(client_id)

    def append_transcript(self, client_id: str, entry: TranscriptEntry) -> QueueAppendResult:
        """
        Insert a transcript into the client's window.

        Fetches or lazily creates the queue, inserts, re-sorts by meeting
        date, evicts from the front until at most three remain, relabels
        and persists.

        Args:
            client_id: Client the meeting was resolved to
            entry: Transcript to insert (its sequence label is recomputed)

        Returns:
            QueueAppendResult with the persisted queue

        Raises:
            RecordStoreUnavailableError: If the queue cannot be read or written
        """
        queue = self.queues.get(client_id)
        if queue is None:
            queue = TranscriptQueueState(client_id=client_id)
            logger.info(f"Creating transcript queue for client {client_id}")

        if self.dedupe_meeting_ids and any(t.meeting_id == entry.meeting_id for t in queue.transcripts):
            logger.info(f"Meeting {entry.meeting_id} already queued for client {client_id}, skipping")
            return QueueAppendResult(queue=queue, added=False)

        # Stable sort keeps arrival order for identical meeting dates
        entries = sorted(queue.transcripts + [entry], key=lambda t: ensure_utc(t.meeting_date))

        evicted = []
        while len(entries) > self.MAX_TRANSCRIPTS:
            evicted.append(entries.pop(0))

        queue.transcripts = relabel(entries)
        self.queues.save(queue)

        if evicted:
            logger.info(
                f"Evicted {len(evicted)} transcript(s) from client {client_id} queue: "
                f"{', '.join(e.meeting_id for e in evicted)}"
            )
        logger.info(
            f"Queued meeting {entry.meeting_id} for client {client_id} "
            f"({len(queue.transcripts)}/{self.MAX_TRANSCRIPTS} transcripts)"
        )

        return QueueAppendResult(queue=queue, added=True, evicted=evicted)

    def is_ready(self, client_id: str) -> bool:
        """
        True iff the queue exists, holds at least three transcripts and
        auto-analysis is enabled. Does not modify anything.
        """
        queue = self.queues.get(client_id)
        return self.queue_is_ready(queue)

    def queue_is_ready(self, queue: Optional[TranscriptQueueState]) -> bool:
        if queue is None:
            return False
        return len(queue.transcripts) >= self.MAX_TRANSCRIPTS and queue.auto_analysis_enabled

    def mark_processed(self, client_id: str, processed_at: Optional[datetime] = None) -> Optional[TranscriptQueueState]:
        """
        Record that the current window was analyzed.

        The window itself is left intact so it remains the baseline for
        the next incremental cycle.

        Returns:
            Updated queue, or None if the client has no queue
        """
        queue = self.queues.get(client_id)
        if queue is None:
            logger.warning(f"Cannot mark queue processed: no queue for client {client_id}")
            return None

        queue.last_processed = processed_at or utcnow()
        self.queues.save(queue)
        logger.info(f"Marked transcript queue processed for client {client_id}")
        return queue

    def set_auto_analysis(self, client_id: str, enabled: bool) -> TranscriptQueueState:
        """Toggle auto-analysis, creating an empty queue if needed."""
        queue = self.queues.get(client_id) or TranscriptQueueState(client_id=client_id)
        queue.auto_analysis_enabled = enabled
        self.queues.save(queue)
        logger.info(f"Auto-analysis {'enabled' if enabled else 'disabled'} for client {client_id}")
        return queue
