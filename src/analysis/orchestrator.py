"""
Analysis Orchestrator

Single entry point for every way an analysis can be produced:
- fresh analysis from pasted transcripts
- auto analysis from a ready transcript queue (webhook or daily sync)
- manual trigger over the queued transcripts
- feedback re-run (replaces the record in place)
- additional-transcript append (replaces the record in place)

Every run follows the same sequence:
1. build input (historical context, pod leader personality)
2. call the analyzer; on failure nothing is persisted
3. persist the record
4. refresh relationship history in the background
5. notify in the background when the client's preferences ask for it

Background steps log their failures and never affect the returned result.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.config import AppConfig
from ..core.exceptions import (
    AnalysisFailedError,
    AnalyzerNotConfiguredError,
    RecordNotFoundError,
)
from ..core.records import (
    SEQUENCE_MIDDLE,
    SEQUENCE_OLDEST,
    SEQUENCE_RECENT,
    AnalysisRecord,
    ClientProfile,
    Feedback,
    TranscriptBundle,
    TranscriptQueueState,
    utcnow,
)
from ..core.repositories import (
    AnalysisRepository,
    ClientRepository,
    NotificationPreferencesRepository,
    PodLeaderRepository,
)
from ..history.aggregator import RelationshipHistoryAggregator
from ..transcripts.queue_manager import TranscriptQueueManager


logger = logging.getLogger(__name__)


AUTO_CONTEXT = "Auto-generated analysis from Fathom webhook"
MANUAL_QUEUE_CONTEXT = "Manual analysis of queued Fathom transcripts"

TRIGGER_MANUAL = "manual"
TRIGGER_AUTO = "auto"
TRIGGER_FEEDBACK = "feedback"
TRIGGER_ADDITIONAL = "additional"


@dataclass
class AnalysisOutcome:
    """Result of one orchestrated run."""

    status: str  # completed | unchanged
    result: Dict[str, Any]
    bundle: TranscriptBundle
    record: Optional[AnalysisRecord] = None
    created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "analysis_id": self.record.id if self.record else None,
            "created": self.created,
            "result": self.result,
        }


def bundle_from_queue(queue: TranscriptQueueState, context: str, client: Optional[ClientProfile]) -> TranscriptBundle:
    return TranscriptBundle(
        oldest=queue.transcript_for(SEQUENCE_OLDEST),
        middle=queue.transcript_for(SEQUENCE_MIDDLE),
        recent=queue.transcript_for(SEQUENCE_RECENT),
        context=context,
        client_profile=client,
    )


class AnalysisOrchestrator:
    """
    Coordinates analyzer, record store, history and notifications.

    Usage:
        orchestrator = AnalysisOrchestrator(analyses, clients, queue_manager, aggregator, analyzer)
        outcome = await orchestrator.analyze_new(bundle, client_id, owner_id)
        await orchestrator.wait_for_background()  # before process exit
    """

    def __init__(
        self,
        analyses: AnalysisRepository,
        clients: ClientRepository,
        queue_manager: TranscriptQueueManager,
        aggregator: RelationshipHistoryAggregator,
        analyzer,
        notifier=None,
        notification_prefs: Optional[NotificationPreferencesRepository] = None,
        pod_leaders: Optional[PodLeaderRepository] = None,
        app_config: Optional[AppConfig] = None,
    ):
        """
        Args:
            analyses: Analysis repository
            clients: Client repository
            queue_manager: Transcript queue manager
            aggregator: Relationship history aggregator
            analyzer: Object with is_configured() and analyze(bundle)
            notifier: Object with notify_analysis(...) (optional)
            notification_prefs: Preferences repository (optional)
            pod_leaders: Pod leader repository (optional)
            app_config: Application settings
        """
        self.analyses = analyses
        self.clients = clients
        self.queue_manager = queue_manager
        self.aggregator = aggregator
        self.analyzer = analyzer
        self.notifier = notifier
        self.notification_prefs = notification_prefs
        self.pod_leaders = pod_leaders
        self.app_config = app_config or AppConfig()
        self._background_tasks: Set[asyncio.Task] = set()

    # ========================================================================
    # BACKGROUND TASKS
    # ========================================================================

    async def _in_executor(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    def spawn(self, coro, description: str) -> asyncio.Task:
        """Run a coroutine detached from the caller; failures are only logged."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)

        def _on_done(done: asyncio.Task):
            self._background_tasks.discard(done)
            if done.cancelled():
                logger.warning(f"Background task cancelled: {description}")
                return
            error = done.exception()
            if error is not None:
                logger.error(f"Background task failed ({description}): {error}", exc_info=error)

        task.add_done_callback(_on_done)
        return task

    async def wait_for_background(self):
        """Wait for detached history/notification/auto-analysis tasks."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background_tasks)

    # ========================================================================
    # CORE RUN
    # ========================================================================

    async def run_analysis(
        self,
        bundle: TranscriptBundle,
        client_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        record_id: Optional[int] = None,
        trigger: str = TRIGGER_MANUAL,
    ) -> AnalysisOutcome:
        """
        Run the analyzer on a bundle and persist the outcome.

        Args:
            bundle: Analysis input
            client_id: Client to attach the record to; None runs unsaved
            owner_id: User the record belongs to
            record_id: Existing record to replace in place
            trigger: manual | auto | feedback | additional

        Returns:
            AnalysisOutcome with status "completed"

        Raises:
            AnalyzerNotConfiguredError: No analyzer credentials
            AnalysisFailedError: Analyzer failed; carries the input bundle
            RecordStoreUnavailableError: The record could not be written
        """
        # Building input
        bundle = await self._prepare_bundle(bundle, client_id, owner_id)

        # Awaiting analyzer
        if not self.analyzer.is_configured():
            raise AnalyzerNotConfiguredError("Analyzer not configured")

        try:
            result = await self._in_executor(self.analyzer.analyze, bundle)
        except Exception as e:
            logger.error(f"Analysis failed for client {client_id or '(unsaved)'}: {e}")
            raise AnalysisFailedError(f"Analysis failed: {e}", bundle=bundle, client_id=client_id) from e

        # Persisting
        record = None
        created = False
        if client_id:
            if record_id is not None:
                record = await self._in_executor(self.analyses.replace, record_id, result, bundle, trigger)
                if record is None:
                    logger.warning(f"Analysis {record_id} not found, saving as a new record")
            if record is None:
                record = await self._in_executor(
                    self.analyses.create,
                    AnalysisRecord(
                        client_id=client_id,
                        owner_id=owner_id,
                        result=result,
                        transcript_data=bundle,
                        trigger=trigger,
                        date=utcnow(),
                    ),
                )
                created = True

            # Updating history, notifying
            self.spawn(self._refresh_history(client_id, result), f"history refresh for {client_id}")
            self.spawn(self._notify(client_id, record, result, trigger), f"notification for {client_id}")

        return AnalysisOutcome(status="completed", result=result, bundle=bundle, record=record, created=created)

    async def _prepare_bundle(
        self, bundle: TranscriptBundle, client_id: Optional[str], owner_id: Optional[str]
    ) -> TranscriptBundle:
        """Attach historical context and personality profile without mutating the caller's bundle."""
        updates: Dict[str, Any] = {}

        if client_id:
            history = await self._in_executor(self.aggregator.load, client_id)
            if history is not None and history.total_meetings_analyzed > 0:
                updates["historical_context"] = self.aggregator.build_historical_context(history)
                logger.info(
                    f"Using relationship history for client {client_id}: "
                    f"{updates['historical_context'].trajectory_trend}"
                )
            else:
                updates["historical_context"] = None

            if bundle.client_profile is None:
                updates["client_profile"] = await self._in_executor(self.clients.get, client_id)

        if owner_id and self.pod_leaders is not None and not bundle.personality_profile:
            profile = await self._in_executor(self.pod_leaders.get, owner_id)
            if profile and profile.personality_summary:
                updates["personality_profile"] = profile.personality_summary

        return dataclasses.replace(bundle, **updates) if updates else bundle

    async def _refresh_history(self, client_id: str, result: Dict[str, Any]):
        await self._in_executor(self.aggregator.refresh, client_id, result)

    async def _notify(self, client_id: str, record: AnalysisRecord, result: Dict[str, Any], trigger: str):
        if self.notifier is None or self.notification_prefs is None:
            return

        prefs = await self._in_executor(self.notification_prefs.get, client_id)
        if prefs is None:
            return

        enabled = prefs.notify_on_auto_analysis if trigger == TRIGGER_AUTO else prefs.notify_on_manual_analysis
        if not enabled:
            logger.debug(f"Notifications for {trigger} analyses are off for client {client_id}")
            return

        client = await self._in_executor(self.clients.get, client_id)
        client_name = client.name if client else client_id
        await self._in_executor(self.notifier.notify_analysis, prefs, client_id, client_name, result, record.id)

    # ========================================================================
    # ENTRY POINTS
    # ========================================================================

    async def analyze_new(
        self, bundle: TranscriptBundle, client_id: Optional[str] = None, owner_id: Optional[str] = None
    ) -> AnalysisOutcome:
        """Fresh analysis from user-supplied transcripts."""
        if not bundle.has_transcripts():
            raise ValueError("All three transcripts (oldest, middle, recent) are required")
        return await self.run_analysis(bundle, client_id, owner_id, trigger=TRIGGER_MANUAL)

    async def run_auto_analysis(self, client_id: str) -> Optional[AnalysisOutcome]:
        """
        Analyze a client's ready queue with the synthetic auto context.

        Returns:
            Outcome, or None if the queue is not ready or the client is gone
        """
        # Transcripts that land after this point stay unprocessed
        started = utcnow()
        queue = await self._in_executor(self.queue_manager.get_window, client_id)
        if not self.queue_manager.queue_is_ready(queue):
            logger.info(f"Queue for client {client_id} is not ready, skipping auto-analysis")
            return None

        client = await self._in_executor(self.clients.get, client_id)
        if client is None:
            logger.error(f"Client {client_id} not found, skipping auto-analysis")
            return None

        logger.info(f"Starting auto-analysis for client {client_id}")
        bundle = bundle_from_queue(queue, AUTO_CONTEXT, client)
        outcome = await self.run_analysis(bundle, client_id, client.owner_id, trigger=TRIGGER_AUTO)
        await self._in_executor(self.queue_manager.mark_processed, client_id, started)
        return outcome

    def dispatch_auto_analysis(self, client_id: str) -> asyncio.Task:
        """Start an auto-analysis without waiting for it."""
        logger.info(f"Dispatching auto-analysis for client {client_id}")
        return self.spawn(self.run_auto_analysis(client_id), f"auto-analysis for {client_id}")

    async def trigger_manual(self, client_id: str, owner_id: Optional[str] = None, force: bool = False) -> AnalysisOutcome:
        """
        Analyze the client's queued transcripts on request.

        Without force, a queue with nothing added since the last processed
        run returns the latest analysis with status "unchanged".

        Raises:
            RecordNotFoundError: Unknown client
            ValueError: Fewer than three transcripts queued
        """
        started = utcnow()
        client = await self._in_executor(self.clients.get, client_id)
        if client is None:
            raise RecordNotFoundError(f"Client {client_id} not found")

        queue = await self._in_executor(self.queue_manager.get_window, client_id)
        queued = len(queue.transcripts) if queue else 0
        if queued < TranscriptQueueManager.MAX_TRANSCRIPTS:
            raise ValueError(f"Client {client_id} has {queued} of {TranscriptQueueManager.MAX_TRANSCRIPTS} transcripts queued")

        if self.app_config.manual_trigger_requires_new_transcripts and not force:
            if not queue.has_unprocessed_transcripts():
                latest = await self._in_executor(self.analyses.latest_for_client, client_id)
                if latest is not None:
                    logger.info(f"No new transcripts for client {client_id} since last run, returning latest analysis")
                    return AnalysisOutcome(
                        status="unchanged", result=latest.result, bundle=latest.transcript_data, record=latest
                    )

        bundle = bundle_from_queue(queue, MANUAL_QUEUE_CONTEXT, client)
        outcome = await self.run_analysis(bundle, client_id, owner_id or client.owner_id, trigger=TRIGGER_MANUAL)
        await self._in_executor(self.queue_manager.mark_processed, client_id, started)
        return outcome

    async def _resolve_base(
        self, record_id: Optional[int], bundle: Optional[TranscriptBundle], client_id: Optional[str]
    ):
        existing = await self._in_executor(self.analyses.get, record_id) if record_id is not None else None
        if bundle is None:
            if existing is None:
                raise ValueError("An existing analysis id or the original transcripts are required")
            bundle = existing.transcript_data
        if existing is not None:
            if client_id is not None and existing.client_id is not None and client_id != existing.client_id:
                raise ValueError(f"Analysis {record_id} belongs to a different client")
            client_id = existing.client_id or client_id
        return bundle, client_id

    async def rerun_with_feedback(
        self,
        feedback: Feedback,
        record_id: Optional[int] = None,
        bundle: Optional[TranscriptBundle] = None,
        client_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> AnalysisOutcome:
        """
        Re-analyze the same input with user corrections.

        With record_id the record is replaced in place; without it (or if
        it no longer exists) a new record is created.
        """
        if feedback.is_empty():
            raise ValueError("Feedback must include at least one field")
        base, client_id = await self._resolve_base(record_id, bundle, client_id)
        return await self.run_analysis(
            dataclasses.replace(base, feedback=feedback),
            client_id,
            owner_id,
            record_id=record_id,
            trigger=TRIGGER_FEEDBACK,
        )

    async def add_transcripts(
        self,
        transcripts: List[str],
        record_id: Optional[int] = None,
        bundle: Optional[TranscriptBundle] = None,
        client_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> AnalysisOutcome:
        """Append transcripts to an analysis input and re-run (same record rule as feedback)."""
        new = [t for t in transcripts if t and t.strip()]
        if not new:
            raise ValueError("At least one non-empty transcript is required")
        base, client_id = await self._resolve_base(record_id, bundle, client_id)
        return await self.run_analysis(
            dataclasses.replace(base, additional_transcripts=list(base.additional_transcripts) + new),
            client_id,
            owner_id,
            record_id=record_id,
            trigger=TRIGGER_ADDITIONAL,
        )

    async def answer_follow_up(
        self, record_id: int, question: str, history: Optional[List[Dict[str, str]]] = None
    ) -> str:
        """Answer a question about a stored analysis."""
        record = await self._in_executor(self.analyses.get, record_id)
        if record is None:
            raise RecordNotFoundError(f"Analysis {record_id} not found")
        if not self.analyzer.is_configured():
            raise AnalyzerNotConfiguredError("Analyzer not configured")
        return await self._in_executor(
            self.analyzer.answer_follow_up, record.transcript_data, record.result, history or [], question
        )
