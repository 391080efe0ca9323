"""
Fathom Sync Poller

Daily backup to the webhook: lists Fathom meetings created since the last
completed sync and feeds each through the same resolution and queue path
as a webhook. Runs at midnight America/New_York by default.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytz

from ..core.config import AppConfig
from ..core.records import utcnow
from ..core.repositories import SyncRunRepository
from ..fathom.client import FathomClient, transcript_text
from ..webhooks.fathom_handler import (
    STATUS_DUPLICATE,
    STATUS_NO_MAPPING,
    STATUS_NO_TRANSCRIPT,
    STATUS_PROCESSED,
    STATUS_STALE,
    FathomMeetingHandler,
    resolve_client,
)


logger = logging.getLogger(__name__)


def next_run_time(now: datetime, timezone_name: str = "America/New_York", hour: int = 0) -> datetime:
    """
    Next occurrence of `hour`:00 local time strictly after `now`.

    Args:
        now: Timezone-aware current time
        timezone_name: Olson timezone name
        hour: Local hour of day

    Returns:
        Timezone-aware UTC datetime
    """
    tz = pytz.timezone(timezone_name)
    local_now = now.astimezone(tz)
    candidate_date = local_now.date()
    candidate = tz.localize(datetime(candidate_date.year, candidate_date.month, candidate_date.day, hour))
    if candidate <= local_now:
        next_date = candidate_date + timedelta(days=1)
        candidate = tz.localize(datetime(next_date.year, next_date.month, next_date.day, hour))
    return candidate.astimezone(pytz.UTC)


class FathomSyncPoller:
    """
    Pulls recent Fathom meetings into client transcript queues.

    Features:
    - "created since last run" window from the sync_runs audit table
    - Serial processing through FathomMeetingHandler
    - Per-meeting error isolation
    - Dry run (resolve only, nothing queued)

    Usage:
        poller = FathomSyncPoller(config.app, fathom_client, handler, SyncRunRepository(db))

        # Run once
        stats = await poller.run_sync()

        # Run daily
        await poller.run_loop()
    """

    def __init__(
        self,
        config: AppConfig,
        fathom_client: FathomClient,
        handler: FathomMeetingHandler,
        sync_runs: SyncRunRepository,
    ):
        self.config = config
        self.fathom_client = fathom_client
        self.handler = handler
        self.sync_runs = sync_runs

        logger.info(
            f"FathomSyncPoller initialized (run hour: {config.sync_run_hour:02d}:00 {config.sync_timezone}, "
            f"lookback: {config.sync_lookback_hours}h)"
        )

    async def _in_executor(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def run_sync(self, dry_run: bool = False, created_after: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Run a single sync cycle.

        Args:
            dry_run: Resolve meetings but do not queue anything
            created_after: Override the lower bound (default: last completed run)

        Returns:
            Dictionary with statistics:
                - meetings_found
                - transcripts_queued
                - duplicates
                - skipped_no_mapping
                - skipped_no_transcript
                - analyses_triggered
                - errors
        """
        start_time = utcnow()
        stats = {name: 0 for name in SyncRunRepository.STAT_FIELDS}

        if created_after is None:
            created_after = await self._in_executor(
                self.sync_runs.created_after_default, self.config.sync_lookback_hours, start_time
            )

        logger.info(f"Starting Fathom sync (created_after: {created_after.isoformat()}, dry_run: {dry_run})")

        run_id = None
        if not dry_run:
            run_id = await self._in_executor(self.sync_runs.start, start_time, created_after)

        try:
            meetings = await self._in_executor(
                self.fathom_client.list_meetings, created_after=created_after, include_transcript=True
            )
            stats["meetings_found"] = len(meetings)
            logger.info(f"Found {len(meetings)} meetings since {created_after.isoformat()}")

            mappings = await self._in_executor(self.handler.mappings.list_all)

            for meeting in meetings:
                meeting_id = meeting.get("id")
                try:
                    if dry_run:
                        self._dry_run_meeting(meeting, mappings, stats)
                        continue

                    result = await self.handler.ingest_meeting(meeting, source="sync", mappings=mappings)
                    if result.status == STATUS_PROCESSED:
                        stats["transcripts_queued"] += 1
                        logger.info(f"✓ Synced meeting {meeting_id} for client {result.client_id}")
                    elif result.status == STATUS_DUPLICATE:
                        stats["duplicates"] += 1
                    elif result.status == STATUS_NO_MAPPING:
                        stats["skipped_no_mapping"] += 1
                    elif result.status == STATUS_NO_TRANSCRIPT:
                        stats["skipped_no_transcript"] += 1
                    elif result.status == STATUS_STALE:
                        logger.info(f"Meeting {meeting_id} predates the queued window for client {result.client_id}")
                    if result.analysis_dispatched:
                        stats["analyses_triggered"] += 1

                except Exception as e:
                    logger.error(f"Error syncing meeting {meeting_id}: {e}", exc_info=True)
                    stats["errors"] += 1

        except Exception as e:
            logger.error(f"Fathom sync failed: {e}", exc_info=True)
            stats["errors"] += 1
            if run_id is not None:
                await self._in_executor(self.sync_runs.finish, run_id, stats, "failed", str(e))
            raise

        if run_id is not None:
            await self._in_executor(self.sync_runs.finish, run_id, stats, "completed")

        duration = (utcnow() - start_time).total_seconds()
        logger.info(
            f"Fathom sync complete ({duration:.1f}s): "
            f"{stats['meetings_found']} found, {stats['transcripts_queued']} queued, "
            f"{stats['duplicates']} duplicates, {stats['skipped_no_mapping']} unmapped, "
            f"{stats['skipped_no_transcript']} without transcript, "
            f"{stats['analyses_triggered']} analyses triggered, {stats['errors']} errors"
        )
        return stats

    def _dry_run_meeting(self, meeting: Dict[str, Any], mappings, stats: Dict[str, int]):
        client_id = resolve_client(meeting, mappings)
        if client_id is None:
            stats["skipped_no_mapping"] += 1
        elif transcript_text(meeting.get("transcript")) is None:
            stats["skipped_no_transcript"] += 1
        else:
            logger.info(f"[DRY RUN] Would queue meeting {meeting.get('id')} for client {client_id}")
            stats["transcripts_queued"] += 1

    async def run_loop(self):
        """Run the sync once a day at the configured local hour, until cancelled."""
        logger.info(
            f"Starting Fathom sync loop (daily at {self.config.sync_run_hour:02d}:00 {self.config.sync_timezone})"
        )

        try:
            while True:
                next_run = next_run_time(utcnow(), self.config.sync_timezone, self.config.sync_run_hour)
                wait_seconds = max((next_run - utcnow()).total_seconds(), 0)
                logger.info(f"Next Fathom sync at {next_run.isoformat()} ({wait_seconds / 3600:.1f}h)")
                await asyncio.sleep(wait_seconds)

                try:
                    await self.run_sync()
                except Exception as e:
                    logger.error(f"Scheduled Fathom sync failed: {e}", exc_info=True)

                await self.handler.orchestrator.wait_for_background()

        except asyncio.CancelledError:
            logger.info("Fathom sync loop stopped")
            raise
