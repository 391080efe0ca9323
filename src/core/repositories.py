"""
Repositories over the record store.

One repository per entity. Each method opens its own session and returns
plain records from src/core/records.py.

Failure policy:
- Dashboard read paths (listing clients, analyses, history, preferences)
  log and degrade to an empty result.
- Write paths, and reads the ingestion path depends on (queue, mappings),
  raise RecordStoreUnavailableError.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .database import (
    DatabaseManager,
    Client,
    Analysis,
    TranscriptQueue,
    ClientMeetingMapping,
    NotificationPreference,
    RelationshipHistoryRecord,
    PodLeaderProfile as PodLeaderProfileRow,
    SyncRun,
)
from .exceptions import RecordStoreUnavailableError
from .records import (
    AnalysisRecord,
    ClientMapping,
    ClientProfile,
    NotificationPreferences,
    PodLeaderProfile,
    RelationshipHistory,
    TranscriptBundle,
    TranscriptEntry,
    TranscriptQueueState,
    ensure_utc,
    utcnow,
)


logger = logging.getLogger(__name__)


# ============================================================================
# CLIENTS
# ============================================================================


class ClientRepository:
    """Client profiles."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_record(row: Client) -> ClientProfile:
        return ClientProfile(
            id=row.id,
            name=row.name,
            pod=row.pod or "",
            monthly_spend=row.monthly_spend or "",
            duration=row.duration or "",
            notes=row.notes or "",
            owner_id=row.owner_id,
            created_at=ensure_utc(row.created_at),
        )

    def get(self, client_id: str) -> Optional[ClientProfile]:
        session = self.db.get_session()
        try:
            row = session.get(Client, client_id)
            return self._to_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to load client {client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not load client {client_id}") from e
        finally:
            session.close()

    def list_clients(self, owner_id: Optional[str] = None) -> List[ClientProfile]:
        """List clients, newest first. Returns [] if the store is unavailable."""
        session = self.db.get_session()
        try:
            query = session.query(Client)
            if owner_id:
                query = query.filter(Client.owner_id == owner_id)
            return [self._to_record(row) for row in query.order_by(Client.created_at.desc()).all()]
        except SQLAlchemyError as e:
            logger.warning(f"Failed to list clients, returning empty list: {e}")
            return []
        finally:
            session.close()

    def create(self, profile: ClientProfile) -> ClientProfile:
        session = self.db.get_session()
        try:
            row = Client(
                id=profile.id or uuid.uuid4().hex,
                name=profile.name,
                pod=profile.pod,
                monthly_spend=profile.monthly_spend,
                duration=profile.duration,
                notes=profile.notes,
                owner_id=profile.owner_id,
                created_at=profile.created_at or utcnow(),
            )
            session.add(row)
            session.commit()
            logger.info(f"Created client {row.id} ({row.name})")
            return self._to_record(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to create client {profile.name}: {e}")
            raise RecordStoreUnavailableError(f"Could not create client {profile.name}") from e
        finally:
            session.close()

    def update(self, client_id: str, **fields: Any) -> Optional[ClientProfile]:
        """Update editable profile fields. Returns None if the client does not exist."""
        editable = {"name", "pod", "monthly_spend", "duration", "notes"}
        session = self.db.get_session()
        try:
            row = session.get(Client, client_id)
            if row is None:
                return None
            for key, value in fields.items():
                if key in editable and value is not None:
                    setattr(row, key, value)
            session.commit()
            return self._to_record(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update client {client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not update client {client_id}") from e
        finally:
            session.close()


# ============================================================================
# ANALYSES
# ============================================================================


class AnalysisRepository:
    """Analysis records, one-to-many per client, newest first."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_record(row: Analysis) -> AnalysisRecord:
        return AnalysisRecord(
            id=row.id,
            client_id=row.client_id,
            owner_id=row.owner_id,
            result=row.result or {},
            transcript_data=TranscriptBundle.from_dict(row.transcript_data),
            trigger=row.run_type,
            date=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    @staticmethod
    def _apply_result(row: Analysis, result: Dict[str, Any], bundle: TranscriptBundle):
        bottom_line = result.get("bottomLine") or {}
        row.result = result
        row.transcript_data = bundle.to_dict()
        row.trajectory = bottom_line.get("trajectory")
        row.churn_risk = bottom_line.get("churnRisk")
        confidence = bottom_line.get("clientConfidence")
        row.client_confidence = int(confidence) if isinstance(confidence, (int, float)) else None

    def create(self, record: AnalysisRecord) -> AnalysisRecord:
        session = self.db.get_session()
        try:
            row = Analysis(
                client_id=record.client_id,
                owner_id=record.owner_id,
                run_type=record.trigger,
                created_at=record.date,
            )
            self._apply_result(row, record.result, record.transcript_data)
            session.add(row)
            session.commit()
            logger.info(f"Saved analysis {row.id} for client {record.client_id} ({record.trigger})")
            return self._to_record(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save analysis for client {record.client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not save analysis for client {record.client_id}") from e
        finally:
            session.close()

    def replace(
        self, record_id: int, result: Dict[str, Any], bundle: TranscriptBundle, trigger: str = "feedback"
    ) -> Optional[AnalysisRecord]:
        """
        Replace the result and input of an existing record in place.

        Returns:
            Updated record, or None if record_id does not exist
        """
        session = self.db.get_session()
        try:
            row = session.get(Analysis, record_id)
            if row is None:
                return None
            self._apply_result(row, result, bundle)
            row.run_type = trigger
            row.updated_at = utcnow()
            session.commit()
            logger.info(f"Replaced analysis {record_id} for client {row.client_id} ({trigger})")
            return self._to_record(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to replace analysis {record_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not replace analysis {record_id}") from e
        finally:
            session.close()

    def get(self, record_id: int) -> Optional[AnalysisRecord]:
        session = self.db.get_session()
        try:
            row = session.get(Analysis, record_id)
            return self._to_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to load analysis {record_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not load analysis {record_id}") from e
        finally:
            session.close()

    def list_for_client(self, client_id: str, limit: int = 5) -> List[AnalysisRecord]:
        """Most recent analyses for a client. Returns [] if the store is unavailable."""
        session = self.db.get_session()
        try:
            rows = (
                session.query(Analysis)
                .filter(Analysis.client_id == client_id)
                .order_by(Analysis.created_at.desc(), Analysis.id.desc())
                .limit(limit)
                .all()
            )
            return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            logger.warning(f"Failed to list analyses for client {client_id}, returning empty list: {e}")
            return []
        finally:
            session.close()

    def latest_for_client(self, client_id: str) -> Optional[AnalysisRecord]:
        records = self.list_for_client(client_id, limit=1)
        return records[0] if records else None

    def count_for_client(self, client_id: str) -> int:
        session = self.db.get_session()
        try:
            return session.query(Analysis).filter(Analysis.client_id == client_id).count()
        finally:
            session.close()


# ============================================================================
# TRANSCRIPT QUEUES
# ============================================================================


class TranscriptQueueRepository:
    """Per-client transcript windows."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def get(self, client_id: str) -> Optional[TranscriptQueueState]:
        """
        Load a client's queue.

        Raises:
            RecordStoreUnavailableError: If the store cannot be read. Callers
                on the ingestion path must not treat this as "no queue".
        """
        session = self.db.get_session()
        try:
            row = session.get(TranscriptQueue, client_id)
            if row is None:
                return None
            return TranscriptQueueState(
                client_id=row.client_id,
                transcripts=[TranscriptEntry.from_dict(item) for item in (row.transcripts or [])],
                auto_analysis_enabled=bool(row.auto_analysis_enabled),
                last_processed=ensure_utc(row.last_processed),
                updated_at=ensure_utc(row.updated_at),
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load transcript queue for client {client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not load transcript queue for client {client_id}") from e
        finally:
            session.close()

    def save(self, state: TranscriptQueueState) -> TranscriptQueueState:
        session = self.db.get_session()
        try:
            row = session.get(TranscriptQueue, state.client_id)
            if row is None:
                row = TranscriptQueue(client_id=state.client_id)
                session.add(row)
            # New list object so the JSON column is flagged dirty
            row.transcripts = [entry.to_dict() for entry in state.transcripts]
            row.auto_analysis_enabled = state.auto_analysis_enabled
            row.last_processed = state.last_processed
            row.updated_at = utcnow()
            session.commit()
            state.updated_at = ensure_utc(row.updated_at)
            return state
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save transcript queue for client {state.client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not save transcript queue for client {state.client_id}") from e
        finally:
            session.close()


# ============================================================================
# MEETING MAPPINGS
# ============================================================================


class ClientMappingRepository:
    """Meeting-to-client routing rules."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    @staticmethod
    def _to_record(row: ClientMeetingMapping) -> ClientMapping:
        return ClientMapping(
            client_id=row.client_id,
            participant_emails=list(row.participant_emails or []),
            title_pattern=row.title_pattern,
            meeting_ids=[str(m) for m in (row.meeting_ids or [])],
            auto_detect=bool(row.auto_detect),
        )

    def get(self, client_id: str) -> Optional[ClientMapping]:
        session = self.db.get_session()
        try:
            row = session.get(ClientMeetingMapping, client_id)
            return self._to_record(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to load mapping for client {client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not load mapping for client {client_id}") from e
        finally:
            session.close()

    def list_all(self) -> List[ClientMapping]:
        """
        All mappings, in a stable order.

        Raises:
            RecordStoreUnavailableError: An unreadable store must not look
                like "no client matched" to the webhook.
        """
        session = self.db.get_session()
        try:
            rows = session.query(ClientMeetingMapping).order_by(ClientMeetingMapping.client_id).all()
            return [self._to_record(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to list client mappings: {e}")
            raise RecordStoreUnavailableError("Could not list client mappings") from e
        finally:
            session.close()

    def save(self, mapping: ClientMapping) -> ClientMapping:
        session = self.db.get_session()
        try:
            row = session.get(ClientMeetingMapping, mapping.client_id)
            if row is None:
                row = ClientMeetingMapping(client_id=mapping.client_id)
                session.add(row)
            row.participant_emails = [e.strip().lower() for e in mapping.participant_emails if e and e.strip()]
            row.title_pattern = mapping.title_pattern or None
            row.meeting_ids = [str(m) for m in mapping.meeting_ids]
            row.auto_detect = mapping.auto_detect
            session.commit()
            logger.info(f"Saved meeting mapping for client {mapping.client_id}")
            return self._to_record(row)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save mapping for client {mapping.client_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not save mapping for client {mapping.client_id}") from e
        finally:
            session.close()


# ============================================================================
# NOTIFICATION PREFERENCES
# ============================================================================


class NotificationPreferencesRepository:
    """Per-client notification settings."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def get(self, client_id: str) -> Optional[NotificationPreferences]:
        """Returns None when unset or when the store is unavailable."""
        session = self.db.get_session()
        try:
            row = session.get(NotificationPreference, client_id)
            if row is None:
                return None
            return NotificationPreferences(
                client_id=row.client_id,
                pod_leader_email=row.pod_leader_email,
                slack_webhook_url=row.slack_webhook_url,
                notify_on_new_transcript=bool(row.notify_on_new_transcript),
                notify_on_auto_analysis=bool(row.notify_on_auto_analysis),
                notify_on_manual_analysis=bool(row.notify_on_manual_analysis),
            )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load notification preferences for client {client_id}: {e}")
            return None
        finally:
            session.close()

    def save(self, prefs: NotificationPreferences) -> NotificationPreferences:
        session = self.db.get_session()
        try:
            row = session.get(NotificationPreference, prefs.client_id)
            if row is None:
                row = NotificationPreference(client_id=prefs.client_id)
                session.add(row)
            row.pod_leader_email = prefs.pod_leader_email
            row.slack_webhook_url = prefs.slack_webhook_url
            row.notify_on_new_transcript = prefs.notify_on_new_transcript
            row.notify_on_auto_analysis = prefs.notify_on_auto_analysis
            row.notify_on_manual_analysis = prefs.notify_on_manual_analysis
            session.commit()
            return prefs
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save notification preferences for client {prefs.client_id}: {e}")
            raise RecordStoreUnavailableError(
                f"Could not save notification preferences for client {prefs.client_id}"
            ) from e
        finally:
            session.close()


# ============================================================================
# RELATIONSHIP HISTORY
# ============================================================================


class RelationshipHistoryRepository:
    """Compressed long-term memory, one row per client."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def get(self, client_id: str, strict: bool = False) -> Optional[RelationshipHistory]:
        """
        Returns None when absent.

        A store failure also returns None unless strict is set, in which case
        it raises RecordStoreUnavailableError. Read-modify-write callers must
        use strict so a failed read is never mistaken for a new client.
        """
        session = self.db.get_session()
        try:
            row = session.get(RelationshipHistoryRecord, client_id)
            if row is None:
                return None
            return RelationshipHistory(
                client_id=row.client_id,
                cumulative_summary=row.cumulative_summary or "",
                key_moments=list(row.key_moments or []),
                action_item_history=list(row.action_item_history or []),
                trajectory_history=list(row.trajectory_history or []),
                participant_profiles=list(row.participant_profiles or []),
                total_meetings_analyzed=row.total_meetings_analyzed or 0,
                first_analysis_date=ensure_utc(row.first_analysis_date),
                last_analysis_date=ensure_utc(row.last_analysis_date),
                last_updated=ensure_utc(row.last_updated),
            )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load relationship history for client {client_id}: {e}")
            if strict:
                raise RecordStoreUnavailableError(f"Could not load relationship history for client {client_id}") from e
            return None
        finally:
            session.close()

    def save(self, history: RelationshipHistory) -> RelationshipHistory:
        session = self.db.get_session()
        try:
            row = session.get(RelationshipHistoryRecord, history.client_id)
            if row is None:
                row = RelationshipHistoryRecord(client_id=history.client_id)
                session.add(row)
            row.cumulative_summary = history.cumulative_summary
            row.key_moments = list(history.key_moments)
            row.action_item_history = list(history.action_item_history)
            row.trajectory_history = list(history.trajectory_history)
            row.participant_profiles = list(history.participant_profiles)
            row.total_meetings_analyzed = history.total_meetings_analyzed
            row.first_analysis_date = history.first_analysis_date
            row.last_analysis_date = history.last_analysis_date
            row.last_updated = history.last_updated or utcnow()
            session.commit()
            return history
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save relationship history for client {history.client_id}: {e}")
            raise RecordStoreUnavailableError(
                f"Could not save relationship history for client {history.client_id}"
            ) from e
        finally:
            session.close()


# ============================================================================
# POD LEADER PROFILES
# ============================================================================


class PodLeaderRepository:
    """Account lead profiles keyed by user id."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def get(self, owner_id: str) -> Optional[PodLeaderProfile]:
        session = self.db.get_session()
        try:
            row = session.get(PodLeaderProfileRow, owner_id)
            if row is None:
                return None
            return PodLeaderProfile(
                owner_id=row.owner_id,
                name=row.name or "",
                email=row.email or "",
                pod=row.pod or "",
                personality_summary=row.personality_summary or "",
            )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to load pod leader profile {owner_id}: {e}")
            return None
        finally:
            session.close()

    def save(self, profile: PodLeaderProfile) -> PodLeaderProfile:
        session = self.db.get_session()
        try:
            row = session.get(PodLeaderProfileRow, profile.owner_id)
            if row is None:
                row = PodLeaderProfileRow(owner_id=profile.owner_id)
                session.add(row)
            row.name = profile.name
            row.email = profile.email
            row.pod = profile.pod
            row.personality_summary = profile.personality_summary
            session.commit()
            return profile
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to save pod leader profile {profile.owner_id}: {e}")
            raise RecordStoreUnavailableError(f"Could not save pod leader profile {profile.owner_id}") from e
        finally:
            session.close()


# ============================================================================
# SYNC RUNS
# ============================================================================


class SyncRunRepository:
    """Audit trail for the scheduled Fathom sync."""

    STAT_FIELDS = (
        "meetings_found",
        "transcripts_queued",
        "duplicates",
        "skipped_no_mapping",
        "skipped_no_transcript",
        "analyses_triggered",
        "errors",
    )

    def __init__(self, db: DatabaseManager):
        self.db = db

    def start(self, started_at: datetime, created_after: datetime) -> int:
        session = self.db.get_session()
        try:
            run = SyncRun(started_at=started_at, created_after=created_after, status="running")
            session.add(run)
            session.commit()
            return run.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to record sync run start: {e}")
            raise RecordStoreUnavailableError("Could not record sync run") from e
        finally:
            session.close()

    def finish(self, run_id: int, stats: Dict[str, int], status: str = "completed", error_message: Optional[str] = None):
        session = self.db.get_session()
        try:
            run = session.get(SyncRun, run_id)
            if run is None:
                logger.warning(f"Sync run {run_id} not found")
                return
            for name in self.STAT_FIELDS:
                setattr(run, name, stats.get(name, 0))
            run.status = status
            run.error_message = error_message
            run.completed_at = utcnow()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to record sync run {run_id} completion: {e}")
            raise RecordStoreUnavailableError(f"Could not update sync run {run_id}") from e
        finally:
            session.close()

    def last_completed_start(self) -> Optional[datetime]:
        """Start time of the most recent completed run, or None."""
        session = self.db.get_session()
        try:
            run = (
                session.query(SyncRun)
                .filter(SyncRun.status == "completed")
                .order_by(SyncRun.started_at.desc())
                .first()
            )
            return ensure_utc(run.started_at) if run else None
        finally:
            session.close()

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        session = self.db.get_session()
        try:
            runs = session.query(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit).all()
            return [
                {
                    "id": run.id,
                    "status": run.status,
                    "started_at": ensure_utc(run.started_at),
                    "completed_at": ensure_utc(run.completed_at),
                    **{name: getattr(run, name) or 0 for name in self.STAT_FIELDS},
                }
                for run in runs
            ]
        except SQLAlchemyError as e:
            logger.warning(f"Failed to list sync runs: {e}")
            return []
        finally:
            session.close()

    def created_after_default(self, lookback_hours: int, now: Optional[datetime] = None) -> datetime:
        """Lower bound for the next sync: last completed start, else now - lookback."""
        last = self.last_completed_start()
        if last is not None:
            return last
        return (now or utcnow()) - timedelta(hours=lookback_hours)
