"""
Database models and management for Client Pulse.

This module contains all SQLAlchemy models and the DatabaseManager class
that owns the engine and session factory. Entity-level reads and writes
live in src/core/repositories.py.
"""

from sqlalchemy import (
    create_engine,
    text,
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
    JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func
from typing import Optional
import logging

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# CLIENTS
# ============================================================================


class Client(Base):
    """Agency client profile."""

    __tablename__ = "clients"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    pod = Column(String(100), index=True)
    monthly_spend = Column(String(100))
    duration = Column(String(100))
    notes = Column(Text)
    owner_id = Column(String(128), index=True)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Client(id='{self.id}', name='{self.name}')>"


class PodLeaderProfile(Base):
    """Account lead profile keyed by authenticated user id."""

    __tablename__ = "pod_leader_profiles"

    owner_id = Column(String(128), primary_key=True)
    name = Column(String(255))
    email = Column(String(255))
    pod = Column(String(100))
    personality_summary = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())


# ============================================================================
# ANALYSES
# ============================================================================


class Analysis(Base):
    """
    One analysis run for a client.

    Append-only per run, except that a feedback re-run replaces the
    result and input bundle of an existing row in place.
    """

    __tablename__ = "analyses"

    id = Column(Integer, primary_key=True)
    client_id = Column(String(64), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String(128), index=True)
    run_type = Column(String(20), nullable=False, default="manual")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True))

    # Denormalized for listing without parsing the result blob
    trajectory = Column(String(20))
    churn_risk = Column(String(20))
    client_confidence = Column(Integer)

    result = Column(JSONType, nullable=False)
    transcript_data = Column(JSONType, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "run_type IN ('manual', 'auto', 'feedback', 'additional')",
            name="valid_analysis_run_type",
        ),
        Index("idx_analyses_client_created", "client_id", "created_at"),
    )

    def __repr__(self):
        return f"<Analysis(id={self.id}, client='{self.client_id}', run_type='{self.run_type}')>"


# ============================================================================
# TRANSCRIPT QUEUE & MEETING MAPPING
# ============================================================================


class TranscriptQueue(Base):
    """Per-client window of at most three transcripts."""

    __tablename__ = "transcript_queues"

    client_id = Column(String(64), ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    transcripts = Column(JSONType, nullable=False, default=list)
    auto_analysis_enabled = Column(Boolean, nullable=False, default=True)
    last_processed = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())


class ClientMeetingMapping(Base):
    """Rules for routing inbound Fathom meetings to a client."""

    __tablename__ = "client_mappings"

    client_id = Column(String(64), ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    participant_emails = Column(JSONType, nullable=False, default=list)
    title_pattern = Column(String(500))
    meeting_ids = Column(JSONType, nullable=False, default=list)
    auto_detect = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())


class NotificationPreference(Base):
    """Per-client alert delivery settings."""

    __tablename__ = "notification_preferences"

    client_id = Column(String(64), ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    pod_leader_email = Column(String(255))
    slack_webhook_url = Column(String(1000))
    notify_on_new_transcript = Column(Boolean, nullable=False, default=False)
    notify_on_auto_analysis = Column(Boolean, nullable=False, default=True)
    notify_on_manual_analysis = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())


# ============================================================================
# RELATIONSHIP HISTORY
# ============================================================================


class RelationshipHistoryRecord(Base):
    """Compressed long-term memory for a client (one row per client)."""

    __tablename__ = "relationship_histories"

    client_id = Column(String(64), ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    cumulative_summary = Column(Text, nullable=False, default="")
    key_moments = Column(JSONType, nullable=False, default=list)
    action_item_history = Column(JSONType, nullable=False, default=list)
    trajectory_history = Column(JSONType, nullable=False, default=list)
    participant_profiles = Column(JSONType, nullable=False, default=list)
    total_meetings_analyzed = Column(Integer, nullable=False, default=0)
    first_analysis_date = Column(DateTime(timezone=True))
    last_analysis_date = Column(DateTime(timezone=True))
    last_updated = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("total_meetings_analyzed >= 0", name="non_negative_meeting_total"),
    )


# ============================================================================
# SCHEDULED SYNC AUDIT
# ============================================================================


class SyncRun(Base):
    """
    Audit record for each scheduled Fathom sync.

    The start time of the last completed run is the lower bound for the
    next run's meeting query.
    """

    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default="running", index=True)
    created_after = Column(DateTime(timezone=True))

    # Statistics
    meetings_found = Column(Integer, default=0)
    transcripts_queued = Column(Integer, default=0)
    duplicates = Column(Integer, default=0)
    skipped_no_mapping = Column(Integer, default=0)
    skipped_no_transcript = Column(Integer, default=0)
    analyses_triggered = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    error_message = Column(Text)

    __table_args__ = (
        CheckConstraint("status IN ('running', 'completed', 'failed')", name="valid_sync_status"),
        Index("idx_sync_runs_status_time", "status", "started_at"),
    )

    def __repr__(self):
        return f"<SyncRun(id={self.id}, status='{self.status}', started={self.started_at})>"


# ============================================================================
# DATABASE MANAGER
# ============================================================================


class DatabaseManager:
    """Owns the engine and session factory."""

    def __init__(self, connection_string: str):
        """Initialize database manager with connection string."""
        self.logger = logging.getLogger(__name__)
        self.connection_string = connection_string

        if connection_string in ("sqlite://", "sqlite:///:memory:"):
            # Single shared connection so in-memory databases survive across sessions
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=False,
            )
        elif connection_string.startswith("sqlite"):
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False, "timeout": 30},
                echo=False,
            )
        else:
            self.engine = create_engine(
                connection_string,
                pool_size=10,
                max_overflow=20,
                pool_pre_ping=True,  # Verify connections before using
                echo=False,
            )

        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)

    def create_tables(self):
        """Create all database tables."""
        Base.metadata.create_all(self.engine)
        self.logger.info("Database tables created successfully")

    def drop_tables(self):
        """Drop all database tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)
        self.logger.warning("All database tables dropped")

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()

    def ping(self) -> bool:
        """Run a trivial query to verify connectivity."""
        session = self.get_session()
        try:
            session.execute(text("SELECT 1"))
            return True
        finally:
            session.close()

    def get_stats(self) -> dict:
        """Row counts for the status command and detailed health check."""
        session = self.get_session()
        try:
            return {
                "clients": session.query(Client).count(),
                "analyses": session.query(Analysis).count(),
                "queues": session.query(TranscriptQueue).count(),
                "mappings": session.query(ClientMeetingMapping).count(),
                "histories": session.query(RelationshipHistoryRecord).count(),
                "sync_runs": session.query(SyncRun).count(),
            }
        finally:
            session.close()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

_db_manager_instance: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get or create a shared DatabaseManager instance.

    Uses the connection string from the application config.

    Returns:
        DatabaseManager instance
    """
    global _db_manager_instance

    if _db_manager_instance is None:
        from .config import get_config
        config = get_config()
        _db_manager_instance = DatabaseManager(config.database.connection_string)

    return _db_manager_instance
