"""
Service Container

Builds the object graph shared by the web app and the CLI: repositories,
queue manager, history aggregator, analyzer, notifier, orchestrator,
Fathom handler and sync poller. Collaborators can be injected for tests.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..ai.analyzer import RelationshipAnalyzer
from ..analysis.orchestrator import AnalysisOrchestrator
from ..core.config import ConfigManager
from ..core.database import DatabaseManager
from ..core.exceptions import AuthenticationError
from ..core.repositories import (
    AnalysisRepository,
    ClientMappingRepository,
    ClientRepository,
    NotificationPreferencesRepository,
    PodLeaderRepository,
    RelationshipHistoryRepository,
    SyncRunRepository,
    TranscriptQueueRepository,
)
from ..discovery.poller import FathomSyncPoller
from ..fathom.client import FathomClient
from ..graph.client import GraphAPIClient
from ..graph.mail import EmailSender
from ..history.aggregator import RelationshipHistoryAggregator
from ..notifications.notifier import AnalysisNotifier
from ..transcripts.queue_manager import TranscriptQueueManager
from ..webhooks.fathom_handler import FathomMeetingHandler


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config: ConfigManager
    db: DatabaseManager
    clients: ClientRepository
    analyses: AnalysisRepository
    queues: TranscriptQueueRepository
    mappings: ClientMappingRepository
    notification_prefs: NotificationPreferencesRepository
    histories: RelationshipHistoryRepository
    pod_leaders: PodLeaderRepository
    sync_runs: SyncRunRepository
    queue_manager: TranscriptQueueManager
    aggregator: RelationshipHistoryAggregator
    analyzer: RelationshipAnalyzer
    notifier: AnalysisNotifier
    orchestrator: AnalysisOrchestrator
    fathom_client: FathomClient
    meeting_handler: FathomMeetingHandler
    poller: FathomSyncPoller


def _build_email_sender(config: ConfigManager) -> Optional[EmailSender]:
    if not config.app.email_enabled or not config.graph_api.is_configured():
        return None
    try:
        return EmailSender(GraphAPIClient(config.graph_api))
    except AuthenticationError as e:
        logger.warning(f"Email notifications disabled: {e}")
        return None


def build_services(
    config: ConfigManager,
    db: Optional[DatabaseManager] = None,
    analyzer=None,
    notifier=None,
    fathom_client: Optional[FathomClient] = None,
) -> ServiceContainer:
    """
    Wire every service from configuration.

    Args:
        config: ConfigManager
        db: DatabaseManager (default: from config.database)
        analyzer: Analyzer override
        notifier: Notifier override
        fathom_client: Fathom client override

    Returns:
        ServiceContainer
    """
    db = db or DatabaseManager(config.database.connection_string)

    clients = ClientRepository(db)
    analyses = AnalysisRepository(db)
    queues = TranscriptQueueRepository(db)
    mappings = ClientMappingRepository(db)
    notification_prefs = NotificationPreferencesRepository(db)
    histories = RelationshipHistoryRepository(db)
    pod_leaders = PodLeaderRepository(db)
    sync_runs = SyncRunRepository(db)

    analyzer = analyzer or RelationshipAnalyzer(config.gemini, config.claude, config.app)
    notifier = notifier or AnalysisNotifier(config.app, _build_email_sender(config))
    fetch_transcripts = fathom_client is not None or bool(config.fathom.api_key)
    fathom_client = fathom_client or FathomClient(config.fathom)

    queue_manager = TranscriptQueueManager(queues, dedupe_meeting_ids=config.app.dedupe_meeting_ids)
    aggregator = RelationshipHistoryAggregator(histories, analyzer)

    orchestrator = AnalysisOrchestrator(
        analyses=analyses,
        clients=clients,
        queue_manager=queue_manager,
        aggregator=aggregator,
        analyzer=analyzer,
        notifier=notifier,
        notification_prefs=notification_prefs,
        pod_leaders=pod_leaders,
        app_config=config.app,
    )

    meeting_handler = FathomMeetingHandler(
        mappings=mappings,
        queue_manager=queue_manager,
        orchestrator=orchestrator,
        fathom_client=fathom_client if fetch_transcripts else None,
        notifier=notifier,
        notification_prefs=notification_prefs,
        clients=clients,
    )

    poller = FathomSyncPoller(config.app, fathom_client, meeting_handler, sync_runs)

    return ServiceContainer(
        config=config,
        db=db,
        clients=clients,
        analyses=analyses,
        queues=queues,
        mappings=mappings,
        notification_prefs=notification_prefs,
        histories=histories,
        pod_leaders=pod_leaders,
        sync_runs=sync_runs,
        queue_manager=queue_manager,
        aggregator=aggregator,
        analyzer=analyzer,
        notifier=notifier,
        orchestrator=orchestrator,
        fathom_client=fathom_client,
        meeting_handler=meeting_handler,
        poller=poller,
    )
