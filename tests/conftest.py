"""
Shared fixtures: in-memory database, repositories, configuration and a
fully wired service container with a mocked analyzer and notifier.
"""

from unittest.mock import Mock

import pytest

from src.core.config import (
    AppConfig,
    ClaudeConfig,
    ConfigManager,
    DatabaseConfig,
    FathomConfig,
    GeminiConfig,
    GraphAPIConfig,
)
from src.core.database import DatabaseManager
from src.core.records import ClientMapping, ClientProfile
from src.core.repositories import (
    AnalysisRepository,
    ClientMappingRepository,
    ClientRepository,
    NotificationPreferencesRepository,
    PodLeaderRepository,
    RelationshipHistoryRepository,
    TranscriptQueueRepository,
)
from src.transcripts.queue_manager import TranscriptQueueManager
from tests.factories import JWT_SECRET, WEBHOOK_SECRET, AnalysisTestFactory


@pytest.fixture
def test_db(tmp_path):
    """
    Create a temporary SQLite database for testing.

    File-backed so background tasks running in executor threads each get
    their own connection.
    """
    db = DatabaseManager(f"sqlite:///{tmp_path / 'client_pulse.db'}")
    db.create_tables()
    yield db
    db.drop_tables()
    db.engine.dispose()


@pytest.fixture
def make_config():
    """
    Build a ConfigManager without reading .env or config.yaml.

    Keyword arguments override AppConfig fields.
    """
    def _make(webhook_secret: str = WEBHOOK_SECRET, fathom_api_key: str = "", **app_overrides):
        config = object.__new__(ConfigManager)
        config.config_file = "config.yaml"
        config.database = DatabaseConfig(url="sqlite://")
        config.gemini = GeminiConfig()
        config.claude = ClaudeConfig()
        config.fathom = FathomConfig(api_key=fathom_api_key, webhook_secret=webhook_secret)
        config.graph_api = GraphAPIConfig()
        config.jwt_secret_key = JWT_SECRET
        app_overrides.setdefault("email_enabled", False)
        config.app = AppConfig(**app_overrides)
        return config

    return _make


@pytest.fixture
def analysis_result():
    return AnalysisTestFactory.create_result()


@pytest.fixture
def mock_analyzer(analysis_result):
    """Configured analyzer returning a fixed result."""
    analyzer = Mock()
    analyzer.is_configured = Mock(return_value=True)
    analyzer.analyze = Mock(return_value=analysis_result)
    analyzer.compress_history = Mock(return_value="Compressed relationship summary.")
    analyzer.answer_follow_up = Mock(return_value="They are worried about budget.")
    return analyzer


@pytest.fixture
def mock_notifier():
    notifier = Mock()
    notifier.notify_analysis = Mock()
    notifier.notify_new_transcript = Mock()
    return notifier


@pytest.fixture
def clients(test_db):
    return ClientRepository(test_db)


@pytest.fixture
def analyses(test_db):
    return AnalysisRepository(test_db)


@pytest.fixture
def queues(test_db):
    return TranscriptQueueRepository(test_db)


@pytest.fixture
def mappings(test_db):
    return ClientMappingRepository(test_db)


@pytest.fixture
def notification_prefs(test_db):
    return NotificationPreferencesRepository(test_db)


@pytest.fixture
def histories(test_db):
    return RelationshipHistoryRepository(test_db)


@pytest.fixture
def pod_leaders(test_db):
    return PodLeaderRepository(test_db)


@pytest.fixture
def queue_manager(queues):
    return TranscriptQueueManager(queues)


@pytest.fixture
def acme(clients, mappings):
    """Client "Acme" mapped by participant email."""
    client = clients.create(
        ClientProfile(id="acme", name="Acme Corp", monthly_spend="25000", duration="2 years", owner_id="user-1")
    )
    mappings.save(ClientMapping(client_id="acme", participant_emails=["jane@acme.com"]))
    return client
