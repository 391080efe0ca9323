"""
Unit tests for Fathom meeting ingestion.

Covers client resolution precedence, terminal webhook outcomes and the
end-to-end path from three webhooks to exactly one auto-analysis.
"""

from unittest.mock import Mock

import pytest

from src.analysis.orchestrator import AUTO_CONTEXT, AnalysisOrchestrator
from src.core.config import AppConfig
from src.core.exceptions import FathomAPIError
from src.core.records import ClientMapping, ClientProfile, NotificationPreferences, SEQUENCE_LABELS
from src.history.aggregator import RelationshipHistoryAggregator
from src.webhooks.fathom_handler import (
    STATUS_DUPLICATE,
    STATUS_IGNORED,
    STATUS_NO_MAPPING,
    STATUS_NO_TRANSCRIPT,
    STATUS_PROCESSED,
    STATUS_STALE,
    FathomMeetingHandler,
    participant_emails,
    resolve_client,
)
from tests.factories import FathomTestFactory


@pytest.fixture
def orchestrator(analyses, clients, queue_manager, histories, mock_analyzer, mock_notifier, notification_prefs):
    return AnalysisOrchestrator(
        analyses=analyses,
        clients=clients,
        queue_manager=queue_manager,
        aggregator=RelationshipHistoryAggregator(histories, mock_analyzer),
        analyzer=mock_analyzer,
        notifier=mock_notifier,
        notification_prefs=notification_prefs,
        app_config=AppConfig(),
    )


@pytest.fixture
def mock_fathom_client():
    client = Mock()
    client.get_transcript = Mock(return_value="Jane: Fetched separately.")
    return client


@pytest.fixture
def handler(mappings, queue_manager, orchestrator, mock_fathom_client, mock_notifier, notification_prefs, clients):
    return FathomMeetingHandler(
        mappings=mappings,
        queue_manager=queue_manager,
        orchestrator=orchestrator,
        fathom_client=mock_fathom_client,
        notifier=mock_notifier,
        notification_prefs=notification_prefs,
        clients=clients,
    )


class TestResolveClient:
    def test_participant_email_wins_over_title(self):
        mappings = [
            ClientMapping(client_id="by-title", title_pattern="weekly"),
            ClientMapping(client_id="by-email", participant_emails=["jane@acme.com"]),
        ]
        meeting = FathomTestFactory.create_meeting(title="Acme Weekly Sync")

        assert resolve_client(meeting, mappings) == "by-email"

    def test_title_pattern_is_case_insensitive(self):
        mappings = [ClientMapping(client_id="globex", title_pattern=r"globex\s+qbr")]
        meeting = FathomTestFactory.create_meeting(title="GLOBEX QBR", participants=["someone@else.com"])

        assert resolve_client(meeting, mappings) == "globex"

    def test_meeting_id_allowlist(self):
        mappings = [ClientMapping(client_id="initech", meeting_ids=["mtg_123"])]
        meeting = FathomTestFactory.create_meeting(meeting_id="mtg_123", title="Misc", participants=[])

        assert resolve_client(meeting, mappings) == "initech"

    def test_invalid_pattern_is_skipped(self):
        mappings = [
            ClientMapping(client_id="broken", title_pattern="(unclosed"),
            ClientMapping(client_id="ok", title_pattern="sync"),
        ]
        meeting = FathomTestFactory.create_meeting(title="Weekly Sync", participants=[])

        assert resolve_client(meeting, mappings) == "ok"

    def test_no_match(self):
        meeting = FathomTestFactory.create_meeting(participants=["x@y.com"], title="Random")
        assert resolve_client(meeting, [ClientMapping(client_id="acme", participant_emails=["jane@acme.com"])]) is None

    def test_participant_emails_accepts_strings_and_dicts(self):
        meeting = {"participants": ["Jane@Acme.com", {"email": "SAM@agency.com"}, {"name": "No Email"}]}
        assert participant_emails(meeting) == ["jane@acme.com", "sam@agency.com"]


class TestWebhookOutcomes:
    @pytest.mark.asyncio
    async def test_other_event_types_are_ignored(self, handler):
        payload = FathomTestFactory.create_webhook_payload(event_type="meeting.started")

        result = await handler.handle_webhook(payload)

        assert result.status == STATUS_IGNORED

    @pytest.mark.asyncio
    async def test_missing_meeting_is_invalid(self, handler):
        with pytest.raises(ValueError):
            await handler.handle_webhook({"event_type": "meeting.completed"})

    @pytest.mark.asyncio
    async def test_unmapped_meeting(self, handler, acme, queue_manager):
        meeting = FathomTestFactory.create_meeting(participants=["stranger@nowhere.com"], title="Coffee")

        result = await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))

        assert result.status == STATUS_NO_MAPPING
        assert result.message == "No client mapping found - skipping"
        assert queue_manager.get_window("acme") is None

    @pytest.mark.asyncio
    async def test_missing_transcript_is_fetched(self, handler, acme, queue_manager, mock_fathom_client, orchestrator):
        meeting = FathomTestFactory.create_meeting(meeting_id="mtg_fetch", transcript=None)

        result = await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))
        await orchestrator.wait_for_background()

        assert result.status == STATUS_PROCESSED
        mock_fathom_client.get_transcript.assert_called_once_with("mtg_fetch")
        assert queue_manager.get_window("acme").transcripts[0].transcript == "Jane: Fetched separately."

    @pytest.mark.asyncio
    async def test_unavailable_transcript(self, handler, acme, queue_manager, mock_fathom_client):
        mock_fathom_client.get_transcript.side_effect = FathomAPIError("404")
        meeting = FathomTestFactory.create_meeting(transcript=None)

        result = await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))

        assert result.status == STATUS_NO_TRANSCRIPT
        assert result.client_id == "acme"
        assert queue_manager.get_window("acme") is None

    @pytest.mark.asyncio
    async def test_replayed_webhook_is_duplicate(self, handler, acme, queue_manager, orchestrator):
        payload = FathomTestFactory.create_webhook_payload(FathomTestFactory.create_meeting(meeting_id="mtg_1"))

        first = await handler.handle_webhook(payload)
        second = await handler.handle_webhook(payload)
        await orchestrator.wait_for_background()

        assert first.status == STATUS_PROCESSED
        assert second.status == STATUS_DUPLICATE
        assert len(queue_manager.get_window("acme").transcripts) == 1

    @pytest.mark.asyncio
    async def test_segment_transcript_is_flattened(self, handler, acme, queue_manager, orchestrator):
        await handler.handle_webhook(FathomTestFactory.create_webhook_payload())
        await orchestrator.wait_for_background()

        text = queue_manager.get_window("acme").transcripts[0].transcript
        assert text.splitlines()[-1] == "Jane Client: Sure. Fine."

    @pytest.mark.asyncio
    async def test_new_transcript_notification(
        self, handler, acme, notification_prefs, mock_notifier, orchestrator
    ):
        notification_prefs.save(
            NotificationPreferences(client_id="acme", pod_leader_email="lead@agency.com", notify_on_new_transcript=True)
        )

        await handler.handle_webhook(FathomTestFactory.create_webhook_payload())
        await orchestrator.wait_for_background()

        mock_notifier.notify_new_transcript.assert_called_once()
        args = mock_notifier.notify_new_transcript.call_args[0]
        assert args[2] == "Acme Corp"
        assert args[4] == 1


class TestAcmeScenario:
    """Three webhooks for a client with no queue end in exactly one auto-analysis."""

    @pytest.mark.asyncio
    async def test_three_webhooks_trigger_one_analysis(
        self, handler, acme, queue_manager, mock_analyzer, analyses, orchestrator
    ):
        results = []
        for meeting_id, days in (("mtg_d1", 21), ("mtg_d2", 14), ("mtg_d3", 7)):
            meeting = FathomTestFactory.create_meeting(meeting_id=meeting_id, days_ago=days)
            results.append(await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting)))
        await orchestrator.wait_for_background()

        assert [r.status for r in results] == [STATUS_PROCESSED] * 3
        assert [r.analysis_dispatched for r in results] == [False, False, True]

        queue = queue_manager.get_window("acme")
        assert [t.meeting_id for t in queue.transcripts] == ["mtg_d1", "mtg_d2", "mtg_d3"]
        assert [t.sequence for t in queue.transcripts] == SEQUENCE_LABELS[3]
        assert queue_manager.is_ready("acme") is True

        assert mock_analyzer.analyze.call_count == 1
        assert mock_analyzer.analyze.call_args[0][0].context == AUTO_CONTEXT
        assert analyses.count_for_client("acme") == 1
        assert queue.last_processed is not None

    @pytest.mark.asyncio
    async def test_meeting_older_than_full_window_is_skipped(
        self, handler, acme, queue_manager, notification_prefs, mock_notifier, mock_analyzer, orchestrator
    ):
        notification_prefs.save(
            NotificationPreferences(client_id="acme", pod_leader_email="lead@agency.com", notify_on_new_transcript=True)
        )
        for meeting_id, days in (("mtg_d1", 21), ("mtg_d2", 14), ("mtg_d3", 7)):
            meeting = FathomTestFactory.create_meeting(meeting_id=meeting_id, days_ago=days)
            await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))
        await orchestrator.wait_for_background()

        late = FathomTestFactory.create_meeting(meeting_id="mtg_old", days_ago=60)
        result = await handler.handle_webhook(FathomTestFactory.create_webhook_payload(late))
        await orchestrator.wait_for_background()

        assert result.status == STATUS_STALE
        assert result.analysis_dispatched is False
        assert result.queue_size == 3
        assert mock_notifier.notify_new_transcript.call_count == 3
        assert mock_analyzer.analyze.call_count == 1
        queue = queue_manager.get_window("acme")
        assert [t.meeting_id for t in queue.transcripts] == ["mtg_d1", "mtg_d2", "mtg_d3"]
        assert not queue.has_unprocessed_transcripts()

    @pytest.mark.asyncio
    async def test_out_of_order_delivery_is_labeled_by_date(self, handler, acme, queue_manager, orchestrator):
        for meeting_id, days in (("mtg_d3", 7), ("mtg_d1", 21), ("mtg_d2", 14)):
            meeting = FathomTestFactory.create_meeting(meeting_id=meeting_id, days_ago=days)
            await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))
        await orchestrator.wait_for_background()

        queue = queue_manager.get_window("acme")
        assert [t.meeting_id for t in queue.transcripts] == ["mtg_d1", "mtg_d2", "mtg_d3"]

    @pytest.mark.asyncio
    async def test_no_dispatch_when_auto_analysis_disabled(
        self, handler, acme, queue_manager, mock_analyzer, orchestrator
    ):
        queue_manager.set_auto_analysis("acme", False)

        for meeting_id, days in (("mtg_d1", 21), ("mtg_d2", 14), ("mtg_d3", 7)):
            meeting = FathomTestFactory.create_meeting(meeting_id=meeting_id, days_ago=days)
            await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))
        await orchestrator.wait_for_background()

        mock_analyzer.analyze.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_dispatch_when_analyzer_unconfigured(
        self, handler, acme, mock_analyzer, analyses, orchestrator
    ):
        mock_analyzer.is_configured.return_value = False

        for meeting_id, days in (("mtg_d1", 21), ("mtg_d2", 14), ("mtg_d3", 7)):
            meeting = FathomTestFactory.create_meeting(meeting_id=meeting_id, days_ago=days)
            result = await handler.handle_webhook(FathomTestFactory.create_webhook_payload(meeting))
        await orchestrator.wait_for_background()

        assert result.status == STATUS_PROCESSED
        assert result.analysis_dispatched is False
        assert analyses.count_for_client("acme") == 0

    @pytest.mark.asyncio
    async def test_two_clients_are_independent(self, handler, clients, mappings, acme, queue_manager, orchestrator):
        clients.create(ClientProfile(id="globex", name="Globex"))
        mappings.save(ClientMapping(client_id="globex", participant_emails=["hank@globex.com"]))

        await handler.handle_webhook(FathomTestFactory.create_webhook_payload())
        await handler.handle_webhook(
            FathomTestFactory.create_webhook_payload(FathomTestFactory.create_meeting(participants=["hank@globex.com"]))
        )
        await orchestrator.wait_for_background()

        assert len(queue_manager.get_window("acme").transcripts) == 1
        assert len(queue_manager.get_window("globex").transcripts) == 1
