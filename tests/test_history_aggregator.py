"""
Unit tests for relationship history bookkeeping.

Covers list caps, trend labels, summary compression fallback and the
refresh path that persists the merged record.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError

from src.core.exceptions import AnalyzerError, RecordStoreUnavailableError
from src.core.records import RelationshipHistory
from src.history.aggregator import RelationshipHistoryAggregator
from tests.factories import AnalysisTestFactory


@pytest.fixture
def aggregator(histories, mock_analyzer):
    return RelationshipHistoryAggregator(histories, mock_analyzer)


class TestMerge:
    def test_first_merge_creates_history(self, aggregator):
        result = AnalysisTestFactory.create_result(trajectory="Declining", churn_risk="High")

        history = aggregator.merge("acme", None, result, "First summary")

        assert history.client_id == "acme"
        assert history.total_meetings_analyzed == 1
        assert history.cumulative_summary == "First summary"
        assert history.first_analysis_date is not None
        assert history.trajectory_history[-1]["trajectory"] == "Declining"
        assert history.trajectory_history[-1]["churn_risk"] == "High"

    def test_only_first_three_critical_moments_are_kept_per_analysis(self, aggregator):
        result = AnalysisTestFactory.create_result(quotes=["q1", "q2", "q3", "q4", "q5"])

        history = aggregator.merge("acme", None, result, "s")

        assert [m["quote"] for m in history.key_moments] == ["q1", "q2", "q3"]
        assert history.key_moments[0]["sentiment"] == "neutral"

    def test_key_moments_capped_at_fifteen(self, aggregator):
        history = None
        for run in range(7):
            result = AnalysisTestFactory.create_result(quotes=[f"r{run}-a", f"r{run}-b", f"r{run}-c"])
            history = aggregator.merge("acme", history, result, "s")

        assert len(history.key_moments) == RelationshipHistoryAggregator.MAX_KEY_MOMENTS
        # Oldest two runs (6 moments) were evicted
        assert history.key_moments[0]["quote"] == "r2-a"
        assert history.key_moments[-1]["quote"] == "r6-c"

    def test_trajectory_history_capped_at_fifty(self, aggregator):
        history = RelationshipHistory(
            client_id="acme",
            trajectory_history=[{"date": str(i), "trajectory": "Stable"} for i in range(50)],
            total_meetings_analyzed=50,
        )

        history = aggregator.merge("acme", history, AnalysisTestFactory.create_result(trajectory="Critical"), "s")

        assert len(history.trajectory_history) == RelationshipHistoryAggregator.MAX_TRAJECTORY_POINTS
        assert history.trajectory_history[0]["date"] == "1"
        assert history.trajectory_history[-1]["trajectory"] == "Critical"
        assert history.total_meetings_analyzed == 51

    def test_participant_styles_accumulate(self, aggregator):
        history = aggregator.merge("acme", None, AnalysisTestFactory.create_result(), "s")
        history = aggregator.merge("acme", history, AnalysisTestFactory.create_result(), "s")

        assert len(history.participant_profiles) == 1
        profile = history.participant_profiles[0]
        assert profile["name"] == "Jane Client"
        assert len(profile["style_history"]) == 2

    def test_action_items_update_in_place(self, aggregator):
        first = AnalysisTestFactory.create_result(
            action_items=[{"item": "Send revised media plan", "owner": "Sam", "status": "open"}]
        )
        second = AnalysisTestFactory.create_result(
            action_items=[
                {"item": "send revised media plan", "owner": "", "status": "done"},
                {"item": "Book QBR", "owner": "Jane", "status": "open"},
            ]
        )

        history = aggregator.merge("acme", None, first, "s")
        history = aggregator.merge("acme", history, second, "s")

        items = {i["item"]: i for i in history.action_item_history}
        assert set(items) == {"Send revised media plan", "Book QBR"}
        assert items["Send revised media plan"]["status"] == "done"
        assert items["Send revised media plan"]["owner"] == "Sam"

    def test_total_is_monotonic(self, aggregator):
        history = None
        totals = []
        for _ in range(3):
            history = aggregator.merge("acme", history, AnalysisTestFactory.create_result(), "s")
            totals.append(history.total_meetings_analyzed)

        assert totals == [1, 2, 3]

    def test_merge_into_existing_history_advances_dates(self, aggregator):
        first = datetime(2026, 1, 5, 15, 0, tzinfo=timezone.utc)
        last = datetime(2026, 2, 20, 15, 0, tzinfo=timezone.utc)
        existing = RelationshipHistory(
            client_id="acme",
            total_meetings_analyzed=4,
            first_analysis_date=first,
            last_analysis_date=last,
        )
        now = last + timedelta(days=7)

        history = aggregator.merge("acme", existing, AnalysisTestFactory.create_result(), "s", now=now)

        assert history.total_meetings_analyzed == 5
        assert history.first_analysis_date == first
        assert history.last_analysis_date == now
        assert history.last_analysis_date > last


class TestTrendLabel:
    def test_no_history_is_first_analysis(self):
        assert RelationshipHistoryAggregator.trend_label(None) == "First analysis"

    def test_single_point_is_first_analysis(self):
        history = RelationshipHistory(client_id="acme", trajectory_history=[{"trajectory": "Stable"}])
        assert RelationshipHistoryAggregator.trend_label(history) == "First analysis"

    def test_uses_last_five_points(self):
        trajectory = ["Critical", "Strengthening", "Stable", "Stable", "Declining", "Declining"]
        history = RelationshipHistory(
            client_id="acme", trajectory_history=[{"trajectory": t} for t in trajectory]
        )

        assert RelationshipHistoryAggregator.trend_label(history) == "Strengthening → Declining over 5 analyses"


class TestSummarize:
    def test_uses_analyzer_compression(self, aggregator, mock_analyzer):
        summary = aggregator.summarize("Old summary", AnalysisTestFactory.create_result())

        assert summary == "Compressed relationship summary."
        mock_analyzer.compress_history.assert_called_once()

    def test_falls_back_when_compression_fails(self, histories):
        analyzer = Mock()
        analyzer.compress_history = Mock(side_effect=AnalyzerError("quota exceeded"))
        aggregator = RelationshipHistoryAggregator(histories, analyzer)

        summary = aggregator.summarize(None, AnalysisTestFactory.create_result(trajectory="Declining", churn_risk="High"))

        assert summary.startswith("Latest analysis: Declining trajectory, High churn risk.")

    def test_falls_back_on_empty_summary(self, histories):
        analyzer = Mock()
        analyzer.compress_history = Mock(return_value="   ")
        aggregator = RelationshipHistoryAggregator(histories, analyzer)

        summary = aggregator.summarize("old", AnalysisTestFactory.create_result())

        assert summary.startswith("Latest analysis:")


class TestRefresh:
    def test_refresh_persists_and_compresses_previous_summary(self, aggregator, mock_analyzer):
        aggregator.refresh("acme", AnalysisTestFactory.create_result())
        mock_analyzer.compress_history.return_value = "Second summary"

        history = aggregator.refresh("acme", AnalysisTestFactory.create_result(trajectory="Declining"))

        stored = aggregator.load("acme")
        assert stored.total_meetings_analyzed == 2
        assert stored.cumulative_summary == "Second summary"
        assert history.trajectory_history[-1]["trajectory"] == "Declining"
        old_summary = mock_analyzer.compress_history.call_args[0][0]
        assert old_summary == "Compressed relationship summary."

    def test_historical_context_from_history(self, aggregator):
        aggregator.refresh("acme", AnalysisTestFactory.create_result(trajectory="Stable"))
        aggregator.refresh("acme", AnalysisTestFactory.create_result(trajectory="Declining"))

        context = aggregator.build_historical_context(aggregator.load("acme"))

        assert context.total_previous_meetings == 2
        assert context.trajectory_trend == "Stable → Declining over 2 analyses"
        assert len(context.key_historical_moments) == 5


class TestStoreFailures:
    @staticmethod
    def _failing_session():
        session = Mock()
        session.get = Mock(side_effect=OperationalError("SELECT", {}, Exception("database is locked")))
        return session

    def test_lenient_read_returns_none(self, histories):
        with patch.object(histories.db, "get_session", return_value=self._failing_session()):
            assert histories.get("acme") is None

    def test_strict_read_raises(self, histories):
        with patch.object(histories.db, "get_session", return_value=self._failing_session()):
            with pytest.raises(RecordStoreUnavailableError):
                histories.get("acme", strict=True)

    def test_failed_read_does_not_reset_history(self, aggregator):
        for _ in range(4):
            aggregator.refresh("acme", AnalysisTestFactory.create_result())
        before = aggregator.load("acme")

        with patch.object(aggregator.histories.db, "get_session", return_value=self._failing_session()):
            with pytest.raises(RecordStoreUnavailableError):
                aggregator.refresh("acme", AnalysisTestFactory.create_result())

        after = aggregator.load("acme")
        assert after.total_meetings_analyzed == 4
        assert after.first_analysis_date == before.first_analysis_date
        assert len(after.trajectory_history) == 4
