"""
Unit tests for the relationship analyzer: provider fallback, JSON
parsing and result normalization. Model clients are mocked.
"""

import json
from unittest.mock import Mock

import pytest

from src.ai.analyzer import RelationshipAnalyzer
from src.ai.prompts import build_analysis_prompt, validate_prompt_length
from src.core.config import AppConfig, ClaudeConfig, GeminiConfig
from src.core.exceptions import AnalyzerError, AnalyzerNotConfiguredError, MalformedAnalysisError
from src.core.records import ClientProfile, Feedback, HistoricalContext, TranscriptBundle
from tests.factories import AnalysisTestFactory


@pytest.fixture
def bundle():
    return TranscriptBundle(
        oldest="Jane: Love the plan.",
        middle="Jane: Numbers are fine.",
        recent="Jane: Sure. Fine.",
        context="Renewal in Q3",
        client_profile=ClientProfile(id="acme", name="Acme Corp", monthly_spend="25000", duration="2 years"),
    )


def _model(content=None, error=None):
    client = Mock()
    if error is not None:
        client.generate_text = Mock(side_effect=error)
    else:
        client.generate_text = Mock(return_value={"content": content})
    return client


def _analyzer(gemini=None, claude=None, **app):
    return RelationshipAnalyzer(GeminiConfig(), ClaudeConfig(), AppConfig(**app), gemini_client=gemini, claude_client=claude)


class TestProviders:
    def test_not_configured(self, bundle):
        analyzer = RelationshipAnalyzer(GeminiConfig(), ClaudeConfig())

        assert analyzer.is_configured() is False
        with pytest.raises(AnalyzerNotConfiguredError):
            analyzer.analyze(bundle)

    def test_gemini_primary(self, bundle):
        gemini = _model(json.dumps(AnalysisTestFactory.create_result()))
        claude = _model("unused")

        result = _analyzer(gemini, claude).analyze(bundle)

        assert result["bottomLine"]["trajectory"] == "Stable"
        claude.generate_text.assert_not_called()
        assert gemini.generate_text.call_args[1]["json_output"] is True

    def test_falls_back_to_claude_on_gemini_error(self, bundle):
        gemini = _model(error=RuntimeError("503 overloaded"))
        claude = _model(json.dumps(AnalysisTestFactory.create_result(trajectory="Declining")))

        result = _analyzer(gemini, claude).analyze(bundle)

        assert result["bottomLine"]["trajectory"] == "Declining"

    def test_falls_back_on_malformed_gemini_json(self, bundle):
        gemini = _model("not json at all")
        claude = _model(json.dumps(AnalysisTestFactory.create_result()))

        result = _analyzer(gemini, claude).analyze(bundle)

        assert "bottomLine" in result
        claude.generate_text.assert_called_once()

    def test_gemini_disabled_uses_claude(self, bundle):
        gemini = _model(json.dumps(AnalysisTestFactory.create_result()))
        claude = _model(json.dumps(AnalysisTestFactory.create_result()))

        _analyzer(gemini, claude, gemini_primary=False).analyze(bundle)

        gemini.generate_text.assert_not_called()
        claude.generate_text.assert_called_once()

    def test_gemini_failure_without_fallback(self, bundle):
        with pytest.raises(AnalyzerError):
            _analyzer(_model(error=RuntimeError("boom"))).analyze(bundle)

    def test_claude_failure_is_analyzer_error(self, bundle):
        with pytest.raises(AnalyzerError):
            _analyzer(claude=_model(error=RuntimeError("boom"))).analyze(bundle)


class TestParsing:
    def test_fenced_json(self, bundle):
        content = "Here you go:\n```json\n" + json.dumps(AnalysisTestFactory.create_result()) + "\n```"

        result = _analyzer(claude=_model(content)).analyze(bundle)

        assert result["bottomLine"]["churnRisk"] == "Medium"

    def test_leading_prose(self, bundle):
        content = "Analysis follows " + json.dumps(AnalysisTestFactory.create_result())

        result = _analyzer(claude=_model(content)).analyze(bundle)

        assert result["bottomLine"]["churnRisk"] == "Medium"

    def test_missing_bottom_line(self, bundle):
        with pytest.raises(MalformedAnalysisError):
            _analyzer(claude=_model(json.dumps({"criticalMoments": []}))).analyze(bundle)

    def test_legacy_churn_reason_and_confidence_normalized(self, bundle):
        data = {"bottomLine": {"realReasonIfChurn": "Price", "clientConfidence": " 7 "}}

        result = _analyzer(claude=_model(json.dumps(data))).analyze(bundle)

        assert result["bottomLine"]["likelyUnderlyingDriverIfChurn"] == "Price"
        assert result["bottomLine"]["clientConfidence"] == 7
        assert result["criticalMoments"] == []
        assert result["actionPlan"] == []


class TestCompressionAndChat:
    def test_compress_history_strips(self):
        claude = _model("  New summary.  ")

        summary = _analyzer(claude=claude).compress_history(None, AnalysisTestFactory.create_result())

        assert summary == "New summary."
        assert claude.generate_text.call_args[1]["temperature"] == AppConfig().compression_temperature

    def test_follow_up_requires_question(self, bundle):
        with pytest.raises(ValueError):
            _analyzer(claude=_model("x")).answer_follow_up(bundle, AnalysisTestFactory.create_result(), [], "  ")

    def test_follow_up_prompt_contains_history(self, bundle):
        claude = _model("Because of the budget freeze.")
        history = [{"role": "user", "content": "Is churn likely?"}, {"role": "model", "content": "Moderately."}]

        answer = _analyzer(claude=claude).answer_follow_up(
            bundle, AnalysisTestFactory.create_result(), history, "Why?"
        )

        assert answer == "Because of the budget freeze."
        prompt = claude.generate_text.call_args[1]["user_prompt"]
        assert "Is churn likely?" in prompt
        assert "Why?" in prompt


class TestPrompt:
    def test_prompt_sections(self, bundle):
        bundle.feedback = Feedback(inaccuracies="Jane is not the buyer")
        bundle.historical_context = HistoricalContext(
            cumulative_summary="Long, steady account.",
            total_previous_meetings=4,
            trajectory_trend="Stable → Declining over 4 analyses",
        )
        bundle.additional_transcripts = ["Jane: We hired a CMO."]

        prompt = build_analysis_prompt(bundle)

        assert "Acme Corp" in prompt
        assert "Renewal in Q3" in prompt
        assert "Jane is not the buyer" in prompt
        assert "Long, steady account." in prompt
        assert "Jane: We hired a CMO." in prompt
        assert prompt.index("Jane: Love the plan.") < prompt.index("Jane: Sure. Fine.")

    def test_prompt_length_validation(self):
        assert validate_prompt_length("x" * 100) == (True, 25)
        is_valid, _ = validate_prompt_length("x" * 100, max_tokens=10)
        assert is_valid is False
