"""
Relationship Analyzer

Turns a transcript bundle into a structured relationship assessment.
Gemini is tried first; Claude is used when Gemini is disabled, not
configured, errors out or returns unparseable JSON.

Three capabilities share the same provider fallback:
- analyze(): full three-transcript analysis (JSON)
- compress_history(): regenerate the cumulative relationship summary
- answer_follow_up(): short answer to a question about a finished analysis
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    COMPRESSION_SYSTEM_PROMPT,
    FOLLOW_UP_SYSTEM_PROMPT,
    build_analysis_prompt,
    build_compression_prompt,
    build_follow_up_prompt,
    validate_prompt_length,
)
from ..core.config import AppConfig, ClaudeConfig, GeminiConfig
from ..core.exceptions import (
    AnalyzerError,
    AnalyzerNotConfiguredError,
    MalformedAnalysisError,
)
from ..core.records import TranscriptBundle


logger = logging.getLogger(__name__)


class RelationshipAnalyzer:
    """
    LLM-backed analyzer with Gemini primary and Claude fallback.

    Clients are created lazily so a missing key only fails the call that
    needs it, never construction or import.

    Usage:
        analyzer = RelationshipAnalyzer(config.gemini, config.claude, config.app)
        if analyzer.is_configured():
            result = analyzer.analyze(bundle)
    """

    REQUIRED_SECTIONS = ("bottomLine",)

    def __init__(
        self,
        gemini_config: GeminiConfig,
        claude_config: ClaudeConfig,
        app_config: Optional[AppConfig] = None,
        gemini_client=None,
        claude_client=None,
    ):
        """
        Args:
            gemini_config: Gemini credentials and model
            claude_config: Claude credentials and model
            app_config: Temperatures and provider order (defaults if omitted)
            gemini_client: Pre-built Gemini client (tests)
            claude_client: Pre-built Claude client (tests)
        """
        self.gemini_config = gemini_config
        self.claude_config = claude_config
        self.app_config = app_config or AppConfig()
        self._gemini_client = gemini_client
        self._claude_client = claude_client

    # ========================================================================
    # PROVIDERS
    # ========================================================================

    def is_configured(self) -> bool:
        return bool(
            self._gemini_client
            or self._claude_client
            or self.gemini_config.is_configured()
            or self.claude_config.is_configured()
        )

    def _get_gemini_client(self):
        if self._gemini_client is None and self.gemini_config.is_configured():
            from .gemini_client import GeminiClient
            self._gemini_client = GeminiClient(self.gemini_config)
        return self._gemini_client

    def _get_claude_client(self):
        if self._claude_client is None and self.claude_config.is_configured():
            from .claude_client import ClaudeClient
            self._claude_client = ClaudeClient(self.claude_config)
        return self._claude_client

    def _generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        json_output: bool = False,
        parse=None,
    ):
        """
        Run one prompt through Gemini, then Claude.

        Args:
            system_prompt: Role and instructions
            user_prompt: Data and task
            temperature: Sampling temperature
            json_output: Request JSON mode where supported
            parse: Optional callable applied to the response text; a
                failure there also triggers the fallback

        Returns:
            Parsed value (or raw text when parse is None)

        Raises:
            AnalyzerNotConfiguredError: No provider has credentials
            AnalyzerError: Every configured provider failed
        """
        if not self.is_configured():
            raise AnalyzerNotConfiguredError("No analyzer credentials configured (GOOGLE_API_KEY or CLAUDE_API_KEY)")

        parse = parse or (lambda text: text)
        last_error: Optional[Exception] = None

        if self.app_config.gemini_primary:
            gemini_client = self._get_gemini_client()
            if gemini_client:
                try:
                    response = gemini_client.generate_text(
                        system_prompt=system_prompt,
                        user_prompt=user_prompt,
                        temperature=temperature,
                        json_output=json_output,
                    )
                    return parse(response["content"])
                except Exception as e:
                    logger.warning(f"Gemini failed, falling back to Claude: {e}")
                    last_error = e
        else:
            logger.debug("Gemini disabled (gemini_primary=false), using Claude directly")

        claude_client = self._get_claude_client()
        if claude_client is None:
            raise AnalyzerError(f"Analyzer failed and no fallback is configured: {last_error}") from last_error

        try:
            response = claude_client.generate_text(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                temperature=temperature,
            )
            return parse(response["content"])
        except AnalyzerError:
            raise
        except Exception as e:
            raise AnalyzerError(f"Analyzer failed: {e}") from e

    # ========================================================================
    # ANALYSIS
    # ========================================================================

    def analyze(self, bundle: TranscriptBundle) -> Dict[str, Any]:
        """
        Produce a structured relationship assessment.

        Args:
            bundle: Transcripts plus context, history, feedback and profile

        Returns:
            Analysis result dict (camelCase keys, see ANALYSIS_RESPONSE_SHAPE)

        Raises:
            AnalyzerNotConfiguredError: No provider has credentials
            AnalyzerError: Every provider failed or returned malformed output
        """
        prompt = build_analysis_prompt(bundle)
        is_valid, estimated_tokens = validate_prompt_length(prompt)
        if not is_valid:
            logger.warning(f"Analysis prompt is very large (~{estimated_tokens} tokens)")

        client_name = bundle.client_profile.name if bundle.client_profile else "unassigned"
        logger.info(f"Running relationship analysis for {client_name} (~{estimated_tokens} prompt tokens)")

        result = self._generate(
            ANALYSIS_SYSTEM_PROMPT,
            prompt,
            temperature=self.app_config.analysis_temperature,
            json_output=True,
            parse=self._parse_analysis,
        )

        bottom_line = result.get("bottomLine", {})
        logger.info(
            f"✓ Analysis complete for {client_name}: trajectory={bottom_line.get('trajectory')}, "
            f"churnRisk={bottom_line.get('churnRisk')}"
        )
        return result

    def _parse_analysis(self, content: str) -> Dict[str, Any]:
        try:
            data = self._parse_json_response(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse analysis JSON: {e}")
            logger.error(f"Response content: {content[:500]}...")
            raise MalformedAnalysisError(f"Invalid JSON response from analyzer: {e}") from e
        return self._validate_result(data)

    def _validate_result(self, data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise MalformedAnalysisError("Analyzer response is not a JSON object")

        missing = [key for key in self.REQUIRED_SECTIONS if not isinstance(data.get(key), dict)]
        if missing:
            raise MalformedAnalysisError(f"Analyzer response missing sections: {', '.join(missing)}")

        # Older prompt versions named this realReasonIfChurn
        bottom_line = data["bottomLine"]
        if "likelyUnderlyingDriverIfChurn" not in bottom_line and "realReasonIfChurn" in bottom_line:
            bottom_line["likelyUnderlyingDriverIfChurn"] = bottom_line["realReasonIfChurn"]

        confidence = bottom_line.get("clientConfidence")
        if isinstance(confidence, str) and confidence.strip().isdigit():
            bottom_line["clientConfidence"] = int(confidence.strip())

        for key in ("criticalMoments", "actionPlan", "meetingActionItems", "communicationStyles", "sarcasmInstances"):
            if not isinstance(data.get(key), list):
                data[key] = []

        return data

    def _parse_json_response(self, content: str) -> Any:
        """Parse JSON that may be wrapped in markdown fences or preceded by text."""
        content = content.strip()
        if "```json" in content:
            content = content.split("```json")[1].split("```")[0].strip()
        elif "```" in content:
            content = content.split("```")[1].split("```")[0].strip()

        if content and not content.startswith("{"):
            brace_index = content.find("{")
            if brace_index != -1:
                content = content[brace_index:]

        return json.loads(content)

    # ========================================================================
    # HISTORY COMPRESSION
    # ========================================================================

    def compress_history(self, old_summary: Optional[str], result: Dict[str, Any]) -> str:
        """
        Merge the previous cumulative summary with a new result.

        Raises:
            AnalyzerError: On provider failure (callers fall back to a template)
        """
        summary = self._generate(
            COMPRESSION_SYSTEM_PROMPT,
            build_compression_prompt(old_summary, result),
            temperature=self.app_config.compression_temperature,
        )
        return summary.strip()

    # ========================================================================
    # FOLLOW-UP CHAT
    # ========================================================================

    def answer_follow_up(
        self,
        bundle: TranscriptBundle,
        result: Dict[str, Any],
        history: List[Dict[str, str]],
        question: str,
    ) -> str:
        """
        Answer a question about a finished analysis.

        Args:
            bundle: Input the analysis was produced from
            result: The analysis result
            history: Prior turns [{"role": "user"|"model", "content": ...}]
            question: New question

        Returns:
            Answer text
        """
        if not question or not question.strip():
            raise ValueError("question must not be empty")

        answer = self._generate(
            FOLLOW_UP_SYSTEM_PROMPT,
            build_follow_up_prompt(bundle, result, history, question.strip()),
            temperature=self.app_config.chat_temperature,
        )
        return answer.strip() or "I couldn't generate a response. Please try rephrasing your question."
