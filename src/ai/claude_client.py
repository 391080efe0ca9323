"""
Claude API Client

Wrapper around Anthropic's Python SDK. Claude is the fallback analyzer
model when Gemini is unavailable or returns unusable output.
"""

import logging
import time
from typing import Dict, List, Optional, Any
from datetime import datetime
from anthropic import Anthropic, APIError, RateLimitError as AnthropicRateLimitError

from ..core.config import ClaudeConfig
from ..core.exceptions import ClaudeAPIError, AnalyzerRateLimitError


logger = logging.getLogger(__name__)


class ClaudeClient:
    """
    Claude API client.

    Wraps the Anthropic SDK with:
    - Token tracking (input/output)
    - Rate limit and overload retries
    - Streaming for large generations
    - Cost estimation

    Usage:
        client = ClaudeClient(ClaudeConfig(api_key='sk-ant-...'))
        response = client.generate_text(
            system_prompt="You are a client relationship analyst",
            user_prompt="Analyze these transcripts...",
        )
    """

    # Model pricing (per million tokens)
    MODEL_PRICING = {
        "claude-haiku-4-5": {"input": 1.00, "output": 5.00},
        "claude-sonnet-4-5": {"input": 3.00, "output": 15.00},
        "claude-opus-4-5": {"input": 15.00, "output": 75.00},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    }

    # Use streaming for max_tokens >= this (avoids 10-minute request timeouts)
    STREAMING_THRESHOLD = 16000

    def __init__(self, config: ClaudeConfig):
        """
        Initialize Claude API client.

        Args:
            config: ClaudeConfig with API key and model settings

        Raises:
            ClaudeAPIError: If no API key is configured
        """
        if not config.api_key:
            raise ClaudeAPIError("CLAUDE_API_KEY not configured")

        self.config = config
        self._client = Anthropic(api_key=config.api_key)
        self.max_retries = 3
        logger.info(f"ClaudeClient initialized (model: {config.model})")

    def _make_api_call_with_retry(
        self,
        max_tokens: int,
        temperature: float,
        system: str,
        messages: List[Dict],
        retry_count: int = 0,
    ):
        """
        Call Claude, retrying rate limits and server errors.

        Raises:
            AnalyzerRateLimitError: If still rate limited after retries
            ClaudeAPIError: If the API errors after retries
        """
        try:
            if max_tokens >= self.STREAMING_THRESHOLD:
                logger.debug(f"Using streaming for large request (max_tokens={max_tokens})")
                with self._client.messages.stream(
                    model=self.config.model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=messages,
                ) as stream:
                    return stream.get_final_message()

            return self._client.messages.create(
                model=self.config.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=messages,
            )

        except AnthropicRateLimitError as e:
            if retry_count < self.max_retries:
                wait_time = min(2 ** retry_count * 10, 60)  # 10s, 20s, 40s, max 60s
                logger.warning(
                    f"Claude API rate limited, waiting {wait_time}s before retry "
                    f"{retry_count + 1}/{self.max_retries}: {e}"
                )
                time.sleep(wait_time)
                return self._make_api_call_with_retry(max_tokens, temperature, system, messages, retry_count + 1)
            logger.error(f"Claude API rate limit exceeded after {self.max_retries} retries")
            raise AnalyzerRateLimitError(f"Claude API rate limited after {self.max_retries} retries: {e}") from e

        except APIError as e:
            is_server_error = getattr(e, "status_code", 0) and e.status_code >= 500
            is_overloaded = "overloaded" in str(e).lower()

            if (is_server_error or is_overloaded) and retry_count < self.max_retries:
                wait_time = min(2 ** retry_count * 5, 30)  # 5s, 10s, 20s, max 30s
                logger.warning(
                    f"Claude API server error, waiting {wait_time}s before retry "
                    f"{retry_count + 1}/{self.max_retries}: {e}"
                )
                time.sleep(wait_time)
                return self._make_api_call_with_retry(max_tokens, temperature, system, messages, retry_count + 1)
            logger.error(f"Claude API error: {e}", exc_info=True)
            raise ClaudeAPIError(f"Claude API request failed: {e}") from e

    def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> Dict[str, Any]:
        """
        Generate a completion.

        Args:
            system_prompt: Role and instructions
            user_prompt: Content to process
            max_tokens: Maximum tokens to generate (default from config)
            temperature: Sampling temperature (default from config)
            history: Prior turns as [{"role": "user"|"assistant", "content": ...}]

        Returns:
            Dictionary with content, input_tokens, output_tokens, total_tokens,
            model, cost, stop_reason and generation_time_ms

        Raises:
            ClaudeAPIError: If API request fails
            AnalyzerRateLimitError: If rate limited
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = self.config.temperature if temperature is None else temperature

        messages = [{"role": m["role"], "content": m["content"]} for m in (history or [])]
        messages.append({"role": "user", "content": user_prompt})

        try:
            logger.info(f"Generating text with {self.config.model} (max_tokens: {max_tokens}, temp: {temperature})")
            start_time = datetime.now()
            response = self._make_api_call_with_retry(
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt,
                messages=messages,
            )
            duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)

            content = response.content[0].text if response.content else ""
            input_tokens = response.usage.input_tokens
            output_tokens = response.usage.output_tokens
            cost = self._calculate_cost(input_tokens, output_tokens)

            logger.info(
                f"✓ Generated {output_tokens} tokens in {duration_ms}ms "
                f"(input: {input_tokens}, cost: ${cost:.4f}, stop: {response.stop_reason})"
            )

            return {
                "content": content,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
                "model": self.config.model,
                "cost": cost,
                "stop_reason": response.stop_reason,
                "generation_time_ms": duration_ms,
            }

        except (AnalyzerRateLimitError, ClaudeAPIError):
            raise
        except Exception as e:
            logger.error(f"Unexpected error calling Claude API: {e}", exc_info=True)
            raise ClaudeAPIError(f"Unexpected error: {e}") from e

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Estimated cost in USD."""
        pricing = self.MODEL_PRICING.get(self.config.model, {"input": 1.00, "output": 5.00})
        return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]
