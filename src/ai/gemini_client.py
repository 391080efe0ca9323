"""
Gemini API Client

Wrapper around Google's generative AI library. Gemini is the primary
analyzer model, with Claude as fallback.
"""

import logging
import time
from typing import Dict, Any, Optional
from datetime import datetime

import google.generativeai as genai
from google.generativeai.types import GenerationConfig

from ..core.config import GeminiConfig
from ..core.exceptions import GeminiAPIError


logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Gemini API client for relationship analysis.

    Wraps the SDK with:
    - JSON response mode
    - Retry with backoff on quota/overload errors
    - Token and cost tracking

    Usage:
        client = GeminiClient(GeminiConfig(api_key='...'))
        response = client.generate_text(
            system_prompt="You are a client relationship analyst",
            user_prompt="Analyze these transcripts...",
            json_output=True,
        )
    """

    # Model pricing (per million tokens)
    MODEL_PRICING = {
        "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
        "gemini-2.5-flash-lite": {"input": 0.10, "output": 0.40},
        "gemini-2.5-pro": {"input": 1.25, "output": 10.00},
        "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    }

    def __init__(self, config: GeminiConfig):
        """
        Initialize Gemini API client.

        Args:
            config: GeminiConfig with API key and model

        Raises:
            GeminiAPIError: If no API key is configured
        """
        if not config.api_key:
            raise GeminiAPIError("GOOGLE_API_KEY not configured")

        self.config = config
        self.model_name = config.model
        self.max_retries = 3

        genai.configure(api_key=config.api_key)
        self._model = genai.GenerativeModel(config.model)

        logger.info(f"GeminiClient initialized (model: {config.model})")

    def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: float = 0.4,
        json_output: bool = False,
    ) -> Dict[str, Any]:
        """
        Generate a completion.

        Args:
            system_prompt: Role and instructions
            user_prompt: Content to analyze
            max_tokens: Maximum tokens to generate (default from config)
            temperature: Sampling temperature (0.0-1.0)
            json_output: Ask the model for application/json output

        Returns:
            Dictionary with content, input_tokens, output_tokens, total_tokens,
            model, cost and generation_time_ms

        Raises:
            GeminiAPIError: If the request fails after retries
        """
        start_time = datetime.now()

        try:
            # Gemini takes a single prompt
            full_prompt = f"{system_prompt}\n\n{user_prompt}"

            generation_config = GenerationConfig(
                max_output_tokens=max_tokens or self.config.max_tokens,
                temperature=temperature,
                response_mime_type="application/json" if json_output else "text/plain",
            )

            response = self._generate_with_retry(full_prompt, generation_config)
            duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)

            content = response.text if response.text else ""

            input_tokens = 0
            output_tokens = 0
            if getattr(response, "usage_metadata", None):
                input_tokens = getattr(response.usage_metadata, "prompt_token_count", 0)
                output_tokens = getattr(response.usage_metadata, "candidates_token_count", 0)

            cost = self._calculate_cost(input_tokens, output_tokens)

            logger.info(
                f"✓ Gemini generated {output_tokens} tokens in {duration_ms}ms "
                f"(input: {input_tokens}, cost: ${cost:.4f})"
            )

            return {
                "content": content,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
                "model": self.model_name,
                "cost": cost,
                "generation_time_ms": duration_ms,
            }

        except GeminiAPIError:
            raise
        except Exception as e:
            logger.error(f"Gemini API error: {e}", exc_info=True)
            raise GeminiAPIError(f"Gemini API request failed: {e}") from e

    def _generate_with_retry(self, prompt: str, config: GenerationConfig, retry_count: int = 0):
        """
        Call Gemini, retrying transient errors with exponential backoff.

        Raises:
            Exception: The SDK error once retries are exhausted or the error is not retryable
        """
        try:
            return self._model.generate_content(prompt, generation_config=config)

        except Exception as e:
            error_str = str(e).lower()
            is_retryable = any(term in error_str for term in [
                "rate limit", "quota", "429", "503", "500", "overloaded", "resource exhausted"
            ])

            if is_retryable and retry_count < self.max_retries:
                wait_time = min(2 ** retry_count * 5, 30)  # 5s, 10s, 20s, max 30s
                logger.warning(
                    f"Gemini API error (retryable), waiting {wait_time}s before retry "
                    f"{retry_count + 1}/{self.max_retries}: {e}"
                )
                time.sleep(wait_time)
                return self._generate_with_retry(prompt, config, retry_count + 1)
            raise

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Estimated cost in USD."""
        pricing = self.MODEL_PRICING.get(self.model_name, {"input": 0.30, "output": 2.50})
        return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]
