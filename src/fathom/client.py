"""
Fathom API Client

REST access to Fathom (meeting recorder) plus webhook signature checks.
Uses bearer API key auth, retries rate limits and server errors.
"""

import base64
import hashlib
import hmac
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import requests

from ..core.config import FathomConfig
from ..core.exceptions import ConfigurationError, FathomAPIError
from ..core.records import format_datetime


logger = logging.getLogger(__name__)


def transcript_text(value: Any) -> Optional[str]:
    """
    Normalize a Fathom transcript to plain text.

    Accepts a string or the segment form
    [{"speaker": {"display_name": ...}, "text": ...}].

    Returns:
        Transcript text, or None if empty
    """
    if not value:
        return None
    if isinstance(value, list):
        lines = []
        for segment in value:
            if not isinstance(segment, dict):
                lines.append(str(segment))
                continue
            speaker = segment.get("speaker") or {}
            name = speaker.get("display_name") if isinstance(speaker, dict) else speaker
            text = segment.get("text", "")
            lines.append(f"{name}: {text}" if name else text)
        value = "\n".join(lines)
    value = str(value)
    return value if value.strip() else None


class FathomClient:
    """
    Fathom REST client.

    Supports:
    - Webhook signature verification (HMAC-SHA256, base64, "v1," prefix)
    - Meeting lookup by id
    - Transcript lookup by recording id
    - Meeting listing with cursor pagination

    Usage:
        client = FathomClient(FathomConfig(api_key='...', webhook_secret='...'))
        if client.verify_webhook(raw_body, request.headers['webhook-signature']):
            ...
        meetings = client.list_meetings(created_after=yesterday, include_transcript=True)
    """

    SIGNATURE_HEADER = "webhook-signature"

    def __init__(self, config: FathomConfig):
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    # ========================================================================
    # WEBHOOK VERIFICATION
    # ========================================================================

    def verify_webhook(self, body: Union[bytes, str], signature_header: Optional[str]) -> bool:
        """
        Check a webhook signature against the raw request body.

        The header may carry several space-separated signatures, each
        optionally prefixed with a version ("v1,<base64>"). Any match passes.

        Args:
            body: Raw request body exactly as received
            signature_header: Value of the webhook-signature header

        Returns:
            True if one of the signatures matches

        Raises:
            ConfigurationError: If no webhook secret is configured
        """
        if not self.config.webhook_secret:
            raise ConfigurationError("FATHOM_WEBHOOK_SECRET not configured")
        if not signature_header:
            return False

        if isinstance(body, str):
            body = body.encode("utf-8")

        expected = base64.b64encode(
            hmac.new(self.config.webhook_secret.encode("utf-8"), body, hashlib.sha256).digest()
        ).decode("ascii")

        for candidate in signature_header.split():
            signature = candidate.split(",", 1)[1] if "," in candidate else candidate
            if hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
                return True

        logger.warning("Webhook signature did not match")
        return False

    def sign(self, body: Union[bytes, str]) -> str:
        """Build a "v1,<signature>" header value for a body (local testing)."""
        if isinstance(body, str):
            body = body.encode("utf-8")
        digest = hmac.new(self.config.webhook_secret.encode("utf-8"), body, hashlib.sha256).digest()
        return f"v1,{base64.b64encode(digest).decode('ascii')}"

    # ========================================================================
    # REST
    # ========================================================================

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        retry_count: int = 0,
        max_retries: int = 3,
    ) -> requests.Response:
        """
        Authenticated request with retries for 429 and 5xx.

        Raises:
            ConfigurationError: If no API key is configured
            FathomAPIError: On any other failure
        """
        if not self.config.api_key:
            raise ConfigurationError("FATHOM_API_KEY not configured")

        url = endpoint if endpoint.startswith("http") else f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            logger.debug(f"{method} {url} (retry {retry_count}/{max_retries})")
            response = requests.request(
                method=method,
                url=url,
                params=params,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            if retry_count < max_retries:
                wait_time = min(2 ** retry_count, 30)
                logger.warning(f"Fathom request error, retrying in {wait_time}s: {e}")
                time.sleep(wait_time)
                return self._request(method, endpoint, params, retry_count + 1, max_retries)
            raise FathomAPIError(f"Fathom request failed: {e}") from e

        if response.status_code == 429:
            if retry_count < max_retries:
                retry_after = int(response.headers.get("Retry-After", 30))
                logger.warning(f"Fathom rate limited (429), waiting {retry_after}s before retry {retry_count + 1}/{max_retries}")
                time.sleep(retry_after)
                return self._request(method, endpoint, params, retry_count + 1, max_retries)
            raise FathomAPIError(f"Fathom rate limit exceeded after {max_retries} retries")

        if 500 <= response.status_code < 600:
            if retry_count < max_retries:
                wait_time = min(2 ** retry_count, 30)
                logger.warning(f"Fathom server error ({response.status_code}), waiting {wait_time}s")
                time.sleep(wait_time)
                return self._request(method, endpoint, params, retry_count + 1, max_retries)
            raise FathomAPIError(f"Fathom server error after {max_retries} retries: {response.status_code}")

        return response

    def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None, allow_404: bool = False):
        response = self._request("GET", endpoint, params=params)
        if response.status_code == 404 and allow_404:
            return None
        if response.status_code >= 400:
            logger.error(f"GET {endpoint} failed: {response.status_code} {response.text[:200]}")
            raise FathomAPIError(f"Fathom request failed: {response.status_code} {response.reason}")
        return response.json()

    def get_meeting(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        """Meeting by id, or None if Fathom does not know it."""
        return self._get_json(f"/meetings/{meeting_id}", allow_404=True)

    def get_transcript(self, recording_id: str) -> Optional[str]:
        """
        Transcript text for a recording.

        Returns:
            Transcript, or None if none exists (404 or empty)

        Raises:
            FathomAPIError: On other failures
        """
        data = self._get_json(f"/recordings/{recording_id}/transcript", allow_404=True)
        if not data:
            return None
        return transcript_text(data.get("transcript"))

    def list_meetings(
        self,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        include_transcript: bool = False,
        recorded_by: Optional[List[str]] = None,
        max_pages: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        List meetings, following next_cursor pagination.

        Args:
            created_after: Lower bound on creation time
            created_before: Upper bound on creation time
            include_transcript: Inline transcripts in the response
            recorded_by: Restrict to recorder emails
            max_pages: Stop after this many pages (None = all)

        Returns:
            Meeting dicts
        """
        params: Dict[str, Any] = {}
        if created_after:
            params["created_after"] = format_datetime(created_after)
        if created_before:
            params["created_before"] = format_datetime(created_before)
        if include_transcript:
            params["include_transcript"] = "true"
        if recorded_by:
            params["recorded_by"] = list(recorded_by)

        meetings: List[Dict[str, Any]] = []
        page_count = 0
        while True:
            data = self._get_json("/meetings", params=params) or {}
            items = data.get("meetings") or data.get("items") or []
            meetings.extend(items)
            page_count += 1

            cursor = data.get("next_cursor")
            if not cursor or (max_pages and page_count >= max_pages):
                break
            params["cursor"] = cursor

        logger.info(f"Listed {len(meetings)} Fathom meetings ({page_count} page(s))")
        return meetings

    def test_connection(self) -> bool:
        """
        Raises:
            FathomAPIError: If the API cannot be reached with the configured key
        """
        self._get_json("/meetings", params={"limit": 1})
        logger.info("✓ Fathom API connection successful")
        return True
