"""
Microsoft Graph API Client

Authenticated Graph access for outbound email (sendMail). Uses MSAL
client credentials with token caching, and retries 401/429/5xx.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import requests
from msal import ConfidentialClientApplication

from ..core.config import GraphAPIConfig
from ..core.exceptions import AuthenticationError, GraphAPIError, RateLimitError


logger = logging.getLogger(__name__)


def _error_detail(response: requests.Response) -> str:
    try:
        return response.json().get("error", {}).get("message", response.text)
    except ValueError:
        return response.text


class GraphAPIClient:
    """
    Microsoft Graph API client with MSAL authentication.

    Supports:
    - Client credentials flow (application permissions, Mail.Send)
    - Token refresh on 401 responses
    - Rate limit handling (429 with Retry-After)
    - Exponential backoff on server errors

    Usage:
        client = GraphAPIClient(config.graph_api)
        client.post('/users/noreply@example.com/sendMail', json={...})
    """

    BASE_URL = "https://graph.microsoft.com/v1.0"
    SCOPES = ["https://graph.microsoft.com/.default"]

    def __init__(self, config: GraphAPIConfig):
        """
        Args:
            config: GraphAPIConfig with client credentials

        Raises:
            AuthenticationError: If credentials are missing
        """
        if not config.is_configured():
            raise AuthenticationError("Graph API credentials not configured (GRAPH_CLIENT_ID/SECRET/TENANT_ID)")

        self.config = config
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._msal_client = ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=config.client_secret,
            authority=f"https://login.microsoftonline.com/{config.tenant_id}",
        )

        logger.info(f"GraphAPIClient initialized (tenant: {config.tenant_id[:8]}...)")

    def _authenticate(self) -> str:
        """
        Access token from cache or a fresh client credentials grant.

        Raises:
            AuthenticationError: If the grant fails
        """
        if self._access_token and self._token_expires_at:
            if datetime.now() < self._token_expires_at - timedelta(minutes=5):
                return self._access_token

        logger.info("Acquiring new access token from Microsoft Identity Platform")
        try:
            result = self._msal_client.acquire_token_for_client(scopes=self.SCOPES)
        except Exception as e:
            logger.error(f"Authentication failed: {e}", exc_info=True)
            raise AuthenticationError(f"Graph API authentication failed: {e}") from e

        if "access_token" not in result:
            error_desc = result.get("error_description", result.get("error", "Unknown error"))
            raise AuthenticationError(f"Failed to acquire token: {error_desc}")

        self._access_token = result["access_token"]
        expires_in = result.get("expires_in", 3600)
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        logger.info(f"Access token acquired (expires in {expires_in}s)")
        return self._access_token

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        retry_count: int = 0,
        max_retries: int = 3,
    ) -> requests.Response:
        """
        Authenticated request with retries.

        Raises:
            GraphAPIError: Client error, or server error after retries
            RateLimitError: Still rate limited after retries
            AuthenticationError: Token rejected after retries
        """
        token = self._authenticate()
        url = endpoint if endpoint.startswith("http") else f"{self.BASE_URL}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        logger.debug(f"{method} {url} (retry {retry_count}/{max_retries})")
        try:
            response = requests.request(method=method, url=url, params=params, json=json, headers=headers, timeout=30)
        except requests.RequestException as e:
            raise GraphAPIError(f"Graph API request failed: {e}") from e

        if response.status_code == 429:
            if retry_count < max_retries:
                retry_after = int(response.headers.get("Retry-After", 60))
                logger.warning(f"Rate limited (429), waiting {retry_after}s before retry {retry_count + 1}/{max_retries}")
                time.sleep(retry_after)
                return self._request(method, endpoint, params, json, retry_count + 1, max_retries)
            raise RateLimitError(f"Rate limit exceeded after {max_retries} retries")

        if response.status_code == 401:
            detail = _error_detail(response)
            logger.error(f"401 Unauthorized: {detail}")
            if retry_count < max_retries:
                self._access_token = None
                self._token_expires_at = None
                return self._request(method, endpoint, params, json, retry_count + 1, max_retries)
            raise AuthenticationError(f"Authentication failed after {max_retries} retries: {detail}")

        if 500 <= response.status_code < 600:
            if retry_count < max_retries:
                wait_time = min(2 ** retry_count, 30)
                logger.warning(f"Server error ({response.status_code}), waiting {wait_time}s before retry")
                time.sleep(wait_time)
                return self._request(method, endpoint, params, json, retry_count + 1, max_retries)
            raise GraphAPIError(f"Server error after {max_retries} retries: {response.status_code}")

        if response.status_code >= 400:
            error_msg = f"Graph API request failed: {response.status_code} - {_error_detail(response)}"
            logger.error(f"{method} {url} failed: {error_msg}")
            raise GraphAPIError(error_msg)

        return response

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("GET", endpoint, params=params).json()

    def post(self, endpoint: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST; returns {} for empty (202 Accepted) bodies such as sendMail."""
        response = self._request("POST", endpoint, json=json)
        return response.json() if response.content else {}

    def test_connection(self) -> bool:
        """
        Raises:
            GraphAPIError: If the organization endpoint cannot be read
        """
        result = self.get("/organization")
        org_name = result.get("value", [{}])[0].get("displayName", "Unknown")
        logger.info(f"✓ Graph API connection successful (org: {org_name})")
        return True
