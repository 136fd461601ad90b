"""
Clients for the remote mail API and its OAuth token endpoint.
"""
import logging
from typing import Any, Dict, Optional

import requests

from codegate.client.base import BaseClient
from codegate.exceptions import ApiError

logger = logging.getLogger(__name__)


class MailApiClient(BaseClient):
    """Bearer-authenticated JSON client for the mail REST API."""

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def get(self, token: str, path: str) -> Any:
        """GET a path relative to the API base and return the decoded JSON.

        Raises:
            ApiError: If the response is not 2xx.
        """
        response = self._send("GET", path, headers=self._headers(token))
        self._raise_for_status(response, path)
        return self._decode(response, path)

    def post(self, token: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        """POST a JSON body to a path relative to the API base."""
        response = self._send("POST", path, headers=self._headers(token), json=body)
        self._raise_for_status(response, path)
        return self._decode(response, path)

    def probe(self, token: str, path: str) -> requests.Response:
        """Issue a lightweight GET and return the response without raising on status."""
        return self._send("GET", path, headers={"Authorization": f"Bearer {token}"})


class OAuthClient(BaseClient):
    """Client for the provider's token endpoint.

    base_url is the full token endpoint URL; requests go to it directly.
    """

    def refresh(self, refresh_token: str, client_id: Optional[str], client_secret: Optional[str]) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Returns:
            The token response, containing at least "access_token".

        Raises:
            ApiError: If the exchange fails or returns no access token.
        """
        response = self._send(
            "POST",
            "",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id or "",
                "client_secret": client_secret or "",
            },
        )
        self._raise_for_status(response, self.base_url)
        payload = self._decode(response, self.base_url)
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise ApiError(response.status_code, self.base_url, "Token response has no access_token")
        return payload
