"""
Token lifecycle management.

Validates the bearer credential of a session with a lightweight probe call
and, when the probe answers 401, exchanges the refresh token for a new access
token and persists the updated session. This is the only writer of Session
records.
"""
import logging
from typing import Callable, List, Optional, Tuple

from codegate.auth.store import SessionStore
from codegate.client.mail import MailApiClient, OAuthClient
from codegate.exceptions import ApiError, CodegateError, SessionExpiredError
from codegate.observability import record_token_refresh
from codegate.types import AccountToken, Session

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Keeps one account's access token usable across executions.

    Callers must not validate the same session concurrently; CodeGateway
    serializes executions so at most one validation or refresh is in flight.

    Example:
        manager = TokenLifecycleManager(store, MailApiClient(api_base), OAuthClient(token_url))
        token = manager.validate(store.get("me@example.com"))
    """

    def __init__(
        self,
        store: SessionStore,
        api_client: MailApiClient,
        oauth_client: OAuthClient,
        probe_path: str = "/profile",
        on_refresh: Optional[Callable[[Session], None]] = None,
        on_refresh_start: Optional[Callable[[Session], None]] = None,
    ):
        self.store = store
        self.api_client = api_client
        self.oauth_client = oauth_client
        self.probe_path = probe_path
        self.on_refresh = on_refresh
        self.on_refresh_start = on_refresh_start

    def validate(self, session: Session) -> AccountToken:
        """Return a usable token for the session, refreshing it if needed.

        Raises:
            SessionExpiredError: The token is rejected and cannot be refreshed.
            ApiError: The probe failed with a status other than 401.
        """
        response = self.api_client.probe(session.access_token, self.probe_path)

        if response.status_code == 401:
            logger.info(f"Access token for {session.account_id} rejected, refreshing")
            session = self.refresh(session)
        elif not 200 <= response.status_code < 300:
            excerpt = (response.text or "")[: self.api_client.error_excerpt_chars]
            logger.error(
                f"Token probe for {session.account_id} returned {response.status_code}"
            )
            raise ApiError(
                response.status_code,
                self.probe_path,
                excerpt or f"HTTP {response.status_code} during token validation",
            )

        return AccountToken(
            email=session.account_id,
            token=session.access_token,
            label=session.account_label,
        )

    def refresh(self, session: Session) -> Session:
        """Exchange the refresh token and persist the refreshed session."""
        if not session.refresh_token:
            logger.warning(f"Token for {session.account_id} expired, no refresh token")
            record_token_refresh(False)
            raise SessionExpiredError(
                "Access token expired and no refresh token is available. Please reconnect."
            )

        if self.on_refresh_start is not None:
            self.on_refresh_start(session)

        try:
            payload = self.oauth_client.refresh(
                session.refresh_token, session.client_id, session.client_secret
            )
        except ApiError as e:
            logger.error(f"Token refresh for {session.account_id} failed: {e.status_code}")
            record_token_refresh(False)
            raise SessionExpiredError(
                f"Access token expired and refresh failed ({e.status_code}). Please reconnect."
            ) from e

        refreshed = session.with_access_token(
            payload["access_token"], payload.get("refresh_token")
        )
        self.store.save(refreshed)
        record_token_refresh(True)
        logger.info(f"Token refreshed for {session.account_id}")
        if self.on_refresh is not None:
            self.on_refresh(refreshed)
        return refreshed

    def validate_all(
        self, sessions: List[Session]
    ) -> Tuple[List[AccountToken], List[CodegateError]]:
        """Validate several accounts, skipping the ones that fail.

        Returns:
            The usable tokens, in the order given, and the failures.
        """
        tokens: List[AccountToken] = []
        failures: List[CodegateError] = []
        for session in sessions:
            try:
                tokens.append(self.validate(session))
            except (SessionExpiredError, ApiError) as e:
                logger.warning(f"Skipping account {session.account_id}: {e}")
                failures.append(e)
        return tokens, failures
