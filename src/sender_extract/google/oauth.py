"""Google OAuth management using Authlib.

This module provides OAuth 2.0 authentication for the Gmail API with:
- Interactive first-run consent, cached token thereafter
- Automatic token refresh with scope preservation
- Gmail service creation over a timeout-bounded HTTP transport

Files are read from the working directory by default:
    credentials.json    - OAuth client credentials
    tokens/token.json   - OAuth tokens
"""

import json
import logging
import threading
import webbrowser
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import google_auth_httplib2
import httplib2
from authlib.integrations.requests_client import OAuth2Session
from authlib.oauth2 import OAuth2Error
from google.oauth2.credentials import Credentials as GoogleCredentials
from googleapiclient.discovery import build

from sender_extract.config import (
    CREDENTIALS_FILE,
    GMAIL_SCOPES,
    REDIRECT_PORT,
    REQUEST_TIMEOUT,
    TOKEN_FILE,
    ensure_tokens_dir,
)
from sender_extract.google.exceptions import (
    CredentialsNotFoundError,
    ScopeMismatchError,
    TokenError,
)

logger = logging.getLogger(__name__)


# Gmail OAuth scopes
SCOPES = {
    "gmail_readonly": "https://www.googleapis.com/auth/gmail.readonly",
    "gmail_labels": "https://www.googleapis.com/auth/gmail.labels",
    "gmail_metadata": "https://www.googleapis.com/auth/gmail.metadata",
}


class GoogleOAuth:
    """Google OAuth management using Authlib.

    Handles OAuth 2.0 authorization flow, token management, and
    Google API service creation.

    Example:
        >>> auth = GoogleOAuth()
        >>> if not auth.is_authorized():
        ...     auth.authorize()
        >>> gmail = auth.build_service("gmail", "v1")
    """

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    def __init__(
        self,
        scopes: list[str] | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_path: str | Path | None = None,
        credentials_path: str | Path | None = None,
        redirect_port: int = REDIRECT_PORT,
    ):
        """Initialize Google OAuth.

        Args:
            scopes: List of scope names (e.g., ["gmail_readonly"]) or full URLs.
                   If None, defaults to the labels, readonly and metadata scopes.
            client_id: OAuth client ID (loaded from credentials file if not provided).
            client_secret: OAuth client secret (loaded from credentials file if not provided).
            token_path: Path to store/load tokens. Defaults to tokens/token.json.
            credentials_path: Path to OAuth credentials file. Defaults to credentials.json.
            redirect_port: Localhost port the consent screen redirects to.
        """
        self.token_path = Path(token_path) if token_path else TOKEN_FILE
        self.credentials_path = Path(credentials_path) if credentials_path else CREDENTIALS_FILE

        # Resolve scope names to full URLs
        self.required_scopes = self._resolve_scopes(scopes or GMAIL_SCOPES)

        # Load client credentials
        if not client_id or not client_secret:
            client_id, client_secret = self._load_client_credentials()

        self.client_id = client_id
        self.client_secret = client_secret

        self.session = OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=" ".join(self.required_scopes),
            redirect_uri=f"http://localhost:{redirect_port}/",
            token=self._load_token(),
            update_token=self._save_token,
            token_endpoint=self.TOKEN_URL,
            grant_type="refresh_token",
            token_endpoint_auth_method="client_secret_post",
        )

        self._state: str | None = None
        # Worker threads share one session; only one may refresh at a time
        self._refresh_lock = threading.Lock()

    def _resolve_scopes(self, scopes: list[str]) -> list[str]:
        """Resolve scope names to full URLs."""
        resolved = []
        for scope in scopes:
            if scope.startswith("https://"):
                resolved.append(scope)
            elif scope in SCOPES:
                resolved.append(SCOPES[scope])
            else:
                raise ValueError(
                    f"Unknown scope: {scope}. Use full URL or one of: {list(SCOPES.keys())}"
                )
        return resolved

    def _load_client_credentials(self) -> tuple[str, str]:
        """Load OAuth client credentials from file."""
        if not self.credentials_path.exists():
            raise CredentialsNotFoundError(str(self.credentials_path))

        with open(self.credentials_path) as f:
            creds = json.load(f)

        # Handle both web and installed app credential formats
        if "installed" in creds:
            app_creds = creds["installed"]
        elif "web" in creds:
            app_creds = creds["web"]
        else:
            raise ValueError("Invalid credentials.json format. Expected 'installed' or 'web' key.")

        return app_creds["client_id"], app_creds["client_secret"]

    def _load_token(self) -> dict[str, Any] | None:
        """Load token from the token cache."""
        if not self.token_path.exists():
            logger.info("No cached token found at %s", self.token_path)
            return None

        try:
            with open(self.token_path) as f:
                token_data = json.load(f)

            # Convert expiry to timestamp if in ISO format
            expiry = token_data.get("expiry")
            if expiry and isinstance(expiry, str):
                dt = datetime.fromisoformat(expiry.replace("Z", "+00:00"))
                expires_at = dt.timestamp()
            else:
                expires_at = expiry

            # Convert Google token format to Authlib format
            authlib_token = {
                "access_token": token_data.get("token"),
                "refresh_token": token_data.get("refresh_token"),
                "token_type": token_data.get("type", "Bearer"),
                "expires_at": expires_at,
                "scope": " ".join(token_data.get("scopes", [])),
            }

            current_scopes = set(token_data.get("scopes", []))
            required_scopes = set(self.required_scopes)

            if not required_scopes.issubset(current_scopes):
                missing = required_scopes - current_scopes
                logger.warning("Cached token missing required scopes: %s", missing)
                return None

            logger.info("Loaded cached token with scopes: %s", current_scopes)
            return authlib_token

        except (OSError, ValueError) as e:
            logger.error("Failed to load cached token: %s", e)
            return None

    def _save_token(
        self,
        token: dict[str, Any],
        refresh_token: str | None = None,
        access_token: str | None = None,
    ):
        """Save token to the token cache (Authlib callback)."""
        if access_token:
            token["access_token"] = access_token
        if refresh_token:
            token["refresh_token"] = refresh_token

        token_scopes = set(token.get("scope", "").split())
        required_scopes = set(self.required_scopes)

        if not required_scopes.issubset(token_scopes):
            missing = required_scopes - token_scopes
            raise ScopeMismatchError(missing)

        # Stored in Google token format so google-auth can read it too
        google_token = {
            "token": token["access_token"],
            "refresh_token": token.get("refresh_token"),
            "token_uri": self.TOKEN_URL,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scopes": sorted(token_scopes),
            "type": token.get("token_type", "Bearer"),
            "expiry": token.get("expires_at"),
            "_class": "google.oauth2.credentials.Credentials",
        }

        ensure_tokens_dir(self.token_path.parent)
        with open(self.token_path, "w") as f:
            json.dump(google_token, f, indent=2)

        logger.info("Token saved to %s", self.token_path)

    def is_authorized(self) -> bool:
        """Check if we have a token carrying every required scope."""
        if not self.session.token:
            return False

        token_scopes = set(self.session.token.get("scope", "").split())
        required_scopes = set(self.required_scopes)

        return required_scopes.issubset(token_scopes)

    def get_authorization_url(self) -> str:
        """Start OAuth authorization flow.

        Returns:
            Authorization URL for user to visit.
        """
        authorization_url, state = self.session.create_authorization_url(
            self.AUTHORIZE_URL,
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
        )

        self._state = state
        return authorization_url

    def fetch_token(self, authorization_response: str) -> dict[str, Any]:
        """Complete authorization flow and fetch token.

        Args:
            authorization_response: The full redirect URL from OAuth callback.

        Returns:
            The fetched OAuth token dict.
        """
        token = self.session.fetch_token(
            self.TOKEN_URL,
            authorization_response=authorization_response,
            client_secret=self.client_secret,
        )

        self._save_token(token)
        return token

    def authorize(
        self,
        prompt: Callable[[str], str] = input,
        open_browser: bool = True,
    ) -> dict[str, Any]:
        """Run the interactive consent flow.

        Opens the consent screen and asks the user to paste back the URL the
        browser was redirected to.

        Args:
            prompt: Reads the redirect URL from the user.
            open_browser: Whether to open the consent screen automatically.

        Returns:
            The fetched OAuth token dict.

        Raises:
            TokenError: If no redirect URL was provided.
        """
        url = self.get_authorization_url()
        logger.info("Requesting OAuth consent")
        if open_browser:
            webbrowser.open(url)

        redirect_url = prompt(
            f"Visit this URL to authorize access:\n{url}\n\nPaste redirect URL: "
        ).strip()
        if not redirect_url:
            raise TokenError("No redirect URL provided; authorization aborted")

        return self.fetch_token(redirect_url)

    def _is_expired(self) -> bool:
        expires_at = self.session.token.get("expires_at", 0)
        return bool(expires_at) and expires_at < datetime.now().timestamp()

    def get_credentials(self) -> GoogleCredentials:
        """Get Google Credentials object for API client libraries.

        Returns:
            Google Credentials object with current token.

        Raises:
            TokenError: If not authorized or token refresh fails.
        """
        if not self.is_authorized():
            raise TokenError("Not authorized or missing required scopes")

        with self._refresh_lock:
            # Another thread may have refreshed while this one waited
            if self._is_expired():
                logger.info("Token expired, refreshing...")
                try:
                    self.session.refresh_token(
                        self.TOKEN_URL,
                        refresh_token=self.session.token.get("refresh_token"),
                    )
                except OAuth2Error as e:
                    raise TokenError(f"Failed to refresh token: {e}") from e

        return GoogleCredentials(
            token=self.session.token["access_token"],
            refresh_token=self.session.token.get("refresh_token"),
            token_uri=self.TOKEN_URL,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.required_scopes,
        )

    def authorized_http(self, timeout: int = REQUEST_TIMEOUT) -> google_auth_httplib2.AuthorizedHttp:
        """Create an authorized HTTP transport with a connect/read timeout.

        httplib2 transports are not thread-safe; create one per thread.
        """
        return google_auth_httplib2.AuthorizedHttp(
            self.get_credentials(), http=httplib2.Http(timeout=timeout)
        )

    def build_service(
        self,
        service_name: str = "gmail",
        version: str = "v1",
        timeout: int = REQUEST_TIMEOUT,
    ):
        """Build a Google API service with current credentials.

        Args:
            service_name: Name of the service (e.g., 'gmail').
            version: API version (e.g., 'v1').
            timeout: Connect/read timeout in seconds for each request.

        Returns:
            Google API service object.
        """
        return build(
            service_name,
            version,
            http=self.authorized_http(timeout),
            cache_discovery=False,
        )

