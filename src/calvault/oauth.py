"""
OAuth2 credential acquisition and refresh for Google accounts.
"""

import logging
import re
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from .models import ConfigError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9@._+-]")


class OAuthManager:
    """Stores one authorized-user token file per account email."""

    def __init__(self, client_secrets: Path, tokens_dir: Path):
        self.client_secrets = client_secrets
        self.tokens_dir = tokens_dir

    def token_path(self, email: str) -> Path:
        return self.tokens_dir / (_UNSAFE_CHARS_RE.sub("_", email) + ".json")

    def has_token(self, email: str) -> bool:
        return self.token_path(email).exists()

    def _save(self, email: str, creds: Credentials):
        path = self.token_path(email)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(creds.to_json(), encoding="utf-8")
        path.chmod(0o600)

    def authorize(self, email: str, headless: bool = False) -> Credentials:
        """Run the installed-app flow and persist the resulting token.

        In headless mode the browser is not opened; the authorization URL is
        printed so it can be opened on another machine with a tunnel to the
        local redirect port.
        """
        if not self.client_secrets.exists():
            raise ConfigError(f"OAuth client secrets file not found: {self.client_secrets}")

        flow = InstalledAppFlow.from_client_secrets_file(str(self.client_secrets), SCOPES)
        creds = flow.run_local_server(
            port=0,
            open_browser=not headless,
            login_hint=email,
            authorization_prompt_message="Open this URL to authorize calvault:\n{url}",
        )
        self._save(email, creds)
        logger.info(f"Stored OAuth token for {email}")
        return creds

    def credentials(self, email: str) -> Credentials:
        """Load credentials for ``email``, refreshing and persisting them if expired."""
        path = self.token_path(email)
        if not path.exists():
            raise ConfigError(f"No OAuth token for {email} (run 'add-account' first)")

        creds = Credentials.from_authorized_user_file(str(path), SCOPES)
        if creds.valid:
            return creds

        if creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as e:
                raise ConfigError(
                    f"OAuth token for {email} could not be refreshed: {e} "
                    f"(delete {path} and run 'add-account' again)"
                ) from e
            self._save(email, creds)
            logger.debug("Refreshed OAuth token for %s", email)
            return creds

        raise ConfigError(f"OAuth token for {email} is invalid (run 'add-account' again)")
