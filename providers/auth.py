"""Claude credential probing shared by the SDK and Chrome providers."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path

import httpx

from .cli import run_probe

logger = logging.getLogger(__name__)

AUTH_STATUS_TIMEOUT = 10.0
EXPIRY_SKEW_MS = 60_000


def _credentials_path() -> Path:
    config_dir = os.environ.get("CLAUDE_CONFIG_DIR")
    base = Path(config_dir) if config_dir else Path.home() / ".claude"
    return base / ".credentials.json"


def _auth_env() -> dict[str, str]:
    """Environment for auth probes.

    Drops CLAUDECODE so the probe also works from inside a Claude Code session.
    """
    env = os.environ.copy()
    env.pop("CLAUDECODE", None)
    return env


class ClaudeAuth:
    """Answers "can Claude run right now?" without starting a generation.

    Checked in order: API-key environment variables, ``claude auth status``
    (which also refreshes expired OAuth tokens), then the credentials file,
    refreshing its access token over HTTP when it has expired.
    """

    TOKEN_URL = "https://console.anthropic.com/v1/oauth/token"
    ENV_KEYS = ("ANTHROPIC_API_KEY", "CLAUDE_CODE_OAUTH_TOKEN")

    def __init__(self, cli_path: str | None = None, credentials_path: Path | None = None) -> None:
        self._cli = cli_path
        self._credentials_path = credentials_path or _credentials_path()

    async def is_authenticated(self) -> bool:
        if any(os.environ.get(key) for key in self.ENV_KEYS):
            return True
        if self._cli and await self._cli_auth_status():
            return True
        return self._check_credentials_file()

    async def _cli_auth_status(self) -> bool:
        code, stdout, _ = await run_probe(
            self._cli, "auth", "status", timeout=AUTH_STATUS_TIMEOUT, env=_auth_env(),
        )
        if code != 0:
            return False
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            return "logged in" in stdout.lower()
        return bool(data.get("loggedIn", False)) if isinstance(data, dict) else False

    def _check_credentials_file(self, allow_refresh: bool = True) -> bool:
        try:
            if not self._credentials_path.exists():
                return False
            data = json.loads(self._credentials_path.read_text())
        except (json.JSONDecodeError, OSError):
            return False

        oauth = data.get("claudeAiOauth", {})
        if not oauth.get("accessToken"):
            return False

        expires_at = oauth.get("expiresAt", 0)
        if expires_at and expires_at < time.time() * 1000 + EXPIRY_SKEW_MS:
            if allow_refresh and oauth.get("refreshToken") and self._refresh_token(data):
                return self._check_credentials_file(allow_refresh=False)
            return False
        return True

    def _refresh_token(self, credentials: dict) -> bool:
        """Exchange the refresh token and rewrite the credentials file in place."""
        oauth = credentials.get("claudeAiOauth", {})
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.post(
                    self.TOKEN_URL,
                    data={"grant_type": "refresh_token", "refresh_token": oauth["refreshToken"]},
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Token refresh error: %s", exc)
            return False

        if response.status_code != 200:
            logger.warning("Token refresh failed: %s %s", response.status_code, response.text[:200])
            return False

        try:
            token = response.json()
            access_token = token["access_token"]
            expires_in = int(token.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Malformed token refresh response: %s", exc)
            return False

        oauth["accessToken"] = access_token
        if "refresh_token" in token:
            oauth["refreshToken"] = token["refresh_token"]
        oauth["expiresAt"] = int(time.time() * 1000) + expires_in * 1000
        try:
            self._credentials_path.write_text(json.dumps(credentials))
        except OSError as exc:
            logger.warning("Could not persist refreshed token: %s", exc)
            return False
        logger.info("Claude access token refreshed")
        return True

    @property
    def credentials_path(self) -> Path:
        return self._credentials_path
