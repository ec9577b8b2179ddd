"""Credential store implementations."""

from tracksync.config import RealDebridSettings
from tracksync.domain.ports import ICredentialStore


class SettingsCredentialStore(ICredentialStore):
    """Reads the debrid API key from settings (env / .env)."""

    def __init__(self, settings: RealDebridSettings) -> None:
        self._settings = settings

    async def get_api_key(self) -> str | None:
        """Return the configured key, or None when unset or blank."""
        if self._settings.api_key is None:
            return None
        key = self._settings.api_key.get_secret_value().strip()
        return key or None


# Yo, the embedding app usually keeps the user's key in its own profile table. It can hand the
# key over here (and swap it when the user edits it) without touching env vars.
class StaticCredentialStore(ICredentialStore):
    """Holds a key supplied by the embedding application."""

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = api_key

    def set_api_key(self, api_key: str | None) -> None:
        """Replace the stored key."""
        self._api_key = api_key

    async def get_api_key(self) -> str | None:
        """Return the stored key."""
        return self._api_key or None
