"""
Credential providers for outbound calls.

The login flow lives in the host application; the sync core only asks for
the current bearer token and the field agent's user id.
"""
from __future__ import annotations

from typing import Optional, Protocol

from metersync.core.config import Settings, settings as default_settings


class CredentialProvider(Protocol):
    def get_token(self) -> Optional[str]:
        ...

    def get_user_id(self) -> Optional[str]:
        ...


class StaticCredentialProvider:
    """Holds the credentials the host application hands over after login."""

    def __init__(self, token: Optional[str] = None, user_id: Optional[str] = None):
        self._token = token
        self._user_id = user_id

    def set_credentials(self, token: Optional[str], user_id: Optional[str] = None) -> None:
        self._token = token
        self._user_id = user_id

    def clear(self) -> None:
        self._token = None
        self._user_id = None

    def get_token(self) -> Optional[str]:
        return self._token or None

    def get_user_id(self) -> Optional[str]:
        return self._user_id or None


class SettingsCredentialProvider:
    """Reads API_TOKEN / USER_ID from settings (service deployments)."""

    def __init__(self, config: Settings = None):
        self._settings = config or default_settings

    def get_token(self) -> Optional[str]:
        return self._settings.API_TOKEN or None

    def get_user_id(self) -> Optional[str]:
        return self._settings.USER_ID or None
