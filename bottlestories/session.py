from __future__ import annotations

import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, unquote, urlencode, urlparse, urlunparse

from rich import print as rprint

from .schemas import LoginResponse
from .services import StorefrontApi
from .storage import CART_KEY, TOKEN_KEY, USER_KEY, KeyValueStorage, read_json, write_json

CALLBACK_PARAMS = ("token", "user")


class SessionStore:
    """Session token plus a best-effort cached user profile."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage

    @property
    def token(self) -> Optional[str]:
        return self.storage.get_item(TOKEN_KEY) or None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        user = read_json(self.storage, USER_KEY)
        return user if isinstance(user, dict) else None

    def save(self, token: str, user: Optional[Dict[str, Any]] = None) -> None:
        self.storage.set_item(TOKEN_KEY, token)
        if user is not None:
            self.cache_user(user)

    def cache_user(self, user: Dict[str, Any]) -> None:
        write_json(self.storage, USER_KEY, user)

    def clear(self) -> None:
        self.storage.remove_item(TOKEN_KEY)
        self.storage.remove_item(USER_KEY)


def _decode_user(raw: str) -> Optional[Dict[str, Any]]:
    for candidate in (raw, unquote(raw)):
        try:
            value = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    return None


def capture_login_callback(location: str, session: SessionStore) -> Optional[str]:
    """Persist a social-login token carried in ``location``'s query string.

    Returns the location with the sensitive parameters removed, or ``None``
    when the URL is not a login callback.
    """
    parsed = urlparse(location)
    params = parse_qsl(parsed.query, keep_blank_values=True)
    values = dict(params)
    token = values.get("token")
    if not token:
        return None

    user = None
    if values.get("user"):
        user = _decode_user(values["user"])
        if user is None:
            rprint("[yellow]⚠ Login callback carried an unreadable user payload; keeping token only[/yellow]")

    session.save(token, user)
    rprint("[green]✓ Captured social-login session[/green]")

    remaining = [(k, v) for k, v in params if k not in CALLBACK_PARAMS]
    return urlunparse(parsed._replace(query=urlencode(remaining)))


async def login(api: StorefrontApi, session: SessionStore, email: str, password: str) -> LoginResponse:
    """Password login; the token is stored only when the API returns one."""
    response = await api.login(email, password)
    if response.token:
        session.save(response.token, response.user)
    return response


def logout(session: SessionStore) -> None:
    """Drop the token, cached profile and the guest cart snapshot."""
    session.clear()
    session.storage.remove_item(CART_KEY)
