"""FastAPI dependencies for the Headshots API.

Route handlers never build SDK clients themselves.  They receive them
through these dependencies, which tests replace via
``app.dependency_overrides``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Depends, Header, Request

from headshots.core.config import HeadshotsConfig, config
from headshots.core.errors import AuthenticationError
from headshots.core.generation import GenerationClient
from headshots.core.store import SupabaseStore

StoreFactory = Callable[[str | None], SupabaseStore]


def get_config() -> HeadshotsConfig:
    return config


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer ") :].strip() or None
    return None


def get_store_factory(settings: HeadshotsConfig = Depends(get_config)) -> StoreFactory:
    """Return a callable that builds a store for an (optional) access token.

    A factory rather than a store because some routes only learn the token
    after parsing the body.
    """

    def factory(access_token: str | None) -> SupabaseStore:
        return SupabaseStore(settings.supabase_url, settings.supabase_anon_key, access_token)

    return factory


def get_generation_client(request: Request) -> GenerationClient:
    """Return the client created during application start-up."""
    return request.app.state.generation_client


def authenticate(store: SupabaseStore, token: str | None) -> Any:
    """Resolve the calling user or fail.

    Raises:
        AuthenticationError: If no token was given or it is rejected.
    """
    if not token:
        raise AuthenticationError("Authentication required")
    return store.get_user(token)
