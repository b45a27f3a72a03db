"""Supabase data store access for the Headshots service.

:class:`SupabaseStore` wraps a ``supabase.Client`` and exposes the handful of
row operations the API needs.  When constructed with the caller's access
token, every query carries ``Authorization: Bearer <token>`` so Postgres
row-level security decides what the caller may read and write; the service
itself never uses a privileged key.

Tables
------
============================  ===============================================
Table                         Columns used
============================  ===============================================
``profiles``                  id, username
``images``                    id, owner_id, image_url, title, description,
                              prompt, is_public, model_parameters, created_at
``favorites``                 id, profile_id, image_id
``lora_models``               id, replicate_id, name, description,
                              trigger_word, is_active, default_parameters
``user_lora_access``          id, profile_id, lora_id, is_owner, can_use,
                              custom_parameters, updated_at
============================  ===============================================

Error Handling
--------------
PostgREST and transport failures are re-raised as
:class:`~headshots.core.errors.UpstreamUnavailableError` with the Postgres
error code attached, so callers such as :mod:`headshots.core.schema` can
branch on it.  A few operations are documented as best effort and only log.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import Client, ClientOptions, create_client

from headshots.core.errors import AuthenticationError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

# Postgres error codes the store branches on.
UNIQUE_VIOLATION = "23505"
UNDEFINED_COLUMN = "42703"


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class SupabaseStore:
    """Row access for one request, optionally scoped to a user token.

    Attributes:
        access_token (str | None):
            Bearer token forwarded to PostgREST, or ``None`` for anonymous
            access.
    """

    def __init__(
        self,
        url: str,
        key: str,
        access_token: str | None = None,
        client: Client | None = None,
    ) -> None:
        """Initialise the store.

        Args:
            url: Supabase project URL.
            key: Supabase anonymous key.
            access_token: Optional user access token.
            client: Pre-built client (used by tests); skips construction.
        """
        self._url = url
        self._key = key
        self.access_token = access_token
        self._client = client

    @property
    def client(self) -> Client:
        """The Supabase client, created on first use.

        Raises:
            UpstreamUnavailableError: If credentials are missing or the client
                cannot be created.
        """
        if self._client is None:
            if not self._url or not self._key:
                raise UpstreamUnavailableError("Missing Supabase credentials", service="supabase")
            options = ClientOptions(auto_refresh_token=False, persist_session=False)
            if self.access_token:
                options.headers["Authorization"] = f"Bearer {self.access_token}"
            try:
                self._client = create_client(self._url, self._key, options=options)
            except Exception as e:
                raise UpstreamUnavailableError(
                    f"Could not create Supabase client: {e}", service="supabase"
                ) from e
        return self._client

    # ------------------------------------------------------------------
    # Query helpers.
    # ------------------------------------------------------------------

    def _execute(self, query, action: str) -> list[dict[str, Any]]:
        """Execute a query builder and return its rows.

        Raises:
            UpstreamUnavailableError: On any PostgREST or transport failure.
        """
        try:
            response = query.execute()
        except APIError as e:
            logger.error(f"Failed to {action}: code={e.code} message={e.message}")
            raise UpstreamUnavailableError(
                f"Failed to {action}: {e.message}", service="supabase", code=e.code
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to {action}: {e}")
            raise UpstreamUnavailableError(f"Failed to {action}: {e}", service="supabase") from e

        if response is None or response.data is None:
            return []
        if isinstance(response.data, list):
            return response.data
        return [response.data]

    def _first(self, query, action: str) -> dict[str, Any] | None:
        rows = self._execute(query.limit(1), action)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Auth and profiles.
    # ------------------------------------------------------------------

    def get_user(self, token: str) -> Any:
        """Return the auth user owning *token*.

        Raises:
            AuthenticationError: If the token is rejected for any reason.
        """
        try:
            response = self.client.auth.get_user(token)
        except UpstreamUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Invalid auth token: {e}")
            raise AuthenticationError("Invalid authentication token") from e

        user = getattr(response, "user", None)
        if user is None:
            logger.error("Invalid auth token: no user found")
            raise AuthenticationError("Invalid authentication token")
        return user

    def ensure_profile(self, user_id: str, email: str | None) -> None:
        """Create the caller's profile row if it does not exist yet.

        The username is the local part of *email*, or ``"user"``.  A
        concurrent insert of the same profile (unique violation) is not an
        error.
        """
        existing = self._first(
            self.client.table("profiles").select("id").eq("id", user_id),
            "look up profile",
        )
        if existing:
            return

        username = email.split("@")[0] if email else "user"
        try:
            self._execute(
                self.client.table("profiles").insert({"id": user_id, "username": username}),
                "create profile",
            )
        except UpstreamUnavailableError as e:
            if e.code == UNIQUE_VIOLATION:
                logger.info(f"Profile {user_id} created by a concurrent request")
                return
            raise
        logger.info(f"Created profile for {user_id}")

    def get_usernames(self, owner_ids: Sequence[str], chunk_size: int = 10) -> dict[str, str]:
        """Map profile ids to usernames, querying *chunk_size* ids at a time."""
        usernames: dict[str, str] = {}
        for chunk in _chunks(list(owner_ids), chunk_size):
            rows = self._execute(
                self.client.table("profiles").select("id, username").in_("id", list(chunk)),
                "fetch profiles",
            )
            for row in rows:
                usernames[row["id"]] = row.get("username")
        return usernames

    # ------------------------------------------------------------------
    # LoRA registry.
    # ------------------------------------------------------------------

    def get_lora_model(self, lora_id: str) -> dict[str, Any] | None:
        """Return the active LoRA model with *lora_id*, or ``None``."""
        return self._first(
            self.client.table("lora_models").select("*").eq("id", lora_id).eq("is_active", True),
            "fetch LoRA model",
        )

    def list_active_lora_models(self) -> list[dict[str, Any]]:
        return self._execute(
            self.client.table("lora_models").select("*").eq("is_active", True),
            "fetch LoRA models",
        )

    def update_trigger_word(self, model_id: str, trigger_word: str) -> bool:
        """Persist a detected trigger word.  Best effort: failures only log."""
        try:
            self._execute(
                self.client.table("lora_models")
                .update({"trigger_word": trigger_word})
                .eq("id", model_id),
                "update trigger word",
            )
        except UpstreamUnavailableError:
            return False
        return True

    def set_trigger_word_by_replicate_id(
        self, replicate_id: str, trigger_word: str
    ) -> list[dict[str, Any]]:
        return self._execute(
            self.client.table("lora_models")
            .update({"trigger_word": trigger_word})
            .eq("replicate_id", replicate_id),
            "update trigger word",
        )

    def list_user_lora_access(self, user_id: str) -> list[dict[str, Any]]:
        return self._execute(
            self.client.table("user_lora_access").select("*").eq("profile_id", user_id),
            "fetch user LoRA access",
        )

    def get_user_lora_access(self, user_id: str, lora_id: str) -> dict[str, Any] | None:
        return self._first(
            self.client.table("user_lora_access")
            .select("*")
            .eq("profile_id", user_id)
            .eq("lora_id", lora_id),
            "check user access",
        )

    def get_user_custom_parameters(self, user_id: str, lora_id: str) -> dict[str, Any] | None:
        """Return the caller's saved parameters for a model, if any."""
        access = self.get_user_lora_access(user_id, lora_id)
        if not access:
            return None
        return access.get("custom_parameters") or None

    def save_custom_parameters(
        self, user_id: str, lora_id: str, custom_parameters: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Create or update the caller's access row for a model.

        Returns:
            The stored row.
        """
        existing = self.get_user_lora_access(user_id, lora_id)
        if existing:
            rows = self._execute(
                self.client.table("user_lora_access")
                .update(
                    {
                        "custom_parameters": custom_parameters,
                        "updated_at": datetime.now(timezone.utc).isoformat(),
                    }
                )
                .eq("id", existing["id"]),
                "update custom parameters",
            )
        else:
            rows = self._execute(
                self.client.table("user_lora_access").insert(
                    {
                        "profile_id": user_id,
                        "lora_id": lora_id,
                        "custom_parameters": custom_parameters,
                        "is_owner": False,
                        "can_use": True,
                    }
                ),
                "save custom parameters",
            )
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Images.
    # ------------------------------------------------------------------

    def insert_image(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert an image row and return it as stored.

        Raises:
            UpstreamUnavailableError: If the insert fails or returns nothing.
        """
        rows = self._execute(self.client.table("images").insert(row), "save image")
        if not rows:
            raise UpstreamUnavailableError("Failed to save image: No data returned", "supabase")
        return rows[0]

    def get_image_owner(self, image_id: str) -> str | None:
        """Return the owner id of an image, or ``None`` if it is not visible."""
        row = self._first(
            self.client.table("images").select("owner_id").eq("id", image_id),
            "fetch image",
        )
        return row["owner_id"] if row else None

    def image_exists(self, image_id: str) -> bool:
        row = self._first(
            self.client.table("images").select("id").eq("id", image_id),
            "check if image exists",
        )
        return row is not None

    def update_image(self, image_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        rows = self._execute(
            self.client.table("images").update(changes).eq("id", image_id),
            "update image",
        )
        return rows[0] if rows else None

    def delete_image(self, image_id: str) -> None:
        """Delete an image, removing its favourites first.

        Favourite cleanup is best effort; the image delete is not.
        """
        try:
            self._execute(
                self.client.table("favorites").delete().eq("image_id", image_id),
                "delete favorites",
            )
        except UpstreamUnavailableError:
            logger.warning(f"Continuing with delete of {image_id} despite favorites error")

        self._execute(self.client.table("images").delete().eq("id", image_id), "delete image")

    def get_images(self, image_ids: Sequence[str]) -> list[dict[str, Any]]:
        """Return the given images, newest first."""
        if not image_ids:
            return []
        return self._execute(
            self.client.table("images")
            .select("*")
            .in_("id", list(image_ids))
            .order("created_at", desc=True),
            "fetch images",
        )

    def list_public_images(self, limit: int = 50) -> list[dict[str, Any]]:
        return self._execute(
            self.client.table("images")
            .select("*")
            .eq("is_public", True)
            .order("created_at", desc=True)
            .limit(limit),
            "fetch public images",
        )

    def ping(self) -> None:
        """Run a trivial query to confirm the data store is reachable."""
        self._execute(self.client.table("images").select("id").limit(1), "connect to database")

    # ------------------------------------------------------------------
    # Favourites.
    # ------------------------------------------------------------------

    def find_favorite(self, user_id: str, image_id: str) -> dict[str, Any] | None:
        return self._first(
            self.client.table("favorites")
            .select("id")
            .eq("profile_id", user_id)
            .eq("image_id", image_id),
            "check if already favorited",
        )

    def add_favorite(self, user_id: str, image_id: str) -> dict[str, Any] | None:
        rows = self._execute(
            self.client.table("favorites").insert({"profile_id": user_id, "image_id": image_id}),
            "favorite image",
        )
        return rows[0] if rows else None

    def remove_favorite(self, user_id: str, image_id: str) -> int:
        """Remove a favourite and return the number of rows deleted."""
        rows = self._execute(
            self.client.table("favorites")
            .delete()
            .eq("profile_id", user_id)
            .eq("image_id", image_id),
            "unfavorite image",
        )
        return len(rows)

    def list_favorite_image_ids(self, user_id: str) -> list[str]:
        rows = self._execute(
            self.client.table("favorites").select("image_id").eq("profile_id", user_id),
            "fetch favorites",
        )
        return [row["image_id"] for row in rows]

    # ------------------------------------------------------------------
    # Schema helpers.
    # ------------------------------------------------------------------

    def rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        """Call a Postgres function through PostgREST.

        Raises:
            UpstreamUnavailableError: With the Postgres error code attached.
        """
        return self._execute(self.client.rpc(function, params or {}), f"call {function}")

    def column_exists(self, table: str, column: str) -> bool:
        """Check whether *table* has *column* by selecting it.

        Raises:
            UpstreamUnavailableError: For failures other than an undefined
                column.
        """
        try:
            self._execute(self.client.table(table).select(column).limit(1), f"probe {table}")
        except UpstreamUnavailableError as e:
            if e.code == UNDEFINED_COLUMN:
                return False
            raise
        return True
