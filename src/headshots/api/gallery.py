"""Public gallery helpers for the Headshots API.

The gallery lists the newest public images together with the username of
each owner.  Usernames live in a separate ``profiles`` table, so the route
collects the distinct owner ids, looks them up in chunks (see
:meth:`headshots.core.store.SupabaseStore.get_usernames`) and merges the
result back with :func:`enrich_with_usernames`.

Profile lookups are allowed to fail: the gallery is still useful with
placeholder names, so missing usernames become :data:`UNKNOWN_USER`.
"""

from __future__ import annotations

from collections.abc import Mapping

UNKNOWN_USER = "Unknown User"


def unique_owner_ids(images: list[dict]) -> list[str]:
    """Return the distinct ``owner_id`` values in first-seen order.

    Args:
        images: Image rows.

    Returns:
        Owner ids without duplicates; rows without an owner are skipped.
    """
    seen: dict[str, None] = {}
    for image in images:
        owner_id = image.get("owner_id")
        if owner_id:
            seen.setdefault(owner_id, None)
    return list(seen)


def enrich_with_usernames(images: list[dict], usernames: Mapping[str, str]) -> list[dict]:
    """Attach a ``username`` key to copies of the image rows.

    Args:
        images: Image rows, newest first.
        usernames: Mapping of profile id to username.

    Returns:
        New row dictionaries in the original order.
    """
    return [
        {**image, "username": usernames.get(image.get("owner_id")) or UNKNOWN_USER}
        for image in images
    ]
