"""Trigger word detection for LoRA models.

A LoRA fine-tune only activates when its trigger word appears in the prompt.
Model authors usually mention the word somewhere in the Replicate model
description, in one of a handful of phrasings.  This module scans for those
phrasings and falls back to the one trigger word known in advance.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

logger = logging.getLogger(__name__)

KNOWN_HEADSHOTS_MODEL = "thomisont/betterthanheadshots-tjt"
KNOWN_HEADSHOTS_TRIGGER = "BTHEADSHOTS"

# Checked in order; the first match wins.
_TRIGGER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"trigger word is (\w+)", re.IGNORECASE),
    re.compile(r"trigger word: (\w+)", re.IGNORECASE),
    re.compile(r'trigger word "([^"]+)"', re.IGNORECASE),
    re.compile(r'Use the token "([^"]+)"', re.IGNORECASE),
    re.compile(r'Use token "([^"]+)"', re.IGNORECASE),
    re.compile(r'add "([^"]+)" to your prompt', re.IGNORECASE),
)


def split_replicate_id(replicate_id: str) -> tuple[str, str] | None:
    """Split ``owner/name:version`` into ``("owner/name", "version")``.

    Returns:
        The two halves, or ``None`` if the id does not contain exactly one
        colon.
    """
    parts = replicate_id.split(":")
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def known_trigger_word(model_ref: str) -> str | None:
    """Return the trigger word implied by the model name alone, if any."""
    if "btheadshots" in model_ref.lower() or model_ref == KNOWN_HEADSHOTS_MODEL:
        return KNOWN_HEADSHOTS_TRIGGER
    return None


def extract_trigger_word(model_ref: str, description: str | None) -> str | None:
    """Find a trigger word in a model description.

    Args:
        model_ref: ``owner/name`` of the model (version optional).
        description: Free-text model description; may be ``None``.

    Returns:
        The trigger word, or ``None`` if neither the description nor the
        model name reveals one.
    """
    text = description or ""
    for pattern in _TRIGGER_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1)
    return known_trigger_word(model_ref.split(":")[0])


def resolve_trigger_word(
    replicate_id: str,
    describe: Callable[[str], str | None],
) -> str | None:
    """Look up a model description and extract its trigger word.

    Args:
        replicate_id: Full ``owner/name:version`` reference.
        describe: Callable returning the description for ``owner/name``.
            It may raise; the error is logged and only the model-name
            fallback is applied.

    Returns:
        The trigger word, or ``None``.
    """
    split = split_replicate_id(replicate_id)
    if split is None:
        logger.error(f"Invalid replicate id format: {replicate_id}")
        return None
    model_ref, _version = split

    try:
        description = describe(model_ref)
    except Exception as e:
        logger.error(f"Could not fetch description for {model_ref}: {e}")
        return KNOWN_HEADSHOTS_TRIGGER if model_ref == KNOWN_HEADSHOTS_MODEL else None

    if description is None:
        return None

    word = extract_trigger_word(model_ref, description)
    if word:
        logger.info(f"Found trigger word for {replicate_id}: {word}")
    return word
