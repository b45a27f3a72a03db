"""Generation parameter resolution for the Headshots service.

Every generation call receives a single, fully populated parameter map built
from four sources.  Later sources win key by key (a shallow merge)::

    BUILTIN_DEFAULTS  <  model defaults  <  user custom  <  request overrides

After merging, an ``aspect_ratio`` of the form ``"W:H"`` (anything except the
literal ``"custom"``) replaces ``width`` and ``height`` with dimensions derived
from a pixel budget:

1. The budget is 250,000 px when ``megapixels == "0.25"``, otherwise
   1,000,000 px.
2. ``height = round(sqrt(budget / ratio))`` and ``width = round(height * ratio)``
   (rounding half up).
3. Both are floored to a multiple of 8 and clamped, independently, to
   [512, 1536].

Four ratios bypass the formula and use known-good sizes from
:data:`PRESET_DIMENSIONS` regardless of ``megapixels``.

An ``aspect_ratio`` that cannot be parsed is ignored: the merged ``width`` and
``height`` pass through untouched and no error is raised.

Everything here is pure.  Inputs are never mutated, nothing is cached and no
randomness is introduced, so the functions are safe to call concurrently.

Usage
-----
::

    params = resolve_parameters(
        "professional headshot, grey backdrop",
        model_defaults={"guidance_scale": 7.5},
        user_custom={"guidance_scale": 9},
        overrides={"aspect_ratio": "3:2"},
    )
    params["guidance_scale"]              # 9
    params["width"], params["height"]     # (1224, 816)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

from headshots.core.errors import InvalidInputError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Built-in fallback values.  Every resolved map starts from these.
# ---------------------------------------------------------------------------
BUILTIN_DEFAULTS: dict[str, Any] = {
    "negative_prompt": "low quality, bad anatomy, blurry, disfigured, ugly",
    "width": 1024,
    "height": 1024,
    "num_outputs": 1,
    "scheduler": "K_EULER",
    "num_inference_steps": 30,
    "guidance_scale": 7.5,
}

# ---------------------------------------------------------------------------
# Dimension policy.
# ---------------------------------------------------------------------------
CUSTOM_ASPECT_RATIO = "custom"
QUARTER_MEGAPIXEL = "0.25"
PIXEL_BUDGETS: dict[str, int] = {
    QUARTER_MEGAPIXEL: 250_000,
}
DEFAULT_PIXEL_BUDGET = 1_000_000
DIMENSION_MULTIPLE = 8
MIN_DIMENSION = 512
MAX_DIMENSION = 1536

# Ratios whose computed size is replaced by a fixed (width, height) pair.
PRESET_DIMENSIONS: dict[str, tuple[int, int]] = {
    "16:9": (1024, 576),
    "9:16": (576, 1024),
    "4:3": (1024, 768),
    "3:4": (768, 1024),
}


def validate_prompt(prompt: Any) -> str:
    """Return the trimmed prompt, or raise if it is missing or blank.

    Args:
        prompt: Prompt value as received from the caller.

    Returns:
        The prompt with surrounding whitespace removed.

    Raises:
        InvalidInputError: If the prompt is not a string or is blank.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidInputError("A valid prompt is required")
    return prompt.strip()


def merge_parameters(*sources: Mapping[str, Any] | None) -> dict[str, Any]:
    """Shallow-merge parameter maps on top of :data:`BUILTIN_DEFAULTS`.

    ``None`` sources are skipped, as are ``None`` values inside a source, so
    an explicit null never replaces a lower-precedence value.  Later sources
    win for every other key.

    Args:
        *sources: Parameter maps in increasing order of precedence.

    Returns:
        A new dictionary; none of the inputs are modified.
    """
    merged = dict(BUILTIN_DEFAULTS)
    for source in sources:
        if source:
            merged.update((key, value) for key, value in source.items() if value is not None)
    return merged


def parse_aspect_ratio(value: Any) -> tuple[float, float] | None:
    """Parse a ``"W:H"`` string into its two numeric parts.

    Args:
        value: Candidate aspect ratio.

    Returns:
        ``(width_part, height_part)``, or ``None`` when the value is not a
        string with exactly one colon separating two finite positive numbers.

    Note:
        Each side is converted with :func:`float`, which is more lenient than
        a strict decimal parser: surrounding whitespace, digit-group
        underscores (``"1_6:9"``) and non-ASCII digits are accepted, so such
        ratios still derive dimensions.
    """
    if not isinstance(value, str):
        return None
    parts = value.split(":")
    if len(parts) != 2:
        return None
    try:
        width_part, height_part = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(width_part) and math.isfinite(height_part)):
        return None
    if width_part <= 0 or height_part <= 0:
        return None
    return width_part, height_part


def pixel_budget(megapixels: Any) -> int:
    """Return the target pixel count for a ``megapixels`` setting."""
    if isinstance(megapixels, str):
        return PIXEL_BUDGETS.get(megapixels, DEFAULT_PIXEL_BUDGET)
    return DEFAULT_PIXEL_BUDGET


def _round_half_up(value: float) -> int:
    # Half up, unlike round()'s half-to-even.
    return math.floor(value + 0.5)


def _snap(value: int) -> int:
    floored = (value // DIMENSION_MULTIPLE) * DIMENSION_MULTIPLE
    return min(max(floored, MIN_DIMENSION), MAX_DIMENSION)


def compute_dimensions(width_part: float, height_part: float, budget: int) -> tuple[int, int]:
    """Compute ``(width, height)`` for a ratio and pixel budget.

    The result is floored to a multiple of 8 and clamped to
    [``MIN_DIMENSION``, ``MAX_DIMENSION``].  Clamping is applied to each side
    independently, so extreme ratios lose exact proportions.

    Args:
        width_part: Left side of the ratio.
        height_part: Right side of the ratio.
        budget: Target ``width * height`` before rounding.

    Returns:
        Tuple of ``(width, height)`` in pixels.
    """
    ratio = width_part / height_part
    height = _round_half_up(math.sqrt(budget / ratio))
    width = _round_half_up(height * ratio)
    return _snap(width), _snap(height)


def derive_dimensions(aspect_ratio: Any, megapixels: Any = None) -> tuple[int, int] | None:
    """Derive pixel dimensions for an aspect ratio, or ``None`` to keep the merged ones.

    The preset table is consulted first; only ratios missing from it go
    through :func:`compute_dimensions`.

    Args:
        aspect_ratio: ``"W:H"`` string, ``"custom"`` or anything else.
        megapixels: ``"0.25"`` for a quarter-megapixel budget; anything else
            means one megapixel.

    Returns:
        ``(width, height)``, or ``None`` when the ratio is ``"custom"``,
        absent or malformed.
    """
    if aspect_ratio is None or aspect_ratio == CUSTOM_ASPECT_RATIO:
        return None

    parsed = parse_aspect_ratio(aspect_ratio)
    if parsed is None:
        logger.debug(f"Ignoring unparseable aspect_ratio {aspect_ratio!r}")
        return None

    preset = PRESET_DIMENSIONS.get(aspect_ratio)
    if preset is not None:
        return preset

    return compute_dimensions(*parsed, pixel_budget(megapixels))


def resolve_parameters(
    prompt: str,
    model_defaults: Mapping[str, Any] | None = None,
    user_custom: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Produce the parameter map for one generation call.

    Args:
        prompt: The user prompt.  Only validated here; it is never part of
            the dimension logic and is not copied into the result.
        model_defaults: Default parameters of the selected model.
        user_custom: The caller's saved parameters for that model.
        overrides: Parameters sent with the request.

    Returns:
        The merged map, with ``width`` and ``height`` replaced when an
        ``aspect_ratio`` could be applied.

    Raises:
        InvalidInputError: If ``prompt`` is missing or blank.
    """
    validate_prompt(prompt)

    resolved = merge_parameters(model_defaults, user_custom, overrides)

    dimensions = derive_dimensions(resolved.get("aspect_ratio"), resolved.get("megapixels"))
    if dimensions is not None:
        resolved["width"], resolved["height"] = dimensions
        logger.debug(
            f"Derived {dimensions[0]}x{dimensions[1]} for aspect_ratio "
            f"{resolved['aspect_ratio']} (megapixels={resolved.get('megapixels')})"
        )

    return resolved
