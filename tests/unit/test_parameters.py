"""Tests for headshots.core.parameters — generation parameter resolution.

Tests cover:
- Precedence of the four parameter sources.
- Preset dimensions for the four known ratios.
- Computed dimensions for other ratios at both pixel budgets.
- Flooring to multiples of 8 and clamping to [512, 1536].
- ``"custom"``, absent and malformed aspect ratios.
- Prompt validation.
- Purity: no input mutation, idempotence and concurrent use.
"""

from __future__ import annotations

import copy
from concurrent.futures import ThreadPoolExecutor

import pytest

from headshots.core.errors import InvalidInputError
from headshots.core.parameters import (
    BUILTIN_DEFAULTS,
    MAX_DIMENSION,
    MIN_DIMENSION,
    PRESET_DIMENSIONS,
    compute_dimensions,
    derive_dimensions,
    merge_parameters,
    parse_aspect_ratio,
    pixel_budget,
    resolve_parameters,
    _round_half_up,
    validate_prompt,
)

PROMPT = "professional headshot, grey backdrop"


# ---------------------------------------------------------------------------
# Precedence.
# ---------------------------------------------------------------------------


class TestPrecedence:
    """Later sources win key by key."""

    def test_builtin_defaults_when_nothing_given(self):
        """With no sources the result equals the built-in defaults."""
        assert resolve_parameters(PROMPT) == BUILTIN_DEFAULTS

    def test_user_custom_beats_model_defaults(self):
        """A saved user value overrides the model default."""
        result = resolve_parameters(
            PROMPT,
            model_defaults={"guidance_scale": 5},
            user_custom={"guidance_scale": 9},
        )
        assert result["guidance_scale"] == 9

    def test_model_defaults_used_without_user_custom(self):
        """Without a user value the model default applies."""
        result = resolve_parameters(PROMPT, model_defaults={"guidance_scale": 5})
        assert result["guidance_scale"] == 5

    def test_overrides_beat_everything(self):
        """Request overrides win over user and model values."""
        result = resolve_parameters(
            PROMPT,
            model_defaults={"num_inference_steps": 20},
            user_custom={"num_inference_steps": 40},
            overrides={"num_inference_steps": 50},
        )
        assert result["num_inference_steps"] == 50

    def test_override_after_user_value(self):
        """Built-in 7.5, user 9, override 5: the override is used."""
        result = resolve_parameters(
            PROMPT, user_custom={"guidance_scale": 9}, overrides={"guidance_scale": 5}
        )
        assert result["guidance_scale"] == 5

    def test_null_values_do_not_override(self):
        """A ``None`` value keeps the lower-precedence value for that key."""
        result = resolve_parameters(
            PROMPT,
            model_defaults={"guidance_scale": 5},
            user_custom={"guidance_scale": None},
            overrides={"width": None, "height": None},
        )
        assert result["guidance_scale"] == 5
        assert (result["width"], result["height"]) == (1024, 1024)

    def test_merge_is_shallow(self):
        """Nested values are replaced, not merged."""
        result = merge_parameters({"extra": {"a": 1, "b": 2}}, {"extra": {"a": 3}})
        assert result["extra"] == {"a": 3}

    def test_unknown_keys_pass_through(self):
        """Keys the resolver does not know about are kept."""
        result = resolve_parameters(PROMPT, overrides={"lora_scale": 0.8, "seed": 42})
        assert result["lora_scale"] == 0.8
        assert result["seed"] == 42

    def test_none_sources_are_skipped(self):
        """``None`` sources behave like empty maps."""
        assert merge_parameters(None, None, None) == BUILTIN_DEFAULTS

    def test_prompt_not_in_result(self):
        """The prompt is validated but not copied into the parameters."""
        assert "prompt" not in resolve_parameters(PROMPT)


# ---------------------------------------------------------------------------
# Dimensions.
# ---------------------------------------------------------------------------


class TestPresetDimensions:
    """The four preset ratios map to fixed sizes."""

    @pytest.mark.parametrize(
        ("ratio", "expected"),
        [
            ("16:9", (1024, 576)),
            ("9:16", (576, 1024)),
            ("4:3", (1024, 768)),
            ("3:4", (768, 1024)),
        ],
    )
    def test_preset(self, ratio, expected):
        """Preset ratios return their table entry."""
        result = resolve_parameters(PROMPT, overrides={"aspect_ratio": ratio})
        assert (result["width"], result["height"]) == expected

    def test_preset_ignores_megapixels(self):
        """The quarter-megapixel budget does not shrink preset sizes."""
        result = resolve_parameters(
            PROMPT, overrides={"aspect_ratio": "16:9", "megapixels": "0.25"}
        )
        assert (result["width"], result["height"]) == PRESET_DIMENSIONS["16:9"]

    def test_preset_overrides_explicit_dimensions(self):
        """A ratio replaces width and height sent alongside it."""
        result = resolve_parameters(
            PROMPT, overrides={"aspect_ratio": "4:3", "width": 640, "height": 640}
        )
        assert (result["width"], result["height"]) == (1024, 768)


class TestComputedDimensions:
    """Ratios outside the preset table go through the pixel budget."""

    def test_square_one_megapixel(self):
        """1:1 at one megapixel is 1000x1000."""
        result = resolve_parameters(PROMPT, overrides={"aspect_ratio": "1:1"})
        assert (result["width"], result["height"]) == (1000, 1000)

    def test_square_quarter_megapixel_clamped(self):
        """1:1 at 0.25 MP computes 496 and clamps up to 512."""
        result = resolve_parameters(
            PROMPT, overrides={"aspect_ratio": "1:1", "megapixels": "0.25"}
        )
        assert (result["width"], result["height"]) == (512, 512)

    def test_three_by_two(self):
        """3:2 at one megapixel."""
        assert derive_dimensions("3:2") == (1224, 816)

    def test_two_by_three(self):
        """2:3 is the transpose of 3:2."""
        assert derive_dimensions("2:3") == (816, 1224)

    def test_five_by_four(self):
        """5:4 at one megapixel."""
        assert derive_dimensions("5:4") == (1112, 888)

    def test_ultrawide(self):
        """21:9 and 9:21 stay within the clamp."""
        assert derive_dimensions("21:9") == (1528, 648)
        assert derive_dimensions("9:21") == (648, 1528)

    def test_extreme_ratio_is_clamped(self):
        """Each side is clamped independently for very wide ratios."""
        assert derive_dimensions("10:1") == (MAX_DIMENSION, MIN_DIMENSION)

    def test_decimal_ratio(self):
        """Ratio parts may be decimals."""
        assert derive_dimensions("1.5:1") == derive_dimensions("3:2")

    def test_megapixels_from_model_defaults(self):
        """``megapixels`` may come from any source."""
        result = resolve_parameters(
            PROMPT,
            model_defaults={"megapixels": "0.25"},
            overrides={"aspect_ratio": "2:1"},
        )
        assert result["height"] == MIN_DIMENSION

    @pytest.mark.parametrize("ratio", ["1:1", "3:2", "2:3", "5:4", "4:5", "21:9", "9:21"])
    def test_dimensions_are_multiples_of_eight(self, ratio):
        width, height = derive_dimensions(ratio)
        assert width % 8 == 0
        assert height % 8 == 0
        assert MIN_DIMENSION <= width <= MAX_DIMENSION
        assert MIN_DIMENSION <= height <= MAX_DIMENSION

    @pytest.mark.parametrize("ratio", ["1:1", "3:2", "2:3", "5:4", "4:5"])
    def test_area_close_to_budget(self, ratio):
        """Unclamped results stay within a few percent of one megapixel."""
        width, height = derive_dimensions(ratio)
        assert abs(width * height - 1_000_000) / 1_000_000 < 0.05

    @pytest.mark.parametrize("ratio", ["3:2", "2:3", "5:4", "4:5", "21:9"])
    def test_ratio_preserved(self, ratio):
        """Unclamped results keep the requested proportions closely."""
        w_part, h_part = (float(p) for p in ratio.split(":"))
        width, height = derive_dimensions(ratio)
        assert abs(width / height - w_part / h_part) < 0.03

    def test_rounding_is_half_up(self):
        """Halves round away from zero, not to the nearest even number."""
        assert _round_half_up(2.5) == 3
        assert _round_half_up(1031.5) == 1032
        assert _round_half_up(1030.4999) == 1030

    def test_compute_dimensions_exact_square(self):
        assert compute_dimensions(1, 1, 1026 * 1026) == (1024, 1024)


class TestPixelBudget:
    def test_quarter(self):
        assert pixel_budget("0.25") == 250_000

    @pytest.mark.parametrize("value", [None, "1", "2", 0.25, "abc"])
    def test_everything_else_is_one_megapixel(self, value):
        """Only the exact string '0.25' selects the small budget."""
        assert pixel_budget(value) == 1_000_000


class TestCustomAndMalformedRatios:
    """Dimensions pass through when no ratio can be applied."""

    def test_custom_keeps_dimensions(self):
        """``custom`` keeps the merged width and height."""
        result = resolve_parameters(
            PROMPT, overrides={"aspect_ratio": "custom", "width": 800, "height": 600}
        )
        assert (result["width"], result["height"]) == (800, 600)

    def test_custom_dimensions_not_snapped(self):
        """Custom sizes are not floored or clamped."""
        result = resolve_parameters(
            PROMPT, overrides={"aspect_ratio": "custom", "width": 333, "height": 2000}
        )
        assert (result["width"], result["height"]) == (333, 2000)

    def test_absent_ratio_keeps_dimensions(self):
        result = resolve_parameters(PROMPT, user_custom={"width": 768, "height": 1152})
        assert (result["width"], result["height"]) == (768, 1152)

    @pytest.mark.parametrize(
        "ratio", ["square", "16x9", "1:2:3", ":", "a:b", "0:1", "1:0", "-1:1", "inf:1", "nan:1", ""]
    )
    def test_malformed_ratio_ignored(self, ratio):
        """Unparseable ratios leave dimensions untouched without raising."""
        result = resolve_parameters(
            PROMPT, overrides={"aspect_ratio": ratio, "width": 900, "height": 700}
        )
        assert (result["width"], result["height"]) == (900, 700)
        assert result["aspect_ratio"] == ratio

    def test_non_string_ratio_ignored(self):
        result = resolve_parameters(PROMPT, overrides={"aspect_ratio": 1.5})
        assert (result["width"], result["height"]) == (1024, 1024)

    def test_parse_aspect_ratio(self):
        assert parse_aspect_ratio("16:9") == (16.0, 9.0)
        assert parse_aspect_ratio(" 3 : 2 ") == (3.0, 2.0)
        assert parse_aspect_ratio("3/2") is None

    def test_float_leniency(self):
        """Whitespace and digit-group underscores are accepted by the parser."""
        assert parse_aspect_ratio("1_6:9") == (16.0, 9.0)
        assert parse_aspect_ratio("\t3:2\n") == (3.0, 2.0)


# ---------------------------------------------------------------------------
# Prompt validation.
# ---------------------------------------------------------------------------


class TestPromptValidation:
    """Blank prompts are rejected before anything else happens."""

    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t", None, 42])
    def test_invalid_prompt_raises(self, prompt):
        with pytest.raises(InvalidInputError, match="A valid prompt is required"):
            resolve_parameters(prompt)

    def test_invalid_prompt_checked_before_ratio(self):
        """A blank prompt fails even when the parameters are fine."""
        with pytest.raises(InvalidInputError):
            resolve_parameters(" ", overrides={"aspect_ratio": "1:1"})

    def test_validate_prompt_strips(self):
        assert validate_prompt("  headshot  ") == "headshot"


# ---------------------------------------------------------------------------
# Purity.
# ---------------------------------------------------------------------------


class TestPurity:
    """The resolver has no side effects and no hidden state."""

    def test_inputs_not_mutated(self):
        model_defaults = {"guidance_scale": 5, "aspect_ratio": "3:2"}
        user_custom = {"width": 640}
        overrides = {"megapixels": "0.25"}
        snapshot = copy.deepcopy((model_defaults, user_custom, overrides))

        resolve_parameters(PROMPT, model_defaults, user_custom, overrides)

        assert (model_defaults, user_custom, overrides) == snapshot

    def test_builtin_defaults_not_mutated(self):
        before = dict(BUILTIN_DEFAULTS)
        result = resolve_parameters(PROMPT, overrides={"aspect_ratio": "16:9"})
        result["scheduler"] = "DDIM"
        assert BUILTIN_DEFAULTS == before

    def test_idempotent(self):
        """Identical inputs give identical outputs."""
        kwargs = {
            "model_defaults": {"guidance_scale": 5},
            "user_custom": {"aspect_ratio": "5:4"},
            "overrides": {"megapixels": "0.25"},
        }
        assert resolve_parameters(PROMPT, **kwargs) == resolve_parameters(PROMPT, **kwargs)

    def test_concurrent_calls(self):
        """Concurrent calls return the same result as sequential ones."""
        ratios = ["1:1", "3:2", "16:9", "custom", "square", "21:9"] * 20
        expected = [resolve_parameters(PROMPT, overrides={"aspect_ratio": r}) for r in ratios]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(lambda r: resolve_parameters(PROMPT, overrides={"aspect_ratio": r}), ratios)
            )

        assert results == expected
