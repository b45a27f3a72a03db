"""Pydantic request models for the Headshots API.

These models define the JSON schema for every API endpoint that accepts a
body.  FastAPI uses them for request validation, serialisation and OpenAPI
documentation.

Models
------
GenerationParameters
    Open-ended parameter map: the keys the resolver inspects are typed,
    anything else is passed through to the model untouched.
GenerateRequest
    Payload for ``POST /api/generate`` and ``POST /api/parameters/resolve``.
CustomParametersRequest
    Payload for ``POST /api/lora-models``.
SaveImageRequest
    Payload for ``POST /api/images``.
UpdateImageRequest
    Payload for ``PATCH /api/images/{id}``.
FavoriteRequest
    Payload for ``POST /api/favorites``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerationParameters(BaseModel):
    """Parameter overrides sent with a generation request.

    Only the keys that drive dimension derivation are declared.  Every other
    key (``seed``, ``scheduler``, ``lora_scale``, ...) is kept as an extra
    field and forwarded unchanged.

    Attributes:
        aspect_ratio: ``"W:H"`` ratio, or ``"custom"`` to keep ``width`` and
            ``height`` as given.  Left untyped so that a malformed value
            reaches the resolver, which ignores it.
        megapixels: ``"1"`` or ``"0.25"``.  Numbers are accepted and
            converted to their string form.
        width: Image width in pixels.
        height: Image height in pixels.
    """

    model_config = ConfigDict(extra="allow")

    aspect_ratio: Any = Field(
        default=None,
        description="Aspect ratio such as '1:1' or '16:9', or 'custom'. "
        "Values that are not a valid ratio are ignored.",
    )
    megapixels: str | None = Field(
        default=None,
        description="Approximate megapixels: '1' or '0.25'.",
    )
    width: int | None = Field(
        default=None,
        description="Image width in pixels.",
    )
    height: int | None = Field(
        default=None,
        description="Image height in pixels.",
    )

    @field_validator("megapixels", mode="before")
    @classmethod
    def _megapixels_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def to_overrides(self) -> dict[str, Any]:
        """Return only the keys the caller actually sent, extras included."""
        return self.model_dump(exclude_unset=True)


class GenerateRequest(BaseModel):
    """Request body for ``POST /api/generate``.

    Attributes:
        prompt: Text prompt.  Validated by the resolver so that a blank
            prompt yields a 400 rather than a schema error.
        lora_id: Optional LoRA model id from ``GET /api/lora-models``.
        parameters: Parameter overrides.
    """

    prompt: str | None = Field(
        default=None,
        description="Text prompt (required, must not be blank).",
    )
    lora_id: str | None = Field(
        default=None,
        description="LoRA model id; omit to use the standard model.",
    )
    parameters: GenerationParameters = Field(
        default_factory=GenerationParameters,
        description="Parameter overrides; win over model and user defaults.",
    )


class CustomParametersRequest(BaseModel):
    """Request body for ``POST /api/lora-models``."""

    lora_id: str | None = Field(
        default=None,
        description="LoRA model id the parameters apply to.",
    )
    custom_parameters: dict[str, Any] = Field(
        default_factory=dict,
        description="Parameters to store for the caller and model.",
    )


class SaveImageRequest(BaseModel):
    """Request body for ``POST /api/images``.

    Attributes:
        image_url: URL returned by ``POST /api/generate``.
        prompt: Prompt the image was generated from.
        title: Display title; defaults to ``"Generated Image"``.
        description: Optional description.
        is_public: Whether the image appears in the public gallery.
        model_parameters: Parameters used for generation, as an object or a
            JSON string.
        auth_token: Access token, for clients that cannot set the
            ``Authorization`` header.
    """

    image_url: str | None = None
    prompt: str | None = None
    title: str | None = None
    description: str | None = None
    is_public: bool = False
    model_parameters: dict[str, Any] | str | None = None
    auth_token: str | None = None


class UpdateImageRequest(BaseModel):
    """Request body for ``PATCH /api/images/{id}``.

    Only the editable columns are accepted; unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    is_public: bool | None = None


class FavoriteRequest(BaseModel):
    """Request body for ``POST /api/favorites``."""

    image_id: str | None = Field(
        default=None,
        description="Id of the image to favourite.",
    )
    auth_token: str | None = Field(
        default=None,
        description="Access token, if not sent in the Authorization header.",
    )
