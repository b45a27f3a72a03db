"""Headshots — FastAPI Application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
The service is stateless glue between two hosted platforms:

- **Image generation** runs on Replicate through
  :class:`~headshots.core.generation.GenerationClient`, created once at
  start-up and stored on ``app.state``.
- **Persistence and auth** live in Supabase.  A
  :class:`~headshots.core.store.SupabaseStore` is built per request with the
  caller's bearer token so row-level security applies.
- **Parameter resolution** is the pure
  :func:`~headshots.core.parameters.resolve_parameters`.
- **Errors** raised anywhere as
  :class:`~headshots.core.errors.HeadshotsError` are turned into
  ``{"detail": ...}`` JSON responses by one exception handler.

Handlers are plain ``def`` functions: both SDKs are blocking, so FastAPI
runs them in its threadpool.

Endpoints
---------
========  ===================================  ===============================
Method    Path                                 Purpose
========  ===================================  ===============================
GET       ``/api/health``                      Liveness and configuration
POST      ``/api/generate``                    Generate images
POST      ``/api/parameters/resolve``          Preview resolved parameters
GET       ``/api/lora-models``                 Active LoRA models
POST      ``/api/lora-models``                 Save custom parameters
POST      ``/api/images``                      Save a generated image
GET       ``/api/images``                      Caller's favourited images
PATCH     ``/api/images/{id}``                 Update own image
DELETE    ``/api/images/{id}``                 Delete own image
POST      ``/api/favorites``                   Favourite an image
DELETE    ``/api/favorites``                   Remove a favourite
GET       ``/api/gallery``                     Public gallery
POST      ``/api/admin/trigger-word-column``   Schema maintenance
========  ===================================  ===============================

Usage
-----
CLI (installed entry point)::

    headshots

Direct invocation::

    python -m headshots.api.main
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from headshots import __version__
from headshots.api.dependencies import (
    StoreFactory,
    authenticate,
    bearer_token,
    get_config,
    get_generation_client,
    get_store_factory,
)
from headshots.api.gallery import enrich_with_usernames, unique_owner_ids
from headshots.api.models import (
    CustomParametersRequest,
    FavoriteRequest,
    GenerateRequest,
    SaveImageRequest,
    UpdateImageRequest,
)
from headshots.core.config import HeadshotsConfig, config
from headshots.core.errors import (
    ConflictError,
    HeadshotsError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamUnavailableError,
)
from headshots.core.generation import GenerationClient
from headshots.core.parameters import resolve_parameters, validate_prompt
from headshots.core.schema import ensure_trigger_word_column
from headshots.core.store import SupabaseStore
from headshots.core.trigger_words import resolve_trigger_word

logger = logging.getLogger(__name__)

STANDARD_MODEL_NAME = "Standard SDXL Model"

# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the shared generation client on startup.

    The Replicate SDK client itself is created lazily on first use, so a
    missing token does not prevent the service from starting.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    app.state.generation_client = GenerationClient(
        config.replicate_api_token, config.default_model_id
    )
    if not config.generation_configured:
        logger.warning("Replicate API token is not set; generation will fail.")
    if not config.store_configured:
        logger.warning("Supabase credentials are not set; data store calls will fail.")
    logger.info("GenerationClient initialised.")

    yield


app = FastAPI(
    title="Headshots",
    description="AI headshot generation with a shared public gallery.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HeadshotsError)
async def handle_headshots_error(request: Request, exc: HeadshotsError) -> JSONResponse:
    """Translate service errors into JSON responses with their status code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _resolve_generation(
    req: GenerateRequest,
    token: str | None,
    store_factory: StoreFactory,
) -> tuple[str, str | None, str, dict[str, Any]]:
    """Validate the prompt and resolve model and parameters for a request.

    An unknown or inactive ``lora_id`` falls back to the standard model.
    The caller's saved parameters only apply when a LoRA model is selected
    and a token is present.

    Returns:
        Tuple of ``(prompt, replicate_model_id or None, model_name, parameters)``.
    """
    prompt = validate_prompt(req.prompt)

    model_id: str | None = None
    model_name = STANDARD_MODEL_NAME
    model_defaults: dict[str, Any] | None = None
    user_custom: dict[str, Any] | None = None

    if req.lora_id:
        store = store_factory(token)
        lora = store.get_lora_model(req.lora_id)
        if lora:
            model_id = lora["replicate_id"]
            model_name = lora.get("name") or model_id
            model_defaults = lora.get("default_parameters") or None
            if token:
                user = store.get_user(token)
                user_custom = store.get_user_custom_parameters(user.id, req.lora_id)
            logger.info(f"Using LoRA model: {model_name} ({model_id})")
        else:
            logger.warning(f"LoRA model {req.lora_id} not found or inactive; using default model")

    parameters = resolve_parameters(
        prompt,
        model_defaults=model_defaults,
        user_custom=user_custom,
        overrides=req.parameters.to_overrides(),
    )
    return prompt, model_id, model_name, parameters


def _parse_model_parameters(raw: dict[str, Any] | str | None) -> dict[str, Any]:
    """Accept model parameters as an object or JSON text; anything else is ``{}``."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Could not parse model_parameters; storing empty object")
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _require_owner(store: SupabaseStore, image_id: str, user_id: str, action: str) -> None:
    """Raise unless *user_id* owns the image.

    Raises:
        NotFoundError: If the image does not exist or is not visible.
        PermissionDeniedError: If another user owns it.
    """
    owner_id = store.get_image_owner(image_id)
    if owner_id is None:
        raise NotFoundError("Image not found")
    if owner_id != user_id:
        logger.warning(f"User {user_id} tried to {action} image {image_id} owned by {owner_id}")
        raise PermissionDeniedError(f"Unauthorized: You can only {action} your own images")


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@app.get("/api/health")
def health(settings: HeadshotsConfig = Depends(get_config)) -> dict:
    """Return service status and which upstream services are configured."""
    return {
        "status": "ok",
        "version": __version__,
        "generation_configured": settings.generation_configured,
        "store_configured": settings.store_configured,
    }


@app.post("/api/generate")
def generate_images(
    req: GenerateRequest,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
    generator: GenerationClient = Depends(get_generation_client),
) -> dict:
    """Generate images for a prompt.

    This endpoint:

    1. Validates the prompt.
    2. Looks up the LoRA model (if any) and the caller's saved parameters.
    3. Resolves the final parameter map.
    4. Runs the prediction on Replicate.

    Returns:
        Dictionary with ``image_urls``, ``image_url`` (first URL),
        ``model_id``, ``model_name`` and the resolved ``parameters``.

    Raises:
        InvalidInputError: 400 for a blank prompt.
        UpstreamUnavailableError: 502 if Replicate or Supabase fails.
    """
    prompt, model_id, model_name, parameters = _resolve_generation(req, token, store_factory)

    image_urls = generator.generate(prompt, parameters, model_id)

    return {
        "image_urls": image_urls,
        "image_url": image_urls[0],
        "model_id": model_id or generator.default_model_id,
        "model_name": model_name,
        "parameters": parameters,
    }


@app.post("/api/parameters/resolve")
def preview_parameters(
    req: GenerateRequest,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
    generator: GenerationClient = Depends(get_generation_client),
) -> dict:
    """Return the parameters ``POST /api/generate`` would use, without generating."""
    _prompt, model_id, model_name, parameters = _resolve_generation(req, token, store_factory)
    return {
        "model_id": model_id or generator.default_model_id,
        "model_name": model_name,
        "parameters": parameters,
    }


@app.get("/api/lora-models")
def list_lora_models(
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
    generator: GenerationClient = Depends(get_generation_client),
) -> dict:
    """List active LoRA models.

    Models without a trigger word get one detected from their Replicate
    description, which is then saved (best effort).  When the caller is
    signed in, each model is enriched with the caller's access row
    (``custom_parameters``, ``is_owner``, ``can_use``).

    Store failures do not produce an error status: the response carries an
    empty ``models`` list and an ``error`` message instead.
    """
    store = store_factory(token)
    try:
        models = store.list_active_lora_models()
    except UpstreamUnavailableError:
        return {"models": [], "error": "Failed to fetch LoRA models"}

    if not models:
        logger.warning("No LoRA models found in database")
        return {"models": [], "message": "No models available"}

    for model in models:
        if model.get("trigger_word") or not model.get("replicate_id"):
            continue
        trigger_word = resolve_trigger_word(model["replicate_id"], generator.fetch_model_description)
        if trigger_word:
            model["trigger_word"] = trigger_word
            store.update_trigger_word(model["id"], trigger_word)

    user_id = None
    if token:
        try:
            user_id = store.get_user(token).id
        except HeadshotsError as e:
            logger.info(f"Listing models anonymously: {e}")

    if user_id:
        try:
            access_rows = store.list_user_lora_access(user_id)
        except UpstreamUnavailableError:
            access_rows = []
        access_by_model = {row["lora_id"]: row for row in access_rows}
        models = [
            {
                **model,
                "custom_parameters": access_by_model[model["id"]].get("custom_parameters"),
                "is_owner": access_by_model[model["id"]].get("is_owner"),
                "can_use": access_by_model[model["id"]].get("can_use"),
            }
            if model["id"] in access_by_model
            else model
            for model in models
        ]

    return {"models": models, "user_id": user_id}


@app.post("/api/lora-models")
def save_custom_parameters(
    req: CustomParametersRequest,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Save the caller's custom parameters for a LoRA model.

    Raises:
        HTTPException: 400 if ``lora_id`` is missing.
        AuthenticationError: 401 without a valid token.
    """
    if not req.lora_id:
        raise HTTPException(status_code=400, detail="LoRA model ID is required")

    store = store_factory(token)
    user = authenticate(store, token)
    access = store.save_custom_parameters(user.id, req.lora_id, req.custom_parameters)
    logger.info(f"Saved custom parameters for LoRA model {req.lora_id}")
    return {"success": True, "access": access}


@app.post("/api/images")
def save_image(
    req: SaveImageRequest,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Save a generated image for the caller and favourite it.

    The caller's profile is created first if needed.  Auto-favouriting is
    best effort and never fails the request.

    Raises:
        HTTPException: 400 if ``image_url`` or ``prompt`` is missing.
        AuthenticationError: 401 without a valid token.
    """
    if not req.image_url or not req.prompt:
        raise HTTPException(status_code=400, detail="Image URL and prompt are required")

    token = token or req.auth_token
    store = store_factory(token)
    user = authenticate(store, token)
    store.ensure_profile(user.id, getattr(user, "email", None))

    image = store.insert_image(
        {
            "owner_id": user.id,
            "image_url": req.image_url,
            "title": req.title or "Generated Image",
            "description": req.description or "",
            "prompt": req.prompt,
            "is_public": req.is_public,
            "model_parameters": _parse_model_parameters(req.model_parameters),
        }
    )
    logger.info(f"Image saved: {image.get('id')}")

    try:
        store.add_favorite(user.id, image["id"])
    except UpstreamUnavailableError as e:
        logger.info(f"Could not auto-favorite image {image.get('id')}: {e}")

    return {"success": True, "image": image}


@app.get("/api/images")
def list_favorite_images(
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Return the caller's favourited images, newest first."""
    store = store_factory(token)
    user = authenticate(store, token)

    image_ids = store.list_favorite_image_ids(user.id)
    if not image_ids:
        return {"images": []}
    return {"images": store.get_images(image_ids)}


@app.patch("/api/images/{image_id}")
def update_image(
    image_id: str,
    req: UpdateImageRequest,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Update the title, description or visibility of the caller's image.

    Raises:
        HTTPException: 400 if no field is supplied.
        NotFoundError: 404 if the image does not exist.
        PermissionDeniedError: 403 if the caller does not own it.
    """
    store = store_factory(token)
    user = authenticate(store, token)

    changes = req.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    _require_owner(store, image_id, user.id, "update")
    image = store.update_image(image_id, changes)
    return {"success": True, "image": image}


@app.delete("/api/images/{image_id}")
def delete_image(
    image_id: str,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Delete the caller's image together with every favourite of it."""
    store = store_factory(token)
    user = authenticate(store, token)

    _require_owner(store, image_id, user.id, "delete")
    store.delete_image(image_id)
    return {"success": True}


@app.post("/api/favorites")
def add_favorite(
    req: FavoriteRequest,
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Favourite an image.

    Raises:
        HTTPException: 400 if ``image_id`` is missing.
        NotFoundError: 404 if the image does not exist.
        ConflictError: 400 if it is already favourited.
    """
    if not req.image_id:
        raise HTTPException(status_code=400, detail="Image ID is required")

    token = token or req.auth_token
    store = store_factory(token)
    user = authenticate(store, token)
    store.ensure_profile(user.id, getattr(user, "email", None))

    if not store.image_exists(req.image_id):
        raise NotFoundError("Image not found")
    if store.find_favorite(user.id, req.image_id):
        raise ConflictError("Image is already favorited")

    favorite = store.add_favorite(user.id, req.image_id)
    return {"success": True, "favorite": favorite}


@app.delete("/api/favorites")
def remove_favorite(
    image_id: str | None = Query(default=None),
    token: str | None = Depends(bearer_token),
    store_factory: StoreFactory = Depends(get_store_factory),
) -> dict:
    """Remove a favourite; ``removed`` is the number of rows deleted."""
    if not image_id:
        raise HTTPException(status_code=400, detail="Image ID is required")

    store = store_factory(token)
    user = authenticate(store, token)
    removed = store.remove_favorite(user.id, image_id)
    return {"success": True, "removed": removed}


@app.get("/api/gallery")
def public_gallery(
    store_factory: StoreFactory = Depends(get_store_factory),
    settings: HeadshotsConfig = Depends(get_config),
) -> dict:
    """Return the newest public images with their owners' usernames.

    A failing profile lookup degrades to placeholder usernames.
    """
    store = store_factory(None)
    store.ping()

    images = store.list_public_images(limit=settings.gallery_limit)
    if not images:
        return {"images": []}

    try:
        usernames = store.get_usernames(
            unique_owner_ids(images), chunk_size=settings.profile_chunk_size
        )
    except UpstreamUnavailableError:
        usernames = {}

    return {"images": enrich_with_usernames(images, usernames)}


@app.post("/api/admin/trigger-word-column")
def migrate_trigger_word_column(
    key: str | None = Query(default=None),
    store_factory: StoreFactory = Depends(get_store_factory),
    settings: HeadshotsConfig = Depends(get_config),
) -> dict:
    """Ensure ``lora_models.trigger_word`` exists and seed the known model.

    Requires ``?key=`` to match the configured admin key; with no admin key
    configured the endpoint is disabled.
    """
    if not settings.admin_key or key != settings.admin_key:
        raise HTTPException(status_code=401, detail="Unauthorized access")

    report = ensure_trigger_word_column(store_factory(None))
    return report.to_dict()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~headshots.core.config.config`
    (``HEADSHOTS_SERVER_HOST``, ``HEADSHOTS_SERVER_PORT``,
    ``HEADSHOTS_LOG_LEVEL``).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``headshots`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "headshots.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
