"""Replicate prediction client for the Headshots service.

This module provides :class:`GenerationClient`, the only place the service
talks to the Replicate API.  It does three things:

- **Input shaping** — the resolved parameter map is combined with the prompt
  and a few fallbacks Replicate models expect to be present.
- **Prediction** — the model is run synchronously through
  ``replicate.Client.run``.
- **Output normalisation** — depending on the model and SDK version the
  output is a list of URL strings, a list of ``FileOutput`` objects, a single
  item or an iterator.  It always comes back as ``list[str]``.

Any failure (missing token, HTTP error, model error, empty output) becomes an
:class:`~headshots.core.errors.UpstreamUnavailableError` carrying the
underlying message.  Nothing is retried.

Usage
-----
::

    client = GenerationClient(config.replicate_api_token, config.default_model_id)
    urls = client.generate("studio headshot", {"width": 1024, "height": 1024})
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import replicate

from headshots.core.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

# Values sent when a key is missing (or None) after resolution.
PREDICTION_FALLBACKS: dict[str, Any] = {
    "output_format": "png",
    "width": 1024,
    "height": 1024,
    "aspect_ratio": "1:1",
    "num_outputs": 1,
    "num_inference_steps": 30,
    "guidance_scale": 7.5,
}


def build_prediction_input(prompt: str, parameters: Mapping[str, Any]) -> dict[str, Any]:
    """Build the ``input`` payload for a Replicate prediction.

    The validated prompt always wins over a ``prompt`` key in *parameters*.

    Args:
        prompt: Validated user prompt.
        parameters: Resolved parameter map.

    Returns:
        New dictionary ready to send to Replicate.
    """
    payload = dict(parameters)
    payload["prompt"] = prompt
    for key, fallback in PREDICTION_FALLBACKS.items():
        if payload.get(key) is None:
            payload[key] = fallback
    return payload


def _to_url(item: Any) -> str | None:
    if isinstance(item, str):
        return item
    url = getattr(item, "url", None)
    return str(url) if url else None


def normalize_output(output: Any) -> list[str]:
    """Convert a Replicate ``run`` result into a list of image URLs.

    Args:
        output: Value returned by ``replicate.Client.run``.

    Returns:
        Image URLs in output order.  Items that are neither strings nor
        objects with a ``url`` attribute are dropped.
    """
    if output is None:
        return []
    if isinstance(output, (str, bytes)) or hasattr(output, "url"):
        items = [output]
    else:
        try:
            items = list(output)
        except TypeError:
            items = [output]
    return [url for url in (_to_url(item) for item in items) if url]


class GenerationClient:
    """Runs text-to-image predictions on Replicate.

    Attributes:
        default_model_id (str):
            Model reference used when :meth:`generate` is called without one.
    """

    def __init__(self, api_token: str, default_model_id: str) -> None:
        """Initialise the client.

        Args:
            api_token: Replicate API token.  An empty token is accepted here
                and reported on the first call.
            default_model_id: ``owner/name:version`` of the fallback model.
        """
        self._api_token = api_token
        self.default_model_id = default_model_id
        self._client: replicate.Client | None = None

    @property
    def client(self) -> replicate.Client:
        """The underlying SDK client, created on first use.

        Raises:
            UpstreamUnavailableError: If no API token is configured.
        """
        if not self._api_token:
            raise UpstreamUnavailableError("Missing Replicate API token", service="replicate")
        if self._client is None:
            self._client = replicate.Client(api_token=self._api_token)
        return self._client

    def generate(
        self,
        prompt: str,
        parameters: Mapping[str, Any],
        model_id: str | None = None,
    ) -> list[str]:
        """Run a prediction and return the generated image URLs.

        Args:
            prompt: Validated prompt.
            parameters: Resolved parameter map.
            model_id: Replicate model reference; defaults to
                :attr:`default_model_id`.

        Returns:
            Non-empty list of image URLs.

        Raises:
            UpstreamUnavailableError: If Replicate fails or returns no images.
        """
        model_ref = model_id or self.default_model_id
        payload = build_prediction_input(prompt, parameters)
        logger.info(
            f"Running {model_ref}: {payload['width']}x{payload['height']}, "
            f"format={payload['output_format']}, outputs={payload['num_outputs']}"
        )

        client = self.client
        try:
            output = client.run(model_ref, input=payload)
        except Exception as e:
            logger.error(f"Replicate prediction failed for {model_ref}: {e}")
            raise UpstreamUnavailableError(f"Replicate API error: {e}", service="replicate") from e

        urls = normalize_output(output)
        if not urls:
            logger.error(f"Unexpected output format from Replicate: {output!r}")
            raise UpstreamUnavailableError(
                "Unexpected output format from Replicate API", service="replicate"
            )

        logger.info(f"{len(urls)} image(s) generated with {model_ref}")
        return urls

    def fetch_model_description(self, model_ref: str) -> str | None:
        """Return the Replicate description of ``owner/name``.

        Args:
            model_ref: Model reference without a version.

        Returns:
            The description text, or ``None`` if the model has none.

        Raises:
            UpstreamUnavailableError: If the lookup fails.
        """
        client = self.client
        try:
            model = client.models.get(model_ref)
        except Exception as e:
            raise UpstreamUnavailableError(
                f"Failed to fetch model info for {model_ref}: {e}", service="replicate"
            ) from e
        return getattr(model, "description", None)
