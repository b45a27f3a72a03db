"""Headshots - AI headshot generation, gallery and favourites service."""

__version__ = "0.1.0"

from headshots.core.config import HeadshotsConfig, config
from headshots.core.parameters import resolve_parameters

__all__ = [
    "HeadshotsConfig",
    "config",
    "resolve_parameters",
]
