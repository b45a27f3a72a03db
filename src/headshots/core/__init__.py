"""Core functionality for headshot generation.

This module provides the core components of the Headshots service:

- **resolve_parameters**: Merges parameter sources and derives image dimensions
- **GenerationClient**: Thin wrapper over the Replicate SDK
- **SupabaseStore**: Thin wrapper over the Supabase SDK (rows, auth, RPC)
- **HeadshotsConfig**: Configuration management using Pydantic Settings
- **config**: Global configuration instance (loads from environment variables)

Architecture Overview
---------------------
The core module follows a layered architecture:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with HEADSHOTS_ in .env files

2. **Parameter Layer** (parameters.py):
   - Pure, stateless merge of built-in, model, user and request parameters
   - Aspect-ratio to pixel-dimension derivation with a preset table

3. **Service Layer** (generation.py, store.py, schema.py):
   - Replicate prediction calls and output normalisation
   - Supabase row access under the caller's row-level security
   - Best-effort schema maintenance for the LoRA registry

4. **Support Utilities**:
   - errors.py: Error taxonomy shared by every layer
   - trigger_words.py: LoRA trigger word detection

Usage Example
-------------
::

    from headshots.core import GenerationClient, config, resolve_parameters

    params = resolve_parameters(
        "corporate headshot, studio lighting",
        model_defaults={"guidance_scale": 7.5},
        overrides={"aspect_ratio": "3:2"},
    )
    client = GenerationClient(config.replicate_api_token, config.default_model_id)
    urls = client.generate("corporate headshot, studio lighting", params)
"""

from headshots.core.config import HeadshotsConfig, config
from headshots.core.generation import GenerationClient
from headshots.core.parameters import resolve_parameters
from headshots.core.store import SupabaseStore

__all__ = [
    "GenerationClient",
    "HeadshotsConfig",
    "SupabaseStore",
    "config",
    "resolve_parameters",
]
