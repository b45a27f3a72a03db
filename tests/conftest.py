"""Shared pytest fixtures for Headshots tests."""

from __future__ import annotations

from collections.abc import Generator
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from headshots.api.dependencies import get_config, get_generation_client, get_store_factory
from headshots.api.main import app
from headshots.core.config import HeadshotsConfig
from headshots.core.generation import GenerationClient
from headshots.core.store import SupabaseStore

TEST_MODEL_ID = "stability-ai/sdxl:0000"


@pytest.fixture
def test_config() -> HeadshotsConfig:
    """Create a configuration with fake credentials and no .env lookup.

    Returns:
        HeadshotsConfig instance for testing
    """
    return HeadshotsConfig(
        replicate_api_token="r8_test",
        default_model_id=TEST_MODEL_ID,
        supabase_url="https://example.supabase.co",
        supabase_anon_key="anon-key",
        admin_key="admin-secret",
        gallery_limit=50,
        profile_chunk_size=10,
        _env_file=None,
    )


@pytest.fixture
def test_user() -> SimpleNamespace:
    """The user every accepted token resolves to."""
    return SimpleNamespace(id="user-1", email="ada@example.com")


@pytest.fixture
def fake_store(test_user: SimpleNamespace) -> MagicMock:
    """Create a mocked SupabaseStore with empty-table behaviour.

    Individual tests override return values as needed.

    Returns:
        MagicMock constrained to the SupabaseStore interface
    """
    store = MagicMock(spec=SupabaseStore)
    store.get_user.return_value = test_user
    store.get_lora_model.return_value = None
    store.list_active_lora_models.return_value = []
    store.list_user_lora_access.return_value = []
    store.get_user_custom_parameters.return_value = None
    store.insert_image.side_effect = lambda row: {"id": "img-1", **row}
    store.get_image_owner.return_value = None
    store.image_exists.return_value = False
    store.find_favorite.return_value = None
    store.add_favorite.return_value = {"id": "fav-1"}
    store.remove_favorite.return_value = 0
    store.list_favorite_image_ids.return_value = []
    store.get_images.return_value = []
    store.list_public_images.return_value = []
    store.get_usernames.return_value = {}
    store.update_trigger_word.return_value = True
    return store


@pytest.fixture
def store_factory(fake_store: MagicMock) -> MagicMock:
    """Factory handing out ``fake_store``; records the tokens it was called with."""
    return MagicMock(return_value=fake_store)


@pytest.fixture
def fake_generator() -> MagicMock:
    """Create a mocked GenerationClient returning one image URL.

    Returns:
        MagicMock constrained to the GenerationClient interface
    """
    generator = MagicMock(spec=GenerationClient)
    generator.default_model_id = TEST_MODEL_ID
    generator.generate.return_value = ["https://replicate.delivery/out-0.png"]
    generator.fetch_model_description.return_value = None
    return generator


@pytest.fixture
def test_client(
    test_config: HeadshotsConfig,
    store_factory: MagicMock,
    fake_generator: MagicMock,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the store, generator and config replaced.

    Yields:
        TestClient bound to the application

    Cleanup:
        Dependency overrides are removed after the test completes
    """
    app.dependency_overrides[get_config] = lambda: test_config
    app.dependency_overrides[get_store_factory] = lambda: store_factory
    app.dependency_overrides[get_generation_client] = lambda: fake_generator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer user-token"}
