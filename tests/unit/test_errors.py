"""Tests for headshots.core.errors — status codes and attributes."""

from __future__ import annotations

import pytest

from headshots.core.errors import (
    AuthenticationError,
    ConflictError,
    HeadshotsError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamUnavailableError,
)


@pytest.mark.parametrize(
    ("error_class", "status"),
    [
        (InvalidInputError, 400),
        (ConflictError, 400),
        (AuthenticationError, 401),
        (PermissionDeniedError, 403),
        (NotFoundError, 404),
        (UpstreamUnavailableError, 502),
    ],
)
def test_status_codes(error_class, status):
    error = error_class("message")
    assert isinstance(error, HeadshotsError)
    assert error.status_code == status
    assert str(error) == "message"


def test_upstream_attributes():
    error = UpstreamUnavailableError("boom", service="supabase", code="42703")
    assert error.service == "supabase"
    assert error.code == "42703"


def test_upstream_attributes_default_to_none():
    error = UpstreamUnavailableError("boom")
    assert error.service is None
    assert error.code is None
