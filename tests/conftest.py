"""Pytest configuration and shared fixtures for upload tests."""

from unittest.mock import MagicMock

import pytest
from hypothesis import settings, Verbosity

from upload_guard.upload.models import StoredFile, UploadTarget
from tests.factories import WIDGET_ID

settings.register_profile(
    "default",
    max_examples=100,
    deadline=5000,
    verbosity=Verbosity.normal,
)

settings.register_profile(
    "ci",
    max_examples=200,
    deadline=10000,
    verbosity=Verbosity.quiet,
)

settings.load_profile("default")


@pytest.fixture
def target():
    return UploadTarget(
        widget_id=WIDGET_ID,
        field_name="attachments",
        owner_id="post-1",
        session_key="session-abc",
    )


@pytest.fixture
def relation():
    """Owning relation mock with no attached files."""
    mock = MagicMock()
    mock.is_public.return_value = True
    mock.count_existing.return_value = 0
    mock.add.return_value = None
    return mock


@pytest.fixture
def store():
    """File store mock returning a fixed stored file."""
    mock = MagicMock()
    mock.create.side_effect = lambda uploaded, is_public: StoredFile(
        id="file-1",
        file_name=uploaded.file_name,
        disk_name=f"uploads/public/fil/e-1/file-1.{uploaded.extension}",
        content_type=uploaded.mime_type,
        file_size=uploaded.size,
        is_public=is_public,
        path="https://cdn.example.com/uploads/file-1.jpg",
        thumb="https://cdn.example.com/uploads/file-1_thumb.jpg",
    )
    return mock
