"""Collaborator contracts consumed by the upload core."""

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from upload_guard.upload.models import StoredFile, UploadedFile


@runtime_checkable
class FileRelation(Protocol):
    """The association through which files are attached to their owner."""

    def is_public(self) -> bool:
        ...

    def add(self, file: StoredFile, session_key: Optional[str] = None) -> None:
        ...

    def count_existing(self, field: str, session_key: Optional[str] = None) -> int:
        ...


@runtime_checkable
class RuleProvidingModel(Protocol):
    """A model that declares upload rules per field."""

    def file_upload_rules(self) -> Mapping[str, Any]:
        ...


@runtime_checkable
class FileStore(Protocol):
    """Persists uploaded bytes and returns the stored representation."""

    def create(self, uploaded_file: UploadedFile, is_public: bool) -> StoredFile:
        ...
