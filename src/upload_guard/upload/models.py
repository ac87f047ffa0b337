"""Data models for validated widget uploads.

- Widget configuration and upload target
- Uploaded / stored file representations
- Validation outcome and response models
"""

import json
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Default upper bound for a single file, in kilobytes
DEFAULT_MAX_FILESIZE_KB = 10240

DEFAULT_IMAGE_EXTENSIONS = ["jpg", "jpeg", "bmp", "png", "webp", "gif", "svg"]


def _default_max_filesize() -> int:
    return int(os.environ.get("UPLOAD_MAX_FILESIZE_KB", DEFAULT_MAX_FILESIZE_KB))


def _split_list(value: Any, separator: str = ",") -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(separator) if item.strip()]
    return value


class UploadMode(str, Enum):
    """Display / batch mode of an upload widget."""
    IMAGE_SINGLE = "image-single"
    IMAGE_MULTI = "image-multi"
    FILE_SINGLE = "file-single"
    FILE_MULTI = "file-multi"
    IMAGE_MULTI_BIG = "image-multi-big"

    @property
    def is_image(self) -> bool:
        return self.value.startswith("image-")

    @property
    def is_multi(self) -> bool:
        return "multi" in self.value


class TransactionState(str, Enum):
    """States of a single upload transaction."""
    AWAITING_REQUEST = "awaiting_request"
    IDENTITY_CHECKED = "identity_checked"
    RULES_RESOLVED = "rules_resolved"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    ASSOCIATED = "associated"
    REPORTED = "reported"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransactionState.REPORTED, TransactionState.FAILED)


class WidgetConfig(BaseModel):
    """Options of one upload widget instance.

    Accepts the widget's YAML-style camelCase keys (``uploadLabel``,
    ``fileTypes``) as well as snake_case names. The labels are display
    text only and are carried through untouched.
    """
    model_config = ConfigDict(populate_by_name=True)

    mode: UploadMode = Field(default=UploadMode.FILE_SINGLE, description="Widget mode")
    upload_label: str = Field(default="Add file", alias="uploadLabel")
    empty_label: str = Field(default="No file uploaded", alias="emptyLabel")
    rules: Optional[list[str]] = Field(None, description="Explicit rule expressions")
    file_types: Optional[list[str]] = Field(None, alias="fileTypes", description="Accepted extensions")
    mime_types: Optional[list[str]] = Field(None, alias="mimeTypes", description="Accepted mime types")
    max_file_size_kb: int = Field(
        default_factory=_default_max_filesize,
        alias="maxFileSize",
        description="Maximum size of a single file in KB",
    )

    @field_validator("rules", mode="before")
    @classmethod
    def _split_rules(cls, value: Any) -> Any:
        return _split_list(value, separator="|")

    @field_validator("file_types", mode="before")
    @classmethod
    def _normalize_file_types(cls, value: Any) -> Any:
        value = _split_list(value)
        if isinstance(value, list):
            return [str(ext).lstrip(".").lower() for ext in value]
        return value

    @field_validator("mime_types", mode="before")
    @classmethod
    def _split_mime_types(cls, value: Any) -> Any:
        return _split_list(value)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "WidgetConfig":
        return cls.model_validate(data or {})

    @classmethod
    def from_env(cls, variable: str = "UPLOAD_WIDGET_CONFIG") -> "WidgetConfig":
        """Load the widget configuration from a JSON environment variable."""
        raw = os.environ.get(variable)
        return cls.from_dict(json.loads(raw) if raw else None)

    def accepted_file_types(self) -> Optional[list[str]]:
        """Extensions the widget accepts, falling back to image types in image modes."""
        if self.file_types:
            return self.file_types
        if self.mode.is_image:
            return list(DEFAULT_IMAGE_EXTENSIONS)
        return None


class UploadTarget(BaseModel):
    """Identifies the widget, field and owner an upload belongs to."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    widget_id: str = Field(..., description="Unique widget instance identifier")
    field_name: str = Field(..., description="Model field receiving the files")
    owner_id: Optional[str] = Field(None, description="Owning record ID, if already saved")
    session_key: Optional[str] = Field(None, description="Deferred binding key")
    model: Optional[Any] = Field(None, exclude=True, description="Owning model instance")

    def lock_key(self) -> tuple[str, ...]:
        """Key of the owning relation a ``maxFiles`` count covers.

        A saved owner's count includes its bound files whatever the session,
        so every upload to it shares one key. Unsaved owners are keyed by
        session.
        """
        if self.owner_id is not None:
            return ("owner", self.owner_id, self.field_name)
        return ("session", self.session_key or "", self.field_name)


class UploadedFile(BaseModel):
    """A file received with the request, not yet persisted."""
    file_name: str = Field(..., description="Original file name")
    content: bytes = Field(default=b"", description="Raw file content")
    mime_type: str = Field(default="application/octet-stream", description="Declared mime type")
    size: Optional[int] = Field(None, description="Size in bytes")
    is_valid: bool = Field(default=True, description="Whether the transfer completed")
    error: Optional[str] = Field(None, description="Transfer error, if any")

    @model_validator(mode="after")
    def _fill_size(self) -> "UploadedFile":
        if self.size is None:
            self.size = len(self.content)
        return self

    @property
    def extension(self) -> str:
        return PurePath(self.file_name).suffix.lstrip(".").lower()

    @property
    def size_kb(self) -> float:
        return (self.size or 0) / 1024


class StoredFile(BaseModel):
    """A persisted file as returned by the file store."""
    id: str = Field(..., description="Stored file identifier")
    file_name: str = Field(..., description="Original file name")
    disk_name: str = Field(..., description="Object key in storage")
    content_type: str = Field(..., description="Mime type")
    file_size: int = Field(..., description="Size in bytes")
    is_public: bool = Field(default=True, description="Visibility flag")
    path: str = Field(..., description="URL of the file")
    thumb: Optional[str] = Field(None, description="Thumbnail URL")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "thumb": self.thumb, "path": self.path}


class Violation(BaseModel):
    """A single rule violation."""
    field: str
    rule: str
    message: str


class ValidationOutcome(BaseModel):
    """Result of running an upload through a rule set."""
    valid: bool = Field(..., description="Whether every rule passed")
    violations: list[Violation] = Field(default_factory=list)
    file_intact: bool = Field(default=True, description="Structural integrity check result")

    def messages(self) -> list[str]:
        return [v.message for v in self.violations]

    def summary(self) -> str:
        return " ".join(self.messages())


class UploadRequest(BaseModel):
    """The parts of an inbound request the upload core looks at."""
    headers: dict[str, str] = Field(default_factory=dict)
    files: dict[str, Union[UploadedFile, list[UploadedFile]]] = Field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def has_file(self, key: str) -> bool:
        value = self.files.get(key)
        if isinstance(value, list):
            return len(value) > 0
        return value is not None

    def file(self, key: str) -> Optional[Union[UploadedFile, list[UploadedFile]]]:
        return self.files.get(key)


class UploadResponse(BaseModel):
    """Caller-visible result of an upload."""
    status_code: int
    body: Any
    headers: dict[str, str] = Field(default_factory=lambda: {"Content-Type": "application/json"})

    def to_api_gateway(self) -> dict[str, Any]:
        """Convert to an API Gateway proxy response."""
        return {
            "statusCode": self.status_code,
            "headers": dict(self.headers),
            "body": json.dumps(self.body),
        }
