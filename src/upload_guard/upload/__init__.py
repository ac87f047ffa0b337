"""Validated widget uploads.

- Rule resolution (configuration, model, defaults)
- Rule registry and validation, including ``maxFiles``
- Upload transaction and response reporting
"""

from upload_guard.upload.models import (
    UploadMode,
    TransactionState,
    WidgetConfig,
    UploadTarget,
    UploadedFile,
    StoredFile,
    Violation,
    ValidationOutcome,
    UploadRequest,
    UploadResponse,
)
from upload_guard.upload.rules import (
    Rule,
    RuleSet,
    RuleRegistry,
    ValidationContext,
    build_default_registry,
)
from upload_guard.upload.capabilities import (
    FileRelation,
    FileStore,
    RuleProvidingModel,
)
from upload_guard.upload.resolver import RuleResolver
from upload_guard.upload.validator import UploadValidator
from upload_guard.upload.reporter import ResponseReporter
from upload_guard.upload.transaction import (
    UploadTransaction,
    RelationLocks,
    UPLOAD_HEADER,
    FILE_FIELD,
)
from upload_guard.upload.widget import FileUploadWidget, widget_id_for

__all__ = [
    # Models
    "UploadMode",
    "TransactionState",
    "WidgetConfig",
    "UploadTarget",
    "UploadedFile",
    "StoredFile",
    "Violation",
    "ValidationOutcome",
    "UploadRequest",
    "UploadResponse",
    # Rules
    "Rule",
    "RuleSet",
    "RuleRegistry",
    "ValidationContext",
    "build_default_registry",
    # Collaborator contracts
    "FileRelation",
    "FileStore",
    "RuleProvidingModel",
    # Services
    "RuleResolver",
    "UploadValidator",
    "ResponseReporter",
    "UploadTransaction",
    "RelationLocks",
    "UPLOAD_HEADER",
    "FILE_FIELD",
    "FileUploadWidget",
    "widget_id_for",
]
