"""AWS-backed collaborators for validated uploads."""

from upload_guard.storage.file_store import S3FileStore
from upload_guard.storage.relation import DynamoFileRelation

__all__ = [
    "S3FileStore",
    "DynamoFileRelation",
]
