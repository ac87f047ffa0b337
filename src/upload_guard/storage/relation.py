"""DynamoDB-backed owning relation for uploaded files.

Attachments are stored one item per file under a binding key:

- ``<owner_type>#<owner_id>#<field>`` once bound to a saved owner
- ``deferred#<session_key>#<field>`` while the owner is not saved yet

``commit_deferred`` moves deferred attachments onto the owner once it
has a permanent id.
"""

import os
from datetime import datetime, timezone
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from upload_guard.core import StorageError, get_logger
from upload_guard.upload.models import StoredFile

logger = get_logger(__name__)


class DynamoFileRelation:
    """Owning relation ("record has many attachments") in DynamoDB."""

    def __init__(
        self,
        owner_type: str,
        field: str,
        owner_id: Optional[str] = None,
        public: bool = True,
        table_name: Optional[str] = None,
        table: Optional[Any] = None,
    ):
        """Initialize the relation.

        Args:
            owner_type: Owning model name (e.g. ``"Post"``)
            field: Attachment field on the owner (e.g. ``"photos"``)
            owner_id: Owning record ID, None while the record is unsaved
            public: Visibility of files attached through this relation
            table_name: DynamoDB table name
            table: Optional DynamoDB table resource (for testing)
        """
        self.owner_type = owner_type
        self.field = field
        self.owner_id = owner_id
        self.public = public
        self.table_name = table_name or os.environ.get(
            "UPLOAD_ATTACHMENTS_TABLE", "upload-guard-attachments"
        )
        self._table = table

    @property
    def table(self):
        """Get DynamoDB table resource."""
        if self._table is None:
            dynamodb = boto3.resource("dynamodb")
            self._table = dynamodb.Table(self.table_name)
        return self._table

    def is_public(self) -> bool:
        return self.public

    def owner_key(self, field: str) -> Optional[str]:
        if self.owner_id is None:
            return None
        return f"{self.owner_type}#{self.owner_id}#{field}"

    @staticmethod
    def deferred_key(session_key: str, field: str) -> str:
        return f"deferred#{session_key}#{field}"

    def add(self, file: StoredFile, session_key: Optional[str] = None) -> None:
        """Attach ``file`` to the owner, or defer it under ``session_key``.

        Raises:
            StorageError: If the attachment cannot be written, or there is
                neither an owner id nor a session key to bind to
        """
        if session_key:
            binding_key = self.deferred_key(session_key, self.field)
        else:
            binding_key = self.owner_key(self.field)
        if binding_key is None:
            raise StorageError(
                "Cannot attach a file to an unsaved owner without a session key",
                operation="add",
            )

        item = {
            "binding_key": binding_key,
            "file_id": file.id,
            "owner_type": self.owner_type,
            "field": self.field,
            "disk_name": file.disk_name,
            "file_name": file.file_name,
            "file_size": file.file_size,
            "is_public": file.is_public,
            "attached_at": datetime.now(timezone.utc).isoformat(),
        }
        if session_key:
            item["session_key"] = session_key

        try:
            self.table.put_item(Item=item)
            logger.info(
                "upload_attached",
                binding_key=binding_key,
                file_id=file.id,
                deferred=bool(session_key),
            )
        except ClientError as e:
            logger.error("upload_attach_failed", binding_key=binding_key, error=str(e))
            raise StorageError(
                f"Failed to attach file: {e}",
                operation="put_item",
                key=binding_key,
            ) from e

    def count_existing(self, field: Optional[str] = None, session_key: Optional[str] = None) -> int:
        """Count attached files, including deferred ones for ``session_key``.

        The relation is already scoped to one field; ``field`` is accepted for
        the relation contract and ignored.
        """
        keys = [self.owner_key(self.field)]
        if session_key:
            keys.append(self.deferred_key(session_key, self.field))

        total = 0
        for binding_key in keys:
            if binding_key is None:
                continue
            total += self._count(binding_key)
        return total

    def list_files(self, session_key: Optional[str] = None) -> list[dict[str, Any]]:
        """List attachment items (bound first, then deferred)."""
        keys = [self.owner_key(self.field)]
        if session_key:
            keys.append(self.deferred_key(session_key, self.field))

        items: list[dict[str, Any]] = []
        for binding_key in keys:
            if binding_key is None:
                continue
            items.extend(self._query(binding_key))
        return items

    def commit_deferred(self, session_key: str, owner_id: Optional[str] = None) -> int:
        """Bind deferred attachments to the now-saved owner.

        Args:
            session_key: Session key the files were uploaded under
            owner_id: Permanent owner id (defaults to the relation's owner)

        Returns:
            Number of attachments committed
        """
        if owner_id is not None:
            self.owner_id = owner_id
        target_key = self.owner_key(self.field)
        if target_key is None:
            raise StorageError("Cannot commit deferred files without an owner id", operation="commit")

        deferred = self._query(self.deferred_key(session_key, self.field))
        try:
            for item in deferred:
                committed = {k: v for k, v in item.items() if k != "session_key"}
                committed["binding_key"] = target_key
                self.table.put_item(Item=committed)
                self.table.delete_item(
                    Key={"binding_key": item["binding_key"], "file_id": item["file_id"]}
                )
        except ClientError as e:
            logger.error("deferred_commit_failed", session_key=session_key, error=str(e))
            raise StorageError(
                f"Failed to commit deferred files: {e}",
                operation="commit",
                key=target_key,
            ) from e

        logger.info(
            "deferred_uploads_committed",
            binding_key=target_key,
            count=len(deferred),
        )
        return len(deferred)

    def _pages(self, binding_key: str, **query: Any):
        """Yield every page of a binding-key query, following LastEvaluatedKey."""
        kwargs = {
            "KeyConditionExpression": "binding_key = :binding_key",
            "ExpressionAttributeValues": {":binding_key": binding_key},
            **query,
        }
        while True:
            response = self.table.query(**kwargs)
            yield response
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return
            kwargs["ExclusiveStartKey"] = last_key

    def _count(self, binding_key: str) -> int:
        try:
            return sum(int(page.get("Count", 0)) for page in self._pages(binding_key, Select="COUNT"))
        except ClientError as e:
            logger.error("attachment_count_failed", binding_key=binding_key, error=str(e))
            raise StorageError(
                f"Failed to count attachments: {e}",
                operation="query",
                key=binding_key,
            ) from e

    def _query(self, binding_key: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        try:
            for page in self._pages(binding_key):
                items.extend(page.get("Items", []))
        except ClientError as e:
            logger.error("attachment_query_failed", binding_key=binding_key, error=str(e))
            raise StorageError(
                f"Failed to list attachments: {e}",
                operation="query",
                key=binding_key,
            ) from e
        return items
