"""Upload Lambda handler for the file upload widget endpoint.

Routes:
- POST /widgets/{widget_id}/upload - Validated upload postback
- POST /widgets/{widget_id}/commit - Bind deferred uploads to a saved owner
"""

import base64
import binascii
import json
import os
from typing import Any, Optional

from upload_guard.core import StorageError, configure_logging, get_logger
from upload_guard.storage import DynamoFileRelation, S3FileStore
from upload_guard.upload import (
    FILE_FIELD,
    FileUploadWidget,
    RelationLocks,
    RuleRegistry,
    UploadedFile,
    UploadRequest,
    UploadTarget,
    WidgetConfig,
    build_default_registry,
)
from upload_guard.upload.reporter import DEFAULT_HEADERS

configure_logging(level=os.environ.get("LOG_LEVEL", "INFO"), json_format=True)
logger = get_logger(__name__)

# Global service instances (initialized lazily)
_file_store: Optional[S3FileStore] = None
_registry: Optional[RuleRegistry] = None
_widget_config: Optional[WidgetConfig] = None
_model_rules: Optional[dict] = None
_locks = RelationLocks()


def _get_file_store() -> S3FileStore:
    """Get or create the file store."""
    global _file_store
    if _file_store is None:
        _file_store = S3FileStore()
    return _file_store


def _get_registry() -> RuleRegistry:
    """Get or create the rule registry."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


def _get_widget_config() -> WidgetConfig:
    """Get or load the widget configuration from UPLOAD_WIDGET_CONFIG."""
    global _widget_config
    if _widget_config is None:
        _widget_config = WidgetConfig.from_env()
    return _widget_config


def _get_model_rules() -> dict:
    """Get or load per-field rules declared for the owning model (UPLOAD_MODEL_RULES)."""
    global _model_rules
    if _model_rules is None:
        raw = os.environ.get("UPLOAD_MODEL_RULES")
        declared = json.loads(raw) if raw else {}
        _model_rules = declared if isinstance(declared, dict) else {}
    return _model_rules


class DeclaredRulesModel:
    """Owning model as seen by the handler: only its declared upload rules."""

    def __init__(self, rules: dict):
        self._rules = rules

    def file_upload_rules(self) -> dict:
        return self._rules


def _build_response(status_code: int, body: Any) -> dict:
    """Build an API Gateway response."""
    return {
        "statusCode": status_code,
        "headers": dict(DEFAULT_HEADERS),
        "body": json.dumps(body) if not isinstance(body, str) else body,
    }


def _request_params(event: dict) -> dict[str, Optional[str]]:
    params: dict[str, Optional[str]] = {}
    params.update(event.get("queryStringParameters") or {})
    params.update(event.get("pathParameters") or {})
    return params


def _raw_body(event: dict) -> bytes:
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body)
    if isinstance(body, str):
        return body.encode("utf-8")
    return body


def _content_type(headers: dict) -> str:
    for key, value in headers.items():
        if key.lower() == "content-type":
            return value or ""
    return ""


def _parse_upload_files(event: dict) -> dict[str, Any]:
    """Extract uploaded files from an API Gateway event.

    Multipart bodies are the normal case. A JSON body of the form
    ``{"file_data": {"file_name", "content" (base64), "mime_type"}}`` (or a
    list of those) is accepted for scripted clients.

    Returns:
        Mapping of form field name to UploadedFile or list of UploadedFile
    """
    content_type = _content_type(event.get("headers") or {})
    body = _raw_body(event)

    if "application/json" in content_type:
        try:
            data = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}
        if not isinstance(data, dict):
            return {}
        files: dict[str, Any] = {}
        for key, value in data.items():
            if key.startswith(FILE_FIELD):
                parsed = _json_files(value)
                if parsed is not None:
                    files[key] = parsed
        return files

    if "multipart/form-data" in content_type:
        boundary = None
        for part in content_type.split(";"):
            part = part.strip()
            if part.startswith("boundary="):
                boundary = part[9:].strip('"')
                break

        if not boundary:
            return {}

        return _parse_multipart_body(body, boundary)

    return {}


def _json_files(value: Any) -> Any:
    # Entries that are not objects do not count as files
    if isinstance(value, list):
        return [_json_file(item) for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        return _json_file(value)
    return None


def _json_file(item: dict) -> UploadedFile:
    raw = item.get("content", "")
    if not isinstance(raw, str):
        content, is_valid, error = b"", False, "File content must be a base64 string"
    else:
        try:
            content = base64.b64decode(raw, validate=True)
            is_valid, error = True, None
        except (binascii.Error, ValueError) as e:
            content, is_valid, error = b"", False, f"Invalid base64 content: {e}"
    return UploadedFile(
        file_name=str(item.get("file_name") or "upload"),
        content=content,
        mime_type=str(item.get("mime_type") or "application/octet-stream"),
        is_valid=is_valid,
        error=error,
    )


def _parse_multipart_body(body: bytes, boundary: str) -> dict[str, Any]:
    """Parse multipart body content.

    A body without its closing boundary is treated as an interrupted
    transfer: its files are returned with ``is_valid=False``.

    Args:
        body: Raw body bytes
        boundary: Multipart boundary string

    Returns:
        Mapping of form field name to UploadedFile or list of UploadedFile
    """
    boundary_bytes = f"--{boundary}".encode()
    complete = f"--{boundary}--".encode() in body
    files: dict[str, list[UploadedFile]] = {}

    for part in body.split(boundary_bytes):
        if not part or part.startswith(b"--"):
            continue

        if b"\r\n\r\n" in part:
            headers_section, content = part.split(b"\r\n\r\n", 1)
        elif b"\n\n" in part:
            headers_section, content = part.split(b"\n\n", 1)
        else:
            continue

        headers_str = headers_section.decode("utf-8", errors="ignore")

        name = None
        filename = None
        part_type = "application/octet-stream"
        for line in headers_str.split("\n"):
            line = line.strip()
            if line.lower().startswith("content-disposition:"):
                for item in line.split(";"):
                    item = item.strip()
                    if item.startswith("name="):
                        name = item[5:].strip('"')
                    elif item.startswith("filename="):
                        filename = item[9:].strip('"')
            elif line.lower().startswith("content-type:"):
                part_type = line.split(":", 1)[1].strip()

        # Only the CRLF preceding the next boundary belongs to the framing
        if content.endswith(b"\r\n"):
            content = content[:-2]

        if not name or not filename:
            continue

        files.setdefault(name, []).append(
            UploadedFile(
                file_name=filename,
                content=content,
                mime_type=part_type,
                is_valid=complete,
                error=None if complete else "Upload transfer was interrupted",
            )
        )

    return {
        name: parts if name.endswith("[]") or len(parts) > 1 else parts[0]
        for name, parts in files.items()
    }


def _build_widget(params: dict[str, Optional[str]], config: WidgetConfig) -> FileUploadWidget:
    field_name = params.get("field") or os.environ.get("UPLOAD_FIELD", "attachments")
    target = UploadTarget(
        widget_id=params.get("widget_id") or "",
        field_name=field_name,
        owner_id=params.get("owner_id"),
        session_key=params.get("session_key"),
        model=DeclaredRulesModel(_get_model_rules()),
    )
    relation = DynamoFileRelation(
        owner_type=params.get("owner_type") or os.environ.get("UPLOAD_OWNER_TYPE", "Record"),
        field=field_name,
        owner_id=params.get("owner_id"),
        public=os.environ.get("UPLOAD_PUBLIC", "true").lower() == "true",
    )
    return FileUploadWidget(
        target=target,
        relation=relation,
        store=_get_file_store(),
        config=config,
        registry=_get_registry(),
        locks=_locks,
    )


def upload_handler(event: dict, context: Any) -> dict:
    """Handle upload widget API requests.

    Args:
        event: API Gateway event
        context: Lambda context

    Returns:
        API Gateway response
    """
    http_method = event.get("httpMethod", "GET")
    path = event.get("path", "")

    logger.info("upload_request_received", method=http_method, path=path)

    if http_method != "POST":
        return _build_response(405, {"error": "Method not allowed"})

    try:
        params = _request_params(event)
        widget = _build_widget(params, _get_widget_config())

        if path.rstrip("/").endswith("/commit"):
            return _handle_commit(widget, params)

        request = UploadRequest(
            headers={k: v for k, v in (event.get("headers") or {}).items() if v is not None},
            files=_parse_upload_files(event),
        )
        response = widget.check_upload_postback(request)
        if response is None:
            return _build_response(404, {"error": "No upload widget matched the request"})
        return response.to_api_gateway()

    except Exception as e:
        logger.error("upload_handler_error", error=str(e), exc_info=True)
        return _build_response(500, {"error": str(e)})


def _handle_commit(widget: FileUploadWidget, params: dict[str, Optional[str]]) -> dict:
    """Bind files uploaded under a session key to the saved owner."""
    session_key = params.get("session_key")
    owner_id = params.get("owner_id")
    if not session_key or not owner_id:
        return _build_response(400, {"error": "session_key and owner_id are required"})

    try:
        committed = widget.relation.commit_deferred(session_key, owner_id=owner_id)
    except StorageError as e:
        return _build_response(400, {"error": e.message, "code": e.error_code})

    return _build_response(200, {"committed": committed, "owner_id": owner_id})
