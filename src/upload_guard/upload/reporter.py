"""Conversion of upload outcomes into caller-visible responses."""

from typing import Any, Optional, Union

from upload_guard.core import UploadGuardError, ValidationFailedError, get_logger
from upload_guard.upload.models import UploadResponse

logger = get_logger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,X-OCTOBER-FILEUPLOAD",
    "Access-Control-Allow-Methods": "POST,OPTIONS",
}


class ResponseReporter:
    """Shapes success payloads and failures into UploadResponse objects."""

    def __init__(self, extra_headers: Optional[dict[str, str]] = None):
        self.headers = {**DEFAULT_HEADERS, **(extra_headers or {})}

    def report_success(self, payload: Union[dict[str, Any], list[dict[str, Any]]]) -> UploadResponse:
        return UploadResponse(status_code=200, body=payload, headers=dict(self.headers))

    def report_failure(
        self,
        kind: str,
        message: str,
        violations: Optional[list[dict[str, Any]]] = None,
    ) -> UploadResponse:
        """Build a 400 response.

        Args:
            kind: Error code (MISSING_FILE, VALIDATION_FAILED, ...)
            message: Human-readable message
            violations: Per-rule details for validation failures

        Returns:
            UploadResponse with status 400
        """
        body: dict[str, Any] = {"error": message, "code": kind}
        if violations:
            body["violations"] = violations
        return UploadResponse(status_code=400, body=body, headers=dict(self.headers))

    def report_error(self, error: UploadGuardError) -> UploadResponse:
        violations = None
        if isinstance(error, ValidationFailedError):
            violations = [v.model_dump() for v in error.violations]
        logger.warning(
            "upload_rejected",
            code=error.error_code,
            error=error.message,
        )
        return self.report_failure(error.error_code or "UPLOAD_ERROR", error.message, violations)
