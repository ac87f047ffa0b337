"""Tests for response shaping."""

import json

from upload_guard.core import MissingFileError, PersistenceFailedError, ValidationFailedError
from upload_guard.upload.models import UploadResponse, Violation
from upload_guard.upload.reporter import DEFAULT_HEADERS, ResponseReporter


class TestResponseReporter:
    """Tests for ResponseReporter."""

    def test_success(self):
        payload = {"id": "f1", "thumb": None, "path": "https://cdn.example.com/f1.pdf"}

        response = ResponseReporter().report_success(payload)

        assert response.status_code == 200
        assert response.body == payload
        assert response.headers == DEFAULT_HEADERS

    def test_failure_without_violations(self):
        response = ResponseReporter().report_failure("MISSING_FILE", "File missing from request")

        assert response.status_code == 400
        assert response.body == {"error": "File missing from request", "code": "MISSING_FILE"}

    def test_validation_error_lists_violations(self):
        violation = Violation(field="file_data", rule="max", message="Too big.")
        error = ValidationFailedError("Too big.", violations=[violation])

        response = ResponseReporter().report_error(error)

        assert response.body == {
            "error": "Too big.",
            "code": "VALIDATION_FAILED",
            "violations": [{"field": "file_data", "rule": "max", "message": "Too big."}],
        }

    def test_error_message_is_not_prefixed_with_code(self):
        response = ResponseReporter().report_error(MissingFileError(field="file_data"))

        assert response.body["error"] == "File missing from request"

    def test_persistence_error(self):
        error = PersistenceFailedError("Bucket unavailable", operation="create")

        response = ResponseReporter().report_error(error)

        assert response.status_code == 400
        assert response.body["code"] == "PERSISTENCE_FAILED"

    def test_extra_headers(self):
        reporter = ResponseReporter(extra_headers={"Access-Control-Allow-Origin": "https://app.example.com"})

        response = reporter.report_success({})

        assert response.headers["Access-Control-Allow-Origin"] == "https://app.example.com"
        assert response.headers["Content-Type"] == "application/json"


class TestUploadResponse:
    """Tests for the API Gateway conversion."""

    def test_to_api_gateway(self):
        response = UploadResponse(status_code=200, body={"id": "f1", "thumb": None, "path": "p"})

        result = response.to_api_gateway()

        assert result["statusCode"] == 200
        assert result["headers"] == {"Content-Type": "application/json"}
        assert json.loads(result["body"]) == {"id": "f1", "thumb": None, "path": "p"}
