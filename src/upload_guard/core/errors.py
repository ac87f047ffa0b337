"""Custom exception classes for upload handling."""

from typing import Optional


class UploadGuardError(Exception):
    """Base exception for all upload handling errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class MissingFileError(UploadGuardError):
    """The request does not carry the expected file field."""

    def __init__(
        self,
        message: str = "File missing from request",
        field: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="MISSING_FILE", **kwargs)
        self.field = field
        self.details.update({"field": field})


class ValidationFailedError(UploadGuardError):
    """One or more validation rules rejected the uploaded file."""

    def __init__(
        self,
        message: str,
        violations: Optional[list] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="VALIDATION_FAILED", **kwargs)
        self.violations = violations or []
        self.details.update({
            "violations": [
                {"field": v.field, "rule": v.rule, "message": v.message}
                for v in self.violations
            ],
        })


class InvalidFileError(UploadGuardError):
    """The uploaded byte stream itself is broken (failed transfer)."""

    def __init__(
        self,
        message: str = "File is not valid",
        file_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="INVALID_FILE", **kwargs)
        self.file_name = file_name
        self.details.update({"file_name": file_name})


class PersistenceFailedError(UploadGuardError):
    """The file store or owning relation raised while saving the upload."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        stored_file_id: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="PERSISTENCE_FAILED", **kwargs)
        self.operation = operation
        self.stored_file_id = stored_file_id
        self.details.update({
            "operation": operation,
            "stored_file_id": stored_file_id,
        })


class UnknownRuleError(UploadGuardError):
    """A rule set refers to a rule name the registry does not know."""

    def __init__(self, rule_name: str, **kwargs):
        super().__init__(
            f"Unknown validation rule '{rule_name}'",
            error_code="UNKNOWN_RULE",
            **kwargs,
        )
        self.rule_name = rule_name
        self.details.update({"rule_name": rule_name})


class TransactionStateError(UploadGuardError):
    """An upload transaction was driven outside its allowed transitions."""

    def __init__(self, message: str, state: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="TRANSACTION_STATE", **kwargs)
        self.state = state
        self.details.update({"state": state})


class StorageError(UploadGuardError):
    """Error raised by the S3 / DynamoDB collaborators."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="STORAGE", **kwargs)
        self.operation = operation
        self.key = key
        self.details.update({
            "operation": operation,
            "key": key,
        })


class InvalidRuleParameterError(UploadGuardError):
    """A rule expression carries missing or malformed parameters."""

    def __init__(self, rule_name: str, parameters: Optional[list] = None, **kwargs):
        super().__init__(
            f"Invalid parameters for validation rule '{rule_name}': {parameters or []}",
            error_code="INVALID_RULE",
            **kwargs,
        )
        self.rule_name = rule_name
        self.parameters = parameters or []
        self.details.update({
            "rule_name": rule_name,
            "parameters": self.parameters,
        })
