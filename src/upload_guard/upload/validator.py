"""Validation of uploaded files against a resolved rule set.

- Every rule is evaluated; violations are collected, not short-circuited
- Request-level rules (``maxFiles``) run once per request
- Transfer integrity is reported separately from rule violations
"""

from dataclasses import replace
from typing import Optional, Union

from upload_guard.core import get_logger
from upload_guard.upload.models import UploadedFile, ValidationOutcome, Violation
from upload_guard.upload.rules import (
    RuleRegistry,
    RuleSet,
    ValidationContext,
    build_default_registry,
)

logger = get_logger(__name__)


class UploadValidator:
    """Runs uploaded files through a rule set using a rule registry."""

    def __init__(
        self,
        registry: Optional[RuleRegistry] = None,
        messages: Optional[dict[str, str]] = None,
    ):
        """Initialize the validator.

        Args:
            registry: Rule registry; the built-in registry if omitted
            messages: Message overrides keyed by rule name
        """
        self.registry = registry or build_default_registry()
        self.messages = messages or {}

    def validate(
        self,
        files: Union[UploadedFile, list[UploadedFile]],
        rules: RuleSet,
        context: ValidationContext,
    ) -> ValidationOutcome:
        """Validate a single file or a batch.

        Args:
            files: The uploaded file, or every file of a batch request
            rules: Resolved rule set
            context: Field, target and relation for request-level rules

        Returns:
            ValidationOutcome with every violation found
        """
        batch = files if isinstance(files, list) else [files]
        is_batch = isinstance(files, list)
        context = replace(context, incoming_count=len(batch))

        violations: list[Violation] = []

        for index, uploaded in enumerate(batch):
            field_name = f"{context.attribute}.{index}" if is_batch else context.attribute
            for rule in rules:
                if self.registry.get(rule.name).per_request:
                    continue
                if not self.registry.check(rule, uploaded, context):
                    violations.append(self._violation(field_name, rule, context))

        for rule in rules:
            if not self.registry.get(rule.name).per_request:
                continue
            if batch and not self.registry.check(rule, batch[0], context):
                violations.append(self._violation(context.attribute, rule, context))

        file_intact = all(uploaded.is_valid for uploaded in batch)

        outcome = ValidationOutcome(
            valid=not violations,
            violations=violations,
            file_intact=file_intact,
        )

        if not outcome.valid or not file_intact:
            logger.info(
                "upload_validation_failed",
                field=context.attribute,
                files=len(batch),
                violations=[v.rule for v in violations],
                file_intact=file_intact,
            )
        return outcome

    def _violation(self, field_name: str, rule, context: ValidationContext) -> Violation:
        return Violation(
            field=field_name,
            rule=rule.key,
            message=self.registry.message(rule, context, self.messages),
        )
