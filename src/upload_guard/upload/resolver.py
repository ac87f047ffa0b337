"""Resolution of the effective validation rules for an upload field."""

from collections.abc import Mapping
from typing import Any, Optional

from upload_guard.core import get_logger
from upload_guard.upload.models import UploadTarget, WidgetConfig
from upload_guard.upload.rules import Rule, RuleSet

logger = get_logger(__name__)

MODEL_RULES_METHOD = "file_upload_rules"


class RuleResolver:
    """Determines which rules apply to an upload.

    Precedence, first match wins:
    1. Rules explicitly configured on the widget instance
    2. Rules declared by the owning model's ``file_upload_rules()``
    3. Defaults built from the widget's size / type / mime options

    An empty rule list at steps 1 or 2 counts as "not declared", so the
    result is never empty.
    """

    def __init__(self, config: Optional[WidgetConfig] = None):
        """Initialize the resolver.

        Args:
            config: Widget configuration providing defaults
        """
        self.config = config or WidgetConfig()

    def resolve(self, target: UploadTarget, declared_rules: Any = None) -> RuleSet:
        """Resolve the rule set for ``target``.

        Args:
            target: Upload target (field name and owning model)
            declared_rules: Explicit rules from configuration, if any

        Returns:
            Non-empty RuleSet
        """
        explicit = RuleSet.from_value(declared_rules)
        if explicit:
            self._log_resolution(target, "config", explicit)
            return explicit

        model_rules = self._model_rules(target)
        if model_rules:
            self._log_resolution(target, "model", model_rules)
            return model_rules

        defaults = self.default_rules()
        self._log_resolution(target, "default", defaults)
        return defaults

    def default_rules(self) -> RuleSet:
        rules = [Rule("max", (str(self.config.max_file_size_kb),))]

        file_types = self.config.accepted_file_types()
        if file_types:
            rules.append(Rule("extensions", tuple(file_types)))

        if self.config.mime_types:
            rules.append(Rule("mimes", tuple(self.config.mime_types)))

        return RuleSet(rules=tuple(rules))

    def _model_rules(self, target: UploadTarget) -> Optional[RuleSet]:
        lookup = getattr(target.model, MODEL_RULES_METHOD, None)
        if not callable(lookup):
            return None

        declared = lookup()
        if not isinstance(declared, Mapping) or target.field_name not in declared:
            return None

        return RuleSet.from_value(declared[target.field_name])

    def _log_resolution(self, target: UploadTarget, source: str, rules: RuleSet) -> None:
        logger.debug(
            "rules_resolved",
            widget_id=target.widget_id,
            field=target.field_name,
            source=source,
            rules=rules.expressions(),
        )
