"""Validation rule expressions and the named rule registry.

Rules are written the way widget configuration and model declarations
write them: ``"max:5120"``, ``"extensions:jpg,png"`` or a pipe-joined
string such as ``"required|max:5120|maxFiles:3"``. Each rule name maps to
a predicate registered in a ``RuleRegistry`` that is built once at
startup and handed to the validator.
"""

import mimetypes
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Union

from upload_guard.core import UnknownRuleError, InvalidRuleParameterError
from upload_guard.upload.models import UploadedFile, UploadTarget

GENERIC_MIME_TYPES = {"", "application/octet-stream"}


def canonical_rule_name(name: str) -> str:
    """Normalise ``maxFiles`` / ``max-files`` / ``max_files`` to ``max_files``."""
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name.strip())
    return name.replace("-", "_").lower()


@dataclass(frozen=True)
class Rule:
    """A single rule: name plus positional parameters."""

    name: str
    parameters: tuple[str, ...] = ()

    @classmethod
    def parse(cls, expression: str) -> "Rule":
        name, _, raw_params = expression.strip().partition(":")
        parameters = tuple(p.strip() for p in raw_params.split(",") if p.strip())
        return cls(name=name.strip(), parameters=parameters)

    @property
    def key(self) -> str:
        return canonical_rule_name(self.name)

    def __str__(self) -> str:
        if self.parameters:
            return f"{self.name}:{','.join(self.parameters)}"
        return self.name


@dataclass(frozen=True)
class RuleSet:
    """Ordered sequence of rules applied to one upload field."""

    rules: tuple[Rule, ...] = ()

    @classmethod
    def from_value(cls, value: Union["RuleSet", str, list, tuple, None]) -> "RuleSet":
        """Build a rule set from a RuleSet, a pipe string or a list of expressions."""
        if value is None:
            return cls()
        if isinstance(value, RuleSet):
            return value
        if isinstance(value, str):
            value = [part for part in value.split("|") if part.strip()]
        rules = []
        for item in value:
            rules.append(item if isinstance(item, Rule) else Rule.parse(str(item)))
        return cls(rules=tuple(rules))

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)

    def names(self) -> list[str]:
        return [rule.key for rule in self.rules]

    def get(self, name: str) -> Optional[Rule]:
        key = canonical_rule_name(name)
        for rule in self.rules:
            if rule.key == key:
                return rule
        return None

    def expressions(self) -> list[str]:
        return [str(rule) for rule in self.rules]


@dataclass
class ValidationContext:
    """What a rule may look at besides the file itself."""

    attribute: str
    target: Optional[UploadTarget] = None
    relation: Optional[Any] = None
    incoming_count: int = 1

    def existing_count(self) -> int:
        if self.relation is None:
            return 0
        if self.target is None:
            return int(self.relation.count_existing(self.attribute))
        return int(self.relation.count_existing(self.target.field_name, self.target.session_key))


Predicate = Callable[[UploadedFile, tuple[str, ...], ValidationContext], bool]


@dataclass(frozen=True)
class RuleDefinition:
    """A registered rule.

    ``per_request`` rules run once for the whole request instead of once
    per uploaded file.
    """

    name: str
    predicate: Predicate
    message: str
    per_request: bool = False
    min_parameters: int = 0


class RuleRegistry:
    """Mapping from rule name to predicate and message template."""

    def __init__(self, messages: Optional[dict[str, str]] = None):
        self._definitions: dict[str, RuleDefinition] = {}
        self._message_overrides: dict[str, str] = {
            canonical_rule_name(k): v for k, v in (messages or {}).items()
        }

    def register(
        self,
        name: str,
        predicate: Predicate,
        message: str,
        per_request: bool = False,
        min_parameters: int = 0,
    ) -> None:
        key = canonical_rule_name(name)
        self._definitions[key] = RuleDefinition(
            name=key,
            predicate=predicate,
            message=message,
            per_request=per_request,
            min_parameters=min_parameters,
        )

    def __contains__(self, name: str) -> bool:
        return canonical_rule_name(name) in self._definitions

    def names(self) -> list[str]:
        return sorted(self._definitions)

    def get(self, name: str) -> RuleDefinition:
        definition = self._definitions.get(canonical_rule_name(name))
        if definition is None:
            raise UnknownRuleError(name)
        return definition

    def check(self, rule: Rule, value: UploadedFile, context: ValidationContext) -> bool:
        definition = self.get(rule.name)
        if len(rule.parameters) < definition.min_parameters:
            raise InvalidRuleParameterError(rule.name, list(rule.parameters))
        return definition.predicate(value, rule.parameters, context)

    def message(
        self,
        rule: Rule,
        context: ValidationContext,
        overrides: Optional[dict[str, str]] = None,
    ) -> str:
        """Render the violation message for ``rule``.

        Per-call overrides win over registry-level overrides, which win
        over the rule's default template.
        """
        definition = self.get(rule.name)
        overrides = {canonical_rule_name(k): v for k, v in (overrides or {}).items()}
        template = overrides.get(
            definition.name,
            self._message_overrides.get(definition.name, definition.message),
        )
        first = rule.parameters[0] if rule.parameters else ""
        replacements = {
            ":attribute": context.attribute.replace("_", " "),
            ":values": ", ".join(rule.parameters),
            ":max": first,
            ":min": first,
            ":size": first,
            ":limit": first,
        }
        for placeholder, replacement in replacements.items():
            template = template.replace(placeholder, replacement)
        return template


def _int_parameter(name: str, parameters: tuple[str, ...]) -> int:
    try:
        return int(float(parameters[0]))
    except (IndexError, ValueError):
        raise InvalidRuleParameterError(name, list(parameters))


def _required(value: UploadedFile, parameters, context) -> bool:
    return value is not None and bool(value.file_name) and (value.size or 0) > 0


def _file(value: UploadedFile, parameters, context) -> bool:
    return isinstance(value, UploadedFile) and value.is_valid


def _image(value: UploadedFile, parameters, context) -> bool:
    return value.mime_type.lower().startswith("image/")


def _max(value: UploadedFile, parameters, context) -> bool:
    return value.size_kb <= _int_parameter("max", parameters)


def _min(value: UploadedFile, parameters, context) -> bool:
    return value.size_kb >= _int_parameter("min", parameters)


def _size(value: UploadedFile, parameters, context) -> bool:
    return round(value.size_kb) == _int_parameter("size", parameters)


def _extensions(value: UploadedFile, parameters, context) -> bool:
    allowed = {p.lstrip(".").lower() for p in parameters}
    return value.extension in allowed


def _mime_matches(mime_type: str, pattern: str) -> bool:
    mime_type = mime_type.lower()
    pattern = pattern.lower()
    if pattern.endswith("/*"):
        return mime_type.startswith(pattern[:-1])
    return mime_type == pattern


def _mimetypes(value: UploadedFile, parameters, context) -> bool:
    return any(_mime_matches(value.mime_type, p) for p in parameters)


def _mimes(value: UploadedFile, parameters, context) -> bool:
    """Accept full mime types or extensions implied by the declared mime type."""
    full_types = [p for p in parameters if "/" in p]
    if full_types and _mimetypes(value, full_types, context):
        return True

    allowed = {p.lstrip(".").lower() for p in parameters if "/" not in p}
    mime_type = value.mime_type.lower()
    if mime_type in GENERIC_MIME_TYPES:
        return value.extension in allowed
    guessed = {ext.lstrip(".") for ext in mimetypes.guess_all_extensions(mime_type)}
    return bool(guessed & allowed)


def _max_files(value: UploadedFile, parameters, context: ValidationContext) -> bool:
    # Bounds the total attached to the relation, not just this request
    limit = _int_parameter("maxFiles", parameters)
    return context.existing_count() + context.incoming_count <= limit


DEFAULT_MESSAGES = {
    "required": "The :attribute field is required.",
    "file": "The :attribute must be a file.",
    "image": "The :attribute must be an image.",
    "max": "The :attribute may not be greater than :max kilobytes.",
    "min": "The :attribute must be at least :min kilobytes.",
    "size": "The :attribute must be :size kilobytes.",
    "extensions": "The :attribute must have one of the following extensions: :values.",
    "mimes": "The :attribute must be a file of type: :values.",
    "mimetypes": "The :attribute must be a file of type: :values.",
    "max_files": "The maximum number of files has been reached.",
}


def build_default_registry(messages: Optional[dict[str, str]] = None) -> RuleRegistry:
    """Build the registry with every built-in rule.

    Args:
        messages: Optional message overrides keyed by rule name

    Returns:
        A populated RuleRegistry
    """
    registry = RuleRegistry(messages=messages)
    registry.register("required", _required, DEFAULT_MESSAGES["required"])
    registry.register("file", _file, DEFAULT_MESSAGES["file"])
    registry.register("image", _image, DEFAULT_MESSAGES["image"])
    registry.register("max", _max, DEFAULT_MESSAGES["max"], min_parameters=1)
    registry.register("min", _min, DEFAULT_MESSAGES["min"], min_parameters=1)
    registry.register("size", _size, DEFAULT_MESSAGES["size"], min_parameters=1)
    registry.register("extensions", _extensions, DEFAULT_MESSAGES["extensions"], min_parameters=1)
    registry.register("mimes", _mimes, DEFAULT_MESSAGES["mimes"], min_parameters=1)
    registry.register("mimetypes", _mimetypes, DEFAULT_MESSAGES["mimetypes"], min_parameters=1)
    registry.register(
        "maxFiles",
        _max_files,
        DEFAULT_MESSAGES["max_files"],
        per_request=True,
        min_parameters=1,
    )
    return registry
