"""Tests for rule expressions and the rule registry."""

import pytest

from upload_guard.core import InvalidRuleParameterError, UnknownRuleError
from upload_guard.upload.rules import (
    Rule,
    RuleRegistry,
    RuleSet,
    ValidationContext,
    build_default_registry,
    canonical_rule_name,
)
from tests.factories import make_file


class TestRuleParsing:
    """Tests for Rule and RuleSet construction."""

    def test_parse_rule_with_single_parameter(self):
        rule = Rule.parse("max:5120")

        assert rule.name == "max"
        assert rule.parameters == ("5120",)

    def test_parse_rule_with_parameter_list(self):
        rule = Rule.parse("extensions: jpg, png ")

        assert rule.parameters == ("jpg", "png")
        assert str(rule) == "extensions:jpg,png"

    def test_parse_rule_without_parameters(self):
        rule = Rule.parse("image")

        assert rule.name == "image"
        assert rule.parameters == ()

    def test_ruleset_from_pipe_string(self):
        rules = RuleSet.from_value("required|max:5120|maxFiles:3")

        assert rules.names() == ["required", "max", "max_files"]
        assert rules.get("maxFiles").parameters == ("3",)

    def test_ruleset_from_list_keeps_order(self):
        rules = RuleSet.from_value(["mimes:jpg", "max:10"])

        assert rules.expressions() == ["mimes:jpg", "max:10"]

    def test_ruleset_from_none_is_empty(self):
        rules = RuleSet.from_value(None)

        assert len(rules) == 0
        assert not rules

    def test_ruleset_from_ruleset_is_same_object(self):
        rules = RuleSet.from_value("max:1")

        assert RuleSet.from_value(rules) is rules

    @pytest.mark.parametrize("name", ["maxFiles", "max_files", "max-files", "MaxFiles"])
    def test_canonical_rule_name(self, name):
        assert canonical_rule_name(name) == "max_files"


class TestRuleRegistry:
    """Tests for the named rule registry."""

    @pytest.fixture
    def registry(self):
        return build_default_registry()

    @pytest.fixture
    def context(self):
        return ValidationContext(attribute="file_data")

    def test_default_registry_names(self, registry):
        assert registry.names() == [
            "extensions",
            "file",
            "image",
            "max",
            "max_files",
            "mimes",
            "mimetypes",
            "min",
            "required",
            "size",
        ]

    def test_unknown_rule_raises(self, registry, context):
        with pytest.raises(UnknownRuleError) as exc_info:
            registry.check(Rule.parse("virus_free"), make_file(), context)

        assert exc_info.value.error_code == "UNKNOWN_RULE"

    def test_missing_parameter_raises(self, registry, context):
        with pytest.raises(InvalidRuleParameterError):
            registry.check(Rule.parse("max"), make_file(), context)

    def test_non_numeric_parameter_raises(self, registry, context):
        with pytest.raises(InvalidRuleParameterError):
            registry.check(Rule.parse("max:lots"), make_file(), context)

    def test_custom_rule_registration(self, context):
        registry = RuleRegistry()
        registry.register(
            "not_empty_name",
            lambda value, params, ctx: bool(value.file_name.strip(".")),
            "The :attribute needs a name.",
        )

        assert "notEmptyName" in registry
        assert registry.check(Rule.parse("not_empty_name"), make_file(), context) is True

    def test_max_passes_at_limit(self, registry, context):
        assert registry.check(Rule.parse("max:2"), make_file(size=2048), context) is True

    def test_max_fails_over_limit(self, registry, context):
        assert registry.check(Rule.parse("max:2"), make_file(size=2049), context) is False

    def test_min(self, registry, context):
        assert registry.check(Rule.parse("min:1"), make_file(size=512), context) is False
        assert registry.check(Rule.parse("min:1"), make_file(size=1024), context) is True

    def test_extensions_case_insensitive(self, registry, context):
        uploaded = make_file(name="PHOTO.JPG")

        assert registry.check(Rule.parse("extensions:jpg,png"), uploaded, context) is True

    def test_extensions_rejects_other_type(self, registry, context):
        uploaded = make_file(name="script.exe", mime_type="application/x-msdownload")

        assert registry.check(Rule.parse("extensions:jpg,png"), uploaded, context) is False

    def test_mimes_with_extensions_uses_declared_mime(self, registry, context):
        uploaded = make_file(name="photo.png", mime_type="image/jpeg")

        assert registry.check(Rule.parse("mimes:jpg"), uploaded, context) is True

    def test_mimes_rejects_mismatched_mime(self, registry, context):
        uploaded = make_file(name="photo.jpg", mime_type="application/pdf")

        assert registry.check(Rule.parse("mimes:jpg,png"), uploaded, context) is False

    def test_mimes_generic_mime_falls_back_to_extension(self, registry, context):
        uploaded = make_file(name="report.pdf", mime_type="application/octet-stream")

        assert registry.check(Rule.parse("mimes:pdf"), uploaded, context) is True

    def test_mimes_with_full_mime_type(self, registry, context):
        uploaded = make_file(name="report.pdf", mime_type="application/pdf")

        assert registry.check(Rule.parse("mimes:application/pdf"), uploaded, context) is True

    def test_mimetypes_wildcard(self, registry, context):
        uploaded = make_file(mime_type="image/webp")

        assert registry.check(Rule.parse("mimetypes:image/*"), uploaded, context) is True
        assert registry.check(Rule.parse("mimetypes:video/*"), uploaded, context) is False

    def test_image_rule(self, registry, context):
        assert registry.check(Rule.parse("image"), make_file(), context) is True
        assert registry.check(
            Rule.parse("image"), make_file(name="a.pdf", mime_type="application/pdf"), context
        ) is False

    def test_required_rejects_empty_file(self, registry, context):
        assert registry.check(Rule.parse("required"), make_file(size=0), context) is False

    def test_file_rule_rejects_broken_transfer(self, registry, context):
        assert registry.check(Rule.parse("file"), make_file(is_valid=False), context) is False

    def test_message_placeholders(self, registry, context):
        message = registry.message(Rule.parse("max:5120"), context)

        assert message == "The file data may not be greater than 5120 kilobytes."

    def test_message_values_placeholder(self, registry, context):
        message = registry.message(Rule.parse("extensions:jpg,png"), context)

        assert message == "The file data must have one of the following extensions: jpg, png."

    def test_max_files_default_message(self, registry, context):
        message = registry.message(Rule.parse("maxFiles:3"), context)

        assert message == "The maximum number of files has been reached."

    def test_registry_message_override(self, context):
        registry = build_default_registry(messages={"max_files": "Only :limit files allowed."})

        message = registry.message(Rule.parse("maxFiles:3"), context)

        assert message == "Only 3 files allowed."

    def test_call_override_wins_over_registry_override(self, context):
        registry = build_default_registry(messages={"max": "registry"})

        message = registry.message(Rule.parse("max:1"), context, {"max": "call"})

        assert message == "call"
