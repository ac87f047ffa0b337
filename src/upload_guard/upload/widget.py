"""Upload widget: the seam a form layer calls into."""

from typing import Any, Optional

from upload_guard.upload.capabilities import FileRelation, FileStore
from upload_guard.upload.models import UploadRequest, UploadResponse, UploadTarget, WidgetConfig
from upload_guard.upload.reporter import ResponseReporter
from upload_guard.upload.resolver import RuleResolver
from upload_guard.upload.rules import RuleRegistry, RuleSet
from upload_guard.upload.transaction import RelationLocks, UploadTransaction
from upload_guard.upload.validator import UploadValidator


def widget_id_for(form_alias: str, field_name: str) -> str:
    """Derive the unique widget id a form assigns to an upload field."""
    return f"{form_alias}-{field_name}".replace("[", "-").replace("]", "")


class FileUploadWidget:
    """A file upload field with layered validation rules.

    The widget owns no upload logic itself; each postback runs in a fresh
    ``UploadTransaction`` built from the widget's configuration and
    collaborators.
    """

    def __init__(
        self,
        target: UploadTarget,
        relation: FileRelation,
        store: FileStore,
        config: Optional[WidgetConfig] = None,
        registry: Optional[RuleRegistry] = None,
        messages: Optional[dict[str, str]] = None,
        locks: Optional[RelationLocks] = None,
        serialize: bool = True,
    ):
        self.target = target
        self.relation = relation
        self.store = store
        self.config = config or WidgetConfig()
        self.resolver = RuleResolver(self.config)
        self.validator = UploadValidator(registry=registry, messages=messages)
        self.reporter = ResponseReporter()
        self.locks = locks
        self.serialize = serialize

    @classmethod
    def from_options(
        cls,
        target: UploadTarget,
        relation: FileRelation,
        store: FileStore,
        options: Optional[dict[str, Any]] = None,
        **kwargs,
    ) -> "FileUploadWidget":
        """Build a widget from YAML-style field options."""
        return cls(target, relation, store, config=WidgetConfig.from_dict(options), **kwargs)

    def get_id(self) -> str:
        return self.target.widget_id

    def resolve_rules(self) -> RuleSet:
        return self.resolver.resolve(self.target, self.config.rules)

    def check_upload_postback(self, request: UploadRequest) -> Optional[UploadResponse]:
        """Handle ``request`` if it is an upload postback for this widget.

        Returns:
            UploadResponse, or None when the request belongs to another widget
        """
        transaction = UploadTransaction(
            target=self.target,
            relation=self.relation,
            store=self.store,
            config=self.config,
            resolver=self.resolver,
            validator=self.validator,
            reporter=self.reporter,
            locks=self.locks,
            serialize=self.serialize,
        )
        return transaction.run(request)
