"""The validated upload transaction.

One transaction handles one request end to end:

    awaiting_request -> identity_checked -> rules_resolved -> validated
        -> persisted -> associated -> reported

Any error moves it to ``failed``. A request addressed to a different
widget leaves it in ``awaiting_request`` and produces no response.
"""

import threading
import weakref
from contextlib import contextmanager, nullcontext
from typing import Any, Iterator, Optional, Union

from upload_guard.core import (
    InvalidFileError,
    MissingFileError,
    PersistenceFailedError,
    TransactionStateError,
    UploadGuardError,
    ValidationFailedError,
    get_logger,
    upload_log_context,
)
from upload_guard.upload.capabilities import FileRelation, FileStore
from upload_guard.upload.models import (
    StoredFile,
    TransactionState,
    UploadedFile,
    UploadRequest,
    UploadResponse,
    UploadTarget,
    WidgetConfig,
)
from upload_guard.upload.reporter import ResponseReporter
from upload_guard.upload.resolver import RuleResolver
from upload_guard.upload.rules import RuleSet, ValidationContext
from upload_guard.upload.validator import UploadValidator

logger = get_logger(__name__)

UPLOAD_HEADER = "X-OCTOBER-FILEUPLOAD"
FILE_FIELD = "file_data"

_TRANSITIONS = {
    TransactionState.AWAITING_REQUEST: {TransactionState.IDENTITY_CHECKED},
    TransactionState.IDENTITY_CHECKED: {TransactionState.RULES_RESOLVED, TransactionState.FAILED},
    TransactionState.RULES_RESOLVED: {TransactionState.VALIDATED, TransactionState.FAILED},
    TransactionState.VALIDATED: {TransactionState.PERSISTED, TransactionState.FAILED},
    TransactionState.PERSISTED: {TransactionState.ASSOCIATED, TransactionState.FAILED},
    TransactionState.ASSOCIATED: {TransactionState.REPORTED, TransactionState.FAILED},
    TransactionState.REPORTED: set(),
    TransactionState.FAILED: set(),
}


class RelationLocks:
    """One lock per owning relation.

    Held around count + persist + associate so that concurrent uploads in
    this process cannot jointly exceed a ``maxFiles`` limit. Uploads
    handled by other processes are not covered.

    Entries are weakly referenced: a lock lives only while some upload
    holds or waits on it, so per-session keys do not accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, key: tuple) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: tuple) -> Iterator[None]:
        with self.lock_for(key):
            yield


_default_locks = RelationLocks()


class UploadTransaction:
    """Orchestrates identity check, rules, validation, persistence and reporting."""

    def __init__(
        self,
        target: UploadTarget,
        relation: FileRelation,
        store: FileStore,
        config: Optional[WidgetConfig] = None,
        resolver: Optional[RuleResolver] = None,
        validator: Optional[UploadValidator] = None,
        reporter: Optional[ResponseReporter] = None,
        locks: Optional[RelationLocks] = None,
        serialize: bool = True,
    ):
        """Initialize the transaction.

        Args:
            target: Widget, field and owner this upload belongs to
            relation: Owning relation that receives the stored file
            store: File store persisting the bytes
            config: Widget configuration (explicit rules, types, mode)
            resolver: Rule resolver; built from ``config`` if omitted
            validator: Upload validator with its rule registry
            reporter: Response reporter
            locks: Lock table shared between transactions
            serialize: Hold the relation lock around count/persist/associate
        """
        self.target = target
        self.relation = relation
        self.store = store
        self.config = config or WidgetConfig()
        self.resolver = resolver or RuleResolver(self.config)
        self.validator = validator or UploadValidator()
        self.reporter = reporter or ResponseReporter()
        self.locks = locks or _default_locks
        self.serialize = serialize

        self.state = TransactionState.AWAITING_REQUEST
        self.rules: Optional[RuleSet] = None
        self.stored_files: list[StoredFile] = []
        self.response: Optional[UploadResponse] = None

    def run(self, request: UploadRequest) -> Optional[UploadResponse]:
        """Handle one upload request.

        Args:
            request: Inbound request headers and files

        Returns:
            UploadResponse, or None when the request targets another widget
        """
        if self.state != TransactionState.AWAITING_REQUEST:
            raise TransactionStateError(
                "Upload transaction has already handled a request",
                state=self.state.value,
            )

        if not self.is_addressed_to_widget(request):
            return None
        self._transition(TransactionState.IDENTITY_CHECKED)

        with upload_log_context(widget_id=self.target.widget_id, field=self.target.field_name):
            try:
                payload = self._process(request)
            except UploadGuardError as e:
                return self._fail(e)
            except Exception as e:
                logger.error("upload_unexpected_error", error=str(e), exc_info=True)
                return self._fail(UploadGuardError(str(e), error_code="UPLOAD_ERROR"))

            self._transition(TransactionState.REPORTED)
            self.response = self.reporter.report_success(payload)
            return self.response

    def is_addressed_to_widget(self, request: UploadRequest) -> bool:
        unique_id = request.header(UPLOAD_HEADER)
        return bool(unique_id) and unique_id == self.target.widget_id

    def _process(self, request: UploadRequest) -> Union[dict[str, Any], list[dict[str, Any]]]:
        files = self._extract_files(request)

        self.rules = self.resolver.resolve(self.target, self.config.rules)
        self._transition(TransactionState.RULES_RESOLVED)

        lock = self.locks.hold(self.target.lock_key()) if self.serialize else nullcontext()
        with lock:
            self._validate(files)
            self._transition(TransactionState.VALIDATED)

            batch = files if isinstance(files, list) else [files]
            self._persist(batch)
            self._associate()

        payloads = [stored.to_payload() for stored in self.stored_files]
        logger.info(
            "upload_completed",
            file_ids=[stored.id for stored in self.stored_files],
            session_key=self.target.session_key,
        )
        return payloads if isinstance(files, list) else payloads[0]

    def _extract_files(self, request: UploadRequest) -> Union[UploadedFile, list[UploadedFile]]:
        keys = [FILE_FIELD]
        if self.config.mode.is_multi:
            keys.append(f"{FILE_FIELD}[]")

        for key in keys:
            if request.has_file(key):
                return request.file(key)
        raise MissingFileError(field=FILE_FIELD)

    def _validate(self, files: Union[UploadedFile, list[UploadedFile]]) -> None:
        context = ValidationContext(
            attribute=FILE_FIELD,
            target=self.target,
            relation=self.relation,
        )
        outcome = self.validator.validate(files, self.rules, context)

        if not outcome.valid:
            raise ValidationFailedError(outcome.summary(), violations=outcome.violations)
        if not outcome.file_intact:
            raise InvalidFileError()

    def _persist(self, batch: list[UploadedFile]) -> None:
        try:
            is_public = self.relation.is_public()
            for uploaded in batch:
                self.stored_files.append(self.store.create(uploaded, is_public=is_public))
        except UploadGuardError as e:
            raise PersistenceFailedError(e.message, operation="create") from e
        except Exception as e:
            raise PersistenceFailedError(str(e), operation="create") from e
        self._transition(TransactionState.PERSISTED)

    def _associate(self) -> None:
        for stored in self.stored_files:
            try:
                self.relation.add(stored, self.target.session_key)
            except Exception as e:
                # Stored bytes stay behind; cleanup belongs to the store
                logger.error(
                    "upload_association_failed",
                    stored_file_id=stored.id,
                    error=str(e),
                )
                message = e.message if isinstance(e, UploadGuardError) else str(e)
                raise PersistenceFailedError(
                    message,
                    operation="add",
                    stored_file_id=stored.id,
                ) from e
        self._transition(TransactionState.ASSOCIATED)

    def _fail(self, error: UploadGuardError) -> UploadResponse:
        self._transition(TransactionState.FAILED)
        self.response = self.reporter.report_error(error)
        return self.response

    def _transition(self, new_state: TransactionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise TransactionStateError(
                f"Cannot move upload transaction from {self.state.value} to {new_state.value}",
                state=self.state.value,
            )
        self.state = new_state
