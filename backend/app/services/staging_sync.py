from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any

from pymongo.errors import PyMongoError

from app.repositories.staging_documents import StagingDocumentStore
from app.services.document_transformer import DOCUMENT_ID_FIELD, transform_document
from app.services.metadata_cache import MetadataCache
from app.services.value_writer import CapturedValueWriter


@dataclass(frozen=True)
class SyncSkipInfo:
    id: str
    reason: str
    details: str | None = None


@dataclass(frozen=True)
class SyncErrorInfo:
    id: str
    error: str


@dataclass
class SyncSummary:
    total_documents: int = 0
    processed_documents: int = 0
    inserted_values: int = 0
    ignored_values: int = 0
    removed_documents: int = 0
    skipped_documents: list[SyncSkipInfo] = field(default_factory=list)
    errors: list[SyncErrorInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class StagingSyncService:
    """Drains the staging collection into captured values, one pass at a time.

    Skipped documents are swept together with processed ones; documents that
    hit a transient failure stay in the collection for the next run. All
    deletions of a run go out as one ``delete_many`` after the pass.
    """

    def __init__(
        self,
        *,
        document_store: StagingDocumentStore,
        metadata_cache: MetadataCache,
        writer: CapturedValueWriter,
    ):
        self._document_store = document_store
        self._metadata_cache = metadata_cache
        self._writer = writer
        self._logger = logging.getLogger("app.staging_sync")
        self._run_lock = Lock()
        self._state_lock = Lock()
        self._runs_total = 0
        self._last_run_ts: datetime | None = None
        self._last_summary: SyncSummary | None = None

    def run_once(self) -> SyncSummary:
        with self._run_lock:
            summary = self._run_pass()
        with self._state_lock:
            self._runs_total += 1
            self._last_run_ts = datetime.now(timezone.utc)
            self._last_summary = summary
        return summary

    def get_status_snapshot(self) -> dict[str, Any]:
        with self._state_lock:
            return {
                "runs_total": self._runs_total,
                "last_run_ts": self._last_run_ts.isoformat() if self._last_run_ts else None,
                "last_summary": self._last_summary.to_dict() if self._last_summary else None,
                "metadata_cache": self._metadata_cache.get_status_snapshot(),
            }

    def _run_pass(self) -> SyncSummary:
        summary = SyncSummary()
        ids_to_remove: list[Any] = []
        missing_id_count = 0

        try:
            for document in self._document_store.iter_documents():
                summary.total_documents += 1
                if self._process_document(document, summary, ids_to_remove):
                    missing_id_count += 1
        except PyMongoError as exc:
            # rows already committed this pass must still leave staging
            self._logger.error(
                "staging enumeration failed after documents=%s error=%s",
                summary.total_documents,
                exc,
            )
            summary.errors.append(SyncErrorInfo(id="enumerate", error=str(exc)))

        if ids_to_remove:
            try:
                summary.removed_documents = self._document_store.delete_many(ids_to_remove)
            except Exception as exc:
                self._logger.exception("staging bulk delete failed count=%s", len(ids_to_remove))
                summary.errors.append(
                    SyncErrorInfo(id="bulk-delete", error=f"{len(ids_to_remove)} document(s) not removed: {exc}")
                )

        if missing_id_count > 0:
            summary.errors.append(
                SyncErrorInfo(
                    id="unknown",
                    error=f"{missing_id_count} document(s) could not be removed because they have no _id.",
                )
            )

        self._log_summary(summary)
        return summary

    def _process_document(
        self,
        document: dict[str, Any],
        summary: SyncSummary,
        ids_to_remove: list[Any],
    ) -> bool:
        """Handle one document; returns True when it should go but has no ``_id``."""
        raw_id = document.get(DOCUMENT_ID_FIELD)
        doc_label = str(raw_id) if raw_id is not None else f"document-{summary.total_documents}"

        try:
            result = transform_document(document, self._metadata_cache)
        except Exception as exc:
            self._logger.warning("document transform failed id=%s error=%s", doc_label, exc)
            summary.errors.append(SyncErrorInfo(id=doc_label, error=str(exc)))
            return False

        summary.ignored_values += result.ignored_values
        if result.skip is not None:
            summary.skipped_documents.append(
                SyncSkipInfo(id=doc_label, reason=result.skip.reason, details=result.skip.details)
            )
        else:
            try:
                inserted = self._writer.write(result.rows)
            except Exception as exc:
                summary.errors.append(SyncErrorInfo(id=doc_label, error=str(exc)))
                return False
            summary.processed_documents += 1
            summary.inserted_values += inserted

        if raw_id is None:
            return True
        ids_to_remove.append(raw_id)
        return False

    def _log_summary(self, summary: SyncSummary) -> None:
        if summary.total_documents > 0 or summary.removed_documents > 0:
            self._logger.info(
                "staging sync processed=%s/%s inserted=%s removed=%s ignored=%s skipped=%s",
                summary.processed_documents,
                summary.total_documents,
                summary.inserted_values,
                summary.removed_documents,
                summary.ignored_values,
                len(summary.skipped_documents),
            )
        if summary.errors:
            self._logger.warning(
                "staging sync finished with errors count=%s errors=%s",
                len(summary.errors),
                [asdict(error) for error in summary.errors],
            )
