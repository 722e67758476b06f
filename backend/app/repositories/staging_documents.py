from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from bson import ObjectId
from pymongo.change_stream import CollectionChangeStream
from pymongo.collection import Collection

INSERT_EVENTS_PIPELINE: list[dict[str, Any]] = [{"$match": {"operationType": "insert"}}]


class StagingDocumentStore:
    """Narrow access to the staging collection written by upstream producers."""

    def __init__(self, collection: Collection):
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.full_name

    def iter_documents(self) -> Iterator[dict[str, Any]]:
        # natural order; the cursor is lazy so large backlogs are streamed
        with self._collection.find({}) as cursor:
            yield from cursor

    def delete_many(self, document_ids: list[Any]) -> int:
        if not document_ids:
            return 0
        result = self._collection.delete_many({"_id": {"$in": document_ids}})
        return int(result.deleted_count)

    def delete_one(self, document_id: Any) -> bool:
        result = self._collection.delete_one({"_id": document_id})
        return result.deleted_count > 0

    def watch_inserts(self, *, max_await_time_ms: int) -> CollectionChangeStream:
        return self._collection.watch(
            pipeline=INSERT_EVENTS_PIPELINE,
            max_await_time_ms=max_await_time_ms,
        )


def normalize_document_id(raw_id: Any) -> ObjectId | None:
    """Accept an ObjectId, its hex string, or extended JSON ``{"$oid": ...}``."""
    if isinstance(raw_id, ObjectId):
        return raw_id
    if isinstance(raw_id, dict):
        raw_id = raw_id.get("$oid")
    if not isinstance(raw_id, str):
        return None
    candidate = raw_id.strip()
    if not ObjectId.is_valid(candidate):
        return None
    return ObjectId(candidate)
