from __future__ import annotations

from pydantic import BaseModel, Field

from app.services.staging_sync import SyncSummary


class SyncSkipResponse(BaseModel):
    id: str
    reason: str
    details: str | None = None


class SyncErrorResponse(BaseModel):
    id: str
    error: str


class SyncSummaryResponse(BaseModel):
    total_documents: int = Field(ge=0)
    processed_documents: int = Field(ge=0)
    inserted_values: int = Field(ge=0)
    ignored_values: int = Field(ge=0)
    removed_documents: int = Field(ge=0)
    skipped_documents: list[SyncSkipResponse]
    errors: list[SyncErrorResponse]

    @classmethod
    def from_summary(cls, summary: SyncSummary) -> "SyncSummaryResponse":
        return cls(
            total_documents=summary.total_documents,
            processed_documents=summary.processed_documents,
            inserted_values=summary.inserted_values,
            ignored_values=summary.ignored_values,
            removed_documents=summary.removed_documents,
            skipped_documents=[
                SyncSkipResponse(id=item.id, reason=item.reason, details=item.details)
                for item in summary.skipped_documents
            ],
            errors=[SyncErrorResponse(id=item.id, error=item.error) for item in summary.errors],
        )
