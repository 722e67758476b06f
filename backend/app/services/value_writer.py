from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.repositories.captured_values import insert_captured_value
from app.services.document_transformer import CandidateValue


class ValuePersistError(RuntimeError):
    reason = "persist-failed"

    def __init__(self, *, detail: str, row_count: int):
        self.detail = detail
        self.row_count = row_count
        super().__init__(f"failed to persist {row_count} captured value(s): {detail}")


class CapturedValueWriter:
    def __init__(self, *, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._logger = logging.getLogger("app.value_writer")

    def write(self, rows: Sequence[CandidateValue]) -> int:
        """Insert all rows of one source document in a single transaction."""
        if not rows:
            raise ValueError("rows must not be empty")

        with self._session_factory() as db:
            try:
                for row in rows:
                    insert_captured_value(
                        db,
                        unixtime=row.timestamp,
                        binding_pk=row.binding_pk,
                        valor=row.value,
                        estacao_id=row.station_pk,
                    )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                self._logger.warning(
                    "captured value batch rolled back rows=%s station_pk=%s error=%s",
                    len(rows),
                    rows[0].station_pk,
                    exc,
                )
                raise ValuePersistError(detail=str(exc), row_count=len(rows)) from exc
        return len(rows)
