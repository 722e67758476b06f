from __future__ import annotations

from datetime import datetime, timezone
from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.models import CapturedValue
from app.db.session import create_db_engine, create_session_factory
from app.repositories.captured_values import count_captured_values, insert_captured_value
from app.services.document_transformer import CandidateValue
from app.services.value_writer import CapturedValueWriter, ValuePersistError

_TIMESTAMP = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


class CapturedValueWriterTests(TestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine(
            "sqlite+pysqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = create_session_factory(self.engine)
        self.writer = CapturedValueWriter(session_factory=self.session_factory)

    def tearDown(self) -> None:
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _count(self, estacao_id: int | None = None) -> int:
        with self.session_factory() as db:
            return count_captured_values(db, estacao_id=estacao_id)

    def test_writes_all_rows(self) -> None:
        rows = [
            CandidateValue(timestamp=_TIMESTAMP, station_pk=1, binding_pk=10, value=21.5),
            CandidateValue(timestamp=_TIMESTAMP, station_pk=1, binding_pk=11, value=55.0),
        ]

        self.assertEqual(self.writer.write(rows), 2)

        self.assertEqual(self._count(), 2)
        self.assertEqual(self._count(estacao_id=1), 2)
        self.assertEqual(self._count(estacao_id=2), 0)
        with self.session_factory() as db:
            stored = db.scalars(select(CapturedValue).order_by(CapturedValue.id)).all()
        self.assertEqual([item.binding_pk for item in stored], [10, 11])
        self.assertEqual(stored[0].valor, 21.5)
        self.assertEqual(stored[0].unixtime.replace(tzinfo=None), datetime(2023, 11, 14, 22, 13, 20))

    def test_failure_on_any_row_rolls_back_the_document(self) -> None:
        rows = [
            CandidateValue(timestamp=_TIMESTAMP, station_pk=1, binding_pk=10, value=21.5),
            CandidateValue(timestamp=_TIMESTAMP, station_pk=1, binding_pk=11, value=55.0),
            CandidateValue(timestamp=_TIMESTAMP, station_pk=1, binding_pk=12, value=3.0),
        ]
        calls: list[dict[str, object]] = []

        def _flaky_insert(db, **kwargs):
            calls.append(kwargs)
            if len(calls) == 2:
                raise OperationalError("INSERT INTO valor_capturado", {}, Exception("disk I/O error"))
            return insert_captured_value(db, **kwargs)

        with patch("app.services.value_writer.insert_captured_value", side_effect=_flaky_insert):
            with self.assertRaises(ValuePersistError) as ctx:
                self.writer.write(rows)

        self.assertEqual(ctx.exception.reason, "persist-failed")
        self.assertEqual(ctx.exception.row_count, 3)
        self.assertEqual(len(calls), 2)
        self.assertEqual(self._count(), 0)

    def test_constraint_violation_is_reported_as_persist_failure(self) -> None:
        rows = [
            CandidateValue(timestamp=_TIMESTAMP, station_pk=1, binding_pk=10, value=21.5),
            CandidateValue(timestamp=_TIMESTAMP, station_pk=None, binding_pk=11, value=1.0),  # type: ignore[arg-type]
        ]

        with self.assertRaises(ValuePersistError):
            self.writer.write(rows)

        self.assertEqual(self._count(), 0)

    def test_empty_batch_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.writer.write([])
