from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest import TestCase

from bson import ObjectId
from bson.decimal128 import Decimal128

from app.repositories.stations import StationBinding, StationRecord
from app.services.document_transformer import (
    SKIP_INVALID_TIMESTAMP,
    SKIP_MISSING_IDENTIFIER,
    SKIP_NO_BINDINGS,
    SKIP_NO_VALID_VALUES,
    SKIP_UNKNOWN_STATION,
    parse_document_timestamp,
    parse_numeric_value,
    transform_document,
)


def _binding(binding_pk: int, code: str) -> StationBinding:
    return StationBinding(
        binding_pk=binding_pk,
        parameter_type_pk=binding_pk + 100,
        code=code,
        offset=None,
        factor=None,
    )


class _FakeCache:
    def __init__(
        self,
        *,
        stations: dict[str, StationRecord] | None = None,
        bindings: dict[int, dict[str, StationBinding]] | None = None,
        station_error: Exception | None = None,
    ) -> None:
        self._stations = stations or {}
        self._bindings = bindings or {}
        self._station_error = station_error
        self.station_lookups: list[str] = []

    def resolve_station(self, uuid: str) -> StationRecord | None:
        self.station_lookups.append(uuid)
        if self._station_error is not None:
            raise self._station_error
        return self._stations.get(uuid)

    def resolve_bindings(self, station_pk: int) -> dict[str, StationBinding]:
        return self._bindings.get(station_pk, {})


def _station_cache() -> _FakeCache:
    return _FakeCache(
        stations={"S-1": StationRecord(pk=7, uuid="S-1"), "S-EMPTY": StationRecord(pk=8, uuid="S-EMPTY")},
        bindings={7: {"tempC": _binding(70, "tempC"), "hum": _binding(71, "hum")}},
    )


def _transform(document: dict[str, Any], cache: _FakeCache | None = None):
    return transform_document(document, cache or _station_cache())  # type: ignore[arg-type]


class TransformSkipReasonTests(TestCase):
    def test_missing_uuid_is_skipped_without_lookup(self) -> None:
        cache = _station_cache()

        for document in (
            {"unixtime": 1700000000, "tempC": 1},
            {"UUID": "   ", "unixtime": 1700000000, "tempC": 1},
            {"UUID": 123, "unixtime": 1700000000, "tempC": 1},
        ):
            result = _transform(document, cache)
            self.assertIsNotNone(result.skip)
            self.assertEqual(result.skip.reason, SKIP_MISSING_IDENTIFIER)
            self.assertEqual(result.rows, ())

        self.assertEqual(cache.station_lookups, [])

    def test_uuid_is_trimmed_before_lookup(self) -> None:
        cache = _station_cache()

        result = _transform({"UUID": "  S-1 ", "unixtime": 1700000000, "tempC": 20}, cache)

        self.assertEqual(cache.station_lookups, ["S-1"])
        self.assertFalse(result.skipped)

    def test_unknown_station(self) -> None:
        result = _transform({"UUID": "S-404", "unixtime": 1700000000, "tempC": 1})

        self.assertEqual(result.skip.reason, SKIP_UNKNOWN_STATION)
        self.assertEqual(result.skip.details, "UUID S-404")

    def test_station_without_bindings(self) -> None:
        result = _transform({"UUID": "S-EMPTY", "unixtime": 1700000000, "tempC": 1})

        self.assertEqual(result.skip.reason, SKIP_NO_BINDINGS)

    def test_unparseable_timestamp(self) -> None:
        result = _transform({"UUID": "S-1", "unixtime": "not-a-number", "tempC": 21.5})

        self.assertEqual(result.skip.reason, SKIP_INVALID_TIMESTAMP)
        self.assertEqual(result.skip.details, "Value: not-a-number")
        self.assertEqual(result.rows, ())

    def test_missing_timestamp(self) -> None:
        result = _transform({"UUID": "S-1", "tempC": 21.5})

        self.assertEqual(result.skip.reason, SKIP_INVALID_TIMESTAMP)

    def test_no_valid_values_still_counts_ignored(self) -> None:
        result = _transform({"UUID": "S-1", "unixtime": 1700000000, "tempC": "warm", "other": 1})

        self.assertEqual(result.skip.reason, SKIP_NO_VALID_VALUES)
        self.assertEqual(result.ignored_values, 2)

    def test_lookup_errors_propagate(self) -> None:
        cache = _FakeCache(station_error=RuntimeError("connection refused"))

        with self.assertRaises(RuntimeError):
            _transform({"UUID": "S-1", "unixtime": 1700000000, "tempC": 1}, cache)


class TransformRowsTests(TestCase):
    def test_bound_reading_becomes_one_row_and_unknown_field_is_ignored(self) -> None:
        document = {
            "_id": ObjectId(),
            "UUID": "S-1",
            "unixtime": 1700000000,
            "tempC": 21.5,
            "unknownField": "x",
        }

        result = _transform(document)

        self.assertIsNone(result.skip)
        self.assertEqual(result.ignored_values, 1)
        self.assertEqual(len(result.rows), 1)
        row = result.rows[0]
        self.assertEqual(row.value, 21.5)
        self.assertEqual(row.station_pk, 7)
        self.assertEqual(row.binding_pk, 70)
        self.assertEqual(row.timestamp, datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc))

    def test_unbound_and_non_numeric_fields_are_ignored_not_inserted(self) -> None:
        document = {
            "UUID": "S-1",
            "unixtime": "1700000000",
            "tempC": "21.5",
            "hum": True,
            "pressure": 1013,
            "wind": None,
        }

        result = _transform(document)

        self.assertEqual([row.binding_pk for row in result.rows], [70])
        self.assertEqual(result.rows[0].value, 21.5)
        self.assertEqual(result.ignored_values, 3)

    def test_rows_follow_document_field_order(self) -> None:
        result = _transform({"UUID": "S-1", "hum": 55, "unixtime": 1700000000, "tempC": 20})

        self.assertEqual([row.binding_pk for row in result.rows], [71, 70])


class TimestampParsingTests(TestCase):
    def test_seconds_and_milliseconds(self) -> None:
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

        self.assertEqual(parse_document_timestamp(1700000000), expected)
        self.assertEqual(parse_document_timestamp(1700000000000), expected)
        self.assertEqual(parse_document_timestamp(" 1700000000 "), expected)
        self.assertEqual(parse_document_timestamp("1700000000000"), expected)
        self.assertEqual(
            parse_document_timestamp(1700000000.5),
            expected + timedelta(milliseconds=500),
        )

    def test_bson_decimal_timestamp(self) -> None:
        expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

        self.assertEqual(parse_document_timestamp(Decimal128("1700000000")), expected)
        self.assertEqual(parse_document_timestamp(Decimal128("1700000000000")), expected)
        self.assertIsNone(parse_document_timestamp(Decimal128("NaN")))

        result = _transform({"UUID": "S-1", "unixtime": Decimal128("1700000000"), "tempC": 20})
        self.assertIsNone(result.skip)
        self.assertEqual(result.rows[0].timestamp, expected)

    def test_native_datetime_is_kept(self) -> None:
        aware = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=-3)))
        naive = datetime(2024, 1, 2, 3, 4, 5)

        self.assertEqual(parse_document_timestamp(aware), datetime(2024, 1, 2, 6, 4, 5, tzinfo=timezone.utc))
        self.assertEqual(parse_document_timestamp(naive), datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

    def test_invalid_values(self) -> None:
        for value in (None, "", "abc", True, float("nan"), float("inf"), [1], 10**20):
            self.assertIsNone(parse_document_timestamp(value), msg=repr(value))


class NumericParsingTests(TestCase):
    def test_accepts_numbers_and_numeric_strings(self) -> None:
        self.assertEqual(parse_numeric_value(3), 3.0)
        self.assertEqual(parse_numeric_value(-1.25), -1.25)
        self.assertEqual(parse_numeric_value(" 4.5 "), 4.5)
        self.assertEqual(parse_numeric_value(Decimal("2.75")), 2.75)
        self.assertEqual(parse_numeric_value(Decimal128("1.5")), 1.5)

    def test_rejects_non_finite_and_non_numeric(self) -> None:
        for value in (None, True, False, "x", "", "nan", "inf", float("inf"), {"v": 1}, Decimal("NaN")):
            self.assertIsNone(parse_numeric_value(value), msg=repr(value))
