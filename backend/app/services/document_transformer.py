from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Literal

from bson.decimal128 import Decimal128

if TYPE_CHECKING:
    from app.services.metadata_cache import MetadataCache

SkipReason = Literal[
    "missing-identifier",
    "unknown-station",
    "no-bindings",
    "invalid-timestamp",
    "no-valid-values",
]

SKIP_MISSING_IDENTIFIER: SkipReason = "missing-identifier"
SKIP_UNKNOWN_STATION: SkipReason = "unknown-station"
SKIP_NO_BINDINGS: SkipReason = "no-bindings"
SKIP_INVALID_TIMESTAMP: SkipReason = "invalid-timestamp"
SKIP_NO_VALID_VALUES: SkipReason = "no-valid-values"

STATION_FIELD = "UUID"
TIMESTAMP_FIELD = "unixtime"
DOCUMENT_ID_FIELD = "_id"
RESERVED_FIELDS: frozenset[str] = frozenset({DOCUMENT_ID_FIELD, STATION_FIELD, TIMESTAMP_FIELD})

MILLISECONDS_THRESHOLD = 1_000_000_000_000


@dataclass(frozen=True)
class CandidateValue:
    timestamp: datetime
    station_pk: int
    binding_pk: int
    value: float


@dataclass(frozen=True)
class DocumentSkip:
    reason: SkipReason
    details: str | None = None


@dataclass(frozen=True)
class TransformResult:
    rows: tuple[CandidateValue, ...] = ()
    skip: DocumentSkip | None = None
    ignored_values: int = 0

    @property
    def skipped(self) -> bool:
        return self.skip is not None


def transform_document(document: dict[str, Any], cache: "MetadataCache") -> TransformResult:
    """Turn one staging document into candidate rows or a skip reason.

    Data problems come back as a ``DocumentSkip``. Exceptions raised by the
    cache (database faults) are left to the caller.
    """
    uuid = extract_station_uuid(document)
    if uuid is None:
        return TransformResult(skip=DocumentSkip(reason=SKIP_MISSING_IDENTIFIER))

    station = cache.resolve_station(uuid)
    if station is None:
        return TransformResult(skip=DocumentSkip(reason=SKIP_UNKNOWN_STATION, details=f"UUID {uuid}"))

    bindings = cache.resolve_bindings(station.pk)
    if not bindings:
        return TransformResult(skip=DocumentSkip(reason=SKIP_NO_BINDINGS, details=f"UUID {uuid}"))

    raw_timestamp = document.get(TIMESTAMP_FIELD)
    timestamp = parse_document_timestamp(raw_timestamp)
    if timestamp is None:
        return TransformResult(
            skip=DocumentSkip(reason=SKIP_INVALID_TIMESTAMP, details=f"Value: {raw_timestamp}")
        )

    rows: list[CandidateValue] = []
    ignored = 0
    for key, raw_value in document.items():
        if key in RESERVED_FIELDS:
            continue
        binding = bindings.get(key)
        if binding is None:
            ignored += 1
            continue
        value = parse_numeric_value(raw_value)
        if value is None:
            ignored += 1
            continue
        rows.append(
            CandidateValue(
                timestamp=timestamp,
                station_pk=station.pk,
                binding_pk=binding.binding_pk,
                value=value,
            )
        )

    if not rows:
        return TransformResult(
            skip=DocumentSkip(reason=SKIP_NO_VALID_VALUES, details=f"UUID {uuid}"),
            ignored_values=ignored,
        )
    return TransformResult(rows=tuple(rows), ignored_values=ignored)


def extract_station_uuid(document: dict[str, Any]) -> str | None:
    raw = document.get(STATION_FIELD)
    if not isinstance(raw, str):
        return None
    uuid = raw.strip()
    return uuid or None


def parse_document_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return _to_utc(value)

    numeric = parse_numeric_value(value)
    if numeric is None:
        return None
    millis = numeric if abs(numeric) > MILLISECONDS_THRESHOLD else numeric * 1000.0
    return _millis_to_datetime(millis)


def parse_numeric_value(value: Any) -> float | None:
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    return _coerce_finite_float(value)


def _coerce_finite_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        try:
            numeric = float(value)
        except (InvalidOperation, OverflowError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return None
        try:
            numeric = float(raw)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(numeric):
        return None
    return numeric


def _millis_to_datetime(millis: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
