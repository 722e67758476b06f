from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.models import ParameterType, Station, StationParameter


@dataclass(frozen=True)
class StationRecord:
    pk: int
    uuid: str


@dataclass(frozen=True)
class StationBinding:
    binding_pk: int
    parameter_type_pk: int
    code: str
    offset: float | None
    factor: float | None


def find_station_by_uuid(db: Session, uuid: str) -> StationRecord | None:
    row = db.execute(
        select(Station.pk, Station.uuid).where(Station.uuid == uuid).limit(1)
    ).first()
    if row is None:
        return None
    return StationRecord(pk=row.pk, uuid=row.uuid)


def list_station_bindings(db: Session, station_pk: int) -> dict[str, StationBinding]:
    rows = db.execute(
        select(
            StationParameter.pk.label("binding_pk"),
            StationParameter.tipo_parametro_pk.label("parameter_type_pk"),
            ParameterType.json_id.label("code"),
            func.coalesce(StationParameter.offset, ParameterType.offset).label("offset"),
            func.coalesce(StationParameter.fator, ParameterType.fator).label("factor"),
        )
        .join(ParameterType, ParameterType.pk == StationParameter.tipo_parametro_pk)
        .where(StationParameter.estacao_est_pk == station_pk)
        .order_by(StationParameter.pk.asc())
    ).all()

    bindings: dict[str, StationBinding] = {}
    for row in rows:
        if not row.code:
            continue
        bindings[row.code] = StationBinding(
            binding_pk=row.binding_pk,
            parameter_type_pk=row.parameter_type_pk,
            code=row.code,
            offset=_optional_float(row.offset),
            factor=_optional_float(row.factor),
        )
    return bindings


def _optional_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
