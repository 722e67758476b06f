from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.db.models import CapturedValue


def insert_captured_value(
    db: Session,
    *,
    unixtime: datetime,
    binding_pk: int,
    valor: float,
    estacao_id: int,
) -> CapturedValue:
    value = CapturedValue(
        unixtime=unixtime,
        binding_pk=binding_pk,
        valor=valor,
        estacao_id=estacao_id,
    )
    db.add(value)
    return value


def count_captured_values(db: Session, *, estacao_id: int | None = None) -> int:
    statement = select(func.count(CapturedValue.id))
    if estacao_id is not None:
        statement = statement.where(CapturedValue.estacao_id == estacao_id)
    return int(db.scalar(statement) or 0)
