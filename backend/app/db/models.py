from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

# The tables below are owned by the station registry. This service only reads
# stations and bindings and appends captured values.


class Station(Base):
    __tablename__ = "estacoes"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    bindings: Mapped[list["StationParameter"]] = relationship(back_populates="station")


class ParameterType(Base):
    __tablename__ = "tipo_parametro"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True)
    json_id: Mapped[str | None] = mapped_column(String(64))
    offset: Mapped[float | None] = mapped_column(Numeric(asdecimal=False))
    fator: Mapped[float | None] = mapped_column(Numeric(asdecimal=False))

    bindings: Mapped[list["StationParameter"]] = relationship(back_populates="parameter_type")


class StationParameter(Base):
    __tablename__ = "parametro"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True)
    estacao_est_pk: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("estacoes.pk", ondelete="RESTRICT"),
        nullable=False,
    )
    tipo_parametro_pk: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tipo_parametro.pk", ondelete="RESTRICT"),
        nullable=False,
    )
    offset: Mapped[float | None] = mapped_column(Numeric(asdecimal=False))
    fator: Mapped[float | None] = mapped_column(Numeric(asdecimal=False))

    station: Mapped[Station] = relationship(back_populates="bindings")
    parameter_type: Mapped[ParameterType] = relationship(back_populates="bindings")


class CapturedValue(Base):
    __tablename__ = "valor_capturado"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unixtime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    binding_pk: Mapped[int] = mapped_column(
        "Parametros_pk",
        Integer,
        ForeignKey("parametro.pk", ondelete="RESTRICT"),
        nullable=False,
    )
    valor: Mapped[float] = mapped_column(Numeric(8, 4, asdecimal=False), nullable=False)
    estacao_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("estacoes.pk", ondelete="RESTRICT"),
        nullable=False,
    )
