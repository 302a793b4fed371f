"""
SQLAlchemy ORM Models for the Police Personnel Records Service

Maps the existing ``sistema_policial`` schema. Table and column names are
the database's own (Spanish) names, and they double as the JSON keys the
read endpoints return.

Tables:
1. oficiales - Officer personnel records
2. formacion - Training courses taken by officers
3. competencias_basicas - Basic-competency certifications
4. evaluaciones - Officer evaluations
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, Numeric, Boolean, Date, DateTime, Text,
    ForeignKey, Index, CheckConstraint, true
)
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# Recording user for evaluations; there is no user directory yet
SYSTEM_USER_ID = 1
SYSTEM_USER_NAME = "Sistema"


class RegistrationTimestampMixin:
    """Server-assigned registration timestamp"""
    fecha_registro: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )


class Officer(Base, RegistrationTimestampMixin):
    """
    Police officer personnel record.

    CURP, CUIP and CUP are each unique on their own and are stored uppercase.
    """
    __tablename__ = "oficiales"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    nombre_completo: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    # Identity codes
    curp: Mapped[str] = mapped_column(String(18), nullable=False, unique=True)
    cuip: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    cup: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    # Personal data
    edad: Mapped[int] = mapped_column(Integer, nullable=False)
    sexo: Mapped[str] = mapped_column(String(20), nullable=False)
    estado_civil: Mapped[str] = mapped_column(String(50), nullable=False)
    escolaridad: Mapped[str] = mapped_column(String(100), nullable=False)
    telefono_contacto: Mapped[str] = mapped_column(String(20), nullable=False)
    telefono_emergencia: Mapped[str] = mapped_column(String(20), nullable=False)

    # Assignment
    area_adscripcion: Mapped[str] = mapped_column(String(100), nullable=False)
    grado: Mapped[str] = mapped_column(String(100), nullable=False)
    cargo_actual: Mapped[str] = mapped_column(String(100), nullable=False)
    fecha_ingreso: Mapped[date] = mapped_column(Date, nullable=False)
    funcion: Mapped[str] = mapped_column(String(100), nullable=False)

    # Basename of the attached PDF inside the upload directory
    ruta_pdf: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    activo: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default=true(),
        nullable=False,
        index=True
    )

    __table_args__ = (
        CheckConstraint('edad BETWEEN 18 AND 100', name='ck_oficiales_edad'),
    )

    def __repr__(self) -> str:
        return f"<Officer(id={self.id}, curp='{self.curp}')>"


class TrainingRecord(Base, RegistrationTimestampMixin):
    """Training course taken by an officer"""
    __tablename__ = "formacion"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id_oficial: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("oficiales.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    nombre_curso: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    institucion: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    fecha_curso: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    fecha_inicio: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    fecha_fin: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index('ix_formacion_oficial_fecha', 'id_oficial', 'fecha_curso'),
    )

    def __repr__(self) -> str:
        return f"<TrainingRecord(id={self.id}, id_oficial={self.id_oficial})>"


class CompetencyRecord(Base, RegistrationTimestampMixin):
    """Basic-competency certification"""
    __tablename__ = "competencias_basicas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id_oficial: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("oficiales.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    fecha: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    institucion: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    resultado: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    vigencia: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    enlace_constancia: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    # URL path of the attached PDF, e.g. /uploads/<basename>
    ruta_archivo: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index('ix_competencias_oficial_fecha', 'id_oficial', 'fecha'),
    )

    def __repr__(self) -> str:
        return f"<CompetencyRecord(id={self.id}, id_oficial={self.id_oficial})>"


class Evaluation(Base, RegistrationTimestampMixin):
    """Officer evaluation"""
    __tablename__ = "evaluaciones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id_oficial: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("oficiales.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tipo_evaluacion: Mapped[str] = mapped_column(String(100), nullable=False)
    fecha_evaluacion: Mapped[date] = mapped_column(Date, nullable=False)
    calificacion: Mapped[Optional[float]] = mapped_column(
        Numeric(5, 2, asdecimal=False),
        nullable=True
    )
    evaluador: Mapped[str] = mapped_column(String(200), nullable=False)
    observaciones: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    usuario_registro: Mapped[int] = mapped_column(
        Integer,
        default=SYSTEM_USER_ID,
        nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            'calificacion IS NULL OR (calificacion >= 0 AND calificacion <= 100)',
            name='ck_evaluaciones_calificacion'
        ),
        Index('ix_evaluaciones_fecha', 'fecha_evaluacion', 'fecha_registro'),
    )

    def __repr__(self) -> str:
        return f"<Evaluation(id={self.id}, id_oficial={self.id_oficial})>"
