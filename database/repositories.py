"""
Repository Pattern for personnel record data access

Repositories run parameterized statements on the session of the current
unit of work. They never commit; the caller owns the transaction.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple

from sqlalchemy import select, func, case, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    Officer,
    TrainingRecord,
    CompetencyRecord,
    Evaluation,
    SYSTEM_USER_ID,
)
from database.monitoring import async_timed_query
from errors import ConflictError, extract_diagnostics
from validation import (
    OfficerInput,
    CompetencyInput,
    EvaluationInput,
    SEARCH_RESULT_LIMIT,
)

logger = logging.getLogger(__name__)

DUPLICATE_OFFICER_MESSAGE = 'Ya existe un oficial con el mismo CURP, CUIP o CUP'

# Columns returned by officer search
SEARCH_COLUMNS = (
    Officer.id,
    Officer.nombre_completo,
    Officer.curp,
    Officer.cuip,
    Officer.cup,
    Officer.grado,
    Officer.cargo_actual,
)


# ============================================
# OFFICER REPOSITORY
# ============================================

class OfficerRepository:
    """Repository for officer records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @async_timed_query("officers.find_conflicting")
    async def find_conflicting(self, curp: str, cuip: str, cup: str) -> Optional[int]:
        """
        Return the id of an officer sharing any of the three codes.

        The codes are compared as stored (uppercase); callers pass
        normalized values.
        """
        query = select(Officer.id).where(
            or_(
                Officer.curp == curp,
                Officer.cuip == cuip,
                Officer.cup == cup,
            )
        ).limit(1)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    @async_timed_query("officers.exists")
    async def exists(self, officer_id: int) -> bool:
        result = await self.session.execute(
            select(Officer.id).where(Officer.id == officer_id)
        )
        return result.scalar_one_or_none() is not None

    @async_timed_query("officers.create")
    async def create(self, data: OfficerInput, ruta_pdf: Optional[str] = None) -> Officer:
        """
        Insert an officer and flush to obtain its id.

        Raises:
            ConflictError: If a unique constraint on CURP, CUIP or CUP fires
        """
        officer = Officer(
            nombre_completo=data.nombre_completo,
            curp=data.curp,
            cuip=data.cuip,
            cup=data.cup,
            edad=data.edad,
            sexo=data.sexo,
            estado_civil=data.estado_civil,
            area_adscripcion=data.area_adscripcion,
            grado=data.grado,
            cargo_actual=data.cargo_actual,
            fecha_ingreso=data.fecha_ingreso,
            escolaridad=data.escolaridad,
            telefono_contacto=data.telefono_contacto,
            telefono_emergencia=data.telefono_emergencia,
            funcion=data.funcion,
            ruta_pdf=ruta_pdf,
        )
        self.session.add(officer)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                DUPLICATE_OFFICER_MESSAGE,
                fields=['curp', 'cuip', 'cup'],
                details=extract_diagnostics(e),
            ) from e

        logger.debug("Created officer: %s", officer.id)
        return officer

    @async_timed_query("officers.search")
    async def search(self, term: str, limit: int = SEARCH_RESULT_LIMIT) -> List[Dict[str, Any]]:
        """
        Case-insensitive substring search on name, codes and current post.

        ``%`` and ``_`` in the term match literally.
        """
        query = select(*SEARCH_COLUMNS).where(
            or_(
                Officer.nombre_completo.icontains(term, autoescape=True),
                Officer.curp.icontains(term, autoescape=True),
                Officer.cuip.icontains(term, autoescape=True),
                Officer.cup.icontains(term, autoescape=True),
                Officer.cargo_actual.icontains(term, autoescape=True),
            )
        ).order_by(
            Officer.nombre_completo.asc(),
            Officer.id.asc()
        ).limit(limit)

        result = await self.session.execute(query)
        return [dict(row) for row in result.mappings()]

    @async_timed_query("officers.count_by_status")
    async def count_by_status(self) -> Tuple[int, int]:
        """
        Count active and inactive officers in one statement.

        Returns:
            Tuple of (activos, inactivos)
        """
        query = select(
            func.coalesce(func.sum(case((Officer.activo.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Officer.activo.is_(False), 1), else_=0)), 0),
        )
        result = await self.session.execute(query)
        activos, inactivos = result.one()
        return int(activos), int(inactivos)


# ============================================
# TRAINING REPOSITORY
# ============================================

class TrainingRepository:
    """Repository for training records (read only)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @async_timed_query("training.list")
    async def list(self, officer_id: Optional[int] = None) -> List[Tuple[TrainingRecord, Optional[str]]]:
        """
        Training records with the officer's name, newest course first.

        Records whose officer no longer exists are still returned, with a
        null name.
        """
        query = select(
            TrainingRecord,
            Officer.nombre_completo.label("nombre_oficial")
        ).outerjoin(
            Officer, TrainingRecord.id_oficial == Officer.id
        )

        if officer_id is not None:
            query = query.where(TrainingRecord.id_oficial == officer_id)

        query = query.order_by(
            TrainingRecord.fecha_curso.desc().nulls_last(),
            TrainingRecord.id.desc()
        )

        result = await self.session.execute(query)
        return [(row[0], row[1]) for row in result.all()]


# ============================================
# COMPETENCY REPOSITORY
# ============================================

class CompetencyRepository:
    """Repository for basic-competency certifications."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @async_timed_query("competencies.create")
    async def create(self, data: CompetencyInput, ruta_archivo: Optional[str] = None) -> CompetencyRecord:
        record = CompetencyRecord(
            id_oficial=data.id_oficial,
            fecha=data.fecha,
            institucion=data.institucion,
            resultado=data.resultado,
            vigencia=data.vigencia,
            enlace_constancia=data.enlace_constancia,
            ruta_archivo=ruta_archivo,
        )
        self.session.add(record)
        await self.session.flush()
        logger.debug("Created competency record: %s", record.id)
        return record

    @async_timed_query("competencies.list")
    async def list(self, officer_id: Optional[int] = None) -> List[Tuple[CompetencyRecord, Optional[str]]]:
        """Competency records with the officer's name, most recent first."""
        query = select(
            CompetencyRecord,
            Officer.nombre_completo.label("nombre_oficial")
        ).outerjoin(
            Officer, CompetencyRecord.id_oficial == Officer.id
        )

        if officer_id is not None:
            query = query.where(CompetencyRecord.id_oficial == officer_id)

        query = query.order_by(
            CompetencyRecord.fecha.desc().nulls_last(),
            CompetencyRecord.id.desc()
        )

        result = await self.session.execute(query)
        return [(row[0], row[1]) for row in result.all()]


# ============================================
# EVALUATION REPOSITORY
# ============================================

class EvaluationRepository:
    """Repository for officer evaluations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @async_timed_query("evaluations.create")
    async def create(self, data: EvaluationInput) -> Evaluation:
        evaluation = Evaluation(
            id_oficial=data.id_oficial,
            tipo_evaluacion=data.tipo_evaluacion,
            fecha_evaluacion=data.fecha_evaluacion,
            calificacion=data.calificacion,
            evaluador=data.evaluador,
            observaciones=data.observaciones,
            usuario_registro=SYSTEM_USER_ID,
        )
        self.session.add(evaluation)
        await self.session.flush()
        logger.debug("Created evaluation: %s", evaluation.id)
        return evaluation

    @async_timed_query("evaluations.list")
    async def list(self) -> List[Tuple[Evaluation, str]]:
        """
        Evaluations joined to their officer.

        Inner join: an evaluation without a valid officer is left out.
        Ordered by evaluation date, then registration time, newest first.
        """
        query = select(
            Evaluation,
            Officer.nombre_completo.label("nombre_oficial")
        ).join(
            Officer, Evaluation.id_oficial == Officer.id
        ).order_by(
            Evaluation.fecha_evaluacion.desc(),
            Evaluation.fecha_registro.desc(),
            Evaluation.id.desc()
        )

        result = await self.session.execute(query)
        return [(row[0], row[1]) for row in result.all()]
