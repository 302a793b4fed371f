"""
Personnel Records Service

Implements the write protocol for officers, competency certifications and
evaluations, and the read-side listings, search and statistics.

Write protocol:
    validate input -> stage upload -> open unit of work
    -> existence / uniqueness check -> move attachment into place
    -> insert -> commit

Any failure rolls the unit of work back and deletes every file the request
wrote, staged or promoted, so a failed request leaves neither a row nor an
orphaned upload. The attachment is placed before the commit, so a committed
row never points at a file that was not stored.

Usage:
    service = RecordService(provider, blob_store)
    officer_id = await service.create_officer(form_fields, upload)
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import UploadFile

from blob_store import BlobStore, StagedFile
from database.connection import DatabaseSessionProvider
from database.models import SYSTEM_USER_NAME
from database.repositories import (
    OfficerRepository,
    TrainingRepository,
    CompetencyRepository,
    EvaluationRepository,
    DUPLICATE_OFFICER_MESSAGE,
)
from errors import ConflictError, NotFoundError, persistence_error_from
from log_utils import sanitize_for_logging
from validation import (
    validate_officer,
    validate_competency,
    validate_evaluation,
    validate_search_term,
    parse_officer_filter,
)

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads"


def _serialize_value(value: Any) -> Any:
    """Render store temporal values as text: dates as YYYY-MM-DD, timestamps as ISO-8601."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


def record_to_dict(record: Any, **extra: Any) -> Dict[str, Any]:
    """Column values of an ORM row, temporal values normalized."""
    data = {
        column.key: _serialize_value(getattr(record, column.key))
        for column in record.__table__.columns
    }
    data.update(extra)
    return data


class RecordService:
    """
    Validation and transactional persistence of personnel records.

    Holds no entity state between calls; every operation runs in its own
    unit of work on one pooled connection.
    """

    def __init__(self, provider: DatabaseSessionProvider, blob_store: BlobStore):
        self.provider = provider
        self.blob_store = blob_store

    # ------------------------------------------
    # attachment helpers
    # ------------------------------------------

    async def _stage(self, upload: Optional[UploadFile], field_name: str) -> Optional[StagedFile]:
        if upload is None or not upload.filename:
            return None
        return await self.blob_store.stage(upload, field_name)

    async def _promote(self, staged: StagedFile) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.blob_store.promote, staged)

    def _cleanup(self, staged: Optional[StagedFile], stored_name: Optional[str], committed: bool) -> None:
        if staged is not None:
            self.blob_store.discard(staged)
        if stored_name and not committed:
            self.blob_store.remove(stored_name)

    # ------------------------------------------
    # writes
    # ------------------------------------------

    async def create_officer(
        self,
        payload: Mapping[str, Any],
        upload: Optional[UploadFile] = None
    ) -> int:
        """
        Register an officer, optionally with a PDF attachment.

        Returns:
            The new officer id

        Raises:
            ValidationError: Missing or malformed fields, or a bad upload
            ConflictError: CURP, CUIP or CUP already registered
            PersistenceError: Store failure
        """
        staged: Optional[StagedFile] = None
        stored_name: Optional[str] = None
        committed = False

        try:
            data = validate_officer(payload)
            staged = await self._stage(upload, 'pdfFile')

            async with self.provider.get_unit_of_work() as uow:
                repo = OfficerRepository(uow.session)

                existing_id = await repo.find_conflicting(data.curp, data.cuip, data.cup)
                if existing_id is not None:
                    logger.info(
                        "Duplicate officer rejected: curp=%s existing_id=%s",
                        sanitize_for_logging(data.curp), existing_id
                    )
                    raise ConflictError(
                        DUPLICATE_OFFICER_MESSAGE,
                        fields=['curp', 'cuip', 'cup'],
                    )

                if staged is not None:
                    stored_name = await self._promote(staged)

                officer = await repo.create(data, ruta_pdf=stored_name)
                officer_id = officer.id
                await uow.commit()
                committed = True

            logger.info(
                "Officer saved: id=%s attachment=%s", officer_id, stored_name or "-"
            )
            return officer_id

        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al guardar el oficial") from e
        finally:
            self._cleanup(staged, stored_name, committed)

    async def create_competency(
        self,
        payload: Mapping[str, Any],
        upload: Optional[UploadFile] = None
    ) -> int:
        """
        Record a basic-competency certification for an existing officer.

        The officer-existence check and the insert share one unit of work.

        Raises:
            ValidationError: Missing officer reference or malformed fields
            NotFoundError: The officer does not exist
            PersistenceError: Store failure
        """
        staged: Optional[StagedFile] = None
        stored_name: Optional[str] = None
        committed = False

        try:
            data = validate_competency(payload)
            staged = await self._stage(upload, 'archivo_pdf')

            async with self.provider.get_unit_of_work() as uow:
                if not await OfficerRepository(uow.session).exists(data.id_oficial):
                    raise NotFoundError(
                        'El oficial especificado no existe',
                        fields=['id_oficial'],
                    )

                ruta_archivo = None
                if staged is not None:
                    stored_name = await self._promote(staged)
                    ruta_archivo = f"{UPLOADS_URL_PREFIX}/{stored_name}"

                record = await CompetencyRepository(uow.session).create(
                    data, ruta_archivo=ruta_archivo
                )
                record_id = record.id
                await uow.commit()
                committed = True

            logger.info(
                "Competency record saved: id=%s officer=%s", record_id, data.id_oficial
            )
            return record_id

        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al guardar la competencia básica") from e
        finally:
            self._cleanup(staged, stored_name, committed)

    async def create_evaluation(self, payload: Mapping[str, Any]) -> int:
        """
        Record an evaluation.

        Raises:
            ValidationError: Missing fields, bad date, or score outside 0-100
            PersistenceError: Store failure (including an unknown officer,
                rejected by the foreign key)
        """
        data = validate_evaluation(payload)

        try:
            async with self.provider.get_unit_of_work() as uow:
                evaluation = await EvaluationRepository(uow.session).create(data)
                evaluation_id = evaluation.id
                await uow.commit()
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al guardar la evaluación") from e

        logger.info("Evaluation saved: id=%s officer=%s", evaluation_id, data.id_oficial)
        return evaluation_id

    # ------------------------------------------
    # reads
    # ------------------------------------------

    async def list_training(self, id_oficial: Optional[str] = None) -> List[Dict[str, Any]]:
        """Training records, optionally for one officer, newest first."""
        officer_id = parse_officer_filter(id_oficial)
        try:
            async with self.provider.get_unit_of_work() as uow:
                rows = await TrainingRepository(uow.session).list(officer_id)
                # rollback on exit expires the instances
                return [record_to_dict(record, nombre_oficial=name) for record, name in rows]
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al obtener la formación") from e

    async def list_competencies(self, id_oficial: Optional[str] = None) -> List[Dict[str, Any]]:
        """Competency records, optionally for one officer, newest first."""
        officer_id = parse_officer_filter(id_oficial)
        try:
            async with self.provider.get_unit_of_work() as uow:
                rows = await CompetencyRepository(uow.session).list(officer_id)
                return [record_to_dict(record, nombre_oficial=name) for record, name in rows]
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al obtener las competencias básicas") from e

    async def list_evaluations(self) -> List[Dict[str, Any]]:
        """Evaluations of existing officers, newest first."""
        try:
            async with self.provider.get_unit_of_work() as uow:
                rows = await EvaluationRepository(uow.session).list()
                return [
                    record_to_dict(record, nombre_oficial=name, nombre_usuario=SYSTEM_USER_NAME)
                    for record, name in rows
                ]
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al obtener las evaluaciones") from e

    async def search_officers(self, termino: Optional[str]) -> List[Dict[str, Any]]:
        """Up to 50 officers matching the term, ordered by name."""
        term = validate_search_term(termino)
        try:
            async with self.provider.get_unit_of_work() as uow:
                return await OfficerRepository(uow.session).search(term)
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al buscar oficiales") from e

    async def statistics(self) -> Dict[str, int]:
        """Active / inactive officer counts from one consistent snapshot."""
        try:
            async with self.provider.get_unit_of_work() as uow:
                activos, inactivos = await OfficerRepository(uow.session).count_by_status()
        except SQLAlchemyError as e:
            raise persistence_error_from(e, "Error al obtener estadísticas de oficiales") from e

        logger.debug("Officer statistics: activos=%d inactivos=%d", activos, inactivos)
        return {
            "activos": activos,
            "inactivos": inactivos,
            "total": activos + inactivos,
        }

    async def ping(self) -> List[Dict[str, Any]]:
        """Connectivity probe: ``SELECT 1`` through the pool."""
        return await self.provider.ping()
