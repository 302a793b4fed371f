"""
Input validation for record creation.

Each ``validate_*`` function takes the raw request payload (form or JSON
fields as a mapping) and either returns a typed input object ready to be
persisted or raises ValidationError. Presence checks always report every
missing field, not only the first one.
"""

import re
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Mapping, Optional, Sequence

from errors import ValidationError
from log_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

CURP_LENGTH = 18
MIN_AGE = 18
MAX_AGE = 100
MIN_SCORE = 0.0
MAX_SCORE = 100.0
SEARCH_RESULT_LIMIT = 50

ISO_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

OFFICER_REQUIRED_FIELDS = (
    'nombreCompleto', 'curp', 'cuip', 'cup', 'edad', 'sexo', 'estadoCivil',
    'areaAdscripcion', 'grado', 'cargoActual', 'fechaIngreso',
    'escolaridad', 'telefonoContacto', 'telefonoEmergencia', 'funcion',
)
EVALUATION_REQUIRED_FIELDS = ('id_oficial', 'tipo_evaluacion', 'fecha_evaluacion', 'evaluador')
COMPETENCY_REQUIRED_FIELDS = ('id_oficial',)


@dataclass
class OfficerInput:
    """Validated officer registration"""
    nombre_completo: str
    curp: str
    cuip: str
    cup: str
    edad: int
    sexo: str
    estado_civil: str
    area_adscripcion: str
    grado: str
    cargo_actual: str
    fecha_ingreso: date
    escolaridad: str
    telefono_contacto: str
    telefono_emergencia: str
    funcion: str


@dataclass
class CompetencyInput:
    """Validated basic-competency certification"""
    id_oficial: int
    fecha: Optional[date] = None
    institucion: Optional[str] = None
    resultado: Optional[str] = None
    vigencia: Optional[str] = None
    enlace_constancia: Optional[str] = None


@dataclass
class EvaluationInput:
    """Validated evaluation"""
    id_oficial: int
    tipo_evaluacion: str
    fecha_evaluacion: date
    evaluador: str
    calificacion: Optional[float] = None
    observaciones: Optional[str] = None


def _text(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    if value is None:
        return ''
    return str(value).strip()


def _optional_text(payload: Mapping[str, Any], name: str) -> Optional[str]:
    value = _text(payload, name)
    return value or None


def missing_fields(payload: Mapping[str, Any], required: Sequence[str]) -> List[str]:
    """Return the required fields that are absent or blank, in declaration order."""
    return [name for name in required if not _text(payload, name)]


def require_fields(payload: Mapping[str, Any], required: Sequence[str]) -> None:
    """Raise ValidationError listing every missing required field."""
    missing = missing_fields(payload, required)
    if missing:
        raise ValidationError(
            f"Faltan campos requeridos: {', '.join(missing)}",
            fields=missing,
        )


def parse_officer_id(value: Any, field_name: str = 'id_oficial') -> int:
    """Parse an officer reference as a positive integer."""
    raw = str(value).strip() if value is not None else ''
    try:
        officer_id = int(raw)
    except ValueError:
        raise ValidationError(
            f"El campo {field_name} debe ser un número entero",
            fields=[field_name],
        )
    if officer_id <= 0:
        raise ValidationError(
            f"El campo {field_name} debe ser un número entero positivo",
            fields=[field_name],
        )
    return officer_id


def parse_calendar_date(value: str, field_name: str) -> date:
    """Parse an ISO date, or the date part of an ISO timestamp."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00')).date()
    except ValueError:
        raise ValidationError('Formato de fecha inválido', fields=[field_name])


def parse_score(value: Any) -> Optional[float]:
    """Parse an optional 0-100 score. Blank means not provided."""
    raw = str(value).strip() if value is not None else ''
    if not raw:
        return None
    try:
        score = float(raw)
    except ValueError:
        score = float('nan')
    if not (MIN_SCORE <= score <= MAX_SCORE):
        raise ValidationError(
            'La calificación debe ser un número entre 0 y 100',
            fields=['calificacion'],
        )
    return score


def validate_officer(payload: Mapping[str, Any]) -> OfficerInput:
    """Validate an officer registration payload.

    Raises:
        ValidationError: On missing fields, a CURP that is not 18 characters,
            an age outside 18-100, or a hire date not in YYYY-MM-DD form
    """
    require_fields(payload, OFFICER_REQUIRED_FIELDS)

    curp = _text(payload, 'curp')
    if len(curp) != CURP_LENGTH:
        logger.info("Rejected CURP with length %d", len(curp))
        raise ValidationError(
            f'La CURP debe tener {CURP_LENGTH} caracteres',
            fields=['curp'],
        )

    try:
        edad = int(_text(payload, 'edad'))
    except ValueError:
        edad = None
    if edad is None or not (MIN_AGE <= edad <= MAX_AGE):
        raise ValidationError(
            f'La edad debe ser un número entre {MIN_AGE} y {MAX_AGE}',
            fields=['edad'],
        )

    fecha_ingreso_raw = _text(payload, 'fechaIngreso')
    if not ISO_DATE_PATTERN.match(fecha_ingreso_raw):
        raise ValidationError(
            'El formato de fecha debe ser YYYY-MM-DD',
            fields=['fechaIngreso'],
        )
    try:
        fecha_ingreso = date.fromisoformat(fecha_ingreso_raw)
    except ValueError:
        raise ValidationError(
            'La fecha de ingreso no es una fecha válida',
            fields=['fechaIngreso'],
        )

    return OfficerInput(
        nombre_completo=_text(payload, 'nombreCompleto'),
        curp=curp.upper(),
        cuip=_text(payload, 'cuip').upper(),
        cup=_text(payload, 'cup').upper(),
        edad=edad,
        sexo=_text(payload, 'sexo'),
        estado_civil=_text(payload, 'estadoCivil'),
        area_adscripcion=_text(payload, 'areaAdscripcion'),
        grado=_text(payload, 'grado'),
        cargo_actual=_text(payload, 'cargoActual'),
        fecha_ingreso=fecha_ingreso,
        escolaridad=_text(payload, 'escolaridad'),
        telefono_contacto=_text(payload, 'telefonoContacto'),
        telefono_emergencia=_text(payload, 'telefonoEmergencia'),
        funcion=_text(payload, 'funcion'),
    )


def validate_competency(payload: Mapping[str, Any]) -> CompetencyInput:
    """Validate a competency certification payload.

    Only the officer reference is mandatory; it is checked before the store
    is touched.
    """
    if not _text(payload, 'id_oficial'):
        raise ValidationError('El ID del oficial es requerido', fields=['id_oficial'])

    fecha_raw = _text(payload, 'fecha_competencia')
    return CompetencyInput(
        id_oficial=parse_officer_id(payload.get('id_oficial')),
        fecha=parse_calendar_date(fecha_raw, 'fecha_competencia') if fecha_raw else None,
        institucion=_optional_text(payload, 'institucion_competencia'),
        resultado=_optional_text(payload, 'resultado_competencia'),
        vigencia=_optional_text(payload, 'vigencia'),
        enlace_constancia=_optional_text(payload, 'enlace_constancia'),
    )


def validate_evaluation(payload: Mapping[str, Any]) -> EvaluationInput:
    """Validate an evaluation payload."""
    require_fields(payload, EVALUATION_REQUIRED_FIELDS)

    return EvaluationInput(
        id_oficial=parse_officer_id(payload.get('id_oficial')),
        tipo_evaluacion=_text(payload, 'tipo_evaluacion'),
        fecha_evaluacion=parse_calendar_date(
            _text(payload, 'fecha_evaluacion'), 'fecha_evaluacion'
        ),
        evaluador=_text(payload, 'evaluador'),
        calificacion=parse_score(payload.get('calificacion')),
        observaciones=_optional_text(payload, 'observaciones'),
    )


def validate_search_term(term: Optional[str]) -> str:
    """A search needs a non-blank term; an empty one is a client error."""
    cleaned = (term or '').strip()
    if not cleaned:
        raise ValidationError('Término de búsqueda requerido', fields=['termino'])
    logger.debug("Officer search term: %s", sanitize_for_logging(cleaned))
    return cleaned


def parse_officer_filter(value: Optional[str]) -> Optional[int]:
    """Optional ``id_oficial`` query filter for listings."""
    if value is None or not str(value).strip():
        return None
    return parse_officer_id(value)
