"""
Pydantic response schemas for the Police Personnel Records API

Every response is an envelope with a ``success`` flag. Read endpoints put
their rows under ``data``; creations return the new ``id``; failures carry
``message``, an ``error`` code and, outside production, ``details``.
"""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field


class OfficerSummary(BaseModel):
    """Officer search hit."""
    id: int
    nombre_completo: str
    curp: str
    cuip: str
    cup: str
    grado: Optional[str] = None
    cargo_actual: Optional[str] = None


class TrainingRecordOut(BaseModel):
    """Training record with the officer's name."""
    id: int
    id_oficial: Optional[int] = None
    nombre_oficial: Optional[str] = None
    nombre_curso: Optional[str] = None
    institucion: Optional[str] = None
    fecha_curso: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    fecha_inicio: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    fecha_fin: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    fecha_registro: Optional[str] = Field(default=None, description="ISO 8601 timestamp")


class CompetencyRecordOut(BaseModel):
    """Basic-competency certification with the officer's name."""
    id: int
    id_oficial: int
    nombre_oficial: Optional[str] = None
    fecha: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    institucion: Optional[str] = None
    resultado: Optional[str] = None
    vigencia: Optional[str] = None
    enlace_constancia: Optional[str] = None
    ruta_archivo: Optional[str] = None
    fecha_registro: Optional[str] = None


class EvaluationOut(BaseModel):
    """Evaluation with officer and recording-user names."""
    id: int
    id_oficial: int
    nombre_oficial: str
    tipo_evaluacion: str
    fecha_evaluacion: str = Field(..., description="YYYY-MM-DD")
    calificacion: Optional[float] = None
    evaluador: str
    observaciones: Optional[str] = None
    fecha_registro: Optional[str] = None
    usuario_registro: int
    nombre_usuario: str


class Statistics(BaseModel):
    """Officer counts by status."""
    activos: int = Field(..., ge=0)
    inactivos: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


class CreatedId(BaseModel):
    id: int


class CreatedResponse(BaseModel):
    """Response for a successful creation (HTTP 201)."""
    success: bool = True
    message: str
    id: int = Field(..., description="Identifier assigned by the store")
    data: CreatedId


class TrainingListResponse(BaseModel):
    success: bool = True
    data: List[TrainingRecordOut] = Field(default_factory=list)


class CompetencyListResponse(BaseModel):
    success: bool = True
    data: List[CompetencyRecordOut] = Field(default_factory=list)


class EvaluationListResponse(BaseModel):
    success: bool = True
    data: List[EvaluationOut] = Field(default_factory=list)


class OfficerSearchResponse(BaseModel):
    success: bool = True
    data: List[OfficerSummary] = Field(default_factory=list)


class StatisticsResponse(BaseModel):
    success: bool = True
    data: Statistics


class ConnectionTestResponse(BaseModel):
    success: bool = True
    message: str
    data: List[Dict[str, Any]] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Standardized error envelope."""
    success: bool = False
    message: str = Field(..., description="Human-readable error message")
    error: str = Field(..., description="Error code for programmatic handling")
    fields: List[str] = Field(default_factory=list, description="Fields involved")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Store diagnostics, omitted in production"
    )
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


def created(message: str, record_id: int) -> CreatedResponse:
    return CreatedResponse(message=message, id=record_id, data=CreatedId(id=record_id))
