"""
FastAPI server for the Police Personnel Records API

Officer registration, training / competency / evaluation records, search
and statistics over the ``sistema_policial`` database, plus storage of
supporting PDF documents.

Usage:
    uvicorn api.server:create_app --factory --port 8080
    python -m api.server
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile

from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    create_error_response,
    RequestLoggingMiddleware,
)
from api.models import (
    CreatedResponse,
    TrainingListResponse,
    CompetencyListResponse,
    EvaluationListResponse,
    OfficerSearchResponse,
    StatisticsResponse,
    ConnectionTestResponse,
    ErrorResponse,
    created,
)
from blob_store import BlobStore
from config_manager import ConfigManager, get_config
from database.connection import DatabaseSessionProvider, DatabaseSettings
from database.monitoring import configure_monitoring
from database.records_service import RecordService
from errors import ValidationError
from log_utils import setup_logging

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    500: {"model": ErrorResponse, "description": "Persistence or internal error"},
}

router = APIRouter()


def get_record_service(request: Request) -> RecordService:
    """Dependency returning the service built by create_app."""
    return request.app.state.record_service


async def read_payload(request: Request) -> Tuple[Dict[str, Any], Dict[str, UploadFile]]:
    """Split a form (urlencoded or multipart) or JSON body into fields and files."""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("El cuerpo de la solicitud no es JSON válido")
        if not isinstance(body, dict):
            raise ValidationError("El cuerpo de la solicitud debe ser un objeto JSON")
        return body, {}

    form = await request.form()
    fields: Dict[str, Any] = {}
    files: Dict[str, UploadFile] = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            files[key] = value
        else:
            fields[key] = value
    return fields, files


# ============================================
# OFFICERS
# ============================================

@router.post(
    "/officers",
    status_code=201,
    response_model=CreatedResponse,
    responses={**ERROR_RESPONSES, 500: {"model": ErrorResponse, "description": "Duplicate officer or store error"}},
    summary="Register an officer",
    description="Form fields plus an optional PDF in the `pdfFile` part",
)
@router.post("/oficiales", status_code=201, response_model=CreatedResponse, include_in_schema=False)
async def create_officer(
    request: Request,
    service: RecordService = Depends(get_record_service),
):
    """Register an officer; CURP, CUIP and CUP must not be registered yet."""
    fields, files = await read_payload(request)
    officer_id = await service.create_officer(fields, files.get("pdfFile"))
    return created("Oficial guardado exitosamente", officer_id)


@router.get(
    "/oficiales/buscar",
    response_model=OfficerSearchResponse,
    responses=ERROR_RESPONSES,
    summary="Search officers",
    description="Case-insensitive substring search on name, CURP, CUIP, CUP and current post",
)
async def search_officers(
    termino: Optional[str] = Query(default=None, description="Search term"),
    service: RecordService = Depends(get_record_service),
):
    return OfficerSearchResponse(data=await service.search_officers(termino))


@router.get(
    "/estadisticas",
    response_model=StatisticsResponse,
    responses=ERROR_RESPONSES,
    summary="Officer statistics",
)
async def statistics(service: RecordService = Depends(get_record_service)):
    """Active and inactive officer counts."""
    return StatisticsResponse(data=await service.statistics())


# ============================================
# TRAINING / COMPETENCIES / EVALUATIONS
# ============================================

@router.get(
    "/formacion",
    response_model=TrainingListResponse,
    responses=ERROR_RESPONSES,
    summary="List training records",
)
async def list_training(
    id_oficial: Optional[str] = Query(default=None),
    service: RecordService = Depends(get_record_service),
):
    return TrainingListResponse(data=await service.list_training(id_oficial))


@router.get(
    "/competencias",
    response_model=CompetencyListResponse,
    responses=ERROR_RESPONSES,
    summary="List competency certifications",
)
async def list_competencies(
    id_oficial: Optional[str] = Query(default=None),
    service: RecordService = Depends(get_record_service),
):
    return CompetencyListResponse(data=await service.list_competencies(id_oficial))


@router.post(
    "/competencias",
    status_code=201,
    response_model=CreatedResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Officer not found"}},
    summary="Record a competency certification",
    description="Form fields plus an optional PDF in the `archivo_pdf` part",
)
async def create_competency(
    request: Request,
    service: RecordService = Depends(get_record_service),
):
    fields, files = await read_payload(request)
    record_id = await service.create_competency(fields, files.get("archivo_pdf"))
    return created("Competencia básica guardada exitosamente", record_id)


@router.get(
    "/evaluaciones",
    response_model=EvaluationListResponse,
    responses=ERROR_RESPONSES,
    summary="List evaluations",
)
async def list_evaluations(service: RecordService = Depends(get_record_service)):
    return EvaluationListResponse(data=await service.list_evaluations())


@router.post(
    "/evaluaciones",
    status_code=201,
    response_model=CreatedResponse,
    responses=ERROR_RESPONSES,
    summary="Record an evaluation",
)
async def create_evaluation(
    request: Request,
    service: RecordService = Depends(get_record_service),
):
    fields, _ = await read_payload(request)
    evaluation_id = await service.create_evaluation(fields)
    return created("Evaluación guardada correctamente", evaluation_id)


# ============================================
# DIAGNOSTICS
# ============================================

@router.get(
    "/test",
    response_model=ConnectionTestResponse,
    responses=ERROR_RESPONSES,
    summary="Database connectivity probe",
)
async def connection_test(service: RecordService = Depends(get_record_service)):
    rows = await service.ping()
    return ConnectionTestResponse(
        message="Conexión exitosa a la base de datos",
        data=rows,
    )


# ============================================
# APPLICATION FACTORY
# ============================================

def create_app(
    config: Optional[ConfigManager] = None,
    provider: Optional[DatabaseSessionProvider] = None,
    blob_store: Optional[BlobStore] = None,
) -> FastAPI:
    """
    Build the application with its collaborators.

    Args:
        config: Service configuration (environment / config.yaml if omitted)
        provider: Database session provider (built from config if omitted)
        blob_store: Attachment storage (built from config if omitted)
    """
    config = config or get_config()
    setup_logging(config.logging)
    configure_monitoring(slow_query_threshold_ms=config.logging.slow_query_threshold_ms)

    provider = provider or DatabaseSessionProvider(DatabaseSettings.from_config(config))
    blob_store = blob_store or BlobStore.from_config(config.storage)
    blob_store.ensure_dirs()

    app = FastAPI(
        title="Sistema Policial API",
        description="Police personnel records: officers, training, competencies and evaluations",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.config = config
    app.state.provider = provider
    app.state.blob_store = blob_store
    app.state.record_service = RecordService(provider, blob_store)

    # Setup middleware
    setup_cors(app, config.server.cors_origins)
    app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)

    app.include_router(router)
    # Same routes under /api for the bundled frontend
    app.include_router(router, prefix="/api", include_in_schema=False)

    app.mount(
        "/uploads",
        StaticFiles(directory=str(blob_store.upload_dir), check_dir=False),
        name="uploads",
    )

    public_dir = Path(config.server.public_dir)

    @app.get("/{full_path:path}", include_in_schema=False)
    async def spa_shell(full_path: str):
        """Serve the single-page app for any other GET path."""
        index = public_dir / "index.html"
        if full_path.startswith("api/") or not index.is_file():
            return create_error_response(
                code="HTTP_404",
                message="Recurso no encontrado",
                status_code=404,
            )
        return FileResponse(index)

    @app.on_event("startup")
    async def startup():
        logger.info("Starting Sistema Policial API (environment=%s)", config.server.environment)
        provider.init()
        if await provider.health_check():
            logger.info("✓ Database connection established")
        else:
            logger.error("✗ Database unreachable; check DATABASE_URL")

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("Shutting down Sistema Policial API...")
        await provider.close()

    return app


def main() -> None:
    import uvicorn

    config = get_config()
    uvicorn.run(create_app(config), host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    main()
