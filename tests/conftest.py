"""
Shared fixtures for the Police Personnel Records tests.

Every test gets its own SQLite database file (aiosqlite for the service,
plain sqlite3 for seeding) and its own upload directories under tmp_path.
"""

import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from blob_store import BlobStore
from config_manager import ConfigManager
from database.connection import create_test_provider
from database.models import Base, Officer
from database.records_service import RecordService

VALID_OFFICER = {
    'nombreCompleto': 'Juan Pérez López',
    'curp': 'PELJ800101HDFRPN09',
    'cuip': 'CUIP-0001',
    'cup': 'CUP-0001',
    'edad': '35',
    'sexo': 'Masculino',
    'estadoCivil': 'Casado',
    'areaAdscripcion': 'Seguridad Pública',
    'grado': 'Policía Primero',
    'cargoActual': 'Patrullero',
    'fechaIngreso': '2010-05-15',
    'escolaridad': 'Licenciatura',
    'telefonoContacto': '5551234567',
    'telefonoEmergencia': '5557654321',
    'funcion': 'Operativo',
}

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"


def officer_payload(**overrides):
    """A complete, valid officer form with selected fields replaced."""
    payload = dict(VALID_OFFICER)
    payload.update(overrides)
    return payload


def make_officer(n: int, **overrides) -> Officer:
    """Officer row with unique codes derived from n."""
    values = dict(
        nombre_completo=f'Oficial {n:03d}',
        curp=f'CURP{n:014d}',
        cuip=f'CUIP-{n:04d}',
        cup=f'CUP-{n:04d}',
        edad=30,
        sexo='Femenino',
        estado_civil='Soltera',
        area_adscripcion='Tránsito',
        grado='Policía',
        cargo_actual='Vialidad',
        fecha_ingreso=date(2015, 1, 1),
        escolaridad='Bachillerato',
        telefono_contacto='5550000000',
        telefono_emergencia='5550000001',
        funcion='Operativo',
    )
    values.update(overrides)
    return Officer(**values)


def stored_files(directory: Path):
    """Regular files directly inside a directory (sub-directories ignored)."""
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir() if p.is_file())


@pytest.fixture
def db_path(tmp_path):
    """SQLite database file with the schema created."""
    path = tmp_path / "sistema_policial.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def sync_engine(db_path):
    """Synchronous engine on the test database, for seeding and inspection."""
    engine = create_engine(f"sqlite:///{db_path}")
    yield engine
    engine.dispose()


@pytest.fixture
def seed(sync_engine):
    """Insert ORM objects and return their ids."""
    def _seed(*records):
        with Session(sync_engine, expire_on_commit=False) as session:
            session.add_all(records)
            session.commit()
            return [record.id for record in records]
    return _seed


@pytest.fixture
def provider(db_path):
    """Session provider on the test database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return create_test_provider(engine)


@pytest.fixture
def blob_store(tmp_path):
    store = BlobStore(
        upload_dir=str(tmp_path / "uploads"),
        temp_dir=str(tmp_path / "staging"),
        max_upload_bytes=64 * 1024,
    )
    store.ensure_dirs()
    return store


@pytest.fixture
def service(provider, blob_store):
    return RecordService(provider, blob_store)


@pytest.fixture
def config(tmp_path):
    """Defaults only: no config file, no environment overrides."""
    cfg = ConfigManager(config_path=str(tmp_path / "config.yaml"), use_env=False)
    cfg.server.public_dir = str(tmp_path / "public")
    cfg.logging.console = False
    return cfg


@pytest.fixture
def app(config, provider, blob_store):
    from api.server import create_app
    return create_app(config=config, provider=provider, blob_store=blob_store)


@pytest.fixture
def client(app):
    """Test client with startup and shutdown events run."""
    with TestClient(app) as test_client:
        yield test_client
