"""
API endpoint tests for the Police Personnel Records API

Uses FastAPI's TestClient against an app built by create_app with a SQLite
store and temporary upload directories.
Tests cover validation, creation, listings, search, statistics, static
files and the error envelope.
"""

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from api.server import create_app
from conftest import PDF_BYTES, make_officer, officer_payload, stored_files
from database.connection import create_test_provider
from database.models import Officer, TrainingRecord


def pdf_part(name="expediente.pdf", content=PDF_BYTES, content_type="application/pdf"):
    return (name, content, content_type)


# ============================================
# OFFICER REGISTRATION
# ============================================

class TestCreateOfficer:
    """Tests for POST /officers."""

    def test_create_officer(self, client, sync_engine):
        response = client.post("/officers", data=officer_payload())

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Oficial guardado exitosamente"
        assert body["data"]["id"] == body["id"]

        with Session(sync_engine) as session:
            officer = session.get(Officer, body["id"])
            assert officer.nombre_completo == "Juan Pérez López"
            assert officer.activo is True

    def test_create_officer_with_pdf(self, client, sync_engine, blob_store):
        response = client.post(
            "/officers",
            data=officer_payload(),
            files={"pdfFile": pdf_part()},
        )

        assert response.status_code == 201
        with Session(sync_engine) as session:
            ruta_pdf = session.get(Officer, response.json()["id"]).ruta_pdf
        assert ruta_pdf.endswith("-expediente.pdf")
        assert stored_files(blob_store.upload_dir) == [ruta_pdf]
        assert stored_files(blob_store.temp_dir) == []

        # served back as a static file
        download = client.get(f"/uploads/{ruta_pdf}")
        assert download.status_code == 200
        assert download.content == PDF_BYTES

    def test_spanish_alias_and_api_prefix(self, client):
        assert client.post("/oficiales", data=officer_payload()).status_code == 201
        second = officer_payload(curp="GOMA900202MDFRRN01", cuip="CUIP-0002", cup="CUP-0002")
        assert client.post("/api/officers", data=second).status_code == 201

    def test_json_body(self, client):
        response = client.post("/officers", json=officer_payload())
        assert response.status_code == 201

    def test_missing_fields(self, client):
        payload = officer_payload()
        del payload["cuip"]
        del payload["telefonoEmergencia"]

        response = client.post("/officers", data=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "VALIDATION_ERROR"
        assert body["fields"] == ["cuip", "telefonoEmergencia"]
        assert "cuip" in body["message"]
        assert "telefonoEmergencia" in body["message"]

    @pytest.mark.parametrize("curp", ["A" * 17, "A" * 19])
    def test_curp_length(self, client, curp):
        response = client.post("/officers", data=officer_payload(curp=curp))
        assert response.status_code == 400
        assert response.json()["fields"] == ["curp"]

    @pytest.mark.parametrize("edad,status", [("17", 400), ("18", 201), ("100", 201), ("101", 400)])
    def test_age_bounds(self, client, edad, status):
        response = client.post("/officers", data=officer_payload(edad=edad))
        assert response.status_code == status

    def test_bad_hire_date(self, client):
        response = client.post("/officers", data=officer_payload(fechaIngreso="15-05-2010"))
        assert response.status_code == 400
        assert response.json()["fields"] == ["fechaIngreso"]

    def test_duplicate_rejected_and_attachment_cleaned(self, client, blob_store):
        first = client.post("/officers", data=officer_payload(), files={"pdfFile": pdf_part()})
        assert first.status_code == 201

        duplicate = officer_payload(cup="cup-0001", curp="XXXX000000XXXXXX00", cuip="CUIP-7777")
        response = client.post(
            "/officers", data=duplicate, files={"pdfFile": pdf_part("segundo.pdf")}
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "CONFLICT"
        assert body["message"] == "Ya existe un oficial con el mismo CURP, CUIP o CUP"
        assert len(stored_files(blob_store.upload_dir)) == 1
        assert stored_files(blob_store.temp_dir) == []

    def test_identical_request_twice(self, client, sync_engine):
        payload = officer_payload(curp="ABCDEFGHIJKLMNOPQR", edad="30", fechaIngreso="2020-01-15")

        first = client.post("/officers", data=payload)
        second = client.post("/officers", data=payload)

        assert first.status_code == 201
        assert isinstance(first.json()["id"], int)
        assert second.status_code == 500
        assert second.json()["success"] is False
        assert "id" not in second.json()
        with Session(sync_engine) as session:
            assert [o.id for o in session.scalars(select(Officer))] == [first.json()["id"]]

    def test_non_pdf_attachment(self, client, sync_engine, blob_store):
        response = client.post(
            "/officers",
            data=officer_payload(),
            files={"pdfFile": ("foto.png", b"\x89PNG", "image/png")},
        )

        assert response.status_code == 400
        assert response.json()["fields"] == ["pdfFile"]
        with Session(sync_engine) as session:
            assert session.scalars(select(Officer)).all() == []
        assert stored_files(blob_store.temp_dir) == []


# ============================================
# COMPETENCIES AND EVALUATIONS
# ============================================

class TestCompetencies:

    def test_missing_officer_reference(self, client):
        response = client.post("/competencias", data={"institucion_competencia": "Academia"})
        assert response.status_code == 400
        assert response.json()["message"] == "El ID del oficial es requerido"

    def test_unknown_officer(self, client, blob_store):
        response = client.post(
            "/competencias",
            data={"id_oficial": "404"},
            files={"archivo_pdf": pdf_part("constancia.pdf")},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"
        assert stored_files(blob_store.upload_dir) == []
        assert stored_files(blob_store.temp_dir) == []

    def test_create_and_list(self, client, seed):
        (officer_id,) = seed(make_officer(1))

        response = client.post(
            "/competencias",
            data={
                "id_oficial": str(officer_id),
                "fecha_competencia": "2024-03-01",
                "institucion_competencia": "Academia Estatal",
                "resultado_competencia": "Aprobado",
                "vigencia": "3 años",
                "enlace_constancia": "https://example.org/constancia/1",
            },
            files={"archivo_pdf": pdf_part("constancia.pdf")},
        )
        assert response.status_code == 201

        listing = client.get("/competencias", params={"id_oficial": officer_id})
        assert listing.status_code == 200
        (record,) = listing.json()["data"]
        assert record["id"] == response.json()["id"]
        assert record["nombre_oficial"] == "Oficial 001"
        assert record["fecha"] == "2024-03-01"
        assert record["institucion"] == "Academia Estatal"

        download = client.get(record["ruta_archivo"])
        assert download.status_code == 200
        assert download.content == PDF_BYTES


class TestEvaluations:

    @staticmethod
    def payload(officer_id, **overrides):
        payload = {
            "id_oficial": str(officer_id),
            "tipo_evaluacion": "Control de confianza",
            "fecha_evaluacion": "2024-05-20",
            "evaluador": "Lic. Torres",
        }
        payload.update(overrides)
        return payload

    @pytest.mark.parametrize("score,status", [("-1", 400), ("0", 201), ("100", 201), ("101", 400)])
    def test_score_bounds(self, client, seed, score, status):
        (officer_id,) = seed(make_officer(1))
        response = client.post("/evaluaciones", data=self.payload(officer_id, calificacion=score))
        assert response.status_code == status
        if status == 400:
            assert response.json()["fields"] == ["calificacion"]

    def test_json_and_list(self, client, seed):
        (officer_id,) = seed(make_officer(1))
        response = client.post(
            "/evaluaciones",
            json=self.payload(officer_id, calificacion=87.5, observaciones="Apto"),
        )
        assert response.status_code == 201
        assert response.json()["message"] == "Evaluación guardada correctamente"

        (evaluation,) = client.get("/evaluaciones").json()["data"]
        assert evaluation["calificacion"] == 87.5
        assert evaluation["nombre_oficial"] == "Oficial 001"
        assert evaluation["nombre_usuario"] == "Sistema"
        assert evaluation["fecha_evaluacion"] == "2024-05-20"

    def test_missing_fields(self, client):
        response = client.post("/evaluaciones", json={"id_oficial": "1"})
        assert response.status_code == 400
        assert response.json()["fields"] == ["tipo_evaluacion", "fecha_evaluacion", "evaluador"]

    def test_json_must_be_object(self, client):
        response = client.post("/evaluaciones", json=["no", "es", "objeto"])
        assert response.status_code == 400


# ============================================
# LISTINGS, SEARCH AND STATISTICS
# ============================================

class TestReads:

    def test_training_listing(self, client, seed):
        officer_id, other_id = seed(make_officer(1), make_officer(2))
        older, newer, _ = seed(
            TrainingRecord(id_oficial=officer_id, nombre_curso="Derechos humanos",
                           institucion="CNDH", fecha_curso=date(2020, 1, 1)),
            TrainingRecord(id_oficial=officer_id, nombre_curso="Primer respondiente",
                           fecha_curso=date(2023, 6, 1)),
            TrainingRecord(id_oficial=other_id, nombre_curso="Manejo defensivo",
                           fecha_curso=date(2024, 1, 1)),
        )

        everything = client.get("/formacion").json()["data"]
        assert len(everything) == 3

        response = client.get("/formacion", params={"id_oficial": str(officer_id)})
        assert response.status_code == 200
        data = response.json()["data"]
        assert [r["id"] for r in data] == [newer, older]
        assert data[1]["fecha_curso"] == "2020-01-01"
        assert data[1]["nombre_oficial"] == "Oficial 001"

    def test_listing_filter_not_numeric(self, client):
        response = client.get("/formacion", params={"id_oficial": "abc"})
        assert response.status_code == 400
        assert response.json()["fields"] == ["id_oficial"]

    def test_empty_listings(self, client):
        for path in ("/formacion", "/competencias", "/evaluaciones"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json() == {"success": True, "data": []}

    def test_listings_return_loaded_columns(self, client, seed):
        officer_id = client.post("/officers", data=officer_payload()).json()["id"]
        seed(TrainingRecord(id_oficial=officer_id, nombre_curso="Cadena de custodia",
                            fecha_curso=date(2024, 2, 2)))
        client.post("/competencias", data={"id_oficial": str(officer_id), "vigencia": "1 año"})
        client.post("/evaluaciones", data={
            "id_oficial": str(officer_id),
            "tipo_evaluacion": "Desempeño",
            "fecha_evaluacion": "2024-06-01",
            "evaluador": "Cmdte. Ruiz",
        })

        for path, column in (("/formacion", "nombre_curso"),
                             ("/competencias", "vigencia"),
                             ("/evaluaciones", "evaluador")):
            response = client.get(path)
            assert response.status_code == 200, path
            (record,) = response.json()["data"]
            assert record[column]
            assert record["id_oficial"] == officer_id

    def test_search(self, client, seed):
        seed(
            make_officer(1, nombre_completo="Rosa Martínez"),
            make_officer(2, nombre_completo="Luis Hernández", cup="CUP-ROSA"),
            make_officer(3, nombre_completo="Carlos Díaz"),
        )

        response = client.get("/oficiales/buscar", params={"termino": "ROSA"})

        assert response.status_code == 200
        names = [o["nombre_completo"] for o in response.json()["data"]]
        assert names == ["Luis Hernández", "Rosa Martínez"]

    @pytest.mark.parametrize("params", [{}, {"termino": ""}, {"termino": "   "}])
    def test_search_requires_term(self, client, params):
        response = client.get("/oficiales/buscar", params=params)
        assert response.status_code == 400
        assert response.json()["message"] == "Término de búsqueda requerido"

    def test_statistics(self, client, seed):
        seed(make_officer(1), make_officer(2, activo=False), make_officer(3, activo=False))

        response = client.get("/api/estadisticas")

        assert response.status_code == 200
        assert response.json()["data"] == {"activos": 1, "inactivos": 2, "total": 3}

    def test_connection_probe(self, client):
        response = client.get("/test")
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["data"] == [{"test": 1}]


# ============================================
# STATIC FILES, SPA AND MIDDLEWARE
# ============================================

class TestShell:

    def test_spa_fallback(self, client, config, tmp_path):
        public = tmp_path / "public"
        public.mkdir()
        (public / "index.html").write_text("<html>Sistema Policial</html>", encoding="utf-8")

        response = client.get("/oficiales/nuevo")

        assert response.status_code == 200
        assert "Sistema Policial" in response.text

    def test_unknown_path_without_frontend(self, client):
        response = client.get("/no-existe")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_unknown_api_path(self, client, tmp_path):
        public = tmp_path / "public"
        public.mkdir()
        (public / "index.html").write_text("<html></html>", encoding="utf-8")

        response = client.get("/api/no-existe")
        assert response.status_code == 404

    def test_missing_upload(self, client):
        assert client.get("/uploads/0-nada.pdf").status_code == 404

    def test_request_headers(self, client):
        response = client.get("/estadisticas", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"
        assert "X-Processing-Time-MS" in response.headers

    def test_cors_any_localhost_port(self, client):
        response = client.get("/estadisticas", headers={"Origin": "http://localhost:4321"})
        assert response.headers["access-control-allow-origin"] == "http://localhost:4321"

    def test_cors_unknown_origin(self, client):
        response = client.get("/estadisticas", headers={"Origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in response.headers

    def test_openapi(self, client):
        paths = client.get("/api/openapi.json").json()["paths"]
        assert "/officers" in paths
        assert "/oficiales/buscar" in paths
        assert "/api/officers" not in paths


# ============================================
# ERROR ENVELOPE
# ============================================

class TestStoreErrors:

    @staticmethod
    def broken_app(config, blob_store, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'no-such-dir' / 'db.sqlite'}",
            poolclass=NullPool,
        )
        return create_app(config=config, provider=create_test_provider(engine), blob_store=blob_store)

    def test_details_outside_production(self, config, blob_store, tmp_path):
        client = TestClient(self.broken_app(config, blob_store, tmp_path))

        response = client.get("/estadisticas")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "PERSISTENCE_ERROR"
        assert body["details"]["type"] == "OperationalError"
        assert "timestamp" in body

    def test_details_hidden_in_production(self, config, blob_store, tmp_path):
        config.server.environment = "production"
        client = TestClient(self.broken_app(config, blob_store, tmp_path))

        response = client.get("/estadisticas")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "PERSISTENCE_ERROR"
        assert "details" not in body

    def test_unexpected_error(self, app, monkeypatch):
        async def explode(self):
            raise RuntimeError("fallo inesperado")

        monkeypatch.setattr(type(app.state.record_service), "statistics", explode)
        client = TestClient(app, raise_server_exceptions=False)

        response = client.get("/estadisticas")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "INTERNAL_ERROR"
        assert body["message"] == "Error interno del servidor"
