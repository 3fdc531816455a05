"""Tests for the statement upload endpoint."""

import io
import json
from datetime import datetime

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from openpyxl import Workbook

from apps.api.core.config import Settings, get_settings
from apps.api.core.errors import register_error_handlers
from apps.api.domains.ingestion.router import get_pipeline, router
from packages.ingestion_engine.config import PERPLEXITY, PipelineConfig, ProviderConfig
from packages.ingestion_engine.errors import ProviderCallFailed
from packages.ingestion_engine.pipeline import StatementPipeline
from packages.ingestion_engine.providers import Failure

URL = "/api/v1/import/parse-spreadsheet"

CSV_SAMPLE = b"""Customer Name: Jane Doe
Date,Description,Debit,Credit
2024-01-15,Coffee,4.50,
2024-01-16,Refund,,10.00
2024-01-17,PAYMENT RECEIVED THANK YOU,,500.00
"""


def make_xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class FailingProvider:
    name = "failing"
    models = ("m1",)

    async def extract(self, client, model, segment):
        return Failure(ProviderCallFailed("failing API error: 503"))


@pytest.fixture
def app():
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(router, prefix="/api/v1")
    return app


@pytest.fixture
def configure(app):
    """Install settings and a pipeline for the duration of one test."""

    def _configure(pipeline=None, **values):
        settings = Settings(_env_file=None, **values)
        app.dependency_overrides[get_settings] = lambda: settings
        pipeline = pipeline or StatementPipeline(PipelineConfig(disable_external=True))
        app.dependency_overrides[get_pipeline] = lambda: pipeline

    yield _configure
    app.dependency_overrides.clear()


@pytest.fixture
def client(app, configure):
    configure()
    return TestClient(app, raise_server_exceptions=False)


class TestUpload:
    def test_csv_returns_expenses(self, client):
        response = client.post(URL, files={"file": ("statement.csv", CSV_SAMPLE, "text/csv")})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert [e["amount"] for e in data["expenses"]] == [4.5, -10.0]
        assert data["expenses"][0] == {
            "amount": 4.5,
            "currency": "USD",
            "occurred_on": "2024-01-15",
            "merchant": "Coffee",
            "line_index": 1,
        }
        assert "usage" not in data

    def test_excel_field_with_workbook(self, client):
        content = make_xlsx(
            [
                ["Date", "Details", "Debit", "Credit"],
                [datetime(2023, 4, 28), "TEST TRANSACTION", 100.0, None],
                ["29/04/2023", "SALARY", None, 5000.0],
            ]
        )
        response = client.post(URL, files={"excel": ("statement.xlsx", content)})

        assert response.status_code == 200
        expenses = response.json()["expenses"]
        assert [(e["occurred_on"], e["amount"]) for e in expenses] == [
            ("2023-04-28", 100.0),
            ("2023-04-29", -5000.0),
        ]

    def test_spreadsheet_field_accepted(self, client):
        response = client.post(URL, files={"spreadsheet": ("statement.csv", CSV_SAMPLE)})
        assert response.status_code == 200

    def test_missing_file_is_400(self, client):
        response = client.post(URL, data={"password": "x"})

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "file" in response.json()["error"]

    def test_unsupported_extension_is_400(self, client):
        response = client.post(URL, files={"file": ("statement.pdf", b"%PDF-1.4")})

        assert response.status_code == 400
        assert response.json()["error"].startswith("Unsupported file type")

    def test_empty_file_is_400(self, client):
        response = client.post(URL, files={"file": ("statement.csv", b"")})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "The uploaded file is empty"}


class TestSizeLimit:
    def test_file_over_limit_is_413(self, app, configure):
        configure(MAX_UPLOAD_BYTES=100)
        client = TestClient(app)

        response = client.post(URL, files={"file": ("statement.csv", CSV_SAMPLE * 5)})

        assert response.status_code == 413
        assert response.json()["success"] is False

    def test_content_length_checked_before_parsing(self, app, configure):
        configure(MAX_UPLOAD_BYTES=100)
        client = TestClient(app)

        response = client.post(URL, files={"file": ("statement.csv", b"x" * (200 * 1024))})

        assert response.status_code == 413


class TestExtraction:
    def test_ai_result_returned(self, app, configure):
        content = json.dumps(
            {
                "expenses": [
                    {"amount": 4.5, "currency": "usd", "occurred_on": "2024-01-15", "line_index": 1},
                    {"amount": 12, "currency": "USD", "occurred_on": "Jan 18, 2024", "line_index": 9},
                ]
            }
        )
        body = {"choices": [{"message": {"content": content}}]}
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        config = PipelineConfig(providers=(ProviderConfig(PERPLEXITY, "key", ("sonar",)),))
        configure(pipeline=StatementPipeline(config, transport=transport))
        client = TestClient(app)

        response = client.post(URL, files={"file": ("statement.csv", CSV_SAMPLE)})

        assert response.status_code == 200
        assert response.json()["expenses"] == [
            {"amount": 4.5, "currency": "USD", "occurred_on": "2024-01-15", "line_index": 1},
            {"amount": 12.0, "currency": "USD", "occurred_on": "2024-01-18", "line_index": 9},
        ]

    def test_provider_failure_falls_back_to_columns(self, app, configure):
        configure(pipeline=StatementPipeline(PipelineConfig(), providers=[FailingProvider()]))
        client = TestClient(app)

        response = client.post(URL, files={"file": ("statement.csv", CSV_SAMPLE)})

        assert response.status_code == 200
        assert len(response.json()["expenses"]) == 2

    def test_all_providers_failed_is_502(self, app, configure):
        configure(pipeline=StatementPipeline(PipelineConfig(), providers=[FailingProvider()]))
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post(
            URL, files={"file": ("statement.csv", b"Details,Notes\nsomething,else\n")}
        )

        assert response.status_code == 502
        assert response.json() == {"success": False, "error": "failing API error: 503"}


class TestPreview:
    def test_preview_returns_usage_without_calling_providers(self, app, configure):
        provider = FailingProvider()
        configure(pipeline=StatementPipeline(PipelineConfig(), providers=[provider]))
        client = TestClient(app)

        response = client.post(
            URL, params={"preview": "1"}, files={"file": ("statement.csv", CSV_SAMPLE)}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["expenses"] == []
        preview = data["usage"]["preview"]
        assert len(preview["promptHash"]) == 12
        assert preview["head"].startswith("HEADER: Date | Description | Debit | Credit")
        assert "Jane" not in preview["head"]
        assert "tail" not in preview


class TestPassword:
    def test_password_forwarded_to_pipeline(self, app, configure):
        seen = {}

        class RecordingPipeline:
            async def run(self, content, filename=None, password=None):
                seen.update(filename=filename, password=password)
                return await StatementPipeline(PipelineConfig(disable_external=True)).run(
                    CSV_SAMPLE, filename
                )

        configure(pipeline=RecordingPipeline())
        client = TestClient(app)

        response = client.post(
            URL,
            files={"file": ("statement.csv", CSV_SAMPLE)},
            data={"password": "hunter2"},
        )

        assert response.status_code == 200
        assert seen == {"filename": "statement.csv", "password": "hunter2"}
