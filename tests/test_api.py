"""
BudgetFX API Tests

The app runs its real lifespan against a temporary SQLite file; provider
traffic goes through httpx.MockTransport.
"""

import sqlite3
from contextlib import closing
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from budgetfx.conversion import CurrencyConversionService
from budgetfx.database import COLUMNS, SQLiteProjectRepository
from budgetfx.main import create_app
from budgetfx.models import ProjectBudgetCreate
from budgetfx.providers.exchangerate import ExchangeRateClient

from conftest import RecordingSleep, ScriptedProvider, latest_payload, make_settings

PROJECT = {
    "projectId": 11,
    "projectName": "Peking roasted duck Chanel",
    "year": 2000,
    "currency": "usd",
    "initialBudgetLocal": 316974.5,
    "budgetUsd": 233724.23,
    "initialScheduleEstimateMonths": 13,
    "adjustedScheduleEstimateMonths": 12,
    "contingencyRate": 2.02,
    "escalationRate": 3.86,
    "finalBudgetUsd": 100,
}


def make_client(tmp_path, provider: ScriptedProvider) -> TestClient:
    settings = make_settings(sqlite_path=str(tmp_path / "api.db"))
    service = CurrencyConversionService(
        ExchangeRateClient(settings, transport=provider.transport(), sleep=RecordingSleep())
    )
    app = create_app(
        settings,
        repository=SQLiteProjectRepository(settings.sqlite_path),
        conversion_service=service,
    )
    return TestClient(app)


def store_raw_project(tmp_path, **overrides) -> None:
    """Write a row straight into the database, bypassing record validation."""
    row = {**ProjectBudgetCreate.model_validate(PROJECT).model_dump(), **overrides}
    with closing(sqlite3.connect(tmp_path / "api.db")) as conn:
        conn.execute(
            f"INSERT INTO project ({', '.join(COLUMNS)}) VALUES ({', '.join('?' * len(COLUMNS))})",
            [row[column] for column in COLUMNS]
        )
        conn.commit()


@pytest.fixture
def provider():
    return ScriptedProvider(latest_payload({"TTD": 6.75, "EUR": 0.92}))


@pytest.fixture
def client(tmp_path, provider):
    with make_client(tmp_path, provider) as test_client:
        yield test_client


class TestProjectCrud:
    """Project budget endpoints."""

    def test_ok(self, client):
        response = client.get("/api/ok")

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"ok": True}, "ok": True}

    def test_create_then_get(self, client):
        created = client.post("/api/project/budget", json=PROJECT)

        assert created.status_code == 201
        assert created.json()["currency"] == "USD"

        fetched = client.get("/api/project/budget/11")
        assert fetched.status_code == 200
        assert fetched.json()["projectName"] == "Peking roasted duck Chanel"
        assert fetched.json()["finalBudgetUsd"] == 100

    def test_get_missing(self, client):
        response = client.get("/api/project/budget/999")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Project with ID 999 not found",
            "errorType": "NOT_FOUND",
        }

    def test_non_numeric_id_is_validation_error(self, client):
        response = client.get("/api/project/budget/abc")

        assert response.status_code == 400
        assert response.json()["errorType"] == "VALIDATION_ERROR"

    def test_missing_field_is_validation_error(self, client):
        body = {k: v for k, v in PROJECT.items() if k != "finalBudgetUsd"}

        response = client.post("/api/project/budget", json=body)

        assert response.status_code == 400
        assert "finalBudgetUsd" in response.json()["error"]

    def test_year_out_of_range(self, client):
        response = client.post("/api/project/budget", json={**PROJECT, "year": 1850})

        assert response.status_code == 400

    def test_negative_budget_rejected(self, client):
        response = client.post("/api/project/budget", json={**PROJECT, "finalBudgetUsd": -100})

        assert response.status_code == 400
        assert response.json()["errorType"] == "VALIDATION_ERROR"
        assert client.get("/api/project/budget/11").status_code == 404

    def test_non_finite_rate_rejected(self, client):
        response = client.post("/api/project/budget", json={**PROJECT, "contingencyRate": "NaN"})

        assert response.status_code == 400
        assert response.json()["errorType"] == "VALIDATION_ERROR"

    def test_update_with_negative_budget_rejected(self, client):
        client.post("/api/project/budget", json=PROJECT)

        response = client.put("/api/project/budget/11", json={**PROJECT, "budgetUsd": -1})

        assert response.status_code == 400
        assert client.get("/api/project/budget/11").json()["budgetUsd"] == PROJECT["budgetUsd"]

    def test_invalid_stored_row_is_storage_error(self, tmp_path, client):
        store_raw_project(tmp_path, final_budget_usd=-100.0)

        response = client.get("/api/project/budget/11")

        assert response.status_code == 500
        assert response.json()["errorType"] == "DATABASE_ERROR"

    def test_duplicate_create_conflicts(self, client):
        client.post("/api/project/budget", json=PROJECT)

        response = client.post("/api/project/budget", json=PROJECT)

        assert response.status_code == 409
        assert response.json()["errorType"] == "CONFLICT"

    def test_update(self, client):
        client.post("/api/project/budget", json=PROJECT)

        response = client.put("/api/project/budget/11", json={**PROJECT, "finalBudgetUsd": 250})

        assert response.status_code == 200
        assert client.get("/api/project/budget/11").json()["finalBudgetUsd"] == 250

    def test_update_missing(self, client):
        response = client.put("/api/project/budget/11", json=PROJECT)

        assert response.status_code == 404

    def test_update_to_existing_id_conflicts(self, client):
        client.post("/api/project/budget", json=PROJECT)
        client.post("/api/project/budget", json={**PROJECT, "projectId": 12})

        response = client.put("/api/project/budget/11", json={**PROJECT, "projectId": 12})

        assert response.status_code == 409

    def test_delete(self, client):
        client.post("/api/project/budget", json=PROJECT)

        response = client.delete("/api/project/budget/11")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Project deleted successfully"}
        assert client.delete("/api/project/budget/11").status_code == 404


class TestBudgetConversion:
    """POST /api/project/budget/currency"""

    def test_live_conversion(self, client):
        client.post("/api/project/budget", json=PROJECT)

        response = client.post(
            "/api/project/budget/currency",
            json={"year": 2000, "projectName": PROJECT["projectName"], "currency": "ttd"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        [item] = body["data"]
        assert item["finalBudgetTtd"] == 675.0
        assert item["conversion"]["targetCurrency"] == "TTD"
        assert item["conversion"]["usedFallback"] is False
        assert Decimal(item["conversion"]["rate"]) == Decimal("6.75")

    def test_unknown_project(self, client):
        response = client.post(
            "/api/project/budget/currency",
            json={"year": 2000, "projectName": "Nope", "currency": "TTD"},
        )

        assert response.status_code == 404

    def test_missing_fields(self, client):
        response = client.post("/api/project/budget/currency", json={"year": 2000})

        assert response.status_code == 400
        assert response.json()["errorType"] == "VALIDATION_ERROR"

    def test_unsupported_currency(self, client):
        client.post("/api/project/budget", json=PROJECT)

        response = client.post(
            "/api/project/budget/currency",
            json={"year": 2000, "projectName": PROJECT["projectName"], "currency": "XYZ"},
        )

        assert response.status_code == 422
        assert response.json()["errorType"] == "CURRENCY_NOT_FOUND"

    def test_outage_uses_fallback(self, tmp_path):
        provider = ScriptedProvider(httpx.ConnectError)
        with make_client(tmp_path, provider) as client:
            client.post("/api/project/budget", json=PROJECT)

            response = client.post(
                "/api/project/budget/currency",
                json={"year": 2000, "projectName": PROJECT["projectName"], "currency": "TTD"},
            )

        assert response.status_code == 200
        [item] = response.json()["data"]
        assert item["finalBudgetTtd"] == 675.0
        assert item["conversion"]["usedFallback"] is True

    def test_outage_without_fallback_is_503(self, tmp_path):
        provider = ScriptedProvider(httpx.ConnectError)
        with make_client(tmp_path, provider) as client:
            client.post("/api/project/budget", json=PROJECT)

            response = client.post(
                "/api/project/budget/currency",
                json={"year": 2000, "projectName": PROJECT["projectName"], "currency": "JMD"},
            )

        assert response.status_code == 503
        assert response.json()["errorType"] == "NETWORK_ERROR"

    def test_invalid_stored_budget_is_422(self, tmp_path, client):
        store_raw_project(tmp_path, final_budget_usd=-100.0)

        response = client.post(
            "/api/project/budget/currency",
            json={"year": 2000, "projectName": PROJECT["projectName"], "currency": "TTD"},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["errorType"] == "VALIDATION_ERROR"

    def test_conversion_value_error_is_422(self, client, monkeypatch):
        client.post("/api/project/budget", json=PROJECT)

        async def rejecting_convert(*args, **kwargs):
            raise ValueError("Amount must be a non-negative number")

        monkeypatch.setattr(client.app.state.conversion_service, "convert", rejecting_convert)

        response = client.post(
            "/api/project/budget/currency",
            json={"year": 2000, "projectName": PROJECT["projectName"], "currency": "TTD"},
        )

        assert response.status_code == 422
        assert "non-negative" in response.json()["error"]


class TestBatchConversion:
    """GET /api/api-conversion"""

    def test_converts_existing_projects_and_skips_missing(self, client):
        client.post("/api/project/budget", json=PROJECT)
        client.post(
            "/api/project/budget",
            json={**PROJECT, "projectId": 12, "projectName": "Rigua Nintendo", "year": 2001,
                  "finalBudgetUsd": 10},
        )

        response = client.get("/api/api-conversion")

        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["projectName"] for item in data] == [
            "Peking roasted duck Chanel",
            "Rigua Nintendo",
        ]
        assert [item["finalBudgetTtd"] for item in data] == [675.0, 67.5]

    def test_empty_database(self, client):
        response = client.get("/api/api-conversion")

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}

    def test_invalid_stored_record_is_skipped(self, tmp_path, client):
        client.post("/api/project/budget", json=PROJECT)
        store_raw_project(
            tmp_path,
            project_id=12,
            project_name="Rigua Nintendo",
            year=2001,
            final_budget_usd=-100.0,
        )

        response = client.get("/api/api-conversion")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [item["projectName"] for item in body["data"]] == ["Peking roasted duck Chanel"]

    def test_non_provider_failure_is_skipped(self, client, monkeypatch):
        client.post("/api/project/budget", json=PROJECT)
        client.post(
            "/api/project/budget",
            json={**PROJECT, "projectId": 12, "projectName": "Rigua Nintendo", "year": 2001,
                  "finalBudgetUsd": 10},
        )
        service = client.app.state.conversion_service
        convert = service.convert

        async def reject_small_budgets(source, target, amount, on_date=None):
            if amount == 10:
                raise ValueError("Amount rejected")
            return await convert(source, target, amount, on_date)

        monkeypatch.setattr(service, "convert", reject_small_budgets)

        response = client.get("/api/api-conversion")

        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["projectName"] for item in data] == ["Peking roasted duck Chanel"]
        assert data[0]["finalBudgetTtd"] == 675.0


class TestHealth:

    def test_healthy(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["databaseBackend"] == "sqlite"
        assert body["rateProvider"] == "reachable"
