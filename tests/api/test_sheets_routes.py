"""
Endpoint tests for the Sheets proxy, run against the in-memory spreadsheet.
"""

import pytest
from fastapi.testclient import TestClient
from google.auth.exceptions import RefreshError

from src.api.dependencies import get_sheets_client, reset_mock_sheets_client
from src.config.settings import get_settings
from src.infrastructure.sheets.client import (
    GoogleSheetsClient,
    MockSheetsClient,
    SheetsClientError,
    SheetsConfig,
)


@pytest.fixture
def make_client(monkeypatch):
    from src.main import create_app

    def build(**env):
        monkeypatch.setenv("SHEETS_MOCK_MODE", "true")
        monkeypatch.setenv("API_KEYS", "")
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()
        reset_mock_sheets_client()
        return TestClient(create_app())

    yield build
    get_settings.cache_clear()
    reset_mock_sheets_client()


@pytest.fixture
def client(make_client):
    return make_client()


class FailingSheets(MockSheetsClient):
    async def read_values(self, range_):
        raise SheetsClientError("Requested entity was not found.")


class RefreshFailingService:
    """Discovery service whose every request fails to refresh its token."""

    def spreadsheets(self):
        return self

    def values(self):
        return self

    def get(self, **kwargs):
        return self

    def execute(self):
        raise RefreshError("invalid_grant: Invalid JWT Signature.")


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------

class TestMissingParameters:

    def test_read_without_range(self, client):
        response = client.get("/readSheet")
        assert response.status_code == 400
        assert response.json() == {"error": "Range parameter is required"}

    @pytest.mark.parametrize("path", ["/writeSheet", "/appendSheet"])
    @pytest.mark.parametrize("body", [{}, {"range": "Sheet1!A1"}, {"values": [["x"]]}])
    def test_write_and_append_need_both_fields(self, client, path, body):
        response = client.post(path, json=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Range and values are required"}

    def test_write_without_body(self, client):
        response = client.post("/writeSheet")
        assert response.status_code == 400

    @pytest.mark.parametrize("body", [{}, {"data": "nope"}])
    def test_batch_needs_data_array(self, client, body):
        response = client.post("/batchUpdateSheet", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": "Data array is required"}

    def test_rejected_requests_never_reach_the_sheet(self, client):
        sheets = MockSheetsClient()
        client.app.dependency_overrides[get_sheets_client] = lambda: sheets

        responses = [
            client.get("/readSheet"),
            client.post("/writeSheet", json={"values": [["x"]]}),
            client.post("/writeSheet", json={"range": "Sheet1!A1"}),
            client.post("/appendSheet", json={}),
            client.post("/batchUpdateSheet", json={"data": "nope"}),
        ]

        assert [r.status_code for r in responses] == [400] * 5
        assert sheets.calls == []


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------

class TestSheetOperations:

    def test_write_single_cell(self, client):
        response = client.post("/writeSheet", json={"range": "Sheet1!A1", "values": [["x"]]})
        assert response.status_code == 200
        assert response.json() == {"success": True, "updatedCells": 1, "updatedRange": "Sheet1!A1"}

    def test_write_then_read(self, client):
        client.post("/writeSheet", json={"range": "Sheet1!A1:B2", "values": [["a", "b"], ["c", 4]]})
        response = client.get("/readSheet", params={"range": "Sheet1!A1:B2"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "values": [["a", "b"], ["c", "4"]]}

    def test_read_empty_range(self, client):
        response = client.get("/readSheet", params={"range": "Sheet1!A1:C3"})
        assert response.json() == {"success": True, "values": []}

    def test_appends_land_on_new_rows(self, client):
        first = client.post("/appendSheet", json={"range": "Sheet1!A:C", "values": [["1", "2", "3"]]})
        second = client.post("/appendSheet", json={"range": "Sheet1!A:C", "values": [["4", "5", "6"]]})
        assert first.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["updates"]["updatedRange"] == "Sheet1!A1:C1"
        assert second.json()["updates"]["updatedRange"] == "Sheet1!A2:C2"

    def test_sheet_info(self, client):
        response = client.get("/getSheetInfo")
        assert response.json() == {"success": True, "sheets": ["Sheet1"]}

    def test_batch_update(self, client):
        response = client.post("/batchUpdateSheet", json={"data": [
            {"range": "Sheet1!A1", "values": [["a"]]},
            {"range": "Sheet1!B1:C1", "values": [["b", "c"]]},
        ]})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["totalUpdatedCells"] == 3
        assert len(body["responses"]) == 2

    def test_empty_data_array_is_accepted(self, client):
        response = client.post("/batchUpdateSheet", json={"data": []})
        assert response.status_code == 200
        assert response.json()["totalUpdatedCells"] == 0


# ---------------------------------------------------------------------------
# Upstream errors
# ---------------------------------------------------------------------------

class TestUpstreamErrors:

    def test_bad_range_is_500_with_message(self, client):
        response = client.get("/readSheet", params={"range": "Missing!A1"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Unable to parse range: Missing!A1"}

    def test_upstream_message_is_passed_through(self, client):
        client.app.dependency_overrides[get_sheets_client] = lambda: FailingSheets()
        response = client.get("/readSheet", params={"range": "Sheet1!A1"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Requested entity was not found."}

    def test_credential_refresh_failure_is_reported(self, client):
        google = GoogleSheetsClient(SheetsConfig(spreadsheet_id="sheet-123"))
        google._service = RefreshFailingService()
        client.app.dependency_overrides[get_sheets_client] = lambda: google

        response = client.get("/readSheet", params={"range": "Sheet1!A1"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "invalid_grant: Invalid JWT Signature."}

    def test_invalid_batch_item(self, client):
        response = client.post("/batchUpdateSheet", json={"data": [{"range": "Sheet1!A1"}]})
        assert response.status_code == 500
        assert response.json()["success"] is False


# ---------------------------------------------------------------------------
# API keys and health
# ---------------------------------------------------------------------------

class TestApiKeys:

    def test_key_required_when_configured(self, make_client):
        client = make_client(API_KEYS="k1,k2")
        assert client.get("/getSheetInfo").status_code == 403
        assert client.get("/getSheetInfo", headers={"X-API-Key": "bad"}).status_code == 403
        assert client.get("/getSheetInfo", headers={"X-API-Key": "k2"}).status_code == 200

    def test_open_when_no_keys(self, client):
        assert client.get("/getSheetInfo").status_code == 200


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["details"]["mock_mode"]["sheets"] is True

    def test_ready_in_mock_mode(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_credentials(self, make_client):
        client = make_client(
            SHEETS_MOCK_MODE="false",
            GOOGLE_SHEETS_ID="",
            GOOGLE_SERVICE_ACCOUNT_FILE="",
            GOOGLE_PRIVATE_KEY="",
            GOOGLE_CLIENT_EMAIL="",
        )
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
