"""
Unit tests for the Google Sheets adapter against a stub discovery service.
"""

import asyncio
import socket

import httplib2
import pytest
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from src.infrastructure.sheets.client import (
    GoogleSheetsClient,
    SheetsClientError,
    SheetsConfig,
)


class StubRequest:
    def __init__(self, response=None, error=None):
        self._response = response
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._response


class StubSpreadsheets:
    """Records the kwargs of every call, like spreadsheets() on the discovery client."""

    def __init__(self, response=None, error=None):
        self.calls = []
        self._response = response if response is not None else {}
        self._error = error

    def _record(self, method, **kwargs):
        self.calls.append((method, kwargs))
        return StubRequest(self._response, self._error)

    def values(self):
        return self

    def get(self, **kwargs):
        return self._record("get", **kwargs)

    def update(self, **kwargs):
        return self._record("update", **kwargs)

    def append(self, **kwargs):
        return self._record("append", **kwargs)

    def batchUpdate(self, **kwargs):
        return self._record("batchUpdate", **kwargs)


class StubService:
    def __init__(self, spreadsheets):
        self._spreadsheets = spreadsheets

    def spreadsheets(self):
        return self._spreadsheets


def make_client(response=None, error=None):
    stub = StubSpreadsheets(response, error)
    client = GoogleSheetsClient(SheetsConfig(spreadsheet_id="sheet-123"))
    client._service = StubService(stub)
    return client, stub


def http_error(status, message):
    resp = httplib2.Response({"status": status})
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode("utf-8")
    return HttpError(resp, content)


class TestRequests:

    def test_read_passes_range(self):
        client, stub = make_client({"values": [["a"]]})
        assert asyncio.run(client.read_values("Sheet1!A1")) == [["a"]]
        assert stub.calls == [("get", {"spreadsheetId": "sheet-123", "range": "Sheet1!A1"})]

    def test_read_without_values_is_empty(self):
        client, _ = make_client({"range": "Sheet1!A1"})
        assert asyncio.run(client.read_values("Sheet1!A1")) == []

    def test_write_is_user_entered(self):
        client, stub = make_client({"updatedCells": 1})
        asyncio.run(client.write_values("Sheet1!A1", [["x"]]))
        assert stub.calls == [("update", {
            "spreadsheetId": "sheet-123",
            "range": "Sheet1!A1",
            "valueInputOption": "USER_ENTERED",
            "body": {"values": [["x"]]},
        })]

    def test_append_is_user_entered(self):
        client, stub = make_client({"updates": {}})
        asyncio.run(client.append_values("Sheet1!A:B", [["1", "2"]]))
        method, kwargs = stub.calls[0]
        assert method == "append"
        assert kwargs["valueInputOption"] == "USER_ENTERED"
        assert kwargs["body"] == {"values": [["1", "2"]]}

    def test_batch_update_body(self):
        data = [{"range": "Sheet1!A1", "values": [["a"]]}]
        client, stub = make_client({"totalUpdatedCells": 1})
        asyncio.run(client.batch_update(data))
        assert stub.calls == [("batchUpdate", {
            "spreadsheetId": "sheet-123",
            "body": {"valueInputOption": "USER_ENTERED", "data": data},
        })]

    def test_sheet_titles(self):
        client, _ = make_client({"sheets": [{"properties": {"title": "Log"}}, {"properties": {"title": "Archive"}}]})
        assert asyncio.run(client.sheet_titles()) == ["Log", "Archive"]


class TestErrors:

    def test_http_error_keeps_upstream_message(self):
        client, _ = make_client(error=http_error(404, "Requested entity was not found."))
        with pytest.raises(SheetsClientError, match="Requested entity was not found."):
            asyncio.run(client.read_values("Sheet1!A1"))

    @pytest.mark.parametrize("error", [
        RefreshError("invalid_grant: Invalid JWT Signature."),
        TransportError("connection reset"),
        socket.timeout("timed out"),
    ])
    def test_auth_and_transport_errors_are_upstream_errors(self, error):
        client, _ = make_client(error=error)
        with pytest.raises(SheetsClientError) as excinfo:
            asyncio.run(client.write_values("Sheet1!A1", [["x"]]))
        assert str(excinfo.value) == str(error)

    def test_missing_credentials(self):
        client = GoogleSheetsClient(SheetsConfig(spreadsheet_id="sheet-123"))
        with pytest.raises(SheetsClientError, match="No service account credentials configured"):
            asyncio.run(client.read_values("Sheet1!A1"))
