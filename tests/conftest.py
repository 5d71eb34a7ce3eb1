# tests/conftest.py
import json
from datetime import datetime, timezone

import httplib2
import pytest
from fastapi.testclient import TestClient
from googleapiclient.errors import HttpError

from sheetbridge import auth
from sheetbridge.config import Settings
from sheetbridge.main import create_app
from sheetbridge.models import TokenSet
from sheetbridge.services import sheets_service
from sheetbridge.services.sheets_service import sheet_of
from sheetbridge.tokens import TokenStore

SPREADSHEETS = "https://www.googleapis.com/auth/spreadsheets"

CLIENT_FILE = {
    "web": {
        "client_id": "cid.apps.googleusercontent.com",
        "client_secret": "shh",
        "redirect_uris": ["http://localhost:3000/oauth2callback"],
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
    }
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def client_file(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps(CLIENT_FILE))
    return path


@pytest.fixture
def make_settings(tmp_path, client_file):
    def _make(**overrides) -> Settings:
        values = dict(
            session_secret="test-secret",
            client_secrets_file=client_file,
            token_file=tmp_path / "token.json",
            spreadsheet_id="sheet-123",
        )
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def tokens():
    return TokenSet(
        access_token="ya29.test-access",
        refresh_token="1//test-refresh",
        expiry=datetime(2030, 1, 1, tzinfo=timezone.utc),
        scope=SPREADSHEETS,
    )


class _Call:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeSheets:
    """In-memory stand-in for ``build("sheets", "v4").spreadsheets().values()``."""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.credentials = []
        self.error = None
        self.landing_sheet = None

    def build(self, service_name, version, credentials=None, **kwargs):
        self.credentials.append(credentials)
        return self

    def spreadsheets(self):
        return self

    def values(self):
        return self

    def fail_with(self, status, message):
        body = json.dumps({"error": {"code": status, "message": message}}).encode()
        self.error = HttpError(httplib2.Response({"status": status}), body)

    def get(self, spreadsheetId, range, **kwargs):
        self.calls.append(("get", spreadsheetId, range))

        def run():
            if self.error:
                raise self.error
            result = {"range": range, "majorDimension": "ROWS"}
            rows = self.tables.get(sheet_of(range) or "Sheet1")
            if rows:
                result["values"] = [list(r) for r in rows]
            return result
        return _Call(run)

    def append(self, spreadsheetId, range, body, **kwargs):
        self.calls.append(("append", spreadsheetId, range, body["values"]))

        def run():
            if self.error:
                raise self.error
            sheet = self.landing_sheet or sheet_of(range) or "Sheet1"
            table = self.tables.setdefault(sheet, [])
            first = len(table) + 1
            table.extend(body["values"])
            last_col = chr(ord("A") + max(len(r) for r in body["values"]) - 1)
            return {
                "spreadsheetId": spreadsheetId,
                "tableRange": f"{sheet}!A1:{last_col}{first - 1}" if first > 1 else None,
                "updates": {
                    "spreadsheetId": spreadsheetId,
                    "updatedRange": f"{sheet}!A{first}:{last_col}{len(table)}",
                    "updatedRows": len(body["values"]),
                },
            }
        return _Call(run)

    @property
    def appends(self):
        return [c for c in self.calls if c[0] == "append"]


@pytest.fixture
def fake_sheets(monkeypatch):
    fake = FakeSheets()
    monkeypatch.setattr(sheets_service, "build", fake.build)
    return fake


class _FakeOAuthClient:
    def __init__(self, endpoint, kwargs):
        self.endpoint = endpoint
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def fetch_token(self, url, **kwargs):
        self.endpoint.calls.append((url, kwargs))
        if isinstance(self.endpoint.response, Exception):
            raise self.endpoint.response
        return self.endpoint.response


class FakeTokenEndpoint:
    """Replaces authlib's AsyncOAuth2Client; ``response`` is a token dict or an exception to raise."""

    def __init__(self):
        self.calls = []
        self.response = {
            "access_token": "ya29.fresh",
            "refresh_token": "1//fresh-refresh",
            "token_type": "Bearer",
            "expires_in": 3599,
            "expires_at": 1924992000,
            "scope": SPREADSHEETS,
        }

    def __call__(self, **kwargs):
        return _FakeOAuthClient(self, kwargs)


@pytest.fixture
def token_endpoint(monkeypatch):
    endpoint = FakeTokenEndpoint()
    monkeypatch.setattr(auth, "AsyncOAuth2Client", endpoint)
    return endpoint


@pytest.fixture
def make_client(make_settings):
    """Yields a factory for started TestClients; pass ``persisted=`` to seed the token file."""
    clients = []

    def _make(persisted=None, **overrides) -> TestClient:
        settings = make_settings(**overrides)
        if persisted is not None:
            TokenStore(settings.token_file).persist(persisted)
        client = TestClient(create_app(settings), follow_redirects=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, tokens, fake_sheets):
    return make_client(persisted=tokens)


@pytest.fixture
def anon_client(make_client, fake_sheets):
    return make_client()
