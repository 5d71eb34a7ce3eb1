# sheetbridge/services/sheets_service.py
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error
from starlette.concurrency import run_in_threadpool

from sheetbridge.errors import ApiError, RangeNotFound

log = logging.getLogger(__name__)

# RefreshError and transport failures surface from .execute() alongside HttpError
PROVIDER_ERRORS = (HttpError, GoogleAuthError, HttpLib2Error, OSError)


@dataclass(frozen=True)
class AppendConfirmation:
    updated_range: Optional[str]
    updated_rows: int
    raw: dict = field(default_factory=dict)

    @property
    def sheet(self) -> Optional[str]:
        return sheet_of(self.updated_range) if self.updated_range else None


def sheet_of(range_spec: str) -> Optional[str]:
    """Sheet name of an A1 range ("'My Sheet'!A1:B2" -> "My Sheet"), or None if it names no sheet."""
    if "!" not in range_spec:
        return None
    name = range_spec.rsplit("!", 1)[0]
    if len(name) >= 2 and name[0] == name[-1] == "'":
        name = name[1:-1].replace("''", "'")
    return name


def get_sheets_service(credentials: Credentials):
    """Builds a Sheets v4 client bound to one request's credentials."""
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


def _api_error(error: Exception) -> ApiError:
    if not isinstance(error, HttpError):
        return ApiError(None, f"{type(error).__name__}: {error}")
    status = getattr(error.resp, "status", None)
    body = error.content.decode("utf-8", errors="replace") if error.content else str(error)
    return ApiError(int(status) if status is not None else None, body)


async def read_range(credentials: Credentials, spreadsheet_id: str, range_spec: str) -> list:
    try:
        service = get_sheets_service(credentials)
        request = service.spreadsheets().values().get(spreadsheetId=spreadsheet_id, range=range_spec)
        result = await run_in_threadpool(request.execute)
    except PROVIDER_ERRORS as error:
        log.error("Error reading %s from spreadsheet %s: %s", range_spec, spreadsheet_id, error)
        raise _api_error(error) from error
    rows = result.get("values") or []
    if not rows:
        raise RangeNotFound(range_spec)
    return rows


async def append_rows(credentials: Credentials, spreadsheet_id: str, range_spec: str, rows: Sequence[Sequence[Any]]) -> AppendConfirmation:
    """Appends ``rows`` after the table found at ``range_spec``.

    Google picks the first empty row, so the row actually written is only known
    from the returned confirmation.
    """
    try:
        service = get_sheets_service(credentials)
        request = service.spreadsheets().values().append(
            spreadsheetId=spreadsheet_id,
            range=range_spec,
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [list(r) for r in rows]},
        )
        result = await run_in_threadpool(request.execute)
    except PROVIDER_ERRORS as error:
        log.error("Error adding data to spreadsheet %s: %s", spreadsheet_id, error)
        raise _api_error(error) from error
    updates = result.get("updates") or {}
    confirmation = AppendConfirmation(
        updated_range=updates.get("updatedRange"),
        updated_rows=int(updates.get("updatedRows") or 0),
        raw=result,
    )
    requested = sheet_of(range_spec)
    if requested and confirmation.sheet and confirmation.sheet != requested:
        log.warning("Append to %s landed on %s", range_spec, confirmation.updated_range)
    log.info("Data added successfully: %s (%d rows)", confirmation.updated_range, confirmation.updated_rows)
    return confirmation


async def append_row(credentials: Credentials, spreadsheet_id: str, range_spec: str, row: Sequence[Any]) -> AppendConfirmation:
    return await append_rows(credentials, spreadsheet_id, range_spec, [row])
