# sheetbridge/main.py
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware

from sheetbridge.auth import (
    OAuthFlow, check_callback_state, complete_authorization, credentials_for, end_session,
    require_tokens, start_authorization,
)
from sheetbridge.config import Settings, load_client_identity, load_settings
from sheetbridge.context import AppContext, get_context
from sheetbridge.database import Database
from sheetbridge.errors import (
    ApiError, AuthRequired, ConfigError, DuplicateError, ExchangeError, RangeNotFound, ValidationError,
)
from sheetbridge.logging_setup import configure_logging
from sheetbridge.models import Record, TokenSet
from sheetbridge.services import records_service, sheets_service
from sheetbridge.tokens import TokenStore

log = logging.getLogger(__name__)

ENTER_DETAILS_FORM = """
<form action="/sheets/add" method="post">
    <label for="name">Name:</label>
    <input type="text" name="name" required><br><br>
    <label for="email">Email:</label>
    <input type="email" name="email" required><br><br>
    <button type="submit">Submit</button>
</form>
"""


# --- Pydantic Models ---
class AppendRequest(BaseModel):
    range: str = Field(min_length=1)
    values: list[list[Any]] = Field(min_length=1)
    spreadsheet_id: Optional[str] = None

    @field_validator("values", mode="before")
    @classmethod
    def _single_row(cls, v: Any) -> Any:
        # a flat list of cells is one row
        if isinstance(v, list) and v and not any(isinstance(c, list) for c in v):
            return [v]
        return v


# --- Helpers ---
def _validate(model, data: Any, message: str):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        fields = sorted({str(e["loc"][0]) for e in exc.errors() if e.get("loc")})
        raise ValidationError(f"{message} (invalid or missing: {', '.join(fields)})" if fields else message) from exc


def _spreadsheet_id(context: AppContext, requested: Optional[str]) -> str:
    spreadsheet_id = requested or context.settings.spreadsheet_id
    if not spreadsheet_id:
        raise ValidationError("No spreadsheet id given and SPREADSHEET_ID is not set")
    return spreadsheet_id


def _is_record_payload(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and ("name" in payload or "email" in payload)
        and "range" not in payload and "values" not in payload
    )


async def _append_record(context: AppContext, session: Optional[AsyncSession], credentials, record: Record) -> None:
    """Appends one {name, email} row, reserving the email first when the duplicate guard is on."""
    spreadsheet_id = _spreadsheet_id(context, None)
    if session is not None:
        await records_service.check_and_reserve(session, record)
    try:
        await sheets_service.append_row(credentials, spreadsheet_id, context.settings.append_range, record.as_row())
    except Exception:
        # nothing was written, so the email must stay free for a retry
        if session is not None:
            await records_service.release(session, record.email)
        raise


async def get_db_session(context: AppContext = Depends(get_context)):
    if context.database is None:
        yield None
        return
    async with context.database.sessionmaker() as session:
        yield session


# --- Routes ---
router = APIRouter()


@router.get("/", response_class=HTMLResponse)
async def read_root():
    return '<a href="/auth">Authorize with Google</a>'


@router.get("/auth")
async def login(request: Request, context: AppContext = Depends(get_context)):
    return RedirectResponse(start_authorization(request, context), status_code=302)


@router.get("/oauth2callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    context: AppContext = Depends(get_context),
):
    if not code:
        raise ValidationError("No code found in query parameters")
    if not check_callback_state(request, state):
        raise ValidationError("OAuth state does not match this session")
    await complete_authorization(request, context, code)
    return RedirectResponse(context.settings.post_auth_redirect, status_code=302)


@router.get("/logout")
async def logout(request: Request, context: AppContext = Depends(get_context)):
    end_session(request, context)
    return RedirectResponse("/", status_code=302)


@router.get("/enter-details", response_class=HTMLResponse)
async def enter_details(tokens: TokenSet = Depends(require_tokens)):
    return ENTER_DETAILS_FORM


@router.get("/sheets")
async def get_sheet_values(
    range_spec: Optional[str] = Query(None, alias="range"),
    spreadsheet_id: Optional[str] = None,
    tokens: TokenSet = Depends(require_tokens),
    context: AppContext = Depends(get_context),
):
    rows = await sheets_service.read_range(
        credentials_for(tokens, context.identity),
        _spreadsheet_id(context, spreadsheet_id),
        range_spec or context.settings.read_range,
    )
    return rows


@router.post("/sheets/add")
async def add_to_sheet(
    request: Request,
    tokens: TokenSet = Depends(require_tokens),
    context: AppContext = Depends(get_context),
    session: Optional[AsyncSession] = Depends(get_db_session),
):
    credentials = credentials_for(tokens, context.identity)

    if request.headers.get("content-type", "").startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError as exc:
            raise ValidationError("Request body is not valid JSON") from exc
        if _is_record_payload(payload):
            record = _validate(Record, payload, "Name and email are required")
            await _append_record(context, session, credentials, record)
            return PlainTextResponse("Data added successfully!")
        append = _validate(AppendRequest, payload, "Range and values are required")
        confirmation = await sheets_service.append_rows(
            credentials, _spreadsheet_id(context, append.spreadsheet_id), append.range, append.values,
        )
        return JSONResponse(confirmation.raw)

    form = await request.form()
    record = _validate(Record, {"name": form.get("name"), "email": form.get("email")}, "Name and email are required")
    await _append_record(context, session, credentials, record)
    return PlainTextResponse("Data added successfully!")


# --- Error handlers ---
def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthRequired)
    async def _auth_required(request: Request, exc: AuthRequired):
        return RedirectResponse("/", status_code=302)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        log.warning("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse({"detail": str(exc)}, status_code=400)

    @app.exception_handler(DuplicateError)
    async def _duplicate(request: Request, exc: DuplicateError):
        log.warning("Duplicate submission for %s", exc.email)
        return JSONResponse({"detail": str(exc)}, status_code=400)

    @app.exception_handler(RangeNotFound)
    async def _range_not_found(request: Request, exc: RangeNotFound):
        return JSONResponse({"detail": "No data found."}, status_code=404)

    @app.exception_handler(ExchangeError)
    async def _exchange_error(request: Request, exc: ExchangeError):
        log.error("Error exchanging code for tokens: %s", exc.detail)
        return JSONResponse({"detail": f"Error exchanging code for tokens: {exc.detail}"}, status_code=500)

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        source = f"Google Sheets API ({exc.status})" if exc.status else "Google Sheets API"
        return JSONResponse({"detail": f"Error from {source}: {exc.message}", "status": exc.status}, status_code=500)


def create_app(settings: Settings) -> FastAPI:
    """Builds the app. Raises ConfigError before anything listens if the client file is unusable."""
    identity = load_client_identity(settings.client_secrets_file, settings.redirect_uri)
    context = AppContext(
        settings=settings,
        identity=identity,
        flow=OAuthFlow(identity),
        token_store=TokenStore(settings.token_file),
        database=Database(settings.database_url) if settings.database_url else None,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("Starting up...")
        context.persisted_tokens = context.token_store.load()
        if context.database is not None:
            await context.database.create_db_and_tables()
        log.info("Startup complete.")
        yield
        if context.database is not None:
            await context.database.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.context = context
    app.add_middleware(
        SessionMiddleware, secret_key=settings.session_secret, https_only=settings.https_only_cookies,
    )
    _register_error_handlers(app)
    app.include_router(router)
    return app


def main() -> None:
    configure_logging(os.getenv("LOG_LEVEL"))
    try:
        settings = load_settings()
        app = create_app(settings)
    except ConfigError as exc:
        log.error("Startup failed: %s", exc)
        sys.exit(1)
    logging.getLogger().setLevel(settings.log_level.upper())
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
