# sheetbridge/config.py
import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from sheetbridge.errors import ConfigError

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)


@dataclass(frozen=True)
class ClientIdentity:
    client_id: str
    client_secret: str
    redirect_uri: str
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI


@dataclass(frozen=True)
class Settings:
    session_secret: str
    client_secrets_file: Path = Path("credentials.json")
    token_file: Path = Path("token.json")
    redirect_uri: Optional[str] = None

    # Sheets
    spreadsheet_id: Optional[str] = None
    read_range: str = "Sheet1!A:B"
    append_range: str = "Sheet1!A1:B1"
    scopes: tuple = field(default=DEFAULT_SCOPES)

    # Sessions
    share_persisted_tokens: bool = True
    post_auth_redirect: str = "/enter-details"
    https_only_cookies: bool = False

    # Duplicate guard; off when unset
    database_url: Optional[str] = None

    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    if env is None:
        load_dotenv()
        env = os.environ

    def _env(name: str, default: Optional[str] = None) -> Optional[str]:
        v = env.get(name)
        return default if v is None or v == "" else v

    session_secret = _env("SESSION_SECRET")
    if not session_secret:
        raise ConfigError("SESSION_SECRET must be set in the environment or .env file!")

    scopes = tuple(s for s in re.split(r"[\s,]+", _env("OAUTH_SCOPES", "") or "") if s) or DEFAULT_SCOPES
    port_raw = _env("PORT", "3000") or "3000"
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid PORT: {port_raw!r}") from exc

    return Settings(
        session_secret=session_secret,
        client_secrets_file=Path(_env("CLIENT_SECRETS_FILE", "credentials.json") or "credentials.json"),
        token_file=Path(_env("TOKEN_FILE", "token.json") or "token.json"),
        redirect_uri=_env("REDIRECT_URI"),
        spreadsheet_id=_env("SPREADSHEET_ID"),
        read_range=_env("READ_RANGE", "Sheet1!A:B") or "Sheet1!A:B",
        append_range=_env("APPEND_RANGE", "Sheet1!A1:B1") or "Sheet1!A1:B1",
        scopes=scopes,
        share_persisted_tokens=_flag(_env("SHARE_PERSISTED_TOKENS"), True),
        post_auth_redirect=_env("POST_AUTH_REDIRECT", "/enter-details") or "/enter-details",
        https_only_cookies=_flag(_env("HTTPS_ONLY_COOKIES"), False),
        database_url=_env("DATABASE_URL"),
        host=_env("HOST", "127.0.0.1") or "127.0.0.1",
        port=port,
        log_level=_env("LOG_LEVEL", "INFO") or "INFO",
    )


def load_client_identity(path: Path, redirect_uri: Optional[str] = None) -> ClientIdentity:
    """Read a Google OAuth client file ("web" or "installed" flavour).

    Raises ConfigError when the file is missing, is not JSON, or lacks the
    client id, secret or a redirect URI. ``redirect_uri`` overrides the first
    entry of the file's ``redirect_uris``.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Credentials file not found at: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Error reading credentials file {path}: {exc}") from exc

    section = (data.get("web") or data.get("installed")) if isinstance(data, dict) else None
    if not isinstance(section, dict):
        raise ConfigError(f"{path} has no 'web' or 'installed' client section")

    redirect_uris = section.get("redirect_uris") or []
    identity = ClientIdentity(
        client_id=section.get("client_id") or "",
        client_secret=section.get("client_secret") or "",
        redirect_uri=redirect_uri or (redirect_uris[0] if redirect_uris else ""),
        auth_uri=section.get("auth_uri") or GOOGLE_AUTH_URI,
        token_uri=section.get("token_uri") or GOOGLE_TOKEN_URI,
    )
    missing = [n for n in ("client_id", "client_secret", "redirect_uri") if not getattr(identity, n)]
    if missing:
        raise ConfigError(f"{path} is missing required client fields: {', '.join(missing)}")
    return identity
