# sheetbridge/context.py
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from fastapi import Request

from sheetbridge.config import ClientIdentity, Settings
from sheetbridge.database import Database
from sheetbridge.models import TokenSet
from sheetbridge.tokens import SessionTokens, TokenStore

if TYPE_CHECKING:
    from sheetbridge.auth import OAuthFlow


@dataclass
class AppContext:
    """Everything a request handler needs; built once per app, lives for the lifespan."""

    settings: Settings
    identity: ClientIdentity
    flow: "OAuthFlow"
    token_store: TokenStore
    database: Optional[Database] = None
    persisted_tokens: Optional[TokenSet] = None
    sessions: SessionTokens = field(default_factory=SessionTokens)


def get_context(request: Request) -> AppContext:
    return request.app.state.context
