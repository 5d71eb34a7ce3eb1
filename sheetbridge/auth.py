# sheetbridge/auth.py
import logging
import secrets
from datetime import timezone
from typing import Iterable, Optional

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri
from fastapi import Request
from google.oauth2.credentials import Credentials

from sheetbridge.config import ClientIdentity
from sheetbridge.context import AppContext, get_context
from sheetbridge.errors import AuthRequired, ExchangeError
from sheetbridge.models import TokenSet

log = logging.getLogger(__name__)

SESSION_ID = "sid"
# present only while a consent redirect is outstanding
SESSION_OAUTH_STATE = "oauth_state"


class OAuthFlow:
    def __init__(self, identity: ClientIdentity):
        self.identity = identity

    def build_consent_url(self, scopes: Iterable[str], state: Optional[str] = None) -> str:
        """Consent URL for exactly ``scopes``, always asking for offline access."""
        return prepare_grant_uri(
            self.identity.auth_uri, self.identity.client_id, "code",
            redirect_uri=self.identity.redirect_uri, scope=sorted(set(scopes)), state=state,
            access_type="offline", prompt="consent",
        )

    async def exchange_code(self, code: Optional[str]) -> TokenSet:
        if not code or not code.strip():
            raise ExchangeError("Authorization code is empty")
        try:
            async with AsyncOAuth2Client(
                client_id=self.identity.client_id, client_secret=self.identity.client_secret,
                redirect_uri=self.identity.redirect_uri,
            ) as client:
                token = await client.fetch_token(self.identity.token_uri, code=code.strip())
        except AuthlibBaseError as exc:
            detail = exc.error or "oauth_error"
            if exc.description: detail = f"{detail}: {exc.description}"
            raise ExchangeError(detail) from exc
        except httpx.HTTPError as exc:
            raise ExchangeError(f"Token endpoint unreachable: {exc}") from exc
        except ValueError as exc:
            raise ExchangeError(f"Unreadable token response: {exc}") from exc

        if not token or not token.get("access_token"):
            raise ExchangeError("Token response carried no access_token")
        return TokenSet.from_provider(token)


def start_authorization(request: Request, context: AppContext) -> str:
    state = secrets.token_urlsafe(16)
    request.session[SESSION_OAUTH_STATE] = state
    return context.flow.build_consent_url(context.settings.scopes, state=state)


def check_callback_state(request: Request, state: Optional[str]) -> bool:
    """Accept a callback only for the consent redirect this session started."""
    expected = request.session.pop(SESSION_OAUTH_STATE, None)
    return expected is not None and expected == state


async def complete_authorization(request: Request, context: AppContext, code: Optional[str]) -> TokenSet:
    """Exchange ``code``, then persist and bind the result. Nothing is stored if the exchange fails."""
    tokens = await context.flow.exchange_code(code)
    context.token_store.persist(tokens)
    context.persisted_tokens = tokens
    # fresh id on login
    context.sessions.discard(request.session.get(SESSION_ID))
    bind_tokens(request, context, tokens, new_id=True)
    return tokens


def bind_tokens(request: Request, context: AppContext, tokens: TokenSet, new_id: bool = False) -> None:
    sid = None if new_id else request.session.get(SESSION_ID)
    request.session[SESSION_ID] = context.sessions.bind(tokens, sid)


def session_tokens(request: Request, context: AppContext) -> Optional[TokenSet]:
    return context.sessions.get(request.session.get(SESSION_ID))


def end_session(request: Request, context: AppContext) -> None:
    context.sessions.discard(request.session.get(SESSION_ID))
    request.session.clear()


async def require_tokens(request: Request) -> TokenSet:
    context = get_context(request)
    tokens = session_tokens(request, context)
    if tokens is None and context.settings.share_persisted_tokens and context.persisted_tokens is not None:
        tokens = context.persisted_tokens
        bind_tokens(request, context, tokens)
    if tokens is None:
        raise AuthRequired()
    return tokens


def credentials_for(tokens: TokenSet, identity: ClientIdentity) -> Credentials:
    """Fresh google-auth credentials for one request; nothing shared is mutated."""
    expiry = tokens.expiry
    if expiry is not None and expiry.tzinfo is not None:
        # google-auth compares expiry against naive UTC
        expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)
    return Credentials(
        token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_uri=identity.token_uri,
        client_id=identity.client_id,
        client_secret=identity.client_secret,
        scopes=tokens.scope.split() if tokens.scope else None,
        expiry=expiry,
    )
