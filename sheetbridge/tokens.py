# sheetbridge/tokens.py
import logging
import os
import secrets
import tempfile
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from sheetbridge.models import TokenSet

log = logging.getLogger(__name__)


class TokenStore:
    """File-backed TokenSet, rewritten whole via rename so readers never see half a file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[TokenSet]:
        if not self.path.exists():
            log.info("No saved tokens at %s", self.path)
            return None
        try:
            tokens = TokenSet.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as exc:
            log.error("Ignoring unreadable token file %s: %s", self.path, exc)
            return None
        log.info("Tokens loaded from %s", self.path)
        return tokens

    def persist(self, tokens: TokenSet) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(tokens.model_dump_json())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        log.info("Tokens saved to %s", self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            log.info("Removed saved tokens at %s", self.path)


class SessionTokens:
    """Server-side TokenSets keyed by an opaque session id; the cookie carries only the id."""

    def __init__(self):
        self._tokens: Dict[str, TokenSet] = {}

    def bind(self, tokens: TokenSet, sid: Optional[str] = None) -> str:
        sid = sid or secrets.token_urlsafe(32)
        self._tokens[sid] = tokens
        return sid

    def get(self, sid: Optional[str]) -> Optional[TokenSet]:
        return self._tokens.get(sid) if sid else None

    def discard(self, sid: Optional[str]) -> None:
        if sid:
            self._tokens.pop(sid, None)
