# sheetbridge/errors.py
from typing import Optional


class SheetBridgeError(Exception):
    """Base class for every error the app raises on purpose."""


class ConfigError(SheetBridgeError):
    """Bad or missing startup configuration. Fatal."""


class ValidationError(SheetBridgeError):
    """Required request input is missing or malformed."""


class AuthRequired(SheetBridgeError):
    """No token set is bound to the session; send the browser back to the start."""


class ExchangeError(SheetBridgeError):
    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ApiError(SheetBridgeError):
    """A Google API call failed. Status and body are the provider's, untouched."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


class RangeNotFound(SheetBridgeError):
    def __init__(self, range_spec: str):
        super().__init__(f"No values in range {range_spec}")
        self.range_spec = range_spec


class DuplicateError(SheetBridgeError):
    def __init__(self, email: str):
        super().__init__(f"A record with email {email} already exists")
        self.email = email
