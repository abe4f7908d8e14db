"""
Custom exception hierarchy for immich-dupes.

Only AuthenticationError is fatal to a run; everything else is recorded
against the asset or group it happened on.
"""
from typing import Optional


class ImmichDupesError(Exception):
    """Base exception for all immich-dupes errors."""
    pass


class ApiError(ImmichDupesError):
    """Raised when the Immich server returns a non-success response."""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        self.message = message
        super().__init__(f"API error {status}: {message}" if message else f"API error {status}")


class AuthenticationError(ApiError):
    """Raised on 401/403. Aborts the whole run."""
    pass


class AssetNotFoundError(ApiError):
    """Raised when the server answers 404 for an asset."""

    def __init__(self, asset_id: Optional[str] = None, message: str = ""):
        self.asset_id = asset_id
        super().__init__(404, message or f"Asset not found: {asset_id}")


class InvalidApiKeyError(ImmichDupesError):
    """Raised when the API key is empty or not usable as a header."""
    pass


class AnalysisFormatError(ImmichDupesError):
    """Raised when a report file cannot be parsed."""
    pass


class BackupError(ImmichDupesError):
    """Raised when a backup download is missing or empty."""
    pass
