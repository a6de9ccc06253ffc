from __future__ import annotations


class VaultError(Exception):
    """Base error for the knowledge vault core."""


class AccessDeniedError(VaultError):
    """Requesting user is not a member of the target workspace."""


class FileNotFoundInWorkspaceError(VaultError):
    """File id does not exist inside the requested workspace."""


class ParseError(VaultError):
    """File content could not be parsed."""


class FileDownloadError(ParseError):
    """Raw file bytes could not be fetched from the blob store."""


class FileTimeoutError(VaultError):
    """Download or parse of a single file exceeded its timeout."""


class RateLimitExceededError(VaultError):
    """Daily AI interaction quota reached for a workspace user."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Daily interaction limit reached ({count}/{limit}). Try again tomorrow.")
        self.count = count
        self.limit = limit


class UpstreamModelError(VaultError):
    """Language-model call failed or returned a non-success status."""


class ModelConfigError(UpstreamModelError):
    """Missing or invalid language-model provider configuration."""


class ModelTimeoutError(UpstreamModelError):
    """Language-model call exceeded its timeout."""


class CacheError(VaultError):
    """Semantic cache search or store failed."""


class AlertEvaluationError(VaultError):
    """A single alert rule failed to evaluate."""


class DatabaseError(VaultError):
    """Database layer failure."""
