"""
Error taxonomy shared by the providers, the schema index and the pipelines.

Fatal conditions are exceptions; outcomes the caller is expected to inspect
(validation failures, failed executions) are returned as values instead, see
`schemas.SqlValidationResult` and `schemas.QueryResult`.
"""

from typing import Optional


class QueryLensError(Exception):
    """Base class for every error raised by this package."""


# =========================
# Configuration
# =========================
class ConfigurationError(QueryLensError):
    """A required setting (e.g. the provider API key) is missing or invalid."""


class UnsupportedDialect(ConfigurationError):
    def __init__(self, database_type: str):
        self.database_type = database_type
        super().__init__(f"Unsupported database type: {database_type}")


# =========================
# External providers
# =========================
class ProviderError(QueryLensError):
    """Non-2xx response, transport failure or empty payload from a provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """The provider rejected our credentials (401). Never retried."""


class ProviderRateLimited(ProviderError):
    """A single 429 response. Retried by the provider client."""


class RateLimitExceeded(ProviderError):
    """Still rate limited after every retry was spent."""


# =========================
# Retrieval
# =========================
class DimensionMismatch(QueryLensError):
    """Two vectors of different length were compared. Data-integrity defect."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vectors must have same dimension (expected {expected}, got {actual})"
        )


class DatabaseNotFound(QueryLensError):
    def __init__(self, database_id: int):
        self.database_id = database_id
        super().__init__(f"Database not found with ID: {database_id}")


class RetrievalFailure(QueryLensError):
    """Schema retrieval failed, the conversion pipeline aborts before generation."""


class GenerationFailure(QueryLensError):
    """The generation stage failed, wraps the provider error."""
