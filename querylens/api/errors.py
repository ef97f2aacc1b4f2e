from fastapi import status

from querylens.core.errors import (
    ConfigurationError,
    DatabaseNotFound,
    ProviderAuthError,
    RateLimitExceeded,
)


def status_for(error: Exception) -> int:
    """HTTP status for a failure raised out of a pipeline or the schema index."""
    if isinstance(error, DatabaseNotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, RateLimitExceeded):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(error, ProviderAuthError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(error, ConfigurationError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR
