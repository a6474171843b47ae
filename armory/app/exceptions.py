"""Custom exceptions for the armory gateway."""


class ArmoryException(Exception):
    """Base class for armory exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Armory error"):
        self.message = message
        super().__init__(message)


class InvalidArgumentError(ArmoryException, ValueError):
    """Raised for blank keys, non-positive ids or TTLs.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400


class ConfigurationError(ArmoryException):
    """Raised when required settings are missing."""
    status_code = 500


class QuotaExceededError(ArmoryException):
    """Raised when a caller has exhausted its per-minute or per-hour budget.

    Not fatal: the caller should try again later.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        caller_id: str,
        stats: object | None = None,
        retry_after: int = 60,
        detail: str | None = None,
    ):
        self.caller_id = caller_id
        self.stats = stats
        self.retry_after = retry_after
        message = detail or (
            f"Rate limit exceeded for caller {caller_id}. "
            f"Retry after {retry_after} seconds."
        )
        super().__init__(message)


class QuotaSaturationError(ArmoryException):
    """Raised when no global upstream slot could be obtained after max retries.

    Fatal for the current request; never retried by the coordinator.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Failed to acquire upstream rate limit slot after {attempts} attempts"
        )


class CacheCorruptionError(ArmoryException):
    """A cached value could not be deserialized.

    Handled inside the distributed cache (entry deleted, miss returned).
    """

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt cache entry {key}: {reason}")


class ProducerReturnedEmptyError(ArmoryException):
    """Raised by get_or_set when the value producer returns None."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Producer returned no value for cache key: {key}")


class CredentialAcquisitionError(ArmoryException):
    """Raised when the authentication endpoint does not issue a usable token.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502


class SourceNotFoundError(ArmoryException):
    """The upstream source reports that the resource does not exist.

    Converted to a None result by the retrieval service.
    """
    status_code = 404


class SourceTransientError(ArmoryException):
    """The upstream source failed in a way the caller may retry.

    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502

    def __init__(self, message: str = "Upstream request failed", status: int | None = None):
        self.upstream_status = status
        super().__init__(message)


class SourceRateLimitedError(SourceTransientError):
    """The upstream source answered 429 Too Many Requests."""
    status_code = 503

    def __init__(self, retry_after: int | None = None):
        self.retry_after = retry_after
        message = "Upstream rate limit reached"
        if retry_after is not None:
            message += f", retry after {retry_after} seconds"
        super().__init__(message, status=429)
