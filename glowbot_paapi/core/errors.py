from typing import Any, Dict, List, Optional


class PaapiError(Exception):
    """Base class for every error raised by the PA-API gateway."""


class ConfigurationError(PaapiError):
    """Required credentials or tags are missing or malformed."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class ValidationError(PaapiError):
    """Caller input rejected before any cache or network access."""

    def __init__(self, message: str, details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.details = list(details or [])


class SigningError(PaapiError):
    """The SigV4 computation itself failed (bad URL, unencodable body)."""


class TransientUpstreamError(PaapiError):
    """429, 5xx or a network failure; eligible for retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ServiceUnavailableError(PaapiError):
    """Retries exhausted; the catalog service is treated as down."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NormalizationError(PaapiError):
    """A single raw item could not be mapped."""


class CacheCorruptionError(PaapiError):
    """A cache record exists but cannot be decoded."""
