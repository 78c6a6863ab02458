"""
Exception types for the SEO opportunity pipeline.

Only ConfigurationError and unrecoverable gateway failures are meant to reach
the HTTP/CLI surface. RelevanceFilterError and ConversionRateEstimateError are
raised by the response parsers and recovered by their callers.
"""

from typing import Any, Optional


class OpportunityError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(OpportunityError):
    """Missing or invalid credentials/settings. Never retried."""


class GatewayError(OpportunityError):
    """Non-2xx response (or exhausted transport retries) from DataForSEO."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"DataForSEO API error {self.status_code}: {self.message}"
        return f"DataForSEO API error: {self.message}"


class TaskTimeoutError(OpportunityError):
    """Polling ran out of attempts while tasks were still pending."""

    def __init__(self, pending_ids: list[str], partial_results: list[dict]):
        super().__init__(
            f"{len(pending_ids)} task(s) still pending after polling "
            f"({len(partial_results)} completed)"
        )
        self.pending_ids = pending_ids
        self.partial_results = partial_results


class LocationDataError(OpportunityError):
    """The canonical location table could not be loaded."""


class CompetitorDiscoveryError(OpportunityError):
    """No usable competitors were returned by the provider."""


class RelevanceFilterError(OpportunityError):
    """The AI relevance filter answer could not be used."""


class ConversionRateEstimateError(OpportunityError):
    """The AI conversion rate answer could not be used."""


class ValidationError(OpportunityError):
    """A caller supplied an incomplete or invalid analysis request."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
