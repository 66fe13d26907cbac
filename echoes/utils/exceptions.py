"""
Exception classes for Echoes

Every failure that crosses a component boundary is raised as one of the
classes below. Each carries a machine-readable ``kind`` so the HTTP surface
and the CLI can tell failure modes apart without string matching.

Exception Hierarchy:
    EchoesError (base)
        Unauthorized - no usable session credential
            AuthExpired - credential could not be refreshed proactively
        RefreshFailed - token endpoint rejected a refresh
        UpstreamError - non-2xx from the catalog, lyrics or embedding provider
            CandidateFetchFailed - every candidate acquisition strategy failed
            EmbeddingProviderError - embedding provider call failed
        RecommendationFailed - orchestrator could not produce candidates
        DimensionMismatch - vectors of different length were compared
        InvalidInput - request payload failed validation
        Cancelled - caller timeout or cancellation

Hard failures propagate to the caller. Soft failures (missing lyrics, a
failed embedding or feature lookup for one candidate) are caught where they
happen and turned into a zero signal.
"""

from typing import Any, Dict, Optional


class EchoesError(Exception):
    """
    Base exception for all Echoes errors

    Attributes:
        message: Human-readable error description
        details: Additional context (track ids, upstream status, ...)
    """

    kind = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON error responses"""
        return {"error": self.message, "kind": self.kind, "details": self.details}


class Unauthorized(EchoesError):
    """
    Raised when the session has no valid credential

    Not retried beyond the single reactive refresh performed by the retry
    policy; the user must authenticate again.
    """

    kind = "unauthorized"


class AuthExpired(Unauthorized):
    """Raised when the proactive refresh of an expiring token fails"""

    kind = "auth_expired"


class RefreshFailed(EchoesError):
    """Raised when the token endpoint rejects a refresh request"""

    kind = "refresh_failed"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message, details)
        self.status = status


class UpstreamError(EchoesError):
    """
    Raised when a provider answers with a non-2xx status

    Attributes:
        status: HTTP status returned by the provider (None for transport errors)
        body: Raw response body or provider error message
        provider: Which collaborator failed ("spotify", "genius", "openai")
    """

    kind = "upstream_error"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        provider: str = "spotify",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"status": status, "body": body, "provider": provider}
        merged.update(details or {})
        super().__init__(message, merged)
        self.status = status
        self.body = body
        self.provider = provider


class CandidateFetchFailed(UpstreamError):
    """Raised when every candidate acquisition strategy has been exhausted"""

    kind = "candidate_fetch_failed"


class EmbeddingProviderError(UpstreamError):
    """Raised when the embedding provider fails to embed text"""

    kind = "embedding_provider_error"

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message, status=status, body=body, provider="openai")


class RecommendationFailed(EchoesError):
    """
    Raised when the orchestrator cannot acquire any candidates

    Carries the last upstream status and body observed by the acquisition
    ladder so the caller can surface them verbatim.
    """

    kind = "recommendation_failed"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"status": status, "body": body}
        merged.update(details or {})
        super().__init__(message, merged)
        self.status = status
        self.body = body


class DimensionMismatch(EchoesError):
    """Raised when two vectors of different length are compared"""

    kind = "dimension_mismatch"


class InvalidInput(EchoesError):
    """Raised when caller-supplied input fails validation"""

    kind = "invalid_input"


class Cancelled(EchoesError):
    """Raised when a recommendation call is aborted by timeout or cancel signal"""

    kind = "cancelled"
