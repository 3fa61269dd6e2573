"""Error taxonomy shared by the relay and the streaming client."""
from typing import Any, Dict, Optional

UPSTREAM_HINT = "Check your GEMINI_API_KEY and rate limits."


class RelayError(Exception):
    """
    Base class for request-scoped failures.

    Each subclass maps onto one JSON error envelope and HTTP status. None of
    them is fatal to the process.
    """

    status_code = 500

    def __init__(self, code: str, detail: Optional[str] = None, hint: Optional[str] = None):
        self.code = code
        self.detail = detail
        self.hint = hint
        super().__init__(detail or code)

    def to_dict(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {"error": self.code}
        if self.detail is not None:
            envelope["detail"] = self.detail
        if self.hint is not None:
            envelope["hint"] = self.hint
        return envelope


class ValidationError(RelayError):
    """Malformed client request. The message itself is the error code."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)


class ConfigurationError(RelayError):
    """The generative backend has no credential."""

    status_code = 500

    def __init__(self, detail: str = "GEMINI_API_KEY environment variable is not set"):
        super().__init__("gemini_not_configured", detail)


class UpstreamError(RelayError):
    """The backend (or, seen from the client, the relay) answered with a failure."""

    status_code = 502

    def __init__(
        self,
        detail: str,
        hint: Optional[str] = UPSTREAM_HINT,
        status_code: Optional[int] = None,
    ):
        super().__init__("gemini_request_failed", detail, hint)
        if status_code is not None:
            self.status_code = status_code


class PayloadTooLargeError(RelayError):
    status_code = 413

    def __init__(self):
        super().__init__("payload_too_large")


class NetworkError(RelayError):
    """The client could not reach the relay or the connection dropped."""

    def __init__(self, detail: str):
        super().__init__("network_error", detail)


class ParseError(RelayError):
    """A stream line was not a valid fragment. Dropped by the decoder, never surfaced."""

    def __init__(self, detail: str):
        super().__init__("parse_error", detail)
