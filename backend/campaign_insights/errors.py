"""
Error taxonomy for the insights engine.

Required stages let these propagate to the HTTP layer; optional stages catch
``UpstreamError`` and substitute an empty or zeroed value instead.
"""

from typing import Any, Dict, Optional


class InsightsError(Exception):
    """Base class for errors raised by the engine."""


class ConfigurationError(InsightsError):
    """A credential or required setting is missing. Never retried."""


class ValidationError(InsightsError):
    """Caller-supplied parameters are malformed."""


class UpstreamError(InsightsError):
    """The ads platform returned a non-2xx status or an unusable body."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        endpoint: str = "",
        params: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status = status
        self.body = body
        self.endpoint = endpoint
        self.params = params or {}

    @property
    def platform_error(self) -> Optional[Dict[str, Any]]:
        """The platform's structured ``error`` object, when the body carried one."""
        if isinstance(self.body, dict) and isinstance(self.body.get("error"), dict):
            return self.body["error"]
        return None

    def log_context(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "params": self.params,
            "status": self.status,
            "error_body": self.body,
        }
