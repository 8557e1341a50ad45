"""
cvmdeploy Exception Hierarchy

Typed errors surfaced by the parser, cipher, resolver, Cloud API client and
blockchain registrar. The orchestrator tags them with the phase that failed.
"""

from typing import Any, Dict, List, Optional


class CvmDeployError(Exception):
    """Base exception for all cvmdeploy errors."""

    def __init__(self, message: str, context: Optional[str] = None):
        self.message = message
        self.context = context
        # Filled in by the orchestrator when the error crosses a phase boundary
        self.phase: Optional[str] = None
        self.completed_phases: List[str] = []
        self.partial: Dict[str, Any] = {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with optional context."""
        if self.context:
            return f"{self.message}\nContext: {self.context}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used for JSON output."""
        data: Dict[str, Any] = {
            "error": self.message,
            "type": type(self).__name__,
            "phase": self.phase,
            "completed_phases": list(self.completed_phases),
        }
        if self.context:
            data["context"] = self.context
        if self.partial:
            data["partial"] = dict(self.partial)
        return data


class ParseError(CvmDeployError):
    """Raised when an input file cannot be read."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Cannot read file '{path}'", context=reason)


class ValidationError(CvmDeployError):
    """Raised when user input or resource selection is invalid."""

    pass


class NoResourceError(ValidationError):
    """Raised when no node or image is available for the request."""

    pass


class NotFoundError(ValidationError):
    """Raised when a requested node, image or registry does not exist."""

    def __init__(self, kind: str, requested: str, available: List[str]):
        self.kind = kind
        self.requested = requested
        self.available = available
        message = f"{kind} '{requested}' not found"
        context = f"Available: {', '.join(available) if available else 'none'}"
        super().__init__(message, context)


class UnregisteredIdentityError(ValidationError):
    """Raised when a custom app identity is not registered on chain."""

    def __init__(self, app_id: str, registry_address: str):
        self.app_id = app_id
        self.registry_address = registry_address
        message = f"App identity '{app_id}' is not registered"
        context = f"Registry contract: {registry_address}"
        super().__init__(message, context)


class CryptoError(CvmDeployError):
    """Raised when secrets cannot be encrypted."""

    pass


class ApiError(CvmDeployError):
    """Raised when a Cloud API call fails or returns an unexpected body."""

    def __init__(
        self,
        operation: str,
        detail: str,
        status_code: Optional[int] = None,
    ):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        if status_code is not None:
            message = f"Cloud API '{operation}' failed with HTTP {status_code}"
        else:
            message = f"Cloud API '{operation}' failed"
        super().__init__(message, context=detail)


class ChainError(CvmDeployError):
    """Raised when a blockchain call fails."""

    pass
