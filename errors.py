"""
Exceptions for CampusConnect

Lifecycle managers raise these; the handlers registered in ``main`` turn them
into the ``{"success": false, "message": ...}`` envelope with the matching
HTTP status.

    if not post:
        raise NotFoundError("Post")
"""

from typing import Any, Dict, Optional


class CampusConnectError(Exception):
    """Base exception for all CampusConnect errors"""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class UnauthenticatedError(CampusConnectError):
    """Missing, invalid or expired credential on a protected route"""

    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Not authorized, please log in"):
        super().__init__(message)


class ForbiddenError(CampusConnectError):
    """Authenticated, but the role or ownership check failed"""

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(CampusConnectError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource_type: str):
        super().__init__(f"{resource_type} not found", details={"resource_type": resource_type})


class ValidationError(CampusConnectError):
    """Request or document failed a field constraint"""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
