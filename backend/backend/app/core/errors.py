"""Error taxonomy shared by the costing services.

Every error carries a stable ``kind`` and a human-readable ``detail``; the HTTP
layer renders both and nothing else.
"""

from __future__ import annotations


class CostingError(Exception):
    kind = "CostingError"
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class Unauthenticated(CostingError):
    kind = "Unauthenticated"
    status_code = 401


class Forbidden(CostingError):
    kind = "Forbidden"
    status_code = 403


class NotFound(CostingError):
    # Also used for entities owned by another tenant.
    kind = "NotFound"
    status_code = 404


class ValidationError(CostingError):
    kind = "ValidationError"
    status_code = 400


class InvalidState(CostingError):
    kind = "InvalidState"
    status_code = 409


class DependencyFailure(CostingError):
    kind = "DependencyFailure"
    status_code = 502
