"""Failures reported by the order operations.

Every error carries a programmatic ``kind`` and the HTTP status it maps to,
so callers can tell them apart without parsing messages.
"""


class ServiceError(Exception):
    kind = "ServiceError"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, **self.details}


class Forbidden(ServiceError):
    kind = "Forbidden"
    status_code = 403


class InvalidRequest(ServiceError):
    kind = "InvalidRequest"
    status_code = 400


class ProductUnavailable(ServiceError):
    kind = "ProductUnavailable"
    status_code = 400


class InsufficientStock(ServiceError):
    kind = "InsufficientStock"
    status_code = 409


class NotFound(ServiceError):
    kind = "NotFound"
    status_code = 404


class StoreFailure(ServiceError):
    kind = "StoreFailure"
    status_code = 503
