# Overview: Service error taxonomy shared by services and the HTTP error handler.

from __future__ import annotations


class ServiceError(Exception):
    """Base for errors that map onto an HTTP status."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"message": self.message}
        body.update(self.details)
        return body


class ValidationError(ServiceError):
    """400-level input problem. Carries the offending field(s)."""
    status_code = 400

    def __init__(self, message: str, errors: list[dict] | None = None, field: str | None = None):
        if errors is None and field is not None:
            errors = [{"field": field, "message": message}]
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors} if self.errors else None)


class Unauthenticated(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotOrderable(Forbidden):
    """Shop exists but the actor may not place orders against it."""


class NotFound(ServiceError):
    status_code = 404


class ShopNotFound(NotFound):
    pass


class ItemNotFound(NotFound):
    pass


class Conflict(ServiceError):
    """409-level business rule conflict (duplicate staff, already archived)."""
    status_code = 409


class InvalidQuantity(ServiceError):
    """Quantity adjustment would drop the item below one unit."""
    status_code = 400
